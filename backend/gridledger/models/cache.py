from __future__ import annotations

from ..extensions import db


class CacheEntry(db.Model):
    """
    Serialized read-cache entry with an absolute expiry.

    expires_at is naive UTC; rows past expiry are treated as absent and
    removed lazily on the next read.
    """
    __tablename__ = "cache_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(191), nullable=False, unique=True, index=True)
    value = db.Column(db.Text, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
