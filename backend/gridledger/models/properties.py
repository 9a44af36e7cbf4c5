from __future__ import annotations

from ..extensions import db


class ScriptProperty(db.Model):
    """
    Durable key-value property.

    Holds sequence counters (SEQ_ESTIMATE, SEQ_ORDER, SEQ_DEPOSIT_yyyyMMdd, ...).
    Values are stored as text; counters are parsed back to integers by the
    sequence generator.
    """
    __tablename__ = "script_properties"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(191), nullable=False, unique=True, index=True)
    value = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
