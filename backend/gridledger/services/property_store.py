# Overview: Durable scalar counter storage (key -> text value).

from __future__ import annotations

import threading

from ..extensions import db
from ..models import ScriptProperty


class MemoryPropertyStore:
    """Dict-backed property store for tests and ephemeral runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_property(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set_property(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = str(value)

    def all(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)


class DatabasePropertyStore:
    """
    Property store on the script_properties table.

    Each set commits immediately; the sequence generator relies on the
    value being durable before the lock is released.
    """

    def get_property(self, key: str) -> str | None:
        row = ScriptProperty.query.filter_by(key=key).first()
        return row.value if row else None

    def set_property(self, key: str, value: str) -> None:
        row = ScriptProperty.query.filter_by(key=key).first()
        if row is None:
            row = ScriptProperty(key=key, value=str(value))
            db.session.add(row)
        else:
            row.value = str(value)
        db.session.commit()

    def all(self) -> dict[str, str]:
        rows = ScriptProperty.query.order_by(ScriptProperty.key).all()
        return {r.key: r.value for r in rows}
