# Overview: Read cache for serialized aggregates; per-key TTLs and write-triggered invalidation.

"""
Read Cache

Aggregates are cached as JSON text under fixed keys, each with a TTL tuned
to how often the underlying stores change:

    projects_data          CACHE_TTL_SHORT   (project summaries)
    active_projects_data   CACHE_TTL_SHORT
    orders_data            CACHE_TTL_ORDERS
    deposits_data          CACHE_TTL_ORDERS
    payments_data          CACHE_TTL_ORDERS
    masters_data           CACHE_TTL         (master data, rarely changes)
    products_data          CACHE_TTL
    analysis_<year>        CACHE_TTL_SHORT

Any store mutation calls invalidate_data_cache(), which drops every key
above plus analysis_<y> for a window of years around the current one.

FAILURE POLICY:
Backends raise CacheUnavailable; ReadCache logs it and behaves as a miss
(reads) or a no-op (writes/invalidation). A cache problem never fails the
surrounding operation.

STALENESS:
A reader that missed, computed, and put concurrently with a writer's
invalidation can re-populate a stale value. It lives at most one TTL.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CacheEntry
from ..time_utils import utcnow


logger = logging.getLogger(__name__)

CACHE_TTL = 1500
CACHE_TTL_SHORT = 120
CACHE_TTL_ORDERS = 60

PROJECTS_KEY = "projects_data"
ORDERS_KEY = "orders_data"
ACTIVE_PROJECTS_KEY = "active_projects_data"
DEPOSITS_KEY = "deposits_data"
PAYMENTS_KEY = "payments_data"
MASTERS_KEY = "masters_data"
PRODUCTS_KEY = "products_data"
ANALYSIS_KEY_PREFIX = "analysis_"

DATA_CACHE_KEYS = (
    PROJECTS_KEY,
    ORDERS_KEY,
    ACTIVE_PROJECTS_KEY,
    DEPOSITS_KEY,
    PAYMENTS_KEY,
    MASTERS_KEY,
    PRODUCTS_KEY,
)

# Analysis years invalidated around the current year: [year - 2, year + 1]
ANALYSIS_YEARS_BEFORE = 2
ANALYSIS_YEARS_AFTER = 1


class CacheUnavailable(Exception):
    """Raised by a cache backend that cannot serve the request."""
    pass


def analysis_key(year: int) -> str:
    return f"{ANALYSIS_KEY_PREFIX}{year}"


# =============================================================================
# Backends
# =============================================================================

@dataclass
class _MemoryEntry:
    value: str
    expires_at: datetime


class MemoryCacheBackend:
    """
    In-process TTL cache with LRU eviction.

    The clock is injected so tests can move time forward.
    """

    def __init__(self, *, max_size: int = 1000, clock: Callable[[], datetime] = utcnow):
        self._entries: OrderedDict[str, _MemoryEntry] = OrderedDict()
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = _MemoryEntry(value, self._clock() + timedelta(seconds=ttl_seconds))
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count


class DatabaseCacheBackend:
    """Cache rows in the cache_entries table; expired rows are dropped on read."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        try:
            row = CacheEntry.query.filter_by(key=key).first()
            if row is None:
                return None
            if self._clock() >= row.expires_at:
                db.session.delete(row)
                db.session.commit()
                return None
            return row.value
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise CacheUnavailable(str(exc)) from exc

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            expires_at = self._clock() + timedelta(seconds=ttl_seconds)
            row = CacheEntry.query.filter_by(key=key).first()
            if row is None:
                db.session.add(CacheEntry(key=key, value=value, expires_at=expires_at))
            else:
                row.value = value
                row.expires_at = expires_at
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise CacheUnavailable(str(exc)) from exc

    def remove(self, key: str) -> None:
        try:
            CacheEntry.query.filter_by(key=key).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise CacheUnavailable(str(exc)) from exc

    def clear(self) -> int:
        try:
            count = CacheEntry.query.delete()
            db.session.commit()
            return count
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise CacheUnavailable(str(exc)) from exc


# =============================================================================
# Facade
# =============================================================================

class ReadCache:
    """Best-effort facade over a backend; never raises CacheUnavailable."""

    def __init__(self, backend):
        self.backend = backend

    def get(self, key: str) -> Optional[str]:
        try:
            return self.backend.get(key)
        except CacheUnavailable as exc:
            logger.warning("Cache get failed (%s): %s", key, exc)
            return None

    def put(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            self.backend.put(key, value, ttl_seconds)
            return True
        except CacheUnavailable as exc:
            logger.warning("Cache put failed (%s): %s", key, exc)
            return False

    def invalidate(self, *keys: str) -> None:
        for key in keys:
            try:
                self.backend.remove(key)
            except CacheUnavailable as exc:
                logger.warning("Cache remove failed (%s): %s", key, exc)

    def clear(self) -> int:
        try:
            return self.backend.clear()
        except CacheUnavailable as exc:
            logger.warning("Cache clear failed: %s", exc)
            return 0

    def get_or_compute(self, key: str, ttl_seconds: int, compute: Callable[[], Any]) -> Any:
        """
        Return the cached JSON value for key, or compute, store, and return it.

        An undecodable cached value is treated as a miss.
        """
        cached = self.get(key)
        if cached is not None:
            try:
                return json.loads(cached)
            except ValueError:
                logger.warning("Discarding undecodable cache value (%s)", key)
        value = compute()
        self.put(key, json.dumps(value, ensure_ascii=False), ttl_seconds)
        return value


def invalidate_data_cache(cache: ReadCache, current_year: int) -> None:
    """Drop every derived-data key, including analysis years around current_year."""
    years = range(current_year - ANALYSIS_YEARS_BEFORE, current_year + ANALYSIS_YEARS_AFTER + 1)
    cache.invalidate(*DATA_CACHE_KEYS, *(analysis_key(y) for y in years))
