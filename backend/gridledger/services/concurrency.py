# Overview: Named locks with bounded waits, retry helper, and the locked write envelope.

"""
Concurrency

LOCKS:
- "stores": one coarse lock around every read-modify-write of the grid
  stores (save, delete, status writes). Two unrelated saves still serialize.
- "sequence:<counter key>": one lock per counter, so minting order ids does
  not wait on daily deposit ids.

Locks are in-process (threading). Acquisition waits at most the configured
bound and then raises LockTimeout; callers report that as a retryable busy
result.

WRITE ENVELOPE:
Every mutating service returns a WriteResult. run_mutation() acquires the
store lock, runs the operation, converts failures into the envelope,
releases the lock on every path, and invalidates the read cache.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

from ..validation import MalformedInput
from .cache_service import invalidate_data_cache
from .record_store import RecordNotFound

if TYPE_CHECKING:
    from .context import LedgerContext


logger = logging.getLogger(__name__)

STORE_LOCK = "stores"


class LockTimeout(Exception):
    """Raised when a named lock is not acquired within its bounded wait."""
    pass


class NamedLock:
    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self, timeout_ms: int) -> bool:
        return self._lock.acquire(timeout=max(timeout_ms, 0) / 1000.0)

    def release(self) -> None:
        self._lock.release()


class LockRegistry:
    """Process-wide map of lock name -> NamedLock, created on first use."""

    def __init__(self):
        self._locks: dict[str, NamedLock] = {}
        self._guard = threading.Lock()

    def get(self, name: str) -> NamedLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = NamedLock(name)
                self._locks[name] = lock
            return lock


@contextmanager
def hold(lock: NamedLock, timeout_seconds: float) -> Iterator[None]:
    """Acquire within timeout_seconds or raise LockTimeout; always release."""
    if not lock.try_acquire(int(timeout_seconds * 1000)):
        raise LockTimeout(f"Timed out waiting for lock '{lock.name}'")
    try:
        yield
    finally:
        lock.release()


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (LockTimeout,),
    linear: bool = False,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Call func, retrying on the given transient exceptions.

    Delay before retry n (1-based) is backoff_base * n when linear,
    else backoff_base * 2 ** (n - 1). The last failure propagates.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            delay = backoff_base * attempt if linear else backoff_base * (2 ** (attempt - 1))
            logger.warning("Attempt %d/%d failed (%s); retrying in %.2fs", attempt, attempts, exc, delay)
            sleep(delay)


# =============================================================================
# Write envelope
# =============================================================================

BUSY = "busy"
MALFORMED = "malformed"
NOT_FOUND = "not_found"
UPSTREAM = "upstream"
ERROR = "error"


@dataclass
class WriteResult:
    success: bool
    message: str | None = None
    id: str | None = None
    reason: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, id: str | None = None, **extra) -> "WriteResult":
        return cls(success=True, id=id, extra=extra)

    @classmethod
    def failed(cls, message: str, reason: str = ERROR, id: str | None = None, **extra) -> "WriteResult":
        """id names a record the failed call still persisted."""
        return cls(success=False, message=message, id=id, reason=reason, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            out["message"] = self.message
        if self.id is not None:
            out["id"] = self.id
        out.update(self.extra)
        return out


def run_mutation(ctx: "LedgerContext", operation: Callable[[], WriteResult]) -> WriteResult:
    """
    Run operation under the store lock and return its envelope.

    - lock not acquired in time        -> success=False, "Busy"
    - MalformedInput                   -> success=False, no cache change
    - RecordNotFound                   -> success=False, "Not found"
    - LockTimeout (sequence minting)   -> success=False, busy
    - anything else                    -> success=False, logged
    The cache is invalidated whenever the operation ran past validation,
    including failures part-way through a write.
    """
    lock = ctx.locks.get(STORE_LOCK)
    try:
        with hold(lock, ctx.settings.store_lock_timeout):
            try:
                result = operation()
            except MalformedInput as exc:
                return WriteResult.failed(str(exc), MALFORMED)
            except RecordNotFound as exc:
                result = WriteResult.failed("Not found", NOT_FOUND, detail=str(exc))
            except LockTimeout as exc:
                result = WriteResult.failed(str(exc), BUSY)
            except Exception as exc:
                logger.exception("Store mutation failed")
                result = WriteResult.failed(str(exc), ERROR)
            invalidate_data_cache(ctx.cache, ctx.now().year)
            return result
    except LockTimeout:
        logger.warning("Store lock busy after %.1fs", ctx.settings.store_lock_timeout)
        return WriteResult.failed("Busy", BUSY)
