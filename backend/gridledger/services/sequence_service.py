# Overview: Sequence generator; mints zero-padded identifiers from locked, persisted counters.

"""
Sequence Generator

Counters live in the property store under these keys:

- SEQ_ESTIMATE            -> "0000001-00", "0000002-00", ...
- SEQ_ORDER               -> "0000001-00", ...
- SEQ_DEPOSIT_<yyyyMMdd>  -> "DEP-20240315-00001" (resets daily via the key)
- SEQ_PAYMENT_<yyyyMMdd>  -> "PAY-20240315-00001"

Each counter has its own lock. An increment that is persisted but never
used (the caller fails afterwards) leaves a gap; numbers are never reused.
Invoice ids are time-based ("INV-MMddHHmmss") and take no counter.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .concurrency import LockRegistry, hold


logger = logging.getLogger(__name__)

SEQ_ESTIMATE = "SEQ_ESTIMATE"
SEQ_ORDER = "SEQ_ORDER"
SEQ_DEPOSIT_PREFIX = "SEQ_DEPOSIT_"
SEQ_PAYMENT_PREFIX = "SEQ_PAYMENT_"

RECORD_ID_WIDTH = 7
RECORD_ID_SUFFIX = "-00"
DAILY_ID_WIDTH = 5


def _to_int(value) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


class SequenceGenerator:
    def __init__(self, properties, locks: LockRegistry, *, timeout_seconds: float = 5.0):
        self._properties = properties
        self._locks = locks
        self.timeout_seconds = timeout_seconds

    def next_value(self, counter_key: str) -> int:
        """Increment and persist counter_key; raises LockTimeout."""
        with hold(self._locks.get(f"sequence:{counter_key}"), self.timeout_seconds):
            value = _to_int(self._properties.get_property(counter_key)) + 1
            self._properties.set_property(counter_key, str(value))
        logger.debug("Allocated %s=%d", counter_key, value)
        return value

    def next(self, counter_key: str, *, width: int, prefix: str = "", suffix: str = "") -> str:
        value = self.next_value(counter_key)
        return f"{prefix}{value:0{width}d}{suffix}"

    def peek(self, counter_key: str) -> int:
        return _to_int(self._properties.get_property(counter_key))

    def set(self, counter_key: str, value: int) -> None:
        with hold(self._locks.get(f"sequence:{counter_key}"), self.timeout_seconds):
            self._properties.set_property(counter_key, str(int(value)))


def next_estimate_id(generator: SequenceGenerator) -> str:
    return generator.next(SEQ_ESTIMATE, width=RECORD_ID_WIDTH, suffix=RECORD_ID_SUFFIX)


def next_order_id(generator: SequenceGenerator) -> str:
    return generator.next(SEQ_ORDER, width=RECORD_ID_WIDTH, suffix=RECORD_ID_SUFFIX)


def next_deposit_id(generator: SequenceGenerator, now: datetime) -> str:
    day = now.strftime("%Y%m%d")
    return generator.next(SEQ_DEPOSIT_PREFIX + day, width=DAILY_ID_WIDTH, prefix=f"DEP-{day}-")


def next_payment_id(generator: SequenceGenerator, now: datetime) -> str:
    day = now.strftime("%Y%m%d")
    return generator.next(SEQ_PAYMENT_PREFIX + day, width=DAILY_ID_WIDTH, prefix=f"PAY-{day}-")


def invoice_id(now: datetime) -> str:
    return "INV-" + now.strftime("%m%d%H%M%S")
