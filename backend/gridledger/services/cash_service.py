# Overview: Deposit and payment operations; saves with daily sequence ids, cached listings and lookups.

"""
Cash Service

Deposits (money received against an estimate) and payments (money paid
against an order or invoice) are single-row runs with the same shape:

    deposit: DEP-yyyyMMdd-NNNNN   estimate_id, client
    payment: PAY-yyyyMMdd-NNNNN   order_id, invoice_id, supplier

A save with an id that already exists rewrites that record in place (full
replace); any other save mints a daily sequence id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..text_utils import parse_currency, to_number
from ..time_utils import sort_key_desc
from ..validation import require_mapping, text
from .cache_service import CACHE_TTL_ORDERS, DEPOSITS_KEY, PAYMENTS_KEY
from .concurrency import WriteResult, run_mutation
from .record_codec import Record
from .record_store import RecordStore
from .sequence_service import next_deposit_id, next_payment_id


logger = logging.getLogger(__name__)

STATUS_DEFAULT = "確認済"
STATUS_CANCELLED = "取消"
TYPE_DEFAULT = "振込"
VISIBILITY_DEFAULT = "public"

AMOUNT_FIELDS = ("amount", "fee", "offset")


@dataclass(frozen=True)
class _CashKind:
    store: str
    cache_key: str
    # Text fields specific to the kind, in addition to date/project/type/remarks
    link_fields: tuple[str, ...]
    mint: Callable


DEPOSIT = _CashKind("deposit", DEPOSITS_KEY, ("estimate_id", "client"), next_deposit_id)
PAYMENT = _CashKind("payment", PAYMENTS_KEY, ("order_id", "invoice_id", "supplier"), next_payment_id)


def _view(kind: _CashKind, record: Record) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": record.id,
        "registered_at": record.get("registered_at"),
        "date": record.get("date"),
    }
    for key in kind.link_fields:
        out[key] = record.get(key)
    out.update(
        project=record.get("project"),
        type=record.get("type"),
        remarks=record.get("remarks"),
        status=record.get("status"),
        registrant=record.get("registrant"),
        visibility=record.get("visibility") or VISIBILITY_DEFAULT,
    )
    for key in AMOUNT_FIELDS:
        out[key] = parse_currency(record.get(key))
    return out


def _list(ctx, kind: _CashKind) -> list[dict[str, Any]]:
    def _compute():
        rows = [_view(kind, r) for r in RecordStore.open(ctx, kind.store, display=True).records()]
        rows.sort(key=lambda r: sort_key_desc(r["date"]))
        return rows

    return ctx.cache.get_or_compute(kind.cache_key, CACHE_TTL_ORDERS, _compute)


def _save(ctx, kind: _CashKind, payload: Any, user_email: str) -> WriteResult:
    def _op() -> WriteResult:
        data = require_mapping(payload)
        now = ctx.timestamp()

        store = RecordStore.open(ctx, kind.store)
        record_id = text(data.get("id"))
        existing = store.find(record_id) if record_id else None
        if not record_id:
            record_id = kind.mint(ctx.sequences, ctx.now())

        header: dict[str, Any] = {
            "registered_at": now,
            "date": text(data.get("date")) or now,
            "project": text(data.get("project")),
            "type": text(data.get("type")) or TYPE_DEFAULT,
            "remarks": text(data.get("remarks")),
            "status": text(data.get("status")) or STATUS_DEFAULT,
            "registrant": user_email,
            "visibility": text(data.get("visibility")) or VISIBILITY_DEFAULT,
        }
        for key in kind.link_fields:
            header[key] = text(data.get(key))
        for key in AMOUNT_FIELDS:
            header[key] = to_number(data.get(key))

        store.replace(Record(id=record_id, header=header))
        logger.info("Saved %s %s (%s)", kind.store, record_id, "update" if existing else "new")
        return WriteResult.ok(record_id)

    return run_mutation(ctx, _op)


def list_deposits(ctx) -> list[dict[str, Any]]:
    return _list(ctx, DEPOSIT)


def list_payments(ctx) -> list[dict[str, Any]]:
    return _list(ctx, PAYMENT)


def save_deposit(ctx, payload: Any, *, user_email: str = "") -> WriteResult:
    return _save(ctx, DEPOSIT, payload, user_email)


def save_payment(ctx, payload: Any, *, user_email: str = "") -> WriteResult:
    return _save(ctx, PAYMENT, payload, user_email)


def deposits_for_estimate(ctx, estimate_id: str) -> list[dict[str, Any]]:
    estimate_id = text(estimate_id)
    if not estimate_id:
        return []
    return [d for d in list_deposits(ctx) if text(d.get("estimate_id")) == estimate_id]


def payments_for_order(ctx, order_id: str) -> list[dict[str, Any]]:
    order_id = text(order_id)
    if not order_id:
        return []
    return [p for p in list_payments(ctx) if text(p.get("order_id")) == order_id]
