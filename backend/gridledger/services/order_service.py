# Overview: Order operations; listing with payment totals, lookups, saves and purchase order documents.

"""
Order Service

Orders are normally derived from estimates (see estimate_service), one run
per vendor. They can also be saved directly (manual orders) and reprinted.

LISTING:
list_orders() joins three stores:
- order runs (display values) for header fields and line amounts
- payments (not cancelled) summed per order id
- estimates for the project name of the related estimate
It also flags orders whose purchase order document has been published.
"""

from __future__ import annotations

import logging
from typing import Any

from ..text_utils import clean_filename, parse_currency, round_half_up, to_number
from ..time_utils import format_sheet_date, japanese_date, sort_key_desc
from ..validation import MalformedInput, require_header, text
from .cache_service import CACHE_TTL_ORDERS, ORDERS_KEY
from .concurrency import MALFORMED, NOT_FOUND, UPSTREAM, WriteResult, run_mutation
from .document_service import NEXT_PAGE_ROWS, ORDER_FIRST_PAGE_ROWS, paginate_items, publish_document
from .grid_storage import plain_value
from .inference_service import UpstreamFailure
from .record_codec import Record
from .record_store import RecordStore
from .sequence_service import next_order_id


logger = logging.getLogger(__name__)

ORDER_STATUS_DEFAULT = "発注書作成"
STATUS_CANCELLED = "取消"
VISIBILITY_DEFAULT = "public"
VENDOR_HONORIFIC = " 御中"
ORDER_DOCUMENT_PREFIX = "発注書_"


def build_order_item(item: dict) -> dict[str, Any]:
    """Order line from an estimate or payload line; amount = round(qty * cost)."""
    qty = to_number(item.get("qty"))
    cost = to_number(item.get("cost"))
    return {
        "category": item.get("category", ""),
        "product": item.get("product", ""),
        "spec": item.get("spec", ""),
        "qty": qty,
        "unit": item.get("unit", ""),
        "cost": cost,
        "amount": round_half_up(qty * cost),
    }


def _published_names(ctx) -> list[str]:
    if ctx.blobs is None:
        return []
    try:
        return list(ctx.blobs.list_files())
    except OSError as exc:
        logger.warning("Could not list published documents: %s", exc)
        return []


def list_orders(ctx) -> list[dict[str, Any]]:
    """Every order with totals and paid amounts, newest first (cached)."""
    def _compute():
        paid: dict[str, dict[str, Any]] = {}
        for payment in RecordStore.open(ctx, "payment").records():
            if text(payment.get("status")) == STATUS_CANCELLED:
                continue
            order_id = text(payment.get("order_id"))
            if not order_id:
                continue
            entry = paid.setdefault(order_id, {"total": 0, "count": 0})
            entry["total"] += parse_currency(payment.get("amount"))
            entry["count"] += 1

        projects = {
            r.id: plain_value(r.get("project"))
            for r in RecordStore.open(ctx, "estimate").records()
        }
        published = _published_names(ctx)

        orders = []
        for record in RecordStore.open(ctx, "order", display=True).records():
            vendor = record.get("vendor")
            marker = ORDER_DOCUMENT_PREFIX + clean_filename(vendor)
            p = paid.get(record.id, {"total": 0, "count": 0})
            orders.append({
                "id": record.id,
                "date": record.get("date"),
                "vendor": vendor,
                "estimate_id": record.get("estimate_id"),
                "project": projects.get(record.get("estimate_id"), ""),
                "location": record.get("location"),
                "status": record.get("status"),
                "remarks": record.get("remarks"),
                "creator": record.get("creator"),
                "visibility": record.get("visibility") or VISIBILITY_DEFAULT,
                "total_amount": sum(parse_currency(i.get("amount")) for i in record.items),
                "total_paid": p["total"],
                "payment_count": p["count"],
                "has_pdf": bool(vendor) and any(marker in name for name in published),
            })
        orders.sort(key=lambda o: sort_key_desc(o["date"]))
        return orders

    return ctx.cache.get_or_compute(ORDERS_KEY, CACHE_TTL_ORDERS, _compute)


def get_order(ctx, order_id: str) -> dict[str, Any] | None:
    """Order header (with estimate terms) and items, or None when missing."""
    record = RecordStore.open(ctx, "order").find(text(order_id))
    if record is None:
        return None

    header = {
        "id": record.id,
        "vendor": plain_value(record.get("vendor")),
        "date": format_sheet_date(record.get("date")),
        "estimate_id": plain_value(record.get("estimate_id")),
        "location": plain_value(record.get("location")),
        "remarks": plain_value(record.get("remarks")),
        "status": plain_value(record.get("status")),
        "project": "",
        "period": "",
        "payment": "",
        "expiry": "",
    }
    estimate = RecordStore.open(ctx, "estimate").find(text(header["estimate_id"]))
    if estimate is not None:
        for key in ("project", "period", "payment", "expiry"):
            header[key] = plain_value(estimate.get(key))
        if not header["location"]:
            header["location"] = plain_value(estimate.get("location"))

    items = [
        {
            "category": plain_value(i.get("category")),
            "product": plain_value(i.get("product")),
            "spec": plain_value(i.get("spec")),
            "qty": to_number(i.get("qty")),
            "unit": plain_value(i.get("unit")),
            "cost": to_number(i.get("cost")),
            "amount": parse_currency(i.get("amount")),
        }
        for i in record.items
    ]
    return {"header": header, "items": items, "total_amount": sum(i["amount"] for i in items)}


def find_order_by_estimate_and_vendor(ctx, estimate_id: str, vendor: str) -> dict[str, Any] | None:
    estimate_id, vendor = text(estimate_id), text(vendor)
    if not estimate_id or not vendor:
        return None
    for record in RecordStore.open(ctx, "order", display=True).records():
        if text(record.get("estimate_id")) == estimate_id and text(record.get("vendor")) == vendor:
            return get_order(ctx, record.id)
    return None


def save_order(ctx, payload: Any, *, user_email: str = "") -> WriteResult:
    """Create or fully rewrite one order run."""
    def _op() -> WriteResult:
        header, items = require_header(payload, container="order")
        vendor = text(header.get("vendor"))
        if not vendor:
            raise MalformedInput("vendor is required")
        lines = [build_order_item(i) for i in items if text(i.get("product"))]
        if not lines:
            raise MalformedInput("order has no items")

        order_id = text(header.get("id")) or next_order_id(ctx.sequences)
        RecordStore.open(ctx, "order").replace(Record(
            id=order_id,
            header={
                "date": text(header.get("date")) or ctx.timestamp(),
                "vendor": vendor,
                "estimate_id": text(header.get("estimate_id")),
                "location": header.get("location", ""),
                "status": header.get("status") or ORDER_STATUS_DEFAULT,
                "remarks": header.get("remarks", ""),
                "creator": user_email,
                "visibility": header.get("visibility") or VISIBILITY_DEFAULT,
            },
            items=lines,
        ))
        logger.info("Saved order %s (%s, %d items)", order_id, vendor, len(lines))
        return WriteResult.ok(order_id)

    return run_mutation(ctx, _op)


# =============================================================================
# Documents
# =============================================================================

def _order_document_data(ctx, header: dict, items: list[dict]) -> dict[str, Any]:
    return {
        "header": dict(header, vendor_display=f"{header.get('vendor', '')}{VENDOR_HONORIFIC}",
                       date=japanese_date(ctx.now())),
        "items": items,
        "total_amount": sum(to_number(i.get("amount")) for i in items),
        "pages": paginate_items(items, ORDER_FIRST_PAGE_ROWS, NEXT_PAGE_ROWS),
    }


def create_order_document(ctx, payload: Any, target_vendor: str) -> WriteResult:
    """
    Publish a purchase order for one vendor out of an estimate payload.

    Items are filtered by vendor; when no item names a vendor at all, every
    item is assigned to target_vendor.
    """
    try:
        header, items = require_header(payload, container="estimate")
    except MalformedInput as exc:
        return WriteResult.failed(str(exc), MALFORMED)
    target_vendor = text(target_vendor)

    if not any(text(i.get("vendor")) for i in items):
        items = [dict(i, vendor=target_vendor) for i in items]
    lines = [
        build_order_item(i) for i in items
        if text(i.get("vendor")) == target_vendor and text(i.get("product"))
    ]
    if not lines:
        return WriteResult.failed("指定された発注先の明細がありません。")

    doc_header = dict(header, vendor=target_vendor)
    try:
        url = publish_document(
            ctx,
            "order.html",
            _order_document_data(ctx, doc_header, lines),
            f"{ORDER_DOCUMENT_PREFIX}{target_vendor}_{header.get('project') or '案件'}",
        )
    except UpstreamFailure as exc:
        return WriteResult.failed(str(exc), UPSTREAM)
    ctx.cache.invalidate(ORDERS_KEY)
    return WriteResult.ok(url=url)


def reprint_order_document(ctx, order_id: str) -> WriteResult:
    order = get_order(ctx, order_id)
    if order is None:
        return WriteResult.failed("Not found", NOT_FOUND)
    header = order["header"]
    try:
        url = publish_document(
            ctx,
            "order.html",
            _order_document_data(ctx, header, order["items"]),
            f"{ORDER_DOCUMENT_PREFIX}{header['vendor']}_{header['id']}",
        )
    except UpstreamFailure as exc:
        return WriteResult.failed(str(exc), UPSTREAM, id=header["id"])
    ctx.cache.invalidate(ORDERS_KEY)
    return WriteResult.ok(header["id"], url=url)
