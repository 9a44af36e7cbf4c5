# Overview: Estimate operations; save with derived orders, lookups, drafts, bills and price prediction.

"""
Estimate Service

SAVE FLOW (single store-lock section):
1. Mint an estimate id when the payload has none.
2. Delete the existing run for that id (update = full rewrite).
3. Append the new run stamped "yyyy/MM/dd HH:mm".
4. Delete every order run whose estimate id equals the saved id.
5. Re-derive one order run per distinct item vendor (items with a vendor
   and cost > 0 or qty > 0), each with a freshly minted order id.

Order amounts are round(qty * cost).
"""

from __future__ import annotations

import logging
from typing import Any

from ..text_utils import clean_filename, parse_currency, strip_legal_entity, to_number
from ..time_utils import format_sheet_date, japanese_date, parse_sheet_date
from ..validation import MalformedInput, require_header, text
from .cache_service import ACTIVE_PROJECTS_KEY, CACHE_TTL_SHORT
from .concurrency import NOT_FOUND, UPSTREAM, WriteResult, run_mutation
from .document_service import ESTIMATE_FIRST_PAGE_ROWS, NEXT_PAGE_ROWS, paginate_items, publish_document
from .grid_storage import plain_value
from .inference_service import UpstreamFailure
from .order_service import ORDER_STATUS_DEFAULT, build_order_item
from .record_codec import Record
from .record_store import RecordStore
from .sequence_service import next_estimate_id, next_order_id


logger = logging.getLogger(__name__)

STATUS_DEFAULT = "見積提出"
STATUS_BILLED = "請求済"
STATUS_COMPLETED = "完了"
STATUS_LOST = "失注"
STATUS_UNSET = "未作成"
VISIBILITY_DEFAULT = "public"

CLOSED_STATUSES = (STATUS_COMPLETED, STATUS_LOST)

HEADER_FIELDS = ("client", "location", "project", "period", "payment", "expiry")
ITEM_FIELDS = ("category", "product", "spec", "qty", "unit", "cost", "price", "amount", "remarks", "vendor")

PRICE_HISTORY_LINES = 50


def items_total(record: Record) -> int | float:
    return sum(parse_currency(item.get("amount")) for item in record.items)


def _header_view(record: Record) -> dict[str, Any]:
    return {
        "id": record.id,
        "date": format_sheet_date(record.get("date")),
        "client": plain_value(record.get("client")),
        "location": plain_value(record.get("location")),
        "project": plain_value(record.get("project")),
        "period": plain_value(record.get("period")),
        "payment": plain_value(record.get("payment")),
        "expiry": plain_value(record.get("expiry")),
        "status": plain_value(record.get("status")),
        "visibility": plain_value(record.get("visibility")) or VISIBILITY_DEFAULT,
    }


def _ordered_by_item(ctx, estimate_id: str) -> dict[str, dict[str, Any]]:
    """Ordered qty / amount / vendor names per "product_spec" for one estimate."""
    agg: dict[str, dict[str, Any]] = {}
    for order in RecordStore.open(ctx, "order", display=True).records():
        if text(order.get("estimate_id")) != estimate_id:
            continue
        vendor = strip_legal_entity(order.get("vendor"))
        for item in order.items:
            key = f"{item.get('product', '')}_{item.get('spec', '')}"
            entry = agg.setdefault(key, {"qty": 0, "amount": 0, "vendors": []})
            entry["qty"] += parse_currency(item.get("qty"))
            entry["amount"] += parse_currency(item.get("amount"))
            if vendor and vendor not in entry["vendors"]:
                entry["vendors"].append(vendor)
    return agg


def get_estimate(ctx, estimate_id: str) -> dict[str, Any] | None:
    """Header + items (with ordered quantities) for one estimate, or None."""
    estimate_id = text(estimate_id)
    record = RecordStore.open(ctx, "estimate").find(estimate_id)
    if record is None:
        return None

    ordered = _ordered_by_item(ctx, estimate_id)
    items = []
    for item in record.items:
        key = f"{plain_value(item.get('product'))}_{plain_value(item.get('spec'))}"
        o = ordered.get(key, {"qty": 0, "amount": 0, "vendors": []})
        items.append({
            "category": plain_value(item.get("category")),
            "product": plain_value(item.get("product")),
            "spec": plain_value(item.get("spec")),
            "qty": to_number(item.get("qty")),
            "unit": plain_value(item.get("unit")),
            "cost": to_number(item.get("cost")),
            "price": to_number(item.get("price")),
            "amount": parse_currency(item.get("amount")),
            "remarks": plain_value(item.get("remarks")),
            "vendor": plain_value(item.get("vendor")),
            "ordered_qty": o["qty"],
            "ordered_amount": o["amount"],
            "ordered_vendors": ", ".join(o["vendors"]),
        })

    header = _header_view(record)
    header["remarks"] = items[0]["remarks"] if items else ""
    return {
        "header": header,
        "items": items,
        "total_amount": sum(i["amount"] for i in items),
    }


def list_drafts(ctx) -> list[dict[str, Any]]:
    """Every estimate with its line total, newest first."""
    drafts = []
    for record in RecordStore.open(ctx, "estimate").records():
        stamp = parse_sheet_date(record.get("date"))
        drafts.append({
            "id": record.id,
            "date": format_sheet_date(record.get("date")),
            "client": plain_value(record.get("client")),
            "project": plain_value(record.get("project")),
            "status": plain_value(record.get("status")),
            "total_amount": items_total(record),
            "_ts": stamp.timestamp() if stamp else 0,
        })
    drafts.sort(key=lambda d: d["_ts"], reverse=True)
    for d in drafts:
        del d["_ts"]
    return drafts


def list_active_projects(ctx) -> list[dict[str, Any]]:
    """Estimates not completed or lost, most recently added first (cached)."""
    def _compute():
        projects = []
        for record in RecordStore.open(ctx, "estimate").records():
            if text(record.get("status")) in CLOSED_STATUSES:
                continue
            client = plain_value(record.get("client"))
            project = plain_value(record.get("project"))
            projects.append({"id": record.id, "name": f"{client} {project}", "client": client, "project": project})
        projects.reverse()
        return projects

    return ctx.cache.get_or_compute(ACTIVE_PROJECTS_KEY, CACHE_TTL_SHORT, _compute)


def client_history(ctx, client: str) -> list[dict[str, Any]]:
    """Past estimates for one client (display values), most recent first."""
    client = text(client)
    if not client:
        return []
    history = []
    for record in RecordStore.open(ctx, "estimate", display=True).records():
        if record.get("client") != client:
            continue
        history.append({
            "header": {
                "id": record.id,
                "date": record.get("date"),
                "client": record.get("client"),
                "project": record.get("project"),
                "location": record.get("location"),
                "payment": record.get("payment"),
                "status": record.get("status"),
            },
            "items": [
                {k: item.get(k, "") for k in ("category", "product", "spec", "qty", "unit", "cost", "price", "amount")}
                for item in record.items
            ],
        })
    history.reverse()
    return history


# =============================================================================
# Writes
# =============================================================================

def _derive_orders(ctx, estimate_id: str, header: dict, items: list[dict], stamp: str, user_email: str) -> list[Record]:
    groups: dict[str, list[dict]] = {}
    for item in items:
        vendor = text(item.get("vendor"))
        if vendor and (to_number(item.get("cost")) > 0 or to_number(item.get("qty")) > 0):
            groups.setdefault(vendor, []).append(item)

    orders = []
    for vendor, vendor_items in groups.items():
        orders.append(Record(
            id=next_order_id(ctx.sequences),
            header={
                "date": stamp,
                "vendor": vendor,
                "estimate_id": estimate_id,
                "location": header.get("location", ""),
                "status": ORDER_STATUS_DEFAULT,
                "remarks": "",
                "creator": user_email,
                "visibility": VISIBILITY_DEFAULT,
            },
            items=[build_order_item(item) for item in vendor_items],
        ))
    return orders


def save_estimate(ctx, payload: Any, *, user_email: str = "") -> WriteResult:
    """Create or fully rewrite an estimate and re-derive its orders."""
    def _op() -> WriteResult:
        header, items = require_header(payload, container="estimate")

        estimate_id = text(header.get("id")) or next_estimate_id(ctx.sequences)
        stamp = ctx.timestamp()

        estimates = RecordStore.open(ctx, "estimate")
        estimates.delete(estimate_id)
        record_header = {k: header.get(k, "") for k in HEADER_FIELDS}
        record_header.update(
            date=stamp,
            status=header.get("status") or STATUS_DEFAULT,
            visibility=header.get("visibility") or VISIBILITY_DEFAULT,
        )
        estimates.append([Record(
            id=estimate_id,
            header=record_header,
            items=[{k: item.get(k, "") for k in ITEM_FIELDS} for item in items],
        )])

        orders = RecordStore.open(ctx, "order")
        removed = orders.delete_where(lambda r: text(r.get("estimate_id")) == estimate_id)
        derived = _derive_orders(ctx, estimate_id, header, items, stamp, user_email)
        orders.append(derived)

        logger.info("Saved estimate %s (%d items, %d orders replaced by %d)",
                    estimate_id, len(items), removed, len(derived))
        return WriteResult.ok(estimate_id)

    return run_mutation(ctx, _op)


def _document_data(ctx, header: dict, items: list[dict]) -> dict[str, Any]:
    return {
        "header": dict(header, date=japanese_date(ctx.now())),
        "items": items,
        "total_amount": sum(to_number(i.get("amount")) for i in items),
        "pages": paginate_items(items, ESTIMATE_FIRST_PAGE_ROWS, NEXT_PAGE_ROWS),
    }


def save_estimate_document(ctx, payload: Any, *, user_email: str = "") -> WriteResult:
    """Save the estimate, then publish its quote document."""
    result = save_estimate(ctx, payload, user_email=user_email)
    if not result.success:
        return result

    header, items = require_header(payload, container="estimate")
    header = dict(header, id=result.id)
    try:
        url = publish_document(
            ctx,
            "estimate.html",
            _document_data(ctx, header, items),
            f"御見積書_{clean_filename(header.get('client'))}_{header.get('project') or result.id}",
        )
    except UpstreamFailure as exc:
        return WriteResult.failed(str(exc), UPSTREAM, id=result.id)
    return WriteResult.ok(result.id, url=url)


def issue_bill(ctx, estimate_id: str) -> WriteResult:
    """Mark the estimate billed (narrow status write), then publish the bill."""
    estimate_id = text(estimate_id)

    def _op() -> WriteResult:
        RecordStore.open(ctx, "estimate").write_field(estimate_id, "status", STATUS_BILLED)
        return WriteResult.ok(estimate_id)

    result = run_mutation(ctx, _op)
    if not result.success:
        return result

    estimate = get_estimate(ctx, estimate_id)
    if estimate is None:
        return WriteResult.failed("Not found", NOT_FOUND)
    try:
        url = publish_document(
            ctx,
            "bill.html",
            _document_data(ctx, estimate["header"], estimate["items"]),
            f"御請求書_{estimate['header']['client']}_{estimate['header']['project']}",
        )
    except UpstreamFailure as exc:
        return WriteResult.failed(str(exc), UPSTREAM, id=estimate_id)
    return WriteResult.ok(estimate_id, url=url)


# =============================================================================
# Inference
# =============================================================================

def predict_unit_price(ctx, product: str, spec: str = "") -> dict[str, Any]:
    """
    Ask the inference API for a unit price given recent priced estimate lines.

    Raises UpstreamFailure when inference is unavailable or fails.
    """
    if not text(product):
        raise MalformedInput("product is required")
    if ctx.inference is None:
        raise UpstreamFailure("Inference API is not configured")

    history: list[str] = []
    for record in reversed(RecordStore.open(ctx, "estimate").records()):
        for item in reversed(record.items):
            if item.get("product") and item.get("price") not in ("", None):
                history.append(
                    f"品名:{item.get('product')} | 仕様:{item.get('spec', '')} | "
                    f"単価:{item.get('price')} | 単位:{item.get('unit', '')}"
                )
            if len(history) >= PRICE_HISTORY_LINES:
                break
        if len(history) >= PRICE_HISTORY_LINES:
            break

    prompt = (
        "あなたは建築積算のプロです。以下の過去実績を参考に、新しい項目の適正単価(数値のみ)を予測してください。\n"
        f"【過去実績】\n{chr(10).join(history)}\n"
        f"【対象】\n品名: {product}\n仕様: {spec}\n"
        "回答は数値(円)のみ。予測不能なら0。"
    )
    outcome = ctx.inference.generate(prompt)
    outcome.raise_for_status()
    return {"price": parse_currency(outcome.text)}
