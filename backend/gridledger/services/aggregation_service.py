# Overview: Cross-store aggregation; project summaries, vendor balances, monthly analysis and project ledgers.

"""
Aggregation Service

Joins the grouped-record stores by loose foreign keys:

    estimate.id  <- order.estimate_id
                 <- invoice.construction_id
                 <- deposit.estimate_id
    order.id     <- payment.order_id

KEY MATCHING (per join, kept as each view has always matched):
- project summaries and the project ledger: exact, or "starts with id-"
  (sub-identifiers of an estimate roll up to it)
- vendor balance: any foreign key starting with the construction id
- an empty foreign key never matches

Counterparty names in the vendor balance are compared after removing all
whitespace, by substring containment in either direction. Two distinct
vendors whose names contain one another are merged; there is no alias
table to disambiguate them.

All reads are best-effort: non-numeric cells count as 0 and dangling
references contribute nothing.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from ..text_utils import normalize_name, parse_currency
from ..time_utils import format_sheet_date, japanese_date, parse_sheet_date, sort_key_desc
from ..validation import MalformedInput, text
from .cache_service import CACHE_TTL_SHORT, PROJECTS_KEY, analysis_key
from .concurrency import NOT_FOUND, UPSTREAM, WriteResult
from .document_service import publish_document
from .estimate_service import STATUS_UNSET, VISIBILITY_DEFAULT, get_estimate, items_total
from .grid_storage import plain_value
from .inference_service import UpstreamFailure
from .invoice_service import invoice_payment
from .record_store import RecordStore


logger = logging.getLogger(__name__)

STATUS_CANCELLED = "取消"
UNKNOWN_CLIENT = "(不明)"
RANKING_SIZE = 10


def matches_parent(foreign_key: Any, parent_id: str) -> bool:
    """Exact match, or a sub-identifier of parent_id ("<parent_id>-...")."""
    fk = text(foreign_key)
    if not fk or not parent_id:
        return False
    return fk == parent_id or fk.startswith(parent_id + "-")


def _parent_candidates(foreign_key: str) -> Iterable[str]:
    """foreign_key itself, then each shorter "-"-delimited prefix of it."""
    candidate = foreign_key
    while candidate:
        yield candidate
        if "-" not in candidate:
            break
        candidate = candidate.rsplit("-", 1)[0]


def _resolve_parent(foreign_key: Any, parent_ids: set[str]) -> str | None:
    fk = text(foreign_key)
    if not fk:
        return None
    for candidate in _parent_candidates(fk):
        if candidate in parent_ids:
            return candidate
    return None


def _bump(summary: dict[str, dict[str, Any]], key: str, total_field: str, count_field: str, amount) -> None:
    entry = summary.setdefault(key, {total_field: 0, count_field: 0})
    entry[total_field] += amount
    entry[count_field] += 1


# =============================================================================
# Project summaries
# =============================================================================

def _build_project_summaries(ctx) -> list[dict[str, Any]]:
    """One summary per estimate, in store order (dates left typed)."""
    estimates = RecordStore.open(ctx, "estimate").records()
    ids = {r.id for r in estimates}

    orders: dict[str, dict[str, Any]] = {}
    for order in RecordStore.open(ctx, "order", display=True).records():
        parent = _resolve_parent(order.get("estimate_id"), ids)
        if parent is not None:
            amount = sum(parse_currency(i.get("amount")) for i in order.items)
            _bump(orders, parent, "total", "count", amount)

    invoices: dict[str, dict[str, Any]] = {}
    for invoice in RecordStore.open(ctx, "invoice", display=True).records():
        parent = _resolve_parent(invoice.get("construction_id"), ids)
        if parent is not None:
            _bump(invoices, parent, "total", "count", invoice_payment(invoice))

    deposits: dict[str, dict[str, Any]] = {}
    for deposit in RecordStore.open(ctx, "deposit", display=True).records():
        if text(deposit.get("status")) == STATUS_CANCELLED:
            continue
        parent = _resolve_parent(deposit.get("estimate_id"), ids)
        if parent is not None:
            _bump(deposits, parent, "total", "count", parse_currency(deposit.get("amount")))

    empty = {"total": 0, "count": 0}
    summaries = []
    for record in estimates:
        o = orders.get(record.id, empty)
        i = invoices.get(record.id, empty)
        d = deposits.get(record.id, empty)
        summaries.append({
            "id": record.id,
            "date": record.get("date"),
            "client": plain_value(record.get("client")),
            "project": plain_value(record.get("project")),
            "location": plain_value(record.get("location")),
            "status": plain_value(record.get("status")) or STATUS_UNSET,
            "visibility": plain_value(record.get("visibility")) or VISIBILITY_DEFAULT,
            "total_amount": items_total(record),
            "total_order_amount": o["total"],
            "order_count": o["count"],
            "total_invoiced_amount": i["total"],
            "invoice_count": i["count"],
            "total_deposit": d["total"],
            "deposit_count": d["count"],
        })
    return summaries


def project_summaries(ctx) -> list[dict[str, Any]]:
    """Per-estimate sales, cost, invoiced and deposited totals, newest first (cached)."""
    def _compute():
        summaries = _build_project_summaries(ctx)
        summaries.sort(key=lambda s: sort_key_desc(s["date"]))
        for s in summaries:
            s["date"] = format_sheet_date(s["date"])
        return summaries

    return ctx.cache.get_or_compute(PROJECTS_KEY, CACHE_TTL_SHORT, _compute)


# =============================================================================
# Vendor balance
# =============================================================================

def _names_match(a: str, b: str) -> bool:
    return a in b or b in a


def vendor_balance(ctx, construction_id: str, supplier: str) -> dict[str, Any]:
    """Ordered minus invoiced amount for one vendor on one construction id."""
    cid = text(construction_id)
    target = normalize_name(supplier)
    total_order = 0
    total_paid = 0
    if not cid or not target:
        return {"total_order": 0, "total_paid": 0, "balance": 0}

    for order in RecordStore.open(ctx, "order", display=True).records():
        fk = text(order.get("estimate_id"))
        vendor = normalize_name(order.get("vendor"))
        if fk.startswith(cid) and vendor and _names_match(vendor, target):
            total_order += sum(parse_currency(i.get("amount")) for i in order.items)

    for invoice in RecordStore.open(ctx, "invoice", display=True).records():
        fk = text(invoice.get("construction_id"))
        vendor = normalize_name(invoice.get("supplier"))
        if fk.startswith(cid) and vendor and _names_match(vendor, target):
            total_paid += invoice_payment(invoice)

    return {"total_order": total_order, "total_paid": total_paid, "balance": total_order - total_paid}


# =============================================================================
# Monthly analysis
# =============================================================================

def monthly_analysis(ctx, year: Any) -> dict[str, Any]:
    """Sales, cost and profit per month of `year`, plus the top clients by sales (cached)."""
    try:
        year = int(year)
    except (TypeError, ValueError):
        raise MalformedInput("year must be an integer")

    def _compute():
        monthly = [{"sales": 0, "cost": 0, "profit": 0} for _ in range(12)]
        clients: dict[str, dict[str, Any]] = {}
        for summary in _build_project_summaries(ctx):
            dt = parse_sheet_date(summary["date"])
            if dt is None or dt.year != year:
                continue
            sales = summary["total_amount"]
            cost = summary["total_order_amount"]
            profit = sales - cost
            bucket = monthly[dt.month - 1]
            bucket["sales"] += sales
            bucket["cost"] += cost
            bucket["profit"] += profit

            name = summary["client"] or UNKNOWN_CLIENT
            entry = clients.setdefault(name, {"name": name, "sales": 0, "profit": 0, "count": 0})
            entry["sales"] += sales
            entry["profit"] += profit
            entry["count"] += 1

        # sorted() is stable: equal sales keep first-seen order
        ranking = sorted(clients.values(), key=lambda c: c["sales"], reverse=True)[:RANKING_SIZE]
        return {"monthly": monthly, "ranking": ranking}

    return ctx.cache.get_or_compute(analysis_key(year), CACHE_TTL_SHORT, _compute)


# =============================================================================
# Project ledger
# =============================================================================

def profit_rate(profit, sales) -> float:
    """profit / sales as a percentage, one decimal, halves rounded up; 0 without sales."""
    if not sales:
        return 0
    rate = Decimal(str(profit)) * 100 / Decimal(str(sales))
    return float(rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def project_ledger(ctx, estimate_id: str) -> dict[str, Any]:
    """Full join of one estimate with its orders, invoices, deposits and payments."""
    estimate_id = text(estimate_id)
    estimate = get_estimate(ctx, estimate_id) if estimate_id else None
    header = estimate["header"] if estimate else {}
    sales = estimate["total_amount"] if estimate else 0

    orders = []
    order_ids = set()
    for order in RecordStore.open(ctx, "order", display=True).records():
        if not matches_parent(order.get("estimate_id"), estimate_id):
            continue
        order_ids.add(order.id)
        for item in order.items:
            orders.append({
                "date": order.get("date"),
                "vendor": order.get("vendor"),
                "item": f"{item.get('product', '')} {item.get('spec', '')}",
                "amount": parse_currency(item.get("amount")),
            })

    invoices = [
        {
            "date": inv.get("date") or inv.get("registered_at"),
            "vendor": inv.get("supplier"),
            "item": inv.get("content"),
            "amount": invoice_payment(inv),
        }
        for inv in RecordStore.open(ctx, "invoice", display=True).records()
        if matches_parent(inv.get("construction_id"), estimate_id)
    ]

    deposits = []
    for dep in RecordStore.open(ctx, "deposit", display=True).records():
        if not matches_parent(dep.get("estimate_id"), estimate_id):
            continue
        if text(dep.get("status")) == STATUS_CANCELLED:
            continue
        deposits.append({
            "date": dep.get("date"),
            "client": dep.get("client"),
            "type": dep.get("type"),
            "amount": parse_currency(dep.get("amount")),
            "fee": parse_currency(dep.get("fee")),
            "remarks": dep.get("remarks"),
        })

    project_names = {text(header.get("project")), text(header.get("client"))} - {""}
    payments = []
    for pay in RecordStore.open(ctx, "payment", display=True).records():
        if text(pay.get("status")) == STATUS_CANCELLED:
            continue
        by_order = text(pay.get("order_id")) in order_ids
        by_project = text(pay.get("project")) in project_names
        if not (by_order or by_project):
            continue
        payments.append({
            "date": pay.get("date"),
            "supplier": pay.get("supplier"),
            "type": pay.get("type"),
            "amount": parse_currency(pay.get("amount")),
            "fee": parse_currency(pay.get("fee")),
            "remarks": pay.get("remarks"),
        })

    total_order = sum(o["amount"] for o in orders)
    profit = sales - total_order
    return {
        "project": header,
        "sales": sales,
        "total_order": total_order,
        "total_payment": sum(i["amount"] for i in invoices),
        "profit": profit,
        "profit_rate": profit_rate(profit, sales),
        "orders": orders,
        "invoices": invoices,
        "deposits": deposits,
        "total_deposit": sum(d["amount"] for d in deposits),
        "payments": payments,
        "total_withdrawal": sum(p["amount"] for p in payments),
    }


def publish_ledger(ctx, estimate_id: str) -> WriteResult:
    """Render the project ledger document for one estimate."""
    ledger = project_ledger(ctx, estimate_id)
    if not ledger["project"]:
        return WriteResult.failed("Not found", NOT_FOUND)
    data = dict(ledger, print_date=japanese_date(ctx.now()))
    try:
        url = publish_document(ctx, "ledger.html", data, f"工事台帳_{ledger['project'].get('project', '')}")
    except UpstreamFailure as exc:
        return WriteResult.failed(str(exc), UPSTREAM, id=text(estimate_id))
    return WriteResult.ok(text(estimate_id), url=url)
