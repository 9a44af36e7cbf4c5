# Overview: Master data reads; clients, vendors, unit-price catalog and estimate sets.

"""
Master Service

Master sheets are flat (one header row, one entry per row) and are read by
position:

    master_basic   品名 | 仕様 | 単位 | 単価
    master_client  元請名 | 工種 | 品名 | 仕様 | 単位 | 単価
    master_set     セット名 | 工種 | 品名 | 仕様 | 数量 | 単位 | 単価 | 金額 | 備考
    master_vendor  コード | 発注先名 | 敬称 | 口座

The unified product catalog merges four sources. The key is
"source_product_spec" and the first entry added under a key wins, so
master prices take precedence over history.
"""

from __future__ import annotations

import logging
from typing import Any

from ..text_utils import parse_currency, round_half_up, to_half_width, to_number
from ..validation import text
from .cache_service import CACHE_TTL, MASTERS_KEY, PRODUCTS_KEY
from .grid_storage import plain_value
from .record_store import RecordStore
from .schema import MASTER_HEADERS


logger = logging.getLogger(__name__)

HISTORY_LIMIT = 500

SOURCE_BASIC = "基本"
SOURCE_CLIENT_PREFIX = "元請:"
SOURCE_SET = "セット"
SOURCE_HISTORY = "履歴"


def _master_rows(ctx, key: str, *, display: bool = False) -> list[list[Any]]:
    """Data rows of a master sheet (header row dropped), padded to its width."""
    sheet = ctx.settings.sheet(key)
    if not ctx.grid.sheet_exists(sheet):
        return []
    width = len(MASTER_HEADERS[key])
    rows = ctx.grid.get_values(sheet, display=display)[1:]
    return [list(r) + [""] * (width - len(r)) for r in rows]


def ensure_master_sheets(ctx) -> list[str]:
    """Create missing master sheets with their header rows. Returns sheets touched."""
    touched = []
    for key, headers in MASTER_HEADERS.items():
        if ctx.grid.ensure_sheet(ctx.settings.sheet(key), headers):
            touched.append(ctx.settings.sheet(key))
    return touched


def _unique(values) -> list[Any]:
    seen: list[Any] = []
    for v in values:
        if v not in ("", None) and v not in seen:
            seen.append(v)
    return seen


def get_masters(ctx) -> dict[str, Any]:
    """Client names, set names and vendors (deduplicated by display name)."""
    def _compute():
        clients = _unique(plain_value(r[0]) for r in _master_rows(ctx, "master_client"))
        sets = _unique(plain_value(r[0]) for r in _master_rows(ctx, "master_set"))

        vendors: dict[str, dict[str, Any]] = {}
        for r in _master_rows(ctx, "master_vendor"):
            name = text(r[1])
            if not name:
                continue
            honorific = plain_value(r[2])
            display = f"{name} {honorific}" if honorific else name
            vendors[display] = {
                "name": name,
                "honorific": honorific,
                "display_name": display,
                "account": plain_value(r[3]),
            }
        return {"clients": clients, "sets": sets, "vendors": list(vendors.values())}

    return ctx.cache.get_or_compute(MASTERS_KEY, CACHE_TTL, _compute)


def _set_unit_price(price, amount, qty) -> int | float:
    if price:
        return price
    if qty > 0 and amount > 0:
        return round_half_up(amount / qty)
    return 0


def unified_products(ctx) -> list[dict[str, Any]]:
    """Product catalog from basic, client and set masters plus estimate history."""
    def _compute():
        products: dict[str, dict[str, Any]] = {}

        def add(item: dict[str, Any], source: str) -> None:
            key = f"{source}_{item['product']}_{item.get('spec') or ''}".strip()
            if not item["product"] or key in products:
                return
            item["source"] = source
            products[key] = item

        for r in _master_rows(ctx, "master_basic"):
            if r[0]:
                add({"category": "-", "product": plain_value(r[0]), "spec": plain_value(r[1]),
                     "unit": plain_value(r[2]), "price": parse_currency(r[3])}, SOURCE_BASIC)

        for r in _master_rows(ctx, "master_client"):
            if r[2]:
                add({"category": plain_value(r[1]), "product": plain_value(r[2]), "spec": plain_value(r[3]),
                     "unit": plain_value(r[4]), "price": parse_currency(r[5])},
                    f"{SOURCE_CLIENT_PREFIX}{plain_value(r[0])}")

        for r in _master_rows(ctx, "master_set"):
            if r[2]:
                price = parse_currency(r[6])
                price = price if price > 0 else _set_unit_price(0, parse_currency(r[7]), to_number(r[4]))
                add({"category": plain_value(r[1]), "product": plain_value(r[2]), "spec": plain_value(r[3]),
                     "unit": plain_value(r[5]), "price": price}, SOURCE_SET)

        lines = [item for record in RecordStore.open(ctx, "estimate").records() for item in record.items]
        for item in reversed(lines[-HISTORY_LIMIT:]):
            if item.get("product") and item.get("price") not in ("", None):
                add({"category": plain_value(item.get("category")), "product": plain_value(item.get("product")),
                     "spec": plain_value(item.get("spec")), "unit": plain_value(item.get("unit")),
                     "price": parse_currency(item.get("price"))}, SOURCE_HISTORY)

        return list(products.values())

    return ctx.cache.get_or_compute(PRODUCTS_KEY, CACHE_TTL, _compute)


def search_sets(ctx, keyword: str = "") -> list[dict[str, Any]]:
    """Sets whose name contains every keyword (case/width-insensitive), with totals."""
    keywords = to_half_width(keyword or "").lower().split()
    found: dict[str, dict[str, Any]] = {}
    for r in _master_rows(ctx, "master_set", display=True):
        name = r[0]
        if not name:
            continue
        lowered = name.lower()
        if keywords and not all(k in lowered for k in keywords):
            continue
        entry = found.setdefault(name, {"name": name, "first_item": r[2], "total_price": 0, "count": 0})
        entry["count"] += 1
        price, amount, qty = parse_currency(r[6]), parse_currency(r[7]), parse_currency(r[4])
        entry["total_price"] += amount if amount > 0 else price * qty
    return [s for s in found.values() if s["total_price"] > 0]


def set_details(ctx, name: str) -> list[dict[str, Any]]:
    """Line items of one set, with unit price or amount derived when blank."""
    items = []
    for r in _master_rows(ctx, "master_set"):
        if plain_value(r[0]) != name:
            continue
        qty = to_number(r[4])
        price = _set_unit_price(parse_currency(r[6]), parse_currency(r[7]), qty)
        amount = parse_currency(r[7])
        # Negative amounts (discount lines) are kept as written
        if amount == 0:
            amount = round_half_up(qty * price)
        items.append({
            "category": plain_value(r[1]),
            "product": plain_value(r[2]),
            "spec": plain_value(r[3]),
            "qty": qty,
            "unit": plain_value(r[5]),
            "price": price,
            "amount": amount,
            "remarks": plain_value(r[8]),
        })
    return items
