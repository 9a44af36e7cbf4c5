# Overview: Monthly journal builder; configurable column mapping over per-counterparty totals, CSV export.

"""
Journal Service

CONFIGURATION SHEET (flat, one output column per row):
    A name | B source | C fixed value | D ordinal | E type (売上/仕入/共通)
    G sales counterparties | H purchase counterparties   (one name per row)

Columns are ordered by ordinal (missing ordinal sorts as 999). Typed
"共通" columns belong to both sides.

AGGREGATION for one year/month:
- purchase: invoices with an accepted status (amount, offset) and
  non-cancelled payments bucketed by payment type, per supplier
- sales: billed/completed estimates (line totals) and non-cancelled
  deposits bucketed by deposit type, per client
When a counterparty list is configured only those names are emitted (in
list order, zero rows included); otherwise every observed name is.

SOURCE TAGS:
    fixed       the configured fixed value
    date        "yyyy/MM"
    amount      period total
    offset      offset total (purchase side only; "" on the sales side)
    cash / check / bill / transfer / other
    cash_check  cash + check
    supplier / client   the counterparty name
    anything else       ""

Purchase rows come first, then sales rows.
"""

from __future__ import annotations

import base64
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..text_utils import parse_currency, to_number
from ..time_utils import parse_sheet_date
from ..validation import parse_year_month, text
from .concurrency import WriteResult
from .record_store import RecordStore
from .schema import JOURNAL_CONFIG_HEADERS


logger = logging.getLogger(__name__)

TYPE_SALES = "売上"
TYPE_PURCHASE = "仕入"
TYPE_COMMON = "共通"
MISSING_ORDINAL = 999

INVOICE_ACCEPTED = ("確認済", "支払済")
ESTIMATE_BILLED = ("請求済", "完了")
STATUS_CANCELLED = "取消"

PAYMENT_TYPES = {
    "現金": "cash",
    "小切手": "check",
    "手形": "bill",
    "振込": "transfer",
}
PAYMENT_TYPE_OFFSET = "相殺"

EMPTY = "empty"
EMPTY_MESSAGE = "対象データがありません"
BOM = "\ufeff"

DEFAULT_JOURNAL_CONFIG = [
    ["取引先名", "client", "", 1, TYPE_SALES],
    ["前月繰越", "fixed", "0", 2, TYPE_SALES],
    ["当月発生高", "amount", "", 3, TYPE_SALES],
    ["当月値引割引高", "fixed", "0", 4, TYPE_SALES],
    ["現金・小切手(入金・支払)高", "cash_check", "", 5, TYPE_SALES],
    ["手　形", "bill", "", 6, TYPE_SALES],
    ["相　殺", "fixed", "0", 7, TYPE_SALES],
    ["振込料", "fixed", "0", 8, TYPE_SALES],
    ["その他", "other", "", 9, TYPE_SALES],
    ["翌月繰越高", "fixed", "0", 10, TYPE_SALES],
    ["取引先名", "supplier", "", 1, TYPE_PURCHASE],
    ["前月繰越", "fixed", "0", 2, TYPE_PURCHASE],
    ["当月発生高", "amount", "", 3, TYPE_PURCHASE],
    ["当月値引割引高", "fixed", "0", 4, TYPE_PURCHASE],
    ["現金・小切手(入金・支払)高", "cash_check", "", 5, TYPE_PURCHASE],
    ["手　形", "bill", "", 6, TYPE_PURCHASE],
    ["相　殺", "offset", "", 7, TYPE_PURCHASE],
    ["振込料", "fixed", "0", 8, TYPE_PURCHASE],
    ["その他", "other", "", 9, TYPE_PURCHASE],
    ["翌月繰越高", "fixed", "0", 10, TYPE_PURCHASE],
]


@dataclass(frozen=True)
class JournalColumn:
    name: str
    source: str
    fixed: str = ""
    ordinal: int | float = MISSING_ORDINAL
    type: str = TYPE_SALES

    @property
    def key(self) -> tuple:
        return (self.name, self.ordinal)


@dataclass
class JournalConfig:
    columns: list[JournalColumn] = field(default_factory=list)
    sales_clients: list[str] = field(default_factory=list)
    purchase_suppliers: list[str] = field(default_factory=list)

    def _side(self, side_type: str) -> list[JournalColumn]:
        cols = [c for c in self.columns if c.type in (side_type, TYPE_COMMON)]
        return sorted(cols, key=lambda c: c.ordinal)

    @property
    def sales_columns(self) -> list[JournalColumn]:
        return self._side(TYPE_SALES)

    @property
    def purchase_columns(self) -> list[JournalColumn]:
        return self._side(TYPE_PURCHASE)

    def header_columns(self, include_sales: bool, include_purchases: bool) -> list[JournalColumn]:
        if include_sales and include_purchases:
            sales = self.sales_columns
            seen = {c.key for c in sales}
            return sales + [c for c in self.purchase_columns if c.key not in seen]
        if include_purchases:
            return self.purchase_columns
        return self.sales_columns

    @classmethod
    def from_rows(cls, rows: list[list[Any]]) -> "JournalConfig":
        """Parse the config sheet (header row first) as display text."""
        config = cls()
        for raw in rows[1:]:
            r = [text(v) for v in raw] + [""] * (8 - len(raw))
            if r[0]:
                ordinal = to_number(r[3]) or MISSING_ORDINAL
                config.columns.append(JournalColumn(r[0], r[1], r[2], ordinal, r[4]))
            if r[6]:
                config.sales_clients.append(r[6])
            if r[7]:
                config.purchase_suppliers.append(r[7])
        return config


def _config_seeded(ctx, sheet: str) -> bool:
    return ctx.grid.sheet_exists(sheet) and ctx.grid.last_row(sheet) > 1


def seed_journal_config(ctx) -> bool:
    """
    Create and seed the journal config sheet when missing or header-only.

    The caller holds the store lock.
    """
    sheet = ctx.settings.sheet("journal_config")
    if _config_seeded(ctx, sheet):
        return False
    ctx.grid.ensure_sheet(sheet, JOURNAL_CONFIG_HEADERS)
    ctx.grid.set_range(sheet, 2, 1, DEFAULT_JOURNAL_CONFIG)
    logger.info("Seeded journal configuration in '%s'", sheet)
    return True


def load_journal_config(ctx) -> JournalConfig:
    """Read the config sheet; an unseeded sheet reads as the default rows. Never writes."""
    sheet = ctx.settings.sheet("journal_config")
    if not _config_seeded(ctx, sheet):
        return JournalConfig.from_rows([JOURNAL_CONFIG_HEADERS] + DEFAULT_JOURNAL_CONFIG)
    return JournalConfig.from_rows(ctx.grid.get_values(sheet, display=True))


# =============================================================================
# Aggregation
# =============================================================================

def _new_totals(with_offset: bool) -> dict[str, Any]:
    totals = {"amount": 0, "cash": 0, "check": 0, "bill": 0, "transfer": 0, "other": 0}
    if with_offset:
        totals["offset"] = 0
    return totals


class _Aggregator:
    """Per-counterparty totals restricted to a configured name list when one exists."""

    def __init__(self, names: list[str], *, with_offset: bool):
        self.names = names
        self.with_offset = with_offset
        self.totals: dict[str, dict[str, Any]] = {n: _new_totals(with_offset) for n in names}

    def entry(self, name: str) -> dict[str, Any] | None:
        if name not in self.totals:
            if self.names:
                return None
            self.totals[name] = _new_totals(self.with_offset)
        return self.totals[name]

    def targets(self) -> list[str]:
        return self.names if self.names else list(self.totals.keys())


def _in_month(value: Any, year: int, month: int) -> bool:
    dt = parse_sheet_date(value)
    return dt is not None and dt.year == year and dt.month == month


def _bucket_cash(entry: dict[str, Any], kind: str, amount, offset) -> None:
    bucket = PAYMENT_TYPES.get(kind)
    if bucket:
        entry[bucket] += amount
    elif kind == PAYMENT_TYPE_OFFSET and "offset" in entry:
        entry["offset"] += offset
    else:
        entry["other"] += amount


def _purchase_totals(ctx, config: JournalConfig, year: int, month: int) -> _Aggregator:
    agg = _Aggregator(config.purchase_suppliers, with_offset=True)
    for inv in RecordStore.open(ctx, "invoice").records():
        if text(inv.get("status")) not in INVOICE_ACCEPTED:
            continue
        if not _in_month(inv.get("date") or inv.get("registered_at"), year, month):
            continue
        entry = agg.entry(text(inv.get("supplier")))
        if entry is None:
            continue
        entry["amount"] += parse_currency(inv.get("amount"))
        entry["offset"] += parse_currency(inv.get("offset"))

    for pay in RecordStore.open(ctx, "payment").records():
        if text(pay.get("status")) == STATUS_CANCELLED:
            continue
        if not _in_month(pay.get("date"), year, month):
            continue
        entry = agg.entry(text(pay.get("supplier")))
        if entry is None:
            continue
        _bucket_cash(entry, text(pay.get("type")), parse_currency(pay.get("amount")),
                     parse_currency(pay.get("offset")))
    return agg


def _sales_totals(ctx, config: JournalConfig, year: int, month: int) -> _Aggregator:
    agg = _Aggregator(config.sales_clients, with_offset=False)
    for est in RecordStore.open(ctx, "estimate").records():
        if text(est.get("status")) not in ESTIMATE_BILLED:
            continue
        if not _in_month(est.get("date"), year, month):
            continue
        entry = agg.entry(text(est.get("client")))
        if entry is None:
            continue
        entry["amount"] += sum(parse_currency(i.get("amount")) for i in est.items)

    for dep in RecordStore.open(ctx, "deposit").records():
        if text(dep.get("status")) == STATUS_CANCELLED:
            continue
        if not _in_month(dep.get("date"), year, month):
            continue
        entry = agg.entry(text(dep.get("client")))
        if entry is None:
            continue
        _bucket_cash(entry, text(dep.get("type")), parse_currency(dep.get("amount")), 0)
    return agg


def _resolve(column: JournalColumn, totals: dict[str, Any], name: str, year: int, month: int) -> Any:
    source = column.source
    if source == "fixed":
        return column.fixed
    if source == "date":
        return f"{year}/{month:02d}"
    if source in ("supplier", "client"):
        return name
    if source == "cash_check":
        return totals["cash"] + totals["check"]
    if source in totals:
        return totals[source]
    return ""


def _rows(agg: _Aggregator, columns: list[JournalColumn], year: int, month: int) -> list[list[Any]]:
    rows = []
    for name in agg.targets():
        totals = agg.totals.get(name) or _new_totals(agg.with_offset)
        rows.append([_resolve(c, totals, name, year, month) for c in columns])
    return rows


def preview_journal(ctx, year: Any, month: Any, *, include_sales: bool = True,
                    include_purchases: bool = True) -> dict[str, Any]:
    """Headers and rows of the monthly journal without rendering it."""
    year, month = parse_year_month(year, month)
    config = load_journal_config(ctx)
    headers = [c.name for c in config.header_columns(include_sales, include_purchases)]

    rows: list[list[Any]] = []
    if include_purchases:
        rows.extend(_rows(_purchase_totals(ctx, config, year, month), config.purchase_columns, year, month))
    if include_sales:
        rows.extend(_rows(_sales_totals(ctx, config, year, month), config.sales_columns, year, month))
    return {"headers": headers, "rows": rows}


# =============================================================================
# Export
# =============================================================================

def render_csv(headers: Iterable[Any], rows: Iterable[Iterable[Any]]) -> str:
    """Every field quoted, quotes doubled, CRLF between lines, BOM first."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(["" if v is None else v for v in headers])
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return BOM + buf.getvalue()[:-2]


def journal_filename(year: int, month: int) -> str:
    return f"集計表_{year}年{month}月.csv"


def export_journal(ctx, year: Any, month: Any, *, include_sales: bool = True,
                   include_purchases: bool = True) -> WriteResult:
    """
    Build the journal CSV as base64 (UTF-8 with BOM).

    No rows is a reported condition (reason "empty"), not an error.
    """
    preview = preview_journal(ctx, year, month, include_sales=include_sales,
                              include_purchases=include_purchases)
    y, m = parse_year_month(year, month)
    if not preview["rows"]:
        return WriteResult.failed(EMPTY_MESSAGE, EMPTY)
    content = render_csv(preview["headers"], preview["rows"])
    logger.info("Exported journal %d/%02d (%d rows)", y, m, len(preview["rows"]))
    return WriteResult.ok(
        data=base64.b64encode(content.encode("utf-8")).decode("ascii"),
        filename=journal_filename(y, m),
        count=len(preview["rows"]),
    )


def journal_years(ctx) -> list[int]:
    """Years present in invoice, deposit and payment dates, newest first."""
    years: set[int] = set()
    for key in ("invoice", "deposit", "payment"):
        for record in RecordStore.open(ctx, key).records():
            dt = parse_sheet_date(record.get("date") or record.get("registered_at"))
            if dt is not None:
                years.add(dt.year)
    if not years:
        years.add(ctx.now().year)
    return sorted(years, reverse=True)
