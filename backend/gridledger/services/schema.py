# Overview: Typed sheet schemas; resolves column positions from header titles once per store open.

"""
Sheet Schemas

Each grouped-record store has a fixed column layout. Columns are declared
once here with their stored header title and a scope:

- HEADER: record-level field, written on the first row of a run only
- ITEM:   line-item field, written on every row of a run
- REPEAT: record-level field that is also written on every row of a run
          (orders carry vendor / estimate id / date / location / status on
          each line). Decoding always reads it from the first row.

Columns may be reordered in the sheet by hand. bind() looks for the header
row within the first HEADER_SCAN_ROWS rows (a leading metadata row is
allowed), maps titles to positions, and falls back to the declared position
for any title it cannot find.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from .grid_storage import display_value


HEADER = "header"
ITEM = "item"
REPEAT = "repeat"

HEADER_SCAN_ROWS = 10


class SchemaError(Exception):
    """Raised when a schema is declared inconsistently."""
    pass


@dataclass(frozen=True)
class Column:
    key: str
    title: str
    scope: str = HEADER


@dataclass(frozen=True)
class SheetSchema:
    name: str
    columns: tuple[Column, ...]
    id_key: str = "id"
    required_item_key: str | None = None
    # Extra header-row cells beyond the columns (free-form config areas)
    extra_titles: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        keys = [c.key for c in self.columns]
        if len(keys) != len(set(keys)):
            raise SchemaError(f"duplicate column keys in schema '{self.name}'")
        if self.id_key not in keys:
            raise SchemaError(f"schema '{self.name}' has no '{self.id_key}' column")
        if self.required_item_key and self.required_item_key not in keys:
            raise SchemaError(f"schema '{self.name}' has no '{self.required_item_key}' column")

    @property
    def width(self) -> int:
        return len(self.columns)

    def titles(self) -> list[str]:
        return [c.title for c in self.columns] + list(self.extra_titles)

    def column(self, key: str) -> Column:
        for c in self.columns:
            if c.key == key:
                return c
        raise SchemaError(f"unknown column '{key}' in schema '{self.name}'")

    def keys(self, *scopes: str) -> list[str]:
        return [c.key for c in self.columns if c.key != self.id_key and c.scope in scopes]

    @property
    def id_title(self) -> str:
        return self.column(self.id_key).title

    def bind(self, rows: Sequence[Sequence[Any]]) -> "BoundSchema":
        """Resolve column positions against the sheet's actual header row."""
        header_index = 0
        for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
            if row and display_value(row[0]).strip() == self.id_title:
                header_index = i
                break

        titles: dict[str, int] = {}
        if rows:
            for i, cell in enumerate(rows[header_index]):
                t = display_value(cell).strip()
                if t and t not in titles:
                    titles[t] = i

        positions = {
            c.key: titles.get(c.title, default)
            for default, c in enumerate(self.columns)
        }
        data_offset = header_index + 1 if rows else 1
        return BoundSchema(self, positions, data_offset)


class BoundSchema:
    """Named accessors over raw rows for one opened sheet."""

    def __init__(self, schema: SheetSchema, positions: dict[str, int], data_offset: int):
        self.schema = schema
        self.positions = positions
        # Index into the sheet's row list of the first data row
        self.data_offset = data_offset
        self.width = max(max(positions.values()) + 1, schema.width)

    def index(self, key: str) -> int:
        return self.positions[key]

    def cell(self, row: Sequence[Any], key: str) -> Any:
        i = self.positions[key]
        if i >= len(row):
            return ""
        value = row[i]
        return "" if value is None else value

    def text(self, row: Sequence[Any], key: str) -> str:
        return display_value(self.cell(row, key)).strip()

    def blank_row(self) -> list[Any]:
        return [""] * self.width

    def put(self, row: list[Any], key: str, value: Any) -> None:
        row[self.positions[key]] = "" if value is None else value


# =============================================================================
# Store layouts
# =============================================================================

ESTIMATE_SCHEMA = SheetSchema(
    name="estimate",
    columns=(
        Column("id", "ID"),
        Column("date", "日付"),
        Column("client", "取引先"),
        Column("category", "工種", ITEM),
        Column("product", "品名", ITEM),
        Column("spec", "仕様", ITEM),
        Column("qty", "数量", ITEM),
        Column("unit", "単位", ITEM),
        Column("cost", "原価", ITEM),
        Column("price", "単価", ITEM),
        Column("amount", "金額", ITEM),
        Column("remarks", "備考", ITEM),
        Column("location", "場所"),
        Column("project", "工事名"),
        Column("period", "工期"),
        Column("payment", "支払条件"),
        Column("expiry", "有効期限"),
        Column("status", "状態"),
        Column("vendor", "発注先", ITEM),
        Column("visibility", "公開範囲"),
    ),
    required_item_key="product",
)

ORDER_SCHEMA = SheetSchema(
    name="order",
    columns=(
        Column("id", "ID"),
        Column("date", "日付", REPEAT),
        Column("vendor", "発注先", REPEAT),
        Column("estimate_id", "関連見積ID", REPEAT),
        Column("category", "工種", ITEM),
        Column("product", "品名", ITEM),
        Column("spec", "仕様", ITEM),
        Column("qty", "数量", ITEM),
        Column("unit", "単位", ITEM),
        Column("cost", "単価", ITEM),
        Column("amount", "金額", ITEM),
        Column("location", "納品場所", REPEAT),
        Column("status", "状態", REPEAT),
        Column("remarks", "備考"),
        Column("creator", "作成者", REPEAT),
        Column("visibility", "公開範囲", REPEAT),
    ),
    required_item_key="product",
)

INVOICE_SCHEMA = SheetSchema(
    name="invoice",
    columns=(
        Column("id", "ID"),
        Column("status", "ステータス"),
        Column("registered_at", "登録日時"),
        Column("file_id", "ファイルID"),
        Column("construction_id", "工事ID"),
        Column("project", "工事名"),
        Column("supplier", "請求元"),
        Column("date", "請求日"),
        Column("amount", "請求金額"),
        Column("offset", "相殺額"),
        Column("payment", "支払予定額"),
        Column("content", "内容"),
        Column("remarks", "備考"),
        Column("registration_number", "登録番号"),
    ),
)

DEPOSIT_SCHEMA = SheetSchema(
    name="deposit",
    columns=(
        Column("id", "ID"),
        Column("registered_at", "登録日時"),
        Column("date", "入金日"),
        Column("estimate_id", "関連見積ID"),
        Column("client", "取引先名"),
        Column("project", "工事名"),
        Column("type", "入金種別"),
        Column("amount", "入金金額"),
        Column("fee", "振込手数料"),
        Column("offset", "相殺金額"),
        Column("remarks", "備考"),
        Column("status", "ステータス"),
        Column("registrant", "登録者"),
        Column("visibility", "公開範囲"),
    ),
)

PAYMENT_SCHEMA = SheetSchema(
    name="payment",
    columns=(
        Column("id", "ID"),
        Column("registered_at", "登録日時"),
        Column("date", "出金日"),
        Column("order_id", "関連発注ID"),
        Column("invoice_id", "関連請求書ID"),
        Column("supplier", "支払先名"),
        Column("project", "工事名"),
        Column("type", "出金種別"),
        Column("amount", "出金金額"),
        Column("fee", "振込手数料"),
        Column("offset", "相殺金額"),
        Column("remarks", "備考"),
        Column("status", "ステータス"),
        Column("registrant", "登録者"),
        Column("visibility", "公開範囲"),
    ),
)

# Grouped stores, in the order a by-id delete sweeps them
RECORD_SCHEMAS: dict[str, SheetSchema] = {
    "estimate": ESTIMATE_SCHEMA,
    "order": ORDER_SCHEMA,
    "invoice": INVOICE_SCHEMA,
    "deposit": DEPOSIT_SCHEMA,
    "payment": PAYMENT_SCHEMA,
}


# Flat master / configuration sheets (header row + one row per entry)
JOURNAL_CONFIG_HEADERS = [
    "出力項目名(CSVヘッダー)",
    "データソース",
    "固定値/フォーマット/デフォルト",
    "順序",
    "タイプ(仕入/売上/共通)",
    "",
    "【集計対象 取引先名 (売上)】",
    "【集計対象 取引先名 (仕入)】",
]

MASTER_HEADERS: dict[str, list[str]] = {
    "master_basic": ["品名", "仕様", "単位", "単価"],
    "master_client": ["元請名", "工種", "品名", "仕様", "単位", "単価"],
    "master_set": ["セット名", "工種", "品名", "仕様", "数量", "単位", "単価", "金額", "備考"],
    "master_vendor": ["コード", "発注先名", "敬称", "口座"],
}
