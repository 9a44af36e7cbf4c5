# Overview: Grouped-record codec; one logical record <-> a contiguous run of grid rows.

"""
Grouped-Record Codec

A record is stored as a run of rows:

    ID        | header fields | item fields (item 1)
    (blank)   | (blank)       | item fields (item 2)
    (blank)   | (blank)       | item fields (item 3)

The run ends at the next non-empty ID cell or at the end of data. This is
the ONLY module that looks at blank ID cells; everything above it works
with Record objects.

RULES:
- A row contributes a line item only when the schema's required item field
  (e.g. product) is non-empty. Blank trailing rows stay inside the run (they
  are deleted with it) but are not items.
- Encoding a record with zero items writes one placeholder blank item so
  the header row exists.
- A row whose ID cell repeats the ID header title is a stray header row:
  it closes the current run and belongs to no record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .schema import BoundSchema, HEADER, ITEM, REPEAT


@dataclass
class Record:
    id: str
    header: dict[str, Any] = field(default_factory=dict)
    items: list[dict[str, Any]] = field(default_factory=list)
    # 1-based sheet rows occupied by this run (set by decode_runs)
    row_numbers: list[int] = field(default_factory=list, compare=False, repr=False)

    def get(self, key: str, default: Any = "") -> Any:
        if key == "id":
            return self.id
        value = self.header.get(key, default)
        return default if value is None else value


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def decode_runs(rows: Sequence[Sequence[Any]], bound: BoundSchema) -> list[Record]:
    """
    Group sheet rows into records.

    `rows` is the full sheet (header area included); row numbers are taken
    as 1-based positions in this list.
    """
    schema = bound.schema
    header_keys = schema.keys(HEADER, REPEAT)
    item_keys = schema.keys(ITEM)
    required = schema.required_item_key
    id_title = schema.id_title

    records: list[Record] = []
    current: Record | None = None

    for offset in range(bound.data_offset, len(rows)):
        row = rows[offset]
        record_id = bound.text(row, schema.id_key)

        if record_id == id_title:
            current = None
            continue

        if record_id:
            current = Record(
                id=record_id,
                header={k: bound.cell(row, k) for k in header_keys},
            )
            records.append(current)

        if current is None:
            continue

        current.row_numbers.append(offset + 1)
        if required and _present(bound.cell(row, required)):
            current.items.append({k: bound.cell(row, k) for k in item_keys})

    return records


def encode_record(record: Record, bound: BoundSchema) -> list[list[Any]]:
    schema = bound.schema
    items = record.items or [dict.fromkeys(schema.keys(ITEM), "")]

    rows: list[list[Any]] = []
    for index, item in enumerate(items):
        first = index == 0
        row = bound.blank_row()
        if first:
            bound.put(row, schema.id_key, record.id)
        for column in schema.columns:
            if column.key == schema.id_key:
                continue
            if column.scope == ITEM:
                bound.put(row, column.key, item.get(column.key, ""))
            elif first or column.scope == REPEAT:
                bound.put(row, column.key, record.header.get(column.key, ""))
        rows.append(row)
    return rows


def encode_runs(records: Iterable[Record], bound: BoundSchema) -> list[list[Any]]:
    rows: list[list[Any]] = []
    for record in records:
        rows.extend(encode_record(record, bound))
    return rows
