# Overview: Grouped-record store; locate, append, replace and delete runs in one sheet.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

from .grid_storage import GridStorage
from .record_codec import Record, decode_runs, encode_runs
from .row_deleter import delete_rows
from .schema import RECORD_SCHEMAS, SheetSchema

if TYPE_CHECKING:
    from .context import LedgerContext


logger = logging.getLogger(__name__)


class RecordNotFound(LookupError):
    """Raised when no run carries the requested identifier."""
    pass


class RecordStore:
    """
    One grouped-record sheet opened for reading and/or mutation.

    The sheet is read lazily and re-read after every mutation, so row
    numbers handed to the deleter always reflect the current sheet.
    Mutations are expected to run under the store lock (see
    concurrency.run_mutation).
    """

    def __init__(self, grid: GridStorage, sheet: str, schema: SheetSchema, *, display: bool = False):
        self.grid = grid
        self.sheet = sheet
        self.schema = schema
        self.display = display
        self._rows: list[list[Any]] | None = None
        self._records: list[Record] | None = None
        self._bound = None

    @classmethod
    def open(cls, ctx: "LedgerContext", key: str, *, display: bool = False) -> "RecordStore":
        return cls(ctx.grid, ctx.settings.sheet(key), RECORD_SCHEMAS[key], display=display)

    # ---- reading ----

    def _load(self) -> None:
        if self._rows is not None:
            return
        if self.grid.sheet_exists(self.sheet):
            self._rows = self.grid.get_values(self.sheet, display=self.display)
        else:
            self._rows = []
        self._bound = self.schema.bind(self._rows)

    @property
    def bound(self):
        self._load()
        return self._bound

    def records(self) -> list[Record]:
        if self._records is None:
            self._load()
            self._records = decode_runs(self._rows, self._bound)
        return self._records

    def find(self, record_id: str) -> Record | None:
        record_id = str(record_id).strip()
        for record in self.records():
            if record.id == record_id:
                return record
        return None

    def get(self, record_id: str) -> Record:
        record = self.find(record_id)
        if record is None:
            raise RecordNotFound(f"{self.schema.name} '{record_id}' not found")
        return record

    def _invalidate(self) -> None:
        self._rows = None
        self._records = None
        self._bound = None

    # ---- mutation ----

    def ensure(self) -> None:
        """Create the sheet with its header row when missing or empty."""
        if self.grid.ensure_sheet(self.sheet, self.schema.titles()):
            self._invalidate()

    def append(self, records: Iterable[Record]) -> int:
        """Append runs after the last used row. Returns rows written."""
        records = list(records)
        if not records:
            return 0
        self.ensure()
        rows = encode_runs(records, self.bound)
        start = self.grid.last_row(self.sheet) + 1
        self.grid.set_range(self.sheet, start, 1, rows)
        self._invalidate()
        return len(rows)

    def delete_where(self, predicate: Callable[[Record], bool]) -> int:
        """Delete every run matching predicate in one coalesced pass. Returns runs removed."""
        doomed = [r for r in self.records() if predicate(r)]
        if not doomed:
            return 0
        delete_rows(self.grid, self.sheet, (n for r in doomed for n in r.row_numbers))
        self._invalidate()
        return len(doomed)

    def delete(self, record_id: str) -> bool:
        """Delete every run carrying record_id. False when none exists."""
        record_id = str(record_id).strip()
        removed = self.delete_where(lambda r: r.id == record_id)
        if removed:
            logger.debug("Deleted %d run(s) '%s' from '%s'", removed, record_id, self.sheet)
        return bool(removed)

    def replace(self, record: Record) -> None:
        """Full-run rewrite: delete any existing run(s) with the id, append the new run."""
        self.delete(record.id)
        self.append([record])

    def write_field(self, record_id: str, key: str, value: Any) -> None:
        """
        Narrow single-cell write on the first row of a run.

        Used for status-only updates; raises RecordNotFound.
        """
        record = self.get(record_id)
        column = self.bound.index(key) + 1
        self.grid.set_range(self.sheet, record.row_numbers[0], column, [[value]])
        self._invalidate()
