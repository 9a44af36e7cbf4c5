# Overview: Grid storage backends; named sheets addressed by 1-based rows and columns.

"""
Grid Storage

A grid store is a set of named sheets, each a rectangle of cells addressed
by 1-based (row, column). Services only ever see this interface, so the
same codec and aggregation code runs against an .xlsx workbook (openpyxl)
or an in-memory grid used by tests.

READ MODES:
- typed (display=False): cells come back as Python values (int, float,
  datetime, str). Empty cells are "".
- display (display=True): every cell is rendered to the string a user
  would see in the sheet ("2024/03/15", "1200", "TRUE").

MUTATIONS:
Every mutating call (set_range, append_row, delete_rows) is one round trip
against the store. MemoryGrid records them in `mutations` so callers that
promise a bounded number of store calls can be checked.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Sequence

from openpyxl import Workbook, load_workbook


logger = logging.getLogger(__name__)


class SheetNotFoundError(Exception):
    """Raised when a sheet is addressed that does not exist."""
    pass


def display_value(value: Any) -> str:
    """Render one typed cell the way the sheet displays it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        if value.hour or value.minute or value.second:
            return value.strftime("%Y/%m/%d %H:%M")
        return value.strftime("%Y/%m/%d")
    if isinstance(value, date):
        return value.strftime("%Y/%m/%d")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _typed_value(value: Any) -> Any:
    return "" if value is None else value


class GridStorage:
    """
    Base class for grid backends.

    Subclasses implement the primitive cell operations; the whole-sheet
    helpers (get_values, ensure_sheet) are built on top of them.
    """

    def sheet_names(self) -> list[str]:
        raise NotImplementedError

    def sheet_exists(self, sheet: str) -> bool:
        return sheet in self.sheet_names()

    def create_sheet(self, sheet: str) -> None:
        raise NotImplementedError

    def last_row(self, sheet: str) -> int:
        """Last 1-based row holding any non-empty cell (0 for an empty sheet)."""
        raise NotImplementedError

    def last_column(self, sheet: str) -> int:
        raise NotImplementedError

    def get_range(
        self,
        sheet: str,
        row: int,
        col: int,
        nrows: int,
        ncols: int,
        *,
        display: bool = False,
    ) -> list[list[Any]]:
        raise NotImplementedError

    def set_range(self, sheet: str, row: int, col: int, values: Sequence[Sequence[Any]]) -> None:
        raise NotImplementedError

    def append_row(self, sheet: str, values: Sequence[Any]) -> None:
        self.set_range(sheet, self.last_row(sheet) + 1, 1, [list(values)])

    def delete_rows(self, sheet: str, start: int, count: int) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        """Persist pending changes (no-op for backends without a file)."""
        return None

    # ---- derived helpers ----

    def get_values(self, sheet: str, *, display: bool = False) -> list[list[Any]]:
        """Whole used range of a sheet, padded to a rectangle."""
        if not self.sheet_exists(sheet):
            raise SheetNotFoundError(sheet)
        nrows = self.last_row(sheet)
        ncols = self.last_column(sheet)
        if nrows == 0 or ncols == 0:
            return []
        return self.get_range(sheet, 1, 1, nrows, ncols, display=display)

    def ensure_sheet(self, sheet: str, headers: Iterable[str] | None = None) -> bool:
        """
        Create the sheet if missing and write a header row into an empty sheet.

        Returns True when anything was created or written.
        """
        created = False
        if not self.sheet_exists(sheet):
            self.create_sheet(sheet)
            logger.info("Created sheet '%s'", sheet)
            created = True
        if headers is not None and self.last_row(sheet) == 0:
            self.set_range(sheet, 1, 1, [list(headers)])
            created = True
        return created


class MemoryGrid(GridStorage):
    """
    In-process grid, rows held as lists of typed values.

    Thread-safe; used by tests and by GRID_BACKEND=memory.
    """

    def __init__(self, sheets: dict[str, Sequence[Sequence[Any]]] | None = None):
        self._lock = threading.RLock()
        self._sheets: dict[str, list[list[Any]]] = {}
        self.mutations: list[tuple[str, str, int, int]] = []
        for name, rows in (sheets or {}).items():
            self._sheets[name] = [list(r) for r in rows]

    def sheet_names(self) -> list[str]:
        with self._lock:
            return list(self._sheets.keys())

    def create_sheet(self, sheet: str) -> None:
        with self._lock:
            self._sheets.setdefault(sheet, [])

    def _rows(self, sheet: str) -> list[list[Any]]:
        try:
            return self._sheets[sheet]
        except KeyError:
            raise SheetNotFoundError(sheet)

    @staticmethod
    def _is_blank(row: Sequence[Any]) -> bool:
        return all(v is None or v == "" for v in row)

    def last_row(self, sheet: str) -> int:
        with self._lock:
            rows = self._rows(sheet)
            for index in range(len(rows) - 1, -1, -1):
                if not self._is_blank(rows[index]):
                    return index + 1
            return 0

    def last_column(self, sheet: str) -> int:
        with self._lock:
            width = 0
            for row in self._rows(sheet):
                for index in range(len(row) - 1, -1, -1):
                    if row[index] is not None and row[index] != "":
                        width = max(width, index + 1)
                        break
            return width

    def get_range(self, sheet, row, col, nrows, ncols, *, display=False):
        if row < 1 or col < 1:
            raise ValueError("row and col are 1-based")
        render = display_value if display else _typed_value
        with self._lock:
            rows = self._rows(sheet)
            out = []
            for r in range(row - 1, row - 1 + nrows):
                source = rows[r] if r < len(rows) else []
                out.append([
                    render(source[c]) if c < len(source) else ""
                    for c in range(col - 1, col - 1 + ncols)
                ])
            return out

    def set_range(self, sheet, row, col, values):
        if row < 1 or col < 1:
            raise ValueError("row and col are 1-based")
        with self._lock:
            rows = self._rows(sheet)
            for offset, new_row in enumerate(values):
                r = row - 1 + offset
                while len(rows) <= r:
                    rows.append([])
                target = rows[r]
                needed = col - 1 + len(new_row)
                if len(target) < needed:
                    target.extend([""] * (needed - len(target)))
                for c, value in enumerate(new_row):
                    target[col - 1 + c] = value
            self.mutations.append(("set_range", sheet, row, len(values)))

    def delete_rows(self, sheet, start, count):
        if start < 1 or count < 1:
            raise ValueError("start must be >= 1 and count >= 1")
        with self._lock:
            rows = self._rows(sheet)
            del rows[start - 1:start - 1 + count]
            self.mutations.append(("delete_rows", sheet, start, count))


class WorkbookGrid(GridStorage):
    """
    Grid backed by an .xlsx workbook on disk.

    Each mutation is saved immediately unless autosave=False, in which case
    flush() writes the file.
    """

    def __init__(self, path: str | Path, *, autosave: bool = True):
        self.path = Path(path)
        self.autosave = autosave
        self._lock = threading.RLock()
        if self.path.exists():
            self._wb = load_workbook(self.path)
            logger.info("Loaded workbook '%s'", self.path)
        else:
            self._wb = Workbook()
            # A fresh Workbook carries one default sheet; sheets are created on demand.
            self._wb.remove(self._wb.active)
            logger.info("Starting new workbook at '%s'", self.path)

    def _ws(self, sheet: str):
        try:
            return self._wb[sheet]
        except KeyError:
            raise SheetNotFoundError(sheet)

    def _save(self) -> None:
        if self.autosave:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._wb.save(self.path)

    def sheet_names(self) -> list[str]:
        with self._lock:
            return list(self._wb.sheetnames)

    def create_sheet(self, sheet: str) -> None:
        with self._lock:
            if sheet not in self._wb.sheetnames:
                self._wb.create_sheet(title=sheet)
                self._save()

    def last_row(self, sheet: str) -> int:
        with self._lock:
            ws = self._ws(sheet)
            # max_row is 1 on an empty sheet and never shrinks below styled rows
            for r in range(ws.max_row, 0, -1):
                for cell in ws[r]:
                    if cell.value is not None and cell.value != "":
                        return r
            return 0

    def last_column(self, sheet: str) -> int:
        with self._lock:
            ws = self._ws(sheet)
            width = 0
            for row in ws.iter_rows(values_only=True):
                for index in range(len(row) - 1, -1, -1):
                    if row[index] is not None and row[index] != "":
                        width = max(width, index + 1)
                        break
            return width

    def get_range(self, sheet, row, col, nrows, ncols, *, display=False):
        if row < 1 or col < 1:
            raise ValueError("row and col are 1-based")
        if nrows <= 0 or ncols <= 0:
            return []
        render = display_value if display else _typed_value
        with self._lock:
            ws = self._ws(sheet)
            return [
                [render(v) for v in values]
                for values in ws.iter_rows(
                    min_row=row,
                    max_row=row + nrows - 1,
                    min_col=col,
                    max_col=col + ncols - 1,
                    values_only=True,
                )
            ]

    def set_range(self, sheet, row, col, values):
        if row < 1 or col < 1:
            raise ValueError("row and col are 1-based")
        with self._lock:
            ws = self._ws(sheet)
            for r_offset, new_row in enumerate(values):
                for c_offset, value in enumerate(new_row):
                    ws.cell(row=row + r_offset, column=col + c_offset, value=None if value == "" else value)
            self._save()

    def delete_rows(self, sheet, start, count):
        if start < 1 or count < 1:
            raise ValueError("start must be >= 1 and count >= 1")
        with self._lock:
            self._ws(sheet).delete_rows(start, count)
            self._save()


def plain_value(value: Any) -> Any:
    """JSON-safe form of a typed cell: dates become display text, None becomes ""."""
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return display_value(value)
    return value
