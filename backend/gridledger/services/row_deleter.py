# Overview: Contiguous-range row deletion; coalesces rows and deletes highest range first.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .grid_storage import GridStorage


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RowRange:
    start: int
    count: int

    @property
    def end(self) -> int:
        """Last row in the range (inclusive)."""
        return self.start + self.count - 1


def coalesce_ranges(row_numbers: Iterable[int]) -> list[RowRange]:
    """
    Merge row numbers into maximal runs of consecutive rows.

    Input order and duplicates do not matter: {7, 3, 4, 5, 9, 8} ->
    [RowRange(3, 3), RowRange(7, 3)].
    """
    ranges: list[RowRange] = []
    start = count = 0
    for n in sorted(set(row_numbers)):
        if n < 1:
            raise ValueError(f"row numbers are 1-based, got {n}")
        if count and n == start + count:
            count += 1
            continue
        if count:
            ranges.append(RowRange(start, count))
        start, count = n, 1
    if count:
        ranges.append(RowRange(start, count))
    return ranges


def delete_rows(grid: GridStorage, sheet: str, row_numbers: Iterable[int]) -> int:
    """
    Delete the given rows with one store call per contiguous range.

    Ranges are deleted from the bottom up so row numbers of ranges not yet
    processed stay valid. Returns the number of rows removed.
    """
    ranges = coalesce_ranges(row_numbers)
    for r in reversed(ranges):
        grid.delete_rows(sheet, r.start, r.count)
    removed = sum(r.count for r in ranges)
    if ranges:
        logger.debug("Deleted %d rows in %d ranges from '%s'", removed, len(ranges), sheet)
    return removed
