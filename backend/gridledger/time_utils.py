from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional


SHEET_DATE_FORMAT = "%Y/%m/%d"
SHEET_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M"

_PARSE_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m",
)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_sheet_date(value: Any) -> Optional[datetime]:
    """
    Interpret a grid cell as a datetime.

    - datetime / date cells are returned as naive datetimes
    - "yyyy/MM/dd", "yyyy/MM/dd HH:mm", ISO-8601 strings are parsed
    - anything else (blank, numbers, free text) -> None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    for fmt in _PARSE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt.replace(tzinfo=None)


def format_sheet_date(value: Any) -> str:
    """Format as yyyy/MM/dd; unparseable values are passed through as text."""
    if value is None or value == "":
        return ""
    dt = parse_sheet_date(value)
    if dt is None:
        return str(value)
    return dt.strftime(SHEET_DATE_FORMAT)


def format_timestamp(dt: datetime) -> str:
    return dt.strftime(SHEET_TIMESTAMP_FORMAT)


def japanese_date(dt: datetime) -> str:
    """
    Render a date in the Japanese era calendar used on printed documents.

    Dates from May 2019 onward use Reiwa (first year written as 元).
    """
    if dt.year > 2019 or (dt.year == 2019 and dt.month >= 5):
        era_year = dt.year - 2018
        label = "元" if era_year == 1 else str(era_year)
        return f"令和{label}年{dt.month}月{dt.day}日"
    return dt.strftime("%Y年%m月%d日")


def sort_key_desc(value: Any) -> float:
    """Sort key for newest-first listings; undated rows sort last."""
    dt = parse_sheet_date(value)
    if dt is None:
        return float("inf")
    return -dt.timestamp() if dt.tzinfo else -dt.replace(tzinfo=timezone.utc).timestamp()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
