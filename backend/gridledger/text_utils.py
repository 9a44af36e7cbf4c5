from __future__ import annotations

import math
import re
from typing import Any


_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９", "0123456789")
_NON_NUMERIC = re.compile(r"[^0-9.\-]+")
_NAME_SPACES = re.compile(r"[\s　]+")
_LEGAL_ENTITY = re.compile(r"株式会社|有限会社|合同会社")
_FILENAME_UNSAFE = re.compile(r'[\r\n\t\\/:*?"<>|]+')


def _normalize_number(num: float) -> int | float:
    if math.isnan(num) or math.isinf(num):
        return 0
    if float(num).is_integer():
        return int(num)
    return num


def parse_currency(value: Any) -> int | float:
    """
    Read a money cell that may be a number or formatted text.

    Full-width digits are folded to ASCII, then everything except digits,
    '.', and '-' is stripped ("¥1,234" -> 1234). Unparseable text is 0.
    """
    if value is None or value == "" or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return _normalize_number(float(value))

    cleaned = _NON_NUMERIC.sub("", str(value).translate(_FULLWIDTH_DIGITS))
    if not cleaned:
        return 0
    try:
        return _normalize_number(float(cleaned))
    except ValueError:
        return 0


def to_number(value: Any) -> int | float:
    """Plain numeric coercion for payload fields (no currency stripping)."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return _normalize_number(float(value))
    s = str(value).strip()
    if not s:
        return 0
    try:
        return _normalize_number(float(s))
    except ValueError:
        return 0


def to_half_width(text: str) -> str:
    """Fold full-width ASCII variants (U+FF01..U+FF5E) to their ASCII forms."""
    return "".join(
        chr(ord(ch) - 0xFEE0) if "！" <= ch <= "～" else ch
        for ch in text
    )


def normalize_name(value: Any) -> str:
    """Remove ASCII and ideographic whitespace for name comparisons."""
    if value is None:
        return ""
    return _NAME_SPACES.sub("", str(value))


def strip_legal_entity(value: Any) -> str:
    return _LEGAL_ENTITY.sub("", str(value or "")).strip()


def clean_filename(value: Any) -> str:
    return _FILENAME_UNSAFE.sub("", str(value or "")).strip()


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))
