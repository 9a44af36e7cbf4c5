from __future__ import annotations

from typing import Any


class MalformedInput(ValueError):
    """400-level payload problem; nothing is written."""


def require_mapping(payload: Any, *, name: str = "payload") -> dict:
    if not isinstance(payload, dict):
        raise MalformedInput(f"Invalid {name}")
    return payload


def require_header(payload: Any, *, container: str | None = None) -> tuple[dict, list]:
    """
    Pull the {header, items} pair out of a save payload.

    `container` names an optional wrapper key, e.g. {"estimate": {header, items}}.
    """
    body = require_mapping(payload)
    if container and container in body:
        body = body[container]
    if not isinstance(body, dict):
        raise MalformedInput("Invalid Data Structure")

    header = body.get("header")
    if not isinstance(header, dict):
        raise MalformedInput("Invalid Data Structure")

    items = body.get("items")
    if items is None:
        items = []
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise MalformedInput("items must be a list of objects")

    return header, items


def text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_year_month(year: Any, month: Any) -> tuple[int, int]:
    try:
        y = int(year)
        m = int(month)
    except (TypeError, ValueError):
        raise MalformedInput("year and month must be integers")
    if not 1 <= m <= 12:
        raise MalformedInput("month must be between 1 and 12")
    if y < 1900 or y > 9999:
        raise MalformedInput("year is out of range")
    return y, m


TRUE_WORDS = ("1", "true", "yes", "on")
FALSE_WORDS = ("0", "false", "no", "off", "")


def parse_flag(value: Any, default: bool, *, name: str = "flag") -> bool:
    """JSON booleans pass through; "true"/"false" style strings and 0/1 are accepted."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise MalformedInput(f"{name} must be true or false")
