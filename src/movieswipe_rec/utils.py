"""Helpers for reading loosely-typed movie records."""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def pick(record: dict | None, *keys: str):
    """First present value among alternative spellings of a field (snake_case, camelCase)."""
    if not record:
        return None
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def get_list(record: dict | None, field: str, *aliases: str) -> list:
    """
    Return a list-valued field of a movie record, tolerating malformed data.

    Missing or None fields become [], JSON-encoded lists (as stored in SQLite)
    are decoded, and a bare string is treated as a single-item list. Aliases
    are tried in order when the field itself is missing.
    """
    value = pick(record, field, *aliases)
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v is not None and v != ""]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                decoded = json.loads(stripped)
            except json.JSONDecodeError:
                logger.debug(f"Malformed JSON list in field '{field}': {stripped[:50]}")
                return []
            return [v for v in decoded if v is not None and v != ""] if isinstance(decoded, list) else []
        return [stripped]
    return []


def parse_year(value: Any) -> int | None:
    """Coerce a year value ("2019", 2019, "2019-05-01", "Unknown") to int or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value or None
    if isinstance(value, float):
        return int(value) or None
    if isinstance(value, str):
        head = value.strip()[:4]
        if head.isdigit():
            return int(head) or None
    return None


def parse_number(value: Any) -> float | None:
    """Coerce a numeric field to float; None when missing or not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_id(value: Any) -> str:
    """
    String form of a movie id for comparisons.

    Ids arrive as ints from the provider and as strings from the store; 42,
    42.0 and "42" all compare equal.
    """
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
