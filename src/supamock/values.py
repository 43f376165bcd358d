"""
Supamock - Value model.

Rows are plain JSON values. ValueKind tags each value so the filter
compiler and the pipeline can branch on it with `match` instead of probing
types ad hoc.
"""

import json
import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ValueKind(Enum):
    """Tag of a JSON value."""

    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


def kind_of(value: Any) -> ValueKind:
    """Tag a value. Anything that is not JSON-shaped is treated as a string."""
    match value:
        case None:
            return ValueKind.NULL
        case bool():
            return ValueKind.BOOLEAN
        case int() | float():
            return ValueKind.NUMBER
        case list() | tuple():
            return ValueKind.SEQUENCE
        case dict():
            return ValueKind.MAPPING
        case _:
            return ValueKind.STRING


def to_text(value: Any) -> str:
    """
    Stringify a value the way it travels in a query string.

    Booleans and null use their JSON spelling, integral floats keep their
    decimal point, containers become compact JSON.
    """
    match kind_of(value):
        case ValueKind.NULL:
            return "null"
        case ValueKind.BOOLEAN:
            return "true" if value else "false"
        case ValueKind.NUMBER:
            return repr(value) if isinstance(value, float) else str(value)
        case ValueKind.SEQUENCE | ValueKind.MAPPING:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        case _:
            return str(value)


# =============================================================================
# Literal parsing
# =============================================================================

_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_SHORT_OFFSET = re.compile(r"([+-]\d{2})$")
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_instant(text: Any) -> datetime | None:
    """
    Parse an ISO-8601 date or date-time. Naive values are taken as UTC.

    Only strings that start with YYYY-MM-DD qualify, so plain numbers are
    never mistaken for compact dates.
    """
    if not isinstance(text, str) or not _DATE_PREFIX.match(text):
        return None
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    elif len(candidate) > 10:
        # Postgres prints offsets as +00 or +0530
        candidate = _COMPACT_OFFSET.sub(r"\1:\2", candidate)
        candidate = _SHORT_OFFSET.sub(r"\1:00", candidate)
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_number(text: Any) -> int | float | None:
    """Parse an int or finite float; booleans are not numbers."""
    if isinstance(text, bool) or text is None:
        return None
    if isinstance(text, (int, float)):
        return text
    if not isinstance(text, str):
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


# =============================================================================
# Ordering
# =============================================================================

_RANK_BOOLEAN = 0
_RANK_NUMBER = 1
_RANK_INSTANT = 2
_RANK_STRING = 3
_RANK_CONTAINER = 4


def sort_key(value: Any) -> tuple:
    """
    Total ordering key for non-null values of mixed types.

    Numbers order by magnitude and date strings by instant, so columns of
    either kind never fall back to lexical ordering.
    """
    match kind_of(value):
        case ValueKind.BOOLEAN:
            return (_RANK_BOOLEAN, value)
        case ValueKind.NUMBER:
            return (_RANK_NUMBER, value)
        case ValueKind.STRING:
            instant = parse_instant(value)
            if instant is not None:
                return (_RANK_INSTANT, instant.timestamp())
            return (_RANK_STRING, value)
        case _:
            return (_RANK_CONTAINER, to_text(value))
