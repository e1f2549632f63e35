"""
JSON-safe conversion for payloads stored in JSON columns.

Audit payloads, event contexts and notification contexts are persisted
as JSON.  Values are converted here, once, so every column holds plain
strings, numbers, lists and dicts.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def to_jsonable(value: Any) -> Any:
    """Recursively convert ``value`` to JSON-native types.

    Decimals become strings (never floats), UUIDs and dates their string
    form, enums their value, and tuples/sets lists.
    """
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    return str(value)
