"""`default=` hook for json.dumps shared by log formatters, header rendering and the producer."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    Map values json can't encode to something it can.

    Dates become ISO 8601, bytes are decoded as UTF-8 with replacement
    characters, sets are sorted, enums give their value, plain objects give
    their __dict__. Anything else is str()'d.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).decode("utf-8", errors="replace")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if hasattr(obj, "__dict__"):
        return vars(obj)
    return str(obj)


__all__ = ["json_serializer"]
