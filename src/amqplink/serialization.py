"""
Wire codec for message payloads.

Payloads travel as UTF-8 JSON objects. Values that JSON cannot represent
natively are converted on the way out:

- UUID: string form
- datetime/date: ISO 8601 string
- Decimal: string form, preserving precision
- Enum: the member's value

Decoding returns the plain JSON object; converting strings back to UUIDs or
datetimes is the handler's responsibility.
"""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# Reserved field stamped by the publisher (epoch milliseconds)
TIMESTAMP_FIELD = "timestamp"


class PayloadJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime, Decimal and Enum values.

    Example:
        >>> json.dumps({"id": uuid4(), "at": datetime.now(UTC)}, cls=PayloadJSONEncoder)
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def stamp(data: Mapping[str, Any], timestamp_ms: int | None = None) -> dict[str, Any]:
    """
    Return a copy of ``data`` with the reserved ``timestamp`` field set.

    The caller's mapping is left untouched. An existing ``timestamp`` key is
    overwritten.

    Raises:
        TypeError: If data is not a mapping
    """
    if not isinstance(data, Mapping):
        raise TypeError(f"Message payload must be a mapping, got {type(data).__name__}")
    message = dict(data)
    message[TIMESTAMP_FIELD] = now_ms() if timestamp_ms is None else timestamp_ms
    return message


def encode(message: Mapping[str, Any]) -> bytes:
    """
    Serialize a payload to UTF-8 JSON bytes.

    Raises:
        TypeError, ValueError: If a value cannot be represented
    """
    return json.dumps(message, cls=PayloadJSONEncoder, ensure_ascii=False).encode("utf-8")


def decode(body: bytes) -> dict[str, Any]:
    """
    Parse UTF-8 JSON bytes into a payload object.

    Raises:
        ValueError: If the bytes are not UTF-8, not JSON, nested too deeply to
            parse, or not a JSON object
    """
    text = body.decode("utf-8")
    try:
        value = json.loads(text)
    except RecursionError as e:
        raise ValueError("JSON document is nested too deeply") from e
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value


__all__ = [
    "PayloadJSONEncoder",
    "TIMESTAMP_FIELD",
    "decode",
    "encode",
    "now_ms",
    "stamp",
]
