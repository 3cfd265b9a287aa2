"""
Deterministic hashing utilities.

Audit checksums must be reproducible on any platform: the same logical
entry always serializes to the same bytes.  Keys are sorted, separators are
fixed, and non-JSON types are reduced to strings in one canonical way.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any
from uuid import UUID


def decimal_text(value: Decimal) -> str:
    """Fixed-point, trailing zeros removed: Decimal("10.50") -> "10.5"."""
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        return decimal_text(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, tuple):
        return list(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    if isinstance(obj, PurePath):
        return obj.as_posix()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of Decimal, datetime, date, UUID and Enum
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_serializer,
    )


def to_json_native(data: Any) -> Any:
    """
    Reduce ``data`` to plain JSON types (dict, list, str, int, float, bool, None).

    Hashing the native form guarantees that an entry re-read from disk hashes
    to the same value it had when it was written.
    """
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
