"""
Lenient instant parsing for caller-supplied count dates.

Accepts ``datetime``, ``date`` and ISO-8601 strings (``2025-01-01``,
``2025-06-30T08:00:00Z``).  Date-only values are midnight UTC; naive
datetimes are taken as UTC.  Everything comes back timezone-aware.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any


def parse_instant(value: Any) -> datetime:
    """
    Parse ``value`` into a timezone-aware UTC ``datetime``.

    Raises:
        ValueError: if ``value`` is missing or not a recognizable date.
    """
    if value is None:
        raise ValueError("date is missing")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"Cannot parse date from {type(value).__name__}")

    text = value.strip()
    if not text:
        raise ValueError("date is empty")
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    if len(text) == 10:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    return parse_instant(datetime.fromisoformat(text))


def try_parse_instant(value: Any) -> datetime | None:
    """``parse_instant`` that returns None instead of raising."""
    try:
        return parse_instant(value)
    except (TypeError, ValueError):
        return None


def format_instant(value: datetime | None) -> str | None:
    """ISO-8601 with a ``Z`` suffix for UTC, as the documents store it."""
    if value is None:
        return None
    text = value.astimezone(timezone.utc).isoformat()
    return text.replace("+00:00", "Z")


def days_between(start: datetime, end: datetime) -> float:
    """Signed span in fractional days."""
    return (end - start).total_seconds() / 86400
