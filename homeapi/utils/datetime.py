"""Datetime helpers.

All timestamps are timezone-aware UTC. They are persisted as ISO 8601
strings so that lexical order matches chronological order.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO 8601 with microseconds and a ``Z`` suffix.

    Used in sort keys, where every timestamp must have the same width.
    """
    naive = ensure_utc(value).replace(tzinfo=None)
    return naive.isoformat(timespec="microseconds") + "Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the value is not ISO 8601
    """
    return ensure_utc(datetime.fromisoformat(value))
