"""Helpers for working with timezone-aware datetimes."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current time as a naive UTC ``datetime`` for storage."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def require_utc(value: datetime | None, *, field_name: str = "timestamp") -> datetime | None:
    """Reject naive datetimes and return ``value`` normalized to UTC.

    Raises:
        ValueError: If ``value`` is timezone-naive.
    """

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{field_name} must include a timezone offset")

    return value.astimezone(timezone.utc)


def coerce_utc(value: datetime | None) -> datetime | None:
    """Return a UTC-aware datetime, treating naive database values as UTC."""

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)
