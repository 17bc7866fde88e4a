"""Timestamps used for sync bookkeeping."""

from __future__ import annotations

from datetime import UTC, datetime

# Stand-in for missing modification and sync times.
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite hands them back without a zone)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 for JSON responses."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
