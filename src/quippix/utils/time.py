"""Timezone-aware time helpers.

Durable records store ISO-8601 timestamps; records written by older clients
may lack an offset and are interpreted as UTC.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def seconds_since(value: datetime, now: datetime | None = None) -> float:
    """Elapsed seconds between ``value`` and ``now`` (default: current time)."""
    return ((now or utc_now()) - as_utc(value)).total_seconds()
