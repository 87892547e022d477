"""
Time utilities shared by the credential manager, jobs and sampler.

All timestamps in creative_sync are timezone-aware UTC datetimes and are
serialized as ISO-8601 strings with a ``Z`` suffix.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize an aware datetime as ``YYYY-MM-DDTHH:MM:SS.ffffffZ`` (UTC)."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts the ``Z`` suffix the platform APIs use.  Naive strings are assumed
    to be UTC.  ``None`` and empty strings return ``None``.

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def floor_to_boundary(moment: datetime, interval_minutes: int) -> datetime:
    """Round ``moment`` down to the previous boundary of ``interval_minutes``.

    A boundary is a wall-clock instant whose minute-of-day is a multiple of
    the interval, with zero seconds.  ``floor_to_boundary(08:17:42, 10)`` is
    ``08:10:00``.

    Raises:
        ValueError: If ``interval_minutes`` is not positive.
    """
    if interval_minutes <= 0:
        raise ValueError(f"interval_minutes must be > 0, got {interval_minutes}.")
    moment = moment.astimezone(timezone.utc)
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    minutes = int((moment - midnight).total_seconds() // 60)
    return midnight + timedelta(minutes=minutes - minutes % interval_minutes)


def next_boundary(moment: datetime, interval_minutes: int) -> datetime:
    """Return the first boundary strictly after ``moment``.

    ``next_boundary(08:17:42, 10)`` is ``08:20:00``; ``next_boundary(08:20:00, 10)``
    is ``08:30:00``.
    """
    return floor_to_boundary(moment, interval_minutes) + timedelta(minutes=interval_minutes)
