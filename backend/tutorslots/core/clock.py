# backend/tutorslots/core/clock.py
"""
Injectable clock.

Expiry logic (assignment holds, waitlist offers) never calls
``datetime.now`` directly; it asks a Clock so tests can pin time.
"""

from datetime import datetime, timezone
from typing import Optional, Protocol


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


system_clock = SystemClock()
