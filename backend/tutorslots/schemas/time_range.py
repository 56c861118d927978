# backend/tutorslots/schemas/time_range.py
"""
Time range DTOs.

Wall-clock times accept ``HH:MM`` or ``HH:MM:SS``. A range carries either a
``day_of_week`` (weekly) or a ``date`` (one-off); both may be given when they
agree.
"""

import datetime
from typing import Any, Optional, Tuple

from pydantic import field_validator

from ..domain.time_range import TimeRange, Weekday
from ..utils.time_helpers import string_to_time
from .base import StrictRequestModel


def coerce_wall_clock(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return string_to_time(value)
        except ValueError as exc:
            raise ValueError(f"Invalid time '{value}', expected HH:MM") from exc
    return value


class TimeRangeIn(StrictRequestModel):
    day_of_week: Optional[Weekday] = None
    date: Optional[datetime.date] = None
    start_time: datetime.time
    end_time: datetime.time

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_wall_clock(cls, v: Any) -> Any:
        return coerce_wall_clock(v)

    def to_domain(self) -> TimeRange:
        """Build the domain value; malformed ranges raise InvalidRangeError."""
        return TimeRange(
            start_time=self.start_time,
            end_time=self.end_time,
            day_of_week=self.day_of_week,
            date=self.date,
        )


class DateRangeIn(StrictRequestModel):
    start_date: datetime.date
    end_date: datetime.date

    def as_tuple(self) -> Tuple[datetime.date, datetime.date]:
        return self.start_date, self.end_date

