# backend/tutorslots/domain/time_range.py
"""
Time range value type and pure comparison helpers.

A TimeRange is either a weekly template window (``day_of_week`` set) or a
concrete occurrence (``date`` set). Times are opaque local wall-clock values;
no timezone conversion happens here.

Intervals are half-open: a range ending at 10:00 does not overlap one that
starts at 10:00.
"""

from dataclasses import dataclass, replace
from datetime import date as Date, time as Time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.exceptions import InvalidRangeError
from ..utils.time_helpers import minutes_since_midnight, time_from_minutes, time_to_string

MINUTES_PER_DAY = 24 * 60


class Weekday(str, Enum):
    """Day of week, stored and serialized by full English name."""

    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def from_date(cls, value: Date) -> "Weekday":
        return list(cls)[value.weekday()]

    @property
    def index(self) -> int:
        """Python weekday index (Monday == 0)."""
        return list(Weekday).index(self)


class ShiftDirection(str, Enum):
    EARLIER = "earlier"
    LATER = "later"


@dataclass(frozen=True)
class TimeRange:
    start_time: Time
    end_time: Time
    day_of_week: Optional[Weekday] = None
    date: Optional[Date] = None

    def __post_init__(self) -> None:
        if self.day_of_week is None and self.date is None:
            raise InvalidRangeError("A time range needs either a day_of_week or a date")
        if self.day_of_week is not None and not isinstance(self.day_of_week, Weekday):
            try:
                object.__setattr__(self, "day_of_week", Weekday(self.day_of_week))
            except ValueError as exc:
                raise InvalidRangeError(
                    f"Unknown day_of_week '{self.day_of_week}'",
                    details={"day_of_week": str(self.day_of_week)},
                ) from exc
        if self.date is not None:
            actual = Weekday.from_date(self.date)
            if self.day_of_week is not None and self.day_of_week != actual:
                raise InvalidRangeError(
                    f"{self.date.isoformat()} is a {actual.value}, not a {self.day_of_week.value}",
                    details={"date": self.date.isoformat(), "day_of_week": self.day_of_week.value},
                )
        if not self.start_time < self.end_time:
            raise InvalidRangeError(
                "End time must be after start time",
                details={
                    "start_time": time_to_string(self.start_time),
                    "end_time": time_to_string(self.end_time),
                },
            )

    @property
    def is_template(self) -> bool:
        return self.date is None

    @property
    def weekday(self) -> Weekday:
        """Day of week, derived from the date for concrete ranges."""
        if self.date is not None:
            return Weekday.from_date(self.date)
        assert self.day_of_week is not None
        return self.day_of_week

    def on(self, target: Date) -> "TimeRange":
        """Resolve a template window onto a concrete date."""
        if Weekday.from_date(target) != self.weekday:
            raise InvalidRangeError(
                f"{target.isoformat()} is not a {self.weekday.value}",
                details={"date": target.isoformat(), "day_of_week": self.weekday.value},
            )
        return TimeRange(start_time=self.start_time, end_time=self.end_time, date=target)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day_of_week": self.weekday.value,
            "date": self.date.isoformat() if self.date else None,
            "start_time": time_to_string(self.start_time),
            "end_time": time_to_string(self.end_time),
        }

    def __str__(self) -> str:
        where = self.date.isoformat() if self.date else self.weekday.value
        return f"{where} {time_to_string(self.start_time)}-{time_to_string(self.end_time)}"


def same_day(a: TimeRange, b: TimeRange) -> bool:
    """
    Whether two ranges fall on comparable days.

    Two dated ranges must share the date, two templates the weekday; a
    template against a dated range is resolved through the date's weekday.
    """
    if a.date is not None and b.date is not None:
        return a.date == b.date
    return a.weekday == b.weekday


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    """True iff both ranges share a day and ``a.start < b.end and b.start < a.end``."""
    if not same_day(a, b):
        return False
    return a.start_time < b.end_time and b.start_time < a.end_time


def duration_minutes(time_range: TimeRange) -> int:
    minutes = minutes_since_midnight(time_range.end_time) - minutes_since_midnight(
        time_range.start_time
    )
    if minutes <= 0:
        raise InvalidRangeError("Range duration must be positive", details=time_range.to_dict())
    return minutes


def shift(time_range: TimeRange, minutes: int, direction: ShiftDirection) -> TimeRange:
    """
    Return a copy moved earlier or later by ``minutes``, keeping its length.

    Ranges cannot cross midnight; shifting past either end of the day raises
    InvalidRangeError.
    """
    if minutes < 0:
        raise InvalidRangeError("Shift magnitude must be non-negative", details={"minutes": minutes})
    delta = minutes if ShiftDirection(direction) == ShiftDirection.LATER else -minutes
    start = minutes_since_midnight(time_range.start_time) + delta
    end = minutes_since_midnight(time_range.end_time) + delta
    if start < 0 or end >= MINUTES_PER_DAY:
        raise InvalidRangeError(
            "Shifted range leaves the day",
            details={**time_range.to_dict(), "shift_minutes": delta},
        )
    return replace(time_range, start_time=time_from_minutes(start), end_time=time_from_minutes(end))


def move_to_day(time_range: TimeRange, days: int) -> TimeRange:
    """Same wall-clock window ``days`` later (negative for earlier)."""
    if time_range.date is not None:
        return TimeRange(
            start_time=time_range.start_time,
            end_time=time_range.end_time,
            date=time_range.date + timedelta(days=days),
        )
    target = list(Weekday)[(time_range.weekday.index + days) % 7]
    return TimeRange(start_time=time_range.start_time, end_time=time_range.end_time, day_of_week=target)


def next_occurrence(start: Date, day: Weekday) -> Date:
    """First date on or after ``start`` that falls on ``day``."""
    return start + timedelta(days=(day.index - start.weekday()) % 7)


def weekly_occurrences(
    day: Weekday, start: Date, weeks: int, exception_dates: Optional[set] = None
) -> List[Date]:
    first = next_occurrence(start, day)
    skipped = exception_dates or set()
    dates = [first + timedelta(days=7 * week) for week in range(weeks)]
    return [d for d in dates if d not in skipped]


def bucket_key(time_range: TimeRange) -> str:
    """
    Waitlist grouping key for a desired range.

    One-off waits bucket by exact date and times, recurring waits by weekday
    and times.
    """
    window = f"{time_to_string(time_range.start_time)}-{time_to_string(time_range.end_time)}"
    if time_range.date is not None:
        return f"date:{time_range.date.isoformat()}:{window}"
    return f"weekly:{time_range.weekday.value}:{window}"


def conflict_severity(total_conflicts: int) -> str:
    """Caller-side heuristic: 3+ conflicts is high, 2 medium, else low."""
    if total_conflicts >= 3:
        return "high"
    if total_conflicts >= 2:
        return "medium"
    return "low"
