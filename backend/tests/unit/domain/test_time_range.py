from datetime import date, time

import pytest

from tutorslots.core.exceptions import InvalidRangeError
from tutorslots.domain.time_range import (
    ShiftDirection,
    TimeRange,
    Weekday,
    bucket_key,
    conflict_severity,
    duration_minutes,
    move_to_day,
    next_occurrence,
    overlaps,
    same_day,
    shift,
    weekly_occurrences,
)

MONDAY = date(2026, 3, 2)


def weekly(day: str, start: time, end: time) -> TimeRange:
    return TimeRange(start_time=start, end_time=end, day_of_week=Weekday(day))


def dated(on: date, start: time, end: time) -> TimeRange:
    return TimeRange(start_time=start, end_time=end, date=on)


def test_range_needs_day_or_date() -> None:
    with pytest.raises(InvalidRangeError):
        TimeRange(start_time=time(9), end_time=time(10))


def test_end_must_follow_start() -> None:
    with pytest.raises(InvalidRangeError) as exc:
        dated(MONDAY, time(10), time(10))
    assert exc.value.code == "INVALID_RANGE"
    assert exc.value.details["start_time"] == "10:00"


def test_day_of_week_must_match_date() -> None:
    with pytest.raises(InvalidRangeError):
        TimeRange(start_time=time(9), end_time=time(10), day_of_week=Weekday.TUESDAY, date=MONDAY)


def test_day_of_week_string_is_coerced() -> None:
    r = TimeRange(start_time=time(9), end_time=time(10), day_of_week="Friday")
    assert r.day_of_week is Weekday.FRIDAY

    with pytest.raises(InvalidRangeError):
        TimeRange(start_time=time(9), end_time=time(10), day_of_week="Funday")


def test_dated_range_derives_weekday() -> None:
    r = dated(MONDAY, time(9), time(10))
    assert r.weekday == Weekday.MONDAY
    assert not r.is_template


def test_half_open_ranges_touching_do_not_overlap() -> None:
    a = dated(MONDAY, time(9), time(10))
    b = dated(MONDAY, time(10), time(11))
    assert not overlaps(a, b)
    assert not overlaps(b, a)


def test_overlap_is_symmetric() -> None:
    a = dated(MONDAY, time(9), time(10, 30))
    b = dated(MONDAY, time(10), time(11))
    assert overlaps(a, b) and overlaps(b, a)


def test_containment_overlaps() -> None:
    outer = weekly("Monday", time(8), time(12))
    inner = weekly("Monday", time(9), time(10))
    assert overlaps(outer, inner)


def test_different_dates_never_overlap() -> None:
    a = dated(MONDAY, time(9), time(10))
    b = dated(date(2026, 3, 9), time(9), time(10))
    assert not same_day(a, b)
    assert not overlaps(a, b)


def test_template_against_dated_uses_weekday() -> None:
    template = weekly("Monday", time(9), time(10))
    assert overlaps(template, dated(MONDAY, time(9, 30), time(10, 30)))
    assert not overlaps(template, dated(date(2026, 3, 3), time(9, 30), time(10, 30)))


def test_duration_minutes() -> None:
    assert duration_minutes(dated(MONDAY, time(9), time(10, 45))) == 105


def test_shift_keeps_length() -> None:
    original = dated(MONDAY, time(9), time(10))
    later = shift(original, 30, ShiftDirection.LATER)
    earlier = shift(original, 45, ShiftDirection.EARLIER)
    assert (later.start_time, later.end_time) == (time(9, 30), time(10, 30))
    assert (earlier.start_time, earlier.end_time) == (time(8, 15), time(9, 15))
    assert later.date == MONDAY


def test_shift_cannot_cross_midnight() -> None:
    with pytest.raises(InvalidRangeError):
        shift(dated(MONDAY, time(0, 15), time(1)), 30, ShiftDirection.EARLIER)
    with pytest.raises(InvalidRangeError):
        shift(dated(MONDAY, time(23), time(23, 30)), 30, ShiftDirection.LATER)


def test_move_to_day() -> None:
    assert move_to_day(dated(MONDAY, time(9), time(10)), -1).date == date(2026, 3, 1)
    assert move_to_day(weekly("Sunday", time(9), time(10)), 1).day_of_week == Weekday.MONDAY


def test_on_rejects_wrong_weekday() -> None:
    template = weekly("Monday", time(9), time(10))
    assert template.on(MONDAY).date == MONDAY
    with pytest.raises(InvalidRangeError):
        template.on(date(2026, 3, 3))


def test_weekly_occurrences_skip_exceptions() -> None:
    # Starting on a Wednesday, first Monday is the following week
    assert next_occurrence(date(2026, 3, 4), Weekday.MONDAY) == date(2026, 3, 9)
    dates = weekly_occurrences(Weekday.MONDAY, MONDAY, 3, {date(2026, 3, 9)})
    assert dates == [MONDAY, date(2026, 3, 16)]


def test_bucket_key_distinguishes_dated_and_weekly() -> None:
    assert bucket_key(dated(MONDAY, time(9), time(10))) == "date:2026-03-02:09:00-10:00"
    assert bucket_key(weekly("Monday", time(9), time(10))) == "weekly:Monday:09:00-10:00"


@pytest.mark.parametrize("total, expected", [(1, "low"), (2, "medium"), (3, "high"), (7, "high")])
def test_conflict_severity(total: int, expected: str) -> None:
    assert conflict_severity(total) == expected
