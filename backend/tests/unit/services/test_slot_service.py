from datetime import time, timedelta
from unittest.mock import patch

import pytest

from tutorslots.core.clock import ensure_utc
from tutorslots.core.exceptions import (
    HasDependentsError,
    InvalidRangeError,
    InvalidTransitionError,
    NotFoundException,
    SlotOverlapError,
    SlotUnavailableError,
)
from tutorslots.domain.time_range import TimeRange, Weekday
from tutorslots.models.schedule_slot import SlotStatus
from tutorslots.monitoring.prometheus_metrics import REGISTRY
from tutorslots.services.slot_service import SlotService

from ...conftest import OWNER, TODAY, RecordingNotifier, make_blocked, make_slot

TOMORROW = TODAY + timedelta(days=1)


def transitions(event: str, outcome: str) -> float:
    return REGISTRY.get_sample_value(
        "tutorslots_slot_transitions_total", {"event": event, "outcome": outcome}
    ) or 0.0


def rng(start: time, end: time, day=TOMORROW) -> TimeRange:
    return TimeRange(start_time=start, end_time=end, date=day)


def test_create_slot(slot_service, clock) -> None:
    slot = slot_service.create_slot(OWNER, rng(time(9), time(10)), subject="Violin")

    assert slot.status == "available"
    assert slot.duration_minutes == 60
    assert slot.version == 1
    assert slot.subject == "Violin"
    assert ensure_utc(slot.created_at) == clock.now()


def test_create_slot_rejects_weekly_and_bad_durations(slot_service) -> None:
    with pytest.raises(InvalidRangeError):
        slot_service.create_slot(
            OWNER, TimeRange(start_time=time(9), end_time=time(10), day_of_week=Weekday.MONDAY)
        )
    with pytest.raises(InvalidRangeError):
        slot_service.create_slot(OWNER, rng(time(9), time(9, 10)))
    with pytest.raises(InvalidRangeError):
        slot_service.create_slot(OWNER, rng(time(6), time(15)))
    with pytest.raises(InvalidRangeError):
        slot_service.create_slot(OWNER, rng(time(9), time(10)), status=SlotStatus.BOOKED)


def test_create_slot_rechecks_conflicts(slot_service, unit_db) -> None:
    make_blocked(unit_db, "09:00", "12:00", on=TOMORROW)

    with pytest.raises(SlotOverlapError) as exc:
        slot_service.create_slot(OWNER, rng(time(10), time(11)))
    assert exc.value.details["conflicts"]["total_conflicts"] == 1

    forced = slot_service.create_slot(OWNER, rng(time(10), time(11)), allow_conflicts=True)
    assert forced.id


def test_get_slot_not_found(slot_service) -> None:
    with pytest.raises(NotFoundException) as exc:
        slot_service.get_slot("01HZZZZZZZZZZZZZZZZZZZZZZZ")
    assert exc.value.code == "SLOT_NOT_FOUND"


def test_list_slots(slot_service, unit_db) -> None:
    open_slot = make_slot(unit_db, TODAY, "09:00", "10:00")
    done = make_slot(unit_db, TODAY, "11:00", "12:00", status="completed")

    assert {s.id for s in slot_service.list_slots(OWNER, TODAY, TODAY)} == {open_slot.id, done.id}
    assert [s.id for s in slot_service.list_slots(OWNER, TODAY, TODAY, ["completed"])] == [done.id]
    with pytest.raises(InvalidRangeError):
        slot_service.list_slots(OWNER, TODAY, TODAY - timedelta(days=1))


def test_assign_then_confirm(slot_service, unit_db, clock, notifier) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")

    held = slot_service.assign_slot(slot.id, "s1", ttl=timedelta(hours=2))
    assert held.status == "assigned"
    assert held.assigned_student_id == "s1"
    assert ensure_utc(held.assignment_expiry) == clock.now() + timedelta(hours=2)
    assert notifier.recipients == ["s1"]

    booked = slot_service.confirm_assignment(slot.id, "s1")
    assert booked.status == "booked"
    assert booked.booked_by == "s1"
    assert booked.assigned_student_id is None
    assert booked.assignment_expiry is None
    assert booked.version == 3


def test_assign_uses_default_ttl(slot_service, unit_db, clock) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    held = slot_service.assign_slot(slot.id, "s1")
    assert ensure_utc(held.assignment_expiry) == clock.now() + timedelta(hours=24)


def test_confirm_after_expiry_fails(slot_service, unit_db, clock) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.assign_slot(slot.id, "s1", ttl=timedelta(hours=1))
    clock.advance(hours=1)

    with pytest.raises(SlotUnavailableError) as exc:
        slot_service.confirm_assignment(slot.id, "s1")
    assert exc.value.details["reason"] == "assignment_expired"


def test_decline_releases_hold(slot_service, unit_db) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.assign_slot(slot.id, "s1")
    released = slot_service.decline_assignment(slot.id)
    assert released.status == "available"
    assert released.assigned_student_id is None


def test_book_slot_paths(slot_service, unit_db) -> None:
    direct = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    assert slot_service.book_slot(direct.id, "s1").booked_by == "s1"

    with pytest.raises(SlotUnavailableError) as exc:
        slot_service.book_slot(direct.id, "s2")
    assert exc.value.details["reason"] == "already_booked"

    held = make_slot(unit_db, TOMORROW, "11:00", "12:00")
    slot_service.assign_slot(held.id, "s3")
    with pytest.raises(SlotUnavailableError):
        slot_service.book_slot(held.id, "s4")
    assert slot_service.book_slot(held.id, "s3").status == "booked"


def test_booking_unavailable_slot_is_invalid(slot_service, unit_db) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00", status="unavailable")
    before = transitions("direct_book", "rejected")
    with pytest.raises(InvalidTransitionError):
        slot_service.book_slot(slot.id, "s1")
    assert transitions("direct_book", "rejected") == before + 1


def test_stale_snapshot_loses_the_race(slot_service, unit_db) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    stale = slot_service.get_slot(slot.id)
    stale_version = stale.version
    slot_service.book_slot(slot.id, "winner")

    class Snapshot:
        id = slot.id
        status = "available"
        assigned_student_id = None
        assignment_expiry = None
        version = stale_version

    before = transitions("direct_book", "lost_race")
    with patch.object(slot_service.slot_repository, "get_by_id", return_value=Snapshot()):
        with pytest.raises(SlotUnavailableError) as exc:
            slot_service.book_slot(slot.id, "loser")

    assert exc.value.details["reason"] == "concurrent_update"
    assert transitions("direct_book", "lost_race") == before + 1
    assert slot_service.get_slot(slot.id).booked_by == "winner"


def test_cancel_notifies_student_and_waitlist(slot_service, waitlist_service, unit_db, notifier) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.book_slot(slot.id, "s1")
    waiting = waitlist_service.enqueue(OWNER, "w1", rng(time(9), time(10)))

    result = slot_service.cancel_slot(slot.id)

    assert result.slot.status == "available"
    assert result.slot.booked_by is None
    assert result.notified_entry.id == waiting.id
    assert result.notified_entry.status == "notified"
    assert result.notified_entry.slot_id == slot.id
    assert notifier.recipients == ["s1", "w1"]


def test_cancel_without_waitlist(slot_service, unit_db) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.book_slot(slot.id, "s1")
    assert slot_service.cancel_slot(slot.id).notified_entry is None


def test_failed_notification_keeps_transition(unit_db, clock, detector, waitlist_service) -> None:
    service = SlotService(
        unit_db, clock, RecordingNotifier(fail=True), conflict_detector=detector,
        waitlist_service=waitlist_service,
    )
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    assert service.assign_slot(slot.id, "s1").status == "assigned"
    assert service.get_slot(slot.id).status == "assigned"


def test_complete_withdraw_and_marks(slot_service, unit_db) -> None:
    lesson = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.book_slot(lesson.id, "s1")
    done = slot_service.complete_slot(lesson.id)
    assert done.status == "completed"
    assert done.booked_by is None

    spare = make_slot(unit_db, TOMORROW, "11:00", "12:00")
    assert slot_service.mark_unavailable(spare.id).status == "unavailable"
    assert slot_service.mark_available(spare.id).status == "available"
    assert slot_service.withdraw_slot(spare.id).status == "cancelled"

    with pytest.raises(InvalidTransitionError):
        slot_service.mark_available(spare.id)


def test_expire_assignments(slot_service, unit_db, clock, notifier) -> None:
    first = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    second = make_slot(unit_db, TOMORROW, "11:00", "12:00")
    slot_service.assign_slot(first.id, "s1", ttl=timedelta(hours=1))
    slot_service.assign_slot(second.id, "s2", ttl=timedelta(hours=5))
    clock.advance(hours=2)

    assert slot_service.expire_assignments() == [first.id]
    assert slot_service.get_slot(first.id).status == "available"
    assert slot_service.get_slot(second.id).status == "assigned"
    assert notifier.recipients[-1] == "s1"

    # Nothing left to release on a second pass
    assert slot_service.expire_assignments() == []


def test_delete_open_slot(slot_service, unit_db) -> None:
    slot = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.delete_slot(slot.id)
    with pytest.raises(NotFoundException):
        slot_service.get_slot(slot.id)


def test_delete_guards(slot_service, waitlist_service, unit_db, notifier) -> None:
    done = make_slot(unit_db, TOMORROW, "08:00", "09:00", status="completed")
    with pytest.raises(InvalidTransitionError):
        slot_service.delete_slot(done.id, force=True)

    booked = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.book_slot(booked.id, "s1")
    with pytest.raises(InvalidTransitionError):
        slot_service.delete_slot(booked.id)
    slot_service.delete_slot(booked.id, force=True)
    assert notifier.recipients == ["s1"]

    wanted = make_slot(unit_db, TOMORROW, "11:00", "12:00")
    entry = waitlist_service.enqueue(OWNER, "w1", rng(time(11), time(12)), slot_id=wanted.id)
    with pytest.raises(HasDependentsError) as exc:
        slot_service.delete_slot(wanted.id)
    assert exc.value.details["dependents"] == {"waitlist_entries": 1}

    slot_service.delete_slot(wanted.id, force=True)
    assert waitlist_service.get_entry(entry.id).slot_id is None


def test_clear_range_is_all_or_nothing(slot_service, waitlist_service, unit_db, notifier) -> None:
    day_after = TOMORROW + timedelta(days=1)
    open_slot = make_slot(unit_db, TOMORROW, "08:00", "09:00")
    booked = make_slot(unit_db, TOMORROW, "09:00", "10:00")
    slot_service.book_slot(booked.id, "s1")
    wanted = make_slot(unit_db, day_after, "11:00", "12:00")
    entry = waitlist_service.enqueue(OWNER, "w1", rng(time(11), time(12), day_after), slot_id=wanted.id)
    done = make_slot(unit_db, day_after, "13:00", "14:00", status="completed")
    outside = make_slot(unit_db, TOMORROW + timedelta(days=5), "09:00", "10:00")

    with pytest.raises(InvalidTransitionError):
        slot_service.clear_range(OWNER, TOMORROW, day_after)
    with pytest.raises(HasDependentsError):
        slot_service.clear_range(OWNER, day_after, day_after)
    assert len(slot_service.list_slots(OWNER, TOMORROW, day_after)) == 4
    assert notifier.sent == []

    result = slot_service.clear_range(OWNER, TOMORROW, day_after, force=True)

    assert sorted(result.deleted_slot_ids) == sorted([open_slot.id, booked.id, wanted.id])
    assert result.notified_students == ["s1"]
    assert notifier.recipients == ["s1"]
    assert [s.id for s in slot_service.list_slots(OWNER, TOMORROW, day_after)] == [done.id]
    assert slot_service.get_slot(outside.id).status == "available"
    assert waitlist_service.get_entry(entry.id).slot_id is None


def test_clear_range_rejects_backwards_window(slot_service) -> None:
    with pytest.raises(InvalidRangeError):
        slot_service.clear_range(OWNER, TOMORROW, TODAY)
