from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from tutorslots.core.exceptions import InvalidTransitionError, SlotUnavailableError
from tutorslots.domain.slot_state_machine import (
    TRANSITIONS,
    SlotEvent,
    allowed_events,
    check_deletable,
    next_status,
    plan_transition,
)
from tutorslots.models.schedule_slot import SlotStatus

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def snapshot(status: SlotStatus, **fields) -> SimpleNamespace:
    values = {"id": "slot-1", "status": status.value, "assigned_student_id": None, "assignment_expiry": None}
    values.update(fields)
    return SimpleNamespace(**values)


def test_every_unlisted_pair_is_rejected() -> None:
    for status in SlotStatus:
        for event in SlotEvent:
            if (status, event) in TRANSITIONS:
                assert next_status("s", status, event) == TRANSITIONS[(status, event)]
            else:
                with pytest.raises(InvalidTransitionError):
                    next_status("s", status, event)


def test_terminal_statuses_have_no_events() -> None:
    assert allowed_events(SlotStatus.CANCELLED) == []
    assert allowed_events(SlotStatus.COMPLETED) == []
    assert set(allowed_events(SlotStatus.ASSIGNED)) == {
        SlotEvent.CONFIRM,
        SlotEvent.EXPIRE,
        SlotEvent.DECLINE,
    }


def test_assign_sets_holder_and_expiry() -> None:
    plan = plan_transition(
        snapshot(SlotStatus.AVAILABLE), SlotEvent.ASSIGN, now=NOW, student_id="s1", ttl=timedelta(hours=2)
    )
    assert plan.to_status == SlotStatus.ASSIGNED
    assert plan.values == {
        "status": "assigned",
        "assigned_student_id": "s1",
        "assignment_expiry": NOW + timedelta(hours=2),
    }


def test_assign_requires_student_and_positive_ttl() -> None:
    with pytest.raises(InvalidTransitionError):
        plan_transition(snapshot(SlotStatus.AVAILABLE), SlotEvent.ASSIGN, now=NOW, ttl=timedelta(hours=1))
    with pytest.raises(InvalidTransitionError):
        plan_transition(
            snapshot(SlotStatus.AVAILABLE), SlotEvent.ASSIGN, now=NOW, student_id="s1", ttl=timedelta(0)
        )


def test_confirm_by_holder_books_and_clears_hold() -> None:
    slot = snapshot(SlotStatus.ASSIGNED, assigned_student_id="s1", assignment_expiry=NOW + timedelta(hours=1))
    plan = plan_transition(slot, SlotEvent.CONFIRM, now=NOW, student_id="s1")
    assert plan.to_status == SlotStatus.BOOKED
    assert plan.changes == {"assigned_student_id": None, "assignment_expiry": None, "booked_by": "s1"}


def test_confirm_by_other_student_is_unavailable() -> None:
    slot = snapshot(SlotStatus.ASSIGNED, assigned_student_id="s1", assignment_expiry=NOW + timedelta(hours=1))
    with pytest.raises(SlotUnavailableError) as exc:
        plan_transition(slot, SlotEvent.CONFIRM, now=NOW, student_id="s2")
    assert exc.value.details["reason"] == "assigned_to_other"


def test_confirm_after_expiry_is_unavailable() -> None:
    # Naive expiry, as SQLite hands it back
    slot = snapshot(
        SlotStatus.ASSIGNED, assigned_student_id="s1", assignment_expiry=datetime(2026, 3, 2, 8, 0)
    )
    with pytest.raises(SlotUnavailableError) as exc:
        plan_transition(slot, SlotEvent.CONFIRM, now=NOW, student_id="s1")
    assert exc.value.details["reason"] == "assignment_expired"


def test_expire_only_after_deadline() -> None:
    slot = snapshot(SlotStatus.ASSIGNED, assigned_student_id="s1", assignment_expiry=NOW + timedelta(minutes=1))
    with pytest.raises(InvalidTransitionError):
        plan_transition(slot, SlotEvent.EXPIRE, now=NOW)

    plan = plan_transition(slot, SlotEvent.EXPIRE, now=NOW + timedelta(minutes=1))
    assert plan.to_status == SlotStatus.AVAILABLE
    assert plan.changes == {"assigned_student_id": None, "assignment_expiry": None}


def test_cancel_and_complete_clear_booking() -> None:
    booked = snapshot(SlotStatus.BOOKED, booked_by="s1")
    assert plan_transition(booked, SlotEvent.CANCEL, now=NOW).values == {"status": "available", "booked_by": None}
    assert plan_transition(booked, SlotEvent.COMPLETE, now=NOW).to_status == SlotStatus.COMPLETED


def test_illegal_event_reports_context() -> None:
    with pytest.raises(InvalidTransitionError) as exc:
        plan_transition(snapshot(SlotStatus.BOOKED), SlotEvent.ASSIGN, now=NOW, student_id="s1")
    assert exc.value.details == {"slot_id": "slot-1", "current_status": "booked", "event": "assign"}


def test_check_deletable() -> None:
    assert check_deletable("s", SlotStatus.AVAILABLE, force=False) is False
    assert check_deletable("s", SlotStatus.BOOKED, force=True) is True
    with pytest.raises(InvalidTransitionError):
        check_deletable("s", SlotStatus.ASSIGNED, force=False)
    with pytest.raises(InvalidTransitionError):
        check_deletable("s", SlotStatus.COMPLETED, force=True)
