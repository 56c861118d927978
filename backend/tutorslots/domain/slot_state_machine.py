# backend/tutorslots/domain/slot_state_machine.py
"""
Slot lifecycle rules.

``TRANSITIONS`` is the only place that says which event moves a slot from
one status to another. ``plan_transition`` checks an event against the
table and works out the column changes it implies; it never touches the
database. Applying a plan atomically is the repository's job.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.clock import ensure_utc
from ..core.exceptions import InvalidTransitionError, SlotUnavailableError
from ..models.schedule_slot import SlotStatus


class SlotEvent(str, Enum):
    MARK_AVAILABLE = "mark_available"
    MARK_UNAVAILABLE = "mark_unavailable"
    ASSIGN = "assign"
    CONFIRM = "confirm"
    EXPIRE = "expire"
    DECLINE = "decline"
    DIRECT_BOOK = "direct_book"
    CANCEL = "cancel"
    COMPLETE = "complete"
    WITHDRAW = "withdraw"


TRANSITIONS: Dict[Tuple[SlotStatus, SlotEvent], SlotStatus] = {
    (SlotStatus.UNAVAILABLE, SlotEvent.MARK_AVAILABLE): SlotStatus.AVAILABLE,
    (SlotStatus.AVAILABLE, SlotEvent.MARK_UNAVAILABLE): SlotStatus.UNAVAILABLE,
    (SlotStatus.AVAILABLE, SlotEvent.ASSIGN): SlotStatus.ASSIGNED,
    (SlotStatus.ASSIGNED, SlotEvent.CONFIRM): SlotStatus.BOOKED,
    (SlotStatus.ASSIGNED, SlotEvent.EXPIRE): SlotStatus.AVAILABLE,
    (SlotStatus.ASSIGNED, SlotEvent.DECLINE): SlotStatus.AVAILABLE,
    (SlotStatus.AVAILABLE, SlotEvent.DIRECT_BOOK): SlotStatus.BOOKED,
    (SlotStatus.BOOKED, SlotEvent.CANCEL): SlotStatus.AVAILABLE,
    (SlotStatus.BOOKED, SlotEvent.COMPLETE): SlotStatus.COMPLETED,
    (SlotStatus.AVAILABLE, SlotEvent.WITHDRAW): SlotStatus.CANCELLED,
    (SlotStatus.UNAVAILABLE, SlotEvent.WITHDRAW): SlotStatus.CANCELLED,
}

DELETE_EVENT = "delete"

_CLEARED_ASSIGNMENT = {"assigned_student_id": None, "assignment_expiry": None}


@dataclass
class TransitionPlan:
    """Outcome of validating one event against one slot snapshot."""

    slot_id: str
    event: SlotEvent
    from_status: SlotStatus
    to_status: SlotStatus
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def values(self) -> Dict[str, Any]:
        """Column values to write, status included."""
        return {"status": self.to_status.value, **self.changes}


def allowed_events(status: SlotStatus) -> List[SlotEvent]:
    return [event for (source, event) in TRANSITIONS if source == SlotStatus(status)]


def next_status(slot_id: Optional[str], status: SlotStatus, event: SlotEvent) -> SlotStatus:
    current = SlotStatus(status)
    target = TRANSITIONS.get((current, SlotEvent(event)))
    if target is None:
        raise InvalidTransitionError(slot_id, current.value, SlotEvent(event).value)
    return target


def plan_transition(
    slot: Any,
    event: SlotEvent,
    *,
    now: datetime,
    student_id: Optional[str] = None,
    ttl: Optional[timedelta] = None,
) -> TransitionPlan:
    """
    Validate ``event`` against the slot's current state.

    ``slot`` only needs ``id``, ``status``, ``assigned_student_id`` and
    ``assignment_expiry`` attributes.

    Raises:
        InvalidTransitionError: event is illegal from the current status,
            or its preconditions (student, ttl, elapsed expiry) are missing
        SlotUnavailableError: a confirm by someone other than the holder,
            or after the hold lapsed
    """
    event = SlotEvent(event)
    current = SlotStatus(slot.status)
    target = next_status(slot.id, current, event)
    changes: Dict[str, Any] = {}

    if event == SlotEvent.ASSIGN:
        if not student_id:
            raise InvalidTransitionError(
                slot.id, current.value, event.value, message="Assignment requires a student"
            )
        if ttl is None or ttl <= timedelta(0):
            raise InvalidTransitionError(
                slot.id, current.value, event.value, message="Assignment requires a positive ttl"
            )
        changes = {"assigned_student_id": student_id, "assignment_expiry": now + ttl}

    elif event == SlotEvent.CONFIRM:
        if not student_id or student_id != slot.assigned_student_id:
            raise SlotUnavailableError(slot.id, current.value, reason="assigned_to_other")
        expiry = ensure_utc(slot.assignment_expiry)
        if expiry is not None and expiry <= ensure_utc(now):
            raise SlotUnavailableError(slot.id, current.value, reason="assignment_expired")
        changes = {**_CLEARED_ASSIGNMENT, "booked_by": student_id}

    elif event == SlotEvent.EXPIRE:
        expiry = ensure_utc(slot.assignment_expiry)
        if expiry is None or expiry > ensure_utc(now):
            raise InvalidTransitionError(
                slot.id, current.value, event.value, message="Assignment has not expired yet"
            )
        changes = dict(_CLEARED_ASSIGNMENT)

    elif event == SlotEvent.DECLINE:
        changes = dict(_CLEARED_ASSIGNMENT)

    elif event == SlotEvent.DIRECT_BOOK:
        if not student_id:
            raise InvalidTransitionError(
                slot.id, current.value, event.value, message="Booking requires a student"
            )
        changes = {"booked_by": student_id}

    elif event in (SlotEvent.CANCEL, SlotEvent.COMPLETE):
        changes = {"booked_by": None}

    return TransitionPlan(
        slot_id=slot.id, event=event, from_status=current, to_status=target, changes=changes
    )


def check_deletable(slot_id: str, status: SlotStatus, *, force: bool) -> bool:
    """
    Whether deleting a slot in ``status`` displaces a student.

    Terminal slots are kept for audit and cannot be deleted. Held slots
    (assigned or booked) need ``force``. Dependent-row checks for open
    slots happen in the service, which has store access.
    """
    current = SlotStatus(status)
    if current.is_terminal:
        raise InvalidTransitionError(slot_id, current.value, DELETE_EVENT)
    if current.is_held:
        if not force:
            raise InvalidTransitionError(
                slot_id,
                current.value,
                DELETE_EVENT,
                message=f"Deleting a {current.value} slot requires force",
            )
        return True
    return False
