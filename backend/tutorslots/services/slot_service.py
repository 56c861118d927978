# backend/tutorslots/services/slot_service.py
"""
Slot Service for the scheduling core.

Drives individual slots through their lifecycle:
- Creating slots (re-checking conflicts at write time)
- Assignment holds, confirmation, decline and expiry
- Direct booking, cancellation, completion and withdrawal
- Guarded deletion, one slot or a whole date window

Every transition reads the slot, validates the event against the state
machine, then writes with a version-checked UPDATE. Losing that race is
reported as SlotUnavailableError, never as a silent overwrite.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import (
    DomainException,
    HasDependentsError,
    InvalidRangeError,
    NotFoundException,
    SlotOverlapError,
    SlotUnavailableError,
)
from ..domain.slot_state_machine import SlotEvent, check_deletable, plan_transition
from ..domain.time_range import TimeRange, duration_minutes
from ..models.schedule_slot import ScheduleSlot, SlotStatus
from ..models.waitlist import WaitlistEntry
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .conflict_detector import ConflictDetector
from .notifier import LoggingNotifier, Notifier, send_notification
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


def check_slot_duration(time_range: TimeRange) -> int:
    """Duration in minutes, within the configured slot bounds."""
    minutes = duration_minutes(time_range)
    if minutes < settings.min_slot_minutes or minutes > settings.max_slot_minutes:
        raise InvalidRangeError(
            f"Slots must last between {settings.min_slot_minutes} and "
            f"{settings.max_slot_minutes} minutes",
            details={**time_range.to_dict(), "duration_minutes": minutes},
        )
    return minutes


@dataclass
class CancellationResult:
    slot: ScheduleSlot
    notified_entry: Optional[WaitlistEntry] = None


@dataclass
class ClearResult:
    deleted_slot_ids: List[str]
    notified_students: List[str]


class SlotService(BaseService):
    """
    Service for slot creation and state transitions.

    Notifications go through the injected Notifier after the state change
    commits; a failed send never undoes the transition.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        notifier: Optional[Notifier] = None,
        conflict_detector: Optional[ConflictDetector] = None,
        waitlist_service: Optional[WaitlistService] = None,
    ):
        super().__init__(db, clock)
        self.notifier = notifier or LoggingNotifier()
        self.conflict_detector = conflict_detector or ConflictDetector(db, clock)
        self.waitlist_service = waitlist_service or WaitlistService(db, clock, self.notifier)
        self.slot_repository = RepositoryFactory.create_slot_repository(db)

    # Reads

    def get_slot(self, slot_id: str) -> ScheduleSlot:
        slot = self.slot_repository.get_by_id(slot_id, fresh=True)
        if slot is None:
            raise NotFoundException("Slot not found", code="SLOT_NOT_FOUND", details={"slot_id": slot_id})
        return slot

    def list_slots(
        self,
        owner_id: str,
        start_date: date,
        end_date: date,
        statuses: Optional[List[str]] = None,
    ) -> List[ScheduleSlot]:
        if end_date < start_date:
            raise InvalidRangeError(
                "end_date must not precede start_date",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        if statuses is None:
            statuses = [status.value for status in SlotStatus]
        return self.slot_repository.get_slots(owner_id, start_date, end_date, statuses=statuses)

    # Creation

    @BaseService.measure_operation("create_slot")
    def create_slot(
        self,
        owner_id: str,
        time_range: TimeRange,
        *,
        subject: Optional[str] = None,
        status: SlotStatus = SlotStatus.AVAILABLE,
        allow_conflicts: bool = False,
        template_id: Optional[str] = None,
    ) -> ScheduleSlot:
        """
        Materialize one dated slot.

        Conflicts are re-detected here even if the caller already checked,
        since the schedule may have changed since that read.

        Raises:
            InvalidRangeError: weekly range, or duration outside bounds
            SlotOverlapError: the range collides and ``allow_conflicts`` is off
        """
        if time_range.date is None:
            raise InvalidRangeError(
                "Slots are always dated; expand weekly patterns instead",
                details=time_range.to_dict(),
            )
        status = SlotStatus(status)
        if status not in (SlotStatus.AVAILABLE, SlotStatus.UNAVAILABLE):
            raise InvalidRangeError(
                "New slots start as available or unavailable", details={"status": status.value}
            )
        minutes = check_slot_duration(time_range)

        if not allow_conflicts:
            report = self.conflict_detector.detect_conflicts(owner_id, time_range)
            if report.has_conflicts:
                raise SlotOverlapError(report.to_dict())

        now = self.clock.now()
        with self.transaction():
            slot = self.slot_repository.create(
                owner_id=owner_id,
                template_id=template_id,
                date=time_range.date,
                start_time=time_range.start_time,
                end_time=time_range.end_time,
                duration_minutes=minutes,
                subject=subject,
                status=status.value,
                created_at=now,
                updated_at=now,
            )

        self.log_operation("create_slot", slot_id=slot.id, owner_id=owner_id, forced=allow_conflicts)
        return slot

    # Transitions

    def _apply(
        self,
        slot_id: str,
        event: SlotEvent,
        *,
        student_id: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        slot: Optional[Any] = None,
    ) -> ScheduleSlot:
        """Validate and write one event; CAS misses become SlotUnavailableError."""
        if slot is None:
            slot = self.get_slot(slot_id)
        now = self.clock.now()
        try:
            plan = plan_transition(slot, event, now=now, student_id=student_id, ttl=ttl)
        except DomainException:
            prometheus_metrics.record_slot_transition(event.value, "rejected")
            raise

        with self.transaction():
            updated = self.slot_repository.apply_transition(
                plan, expected_version=slot.version, now=now
            )
            if updated is None:
                prometheus_metrics.record_slot_transition(event.value, "lost_race")
                raise SlotUnavailableError(slot_id, plan.from_status.value, reason="concurrent_update")

        prometheus_metrics.record_slot_transition(event.value, "applied")
        self.logger.info(
            "slot_transition",
            extra={
                "slot_id": slot_id,
                "event": event.value,
                "from_status": plan.from_status.value,
                "to_status": plan.to_status.value,
            },
        )
        return updated

    @BaseService.measure_operation("assign_slot")
    def assign_slot(
        self, slot_id: str, student_id: str, ttl: Optional[timedelta] = None
    ) -> ScheduleSlot:
        """Hold an available slot for one student until ``now + ttl``."""
        if ttl is None:
            ttl = timedelta(hours=settings.default_assignment_ttl_hours)
        slot = self._apply(slot_id, SlotEvent.ASSIGN, student_id=student_id, ttl=ttl)
        send_notification(
            self.notifier,
            student_id,
            f"A lesson on {slot.time_range} is being held for you",
            slot.assignment_expiry,
        )
        return slot

    @BaseService.measure_operation("book_slot")
    def book_slot(self, slot_id: str, student_id: str) -> ScheduleSlot:
        """
        Book a slot for ``student_id``.

        Available slots are booked directly; a slot assigned to this student
        is confirmed. Anything already claimed by someone else, or claimed
        concurrently, raises SlotUnavailableError so the caller can offer
        the waitlist.
        """
        slot = self.get_slot(slot_id)
        status = SlotStatus(slot.status)
        if status == SlotStatus.BOOKED:
            prometheus_metrics.record_slot_transition(SlotEvent.DIRECT_BOOK.value, "lost_race")
            raise SlotUnavailableError(slot_id, status.value, reason="already_booked")
        event = SlotEvent.CONFIRM if status == SlotStatus.ASSIGNED else SlotEvent.DIRECT_BOOK
        return self._apply(slot_id, event, student_id=student_id, slot=slot)

    @BaseService.measure_operation("confirm_assignment")
    def confirm_assignment(self, slot_id: str, student_id: str) -> ScheduleSlot:
        return self._apply(slot_id, SlotEvent.CONFIRM, student_id=student_id)

    @BaseService.measure_operation("decline_assignment")
    def decline_assignment(self, slot_id: str) -> ScheduleSlot:
        return self._apply(slot_id, SlotEvent.DECLINE)

    @BaseService.measure_operation("cancel_slot")
    def cancel_slot(self, slot_id: str) -> CancellationResult:
        """
        Cancel a booking, returning the slot to ``available``.

        After the cancellation commits, the first waiting requester whose
        desired window overlaps the freed slot is notified.
        """
        previous = self.get_slot(slot_id)
        booked_by = previous.booked_by
        slot = self._apply(slot_id, SlotEvent.CANCEL, slot=previous)
        send_notification(self.notifier, booked_by, f"Your lesson on {slot.time_range} was cancelled")
        notified = self.waitlist_service.notify_next_for_slot(slot)
        return CancellationResult(slot=slot, notified_entry=notified)

    @BaseService.measure_operation("complete_slot")
    def complete_slot(self, slot_id: str) -> ScheduleSlot:
        return self._apply(slot_id, SlotEvent.COMPLETE)

    @BaseService.measure_operation("withdraw_slot")
    def withdraw_slot(self, slot_id: str) -> ScheduleSlot:
        return self._apply(slot_id, SlotEvent.WITHDRAW)

    def mark_available(self, slot_id: str) -> ScheduleSlot:
        return self._apply(slot_id, SlotEvent.MARK_AVAILABLE)

    def mark_unavailable(self, slot_id: str) -> ScheduleSlot:
        return self._apply(slot_id, SlotEvent.MARK_UNAVAILABLE)

    @BaseService.measure_operation("expire_assignments")
    def expire_assignments(self, now: Optional[datetime] = None) -> List[str]:
        """
        Release every assignment hold whose expiry has passed.

        Safe to run from several workers: a slot already released or
        confirmed by someone else is skipped.
        """
        now = now or self.clock.now()
        expired_ids: List[str] = []
        released: List[Dict[str, Any]] = []
        with self.transaction():
            for slot in self.slot_repository.get_expired_assignments(now):
                try:
                    plan = plan_transition(slot, SlotEvent.EXPIRE, now=now)
                except DomainException:
                    continue
                holder = {"student_id": slot.assigned_student_id, "range": slot.time_range}
                if self.slot_repository.apply_transition(plan, expected_version=slot.version, now=now):
                    expired_ids.append(slot.id)
                    released.append(holder)

        for item in released:
            prometheus_metrics.record_slot_transition(SlotEvent.EXPIRE.value, "applied")
            send_notification(
                self.notifier, item["student_id"], f"Your hold on {item['range']} has expired"
            )
        if expired_ids:
            self.logger.info("assignments_expired", extra={"count": len(expired_ids)})
        return expired_ids

    # Deletion

    @BaseService.measure_operation("delete_slot")
    def delete_slot(self, slot_id: str, force: bool = False) -> None:
        """
        Delete a slot.

        Raises:
            InvalidTransitionError: slot is terminal, or held without ``force``
            HasDependentsError: open waitlist rows point at it and ``force`` is off
        """
        slot = self.get_slot(slot_id)
        displaces_student = check_deletable(slot.id, slot.status, force=force)
        if not displaces_student and not force:
            dependents = self.slot_repository.count_dependents(slot.id)
            if dependents:
                raise HasDependentsError(slot.id, dependents, current_status=slot.status)

        affected = slot.booked_by or slot.assigned_student_id
        description = str(slot.time_range)
        with self.transaction():
            if not self.slot_repository.delete_slot(slot.id, expected_version=slot.version):
                raise SlotUnavailableError(slot.id, slot.status, reason="concurrent_update")

        self.log_operation("delete_slot", slot_id=slot_id, forced=force)
        if displaces_student:
            send_notification(self.notifier, affected, f"Your lesson on {description} was removed")

    @BaseService.measure_operation("clear_range")
    def clear_range(
        self, owner_id: str, start_date: date, end_date: date, force: bool = False
    ) -> ClearResult:
        """
        Delete every live slot of an owner between two dates (inclusive).

        All slots are checked before anything is removed, so a refused
        clear leaves the window untouched. Cancelled and completed slots
        stay for audit.

        Raises:
            InvalidRangeError: end_date precedes start_date
            InvalidTransitionError: a held slot is in the window and ``force`` is off
            HasDependentsError: open waitlist rows point at a slot and ``force`` is off
        """
        slots = self.list_slots(owner_id, start_date, end_date, statuses=None)
        slots = [slot for slot in slots if not SlotStatus(slot.status).is_terminal]

        displaced: List[Tuple[str, str]] = []
        for slot in slots:
            if check_deletable(slot.id, slot.status, force=force):
                displaced.append((slot.booked_by or slot.assigned_student_id, str(slot.time_range)))
            elif not force:
                dependents = self.slot_repository.count_dependents(slot.id)
                if dependents:
                    raise HasDependentsError(slot.id, dependents, current_status=slot.status)

        deleted = [slot.id for slot in slots]
        with self.transaction():
            for slot in slots:
                if not self.slot_repository.delete_slot(slot.id, expected_version=slot.version):
                    raise SlotUnavailableError(slot.id, slot.status, reason="concurrent_update")

        self.log_operation(
            "clear_range",
            owner_id=owner_id,
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            deleted=len(deleted),
            forced=force,
        )
        for student_id, description in displaced:
            send_notification(self.notifier, student_id, f"Your lesson on {description} was removed")
        return ClearResult(
            deleted_slot_ids=deleted, notified_students=[student for student, _ in displaced]
        )

