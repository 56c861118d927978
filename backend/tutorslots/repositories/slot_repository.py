# backend/tutorslots/repositories/slot_repository.py
"""
Slot Repository for the scheduling core.

Data access for concrete schedule slots: range queries for conflict
detection, version-checked state transitions, and the dependent-row
lookups that guard deletes.
"""

from datetime import date, datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..domain.slot_state_machine import TransitionPlan
from ..models.schedule_slot import ACTIVE_SLOT_STATUSES, ScheduleSlot, SlotStatus
from ..models.waitlist import OPEN_WAITLIST_STATUSES, WaitlistEntry
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SlotRepository(BaseRepository[ScheduleSlot]):
    """Repository for schedule slots."""

    def __init__(self, db: Session):
        super().__init__(db, ScheduleSlot)

    def get_slots(
        self,
        owner_id: str,
        start_date: date,
        end_date: date,
        *,
        statuses: Optional[Iterable[str]] = None,
        exclude_ids: Optional[Iterable[str]] = None,
    ) -> List[ScheduleSlot]:
        """
        Slots for an owner within an inclusive date range.

        Defaults to non-terminal statuses, which are the only ones that can
        conflict with new work.
        """
        query = self._build_query().filter(
            ScheduleSlot.owner_id == owner_id,
            ScheduleSlot.date >= start_date,
            ScheduleSlot.date <= end_date,
            ScheduleSlot.status.in_(list(statuses or ACTIVE_SLOT_STATUSES)),
        )
        excluded = list(exclude_ids or [])
        if excluded:
            query = query.filter(~ScheduleSlot.id.in_(excluded))
        return self._execute_query(query.order_by(ScheduleSlot.date, ScheduleSlot.start_time))

    def get_template_occurrences(
        self,
        template_id: str,
        *,
        from_date: Optional[date] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> List[ScheduleSlot]:
        query = self._build_query().filter(ScheduleSlot.template_id == template_id)
        if from_date is not None:
            query = query.filter(ScheduleSlot.date >= from_date)
        if statuses is not None:
            query = query.filter(ScheduleSlot.status.in_(list(statuses)))
        return self._execute_query(query.order_by(ScheduleSlot.date))

    def get_expired_assignments(self, now: datetime, limit: int = 500) -> List[ScheduleSlot]:
        query = (
            self._build_query()
            .filter(
                ScheduleSlot.status == SlotStatus.ASSIGNED.value,
                ScheduleSlot.assignment_expiry <= now,
            )
            .order_by(ScheduleSlot.assignment_expiry)
            .limit(limit)
        )
        return self._execute_query(query)

    def create_slots(self, slots: List[Dict[str, Any]]) -> List[ScheduleSlot]:
        return self.bulk_create(slots)

    def apply_transition(
        self, plan: TransitionPlan, *, expected_version: int, now: datetime
    ) -> Optional[ScheduleSlot]:
        """
        Write a validated transition if the slot is still where the plan
        found it.

        Returns None when a concurrent writer changed the slot first.
        """
        slot = self.compare_and_swap(
            plan.slot_id,
            expected_version=expected_version,
            expected_status=plan.from_status.value,
            values={**plan.values, "updated_at": now},
        )
        if slot is not None:
            self.logger.debug(
                "slot_transition_applied",
                extra={
                    "slot_id": plan.slot_id,
                    "event": plan.event.value,
                    "from_status": plan.from_status.value,
                    "to_status": plan.to_status.value,
                },
            )
        return slot

    def count_dependents(self, slot_id: str) -> Dict[str, int]:
        """Open rows that reference the slot, keyed by kind."""
        try:
            waitlist = (
                self.db.query(WaitlistEntry)
                .filter(
                    WaitlistEntry.slot_id == slot_id,
                    WaitlistEntry.status.in_(OPEN_WAITLIST_STATUSES),
                )
                .count()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting dependents of slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to count slot dependents: {str(e)}")
        return {"waitlist_entries": waitlist} if waitlist else {}

    def delete_slot(self, slot_id: str, *, expected_version: int) -> bool:
        """
        Remove a slot row if it is still at ``expected_version``, unlinking
        any waitlist rows that point at it.

        Guard checks (status, dependents, force) are the service's job.
        """
        try:
            result = self.db.execute(
                delete(ScheduleSlot).where(
                    ScheduleSlot.id == slot_id, ScheduleSlot.version == expected_version
                )
            )
            if result.rowcount != 1:
                return False
            self.db.execute(
                update(WaitlistEntry)
                .where(WaitlistEntry.slot_id == slot_id)
                .values(slot_id=None)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to delete slot: {str(e)}")
        return True

    def detach_from_template(self, slot_ids: List[str]) -> int:
        if not slot_ids:
            return 0
        try:
            result = self.db.execute(
                update(ScheduleSlot)
                .where(ScheduleSlot.id.in_(slot_ids))
                .values(template_id=None, version=ScheduleSlot.version + 1)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error detaching slots from template: {str(e)}")
            raise RepositoryException(f"Failed to detach slots: {str(e)}")
        return int(result.rowcount or 0)
