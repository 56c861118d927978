# backend/tutorslots/services/waitlist_service.py
"""
Waitlist Service for the scheduling core.

Keeps one priority-ordered line per (owner, bucket) and moves requesters
through waiting -> notified -> fulfilled, or notified -> expired.

An offer that nobody answers never blocks the line: when it expires (or
is withdrawn) the next waiting requester in the same bucket gets it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from statistics import mean
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc, system_clock
from ..core.config import settings
from ..core.exceptions import (
    AlreadyQueuedError,
    ConflictException,
    InvalidTransitionError,
    NoAdjacentEntryError,
    NotFoundException,
    ServiceException,
    ValidationException,
)
from ..domain.time_range import TimeRange, Weekday, bucket_key, overlaps
from ..models.waitlist import OPEN_WAITLIST_STATUSES, WaitlistEntry, WaitlistStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notifier import LoggingNotifier, Notifier, send_notification

logger = logging.getLogger(__name__)

ENQUEUE_ATTEMPTS = 3
ENTITY = "waitlist_entry"


@dataclass
class SweepResult:
    expired_ids: List[str] = field(default_factory=list)
    notified_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired": len(self.expired_ids),
            "notified": len(self.notified_ids),
            "expired_ids": self.expired_ids,
            "notified_ids": self.notified_ids,
        }


class WaitlistService(BaseService):
    """
    Service for waitlist queues.

    Every status change is a version-checked UPDATE, so a sweep running in
    two workers expires each offer once and notifies each successor once.
    """

    def __init__(self, db: Session, clock: Clock = system_clock, notifier: Optional[Notifier] = None):
        super().__init__(db, clock)
        self.notifier = notifier or LoggingNotifier()
        self.repository = RepositoryFactory.create_waitlist_repository(db)

    def get_entry(self, entry_id: str) -> WaitlistEntry:
        entry = self.repository.get_by_id(entry_id, fresh=True)
        if entry is None:
            raise NotFoundException(
                "Waitlist entry not found",
                code="WAITLIST_ENTRY_NOT_FOUND",
                details={"entry_id": entry_id},
            )
        return entry

    def list_entries(
        self,
        *,
        owner_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[WaitlistEntry]:
        if not owner_id and not requester_id:
            raise ValidationException("Either owner_id or requester_id is required")
        statuses = [WaitlistStatus(status).value] if status else None
        if requester_id:
            return self.repository.get_requester_entries(
                requester_id, owner_id=owner_id, statuses=statuses
            )
        return self.repository.get_entries(owner_id, statuses=statuses)

    # Queue membership

    @BaseService.measure_operation("enqueue_waitlist")
    def enqueue(
        self,
        owner_id: str,
        requester_id: str,
        desired_range: TimeRange,
        *,
        notes: Optional[str] = None,
        slot_id: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Append a requester to the back of the line for ``desired_range``.

        Raises:
            AlreadyQueuedError: the requester already has an open entry with
                this owner whose desired window overlaps
        """
        for existing in self.repository.get_requester_entries(
            requester_id, owner_id=owner_id, statuses=OPEN_WAITLIST_STATUSES
        ):
            if overlaps(existing.desired_range, desired_range):
                raise AlreadyQueuedError(requester_id, existing.id)

        key = bucket_key(desired_range)
        for attempt in range(1, ENQUEUE_ATTEMPTS + 1):
            try:
                with self.transaction():
                    entry = self.repository.create(
                        requester_id=requester_id,
                        owner_id=owner_id,
                        slot_id=slot_id,
                        day_of_week=desired_range.weekday.value,
                        date=desired_range.date,
                        start_time=desired_range.start_time,
                        end_time=desired_range.end_time,
                        bucket_key=key,
                        priority=self.repository.next_priority(owner_id, key),
                        status=WaitlistStatus.WAITING.value,
                        notes=notes,
                        created_at=self.clock.now(),
                    )
                break
            except ServiceException as exc:
                # Another enqueue took the same priority; read max again
                if not isinstance(exc.__cause__, IntegrityError) or attempt == ENQUEUE_ATTEMPTS:
                    raise
                self.logger.info(
                    "waitlist_priority_collision", extra={"bucket_key": key, "attempt": attempt}
                )

        prometheus_metrics.record_waitlist_event("enqueued")
        self.log_operation("enqueue_waitlist", entry_id=entry.id, bucket_key=key, priority=entry.priority)
        return entry

    @BaseService.measure_operation("remove_waitlist_entry")
    def remove(self, entry_id: str) -> Optional[WaitlistEntry]:
        """
        Withdraw a non-terminal entry.

        Withdrawing a notified entry passes its offer to the next waiting
        requester, which is returned.
        """
        entry = self.get_entry(entry_id)
        status = WaitlistStatus(entry.status)
        if status.is_terminal:
            raise InvalidTransitionError(entry.id, status.value, "remove", entity=ENTITY)

        owner_id, key, slot_id = entry.owner_id, entry.bucket_key, entry.slot_id
        with self.transaction():
            if not self.repository.delete_entry(entry.id, expected_version=entry.version):
                raise ConflictException(
                    "Waitlist entry changed while removing; retry",
                    code="WAITLIST_CHANGED",
                    details={"entry_id": entry_id},
                )
            self.repository.renumber_bucket(owner_id, key)

        prometheus_metrics.record_waitlist_event("removed")
        self.log_operation("remove_waitlist_entry", entry_id=entry_id, status=status.value)
        if status == WaitlistStatus.NOTIFIED:
            return self._offer_next(owner_id, key, slot_id=slot_id)
        return None

    # Ordering

    @BaseService.measure_operation("promote_waitlist")
    def promote(self, entry_id: str) -> List[WaitlistEntry]:
        """Swap with the entry ahead; returns the line afterwards."""
        return self._move(entry_id, step=-1, direction="up")

    @BaseService.measure_operation("demote_waitlist")
    def demote(self, entry_id: str) -> List[WaitlistEntry]:
        """Swap with the entry behind; returns the line afterwards."""
        return self._move(entry_id, step=1, direction="down")

    def _move(self, entry_id: str, *, step: int, direction: str) -> List[WaitlistEntry]:
        entry = self.get_entry(entry_id)
        if WaitlistStatus(entry.status).is_terminal:
            raise InvalidTransitionError(entry.id, entry.status, f"move_{direction}", entity=ENTITY)

        line = self.repository.get_line(entry.owner_id, entry.bucket_key)
        index = next(i for i, item in enumerate(line) if item.id == entry.id)
        neighbour_index = index + step
        if neighbour_index < 0 or neighbour_index >= len(line):
            raise NoAdjacentEntryError(entry.id, direction)

        with self.transaction():
            if not self.repository.swap_priority(entry, line[neighbour_index]):
                raise ConflictException(
                    "Waitlist changed while reordering; retry",
                    code="WAITLIST_CHANGED",
                    details={"entry_id": entry_id},
                )

        prometheus_metrics.record_waitlist_event("promoted" if step < 0 else "demoted")
        return self.repository.get_line(entry.owner_id, entry.bucket_key)

    def position(self, entry_id: str) -> Optional[int]:
        """1-based place in line, or None once the entry is terminal."""
        entry = self.get_entry(entry_id)
        if WaitlistStatus(entry.status).is_terminal:
            return None
        line = self.repository.get_line(entry.owner_id, entry.bucket_key)
        return next(i for i, item in enumerate(line) if item.id == entry.id) + 1

    # Offers

    @BaseService.measure_operation("notify_waitlist_entry")
    def notify(
        self,
        entry_id: str,
        ttl: Optional[timedelta] = None,
        message: Optional[str] = None,
        *,
        slot_id: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Offer the window to a waiting requester for ``ttl``.

        Raises:
            InvalidTransitionError: the entry is not (or no longer) waiting
        """
        entry = self.get_entry(entry_id)
        return self._notify_entry(entry, ttl=ttl, message=message, slot_id=slot_id)

    def _notify_entry(
        self,
        entry: WaitlistEntry,
        *,
        ttl: Optional[timedelta] = None,
        message: Optional[str] = None,
        slot_id: Optional[str] = None,
    ) -> WaitlistEntry:
        if entry.status != WaitlistStatus.WAITING.value:
            raise InvalidTransitionError(entry.id, entry.status, "notify", entity=ENTITY)
        ttl = ttl or timedelta(hours=settings.waitlist_notify_ttl_hours)
        if ttl <= timedelta(0):
            raise ValidationException("Notification ttl must be positive")

        now = self.clock.now()
        values: Dict[str, Any] = {
            "status": WaitlistStatus.NOTIFIED.value,
            "notified_at": now,
            "expires_at": now + ttl,
        }
        if slot_id:
            values["slot_id"] = slot_id
        with self.transaction():
            updated = self.repository.compare_and_swap(
                entry.id,
                expected_version=entry.version,
                expected_status=WaitlistStatus.WAITING.value,
                values=values,
            )
            if updated is None:
                raise InvalidTransitionError(entry.id, entry.status, "notify", entity=ENTITY)

        prometheus_metrics.record_waitlist_event("notified")
        send_notification(
            self.notifier,
            updated.requester_id,
            message or f"A spot opened up for {updated.desired_range}; please respond in time",
            values["expires_at"],
        )
        return updated

    @BaseService.measure_operation("fulfill_waitlist_entry")
    def fulfill(self, entry_id: str) -> WaitlistEntry:
        entry = self.get_entry(entry_id)
        if entry.status != WaitlistStatus.NOTIFIED.value:
            raise InvalidTransitionError(entry.id, entry.status, "fulfill", entity=ENTITY)
        now = self.clock.now()
        if ensure_utc(entry.expires_at) < ensure_utc(now):
            raise InvalidTransitionError(
                entry.id, entry.status, "fulfill", entity=ENTITY, message="The offer has expired"
            )

        with self.transaction():
            updated = self.repository.compare_and_swap(
                entry.id,
                expected_version=entry.version,
                expected_status=WaitlistStatus.NOTIFIED.value,
                values={"status": WaitlistStatus.FULFILLED.value, "fulfilled_at": now},
            )
            if updated is None:
                raise InvalidTransitionError(entry.id, entry.status, "fulfill", entity=ENTITY)

        prometheus_metrics.record_waitlist_event("fulfilled")
        return updated

    def extend(self, entry_id: str, hours: int) -> WaitlistEntry:
        """Push a live offer's deadline out by ``hours``."""
        if hours < 1 or hours > settings.waitlist_max_extend_hours:
            raise ValidationException(
                f"Extension must be between 1 and {settings.waitlist_max_extend_hours} hours",
                details={"hours": hours},
            )
        entry = self.get_entry(entry_id)
        if entry.status != WaitlistStatus.NOTIFIED.value:
            raise InvalidTransitionError(entry.id, entry.status, "extend", entity=ENTITY)

        base = max(ensure_utc(entry.expires_at), ensure_utc(self.clock.now()))
        with self.transaction():
            updated = self.repository.compare_and_swap(
                entry.id,
                expected_version=entry.version,
                expected_status=WaitlistStatus.NOTIFIED.value,
                values={"expires_at": base + timedelta(hours=hours)},
            )
            if updated is None:
                raise InvalidTransitionError(entry.id, entry.status, "extend", entity=ENTITY)
        return updated

    @BaseService.measure_operation("sweep_expired_waitlist")
    def expire_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire lapsed offers and pass each one to the next waiting entry.

        Idempotent: an offer already expired by another sweep is skipped.
        """
        now = now or self.clock.now()
        result = SweepResult()
        for entry in self.repository.get_expired_offers(now):
            with self.transaction():
                expired = self.repository.compare_and_swap(
                    entry.id,
                    expected_version=entry.version,
                    expected_status=WaitlistStatus.NOTIFIED.value,
                    values={"status": WaitlistStatus.EXPIRED.value},
                )
            if expired is None:
                continue
            result.expired_ids.append(expired.id)
            prometheus_metrics.record_waitlist_event("expired")
            successor = self._offer_next(expired.owner_id, expired.bucket_key, slot_id=expired.slot_id)
            if successor is not None:
                result.notified_ids.append(successor.id)

        if result.expired_ids:
            self.logger.info("waitlist_sweep", extra=result.to_dict())
        return result

    def _offer_next(
        self, owner_id: str, key: str, *, slot_id: Optional[str] = None
    ) -> Optional[WaitlistEntry]:
        while True:
            candidate = self.repository.next_waiting(owner_id, key)
            if candidate is None:
                return None
            try:
                return self._notify_entry(candidate, slot_id=slot_id)
            except InvalidTransitionError:
                # Someone else moved it first; look again
                continue

    def notify_next_for_slot(self, slot: Any) -> Optional[WaitlistEntry]:
        """
        Offer a freed slot to the first waiting requester who wants it.

        Exact-date waits are served before weekly ones, then priority.
        """
        freed = slot.time_range
        for candidate in self.repository.find_waiting_for_day(
            slot.owner_id, slot.date, Weekday.from_date(slot.date).value
        ):
            if not overlaps(candidate.desired_range, freed):
                continue
            try:
                return self._notify_entry(candidate, slot_id=slot.id)
            except InvalidTransitionError:
                continue
        return None

    # Estimates

    def estimate_wait(self, entry_id: str) -> Dict[str, Any]:
        """
        Advisory wait estimate: mean historical time-to-fulfilment in this
        bucket multiplied by the entry's place in line.
        """
        entry = self.get_entry(entry_id)
        place = self.position(entry_id)
        intervals = [
            (ensure_utc(done.fulfilled_at) - ensure_utc(done.created_at)).total_seconds() / 3600
            for done in self.repository.get_fulfilled(entry.owner_id, entry.bucket_key)
            if done.fulfilled_at is not None and done.created_at is not None
        ]
        average = round(mean(intervals), 2) if intervals else None
        estimate = round(average * place, 2) if average is not None and place else None
        return {
            "entry_id": entry.id,
            "position": place,
            "average_fulfillment_hours": average,
            "estimated_wait_hours": estimate,
            "sample_size": len(intervals),
            "advisory": True,
        }
