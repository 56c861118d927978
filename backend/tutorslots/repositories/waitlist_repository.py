# backend/tutorslots/repositories/waitlist_repository.py
"""
Waitlist Repository for the scheduling core.

Priority changes never leave two entries of one bucket on the same number,
even mid-transaction: moves go through a temporary negative priority
first, so the ``(owner_id, bucket_key, priority)`` unique constraint holds
after every flush.
"""

from datetime import date, datetime
import logging
from typing import Iterable, List, Optional

from sqlalchemy import and_, delete, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.waitlist import OPEN_WAITLIST_STATUSES, WaitlistEntry, WaitlistStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WaitlistRepository(BaseRepository[WaitlistEntry]):
    """Repository for waitlist entries."""

    def __init__(self, db: Session):
        super().__init__(db, WaitlistEntry)

    def get_entries(
        self,
        owner_id: str,
        bucket_key: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> List[WaitlistEntry]:
        """Entries for an owner (optionally one bucket), front of the line first."""
        query = self._build_query().filter(WaitlistEntry.owner_id == owner_id)
        if bucket_key is not None:
            query = query.filter(WaitlistEntry.bucket_key == bucket_key)
        if statuses is not None:
            query = query.filter(WaitlistEntry.status.in_(list(statuses)))
        return self._execute_query(
            query.order_by(WaitlistEntry.bucket_key, WaitlistEntry.priority)
        )

    def get_requester_entries(
        self,
        requester_id: str,
        *,
        owner_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> List[WaitlistEntry]:
        query = self._build_query().filter(WaitlistEntry.requester_id == requester_id)
        if owner_id is not None:
            query = query.filter(WaitlistEntry.owner_id == owner_id)
        if statuses is not None:
            query = query.filter(WaitlistEntry.status.in_(list(statuses)))
        return self._execute_query(query.order_by(WaitlistEntry.created_at))

    def get_line(self, owner_id: str, bucket_key: str) -> List[WaitlistEntry]:
        """Open entries of one bucket in priority order."""
        return self.get_entries(owner_id, bucket_key, OPEN_WAITLIST_STATUSES)

    def next_priority(self, owner_id: str, bucket_key: str) -> int:
        """``max(priority) + 1`` over the whole bucket, or 0 when empty."""
        try:
            current = (
                self.db.query(func.max(WaitlistEntry.priority))
                .filter(WaitlistEntry.owner_id == owner_id, WaitlistEntry.bucket_key == bucket_key)
                .scalar()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error reading max priority for {bucket_key}: {str(e)}")
            raise RepositoryException(f"Failed to read waitlist priority: {str(e)}")
        return 0 if current is None else int(current) + 1

    def next_waiting(self, owner_id: str, bucket_key: str) -> Optional[WaitlistEntry]:
        query = (
            self._build_query()
            .filter(
                WaitlistEntry.owner_id == owner_id,
                WaitlistEntry.bucket_key == bucket_key,
                WaitlistEntry.status == WaitlistStatus.WAITING.value,
            )
            .order_by(WaitlistEntry.priority)
            .limit(1)
        )
        rows = self._execute_query(query)
        return rows[0] if rows else None

    def find_waiting_for_day(self, owner_id: str, on_date: date, weekday: str) -> List[WaitlistEntry]:
        """
        Waiting entries whose desired window could be served on ``on_date``.

        Exact-date buckets come before weekly ones, then priority order.
        """
        query = self._build_query().filter(
            WaitlistEntry.owner_id == owner_id,
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
            or_(
                WaitlistEntry.date == on_date,
                and_(WaitlistEntry.date.is_(None), WaitlistEntry.day_of_week == weekday),
            ),
        )
        rows = self._execute_query(query)
        return sorted(rows, key=lambda e: (e.date is None, e.priority, e.created_at))

    def get_expired_offers(self, now: datetime, limit: int = 500) -> List[WaitlistEntry]:
        query = (
            self._build_query()
            .filter(
                WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
                WaitlistEntry.expires_at < now,
            )
            .order_by(WaitlistEntry.expires_at)
            .limit(limit)
        )
        return self._execute_query(query)

    def get_fulfilled(self, owner_id: str, bucket_key: str) -> List[WaitlistEntry]:
        return self.get_entries(owner_id, bucket_key, [WaitlistStatus.FULFILLED.value])

    def save(self, entry: WaitlistEntry) -> WaitlistEntry:
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error saving waitlist entry {entry.id}: {str(e)}")
            raise RepositoryException(f"Failed to save waitlist entry: {str(e)}")
        return entry

    def swap_priority(self, first: WaitlistEntry, second: WaitlistEntry) -> bool:
        """
        Exchange the priorities of two entries in the same bucket.

        Each step is version-checked; False means one of the rows moved
        under us and the caller must roll back.
        """
        first_priority, second_priority = first.priority, second.priority
        first_version, second_version = first.version, second.version

        parked = self.compare_and_swap(
            first.id,
            expected_version=first_version,
            values={"priority": _parking_priority(first_priority)},
        )
        if parked is None:
            return False
        self.db.flush()
        moved = self.compare_and_swap(
            second.id, expected_version=second_version, values={"priority": first_priority}
        )
        if moved is None:
            return False
        self.db.flush()
        placed = self.compare_and_swap(
            first.id, expected_version=first_version + 1, values={"priority": second_priority}
        )
        return placed is not None

    def delete_entry(self, entry_id: str, *, expected_version: int) -> bool:
        try:
            result = self.db.execute(
                delete(WaitlistEntry).where(
                    WaitlistEntry.id == entry_id, WaitlistEntry.version == expected_version
                )
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting waitlist entry {entry_id}: {str(e)}")
            raise RepositoryException(f"Failed to delete waitlist entry: {str(e)}")
        return result.rowcount == 1

    def renumber_bucket(self, owner_id: str, bucket_key: str) -> int:
        """
        Pack a bucket's open entries onto the lowest free priorities,
        keeping their order.

        Fulfilled and expired rows are history and keep their numbers; open
        entries step around them. Runs inside the caller's transaction. Rows
        are parked on negative priorities first so the unique constraint
        holds after each flush.
        """
        entries = sorted(self.get_line(owner_id, bucket_key), key=lambda e: e.priority)
        held = {
            e.priority
            for e in self.get_entries(owner_id, bucket_key)
            if WaitlistStatus(e.status).is_terminal
        }
        targets = _free_priorities(held, len(entries))
        try:
            for index, entry in enumerate(entries):
                entry.priority = _parking_priority(index)
                entry.version = WaitlistEntry.version + 1
            self.db.flush()
            for entry, priority in zip(entries, targets):
                entry.priority = priority
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error renumbering bucket {bucket_key}: {str(e)}")
            raise RepositoryException(f"Failed to renumber waitlist: {str(e)}")
        return len(entries)


def _parking_priority(priority: int) -> int:
    # Live priorities are never negative
    return -priority - 1


def _free_priorities(taken: Iterable[int], count: int) -> List[int]:
    used = set(taken)
    free: List[int] = []
    candidate = 0
    while len(free) < count:
        if candidate not in used:
            free.append(candidate)
        candidate += 1
    return free
