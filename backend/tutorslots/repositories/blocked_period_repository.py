# backend/tutorslots/repositories/blocked_period_repository.py
"""Blocked period data access."""

from datetime import date
from typing import List

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..models.blocked_period import BlockedPeriod
from .base_repository import BaseRepository


class BlockedPeriodRepository(BaseRepository[BlockedPeriod]):
    def __init__(self, db: Session):
        super().__init__(db, BlockedPeriod)

    def get_blocked_periods(self, owner_id: str, start_date: date, end_date: date) -> List[BlockedPeriod]:
        """One-off blocks inside the date range plus every weekly block."""
        query = self._build_query().filter(
            BlockedPeriod.owner_id == owner_id,
            or_(
                BlockedPeriod.day_of_week.isnot(None),
                and_(BlockedPeriod.date >= start_date, BlockedPeriod.date <= end_date),
            ),
        )
        return self._execute_query(query.order_by(BlockedPeriod.start_time))
