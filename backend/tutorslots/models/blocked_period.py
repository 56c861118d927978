# backend/tutorslots/models/blocked_period.py
"""Blocked periods: times a teacher never takes lessons."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Index, String, Time

from ..core.ulid_helper import generate_ulid
from ..database import Base
from ..domain.time_range import TimeRange, Weekday


class BlockedPeriod(Base):
    """
    Either a weekly block (``day_of_week``) or a one-off block (``date``).
    """

    __tablename__ = "blocked_periods"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    owner_id = Column(String(64), nullable=False)
    day_of_week = Column(String(10), nullable=True)
    date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_blocked_periods_time_order"),
        CheckConstraint(
            "day_of_week IS NOT NULL OR date IS NOT NULL", name="ck_blocked_periods_day_or_date"
        ),
        Index("idx_blocked_periods_owner_day", "owner_id", "day_of_week"),
        Index("idx_blocked_periods_owner_date", "owner_id", "date"),
    )

    @property
    def time_range(self) -> TimeRange:
        if self.date is not None:
            return TimeRange(start_time=self.start_time, end_time=self.end_time, date=self.date)
        return TimeRange(
            start_time=self.start_time,
            end_time=self.end_time,
            day_of_week=Weekday(self.day_of_week),
        )

    def __repr__(self) -> str:
        return f"<BlockedPeriod {self.date or self.day_of_week} - {self.reason or 'No reason'}>"
