# backend/tutorslots/models/recurring_template.py
"""Weekly recurring pattern that generates concrete schedule slots."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, Date, DateTime, Index, Integer, String, Time

from ..core.ulid_helper import generate_ulid
from ..database import Base
from ..domain.time_range import TimeRange, Weekday


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RecurringTemplate(Base):
    """A teacher's weekly availability pattern."""

    __tablename__ = "recurring_templates"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    owner_id = Column(String(64), nullable=False)
    day_of_week = Column(String(10), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=True)
    subject = Column(String(120), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    recurrence_end_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_recurring_templates_time_order"),
        Index("idx_recurring_templates_owner_day", "owner_id", "day_of_week"),
    )

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(
            start_time=self.start_time,
            end_time=self.end_time,
            day_of_week=Weekday(self.day_of_week),
        )

    def __repr__(self) -> str:
        return f"<RecurringTemplate {self.id} {self.day_of_week} {self.start_time}-{self.end_time}>"
