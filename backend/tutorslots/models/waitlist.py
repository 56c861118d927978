# backend/tutorslots/models/waitlist.py
"""
Waitlist entry model.

Entries are grouped into buckets (owner + desired window). Within a bucket
``priority`` is a strict total order, enforced by a unique constraint;
lower numbers are nearer the front of the line.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)

from ..core.ulid_helper import generate_ulid
from ..database import Base
from ..domain.time_range import TimeRange, Weekday


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    EXPIRED = "expired"
    FULFILLED = "fulfilled"

    @property
    def is_terminal(self) -> bool:
        return self in (WaitlistStatus.EXPIRED, WaitlistStatus.FULFILLED)


OPEN_WAITLIST_STATUSES = [WaitlistStatus.WAITING.value, WaitlistStatus.NOTIFIED.value]


class WaitlistEntry(Base):
    """One requester waiting for a contested window."""

    __tablename__ = "waitlist_entries"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    requester_id = Column(String(64), nullable=False)
    owner_id = Column(String(64), nullable=False)
    slot_id = Column(String(26), ForeignKey("schedule_slots.id", ondelete="SET NULL"), nullable=True)

    day_of_week = Column(String(10), nullable=False)
    date = Column(Date, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    bucket_key = Column(String(64), nullable=False)

    priority = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=WaitlistStatus.WAITING.value)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("owner_id", "bucket_key", "priority", name="uq_waitlist_bucket_priority"),
        Index("idx_waitlist_owner_bucket_status", "owner_id", "bucket_key", "status"),
        Index("idx_waitlist_status_expires", "status", "expires_at"),
        Index("idx_waitlist_requester", "requester_id"),
    )

    @property
    def waitlist_status(self) -> WaitlistStatus:
        return WaitlistStatus(self.status)

    @property
    def desired_range(self) -> TimeRange:
        if self.date is not None:
            return TimeRange(start_time=self.start_time, end_time=self.end_time, date=self.date)
        return TimeRange(
            start_time=self.start_time,
            end_time=self.end_time,
            day_of_week=Weekday(self.day_of_week),
        )

    def __repr__(self) -> str:
        return f"<WaitlistEntry {self.id} {self.bucket_key} p={self.priority} {self.status}>"
