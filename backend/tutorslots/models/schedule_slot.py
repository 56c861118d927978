# backend/tutorslots/models/schedule_slot.py
"""
Schedule slot model.

A ScheduleSlot is one bookable, dated unit of a teacher's calendar time.
Its ``status`` follows the slot state machine in
``tutorslots.domain.slot_state_machine``; every write goes through a
version-checked conditional update so two callers can never both win the
same transition.
"""

from datetime import datetime, timezone
from enum import Enum
import logging

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
)

from ..core.ulid_helper import generate_ulid
from ..database import Base
from ..domain.time_range import TimeRange

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SlotStatus(str, Enum):
    """Slot lifecycle statuses."""

    UNAVAILABLE = "unavailable"  # Explicitly blocked by the teacher
    AVAILABLE = "available"  # Open for assignment or direct booking
    ASSIGNED = "assigned"  # Held for one student until assignment_expiry
    BOOKED = "booked"
    CANCELLED = "cancelled"  # Terminal, kept for audit
    COMPLETED = "completed"  # Terminal, kept for audit

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_SLOT_STATUSES

    @property
    def is_held(self) -> bool:
        """Someone other than the teacher has a claim on this slot."""
        return self in (SlotStatus.ASSIGNED, SlotStatus.BOOKED)


TERMINAL_SLOT_STATUSES = frozenset({SlotStatus.CANCELLED, SlotStatus.COMPLETED})
ACTIVE_SLOT_STATUSES = [
    SlotStatus.UNAVAILABLE.value,
    SlotStatus.AVAILABLE.value,
    SlotStatus.ASSIGNED.value,
    SlotStatus.BOOKED.value,
]


class ScheduleSlot(Base):
    """Dated slot owned by a teacher."""

    __tablename__ = "schedule_slots"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    owner_id = Column(String(64), nullable=False)
    template_id = Column(
        String(26), ForeignKey("recurring_templates.id", ondelete="SET NULL"), nullable=True
    )

    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    subject = Column(String(120), nullable=True)

    status = Column(String(20), nullable=False, default=SlotStatus.AVAILABLE.value)
    assigned_student_id = Column(String(64), nullable=True)
    assignment_expiry = Column(DateTime(timezone=True), nullable=True)
    booked_by = Column(String(64), nullable=True)

    # Bumped on every transition; compare-and-swap key
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=_now_utc)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_schedule_slots_time_order"),
        CheckConstraint(
            "status IN ('unavailable','available','assigned','booked','cancelled','completed')",
            name="ck_schedule_slots_status",
        ),
        Index("idx_schedule_slots_owner_date", "owner_id", "date"),
        Index("idx_schedule_slots_template", "template_id"),
        Index("idx_schedule_slots_status_expiry", "status", "assignment_expiry"),
    )

    @property
    def slot_status(self) -> SlotStatus:
        return SlotStatus(self.status)

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start_time=self.start_time, end_time=self.end_time, date=self.date)

    def __repr__(self) -> str:
        return f"<ScheduleSlot {self.id} {self.date} {self.start_time}-{self.end_time} {self.status}>"
