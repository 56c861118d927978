# backend/tutorslots/schemas/slot.py
"""
Schedule slot schemas.

Responses mirror the stored row; ``day_of_week`` is derived from the date.
"""

import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, computed_field

from ..models.schedule_slot import SlotStatus
from .base import StandardizedModel, StrictRequestModel
from .time_range import TimeRangeIn


class SlotCreate(StrictRequestModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    time_range: TimeRangeIn
    subject: Optional[str] = Field(None, max_length=120)
    status: SlotStatus = SlotStatus.AVAILABLE
    allow_conflicts: bool = False


class StudentAction(StrictRequestModel):
    student_id: str = Field(..., min_length=1, max_length=64)


class AssignRequest(StudentAction):
    ttl_hours: Optional[int] = Field(None, ge=1, le=168)


class SlotResponse(StandardizedModel):
    id: str
    owner_id: str
    template_id: Optional[str] = None
    date: datetime.date
    start_time: datetime.time
    end_time: datetime.time
    duration_minutes: int
    subject: Optional[str] = None
    status: str
    assigned_student_id: Optional[str] = None
    assignment_expiry: Optional[datetime.datetime] = None
    booked_by: Optional[str] = None
    version: int

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def day_of_week(self) -> str:
        return self.date.strftime("%A")


class SlotListResponse(StandardizedModel):
    slots: List[SlotResponse]
    total: int


class CancellationResponse(StandardizedModel):
    slot: SlotResponse
    notified_waitlist_entry_id: Optional[str] = None


class SlotClearResponse(StandardizedModel):
    deleted_slot_ids: List[str]
    deleted: int
    notified_students: List[str]
