# backend/tutorslots/schemas/waitlist.py
"""
Waitlist schemas.
"""

import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field

from .base import StandardizedModel, StrictRequestModel
from .time_range import TimeRangeIn


class WaitlistEnqueue(StrictRequestModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    requester_id: str = Field(..., min_length=1, max_length=64)
    desired_range: TimeRangeIn
    slot_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)


class WaitlistNotify(StrictRequestModel):
    ttl_hours: Optional[int] = Field(None, ge=1, le=168)
    message: Optional[str] = Field(None, max_length=500)


class WaitlistExtend(StrictRequestModel):
    hours: int = Field(..., ge=1)


class WaitlistEntryResponse(StandardizedModel):
    id: str
    owner_id: str
    requester_id: str
    slot_id: Optional[str] = None
    day_of_week: str
    date: Optional[datetime.date] = None
    start_time: datetime.time
    end_time: datetime.time
    bucket_key: str
    priority: int
    status: str
    notes: Optional[str] = None
    created_at: datetime.datetime
    expires_at: Optional[datetime.datetime] = None
    notified_at: Optional[datetime.datetime] = None
    fulfilled_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WaitlistListResponse(StandardizedModel):
    entries: List[WaitlistEntryResponse]
    total: int


class WaitlistRemoveResponse(StandardizedModel):
    removed_id: str
    notified_entry: Optional[WaitlistEntryResponse] = None


class WaitlistPositionResponse(StandardizedModel):
    entry_id: str
    position: Optional[int] = None
    average_fulfillment_hours: Optional[float] = None
    estimated_wait_hours: Optional[float] = None
    sample_size: int = 0
    advisory: bool = True


class WaitlistSweepResponse(StandardizedModel):
    expired: int
    notified: int
    expired_ids: List[str]
    notified_ids: List[str]
