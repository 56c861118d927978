# backend/tutorslots/schemas/recurring.py
"""
Recurring pattern schemas.
"""

import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from ..domain.time_range import Weekday
from .base import StandardizedModel, StrictRequestModel
from .time_range import coerce_wall_clock


class RecurringPatternIn(StrictRequestModel):
    day_of_week: Weekday
    start_time: datetime.time
    end_time: datetime.time
    subject: Optional[str] = Field(None, max_length=120)
    duration_minutes: Optional[int] = Field(None, ge=1)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_wall_clock(cls, v: Any) -> Any:
        return coerce_wall_clock(v)


class RecurringExpandRequest(StrictRequestModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    patterns: List[RecurringPatternIn] = Field(..., min_length=1)
    weeks: int = Field(..., ge=1)
    start_date: Optional[datetime.date] = None
    preview_only: bool = False
    create_templates: bool = True
    create_occurrences: bool = True
    override_conflicts: bool = False
    exception_dates: List[datetime.date] = Field(default_factory=list)


class RecurringExpandResponse(StandardizedModel):
    preview_only: bool
    slots_to_create: int
    total_schedule_slots: int
    total_conflicts: int
    conflicts: List[Dict[str, Any]]
    occurrences: List[Dict[str, Any]]
    created_template_ids: List[str]
    created_slot_ids: List[str]
    skipped: List[Dict[str, Any]]
    cancelled: bool


class SeriesUpdateRequest(StrictRequestModel):
    start_time: Optional[datetime.time] = None
    end_time: Optional[datetime.time] = None
    subject: Optional[str] = Field(None, max_length=120)
    apply_from_date: Optional[datetime.date] = None
    allow_conflicts: bool = False

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_wall_clock(cls, v: Any) -> Any:
        return coerce_wall_clock(v)


class SeriesUpdateResponse(StandardizedModel):
    template_id: str
    start_time: str
    end_time: str
    updated_slot_ids: List[str]
    skipped_slot_ids: List[str]
    held_slot_ids: List[str]


class SeriesDeleteResponse(StandardizedModel):
    template_id: str
    deleted_slot_ids: List[str]
    detached_slot_ids: List[str]
    notified_students: int


class TemplateExpandRequest(StrictRequestModel):
    weeks: int = Field(..., ge=1)
    start_date: Optional[datetime.date] = None
    preview_only: bool = False
    override_conflicts: bool = False
    exception_dates: List[datetime.date] = Field(default_factory=list)
