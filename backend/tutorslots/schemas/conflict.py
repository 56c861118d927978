# backend/tutorslots/schemas/conflict.py
"""
Conflict detection and resolution schemas.

Report bodies are produced by the services' ``to_dict`` and carried as
plain JSON objects; only the envelopes are typed here.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field, model_validator

from ..services.conflict_resolver import PreferredDirection, ResolutionStrategy
from .base import StandardizedModel, StrictRequestModel
from .time_range import DateRangeIn, TimeRangeIn


class ConflictCheckRequest(StrictRequestModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    proposed_ranges: List[TimeRangeIn] = Field(..., min_length=1, max_length=100)
    exclude_slot_ids: List[str] = Field(default_factory=list)
    exclude_template_ids: List[str] = Field(default_factory=list)
    check_templates: bool = True
    check_slots: bool = True
    check_blocked: bool = True
    date_range: Optional[DateRangeIn] = None


class ConflictCheckResponse(StandardizedModel):
    has_conflicts: bool
    total_conflicts: int
    reports: List[Dict[str, Any]]


class ConflictItemIn(StrictRequestModel):
    proposed_range: TimeRangeIn
    conflicting_slot_ids: List[str] = Field(default_factory=list)
    slot_id: Optional[str] = None
    subject: Optional[str] = Field(None, max_length=120)


class AdjustmentPreferencesIn(StrictRequestModel):
    preferred_direction: PreferredDirection = PreferredDirection.ANY
    max_adjustment_minutes: Optional[int] = None
    allow_day_change: bool = False


class ConflictResolveRequest(StrictRequestModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    conflicts: List[ConflictItemIn] = Field(..., min_length=1, max_length=50)
    strategy: ResolutionStrategy
    preferences: Optional[AdjustmentPreferencesIn] = None

    @model_validator(mode="after")
    def _preferences_only_for_search(self) -> "ConflictResolveRequest":
        if self.preferences is not None and self.strategy == ResolutionStrategy.FORCE_OVERRIDE:
            raise ValueError("preferences do not apply to force_override")
        return self


class ConflictResolveResponse(StandardizedModel):
    strategy: str
    resolved_count: int
    total_conflicts: int
    cancelled: bool
    resolutions: List[Dict[str, Any]]
