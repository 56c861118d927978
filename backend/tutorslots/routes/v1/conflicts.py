# backend/tutorslots/routes/v1/conflicts.py
"""
Conflict routes - API v1

Endpoints:
    POST /check - Screen proposed ranges against an owner's schedule
    POST /resolve - Suggest, auto-apply or force resolutions
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import get_conflict_detector, get_conflict_resolver
from ...core.config import settings
from ...core.exceptions import DomainException
from ...schemas.conflict import (
    ConflictCheckRequest,
    ConflictCheckResponse,
    ConflictResolveRequest,
    ConflictResolveResponse,
)
from ...services.conflict_detector import ConflictDetector
from ...services.conflict_resolver import AdjustmentPreferences, ConflictItem, ConflictResolver
from .common import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conflicts-v1"])


@router.post("/check", response_model=ConflictCheckResponse)
async def check_conflicts(
    payload: ConflictCheckRequest,
    detector: ConflictDetector = Depends(get_conflict_detector),
) -> ConflictCheckResponse:
    """Report every template, slot and blocked-period conflict for each range."""
    try:
        ranges = [item.to_domain() for item in payload.proposed_ranges]
        reports = await asyncio.to_thread(
            detector.detect_conflicts_batch,
            payload.owner_id,
            ranges,
            exclude_slot_ids=payload.exclude_slot_ids,
            exclude_template_ids=payload.exclude_template_ids,
            check_templates=payload.check_templates,
            check_slots=payload.check_slots,
            check_blocked=payload.check_blocked,
            date_range=payload.date_range.as_tuple() if payload.date_range else None,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return ConflictCheckResponse(
        has_conflicts=any(r.has_conflicts for r in reports),
        total_conflicts=sum(r.total_conflicts for r in reports),
        reports=[r.to_dict() for r in reports],
    )


@router.post("/resolve", response_model=ConflictResolveResponse)
async def resolve_conflicts(
    payload: ConflictResolveRequest,
    resolver: ConflictResolver = Depends(get_conflict_resolver),
) -> ConflictResolveResponse:
    """
    Resolve conflicts with the requested strategy.

    ``auto_adjust`` failures are reported per conflict in ``resolutions``
    rather than failing the whole request.
    """
    try:
        items = [
            ConflictItem(
                proposed_range=item.proposed_range.to_domain(),
                conflicting_slot_ids=item.conflicting_slot_ids,
                slot_id=item.slot_id,
                subject=item.subject,
            )
            for item in payload.conflicts
        ]
        preferences = AdjustmentPreferences()
        if payload.preferences is not None:
            preferences = AdjustmentPreferences(
                preferred_direction=payload.preferences.preferred_direction,
                max_adjustment_minutes=payload.preferences.max_adjustment_minutes
                or settings.resolver_default_max_adjustment_minutes,
                allow_day_change=payload.preferences.allow_day_change,
            )
        result = await asyncio.to_thread(
            resolver.resolve_conflicts,
            payload.owner_id,
            items,
            payload.strategy,
            preferences,
        )
    except DomainException as e:
        handle_domain_exception(e)

    return ConflictResolveResponse(**result.to_dict())
