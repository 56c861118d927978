# backend/tutorslots/routes/v1/recurring.py
"""
Recurring pattern routes - API v1

Endpoints:
    POST / - Preview or commit weekly patterns as templates and slots
    POST /{template_id}/expand - Materialize more weeks of a saved template
    PATCH /{template_id} - Change a series' times or subject
    DELETE /{template_id} - Delete a series (force removes held occurrences)
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Path, Query

from ...api.dependencies import get_recurring_expander
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATH_PATTERN
from ...schemas.recurring import (
    RecurringExpandRequest,
    RecurringExpandResponse,
    SeriesDeleteResponse,
    SeriesUpdateRequest,
    SeriesUpdateResponse,
    TemplateExpandRequest,
)
from ...services.recurring_expander import ExpansionOptions, RecurringExpander, RecurringPattern
from .common import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["recurring-v1"])


@router.post("", response_model=RecurringExpandResponse)
async def expand_recurring(
    payload: RecurringExpandRequest,
    expander: RecurringExpander = Depends(get_recurring_expander),
) -> RecurringExpandResponse:
    """
    Expand weekly patterns.

    With ``preview_only`` nothing is written. A commit that still has
    conflicts is refused with 409 RECURRING_CONFLICTS unless
    ``override_conflicts`` is set, in which case only the free occurrences
    are created.
    """
    options = ExpansionOptions(
        preview_only=payload.preview_only,
        create_templates=payload.create_templates,
        create_occurrences=payload.create_occurrences,
        override_conflicts=payload.override_conflicts,
        exception_dates=frozenset(payload.exception_dates),
    )
    try:
        patterns = [
            RecurringPattern(
                day_of_week=p.day_of_week,
                start_time=p.start_time,
                end_time=p.end_time,
                subject=p.subject,
                duration_minutes=p.duration_minutes,
            )
            for p in payload.patterns
        ]
        result = await asyncio.to_thread(
            expander.expand_recurring,
            payload.owner_id,
            patterns,
            payload.weeks,
            payload.start_date,
            options,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return RecurringExpandResponse(**result.to_dict())


@router.post("/{template_id}/expand", response_model=RecurringExpandResponse)
async def expand_template(
    payload: TemplateExpandRequest,
    template_id: str = Path(..., description="Template ULID", pattern=ULID_PATH_PATTERN),
    expander: RecurringExpander = Depends(get_recurring_expander),
) -> RecurringExpandResponse:
    options = ExpansionOptions(
        preview_only=payload.preview_only,
        override_conflicts=payload.override_conflicts,
        exception_dates=frozenset(payload.exception_dates),
    )
    try:
        result = await asyncio.to_thread(
            expander.expand_template, template_id, payload.weeks, payload.start_date, options
        )
    except DomainException as e:
        handle_domain_exception(e)
    return RecurringExpandResponse(**result.to_dict())


@router.patch("/{template_id}", response_model=SeriesUpdateResponse)
async def update_series(
    payload: SeriesUpdateRequest,
    template_id: str = Path(..., description="Template ULID", pattern=ULID_PATH_PATTERN),
    expander: RecurringExpander = Depends(get_recurring_expander),
) -> SeriesUpdateResponse:
    """Held occurrences keep their times and are listed in ``held_slot_ids``."""
    try:
        result = await asyncio.to_thread(
            expander.update_series,
            template_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            subject=payload.subject,
            apply_from_date=payload.apply_from_date,
            allow_conflicts=payload.allow_conflicts,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return SeriesUpdateResponse(**result)


@router.delete("/{template_id}", response_model=SeriesDeleteResponse)
async def delete_series(
    template_id: str = Path(..., description="Template ULID", pattern=ULID_PATH_PATTERN),
    force: bool = Query(False),
    expander: RecurringExpander = Depends(get_recurring_expander),
) -> SeriesDeleteResponse:
    try:
        result = await asyncio.to_thread(expander.delete_series, template_id, force)
    except DomainException as e:
        handle_domain_exception(e)
    return SeriesDeleteResponse(**result)
