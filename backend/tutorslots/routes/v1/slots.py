# backend/tutorslots/routes/v1/slots.py
"""
Schedule slot routes - API v1

All business logic delegated to SlotService.

Endpoints:
    GET / - List an owner's slots in a date window
    POST / - Create a dated slot (conflicts re-checked)
    POST /{slot_id}/assign - Hold an available slot for a student
    POST /{slot_id}/confirm - Student confirms their hold
    POST /{slot_id}/decline - Student declines their hold
    POST /{slot_id}/book - Book directly (or confirm own hold)
    POST /{slot_id}/cancel - Cancel a booking; next waitlisted requester is offered the slot
    POST /{slot_id}/complete - Mark a booked lesson as taught
    POST /{slot_id}/withdraw - Retire an open slot
    POST /{slot_id}/mark-available - Open an unavailable slot
    POST /{slot_id}/mark-unavailable - Close an available slot
    DELETE / - Clear an owner's slots in a date window (same guards as single deletes)
    DELETE /{slot_id} - Delete a slot (force required for held slots)
"""

import asyncio
from datetime import date, timedelta
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status

from ...api.dependencies import get_slot_service
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATH_PATTERN
from ...models.schedule_slot import ScheduleSlot, SlotStatus
from ...schemas.slot import (
    AssignRequest,
    CancellationResponse,
    SlotClearResponse,
    SlotCreate,
    SlotListResponse,
    SlotResponse,
    StudentAction,
)
from ...services.slot_service import SlotService
from .common import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["slots-v1"])


async def _run(func: Callable[..., ScheduleSlot], *args: object) -> SlotResponse:
    try:
        slot = await asyncio.to_thread(func, *args)
    except DomainException as e:
        handle_domain_exception(e)
    return SlotResponse.model_validate(slot)


@router.get("", response_model=SlotListResponse)
async def list_slots(
    owner_id: str = Query(..., min_length=1, max_length=64),
    start_date: date = Query(...),
    end_date: date = Query(...),
    slot_status: Optional[List[SlotStatus]] = Query(None, alias="status"),
    service: SlotService = Depends(get_slot_service),
) -> SlotListResponse:
    try:
        slots = await asyncio.to_thread(
            service.list_slots,
            owner_id,
            start_date,
            end_date,
            [s.value for s in slot_status] if slot_status else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return SlotListResponse(
        slots=[SlotResponse.model_validate(slot) for slot in slots], total=len(slots)
    )


@router.post("", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    """Create one dated slot; overlapping ranges are refused unless ``allow_conflicts``."""
    try:
        slot = await asyncio.to_thread(
            service.create_slot,
            payload.owner_id,
            payload.time_range.to_domain(),
            subject=payload.subject,
            status=payload.status,
            allow_conflicts=payload.allow_conflicts,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return SlotResponse.model_validate(slot)


@router.post("/{slot_id}/assign", response_model=SlotResponse)
async def assign_slot(
    payload: AssignRequest,
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    ttl = timedelta(hours=payload.ttl_hours) if payload.ttl_hours else None
    return await _run(service.assign_slot, slot_id, payload.student_id, ttl)


@router.post("/{slot_id}/confirm", response_model=SlotResponse)
async def confirm_assignment(
    payload: StudentAction,
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    return await _run(service.confirm_assignment, slot_id, payload.student_id)


@router.post("/{slot_id}/decline", response_model=SlotResponse)
async def decline_assignment(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    return await _run(service.decline_assignment, slot_id)


@router.post("/{slot_id}/book", response_model=SlotResponse)
async def book_slot(
    payload: StudentAction,
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    """
    Book a slot.

    Returns 409 SLOT_UNAVAILABLE when someone else holds or booked it,
    including a booking that won a concurrent race.
    """
    return await _run(service.book_slot, slot_id, payload.student_id)


@router.post("/{slot_id}/cancel", response_model=CancellationResponse)
async def cancel_slot(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> CancellationResponse:
    try:
        result = await asyncio.to_thread(service.cancel_slot, slot_id)
    except DomainException as e:
        handle_domain_exception(e)
    return CancellationResponse(
        slot=SlotResponse.model_validate(result.slot),
        notified_waitlist_entry_id=result.notified_entry.id if result.notified_entry else None,
    )


@router.post("/{slot_id}/complete", response_model=SlotResponse)
async def complete_slot(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    return await _run(service.complete_slot, slot_id)


@router.post("/{slot_id}/withdraw", response_model=SlotResponse)
async def withdraw_slot(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    return await _run(service.withdraw_slot, slot_id)


@router.post("/{slot_id}/mark-available", response_model=SlotResponse)
async def mark_available(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    return await _run(service.mark_available, slot_id)


@router.post("/{slot_id}/mark-unavailable", response_model=SlotResponse)
async def mark_unavailable(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    service: SlotService = Depends(get_slot_service),
) -> SlotResponse:
    return await _run(service.mark_unavailable, slot_id)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    slot_id: str = Path(..., description="Slot ULID", pattern=ULID_PATH_PATTERN),
    force: bool = Query(False),
    service: SlotService = Depends(get_slot_service),
) -> Response:
    try:
        await asyncio.to_thread(service.delete_slot, slot_id, force)
    except DomainException as e:
        handle_domain_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", response_model=SlotClearResponse)
async def clear_slots(
    owner_id: str = Query(..., min_length=1, max_length=64),
    start_date: date = Query(...),
    end_date: date = Query(...),
    force: bool = Query(False),
    service: SlotService = Depends(get_slot_service),
) -> SlotClearResponse:
    """
    Delete every live slot in the window.

    Without ``force`` a held slot or a slot with waitlist rows refuses the
    whole clear and nothing is deleted.
    """
    try:
        result = await asyncio.to_thread(service.clear_range, owner_id, start_date, end_date, force)
    except DomainException as e:
        handle_domain_exception(e)
    return SlotClearResponse(
        deleted_slot_ids=result.deleted_slot_ids,
        deleted=len(result.deleted_slot_ids),
        notified_students=result.notified_students,
    )
