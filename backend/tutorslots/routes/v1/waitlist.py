# backend/tutorslots/routes/v1/waitlist.py
"""
Waitlist routes - API v1

Endpoints:
    GET / - List entries for an owner or a requester
    POST / - Join the back of the line for a window
    POST /sweep - Expire lapsed offers and notify successors
    POST /{entry_id}/promote - Swap with the entry ahead
    POST /{entry_id}/demote - Swap with the entry behind
    POST /{entry_id}/notify - Offer the window to a waiting entry
    POST /{entry_id}/fulfill - Accept a live offer
    POST /{entry_id}/extend - Push out a live offer's deadline
    GET /{entry_id}/position - Place in line and advisory wait estimate
    DELETE /{entry_id} - Withdraw an entry
"""

import asyncio
from datetime import timedelta
import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from ...api.dependencies import get_waitlist_service
from ...core.exceptions import DomainException
from ...core.ulid_helper import ULID_PATH_PATTERN
from ...models.waitlist import WaitlistEntry, WaitlistStatus
from ...schemas.waitlist import (
    WaitlistEnqueue,
    WaitlistEntryResponse,
    WaitlistExtend,
    WaitlistListResponse,
    WaitlistNotify,
    WaitlistPositionResponse,
    WaitlistRemoveResponse,
    WaitlistSweepResponse,
)
from ...services.waitlist_service import WaitlistService
from .common import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["waitlist-v1"])


async def _run(func: Callable[..., WaitlistEntry], *args: object) -> WaitlistEntryResponse:
    try:
        entry = await asyncio.to_thread(func, *args)
    except DomainException as e:
        handle_domain_exception(e)
    return WaitlistEntryResponse.model_validate(entry)


def _line(entries: List[WaitlistEntry]) -> WaitlistListResponse:
    return WaitlistListResponse(
        entries=[WaitlistEntryResponse.model_validate(e) for e in entries], total=len(entries)
    )


@router.get("", response_model=WaitlistListResponse)
async def list_entries(
    owner_id: Optional[str] = Query(None, max_length=64),
    requester_id: Optional[str] = Query(None, max_length=64),
    entry_status: Optional[WaitlistStatus] = Query(None, alias="status"),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistListResponse:
    try:
        entries = await asyncio.to_thread(
            service.list_entries,
            owner_id=owner_id,
            requester_id=requester_id,
            status=entry_status.value if entry_status else None,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return _line(entries)


@router.post("", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def enqueue(
    payload: WaitlistEnqueue,
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    """Returns 409 ALREADY_ON_WAITLIST if the requester already waits for an overlapping window."""
    try:
        entry = await asyncio.to_thread(
            service.enqueue,
            payload.owner_id,
            payload.requester_id,
            payload.desired_range.to_domain(),
            notes=payload.notes,
            slot_id=payload.slot_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return WaitlistEntryResponse.model_validate(entry)


@router.post("/sweep", response_model=WaitlistSweepResponse)
async def sweep_expired(
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistSweepResponse:
    """Idempotent; a second run right after the first does nothing."""
    try:
        result = await asyncio.to_thread(service.expire_sweep)
    except DomainException as e:
        handle_domain_exception(e)
    return WaitlistSweepResponse(**result.to_dict())


@router.post("/{entry_id}/promote", response_model=WaitlistListResponse)
async def promote(
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistListResponse:
    try:
        line = await asyncio.to_thread(service.promote, entry_id)
    except DomainException as e:
        handle_domain_exception(e)
    return _line(line)


@router.post("/{entry_id}/demote", response_model=WaitlistListResponse)
async def demote(
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistListResponse:
    try:
        line = await asyncio.to_thread(service.demote, entry_id)
    except DomainException as e:
        handle_domain_exception(e)
    return _line(line)


@router.post("/{entry_id}/notify", response_model=WaitlistEntryResponse)
async def notify(
    payload: WaitlistNotify,
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    ttl = timedelta(hours=payload.ttl_hours) if payload.ttl_hours else None
    return await _run(service.notify, entry_id, ttl, payload.message)


@router.post("/{entry_id}/fulfill", response_model=WaitlistEntryResponse)
async def fulfill(
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    return await _run(service.fulfill, entry_id)


@router.post("/{entry_id}/extend", response_model=WaitlistEntryResponse)
async def extend(
    payload: WaitlistExtend,
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    return await _run(service.extend, entry_id, payload.hours)


@router.get("/{entry_id}/position", response_model=WaitlistPositionResponse)
async def position(
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistPositionResponse:
    try:
        estimate = await asyncio.to_thread(service.estimate_wait, entry_id)
    except DomainException as e:
        handle_domain_exception(e)
    return WaitlistPositionResponse(**estimate)


@router.delete("/{entry_id}", response_model=WaitlistRemoveResponse)
async def remove(
    entry_id: str = Path(..., description="Waitlist entry ULID", pattern=ULID_PATH_PATTERN),
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistRemoveResponse:
    """Withdrawing a notified entry hands the offer to the next waiting requester."""
    try:
        successor = await asyncio.to_thread(service.remove, entry_id)
    except DomainException as e:
        handle_domain_exception(e)
    return WaitlistRemoveResponse(
        removed_id=entry_id,
        notified_entry=WaitlistEntryResponse.model_validate(successor) if successor else None,
    )
