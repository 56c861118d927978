# backend/tutorslots/core/exceptions.py
"""
Domain-specific exceptions for the scheduling core.

Every error carries a stable ``code`` and a ``details`` mapping with the
contextual fields (slot id, current state, requested event, ...) so the
calling layer can render a precise message without parsing strings.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Scheduling errors


class InvalidRangeError(ValidationException):
    """Raised for a malformed time range (end not after start, bad day/date)."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_RANGE", details=details or {})


class InvalidTransitionError(ConflictException):
    """Raised when an event is not legal from the entity's current state."""

    def __init__(
        self,
        entity_id: Optional[str],
        current_status: str,
        event: str,
        *,
        message: Optional[str] = None,
        entity: str = "slot",
    ):
        super().__init__(
            message=message or f"Cannot apply '{event}' to {entity} in status '{current_status}'",
            code="INVALID_TRANSITION",
            details={
                f"{entity}_id": entity_id,
                "current_status": current_status,
                "event": event,
            },
        )
        self.entity_id = entity_id
        self.current_status = current_status
        self.event = event


class SlotUnavailableError(ConflictException):
    """Raised when a booking or hold loses to another writer on the same slot."""

    def __init__(self, slot_id: str, current_status: Optional[str] = None, reason: str = "taken"):
        super().__init__(
            message="This slot is no longer available",
            code="SLOT_UNAVAILABLE",
            details={"slot_id": slot_id, "current_status": current_status, "reason": reason},
        )
        self.slot_id = slot_id


class HasDependentsError(ConflictException):
    """Raised when a delete is blocked by rows that reference the target."""

    def __init__(self, entity_id: str, dependents: Dict[str, int], *, current_status: Optional[str] = None):
        super().__init__(
            message="Cannot delete while other records depend on it; retry with force",
            code="HAS_DEPENDENTS",
            details={
                "id": entity_id,
                "current_status": current_status,
                "dependents": dependents,
            },
        )


class SlotOverlapError(ConflictException):
    """Raised when a write would overlap existing slots, templates or blocks."""

    def __init__(self, report: Dict[str, Any]):
        super().__init__(
            message="The proposed time overlaps existing schedule entries",
            code="SLOT_OVERLAP",
            details={"conflicts": report},
        )


class RecurringConflictsError(ConflictException):
    """Raised when committing a recurring expansion that still has conflicts."""

    def __init__(self, conflicts: List[Dict[str, Any]]):
        super().__init__(
            message="Conflicts detected with existing slots",
            code="RECURRING_CONFLICTS",
            details={"conflicts": conflicts, "total_conflicts": len(conflicts)},
        )
        self.conflicts = conflicts


class NoResolutionFoundError(BusinessRuleException):
    """Raised when an auto-adjust search exhausts its candidate space."""

    def __init__(self, proposed_range: Dict[str, Any], candidates_checked: int):
        super().__init__(
            message="No suitable alternative times found",
            code="NO_RESOLUTION_FOUND",
            details={"proposed_range": proposed_range, "candidates_checked": candidates_checked},
        )


class AlreadyQueuedError(ConflictException):
    """Raised when a requester already waits for an overlapping window."""

    def __init__(self, requester_id: str, existing_entry_id: str):
        super().__init__(
            message="Requester is already on the waitlist for this time window",
            code="ALREADY_ON_WAITLIST",
            details={"requester_id": requester_id, "existing_entry_id": existing_entry_id},
        )


class NoAdjacentEntryError(BusinessRuleException):
    """Raised when promoting the head or demoting the tail of a waitlist."""

    def __init__(self, entry_id: str, direction: str):
        super().__init__(
            message=f"No entry to swap with when moving {direction}",
            code="NO_ADJACENT_ENTRY",
            details={"entry_id": entry_id, "direction": direction},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
