# backend/tutorslots/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Every request gets fresh service instances bound to its session. The
clock and notifier are process-wide and can be overridden in tests.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.clock import Clock, system_clock
from ...services.conflict_detector import ConflictDetector
from ...services.conflict_resolver import ConflictResolver
from ...services.notifier import LoggingNotifier, Notifier
from ...services.recurring_expander import RecurringExpander
from ...services.slot_service import SlotService
from ...services.waitlist_service import WaitlistService
from .database import get_db


def get_clock() -> Clock:
    return system_clock


@lru_cache(maxsize=1)
def _notifier_singleton() -> Notifier:
    return LoggingNotifier()


def get_notifier() -> Notifier:
    """Get the notifier used for student-facing messages."""
    return _notifier_singleton()


def get_conflict_detector(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> ConflictDetector:
    return ConflictDetector(db, clock)


def get_waitlist_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> WaitlistService:
    return WaitlistService(db, clock, notifier)


def get_slot_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    detector: ConflictDetector = Depends(get_conflict_detector),
    waitlist_service: WaitlistService = Depends(get_waitlist_service),
) -> SlotService:
    """Get SlotService wired to the request's detector and waitlist."""
    return SlotService(
        db, clock, notifier, conflict_detector=detector, waitlist_service=waitlist_service
    )


def get_recurring_expander(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    detector: ConflictDetector = Depends(get_conflict_detector),
) -> RecurringExpander:
    return RecurringExpander(db, clock, notifier, conflict_detector=detector)


def get_conflict_resolver(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
    detector: ConflictDetector = Depends(get_conflict_detector),
    slot_service: SlotService = Depends(get_slot_service),
) -> ConflictResolver:
    return ConflictResolver(
        db, clock, notifier, conflict_detector=detector, slot_service=slot_service
    )
