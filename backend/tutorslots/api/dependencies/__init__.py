# backend/tutorslots/api/dependencies/__init__.py
"""
Central export point for all dependencies.
"""

from .database import get_db
from .services import (
    get_clock,
    get_conflict_detector,
    get_conflict_resolver,
    get_notifier,
    get_recurring_expander,
    get_slot_service,
    get_waitlist_service,
)

__all__ = [
    # Database
    "get_db",
    # Collaborators
    "get_clock",
    "get_notifier",
    # Services
    "get_conflict_detector",
    "get_conflict_resolver",
    "get_recurring_expander",
    "get_slot_service",
    "get_waitlist_service",
]
