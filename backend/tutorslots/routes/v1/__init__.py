# backend/tutorslots/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import conflicts, health, recurring, slots, waitlist

__all__ = [
    "conflicts",
    "health",
    "recurring",
    "slots",
    "waitlist",
]
