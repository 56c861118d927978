# backend/tutorslots/tasks/beat_schedule.py
"""
Celery Beat schedule for the scheduling core.

Both sweeps are idempotent and guarded by a Redis mutex, so a short
interval only costs a lock round-trip when there is nothing to do.
"""

from datetime import timedelta
from typing import Any, Dict

from ..core.config import settings

WAITLIST_SWEEP_TASK = "waitlist.sweep_expired"
ASSIGNMENT_SWEEP_TASK = "slots.expire_assignments"


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        "sweep-expired-waitlist-offers": {
            "task": WAITLIST_SWEEP_TASK,
            "schedule": timedelta(seconds=settings.waitlist_sweep_interval_seconds),
            "options": {"queue": "sweeps", "priority": 5},
        },
        "expire-assignment-holds": {
            "task": ASSIGNMENT_SWEEP_TASK,
            "schedule": timedelta(seconds=settings.assignment_sweep_interval_seconds),
            "options": {"queue": "sweeps", "priority": 5},
        },
    }
