# backend/tutorslots/models/__init__.py
"""
ORM models for the scheduling core.

Importing this package registers every table on ``Base.metadata``.
"""

from .blocked_period import BlockedPeriod
from .recurring_template import RecurringTemplate
from .schedule_slot import ScheduleSlot, SlotStatus
from .waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    "BlockedPeriod",
    "RecurringTemplate",
    "ScheduleSlot",
    "SlotStatus",
    "WaitlistEntry",
    "WaitlistStatus",
]
