# backend/tutorslots/repositories/__init__.py
"""
Repository layer for the scheduling core.

Repositories own every query; services own transactions.
"""

from .base_repository import BaseRepository
from .blocked_period_repository import BlockedPeriodRepository
from .factory import RepositoryFactory
from .slot_repository import SlotRepository
from .template_repository import TemplateRepository
from .waitlist_repository import WaitlistRepository

__all__ = [
    "BaseRepository",
    "BlockedPeriodRepository",
    "RepositoryFactory",
    "SlotRepository",
    "TemplateRepository",
    "WaitlistRepository",
]
