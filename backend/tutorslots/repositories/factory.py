# backend/tutorslots/repositories/factory.py
"""
Repository Factory for the scheduling core.

Provides centralized creation of repository instances so services never
construct data access objects directly.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

if TYPE_CHECKING:
    from .blocked_period_repository import BlockedPeriodRepository
    from .slot_repository import SlotRepository
    from .template_repository import TemplateRepository
    from .waitlist_repository import WaitlistRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        return BaseRepository(db, model)

    @staticmethod
    def create_slot_repository(db: Session) -> "SlotRepository":
        """Create repository for schedule slots."""
        from .slot_repository import SlotRepository

        return SlotRepository(db)

    @staticmethod
    def create_template_repository(db: Session) -> "TemplateRepository":
        """Create repository for recurring templates."""
        from .template_repository import TemplateRepository

        return TemplateRepository(db)

    @staticmethod
    def create_blocked_period_repository(db: Session) -> "BlockedPeriodRepository":
        """Create repository for blocked periods."""
        from .blocked_period_repository import BlockedPeriodRepository

        return BlockedPeriodRepository(db)

    @staticmethod
    def create_waitlist_repository(db: Session) -> "WaitlistRepository":
        """Create repository for waitlist entries."""
        from .waitlist_repository import WaitlistRepository

        return WaitlistRepository(db)
