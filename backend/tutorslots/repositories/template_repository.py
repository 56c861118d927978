# backend/tutorslots/repositories/template_repository.py
"""Recurring template data access."""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.recurring_template import RecurringTemplate
from .base_repository import BaseRepository


class TemplateRepository(BaseRepository[RecurringTemplate]):
    def __init__(self, db: Session):
        super().__init__(db, RecurringTemplate)

    def get_templates(
        self,
        owner_id: str,
        *,
        day_of_week: Optional[str] = None,
        active_only: bool = True,
        exclude_ids: Optional[List[str]] = None,
    ) -> List[RecurringTemplate]:
        query = self._build_query().filter(RecurringTemplate.owner_id == owner_id)
        if active_only:
            query = query.filter(RecurringTemplate.active.is_(True))
        if day_of_week is not None:
            query = query.filter(RecurringTemplate.day_of_week == day_of_week)
        if exclude_ids:
            query = query.filter(~RecurringTemplate.id.in_(exclude_ids))
        return self._execute_query(
            query.order_by(RecurringTemplate.day_of_week, RecurringTemplate.start_time)
        )
