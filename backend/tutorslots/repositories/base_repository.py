# backend/tutorslots/repositories/base_repository.py
"""
Base Repository Pattern for the scheduling core.

Provides the foundation for all repository classes with:
- Common CRUD operations
- Type safety with generics
- Version-checked conditional updates (compare-and-swap)

Repositories never commit; transaction boundaries belong to services.
"""

import logging
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, *, fresh: bool = False) -> Optional[T]:
        """
        Retrieve an entity by primary key.

        ``fresh`` bypasses the identity map so the caller sees the committed
        row, not a stale in-session copy.
        """
        try:
            options = {"populate_existing": True} if fresh else {}
            return self.db.get(self.model, id, **options)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError:
            # Callers such as enqueue retry on constraint races
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def bulk_create(self, entities: List[Dict[str, Any]]) -> List[T]:
        """Create several entities in one flush, keeping ORM instances usable."""
        try:
            created = [self.model(**data) for data in entities]
            self.db.add_all(created)
            self.db.flush()
            return created
        except SQLAlchemyError as e:
            self.logger.error(f"Error bulk creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to bulk create: {str(e)}")

    def update(self, id: str, **kwargs) -> Optional[T]:
        """Update provided fields only; returns None when the row is gone."""
        try:
            entity = self.get_by_id(id)
            if entity is None:
                return None
            for key, value in kwargs.items():
                if hasattr(entity, key):
                    setattr(entity, key, value)
            self.db.flush()
            return entity
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

    def delete(self, id: str) -> bool:
        try:
            entity = self.get_by_id(id)
            if entity is None:
                return False
            self.db.delete(entity)
            self.db.flush()
            return True
        except IntegrityError as e:
            self.logger.error(f"Cannot delete {self.model.__name__} {id} due to constraints: {str(e)}")
            raise RepositoryException(f"Cannot delete due to existing references: {str(e)}")
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to delete {self.model.__name__}: {str(e)}")

    def compare_and_swap(
        self,
        id: str,
        *,
        expected_version: int,
        values: Dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Optional[T]:
        """
        Apply ``values`` only if the row still has ``expected_version``
        (and ``expected_status`` when given), bumping the version.

        One conditional UPDATE, so at most one concurrent caller wins.

        Returns:
            The refreshed entity, or None when another writer got there first
        """
        stmt = (
            update(self.model)
            .where(self.model.id == id, self.model.version == expected_version)
            .values(version=self.model.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if expected_status is not None:
            stmt = stmt.where(self.model.status == expected_status)
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Conditional update of {self.model.__name__} {id} failed: {str(e)}")
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

        if result.rowcount != 1:
            self.logger.info(
                "compare_and_swap_miss",
                extra={"model": self.model.__name__, "id": id, "expected_version": expected_version},
            )
            return None
        return self.get_by_id(id, fresh=True)

    # Protected helpers for subclasses

    def _build_query(self) -> Query:
        # Rows change through conditional UPDATEs that bypass the identity map
        return self.db.query(self.model).populate_existing()

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")
