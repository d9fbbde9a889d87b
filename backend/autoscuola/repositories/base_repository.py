# backend/autoscuola/repositories/base_repository.py
"""
Base Repository Pattern for the autoscuola engine.

Repositories wrap SQLAlchemy errors in ``RepositoryException`` and never
commit; the service layer owns transaction boundaries. Unique-key
``IntegrityError`` is re-raised as is so callers can resolve races.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database import get_dialect_name

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """Common lookups for one model, bound to the caller's session."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def get_by_id(self, id: str, *, for_update: bool = False) -> Optional[T]:
        """``for_update`` takes a row lock on dialects that support it."""
        query = self._build_query().filter(self.model.id == id)
        if for_update:
            query = self._lock(query)
        return self._execute_first(query)

    def create(self, **kwargs: Any) -> T:
        """Add and flush a new entity. Does not commit."""
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.flush()
        return entity

    def flush(self) -> None:
        try:
            self.db.flush()
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Error flushing {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to flush {self.model.__name__}: {str(e)}")

    def count(self, **criteria: Any) -> int:
        try:
            return self._build_query().filter_by(**criteria).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to count records: {str(e)}")

    def find_by(self, **criteria: Any) -> List[T]:
        return self._execute_query(self._build_query().filter_by(**criteria))

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        return self._execute_first(self._build_query().filter_by(**criteria))

    # Helpers for subclasses

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _lock(self, query: Query) -> Query:
        # SQLite has no row locks; its writes are serialized anyway
        if self.dialect_name in ("sqlite", ""):
            return query
        return query.with_for_update()

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_first(self, query: Query) -> Optional[T]:
        try:
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")
