# backend/auditoryx/repositories/base_repository.py
"""
Shared data access for ledger repositories.

Repositories never commit. Services own the transaction boundary, and the
optimistic version checks surface at commit time inside
``BaseService.retry_on_conflict``.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """Primary-key lookup and query helpers bound to one model."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: Any) -> Optional[T]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to load {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        """Push pending rows so generated ids and constraint errors show up now."""
        self.db.flush()

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"{self.model.__name__} query failed: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")
