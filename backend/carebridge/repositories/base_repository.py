# backend/carebridge/repositories/base_repository.py
"""
Base repository for the CareBridge transaction core.

Repositories never commit. Services open the transaction, call one or more
repository writes and decide whether to commit from their return values.

Every contended write goes through conditional_update: a single
``UPDATE ... WHERE`` whose matched-row count tells the caller whether the row
was still in the state it observed. Zero means someone else got there first
(or the row is gone) and nothing was written.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session
from sqlalchemy.sql.elements import ColumnElement

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[T]):
    """Data access contract shared by every repository."""

    @abstractmethod
    def get_by_id(self, id: str, *, fresh: bool = False) -> Optional[T]:
        """
        Load an entity by primary key.

        Args:
            id: Primary key
            fresh: Overwrite any identity-map copy with the row as stored
        """

    @abstractmethod
    def create(self, **kwargs) -> T:
        """
        Insert an entity and flush it so defaults and the id are populated.

        Raises:
            RepositoryException: constraint violation or database error
        """

    @abstractmethod
    def conditional_update(
        self, id: str, criteria: Sequence[ColumnElement[bool]], values: Dict[str, Any]
    ) -> int:
        """
        Update the row with this id only if it matches every criterion.

        Returns:
            Rows matched, 0 or 1.
        """


class BaseRepository(IRepository[T]):
    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str, *, fresh: bool = False) -> Optional[T]:
        # Conditional updates bypass the identity map; fresh=True reads the row back as stored
        try:
            return self.db.get(self.model, id, populate_existing=fresh)
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to load {self.model.__name__}: {str(e)}")

    def create(self, **kwargs) -> T:
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.warning("Constraint violated inserting %s: %s", self.model.__name__, exc)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error inserting {self.model.__name__}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def conditional_update(
        self, id: str, criteria: Sequence[ColumnElement[bool]], values: Dict[str, Any]
    ) -> int:
        return self.conditional_update_where([self.model.id == id, *criteria], values)

    def conditional_update_where(
        self, criteria: Sequence[ColumnElement[bool]], values: Dict[str, Any]
    ) -> int:
        """Apply values to every row matching criteria; return the matched count."""
        stmt = (
            update(self.model)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Conditional update on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")
        matched = result.rowcount or 0
        self.logger.debug("Conditional update on %s matched %d row(s)", self.model.__name__, matched)
        return matched

    def find_one_by(self, **kwargs) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error looking up {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to find {self.model.__name__}: {str(e)}")

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query on {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")
