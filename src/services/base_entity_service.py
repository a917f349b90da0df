"""
Base service class for entity CRUD operations.

Provides the shared write path for Api, Procedure, Role and User: lookups that
raise instead of returning None, inserts and partial updates that translate
unique-key violations, and deletes guarded by a dependents check.
Entity-specific reads (the join queries) live in the subclasses.
"""
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import Base
from services.exceptions import DependentRowsError, DuplicateKeyError, EntityNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)


class BaseEntityService(ABC, Generic[T]):
    """
    Abstract base class for entity CRUD operations.

    Subclasses must define:
    - model: The SQLAlchemy model class
    - entity_name: Human-readable name for error messages (e.g., "Api")
    - unique_keys: Map of constraint/index name -> field name, used to turn an
      IntegrityError into a DuplicateKeyError naming the offending field

    Subclasses must implement:
    - _dependent_queries(): one EXISTS probe per dependent table
    """

    model: type[T]
    entity_name: str
    unique_keys: ClassVar[dict[str, str]] = {}

    # --- Abstract Methods (entity-specific) ---

    @abstractmethod
    def _dependent_queries(self, entity_id: UUID) -> dict[str, Select]:
        """
        Return label -> SELECT for each kind of row that blocks deletion.

        Each SELECT should match dependents of entity_id; it is wrapped in
        EXISTS so it only needs a FROM and WHERE.
        """
        ...

    # --- Helper Methods ---

    def _duplicate_error(self, error: IntegrityError, values: dict[str, Any]) -> DuplicateKeyError | None:
        message = str(error)
        pkey = f"{self.model.__tablename__}_pkey"
        if pkey in message:
            return DuplicateKeyError(self.entity_name, "id", values.get("id"))
        for constraint, field in self.unique_keys.items():
            if constraint in message:
                return DuplicateKeyError(self.entity_name, field, values.get(field))
        return None

    async def _write_in_savepoint(
        self,
        db: AsyncSession,
        values: dict[str, Any],
        apply: Callable[[], None],
    ) -> None:
        """
        Run apply() and flush its changes inside a savepoint.

        begin_nested() flushes earlier pending state before the SAVEPOINT, so
        the mutation must happen inside the block. A unique violation rolls
        back only the savepoint, leaving the caller's transaction usable, and
        is re-raised as DuplicateKeyError.
        """
        try:
            async with db.begin_nested():
                apply()
        except IntegrityError as e:
            duplicate = self._duplicate_error(e, values)
            if duplicate is not None:
                raise duplicate from e
            raise

    async def get_model(self, db: AsyncSession, entity_id: UUID) -> T:
        """
        Load the ORM row for entity_id.

        Raises:
            EntityNotFoundError: If no row has that id.
        """
        entity = await db.get(self.model, entity_id)
        if entity is None:
            raise EntityNotFoundError(self.entity_name, entity_id)
        return entity

    async def entity_exists(self, db: AsyncSession, entity_id: UUID) -> bool:
        """Check whether a row with entity_id exists."""
        result = await db.execute(select(exists().where(self.model.id == entity_id)))
        return bool(result.scalar())

    # --- Common CRUD Operations ---

    async def _insert(self, db: AsyncSession, values: dict[str, Any]) -> T:
        """Insert a row built from values and return it with server defaults loaded."""
        if values.get("id") is None:
            values = {k: v for k, v in values.items() if k != "id"}
        entity = self.model(**values)
        await self._write_in_savepoint(db, values, lambda: db.add(entity))
        await db.refresh(entity)
        return entity

    async def _update(self, db: AsyncSession, entity_id: UUID, values: dict[str, Any]) -> T:
        """
        Apply a partial update.

        Only keys present in values are written; an empty dict is a no-op
        apart from the existence check.

        Raises:
            EntityNotFoundError: If the entity doesn't exist.
            DuplicateKeyError: If the update collides with a unique key.
        """
        entity = await self.get_model(db, entity_id)
        if not values:
            return entity

        def apply() -> None:
            for key, value in values.items():
                setattr(entity, key, value)

        await self._write_in_savepoint(db, values, apply)
        await db.refresh(entity)
        return entity

    async def find_dependents(self, db: AsyncSession, entity_id: UUID) -> list[str]:
        """Return labels of every dependent kind that still has rows."""
        found = []
        for label, query in self._dependent_queries(entity_id).items():
            result = await db.execute(select(query.exists()))
            if result.scalar():
                found.append(label)
        return found

    async def delete(self, db: AsyncSession, entity_id: UUID) -> None:
        """
        Delete an entity that has no dependents.

        Raises:
            EntityNotFoundError: If the entity doesn't exist.
            DependentRowsError: If dependents still reference the entity.
        """
        entity = await self.get_model(db, entity_id)
        dependents = await self.find_dependents(db, entity_id)
        if dependents:
            logger.warning(
                "Refusing to delete %s %s: dependents %s",
                self.entity_name,
                entity_id,
                dependents,
            )
            raise DependentRowsError(self.entity_name, entity_id, dependents)

        await db.delete(entity)
        await db.flush()
        logger.info("Deleted %s %s", self.entity_name, entity_id)
