"""Minimal generic repository for SQLAlchemy models.

Provides basic CRUD operations with explicit session passing.
For complex queries, use the session directly - this is a convenience, not a cage.

Example:
    class PushSubscriptionRepository(BaseRepository[PushSubscription]):
        async def list_active(self, session, tenant_id, user_id):
            stmt = select(PushSubscription).where(PushSubscription.is_active.is_(True))
            ...
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast

from sqlalchemy import Select, func, inspect as sa_inspect, select
from sqlalchemy import delete as sql_delete

from notification_service.core.database.exceptions import NotFoundError
from notification_service.infra.logging import get_lazy_logger

T = TypeVar("T")

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute


@dataclass(slots=True, frozen=True)
class SearchResult(Generic[T]):
    """Paginated search result container.

    Attributes:
        items: List of items for current page
        total: Total count across all pages
        limit: Page size
        offset: Current offset
    """

    items: Sequence[T]
    total: int
    limit: int
    offset: int

    @property
    def page(self) -> int:
        """Current page number (1-indexed)."""
        return (self.offset // self.limit) + 1 if self.limit else 1

    @property
    def pages(self) -> int:
        """Total number of pages."""
        if self.limit == 0:
            return 1
        return (self.total + self.limit - 1) // self.limit


class BaseRepository(Generic[T]):
    """Minimal generic repository for CRUD operations.

    Provides:
        - get(session, id) -> T | None
        - get_or_raise(session, id) -> T (raises NotFoundError)
        - search(session, statement, limit, offset) -> SearchResult[T]
        - create(session, instance) -> T
        - delete(session, instance) -> None
        - delete_many(session, ids) -> int

    Session is always explicit - no hidden state.
    """

    __slots__ = ("model", "_logger", "_lazy")

    def __init__(self, model: type[T]) -> None:
        self.model = model
        # Standard logger for INFO/WARNING/ERROR
        self._logger = logging.getLogger(f"repository.{model.__name__}")
        # Lazy logger for DEBUG (zero overhead when DEBUG disabled)
        self._lazy = get_lazy_logger(f"repository.{model.__name__}")

    async def get(self, session: AsyncSession, id: Any) -> T | None:  # noqa: A002
        """Get entity by primary key."""
        instance = await session.get(self.model, id)
        self._lazy.debug(
            lambda: f"db.get: {self.model.__name__}({id}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_or_raise(self, session: AsyncSession, id: Any) -> T:  # noqa: A002
        """Get entity by primary key or raise NotFoundError.

        Raises:
            NotFoundError: If entity doesn't exist
        """
        instance = await self.get(session, id)
        if instance is None:
            self._logger.info(
                "Entity not found",
                extra={
                    "entity": self.model.__name__,
                    "id": str(id),
                    "operation": "db.get_or_raise",
                },
            )
            raise NotFoundError(self.model.__name__, {"id": id})
        return instance

    async def search(
        self,
        session: AsyncSession,
        statement: Select[tuple[T]],
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[T]:
        """Execute paginated search with total count.

        Takes a pre-built statement (filters and ordering applied) and adds pagination.

        Args:
            session: Database session
            statement: SQLAlchemy select statement
            limit: Page size
            offset: Results to skip

        Returns:
            SearchResult with items, total count, and pagination info
        """
        count_stmt = select(func.count()).select_from(statement.order_by(None).subquery())
        total = (await session.execute(count_stmt)).scalar_one()

        result = await session.execute(statement.limit(limit).offset(offset))
        items = result.scalars().all()

        search_result = SearchResult(items=items, total=total, limit=limit, offset=offset)
        self._lazy.debug(
            lambda: f"db.search: {self.model.__name__}(limit={limit}, offset={offset}) -> {len(items)}/{total} items, page {search_result.page}/{search_result.pages}"
        )
        return search_result

    async def create(self, session: AsyncSession, instance: T) -> T:
        """Persist a new entity.

        Adds to session, flushes to get generated values and refreshes the instance.
        """
        session.add(instance)
        await session.flush()
        await session.refresh(instance)

        entity_id = getattr(instance, "id", None)
        self._lazy.debug(lambda: f"db.create: {self.model.__name__}(id={entity_id})")
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        """Delete an entity."""
        entity_id = getattr(instance, "id", None)
        await session.delete(instance)
        await session.flush()

        self._logger.info(
            "Entity deleted",
            extra={"entity": self.model.__name__, "id": str(entity_id), "operation": "db.delete"},
        )

    async def delete_many(self, session: AsyncSession, ids: Iterable[Any]) -> int:
        """Delete multiple entities by primary key with a single DELETE statement.

        Returns:
            Number of rows deleted
        """
        ids_list = list(ids)
        if not ids_list:
            return 0

        stmt = sql_delete(self.model).where(self._pk_attr().in_(ids_list))
        result = await session.execute(stmt)
        await session.flush()
        deleted_count: int = result.rowcount or 0

        # WARNING level for bulk deletes > 10 (audit-worthy)
        if deleted_count > 10:
            self._logger.warning(
                "Bulk delete executed",
                extra={
                    "entity": self.model.__name__,
                    "requested": len(ids_list),
                    "deleted": deleted_count,
                    "operation": "db.delete_many",
                },
            )
        else:
            self._lazy.debug(
                lambda: f"db.delete_many: {self.model.__name__} -> {deleted_count} deleted"
            )
        return deleted_count

    def _pk_attr(self) -> InstrumentedAttribute[Any]:
        """Get the primary key attribute of the model."""
        mapper = sa_inspect(self.model)
        pk_column = mapper.primary_key[0]
        return cast("InstrumentedAttribute[Any]", getattr(self.model, pk_column.key))


__all__ = [
    "BaseRepository",
    "SearchResult",
]
