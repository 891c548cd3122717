"""Repositories for the notifications feature.

Every query is scoped by tenant (and by user where the row is user-owned).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, func, or_, select, update

from notification_service.core.database.repository import BaseRepository
from notification_service.features.notifications.models import (
    InAppNotification,
    NotificationPreference,
    PushSubscription,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.features.notifications.schemas import InAppListFilters


class InAppNotificationRepository(BaseRepository[InAppNotification]):
    """Repository for InAppNotification model."""

    def __init__(self) -> None:
        super().__init__(InAppNotification)

    @staticmethod
    def _owned(tenant_id: str, user_id: str) -> ColumnElement[bool]:
        return and_(
            InAppNotification.tenant_id == tenant_id,
            InAppNotification.user_id == user_id,
        )

    @staticmethod
    def _not_expired(now: datetime) -> ColumnElement[bool]:
        return or_(InAppNotification.expires_at.is_(None), InAppNotification.expires_at > now)

    async def lock_user(self, session: AsyncSession, tenant_id: str, user_id: str) -> None:
        """Hold a per-user lock until the current transaction ends.

        PostgreSQL takes a transaction-scoped advisory lock. SQLite sessions
        already hold the database write lock from their first statement.
        """
        if session.get_bind().dialect.name != "postgresql":
            return
        key = func.hashtext(f"in_app:{tenant_id}:{user_id}")
        await session.execute(select(func.pg_advisory_xact_lock(key)))

    async def count_for_user(self, session: AsyncSession, tenant_id: str, user_id: str) -> int:
        """Count every stored row for a user, expired or not."""
        stmt = select(func.count()).select_from(InAppNotification).where(self._owned(tenant_id, user_id))
        return (await session.execute(stmt)).scalar_one()

    async def oldest_ids(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        limit: int,
    ) -> list[UUID]:
        """IDs of the user's oldest rows, oldest first, regardless of read state."""
        stmt = (
            select(InAppNotification.id)
            .where(self._owned(tenant_id, user_id))
            .order_by(InAppNotification.created_at.asc(), InAppNotification.id.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get_for_user(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        notification_id: UUID,
    ) -> InAppNotification | None:
        stmt = select(InAppNotification).where(
            self._owned(tenant_id, user_id),
            InAppNotification.id == notification_id,
        )
        notification = (await session.execute(stmt)).scalar_one_or_none()
        self._lazy.debug(
            lambda: f"db.get_for_user({notification_id}) -> {'found' if notification else 'not found'}"
        )
        return notification

    def list_statement(
        self,
        tenant_id: str,
        user_id: str,
        filters: InAppListFilters,
        now: datetime,
    ) -> Select[tuple[InAppNotification]]:
        """Listing query: live rows, most important first, newest first."""
        stmt = select(InAppNotification).where(
            self._owned(tenant_id, user_id),
            self._not_expired(now),
        )
        if filters.unread_only:
            stmt = stmt.where(InAppNotification.is_read.is_(False))
        if filters.type is not None:
            stmt = stmt.where(InAppNotification.type == filters.type.value)
        if filters.priority is not None:
            stmt = stmt.where(InAppNotification.priority == filters.priority.value)
        if filters.from_date is not None:
            stmt = stmt.where(InAppNotification.created_at >= filters.from_date)
        if filters.to_date is not None:
            stmt = stmt.where(InAppNotification.created_at <= filters.to_date)

        return stmt.order_by(
            InAppNotification.priority_rank.desc(),
            InAppNotification.created_at.desc(),
            InAppNotification.id.desc(),
        )

    async def unread_count(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        now: datetime,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(InAppNotification)
            .where(
                self._owned(tenant_id, user_id),
                self._not_expired(now),
                InAppNotification.is_read.is_(False),
            )
        )
        return (await session.execute(stmt)).scalar_one()

    async def mark_read(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        ids: Sequence[UUID] | None,
        now: datetime,
    ) -> int:
        """Mark unread rows read; ``ids=None`` marks every unread row."""
        stmt = (
            update(InAppNotification)
            .where(self._owned(tenant_id, user_id), InAppNotification.is_read.is_(False))
            .values(is_read=True, read_at=now, updated_at=now)
        )
        if ids is not None:
            stmt = stmt.where(InAppNotification.id.in_(list(ids)))
        result = await session.execute(stmt)
        await session.flush()
        return result.rowcount or 0

    async def delete_for_user(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        ids: Sequence[UUID],
    ) -> int:
        stmt = delete(InAppNotification).where(
            self._owned(tenant_id, user_id),
            InAppNotification.id.in_(list(ids)),
        )
        result = await session.execute(stmt)
        await session.flush()
        return result.rowcount or 0

    async def counts_by(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        column: Any,
        now: datetime,
    ) -> dict[str, int]:
        """Live row counts grouped by ``column`` (type or priority)."""
        stmt = (
            select(column, func.count())
            .where(self._owned(tenant_id, user_id), self._not_expired(now))
            .group_by(column)
        )
        result = await session.execute(stmt)
        return {key: count for key, count in result.all()}

    async def delete_stale(self, session: AsyncSession, now: datetime, read_before: datetime) -> int:
        """Delete expired rows and read rows older than ``read_before``, across tenants."""
        stmt = delete(InAppNotification).where(
            or_(
                and_(InAppNotification.expires_at.is_not(None), InAppNotification.expires_at <= now),
                and_(InAppNotification.is_read.is_(True), InAppNotification.created_at < read_before),
            )
        )
        result = await session.execute(stmt)
        await session.flush()
        return result.rowcount or 0


class NotificationPreferenceRepository(BaseRepository[NotificationPreference]):
    """Repository for NotificationPreference model."""

    def __init__(self) -> None:
        super().__init__(NotificationPreference)

    async def get_for_user(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> NotificationPreference | None:
        stmt = select(NotificationPreference).where(
            NotificationPreference.tenant_id == tenant_id,
            NotificationPreference.user_id == user_id,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_for_users(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_ids: Sequence[str],
    ) -> dict[str, NotificationPreference]:
        """Rows for the given users in one query, keyed by user ID."""
        if not user_ids:
            return {}
        stmt = select(NotificationPreference).where(
            NotificationPreference.tenant_id == tenant_id,
            NotificationPreference.user_id.in_(list(user_ids)),
        )
        result = await session.execute(stmt)
        rows = {row.user_id: row for row in result.scalars().all()}
        self._lazy.debug(lambda: f"db.list_for_users: {len(rows)}/{len(user_ids)} rows")
        return rows


class PushSubscriptionRepository(BaseRepository[PushSubscription]):
    """Repository for PushSubscription model."""

    def __init__(self) -> None:
        super().__init__(PushSubscription)

    async def get_by_endpoint(
        self,
        session: AsyncSession,
        user_id: str,
        endpoint: str,
    ) -> PushSubscription | None:
        stmt = select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def list_active(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> Sequence[PushSubscription]:
        stmt = (
            select(PushSubscription)
            .where(
                PushSubscription.tenant_id == tenant_id,
                PushSubscription.user_id == user_id,
                PushSubscription.is_active.is_(True),
            )
            .order_by(PushSubscription.created_at.desc(), PushSubscription.id.desc())
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def set_active(
        self,
        session: AsyncSession,
        subscription_id: UUID,
        *,
        active: bool,
    ) -> bool:
        stmt = (
            update(PushSubscription)
            .where(PushSubscription.id == subscription_id)
            .values(is_active=active)
        )
        result = await session.execute(stmt)
        await session.flush()
        return bool(result.rowcount)

    async def touch(self, session: AsyncSession, subscription_id: UUID, now: datetime) -> None:
        stmt = (
            update(PushSubscription)
            .where(PushSubscription.id == subscription_id)
            .values(last_used_at=now)
        )
        await session.execute(stmt)
        await session.flush()
