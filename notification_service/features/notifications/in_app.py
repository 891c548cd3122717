"""Capacity-bounded in-app notification store.

Each user keeps at most ``max_per_user`` rows. Creating past the cap evicts
the oldest rows first, read or not. Count, evict and insert run after a
per-user database lock that lasts until the caller commits, so concurrent
creations from any process cannot overshoot.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from notification_service.core.exceptions import NotFoundException
from notification_service.core.services import BaseService
from notification_service.core.settings import get_in_app_settings
from notification_service.features.notifications.metrics import in_app_evictions_total
from notification_service.features.notifications.models import InAppNotification
from notification_service.features.notifications.repository import InAppNotificationRepository
from notification_service.features.notifications.schemas import (
    InAppListFilters,
    InAppListResponse,
    InAppNotificationResponse,
    InAppStats,
)
from notification_service.features.notifications.types import Priority

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.settings import InAppSettings


T = TypeVar("T")


def _chunks(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class InAppNotificationService(BaseService):
    """Creates, lists and maintains in-app notifications."""

    def __init__(
        self,
        repository: InAppNotificationRepository | None = None,
        settings: InAppSettings | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or InAppNotificationRepository()
        self._settings = settings or get_in_app_settings()

    @property
    def max_per_user(self) -> int:
        return self._settings.max_per_user

    async def create(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        type: str,  # noqa: A002
        title: str,
        message: str,
        priority: Priority = Priority.NORMAL,
        data: dict[str, Any] | None = None,
        action_url: str | None = None,
        expires_at: datetime | None = None,
    ) -> InAppNotification:
        """Insert a notification, evicting the oldest rows first when at the cap."""
        await self._repository.lock_user(session, tenant_id, user_id)
        count = await self._repository.count_for_user(session, tenant_id, user_id)
        if count >= self.max_per_user:
            excess = count - self.max_per_user + 1
            oldest = await self._repository.oldest_ids(session, tenant_id, user_id, excess)
            evicted = await self._repository.delete_many(session, oldest)
            in_app_evictions_total.inc(evicted)
            self.logger.info(
                "Evicted in-app notifications over cap",
                extra={
                    "tenant_id": tenant_id,
                    "user_id": user_id,
                    "evicted": evicted,
                    "cap": self.max_per_user,
                },
            )

        notification = InAppNotification(
            tenant_id=tenant_id,
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            priority=priority.value,
            priority_rank=priority.rank,
            data=data or {},
            action_url=action_url,
            expires_at=expires_at,
            is_read=False,
        )
        notification = await self._repository.create(session, notification)

        self._lazy.debug(lambda: f"in_app.create({user_id}, {type}) -> {notification.id}")
        return notification

    async def list(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        filters: InAppListFilters,
    ) -> InAppListResponse:
        now = datetime.now(UTC)
        page_size = min(filters.page_size, self._settings.max_page_size)
        statement = self._repository.list_statement(tenant_id, user_id, filters, now)

        result = await self._repository.search(
            session,
            statement,
            limit=page_size,
            offset=(filters.page - 1) * page_size,
        )
        unread = await self._repository.unread_count(session, tenant_id, user_id, now)

        return InAppListResponse(
            items=[InAppNotificationResponse.model_validate(item) for item in result.items],
            total=result.total,
            unread_count=unread,
            page=filters.page,
            page_size=page_size,
            pages=result.pages,
        )

    async def get(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        notification_id: UUID,
    ) -> InAppNotification:
        """One of the user's notifications.

        Raises:
            NotFoundException: If the row does not exist or belongs to someone else
        """
        notification = await self._repository.get_for_user(session, tenant_id, user_id, notification_id)
        if notification is None:
            raise NotFoundException(
                detail=f"Notification {notification_id} not found",
                type="notification-not-found",
                extra={"notification_id": str(notification_id)},
            )
        return notification

    async def mark_read(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        notification_id: UUID,
    ) -> InAppNotification:
        notification = await self.get(session, tenant_id, user_id, notification_id)
        if not notification.is_read:
            now = datetime.now(UTC)
            notification.is_read = True
            notification.read_at = now
            await session.flush()
        return notification

    async def mark_many_read(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        ids: Sequence[UUID],
    ) -> int:
        now = datetime.now(UTC)
        updated = 0
        for chunk in _chunks(list(dict.fromkeys(ids)), self._settings.mark_read_batch_size):
            updated += await self._repository.mark_read(session, tenant_id, user_id, chunk, now)
        self._lazy.debug(lambda: f"in_app.mark_many_read({user_id}) -> {updated}/{len(ids)}")
        return updated

    async def mark_all_read(self, session: AsyncSession, tenant_id: str, user_id: str) -> int:
        updated = await self._repository.mark_read(session, tenant_id, user_id, None, datetime.now(UTC))
        self.logger.info(
            "Marked all notifications read",
            extra={"tenant_id": tenant_id, "user_id": user_id, "count": updated},
        )
        return updated

    async def delete(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        notification_id: UUID,
    ) -> None:
        notification = await self.get(session, tenant_id, user_id, notification_id)
        await self._repository.delete(session, notification)

    async def delete_many(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        ids: Sequence[UUID],
    ) -> int:
        deleted = 0
        for chunk in _chunks(list(dict.fromkeys(ids)), self._settings.mark_read_batch_size):
            deleted += await self._repository.delete_for_user(session, tenant_id, user_id, chunk)
        return deleted

    async def unread_count(self, session: AsyncSession, tenant_id: str, user_id: str) -> int:
        return await self._repository.unread_count(session, tenant_id, user_id, datetime.now(UTC))

    async def stats(self, session: AsyncSession, tenant_id: str, user_id: str) -> InAppStats:
        now = datetime.now(UTC)
        by_type = await self._repository.counts_by(
            session, tenant_id, user_id, InAppNotification.type, now
        )
        by_priority = await self._repository.counts_by(
            session, tenant_id, user_id, InAppNotification.priority, now
        )
        return InAppStats(
            total=sum(by_type.values()),
            unread=await self._repository.unread_count(session, tenant_id, user_id, now),
            by_type=by_type,
            by_priority=by_priority,
        )

    async def cleanup(self, session: AsyncSession) -> int:
        """Remove expired rows and read rows past the retention window."""
        now = datetime.now(UTC)
        read_before = now - timedelta(days=self._settings.retention_days)
        deleted = await self._repository.delete_stale(session, now, read_before)
        self.logger.info(
            "In-app notification cleanup finished",
            extra={"deleted": deleted, "retention_days": self._settings.retention_days},
        )
        return deleted


_service: InAppNotificationService | None = None


def get_in_app_service() -> InAppNotificationService:
    """Get or create the singleton InAppNotificationService instance."""
    global _service
    if _service is None:
        _service = InAppNotificationService()
    return _service
