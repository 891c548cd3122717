"""In-app channel: persist to the in-app store, then publish a live frame."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from notification_service.features.notifications.content import build_in_app_content
from notification_service.features.notifications.types import Channel
from notification_service.infra.realtime import get_connection_manager

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.features.notifications.in_app import InAppNotificationService
    from notification_service.features.notifications.models import InAppNotification
    from notification_service.features.notifications.types import NotificationType
    from notification_service.infra.realtime import ConnectionManager

logger = logging.getLogger(__name__)


def notification_frame(notification: InAppNotification) -> dict[str, Any]:
    """Live WebSocket frame for a stored notification."""
    return {
        "event": "notification",
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "actionUrl": notification.action_url,
        "priority": notification.priority,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }


class InAppWriter:
    """Creates the stored notification and pushes it to live sessions.

    Live publishing is best effort: failures are logged and never undo the
    stored record.
    """

    channel = Channel.IN_APP

    def __init__(
        self,
        service: InAppNotificationService,
        connection_manager: ConnectionManager | None = None,
    ) -> None:
        self._service = service
        self._connection_manager = connection_manager

    @property
    def connection_manager(self) -> ConnectionManager | None:
        return self._connection_manager or get_connection_manager()

    async def write(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        notification_type: NotificationType,
        data: dict[str, Any],
    ) -> InAppNotification:
        content = build_in_app_content(notification_type, data)
        notification = await self._service.create(
            session,
            tenant_id,
            user_id,
            notification_type.value,
            content.title,
            content.message,
            priority=content.priority,
            data=data,
            action_url=content.action_url,
        )
        await self.publish(tenant_id, user_id, notification)
        return notification

    async def publish(self, tenant_id: str, user_id: str, notification: InAppNotification) -> int:
        manager = self.connection_manager
        if manager is None:
            return 0
        try:
            return await manager.send_to_user(tenant_id, user_id, notification_frame(notification))
        except Exception:
            logger.exception(
                "Live notification push failed",
                extra={"tenant_id": tenant_id, "user_id": user_id, "notification_id": str(notification.id)},
            )
            return 0
