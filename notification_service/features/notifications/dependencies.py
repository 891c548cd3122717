"""FastAPI dependencies for the notifications feature.

Provides Annotated type aliases for clean dependency injection in route handlers.

Identity comes from gateway headers: ``X-Tenant-ID`` and ``X-User-ID``.

Example usage:
    from notification_service.features.notifications.dependencies import (
        CurrentUserIdDep,
        InAppServiceDep,
        SessionDep,
        TenantIdDep,
    )

    @router.get("/unread-count")
    async def unread_count(
        tenant_id: TenantIdDep,
        user_id: CurrentUserIdDep,
        session: SessionDep,
        service: InAppServiceDep,
    ) -> UnreadCountResponse:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header

from notification_service.core.dependencies.database import SessionDep
from notification_service.core.exceptions import ServiceUnavailableException, UnauthorizedException
from notification_service.features.notifications.dispatcher import (
    NotificationDispatcher,
    get_dispatcher,
)
from notification_service.features.notifications.event_handlers import (
    NotificationEventHandler,
    get_event_handler,
)
from notification_service.features.notifications.in_app import (
    InAppNotificationService,
    get_in_app_service,
)
from notification_service.features.notifications.preferences import (
    PreferenceService,
    get_preference_service,
)
from notification_service.features.notifications.push_subscriptions import (
    PushSubscriptionService,
    get_push_subscription_service,
)
from notification_service.features.notifications.queue import DeliveryQueue, get_delivery_queue


def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID", max_length=255)] = None,
) -> str:
    """Tenant of the current request.

    Raises:
        UnauthorizedException: If the header is missing or blank
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise UnauthorizedException(detail="X-Tenant-ID header is required", type="missing-tenant")
    return x_tenant_id.strip()


def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-ID", max_length=255)] = None,
) -> str:
    """User of the current request.

    Raises:
        UnauthorizedException: If the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedException(detail="X-User-ID header is required", type="missing-user")
    return x_user_id.strip()


def require_delivery_queue() -> DeliveryQueue:
    """The delivery queue, or 503 when Redis is not available."""
    queue = get_delivery_queue()
    if queue is None:
        raise ServiceUnavailableException(
            detail="Delivery queue is not available",
            type="queue-unavailable",
        )
    return queue


TenantIdDep = Annotated[str, Depends(get_tenant_id)]
CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]

# Service dependencies
PreferenceServiceDep = Annotated[PreferenceService, Depends(get_preference_service)]
InAppServiceDep = Annotated[InAppNotificationService, Depends(get_in_app_service)]
PushSubscriptionServiceDep = Annotated[
    PushSubscriptionService,
    Depends(get_push_subscription_service),
]
DispatcherDep = Annotated[NotificationDispatcher, Depends(get_dispatcher)]
EventHandlerDep = Annotated[NotificationEventHandler, Depends(get_event_handler)]
DeliveryQueueDep = Annotated[DeliveryQueue, Depends(require_delivery_queue)]


__all__ = [
    "CurrentUserIdDep",
    "DeliveryQueueDep",
    "DispatcherDep",
    "EventHandlerDep",
    "InAppServiceDep",
    "PreferenceServiceDep",
    "PushSubscriptionServiceDep",
    "SessionDep",
    "TenantIdDep",
    "get_current_user_id",
    "get_tenant_id",
    "require_delivery_queue",
]
