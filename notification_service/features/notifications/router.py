"""API router for the notifications feature.

In-app Endpoints:
- GET /notifications/ - List the user's in-app notifications
- GET /notifications/unread-count - Unread badge count
- GET /notifications/stats - Totals by type and priority
- GET /notifications/{notification_id} - One notification
- POST /notifications/{notification_id}/read - Mark as read
- POST /notifications/mark-read - Mark several as read
- POST /notifications/mark-all-read - Mark everything as read
- POST /notifications/delete-multiple - Delete several
- DELETE /notifications/{notification_id} - Delete one

Preference Endpoints:
- GET/PATCH /notifications/preferences - Read or deep-merge preferences
- POST /notifications/preferences/reset - Restore defaults
- GET /notifications/preferences/types - Notification type catalogue
- POST /notifications/preferences/toggle - Toggle one type on one channel

Push Endpoints:
- GET /notifications/push/vapid-key - VAPID public key
- POST /notifications/push/subscribe - Register a browser subscription
- POST /notifications/push/unsubscribe - Remove a browser subscription
- GET /notifications/push/subscriptions - Active subscriptions

Internal Endpoints:
- POST /notifications/dispatch - Dispatch a notification event
- POST /notifications/events - Map and dispatch a business event
- POST /notifications/admin/announcement - Announce to the whole tenant
- POST /notifications/admin/cleanup - Remove stale in-app notifications
- GET /notifications/queue/stats - Delivery queue depth
- GET /notifications/queue/jobs/{job_id} - Delivery job status

WebSocket:
- WS /notifications/ws?tenant_id=...&user_id=... - Live notification frames
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, Response, WebSocket, WebSocketDisconnect, status

from notification_service.core.exceptions import NotFoundException
from notification_service.features.notifications.dependencies import (
    CurrentUserIdDep,
    DeliveryQueueDep,
    DispatcherDep,
    EventHandlerDep,
    InAppServiceDep,
    PreferenceServiceDep,
    PushSubscriptionServiceDep,
    SessionDep,
    TenantIdDep,
)
from notification_service.features.notifications.preferences import PreferenceService
from notification_service.features.notifications.queue import JobStatus, QueueStats
from notification_service.features.notifications.schemas import (
    AnnouncementRequest,
    BulkActionResponse,
    BusinessEventRequest,
    BusinessEventResponse,
    CleanupResponse,
    DispatchRequest,
    InAppListFilters,
    InAppListResponse,
    InAppNotificationResponse,
    InAppStats,
    NotificationEvent,
    NotificationIdsRequest,
    NotificationResult,
    NotificationTypesResponse,
    PreferencesResponse,
    PreferencesUpdate,
    PushSubscriptionCreate,
    PushSubscriptionResponse,
    PushUnsubscribeRequest,
    ToggleTypeRequest,
    UnreadCountResponse,
    UnsubscribeResponse,
    VapidKeyResponse,
)
from notification_service.features.notifications.types import NotificationType, Priority
from notification_service.infra.realtime import get_connection_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


# ============================================================================
# In-app: collection endpoints
# ============================================================================


@router.get(
    "/",
    response_model=InAppListResponse,
    summary="List in-app notifications",
    description="""
List the current user's in-app notifications, most important and newest first.

Expired notifications are never returned.
""",
)
async def list_notifications(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
    unread_only: Annotated[bool, Query(description="Only unread notifications")] = False,
    type: Annotated[NotificationType | None, Query(description="Filter by type")] = None,
    priority: Annotated[Priority | None, Query(description="Filter by priority")] = None,
    from_date: Annotated[datetime | None, Query(description="Created at or after")] = None,
    to_date: Annotated[datetime | None, Query(description="Created at or before")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> InAppListResponse:
    filters = InAppListFilters(
        unread_only=unread_only,
        type=type,
        priority=priority,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list(session, tenant_id, user_id, filters)


@router.get("/unread-count", response_model=UnreadCountResponse, summary="Unread count")
async def unread_count(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await service.unread_count(session, tenant_id, user_id))


@router.get("/stats", response_model=InAppStats, summary="In-app statistics")
async def notification_stats(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> InAppStats:
    return await service.stats(session, tenant_id, user_id)


@router.post("/mark-read", response_model=BulkActionResponse, summary="Mark several as read")
async def mark_many_read(
    body: NotificationIdsRequest,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> BulkActionResponse:
    count = await service.mark_many_read(session, tenant_id, user_id, body.ids)
    await session.commit()
    return BulkActionResponse(count=count)


@router.post("/mark-all-read", response_model=BulkActionResponse, summary="Mark all as read")
async def mark_all_read(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> BulkActionResponse:
    count = await service.mark_all_read(session, tenant_id, user_id)
    await session.commit()
    return BulkActionResponse(count=count)


@router.post("/delete-multiple", response_model=BulkActionResponse, summary="Delete several")
async def delete_many(
    body: NotificationIdsRequest,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> BulkActionResponse:
    count = await service.delete_many(session, tenant_id, user_id, body.ids)
    await session.commit()
    return BulkActionResponse(count=count)


# ============================================================================
# Preferences
# ============================================================================


@router.get("/preferences", response_model=PreferencesResponse, summary="Get preferences")
async def get_preferences(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> PreferencesResponse:
    """Stored preferences; a row with the defaults is created on first read."""
    row = await service.get_preferences(session, tenant_id, user_id)
    await session.commit()
    return PreferenceService.to_response(row)


@router.patch(
    "/preferences",
    response_model=PreferencesResponse,
    summary="Update preferences",
    description="""
Deep-merge a partial update. Channel sections merge field by field.

Send `"quiet_hours": null` to clear quiet hours.
""",
    responses={422: {"description": "Invalid quiet hours or time zone"}},
)
async def update_preferences(
    body: PreferencesUpdate,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> PreferencesResponse:
    row = await service.update_preferences(session, tenant_id, user_id, body)
    await session.commit()
    return PreferenceService.to_response(row)


@router.post("/preferences/reset", response_model=PreferencesResponse, summary="Reset preferences")
async def reset_preferences(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> PreferencesResponse:
    row = await service.reset_preferences(session, tenant_id, user_id)
    await session.commit()
    return PreferenceService.to_response(row)


@router.get(
    "/preferences/types",
    response_model=NotificationTypesResponse,
    summary="Notification type catalogue",
)
async def notification_types() -> NotificationTypesResponse:
    return PreferenceService.get_notification_types()


@router.post("/preferences/toggle", response_model=PreferencesResponse, summary="Toggle a type")
async def toggle_type(
    body: ToggleTypeRequest,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PreferenceServiceDep,
) -> PreferencesResponse:
    row = await service.toggle_type(
        session, tenant_id, user_id, body.channel, body.type, enabled=body.enabled
    )
    await session.commit()
    return PreferenceService.to_response(row)


# ============================================================================
# Push subscriptions
# ============================================================================


@router.get(
    "/push/vapid-key",
    response_model=VapidKeyResponse,
    summary="VAPID public key",
    responses={503: {"description": "Push is not configured"}},
)
async def vapid_key(service: PushSubscriptionServiceDep) -> VapidKeyResponse:
    return VapidKeyResponse(public_key=service.get_vapid_public_key())


@router.post(
    "/push/subscribe",
    response_model=PushSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push subscription",
)
async def subscribe(
    body: PushSubscriptionCreate,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PushSubscriptionServiceDep,
) -> PushSubscriptionResponse:
    subscription = await service.register(session, tenant_id, user_id, body)
    await session.commit()
    return PushSubscriptionResponse.model_validate(subscription)


@router.post("/push/unsubscribe", response_model=UnsubscribeResponse, summary="Remove a push subscription")
async def unsubscribe(
    body: PushUnsubscribeRequest,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PushSubscriptionServiceDep,
) -> UnsubscribeResponse:
    removed = await service.unregister(session, tenant_id, user_id, body.endpoint)
    await session.commit()
    return UnsubscribeResponse(removed=removed)


@router.get(
    "/push/subscriptions",
    response_model=list[PushSubscriptionResponse],
    summary="Active push subscriptions",
)
async def list_subscriptions(
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: PushSubscriptionServiceDep,
) -> list[PushSubscriptionResponse]:
    subscriptions = await service.list_active(session, tenant_id, user_id)
    return [PushSubscriptionResponse.model_validate(sub) for sub in subscriptions]


# ============================================================================
# Internal: dispatch and administration
# ============================================================================


@router.post(
    "/dispatch",
    response_model=NotificationResult,
    summary="Dispatch a notification",
    description="""
Deliver one notification to a set of users on every channel their preferences allow.

Email is queued for background delivery, push is sent immediately and
in-app notifications are stored and pushed to open sessions.
""",
)
async def dispatch_notification(
    body: DispatchRequest,
    tenant_id: TenantIdDep,
    session: SessionDep,
    dispatcher: DispatcherDep,
) -> NotificationResult:
    event = NotificationEvent(
        type=body.type,
        tenant_id=tenant_id,
        recipient_user_ids=body.recipient_user_ids,
        data=body.data,
        channels=body.channels,
    )
    result = await dispatcher.dispatch(session, event)
    await session.commit()
    return result


@router.post("/events", response_model=BusinessEventResponse, summary="Handle a business event")
async def handle_business_event(
    body: BusinessEventRequest,
    tenant_id: TenantIdDep,
    session: SessionDep,
    handler: EventHandlerDep,
) -> BusinessEventResponse:
    result = await handler.handle(session, tenant_id, body.event, body.payload)
    await session.commit()
    return BusinessEventResponse(handled=result is not None, result=result)


@router.post(
    "/admin/announcement",
    response_model=NotificationResult,
    summary="Announce to the tenant",
    responses={503: {"description": "User directory unavailable"}},
)
async def send_announcement(
    body: AnnouncementRequest,
    tenant_id: TenantIdDep,
    session: SessionDep,
    dispatcher: DispatcherDep,
) -> NotificationResult:
    result = await dispatcher.send_announcement(
        session, tenant_id, body.title, body.message, url=body.url, channels=body.channels
    )
    await session.commit()
    return result


@router.post("/admin/cleanup", response_model=CleanupResponse, summary="Remove stale in-app notifications")
async def cleanup_notifications(
    _tenant_id: TenantIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> CleanupResponse:
    deleted = await service.cleanup(session)
    await session.commit()
    return CleanupResponse(deleted=deleted)


@router.get(
    "/queue/stats",
    response_model=QueueStats,
    summary="Delivery queue statistics",
    responses={503: {"description": "Delivery queue unavailable"}},
)
async def queue_stats(queue: DeliveryQueueDep) -> QueueStats:
    return await queue.get_stats()


@router.get(
    "/queue/jobs/{job_id}",
    response_model=JobStatus,
    summary="Delivery job status",
    responses={404: {"description": "Unknown job"}, 503: {"description": "Delivery queue unavailable"}},
)
async def job_status(job_id: str, queue: DeliveryQueueDep) -> JobStatus:
    job = await queue.get_status(job_id)
    if job is None:
        raise NotFoundException(detail=f"Job {job_id} not found", type="job-not-found")
    return job


# ============================================================================
# Live frames
# ============================================================================


@router.websocket("/ws")
async def notifications_websocket(
    websocket: WebSocket,
    tenant_id: Annotated[str, Query(min_length=1, max_length=255)],
    user_id: Annotated[str, Query(min_length=1, max_length=255)],
) -> None:
    """Live notification frames for one user.

    Server -> Client:
        - {"event": "connected", "connection_id": "..."}
        - {"event": "notification", "id": ..., "type": ..., "title": ..., ...}
        - {"event": "pong"}

    Client -> Server:
        - "ping" (any other text is ignored)
    """
    manager = get_connection_manager()
    if manager is None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Server not ready")
        return

    connection_id: str | None = None
    try:
        connection_id = await manager.connect(websocket, tenant_id, user_id)
        await websocket.send_json({"event": "connected", "connection_id": connection_id})
        async for text in websocket.iter_text():
            if text.strip() == "ping":
                await websocket.send_json({"event": "pong"})
    except ConnectionRefusedError as e:
        logger.warning("WebSocket connection refused", extra={"reason": str(e)})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=str(e))
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected", extra={"user_id": user_id})
    finally:
        if connection_id is not None:
            await manager.disconnect(connection_id)


# ============================================================================
# In-app: single notification endpoints
# ============================================================================


@router.get(
    "/{notification_id}",
    response_model=InAppNotificationResponse,
    summary="Get a notification",
    responses={404: {"description": "Notification not found"}},
)
async def get_notification(
    notification_id: UUID,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> InAppNotificationResponse:
    notification = await service.get(session, tenant_id, user_id, notification_id)
    return InAppNotificationResponse.model_validate(notification)


@router.post(
    "/{notification_id}/read",
    response_model=InAppNotificationResponse,
    summary="Mark as read",
    responses={404: {"description": "Notification not found"}},
)
async def mark_read(
    notification_id: UUID,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> InAppNotificationResponse:
    notification = await service.mark_read(session, tenant_id, user_id, notification_id)
    await session.commit()
    return InAppNotificationResponse.model_validate(notification)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
    responses={404: {"description": "Notification not found"}},
)
async def delete_notification(
    notification_id: UUID,
    tenant_id: TenantIdDep,
    user_id: CurrentUserIdDep,
    session: SessionDep,
    service: InAppServiceDep,
) -> Response:
    await service.delete(session, tenant_id, user_id, notification_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
