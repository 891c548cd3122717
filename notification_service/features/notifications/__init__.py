"""Notification dispatch and delivery feature.

One logical notification fans out to three channels, each gated by the
recipient's preferences:
- email: rendered with Jinja2 and delivered through the Redis delivery queue
- push: Web Push sent inline, with optional queue fallback for retries
- in_app: stored per user (capped, oldest evicted) and pushed to live sessions

Architecture:
    - Models: InAppNotification, NotificationPreference, PushSubscription
    - Preferences: side-effect-free gate (channel, type allow-list, digest, quiet hours)
    - Channels: EmailSender, PushSender, InAppWriter
    - Queue: DeliveryQueue (LMOVE exclusivity, exponential backoff, terminal failures)
    - Dispatcher: NotificationDispatcher, plus business event mapping in event_handlers

Example:
    ```python
    dispatcher = get_dispatcher()
    result = await dispatcher.notify(
        session,
        tenant_id="acme",
        notification_type="leave.approved",
        user_ids=["u-17"],
        data={"leaveType": "Annual", "startDate": "2026-03-02", "endDate": "2026-03-06"},
    )
    await session.commit()
    ```
"""

from notification_service.features.notifications.models import (
    InAppNotification,
    NotificationPreference,
    PushSubscription,
)
from notification_service.features.notifications.types import (
    Channel,
    NotificationType,
    Priority,
)

__all__ = [
    "Channel",
    "InAppNotification",
    "NotificationPreference",
    "NotificationType",
    "Priority",
    "PushSubscription",
]
