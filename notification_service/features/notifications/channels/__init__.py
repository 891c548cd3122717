"""Channel senders.

- Email: rendered messages through aiosmtplib or the console backend
- Push: Web Push through pywebpush
- In-app: stored notifications plus live WebSocket frames

Senders report failures as ``DeliveryResult`` with a ``FailureKind``.
"""

from __future__ import annotations

from notification_service.features.notifications.channels.base import (
    ChannelSender,
    DeliveryResult,
    FailureKind,
)
from notification_service.features.notifications.channels.email import EmailSender
from notification_service.features.notifications.channels.in_app import InAppWriter, notification_frame
from notification_service.features.notifications.channels.push import (
    PushSender,
    SubscriptionInfo,
    SubscriptionStore,
)

__all__ = [
    "ChannelSender",
    "DeliveryResult",
    "EmailSender",
    "FailureKind",
    "InAppWriter",
    "PushSender",
    "SubscriptionInfo",
    "SubscriptionStore",
    "notification_frame",
]
