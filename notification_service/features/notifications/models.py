"""SQLAlchemy models for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import JSONType, TenantMixin, UUIDv7TimestampedBase


class InAppNotification(UUIDv7TimestampedBase, TenantMixin):
    """A notification stored for display in the application.

    Rows per user are capped; the in-app service evicts the oldest rows
    (created_at, then id) before inserting past the cap.

    Indexes:
        - (tenant_id, user_id, created_at) for listing and eviction
        - (tenant_id, user_id, is_read) for unread counts
    """

    __tablename__ = "in_app_notifications"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, comment="Recipient user ID")
    type: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Notification type (e.g., 'task.assigned')",
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Event data used to render the notification",
    )
    action_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    priority: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="normal",
        comment="low, normal, high or urgent",
    )
    priority_rank: Mapped[int] = mapped_column(
        nullable=False,
        default=1,
        comment="Numeric priority used for ordering (low=0 .. urgent=3)",
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
        comment="Hidden from listings and removed by cleanup after this time",
    )

    __table_args__ = (
        Index("ix_in_app_notifications_user_created", "tenant_id", "user_id", "created_at"),
        Index("ix_in_app_notifications_user_read", "tenant_id", "user_id", "is_read"),
    )

    def __repr__(self) -> str:
        return f"<InAppNotification(id={self.id}, user_id={self.user_id}, type={self.type})>"


class NotificationPreference(UUIDv7TimestampedBase, TenantMixin):
    """Per-user channel preferences and quiet hours.

    One row per (tenant_id, user_id). Channel columns hold JSON documents:
    ``email`` {enabled, digest, types}, ``push`` {enabled, types},
    ``in_app`` {enabled, types | "all"}; ``quiet_hours`` is nullable
    {enabled, start "HH:MM", end "HH:MM", timezone}.
    """

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    push: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    in_app: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    quiet_hours: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_notification_preferences_tenant_user"),
    )

    def __repr__(self) -> str:
        return f"<NotificationPreference(tenant_id={self.tenant_id}, user_id={self.user_id})>"


class PushSubscription(UUIDv7TimestampedBase, TenantMixin):
    """A browser Web Push subscription.

    Permanent delivery failures deactivate the row; only the owner's explicit
    unsubscribe deletes it.
    """

    __tablename__ = "push_subscriptions"

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(Text(), nullable=False)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_subscriptions_user_endpoint"),
    )

    def __repr__(self) -> str:
        return f"<PushSubscription(id={self.id}, user_id={self.user_id}, active={self.is_active})>"
