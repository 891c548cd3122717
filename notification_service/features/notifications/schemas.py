"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notification_service.features.notifications.types import (
    ALL_TYPES,
    Channel,
    Digest,
    NotificationType,
    Priority,
)

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ============================================================================
# Dispatch
# ============================================================================


class NotificationEvent(BaseModel):
    """One logical notification addressed to a set of users. Never persisted."""

    model_config = ConfigDict(frozen=True)

    type: NotificationType
    tenant_id: str = Field(..., min_length=1, max_length=255)
    recipient_user_ids: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)
    channels: list[Channel] | None = Field(
        default=None,
        description="Restrict delivery to these channels (default: all)",
    )


class ChannelCounts(BaseModel):
    sent: int = 0
    failed: int = 0


class InAppCounts(BaseModel):
    created: int = 0


class NotificationResult(BaseModel):
    """Per-channel outcome of a dispatch."""

    email: ChannelCounts = Field(default_factory=ChannelCounts)
    push: ChannelCounts = Field(default_factory=ChannelCounts)
    in_app: InAppCounts = Field(default_factory=InAppCounts)


class DispatchRequest(BaseModel):
    """Dispatch payload; the tenant comes from the X-Tenant-ID header."""

    type: NotificationType
    recipient_user_ids: list[str] = Field(..., min_length=1, max_length=10_000)
    data: dict[str, Any] = Field(default_factory=dict)
    channels: list[Channel] | None = None


class BusinessEventRequest(BaseModel):
    event: str = Field(..., min_length=1, max_length=100, description="e.g. 'task.assigned'")
    payload: dict[str, Any] = Field(default_factory=dict)


class BusinessEventResponse(BaseModel):
    handled: bool
    result: NotificationResult | None = None


class AnnouncementRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1, max_length=5000)
    url: str | None = Field(default=None, max_length=2048)
    channels: list[Channel] | None = None


class CleanupResponse(BaseModel):
    deleted: int


# ============================================================================
# Preferences
# ============================================================================


class EmailPreferences(BaseModel):
    enabled: bool = True
    digest: Digest = Digest.IMMEDIATE
    types: list[NotificationType] = Field(default_factory=list)


class PushPreferences(BaseModel):
    enabled: bool = True
    types: list[NotificationType] = Field(default_factory=list)


class InAppPreferences(BaseModel):
    enabled: bool = True
    types: list[NotificationType] | Literal["all"] = ALL_TYPES


class QuietHours(BaseModel):
    enabled: bool = True
    start: str = Field(..., pattern=HHMM_PATTERN, description="Local start time, HH:MM")
    end: str = Field(..., pattern=HHMM_PATTERN, description="Local end time, HH:MM")
    timezone: str = Field(default="UTC", max_length=64, description="IANA time zone name")


class PreferencesResponse(BaseModel):
    user_id: str
    email: EmailPreferences
    push: PushPreferences
    in_app: InAppPreferences
    quiet_hours: QuietHours | None = None
    updated_at: datetime | None = None


class EmailPreferencesUpdate(BaseModel):
    enabled: bool | None = None
    digest: Digest | None = None
    types: list[NotificationType] | None = None


class PushPreferencesUpdate(BaseModel):
    enabled: bool | None = None
    types: list[NotificationType] | None = None


class InAppPreferencesUpdate(BaseModel):
    enabled: bool | None = None
    types: list[NotificationType] | Literal["all"] | None = None


class QuietHoursUpdate(BaseModel):
    enabled: bool | None = None
    start: str | None = Field(default=None, pattern=HHMM_PATTERN)
    end: str | None = Field(default=None, pattern=HHMM_PATTERN)
    timezone: str | None = Field(default=None, max_length=64)


class PreferencesUpdate(BaseModel):
    """Partial update; channels merge field by field.

    Sending ``"quiet_hours": null`` explicitly clears quiet hours, while
    omitting the key leaves them untouched.
    """

    email: EmailPreferencesUpdate | None = None
    push: PushPreferencesUpdate | None = None
    in_app: InAppPreferencesUpdate | None = None
    quiet_hours: QuietHoursUpdate | None = None


class ToggleTypeRequest(BaseModel):
    channel: Channel
    type: NotificationType
    enabled: bool


class NotificationTypeInfo(BaseModel):
    type: NotificationType
    label: str
    description: str


class NotificationTypesResponse(BaseModel):
    categories: dict[str, list[NotificationTypeInfo]]


# ============================================================================
# In-app notifications
# ============================================================================


class InAppNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    action_url: str | None = None
    priority: Priority
    is_read: bool
    read_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime


class InAppListFilters(BaseModel):
    unread_only: bool = False
    type: NotificationType | None = None
    priority: Priority | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class InAppListResponse(BaseModel):
    items: list[InAppNotificationResponse]
    total: int
    unread_count: int
    page: int
    page_size: int
    pages: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class InAppStats(BaseModel):
    total: int
    unread: int
    by_type: dict[str, int]
    by_priority: dict[str, int]


class NotificationIdsRequest(BaseModel):
    ids: list[UUID] = Field(..., min_length=1, max_length=1000)


class BulkActionResponse(BaseModel):
    count: int


# ============================================================================
# Push subscriptions
# ============================================================================


class PushKeys(BaseModel):
    p256dh: str = Field(..., min_length=1, max_length=255)
    auth: str = Field(..., min_length=1, max_length=255)


class PushSubscriptionCreate(BaseModel):
    """Browser ``PushSubscription.toJSON()`` plus optional device details."""

    endpoint: str = Field(..., min_length=1, max_length=2048)
    keys: PushKeys
    user_agent: str | None = Field(default=None, max_length=512)
    device_name: str | None = Field(default=None, max_length=255)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith("https://"):
            msg = "Push endpoint must be an https URL"
            raise ValueError(msg)
        return v


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2048)


class PushSubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    endpoint: str
    user_agent: str | None = None
    device_name: str | None = None
    is_active: bool
    last_used_at: datetime | None = None
    created_at: datetime


class UnsubscribeResponse(BaseModel):
    removed: bool


class VapidKeyResponse(BaseModel):
    public_key: str
