"""Preference evaluation and management.

``should_notify`` is the gate every channel passes through. It never writes:
a user without a stored row is evaluated against the system defaults. The
row itself is created lazily the first time preferences are read through
the API.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any, assert_never
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notification_service.core.exceptions import ValidationException
from notification_service.core.services import BaseService
from notification_service.features.notifications.metrics import notifications_suppressed_total
from notification_service.features.notifications.models import NotificationPreference
from notification_service.features.notifications.repository import NotificationPreferenceRepository
from notification_service.features.notifications.schemas import (
    NotificationTypeInfo,
    NotificationTypesResponse,
    PreferencesResponse,
)
from notification_service.features.notifications.types import (
    ALL_TYPES,
    CATALOGUE,
    Channel,
    Digest,
    NotificationType,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.features.notifications.schemas import PreferencesUpdate

logger = logging.getLogger(__name__)


def default_preferences() -> dict[str, Any]:
    """System defaults for a user without a stored preference row."""
    return {
        "email": {
            "enabled": True,
            "digest": Digest.IMMEDIATE.value,
            "types": [
                NotificationType.TASK_ASSIGNED.value,
                NotificationType.TASK_MENTIONED.value,
                NotificationType.LEAVE_APPROVED.value,
                NotificationType.LEAVE_REJECTED.value,
            ],
        },
        "push": {
            "enabled": True,
            "types": [
                NotificationType.TASK_ASSIGNED.value,
                NotificationType.TASK_MENTIONED.value,
                NotificationType.TASK_DUE_SOON.value,
            ],
        },
        "in_app": {"enabled": True, "types": ALL_TYPES},
        "quiet_hours": None,
    }


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: str | None = None


ALLOWED = Decision(True)


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` string."""
    hours, minutes = value.split(":", 1)
    return int(hours) * 60 + int(minutes)


def resolve_zone(name: str | None) -> ZoneInfo:
    """IANA zone by name; unknown or empty names fall back to UTC."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown quiet-hours timezone, falling back to UTC",
            extra={"timezone": name},
        )
        return ZoneInfo("UTC")


def in_quiet_hours(quiet_hours: dict[str, Any] | None, now: datetime) -> bool:
    """Whether ``now`` falls inside the window, both ends inclusive.

    ``start < end`` is a same-day window; otherwise it wraps past midnight.
    """
    if not quiet_hours or not quiet_hours.get("enabled", False):
        return False

    local = now.astimezone(resolve_zone(quiet_hours.get("timezone")))
    current = local.hour * 60 + local.minute
    start = parse_hhmm(quiet_hours["start"])
    end = parse_hhmm(quiet_hours["end"])

    if start < end:
        return start <= current <= end
    return current >= start or current <= end


def evaluate(
    preferences: dict[str, Any],
    notification_type: NotificationType,
    channel: Channel,
    now: datetime,
) -> Decision:
    """Pure preference gate for one user, channel and type."""
    if in_quiet_hours(preferences.get("quiet_hours"), now):
        return Decision(False, "quiet_hours")

    match channel:
        case Channel.EMAIL:
            email = preferences["email"]
            if not email.get("enabled", False):
                return Decision(False, "channel_disabled")
            if email.get("digest") == Digest.NEVER.value:
                return Decision(False, "digest_never")
            if notification_type.value not in email.get("types", []):
                return Decision(False, "type_not_allowed")
        case Channel.PUSH:
            push = preferences["push"]
            if not push.get("enabled", False):
                return Decision(False, "channel_disabled")
            if notification_type.value not in push.get("types", []):
                return Decision(False, "type_not_allowed")
        case Channel.IN_APP:
            in_app = preferences["in_app"]
            if not in_app.get("enabled", False):
                return Decision(False, "channel_disabled")
            types = in_app.get("types", ALL_TYPES)
            if types != ALL_TYPES and notification_type.value not in types:
                return Decision(False, "type_not_allowed")
        case _:
            assert_never(channel)

    return ALLOWED


def _snapshot(row: NotificationPreference | None) -> dict[str, Any]:
    if row is None:
        return default_preferences()
    return {
        "email": row.email,
        "push": row.push,
        "in_app": row.in_app,
        "quiet_hours": row.quiet_hours,
    }


class PreferenceService(BaseService):
    """Reads, evaluates and updates per-user notification preferences."""

    def __init__(self, repository: NotificationPreferenceRepository | None = None) -> None:
        super().__init__()
        self._repository = repository or NotificationPreferenceRepository()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def should_notify(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        notification_type: NotificationType,
        channel: Channel,
        *,
        now: datetime | None = None,
    ) -> bool:
        row = await self._repository.get_for_user(session, tenant_id, user_id)
        decision = evaluate(_snapshot(row), notification_type, channel, now or datetime.now(UTC))
        if not decision.allowed:
            self._record_suppression(user_id, notification_type, channel, decision)
        return decision.allowed

    async def filter_recipients(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_ids: Sequence[str],
        notification_type: NotificationType,
        channel: Channel,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Users allowed to receive the notification, in input order."""
        rows = await self._repository.list_for_users(session, tenant_id, user_ids)
        current = now or datetime.now(UTC)

        allowed: list[str] = []
        for user_id in user_ids:
            decision = evaluate(_snapshot(rows.get(user_id)), notification_type, channel, current)
            if decision.allowed:
                allowed.append(user_id)
            else:
                self._record_suppression(user_id, notification_type, channel, decision)

        self._lazy.debug(
            lambda: f"filter_recipients({notification_type}, {channel}) -> {len(allowed)}/{len(user_ids)}"
        )
        return allowed

    def _record_suppression(
        self,
        user_id: str,
        notification_type: NotificationType,
        channel: Channel,
        decision: Decision,
    ) -> None:
        notifications_suppressed_total.labels(channel=channel.value, reason=decision.reason).inc()
        self._lazy.debug(
            lambda: f"suppressed {notification_type} for {user_id} on {channel}: {decision.reason}"
        )

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def get_preferences(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> NotificationPreference:
        """Stored row for the user, created from defaults on first access."""
        row = await self._repository.get_for_user(session, tenant_id, user_id)
        if row is not None:
            return row
        return await self._create(session, tenant_id, user_id, default_preferences())

    async def update_preferences(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        update: PreferencesUpdate,
    ) -> NotificationPreference:
        """Deep-merge a partial update into the user's preferences."""
        row = await self._repository.get_for_user(session, tenant_id, user_id)
        current = _snapshot(row)

        merged = {
            "email": dict(current["email"]),
            "push": dict(current["push"]),
            "in_app": dict(current["in_app"]),
            "quiet_hours": dict(current["quiet_hours"]) if current["quiet_hours"] else None,
        }
        for channel in ("email", "push", "in_app"):
            part = getattr(update, channel)
            if part is not None:
                merged[channel].update(part.model_dump(mode="json", exclude_none=True))

        if "quiet_hours" in update.model_fields_set:
            if update.quiet_hours is None:
                merged["quiet_hours"] = None
            else:
                merged["quiet_hours"] = self._merge_quiet_hours(
                    merged["quiet_hours"],
                    update.quiet_hours.model_dump(mode="json", exclude_none=True),
                )

        if row is None:
            row = await self._create(session, tenant_id, user_id, merged)
        else:
            self._apply(row, merged)
            await session.flush()

        self.logger.info(
            "Notification preferences updated",
            extra={
                "tenant_id": tenant_id,
                "user_id": user_id,
                "fields": sorted(update.model_fields_set),
            },
        )
        return row

    async def toggle_type(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        channel: Channel,
        notification_type: NotificationType,
        *,
        enabled: bool,
    ) -> NotificationPreference:
        """Add or remove one type from a channel's allow-list."""
        row = await self.get_preferences(session, tenant_id, user_id)
        section = dict(getattr(row, channel.value))

        types = section.get("types", [])
        if types == ALL_TYPES:
            types = [t.value for t in NotificationType]
        types = list(types)

        if enabled and notification_type.value not in types:
            types.append(notification_type.value)
        elif not enabled and notification_type.value in types:
            types.remove(notification_type.value)

        section["types"] = types
        setattr(row, channel.value, section)
        await session.flush()

        self._lazy.debug(lambda: f"toggle_type({user_id}, {channel}, {notification_type}, {enabled=})")
        return row

    async def reset_preferences(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> NotificationPreference:
        row = await self._repository.get_for_user(session, tenant_id, user_id)
        if row is None:
            return await self._create(session, tenant_id, user_id, default_preferences())

        self._apply(row, default_preferences())
        await session.flush()
        self.logger.info(
            "Notification preferences reset",
            extra={"tenant_id": tenant_id, "user_id": user_id},
        )
        return row

    @staticmethod
    def get_notification_types() -> NotificationTypesResponse:
        return NotificationTypesResponse(
            categories={
                category: [
                    NotificationTypeInfo(type=info.type, label=info.label, description=info.description)
                    for info in infos
                ]
                for category, infos in CATALOGUE.items()
            }
        )

    @staticmethod
    def to_response(row: NotificationPreference) -> PreferencesResponse:
        return PreferencesResponse(
            user_id=row.user_id,
            email=row.email,
            push=row.push,
            in_app=row.in_app,
            quiet_hours=row.quiet_hours,
            updated_at=row.updated_at,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _merge_quiet_hours(
        existing: dict[str, Any] | None,
        incoming: dict[str, Any],
    ) -> dict[str, Any]:
        merged = {"enabled": True, "timezone": "UTC", **(existing or {}), **incoming}
        if "start" not in merged or "end" not in merged:
            raise ValidationException(
                detail="Quiet hours need both start and end",
                type="invalid-quiet-hours",
            )
        try:
            ZoneInfo(merged["timezone"])
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationException(
                detail=f"Unknown timezone: {merged['timezone']}",
                type="invalid-timezone",
                extra={"timezone": merged["timezone"]},
            ) from e
        return merged

    @staticmethod
    def _apply(row: NotificationPreference, values: dict[str, Any]) -> None:
        # New dict objects so the JSON columns are flagged dirty.
        row.email = dict(values["email"])
        row.push = dict(values["push"])
        row.in_app = dict(values["in_app"])
        row.quiet_hours = dict(values["quiet_hours"]) if values["quiet_hours"] else None

    async def _create(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        values: dict[str, Any],
    ) -> NotificationPreference:
        row = NotificationPreference(tenant_id=tenant_id, user_id=user_id)
        self._apply(row, values)
        session.add(row)
        await session.flush()
        self._lazy.debug(lambda: f"created preferences for {tenant_id}/{user_id}")
        return row


_service: PreferenceService | None = None


def get_preference_service() -> PreferenceService:
    """Get or create the singleton PreferenceService instance."""
    global _service
    if _service is None:
        _service = PreferenceService()
    return _service
