"""Tests for preference evaluation and management."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import func, select

from notification_service.core.exceptions import ValidationException
from notification_service.features.notifications.models import NotificationPreference
from notification_service.features.notifications.preferences import (
    PreferenceService,
    default_preferences,
    evaluate,
    in_quiet_hours,
)
from notification_service.features.notifications.schemas import (
    EmailPreferencesUpdate,
    PreferencesUpdate,
    QuietHoursUpdate,
)
from notification_service.features.notifications.types import ALL_TYPES, Channel, Digest, NotificationType

NOON = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


def _quiet(start: str, end: str, tz: str = "UTC", enabled: bool = True) -> dict:
    return {"enabled": enabled, "start": start, "end": end, "timezone": tz}


class TestQuietHours:
    @pytest.mark.parametrize(
        ("hour", "minute", "expected"),
        [
            (22, 0, True),
            (23, 59, True),
            (0, 0, True),
            (6, 59, True),
            (7, 0, True),
            (7, 1, False),
            (12, 0, False),
            (21, 59, False),
        ],
    )
    def test_window_wrapping_midnight(self, hour: int, minute: int, expected: bool) -> None:
        now = datetime(2025, 3, 10, hour, minute, tzinfo=UTC)
        assert in_quiet_hours(_quiet("22:00", "07:00"), now) is expected

    @pytest.mark.parametrize(
        ("hour", "expected"),
        [(8, False), (9, True), (13, True), (17, True), (18, False)],
    )
    def test_same_day_window(self, hour: int, expected: bool) -> None:
        now = datetime(2025, 3, 10, hour, 0, tzinfo=UTC)
        assert in_quiet_hours(_quiet("09:00", "17:00"), now) is expected

    def test_disabled_window_never_applies(self) -> None:
        assert in_quiet_hours(_quiet("00:00", "23:59", enabled=False), NOON) is False

    def test_missing_window_never_applies(self) -> None:
        assert in_quiet_hours(None, NOON) is False

    def test_uses_users_timezone(self) -> None:
        # 12:00 UTC is 21:00 in Tokyo
        assert in_quiet_hours(_quiet("20:00", "23:00", "Asia/Tokyo"), NOON) is True
        assert in_quiet_hours(_quiet("20:00", "23:00", "UTC"), NOON) is False

    def test_unknown_timezone_falls_back_to_utc(self) -> None:
        assert in_quiet_hours(_quiet("11:00", "13:00", "Mars/Olympus"), NOON) is True


class TestEvaluate:
    def test_defaults_allow_email_for_listed_types(self) -> None:
        prefs = default_preferences()
        assert evaluate(prefs, NotificationType.TASK_ASSIGNED, Channel.EMAIL, NOON).allowed
        decision = evaluate(prefs, NotificationType.TASK_COMMENTED, Channel.EMAIL, NOON)
        assert not decision.allowed
        assert decision.reason == "type_not_allowed"

    def test_defaults_allow_every_in_app_type(self) -> None:
        prefs = default_preferences()
        for notification_type in NotificationType:
            assert evaluate(prefs, notification_type, Channel.IN_APP, NOON).allowed

    def test_disabled_channel(self) -> None:
        prefs = default_preferences()
        prefs["push"]["enabled"] = False
        decision = evaluate(prefs, NotificationType.TASK_ASSIGNED, Channel.PUSH, NOON)
        assert decision.reason == "channel_disabled"

    def test_digest_never_blocks_email(self) -> None:
        prefs = default_preferences()
        prefs["email"]["digest"] = Digest.NEVER.value
        decision = evaluate(prefs, NotificationType.TASK_ASSIGNED, Channel.EMAIL, NOON)
        assert decision.reason == "digest_never"

    def test_in_app_allow_list(self) -> None:
        prefs = default_preferences()
        prefs["in_app"]["types"] = [NotificationType.TASK_ASSIGNED.value]
        assert evaluate(prefs, NotificationType.TASK_ASSIGNED, Channel.IN_APP, NOON).allowed
        assert not evaluate(prefs, NotificationType.LEAVE_APPROVED, Channel.IN_APP, NOON).allowed

    def test_quiet_hours_block_every_channel(self) -> None:
        prefs = default_preferences()
        prefs["quiet_hours"] = _quiet("11:00", "13:00")
        for channel in Channel:
            decision = evaluate(prefs, NotificationType.TASK_ASSIGNED, channel, NOON)
            assert decision.reason == "quiet_hours"


class TestPreferenceService:
    @pytest.mark.asyncio
    async def test_should_notify_without_row_uses_defaults_and_writes_nothing(self, db_session) -> None:
        service = PreferenceService()

        allowed = await service.should_notify(
            db_session, "acme", "user-1", NotificationType.TASK_ASSIGNED, Channel.EMAIL
        )

        assert allowed is True
        count = (await db_session.execute(select(func.count()).select_from(NotificationPreference))).scalar_one()
        assert count == 0

    @pytest.mark.asyncio
    async def test_get_preferences_creates_default_row_once(self, db_session) -> None:
        service = PreferenceService()

        first = await service.get_preferences(db_session, "acme", "user-1")
        second = await service.get_preferences(db_session, "acme", "user-1")

        assert first.id == second.id
        assert first.email == default_preferences()["email"]
        assert first.in_app["types"] == ALL_TYPES

    @pytest.mark.asyncio
    async def test_update_deep_merges_channel_fields(self, db_session) -> None:
        service = PreferenceService()

        row = await service.update_preferences(
            db_session,
            "acme",
            "user-1",
            PreferencesUpdate(email=EmailPreferencesUpdate(enabled=False)),
        )

        assert row.email["enabled"] is False
        assert row.email["types"] == default_preferences()["email"]["types"]
        assert row.push == default_preferences()["push"]

    @pytest.mark.asyncio
    async def test_quiet_hours_set_and_cleared(self, db_session) -> None:
        service = PreferenceService()

        row = await service.update_preferences(
            db_session,
            "acme",
            "user-1",
            PreferencesUpdate(quiet_hours=QuietHoursUpdate(start="22:00", end="07:00", timezone="Europe/Paris")),
        )
        assert row.quiet_hours == {
            "enabled": True,
            "start": "22:00",
            "end": "07:00",
            "timezone": "Europe/Paris",
        }

        row = await service.update_preferences(
            db_session, "acme", "user-1", PreferencesUpdate.model_validate({"quiet_hours": None})
        )
        assert row.quiet_hours is None

    @pytest.mark.asyncio
    async def test_quiet_hours_require_start_and_end(self, db_session) -> None:
        service = PreferenceService()

        with pytest.raises(ValidationException) as exc_info:
            await service.update_preferences(
                db_session,
                "acme",
                "user-1",
                PreferencesUpdate(quiet_hours=QuietHoursUpdate(start="22:00")),
            )
        assert exc_info.value.type == "invalid-quiet-hours"

    @pytest.mark.asyncio
    async def test_invalid_timezone_rejected(self, db_session) -> None:
        service = PreferenceService()

        with pytest.raises(ValidationException) as exc_info:
            await service.update_preferences(
                db_session,
                "acme",
                "user-1",
                PreferencesUpdate(quiet_hours=QuietHoursUpdate(start="22:00", end="07:00", timezone="Nowhere/City")),
            )
        assert exc_info.value.type == "invalid-timezone"

    @pytest.mark.asyncio
    async def test_toggle_type_expands_all_sentinel(self, db_session) -> None:
        service = PreferenceService()

        row = await service.toggle_type(
            db_session,
            "acme",
            "user-1",
            Channel.IN_APP,
            NotificationType.EMPLOYEE_BIRTHDAY,
            enabled=False,
        )

        assert NotificationType.EMPLOYEE_BIRTHDAY.value not in row.in_app["types"]
        assert NotificationType.TASK_ASSIGNED.value in row.in_app["types"]

    @pytest.mark.asyncio
    async def test_filter_recipients_respects_each_users_row(self, db_session) -> None:
        service = PreferenceService()
        await service.update_preferences(
            db_session,
            "acme",
            "user-2",
            PreferencesUpdate(email=EmailPreferencesUpdate(enabled=False)),
        )

        allowed = await service.filter_recipients(
            db_session,
            "acme",
            ["user-1", "user-2", "user-3"],
            NotificationType.TASK_ASSIGNED,
            Channel.EMAIL,
        )

        assert allowed == ["user-1", "user-3"]

    @pytest.mark.asyncio
    async def test_preferences_are_tenant_scoped(self, db_session) -> None:
        service = PreferenceService()
        await service.update_preferences(
            db_session,
            "other",
            "user-1",
            PreferencesUpdate(email=EmailPreferencesUpdate(enabled=False)),
        )

        assert await service.should_notify(
            db_session, "acme", "user-1", NotificationType.TASK_ASSIGNED, Channel.EMAIL
        )

    @pytest.mark.asyncio
    async def test_reset_restores_defaults(self, db_session) -> None:
        service = PreferenceService()
        await service.update_preferences(
            db_session,
            "acme",
            "user-1",
            PreferencesUpdate(email=EmailPreferencesUpdate(enabled=False, digest=Digest.WEEKLY)),
        )

        row = await service.reset_preferences(db_session, "acme", "user-1")

        assert row.email == default_preferences()["email"]

    def test_catalogue_lists_every_type_once(self) -> None:
        response = PreferenceService.get_notification_types()
        listed = [info.type for infos in response.categories.values() for info in infos]
        assert sorted(listed) == sorted(NotificationType)
