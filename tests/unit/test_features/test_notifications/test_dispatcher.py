"""Tests for the notification dispatcher."""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from notification_service.core.exceptions import ServiceUnavailableException, ValidationException
from notification_service.core.settings import DeliveryQueueSettings, NotificationSettings, get_email_settings
from notification_service.features.notifications.channels import DeliveryResult, FailureKind, InAppWriter
from notification_service.features.notifications.content import EmailContentBuilder
from notification_service.features.notifications.dispatcher import NotificationDispatcher
from notification_service.features.notifications.identity import (
    StaticUserDirectory,
    UserDirectoryError,
    UserIdentity,
)
from notification_service.features.notifications.in_app import InAppNotificationService
from notification_service.features.notifications.preferences import PreferenceService
from notification_service.features.notifications.push_subscriptions import PushSubscriptionService
from notification_service.features.notifications.queue import DeliveryJob, DeliveryQueue
from notification_service.features.notifications.schemas import (
    EmailPreferencesUpdate,
    NotificationEvent,
    PreferencesUpdate,
    PushKeys,
    PushSubscriptionCreate,
)
from notification_service.features.notifications.types import Channel, NotificationType
from notification_service.infra.email import TemplateRenderer

TASK_DATA = {"taskId": "42", "taskNumber": "T-42", "taskTitle": "Ship it"}


class FailingDirectory:
    async def get_users(self, tenant_id, user_ids):
        msg = "directory down"
        raise UserDirectoryError(msg)

    async def get_active_user_ids(self, tenant_id):
        msg = "directory down"
        raise UserDirectoryError(msg)


@pytest.fixture
def directory() -> StaticUserDirectory:
    return StaticUserDirectory(
        {
            "acme": [
                UserIdentity(id="u1", email="u1@example.com", display_name="Una"),
                UserIdentity(id="u2", email=None, display_name="No Mail"),
                UserIdentity(id="u3", email="u3@example.com", is_active=False),
            ]
        }
    )


@pytest.fixture
def push_sender() -> SimpleNamespace:
    return SimpleNamespace(send=AsyncMock(return_value=DeliveryResult.ok()))


@pytest.fixture
def queue(fake_redis) -> DeliveryQueue:
    return DeliveryQueue(fake_redis, settings=DeliveryQueueSettings(), key_prefix="test:")


def _dispatcher(directory, push_sender, queue=None, settings=None, in_app=None) -> NotificationDispatcher:
    return NotificationDispatcher(
        preferences=PreferenceService(),
        in_app_writer=InAppWriter(in_app or InAppNotificationService()),
        email_builder=EmailContentBuilder(TemplateRenderer(get_email_settings().template_dir), "https://oms.test"),
        directory=directory,
        push_sender=push_sender,
        subscriptions=PushSubscriptionService(),
        queue=queue,
        settings=settings or NotificationSettings(push_queue_fallback=False),
    )


async def _subscribe(session, user_id: str, endpoint: str = "https://push.example.com/1") -> None:
    await PushSubscriptionService().register(
        session,
        "acme",
        user_id,
        PushSubscriptionCreate(endpoint=endpoint, keys=PushKeys(p256dh="p", auth="a")),
    )


def _event(*user_ids: str, channels=None, data=None) -> NotificationEvent:
    return NotificationEvent(
        type=NotificationType.TASK_ASSIGNED,
        tenant_id="acme",
        recipient_user_ids=list(user_ids),
        data=data if data is not None else TASK_DATA,
        channels=channels,
    )


@pytest.mark.asyncio
async def test_dispatch_fans_out_to_every_channel(db_session, directory, push_sender, queue, fake_redis) -> None:
    await _subscribe(db_session, "u1")
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1", "u2"))

    # u2 has no email address
    assert result.email.sent == 1
    assert result.email.failed == 1
    # only u1 has a subscription
    assert result.push.sent == 1
    assert result.push.failed == 0
    assert result.in_app.created == 2

    raw = (await fake_redis.lrange(queue.queue_key, 0, -1))[0]
    job = DeliveryJob.loads(raw)
    assert job.channel is Channel.EMAIL
    assert job.payload["message"]["to"] == ["u1@example.com"]
    assert job.payload["message"]["subject"] == "Task Assigned: T-42"
    assert job.payload["message"]["headers"] == {"X-Notification-Type": "task.assigned"}


@pytest.mark.asyncio
async def test_duplicate_recipients_are_notified_once(db_session, directory, push_sender, queue) -> None:
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1", "u1", "u1"))

    assert result.in_app.created == 1
    assert result.email.sent == 1


class RejectingInAppService(InAppNotificationService):
    """Stores a row that violates NOT NULL for one user."""

    def __init__(self, rejected_user_id: str) -> None:
        super().__init__()
        self.rejected_user_id = rejected_user_id

    async def create(self, session, tenant_id, user_id, type, title, message, **kwargs):  # noqa: A002
        if user_id == self.rejected_user_id:
            title = None
        return await super().create(session, tenant_id, user_id, type, title, message, **kwargs)


@pytest.mark.asyncio
async def test_failed_in_app_insert_keeps_other_recipients(db_session, directory, push_sender) -> None:
    service = RejectingInAppService("u2")
    dispatcher = _dispatcher(directory, push_sender, in_app=service)

    result = await dispatcher.dispatch(db_session, _event("u1", "u2", "u3", channels=[Channel.IN_APP]))
    await db_session.commit()

    assert result.in_app.created == 2
    stored = {
        user_id: await service._repository.count_for_user(db_session, "acme", user_id)
        for user_id in ("u1", "u2", "u3")
    }
    assert stored == {"u1": 1, "u2": 0, "u3": 1}


@pytest.mark.asyncio
async def test_failing_email_channel_does_not_block_others(db_session, push_sender, queue) -> None:
    await _subscribe(db_session, "u1")
    directory = SimpleNamespace(get_users=AsyncMock(side_effect=RuntimeError("unexpected")))
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1"))

    assert result.email.failed == 1
    assert result.push.sent == 1
    assert result.in_app.created == 1


@pytest.mark.asyncio
async def test_push_exception_counts_as_failure(db_session, directory, queue) -> None:
    await _subscribe(db_session, "u1")
    push_sender = SimpleNamespace(send=AsyncMock(side_effect=RuntimeError("thread died")))
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1"))

    assert result.push.failed == 1
    assert result.in_app.created == 1


@pytest.mark.asyncio
async def test_users_without_subscriptions_count_neither_way(db_session, directory, push_sender, queue) -> None:
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1"))

    assert result.push.sent == 0
    assert result.push.failed == 0
    push_sender.send.assert_not_called()


@pytest.mark.asyncio
async def test_email_without_queue_fails_allowed_recipients(db_session, directory, push_sender) -> None:
    dispatcher = _dispatcher(directory, push_sender, queue=None)

    result = await dispatcher.dispatch(db_session, _event("u1", "u2"))

    assert result.email.sent == 0
    assert result.email.failed == 2
    assert result.in_app.created == 2


@pytest.mark.asyncio
async def test_directory_error_fails_email_only(db_session, push_sender, queue) -> None:
    dispatcher = _dispatcher(FailingDirectory(), push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1"))

    assert result.email.failed == 1
    assert result.in_app.created == 1


@pytest.mark.asyncio
async def test_preferences_suppress_email(db_session, directory, push_sender, queue, fake_redis) -> None:
    await PreferenceService().update_preferences(
        db_session, "acme", "u1", PreferencesUpdate(email=EmailPreferencesUpdate(enabled=False))
    )
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1"))

    assert result.email.sent == 0
    assert result.email.failed == 0
    assert await fake_redis.llen(queue.queue_key) == 0


@pytest.mark.asyncio
async def test_channel_restriction(db_session, directory, push_sender, queue) -> None:
    await _subscribe(db_session, "u1")
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.dispatch(db_session, _event("u1", channels=[Channel.IN_APP]))

    assert result.in_app.created == 1
    assert result.email.sent == 0
    assert result.push.sent == 0
    push_sender.send.assert_not_called()


@pytest.mark.asyncio
async def test_transient_push_failure_falls_back_to_queue(db_session, directory, queue, fake_redis) -> None:
    await _subscribe(db_session, "u1")
    push_sender = SimpleNamespace(
        send=AsyncMock(return_value=DeliveryResult.fail(FailureKind.TRANSIENT, "503 from push service"))
    )
    dispatcher = _dispatcher(
        directory,
        push_sender,
        queue,
        settings=NotificationSettings(push_queue_fallback=True),
    )

    result = await dispatcher.dispatch(db_session, _event("u1", channels=[Channel.PUSH]))

    assert result.push.failed == 1
    scheduled = list(fake_redis.zsets[queue.scheduled_key])
    assert len(scheduled) == 1
    job = DeliveryJob.loads(scheduled[0])
    assert job.channel is Channel.PUSH
    assert job.attempts == 1
    assert job.payload["notification"]["title"] == "Task Assigned"


@pytest.mark.asyncio
async def test_permanent_push_failure_is_not_requeued(db_session, directory, queue, fake_redis) -> None:
    await _subscribe(db_session, "u1")
    push_sender = SimpleNamespace(send=AsyncMock(return_value=DeliveryResult.fail(FailureKind.PERMANENT, "gone")))
    dispatcher = _dispatcher(
        directory,
        push_sender,
        queue,
        settings=NotificationSettings(push_queue_fallback=True),
    )

    await dispatcher.dispatch(db_session, _event("u1", channels=[Channel.PUSH]))

    assert not fake_redis.zsets[queue.scheduled_key]


@pytest.mark.asyncio
async def test_notify_rejects_unknown_type(db_session, directory, push_sender) -> None:
    dispatcher = _dispatcher(directory, push_sender)

    with pytest.raises(ValidationException) as exc_info:
        await dispatcher.notify(db_session, "acme", "task.archived", ["u1"])
    assert exc_info.value.type == "unknown-notification-type"


@pytest.mark.asyncio
async def test_dispatch_requires_recipients(db_session, directory, push_sender) -> None:
    dispatcher = _dispatcher(directory, push_sender)

    with pytest.raises(ValidationException) as exc_info:
        await dispatcher.dispatch(db_session, _event())
    assert exc_info.value.type == "no-recipients"


@pytest.mark.asyncio
async def test_announcement_reaches_active_users(db_session, directory, push_sender, queue) -> None:
    dispatcher = _dispatcher(directory, push_sender, queue)

    result = await dispatcher.send_announcement(
        db_session, "acme", "Office closed", "Friday off", url="/news/1", channels=[Channel.IN_APP]
    )

    # u3 is inactive
    assert result.in_app.created == 2


@pytest.mark.asyncio
async def test_announcement_with_directory_down(db_session, push_sender) -> None:
    dispatcher = _dispatcher(FailingDirectory(), push_sender)

    with pytest.raises(ServiceUnavailableException) as exc_info:
        await dispatcher.send_announcement(db_session, "acme", "Title", "Message")
    assert exc_info.value.type == "directory-unavailable"


@pytest.mark.asyncio
async def test_maintenance_notice_per_tenant(db_session, directory, push_sender, queue) -> None:
    dispatcher = _dispatcher(directory, push_sender, queue)

    results = await dispatcher.send_maintenance_notice(
        db_session,
        ["acme", "empty"],
        "Database upgrade",
        datetime(2025, 6, 1, 22, 0, tzinfo=UTC),
        30,
    )

    assert results["acme"].in_app.created == 2
    assert results["empty"].in_app.created == 0
