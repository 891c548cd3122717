"""Tests for the email, push and in-app channel senders."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

from pydantic import SecretStr
import pytest

from notification_service.core.settings import EmailSettings, PushSettings
from notification_service.features.notifications.channels import (
    EmailSender,
    FailureKind,
    InAppWriter,
    PushSender,
    SubscriptionInfo,
)
from notification_service.features.notifications.channels import push as push_module
from notification_service.features.notifications.channels.email import classify
from notification_service.features.notifications.content import PushPayload
from notification_service.features.notifications.in_app import InAppNotificationService
from notification_service.features.notifications.types import NotificationType
from notification_service.infra.email import EmailDeliveryResult, EmailMessage
from notification_service.infra.realtime import ConnectionManager

# ============================================================================
# Email
# ============================================================================


def _email_failure(error_code: str, smtp_code: int | None = None) -> EmailDeliveryResult:
    return EmailDeliveryResult.failure_result("smtp", "failed", error_code, smtp_code=smtp_code)


@pytest.mark.parametrize(
    ("error_code", "smtp_code", "expected"),
    [
        ("AUTH_FAILED", 535, FailureKind.CONFIGURATION),
        ("RECIPIENTS_REFUSED", 550, FailureKind.PERMANENT),
        ("SMTP_ERROR", 554, FailureKind.PERMANENT),
        ("SMTP_ERROR", 451, FailureKind.TRANSIENT),
        ("SMTP_ERROR", None, FailureKind.TRANSIENT),
        ("CONNECTION_ERROR", None, FailureKind.TRANSIENT),
        ("TIMEOUT", None, FailureKind.TRANSIENT),
    ],
)
def test_email_failure_classification(error_code: str, smtp_code: int | None, expected: FailureKind) -> None:
    assert classify(_email_failure(error_code, smtp_code)) is expected


def _message() -> EmailMessage:
    return EmailMessage(to=["jane@example.com"], subject="Hello", body_text="Hi")


@pytest.mark.asyncio
async def test_email_sender_success() -> None:
    provider = SimpleNamespace(
        send=AsyncMock(return_value=EmailDeliveryResult.success_result("m-1", "console", ["jane@example.com"]))
    )
    sender = EmailSender(settings=EmailSettings(enabled=True), provider=provider)

    result = await sender.send(_message())

    assert result.success
    assert result.metadata["message_id"] == "m-1"


@pytest.mark.asyncio
async def test_email_sender_maps_hard_bounce_to_permanent() -> None:
    provider = SimpleNamespace(send=AsyncMock(return_value=_email_failure("RECIPIENTS_REFUSED", 550)))
    sender = EmailSender(settings=EmailSettings(enabled=True), provider=provider)

    result = await sender.send(_message())

    assert not result.success
    assert result.failure is FailureKind.PERMANENT
    assert result.status_code == 550
    assert not result.retryable


@pytest.mark.asyncio
async def test_email_sender_disabled_is_configuration_failure() -> None:
    provider = SimpleNamespace(send=AsyncMock())
    sender = EmailSender(settings=EmailSettings(enabled=False), provider=provider)

    result = await sender.send(_message())

    assert result.failure is FailureKind.CONFIGURATION
    provider.send.assert_not_called()


@pytest.mark.asyncio
async def test_email_sender_delivers_queued_payload() -> None:
    provider = SimpleNamespace(send=AsyncMock(return_value=EmailDeliveryResult.success_result("m-2", "console")))
    sender = EmailSender(settings=EmailSettings(enabled=True), provider=provider)

    result = await sender.deliver({"message": _message().model_dump(mode="json"), "user_id": "u1"})

    assert result.success
    sent: EmailMessage = provider.send.await_args.args[0]
    assert sent.to == ["jane@example.com"]


# ============================================================================
# Push
# ============================================================================


class FakeWebPushError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.response = SimpleNamespace(status_code=status_code) if status_code is not None else None


@pytest.fixture
def push_settings() -> PushSettings:
    return PushSettings(
        vapid_public_key="BPublicKey",
        vapid_private_key=SecretStr("private-key"),
        send_timeout_seconds=2.0,
    )


@pytest.fixture
def subscription() -> SubscriptionInfo:
    return SubscriptionInfo(
        id="0193f1c2-0000-7000-8000-000000000001",
        endpoint="https://push.example.com/abc",
        p256dh="p256dh-key",
        auth="auth-key",
    )


def _patch_webpush(monkeypatch: pytest.MonkeyPatch, error: Exception | None = None) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_webpush(**kwargs: Any) -> None:
        calls.append(kwargs)
        if error is not None:
            raise error

    monkeypatch.setattr(push_module, "webpush", fake_webpush)
    monkeypatch.setattr(push_module, "WebPushException", FakeWebPushError)
    return calls


@pytest.mark.asyncio
async def test_push_sender_success(monkeypatch, push_settings, subscription) -> None:
    calls = _patch_webpush(monkeypatch)
    sender = PushSender(settings=push_settings)

    result = await sender.send(subscription, PushPayload(title="Hi", body="There"))

    assert result.success
    assert calls[0]["subscription_info"] == {
        "endpoint": "https://push.example.com/abc",
        "keys": {"p256dh": "p256dh-key", "auth": "auth-key"},
    }
    assert calls[0]["vapid_private_key"] == "private-key"
    assert calls[0]["vapid_claims"] == {"sub": push_settings.vapid_subject}


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 410])
async def test_push_gone_deactivates_subscription(monkeypatch, push_settings, subscription, status: int) -> None:
    _patch_webpush(monkeypatch, FakeWebPushError("gone", status))
    store = SimpleNamespace(deactivate=AsyncMock())
    sender = PushSender(settings=push_settings, store=store)

    result = await sender.send(subscription, PushPayload(title="Hi", body="There"))

    assert result.failure is FailureKind.PERMANENT
    assert result.status_code == status
    store.deactivate.assert_awaited_once_with(subscription.id)


@pytest.mark.asyncio
async def test_push_server_error_is_transient(monkeypatch, push_settings, subscription) -> None:
    _patch_webpush(monkeypatch, FakeWebPushError("unavailable", 503))
    store = SimpleNamespace(deactivate=AsyncMock())
    sender = PushSender(settings=push_settings, store=store)

    result = await sender.send(subscription, PushPayload(title="Hi", body="There"))

    assert result.failure is FailureKind.TRANSIENT
    assert result.retryable
    store.deactivate.assert_not_called()


@pytest.mark.asyncio
async def test_push_connection_error_is_transient(monkeypatch, push_settings, subscription) -> None:
    _patch_webpush(monkeypatch, ConnectionError("refused"))
    sender = PushSender(settings=push_settings)

    result = await sender.send(subscription, PushPayload(title="Hi", body="There"))

    assert result.failure is FailureKind.TRANSIENT


@pytest.mark.asyncio
async def test_push_without_vapid_keys_is_configuration_failure(subscription) -> None:
    sender = PushSender(settings=PushSettings(vapid_public_key=None, vapid_private_key=None))

    result = await sender.send(subscription, PushPayload(title="Hi", body="There"))

    assert result.failure is FailureKind.CONFIGURATION


@pytest.mark.asyncio
async def test_push_deliver_rebuilds_queued_payload(monkeypatch, push_settings, subscription) -> None:
    calls = _patch_webpush(monkeypatch)
    sender = PushSender(settings=push_settings)
    payload = PushPayload(title="Task Assigned", body="Do it", tag="task-1", require_interaction=True)

    result = await sender.deliver({"subscription": subscription.to_dict(), "notification": payload.to_dict()})

    assert result.success
    assert '"requireInteraction": true' in calls[0]["data"]


def test_push_payload_omits_unset_options() -> None:
    payload = PushPayload(title="T", body="B", data={"url": None, "taskId": "1"}).to_dict()

    assert payload["data"] == {"taskId": "1"}
    assert "tag" not in payload
    assert "requireInteraction" not in payload


# ============================================================================
# In-app
# ============================================================================


class RecordingSocket:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def accept(self) -> None:
        return None

    async def send_json(self, message: dict[str, Any]) -> None:
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        return None


@pytest.mark.asyncio
async def test_in_app_writer_stores_and_publishes(db_session) -> None:
    manager = ConnectionManager()
    await manager.start()
    socket = RecordingSocket()
    await manager.connect(socket, "acme", "user-1")
    writer = InAppWriter(InAppNotificationService(), connection_manager=manager)

    notification = await writer.write(
        db_session,
        "acme",
        "user-1",
        NotificationType.TASK_ASSIGNED,
        {"taskNumber": "T-42", "taskTitle": "Ship it", "actionUrl": "/tasks/42"},
    )

    assert notification.title == "New Task Assigned"
    assert notification.action_url == "/tasks/42"
    assert socket.sent[-1]["event"] == "notification"
    assert socket.sent[-1]["id"] == str(notification.id)
    await manager.stop()


@pytest.mark.asyncio
async def test_in_app_writer_keeps_record_when_publish_fails(db_session) -> None:
    manager = SimpleNamespace(send_to_user=AsyncMock(side_effect=RuntimeError("socket closed")))
    writer = InAppWriter(InAppNotificationService(), connection_manager=manager)

    notification = await writer.write(db_session, "acme", "user-1", NotificationType.ATTENDANCE_REMINDER, {})

    assert notification.id is not None
    assert notification.title == "Check-in Reminder"
