"""Tests for business event to notification mapping."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from notification_service.features.notifications.event_handlers import EVENT_ROUTES, NotificationEventHandler
from notification_service.features.notifications.schemas import NotificationResult
from notification_service.features.notifications.types import Channel, NotificationType


@pytest.fixture
def dispatcher() -> MagicMock:
    mock = MagicMock()
    mock.notify = AsyncMock(return_value=NotificationResult())
    return mock


@pytest.fixture
def handler(dispatcher: MagicMock) -> NotificationEventHandler:
    return NotificationEventHandler(dispatcher)


def test_every_route_targets_a_known_type() -> None:
    assert set(EVENT_ROUTES) == {
        "task.created",
        "task.assigned",
        "task.mentioned",
        "task.commented",
        "leave.requested",
        "leave.approved",
        "leave.rejected",
        "project.member_added",
        "employee.created",
    }
    assert all(isinstance(route.notification_type, NotificationType) for route in EVENT_ROUTES.values())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("event_name", "payload", "expected_type", "expected_recipients"),
    [
        ("task.created", {"assigneeIds": ["u1", "u2"]}, NotificationType.TASK_ASSIGNED, ["u1", "u2"]),
        ("task.mentioned", {"mentionedEmployeeIds": ["u3"]}, NotificationType.TASK_MENTIONED, ["u3"]),
        ("leave.requested", {"managerIds": ["m1"]}, NotificationType.LEAVE_REQUESTED, ["m1"]),
        ("leave.approved", {"employeeUserId": "u4"}, NotificationType.LEAVE_APPROVED, ["u4"]),
        ("project.member_added", {"employeeUserId": 7}, NotificationType.PROJECT_ADDED, ["7"]),
    ],
)
async def test_event_dispatches_mapped_type(
    handler, dispatcher, event_name, payload, expected_type, expected_recipients
) -> None:
    session = MagicMock()

    result = await handler.handle(session, "acme", event_name, payload)

    assert result is not None
    dispatcher.notify.assert_awaited_once_with(session, "acme", expected_type, expected_recipients, payload, None)


@pytest.mark.asyncio
async def test_comment_skips_the_commenter(handler, dispatcher) -> None:
    payload = {"reporterId": "u1", "assigneeIds": ["u1", "u2", "u3"], "commentedByUserId": "u2"}

    await handler.handle(MagicMock(), "acme", "task.commented", payload)

    recipients = dispatcher.notify.await_args.args[3]
    assert recipients == ["u1", "u3"]


@pytest.mark.asyncio
async def test_employee_created_uses_email_and_in_app_only(handler, dispatcher) -> None:
    await handler.handle(MagicMock(), "acme", "employee.created", {"userId": "u9"})

    channels = dispatcher.notify.await_args.args[5]
    assert channels == (Channel.EMAIL, Channel.IN_APP)


@pytest.mark.asyncio
async def test_unknown_event_is_ignored(handler, dispatcher) -> None:
    assert not handler.handles("invoice.paid")
    assert await handler.handle(MagicMock(), "acme", "invoice.paid", {"userId": "u1"}) is None
    dispatcher.notify.assert_not_called()


@pytest.mark.asyncio
async def test_event_without_recipients_is_skipped(handler, dispatcher) -> None:
    payload = {"reporterId": "u1", "commentedByUserId": "u1"}

    assert await handler.handle(MagicMock(), "acme", "task.commented", payload) is None
    dispatcher.notify.assert_not_called()
