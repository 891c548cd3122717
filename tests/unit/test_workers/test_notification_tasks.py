"""Tests for the scheduled notification tasks."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from notification_service.features.notifications.channels import DeliveryResult
from notification_service.features.notifications.in_app import get_in_app_service
from notification_service.features.notifications.queue import DeliveryJob, start_delivery_queue
from notification_service.features.notifications.types import Channel
from notification_service.workers.notifications import tasks


class OkSender:
    channel = Channel.EMAIL

    async def deliver(self, payload):
        return DeliveryResult.ok()


@pytest.mark.asyncio
async def test_queue_tick_skipped_without_queue() -> None:
    assert await tasks.process_delivery_queue() == {"status": "skipped"}


@pytest.mark.asyncio
async def test_queue_tick_processes_ready_jobs(fake_redis) -> None:
    queue = start_delivery_queue(fake_redis, [OkSender()])
    await queue.enqueue(DeliveryJob(channel=Channel.EMAIL, payload={"message": {}}, tenant_id="acme"))

    result = await tasks.process_delivery_queue()

    assert result["status"] == "success"
    assert result["processed"] == 1
    assert result["completed"] == 1


@pytest.mark.asyncio
async def test_cleanup_task_uses_its_own_session(monkeypatch, session_factory) -> None:
    async with session_factory() as session:
        await get_in_app_service().create(
            session,
            "acme",
            "u1",
            "task.assigned",
            "Old",
            "Expired",
            expires_at=datetime.now(UTC) - timedelta(days=1),
        )
        await session.commit()

    monkeypatch.setattr(tasks, "get_async_session", session_factory)

    result = await tasks.cleanup_in_app_notifications()

    assert result["status"] == "success"
    assert result["deleted"] == 1
