"""Tests for the Redis delivery queue."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from notification_service.core.settings import DeliveryQueueSettings
from notification_service.features.notifications.channels import DeliveryResult, FailureKind
from notification_service.features.notifications.queue import (
    DeliveryJob,
    DeliveryQueue,
    _now_ms,
    get_delivery_queue,
    start_delivery_queue,
    stop_delivery_queue,
)
from notification_service.features.notifications.types import Channel


class ScriptedSender:
    """Returns queued results in order, then succeeds."""

    channel = Channel.EMAIL

    def __init__(self, *results: DeliveryResult) -> None:
        self.results = list(results)
        self.payloads: list[dict[str, Any]] = []

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        self.payloads.append(payload)
        if self.results:
            return self.results.pop(0)
        return DeliveryResult.ok()


class RaisingSender:
    channel = Channel.EMAIL

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        msg = "boom"
        raise RuntimeError(msg)


TRANSIENT = DeliveryResult.fail(FailureKind.TRANSIENT, "connection reset")


def _queue(fake_redis, sender=None, **settings: Any) -> DeliveryQueue:
    return DeliveryQueue(
        fake_redis,
        senders={Channel.EMAIL: sender} if sender is not None else None,
        settings=DeliveryQueueSettings(**settings),
        key_prefix="test:",
    )


def _job(job_id: str = "email:1:abc") -> DeliveryJob:
    return DeliveryJob(id=job_id, channel=Channel.EMAIL, payload={"message": {}}, tenant_id="acme")


async def _promote_all(queue: DeliveryQueue) -> int:
    """Promote every scheduled job regardless of its due time."""
    return await queue.promote_due(now_ms=_now_ms() + 10**9)


def test_in_app_jobs_are_rejected() -> None:
    with pytest.raises(ValueError, match="In-app"):
        DeliveryJob(channel=Channel.IN_APP, payload={}, tenant_id="acme")


def test_job_ids_are_generated_per_channel() -> None:
    job = DeliveryJob(channel=Channel.PUSH, payload={}, tenant_id="acme")
    assert job.id.startswith("push:")


@pytest.mark.parametrize(("attempts", "expected"), [(1, 1000), (2, 2000), (3, 4000), (4, 8000)])
def test_backoff_doubles_from_base(fake_redis, attempts: int, expected: int) -> None:
    assert _queue(fake_redis, base_delay_ms=1000).backoff_delay_ms(attempts) == expected


@pytest.mark.asyncio
async def test_enqueue_same_job_twice_is_a_noop(fake_redis) -> None:
    queue = _queue(fake_redis)

    first = await queue.enqueue(_job())
    second = await queue.enqueue(_job())

    assert first == second
    assert await fake_redis.llen(queue.queue_key) == 1


@pytest.mark.asyncio
async def test_enqueue_applies_default_max_attempts(fake_redis) -> None:
    queue = _queue(fake_redis, max_attempts=4)

    await queue.enqueue(_job())

    raw = (await fake_redis.lrange(queue.queue_key, 0, -1))[0]
    assert DeliveryJob.loads(raw).max_attempts == 4


@pytest.mark.asyncio
async def test_successful_job_completes(fake_redis) -> None:
    sender = ScriptedSender()
    queue = _queue(fake_redis, sender)
    job_id = await queue.enqueue(_job())

    summary = await queue.process_once()

    assert summary.processed == 1
    assert summary.completed == 1
    status = await queue.get_status(job_id)
    assert status is not None
    assert status.status == "completed"
    assert status.attempts == 1
    assert await fake_redis.llen(queue.processing_key) == 0
    assert await fake_redis.get(f"{queue._prefix}active:{job_id}") is None


@pytest.mark.asyncio
async def test_transient_failure_is_rescheduled_with_backoff(fake_redis) -> None:
    sender = ScriptedSender(TRANSIENT)
    queue = _queue(fake_redis, sender, base_delay_ms=1000)
    job_id = await queue.enqueue(_job())

    before = _now_ms()
    summary = await queue.process_once()

    assert summary.retried == 1
    scheduled = fake_redis.zsets[queue.scheduled_key]
    assert len(scheduled) == 1
    raw, due_ms = next(iter(scheduled.items()))
    assert before + 1000 <= due_ms <= _now_ms() + 1000
    job = DeliveryJob.loads(raw)
    assert job.attempts == 1
    assert job.last_error == "connection reset"

    status = await queue.get_status(job_id)
    assert status is not None
    assert status.status == "pending"


@pytest.mark.asyncio
async def test_scheduled_job_not_promoted_before_due(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender(TRANSIENT))
    await queue.enqueue(_job())
    await queue.process_once()

    assert await queue.promote_due() == 0
    assert await fake_redis.llen(queue.queue_key) == 0


@pytest.mark.asyncio
async def test_retries_use_exponential_delays_and_fail_at_max_attempts(fake_redis) -> None:
    sender = ScriptedSender(TRANSIENT, TRANSIENT, TRANSIENT)
    queue = _queue(fake_redis, sender, max_attempts=3, base_delay_ms=1000)
    job_id = await queue.enqueue(_job())

    delays = []
    for _ in range(2):
        tick_start = _now_ms()
        await queue.process_once()
        due_ms = next(iter(fake_redis.zsets[queue.scheduled_key].values()))
        delays.append(due_ms - tick_start)
        await _promote_all(queue)

    summary = await queue.process_once()

    assert summary.failed == 1
    assert 1000 <= delays[0] < 2000
    assert 2000 <= delays[1] < 3000
    assert len(sender.payloads) == 3
    status = await queue.get_status(job_id)
    assert status is not None
    assert status.status == "failed"
    assert status.attempts == 3
    assert fake_redis.ttls[f"{queue._prefix}failed:{job_id}"] == DeliveryQueueSettings().failed_ttl_seconds


@pytest.mark.asyncio
async def test_permanent_failure_is_terminal_immediately(fake_redis) -> None:
    sender = ScriptedSender(DeliveryResult.fail(FailureKind.PERMANENT, "mailbox unavailable"))
    queue = _queue(fake_redis, sender, max_attempts=5)
    job_id = await queue.enqueue(_job())

    summary = await queue.process_once()

    assert summary.failed == 1
    assert not fake_redis.zsets[queue.scheduled_key]
    status = await queue.get_status(job_id)
    assert status is not None
    assert status.status == "failed"
    assert status.error == "mailbox unavailable"


@pytest.mark.asyncio
async def test_configuration_failure_is_terminal(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender(DeliveryResult.fail(FailureKind.CONFIGURATION, "bad credentials")))
    await queue.enqueue(_job())

    summary = await queue.process_once()

    assert summary.failed == 1


@pytest.mark.asyncio
async def test_missing_sender_fails_job(fake_redis) -> None:
    queue = _queue(fake_redis)
    await queue.enqueue(_job())

    summary = await queue.process_once()

    assert summary.failed == 1


@pytest.mark.asyncio
async def test_sender_exception_counts_as_transient(fake_redis) -> None:
    queue = _queue(fake_redis, RaisingSender())
    await queue.enqueue(_job())

    summary = await queue.process_once()

    assert summary.retried == 1


class SlowSender(ScriptedSender):
    """Yields to the event loop mid-delivery so ticks interleave."""

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        await asyncio.sleep(0)
        return await super().deliver(payload)


@pytest.mark.asyncio
async def test_concurrent_ticks_send_a_job_exactly_once(fake_redis) -> None:
    sender = SlowSender()
    queue = _queue(fake_redis, sender)
    job_id = await queue.enqueue(_job())
    await queue.enqueue(_job())

    summaries = await asyncio.gather(queue.process_once(), queue.process_once())

    assert len(sender.payloads) == 1
    assert sum(summary.completed for summary in summaries) == 1
    status = await queue.get_status(job_id)
    assert status is not None
    assert status.status == "completed"


@pytest.mark.asyncio
async def test_concurrent_promotions_move_each_job_once(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender(TRANSIENT))
    await queue.enqueue(_job())
    await queue.process_once()

    promoted = await asyncio.gather(_promote_all(queue), _promote_all(queue))

    assert sorted(promoted) == [0, 1]
    assert await fake_redis.llen(queue.queue_key) == 1
    assert await fake_redis.zcard(queue.scheduled_key) == 0


@pytest.mark.asyncio
async def test_promotion_is_a_single_server_side_step(fake_redis, monkeypatch) -> None:
    queue = _queue(fake_redis, ScriptedSender(TRANSIENT))
    await queue.enqueue(_job())
    await queue.process_once()
    for command in ("zrangebyscore", "zrem", "lpush"):
        monkeypatch.setattr(fake_redis, command, AsyncMock(side_effect=ConnectionError), raising=False)

    assert await _promote_all(queue) == 1
    assert await fake_redis.llen(queue.queue_key) == 1


@pytest.mark.asyncio
async def test_job_scheduled_for_later_waits(fake_redis) -> None:
    sender = ScriptedSender()
    queue = _queue(fake_redis, sender)
    await queue.enqueue(_job(), scheduled_for=datetime.now(UTC) + timedelta(minutes=5))

    summary = await queue.process_once()
    assert summary.processed == 0
    assert await fake_redis.zcard(queue.scheduled_key) == 1

    assert await _promote_all(queue) == 1
    summary = await queue.process_once()
    assert summary.completed == 1


@pytest.mark.asyncio
async def test_completed_job_id_can_be_enqueued_again(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender())
    await queue.enqueue(_job())
    await queue.process_once()

    await queue.enqueue(_job())

    assert await fake_redis.llen(queue.queue_key) == 1


@pytest.mark.asyncio
async def test_batch_size_limits_one_tick(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender(), batch_size=2)
    for i in range(3):
        await queue.enqueue(_job(f"email:1:{i}"))

    assert (await queue.process_once()).processed == 2
    assert (await queue.process_once()).processed == 1


@pytest.mark.asyncio
async def test_malformed_entry_is_dropped(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender())
    await fake_redis.lpush(queue.queue_key, "{not json")

    summary = await queue.process_once()

    assert summary.failed == 1
    assert await fake_redis.llen(queue.processing_key) == 0


@pytest.mark.asyncio
async def test_stats_and_clear(fake_redis) -> None:
    queue = _queue(fake_redis, ScriptedSender(DeliveryResult.fail(FailureKind.PERMANENT, "gone")))
    await queue.enqueue(_job("email:1:a"))
    await queue.process_once()
    await queue.enqueue(_job("email:1:b"))

    stats = await queue.get_stats()
    assert stats.queued == 1
    assert stats.failed == 1
    assert stats.processing == 0

    assert await queue.clear() > 0
    assert (await queue.get_stats()).queued == 0


@pytest.mark.asyncio
async def test_unknown_job_status_is_none(fake_redis) -> None:
    assert await _queue(fake_redis).get_status("email:0:missing") is None


def test_global_queue_lifecycle(fake_redis) -> None:
    sender = ScriptedSender()
    queue = start_delivery_queue(fake_redis, [sender])

    assert get_delivery_queue() is queue
    assert queue._senders[Channel.EMAIL] is sender

    stop_delivery_queue()
    assert get_delivery_queue() is None
