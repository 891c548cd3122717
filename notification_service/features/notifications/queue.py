"""Redis-backed delivery queue with retries and exponential backoff.

Layout under ``{redis prefix}{queue prefix}``:

    queue           list    jobs ready to run (LPUSH in, taken from the right)
    processing      list    jobs held by a worker
    scheduled       zset    jobs due later, scored by due time in epoch ms
    active:{id}     string  marker while a job is live, set with NX
    completed:{id}  string  completion record (TTL)
    failed:{id}     string  terminal failure record (TTL)

A worker takes a job with an atomic LMOVE from ``queue`` to ``processing``,
so no two workers ever hold the same job. A failed attempt is re-inserted
into ``scheduled`` with its due time; the worker never sleeps.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import json
import logging
import secrets
import time
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field, field_validator

from notification_service.core.settings import get_queue_settings, get_redis_settings
from notification_service.features.notifications.channels.base import DeliveryResult, FailureKind
from notification_service.features.notifications.metrics import (
    delivery_jobs_total,
    delivery_queue_depth,
    delivery_retries_total,
)
from notification_service.features.notifications.types import Channel
from notification_service.infra.logging import clear_log_context, get_log_context, set_log_context

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from redis.asyncio import Redis

    from notification_service.core.settings import DeliveryQueueSettings
    from notification_service.features.notifications.channels.base import ChannelSender

logger = logging.getLogger(__name__)

JobState = Literal["pending", "processing", "completed", "failed"]

# Moves due members from the scheduled set (KEYS[1]) to the ready list (KEYS[2]).
PROMOTE_DUE_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, member in ipairs(due) do
    redis.call('ZREM', KEYS[1], member)
    redis.call('LPUSH', KEYS[2], member)
end
return #due
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_job_id(channel: Channel) -> str:
    return f"{channel.value}:{_now_ms()}:{secrets.token_hex(4)}"


class DeliveryJob(BaseModel):
    """One channel delivery, owned by the queue until it completes or fails."""

    id: str = ""
    channel: Channel
    payload: dict[str, Any]
    tenant_id: str
    attempts: int = Field(default=0, ge=0)
    max_attempts: int | None = Field(default=None, ge=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    scheduled_for: datetime | None = None
    last_error: str | None = None

    @field_validator("channel")
    @classmethod
    def validate_channel(cls, v: Channel) -> Channel:
        if v is Channel.IN_APP:
            msg = "In-app notifications are written directly, not queued"
            raise ValueError(msg)
        return v

    def model_post_init(self, context: Any, /) -> None:
        if not self.id:
            self.id = new_job_id(self.channel)

    def dumps(self) -> str:
        return self.model_dump_json()

    @classmethod
    def loads(cls, raw: str | bytes) -> DeliveryJob:
        return cls.model_validate_json(raw)


class JobStatus(BaseModel):
    id: str
    status: JobState
    attempts: int
    error: str | None = None


class QueueStats(BaseModel):
    queued: int
    processing: int
    scheduled: int
    failed: int


class ProcessingSummary(BaseModel):
    promoted: int = 0
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


class DeliveryQueue:
    """Durable retry engine for email and push deliveries.

    Example:
        queue = DeliveryQueue(redis, senders={Channel.EMAIL: EmailSender()})
        job_id = await queue.enqueue(DeliveryJob(channel=Channel.EMAIL, payload=..., tenant_id="t1"))
        summary = await queue.process_once()
        status = await queue.get_status(job_id)
    """

    def __init__(
        self,
        redis: Redis,
        senders: Mapping[Channel, ChannelSender] | None = None,
        settings: DeliveryQueueSettings | None = None,
        key_prefix: str | None = None,
    ) -> None:
        self._redis = redis
        self._settings = settings or get_queue_settings()
        self._senders: dict[Channel, ChannelSender] = dict(senders or {})
        prefix = key_prefix if key_prefix is not None else get_redis_settings().key_prefix
        self._prefix = f"{prefix}{self._settings.key_prefix}"

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @property
    def queue_key(self) -> str:
        return f"{self._prefix}queue"

    @property
    def processing_key(self) -> str:
        return f"{self._prefix}processing"

    @property
    def scheduled_key(self) -> str:
        return f"{self._prefix}scheduled"

    def _active_key(self, job_id: str) -> str:
        return f"{self._prefix}active:{job_id}"

    def _completed_key(self, job_id: str) -> str:
        return f"{self._prefix}completed:{job_id}"

    def _failed_key(self, job_id: str) -> str:
        return f"{self._prefix}failed:{job_id}"

    def register_sender(self, sender: ChannelSender) -> None:
        self._senders[sender.channel] = sender

    def backoff_delay_ms(self, attempts: int) -> int:
        """Delay before the next try after ``attempts`` failed attempts."""
        return self._settings.base_delay_ms * 2 ** max(attempts - 1, 0)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        job: DeliveryJob,
        *,
        max_attempts: int | None = None,
        scheduled_for: datetime | None = None,
    ) -> str:
        """Submit a job; re-submitting a live job id is a no-op.

        Returns:
            The job id
        """
        updates: dict[str, Any] = {
            "max_attempts": max_attempts or job.max_attempts or self._settings.max_attempts,
        }
        if scheduled_for is not None:
            updates["scheduled_for"] = scheduled_for
        job = job.model_copy(update=updates)

        fresh = await self._redis.set(self._active_key(job.id), job.channel.value, nx=True)
        if not fresh:
            logger.debug("Job already live, enqueue ignored", extra={"job_id": job.id})
            return job.id

        due = job.scheduled_for
        if due is not None and due.timestamp() * 1000 > _now_ms():
            await self._redis.zadd(self.scheduled_key, {job.dumps(): int(due.timestamp() * 1000)})
        else:
            await self._redis.lpush(self.queue_key, job.dumps())

        delivery_jobs_total.labels(channel=job.channel.value, outcome="enqueued").inc()
        logger.debug(
            "Delivery job enqueued",
            extra={"job_id": job.id, "channel": job.channel.value, "tenant_id": job.tenant_id},
        )
        return job.id

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    async def promote_due(self, now_ms: int | None = None) -> int:
        """Move due scheduled jobs onto the ready queue.

        Runs as one Lua script, so a job is never in both places or in
        neither, and concurrent promoters cannot duplicate it.
        """
        now_ms = now_ms if now_ms is not None else _now_ms()
        promoted = await self._redis.eval(PROMOTE_DUE_SCRIPT, 2, self.scheduled_key, self.queue_key, now_ms)
        return int(promoted)

    async def process_once(self, max_jobs: int | None = None) -> ProcessingSummary:
        """Run one processing tick: promote due jobs, then work up to ``max_jobs``."""
        limit = max_jobs if max_jobs is not None else self._settings.batch_size
        summary = ProcessingSummary(promoted=await self.promote_due())

        for _ in range(limit):
            raw = await self._redis.lmove(self.queue_key, self.processing_key, "RIGHT", "LEFT")
            if raw is None:
                break
            summary.processed += 1
            outcome = await self._process(raw)
            setattr(summary, outcome, getattr(summary, outcome) + 1)

        if summary.processed or summary.promoted:
            logger.info("Delivery queue tick finished", extra=summary.model_dump())
        await self._refresh_depth()
        return summary

    async def _process(self, raw: str) -> Literal["completed", "retried", "failed"]:
        try:
            job = DeliveryJob.loads(raw)
        except ValueError:
            logger.exception("Dropping malformed delivery job", extra={"raw": raw[:200]})
            await self._redis.lrem(self.processing_key, 1, raw)
            return "failed"

        previous = get_log_context()
        set_log_context(job_id=job.id, tenant_id=job.tenant_id)
        try:
            return await self._handle(job, raw)
        finally:
            clear_log_context()
            set_log_context(**previous)

    async def _handle(self, job: DeliveryJob, raw: str) -> Literal["completed", "retried", "failed"]:
        result = await self._run(job)
        if result.success:
            await self._complete(job, raw)
            return "completed"

        job.attempts += 1
        job.last_error = result.error_message
        terminal = result.failure in (FailureKind.PERMANENT, FailureKind.CONFIGURATION)
        if terminal or job.attempts >= (job.max_attempts or self._settings.max_attempts):
            await self._fail(job, raw)
            return "failed"

        await self._retry(job, raw)
        return "retried"

    async def _run(self, job: DeliveryJob) -> DeliveryResult:
        sender = self._senders.get(job.channel)
        if sender is None:
            return DeliveryResult.fail(
                FailureKind.CONFIGURATION,
                f"No sender registered for channel {job.channel.value}",
            )
        try:
            return await asyncio.wait_for(sender.deliver(job.payload), timeout=self._settings.job_timeout_seconds)
        except TimeoutError:
            return DeliveryResult.fail(
                FailureKind.TRANSIENT,
                f"Delivery timed out after {self._settings.job_timeout_seconds}s",
            )
        except Exception as e:
            logger.exception(
                "Channel sender raised",
                extra={"job_id": job.id, "channel": job.channel.value},
            )
            return DeliveryResult.fail(FailureKind.TRANSIENT, f"{type(e).__name__}: {e}")

    async def _complete(self, job: DeliveryJob, raw: str) -> None:
        record = json.dumps({"id": job.id, "attempts": job.attempts + 1, "completed_at": _now_ms()})
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, raw)
            pipe.set(self._completed_key(job.id), record, ex=self._settings.completed_ttl_seconds)
            pipe.delete(self._active_key(job.id))
            await pipe.execute()

        delivery_jobs_total.labels(channel=job.channel.value, outcome="completed").inc()
        logger.debug("Delivery job completed", extra={"job_id": job.id})

    async def _retry(self, job: DeliveryJob, raw: str) -> None:
        delay_ms = self.backoff_delay_ms(job.attempts)
        due_ms = _now_ms() + delay_ms
        job.scheduled_for = datetime.fromtimestamp(due_ms / 1000, UTC)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, raw)
            pipe.zadd(self.scheduled_key, {job.dumps(): due_ms})
            await pipe.execute()

        delivery_jobs_total.labels(channel=job.channel.value, outcome="retried").inc()
        delivery_retries_total.labels(channel=job.channel.value, attempt=str(job.attempts)).inc()
        logger.info(
            "Delivery job scheduled for retry",
            extra={
                "job_id": job.id,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
                "delay_ms": delay_ms,
                "error": job.last_error,
            },
        )

    async def _fail(self, job: DeliveryJob, raw: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, raw)
            pipe.set(self._failed_key(job.id), job.dumps(), ex=self._settings.failed_ttl_seconds)
            pipe.delete(self._active_key(job.id))
            await pipe.execute()

        delivery_jobs_total.labels(channel=job.channel.value, outcome="failed").inc()
        logger.warning(
            "Delivery job failed permanently",
            extra={
                "job_id": job.id,
                "channel": job.channel.value,
                "tenant_id": job.tenant_id,
                "attempts": job.attempts,
                "error": job.last_error,
            },
        )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def get_status(self, job_id: str) -> JobStatus | None:
        """Where a job is now; None when unknown or its record has expired."""
        completed = await self._redis.get(self._completed_key(job_id))
        if completed is not None:
            record = json.loads(completed)
            return JobStatus(id=job_id, status="completed", attempts=record.get("attempts", 1))

        failed = await self._redis.get(self._failed_key(job_id))
        if failed is not None:
            job = DeliveryJob.loads(failed)
            return JobStatus(id=job_id, status="failed", attempts=job.attempts, error=job.last_error)

        for raw in await self._redis.lrange(self.queue_key, 0, -1):
            if (job := self._match(raw, job_id)) is not None:
                return JobStatus(id=job_id, status="pending", attempts=job.attempts, error=job.last_error)

        for raw in await self._redis.zrange(self.scheduled_key, 0, -1):
            if (job := self._match(raw, job_id)) is not None:
                return JobStatus(id=job_id, status="pending", attempts=job.attempts, error=job.last_error)

        for raw in await self._redis.lrange(self.processing_key, 0, -1):
            if (job := self._match(raw, job_id)) is not None:
                return JobStatus(id=job_id, status="processing", attempts=job.attempts, error=job.last_error)

        return None

    @staticmethod
    def _match(raw: str, job_id: str) -> DeliveryJob | None:
        # Cheap substring check before parsing every entry.
        if job_id not in raw:
            return None
        job = DeliveryJob.loads(raw)
        return job if job.id == job_id else None

    async def get_stats(self) -> QueueStats:
        failed = 0
        async for _ in self._redis.scan_iter(match=f"{self._prefix}failed:*", count=500):
            failed += 1
        return QueueStats(
            queued=await self._redis.llen(self.queue_key),
            processing=await self._redis.llen(self.processing_key),
            scheduled=await self._redis.zcard(self.scheduled_key),
            failed=failed,
        )

    async def _refresh_depth(self) -> None:
        stats = await self.get_stats()
        for state, value in stats.model_dump().items():
            delivery_queue_depth.labels(state=state).set(value)

    async def clear(self) -> int:
        """Delete every queue key. Intended for administration and tests."""
        keys = [key async for key in self._redis.scan_iter(match=f"{self._prefix}*", count=500)]
        if not keys:
            return 0
        deleted = await self._redis.delete(*keys)
        logger.warning("Delivery queue cleared", extra={"keys_deleted": deleted})
        return deleted


_queue: DeliveryQueue | None = None


def get_delivery_queue() -> DeliveryQueue | None:
    """Get the global delivery queue, or None when Redis is not available."""
    return _queue


def start_delivery_queue(redis: Redis, senders: Iterable[ChannelSender]) -> DeliveryQueue:
    """Create the global delivery queue on a connected Redis client."""
    global _queue

    _queue = DeliveryQueue(redis)
    for sender in senders:
        _queue.register_sender(sender)
    logger.info(
        "Delivery queue started",
        extra={"queue_key": _queue.queue_key, "channels": sorted(c.value for c in _queue._senders)},
    )
    return _queue


def stop_delivery_queue() -> None:
    global _queue
    _queue = None
