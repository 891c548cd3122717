"""Notification task definitions.

This module provides:
- Delivery queue processing (promote due retries, run ready jobs)
- Daily cleanup of expired and old read in-app notifications

The functions are plain coroutines so the scheduler can run them in-process
when no broker is configured; with a broker they are also registered as
taskiq tasks and triggered with ``.kiq()``.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging

from notification_service.features.notifications.in_app import get_in_app_service
from notification_service.features.notifications.queue import get_delivery_queue
from notification_service.infra.database.session import get_async_session
from notification_service.infra.tasks.broker import broker

logger = logging.getLogger(__name__)


async def process_delivery_queue() -> dict:
    """Run one delivery queue tick.

    Scheduled: every QUEUE_PROCESS_INTERVAL_SECONDS (via APScheduler).

    Returns:
        Counts of promoted, processed, completed, retried and failed jobs.
    """
    queue = get_delivery_queue()
    if queue is None:
        logger.debug("Delivery queue not available, tick skipped")
        return {"status": "skipped"}

    summary = await queue.process_once()
    if summary.processed:
        logger.info("Delivery queue tick finished", extra=summary.model_dump())
    return {"status": "success", **summary.model_dump()}


async def cleanup_in_app_notifications() -> dict:
    """Remove expired and old read in-app notifications.

    Scheduled: daily at TASK_CLEANUP_HOUR UTC (via APScheduler).
    """
    async with get_async_session() as session:
        deleted = await get_in_app_service().cleanup(session)
        await session.commit()

    return {
        "status": "success",
        "deleted": deleted,
        "checked_at": datetime.now(UTC).isoformat(),
    }


if broker is not None:
    process_delivery_queue_task = broker.task(task_name="notifications.process_delivery_queue")(
        process_delivery_queue
    )
    cleanup_in_app_notifications_task = broker.task(task_name="notifications.cleanup_in_app")(
        cleanup_in_app_notifications
    )
