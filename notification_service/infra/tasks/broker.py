"""Taskiq broker configuration for background task processing.

Periodic work (delivery queue ticks, in-app cleanup) is triggered by
APScheduler in the API process and executed by a taskiq worker:

    taskiq worker notification_service.infra.tasks.broker:broker

Architecture:
    APScheduler (in-process) -> Taskiq kiq() -> Redis list -> Taskiq Worker

The broker shares the Redis deployment the delivery queue already needs.
When Redis is not configured (or TASK_ENABLED=false) ``broker`` is None and
the scheduler runs the same work in-process instead.

Task Discovery
==============

Tasks are registered by importing their modules at the bottom of this file.
If you add new task modules, import them there.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from taskiq import TaskiqEvents, TaskiqState
from taskiq_redis import ListQueueBroker, RedisAsyncResultBackend

from notification_service.core.settings import get_redis_settings, get_task_settings
from notification_service.infra.logging.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

redis_settings = get_redis_settings()
task_settings = get_task_settings()
setup_logging()

broker: ListQueueBroker | None = None


def _can_create_broker() -> bool:
    """Check if broker can be created based on configuration."""
    if not task_settings.enabled:
        logger.info("Background tasks disabled (TASK_ENABLED=false)")
        return False

    if not redis_settings.is_configured:
        logger.warning("Redis not configured - background tasks run in-process")
        return False

    return True


if _can_create_broker():
    broker = ListQueueBroker(
        url=redis_settings.url,
        queue_name=redis_settings.get_prefixed_key(task_settings.queue_name),
    ).with_result_backend(
        RedisAsyncResultBackend(
            redis_url=redis_settings.url,
            result_ex_time=task_settings.redis_result_ttl_seconds,
        )
    )

    logger.info(
        "Taskiq background task broker configured",
        extra={
            "queue": redis_settings.get_prefixed_key(task_settings.queue_name),
            "result_ttl_seconds": task_settings.redis_result_ttl_seconds,
        },
    )

    @broker.on_event(TaskiqEvents.WORKER_STARTUP)
    async def _worker_startup(state: TaskiqState) -> None:
        """Connect the worker process to Redis and build the delivery queue."""
        from notification_service.workers.resources import start_worker_resources

        await start_worker_resources()

    @broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
    async def _worker_shutdown(state: TaskiqState) -> None:
        from notification_service.workers.resources import stop_worker_resources

        await stop_worker_resources()


async def get_broker() -> AsyncIterator[ListQueueBroker | None]:
    """Get the Taskiq background task broker instance.

    Yields:
        Taskiq broker instance, or None when tasks run in-process.
    """
    yield broker


async def start_taskiq() -> None:
    """Start the Taskiq broker.

    This only initializes the broker for ENQUEUING tasks from the FastAPI app.
    To actually EXECUTE tasks, run a separate worker process:
        taskiq worker notification_service.infra.tasks.broker:broker

    Raises:
        ConnectionError: If unable to connect to Redis.
    """
    if broker is None:
        logger.info("Taskiq broker not configured, skipping startup")
        return

    logger.info("Starting Taskiq broker")

    try:
        await broker.startup()
        logger.info("Taskiq broker started successfully")
    except Exception as e:
        logger.exception("Failed to start Taskiq broker", extra={"error": str(e)})
        raise


async def stop_taskiq() -> None:
    """Stop the Taskiq broker.

    This should be called during application shutdown in the lifespan context.
    """
    if broker is None:
        logger.debug("Taskiq broker not configured, skipping shutdown")
        return

    logger.info("Stopping Taskiq broker")

    try:
        await broker.shutdown()
        logger.info("Taskiq broker stopped successfully")
    except Exception as e:
        logger.exception("Error stopping Taskiq broker", extra={"error": str(e)})


# =============================================================================
# Task Module Imports
# =============================================================================
# The worker imports: taskiq worker notification_service.infra.tasks.broker:broker
# so importing here ensures all tasks are registered with it.

if broker is not None:
    import notification_service.workers.notifications.tasks  # noqa: F401
