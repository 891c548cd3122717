"""Application lifespan management.

Startup Order:
1. Core (logging)
2. Database (PostgreSQL, or the SQLite fallback)
3. Redis - conditional on configuration; degraded mode when unreachable
4. Delivery queue - requires Redis
5. Realtime connection manager - Redis PubSub when available, local otherwise
6. Background tasks (Taskiq broker + APScheduler)

Shutdown Order: Reverse of startup (what starts first, shuts down last)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from notification_service.core.settings import (
    get_app_settings,
    get_logging_settings,
    get_redis_settings,
)
from notification_service.infra.logging.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


# =============================================================================
# Startup functions - organized by service
# =============================================================================


async def _startup_database() -> None:
    from notification_service.infra.database.session import init_database

    await init_database()
    logger.info("Database connection initialized")


async def _startup_redis() -> None:
    """Connect Redis and build the delivery queue on it."""
    from notification_service.features.notifications.dispatcher import (
        get_email_sender,
        get_push_sender,
    )
    from notification_service.features.notifications.queue import start_delivery_queue
    from notification_service.infra.redis import get_redis_instance, start_redis

    redis = get_redis_settings()
    if not redis.is_configured:
        logger.warning("Redis not configured: email delivery queue disabled")
        return

    try:
        await start_redis()
    except (RedisError, OSError) as e:
        if redis.startup_require_cache:
            logger.exception(
                "Redis required but unavailable, failing startup",
                extra={"startup_require_cache": True},
            )
            raise
        logger.warning(
            "Redis unavailable, continuing in degraded mode",
            extra={"error": str(e), "startup_require_cache": False},
        )
        return

    client = get_redis_instance()
    if client is not None:
        start_delivery_queue(client.client, [get_email_sender(), get_push_sender()])


async def _startup_realtime() -> None:
    from notification_service.infra.realtime import start_connection_manager
    from notification_service.infra.redis import get_redis_instance

    client = get_redis_instance()
    await start_connection_manager(client.client if client is not None else None)
    logger.info("Realtime connection manager started", extra={"pubsub": client is not None})


async def _startup_tasks() -> None:
    from notification_service.core.settings import get_task_settings
    from notification_service.infra.tasks.broker import start_taskiq
    from notification_service.infra.tasks.scheduler import setup_scheduled_jobs, start_scheduler

    await start_taskiq()
    if get_task_settings().scheduler_enabled:
        setup_scheduled_jobs()
        await start_scheduler()


# =============================================================================
# Shutdown functions
# =============================================================================


async def _shutdown_tasks() -> None:
    from notification_service.infra.tasks.broker import stop_taskiq
    from notification_service.infra.tasks.scheduler import stop_scheduler

    await stop_scheduler()
    await stop_taskiq()


async def _shutdown_realtime() -> None:
    from notification_service.infra.realtime import stop_connection_manager

    await stop_connection_manager()


async def _shutdown_redis() -> None:
    from notification_service.features.notifications.identity import close_user_directory
    from notification_service.features.notifications.queue import stop_delivery_queue
    from notification_service.infra.redis import stop_redis

    stop_delivery_queue()
    await close_user_directory()
    await stop_redis()


async def _shutdown_database() -> None:
    from notification_service.infra.database.session import close_database

    await close_database()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle: start services in order, stop them in reverse."""
    app_settings = get_app_settings()

    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={"service": app_settings.service_name, "environment": app_settings.environment},
    )

    await _startup_database()
    await _startup_redis()
    await _startup_realtime()
    await _startup_tasks()

    logger.info(
        "Application startup complete - listening on %s:%s",
        app_settings.host,
        app_settings.port,
        extra={
            "service": app_settings.service_name,
            "environment": app_settings.environment,
            "version": app_settings.version,
            "redis_enabled": get_redis_settings().is_configured,
        },
    )

    yield

    logger.info("Application shutting down", extra={"service": app_settings.service_name})

    await _shutdown_tasks()
    await _shutdown_realtime()
    await _shutdown_redis()
    await _shutdown_database()

    logger.info("Application shutdown complete")


__all__ = ["lifespan"]
