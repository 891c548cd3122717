"""Process-level resources for the taskiq worker.

The worker runs outside the FastAPI lifespan, so it opens its own Redis
connection and delivery queue on startup.
"""

from __future__ import annotations

import logging

from notification_service.features.notifications.dispatcher import get_email_sender, get_push_sender
from notification_service.features.notifications.identity import close_user_directory
from notification_service.features.notifications.queue import start_delivery_queue, stop_delivery_queue
from notification_service.infra.database.session import close_database
from notification_service.infra.redis import get_redis_instance, start_redis, stop_redis

logger = logging.getLogger(__name__)


async def start_worker_resources() -> None:
    await start_redis()
    redis = get_redis_instance()
    if redis is not None:
        start_delivery_queue(redis.client, [get_email_sender(), get_push_sender()])
    logger.info("Worker resources ready")


async def stop_worker_resources() -> None:
    stop_delivery_queue()
    await close_user_directory()
    await stop_redis()
    await close_database()
    logger.info("Worker resources released")
