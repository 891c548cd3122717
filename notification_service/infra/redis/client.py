"""Shared Redis connection used by the delivery queue and realtime fan-out."""

from __future__ import annotations

import logging
from typing import Any, cast

from redis.asyncio import ConnectionPool, Redis

from notification_service.core.settings import get_redis_settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Pooled ``redis.asyncio`` connection with explicit lifecycle.

    Example:
        client = RedisClient()
        await client.connect()
        queue = DeliveryQueue(client.client, ...)
        await client.disconnect()
    """

    def __init__(self, url: str | None = None) -> None:
        self._url = url
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Open the connection pool and verify it with PING.

        Raises:
            redis.exceptions.ConnectionError: If unable to connect to Redis.
        """
        settings = get_redis_settings()
        logger.info(
            "Connecting to Redis",
            extra={
                "host": settings.host,
                "port": settings.port,
                "db": settings.db,
                "max_connections": settings.max_connections,
            },
        )

        self._pool = ConnectionPool.from_url(
            self._url or settings.url,
            **settings.connection_pool_kwargs(),
        )
        self._client = Redis(connection_pool=self._pool)
        await cast("Any", self._client.ping())

        logger.info("Redis connection established successfully")

    async def disconnect(self) -> None:
        """Close Redis connection and cleanup resources."""
        logger.info("Disconnecting from Redis")

        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.aclose()
            self._pool = None

        logger.info("Redis connection closed")

    @property
    def client(self) -> Redis:
        """Get the Redis client instance.

        Raises:
            RuntimeError: If not connected.
        """
        if self._client is None:
            msg = "Redis client not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client


_redis: RedisClient | None = None


async def start_redis() -> None:
    """Initialize the global Redis connection (application startup)."""
    global _redis
    logger.info("Starting Redis")

    client = RedisClient()
    await client.connect()
    _redis = client


async def stop_redis() -> None:
    """Close the global Redis connection (application shutdown)."""
    global _redis

    if _redis is not None:
        await _redis.disconnect()
        _redis = None


def get_redis_instance() -> RedisClient | None:
    """Get the global Redis connection if initialized.

    Returns:
        RedisClient or None when Redis is not configured or not started.
    """
    return _redis
