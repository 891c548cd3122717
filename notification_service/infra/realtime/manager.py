"""WebSocket connection manager for live in-app notification frames.

Connections are tracked per (tenant, user). When a Redis client is supplied,
frames are published on a single PubSub channel so every instance can deliver
them to its own local sockets; otherwise delivery is local-only.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
import contextlib
from dataclasses import dataclass, field
import json
import logging
import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from notification_service.core.settings import get_redis_settings

if TYPE_CHECKING:
    from fastapi import WebSocket
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

UserKey = tuple[str, str]


@dataclass
class ConnectionInfo:
    """Metadata about a WebSocket connection."""

    connection_id: str
    websocket: WebSocket
    tenant_id: str
    user_id: str
    connected_at: float = field(default_factory=time.time)


class ConnectionManager:
    """Tracks live sessions and pushes notification frames to them.

    Example:
        manager = ConnectionManager()
        await manager.start()

        connection_id = await manager.connect(websocket, "tenant-1", "user-1")
        try:
            async for _ in websocket.iter_text():
                pass
        finally:
            await manager.disconnect(connection_id)

        await manager.send_to_user("tenant-1", "user-1", {"type": "notification"})
    """

    def __init__(
        self,
        redis_client: Redis | None = None,
        channel: str = "ws:notifications",
        max_connections: int = 10_000,
    ) -> None:
        self._redis = redis_client
        self._channel = channel
        self._max_connections = max_connections

        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}
        # (tenant_id, user_id) -> set of connection_ids
        self._user_connections: dict[UserKey, set[str]] = defaultdict(set)

        self._pubsub: PubSub | None = None
        self._listener_task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        """Start the manager and, with Redis, the PubSub listener."""
        if self._running:
            return
        self._running = True

        if self._redis is not None:
            self._pubsub = self._redis.pubsub()
            await self._pubsub.subscribe(self._channel)
            self._listener_task = asyncio.create_task(self._pubsub_listener())
            logger.info(
                "Connection manager started with Redis PubSub",
                extra={"channel": self._channel},
            )
        else:
            logger.info("Connection manager started in local-only mode")

    async def stop(self) -> None:
        """Stop the manager and close all connections."""
        self._running = False

        if self._listener_task:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        if self._pubsub:
            await self._pubsub.aclose()
            self._pubsub = None

        closed = len(self._connections)
        for conn_info in list(self._connections.values()):
            await self._close_socket(conn_info, code=1001, reason="Server shutdown")

        self._connections.clear()
        self._user_connections.clear()

        logger.info("Connection manager stopped", extra={"connections_closed": closed})

    async def connect(self, websocket: WebSocket, tenant_id: str, user_id: str) -> str:
        """Accept a WebSocket and register it for the user.

        Raises:
            ConnectionRefusedError: If max connections reached
        """
        if len(self._connections) >= self._max_connections:
            logger.warning(
                "Connection refused: max connections reached",
                extra={"max": self._max_connections},
            )
            raise ConnectionRefusedError("Maximum connections reached")

        await websocket.accept()

        connection_id = str(uuid4())
        self._connections[connection_id] = ConnectionInfo(
            connection_id=connection_id,
            websocket=websocket,
            tenant_id=tenant_id,
            user_id=user_id,
        )
        self._user_connections[(tenant_id, user_id)].add(connection_id)

        logger.info(
            "WebSocket connected",
            extra={
                "connection_id": connection_id,
                "tenant_id": tenant_id,
                "user_id": user_id,
                "total_connections": len(self._connections),
            },
        )
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Remove a WebSocket connection."""
        conn_info = self._connections.pop(connection_id, None)
        if conn_info is None:
            return

        key = (conn_info.tenant_id, conn_info.user_id)
        self._user_connections[key].discard(connection_id)
        if not self._user_connections[key]:
            del self._user_connections[key]

        await self._close_socket(conn_info)

        logger.info(
            "WebSocket disconnected",
            extra={
                "connection_id": connection_id,
                "user_id": conn_info.user_id,
                "duration_seconds": time.time() - conn_info.connected_at,
                "total_connections": len(self._connections),
            },
        )

    async def send_to_connection(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Send a frame to one connection; a dead socket is dropped."""
        conn_info = self._connections.get(connection_id)
        if conn_info is None:
            return False

        try:
            await conn_info.websocket.send_json(message)
        except (RuntimeError, OSError) as e:
            logger.warning(
                "Failed to send message to connection",
                extra={"connection_id": connection_id, "error": str(e)},
            )
            await self.disconnect(connection_id)
            return False
        return True

    async def send_to_user(self, tenant_id: str, user_id: str, message: dict[str, Any]) -> int:
        """Send a frame to every live session of a user.

        With Redis, the frame is published and delivered by each instance's
        listener, so the local count returned is 0.

        Returns:
            Number of local connections the frame was written to
        """
        if self._redis is not None:
            envelope = {"tenant_id": tenant_id, "user_id": user_id, "message": message}
            await self._redis.publish(self._channel, json.dumps(envelope, default=str))
            return 0
        return await self._send_local(tenant_id, user_id, message)

    def user_connection_count(self, tenant_id: str, user_id: str) -> int:
        """Number of local sessions for a user."""
        return len(self._user_connections.get((tenant_id, user_id), ()))

    @property
    def connection_count(self) -> int:
        """Total number of active connections."""
        return len(self._connections)

    async def _send_local(self, tenant_id: str, user_id: str, message: dict[str, Any]) -> int:
        count = 0
        for connection_id in list(self._user_connections.get((tenant_id, user_id), ())):
            if await self.send_to_connection(connection_id, message):
                count += 1
        return count

    async def _close_socket(
        self,
        conn_info: ConnectionInfo,
        code: int = 1000,
        reason: str | None = None,
    ) -> None:
        try:
            await conn_info.websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as e:
            # Already closed by the peer.
            logger.debug(
                "WebSocket close failed",
                extra={"connection_id": conn_info.connection_id, "error": str(e)},
            )

    async def _pubsub_listener(self) -> None:
        """Deliver frames published by any instance to local sockets."""
        if self._pubsub is None:
            return

        async for raw in self._pubsub.listen():
            if not self._running:
                break
            if raw["type"] != "message":
                continue

            data = raw["data"]
            if isinstance(data, bytes):
                data = data.decode()
            try:
                envelope = json.loads(data)
                await self._send_local(
                    envelope["tenant_id"],
                    envelope["user_id"],
                    envelope["message"],
                )
            except (ValueError, KeyError, TypeError) as e:
                logger.error("Error processing PubSub message", extra={"error": str(e)})


_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager | None:
    """Get the global connection manager, or None before startup."""
    return _manager


async def start_connection_manager(redis_client: Redis | None = None) -> ConnectionManager:
    """Initialize and start the global connection manager.

    Uses the shared Redis connection for PubSub when one is given and Redis
    is configured, otherwise runs in local-only mode.
    """
    global _manager

    if redis_client is not None and not get_redis_settings().is_configured:
        redis_client = None

    _manager = ConnectionManager(redis_client=redis_client)
    await _manager.start()
    return _manager


async def stop_connection_manager() -> None:
    """Stop the global connection manager."""
    global _manager

    if _manager is not None:
        await _manager.stop()
        _manager = None
