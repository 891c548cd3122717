"""Pytest configuration and shared fixtures.

Organization:
    - Environment: keep tests away from real Redis, PostgreSQL and SMTP
    - Database Fixtures: in-memory SQLite engine and session
    - Redis Fixtures: in-memory stand-in covering the commands the delivery queue uses
    - Application Fixtures: FastAPI app wired to the test session, HTTP client
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import AsyncGenerator, Callable
import fnmatch
import os
from typing import TYPE_CHECKING, Any

from httpx import ASGITransport, AsyncClient
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_SQLITE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DB_CREATE_TABLES", "true")
os.environ.setdefault("TASK_ENABLED", "false")
os.environ.setdefault("TASK_SCHEDULER_ENABLED", "false")
os.environ.setdefault("EMAIL_BACKEND", "console")
os.environ.setdefault("LOG_JSON_LOGS", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Fresh in-memory SQLite database with every table created."""
    from notification_service.core.database import Base
    from notification_service.features.notifications import models  # noqa: F401
    from notification_service.infra.database.session import use_immediate_transactions

    engine = use_immediate_transactions(
        create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Session for service-level tests; rolled back after the test."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Redis Fixtures
# ============================================================================


class FakePipeline:
    """Buffers commands and runs them on ``execute``."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._calls.clear()

    def __getattr__(self, name: str) -> Any:
        def buffer(*args: Any, **kwargs: Any) -> FakePipeline:
            self._calls.append((name, args, kwargs))
            return self

        return buffer

    async def execute(self) -> list[Any]:
        results = [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._calls]
        self._calls.clear()
        return results


class FakeRedis:
    """In-memory subset of ``redis.asyncio.Redis`` with decode_responses=True semantics.

    TTLs are recorded but never expire.
    """

    def __init__(self) -> None:
        from notification_service.features.notifications.queue import PROMOTE_DUE_SCRIPT

        self.strings: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.zsets: dict[str, dict[str, float]] = defaultdict(dict)
        self.published: list[tuple[str, str]] = []
        self.scripts: dict[str, Callable[[list[str], list[Any]], Any]] = {
            PROMOTE_DUE_SCRIPT: self._promote_due,
        }

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.strings:
            return None
        self.strings[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def get(self, key: str) -> str | None:
        return self.strings.get(key)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            for store in (self.strings, self.lists, self.zsets):
                if key in store:
                    del store[key]
                    deleted += 1
        return deleted

    async def lpush(self, key: str, *values: str) -> int:
        for value in values:
            self.lists[key].insert(0, value)
        return len(self.lists[key])

    async def lmove(self, source: str, destination: str, src: str = "LEFT", dest: str = "RIGHT") -> str | None:
        items = self.lists.get(source)
        if not items:
            return None
        value = items.pop() if src == "RIGHT" else items.pop(0)
        if dest == "LEFT":
            self.lists[destination].insert(0, value)
        else:
            self.lists[destination].append(value)
        return value

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start : end + 1])

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        added = sum(1 for member in mapping if member not in self.zsets[key])
        self.zsets[key].update(mapping)
        return added

    async def zrange(self, key: str, start: int, end: int) -> list[str]:
        members = [m for m, _ in sorted(self.zsets.get(key, {}).items(), key=lambda item: item[1])]
        return members[start:] if end == -1 else members[start : end + 1]

    async def zrem(self, key: str, *members: str) -> int:
        zset = self.zsets.get(key, {})
        removed = 0
        for member in members:
            if member in zset:
                del zset[member]
                removed += 1
        return removed

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def scan_iter(self, match: str = "*", count: int | None = None):
        keys = [*self.strings, *(k for k, v in self.lists.items() if v), *(k for k, v in self.zsets.items() if v)]
        for key in keys:
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any:
        """Runs the Python stand-in registered for ``script`` without yielding."""
        keys, args = list(keys_and_args[:numkeys]), list(keys_and_args[numkeys:])
        return self.scripts[script](keys, args)

    def _promote_due(self, keys: list[str], args: list[Any]) -> int:
        scheduled, ready = keys
        zset = self.zsets.get(scheduled, {})
        due = [member for member, score in sorted(zset.items(), key=lambda item: item[1]) if score <= float(args[0])]
        for member in due:
            del zset[member]
            self.lists[ready].insert(0, member)
        return len(due)

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 0

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
async def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """FastAPI application whose request sessions come from the test database.

    The lifespan is not run, so no Redis, scheduler or broker is started.
    """
    from notification_service.app.main import create_app
    from notification_service.core.dependencies.database import get_db_session

    application = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db_session] = override_session
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """HTTP client for the app.

    Example:
        async def test_unread(client, auth_headers):
            response = await client.get("/api/v1/notifications/unread-count", headers=auth_headers)
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-Tenant-ID": "acme", "X-User-ID": "user-1"}


@pytest.fixture(autouse=True)
def reset_singletons() -> None:
    """Drop module-level services so each test builds its own."""
    from notification_service.core.settings import clear_all_caches
    from notification_service.features.notifications import (
        dispatcher,
        event_handlers,
        identity,
        in_app,
        preferences,
        push_subscriptions,
        queue,
    )
    from notification_service.infra.realtime import manager

    dispatcher._dispatcher = None
    dispatcher._email_sender = None
    dispatcher._push_sender = None
    event_handlers._handler = None
    identity._directory = None
    in_app._service = None
    preferences._service = None
    push_subscriptions._service = None
    queue._queue = None
    manager._manager = None
    clear_all_caches()
