"""Tests for the capacity-bounded in-app store."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from notification_service.core.exceptions import NotFoundException
from notification_service.core.settings import InAppSettings
from notification_service.features.notifications.in_app import InAppNotificationService
from notification_service.features.notifications.schemas import InAppListFilters
from notification_service.features.notifications.types import Priority
from notification_service.infra.database.session import use_immediate_transactions


@pytest.fixture
def service() -> InAppNotificationService:
    return InAppNotificationService(settings=InAppSettings(max_per_user=3, mark_read_batch_size=2))


async def _create(service, session, title: str, user_id: str = "user-1", **kwargs):
    return await service.create(session, "acme", user_id, "task.assigned", title, f"{title} body", **kwargs)


@pytest.mark.asyncio
async def test_create_below_cap_keeps_everything(service, db_session) -> None:
    for i in range(3):
        await _create(service, db_session, f"n{i}")

    result = await service.list(db_session, "acme", "user-1", InAppListFilters())

    assert result.total == 3
    assert result.unread_count == 3


@pytest.mark.asyncio
async def test_create_at_cap_evicts_oldest_first(service, db_session) -> None:
    first = await _create(service, db_session, "n0")
    await service.mark_read(db_session, "acme", "user-1", first.id)
    for i in range(1, 5):
        await _create(service, db_session, f"n{i}")

    result = await service.list(db_session, "acme", "user-1", InAppListFilters())

    assert result.total == 3
    assert {item.title for item in result.items} == {"n2", "n3", "n4"}


@pytest.mark.asyncio
async def test_cap_is_per_user(service, db_session) -> None:
    for i in range(3):
        await _create(service, db_session, f"a{i}")
    await _create(service, db_session, "b0", user_id="user-2")

    assert (await service.list(db_session, "acme", "user-1", InAppListFilters())).total == 3
    assert (await service.list(db_session, "acme", "user-2", InAppListFilters())).total == 1


@pytest.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Sessions on a file database, each with its own connection."""
    from notification_service.core.database import Base

    engine = use_immediate_transactions(create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'inbox.db'}"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_creates_in_separate_transactions_never_exceed_cap(service, file_session_factory) -> None:
    async with file_session_factory() as session:
        for i in range(2):
            await _create(service, session, f"n{i}")
        await session.commit()

    async def create_and_commit(title: str) -> None:
        async with file_session_factory() as session:
            await _create(service, session, title)
            await asyncio.sleep(0)
            await session.commit()

    await asyncio.gather(*(create_and_commit(f"c{i}") for i in range(4)))

    async with file_session_factory() as session:
        assert await service._repository.count_for_user(session, "acme", "user-1") == 3


@pytest.mark.asyncio
async def test_listing_orders_by_priority_then_newest(service, db_session) -> None:
    await _create(service, db_session, "low", priority=Priority.LOW)
    await _create(service, db_session, "urgent", priority=Priority.URGENT)
    await _create(service, db_session, "normal")

    result = await service.list(db_session, "acme", "user-1", InAppListFilters())

    assert [item.title for item in result.items] == ["urgent", "normal", "low"]


@pytest.mark.asyncio
async def test_listing_pages(service, db_session) -> None:
    for i in range(3):
        await _create(service, db_session, f"n{i}")

    second = await service.list(db_session, "acme", "user-1", InAppListFilters(page=2, page_size=2))
    empty = await service.list(db_session, "acme", "user-2", InAppListFilters(page_size=2))

    assert [item.title for item in second.items] == ["n0"]
    assert (second.total, second.page, second.pages) == (3, 2, 2)
    assert (empty.total, empty.pages) == (0, 0)


@pytest.mark.asyncio
async def test_expired_notifications_are_hidden(service, db_session) -> None:
    await _create(service, db_session, "gone", expires_at=datetime.now(UTC) - timedelta(minutes=1))
    await _create(service, db_session, "live")

    result = await service.list(db_session, "acme", "user-1", InAppListFilters())

    assert [item.title for item in result.items] == ["live"]
    assert result.unread_count == 1


@pytest.mark.asyncio
async def test_unread_only_filter_and_mark_read(service, db_session) -> None:
    read = await _create(service, db_session, "read")
    await _create(service, db_session, "unread")

    marked = await service.mark_read(db_session, "acme", "user-1", read.id)
    result = await service.list(db_session, "acme", "user-1", InAppListFilters(unread_only=True))

    assert marked.is_read is True
    assert marked.read_at is not None
    assert [item.title for item in result.items] == ["unread"]


@pytest.mark.asyncio
async def test_mark_many_read_counts_only_owned_unread(service, db_session) -> None:
    mine = [await _create(service, db_session, f"m{i}") for i in range(3)]
    other = await _create(service, db_session, "other", user_id="user-2")

    updated = await service.mark_many_read(
        db_session, "acme", "user-1", [n.id for n in mine] + [other.id, uuid4()]
    )

    assert updated == 3
    assert await service.unread_count(db_session, "acme", "user-2") == 1


@pytest.mark.asyncio
async def test_mark_all_read(service, db_session) -> None:
    for i in range(2):
        await _create(service, db_session, f"m{i}")

    assert await service.mark_all_read(db_session, "acme", "user-1") == 2
    assert await service.unread_count(db_session, "acme", "user-1") == 0


@pytest.mark.asyncio
async def test_get_other_users_notification_is_not_found(service, db_session) -> None:
    notification = await _create(service, db_session, "private", user_id="user-2")

    with pytest.raises(NotFoundException) as exc_info:
        await service.get(db_session, "acme", "user-1", notification.id)
    assert exc_info.value.type == "notification-not-found"


@pytest.mark.asyncio
async def test_delete_and_delete_many(service, db_session) -> None:
    notes = [await _create(service, db_session, f"d{i}") for i in range(3)]

    await service.delete(db_session, "acme", "user-1", notes[0].id)
    deleted = await service.delete_many(db_session, "acme", "user-1", [notes[1].id, notes[2].id])

    assert deleted == 2
    assert (await service.list(db_session, "acme", "user-1", InAppListFilters())).total == 0


@pytest.mark.asyncio
async def test_stats_group_by_type_and_priority(service, db_session) -> None:
    await _create(service, db_session, "a", priority=Priority.HIGH)
    await _create(service, db_session, "b")

    stats = await service.stats(db_session, "acme", "user-1")

    assert stats.total == 2
    assert stats.by_type == {"task.assigned": 2}
    assert stats.by_priority == {"high": 1, "normal": 1}


@pytest.mark.asyncio
async def test_cleanup_removes_expired_rows(service, db_session) -> None:
    await _create(service, db_session, "gone", expires_at=datetime.now(UTC) - timedelta(days=1))
    await _create(service, db_session, "kept")

    assert await service.cleanup(db_session) == 1
    assert await service._repository.count_for_user(db_session, "acme", "user-1") == 1
