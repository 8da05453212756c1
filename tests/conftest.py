"""Test configuration and fixtures for the Universe chat engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock
from unittest.mock import Mock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from universe.shared.config import Settings
from universe.shared.config import override_settings
from universe.shared.database import Base
from universe.shared.database import create_engine
from universe.shared.date_provider import MockDateProvider
from universe.shared.date_provider import reset_date_provider
from universe.shared.date_provider import set_date_provider
from universe.web.crud import MessageOperations
from universe.web.crud import ProfileOperations
from universe.web.models import Profile

# 2024-01-15 17:30 IST; the current purge boundary is 2024-01-14 18:30 UTC.
TEST_NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
TEST_BOUNDARY = datetime(2024, 1, 14, 18, 30, tzinfo=timezone.utc)
TEST_COMMUNITY = "RVCE"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings backed by a throwaway SQLite file."""
    return override_settings(
        environment="testing",
        test_database_url=f"sqlite+aiosqlite:///{tmp_path / f'test_{uuid.uuid4().hex}.db'}",
        test_redis_url="redis://localhost:6379/15",
        debug=False,
        log_level="DEBUG",
    )


@pytest.fixture
async def test_engine(test_settings):
    """Create a fresh database with every table for one test."""
    engine = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging and inspecting rows directly."""
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def clock():
    """Pin "now" for every test; tests move it with ``clock.set_datetime``."""
    provider = MockDateProvider(TEST_NOW)
    set_date_provider(provider)
    yield provider
    reset_date_provider()


@pytest.fixture
def change_feed():
    """Change publisher that records what services announce."""
    feed = Mock()
    feed.publish = AsyncMock(return_value=1)
    return feed


@pytest.fixture
def mock_redis_manager():
    """RedisManager double with async operations."""
    manager = Mock()
    manager.get = AsyncMock(return_value=None)
    manager.set = AsyncMock(return_value=True)
    manager.delete = AsyncMock(return_value=1)
    manager.hset = AsyncMock(return_value=1)
    manager.hgetall = AsyncMock(return_value={})
    manager.hdel = AsyncMock(return_value=1)
    manager.publish = AsyncMock(return_value=1)
    return manager


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def create_profile(session_maker):
    """Insert a profile row and return its id."""

    async def _create(profile_id: str | None = None, karma: int = 0) -> str:
        profile_id = profile_id or f"user-{uuid.uuid4().hex[:12]}"
        async with session_maker() as session:
            async with session.begin():
                session.add(Profile(id=profile_id, community=TEST_COMMUNITY, karma=karma))
        return profile_id

    return _create


@pytest.fixture
def get_karma(session_maker):
    async def _get(profile_id: str) -> int:
        async with session_maker() as session:
            profile = await ProfileOperations().get_profile(session, profile_id)
            return profile.karma

    return _get


@pytest.fixture
def create_message(session_maker, clock):
    """Insert a message directly, stamped with the mocked clock by default."""

    async def _create(
        community: str = TEST_COMMUNITY,
        group_name: str = "main",
        kind: str = "normal",
        author_id: str = "author-1",
        content: str = "hello",
        created_at: datetime | None = None,
        **extra
    ) -> int:
        created_at = created_at or clock.utcnow()
        async with session_maker() as session:
            async with session.begin():
                message = await MessageOperations().create_message(
                    session,
                    community=community,
                    content=content,
                    author_id=author_id,
                    display_name="Based NPC",
                    display_color="#39FF14",
                    kind=kind,
                    group_name=group_name,
                    created_at=created_at,
                    updated_at=created_at,
                    **extra
                )
                return message.id

    return _create
