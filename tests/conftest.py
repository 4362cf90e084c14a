"""Shared test fixtures.

Tests run against in-memory SQLite through aiosqlite. The pysqlite driver's
own transaction handling is switched off so SAVEPOINTs behave as on
PostgreSQL.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from vpay.config import Settings
from vpay.db import models  # noqa: F401
from vpay.db.base import Base
from vpay.db.models import User
from vpay.dependencies import get_db, get_redis_dep
from vpay.gamification.engine import GamificationEngine
from vpay.main import create_app

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)  # Monday


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, _connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, database_url="sqlite+aiosqlite://")


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory inserting a committed user row."""
    counter = {"n": 0}

    async def _make(
        username: str | None = None,
        tier: str = "Bronze",
        reward_points: int = 0,
        total_earnings: float = 0.0,
    ) -> User:
        counter["n"] += 1
        user = User(
            username=username or f"user{counter['n']}",
            tier=tier,
            reward_points=reward_points,
            total_earnings=total_earnings,
            created_at=NOW,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def user(make_user: Callable[..., Awaitable[User]]) -> User:
    return await make_user("alice")


@pytest.fixture
def engine(db_session: AsyncSession, settings: Settings) -> GamificationEngine:
    return GamificationEngine(db_session, None, settings)


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test database wired in."""
    app = create_app()

    async def _override_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _override_redis() -> AsyncGenerator[object, None]:
        yield None

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_redis_dep] = _override_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def now() -> datetime:
    """Pinned clock: Monday 2026-03-02 12:00 UTC."""
    return NOW
