"""Shared test fixtures.

Tests run against an in-memory SQLite database created from the ORM
metadata. Redis is not started: rate limiting passes requests through when
it is unavailable.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone

os.environ["QB_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["QB_REDIS_URL"] = "redis://localhost:6379/15"
os.environ["QB_JWT_SECRET"] = "questboard-test-secret-0123456789abcdef"
os.environ["QB_LOG_FORMAT"] = "console"

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.database import close_db, get_engine, get_session_factory, init_db
from questboard.db.base import Base
from questboard.db.models import Quest
from questboard.main import create_app
from questboard.quests.registry import create_quest

get_settings.cache_clear()

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """A fixed instant ``seconds`` after T0."""
    return T0 + timedelta(seconds=seconds)


def make_token(user_id: str, address: str | None = None, **overrides: object) -> str:
    """Sign an access token the way the auth service does."""
    settings = get_settings()
    claims: dict[str, object] = {
        "sub": user_id,
        "iss": settings.jwt_issuer,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        "type": "access",
    }
    if address is not None:
        claims["address"] = address
    claims.update(overrides)
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh schema per test."""
    settings = get_settings()
    await init_db(settings.database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service-level tests."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database: None) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to a fresh app."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_quest(db_session: AsyncSession) -> Callable[..., Awaitable[Quest]]:
    """Factory creating quests directly through the registry."""

    async def _make(creator_id: str = "creator", **kwargs: object) -> Quest:
        kwargs.setdefault("title", "Swap on the testnet DEX")
        kwargs.setdefault("reward_points", 100)
        kwargs.setdefault("now", T0)
        return await create_quest(db_session, creator_id, **kwargs)  # type: ignore[arg-type]

    return _make
