"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite) created fresh
for every test, with Redis events disabled and a frozen clock.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

os.environ["QL_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["QL_REDIS_URL"] = ""
os.environ["QL_LOG_FORMAT"] = "console"

from questline.config import get_settings  # noqa: E402

get_settings.cache_clear()

from questline.database import close_db, get_engine, init_db  # noqa: E402
from questline.db import models  # noqa: E402, F401
from questline.db.base import Base  # noqa: E402
from questline.dependencies import get_db, get_redis_dep  # noqa: E402
from questline.main import create_app  # noqa: E402
from questline.progression.clock import FixedClock, get_clock  # noqa: E402

# Tuesday, midday UTC
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at NOW; tests move it with ``clock.advance(days=1)``."""
    return FixedClock(NOW)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema on a private in-memory database."""
    await init_db(get_settings().database_url)
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session

    await close_db()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, clock: FixedClock) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the test session and clock."""
    app = create_app()

    async def _db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_redis_dep] = lambda: None
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"X-User-Id": "user-1"}
