"""Shared pytest fixtures for the discovery pipeline tests.

Fixture summary
---------------
db_engine       -- Async in-memory SQLite engine with all tables created.
db_session      -- AsyncSession bound to ``db_engine`` (``expire_on_commit=False``).
session_factory -- Zero-argument async context manager yielding ``db_session``;
                  stands in for ``session_scope`` in worker tests.
fake_redis      -- AsyncMock with ``get`` / ``set`` backed by a dict.
now             -- Fixed timezone-aware reference time.

SQLite runs the portable code paths (optimistic claims, ``ON CONFLICT DO
NOTHING`` inserts); the PostgreSQL-only ``SKIP LOCKED`` statements are not
exercised here.  Timestamps read back from SQLite are naive UTC.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "REDIS_URL": "redis://localhost:6379/0",
    "CELERY_BROKER_URL": "memory://",
    "CELERY_RESULT_BACKEND": "cache+memory://",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from discovery_pipeline.config.settings import get_settings  # noqa: E402
from discovery_pipeline.core.models.base import Base  # noqa: E402

import discovery_pipeline.core.models.jobs  # noqa: E402,F401
import discovery_pipeline.core.models.queue  # noqa: E402,F401
import discovery_pipeline.core.models.runs  # noqa: E402,F401
import discovery_pipeline.core.models.sources  # noqa: E402,F401

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine; one shared connection so every session sees the same data."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession on the test engine."""
    factory = async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def session_factory(db_session: AsyncSession):
    """Return a ``session_scope`` replacement that always yields ``db_session``."""

    @asynccontextmanager
    async def _scope() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    return _scope


# ---------------------------------------------------------------------------
# Redis and time
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> AsyncMock:
    """AsyncMock standing in for ``redis.asyncio.Redis`` with a dict store."""
    store: dict[str, Any] = {}
    client = AsyncMock()

    async def _get(key: str) -> Any:
        return store.get(key)

    async def _set(key: str, value: Any, ex: int | None = None) -> bool:  # noqa: ARG001
        store[key] = value
        return True

    client.get.side_effect = _get
    client.set.side_effect = _set
    client.store = store
    return client


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
