"""Database access for every pipeline invocation.

There is one :data:`async_engine` per process.  Each Celery task body and
each job-worker iteration opens its own session through
:func:`session_scope`.  Services receive that session and decide when to
commit.

Queue claims and idempotent inserts differ between PostgreSQL and the
SQLite database used in tests, so services ask :func:`dialect_name` which
statement to issue.

``DATABASE_URL`` selects the driver: ``postgresql+asyncpg://...`` in
deployment, ``sqlite+aiosqlite://...`` locally.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from discovery_pipeline.core.models.base import Base  # noqa: F401

#: Connections kept open per process; Celery prefork children each get a pool.
POOL_SIZE: int = 10
#: Extra connections allowed during bursts (a scrape batch plus a discovery run).
POOL_MAX_OVERFLOW: int = 20


def _build_engine(database_url: str) -> AsyncEngine:
    # aiosqlite pools reject the sizing arguments.
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=False)
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=POOL_SIZE,
        max_overflow=POOL_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def _database_url() -> str:
    from discovery_pipeline.config.settings import get_settings  # noqa: PLC0415

    return str(get_settings().database_url)


async_engine = _build_engine(_database_url())

AsyncSessionLocal: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that is rolled back if the block raises.

    Usage::

        async with session_scope() as db:
            response = await DiscoveryOrchestrator("feed").run(db, request)

    Nothing is committed here: orchestrators, workers and the retention
    service commit per source, per batch or per job.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def dialect_name(db: AsyncSession) -> str:
    """Return ``"postgresql"``, ``"sqlite"`` or another dialect name for *db*'s bind."""
    return db.get_bind().dialect.name
