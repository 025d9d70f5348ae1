"""Unit tests for the source registry.

Tests cover:
- list_active() filters (method, tier, group, ids) and skips inactive rows
- ordering: never-discovered sources first, then oldest success, then tier
- record_outcome() resets or increments the failure counter
- set_active() reports whether a row changed
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from discovery_pipeline.core.models.sources import Source
from discovery_pipeline.core.source_registry import SourceRegistry
from tests.factories import SourceFactory


async def _add(db, **fields) -> Source:
    source = SourceFactory.build(**fields)
    db.add(source)
    await db.commit()
    return source


async def _reload(db, source_id) -> Source:
    result = await db.execute(
        select(Source).where(Source.id == source_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestListActive:
    async def test_inactive_sources_are_skipped(self, db_session) -> None:
        active = await _add(db_session)
        await _add(db_session, active=False)

        sources = await SourceRegistry().list_active(db_session)

        assert [s.id for s in sources] == [active.id]

    async def test_filters(self, db_session) -> None:
        feed_t1 = await _add(db_session, tier=1, group=1)
        await _add(db_session, tier=2, group=1)
        await _add(db_session, discovery_method="crawl_map", tier=1, group=2)

        registry = SourceRegistry()
        by_method = await registry.list_active(db_session, method="crawl_map")
        by_tier = await registry.list_active(db_session, method="feed", tier=1)
        by_group = await registry.list_active(db_session, group=1)
        by_ids = await registry.list_active(db_session, source_ids=[feed_t1.id])

        assert [s.discovery_method for s in by_method] == ["crawl_map"]
        assert [s.id for s in by_tier] == [feed_t1.id]
        assert len(by_group) == 2
        assert [s.id for s in by_ids] == [feed_t1.id]

    async def test_never_discovered_first_then_oldest(self, db_session, now) -> None:
        recent = await _add(db_session, last_successful_discovery=now)
        older = await _add(db_session, last_successful_discovery=now - timedelta(days=2))
        fresh_tier2 = await _add(db_session, tier=2)
        fresh_tier1 = await _add(db_session, tier=1)

        sources = await SourceRegistry().list_active(db_session)

        assert [s.id for s in sources] == [fresh_tier1.id, fresh_tier2.id, older.id, recent.id]

    async def test_limit(self, db_session) -> None:
        for _ in range(4):
            await _add(db_session)

        sources = await SourceRegistry().list_active(db_session, limit=3)

        assert len(sources) == 3


class TestRecordOutcome:
    async def test_failure_increments_counter(self, db_session) -> None:
        source = await _add(db_session, consecutive_failures=2)

        await SourceRegistry().record_outcome(db_session, source.id, success=False)
        await db_session.commit()

        row = await _reload(db_session, source.id)
        assert row.consecutive_failures == 3
        assert row.last_successful_discovery is None

    async def test_success_resets_counter(self, db_session) -> None:
        source = await _add(db_session, consecutive_failures=4)
        before = datetime.now(tz=timezone.utc)

        await SourceRegistry().record_outcome(db_session, source.id, success=True)
        await db_session.commit()

        row = await _reload(db_session, source.id)
        assert row.consecutive_failures == 0
        stamped = row.last_successful_discovery
        if stamped.tzinfo is None:
            stamped = stamped.replace(tzinfo=timezone.utc)
        assert stamped >= before - timedelta(seconds=1)

    async def test_failures_never_disable(self, db_session) -> None:
        source = await _add(db_session, consecutive_failures=50)

        await SourceRegistry().record_outcome(db_session, source.id, success=False)
        await db_session.commit()

        assert (await _reload(db_session, source.id)).active is True


class TestSetActive:
    async def test_disable_existing_source(self, db_session) -> None:
        source = await _add(db_session)

        changed = await SourceRegistry().set_active(db_session, source.id, False)
        await db_session.commit()

        assert changed is True
        assert (await _reload(db_session, source.id)).active is False

    async def test_unknown_source_returns_false(self, db_session) -> None:
        changed = await SourceRegistry().set_active(db_session, uuid.uuid4(), False)

        assert changed is False
