"""Unit tests for the shared DiscoveryOrchestrator.

Tests cover:
- new candidates become pending queue entries at the source's tier priority
- URLs already in the queue are counted as duplicates, never re-inserted
- stale ``running`` run records are failed; fresh ones are left alone
- a failing source does not stop the run (status ``partial``)
- quota exhaustion mid-run: partial results persisted, later sources skipped
- candidates outside the recency window are dropped
- invalid requests and unexpected errors return error envelopes

Discovery itself is replaced by a stub; the database is in-memory SQLite.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from discovery_pipeline.core.exceptions import DiscoveryError, QuotaExceededError
from discovery_pipeline.core.models.queue import QueueEntry
from discovery_pipeline.core.models.runs import DiscoveryRun
from discovery_pipeline.core.models.sources import Source
from discovery_pipeline.discovery.base import Candidate, DiscoveryMethod
from discovery_pipeline.discovery.orchestrator import DiscoveryOrchestrator
from tests.factories import DiscoveryRunFactory, QueueEntryFactory, SourceFactory


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StubDiscovery(DiscoveryMethod):
    """Returns a canned outcome per source name (a list or an exception)."""

    method = "feed"

    def __init__(self, outcomes: dict) -> None:
        super().__init__()
        self.outcomes = outcomes
        self.calls: list[str] = []

    async def discover(self, source):
        self.calls.append(source.name)
        outcome = self.outcomes.get(source.name, [])
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


def _candidates(slug: str, count: int, hours_old: float = 1.0) -> list[Candidate]:
    published = datetime.now(tz=timezone.utc) - timedelta(hours=hours_old)
    return [
        Candidate(
            url=f"https://news.example.com/2026/03/{slug}-{i}",
            title=f"{slug} {i}",
            published_at=published,
        )
        for i in range(count)
    ]


def _orchestrator(stub: StubDiscovery, **kwargs) -> DiscoveryOrchestrator:
    kwargs.setdefault("inter_batch_delay", 0)
    return DiscoveryOrchestrator("feed", discovery=stub, **kwargs)


async def _add_sources(db, *names: str, **fields) -> list[Source]:
    sources = [SourceFactory.build(name=name, **fields) for name in names]
    db.add_all(sources)
    await db.commit()
    return sources


async def _reload(db, model, pk):
    result = await db.execute(
        select(model).where(model.id == pk).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _queue_rows(db) -> list[QueueEntry]:
    result = await db.execute(
        select(QueueEntry).order_by(QueueEntry.url).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Happy path and dedup
# ---------------------------------------------------------------------------


class TestNewAndDuplicateItems:
    async def test_new_candidates_are_queued_and_existing_urls_skipped(self, db_session) -> None:
        (source,) = await _add_sources(db_session, "Alpha", tier=1)
        found = _candidates("alpha", 5)
        db_session.add_all(
            [
                QueueEntryFactory.build(source_id=source.id, url=found[0].url),
                QueueEntryFactory.build(source_id=source.id, url=found[1].url),
            ]
        )
        await db_session.commit()

        response = await _orchestrator(StubDiscovery({"Alpha": found})).run(db_session)

        assert response["success"] is True
        summary = response["summary"]
        assert summary["sources_targeted"] == 1
        assert summary["sources_scraped"] == 1
        assert summary["articles_discovered"] == 5
        assert summary["articles_new"] == 3
        assert summary["duplicates_skipped"] == 2
        assert summary["quota_exceeded"] is False

        rows = await _queue_rows(db_session)
        assert len(rows) == 5
        new_rows = [r for r in rows if r.url not in (found[0].url, found[1].url)]
        assert {r.scrape_status for r in new_rows} == {"pending"}
        assert {r.scrape_priority for r in new_rows} == {1}
        assert all(r.raw_metadata["method"] == "feed" for r in new_rows)

        run = await _reload(db_session, DiscoveryRun, uuid.UUID(response["run_id"]))
        assert run.status == "completed"
        assert run.items_new == 3
        assert run.items_duplicate == 2
        assert run.completed_at is not None

    async def test_rerun_inserts_nothing(self, db_session) -> None:
        await _add_sources(db_session, "Alpha")
        stub = StubDiscovery({"Alpha": _candidates("alpha", 4)})

        first = await _orchestrator(stub).run(db_session)
        second = await _orchestrator(stub).run(db_session)

        assert first["summary"]["articles_new"] == 4
        assert second["summary"]["articles_new"] == 0
        assert second["summary"]["duplicates_skipped"] == 4
        assert len(await _queue_rows(db_session)) == 4

    async def test_duplicate_urls_within_one_source_count_once(self, db_session) -> None:
        await _add_sources(db_session, "Alpha")
        found = _candidates("alpha", 2)
        stub = StubDiscovery({"Alpha": found + [found[0]]})

        response = await _orchestrator(stub).run(db_session)

        assert response["summary"]["articles_discovered"] == 2
        assert response["summary"]["articles_new"] == 2

    async def test_source_industries_are_copied_to_raw_metadata(self, db_session) -> None:
        await _add_sources(db_session, "Alpha", industries=["robotics", "energy"])

        await _orchestrator(StubDiscovery({"Alpha": _candidates("alpha", 1)})).run(db_session)

        (row,) = await _queue_rows(db_session)
        assert row.raw_metadata["industries"] == ["robotics", "energy"]

    async def test_success_resets_source_health(self, db_session) -> None:
        (source,) = await _add_sources(db_session, "Alpha", consecutive_failures=4)

        await _orchestrator(StubDiscovery({"Alpha": []})).run(db_session)

        reloaded = await _reload(db_session, Source, source.id)
        assert reloaded.consecutive_failures == 0
        assert reloaded.last_successful_discovery is not None


# ---------------------------------------------------------------------------
# Recency
# ---------------------------------------------------------------------------


class TestRecencyFilter:
    async def test_old_candidates_are_dropped_and_undated_kept(self, db_session) -> None:
        await _add_sources(db_session, "Alpha")
        fresh = _candidates("fresh", 1, hours_old=2)
        old = _candidates("old", 1, hours_old=100)
        undated = [Candidate(url="https://news.example.com/undated-story")]

        response = await _orchestrator(StubDiscovery({"Alpha": fresh + old + undated})).run(
            db_session
        )

        assert response["summary"]["articles_discovered"] == 2
        urls = {r.url for r in await _queue_rows(db_session)}
        assert urls == {fresh[0].url, "https://news.example.com/undated-story"}

    async def test_source_recency_override(self, db_session) -> None:
        await _add_sources(db_session, "Alpha", monitor_config={"recency_hours": 200})
        old = _candidates("old", 1, hours_old=100)

        response = await _orchestrator(StubDiscovery({"Alpha": old})).run(db_session)

        assert response["summary"]["articles_new"] == 1


# ---------------------------------------------------------------------------
# Stale runs
# ---------------------------------------------------------------------------


class TestStaleRuns:
    async def test_stale_running_run_is_failed_and_fresh_one_kept(self, db_session) -> None:
        now = datetime.now(tz=timezone.utc)
        stale = DiscoveryRunFactory.build(started_at=now - timedelta(minutes=15))
        fresh = DiscoveryRunFactory.build(started_at=now - timedelta(minutes=5))
        other_type = DiscoveryRunFactory.build(
            run_type="search_engine", started_at=now - timedelta(minutes=30)
        )
        db_session.add_all([stale, fresh, other_type])
        await db_session.commit()

        await _orchestrator(StubDiscovery({})).run(db_session)

        assert (await _reload(db_session, DiscoveryRun, stale.id)).status == "failed"
        assert (await _reload(db_session, DiscoveryRun, fresh.id)).status == "running"
        assert (await _reload(db_session, DiscoveryRun, other_type.id)).status == "running"

        failed = await _reload(db_session, DiscoveryRun, stale.id)
        assert failed.completed_at is not None
        assert "stale run" in failed.error_summary[0]["error"]


# ---------------------------------------------------------------------------
# Failure isolation and quota
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    async def test_failing_source_does_not_stop_the_run(self, db_session) -> None:
        good, bad = await _add_sources(db_session, "A Good", "B Bad")
        stub = StubDiscovery(
            {
                "A Good": _candidates("good", 2),
                "B Bad": DiscoveryError("feed: no parseable feed found", method="feed"),
            }
        )

        response = await _orchestrator(stub).run(db_session)

        summary = response["summary"]
        assert summary["sources_scraped"] == 1
        assert summary["sources_failed"] == 1
        assert summary["articles_new"] == 2

        run = await _reload(db_session, DiscoveryRun, uuid.UUID(response["run_id"]))
        assert run.status == "partial"
        assert run.error_summary[0]["source_name"] == "B Bad"
        assert "no parseable feed" in run.error_summary[0]["error"]

        assert (await _reload(db_session, Source, bad.id)).consecutive_failures == 1
        assert (await _reload(db_session, Source, good.id)).consecutive_failures == 0

    async def test_unexpected_error_returns_error_envelope_and_fails_run(self, db_session) -> None:
        registry = MagicMock()
        registry.list_active = AsyncMock(side_effect=RuntimeError("registry unavailable"))
        orchestrator = DiscoveryOrchestrator(
            "feed", discovery=StubDiscovery({}), registry=registry, inter_batch_delay=0
        )

        response = await orchestrator.run(db_session)

        assert response["success"] is False
        assert "registry unavailable" in response["error"]
        run = await _reload(db_session, DiscoveryRun, uuid.UUID(response["run_id"]))
        assert run.status == "failed"


class TestQuotaExhaustion:
    async def test_partial_results_are_persisted_and_remaining_sources_skipped(
        self, db_session
    ) -> None:
        await _add_sources(db_session, "A", "B", "C")
        stub = StubDiscovery(
            {
                "A": _candidates("a", 1),
                "B": QuotaExceededError(
                    "quota", method="search_engine", partial_results=_candidates("b", 2)
                ),
                "C": _candidates("c", 3),
            }
        )

        response = await _orchestrator(stub, batch_size=1).run(db_session)

        summary = response["summary"]
        assert stub.calls == ["A", "B"]
        assert summary["quota_exceeded"] is True
        assert summary["sources_scraped"] == 2
        assert summary["sources_skipped"] == 1
        assert summary["sources_failed"] == 0
        assert summary["articles_new"] == 3

        run = await _reload(db_session, DiscoveryRun, uuid.UUID(response["run_id"]))
        assert run.status == "partial"

    async def test_quota_without_partials_skips_the_source(self, db_session) -> None:
        _, b, _ = await _add_sources(db_session, "A", "B", "C")
        stub = StubDiscovery(
            {"A": _candidates("a", 1), "B": QuotaExceededError("quota", method="search_engine")}
        )

        response = await _orchestrator(stub, batch_size=1).run(db_session)

        assert response["summary"]["sources_scraped"] == 1
        assert response["summary"]["sources_skipped"] == 2
        assert (await _reload(db_session, Source, b.id)).consecutive_failures == 0


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequests:
    async def test_invalid_request_returns_error_without_a_run(self, db_session) -> None:
        response = await _orchestrator(StubDiscovery({})).run(db_session, {"max_sources": 0})

        assert response["success"] is False
        assert response["error"].startswith("invalid request")
        result = await db_session.execute(select(DiscoveryRun))
        assert result.scalars().all() == []

    async def test_source_ids_and_group_narrow_the_run(self, db_session) -> None:
        _, b = await _add_sources(db_session, "A", "B", group=3)
        await _add_sources(db_session, "Other group", group=4)
        stub = StubDiscovery({})

        await _orchestrator(stub).run(db_session, {"group": 3, "source_ids": [str(b.id)]})

        assert stub.calls == ["B"]

    async def test_inactive_and_other_method_sources_are_ignored(self, db_session) -> None:
        await _add_sources(db_session, "Active")
        await _add_sources(db_session, "Inactive", active=False)
        await _add_sources(db_session, "Search", discovery_method="search_engine")
        stub = StubDiscovery({})

        response = await _orchestrator(stub).run(db_session)

        assert stub.calls == ["Active"]
        assert response["summary"]["sources_targeted"] == 1

    @pytest.mark.parametrize("max_batches,expected_calls", [(1, 2), (2, 3)])
    async def test_batch_cap_skips_overflow(
        self, db_session, max_batches: int, expected_calls: int
    ) -> None:
        await _add_sources(db_session, "A", "B", "C")
        stub = StubDiscovery({})

        response = await _orchestrator(stub, batch_size=2, max_batches=max_batches).run(
            db_session
        )

        assert len(stub.calls) == expected_calls
        assert response["summary"]["sources_skipped"] == 3 - expected_calls
