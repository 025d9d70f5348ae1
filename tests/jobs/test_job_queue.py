"""Unit tests for the generic job queue.

Tests cover:
- enqueue() defaults
- claim_next() order: priority ascending, then oldest first
- complete() stores the handler result
- fail(): retry below max_attempts, terminal at max_attempts or on request
- requeue_stale() returns abandoned ``processing`` jobs to ``pending``
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from discovery_pipeline.core.exceptions import TerminalAttemptsExceeded
from discovery_pipeline.core.models.jobs import Job
from discovery_pipeline.jobs.queue import JobQueue
from tests.factories import JobFactory


async def _add(db, **fields) -> Job:
    job = JobFactory.build(**fields)
    db.add(job)
    await db.commit()
    return job


async def _reload(db, job_id) -> Job:
    result = await db.execute(
        select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestEnqueue:
    async def test_defaults(self, db_session) -> None:
        job = await JobQueue().enqueue(db_session, "cache_warming", {"urls": []})
        await db_session.commit()

        row = await _reload(db_session, job.id)
        assert row.status == "pending"
        assert row.attempts == 0
        assert row.max_attempts == 3
        assert row.priority == 5
        assert row.payload == {"urls": []}


class TestClaimNext:
    async def test_priority_then_oldest(self, db_session, now) -> None:
        await _add(db_session, priority=5, created_at=now - timedelta(hours=3))
        urgent_new = await _add(db_session, priority=1, created_at=now)
        urgent_old = await _add(db_session, priority=1, created_at=now - timedelta(hours=1))

        queue = JobQueue()
        first = await queue.claim_next(db_session, "worker-a", now=now)
        second = await queue.claim_next(db_session, "worker-a", now=now)
        await db_session.commit()

        assert first.id == urgent_old.id
        assert second.id == urgent_new.id
        assert first.status == "processing"
        assert first.worker_id == "worker-a"

    async def test_processing_and_terminal_jobs_are_skipped(self, db_session, now) -> None:
        await _add(db_session, status="processing")
        await _add(db_session, status="completed")
        await _add(db_session, status="failed", attempts=3)

        assert await JobQueue().claim_next(db_session, "worker-a", now=now) is None

    async def test_empty_queue(self, db_session) -> None:
        assert await JobQueue().claim_next(db_session, "worker-a") is None


class TestResolve:
    async def test_complete_stores_result(self, db_session, now) -> None:
        await _add(db_session)
        queue = JobQueue()
        job = await queue.claim_next(db_session, "worker-a", now=now)

        await queue.complete(db_session, job, {"cached": 2})
        await db_session.commit()

        row = await _reload(db_session, job.id)
        assert row.status == "completed"
        assert row.result == {"cached": 2}
        assert row.completed_at is not None

    @pytest.mark.parametrize(
        ("prior_attempts", "terminal_flag", "expected_status", "expected_terminal"),
        [
            (0, False, "pending", False),
            (1, False, "pending", False),
            (2, False, "failed", True),
            (0, True, "failed", True),
        ],
    )
    async def test_fail(
        self,
        db_session,
        now,
        prior_attempts,
        terminal_flag,
        expected_status,
        expected_terminal,
    ) -> None:
        await _add(db_session, attempts=prior_attempts)
        queue = JobQueue()
        job = await queue.claim_next(db_session, "worker-a", now=now)

        terminal = await queue.fail(db_session, job, "boom", terminal=terminal_flag)
        await db_session.commit()

        row = await _reload(db_session, job.id)
        assert terminal is expected_terminal
        assert row.status == expected_status
        assert row.attempts == prior_attempts + 1
        assert row.last_error == "boom"

    async def test_fail_truncates_error(self, db_session, now) -> None:
        await _add(db_session)
        queue = JobQueue()
        job = await queue.claim_next(db_session, "worker-a", now=now)

        await queue.fail(db_session, job, "x" * 5_000)
        await db_session.commit()

        assert len((await _reload(db_session, job.id)).last_error) == 2_000

    async def test_fail_on_spent_job_raises(self, db_session) -> None:
        job = await _add(db_session, status="processing", attempts=3, max_attempts=3)

        with pytest.raises(TerminalAttemptsExceeded):
            await JobQueue().fail(db_session, job, "boom")


class TestRequeueStale:
    async def test_only_stale_processing_jobs(self, db_session, now) -> None:
        stale = await _add(
            db_session,
            status="processing",
            attempts=1,
            worker_id="dead-worker",
            started_at=now - timedelta(hours=1),
        )
        live = await _add(db_session, status="processing", started_at=now - timedelta(minutes=5))

        requeued = await JobQueue().requeue_stale(db_session, 30, now=now)
        await db_session.commit()

        assert requeued == 1
        row = await _reload(db_session, stale.id)
        assert row.status == "pending"
        assert row.attempts == 1
        assert row.worker_id is None
        assert (await _reload(db_session, live.id)).status == "processing"
