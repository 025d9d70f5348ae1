"""Generic background job queue backed by the ``jobs`` table.

State machine::

    pending ──claim──▶ processing ──▶ completed
                          │
                          ├──▶ pending  (attempts < max_attempts)
                          └──▶ failed   (attempts >= max_attempts, terminal)

:meth:`JobQueue.claim_next` leases a single job.  On PostgreSQL the lease is
one ``UPDATE ... WHERE id = (SELECT ... FOR UPDATE SKIP LOCKED) RETURNING``
statement; on other backends the oldest candidate is claimed with a
conditional ``UPDATE ... WHERE id = :id AND status = 'pending'`` and a caller
that loses the race gets ``None`` and polls again.

Methods never commit; the worker commits after each state change.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.core.database import dialect_name
from discovery_pipeline.core.exceptions import TerminalAttemptsExceeded
from discovery_pipeline.core.models.base import utcnow
from discovery_pipeline.core.models.jobs import (
    DEFAULT_JOB_MAX_ATTEMPTS,
    DEFAULT_JOB_PRIORITY,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    Job,
)

logger = logging.getLogger(__name__)

_MAX_ERROR_CHARS = 2_000


class JobQueue:
    """Enqueue, lease and resolve generic jobs."""

    async def enqueue(
        self,
        db: AsyncSession,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: int = DEFAULT_JOB_PRIORITY,
        max_attempts: int = DEFAULT_JOB_MAX_ATTEMPTS,
    ) -> Job:
        """Add a ``pending`` job.  Flushes so ``job.id`` is populated; does not commit."""
        job = Job(
            id=uuid.uuid4(),
            job_type=job_type,
            payload=payload or {},
            status=JOB_PENDING,
            attempts=0,
            max_attempts=max_attempts,
            priority=priority,
            created_at=utcnow(),
        )
        db.add(job)
        await db.flush()
        logger.debug("job_queue: enqueued %s job %s", job_type, job.id)
        return job

    async def claim_next(
        self,
        db: AsyncSession,
        worker_id: str,
        now: datetime | None = None,
    ) -> Job | None:
        """Lease the highest-priority, oldest pending job.

        Returns:
            The claimed :class:`Job` (status ``processing``), or ``None`` when
            the queue is empty or another worker won the race.
        """
        now = now or utcnow()
        values = {"status": JOB_PROCESSING, "worker_id": worker_id, "started_at": now}

        if dialect_name(db) == "postgresql":
            candidate = (
                select(Job.id)
                .where(Job.status == JOB_PENDING)
                .order_by(Job.priority.asc(), Job.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
                .scalar_subquery()
            )
            result = await db.execute(
                update(Job)
                .where(Job.id == candidate)
                .values(**values)
                .returning(Job)
                .execution_options(synchronize_session=False, populate_existing=True)
            )
            return result.scalars().first()

        job_id = await db.scalar(
            select(Job.id)
            .where(Job.status == JOB_PENDING)
            .order_by(Job.priority.asc(), Job.created_at.asc())
            .limit(1)
        )
        if job_id is None:
            return None
        result = await db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JOB_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.debug("job_queue: lost claim race for %s", job_id)
            return None
        return (
            await db.execute(
                select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
            )
        ).scalar_one()

    async def complete(
        self,
        db: AsyncSession,
        job: Job,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Mark *job* ``completed`` and store the handler result."""
        await db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JOB_PROCESSING)
            .values(status=JOB_COMPLETED, result=result, completed_at=utcnow(), last_error=None)
            .execution_options(synchronize_session=False)
        )

    async def fail(
        self,
        db: AsyncSession,
        job: Job,
        error: str,
        terminal: bool = False,
    ) -> bool:
        """Charge one attempt to *job*; requeue it or fail it terminally.

        *terminal* skips remaining attempts (e.g. no handler exists).

        Returns:
            ``True`` when the job is now terminally ``failed``.

        Raises:
            TerminalAttemptsExceeded: If *job* had already spent its attempts.
        """
        if job.attempts >= job.max_attempts:
            raise TerminalAttemptsExceeded(
                f"job {job.id} already failed {job.attempts} times",
                attempts=job.attempts,
                max_attempts=job.max_attempts,
            )
        attempts = job.attempts + 1
        terminal = terminal or attempts >= job.max_attempts
        values: dict[str, Any] = {
            "attempts": attempts,
            "last_error": error[:_MAX_ERROR_CHARS],
            "status": JOB_FAILED if terminal else JOB_PENDING,
        }
        if terminal:
            values["completed_at"] = utcnow()
        await db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JOB_PROCESSING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return terminal

    async def requeue_stale(
        self,
        db: AsyncSession,
        minutes: int,
        now: datetime | None = None,
    ) -> int:
        """Return jobs stuck ``processing`` for over *minutes* to ``pending``.

        Attempts are not charged.

        Returns:
            Number of jobs requeued.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=minutes)
        result = await db.execute(
            update(Job)
            .where(
                Job.status == JOB_PROCESSING,
                or_(Job.started_at.is_(None), Job.started_at < cutoff),
            )
            .values(status=JOB_PENDING, worker_id=None)
            .execution_options(synchronize_session=False)
        )
        requeued = result.rowcount or 0
        if requeued:
            logger.warning("job_queue.stale_requeued", extra={"count": requeued, "minutes": minutes})
        return requeued
