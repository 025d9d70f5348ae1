"""Retention enforcement for the work-queue tables.

Removes data that has outlived its usefulness:

1. **Queue entries** discovered more than ``hours_to_keep`` hours ago (72 by
   default), together with the ``entry_matches`` rows that reference them.
   Dependents are always deleted before their parents, in the same
   transaction.
2. **Discovery run records** that finished more than ``run_retention_days``
   days ago.
3. **Jobs** in a terminal state (``completed`` / ``failed``) older than
   ``job_retention_days`` days.

Deletes run in id batches of ``batch_size`` with a commit per batch and at
most ``max_batches`` batches per table per invocation, so a large backlog is
worked off over several scheduled runs instead of one long transaction.  A
database error rolls the current batch back and raises
:class:`~discovery_pipeline.core.exceptions.DataIntegrityError`; batches
already committed stay deleted.

With ``dry_run=True`` nothing is modified and the summary reports what a real
run would delete.

Usage::

    service = RetentionService()
    async with session_scope() as db:
        summary = await service.cleanup(db, hours_to_keep=72, dry_run=True)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.exceptions import DataIntegrityError
from discovery_pipeline.core.models.base import utcnow
from discovery_pipeline.core.models.jobs import JOB_COMPLETED, JOB_FAILED, Job
from discovery_pipeline.core.models.queue import EntryMatch, QueueEntry
from discovery_pipeline.core.models.runs import RUN_RUNNING, DiscoveryRun
from discovery_pipeline.core.schemas.invocations import (
    CleanupRequest,
    error_response,
    success_response,
)

logger = logging.getLogger(__name__)


@dataclass
class _PurgeResult:
    deleted: int = 0
    dependents: int = 0
    batches: int = 0
    complete: bool = True


class RetentionService:
    """Batched, fail-closed cleanup of expired rows.

    Stateless: a single instance can be reused across invocations.  Unlike
    most services, :meth:`cleanup` commits itself (once per batch).
    """

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def cleanup(
        self,
        db: AsyncSession,
        hours_to_keep: int | None = None,
        run_retention_days: int | None = None,
        job_retention_days: int | None = None,
        batch_size: int = 500,
        max_batches: int = 20,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Delete (or count) expired queue entries, run records and jobs.

        Args:
            db: Active async database session.
            hours_to_keep: Queue-entry retention in hours; settings default.
            run_retention_days: Run-record retention in days; settings default.
            job_retention_days: Terminal-job retention in days; settings default.
            batch_size: Rows deleted per batch.
            max_batches: Batch cap per table.
            dry_run: Count only.
            now: Reference time; defaults to the current UTC time.

        Returns:
            Summary with ``dry_run``, ``cutoff`` (queue cutoff, ISO 8601),
            per-table counts, ``batches`` and ``complete`` (``False`` when a
            batch cap was reached with rows left over).

        Raises:
            DataIntegrityError: When a batch cannot be deleted.
        """
        settings = get_settings()
        now = now or utcnow()
        queue_cutoff = now - timedelta(hours=hours_to_keep or settings.queue_retention_hours)
        run_cutoff = now - timedelta(days=run_retention_days or settings.run_retention_days)
        job_cutoff = now - timedelta(days=job_retention_days or settings.job_retention_days)

        if dry_run:
            summary = await self._count_expired(db, queue_cutoff, run_cutoff, job_cutoff)
            summary["cutoff"] = queue_cutoff.isoformat()
            logger.info("retention.dry_run", extra=summary)
            return summary

        queue = await self._purge_queue_entries(db, queue_cutoff, batch_size, max_batches)
        runs = await self._purge(
            db,
            DiscoveryRun,
            (DiscoveryRun.started_at < run_cutoff, DiscoveryRun.status != RUN_RUNNING),
            DiscoveryRun.started_at,
            batch_size,
            max_batches,
        )
        jobs = await self._purge(
            db,
            Job,
            (Job.created_at < job_cutoff, Job.status.in_((JOB_COMPLETED, JOB_FAILED))),
            Job.created_at,
            batch_size,
            max_batches,
        )

        summary: dict[str, Any] = {
            "dry_run": False,
            "cutoff": queue_cutoff.isoformat(),
            "queue_entries": queue.deleted,
            "entry_matches": queue.dependents,
            "discovery_runs": runs.deleted,
            "jobs": jobs.deleted,
            "batches": queue.batches + runs.batches + jobs.batches,
            "complete": queue.complete and runs.complete and jobs.complete,
        }
        logger.info("retention.cleanup_complete", extra=summary)
        return summary

    async def run(self, db: AsyncSession, request: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invocation wrapper around :meth:`cleanup`."""
        try:
            req = CleanupRequest.model_validate(request or {})
        except ValidationError as exc:
            return error_response(f"invalid request: {exc}")

        started = time.monotonic()
        try:
            summary = await self.cleanup(
                db,
                hours_to_keep=req.hours_to_keep,
                run_retention_days=req.run_retention_days,
                job_retention_days=req.job_retention_days,
                batch_size=req.batch_size,
                max_batches=req.max_batches,
                dry_run=req.dry_run,
            )
        except DataIntegrityError as exc:
            return error_response(f"cleanup aborted on {exc.table}: {exc}")
        summary["duration_seconds"] = round(time.monotonic() - started, 3)
        return success_response(summary)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _count_expired(
        self,
        db: AsyncSession,
        queue_cutoff: datetime,
        run_cutoff: datetime,
        job_cutoff: datetime,
    ) -> dict[str, Any]:
        expired_ids = select(QueueEntry.id).where(QueueEntry.discovered_at < queue_cutoff)
        entries = await db.scalar(
            select(func.count()).select_from(QueueEntry).where(QueueEntry.discovered_at < queue_cutoff)
        )
        matches = await db.scalar(
            select(func.count()).select_from(EntryMatch).where(EntryMatch.entry_id.in_(expired_ids))
        )
        runs = await db.scalar(
            select(func.count())
            .select_from(DiscoveryRun)
            .where(DiscoveryRun.started_at < run_cutoff, DiscoveryRun.status != RUN_RUNNING)
        )
        jobs = await db.scalar(
            select(func.count())
            .select_from(Job)
            .where(Job.created_at < job_cutoff, Job.status.in_((JOB_COMPLETED, JOB_FAILED)))
        )
        return {
            "dry_run": True,
            "queue_entries": entries or 0,
            "entry_matches": matches or 0,
            "discovery_runs": runs or 0,
            "jobs": jobs or 0,
            "batches": 0,
            "complete": True,
        }

    async def _purge_queue_entries(
        self,
        db: AsyncSession,
        cutoff: datetime,
        batch_size: int,
        max_batches: int,
    ) -> _PurgeResult:
        """Delete expired entries and their matches, one committed batch at a time."""
        result = _PurgeResult()
        while True:
            try:
                ids = list(
                    (
                        await db.execute(
                            select(QueueEntry.id)
                            .where(QueueEntry.discovered_at < cutoff)
                            .order_by(QueueEntry.discovered_at)
                            .limit(batch_size)
                        )
                    )
                    .scalars()
                    .all()
                )
                if not ids:
                    return result
                if result.batches >= max_batches:
                    result.complete = False
                    return result

                matches = await db.execute(
                    delete(EntryMatch)
                    .where(EntryMatch.entry_id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
                entries = await db.execute(
                    delete(QueueEntry)
                    .where(QueueEntry.id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error(
                    "retention.batch_failed",
                    extra={"table": "queue_entries", "batch": result.batches + 1, "error": str(exc)},
                )
                raise DataIntegrityError(
                    f"failed to delete queue entry batch {result.batches + 1}: {exc}",
                    table="queue_entries",
                ) from exc

            result.batches += 1
            result.dependents += matches.rowcount or 0
            result.deleted += entries.rowcount or 0
            if len(ids) < batch_size:
                return result

    async def _purge(
        self,
        db: AsyncSession,
        model: type[DiscoveryRun] | type[Job],
        conditions: tuple[Any, ...],
        order_column: Any,
        batch_size: int,
        max_batches: int,
    ) -> _PurgeResult:
        """Delete rows of a table without dependents in committed batches."""
        table = model.__tablename__
        result = _PurgeResult()
        while True:
            try:
                ids = list(
                    (
                        await db.execute(
                            select(model.id).where(*conditions).order_by(order_column).limit(batch_size)
                        )
                    )
                    .scalars()
                    .all()
                )
                if not ids:
                    return result
                if result.batches >= max_batches:
                    result.complete = False
                    return result

                deleted = await db.execute(
                    delete(model).where(model.id.in_(ids)).execution_options(synchronize_session=False)
                )
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.error(
                    "retention.batch_failed",
                    extra={"table": table, "batch": result.batches + 1, "error": str(exc)},
                )
                raise DataIntegrityError(
                    f"failed to delete {table} batch {result.batches + 1}: {exc}",
                    table=table,
                ) from exc

            result.batches += 1
            result.deleted += deleted.rowcount or 0
            if len(ids) < batch_size:
                return result
