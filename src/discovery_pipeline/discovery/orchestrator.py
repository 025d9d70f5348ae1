"""Shared discovery orchestrator.

One :class:`DiscoveryOrchestrator` per discovery method drives a single
bounded invocation::

    fail stale runs -> open run record -> load sources -> batches of
    concurrent discover() calls -> per-source persist + health -> finalize

Network work runs concurrently within a batch; database work is sequential
because an :class:`~sqlalchemy.ext.asyncio.AsyncSession` must not be shared
between concurrent tasks.  Each source's queue inserts and health update are
committed together so a crash mid-run loses at most the source in flight.

Usage::

    orchestrator = DiscoveryOrchestrator("feed")
    async with session_scope() as db:
        response = await orchestrator.run(db, {"max_sources": 20})
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.core.database import dialect_name
from discovery_pipeline.core.exceptions import QuotaExceededError
from discovery_pipeline.core.metrics import discovery_items_total, discovery_runs_total
from discovery_pipeline.core.models.base import utcnow
from discovery_pipeline.core.models.queue import SCRAPE_PENDING, QueueEntry
from discovery_pipeline.core.models.runs import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_PARTIAL,
    RUN_RUNNING,
    DiscoveryRun,
)
from discovery_pipeline.core.models.sources import Source
from discovery_pipeline.core.schemas.invocations import (
    DiscoveryRequest,
    error_response,
    success_response,
)
from discovery_pipeline.core.source_registry import SourceRegistry
from discovery_pipeline.discovery.base import Candidate, DiscoveryMethod, build_discovery_client
from discovery_pipeline.discovery.config import (
    DEFAULT_MAX_SOURCES,
    DISCOVERY_BATCH_SIZE,
    INTER_BATCH_DELAY_SECONDS,
    MAX_BATCHES_PER_RUN,
    STALE_RUN_MINUTES,
)
from discovery_pipeline.discovery.registry import get_method

logger = logging.getLogger(__name__)


@dataclass
class _RunStats:
    """Mutable counters accumulated over one invocation."""

    targeted: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    discovered: int = 0
    new: int = 0
    duplicates: int = 0
    quota_exceeded: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)


class DiscoveryOrchestrator:
    """Run one discovery invocation for a single method.

    Args:
        method: Discovery method key (``"feed"``, ``"search_engine"``,
            ``"crawl_map"``).  Also the ``run_type`` of the run record.
        discovery: Optional pre-built method instance (tests inject one
            backed by respx or a stub).  When ``None`` the registered class is
            instantiated per run with a shared HTTP client.
        registry: Source registry; a default instance when ``None``.
        batch_size: Sources discovered concurrently per batch.
        inter_batch_delay: Seconds slept between batches.
        max_batches: Upper bound on batches per invocation.
    """

    def __init__(
        self,
        method: str,
        discovery: DiscoveryMethod | None = None,
        registry: SourceRegistry | None = None,
        batch_size: int = DISCOVERY_BATCH_SIZE,
        inter_batch_delay: float = INTER_BATCH_DELAY_SECONDS,
        max_batches: int = MAX_BATCHES_PER_RUN,
    ) -> None:
        self.method = method
        self._discovery = discovery
        self._registry = registry or SourceRegistry()
        self._batch_size = max(1, batch_size)
        self._inter_batch_delay = inter_batch_delay
        self._max_batches = max_batches

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fail_stale_runs(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Fail run records of this run type left ``running`` by a crashed invocation.

        Does not commit.

        Returns:
            Number of run records failed.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=STALE_RUN_MINUTES)
        result = await db.execute(
            update(DiscoveryRun)
            .where(
                DiscoveryRun.run_type == self.method,
                DiscoveryRun.status == RUN_RUNNING,
                DiscoveryRun.started_at < cutoff,
            )
            .values(
                status=RUN_FAILED,
                completed_at=now,
                error_summary=[
                    {"error": f"stale run: still running after {STALE_RUN_MINUTES} minutes"}
                ],
            )
            .execution_options(synchronize_session=False)
        )
        healed = result.rowcount or 0
        if healed:
            logger.warning(
                "discovery.stale_runs_failed",
                extra={"method": self.method, "count": healed},
            )
        return healed

    async def run(
        self,
        db: AsyncSession,
        request: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute one discovery invocation.

        Args:
            db: Session used for every read and write of the invocation.
            request: Optional :class:`DiscoveryRequest` dict.

        Returns:
            A success envelope with the run summary, or an error envelope
            when the request is invalid or the run could not proceed.
        """
        try:
            req = DiscoveryRequest.model_validate(request or {})
        except ValidationError as exc:
            return error_response(f"invalid request: {exc}")

        started = time.monotonic()
        now = utcnow()

        await self.fail_stale_runs(db, now)
        run_id = uuid.uuid4()
        db.add(DiscoveryRun(id=run_id, run_type=self.method, status=RUN_RUNNING, started_at=now))
        await db.commit()

        stats = _RunStats()
        try:
            sources = await self._registry.list_active(
                db,
                method=self.method,
                group=req.group,
                source_ids=req.source_ids,
                limit=req.max_sources or DEFAULT_MAX_SOURCES.get(self.method, 20),
            )
            stats.targeted = len(sources)
            # Detached rows keep their loaded state across per-source rollbacks.
            for source in sources:
                db.expunge(source)
            logger.info(
                "discovery.run_started",
                extra={"method": self.method, "run_id": str(run_id), "sources": len(sources)},
            )

            if self._discovery is not None:
                await self._process_sources(db, self._discovery, sources, stats, now)
            else:
                async with build_discovery_client() as client:
                    discovery = get_method(self.method)(http_client=client)
                    await self._process_sources(db, discovery, sources, stats, now)
        except Exception as exc:
            logger.exception(
                "discovery.run_failed",
                extra={"method": self.method, "run_id": str(run_id)},
            )
            await db.rollback()
            stats.errors.append({"error": str(exc)})
            await self._finalize(db, run_id, RUN_FAILED, stats, started)
            return error_response(str(exc), run_id=run_id)

        status = RUN_PARTIAL if (stats.failed or stats.quota_exceeded) else RUN_COMPLETED
        duration = await self._finalize(db, run_id, status, stats, started)

        summary = {
            "sources_targeted": stats.targeted,
            "sources_scraped": stats.successful,
            "sources_failed": stats.failed,
            "sources_skipped": stats.skipped,
            "articles_discovered": stats.discovered,
            "articles_new": stats.new,
            "duplicates_skipped": stats.duplicates,
            "quota_exceeded": stats.quota_exceeded,
            "duration_seconds": duration,
        }
        logger.info(
            "discovery.run_finished",
            extra={"method": self.method, "run_id": str(run_id), "status": status, **summary},
        )
        return success_response(summary, run_id=run_id)

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    async def _process_sources(
        self,
        db: AsyncSession,
        discovery: DiscoveryMethod,
        sources: list[Source],
        stats: _RunStats,
        now: datetime,
    ) -> None:
        batches = [
            sources[i : i + self._batch_size]
            for i in range(0, len(sources), self._batch_size)
        ]
        if len(batches) > self._max_batches:
            overflow = batches[self._max_batches :]
            stats.skipped += sum(len(batch) for batch in overflow)
            batches = batches[: self._max_batches]

        for index, batch in enumerate(batches):
            if stats.quota_exceeded:
                stats.skipped += len(batch)
                continue
            if index > 0 and self._inter_batch_delay > 0:
                await asyncio.sleep(self._inter_batch_delay)

            results = await asyncio.gather(
                *(discovery.discover(source) for source in batch),
                return_exceptions=True,
            )
            for source, result in zip(batch, results):
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    raise result
                await self._handle_result(db, discovery, source, result, stats, now)

    async def _handle_result(
        self,
        db: AsyncSession,
        discovery: DiscoveryMethod,
        source: Source,
        result: list[Candidate] | Exception,
        stats: _RunStats,
        now: datetime,
    ) -> None:
        """Persist one source's outcome and commit it."""
        if isinstance(result, QuotaExceededError):
            stats.quota_exceeded = True
            if not result.partial_results:
                # Never reached upstream; left for the next run.
                stats.skipped += 1
                return
            logger.info(
                "discovery.quota_partial",
                extra={
                    "method": self.method,
                    "source_id": str(source.id),
                    "partial": len(result.partial_results),
                },
            )
            result = list(result.partial_results)

        if isinstance(result, Exception):
            await self._record_failure(db, source, str(result) or type(result).__name__, stats)
            return

        try:
            discovered, new, duplicates = await self._persist_candidates(
                db, discovery, source, result, now
            )
            await self._registry.record_outcome(db, source.id, success=True)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            await self._record_failure(db, source, f"persist failed: {exc}", stats)
            return

        stats.successful += 1
        stats.discovered += discovered
        stats.new += new
        stats.duplicates += duplicates
        discovery_items_total.labels(method=self.method, outcome="new").inc(new)
        discovery_items_total.labels(method=self.method, outcome="duplicate").inc(duplicates)
        logger.debug(
            "discovery.source_done",
            extra={
                "method": self.method,
                "source_id": str(source.id),
                "discovered": discovered,
                "new": new,
                "duplicates": duplicates,
            },
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        source: Source,
        error: str,
        stats: _RunStats,
    ) -> None:
        stats.failed += 1
        stats.errors.append(
            {"source_id": str(source.id), "source_name": source.name, "error": error}
        )
        logger.warning(
            "discovery.source_failed",
            extra={"method": self.method, "source_id": str(source.id), "error": error},
        )
        await self._registry.record_outcome(db, source.id, success=False)
        await db.commit()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_candidates(
        self,
        db: AsyncSession,
        discovery: DiscoveryMethod,
        source: Source,
        candidates: list[Candidate],
        now: datetime,
    ) -> tuple[int, int, int]:
        """Insert new candidates as pending queue entries.

        Returns:
            ``(discovered, new, duplicates)`` where *discovered* counts the
            unique candidates inside the recency window.
        """
        unique: dict[str, Candidate] = {}
        for candidate in candidates:
            if candidate.url and candidate.url not in unique and discovery.is_recent(
                candidate, source, now
            ):
                unique[candidate.url] = candidate
        if not unique:
            return 0, 0, 0

        existing_result = await db.execute(
            select(QueueEntry.url).where(QueueEntry.url.in_(list(unique)))
        )
        existing = set(existing_result.scalars().all())
        fresh = [c for url, c in unique.items() if url not in existing]
        if not fresh:
            return len(unique), 0, len(unique)

        rows = [self._row_for(source, candidate, now) for candidate in fresh]
        inserted = await self._insert_ignoring_duplicates(db, rows)
        return len(unique), inserted, len(unique) - inserted

    def _row_for(self, source: Source, candidate: Candidate, now: datetime) -> dict[str, Any]:
        raw = {"method": self.method, **candidate.raw}
        if source.industries:
            raw["industries"] = list(source.industries)
        return {
            "id": uuid.uuid4(),
            "source_id": source.id,
            "url": candidate.url,
            "title": candidate.title,
            "description": candidate.description,
            "published_at": candidate.published_at,
            "discovered_at": now,
            "scrape_status": SCRAPE_PENDING,
            "scrape_attempts": 0,
            "scrape_priority": source.tier,
            "content_length": 0,
            "raw_metadata": raw,
        }

    async def _insert_ignoring_duplicates(
        self,
        db: AsyncSession,
        rows: list[dict[str, Any]],
    ) -> int:
        """Insert *rows*, skipping URLs inserted concurrently by another run.

        Returns:
            Number of rows actually inserted.
        """
        dialect = dialect_name(db)
        if dialect == "postgresql":
            stmt = pg_insert(QueueEntry).values(rows).on_conflict_do_nothing(index_elements=["url"])
        elif dialect == "sqlite":
            stmt = sqlite_insert(QueueEntry).values(rows).on_conflict_do_nothing(index_elements=["url"])
        else:
            stmt = insert(QueueEntry).values(rows)
        result = await db.execute(stmt)
        count = result.rowcount
        return count if count is not None and count >= 0 else len(rows)

    async def _finalize(
        self,
        db: AsyncSession,
        run_id: uuid.UUID,
        status: str,
        stats: _RunStats,
        started: float,
    ) -> float:
        """Write the final counters and status onto the run record and commit."""
        duration = round(time.monotonic() - started, 3)
        await db.execute(
            update(DiscoveryRun)
            .where(DiscoveryRun.id == run_id)
            .values(
                status=status,
                completed_at=utcnow(),
                sources_targeted=stats.targeted,
                sources_successful=stats.successful,
                sources_failed=stats.failed,
                items_discovered=stats.discovered,
                items_new=stats.new,
                items_duplicate=stats.duplicates,
                duration_seconds=duration,
                error_summary=stats.errors or None,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        discovery_runs_total.labels(method=self.method, status=status).inc()
        return duration
