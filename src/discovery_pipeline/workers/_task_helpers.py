"""Async bodies of the Celery tasks in ``workers/tasks.py``.

Each helper opens its own session via ``session_scope`` because Celery task
bodies call them through ``asyncio.run()``: every invocation gets a fresh
event loop with no pre-existing session.  Keeping them apart from the task
module makes them testable without importing the Celery application.
"""

from __future__ import annotations

from typing import Any

from discovery_pipeline.core.database import session_scope
from discovery_pipeline.core.retention_service import RetentionService
from discovery_pipeline.discovery.orchestrator import DiscoveryOrchestrator
from discovery_pipeline.enrichment.service import MetadataEnricher
from discovery_pipeline.jobs.queue import JobQueue
from discovery_pipeline.scraper.queue import ScrapeQueue
from discovery_pipeline.scraper.worker import ScrapeWorker

_retention_service = RetentionService()


async def run_discovery(method: str, request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run one discovery invocation for *method*."""
    async with session_scope() as db:
        return await DiscoveryOrchestrator(method).run(db, request)


async def run_scrape_batch(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Process one scrape-queue batch."""
    async with session_scope() as db:
        return await ScrapeWorker().run(db, request)


async def run_enrichment(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Enrich one batch of queue entries with extracted metadata."""
    async with session_scope() as db:
        return await MetadataEnricher().run(db, request)


async def requeue_stale(minutes: int) -> dict[str, int]:
    """Return abandoned ``processing`` queue entries and jobs to ``pending``.

    Returns:
        Dict with ``queue_entries`` and ``jobs`` requeued.
    """
    async with session_scope() as db:
        entries = await ScrapeQueue().requeue_stale(db, minutes)
        jobs = await JobQueue().requeue_stale(db, minutes)
        await db.commit()
    return {"queue_entries": entries, "jobs": jobs}


async def run_cleanup(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run one retention/cleanup invocation."""
    async with session_scope() as db:
        return await _retention_service.run(db, request)
