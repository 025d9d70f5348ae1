"""Celery tasks driven by the Beat schedule in ``workers/beat_schedule.py``.

- ``discover_feeds`` / ``discover_search`` / ``discover_crawl`` -- one
  discovery orchestrator invocation for the matching method.
- ``scrape_queue_batch`` -- claim and scrape one batch of the scrape queue.
- ``enrich_metadata_batch`` -- extract metadata for entries that lack it.
- ``requeue_stale_processing`` -- return claims abandoned by crashed
  invocations to ``pending`` (scrape queue and job queue).
- ``cleanup_expired_data`` -- batched retention enforcement.

All tasks are synchronous Celery tasks that bridge to async DB operations via
``asyncio.run()``.  The async bodies live in ``workers._task_helpers``.

Error handling policy: each task catches all exceptions at the outermost
level, logs them at ERROR level, and returns an error envelope without
re-raising.  Every task runs again on its next schedule tick, so a Celery
retry would only duplicate work.

Each task accepts an optional ``request`` dict that is passed unchanged to
the underlying unit, so manual invocations can narrow a run::

    discover_feeds.delay(request={"group": 3})
    cleanup_expired_data.delay(request={"dry_run": True})
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.metrics import celery_task_duration_seconds, celery_tasks_total
from discovery_pipeline.core.models.sources import (
    METHOD_CRAWL_MAP,
    METHOD_FEED,
    METHOD_SEARCH_ENGINE,
)
from discovery_pipeline.core.schemas.invocations import error_response, success_response
from discovery_pipeline.workers import _task_helpers
from discovery_pipeline.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)
_stdlib_logger = logging.getLogger(__name__)

settings = get_settings()


def _record_metrics(task_name: str, status: str, started: float) -> None:
    try:
        celery_tasks_total.labels(task_name=task_name, status=status).inc()
        celery_task_duration_seconds.labels(task_name=task_name).observe(
            time.perf_counter() - started
        )
    except Exception as _metrics_exc:  # noqa: BLE001
        _stdlib_logger.debug("%s: metrics recording failed: %s", task_name, _metrics_exc)


def _run_invocation(
    task_name: str,
    body: Callable[[], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    """Run an async invocation body and translate its outcome for Celery.

    Returns:
        The invocation envelope, or an error envelope when the body raised.
    """
    started = time.perf_counter()
    log = logger.bind(task=task_name)
    log.info(f"{task_name}: starting")

    try:
        response = asyncio.run(body())
    except Exception as exc:
        log.error(f"{task_name}: error", error=str(exc), exc_info=True)
        _record_metrics(task_name, "failure", started)
        return error_response(str(exc))

    status = "success" if response.get("success") else "failure"
    log.info(
        f"{task_name}: complete",
        success=response.get("success"),
        run_id=response.get("run_id"),
        summary=response.get("summary"),
        error=response.get("error"),
    )
    _record_metrics(task_name, status, started)
    return response


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@celery_app.task(name="discovery_pipeline.workers.tasks.discover_feeds")
def discover_feeds(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run feed discovery over active feed sources."""
    return _run_invocation(
        "discover_feeds", lambda: _task_helpers.run_discovery(METHOD_FEED, request)
    )


@celery_app.task(name="discovery_pipeline.workers.tasks.discover_search")
def discover_search(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run search-engine discovery over active search sources."""
    return _run_invocation(
        "discover_search", lambda: _task_helpers.run_discovery(METHOD_SEARCH_ENGINE, request)
    )


@celery_app.task(name="discovery_pipeline.workers.tasks.discover_crawl")
def discover_crawl(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run crawl-map discovery over active crawl sources."""
    return _run_invocation(
        "discover_crawl", lambda: _task_helpers.run_discovery(METHOD_CRAWL_MAP, request)
    )


# ---------------------------------------------------------------------------
# Scrape queue and enrichment
# ---------------------------------------------------------------------------


@celery_app.task(name="discovery_pipeline.workers.tasks.scrape_queue_batch")
def scrape_queue_batch(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Claim and scrape one batch of the scrape queue."""
    return _run_invocation("scrape_queue_batch", lambda: _task_helpers.run_scrape_batch(request))


@celery_app.task(name="discovery_pipeline.workers.tasks.enrich_metadata_batch")
def enrich_metadata_batch(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Extract metadata for queue entries that have none yet."""
    return _run_invocation("enrich_metadata_batch", lambda: _task_helpers.run_enrichment(request))


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@celery_app.task(name="discovery_pipeline.workers.tasks.requeue_stale_processing")
def requeue_stale_processing(minutes: int | None = None) -> dict[str, Any]:
    """Return queue entries and jobs stuck in ``processing`` to ``pending``.

    Args:
        minutes: Staleness threshold; ``Settings.stale_processing_minutes``
            by default.
    """
    threshold = minutes or settings.stale_processing_minutes

    async def body() -> dict[str, Any]:
        counts = await _task_helpers.requeue_stale(threshold)
        return success_response({**counts, "minutes": threshold})

    return _run_invocation("requeue_stale_processing", body)


@celery_app.task(name="discovery_pipeline.workers.tasks.cleanup_expired_data")
def cleanup_expired_data(request: dict[str, Any] | None = None) -> dict[str, Any]:
    """Delete expired queue entries, run records and terminal jobs."""
    return _run_invocation("cleanup_expired_data", lambda: _task_helpers.run_cleanup(request))
