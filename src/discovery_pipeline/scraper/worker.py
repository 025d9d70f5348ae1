"""Scrape worker: one bounded pass over the scrape queue.

Each invocation:

1. claims a batch of queue rows (see :mod:`discovery_pipeline.scraper.queue`)
   and commits the lease before any network I/O;
2. fetches and extracts the pages with at most ``scrape_concurrency``
   requests in flight, each under a hard ``asyncio.wait_for`` timeout, using
   the Redis content cache to skip recently fetched URLs;
3. writes every outcome back (``completed`` or ``failed`` with one attempt
   charged) and commits.

Per-item failures never affect the rest of the batch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.exceptions import (
    PermanentContentError,
    PipelineError,
    TransientFetchError,
)
from discovery_pipeline.core.metrics import scrape_outcomes_total
from discovery_pipeline.core.redis_client import get_redis_client
from discovery_pipeline.core.schemas.invocations import (
    ScrapeRequest,
    error_response,
    success_response,
)
from discovery_pipeline.scraper.cache import ContentCache
from discovery_pipeline.scraper.content_extractor import ExtractedContent, extract_from_html
from discovery_pipeline.scraper.http_fetcher import fetch_url
from discovery_pipeline.scraper.queue import ClaimedEntry, ScrapeQueue
from discovery_pipeline.scraper.quality import validate_content

logger = logging.getLogger(__name__)


async def fetch_content(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float,
) -> ExtractedContent:
    """Fetch *url* and extract its article text.

    The result is not validated; see
    :func:`~discovery_pipeline.scraper.quality.validate_content`.

    Raises:
        TransientFetchError: Network error, timeout, 5xx or 429.
        PermanentContentError: Other HTTP errors or binary content.
    """
    result = await fetch_url(url, client=client, timeout=timeout)
    if result.error is not None or result.html is None:
        error = result.error or "empty response"
        if result.transient:
            raise TransientFetchError(error, url=url, status_code=result.status_code)
        raise PermanentContentError(error, url=url, reason="fetch_rejected")

    return extract_from_html(result.html, result.final_url or url)


@dataclass
class _Outcome:
    entry: ClaimedEntry
    content: ExtractedContent | None = None
    error: str | None = None
    cache_hit: bool = False
    flags: dict[str, bool] = field(default_factory=dict)


class ScrapeWorker:
    """Process one batch of the scrape queue.

    Args:
        queue: Queue accessor; a default :class:`ScrapeQueue` when ``None``.
        cache: Content cache; built on the shared Redis client when ``None``.
        http_client: Optional injected HTTP client (tests use respx).
        concurrency: Concurrent fetches; ``Settings.scrape_concurrency`` by default.
        timeout: Hard per-item timeout in seconds.
    """

    def __init__(
        self,
        queue: ScrapeQueue | None = None,
        cache: ContentCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._queue = queue or ScrapeQueue()
        self._cache = cache or ContentCache(get_redis_client(), settings.content_cache_ttl_seconds)
        self._http_client = http_client
        self._concurrency = max(1, concurrency or settings.scrape_concurrency)
        self._timeout = timeout or settings.scrape_timeout_seconds
        self._default_batch_size = settings.scrape_batch_size
        self._user_agent = settings.http_user_agent

    async def run(
        self,
        db: AsyncSession,
        request: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Claim, scrape and resolve one batch.

        Returns:
            Success envelope with ``claimed``, ``completed``, ``failed``,
            ``terminal_failures``, ``cache_hits``, ``limited_content`` (pages
            stored with a paywall or cookie-wall flag) and ``duration_seconds``.
        """
        try:
            req = ScrapeRequest.model_validate(request or {})
        except ValidationError as exc:
            return error_response(f"invalid request: {exc}")

        started = time.monotonic()
        batch_size = req.batch_size or self._default_batch_size

        claimed = await self._queue.claim_batch(db, batch_size)
        await db.commit()

        summary: dict[str, Any] = {
            "claimed": len(claimed),
            "completed": 0,
            "failed": 0,
            "terminal_failures": 0,
            "cache_hits": 0,
            "limited_content": 0,
            "duration_seconds": 0.0,
        }
        if not claimed:
            summary["duration_seconds"] = round(time.monotonic() - started, 3)
            return success_response(summary)

        outcomes = await self._scrape_all(claimed)

        for outcome in outcomes:
            if outcome.cache_hit:
                summary["cache_hits"] += 1
            if outcome.content is not None and outcome.content.text:
                await self._queue.mark_completed(
                    db,
                    outcome.entry.id,
                    outcome.content.text,
                    published_at=outcome.content.published_at,
                    flags=outcome.flags,
                )
                summary["completed"] += 1
                if outcome.flags.get("limited_content"):
                    summary["limited_content"] += 1
                scrape_outcomes_total.labels(outcome="completed").inc()
                continue

            terminal = await self._queue.mark_failed(db, outcome.entry, outcome.error or "unknown error")
            summary["failed"] += 1
            if terminal:
                summary["terminal_failures"] += 1
                scrape_outcomes_total.labels(outcome="terminal").inc()
            else:
                scrape_outcomes_total.labels(outcome="failed").inc()
        await db.commit()

        summary["duration_seconds"] = round(time.monotonic() - started, 3)
        logger.info("scrape_worker.batch_done", extra=summary)
        return success_response(summary)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _scrape_all(self, claimed: list[ClaimedEntry]) -> list[_Outcome]:
        semaphore = asyncio.Semaphore(self._concurrency)
        if self._http_client is not None:
            return list(
                await asyncio.gather(
                    *(self._scrape_guarded(self._http_client, entry, semaphore) for entry in claimed)
                )
            )
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": self._user_agent},
        ) as client:
            return list(
                await asyncio.gather(
                    *(self._scrape_guarded(client, entry, semaphore) for entry in claimed)
                )
            )

    async def _scrape_guarded(
        self,
        client: httpx.AsyncClient,
        entry: ClaimedEntry,
        semaphore: asyncio.Semaphore,
    ) -> _Outcome:
        """Scrape one entry, converting every failure into an outcome."""
        async with semaphore:
            try:
                return await asyncio.wait_for(self._scrape_one(client, entry), timeout=self._timeout)
            except asyncio.TimeoutError:
                error = f"timeout after {self._timeout:.0f}s"
            except PipelineError as exc:
                error = str(exc)
            except Exception as exc:  # noqa: BLE001
                logger.exception("scrape_worker: unexpected error for %s", entry.url)
                error = f"unexpected error: {exc}"
        logger.info(
            "scrape_worker.item_failed",
            extra={"entry_id": str(entry.id), "url": entry.url, "error": error},
        )
        return _Outcome(entry=entry, error=error)

    async def _scrape_one(self, client: httpx.AsyncClient, entry: ClaimedEntry) -> _Outcome:
        cached = await self._cache.get(entry.url)
        if cached is not None:
            flags = validate_content(cached.text, cached.title, entry.url)
            return _Outcome(entry=entry, content=cached, cache_hit=True, flags=flags)

        content = await fetch_content(entry.url, client=client, timeout=self._timeout)
        flags = validate_content(content.text, content.title, entry.url)
        await self._cache.set(entry.url, content)
        return _Outcome(entry=entry, content=content, flags=flags)
