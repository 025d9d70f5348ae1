"""Built-in job handlers.

* ``cache_warming`` -- payload ``{"urls": [...]}``.  Fetches, extracts and
  validates each URL and stores the result in the content cache so a later
  scrape pass is a cache hit.  URLs already cached are skipped.
* ``metadata_extraction`` -- payload ``{"entry_id": "<uuid>"}``.  Runs the
  metadata extractor for one queue entry and stores the result.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.exceptions import PipelineError
from discovery_pipeline.core.redis_client import get_redis_client
from discovery_pipeline.enrichment.service import MetadataEnricher
from discovery_pipeline.jobs.registry import job_handler
from discovery_pipeline.scraper.cache import ContentCache
from discovery_pipeline.scraper.quality import validate_content
from discovery_pipeline.scraper.worker import fetch_content

logger = logging.getLogger(__name__)


@job_handler("cache_warming")
async def warm_content_cache(db: AsyncSession, payload: dict[str, Any]) -> dict[str, Any]:  # noqa: ARG001
    """Pre-fetch pages into the content cache.

    Raises:
        ValueError: If ``payload["urls"]`` is missing or not a list.
    """
    urls = payload.get("urls")
    if not isinstance(urls, list):
        raise ValueError("cache_warming payload requires a 'urls' list")

    settings = get_settings()
    cache = ContentCache(get_redis_client(), settings.content_cache_ttl_seconds)
    semaphore = asyncio.Semaphore(settings.scrape_concurrency)
    counts = {"cached": 0, "skipped": 0, "failed": 0}

    async def warm(client: httpx.AsyncClient, url: str) -> None:
        async with semaphore:
            if await cache.get(url) is not None:
                counts["skipped"] += 1
                return
            try:
                content = await asyncio.wait_for(
                    fetch_content(url, client=client, timeout=settings.scrape_timeout_seconds),
                    timeout=settings.scrape_timeout_seconds,
                )
                validate_content(content.text, content.title, url)
            except (PipelineError, asyncio.TimeoutError) as exc:
                logger.info("cache_warming: %s not cached: %s", url, exc)
                counts["failed"] += 1
                return
            if await cache.set(url, content):
                counts["cached"] += 1
            else:
                counts["failed"] += 1

    async with httpx.AsyncClient(
        timeout=settings.scrape_timeout_seconds,
        follow_redirects=True,
        headers={"User-Agent": settings.http_user_agent},
    ) as client:
        await asyncio.gather(*(warm(client, url) for url in urls if isinstance(url, str)))
    return counts


@job_handler("metadata_extraction")
async def extract_entry_metadata(db: AsyncSession, payload: dict[str, Any]) -> dict[str, Any]:
    """Extract and store metadata for one queue entry.

    Raises:
        ValueError: If ``payload["entry_id"]`` is not a UUID.
    """
    entry_id = uuid.UUID(str(payload.get("entry_id")))
    metadata = await MetadataEnricher().enrich_entry(db, entry_id)
    if metadata is None:
        logger.info("metadata_extraction: entry %s no longer exists", entry_id)
        return {"entry_id": str(entry_id), "found": False}
    return {"entry_id": str(entry_id), "found": True, "type": metadata["type"]}
