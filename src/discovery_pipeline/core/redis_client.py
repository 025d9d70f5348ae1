"""Async Redis client factory.

Redis holds two pieces of short-lived shared state: the scrape content cache
and the daily search quota counter.  Neither is authoritative; callers treat
Redis errors as "no cache" / "quota unknown" and carry on.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


def get_redis_client() -> aioredis.Redis:
    """Create an async Redis client from settings.

    Falls back to ``redis://localhost:6379/0`` if settings cannot be loaded
    (e.g. during early bootstrapping).  The client connects lazily on first
    command, so creating it never blocks.

    Returns:
        A :class:`redis.asyncio.Redis` instance with ``decode_responses=True``.
    """
    try:
        from discovery_pipeline.config.settings import get_settings  # noqa: PLC0415

        redis_url = str(get_settings().redis_url)
    except Exception:
        redis_url = "redis://localhost:6379/0"
        logger.warning("Could not load settings - using default Redis URL: %s", redis_url)

    return aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
