"""Redis-backed cache of extracted page content.

Keys are ``scrape:content:<sha256(url)>`` holding a JSON document with the
:class:`~discovery_pipeline.scraper.content_extractor.ExtractedContent`
fields.  Entries expire after ``Settings.content_cache_ttl_seconds`` (24 h by
default).

The cache is an optimisation only.  Every Redis error is logged and treated
as a miss (on read) or ignored (on write), so a Redis outage slows scraping
down but never fails it.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from discovery_pipeline.scraper.config import CONTENT_CACHE_KEY_PREFIX
from discovery_pipeline.scraper.content_extractor import ExtractedContent

logger = logging.getLogger(__name__)


class ContentCache:
    """URL-keyed cache of extracted content.

    Args:
        redis_client: An initialised ``redis.asyncio.Redis`` connection
            (``decode_responses=True``).
        ttl_seconds: Entry lifetime.
        key_prefix: Redis key prefix.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        ttl_seconds: int,
        key_prefix: str = CONTENT_CACHE_KEY_PREFIX,
    ) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, url: str) -> str:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return f"{self._key_prefix}:{digest}"

    async def get(self, url: str) -> ExtractedContent | None:
        """Return cached content for *url*, or ``None`` on a miss or error."""
        try:
            raw = await self._redis.get(self._key(url))
        except RedisError as exc:
            logger.warning("content cache: read failed for %s: %s", url, exc)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
            published = data.get("published_at")
            return ExtractedContent(
                text=data.get("text"),
                title=data.get("title"),
                language=data.get("language"),
                published_at=datetime.fromisoformat(published) if published else None,
            )
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("content cache: discarding corrupt entry for %s: %s", url, exc)
            return None

    async def set(self, url: str, content: ExtractedContent) -> bool:
        """Store *content* for *url*.  Returns ``False`` when Redis is unavailable."""
        payload = json.dumps(
            {
                "text": content.text,
                "title": content.title,
                "language": content.language,
                "published_at": content.published_at.isoformat() if content.published_at else None,
            }
        )
        try:
            await self._redis.set(self._key(url), payload, ex=self._ttl)
        except RedisError as exc:
            logger.warning("content cache: write failed for %s: %s", url, exc)
            return False
        return True
