"""Redis-backed daily request quota for search-engine discovery.

All workers share one counter per UTC day::

    discovery:search_quota:2026-10-19  ->  1842

:meth:`DailyQuota.consume` increments the counter atomically (``INCR`` then
``EXPIRE`` in one pipeline) and reports whether the request still fits inside
the limit.  When Redis is unreachable the quota fails open and the request is
allowed; the upstream API's own 429 responses remain the backstop.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from discovery_pipeline.discovery.config import SEARCH_QUOTA_KEY_PREFIX

logger = logging.getLogger(__name__)

_KEY_TTL_SECONDS: int = 2 * 86_400


class DailyQuota:
    """Daily request budget shared by all search-engine discovery runs.

    Args:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        limit: Requests allowed per UTC day.
        key_prefix: Redis key prefix; the ISO date is appended.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        limit: int,
        key_prefix: str = SEARCH_QUOTA_KEY_PREFIX,
    ) -> None:
        self._redis = redis_client
        self.limit = limit
        self._key_prefix = key_prefix

    def _key(self, now: datetime | None = None) -> str:
        now = now or datetime.now(tz=timezone.utc)
        return f"{self._key_prefix}:{now.date().isoformat()}"

    async def consume(self, now: datetime | None = None) -> bool:
        """Reserve one request.  Returns ``False`` once today's budget is spent."""
        key = self._key(now)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, _KEY_TTL_SECONDS)
                count, _ = await pipe.execute()
        except RedisError as exc:
            logger.warning("search quota: Redis unavailable, allowing request: %s", exc)
            return True
        return int(count) <= self.limit

    async def used(self, now: datetime | None = None) -> int:
        """Return requests consumed today (0 when Redis is unavailable)."""
        try:
            value = await self._redis.get(self._key(now))
        except RedisError as exc:
            logger.warning("search quota: Redis unavailable reading usage: %s", exc)
            return 0
        return int(value or 0)

    @staticmethod
    def seconds_until_reset(now: datetime | None = None) -> float:
        """Seconds until the next UTC midnight."""
        now = now or datetime.now(tz=timezone.utc)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return 86_400 - (now - midnight).total_seconds()
