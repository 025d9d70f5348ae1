"""Search-engine-based discovery.

For each query configured on a source (``monitor_config["search_queries"]``,
defaulting to ``site:<host>``) up to ``Settings.search_max_pages`` result
pages are requested from a Serper-compatible API, restricted by a time filter
derived from the source's recency window.

Every request first reserves a slot in the shared :class:`DailyQuota`.  When
the quota is spent, or the API answers 429, the method raises
:class:`~discovery_pipeline.core.exceptions.QuotaExceededError` carrying the
candidates collected so far.  From then on every page request on the same
instance raises instead, including those of sources already being paged
concurrently, so no further upstream requests are made in the current run.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

import httpx

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.exceptions import DiscoveryError, QuotaExceededError
from discovery_pipeline.core.models.sources import METHOD_SEARCH_ENGINE, Source
from discovery_pipeline.core.redis_client import get_redis_client
from discovery_pipeline.discovery._search_client import fetch_search_page
from discovery_pipeline.discovery.base import Candidate, DiscoveryMethod
from discovery_pipeline.discovery.config import SEARCH_RESULTS_PER_PAGE
from discovery_pipeline.discovery.quota import DailyQuota
from discovery_pipeline.discovery.registry import register
from discovery_pipeline.discovery.url_heuristics import canonicalize_url, date_from_url

logger = logging.getLogger(__name__)

_RELATIVE_DATE_RE = re.compile(
    r"^(\d+)\s+(minute|min|hour|day|week)s?\s+ago$",
    re.IGNORECASE,
)
_ABSOLUTE_DATE_FORMATS: tuple[str, ...] = ("%b %d, %Y", "%d %b %Y", "%Y-%m-%d")


def parse_result_date(value: str | None, now: datetime | None = None) -> datetime | None:
    """Parse the ``date`` field of a search result.

    Handles relative forms (``"3 hours ago"``) and a few absolute formats
    (``"Mar 3, 2025"``).  Returns ``None`` for anything else.
    """
    if not value:
        return None
    now = now or datetime.now(tz=timezone.utc)
    text = value.strip()

    match = _RELATIVE_DATE_RE.match(text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        delta = {
            "minute": timedelta(minutes=amount),
            "min": timedelta(minutes=amount),
            "hour": timedelta(hours=amount),
            "day": timedelta(days=amount),
            "week": timedelta(weeks=amount),
        }[unit]
        return now - delta

    for fmt in _ABSOLUTE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _time_filter(hours: int) -> str:
    """Map a recency window to the search API's ``tbs`` filter."""
    if hours <= 24:
        return "qdr:d"
    if hours <= 24 * 7:
        return "qdr:w"
    return "qdr:m"


@register
class SearchEngineDiscovery(DiscoveryMethod):
    """Discover items by querying a search index for each source.

    Args:
        http_client: Optional injected HTTP client.
        quota: Optional injected :class:`DailyQuota`; built from settings
            (Redis) when omitted.
        api_key: Override for ``Settings.search_api_key``.
    """

    method = METHOD_SEARCH_ENGINE

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        quota: DailyQuota | None = None,
        api_key: str | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        settings = get_settings()
        self._api_url = settings.search_api_url
        self._api_key = api_key or settings.search_api_key
        self._max_pages = settings.search_max_pages
        self._quota = quota or DailyQuota(get_redis_client(), settings.search_daily_quota)
        self._exhausted: QuotaExceededError | None = None

    @property
    def quota_exhausted(self) -> bool:
        """``True`` once a quota signal has been seen on this instance."""
        return self._exhausted is not None

    def queries_for(self, source: Source) -> list[str]:
        """Return the search queries for *source*."""
        configured = (source.monitor_config or {}).get("search_queries") or []
        queries = [q.strip() for q in configured if isinstance(q, str) and q.strip()]
        if queries:
            return queries
        host = urlparse(source.url).netloc or source.url
        return [f"site:{host}"]

    async def discover(self, source: Source) -> list[Candidate]:
        """Run the source's queries page by page.

        Stops paging a query early when a page comes back short.

        Raises:
            QuotaExceededError: When the daily quota or the API rate limit is
                hit; ``partial_results`` holds what was collected.
            DiscoveryError: When no API key is configured or the API fails.
        """
        if self._exhausted is not None:
            raise QuotaExceededError(
                "search_engine: quota already exhausted in this run",
                retry_after=self._exhausted.retry_after,
                source_id=str(source.id),
                method=self.method,
            )
        if not self._api_key:
            raise DiscoveryError(
                "search_engine: SEARCH_API_KEY is not configured",
                source_id=str(source.id),
                method=self.method,
            )

        recency = _time_filter(self.recency_hours(source))
        candidates: dict[str, Candidate] = {}
        client = self._build_http_client()
        try:
            for query in self.queries_for(source):
                for page in range(1, self._max_pages + 1):
                    results = await self._fetch_page(client, source, query, page, recency, candidates)
                    for result in results:
                        candidate = self._result_to_candidate(result, query)
                        if candidate is not None and candidate.url not in candidates:
                            candidates[candidate.url] = candidate
                    if len(results) < SEARCH_RESULTS_PER_PAGE:
                        break
        finally:
            if client is not self._http_client:
                await client.aclose()

        return list(candidates.values())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        source: Source,
        query: str,
        page: int,
        recency: str,
        collected: dict[str, Candidate],
    ) -> list[dict[str, Any]]:
        """Reserve quota and fetch one page, converting quota signals for the run."""
        # Sources discovered concurrently share this instance; one 429 stops them all.
        if self._exhausted is not None:
            raise QuotaExceededError(
                "search_engine: quota exhausted by another source in this run",
                retry_after=self._exhausted.retry_after,
                source_id=str(source.id),
                method=self.method,
                partial_results=list(collected.values()),
            )
        if not await self._quota.consume():
            self._exhausted = QuotaExceededError(
                f"search_engine: daily quota of {self._quota.limit} requests exhausted",
                retry_after=DailyQuota.seconds_until_reset(),
                source_id=str(source.id),
                method=self.method,
                partial_results=list(collected.values()),
            )
            raise self._exhausted

        try:
            return await fetch_search_page(
                client,
                api_url=self._api_url,
                api_key=self._api_key,  # type: ignore[arg-type]
                query=query,
                page=page,
                num=SEARCH_RESULTS_PER_PAGE,
                recency=recency,
            )
        except QuotaExceededError as exc:
            self._exhausted = QuotaExceededError(
                str(exc),
                retry_after=exc.retry_after,
                source_id=str(source.id),
                method=self.method,
                partial_results=list(collected.values()),
            )
            raise self._exhausted from exc
        except DiscoveryError as exc:
            exc.source_id = str(source.id)
            raise

    @staticmethod
    def _result_to_candidate(result: dict[str, Any], query: str) -> Candidate | None:
        link = result.get("link") or ""
        if not link.startswith(("http://", "https://")):
            return None
        published = parse_result_date(result.get("date")) or date_from_url(link)
        return Candidate(
            url=canonicalize_url(link),
            title=result.get("title"),
            description=result.get("snippet"),
            published_at=published,
            raw={"query": query, "position": result.get("position")},
        )
