"""Constants and tuning parameters for the discovery orchestrators."""

from __future__ import annotations

from discovery_pipeline.core.models.sources import (
    METHOD_CRAWL_MAP,
    METHOD_FEED,
    METHOD_SEARCH_ENGINE,
)

# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

#: Sources discovered concurrently within one batch.
DISCOVERY_BATCH_SIZE: int = 5

#: Pause between batches (seconds) to stay polite with upstream hosts.
INTER_BATCH_DELAY_SECONDS: float = 3.0

#: Upper bound on batches per invocation.  Bounds worst-case wall-clock time
#: together with the per-request timeouts below.
MAX_BATCHES_PER_RUN: int = 20

#: A run still ``running`` after this many minutes is assumed to belong to a
#: crashed invocation and is failed by the next run of the same type.
STALE_RUN_MINUTES: int = 10

#: Sources loaded per invocation when the request does not set ``max_sources``.
DEFAULT_MAX_SOURCES: dict[str, int] = {
    METHOD_FEED: 50,
    METHOD_SEARCH_ENGINE: 20,
    METHOD_CRAWL_MAP: 5,
}

#: Candidates older than this (hours) are discarded unless the source sets
#: ``monitor_config["recency_hours"]``.
DEFAULT_RECENCY_HOURS: dict[str, int] = {
    METHOD_FEED: 48,
    METHOD_SEARCH_ENGINE: 72,
    METHOD_CRAWL_MAP: 14 * 24,
}

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Timeout (seconds) for every discovery request.
HTTP_TIMEOUT_SECONDS: float = 15.0

# ---------------------------------------------------------------------------
# Feed discovery
# ---------------------------------------------------------------------------

#: Paths tried on the source origin when the configured URL is not a feed.
FEED_FALLBACK_PATHS: tuple[str, ...] = ("/rss", "/feed", "/rss.xml", "/feed.xml", "/atom.xml")

#: Maximum entries taken from a single feed.
MAX_FEED_ENTRIES: int = 100

# ---------------------------------------------------------------------------
# Search-engine discovery
# ---------------------------------------------------------------------------

#: Results requested per search page.
SEARCH_RESULTS_PER_PAGE: int = 10

#: Redis key prefix of the daily quota counter; the UTC date is appended.
SEARCH_QUOTA_KEY_PREFIX: str = "discovery:search_quota"

# ---------------------------------------------------------------------------
# Crawl-map discovery
# ---------------------------------------------------------------------------

#: Maximum sitemaps read per source (after following one index level).
MAX_SITEMAPS_PER_SOURCE: int = 3

#: Maximum candidate URLs kept per source after filtering.
MAX_URLS_PER_SOURCE: int = 25

#: A ``Sitemap:`` line in robots.txt is used only if its URL contains one of
#: these words.
SITEMAP_KEYWORDS: tuple[str, ...] = ("news", "latest", "sitemap")

#: Listing size requested from the crawling service map endpoint.
CRAWL_SERVICE_MAP_LIMIT: int = 200
