"""Feed-based discovery (RSS / Atom).

Fetches a source's feed with ``httpx`` and parses it with ``feedparser``.
The feed URL is ``monitor_config["feed_url"]`` when set, otherwise the
source URL.  If that URL does not yield a parseable feed, the conventional
feed paths (:data:`~discovery_pipeline.discovery.config.FEED_FALLBACK_PATHS`)
are tried on the source origin and the first one with entries wins.

feedparser is CPU-bound but fast enough to run inline on the event loop for
feeds of a few hundred entries.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import datetime, timezone
from typing import Any

import feedparser
import httpx

from discovery_pipeline.core.exceptions import DiscoveryError
from discovery_pipeline.core.models.sources import METHOD_FEED, Source
from discovery_pipeline.discovery.base import Candidate, DiscoveryMethod
from discovery_pipeline.discovery.config import FEED_FALLBACK_PATHS, MAX_FEED_ENTRIES
from discovery_pipeline.discovery.registry import register
from discovery_pipeline.discovery.url_heuristics import canonicalize_url, origin_of

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def _strip_html(text: str) -> str:
    """Remove HTML tags and collapse whitespace in a feed summary."""
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", text)).strip()


def _entry_datetime(entry: Any) -> datetime | None:
    """Extract a timezone-aware publication datetime from a feedparser entry.

    Prefers ``published_parsed`` and falls back to ``updated_parsed``.
    """
    pub_struct = getattr(entry, "published_parsed", None) or getattr(entry, "updated_parsed", None)
    if pub_struct is None:
        return None
    try:
        ts = calendar.timegm(pub_struct)
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _entry_to_candidate(entry: Any, feed_url: str) -> Candidate | None:
    """Build a :class:`Candidate` from a feedparser entry, or ``None`` without a link."""
    link = getattr(entry, "link", None) or ""
    if not link.startswith(("http://", "https://")):
        return None

    summary = getattr(entry, "summary", None) or getattr(entry, "description", None)
    description = _strip_html(summary)[:2_000] if summary else None
    title = getattr(entry, "title", None)

    return Candidate(
        url=canonicalize_url(link),
        title=_strip_html(title) if title else None,
        description=description or None,
        published_at=_entry_datetime(entry),
        raw={
            "feed_url": feed_url,
            "entry_id": getattr(entry, "id", None),
            "author": getattr(entry, "author", None),
        },
    )


@register
class FeedDiscovery(DiscoveryMethod):
    """Discover items from a source's RSS or Atom feed."""

    method = METHOD_FEED

    async def discover(self, source: Source) -> list[Candidate]:
        """Fetch and parse the source's feed.

        Raises:
            DiscoveryError: When neither the configured URL nor any fallback
                path returns a feed with entries.
        """
        configured = (source.monitor_config or {}).get("feed_url") or source.url
        client = self._build_http_client()
        try:
            feed_url, entries = await self._fetch_feed(client, configured)
            if not entries:
                feed_url, entries = await self._try_fallback_feeds(client, configured)
        finally:
            if client is not self._http_client:
                await client.aclose()

        if not entries:
            raise DiscoveryError(
                f"feed: no parseable feed found for '{source.name}' ({configured})",
                source_id=str(source.id),
                method=self.method,
            )

        candidates: list[Candidate] = []
        seen: set[str] = set()
        for entry in entries[:MAX_FEED_ENTRIES]:
            candidate = _entry_to_candidate(entry, feed_url)
            if candidate is None or candidate.url in seen:
                continue
            seen.add(candidate.url)
            candidates.append(candidate)

        logger.debug(
            "feed: '%s' yielded %d candidates from %s",
            source.name,
            len(candidates),
            feed_url,
        )
        return candidates

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch_feed(
        self,
        client: httpx.AsyncClient,
        url: str,
    ) -> tuple[str, list[Any]]:
        """GET *url* and return ``(url, entries)``; entries is empty on any failure."""
        try:
            response = await client.get(url)
        except httpx.RequestError as exc:
            logger.warning("feed: request error fetching %s: %s", url, exc)
            return url, []

        if response.status_code >= 400:
            logger.info("feed: %s returned HTTP %d", url, response.status_code)
            return url, []

        feed = feedparser.parse(response.text)
        if feed.bozo and not feed.entries:
            logger.debug(
                "feed: bozo feed %s with no entries: %s",
                url,
                getattr(feed, "bozo_exception", "unknown"),
            )
            return url, []
        return url, list(feed.entries)

    async def _try_fallback_feeds(
        self,
        client: httpx.AsyncClient,
        url: str,
    ) -> tuple[str, list[Any]]:
        """Try the conventional feed paths on *url*'s origin in order."""
        origin = origin_of(url)
        for path in FEED_FALLBACK_PATHS:
            fallback_url = origin + path
            if fallback_url == url:
                continue
            found_url, entries = await self._fetch_feed(client, fallback_url)
            if entries:
                logger.info("feed: discovered feed at %s for %s", found_url, url)
                return found_url, entries
        return url, []
