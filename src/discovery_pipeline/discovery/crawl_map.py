"""Crawl-map discovery: site listings filtered down to article pages.

Two listing backends:

1. **Crawling service** -- when ``Settings.crawl_service_url`` is set, the
   source URL is sent to a Firecrawl-compatible ``POST /v1/map`` endpoint
   which returns every link it knows for the site.
2. **XML sitemaps** -- otherwise the site's own sitemaps are read: the
   configured ``monitor_config["sitemap_url"]``, else the ``Sitemap:`` lines
   in robots.txt that look like news sitemaps, else ``/sitemap.xml``.
   Sitemap indexes are followed one level deep and at most
   :data:`~discovery_pipeline.discovery.config.MAX_SITEMAPS_PER_SOURCE`
   sitemaps are read per source.

Either way the listing is reduced to article-like URLs with
:func:`~discovery_pipeline.discovery.url_heuristics.is_article_url`, dated from
``<news:publication_date>`` / ``<lastmod>`` or the URL path, and titled from
``<news:title>`` or the URL slug.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import httpx

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.exceptions import DiscoveryError
from discovery_pipeline.core.models.sources import METHOD_CRAWL_MAP, Source
from discovery_pipeline.discovery.base import Candidate, DiscoveryMethod
from discovery_pipeline.discovery.config import (
    CRAWL_SERVICE_MAP_LIMIT,
    MAX_SITEMAPS_PER_SOURCE,
    MAX_URLS_PER_SOURCE,
    SITEMAP_KEYWORDS,
)
from discovery_pipeline.discovery.registry import register
from discovery_pipeline.discovery.url_heuristics import (
    canonicalize_url,
    date_from_url,
    is_article_url,
    origin_of,
    title_from_url,
)

logger = logging.getLogger(__name__)


@dataclass
class SitemapEntry:
    """One ``<url>`` element of a sitemap."""

    loc: str
    published_at: datetime | None = None
    title: str | None = None


def _local(tag: str) -> str:
    """Strip the ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1]


def parse_sitemap_datetime(value: str | None) -> datetime | None:
    """Parse a W3C datetime (``2025-03-01`` or ``2025-03-01T10:00:00Z``)."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_sitemap(xml_text: str) -> tuple[list[str], list[SitemapEntry]]:
    """Parse a sitemap or sitemap index.

    Returns:
        ``(child_sitemaps, entries)``.  For an index document ``entries`` is
        empty; for a URL set ``child_sitemaps`` is empty.

    Raises:
        ET.ParseError: When *xml_text* is not well-formed XML.
    """
    root = ET.fromstring(xml_text)
    children: list[str] = []
    entries: list[SitemapEntry] = []

    if _local(root.tag) == "sitemapindex":
        for node in root:
            if _local(node.tag) != "sitemap":
                continue
            for child in node:
                if _local(child.tag) == "loc" and child.text:
                    children.append(child.text.strip())
        return children, entries

    for node in root:
        if _local(node.tag) != "url":
            continue
        loc: str | None = None
        lastmod: datetime | None = None
        news_date: datetime | None = None
        title: str | None = None
        for element in node.iter():
            name = _local(element.tag)
            text = (element.text or "").strip()
            if name == "loc" and loc is None and text:
                loc = text
            elif name == "lastmod":
                lastmod = parse_sitemap_datetime(text)
            elif name == "publication_date":
                news_date = parse_sitemap_datetime(text)
            elif name == "title" and text:
                title = text
        if loc:
            entries.append(SitemapEntry(loc=loc, published_at=news_date or lastmod, title=title))
    return children, entries


def sitemaps_from_robots(robots_txt: str) -> list[str]:
    """Return ``Sitemap:`` URLs from robots.txt whose path mentions a news keyword.

    Only the path is matched: on hosts like ``news.example.com`` every URL
    would otherwise qualify, image and video sitemaps included.
    """
    found: list[str] = []
    for line in robots_txt.splitlines():
        if not line.lower().startswith("sitemap:"):
            continue
        url = line.split(":", 1)[1].strip()
        path = urlparse(url).path.lower()
        if url and any(keyword in path for keyword in SITEMAP_KEYWORDS):
            found.append(url)
    return found


@register
class CrawlMapDiscovery(DiscoveryMethod):
    """Discover article URLs from a site listing."""

    method = METHOD_CRAWL_MAP

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        super().__init__(http_client=http_client)
        settings = get_settings()
        self._service_url = settings.crawl_service_url
        self._service_key = settings.crawl_service_api_key

    async def discover(self, source: Source) -> list[Candidate]:
        """Build article candidates from the crawling service or sitemaps.

        Raises:
            DiscoveryError: When no listing can be obtained.
        """
        client = self._build_http_client()
        try:
            if self._service_url:
                entries = await self._map_via_service(client, source)
            else:
                entries = await self._map_via_sitemaps(client, source)
        finally:
            if client is not self._http_client:
                await client.aclose()

        candidates: list[Candidate] = []
        seen: set[str] = set()
        for entry in entries:
            if not is_article_url(entry.loc):
                continue
            url = canonicalize_url(entry.loc)
            if url in seen:
                continue
            seen.add(url)
            candidates.append(
                Candidate(
                    url=url,
                    title=entry.title or title_from_url(entry.loc),
                    published_at=entry.published_at or date_from_url(entry.loc),
                    raw={"listing": "service" if self._service_url else "sitemap"},
                )
            )

        # Newest first so the cap keeps the freshest articles; undated last.
        candidates.sort(
            key=lambda c: c.published_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        logger.debug(
            "crawl_map: '%s' yielded %d article URLs from %d listed",
            source.name,
            len(candidates),
            len(entries),
        )
        return candidates[:MAX_URLS_PER_SOURCE]

    # ------------------------------------------------------------------
    # Crawling service
    # ------------------------------------------------------------------

    async def _map_via_service(
        self,
        client: httpx.AsyncClient,
        source: Source,
    ) -> list[SitemapEntry]:
        endpoint = f"{str(self._service_url).rstrip('/')}/v1/map"
        headers = {"Content-Type": "application/json"}
        if self._service_key:
            headers["Authorization"] = f"Bearer {self._service_key}"
        payload: dict[str, Any] = {"url": source.url, "limit": CRAWL_SERVICE_MAP_LIMIT}

        try:
            response = await client.post(endpoint, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DiscoveryError(
                f"crawl_map: map service returned HTTP {exc.response.status_code}",
                source_id=str(source.id),
                method=self.method,
            ) from exc
        except httpx.RequestError as exc:
            raise DiscoveryError(
                f"crawl_map: map service request failed: {exc}",
                source_id=str(source.id),
                method=self.method,
            ) from exc

        body = response.json()
        links = body.get("links") or []
        entries: list[SitemapEntry] = []
        for link in links:
            # Newer service versions return objects instead of bare strings.
            if isinstance(link, dict):
                url = link.get("url")
                title = link.get("title")
            else:
                url, title = link, None
            if isinstance(url, str) and url.startswith(("http://", "https://")):
                entries.append(SitemapEntry(loc=url, title=title))
        return entries

    # ------------------------------------------------------------------
    # Sitemaps
    # ------------------------------------------------------------------

    async def _map_via_sitemaps(
        self,
        client: httpx.AsyncClient,
        source: Source,
    ) -> list[SitemapEntry]:
        sitemap_urls = await self._locate_sitemaps(client, source)

        entries: list[SitemapEntry] = []
        read = 0
        for sitemap_url in sitemap_urls:
            if read >= MAX_SITEMAPS_PER_SOURCE:
                break
            document = await self._fetch_sitemap(client, sitemap_url)
            read += 1
            if document is None:
                continue
            children, found = document
            entries.extend(found)
            # Follow an index one level; child indexes are not expanded.
            for child_url in children:
                if read >= MAX_SITEMAPS_PER_SOURCE:
                    break
                child = await self._fetch_sitemap(client, child_url)
                read += 1
                if child is not None:
                    entries.extend(child[1])

        if not entries:
            raise DiscoveryError(
                f"crawl_map: no sitemap entries found for '{source.name}'",
                source_id=str(source.id),
                method=self.method,
            )
        return entries

    async def _locate_sitemaps(
        self,
        client: httpx.AsyncClient,
        source: Source,
    ) -> list[str]:
        """Return the sitemap URLs to read for *source*, in priority order."""
        configured = (source.monitor_config or {}).get("sitemap_url")
        if configured:
            return [configured]

        origin = origin_of(source.url)
        robots_url = f"{origin}/robots.txt"
        try:
            response = await client.get(robots_url)
        except httpx.RequestError as exc:
            logger.info("crawl_map: robots.txt unavailable for %s: %s", origin, exc)
        else:
            content_type = response.headers.get("content-type", "").lower()
            body = response.text
            is_html = "text/html" in content_type or body.lstrip()[:15].lower().startswith(
                ("<!doctype", "<html")
            )
            if response.status_code < 400 and not is_html:
                found = sitemaps_from_robots(body)
                if found:
                    return found
            elif is_html:
                logger.debug("crawl_map: ignoring HTML robots.txt at %s", robots_url)

        return [f"{origin}/sitemap.xml"]

    async def _fetch_sitemap(
        self,
        client: httpx.AsyncClient,
        url: str,
    ) -> tuple[list[str], list[SitemapEntry]] | None:
        """Fetch and parse one sitemap; ``None`` when unavailable or malformed."""
        try:
            response = await client.get(url)
        except httpx.RequestError as exc:
            logger.info("crawl_map: request error fetching sitemap %s: %s", url, exc)
            return None
        if response.status_code >= 400:
            logger.info("crawl_map: sitemap %s returned HTTP %d", url, response.status_code)
            return None
        try:
            return parse_sitemap(response.text)
        except ET.ParseError as exc:
            logger.info("crawl_map: malformed sitemap %s: %s", url, exc)
            return None
