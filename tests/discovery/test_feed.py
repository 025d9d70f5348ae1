"""Tests for feed-based discovery.

Covers:
- discover() with mocked HTTP (respx) against RSS and Atom documents
- feed probing on the source origin when the configured URL is not a feed
- DiscoveryError when no feed can be found
- canonicalisation and in-feed dedup of entry links

These tests run without a live database or network connection.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import httpx
import pytest
import respx

from discovery_pipeline.core.exceptions import DiscoveryError
from discovery_pipeline.discovery.feed import FeedDiscovery
from tests.factories import SourceFactory

_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example News</title>
    <link>https://news.example.com/</link>
    <item>
      <title>Acme raises Series B</title>
      <link>https://news.example.com/2026/03/acme-raises?utm_source=rss</link>
      <guid>acme-1</guid>
      <description>&lt;p&gt;Acme   Robotics raised $40M.&lt;/p&gt;</description>
      <pubDate>Tue, 10 Mar 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Acme raises Series B (duplicate)</title>
      <link>https://news.example.com/2026/03/acme-raises</link>
      <guid>acme-1-dup</guid>
    </item>
    <item>
      <title>Second story</title>
      <link>https://news.example.com/2026/03/second-story</link>
      <guid>second</guid>
    </item>
    <item>
      <title>No link</title>
      <guid>nolink</guid>
    </item>
  </channel>
</rss>
"""

_ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Example Blog</title>
  <entry>
    <title>Atom entry</title>
    <link href="https://blog.example.com/posts/atom-entry"/>
    <id>urn:uuid:1</id>
    <updated>2026-03-09T08:30:00Z</updated>
    <summary>Summary text</summary>
  </entry>
</feed>
"""

_HTML = "<!DOCTYPE html><html><head><title>Home</title></head><body>Hi</body></html>"


def _source(**overrides):
    defaults = {
        "id": uuid.uuid4(),
        "name": "Example News",
        "url": "https://news.example.com",
        "discovery_method": "feed",
        "monitor_config": {"feed_url": "https://news.example.com/rss.xml"},
    }
    defaults.update(overrides)
    return SourceFactory.build(**defaults)


class TestFeedDiscovery:
    @respx.mock
    async def test_rss_entries_become_candidates(self) -> None:
        respx.get("https://news.example.com/rss.xml").mock(
            return_value=httpx.Response(200, text=_RSS)
        )
        async with httpx.AsyncClient() as client:
            candidates = await FeedDiscovery(http_client=client).discover(_source())

        urls = [c.url for c in candidates]
        assert urls == [
            "https://news.example.com/2026/03/acme-raises",
            "https://news.example.com/2026/03/second-story",
        ]
        first = candidates[0]
        assert first.title == "Acme raises Series B"
        assert first.description == "Acme Robotics raised $40M."
        assert first.published_at == datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        assert first.raw["feed_url"] == "https://news.example.com/rss.xml"
        assert candidates[1].published_at is None

    @respx.mock
    async def test_atom_feed_uses_updated_date(self) -> None:
        respx.get("https://blog.example.com/atom.xml").mock(
            return_value=httpx.Response(200, text=_ATOM)
        )
        source = _source(
            url="https://blog.example.com",
            monitor_config={"feed_url": "https://blog.example.com/atom.xml"},
        )
        async with httpx.AsyncClient() as client:
            candidates = await FeedDiscovery(http_client=client).discover(source)

        assert len(candidates) == 1
        assert candidates[0].url == "https://blog.example.com/posts/atom-entry"
        assert candidates[0].published_at == datetime(2026, 3, 9, 8, 30, tzinfo=timezone.utc)

    @respx.mock
    async def test_tries_conventional_paths_when_url_is_not_a_feed(self) -> None:
        respx.get("https://news.example.com/").mock(return_value=httpx.Response(200, text=_HTML))
        respx.get("https://news.example.com/rss").mock(return_value=httpx.Response(404))
        feed_route = respx.get("https://news.example.com/feed").mock(
            return_value=httpx.Response(200, text=_RSS)
        )
        source = _source(url="https://news.example.com/", monitor_config={})

        async with httpx.AsyncClient() as client:
            candidates = await FeedDiscovery(http_client=client).discover(source)

        assert feed_route.called
        assert len(candidates) == 2
        assert candidates[0].raw["feed_url"] == "https://news.example.com/feed"

    @respx.mock
    async def test_no_feed_anywhere_raises_discovery_error(self) -> None:
        respx.get(url__startswith="https://dead.example.com").mock(
            return_value=httpx.Response(404)
        )
        source = _source(url="https://dead.example.com", monitor_config={})

        async with httpx.AsyncClient() as client:
            with pytest.raises(DiscoveryError) as exc_info:
                await FeedDiscovery(http_client=client).discover(source)

        assert exc_info.value.method == "feed"
        assert exc_info.value.source_id == str(source.id)

    @respx.mock
    async def test_network_error_on_every_url_raises_discovery_error(self) -> None:
        respx.get(url__startswith="https://down.example.com").mock(
            side_effect=httpx.ConnectError("refused")
        )
        source = _source(url="https://down.example.com", monitor_config={})

        async with httpx.AsyncClient() as client:
            with pytest.raises(DiscoveryError):
                await FeedDiscovery(http_client=client).discover(source)


class TestRecencyWindow:
    def test_method_default(self) -> None:
        assert FeedDiscovery().recency_hours(_source()) == 48

    def test_source_override(self) -> None:
        source = _source(monitor_config={"recency_hours": 6})
        assert FeedDiscovery().recency_hours(source) == 6
