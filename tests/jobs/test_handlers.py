"""Unit tests for the built-in job handlers.

``metadata_extraction`` runs against in-memory SQLite; ``cache_warming`` uses
respx for HTTP and the ``fake_redis`` fixture in place of Redis.
"""

from __future__ import annotations

import uuid
from unittest.mock import patch

import httpx
import pytest
import respx
from sqlalchemy import select

from discovery_pipeline.core.models.queue import QueueEntry
from discovery_pipeline.jobs.handlers import extract_entry_metadata, warm_content_cache
from discovery_pipeline.jobs.registry import list_job_types
from discovery_pipeline.scraper.cache import ContentCache
from discovery_pipeline.scraper.content_extractor import ExtractedContent
from tests.factories import QueueEntryFactory, SourceFactory

_PARAGRAPHS = (
    "Northwind Logistics said on Monday it will open three new distribution centres "
    "in the Midwest next year, adding about 900 jobs across Ohio and Indiana.",
    "The company, which operates 40 warehouses in North America, said demand from "
    "online retailers had grown faster than expected during the past two quarters.",
    "Chief operating officer Maria Lopez said construction of the first site would "
    "start in the spring, with the remaining two following before the end of the year.",
    "Analysts said the expansion reflects a wider shift among freight companies toward "
    "regional hubs that shorten delivery times for consumers in smaller cities.",
)
_ARTICLE_HTML = (
    "<html><head><title>Northwind Logistics to open three centres</title></head><body><article>"
    + "".join(f"<p>{text}</p>" for text in _PARAGRAPHS)
    + "</article></body></html>"
)

_GET_REDIS = "discovery_pipeline.jobs.handlers.get_redis_client"


def test_builtin_job_types_are_registered() -> None:
    types = list_job_types()
    assert "cache_warming" in types
    assert "metadata_extraction" in types


class TestMetadataExtraction:
    async def test_existing_entry(self, db_session) -> None:
        source = SourceFactory.build()
        db_session.add(source)
        await db_session.commit()
        entry = QueueEntryFactory.build(
            source_id=source.id,
            title="Acme Robotics raises $40 million Series B led by Example Ventures",
            description="The funding round will expand its warehouse automation business.",
        )
        db_session.add(entry)
        await db_session.commit()

        result = await extract_entry_metadata(db_session, {"entry_id": str(entry.id)})
        await db_session.commit()

        assert result["entry_id"] == str(entry.id)
        assert result["found"] is True
        row = (
            await db_session.execute(
                select(QueueEntry)
                .where(QueueEntry.id == entry.id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert row.extracted_metadata["type"] == result["type"]

    async def test_missing_entry(self, db_session) -> None:
        entry_id = uuid.uuid4()

        result = await extract_entry_metadata(db_session, {"entry_id": str(entry_id)})

        assert result == {"entry_id": str(entry_id), "found": False}

    async def test_invalid_entry_id(self, db_session) -> None:
        with pytest.raises(ValueError):
            await extract_entry_metadata(db_session, {"entry_id": "not-a-uuid"})


class TestCacheWarming:
    @respx.mock
    async def test_fetches_and_caches_new_urls(self, db_session, fake_redis) -> None:
        good = "https://news.example.com/2026/03/northwind-expansion"
        missing = "https://news.example.com/2026/03/gone"
        respx.get(good).mock(
            return_value=httpx.Response(200, text=_ARTICLE_HTML, headers={"content-type": "text/html"})
        )
        respx.get(missing).mock(return_value=httpx.Response(404))

        with patch(_GET_REDIS, return_value=fake_redis):
            result = await warm_content_cache(db_session, {"urls": [good, missing]})

        assert result == {"cached": 1, "skipped": 0, "failed": 1}
        cached = await ContentCache(fake_redis, ttl_seconds=600).get(good)
        assert cached is not None
        assert "Northwind" in cached.text

    @respx.mock
    async def test_already_cached_urls_are_skipped(self, db_session, fake_redis) -> None:
        url = "https://news.example.com/2026/03/already-there"
        await ContentCache(fake_redis, ttl_seconds=600).set(
            url, ExtractedContent(text=" ".join(_PARAGRAPHS), title="Northwind", language="en")
        )
        route = respx.get(url).mock(return_value=httpx.Response(200, text=_ARTICLE_HTML))

        with patch(_GET_REDIS, return_value=fake_redis):
            result = await warm_content_cache(db_session, {"urls": [url]})

        assert result == {"cached": 0, "skipped": 1, "failed": 0}
        assert route.call_count == 0

    @pytest.mark.parametrize("payload", [{}, {"urls": "https://example.com"}])
    async def test_invalid_payload(self, db_session, payload) -> None:
        with pytest.raises(ValueError):
            await warm_content_cache(db_session, payload)
