"""Unit tests for MetadataEnricher.

Tests cover:
- enrich_batch() fills entries without metadata, completed ones first
- ``None`` metadata is stored as SQL NULL
- a scraped entry is enriched again from its full text
- failed and already-enriched entries are left alone
- enrich_entry() for existing and missing entries
- run() envelopes
"""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest_asyncio
from sqlalchemy import select

from discovery_pipeline.core.models.queue import QueueEntry
from discovery_pipeline.enrichment.service import MetadataEnricher
from discovery_pipeline.scraper.queue import ScrapeQueue
from tests.factories import QueueEntryFactory, SourceFactory


@pytest_asyncio.fixture
async def source(db_session):
    row = SourceFactory.build()
    db_session.add(row)
    await db_session.commit()
    return row


async def _add(db, source, **fields) -> QueueEntry:
    entry = QueueEntryFactory.build(source_id=source.id, **fields)
    db.add(entry)
    await db.commit()
    return entry


async def _metadata(db, entry_id):
    result = await db.execute(
        select(QueueEntry.extracted_metadata).where(QueueEntry.id == entry_id)
    )
    return result.scalar_one()


class TestEnrichBatch:
    async def test_only_entries_without_metadata_are_enriched(self, db_session, source) -> None:
        completed = await _add(
            db_session,
            source,
            scrape_status="completed",
            full_content="Globex acquires Initech in a $2B takeover.",
        )
        pending = await _add(db_session, source, description="Hooli launches a new product.")
        failed = await _add(db_session, source, scrape_status="failed", scrape_attempts=3)
        done = await _add(db_session, source, extracted_metadata={"type": "general"})

        counts = await MetadataEnricher().enrich_batch(db_session, limit=10)

        assert counts == {"processed": 2, "failed": 0}
        completed_meta = await _metadata(db_session, completed.id)
        assert completed_meta["type"] == "acquisition"
        assert completed_meta["confidence"] == "high"
        assert (await _metadata(db_session, pending.id))["confidence"] == "medium"
        assert await _metadata(db_session, failed.id) is None
        assert await _metadata(db_session, done.id) == {"type": "general"}

    async def test_completed_entries_come_first(self, db_session, source) -> None:
        await _add(db_session, source, title="Pending story")
        completed = await _add(db_session, source, scrape_status="completed", full_content="Body")

        await MetadataEnricher().enrich_batch(db_session, limit=1)

        assert await _metadata(db_session, completed.id) is not None

    async def test_unset_metadata_is_sql_null(self, db_session, source) -> None:
        entry = await _add(db_session, source, extracted_metadata=None)

        result = await db_session.execute(
            select(QueueEntry.id).where(QueueEntry.extracted_metadata.is_(None))
        )

        assert result.scalars().all() == [entry.id]

    async def test_scraped_entry_is_enriched_again_from_full_text(
        self, db_session, source
    ) -> None:
        entry = await _add(db_session, source, description="Globex is in talks to buy Initech.")
        enricher = MetadataEnricher()
        await enricher.enrich_batch(db_session, limit=10)
        assert (await _metadata(db_session, entry.id))["confidence"] == "medium"

        queue = ScrapeQueue()
        (claimed,) = await queue.claim_batch(db_session, limit=1)
        await queue.mark_completed(db_session, claimed.id, "Globex acquires Initech. " * 50)
        await db_session.commit()
        assert await _metadata(db_session, entry.id) is None

        counts = await enricher.enrich_batch(db_session, limit=10)

        assert counts == {"processed": 1, "failed": 0}
        assert (await _metadata(db_session, entry.id))["confidence"] == "high"

    async def test_extraction_error_counts_as_failed(self, db_session, source) -> None:
        entry = await _add(db_session, source)

        with patch(
            "discovery_pipeline.enrichment.service.extract", side_effect=ValueError("bad input")
        ):
            counts = await MetadataEnricher().enrich_batch(db_session, limit=10)

        assert counts == {"processed": 0, "failed": 1}
        assert await _metadata(db_session, entry.id) is None


class TestEnrichEntry:
    async def test_existing_entry(self, db_session, source) -> None:
        entry = await _add(db_session, source, title="Acme raises Series B funding round")

        metadata = await MetadataEnricher().enrich_entry(db_session, entry.id)
        await db_session.commit()

        assert metadata["type"] == "funding"
        assert await _metadata(db_session, entry.id) == metadata

    async def test_missing_entry_returns_none(self, db_session) -> None:
        assert await MetadataEnricher().enrich_entry(db_session, uuid.uuid4()) is None


class TestRun:
    async def test_success_envelope(self, db_session, source) -> None:
        await _add(db_session, source, title="Something happened")

        response = await MetadataEnricher().run(db_session, {"batch_size": 5})

        assert response["success"] is True
        assert response["summary"]["processed"] == 1
        assert "duration_seconds" in response["summary"]

    async def test_invalid_request(self, db_session) -> None:
        response = await MetadataEnricher().run(db_session, {"batch_size": 0})
        assert response["success"] is False
