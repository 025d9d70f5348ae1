"""Apply :func:`~discovery_pipeline.enrichment.metadata_extractor.extract` to queue entries.

Entries without ``extracted_metadata`` are enriched in batches: completed
entries first (full text gives the best result), then pending ones so that
items stuck behind the scraper still get title/description-based metadata.
An entry enriched from its description is enriched again after it is
scraped: completing a scrape resets ``extracted_metadata`` to NULL.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from pydantic import ValidationError
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.core.models.base import utcnow
from discovery_pipeline.core.models.queue import (
    SCRAPE_COMPLETED,
    SCRAPE_PENDING,
    QueueEntry,
)
from discovery_pipeline.core.schemas.invocations import (
    EnrichmentRequest,
    error_response,
    success_response,
)
from discovery_pipeline.enrichment.metadata_extractor import extract

logger = logging.getLogger(__name__)


def _entry_as_item(entry: QueueEntry) -> dict[str, Any]:
    return {
        "title": entry.title,
        "description": entry.description,
        "full_content": entry.full_content,
        "published_at": entry.published_at,
        "raw_metadata": entry.raw_metadata,
    }


class MetadataEnricher:
    """Store extracted metadata on queue entries."""

    async def enrich_batch(self, db: AsyncSession, limit: int) -> dict[str, int]:
        """Enrich up to *limit* entries whose metadata is still missing.

        Commits once at the end.  An entry whose extraction raises is
        counted as failed and left untouched.

        Returns:
            ``{"processed": n, "failed": m}``.
        """
        now = utcnow()
        status_rank = case((QueueEntry.scrape_status == SCRAPE_COMPLETED, 0), else_=1)
        result = await db.execute(
            select(QueueEntry)
            .where(
                QueueEntry.extracted_metadata.is_(None),
                QueueEntry.scrape_status.in_((SCRAPE_COMPLETED, SCRAPE_PENDING)),
            )
            .order_by(status_rank, QueueEntry.discovered_at.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        entries = list(result.scalars().all())

        processed = failed = 0
        for entry in entries:
            try:
                metadata = extract(_entry_as_item(entry), now=now)
            except Exception:  # noqa: BLE001
                logger.exception("enrichment: extraction failed for %s", entry.id)
                failed += 1
                continue
            await db.execute(
                update(QueueEntry)
                .where(QueueEntry.id == entry.id)
                .values(extracted_metadata=metadata)
                .execution_options(synchronize_session=False)
            )
            processed += 1
        await db.commit()

        logger.info("enrichment.batch_done", extra={"processed": processed, "failed": failed})
        return {"processed": processed, "failed": failed}

    async def enrich_entry(self, db: AsyncSession, entry_id: uuid.UUID) -> dict[str, Any] | None:
        """Enrich one entry regardless of its current metadata.

        Does not commit.

        Returns:
            The stored metadata, or ``None`` when the entry does not exist.
        """
        entry = await db.get(QueueEntry, entry_id, populate_existing=True)
        if entry is None:
            return None
        metadata = extract(_entry_as_item(entry))
        await db.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry_id)
            .values(extracted_metadata=metadata)
            .execution_options(synchronize_session=False)
        )
        return metadata

    async def run(self, db: AsyncSession, request: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invocation wrapper around :meth:`enrich_batch`."""
        try:
            req = EnrichmentRequest.model_validate(request or {})
        except ValidationError as exc:
            return error_response(f"invalid request: {exc}")

        started = time.monotonic()
        try:
            counts = await self.enrich_batch(db, req.batch_size)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("enrichment: batch failed")
            return error_response(f"enrichment failed: {exc}")
        return success_response({**counts, "duration_seconds": round(time.monotonic() - started, 3)})
