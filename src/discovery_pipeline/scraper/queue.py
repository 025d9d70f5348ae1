"""Lease-based access to the scrape queue (``queue_entries``).

Claiming moves rows to ``processing`` before any fetch starts, so two
concurrent scrape workers never work on the same row:

* **PostgreSQL** -- one ``UPDATE ... WHERE id IN (SELECT ... FOR UPDATE SKIP
  LOCKED) RETURNING`` statement claims and returns the batch atomically.
* **Other backends** -- candidates are selected, then each is claimed with a
  conditional ``UPDATE`` that only matches if status and attempt count are
  still what was read.  A row whose update matches nothing was taken by
  another worker and is left for the next cycle.

None of the methods commit; the worker owns the transaction boundaries.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.core.database import dialect_name
from discovery_pipeline.core.exceptions import TerminalAttemptsExceeded
from discovery_pipeline.core.models.base import utcnow
from discovery_pipeline.core.models.queue import (
    MAX_SCRAPE_ATTEMPTS,
    SCRAPE_COMPLETED,
    SCRAPE_FAILED,
    SCRAPE_PENDING,
    SCRAPE_PROCESSING,
    QueueEntry,
)
from discovery_pipeline.scraper.config import MAX_ERROR_CHARS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimedEntry:
    """Snapshot of a leased queue row.

    Plain values rather than ORM instances so that concurrent fetch tasks can
    read them without touching the session.
    """

    id: uuid.UUID
    url: str
    title: str | None
    published_at: datetime | None
    scrape_attempts: int
    scrape_priority: int
    discovered_at: datetime


def _claimable():
    """WHERE clause selecting rows eligible for a scrape attempt."""
    return or_(
        QueueEntry.scrape_status == SCRAPE_PENDING,
        and_(
            QueueEntry.scrape_status == SCRAPE_FAILED,
            QueueEntry.scrape_attempts < MAX_SCRAPE_ATTEMPTS,
        ),
    )


_CLAIM_ORDER = (QueueEntry.scrape_priority.asc(), QueueEntry.discovered_at.desc())


def _snapshot(entry: QueueEntry) -> ClaimedEntry:
    return ClaimedEntry(
        id=entry.id,
        url=entry.url,
        title=entry.title,
        published_at=entry.published_at,
        scrape_attempts=entry.scrape_attempts,
        scrape_priority=entry.scrape_priority,
        discovered_at=entry.discovered_at,
    )


class ScrapeQueue:
    """Claim, complete and fail scrape queue rows."""

    async def claim_batch(
        self,
        db: AsyncSession,
        limit: int,
        now: datetime | None = None,
    ) -> list[ClaimedEntry]:
        """Lease up to *limit* claimable rows.

        Rows are ordered by priority ascending, then most recently discovered
        first.  Each returned row is ``processing`` with
        ``last_scrape_attempt`` set to *now*.
        """
        now = now or utcnow()
        if limit <= 0:
            return []
        if dialect_name(db) == "postgresql":
            claimed = await self._claim_skip_locked(db, limit, now)
        else:
            claimed = await self._claim_optimistic(db, limit, now)
        claimed.sort(key=lambda e: (e.scrape_priority, -_epoch(e.discovered_at)))
        logger.debug("scrape_queue: claimed %d of %d requested", len(claimed), limit)
        return claimed

    async def _claim_skip_locked(
        self,
        db: AsyncSession,
        limit: int,
        now: datetime,
    ) -> list[ClaimedEntry]:
        candidates = (
            select(QueueEntry.id)
            .where(_claimable())
            .order_by(*_CLAIM_ORDER)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(QueueEntry)
            .where(QueueEntry.id.in_(candidates))
            .values(scrape_status=SCRAPE_PROCESSING, last_scrape_attempt=now)
            .returning(QueueEntry)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await db.execute(stmt)
        return [_snapshot(entry) for entry in result.scalars().all()]

    async def _claim_optimistic(
        self,
        db: AsyncSession,
        limit: int,
        now: datetime,
    ) -> list[ClaimedEntry]:
        # Refresh identity-mapped rows so the snapshot matches the database.
        result = await db.execute(
            select(QueueEntry)
            .where(_claimable())
            .order_by(*_CLAIM_ORDER)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        seen = [_snapshot(entry) for entry in result.scalars().all()]

        claimed: list[ClaimedEntry] = []
        for entry in seen:
            won = await self._claim_one(db, entry, now)
            if won:
                claimed.append(entry)
            else:
                logger.debug("scrape_queue: lost claim race for %s", entry.id)
        return claimed

    async def _claim_one(self, db: AsyncSession, entry: ClaimedEntry, now: datetime) -> bool:
        """Conditionally move one row to ``processing``; ``True`` if this caller won."""
        result = await db.execute(
            update(QueueEntry)
            .where(
                QueueEntry.id == entry.id,
                QueueEntry.scrape_attempts == entry.scrape_attempts,
                _claimable(),
            )
            .values(scrape_status=SCRAPE_PROCESSING, last_scrape_attempt=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_completed(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        content: str,
        published_at: datetime | None = None,
        now: datetime | None = None,
        flags: dict[str, bool] | None = None,
    ) -> None:
        """Store scraped *content* and mark the row ``completed``.

        *published_at* only fills the column when discovery left it empty.
        *flags* (``paywall``, ``limited_content``...) are merged into
        ``raw_metadata``.  ``extracted_metadata`` is reset to NULL so the
        enricher runs again on the full text.
        """
        now = now or utcnow()
        values: dict[str, object] = {
            "scrape_status": SCRAPE_COMPLETED,
            "full_content": content,
            "content_length": len(content),
            "scraped_at": now,
            "processing_error": None,
            "published_at": sa.func.coalesce(QueueEntry.published_at, published_at),
            "extracted_metadata": sa.null(),
        }
        if flags:
            current = await db.scalar(
                select(QueueEntry.raw_metadata).where(QueueEntry.id == entry_id)
            )
            values["raw_metadata"] = {**(current or {}), **flags}
        await db.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry_id, QueueEntry.scrape_status == SCRAPE_PROCESSING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(
        self,
        db: AsyncSession,
        entry: ClaimedEntry,
        error: str,
    ) -> bool:
        """Charge one attempt to *entry* and mark it ``failed``.

        Returns:
            ``True`` when the attempt budget is now spent (terminal failure).

        Raises:
            TerminalAttemptsExceeded: If *entry* had already spent its budget.
        """
        if entry.scrape_attempts >= MAX_SCRAPE_ATTEMPTS:
            raise TerminalAttemptsExceeded(
                f"queue entry {entry.id} already failed {entry.scrape_attempts} times",
                attempts=entry.scrape_attempts,
                max_attempts=MAX_SCRAPE_ATTEMPTS,
            )
        await db.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry.id, QueueEntry.scrape_status == SCRAPE_PROCESSING)
            .values(
                scrape_status=SCRAPE_FAILED,
                scrape_attempts=QueueEntry.scrape_attempts + 1,
                processing_error=error[:MAX_ERROR_CHARS],
            )
            .execution_options(synchronize_session=False)
        )
        return entry.scrape_attempts + 1 >= MAX_SCRAPE_ATTEMPTS

    async def requeue_stale(
        self,
        db: AsyncSession,
        minutes: int,
        now: datetime | None = None,
    ) -> int:
        """Return rows stuck in ``processing`` for over *minutes* to ``pending``.

        The attempt count is left unchanged: the crashed attempt never
        reported an outcome.

        Returns:
            Number of rows requeued.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=minutes)
        result = await db.execute(
            update(QueueEntry)
            .where(
                QueueEntry.scrape_status == SCRAPE_PROCESSING,
                or_(
                    QueueEntry.last_scrape_attempt.is_(None),
                    QueueEntry.last_scrape_attempt < cutoff,
                ),
            )
            .values(scrape_status=SCRAPE_PENDING)
            .execution_options(synchronize_session=False)
        )
        requeued = result.rowcount or 0
        if requeued:
            logger.warning(
                "scrape_queue.stale_requeued",
                extra={"count": requeued, "minutes": minutes},
            )
        return requeued


def _epoch(value: datetime) -> float:
    """Sortable timestamp that tolerates naive values returned by SQLite."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()
