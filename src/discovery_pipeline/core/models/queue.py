"""SQLAlchemy ORM models for the scrape queue.

``QueueEntry`` is the unit of work produced by the discovery orchestrators and
consumed by the scrape worker and the metadata enricher.  ``EntryMatch`` rows
are written by downstream analysis collaborators and reference queue entries;
retention deletes them strictly before their parent entries.

Scrape state machine::

    pending ──claim──▶ processing ──▶ completed
                          │
                          └──▶ failed (attempts < 3: claimable again)
                               failed (attempts = 3: terminal)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from discovery_pipeline.core.models.base import Base, JSONType, utcnow

SCRAPE_PENDING: str = "pending"
SCRAPE_PROCESSING: str = "processing"
SCRAPE_COMPLETED: str = "completed"
SCRAPE_FAILED: str = "failed"

#: Maximum scrape attempts per entry.  An entry whose attempt count reaches
#: this value is terminally failed and never claimed again.
MAX_SCRAPE_ATTEMPTS: int = 3


class QueueEntry(Base):
    """A discovered candidate URL waiting to be (or already) scraped.

    Attributes:
        id: UUID primary key.
        source_id: FK to the source the item was discovered on.
        url: Canonical item URL.  Unique across the table; the dedup key.
        title: Item title from the feed, search result or sitemap.
        description: Snippet or summary, if the discovery method had one.
        discovered_at: When the orchestrator inserted the row.
        published_at: Publication time reported upstream, if any.
        scrape_status: ``pending``, ``processing``, ``completed`` or ``failed``.
        scrape_attempts: Scrape attempts consumed; never exceeds
            :data:`MAX_SCRAPE_ATTEMPTS`.
        scrape_priority: Copied from ``Source.tier`` at insert time.
        full_content: Extracted article text once scraped.
        content_length: Character length of ``full_content``.
        scraped_at: When the content was stored.
        last_scrape_attempt: Claim timestamp of the latest attempt.  Used by
            the stale-processing sweep.
        processing_error: Error message of the latest failed attempt.
        extracted_metadata: Output of the metadata extractor.
        raw_metadata: Free-form discovery data (method, feed id, industries).
    """

    __tablename__ = "queue_entries"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    source_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("sources.id", ondelete="RESTRICT"),
        nullable=False,
    )
    url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    discovered_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # Scrape lifecycle
    scrape_status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=SCRAPE_PENDING,
        server_default=sa.text("'pending'"),
    )
    scrape_attempts: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=0,
        server_default=sa.text("0"),
    )
    scrape_priority: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=2,
        server_default=sa.text("2"),
    )
    last_scrape_attempt: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    processing_error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Content
    full_content: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    content_length: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=0,
        server_default=sa.text("0"),
    )
    scraped_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # Metadata
    extracted_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )
    raw_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        sa.UniqueConstraint("url", name="uq_queue_entries_url"),
        sa.CheckConstraint(
            f"scrape_attempts <= {MAX_SCRAPE_ATTEMPTS}",
            name="ck_queue_entries_attempts",
        ),
        # Claim query: status filter + priority/recency ordering.
        sa.Index(
            "idx_queue_entries_claim",
            "scrape_status",
            "scrape_priority",
            "discovered_at",
        ),
        sa.Index("idx_queue_entries_source", "source_id"),
        sa.Index("idx_queue_entries_discovered_at", "discovered_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QueueEntry id={self.id} status={self.scrape_status!r} "
            f"attempts={self.scrape_attempts} url={self.url!r}>"
        )


class EntryMatch(Base):
    """A cross-reference from a queue entry to a downstream analysis target.

    Written by external analysis collaborators (e.g. an article-selection
    service matching items to monitored organisations).  The pipeline only
    deletes these rows during retention.

    Attributes:
        id: UUID primary key.
        entry_id: FK to the matched queue entry.
        target_key: Opaque identifier of the matched target.
        score: Relevance score assigned by the collaborator.
        created_at: Insert timestamp.
    """

    __tablename__ = "entry_matches"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        sa.ForeignKey("queue_entries.id", ondelete="RESTRICT"),
        nullable=False,
    )
    target_key: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    score: Mapped[Optional[float]] = mapped_column(sa.Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )

    __table_args__ = (
        sa.Index("idx_entry_matches_entry", "entry_id"),
    )

    def __repr__(self) -> str:
        return f"<EntryMatch id={self.id} entry_id={self.entry_id} target={self.target_key!r}>"
