"""SQLAlchemy ORM model for discovery run audit records.

One ``DiscoveryRun`` row is appended per orchestrator invocation: created as
``running`` when the invocation starts and finalized with aggregate counts when
it ends.  A row left ``running`` by a crashed invocation is failed by the next
invocation of the same run type (see
:meth:`~discovery_pipeline.discovery.orchestrator.DiscoveryOrchestrator.fail_stale_runs`).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from discovery_pipeline.core.models.base import Base, JSONType, utcnow

RUN_RUNNING: str = "running"
RUN_COMPLETED: str = "completed"
RUN_PARTIAL: str = "partial"
RUN_FAILED: str = "failed"


class DiscoveryRun(Base):
    """Audit row summarising one discovery orchestrator invocation.

    Attributes:
        id: UUID primary key.
        run_type: Discovery method key of the orchestrator (``"feed"``, ...).
        status: ``running``, ``completed``, ``partial`` or ``failed``.
        started_at: Invocation start.
        completed_at: Invocation end, ``None`` while running.
        sources_targeted: Sources loaded for this run.
        sources_successful: Sources whose discovery succeeded.
        sources_failed: Sources whose discovery raised.
        items_discovered: Candidates returned across all sources (after the
            recency filter).
        items_new: Candidates inserted as new queue entries.
        items_duplicate: Candidates skipped because their URL was already
            queued.
        duration_seconds: Wall-clock duration.
        error_summary: List of ``{"source_id", "source_name", "error"}`` dicts,
            or ``None`` when nothing failed.
    """

    __tablename__ = "discovery_runs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    run_type: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=RUN_RUNNING,
        server_default=sa.text("'running'"),
    )
    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    # Aggregate counters
    sources_targeted: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    sources_successful: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    sources_failed: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    items_discovered: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    items_new: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    items_duplicate: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    duration_seconds: Mapped[Optional[float]] = mapped_column(sa.Float, nullable=True)
    error_summary: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    __table_args__ = (
        sa.Index("idx_discovery_runs_type_status", "run_type", "status"),
        sa.Index("idx_discovery_runs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DiscoveryRun id={self.id} run_type={self.run_type!r} "
            f"status={self.status!r}>"
        )
