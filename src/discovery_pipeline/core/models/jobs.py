"""SQLAlchemy ORM model for the generic background job queue.

Jobs share the queue-entry state machine (``pending → processing →
completed | pending | failed``) but carry an opaque payload dispatched by
``job_type`` to a registered handler.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from discovery_pipeline.core.models.base import Base, JSONType, utcnow

JOB_PENDING: str = "pending"
JOB_PROCESSING: str = "processing"
JOB_COMPLETED: str = "completed"
JOB_FAILED: str = "failed"

DEFAULT_JOB_PRIORITY: int = 5
DEFAULT_JOB_MAX_ATTEMPTS: int = 3


class Job(Base):
    """A unit of generic background work.

    Attributes:
        id: UUID primary key.
        job_type: Handler discriminator (e.g. ``"cache_warming"``).
        payload: Handler-specific arguments.  Opaque to the queue.
        status: ``pending``, ``processing``, ``completed`` or ``failed``.
        attempts: Handler executions that raised.
        max_attempts: Failures allowed before the job is terminally failed.
        priority: Lower runs first.
        worker_id: Identifier of the worker holding (or last holding) the job.
        last_error: Message of the most recent handler failure.
        result: Handler return value for completed jobs.
        created_at: Enqueue time; tie-breaker within a priority.
        started_at: Claim time of the latest attempt.
        completed_at: When the job reached a terminal state.
    """

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    job_type: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        default=JOB_PENDING,
        server_default=sa.text("'pending'"),
    )
    attempts: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=0,
        server_default=sa.text("0"),
    )
    max_attempts: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=DEFAULT_JOB_MAX_ATTEMPTS,
        server_default=sa.text(str(DEFAULT_JOB_MAX_ATTEMPTS)),
    )
    priority: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=DEFAULT_JOB_PRIORITY,
        server_default=sa.text(str(DEFAULT_JOB_PRIORITY)),
    )
    worker_id: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Timing
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        sa.Index("idx_jobs_claim", "status", "priority", "created_at"),
        sa.Index("idx_jobs_type", "job_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} type={self.job_type!r} status={self.status!r} "
            f"attempts={self.attempts}/{self.max_attempts}>"
        )
