"""Initial schema: sources, scrape queue, discovery runs and jobs.

Creates:
- ``sources``         -- catalogued content sources per discovery method
- ``queue_entries``   -- discovered URLs and their scrape lifecycle
- ``entry_matches``   -- downstream cross-references to queue entries
- ``discovery_runs``  -- one audit row per orchestrator invocation
- ``jobs``            -- generic background job queue

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _ts(name: str, nullable: bool = True, now_default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.TIMESTAMP(timezone=True),
        nullable=nullable,
        server_default=sa.text("NOW()") if now_default else None,
    )


def upgrade() -> None:
    """Create all pipeline tables and indexes."""
    # ------------------------------------------------------------------
    # sources
    # ------------------------------------------------------------------
    op.create_table(
        "sources",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("discovery_method", sa.String(20), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=False, server_default=sa.text("2")),
        sa.Column(
            "industries",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "consecutive_failures",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        _ts("last_successful_discovery"),
        sa.Column("group_number", sa.Integer(), nullable=True),
        sa.Column(
            "monitor_config",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _ts("created_at", nullable=False, now_default=True),
        _ts("updated_at", nullable=False, now_default=True),
        sa.CheckConstraint(
            "discovery_method IN ('feed', 'search_engine', 'crawl_map')",
            name="ck_sources_discovery_method",
        ),
    )
    op.create_index("idx_sources_method_active", "sources", ["discovery_method", "active"])
    op.create_index("idx_sources_group", "sources", ["group_number"])

    # ------------------------------------------------------------------
    # queue_entries
    # ------------------------------------------------------------------
    op.create_table(
        "queue_entries",
        _uuid_pk(),
        sa.Column(
            "source_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("sources.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("discovered_at", nullable=False, now_default=True),
        _ts("published_at"),
        sa.Column(
            "scrape_status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("scrape_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("scrape_priority", sa.Integer(), nullable=False, server_default=sa.text("2")),
        _ts("last_scrape_attempt"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("full_content", sa.Text(), nullable=True),
        sa.Column("content_length", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("scraped_at"),
        sa.Column("extracted_metadata", postgresql.JSONB(), nullable=True),
        sa.Column(
            "raw_metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.UniqueConstraint("url", name="uq_queue_entries_url"),
        sa.CheckConstraint("scrape_attempts <= 3", name="ck_queue_entries_attempts"),
    )
    op.create_index(
        "idx_queue_entries_claim",
        "queue_entries",
        ["scrape_status", "scrape_priority", "discovered_at"],
    )
    op.create_index("idx_queue_entries_source", "queue_entries", ["source_id"])
    op.create_index("idx_queue_entries_discovered_at", "queue_entries", ["discovered_at"])

    # ------------------------------------------------------------------
    # entry_matches
    # ------------------------------------------------------------------
    op.create_table(
        "entry_matches",
        _uuid_pk(),
        sa.Column(
            "entry_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("queue_entries.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("target_key", sa.String(255), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        _ts("created_at", nullable=False, now_default=True),
    )
    op.create_index("idx_entry_matches_entry", "entry_matches", ["entry_id"])

    # ------------------------------------------------------------------
    # discovery_runs
    # ------------------------------------------------------------------
    op.create_table(
        "discovery_runs",
        _uuid_pk(),
        sa.Column("run_type", sa.String(20), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'running'"),
        ),
        _ts("started_at", nullable=False, now_default=True),
        _ts("completed_at"),
        sa.Column("sources_targeted", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sources_successful", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sources_failed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("items_discovered", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("items_new", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("items_duplicate", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("error_summary", postgresql.JSONB(), nullable=True),
    )
    op.create_index("idx_discovery_runs_type_status", "discovery_runs", ["run_type", "status"])
    op.create_index("idx_discovery_runs_started_at", "discovery_runs", ["started_at"])

    # ------------------------------------------------------------------
    # jobs
    # ------------------------------------------------------------------
    op.create_table(
        "jobs",
        _uuid_pk(),
        sa.Column("job_type", sa.String(100), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("worker_id", sa.String(255), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        _ts("created_at", nullable=False, now_default=True),
        _ts("started_at"),
        _ts("completed_at"),
    )
    op.create_index("idx_jobs_claim", "jobs", ["status", "priority", "created_at"])
    op.create_index("idx_jobs_type", "jobs", ["job_type"])


def downgrade() -> None:
    """Drop all pipeline tables, dependents first."""
    op.drop_table("jobs")
    op.drop_table("discovery_runs")
    op.drop_table("entry_matches")
    op.drop_table("queue_entries")
    op.drop_table("sources")
