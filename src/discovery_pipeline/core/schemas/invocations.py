"""Pydantic schemas for the invocation surface.

Every orchestrator, worker and cleanup unit accepts an optional request dict
(validated by one of the models below) and returns a response envelope::

    {"success": True, "run_id": "...", "summary": {...}}   # run_id optional
    {"success": False, "error": "..."}

The envelope is a plain ``dict`` so that Celery can JSON-serialise it as the
task result without a custom encoder.
"""

from __future__ import annotations

import uuid
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DiscoveryRequest(BaseModel):
    """Options for one discovery orchestrator invocation.

    Attributes:
        group: Restrict the run to sources in this shard group.
        max_sources: Cap on sources processed; defaults per method.
        source_ids: Restrict the run to these sources (manual re-runs).
    """

    model_config = ConfigDict(extra="ignore")

    group: Optional[int] = None
    max_sources: Optional[int] = Field(default=None, ge=1, le=1_000)
    source_ids: Optional[List[uuid.UUID]] = None


class ScrapeRequest(BaseModel):
    """Options for one scrape worker invocation."""

    model_config = ConfigDict(extra="ignore")

    batch_size: Optional[int] = Field(default=None, ge=1, le=200)


class EnrichmentRequest(BaseModel):
    """Options for one metadata enrichment invocation."""

    model_config = ConfigDict(extra="ignore")

    batch_size: int = Field(default=50, ge=1, le=1_000)


class CleanupRequest(BaseModel):
    """Options for one retention/cleanup invocation.

    Attributes:
        dry_run: Count only; perform no deletes.
        hours_to_keep: Queue-entry retention window in hours.
        run_retention_days: Discovery-run audit retention in days.
        job_retention_days: Terminal job retention in days.
        batch_size: Ids deleted per batch.
        max_batches: Batch cap per table for this invocation.
    """

    model_config = ConfigDict(extra="ignore")

    dry_run: bool = False
    hours_to_keep: Optional[int] = Field(default=None, ge=1)
    run_retention_days: Optional[int] = Field(default=None, ge=1)
    job_retention_days: Optional[int] = Field(default=None, ge=1)
    batch_size: int = Field(default=500, ge=1, le=10_000)
    max_batches: int = Field(default=20, ge=1, le=1_000)


# ---------------------------------------------------------------------------
# Response envelope helpers
# ---------------------------------------------------------------------------


def success_response(
    summary: dict[str, Any],
    run_id: uuid.UUID | str | None = None,
) -> dict[str, Any]:
    """Build a successful invocation response."""
    response: dict[str, Any] = {"success": True}
    if run_id is not None:
        response["run_id"] = str(run_id)
    response["summary"] = summary
    return response


def error_response(
    error: str,
    run_id: uuid.UUID | str | None = None,
) -> dict[str, Any]:
    """Build a failed invocation response."""
    response: dict[str, Any] = {"success": False, "error": error}
    if run_id is not None:
        response["run_id"] = str(run_id)
    return response
