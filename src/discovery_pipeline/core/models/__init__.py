"""SQLAlchemy ORM models for the discovery pipeline.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from discovery_pipeline.core.models import Source``
   without knowing which sub-module a model lives in.
3. Foreign keys resolve at ``metadata.create_all`` time in tests.
"""

from __future__ import annotations

from discovery_pipeline.core.models.base import Base, JSONType, TimestampMixin, utcnow
from discovery_pipeline.core.models.jobs import Job
from discovery_pipeline.core.models.queue import EntryMatch, QueueEntry
from discovery_pipeline.core.models.runs import DiscoveryRun
from discovery_pipeline.core.models.sources import Source

__all__ = [
    # Base
    "Base",
    "JSONType",
    "TimestampMixin",
    "utcnow",
    # Registry
    "Source",
    # Queue
    "QueueEntry",
    "EntryMatch",
    # Audit
    "DiscoveryRun",
    # Jobs
    "Job",
]
