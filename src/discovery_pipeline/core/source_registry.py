"""Source registry: read active sources and record discovery health.

The registry is the only writer of the ``sources`` health fields
(``consecutive_failures`` and ``last_successful_discovery``).  Failures are
used to order sources, never to disable them: disabling is an explicit
administrative action via :meth:`SourceRegistry.set_active`.

Usage::

    registry = SourceRegistry()
    async with session_scope() as db:
        sources = await registry.list_active(db, method="feed", limit=50)
        await registry.record_outcome(db, sources[0].id, success=True)
        await db.commit()
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.core.models.base import utcnow
from discovery_pipeline.core.models.sources import Source

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Catalogue of content sources.

    Stateless.  Methods never commit: the caller owns the transaction so that
    a source's outcome is persisted together with the queue entries it
    produced.
    """

    async def list_active(
        self,
        db: AsyncSession,
        method: str | None = None,
        tier: int | None = None,
        group: int | None = None,
        source_ids: Sequence[uuid.UUID] | None = None,
        limit: int | None = None,
    ) -> list[Source]:
        """Return active sources matching the filter.

        Sources that have never been discovered come first, then the ones
        discovered longest ago; ties are broken by tier so that urgent
        sources win when ``limit`` truncates the list.

        Args:
            db: Active async session.
            method: Discovery method key to filter on.
            tier: Exact tier to filter on.
            group: Shard group to filter on.
            source_ids: Restrict to these ids.
            limit: Maximum number of sources returned.

        Returns:
            List of :class:`Source` rows.
        """
        stmt = select(Source).where(Source.active.is_(True))
        if method is not None:
            stmt = stmt.where(Source.discovery_method == method)
        if tier is not None:
            stmt = stmt.where(Source.tier == tier)
        if group is not None:
            stmt = stmt.where(Source.group == group)
        if source_ids:
            stmt = stmt.where(Source.id.in_(list(source_ids)))
        stmt = stmt.order_by(
            sa.nulls_first(Source.last_successful_discovery.asc()),
            Source.tier.asc(),
            Source.name.asc(),
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def record_outcome(
        self,
        db: AsyncSession,
        source_id: uuid.UUID,
        success: bool,
    ) -> None:
        """Update a source's health counters after a discovery attempt.

        On success the failure counter is reset and
        ``last_successful_discovery`` is set to now.  On failure the counter
        is incremented in SQL so that concurrent runs do not lose updates.
        """
        if success:
            stmt = (
                update(Source)
                .where(Source.id == source_id)
                .values(consecutive_failures=0, last_successful_discovery=utcnow())
            )
        else:
            stmt = (
                update(Source)
                .where(Source.id == source_id)
                .values(consecutive_failures=Source.consecutive_failures + 1)
            )
        await db.execute(stmt)

    async def set_active(
        self,
        db: AsyncSession,
        source_id: uuid.UUID,
        active: bool,
    ) -> bool:
        """Enable or disable a source.

        Returns:
            ``True`` if a source row was updated.
        """
        result = await db.execute(
            update(Source).where(Source.id == source_id).values(active=active)
        )
        changed = (result.rowcount or 0) > 0
        logger.info(
            "source_active_changed",
            extra={"source_id": str(source_id), "active": active, "changed": changed},
        )
        return changed
