"""SQLAlchemy ORM model for content sources.

A ``Source`` is a catalogued origin of candidate URLs (a news site, a blog,
a trade publication) together with the discovery method used to find new
items on it.  Sources are created by configuration or an admin action and are
never hard-deleted; disabling a source sets ``active = False``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from discovery_pipeline.core.models.base import Base, JSONType, TimestampMixin

#: Discovery method keys.  Each matches the ``method`` attribute of exactly
#: one registered :class:`~discovery_pipeline.discovery.base.DiscoveryMethod`.
METHOD_FEED: str = "feed"
METHOD_SEARCH_ENGINE: str = "search_engine"
METHOD_CRAWL_MAP: str = "crawl_map"

DISCOVERY_METHODS: tuple[str, ...] = (METHOD_FEED, METHOD_SEARCH_ENGINE, METHOD_CRAWL_MAP)


class Source(TimestampMixin, Base):
    """A content source monitored by one discovery method.

    Attributes:
        id: UUID primary key.
        name: Display name (e.g. ``"TechCrunch"``).
        url: Site address or endpoint.  For feed sources this may be the feed
            URL itself; otherwise the site origin.
        discovery_method: ``"feed"``, ``"search_engine"`` or ``"crawl_map"``.
        tier: Priority tier, lower is more urgent.  Copied onto every queue
            entry discovered from this source.
        industries: List of industry tags attached to discovered items.
        active: Soft-disable flag.  Inactive sources are never loaded.
        consecutive_failures: Failed discovery attempts since the last
            success.  Used for ordering only, never for auto-disablement.
        last_successful_discovery: Timestamp of the last successful run.
        group: Optional shard number for splitting sources across schedules.
        monitor_config: Method-specific options: ``feed_url``,
            ``sitemap_url``, ``search_queries`` and ``recency_hours``.
    """

    __tablename__ = "sources"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    url: Mapped[str] = mapped_column(sa.Text, nullable=False)
    discovery_method: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    tier: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=2,
        server_default=sa.text("2"),
    )
    industries: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    active: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=True,
        server_default=sa.true(),
    )
    consecutive_failures: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        default=0,
        server_default=sa.text("0"),
    )
    last_successful_discovery: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    group: Mapped[Optional[int]] = mapped_column(
        "group_number",
        sa.Integer,
        nullable=True,
    )
    monitor_config: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        sa.CheckConstraint(
            "discovery_method IN ('feed', 'search_engine', 'crawl_map')",
            name="ck_sources_discovery_method",
        ),
        sa.Index("idx_sources_method_active", "discovery_method", "active"),
        sa.Index("idx_sources_group", "group_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<Source id={self.id} name={self.name!r} "
            f"method={self.discovery_method!r} tier={self.tier}>"
        )
