"""Abstract base class for all discovery methods.

Every discovery strategy must subclass ``DiscoveryMethod`` and implement
``discover``.  Registration with the method registry happens via the
``@register`` decorator in :mod:`discovery_pipeline.discovery.registry`.

Example skeleton::

    @register
    class MyDiscovery(DiscoveryMethod):
        method = "my_method"

        async def discover(self, source): ...

The orchestrator owns everything that is shared between methods (run
records, recency filtering, dedup, inserts, source health).  A method only
turns one :class:`~discovery_pipeline.core.models.sources.Source` into a list
of :class:`Candidate` objects, raising
:class:`~discovery_pipeline.core.exceptions.DiscoveryError` (or a subclass)
when it cannot.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.models.sources import Source
from discovery_pipeline.discovery.config import DEFAULT_RECENCY_HOURS, HTTP_TIMEOUT_SECONDS


@dataclass
class Candidate:
    """A discovered item that may become a queue entry.

    Attributes:
        url: Canonical item URL (the dedup key).
        title: Item title, if known.
        description: Snippet or summary, if known.
        published_at: Timezone-aware publication time, or ``None`` when the
            method could not determine one.
        raw: Method-specific extras stored in ``QueueEntry.raw_metadata``.
    """

    url: str
    title: str | None = None
    description: str | None = None
    published_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class DiscoveryMethod(ABC):
    """Abstract base class for discovery strategies.

    Class attributes that every subclass must define:

    - ``method`` -- key matching ``Source.discovery_method``.

    Args:
        http_client: Optional injected :class:`httpx.AsyncClient`.  The
            orchestrator shares one client per run; tests inject one backed by
            respx.  When ``None``, :meth:`_build_http_client` creates one.
    """

    method: str = ""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client

    @abstractmethod
    async def discover(self, source: Source) -> list[Candidate]:
        """Return candidate items currently available on *source*.

        Implementations should not filter by recency or dedup against the
        queue; the orchestrator does both.

        Raises:
            DiscoveryError: When the source cannot be read.
            QuotaExceededError: When an upstream limit stops the method.
        """

    def recency_hours(self, source: Source) -> int:
        """Return the recency window for *source* in hours.

        ``monitor_config["recency_hours"]`` overrides the method default.
        """
        configured = (source.monitor_config or {}).get("recency_hours")
        if isinstance(configured, (int, float)) and configured > 0:
            return int(configured)
        return DEFAULT_RECENCY_HOURS.get(self.method, 48)

    def is_recent(self, candidate: Candidate, source: Source, now: datetime) -> bool:
        """Return ``True`` if *candidate* falls inside the source's recency window.

        Candidates without a publication time are kept; the method already
        applied whatever date inference it could.
        """
        if candidate.published_at is None:
            return True
        return candidate.published_at >= now - timedelta(hours=self.recency_hours(source))

    def _build_http_client(self) -> httpx.AsyncClient:
        """Return the injected client or a new one with the discovery timeout."""
        if self._http_client is not None:
            return self._http_client
        return build_discovery_client()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} method={self.method!r}>"


def build_discovery_client() -> httpx.AsyncClient:
    """Create an :class:`httpx.AsyncClient` configured for discovery requests."""
    return httpx.AsyncClient(
        timeout=HTTP_TIMEOUT_SECONDS,
        follow_redirects=True,
        headers={"User-Agent": get_settings().http_user_agent},
    )
