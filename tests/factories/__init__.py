"""Factory Boy model factories for test data generation.

Available factories
-------------------
SourceFactory       -- ``Source`` ORM object (feed method by default)
QueueEntryFactory   -- ``QueueEntry`` ORM object (pending, no attempts)
EntryMatchFactory   -- ``EntryMatch`` ORM object
DiscoveryRunFactory -- ``DiscoveryRun`` ORM object (running)
JobFactory          -- ``Job`` ORM object (pending)

Factories only build objects; add them to a session and commit in the test.
"""

from __future__ import annotations

from tests.factories.pipeline import (
    DiscoveryRunFactory,
    EntryMatchFactory,
    JobFactory,
    QueueEntryFactory,
    SourceFactory,
)

__all__ = [
    "DiscoveryRunFactory",
    "EntryMatchFactory",
    "JobFactory",
    "QueueEntryFactory",
    "SourceFactory",
]
