"""Celery Beat periodic task schedule for the discovery pipeline.

This module is imported by ``celery_app.py`` and applied via
``celery_app.conf.beat_schedule``.  All times are UTC.

Schedule overview:

+---------------------------+---------------------+-----------------------------+
| Task name                 | Schedule            | Purpose                     |
+===========================+=====================+=============================+
| discover_feeds            | Every 30 minutes    | Poll feed sources.          |
+---------------------------+---------------------+-----------------------------+
| discover_search           | Hourly at :05       | Query the search API for    |
|                           |                     | search-engine sources.      |
+---------------------------+---------------------+-----------------------------+
| discover_crawl            | Every 2 hours       | Map crawl-map sources.      |
+---------------------------+---------------------+-----------------------------+
| scrape_queue_batch        | Every 2 minutes     | Drain the scrape queue.     |
+---------------------------+---------------------+-----------------------------+
| enrich_metadata_batch     | Every 5 minutes     | Extract item metadata.      |
+---------------------------+---------------------+-----------------------------+
| requeue_stale_processing  | Every 15 minutes    | Return abandoned claims to  |
|                           |                     | ``pending``.                |
+---------------------------+---------------------+-----------------------------+
| cleanup_expired_data      | 03:30 daily         | Enforce retention windows.  |
+---------------------------+---------------------+-----------------------------+

``expires`` drops a run that could not start before its successor is due, so
a backlog on the broker never replays a burst of identical invocations.
"""

from __future__ import annotations

from celery.schedules import crontab

_TASKS = "discovery_pipeline.workers.tasks"

#: Celery Beat schedule dict.  Applied to ``celery_app.conf.beat_schedule``.
beat_schedule: dict[str, dict] = {  # type: ignore[type-arg]
    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    "discover_feeds": {
        "task": f"{_TASKS}.discover_feeds",
        "schedule": crontab(minute="*/30"),
        "options": {"queue": "celery", "expires": 1_500},
    },
    "discover_search": {
        "task": f"{_TASKS}.discover_search",
        "schedule": crontab(minute=5),
        "options": {"queue": "celery", "expires": 3_000},
    },
    "discover_crawl": {
        "task": f"{_TASKS}.discover_crawl",
        "schedule": crontab(minute=15, hour="*/2"),
        "options": {"queue": "celery", "expires": 6_000},
    },
    # ------------------------------------------------------------------
    # Scrape queue and enrichment
    # ------------------------------------------------------------------
    "scrape_queue_batch": {
        "task": f"{_TASKS}.scrape_queue_batch",
        "schedule": crontab(minute="*/2"),
        "options": {"queue": "scraping", "expires": 100},
    },
    "enrich_metadata_batch": {
        "task": f"{_TASKS}.enrich_metadata_batch",
        "schedule": crontab(minute="*/5"),
        "options": {"queue": "celery", "expires": 240},
    },
    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    "requeue_stale_processing": {
        "task": f"{_TASKS}.requeue_stale_processing",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "celery", "expires": 600},
    },
    "cleanup_expired_data": {
        "task": f"{_TASKS}.cleanup_expired_data",
        "schedule": crontab(hour=3, minute=30),
        "options": {"queue": "celery", "expires": 3_600},
    },
}
