"""Prometheus metrics for the discovery pipeline.

All metrics are module-level singletons registered on the default
``REGISTRY`` of whichever process increments them.  The standalone job
worker serves that registry over HTTP when ``Settings.metrics_port`` is set.

Metrics defined here:

  discovery_runs_total{method, status}
      Counter -- finalized discovery runs by method and final status.

  discovery_items_total{method, outcome}
      Counter -- discovered candidates by outcome (new, duplicate).

  scrape_outcomes_total{outcome}
      Counter -- scrape attempts by outcome (completed, failed, terminal).

  jobs_processed_total{job_type, outcome}
      Counter -- generic jobs by outcome (completed, retried, failed).

  celery_tasks_total{task_name, status}
      Counter -- Celery task completions by task name and outcome.

  celery_task_duration_seconds{task_name}
      Histogram -- Celery task wall-clock duration in seconds.

Usage::

    from discovery_pipeline.core.metrics import scrape_outcomes_total
    scrape_outcomes_total.labels(outcome="completed").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ---------------------------------------------------------------------------
# Discovery metrics
# ---------------------------------------------------------------------------

discovery_runs_total: Counter = Counter(
    "discovery_runs_total",
    "Finalized discovery runs by method and status.",
    labelnames=["method", "status"],
)

discovery_items_total: Counter = Counter(
    "discovery_items_total",
    "Discovered candidate items by method and outcome.",
    labelnames=["method", "outcome"],
)
"""Labels:
  method:  feed, search_engine, crawl_map
  outcome: new, duplicate
"""

# ---------------------------------------------------------------------------
# Queue metrics
# ---------------------------------------------------------------------------

scrape_outcomes_total: Counter = Counter(
    "scrape_outcomes_total",
    "Scrape attempts by outcome.",
    labelnames=["outcome"],
)

jobs_processed_total: Counter = Counter(
    "jobs_processed_total",
    "Generic background jobs by type and outcome.",
    labelnames=["job_type", "outcome"],
)

# ---------------------------------------------------------------------------
# Celery task metrics (populated in workers/tasks.py)
# ---------------------------------------------------------------------------

celery_tasks_total: Counter = Counter(
    "celery_tasks_total",
    "Celery task completions by task name and outcome.",
    labelnames=["task_name", "status"],
)

celery_task_duration_seconds: Histogram = Histogram(
    "celery_task_duration_seconds",
    "Celery task wall-clock duration in seconds.",
    labelnames=["task_name"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
)
