"""Celery application for the discovery pipeline.

Configures the broker, result backend, serialization and the Beat schedule.
All configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A discovery_pipeline.workers.celery_app worker --loglevel=info

Usage (starting the Beat scheduler)::

    celery -A discovery_pipeline.workers.celery_app beat --loglevel=info

Usage (manual trigger from application code)::

    from discovery_pipeline.workers.celery_app import celery_app

    celery_app.send_task(
        "discovery_pipeline.workers.tasks.discover_feeds",
        kwargs={"request": {"group": 2}},
    )
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_postrun, task_prerun, worker_process_init
from dotenv import load_dotenv

_logger = logging.getLogger(__name__)

# Load .env into os.environ before settings are read.
load_dotenv()

from discovery_pipeline.config.settings import get_settings  # noqa: E402
from discovery_pipeline.core.logging_config import (  # noqa: E402
    configure_logging,
    invocation_id_var,
)

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "discovery_pipeline",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["discovery_pipeline.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Task arguments and results are plain dicts; JSON keeps them inspectable.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Acknowledge after completion so a crashed worker's task is redelivered.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86_400,
    # Discovery runs are bounded by max_batches; these are a safety net.
    task_soft_time_limit=1_800,
    task_time_limit=2_400,
    task_routes={
        "discovery_pipeline.workers.tasks.scrape_queue_batch": {
            "queue": "scraping",
        },
    },
    beat_schedule_filename="celerybeat-schedule",
)

from discovery_pipeline.workers.beat_schedule import beat_schedule  # noqa: E402

celery_app.conf.beat_schedule = beat_schedule


# ---------------------------------------------------------------------------
# Worker process setup
# ---------------------------------------------------------------------------
@worker_process_init.connect
def _init_worker_process(**kwargs: object) -> None:  # noqa: ARG001
    """Configure logging and drop inherited DB connections after fork.

    The async engine's pooled connections belong to the parent's event loop
    and cannot be reused by the child.
    """
    configure_logging(settings.log_level)

    from discovery_pipeline.core import database as _db  # noqa: PLC0415

    _db.async_engine.sync_engine.dispose(close=False)


# ---------------------------------------------------------------------------
# Per-task invocation id
# ---------------------------------------------------------------------------
@task_prerun.connect
def _bind_invocation_id(task_id: str | None = None, **kwargs: object) -> None:  # noqa: ARG001
    """Tag every log record emitted during a task with the Celery task id."""
    invocation_id_var.set(task_id)


@task_postrun.connect
def _after_task(**kwargs: object) -> None:  # noqa: ARG001
    """Clear the invocation id and dispose the async pool.

    Each task body calls ``asyncio.run()``; pooled asyncpg connections are
    bound to the loop that call created and then closed.
    """
    invocation_id_var.set(None)
    try:
        from discovery_pipeline.core import database as _db  # noqa: PLC0415

        _db.async_engine.sync_engine.dispose(close=False)
    except Exception:  # noqa: BLE001
        _logger.debug("celery_app: engine dispose after task failed", exc_info=True)
