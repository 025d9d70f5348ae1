"""Structured logging for Celery tasks and the standalone job worker.

Every process calls :func:`configure_logging` once: the Celery worker on
``worker_process_init``, the job worker in ``main()``.  After that both
logging APIs render the same JSON records.

Stdlib (most modules; ``extra`` fields become top-level keys)::

    logger = logging.getLogger(__name__)
    logger.info("discovery.run_started", extra={"method": "feed", "sources": 12})

structlog (Celery task wrappers)::

    logger = structlog.get_logger(__name__).bind(task="discover_feeds")
    logger.info("discover_feeds: complete", run_id=run_id)

Records emitted while an invocation is active carry its ``invocation_id``
(Celery task id or job id), plus anything bound with
:func:`invocation_context`.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

invocation_id_var: ContextVar[str | None] = ContextVar("invocation_id", default=None)
"""Id of the Celery task or job currently running in this context."""

_REDACTED = "[REDACTED]"

#: Lower-cased key fragments whose values never reach a renderer.
_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_key",
    "password",
    "secret",
    "token",
    "bearer",
    "authorization",
    "x-api-key",
})

#: Libraries that log every request at INFO; raised to WARNING outside DEBUG.
_CHATTY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "trafilatura", "celery.beat")


def _is_secret(key: object) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in _SECRET_SUBSTRINGS)


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask secret-bearing keys at the top level and one dict level down.

    The nested pass covers header dicts such as the search client's
    ``X-API-KEY`` and the crawl service's ``Authorization``.
    """
    for key, value in list(event_dict.items()):
        if _is_secret(key):
            event_dict[key] = _REDACTED
        elif isinstance(value, dict):
            for nested_key in [k for k in value if _is_secret(k)]:
                value[nested_key] = _REDACTED
    return event_dict


def _inject_invocation_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    invocation_id = invocation_id_var.get()
    if invocation_id is not None:
        event_dict.setdefault("invocation_id", invocation_id)
    return event_dict


@contextmanager
def invocation_context(invocation_id: str | None, **fields: Any) -> Iterator[None]:
    """Tag every record emitted inside the block with *invocation_id* and *fields*.

    Usage::

        with invocation_context(str(job.id), job_type=job.job_type):
            await handler(db, payload)
    """
    token = invocation_id_var.set(invocation_id)
    try:
        with structlog.contextvars.bound_contextvars(**fields):
            yield
    finally:
        invocation_id_var.reset(token)


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib logging and structlog through one stdout handler.

    ``DEBUG`` renders coloured console lines for local runs; any other level
    renders newline-delimited JSON with ``timestamp``, ``level``, ``logger``,
    ``event`` and, when set, ``invocation_id``.  Calling it again replaces
    the root handler rather than adding a second one.

    Args:
        log_level: Level name, case-insensitive.  Unknown names mean ``INFO``.
    """
    level_name = log_level.upper()
    debug = level_name == "DEBUG"

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_invocation_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: Processor = (
        structlog.dev.ConsoleRenderer(colors=True) if debug else structlog.processors.JSONRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            # ExtraAdder runs first so ``extra={...}`` fields are redacted too.
            foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared],
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not debug:
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
