"""Job handler registry.

Handlers are async callables ``handler(db, payload) -> dict | None``
registered under a ``job_type`` with :func:`job_handler`::

    @job_handler("cache_warming")
    async def warm_cache(db, payload):
        ...
        return {"cached": 3}

The returned dict is stored as the job's ``result``.  Raising marks the
attempt as failed.  Producers outside this package register their own types
the same way before starting a :class:`~discovery_pipeline.jobs.worker.JobWorker`.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.core.exceptions import UnknownJobTypeError

logger = logging.getLogger(__name__)

JobHandler = Callable[[AsyncSession, dict[str, Any]], Awaitable[dict[str, Any] | None]]

_HANDLERS: dict[str, JobHandler] = {}

_BUILTIN_MODULES: tuple[str, ...] = ("discovery_pipeline.jobs.handlers",)


def job_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """Decorator registering the wrapped coroutine function for *job_type*."""
    if not job_type:
        raise ValueError("job_type must be a non-empty string")

    def decorator(func: JobHandler) -> JobHandler:
        if job_type in _HANDLERS and _HANDLERS[job_type] is not func:
            logger.warning("Job handler for '%s' re-registered by %s", job_type, func.__qualname__)
        _HANDLERS[job_type] = func
        return func

    return decorator


def get_handler(job_type: str) -> JobHandler:
    """Return the handler for *job_type*.

    Raises:
        UnknownJobTypeError: If nothing is registered under *job_type*.
    """
    autodiscover()
    try:
        return _HANDLERS[job_type]
    except KeyError:
        raise UnknownJobTypeError(job_type) from None


def list_job_types() -> list[str]:
    """Return the sorted registered job types."""
    autodiscover()
    return sorted(_HANDLERS)


def autodiscover() -> None:
    """Import the built-in handler modules so their decorators run."""
    for module_name in _BUILTIN_MODULES:
        importlib.import_module(module_name)
