"""Long-running worker for the generic job queue.

Loop::

    while not stopping:
        claim one job -> dispatch to its handler -> complete or fail -> commit
        (sleep poll interval when the queue is empty,
         sleep error backoff after an unexpected loop-level error)

SIGINT and SIGTERM set a stop flag: the job in flight finishes and is
resolved, then the loop exits.  Each iteration uses a fresh session so a
broken connection never poisons later iterations.

Run standalone with ``discovery-job-worker`` (see ``pyproject.toml``) or
``python -m discovery_pipeline.jobs.worker``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import socket
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from discovery_pipeline.config.settings import get_settings
from discovery_pipeline.core.exceptions import UnknownJobTypeError
from discovery_pipeline.core.logging_config import configure_logging, invocation_context
from discovery_pipeline.core.metrics import jobs_processed_total
from discovery_pipeline.core.models.jobs import Job
from discovery_pipeline.jobs.queue import JobQueue
from discovery_pipeline.jobs.registry import get_handler

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def default_worker_id() -> str:
    """``<hostname>:<pid>`` identifier stored on claimed jobs."""
    return f"{socket.gethostname()}:{os.getpid()}"


class JobWorker:
    """Poll the job queue and run handlers until stopped.

    Args:
        session_factory: Zero-argument callable returning an async context
            manager that yields a session (``session_scope`` by default).
        queue: Job queue accessor.
        worker_id: Identifier recorded on claimed jobs.
        poll_interval: Idle sleep in seconds when no job is pending.
        error_backoff: Sleep in seconds after a loop-level error.
        handler_timeout: Seconds a handler may run; defaults to
            ``Settings.job_timeout_seconds``, never more than half the stale window.
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        queue: JobQueue | None = None,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        error_backoff: float | None = None,
        handler_timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        if session_factory is None:
            from discovery_pipeline.core.database import session_scope  # noqa: PLC0415

            session_factory = session_scope
        self._session_factory = session_factory
        self._queue = queue or JobQueue()
        self.worker_id = worker_id or default_worker_id()
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.job_poll_interval_seconds
        )
        self._error_backoff = (
            error_backoff if error_backoff is not None else settings.job_error_backoff_seconds
        )
        self._handler_timeout = min(
            handler_timeout if handler_timeout is not None else settings.job_timeout_seconds,
            settings.stale_processing_minutes * 60 / 2,
        )
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Request a graceful stop after the job in flight."""
        if not self._stop.is_set():
            logger.info("job_worker: stop requested (%s)", self.worker_id)
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT / SIGTERM to :meth:`stop` on the running loop."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self.stop)

    async def run(self, max_iterations: int | None = None) -> int:
        """Process jobs until stopped.

        Args:
            max_iterations: Optional cap on loop iterations (tests).

        Returns:
            Number of jobs processed (completed or failed).
        """
        logger.info("job_worker: started (%s)", self.worker_id)
        processed = 0
        iterations = 0
        while not self._stop.is_set():
            if max_iterations is not None and iterations >= max_iterations:
                break
            iterations += 1
            try:
                handled = await self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("job_worker: loop error; backing off %.0fs", self._error_backoff)
                await self._sleep(self._error_backoff)
                continue
            if handled:
                processed += 1
            else:
                await self._sleep(self._poll_interval)
        logger.info("job_worker: stopped after %d jobs (%s)", processed, self.worker_id)
        return processed

    async def run_once(self) -> bool:
        """Claim and process at most one job.

        Returns:
            ``True`` if a job was claimed.
        """
        async with self._session_factory() as db:
            job = await self._queue.claim_next(db, self.worker_id)
            await db.commit()
            if job is None:
                return False
            # Detached so the claimed state survives a rollback of handler work.
            db.expunge(job)
            await self._process(db, job)
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _process(self, db: AsyncSession, job: Job) -> None:
        job_type = job.job_type
        with invocation_context(str(job.id), job_id=str(job.id), job_type=job_type):
            try:
                handler = get_handler(job_type)
                result = await asyncio.wait_for(
                    handler(db, dict(job.payload or {})), timeout=self._handler_timeout
                )
            except Exception as exc:  # noqa: BLE001
                # Handler work from the failed attempt is discarded.
                await db.rollback()
                error = (
                    f"timeout after {self._handler_timeout:g}s"
                    if isinstance(exc, asyncio.TimeoutError)
                    else f"{type(exc).__name__}: {exc}"
                )
                terminal = await self._queue.fail(
                    db,
                    job,
                    error,
                    terminal=isinstance(exc, UnknownJobTypeError),
                )
                await db.commit()
                outcome = "failed" if terminal else "retried"
                jobs_processed_total.labels(job_type=job_type, outcome=outcome).inc()
                logger.warning(
                    "job_worker.job_failed",
                    extra={"attempt": job.attempts + 1, "terminal": terminal, "error": error},
                )
                return

            await self._queue.complete(db, job, result)
            await db.commit()
            jobs_processed_total.labels(job_type=job_type, outcome="completed").inc()
            logger.info("job_worker.job_completed")

    async def _sleep(self, seconds: float) -> None:
        """Sleep for *seconds* or until a stop is requested."""
        if seconds <= 0:
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)


async def _serve(worker: JobWorker) -> int:
    worker.install_signal_handlers()
    return await worker.run()


def main() -> None:
    """Console entry point: configure logging, optionally serve metrics, run the loop."""
    settings = get_settings()
    configure_logging(settings.log_level)
    if settings.metrics_port:
        from prometheus_client import start_http_server  # noqa: PLC0415

        start_http_server(settings.metrics_port)
        logger.info("job_worker: metrics on port %d", settings.metrics_port)
    asyncio.run(_serve(JobWorker()))


if __name__ == "__main__":
    main()
