"""Application-wide exception hierarchy for the discovery pipeline.

All custom exceptions subclass ``PipelineError``, enabling consistent error
handling and structured logging across discovery, scraping, cleanup and the
generic job queue.

Hierarchy::

    PipelineError
    ├── DiscoveryError                (source_id, method)
    │   └── QuotaExceededError        (retry_after: float)
    ├── TransientFetchError           (url, status_code)
    ├── PermanentContentError         (url, reason)
    ├── DataIntegrityError            (table)
    ├── TerminalAttemptsExceeded      (attempts, max_attempts)
    └── UnknownJobTypeError           (job_type)

``TransientFetchError`` and ``PermanentContentError`` are charged identically
against an item's retry budget.  ``QuotaExceededError`` is the only error that
changes the control flow of an entire discovery run: it stops further upstream
requests without marking already-processed sources as failed.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all discovery pipeline exceptions.

    Callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Discovery exceptions
# ---------------------------------------------------------------------------


class DiscoveryError(PipelineError):
    """Raised when a discovery method fails for a source.

    Args:
        message: Human-readable description of the failure.
        source_id: String UUID of the source being discovered.
        method: Discovery method key (e.g. ``"feed"``).
    """

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        method: str | None = None,
    ) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.method = method


class QuotaExceededError(DiscoveryError):
    """Raised when an upstream rate limit or daily quota is exhausted.

    The orchestrator stops issuing upstream requests for the remainder of the
    run and reports the run as ``partial``.

    Args:
        message: Human-readable description of the limit.
        retry_after: Seconds until the quota is expected to reset.
        source_id: Source being processed when the quota was hit.
        method: Discovery method key.
        partial_results: Candidates collected for the source before the
            limit was hit.  The orchestrator still persists them.
    """

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        source_id: str | None = None,
        method: str | None = None,
        partial_results: list | None = None,  # type: ignore[type-arg]
    ) -> None:
        super().__init__(message, source_id=source_id, method=method)
        self.retry_after = retry_after
        self.partial_results = partial_results or []


# ---------------------------------------------------------------------------
# Fetch / content exceptions
# ---------------------------------------------------------------------------


class TransientFetchError(PipelineError):
    """Network error, timeout or upstream 5xx while fetching a page.

    Not retried within the same invocation; the queue row stays eligible for
    the next scheduled run until its attempt budget is spent.

    Args:
        message: Human-readable description.
        url: URL that failed.
        status_code: HTTP status code, if a response was received.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class PermanentContentError(PipelineError):
    """A page was fetched but its content is unusable (empty, paywalled, a listing page).

    Args:
        message: Human-readable description.
        url: URL whose content was rejected.
        reason: Short machine-readable reason code (e.g. ``"too_short"``).
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.reason = reason


# ---------------------------------------------------------------------------
# Storage exceptions
# ---------------------------------------------------------------------------


class DataIntegrityError(PipelineError):
    """Raised when a cleanup batch cannot be deleted safely.

    The batch is rolled back before this is raised so that dependent rows are
    never removed without their parents (or vice versa).

    Args:
        message: Human-readable description.
        table: Table being purged when the failure occurred.
    """

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class TerminalAttemptsExceeded(PipelineError):
    """An item or job reached its maximum attempt count and is now terminally failed.

    Args:
        message: Human-readable description.
        attempts: Attempts consumed.
        max_attempts: Configured maximum.
    """

    def __init__(self, message: str, attempts: int, max_attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.max_attempts = max_attempts


# ---------------------------------------------------------------------------
# Job queue exceptions
# ---------------------------------------------------------------------------


class UnknownJobTypeError(PipelineError):
    """Raised when a claimed job has no registered handler.

    Args:
        job_type: The unregistered discriminator value.
    """

    def __init__(self, job_type: str) -> None:
        super().__init__(f"No handler registered for job type '{job_type}'")
        self.job_type = job_type
