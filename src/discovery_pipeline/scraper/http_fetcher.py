"""Page fetcher for the scrape worker.

:func:`fetch_url` never raises for network or HTTP problems.  Every failure
comes back as a :class:`FetchResult` whose ``transient`` flag decides how the
worker reports it: transient failures (timeouts, connection errors, 5xx, 429)
may succeed on the row's next attempt, everything else will not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from discovery_pipeline.scraper.config import BINARY_CONTENT_TYPES, TRANSIENT_STATUS_CODES

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Outcome of one GET.

    Attributes:
        html: Decoded body on success, else ``None``.
        status_code: Final HTTP status; ``None`` when no response arrived.
        final_url: URL after redirects (the request URL on network errors).
        error: Short failure description; ``None`` on success.
        transient: Whether a later attempt could succeed.
    """

    html: str | None
    status_code: int | None
    final_url: str | None
    error: str | None
    transient: bool = False

    @classmethod
    def failure(
        cls,
        url: str,
        error: str,
        status_code: int | None = None,
        transient: bool = False,
    ) -> "FetchResult":
        return cls(html=None, status_code=status_code, final_url=url, error=error, transient=transient)


def _is_binary_content_type(content_type: str) -> bool:
    """Return ``True`` for PDFs, images, archives and other non-page media types."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith(tuple(BINARY_CONTENT_TYPES))


def _is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in TRANSIENT_STATUS_CODES


async def fetch_url(
    url: str,
    *,
    client: httpx.AsyncClient,
    timeout: float,
) -> FetchResult:
    """GET *url* with redirects and classify the outcome.

    Args:
        url: Page to fetch.
        client: Shared client; its headers (user agent) apply.
        timeout: httpx timeout in seconds.  The worker adds its own hard
            timeout around the whole call.

    Returns:
        :class:`FetchResult` with ``html`` set only for a non-error, textual
        response.
    """
    try:
        response = await client.get(url, timeout=timeout, follow_redirects=True)
    except httpx.TimeoutException:
        logger.warning("scraper: timeout fetching %s", url)
        return FetchResult.failure(url, "timeout", transient=True)
    except httpx.TooManyRedirects:
        logger.warning("scraper: redirect loop at %s", url)
        return FetchResult.failure(url, "too many redirects")
    except httpx.RequestError as exc:
        logger.warning("scraper: request to %s failed: %s", url, exc)
        return FetchResult.failure(url, f"request error: {exc}", transient=True)

    final_url = str(response.url)
    status = response.status_code

    if status >= 400:
        logger.info("scraper: HTTP %d for %s", status, url)
        return FetchResult.failure(
            final_url, f"HTTP {status}", status_code=status, transient=_is_transient_status(status)
        )

    content_type = response.headers.get("content-type", "")
    if _is_binary_content_type(content_type):
        logger.info("scraper: %s is %s, not a page", url, content_type)
        return FetchResult.failure(final_url, f"binary content-type: {content_type}", status_code=status)

    return FetchResult(html=response.text, status_code=status, final_url=final_url, error=None)
