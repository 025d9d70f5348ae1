"""HTTP client helper for search-engine discovery.

Contains the low-level request function for a Serper-compatible search API
(``POST`` JSON ``{"q", "num", "page", "tbs"}``, response ``{"organic": [...]}``).
Kept separate from :mod:`discovery_pipeline.discovery.search_engine` so that
error mapping is testable on its own.

This module is private to the discovery package (leading underscore).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from discovery_pipeline.core.exceptions import DiscoveryError, QuotaExceededError

logger = logging.getLogger(__name__)


async def fetch_search_page(
    client: httpx.AsyncClient,
    *,
    api_url: str,
    api_key: str,
    query: str,
    page: int,
    num: int,
    recency: str | None = None,
) -> list[dict[str, Any]]:
    """Fetch one page of organic search results.

    Args:
        client: Shared HTTP client.
        api_url: Search endpoint.
        api_key: API key sent as ``X-API-KEY``.
        query: Search query string.
        page: Page number (1-indexed).
        num: Results requested per page.
        recency: Optional ``tbs`` time filter (e.g. ``"qdr:d"``).

    Returns:
        List of raw organic result dicts (may be empty).

    Raises:
        QuotaExceededError: On HTTP 429 or a quota message in a 403/402 body.
        DiscoveryError: On 401/403 (invalid key), other non-2xx responses and
            network errors.
    """
    payload: dict[str, Any] = {"q": query, "num": num, "page": page}
    if recency:
        payload["tbs"] = recency
    headers = {"X-API-KEY": api_key, "Content-Type": "application/json"}

    try:
        response = await client.post(api_url, json=payload, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        code = exc.response.status_code
        body = exc.response.text[:200]
        if code == 429 or (code in (402, 403) and "quota" in body.lower()):
            retry_after = float(exc.response.headers.get("Retry-After", 3_600))
            raise QuotaExceededError(
                f"search_engine: HTTP {code} - quota exhausted",
                retry_after=retry_after,
                method="search_engine",
            ) from exc
        if code in (401, 403):
            raise DiscoveryError(
                f"search_engine: HTTP {code} - invalid API key",
                method="search_engine",
            ) from exc
        raise DiscoveryError(
            f"search_engine: HTTP {code} - {body}",
            method="search_engine",
        ) from exc
    except httpx.RequestError as exc:
        raise DiscoveryError(
            f"search_engine: network error - {exc}",
            method="search_engine",
        ) from exc

    return response.json().get("organic", [])
