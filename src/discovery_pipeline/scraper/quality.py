"""Content acceptance checks for scraped pages.

A page that was fetched and extracted can still be useless: a section front
listing other articles or a stub too short to be an article.
:func:`validate_content` rejects those with
:class:`~discovery_pipeline.core.exceptions.PermanentContentError` so that the
queue row is charged an attempt instead of being stored as completed.

Paywall and cookie-consent pages still carry a usable headline and lead, so
they are accepted and returned flags (``paywall`` or ``cookie_wall``, plus
``limited_content``) that the worker merges into ``raw_metadata``.
"""

from __future__ import annotations

import re

from discovery_pipeline.core.exceptions import PermanentContentError
from discovery_pipeline.scraper.config import (
    COOKIE_WALL_DENSITY,
    COOKIE_WALL_MAX_CHARS,
    MIN_ARTICLE_CHARS,
    PAYWALL_MIN_MATCHES,
    QUALITY_SAMPLE_CHARS,
)

_NON_ARTICLE_SUFFIXES: tuple[str, ...] = (".xml", ".rss", ".pdf", ".zip")

_PAYWALL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"subscribe to continue reading",
        r"this article is for subscribers only",
        r"become a (member|subscriber) to (read|access)",
        r"sign up to unlock this article",
        r"upgrade to premium",
        r"register to read",
        r"complete your (free )?registration",
        r"you have reached your (free )?article limit",
    )
)

_COOKIE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"we use cookies",
        r"cookie (policy|preferences|settings)",
        r"accept (all )?cookies",
        r"privacy policy",
    )
)

_LISTING_TITLE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(latest|recent|all|top)\s+(news|articles|stories|posts|updates)\b",
        r"^(our|featured)\s+(insights?|articles?|content)\b",
        r"^press releases?\s*$",
        r"\|\s*press releases?\s*$",
        r"^news\s*(center|room|hub)\s*$",
    )
)

_LIST_LINK_RE = re.compile(r"\n\s*[-*]\s*\[.*?\]\(")
_LOAD_MORE_RE = re.compile(
    r"view all (articles|news|posts|stories)|see more|load more|show more",
    re.IGNORECASE,
)
_BREADCRUMB_RE = re.compile(r"home\s*[>/]\s*(news|insights|articles)", re.IGNORECASE)
_SHORT_DATE_RE = re.compile(
    r"\b\d{1,2}\s+(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)",
    re.IGNORECASE,
)


def _listing_signals(sample: str) -> int:
    """Count independent signs that *sample* is a list of other articles."""
    return sum(
        (
            len(_LIST_LINK_RE.findall(sample)) > 10,
            bool(_LOAD_MORE_RE.search(sample)),
            bool(_BREADCRUMB_RE.search(sample)),
            len(_SHORT_DATE_RE.findall(sample)) > 5,
        )
    )


def _is_cookie_wall(content: str, sample: str) -> bool:
    """Short page whose text is mostly a cookie or privacy notice."""
    if len(content) >= COOKIE_WALL_MAX_CHARS:
        return False
    hits = sum(1 for p in _COOKIE_PATTERNS if p.search(sample))
    return hits / (len(content) / 500) > COOKIE_WALL_DENSITY


def validate_content(text: str | None, title: str | None, url: str) -> dict[str, bool]:
    """Check that extracted *text* is a usable article.

    Args:
        text: Extracted article text.
        title: Page title, if known.
        url: Page URL.

    Returns:
        Flags to store with the content; empty for a regular article.

    Raises:
        PermanentContentError: With ``reason`` one of ``non_article``,
            ``listing_page`` or ``too_short``.
    """
    path = url.lower().split("?", 1)[0]
    if path.endswith(_NON_ARTICLE_SUFFIXES):
        raise PermanentContentError(
            f"not an article URL: {url}", url=url, reason="non_article"
        )

    content = (text or "").strip()
    if title and any(p.search(title.strip()) for p in _LISTING_TITLE_PATTERNS):
        raise PermanentContentError(
            f"listing page title '{title[:80]}'", url=url, reason="listing_page"
        )

    sample = content[:QUALITY_SAMPLE_CHARS]
    if _listing_signals(sample) >= 2:
        raise PermanentContentError(
            "content looks like an article listing", url=url, reason="listing_page"
        )

    if len(content) < MIN_ARTICLE_CHARS:
        raise PermanentContentError(
            f"content too short ({len(content)} chars)", url=url, reason="too_short"
        )

    paywall_hits = sum(1 for p in _PAYWALL_PATTERNS if p.search(sample))
    if paywall_hits >= PAYWALL_MIN_MATCHES:
        return {"paywall": True, "limited_content": True}
    if _is_cookie_wall(content, sample):
        return {"cookie_wall": True, "limited_content": True}
    return {}
