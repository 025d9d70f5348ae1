"""Article text extraction for scraped pages.

:func:`extract_from_html` turns a fetched page into an
:class:`ExtractedContent`: trafilatura removes boilerplate and reads the page
metadata (title, language, publication date); when it yields no text, the
visible text of the page is used instead.  Output is always safe to store in a
PostgreSQL ``text`` column: NUL bytes are removed and the body is capped at
``MAX_CONTENT_BYTES``.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from html.parser import HTMLParser
from typing import Any

import trafilatura

from discovery_pipeline.scraper.config import MAX_CONTENT_BYTES

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ExtractedContent:
    """Extracted article body plus the page metadata the queue backfills.

    Attributes:
        text: Article text, or ``None`` when the page had nothing readable.
        title: Page title.
        language: ISO 639-1 code reported by trafilatura.
        published_at: Publication time from page metadata (UTC).  Used to fill
            ``queue_entries.published_at`` when discovery found none.
    """

    text: str | None
    title: str | None
    language: str | None
    published_at: datetime | None = None


class _VisibleTextParser(HTMLParser):
    """Collect text outside of script, style and page-chrome elements."""

    hidden = frozenset({"script", "style", "noscript", "head", "meta", "link", "nav", "footer"})

    def __init__(self) -> None:
        super().__init__()
        self.parts: list[str] = []
        self._hidden_depth = 0

    def handle_starttag(self, tag: str, attrs: list) -> None:  # type: ignore[override]
        if tag.lower() in self.hidden:
            self._hidden_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() in self.hidden and self._hidden_depth:
            self._hidden_depth -= 1

    def handle_data(self, data: str) -> None:
        if not self._hidden_depth:
            self.parts.append(data)


def visible_text(html: str) -> str:
    """Return the whitespace-normalised visible text of *html*."""
    parser = _VisibleTextParser()
    parser.feed(html)
    parser.close()
    joined = html_module.unescape(" ".join(parser.parts))
    return _WHITESPACE_RE.sub(" ", joined).strip()


def parse_metadata_date(value: str | None) -> datetime | None:
    """Parse trafilatura's metadata date (``YYYY-MM-DD`` or ISO 8601) as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _run_trafilatura(html: str, url: str) -> tuple[str | None, Any]:
    """Return ``(text, metadata)`` from trafilatura; ``(None, None)`` if it raises."""
    try:
        text = trafilatura.extract(
            html,
            url=url,
            output_format="txt",
            include_comments=False,
            include_tables=True,
            no_fallback=False,
        )
        metadata = trafilatura.extract_metadata(html, default_url=url)
    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: trafilatura failed on %s: %s", url, exc)
        return None, None
    return text or None, metadata


def _storable(text: str, url: str) -> str:
    """Drop NUL bytes and cap *text* at ``MAX_CONTENT_BYTES`` of UTF-8."""
    text = text.replace("\x00", "")
    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_CONTENT_BYTES:
        return text
    logger.debug("scraper: capping %s at %d bytes", url, MAX_CONTENT_BYTES)
    return encoded[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")


def extract_from_html(html: str, url: str) -> ExtractedContent:
    """Extract the article body and metadata of one fetched page.

    Args:
        html: Page HTML; partial or malformed markup is accepted.
        url: Final URL of the page, passed to trafilatura's heuristics.

    Returns:
        :class:`ExtractedContent`; ``text`` is ``None`` only when the page
        has no visible text at all.
    """
    text, metadata = _run_trafilatura(html, url)
    if not text:
        text = visible_text(html) or None

    return ExtractedContent(
        text=_storable(text, url) if text else None,
        title=getattr(metadata, "title", None) or None,
        language=getattr(metadata, "language", None) or None,
        published_at=parse_metadata_date(getattr(metadata, "date", None)),
    )
