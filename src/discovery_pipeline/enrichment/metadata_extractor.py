"""Rule-based metadata extraction for queue entries.

:func:`extract` is a pure function: it reads one item mapping, touches no
database or network, and returns::

    {
        "entities":   ["Acme Robotics", "Jane Doe", ...],   # most frequent first
        "type":       "funding" | "acquisition" | ... | "general",
        "topics":     ["artificial_intelligence", ...],
        "industries": ["fintech", ...],
        "temporal":   {"age_hours": 5.2, "is_breaking": False, "within_24h": True},
        "confidence": "high" | "medium" | "low" | "none",
    }

The richest text available is used: ``full_content``, else ``description``,
else ``title``.  Confidence reflects which of those was used.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

#: Hours within which an item counts as breaking news.
BREAKING_HOURS: float = 2.0

#: Maximum entities returned.
MAX_ENTITIES: int = 10

_TYPE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("funding", ("raises", "raised", "funding round", "series a", "series b", "series c",
                 "seed round", "venture capital", "led by investors")),
    ("acquisition", ("acquires", "acquired", "acquisition", "to buy", "merger", "takeover")),
    ("earnings", ("earnings", "quarterly results", "revenue of", "net income", "fiscal quarter",
                  "profit forecast", "guidance")),
    ("product_launch", ("launches", "unveils", "introduces", "rolls out", "now available",
                        "new product", "announced the release")),
    ("partnership", ("partners with", "partnership", "teams up", "collaboration with",
                     "joint venture", "alliance")),
    ("regulatory", ("regulator", "regulation", "antitrust", "lawsuit", "fined", "sec filing",
                    "compliance", "investigation into", "ruling")),
    ("leadership", ("appoints", "appointed", "names new", "steps down", "resigns",
                    "chief executive", "new ceo", "hires")),
    ("opinion", ("opinion", "op-ed", "editorial", "commentary", "i think", "we believe")),
)

_TOPIC_LEXICON: dict[str, tuple[str, ...]] = {
    "artificial_intelligence": ("artificial intelligence", " ai ", "machine learning",
                                "large language model", "generative ai", "neural network"),
    "cybersecurity": ("cybersecurity", "ransomware", "data breach", "vulnerability", "hackers"),
    "cloud": ("cloud computing", "data center", "aws", "azure", "kubernetes"),
    "semiconductors": ("semiconductor", "chipmaker", "chips", "foundry", "gpu"),
    "climate": ("climate", "emissions", "carbon", "renewable", "net zero"),
    "markets": ("stock market", "shares", "nasdaq", "s&p 500", "ipo", "valuation"),
    "labor": ("layoffs", "job cuts", "hiring freeze", "workforce", "union"),
    "crypto": ("bitcoin", "crypto", "blockchain", "stablecoin", "ethereum"),
}

_INDUSTRY_LEXICON: dict[str, tuple[str, ...]] = {
    "technology": ("software", "saas", "startup", "platform", "app "),
    "fintech": ("fintech", "payments", "banking app", "neobank", "lending platform"),
    "finance": ("bank", "investment firm", "asset manager", "hedge fund", "private equity"),
    "healthcare": ("healthcare", "hospital", "biotech", "pharmaceutical", "drug", "clinical trial"),
    "energy": ("oil", "natural gas", "solar", "wind power", "utility", "battery"),
    "automotive": ("automaker", "electric vehicle", " ev ", "self-driving", "car maker"),
    "retail": ("retailer", "e-commerce", "ecommerce", "consumer brand", "store"),
    "media": ("publisher", "streaming", "newsroom", "broadcaster", "advertising"),
    "manufacturing": ("factory", "manufacturer", "supply chain", "industrial"),
}

# Runs of capitalised words, optionally joined by "of", "&", "and", "de".
_ENTITY_RE = re.compile(
    r"\b([A-Z][\w'&.-]*[A-Za-z0-9](?:[ \t]+(?:of|and|&|de|for)?[ \t]*[A-Z][\w'&.-]*[A-Za-z0-9])+)\b"
)
_ENTITY_STOPWORDS: frozenset[str] = frozenset(
    {"The", "A", "An", "This", "That", "In", "On", "At", "For", "And", "But", "Its", "It",
     "He", "She", "They", "We", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday",
     "Saturday", "Sunday", "According", "Read", "More", "Share"}
)


def _text_for(item: Mapping[str, Any]) -> tuple[str, str]:
    """Return ``(text, confidence)`` for the richest field present."""
    for field_name, confidence in (
        ("full_content", "high"),
        ("description", "medium"),
        ("title", "low"),
    ):
        value = item.get(field_name)
        if isinstance(value, str) and value.strip():
            return value, confidence
    return "", "none"


def _entities(text: str) -> list[str]:
    counts: Counter[str] = Counter()
    first_seen: dict[str, int] = {}
    for match in _ENTITY_RE.finditer(text):
        words = match.group(1).split()
        while words and words[0] in _ENTITY_STOPWORDS:
            words = words[1:]
        if len(words) < 2:
            continue
        phrase = " ".join(words)
        counts[phrase] += 1
        first_seen.setdefault(phrase, match.start())
    ranked = sorted(counts, key=lambda p: (-counts[p], first_seen[p]))
    return ranked[:MAX_ENTITIES]


def _classify(lowered: str) -> str:
    best_type, best_hits = "general", 0
    for item_type, keywords in _TYPE_RULES:
        hits = sum(lowered.count(keyword) for keyword in keywords)
        if hits > best_hits:
            best_type, best_hits = item_type, hits
    return best_type


def _lexicon_matches(lowered: str, lexicon: dict[str, tuple[str, ...]]) -> list[str]:
    padded = f" {lowered} "
    return [label for label, keywords in lexicon.items() if any(k in padded for k in keywords)]


def _as_utc(value: Any) -> datetime | None:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _temporal(published_at: Any, now: datetime) -> dict[str, Any]:
    published = _as_utc(published_at)
    if published is None:
        return {"age_hours": None, "is_breaking": False, "within_24h": False}
    age_hours = max(0.0, (now - published).total_seconds() / 3600.0)
    return {
        "age_hours": round(age_hours, 2),
        "is_breaking": age_hours <= BREAKING_HOURS,
        "within_24h": age_hours <= 24.0,
    }


def extract(item: Mapping[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Derive structured metadata from one queue item.

    Args:
        item: Mapping with any of ``title``, ``description``,
            ``full_content``, ``published_at`` and ``raw_metadata``.  Missing
            or ``None`` fields are tolerated.
        now: Reference time for the temporal block; defaults to the current
            UTC time.

    Returns:
        The metadata dict described in the module docstring.
    """
    now = _as_utc(now) or datetime.now(tz=timezone.utc)
    text, confidence = _text_for(item)

    # Title is prepended so headline terms count even when the body is used.
    title = item.get("title") if isinstance(item.get("title"), str) else ""
    corpus = f"{title}\n{text}" if title and confidence in ("high", "medium") else text
    lowered = corpus.lower()

    industries = _lexicon_matches(lowered, _INDUSTRY_LEXICON) if corpus else []
    raw = item.get("raw_metadata")
    if isinstance(raw, Mapping):
        for industry in raw.get("industries") or []:
            if isinstance(industry, str) and industry not in industries:
                industries.append(industry)

    return {
        "entities": _entities(corpus) if corpus else [],
        "type": _classify(lowered) if corpus else "general",
        "topics": _lexicon_matches(lowered, _TOPIC_LEXICON) if corpus else [],
        "industries": industries,
        "temporal": _temporal(item.get("published_at"), now),
        "confidence": confidence,
    }
