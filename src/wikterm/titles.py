"""Article title normalisation and fuzzy suggestions.

Pure business logic with no knowledge of the cache, the network or the UI.
"""

from __future__ import annotations

import hashlib
import re
from urllib.parse import quote

from rapidfuzz import fuzz, process

_WHITESPACE_RE = re.compile(r"\s+")


def normalise_title(raw: str) -> str:
    """Normalise a raw title or query into an article key.

    Steps (order matters):
      1. Underscores to spaces:  "New_York" → "New York"
      2. Fold whitespace runs:   "New \\t York" → "New York"
      3. Trim
      4. Upper-case the first character (MediaWiki's first-letter rule);
         the rest of the title stays case-sensitive.
    """
    title = raw.replace("_", " ")
    title = _WHITESPACE_RE.sub(" ", title)
    title = title.strip()
    if not title:
        return ""
    return title[0].upper() + title[1:]


def storage_key(key: str) -> str:
    """Return the collision-free storage identity for a normalised key."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def content_digest(raw_content: bytes) -> str:
    return "sha256:" + hashlib.sha256(raw_content).hexdigest()


def article_url(site_url: str, key: str) -> str:
    """Return the browser URL of an article: ``https://…/wiki/New_York``."""
    return f"{site_url.rstrip('/')}/wiki/{quote(key.replace(' ', '_'), safe='/:()')}"


def suggest_titles(
    query: str,
    candidates: list[str],
    *,
    limit: int = 5,
    score_cutoff: int = 60,
) -> list[str]:
    """Rank candidate titles by similarity to ``query``.

    Deduplicates candidates (first occurrence wins) and returns at most
    ``limit`` titles, best match first.
    """
    normalised = normalise_title(query)
    if not normalised or not candidates:
        return []

    unique = list(dict.fromkeys(candidates))
    results = process.extract(
        normalised,
        unique,
        scorer=fuzz.WRatio,
        processor=str.casefold,
        limit=limit,
        score_cutoff=score_cutoff,
    )
    return [title for title, _score, _idx in results]
