from __future__ import annotations

from wikterm.models.cache import CacheEntry
from wikterm.models.document import (
    PLAIN,
    Document,
    ExternalTarget,
    InternalTarget,
    Link,
    LinkTarget,
    PartialRenderWarning,
    Span,
    SpanStyle,
    StyledLine,
)
from wikterm.models.wiki import SearchResult

__all__ = [
    # cache
    "CacheEntry",
    # document
    "PLAIN",
    "Document",
    "ExternalTarget",
    "InternalTarget",
    "Link",
    "LinkTarget",
    "PartialRenderWarning",
    "Span",
    "SpanStyle",
    "StyledLine",
    # wiki
    "SearchResult",
]
