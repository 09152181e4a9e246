from __future__ import annotations

from pydantic import BaseModel


class SearchResult(BaseModel):
    """Single hit from the upstream full-text search."""

    title: str
    snippet: str = ""  # Plain text, search-match markup stripped
    page_id: int | None = None
