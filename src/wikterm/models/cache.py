from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Cached raw content for a single article."""

    key: str  # Normalised article title
    key_hash: str  # SHA-256 of key (primary key)
    raw_content: bytes  # Article HTML as returned upstream
    content_hash: str  # "sha256:<hex>" of raw_content, verified on every read
    fetched_at: datetime
    stale: bool = False
