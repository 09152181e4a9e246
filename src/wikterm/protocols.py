"""Protocol interfaces for swappable components.

The fetcher and the navigation engine reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other encyclopedia backends to be swapped in without touching the engine
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from wikterm.models.cache import CacheEntry
    from wikterm.models.document import Document
    from wikterm.models.wiki import SearchResult


class CacheProtocol(Protocol):
    """Interface for the article cache backend."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def put(self, key: str, raw_content: bytes) -> CacheEntry: ...

    async def keys(self) -> list[str]: ...

    async def get_alias(self, alias: str) -> str | None: ...

    async def put_alias(self, alias: str, key: str) -> None: ...


class EncyclopediaClientProtocol(Protocol):
    """Interface for the upstream encyclopedia service."""

    async def fetch(self, canonical_title: str) -> bytes: ...

    async def resolve_redirect(self, title: str) -> str: ...

    async def search(self, query: str, limit: int = 10) -> list[SearchResult]: ...


class FetcherProtocol(Protocol):
    """Interface the navigation engine uses to obtain raw article content."""

    async def resolve(self, title_query: str) -> str: ...

    async def load(self, key: str, force_refresh: bool = False) -> bytes: ...

    async def search(self, query: str) -> list[SearchResult]: ...


class TransformerProtocol(Protocol):
    """Interface for turning raw article content into a Document."""

    def transform(self, raw_content: bytes, width: int | None = None) -> Document: ...


class BrowserOpenerProtocol(Protocol):
    """Interface for handing URLs to an external web browser."""

    def open(self, url: str) -> bool: ...
