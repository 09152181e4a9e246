"""Application state container.

AppState is created once at startup (inside the ``lifespan`` context manager
in ``wikterm.app``) and handed to the terminal UI, which drives everything
through ``engine``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import aiosqlite
    import httpx

    from wikterm.cache import ArticleCache
    from wikterm.config import Settings
    from wikterm.fetcher import ArticleFetcher
    from wikterm.navigation import NavigationEngine


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    db: aiosqlite.Connection
    http_client: httpx.AsyncClient
    cache: ArticleCache
    fetcher: ArticleFetcher
    engine: NavigationEngine
