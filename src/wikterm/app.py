"""Application wiring.

Responsibilities (and nothing more):
- Configure structlog
- Open the cache database and build the component graph
- Tear everything down again on exit
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import aiosqlite
import structlog

from wikterm import __version__
from wikterm.cache import ArticleCache
from wikterm.client import WikipediaClient, build_http_client
from wikterm.errors import ErrorCode, WiktermError
from wikterm.fetcher import ArticleFetcher
from wikterm.navigation import NavigationEngine
from wikterm.opener import BrowserOpener
from wikterm.state import AppState
from wikterm.transformer import ContentTransformer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from wikterm.config import Settings

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _open_log_stream(path: str) -> TextIO:
    try:
        log_path = Path(path).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return log_path.open("a", encoding="utf-8")
    except OSError:
        # An unwritable log location must not stop the browser from starting
        print(f"wikterm: cannot write log file {path}; logging to stderr", file=sys.stderr)
        return sys.stderr


def setup_logging(settings: Settings, stream: TextIO | None = None) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to a file: the terminal belongs to the UI
        logger_factory=structlog.PrintLoggerFactory(
            file=stream if stream is not None else _open_log_stream(settings.logging.file)
        ),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


async def open_database(db_path: str) -> aiosqlite.Connection:
    """Open (creating if needed) the cache database.

    Raises WiktermError(STARTUP_FAILED) when the location is unusable.
    """
    path = Path(db_path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return await aiosqlite.connect(str(path))
    except (OSError, aiosqlite.Error) as exc:
        raise WiktermError(
            code=ErrorCode.STARTUP_FAILED,
            message=f"Cannot open article cache at {path}: {exc}",
            suggestion="Pass --cache-path with a writable location.",
            recoverable=False,
        ) from exc


async def _init_cache(cache: ArticleCache, db_path: str) -> None:
    try:
        await cache.init_db()
    except aiosqlite.Error as exc:
        raise WiktermError(
            code=ErrorCode.STARTUP_FAILED,
            message=f"Article cache at {db_path} is unusable: {exc}",
            suggestion="Remove the file or pass --cache-path with another location.",
            recoverable=False,
        ) from exc


@asynccontextmanager
async def lifespan(settings: Settings, *, viewport_height: int = 24) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the program's lifetime."""
    log.info("app_starting", version=__version__, db_path=settings.cache.db_path)

    db = await open_database(settings.cache.db_path)
    cache = ArticleCache(db, max_age_hours=settings.cache.max_age_hours)
    try:
        await _init_cache(cache, settings.cache.db_path)
    except WiktermError:
        await db.close()
        raise

    http_client = build_http_client(settings.fetcher)
    client = WikipediaClient(http_client, settings.wiki.api_url)
    fetcher = ArticleFetcher(
        client,
        cache,
        suggestion_limit=settings.ui.suggestion_limit,
        search_limit=settings.ui.search_limit,
    )
    transformer = ContentTransformer(width=settings.ui.wrap_width, site_url=settings.wiki.site_url)
    engine = NavigationEngine(
        fetcher,
        transformer,
        BrowserOpener(),
        site_url=settings.wiki.site_url,
        viewport_height=viewport_height,
    )

    state = AppState(
        settings=settings,
        db=db,
        http_client=http_client,
        cache=cache,
        fetcher=fetcher,
        engine=engine,
    )
    log.info("app_started", api_url=settings.wiki.api_url, wrap_width=settings.ui.wrap_width)

    try:
        yield state
    finally:
        await engine.aclose()
        await http_client.aclose()
        await db.close()
        log.info("app_stopping")


async def clear_cache(settings: Settings) -> int:
    """Delete every cached article. Returns the number removed."""
    db = await open_database(settings.cache.db_path)
    try:
        cache = ArticleCache(db)
        await _init_cache(cache, settings.cache.db_path)
        return await cache.clear()
    finally:
        await db.close()
