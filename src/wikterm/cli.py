"""Command-line entry point.

Usage:
    wikterm                      # open the configured start article
    wikterm --page "Alan Turing" # open a specific article
    wikterm --refresh -p Cat     # bypass the cache for the first article
    wikterm --search "enigma"    # start on full-text search results
    wikterm --clear-cache        # empty the article cache and exit
"""

from __future__ import annotations

import asyncio
import shutil
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
import typer
from pydantic import ValidationError

from wikterm import __version__
from wikterm.app import clear_cache as clear_article_cache
from wikterm.app import lifespan, setup_logging
from wikterm.config import Settings
from wikterm.errors import ErrorCode, WiktermError

log = structlog.get_logger()

app = typer.Typer(
    name="wikterm",
    help="Browse Wikipedia from the terminal.",
    add_completion=False,
)


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"wikterm {__version__}")
        raise typer.Exit()


def build_settings(
    *,
    cache_path: Path | None = None,
    log_level: LogLevel | None = None,
    log_file: Path | None = None,
) -> Settings:
    """Settings with CLI flags layered over env, YAML and defaults."""
    overrides: dict[str, Any] = {}
    if cache_path is not None:
        overrides["cache"] = {"db_path": str(cache_path)}
    logging_overrides: dict[str, str] = {}
    if log_level is not None:
        logging_overrides["level"] = log_level.value
    if log_file is not None:
        logging_overrides["file"] = str(log_file)
    if logging_overrides:
        overrides["logging"] = logging_overrides
    return Settings(**overrides)


async def _run(
    settings: Settings,
    *,
    start_article: str,
    force_refresh: bool,
    start_search: str | None = None,
) -> None:
    # Imported here so --version and --clear-cache never pay for Textual
    from wikterm.tui import WiktermApp

    height = max(1, shutil.get_terminal_size().lines - 4)
    async with lifespan(settings, viewport_height=height) as state:
        tui = WiktermApp(
            state,
            start_article=start_article,
            force_refresh=force_refresh,
            start_search=start_search,
        )
        await tui.run_async()


@app.command()
def main(
    page: str | None = typer.Option(
        None, "--page", "-p",
        help="Article to open first (defaults to ui.start_article).",
    ),
    search: str | None = typer.Option(
        None, "--search", "-s",
        help="Start on the full-text search results for this query.",
    ),
    refresh: bool = typer.Option(
        False, "--refresh",
        help="Fetch the first article from the network even if it is cached.",
    ),
    cache_path: Path | None = typer.Option(
        None, "--cache-path",
        help="SQLite file holding cached articles.",
    ),
    clear_cache: bool = typer.Option(
        False, "--clear-cache",
        help="Delete every cached article and exit.",
    ),
    log_level: LogLevel | None = typer.Option(
        None, "--log-level",
        case_sensitive=False,
        help="Minimum level written to the log file.",
    ),
    log_file: Path | None = typer.Option(
        None, "--log-file",
        help="Where to write logs (the terminal belongs to the UI).",
    ),
    version: bool = typer.Option(
        False, "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Browse Wikipedia from the terminal."""
    try:
        settings = build_settings(cache_path=cache_path, log_level=log_level, log_file=log_file)
    except ValidationError as exc:
        typer.echo(f"wikterm: invalid configuration\n{exc}", err=True)
        raise typer.Exit(code=2) from exc

    if page is not None and search is not None:
        typer.echo("wikterm: --page and --search cannot be combined", err=True)
        raise typer.Exit(code=2)
    if search is not None and not search.strip():
        typer.echo("wikterm: --search needs a non-empty query", err=True)
        raise typer.Exit(code=2)

    setup_logging(settings)

    try:
        if clear_cache:
            removed = asyncio.run(clear_article_cache(settings))
            typer.echo(f"Removed {removed} cached article(s).")
            return
        asyncio.run(
            _run(
                settings,
                start_article=page or settings.ui.start_article,
                force_refresh=refresh,
                start_search=search,
            )
        )
    except WiktermError as exc:
        if exc.code != ErrorCode.STARTUP_FAILED:
            raise
        log.error("startup_failed", message=exc.message)
        typer.echo(f"wikterm: {exc.message}\n{exc.suggestion}", err=True)
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":
    app()
