"""Shared test fixtures for the wikterm test suite."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from wikterm.cache import ArticleCache
from wikterm.errors import ErrorCode, WiktermError
from wikterm.models.wiki import SearchResult
from wikterm.titles import normalise_title

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from wikterm.models.document import Document


def article_html(title: str, *links: str, external: str | None = None) -> bytes:
    """A small rendered article in the shape the parse API returns."""
    items = "".join(f'<li><a href="/wiki/{link.replace(" ", "_")}">{link}</a></li>' for link in links)
    ext = f'<p>See <a class="external" href="{external}">the site</a>.</p>' if external else ""
    return (
        f'<div class="mw-parser-output"><p><b>{title}</b> is an article.</p>'
        f"<h2>Links</h2><ul>{items}</ul>{ext}</div>"
    ).encode()


class FakeEncyclopedia:
    """In-memory stand-in for WikipediaClient that counts network calls."""

    def __init__(
        self,
        articles: dict[str, bytes] | None = None,
        redirects: dict[str, str] | None = None,
    ) -> None:
        self.articles = dict(articles or {})
        self.redirects = dict(redirects or {})
        self.fetch_calls: list[str] = []
        self.resolve_calls: list[str] = []
        self.search_calls: list[tuple[str, int]] = []
        self.offline = False

    def _offline_error(self) -> WiktermError:
        return WiktermError(
            code=ErrorCode.ARTICLE_FETCH_FAILED,
            message="Network error",
            suggestion="Retry later.",
            recoverable=True,
        )

    def _not_found(self, title: str) -> WiktermError:
        return WiktermError(
            code=ErrorCode.ARTICLE_NOT_FOUND,
            message=f"No article named '{title}'",
            suggestion="Check the spelling.",
        )

    async def fetch(self, canonical_title: str) -> bytes:
        self.fetch_calls.append(canonical_title)
        if self.offline:
            raise self._offline_error()
        if canonical_title not in self.articles:
            raise self._not_found(canonical_title)
        return self.articles[canonical_title]

    async def resolve_redirect(self, title: str) -> str:
        self.resolve_calls.append(title)
        if self.offline:
            raise self._offline_error()
        canonical = self.redirects.get(title, title)
        if canonical not in self.articles:
            raise self._not_found(title)
        return canonical

    async def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        self.search_calls.append((query, limit))
        if self.offline:
            raise self._offline_error()
        return [SearchResult(title=title) for title in self.articles][:limit]


class GatedFetcher:
    """FetcherProtocol implementation whose loads block until released.

    Lets a test decide the order in which concurrent navigations finish.
    """

    def __init__(self, articles: dict[str, bytes]) -> None:
        self.articles = articles
        self.gates: dict[str, asyncio.Event] = {}
        self.loads: list[tuple[str, bool]] = []
        self.failing: set[str] = set()
        self.searches: list[str] = []

    def gate(self, key: str) -> asyncio.Event:
        return self.gates.setdefault(key, asyncio.Event())

    def release(self, key: str) -> None:
        self.gate(key).set()

    async def resolve(self, title_query: str) -> str:
        key = normalise_title(title_query)
        if key not in self.articles:
            raise WiktermError(
                code=ErrorCode.ARTICLE_NOT_FOUND,
                message=f"No article named '{key}'",
                suggestion="Check the spelling.",
            )
        return key

    async def load(self, key: str, force_refresh: bool = False) -> bytes:
        self.loads.append((key, force_refresh))
        if key in self.gates:
            await self.gates[key].wait()
        if key in self.failing:
            raise WiktermError(
                code=ErrorCode.ARTICLE_FETCH_FAILED,
                message="Network error",
                suggestion="Retry later.",
                recoverable=True,
            )
        return self.articles[key]

    async def search(self, query: str) -> list[SearchResult]:
        self.searches.append(query)
        if query in self.gates:
            await self.gates[query].wait()
        needle = query.casefold()
        return [
            SearchResult(title=title, snippet=f"{title} is an article.")
            for title in self.articles
            if needle in title.casefold()
        ]


class RecordingOpener:
    def __init__(self, result: bool = True) -> None:
        self.opened: list[str] = []
        self.result = result

    def open(self, url: str) -> bool:
        self.opened.append(url)
        return self.result


class FailingTransformer:
    def transform(self, raw_content: bytes, width: int | None = None) -> Document:
        raise RuntimeError("transformer exploded")


@pytest.fixture()
async def cache() -> AsyncGenerator[ArticleCache, None]:
    """ArticleCache over an in-memory SQLite database."""
    async with aiosqlite.connect(":memory:") as db:
        article_cache = ArticleCache(db)
        await article_cache.init_db()
        yield article_cache


@pytest.fixture()
def encyclopedia() -> FakeEncyclopedia:
    return FakeEncyclopedia(
        articles={
            "Cat": article_html("Cat", "Dog", "Felidae"),
            "Dog": article_html("Dog", "Cat", external="https://www.akc.org/"),
            "Felidae": article_html("Felidae", "Cat"),
        },
        redirects={"Kitty": "Cat", "Domestic cat": "Cat"},
    )


@pytest.fixture()
def opener() -> RecordingOpener:
    return RecordingOpener()


@pytest.fixture()
def make_article():
    return article_html


@pytest.fixture()
def gated_fetcher() -> GatedFetcher:
    return GatedFetcher(
        {
            "Alpha": article_html("Alpha", "Beta", "Gamma", external="https://example.org/alpha"),
            "Beta": article_html("Beta", "Alpha"),
            "Gamma": article_html("Gamma", "Alpha", "Beta"),
        }
    )


@pytest.fixture()
def failing_transformer() -> FailingTransformer:
    return FailingTransformer()
