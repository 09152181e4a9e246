"""Integration test fixtures.

Wires a real ArticleCache (in-memory SQLite), WikipediaClient, ArticleFetcher,
ContentTransformer and NavigationEngine together. The MediaWiki API is served
by ``FakeWikiApi`` through respx, so every request goes through httpx.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest
import respx

from wikterm.cache import ArticleCache
from wikterm.client import WikipediaClient
from wikterm.fetcher import ArticleFetcher
from wikterm.navigation import NavigationEngine
from wikterm.transformer import ContentTransformer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

SITE = "https://en.wikipedia.org"
API_URL = f"{SITE}/w/api.php"

_PAGES = {
    "Cat": (
        '<div class="mw-parser-output">'
        '<p>The <b>cat</b> (<i>Felis catus</i>) is a small <a href="/wiki/Carnivore">carnivorous</a>'
        ' mammal.<sup class="reference"><a href="#cite_note-1">[1]</a></sup></p>'
        '<h2>Taxonomy<span class="mw-editsection">[edit]</span></h2>'
        '<p>It belongs to the family <a href="/wiki/Felidae">Felidae</a>.</p>'
        '<p>See <a class="external text" href="https://www.catster.com/">Catster</a>.</p>'
        "</div>"
    ),
    "Carnivore": (
        '<div class="mw-parser-output"><p>A <b>carnivore</b> eats '
        '<a href="/wiki/Meat">meat</a>. Example: <a href="/wiki/Cat">cats</a>.</p></div>'
    ),
    "Felidae": '<div class="mw-parser-output"><p><b>Felidae</b> is a family.</p></div>',
}

_REDIRECTS = {"Kitty": "Cat", "Felis catus": "Cat"}


class FakeWikiApi:
    """Answers MediaWiki action API requests from a fixed set of pages."""

    def __init__(self) -> None:
        self.pages = dict(_PAGES)
        self.redirects = dict(_REDIRECTS)
        self.parse_calls: list[str] = []
        self.search_calls: list[str] = []
        self.offline = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        params = request.url.params
        if params.get("action") == "parse":
            return self._parse(params["page"])
        if params.get("list") == "search":
            return self._search(params["srsearch"])
        return self._query(params["titles"])

    def _parse(self, page: str) -> httpx.Response:
        self.parse_calls.append(page)
        if page not in self.pages:
            return httpx.Response(
                200, json={"error": {"code": "missingtitle", "info": "The page doesn't exist."}}
            )
        return httpx.Response(200, json={"parse": {"title": page, "text": self.pages[page]}})

    def _query(self, title: str) -> httpx.Response:
        canonical = self.redirects.get(title, title)
        if canonical not in self.pages:
            return httpx.Response(
                200, json={"query": {"pages": [{"title": title, "missing": True}]}}
            )
        return httpx.Response(200, json={"query": {"pages": [{"title": canonical, "pageid": 1}]}})

    def _search(self, query: str) -> httpx.Response:
        self.search_calls.append(query)
        needle = query.casefold()
        # Loose like the real search: a shared three-letter prefix is a hit
        hits = [
            {
                "title": title,
                "pageid": index,
                "snippet": f'<span class="searchmatch">{title}</span> page',
            }
            for index, title in enumerate(self.pages)
            if needle in title.casefold() or title.casefold()[:3] == needle[:3]
        ]
        return httpx.Response(200, json={"query": {"search": hits}})


@pytest.fixture()
def wiki_api() -> FakeWikiApi:
    return FakeWikiApi()


@pytest.fixture()
async def article_cache() -> AsyncGenerator[ArticleCache, None]:
    async with aiosqlite.connect(":memory:") as db:
        cache = ArticleCache(db)
        await cache.init_db()
        yield cache


@pytest.fixture()
async def browser(wiki_api, article_cache, opener) -> AsyncGenerator[NavigationEngine, None]:
    """A NavigationEngine over the full fetch stack with the API mocked."""
    with respx.mock:
        respx.get(API_URL).mock(side_effect=wiki_api)
        async with httpx.AsyncClient() as http_client:
            fetcher = ArticleFetcher(WikipediaClient(http_client, API_URL), article_cache)
            engine = NavigationEngine(
                fetcher,
                ContentTransformer(width=60, site_url=SITE),
                opener,
                site_url=SITE,
                viewport_height=10,
            )
            yield engine
            await engine.aclose()
