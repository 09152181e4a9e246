"""MediaWiki Action API client.

All network I/O for article content goes through a single WikipediaClient
instance. The client receives an httpx.AsyncClient via constructor
injection; the application lifespan owns the client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from bs4 import BeautifulSoup

from wikterm.errors import ErrorCode, WiktermError
from wikterm.models.wiki import SearchResult

if TYPE_CHECKING:
    from wikterm.config import FetcherSettings

log = structlog.get_logger()

_MISSING_PAGE_CODES = frozenset({"missingtitle", "invalidtitle", "nosuchpageid"})


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=max(1, settings.max_connections // 2),
        ),
    )


def _not_found(title: str) -> WiktermError:
    return WiktermError(
        code=ErrorCode.ARTICLE_NOT_FOUND,
        message=f"No article named '{title}'",
        suggestion="Check the spelling or search for a related title.",
        recoverable=False,
    )


def _fetch_failed(message: str) -> WiktermError:
    return WiktermError(
        code=ErrorCode.ARTICLE_FETCH_FAILED,
        message=message,
        suggestion="The encyclopedia may be temporarily unavailable. Press r to retry.",
        recoverable=True,
    )


class WikipediaClient:
    """Encyclopedia service client backed by the MediaWiki Action API."""

    def __init__(self, client: httpx.AsyncClient, api_url: str) -> None:
        self._client = client
        self._api_url = api_url

    async def _get_json(self, params: dict[str, Any]) -> dict[str, Any]:
        """Issue one API request and return the decoded JSON body.

        Raises WiktermError(ARTICLE_FETCH_FAILED) on network errors, timeouts,
        non-2xx responses and undecodable bodies.
        """
        query = {"format": "json", "formatversion": 2, **params}
        try:
            response = await self._client.get(self._api_url, params=query)
        except httpx.HTTPError as exc:
            raise _fetch_failed(f"Network error contacting {self._api_url}: {exc}") from exc

        if not response.is_success:
            raise _fetch_failed(f"HTTP {response.status_code} from {self._api_url}")

        try:
            data = response.json()
        except ValueError as exc:
            raise _fetch_failed(f"Malformed response from {self._api_url}") from exc

        if not isinstance(data, dict):
            raise _fetch_failed(f"Unexpected response shape from {self._api_url}")
        return data

    async def resolve_redirect(self, title: str) -> str:
        """Return the canonical title for ``title``, following redirects."""
        data = await self._get_json({"action": "query", "titles": title, "redirects": 1})

        pages = data.get("query", {}).get("pages", [])
        if not pages:
            raise _not_found(title)
        page = pages[0]
        if page.get("missing") or page.get("invalid"):
            raise _not_found(title)

        canonical = page.get("title", title)
        if canonical != title:
            log.debug("title_redirected", title=title, canonical=canonical)
        return canonical

    async def fetch(self, canonical_title: str) -> bytes:
        """Fetch the rendered HTML of an article."""
        data = await self._get_json(
            {
                "action": "parse",
                "page": canonical_title,
                "prop": "text",
                "redirects": 1,
                "disableeditsection": 1,
                "disablelimitreport": 1,
            }
        )

        error = data.get("error")
        if error is not None:
            if error.get("code") in _MISSING_PAGE_CODES:
                raise _not_found(canonical_title)
            raise _fetch_failed(
                f"API error fetching '{canonical_title}': {error.get('info', error.get('code'))}"
            )

        text = data.get("parse", {}).get("text")
        if not isinstance(text, str):
            raise _fetch_failed(f"Response for '{canonical_title}' contained no article text")

        log.info("fetch_complete", title=canonical_title, content_length=len(text))
        return text.encode("utf-8")

    async def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Full-text search over article titles and bodies."""
        data = await self._get_json(
            {
                "action": "query",
                "list": "search",
                "srsearch": query,
                "srlimit": limit,
                "srprop": "snippet",
            }
        )
        hits = data.get("query", {}).get("search", [])
        return [
            SearchResult(
                title=hit["title"],
                snippet=BeautifulSoup(hit.get("snippet", ""), "html.parser").get_text(),
                page_id=hit.get("pageid"),
            )
            for hit in hits
            if "title" in hit
        ]
