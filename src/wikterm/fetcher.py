"""Article fetcher: title resolution and cache-preferring loads.

Orchestrates cache lookup / network fetch / write-through. No UI imports:
the navigation engine calls this from its worker tasks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from wikterm.errors import ErrorCode, WiktermError
from wikterm.titles import normalise_title, suggest_titles

if TYPE_CHECKING:
    from wikterm.models.wiki import SearchResult
    from wikterm.protocols import CacheProtocol, EncyclopediaClientProtocol

log = structlog.get_logger()


class ArticleFetcher:
    """Resolves user input to article keys and loads raw article content."""

    def __init__(
        self,
        client: EncyclopediaClientProtocol,
        cache: CacheProtocol,
        *,
        suggestion_limit: int = 5,
        search_limit: int = 20,
    ) -> None:
        self._client = client
        self._cache = cache
        self._suggestion_limit = suggestion_limit
        self._search_limit = search_limit

    async def resolve(self, title_query: str) -> str:
        """Normalise ``title_query`` and resolve it to a canonical article key.

        Raises ARTICLE_NOT_FOUND when upstream has no such article. When
        upstream is unreachable, falls back to a previously recorded alias or
        to the normalised title itself if that article is cached.
        """
        title = normalise_title(title_query)
        if not title:
            raise WiktermError(
                code=ErrorCode.INVALID_INPUT,
                message="Empty article title",
                suggestion="Type the title of an article, e.g. 'Philosophy'.",
                recoverable=False,
            )

        try:
            canonical = normalise_title(await self._client.resolve_redirect(title))
        except WiktermError as exc:
            if exc.code == ErrorCode.ARTICLE_NOT_FOUND:
                suggestions = await self.suggest(title)
                if suggestions:
                    raise WiktermError(
                        code=ErrorCode.ARTICLE_NOT_FOUND,
                        message=exc.message,
                        suggestion="Did you mean: " + ", ".join(suggestions) + "?",
                        recoverable=False,
                    ) from exc
                raise
            if not exc.recoverable:
                raise
            return await self._resolve_offline(title, exc)

        if canonical != title:
            await self._cache.put_alias(title, canonical)
        log.debug("title_resolved", query=title_query, key=canonical)
        return canonical

    async def _resolve_offline(self, title: str, cause: WiktermError) -> str:
        alias = await self._cache.get_alias(title)
        if alias is not None:
            log.info("resolve_offline", title=title, key=alias, via="alias")
            return alias
        if await self._cache.get(title) is not None:
            log.info("resolve_offline", title=title, key=title, via="cached_article")
            return title
        raise cause

    async def load(self, key: str, force_refresh: bool = False) -> bytes:
        """Return the raw content of ``key``, preferring a verified cache entry.

        Falls back to the last known-good cached copy when a network fetch
        fails recoverably. ARTICLE_NOT_FOUND is never masked by the cache.
        """
        bound = log.bind(key=key, force_refresh=force_refresh)
        cached = await self._cache.get(key)

        if cached is not None and not cached.stale and not force_refresh:
            bound.info("cache_hit")
            return cached.raw_content

        if cached is None:
            bound.info("cache_miss_fetching")
        else:
            bound.info("cache_bypass_fetching", stale=cached.stale)

        try:
            raw_content = await self._client.fetch(key)
        except WiktermError as exc:
            if exc.recoverable and cached is not None:
                bound.warning("fetch_failed_serving_cached", code=exc.code, message=exc.message)
                return cached.raw_content
            raise

        # Write-through (non-fatal on failure, handled inside the cache)
        await self._cache.put(key, raw_content)
        return raw_content

    async def suggest(self, query: str, limit: int | None = None) -> list[str]:
        """Titles similar to ``query`` from upstream search and the local cache."""
        limit = limit or self._suggestion_limit
        candidates: list[str] = []
        try:
            candidates.extend(hit.title for hit in await self._client.search(query, limit=limit))
        except WiktermError:
            log.debug("suggest_search_unavailable", query=query)
        candidates.extend(await self._cache.keys())
        return suggest_titles(query, candidates, limit=limit)

    async def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Full-text search hits for ``query``. Upstream errors propagate."""
        query = " ".join(query.split())
        if not query:
            raise WiktermError(
                code=ErrorCode.INVALID_INPUT,
                message="Empty search query",
                suggestion="Type one or more words to search for.",
                recoverable=False,
            )
        results = await self._client.search(query, limit=limit or self._search_limit)
        log.info("search_results", query=query, count=len(results))
        return results
