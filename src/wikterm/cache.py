"""SQLite article cache with digest verification.

Each article is one row keyed by the SHA-256 of its normalised title. A row
is replaced in a single transaction, so a reader sees either the previous
row or the new one, never a half-written mix. Every read re-hashes the stored
bytes and compares against the stored digest; a mismatch is logged as
corruption and reported as a miss, which makes the fetcher re-download.

All operations catch ``aiosqlite.Error`` internally and degrade gracefully:
read failures return ``None`` (treated as a cache miss by callers), write
failures are logged and ignored (fetched content is still returned).
Infrastructure errors never cross the ArticleCache class boundary.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from wikterm.models.cache import CacheEntry
from wikterm.titles import content_digest, storage_key

log = structlog.get_logger()

_CREATE_ARTICLE_TABLE = """
CREATE TABLE IF NOT EXISTS article_cache (
    key_hash     TEXT PRIMARY KEY,
    article_key  TEXT NOT NULL,
    raw_content  BLOB NOT NULL,
    content_hash TEXT NOT NULL,
    fetched_at   TEXT NOT NULL
)
"""

_CREATE_ALIAS_TABLE = """
CREATE TABLE IF NOT EXISTS title_aliases (
    alias       TEXT PRIMARY KEY,
    article_key TEXT NOT NULL,
    recorded_at TEXT NOT NULL
)
"""


class ArticleCache:
    """SQLite-backed article cache implementing CacheProtocol."""

    def __init__(self, db: aiosqlite.Connection, *, max_age_hours: int | None = None) -> None:
        self._db = db
        self._max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else None
        # Entries vanish once no writer holds the lock
        self._write_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup.

        Unlike every other method, failures here propagate: an unusable
        cache at startup is fatal.
        """
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ARTICLE_TABLE)
        await self._db.execute(_CREATE_ALIAS_TABLE)
        await self._db.commit()

    def _lock_for(self, key_hash: str) -> asyncio.Lock:
        lock = self._write_locks.get(key_hash)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[key_hash] = lock
        return lock

    # ------------------------------------------------------------------
    # Articles
    # ------------------------------------------------------------------

    async def get(self, key: str) -> CacheEntry | None:
        """Read a verified entry. Returns ``None`` on miss, corruption or read failure."""
        key_hash = storage_key(key)
        try:
            cursor = await self._db.execute(
                "SELECT article_key, raw_content, content_hash, fetched_at "
                "FROM article_cache WHERE key_hash = ?",
                (key_hash,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None

        if row is None:
            return None

        stored_key, raw_content, content_hash, fetched_at_raw = row
        if isinstance(raw_content, str):
            raw_content = raw_content.encode("utf-8")

        actual = content_digest(raw_content)
        if stored_key != key or actual != content_hash:
            log.warning(
                "cache_corruption_detected",
                key=key,
                stored_key=stored_key,
                expected_hash=content_hash,
                actual_hash=actual,
            )
            return None

        try:
            fetched_at = datetime.fromisoformat(fetched_at_raw)
        except (TypeError, ValueError):
            fetched_at = None
        # Rows are always written with an explicit UTC offset
        if fetched_at is None or fetched_at.utcoffset() is None:
            log.warning("cache_corruption_detected", key=key, reason="bad_timestamp")
            return None

        stale = self._max_age is not None and datetime.now(UTC) - fetched_at > self._max_age
        return CacheEntry(
            key=stored_key,
            key_hash=key_hash,
            raw_content=raw_content,
            content_hash=content_hash,
            fetched_at=fetched_at,
            stale=stale,
        )

    async def put(self, key: str, raw_content: bytes) -> CacheEntry:
        """Write (or overwrite) an entry. Non-fatal on failure."""
        key_hash = storage_key(key)
        entry = CacheEntry(
            key=key,
            key_hash=key_hash,
            raw_content=raw_content,
            content_hash=content_digest(raw_content),
            fetched_at=datetime.now(UTC),
        )
        async with self._lock_for(key_hash):
            try:
                await self._db.execute(
                    "INSERT OR REPLACE INTO article_cache "
                    "(key_hash, article_key, raw_content, content_hash, fetched_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        key_hash,
                        key,
                        raw_content,
                        entry.content_hash,
                        entry.fetched_at.isoformat(),
                    ),
                )
                await self._db.commit()
            except aiosqlite.Error:
                log.warning("cache_write_error", key=key, exc_info=True)
                return entry
        log.debug("cache_write_complete", key=key, content_length=len(raw_content))
        return entry

    async def keys(self) -> list[str]:
        """Return every cached article key, most recently fetched first."""
        try:
            cursor = await self._db.execute(
                "SELECT article_key FROM article_cache ORDER BY fetched_at DESC"
            )
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("cache_keys_error", exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Title aliases
    # ------------------------------------------------------------------

    async def get_alias(self, alias: str) -> str | None:
        """Return the canonical key recorded for ``alias``, if any."""
        try:
            cursor = await self._db.execute(
                "SELECT article_key FROM title_aliases WHERE alias = ?", (alias,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", key=f"alias:{alias}", exc_info=True)
            return None
        return row[0] if row is not None else None

    async def put_alias(self, alias: str, key: str) -> None:
        """Record that ``alias`` resolves to ``key``. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO title_aliases (alias, article_key, recorded_at) "
                "VALUES (?, ?, ?)",
                (alias, key, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=f"alias:{alias}", exc_info=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(self) -> int:
        """Delete every article and alias. Returns the number of articles removed.

        Only ever called on explicit operator request; nothing is evicted
        automatically.
        """
        try:
            cursor = await self._db.execute("DELETE FROM article_cache")
            deleted = cursor.rowcount
            await self._db.execute("DELETE FROM title_aliases")
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_clear_error", exc_info=True)
            return 0
        log.info("cache_cleared", articles_deleted=deleted)
        return deleted
