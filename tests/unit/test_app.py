"""Unit tests for application wiring."""

from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING

import pytest
import structlog

from wikterm.app import clear_cache, lifespan, open_database, setup_logging
from wikterm.config import Settings
from wikterm.errors import ErrorCode, WiktermError
from wikterm.navigation import EngineState

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def _settings(tmp_path: Path, **logging: str) -> Settings:
    return Settings(
        cache={"db_path": str(tmp_path / "cache" / "articles.db")},
        logging={"file": str(tmp_path / "wikterm.log"), **logging},
    )


class TestSetupLogging:
    def test_json_lines(self, tmp_path: Path) -> None:
        stream = io.StringIO()
        setup_logging(_settings(tmp_path), stream=stream)

        structlog.get_logger().info("cache_hit", key="Cat")

        record = json.loads(stream.getvalue().splitlines()[-1])
        assert record["event"] == "cache_hit"
        assert record["key"] == "Cat"
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filters(self, tmp_path: Path) -> None:
        stream = io.StringIO()
        setup_logging(_settings(tmp_path, level="WARNING"), stream=stream)

        structlog.get_logger().info("navigation_complete")
        assert stream.getvalue() == ""

    def test_text_format(self, tmp_path: Path) -> None:
        stream = io.StringIO()
        setup_logging(_settings(tmp_path, format="text"), stream=stream)

        structlog.get_logger().warning("partial_render", element="table")
        line = stream.getvalue()
        assert "partial_render" in line
        assert "element=table" in line

    def test_writes_to_configured_file(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        setup_logging(settings)
        structlog.get_logger().info("app_started")
        assert "app_started" in (tmp_path / "wikterm.log").read_text()


class TestOpenDatabase:
    async def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db = await open_database(str(tmp_path / "nested" / "dir" / "articles.db"))
        await db.close()
        assert (tmp_path / "nested" / "dir").is_dir()

    async def test_unusable_location(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(WiktermError) as exc_info:
            await open_database(str(blocker / "articles.db"))
        assert exc_info.value.code == ErrorCode.STARTUP_FAILED
        assert exc_info.value.recoverable is False


class TestLifespan:
    async def test_builds_and_tears_down(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        async with lifespan(settings, viewport_height=30) as state:
            assert state.settings is settings
            assert state.engine.state is EngineState.IDLE
            assert state.engine.viewport_height == 30
            assert await state.cache.keys() == []
            http_client = state.http_client

        assert http_client.is_closed

    async def test_corrupt_database_file(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        db_file = tmp_path / "cache" / "articles.db"
        db_file.parent.mkdir(parents=True)
        db_file.write_bytes(b"this is not a sqlite database" * 10)

        with pytest.raises(WiktermError) as exc_info:
            async with lifespan(settings):
                pass
        assert exc_info.value.code == ErrorCode.STARTUP_FAILED

    async def test_clear_cache(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        async with lifespan(settings) as state:
            await state.cache.put("Cat", b"<p>Cat</p>")
        assert await clear_cache(settings) == 1
        assert await clear_cache(settings) == 0
