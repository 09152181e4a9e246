"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments  (CLI flags such as --cache-path)
  2. Environment variables  (WIKTERM__CACHE__MAX_AGE_HOURS=72)
  3. wikterm.yaml           (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The config file is optional: all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from wikterm import __version__

_DEFAULT_CACHE_DIR = platformdirs.user_cache_dir("wikterm")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_CACHE_DIR) / "articles.db")
_DEFAULT_LOG_DIR = platformdirs.user_log_dir("wikterm")
_DEFAULT_LOG_PATH = str(Path(_DEFAULT_LOG_DIR) / "wikterm.log")


def _find_config_file() -> str | None:
    """Return the path of the first wikterm.yaml found, or None."""
    candidates = [
        Path("wikterm.yaml"),
        Path(platformdirs.user_config_dir("wikterm")) / "wikterm.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class WikiSettings(BaseModel):
    site_url: str = "https://en.wikipedia.org"
    api_path: str = "/w/api.php"

    @property
    def api_url(self) -> str:
        return self.site_url.rstrip("/") + self.api_path


class FetcherSettings(BaseModel):
    timeout_seconds: float = 15.0
    # Wikimedia rejects requests without a descriptive User-Agent
    user_agent: str = f"wikterm/{__version__} (terminal encyclopedia browser)"
    max_connections: int = 10


class CacheSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    # None: a cached article is only re-fetched on an explicit refresh
    max_age_hours: int | None = None


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"
    file: str = _DEFAULT_LOG_PATH


class UiSettings(BaseModel):
    start_article: str = "Philosophy"
    wrap_width: int = Field(default=100, ge=20)
    poll_interval_seconds: float = 1 / 30
    suggestion_limit: int = 5
    search_limit: int = Field(default=20, ge=1, le=500)
    # Any built-in Textual theme name, e.g. "nord", "gruvbox", "textual-light"
    theme: str = "textual-dark"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: WIKTERM__UI__WRAP_WIDTH=80
        env_prefix="WIKTERM__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    wiki: WikiSettings = WikiSettings()
    fetcher: FetcherSettings = FetcherSettings()
    cache: CacheSettings = CacheSettings()
    logging: LoggingSettings = LoggingSettings()
    ui: UiSettings = UiSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
