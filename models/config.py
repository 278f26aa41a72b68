"""Application configuration using Pydantic v2.

Centralized settings for shiori including:
- Extension repository endpoint and install directory
- Storage (diskcache database) location
- Synchronization concurrency knobs
- Relay transport settings
- OS-specific data paths

Configuration can be overridden via environment variables:
    SHIORI__EXTENSIONS__REPOSITORY_URL=https://example.org/repo
    SHIORI__SYNC__MAX_CONCURRENT_SOURCES=8
    SHIORI__RELAY__TIMEOUT_SECONDS=15
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_data_path() -> Path:
    """Get OS-specific data directory for shiori.

    Returns:
        Path: ~/.local/state/shiori (Linux/macOS) or %APPDATA%\\shiori (Windows)
    """
    if os.name == "nt":
        return Path(os.environ.get("APPDATA", Path.home())) / "shiori"  # type: ignore
    return Path.home() / ".local" / "state" / "shiori"


class ExtensionSettings(BaseModel):
    """Extension repository and loading configuration."""

    repository_url: str = Field(
        "https://raw.githubusercontent.com/shiori-app/extensions/repo",
        description="Base URL of the remote extension repository (serves index.json)",
    )
    extensions_dir: Path = Field(
        default_factory=lambda: get_data_path() / "extensions",
        description="Where installed extension packages are stored",
    )
    call_timeout_seconds: float = Field(
        30.0,
        gt=0,
        le=600,
        description="Upper bound for a single capability call",
    )
    fetch_timeout_seconds: float = Field(
        15.0,
        gt=0,
        le=300,
        description="Timeout for manifest/package downloads",
    )


class StorageSettings(BaseModel):
    """Content graph database configuration (SQLite via diskcache)."""

    database_dir: Path = Field(
        default_factory=lambda: get_data_path() / "db",
        description="Directory of the diskcache database",
    )
    timeout: float = Field(
        5.0,
        gt=0,
        description="SQLite busy timeout in seconds",
    )


class SyncSettings(BaseModel):
    """Update synchronizer configuration."""

    max_concurrent_sources: int = Field(
        4,
        ge=1,
        le=64,
        description="Maximum number of sources synchronized at the same time",
    )
    manga_concurrency: int = Field(
        1,
        ge=1,
        le=32,
        description="Parallel chapter fetches within one source (1 = serial)",
    )
    source_concurrency: dict[str, int] = Field(
        default_factory=dict,
        description="Per-source overrides of manga_concurrency (e.g., {'mangadex': 4})",
    )

    def concurrency_for(self, source_key: str) -> int:
        return max(1, self.source_concurrency.get(source_key, self.manga_concurrency))


class RelaySettings(BaseModel):
    """Hotlink-bypass relay configuration."""

    timeout_seconds: float = Field(
        20.0,
        gt=0,
        le=300,
        description="Outbound fetch timeout",
    )
    chunk_size: int = Field(
        64 * 1024,
        ge=1024,
        description="Streaming chunk size in bytes",
    )
    user_agent: str = Field(
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0 Safari/537.36",
        description="User-Agent sent when a source does not override it",
    )


class LogSettings(BaseModel):
    """Logging configuration."""

    debug: bool = Field(False, description="Log DEBUG to the console")
    log_file: Path = Field(
        default_factory=lambda: get_data_path() / "shiori.log",
        description="Rotating log file",
    )


class AppSettings(BaseSettings):
    """Root application settings with environment variable support.

    Environment variables use the prefix SHIORI__ with nested delimiters:
    - SHIORI__EXTENSIONS__REPOSITORY_URL=https://example.org/repo
    - SHIORI__SYNC__MANGA_CONCURRENCY=2
    - SHIORI__STORAGE__DATABASE_DIR=/tmp/shiori-db

    Can also be configured via .env file in project root.
    """

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",  # SHIORI__SYNC__MAX_CONCURRENT_SOURCES
        env_prefix="SHIORI__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
    )

    extensions: ExtensionSettings = Field(default_factory=ExtensionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    relay: RelaySettings = Field(default_factory=RelaySettings)
    log: LogSettings = Field(default_factory=LogSettings)


# Default instance for the CLI; core services receive settings explicitly
settings = AppSettings()
