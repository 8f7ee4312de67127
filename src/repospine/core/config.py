"""RepoSpine configuration.

Application settings loaded from environment variables with the REPOSPINE_
prefix (and an optional ``.env`` file). A ``Settings`` value is built once by
the entry point and handed to each component; nothing reads it globally.

Example:
    >>> from repospine.core.config import get_settings
    >>> settings = get_settings(log_level="DEBUG", github_repos="octocat/Hello-World")
    >>> settings.log_level
    'DEBUG'
    >>> settings.github_repos
    ['octocat/Hello-World']
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class SyncMode(str, Enum):
    """How pages are requested and deduplicated.

    Example:
        >>> SyncMode.CONDITIONAL.value
        'conditional'
    """

    CONDITIONAL = "conditional"  # ETag / If-Modified-Since, newest-updated first
    SINCE = "since"  # ?since= lower bound, every page committed


class DurationUnit(str, Enum):
    """Unit used to express elapsed time in aggregates."""

    DAYS = "days"
    HOURS = "hours"

    @property
    def seconds(self) -> int:
        """Number of seconds in one unit.

        Example:
            >>> DurationUnit.HOURS.seconds
            3600
        """
        return 86400 if self is DurationUnit.DAYS else 3600


class Settings(BaseSettings):
    """Application settings.

    Loads from environment variables with REPOSPINE_ prefix.

    Example:
        >>> from repospine.core.config import Settings
        >>> s = Settings(database=":memory:")
        >>> s.database
        ':memory:'
        >>> s.github_per_page
        100
    """

    model_config = SettingsConfigDict(
        env_prefix="REPOSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database: str = Field(default="repospine.duckdb", description="DuckDB file path or :memory:")

    # GitHub
    github_token: SecretStr | None = Field(default=None, description="Bearer token for the GitHub API")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    github_repos: Annotated[list[str], NoDecode] = Field(
        default_factory=list, description="Repositories to sync, as owner/name"
    )
    github_per_page: int = Field(default=100, ge=1, le=100)

    # Sync
    sync_mode: SyncMode = Field(default=SyncMode.CONDITIONAL)
    max_concurrency: int = Field(default=3, ge=1, description="Resources fetched concurrently")
    request_timeout: float = Field(default=30.0, ge=1.0)
    fetch_enabled: bool = Field(default=True, description="Fetch periodically while serving")
    fetch_interval: int = Field(default=3600, ge=1, description="Seconds between periodic fetches")

    # Server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=9843, ge=1, le=65535)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="terminal", description="Log format: terminal or json")

    # Analytics
    window_days: int = Field(default=30, ge=1, description="Trailing window for rolling averages")
    duration_unit: DurationUnit = Field(default=DurationUnit.DAYS)

    @field_validator("github_repos", mode="before")
    @classmethod
    def split_repos(cls, v: Any) -> Any:
        """Accept a JSON list or a comma-separated string."""
        if isinstance(v, str):
            text = v.strip()
            if text.startswith("["):
                return json.loads(text)
            return [part.strip() for part in text.split(",") if part.strip()]
        return v

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("terminal", "json"):
            raise ValueError("log_format must be 'terminal' or 'json'")
        return v

    def auth_token(self) -> str | None:
        """Return the GitHub token in plain text, if configured."""
        return self.github_token.get_secret_value() if self.github_token else None


def get_settings(**overrides: Any) -> Settings:
    """Get settings with optional overrides.

    Example:
        >>> from repospine.core.config import get_settings
        >>> s = get_settings(max_concurrency=2)
        >>> s.max_concurrency
        2
    """
    return Settings(**overrides)
