"""Tests for repospine.core.config - environment-driven settings."""

from __future__ import annotations

import os

import pytest
from pydantic import ValidationError

from repospine.core.config import DurationUnit, Settings, SyncMode, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Isolate from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("REPOSPINE_"):
            monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Default values."""

    def test_defaults(self) -> None:
        """Defaults match the documented configuration."""
        s = Settings()
        assert s.database == "repospine.duckdb"
        assert s.github_api_url == "https://api.github.com"
        assert s.github_repos == []
        assert s.github_per_page == 100
        assert s.sync_mode is SyncMode.CONDITIONAL
        assert s.max_concurrency == 3
        assert s.fetch_enabled is True
        assert s.fetch_interval == 3600
        assert s.server_host == "0.0.0.0"
        assert s.server_port == 9843
        assert s.window_days == 30
        assert s.duration_unit is DurationUnit.DAYS
        assert s.auth_token() is None


class TestEnvironment:
    """Loading from REPOSPINE_* variables."""

    def test_repos_comma_separated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A comma-separated list is split and trimmed."""
        monkeypatch.setenv("REPOSPINE_GITHUB_REPOS", "a/1, b/2,")
        assert Settings().github_repos == ["a/1", "b/2"]

    def test_repos_json_list(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A JSON list is accepted too."""
        monkeypatch.setenv("REPOSPINE_GITHUB_REPOS", '["a/1", "b/2"]')
        assert Settings().github_repos == ["a/1", "b/2"]

    def test_token_is_secret(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The token is hidden in repr but available to the client."""
        monkeypatch.setenv("REPOSPINE_GITHUB_TOKEN", "ghp_secret")
        s = Settings()
        assert "ghp_secret" not in repr(s)
        assert s.auth_token() == "ghp_secret"

    def test_sync_mode_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REPOSPINE_SYNC_MODE", "since")
        assert Settings().sync_mode is SyncMode.SINCE


class TestValidation:
    """Field validation."""

    def test_api_url_trailing_slash_stripped(self) -> None:
        assert get_settings(github_api_url="https://ghe.example.com/api/v3/").github_api_url == (
            "https://ghe.example.com/api/v3"
        )

    def test_per_page_bounds(self) -> None:
        """GitHub caps page size at 100."""
        with pytest.raises(ValidationError):
            get_settings(github_per_page=101)

    def test_concurrency_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            get_settings(max_concurrency=0)

    def test_log_format(self) -> None:
        assert get_settings(log_format="JSON").log_format == "json"
        with pytest.raises(ValidationError):
            get_settings(log_format="xml")

    def test_overrides(self) -> None:
        """get_settings applies keyword overrides."""
        s = get_settings(database=":memory:", duration_unit="hours")
        assert s.database == ":memory:"
        assert s.duration_unit is DurationUnit.HOURS
        assert s.duration_unit.seconds == 3600
