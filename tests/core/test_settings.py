"""Tests for KEYSTONE_* settings."""

from __future__ import annotations

import pytest

from keystone.core.settings import KeystoneSettings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "SCHEMA_NAME", "TRACE_SQL", "AUTOCOMMIT", "LOG_LEVEL"):
            monkeypatch.delenv(f"KEYSTONE_{name}", raising=False)
        settings = KeystoneSettings()
        assert settings.database_url == ":memory:"
        assert settings.schema_name is None
        assert settings.trace_sql is False
        assert settings.autocommit is True
        assert settings.log_level == "INFO"


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("KEYSTONE_DATABASE_URL", "sqlite:///blog.db")
        monkeypatch.setenv("KEYSTONE_TRACE_SQL", "true")
        monkeypatch.setenv("KEYSTONE_SCHEMA_NAME", "blog")
        settings = KeystoneSettings()
        assert settings.database_url == "sqlite:///blog.db"
        assert settings.trace_sql is True
        assert settings.schema_name == "blog"

    def test_unprefixed_variables_are_ignored(self, monkeypatch):
        monkeypatch.delenv("KEYSTONE_DATABASE_URL", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgresql://elsewhere/db")
        assert KeystoneSettings().database_url == ":memory:"

    def test_get_settings_is_cached(self, monkeypatch):
        monkeypatch.setenv("KEYSTONE_LOG_LEVEL", "DEBUG")
        first = get_settings()
        monkeypatch.setenv("KEYSTONE_LOG_LEVEL", "ERROR")
        assert get_settings() is first
        assert first.log_level == "DEBUG"

    def test_invalid_boolean(self, monkeypatch):
        from pydantic import ValidationError

        monkeypatch.setenv("KEYSTONE_AUTOCOMMIT", "sometimes")
        with pytest.raises(ValidationError):
            KeystoneSettings()
