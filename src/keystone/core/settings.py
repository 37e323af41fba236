"""Environment-driven settings for keystone.

``KeystoneSettings`` collects the few knobs the ORM core needs at startup:
where the database lives, which schema qualifies table names, and how
loudly SQL gets logged.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup
    - **Environment-driven:** Reads ``KEYSTONE_*`` env vars and ``.env`` files
    - **Sensible defaults:** An in-memory SQLite database out of the box

Examples:
    >>> from keystone.core.settings import KeystoneSettings
    >>> settings = KeystoneSettings(database_url="sqlite:///app.db", trace_sql=True)
    >>> settings.trace_sql
    True

Tags:
    settings, configuration, pydantic, environment, keystone-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KeystoneSettings(BaseSettings):
    """Settings shared by every keystone context.

    Fields
    ──────
    database_url : ``memory``, ``sqlite:///path``, a bare file path or a SQLAlchemy URL
    schema_name  : Optional schema that qualifies every generated table name
    log_level    : Structlog log level
    log_json     : JSON log output (None = auto-detect from tty)
    trace_sql    : Log every executed statement at debug level
    autocommit   : Commit after each write outside ``Context.transaction()``
    """

    model_config = SettingsConfigDict(
        env_prefix="KEYSTONE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = Field(default=":memory:", description="Database URL or SQLite path")
    schema_name: str | None = None
    autocommit: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None
    trace_sql: bool = False


@lru_cache(maxsize=1)
def get_settings() -> KeystoneSettings:
    """Process-wide settings, read from the environment once."""
    return KeystoneSettings()


__all__ = [
    "KeystoneSettings",
    "get_settings",
]
