"""SQL dialect abstraction for the query builder and executor.

Provides a ``Dialect`` protocol plus SQLite and PostgreSQL implementations.
The builder asks the dialect how to quote identifiers, how to spell a bound
parameter, how to page, and how to get a generated key back from an INSERT;
the executor asks it how to adapt Python values before binding.

Manifesto:
    The ORM core writes ANSI-quoted SQL with named ``:p0`` parameters, which
    both ``sqlite3`` and SQLAlchemy's ``text()`` accept. What still differs
    between backends is small and lives here:

    - **Paging:** SQLite cannot ``OFFSET`` without a ``LIMIT``
    - **Generated keys:** ``cursor.lastrowid`` vs ``RETURNING "Id"``
    - **Value adaptation:** SQLite stores datetimes, decimals and UUIDs as text

Architecture::

    QueryBuilder ──► Dialect.quote_identifier / bind_token / limit_offset
    Executor     ──► Dialect.adapt / returning_clause

    ┌──────────────────────┐  ┌─────────────────────────────┐
    │ SQLiteDialect        │  │ PostgreSQLDialect           │
    │ :p0, "Users"         │  │ :p0, "Users"                │
    │ LIMIT -1 OFFSET n    │  │ OFFSET n                    │
    │ lastrowid            │  │ RETURNING "Id"              │
    └──────────────────────┘  └─────────────────────────────┘

Examples:
    >>> from keystone.core.dialect import get_dialect
    >>> d = get_dialect("sqlite")
    >>> d.quote_identifier('Users')
    '"Users"'
    >>> d.limit_offset(None, 20)
    'LIMIT -1 OFFSET 20'

Tags:
    dialect, sql, abstraction, keystone-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from keystone.core.timestamps import to_iso8601


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Every method returns either a SQL fragment or a driver-ready value.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    def quote_identifier(self, identifier: str) -> str:
        """Quote one identifier segment."""
        ...

    def bind_token(self, name: str) -> str:
        """Spell the named parameter ``name`` inside SQL text."""
        ...

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        """Paging suffix; empty when both are ``None``."""
        ...

    def returning_clause(self, id_column: str) -> str:
        """Suffix for an INSERT that must return the generated key, or ``""``."""
        ...

    def adapt(self, value: Any) -> Any:
        """Convert a Python value into something the driver can bind."""
        ...


class _AnsiQuoting:
    """Double-quote identifiers, doubling embedded quotes."""

    def quote_identifier(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def bind_token(self, name: str) -> str:
        return f":{name}"


class SQLiteDialect(_AnsiQuoting):
    """SQLite dialect: ``lastrowid`` keys, text storage for rich types."""

    @property
    def name(self) -> str:
        return "sqlite"

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        if limit is None and offset is None:
            return ""
        if offset is None:
            return f"LIMIT {int(limit)}"
        return f"LIMIT {int(limit) if limit is not None else -1} OFFSET {int(offset)}"

    def returning_clause(self, id_column: str) -> str:  # noqa: ARG002
        return ""

    def adapt(self, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return to_iso8601(value)
        if isinstance(value, date | time):
            return value.isoformat()
        if isinstance(value, Decimal | UUID):
            return str(value)
        return value


class PostgreSQLDialect(_AnsiQuoting):
    """PostgreSQL dialect: ``RETURNING`` keys, native rich types."""

    @property
    def name(self) -> str:
        return "postgresql"

    def limit_offset(self, limit: int | None, offset: int | None) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {int(limit)}")
        if offset is not None:
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)

    def returning_clause(self, id_column: str) -> str:
        return f" RETURNING {self.quote_identifier(id_column)}"

    def adapt(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value


# =========================================================================
# Registry / Factory
# =========================================================================

_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Raises:
        ValueError: If ``db_type`` is not recognised.
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ValueError(f"Unknown dialect '{db_type}'. Supported: {sorted(set(_DIALECTS) - {'postgres'})}")
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation (lower-cased key)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "register_dialect",
]
