"""
Protocol definitions for the database boundary.

The ORM core never imports a driver. Everything it needs from a database is
captured by two structural protocols: a ``Connection`` that executes one
statement and hands back a ``Cursor``.

Manifesto:
    The same model code runs on an in-memory ``sqlite3`` connection in tests
    and on a SQLAlchemy-backed connection in production. Defining the
    boundary as protocols keeps the core driver-agnostic and testable.

Architecture:
    ::

        Connection Protocol:
        ┌────────────────────────────────────────────────────────┐
        │ execute(sql, params) → Cursor                          │
        │ commit()             → Commit transaction              │
        │ rollback()           → Rollback transaction            │
        └────────────────────────────────────────────────────────┘

        Cursor Protocol:
        ┌────────────────────────────────────────────────────────┐
        │ fetchone() / fetchall()                                │
        │ description  (DB-API 2.0 column metadata)              │
        │ lastrowid / rowcount                                   │
        └────────────────────────────────────────────────────────┘

        Implementations:
        ┌────────────────────────────────────────────────────────┐
        │ sqlite3.Connection           (native)                  │
        │ keystone.core.connection.SAConnectionBridge            │
        └────────────────────────────────────────────────────────┘

Tags:
    protocol, connection, interface, dbapi, keystone-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cursor(Protocol):
    """The slice of a DB-API 2.0 cursor the executor reads."""

    @property
    def description(self) -> Sequence[Sequence[Any]] | None: ...

    @property
    def lastrowid(self) -> int | None: ...

    @property
    def rowcount(self) -> int: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list[Any]: ...


@runtime_checkable
class Connection(Protocol):
    """
    Minimal synchronous connection interface.

    ``params`` is always a mapping of parameter name to value; SQL text uses
    the dialect's named bind tokens (``:p0``).
    """

    def execute(self, sql: str, params: Mapping[str, Any] = ...) -> Cursor:
        """Execute a single SQL statement and return its cursor."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...


__all__ = [
    "Connection",
    "Cursor",
]
