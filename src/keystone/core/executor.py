"""Query execution collaborator.

``Executor`` is the only component that touches a live connection. It takes
rendered SQL plus a named-parameter mapping and offers the four result shapes
the ORM core consumes: a scalar, a forward-only row stream, a materialized
row set, and a non-query row count (plus ``insert`` for generated keys).

Manifesto:
    The builder and hydrator are pure state machines; this class owns the
    round trip. Failures are logged with the exact SQL and parameters that
    caused them, wrapped in :class:`~keystone.core.errors.QueryError` with
    the driver exception chained, and re-raised. Nothing is retried.

Architecture:
    ::

        QueryBuilder.sql / .parameters
                │
                ▼
        Executor._run ── dialect.adapt(params) ── conn.execute(sql, params)
                │                                        │
                │ ok: sql.executed (debug, if tracing)   │ error: sql.failed
                ▼                                        ▼
        scalar / row / rows / stream / execute / insert  QueryError(cause=e)

Tags:
    executor, sql, dbapi, logging, keystone-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from keystone.core.dialect import Dialect, SQLiteDialect
from keystone.core.errors import IntegrityError, QueryError
from keystone.core.logging import get_logger
from keystone.core.protocols import Connection, Cursor

logger = get_logger(__name__)


def _row_to_dict(row: Any, columns: list[str]) -> dict[str, Any]:
    # sqlite3.Row and mapping-style rows convert directly
    if hasattr(row, "keys"):
        return dict(row)
    return dict(zip(columns, row, strict=False))


class Executor:
    """Runs statements against a :class:`~keystone.core.protocols.Connection`."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        trace: bool = False,
        autocommit: bool = True,
    ) -> None:
        self.conn = conn
        self.dialect = dialect or SQLiteDialect()
        self.trace = trace
        self.autocommit = autocommit
        self._tx_depth = 0

    # -- Core round trip ---------------------------------------------------

    def _run(self, sql: str, params: Mapping[str, Any] | None) -> Cursor:
        bound = {key: self.dialect.adapt(value) for key, value in (params or {}).items()}
        started = time.perf_counter()
        try:
            cursor = self.conn.execute(sql, bound)
        except Exception as e:
            logger.error("sql.failed", sql=sql, params=bound, error=str(e))
            error_cls = IntegrityError if type(e).__name__ == "IntegrityError" else QueryError
            raise error_cls(str(e), cause=e).with_context(sql=sql, params=bound) from e
        if self.trace:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
            logger.debug("sql.executed", sql=sql, params=bound, elapsed_ms=elapsed_ms)
        return cursor

    def _after_write(self) -> None:
        if self.autocommit and self._tx_depth == 0:
            self.conn.commit()

    # -- Result shapes -----------------------------------------------------

    def rows(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Execute a SELECT and return every row as a dict."""
        cursor = self._run(sql, params)
        columns = [d[0] for d in cursor.description or ()]
        return [_row_to_dict(row, columns) for row in cursor.fetchall()]

    def stream(self, sql: str, params: Mapping[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Execute a SELECT and yield rows one at a time."""
        cursor = self._run(sql, params)
        columns = [d[0] for d in cursor.description or ()]
        while (row := cursor.fetchone()) is not None:
            yield _row_to_dict(row, columns)

    def row(self, sql: str, params: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """Execute a SELECT and return the first row (or None)."""
        cursor = self._run(sql, params)
        columns = [d[0] for d in cursor.description or ()]
        row = cursor.fetchone()
        return _row_to_dict(row, columns) if row is not None else None

    def scalar(self, sql: str, params: Mapping[str, Any] | None = None) -> Any:
        """Execute a SELECT and return the first column of the first row."""
        cursor = self._run(sql, params)
        row = cursor.fetchone()
        if row is None:
            return None
        return row[0]

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """Execute a non-query and return the affected-row count."""
        cursor = self._run(sql, params)
        count = cursor.rowcount
        self._after_write()
        return count

    def insert(self, sql: str, params: Mapping[str, Any] | None = None, *, id_column: str = "Id") -> int:
        """Execute an INSERT and return the generated key."""
        returning = self.dialect.returning_clause(id_column)
        cursor = self._run(sql + returning, params)
        if returning:
            new_id = cursor.fetchone()[0]
        else:
            new_id = cursor.lastrowid
        self._after_write()
        return int(new_id)

    # -- Transactions ------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Executor]:
        """Group writes into one commit; nested blocks join the outer one."""
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self.conn.commit()

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0


__all__ = [
    "Executor",
]
