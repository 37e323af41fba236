"""Tests for the query execution collaborator."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from keystone.core.connection import create_connection
from keystone.core.errors import IntegrityError, QueryError
from keystone.core.executor import Executor


@pytest.fixture
def executor() -> Executor:
    conn, _ = create_connection(":memory:")
    ex = Executor(conn)
    ex.execute('CREATE TABLE "Items" ("Id" INTEGER PRIMARY KEY AUTOINCREMENT, "Name" TEXT NOT NULL)')
    return ex


class TestResultShapes:
    """Each result shape over a real SQLite connection."""

    def test_insert_returns_generated_key(self, executor):
        first = executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": "a"})
        second = executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": "b"})
        assert (first, second) == (1, 2)

    def test_rows_and_row(self, executor):
        executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": "a"})
        assert executor.rows('SELECT * FROM "Items"') == [{"Id": 1, "Name": "a"}]
        assert executor.row('SELECT * FROM "Items" WHERE "Id" = :p0', {"p0": 1}) == {"Id": 1, "Name": "a"}
        assert executor.row('SELECT * FROM "Items" WHERE "Id" = :p0', {"p0": 99}) is None

    def test_scalar(self, executor):
        assert executor.scalar('SELECT COUNT(*) FROM "Items"') == 0
        assert executor.scalar('SELECT "Name" FROM "Items"') is None

    def test_stream(self, executor):
        for name in ("a", "b", "c"):
            executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": name})
        names = [row["Name"] for row in executor.stream('SELECT * FROM "Items" ORDER BY "Id"')]
        assert names == ["a", "b", "c"]

    def test_execute_returns_rowcount(self, executor):
        for name in ("a", "b"):
            executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": name})
        assert executor.execute('UPDATE "Items" SET "Name" = :p0', {"p0": "z"}) == 2

    def test_parameters_are_adapted(self, executor):
        assert executor.scalar("SELECT :p0", {"p0": True}) == 1


class TestErrors:
    """Failures are logged with their SQL, wrapped and re-raised."""

    def test_query_error_carries_sql_and_params(self, executor):
        with pytest.raises(QueryError) as exc_info:
            executor.rows('SELECT * FROM "Missing" WHERE "Id" = :p0', {"p0": 1})
        error = exc_info.value
        assert error.context.sql == 'SELECT * FROM "Missing" WHERE "Id" = :p0'
        assert error.context.params == {"p0": 1}
        assert error.__cause__ is not None

    def test_integrity_error(self, executor):
        with pytest.raises(IntegrityError):
            executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": None})

    def test_failure_is_logged(self, executor):
        with patch("keystone.core.executor.logger") as logger:
            with pytest.raises(QueryError):
                executor.execute("NOT SQL")
        logger.error.assert_called_once()
        args, kwargs = logger.error.call_args
        assert args == ("sql.failed",)
        assert kwargs["sql"] == "NOT SQL"

    def test_trace_logs_every_statement(self, executor):
        executor.trace = True
        with patch("keystone.core.executor.logger") as logger:
            executor.scalar("SELECT 1")
        args, kwargs = logger.debug.call_args
        assert args == ("sql.executed",)
        assert kwargs["sql"] == "SELECT 1"
        assert "elapsed_ms" in kwargs


class TestTransactions:
    def test_autocommit_outside_transaction(self):
        conn = MagicMock()
        Executor(conn).execute("DELETE FROM x")
        conn.commit.assert_called_once()

    def test_no_autocommit(self):
        conn = MagicMock()
        Executor(conn, autocommit=False).execute("DELETE FROM x")
        conn.commit.assert_not_called()

    def test_nested_transactions_commit_once(self):
        conn = MagicMock()
        executor = Executor(conn)
        with executor.transaction():
            executor.execute("DELETE FROM x")
            with executor.transaction():
                executor.execute("DELETE FROM y")
            assert executor.in_transaction
        conn.commit.assert_called_once()
        assert not executor.in_transaction

    def test_rollback_on_error(self, executor):
        with pytest.raises(RuntimeError):
            with executor.transaction():
                executor.insert('INSERT INTO "Items" ("Name") VALUES (:p0)', {"p0": "a"})
                raise RuntimeError("abort")
        assert executor.scalar('SELECT COUNT(*) FROM "Items"') == 0
