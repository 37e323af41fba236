"""Tests for the database connection factory."""

from __future__ import annotations

import sqlite3

import pytest

from keystone.core.connection import ConnectionInfo, SAConnectionBridge, _parse_url, create_connection
from keystone.core.errors import DatabaseConnectionError
from keystone.core.protocols import Connection


class TestParseUrl:
    @pytest.mark.parametrize("url", [None, "", "memory", ":memory:", "sqlite://", "sqlite:///:memory:"])
    def test_memory(self, url):
        assert _parse_url(url) == ("memory", ":memory:")

    def test_sqlite_url(self):
        assert _parse_url("sqlite:///data/app.db") == ("file", "data/app.db")

    def test_bare_path(self):
        assert _parse_url("app.db") == ("file", "app.db")

    def test_sqlalchemy_url(self):
        assert _parse_url("postgresql://u:p@host/db") == ("sqlalchemy", "postgresql://u:p@host/db")


class TestCreateConnection:
    def test_memory(self):
        conn, info = create_connection()
        assert isinstance(conn, sqlite3.Connection)
        assert info.backend == "sqlite"
        assert info.persistent is False
        assert info.dialect_name == "sqlite"

    def test_file_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "blog.db"
        conn, info = create_connection(str(path))
        conn.execute("CREATE TABLE t (x INTEGER)")
        assert path.exists()
        assert info.persistent is True
        assert info.resolved_path == str(path.resolve())

    def test_rows_are_mappings(self):
        conn, _ = create_connection(":memory:")
        row = conn.execute("SELECT 1 AS one").fetchone()
        assert row["one"] == 1

    def test_satisfies_protocol(self):
        conn, _ = create_connection(":memory:")
        assert isinstance(conn, Connection)

    def test_sqlalchemy_bridge(self):
        conn, info = create_connection("sqlite+pysqlite:///:memory:")
        assert isinstance(conn, SAConnectionBridge)
        assert info.backend == "sqlite"
        cursor = conn.execute("SELECT :p0 AS value", {"p0": 7})
        assert cursor.description[0][0] == "value"
        assert cursor.fetchone() == (7,)
        conn.close()

    def test_unreachable_database(self):
        with pytest.raises(DatabaseConnectionError):
            create_connection("sqlite+pysqlite:////nonexistent-dir/for/keystone/x.db")


class TestConnectionInfo:
    def test_repr(self):
        info = ConnectionInfo(backend="sqlite", persistent=False, url=":memory:")
        assert repr(info) == "ConnectionInfo(backend='sqlite', ephemeral, url=':memory:')"
