"""Tests for the Dialect abstraction layer."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

import pytest

from keystone.core.dialect import Dialect, PostgreSQLDialect, SQLiteDialect, get_dialect, register_dialect


class Color(Enum):
    RED = "red"


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture(params=["sqlite", "postgresql"])
def dialect(request: pytest.FixtureRequest) -> Dialect:
    """Parametric fixture: run each test against every dialect."""
    return get_dialect(request.param)


@pytest.fixture
def sqlite() -> SQLiteDialect:
    return SQLiteDialect()


@pytest.fixture
def pg() -> PostgreSQLDialect:
    return PostgreSQLDialect()


# =========================================================================
# Shared behaviour
# =========================================================================


class TestCommon:
    def test_satisfies_protocol(self, dialect):
        assert isinstance(dialect, Dialect)

    def test_quote_identifier(self, dialect):
        assert dialect.quote_identifier("Users") == '"Users"'

    def test_quote_identifier_escapes_quotes(self, dialect):
        assert dialect.quote_identifier('we"ird') == '"we""ird"'

    def test_bind_token(self, dialect):
        assert dialect.bind_token("p3") == ":p3"

    def test_no_paging(self, dialect):
        assert dialect.limit_offset(None, None) == ""

    def test_limit_only(self, dialect):
        assert dialect.limit_offset(10, None) == "LIMIT 10"


# =========================================================================
# Backend specifics
# =========================================================================


class TestSQLite:
    def test_offset_without_limit(self, sqlite):
        assert sqlite.limit_offset(None, 20) == "LIMIT -1 OFFSET 20"

    def test_no_returning(self, sqlite):
        assert sqlite.returning_clause("Id") == ""

    def test_adapt(self, sqlite):
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        assert sqlite.adapt(True) == 1
        assert sqlite.adapt(moment) == "2024-01-02T03:04:05+00:00"
        assert sqlite.adapt(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05+00:00"
        assert sqlite.adapt(Decimal("1.50")) == "1.50"
        assert sqlite.adapt(UUID(int=1)) == "00000000-0000-0000-0000-000000000001"
        assert sqlite.adapt(Color.RED) == "red"
        assert sqlite.adapt("text") == "text"


class TestPostgreSQL:
    def test_offset_without_limit(self, pg):
        assert pg.limit_offset(None, 20) == "OFFSET 20"

    def test_limit_and_offset(self, pg):
        assert pg.limit_offset(5, 10) == "LIMIT 5 OFFSET 10"

    def test_returning(self, pg):
        assert pg.returning_clause("Id") == ' RETURNING "Id"'

    def test_adapt_keeps_native_types(self, pg):
        moment = datetime(2024, 1, 2, tzinfo=UTC)
        assert pg.adapt(moment) is moment
        assert pg.adapt(Color.RED) == "red"


class TestRegistry:
    def test_alias(self):
        assert isinstance(get_dialect("postgres"), PostgreSQLDialect)

    def test_case_insensitive(self):
        assert get_dialect("SQLite").name == "sqlite"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown dialect"):
            get_dialect("oracle")

    def test_register_custom(self):
        class EchoDialect(SQLiteDialect):
            @property
            def name(self) -> str:
                return "echo"

        register_dialect("Echo", EchoDialect())
        assert get_dialect("echo").name == "echo"
