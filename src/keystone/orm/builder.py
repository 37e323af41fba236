"""
Fluent, parameterized SQL builder.

``QueryBuilder`` assembles a statement clause by clause. Every value passed
through a ``{n}`` placeholder becomes its own uniquely named bound parameter,
so caller data never lands in SQL text. Identifiers cannot be bound, so
:class:`SqlId`, :class:`SqlTable` and :class:`SqlColumn` values are kept in
the parameter map only until render time, when their quoted text is inlined
and they are dropped from :attr:`QueryBuilder.parameters`.

Manifesto:
    Generated SQL should read like hand-written SQL and be impossible to
    inject into. The builder is deliberately small: clause keywords,
    separators, placeholders, nested builders, and nothing that tries to be
    a query planner.

Architecture:
    ::

        qb.select("*").from_("Users").where("{0} = {1}", SqlId("Name"), "Ada")
              │
              ▼
        fragments: [SELECT ["*"]] [FROM ["@p0p"]] [WHERE ["@p1p = @p2p"]]
        params:    p0 → SqlTable("Users"), p1 → SqlId("Name"), p2 → "Ada"
              │ .sql (idempotent)
              ▼
        SELECT *
        FROM "Users"
        WHERE "Name" = :p2                      .parameters == {"p2": "Ada"}

Examples:
    >>> qb = QueryBuilder().select("*").from_("Posts").where("{0} > {1}", SqlId("Views"), 10).limit(5)
    >>> print(qb.sql)
    SELECT *
    FROM "Posts"
    WHERE "Views" > :p2
    LIMIT 5
    >>> qb.parameters
    {'p2': 10}

Tags:
    query-builder, sql, parameters, identifiers, keystone-orm

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from typing import Any

from keystone.core.dialect import Dialect, SQLiteDialect
from keystone.core.errors import ConfigError
from keystone.core.executor import Executor
from keystone.core.hashing import compute_query_hash

_TOKEN = re.compile(r"@p(\d+)p")
_PLACEHOLDER = re.compile(r"\{(\d+)\}")
_BARE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# Clauses that continue with a separator when called again; any other clause
# (joins, VALUES, UPDATE...) starts a new fragment repeating its keyword.
_SEPARATORS = {
    "WITH": ", ",
    "SELECT": ", ",
    "FROM": ", ",
    "WHERE": " AND ",
    "GROUP BY": ", ",
    "HAVING": " AND ",
    "ORDER BY": ", ",
    "SET": ", ",
}


class SqlId:
    """An identifier inlined into SQL instead of bound; dots separate segments."""

    __slots__ = ("parts",)

    def __init__(self, name: str) -> None:
        self.parts: tuple[str, ...] = tuple(name.split("."))

    def render(self, dialect: Dialect) -> str:
        return ".".join(dialect.quote_identifier(part) for part in self.parts)

    @property
    def name(self) -> str:
        return ".".join(self.parts)

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other.parts == self.parts

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.parts))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class SqlTable(SqlId):
    """A table reference, optionally schema-qualified."""

    __slots__ = ()

    def __init__(self, table: str, schema: str | None = None) -> None:
        self.parts = (schema, table) if schema else (table,)


class SqlColumn(SqlId):
    """A table-qualified column reference."""

    __slots__ = ()

    def __init__(self, table: str, column: str, schema: str | None = None) -> None:
        self.parts = (schema, table, column) if schema else (table, column)


class _Fragment:
    __slots__ = ("clause", "parts")

    def __init__(self, clause: str, parts: list[str]) -> None:
        self.clause = clause
        self.parts = parts

    def render(self) -> str:
        text = _SEPARATORS.get(self.clause, " ").join(self.parts)
        return f"{self.clause} {text}" if self.clause else text


class QueryBuilder:
    """Mutable SQL assembler; every fluent method returns ``self``."""

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        schema: str | None = None,
        dialect: Dialect | None = None,
    ) -> None:
        self.executor = executor
        self.schema = schema
        self.dialect = dialect or (executor.dialect if executor is not None else SQLiteDialect())
        self._fragments: list[_Fragment] = []
        self._params: dict[str, Any] = {}
        self._counter = 0
        self._limit: int | None = None
        self._offset: int | None = None

    # -- Binding ---------------------------------------------------------

    def _new_token(self, value: Any) -> str:
        name = f"p{self._counter}"
        self._counter += 1
        self._params[name] = value
        return f"@{name}p"

    def _bind(self, value: Any) -> str:
        if isinstance(value, QueryBuilder):
            return f"({self._absorb(value)})"
        if isinstance(value, list | tuple | set | frozenset):
            if not value:
                return "NULL"
            return ", ".join(self._bind(v) for v in value)
        return self._new_token(value)

    def _absorb(self, other: QueryBuilder) -> str:
        """Re-key a nested builder's tokens into this builder."""
        mapping: dict[str, str] = {}

        def rekey(match: re.Match[str]) -> str:
            old = f"p{match.group(1)}"
            if old not in mapping:
                mapping[old] = self._new_token(other._params[old])
            return mapping[old]

        return _TOKEN.sub(rekey, other._raw())

    def _format(self, fmt: str, args: tuple[Any, ...]) -> str:
        if not args:
            return fmt
        bound: dict[int, str] = {}

        def substitute(match: re.Match[str]) -> str:
            index = int(match.group(1))
            if index >= len(args):
                raise ValueError(f"Placeholder {{{index}}} has no argument in {fmt!r}")
            if index not in bound:
                bound[index] = self._bind(args[index])
            return bound[index]

        return _PLACEHOLDER.sub(substitute, fmt)

    def _table(self, table: Any) -> Any:
        if isinstance(table, str) and _BARE_NAME.match(table) and "." not in table:
            return SqlTable(table, self.schema)
        return table

    # -- Clause assembly -------------------------------------------------

    def clause(self, keyword: str, fmt: str, *args: Any) -> QueryBuilder:
        """Append ``fmt`` to ``keyword``, continuing the clause if it is the current one."""
        text = self._format(fmt, args)
        last = self._fragments[-1] if self._fragments else None
        if last is not None and last.clause == keyword and keyword in _SEPARATORS:
            last.parts.append(text)
        else:
            self._fragments.append(_Fragment(keyword, [text]))
        return self

    def append(self, fmt: str, *args: Any) -> QueryBuilder:
        """Append text to the current clause."""
        text = self._format(fmt, args)
        if not self._fragments:
            self._fragments.append(_Fragment("", [text]))
        else:
            last = self._fragments[-1]
            last.parts[-1] = f"{last.parts[-1]} {text}"
        return self

    def append_if(self, condition: bool, fmt: str, *args: Any) -> QueryBuilder:
        """Append only when ``condition`` holds."""
        if condition:
            self.append(fmt, *args)
        return self

    def with_(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("WITH", fmt, *args)

    def select(self, fmt: str = "*", *args: Any) -> QueryBuilder:
        return self.clause("SELECT", fmt, *args)

    def from_(self, table: Any, *args: Any) -> QueryBuilder:
        """``FROM`` a bare table name (quoted, schema-qualified), a wrapper, or a format string."""
        table = self._table(table)
        if isinstance(table, str):
            return self.clause("FROM", table, *args)
        return self.clause("FROM", "{0}", table)

    def join(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("JOIN", fmt, *args)

    def inner_join(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("INNER JOIN", fmt, *args)

    def left_join(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("LEFT JOIN", fmt, *args)

    def right_join(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("RIGHT JOIN", fmt, *args)

    def full_outer_join(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("FULL OUTER JOIN", fmt, *args)

    def cross_join(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("CROSS JOIN", fmt, *args)

    def where(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("WHERE", fmt, *args)

    def where_eq(self, column: str | SqlId, value: Any) -> QueryBuilder:
        """Key/value form: ``column = value`` (``IS NULL`` for ``None``)."""
        ident = column if isinstance(column, SqlId) else SqlId(column)
        if value is None:
            return self.where("{0} IS NULL", ident)
        return self.where("{0} = {1}", ident, value)

    def group_by(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("GROUP BY", fmt, *args)

    def having(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("HAVING", fmt, *args)

    def order_by(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("ORDER BY", fmt, *args)

    def limit(self, count: int | None) -> QueryBuilder:
        self._limit = count
        return self

    def offset(self, count: int | None) -> QueryBuilder:
        self._offset = count
        return self

    def insert_into(self, table: Any) -> QueryBuilder:
        return self.clause("INSERT INTO", "{0}", self._table(table))

    def cols(self, *columns: str | SqlId) -> QueryBuilder:
        idents = [c if isinstance(c, SqlId) else SqlId(c) for c in columns]
        return self.append("({0})", idents)

    def values(self, *values: Any) -> QueryBuilder:
        return self.clause("VALUES", "({0})", list(values))

    def update(self, table: Any) -> QueryBuilder:
        return self.clause("UPDATE", "{0}", self._table(table))

    def set(self, fmt: str, *args: Any) -> QueryBuilder:
        return self.clause("SET", fmt, *args)

    def set_values(self, values: Mapping[str, Any]) -> QueryBuilder:
        """Dictionary form of ``SET``: one ``"column" = value`` per item."""
        for column, value in values.items():
            self.set("{0} = {1}", SqlId(column), value)
        return self

    def delete_from(self, table: Any) -> QueryBuilder:
        return self.clause("DELETE FROM", "{0}", self._table(table))

    # -- Rendering -------------------------------------------------------

    def _raw(self) -> str:
        lines = [fragment.render() for fragment in self._fragments]
        paging = self.dialect.limit_offset(self._limit, self._offset)
        if paging:
            lines.append(paging)
        return "\n".join(lines)

    def _render_token(self, match: re.Match[str]) -> str:
        name = f"p{match.group(1)}"
        value = self._params[name]
        if isinstance(value, SqlId):
            return value.render(self.dialect)
        return self.dialect.bind_token(name)

    @property
    def sql(self) -> str:
        """Full statement text; identical on every call."""
        return _TOKEN.sub(self._render_token, self._raw())

    @property
    def parameters(self) -> dict[str, Any]:
        """Bound parameters, identifier wrappers excluded."""
        return {name: value for name, value in self._params.items() if not isinstance(value, SqlId)}

    @property
    def hash(self) -> str:
        """Fingerprint over rendered SQL and parameter values."""
        return compute_query_hash(self.sql, self.parameters)

    @property
    def is_empty(self) -> bool:
        return not self._fragments and self._limit is None and self._offset is None

    def copy(self) -> QueryBuilder:
        clone = QueryBuilder(self.executor, schema=self.schema, dialect=self.dialect)
        clone._fragments = [_Fragment(f.clause, list(f.parts)) for f in self._fragments]
        clone._params = dict(self._params)
        clone._counter = self._counter
        clone._limit = self._limit
        clone._offset = self._offset
        return clone

    def __str__(self) -> str:
        return self.sql

    def __repr__(self) -> str:
        return f"QueryBuilder({self.sql!r}, {self.parameters!r})"

    # -- Execution -------------------------------------------------------

    def _require_executor(self) -> Executor:
        if self.executor is None:
            raise ConfigError("QueryBuilder has no executor; build it from a Context to run it")
        return self.executor

    def scalar(self) -> Any:
        return self._require_executor().scalar(self.sql, self.parameters)

    def rows(self) -> list[dict[str, Any]]:
        return self._require_executor().rows(self.sql, self.parameters)

    def row(self) -> dict[str, Any] | None:
        return self._require_executor().row(self.sql, self.parameters)

    def stream(self) -> Iterator[dict[str, Any]]:
        return self._require_executor().stream(self.sql, self.parameters)

    def execute(self) -> int:
        return self._require_executor().execute(self.sql, self.parameters)

    def insert(self, id_column: str = "Id") -> int:
        return self._require_executor().insert(self.sql, self.parameters, id_column=id_column)


__all__ = [
    "QueryBuilder",
    "SqlId",
    "SqlTable",
    "SqlColumn",
]
