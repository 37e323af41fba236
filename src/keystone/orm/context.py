"""
ORM context: one connection, one model registry, one relation cache.

A :class:`Context` bundles everything the ORM needs to talk to a database:

- an :class:`~keystone.core.executor.Executor` over the connection;
- the :class:`~keystone.orm.registry.ModelRegistry` whose models take part
  (the process-wide default, or a private one for tests);
- the :class:`~keystone.orm.relations.RelationCache` discovered from it.

Models find their context through :func:`get_context` unless an entity was
hydrated by a specific one. :func:`connect` builds a context from
``KeystoneSettings`` and installs it.

Examples:
    >>> ctx = connect("sqlite:///blog.db")
    >>> with ctx.transaction():
    ...     Author(name="Ada").save()
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from keystone.core.connection import ConnectionInfo, create_connection
from keystone.core.dialect import Dialect, SQLiteDialect, get_dialect
from keystone.core.errors import ConfigError
from keystone.core.executor import Executor
from keystone.core.logging import get_logger
from keystone.core.settings import KeystoneSettings, get_settings
from keystone.orm.builder import QueryBuilder, SqlTable
from keystone.orm.hydration import Hydrator
from keystone.orm.inflect import Inflector, default_inflector
from keystone.orm.persistence import Persister
from keystone.orm.query import Query
from keystone.orm.registry import ModelRegistry, default_registry
from keystone.orm.relations import RelationCache, table_name
from keystone.orm.tracking import IdentityMap, QueryCache

logger = get_logger(__name__)


class Context:
    """Connection, dialect, registry and relation cache for one database."""

    def __init__(
        self,
        conn: Any,
        *,
        dialect: Dialect | None = None,
        schema: str | None = None,
        models: Iterable[type] | None = None,
        registry: ModelRegistry | None = None,
        inflector: Inflector | None = None,
        trace: bool = False,
        autocommit: bool = True,
        info: ConnectionInfo | None = None,
    ) -> None:
        if models is not None and registry is not None:
            raise ConfigError("Pass either models or registry, not both")
        self.connection = conn
        self.info = info
        self.dialect = dialect or self._dialect_for(info)
        self.schema = schema
        self.inflector = inflector or default_inflector
        self.registry = registry if registry is not None else (
            ModelRegistry(models) if models is not None else default_registry
        )
        self.relations = RelationCache(self.registry, self.inflector)
        self.executor = Executor(conn, self.dialect, trace=trace, autocommit=autocommit)
        self.persister = Persister(self)

    @staticmethod
    def _dialect_for(info: ConnectionInfo | None) -> Dialect:
        if info is None:
            return SQLiteDialect()
        try:
            return get_dialect(info.dialect_name)
        except ValueError as e:
            raise ConfigError(f"No SQL dialect for backend {info.backend!r}", cause=e) from e

    @classmethod
    def open(cls, url: str | None = None, **kwargs: Any) -> Context:
        """Open ``url`` (in-memory SQLite by default) without consulting settings."""
        conn, info = create_connection(url)
        return cls(conn, info=info, **kwargs)

    @classmethod
    def from_settings(cls, settings: KeystoneSettings | None = None, **kwargs: Any) -> Context:
        """Open ``settings.database_url`` and wrap it in a context."""
        settings = settings or get_settings()
        conn, info = create_connection(settings.database_url)
        kwargs.setdefault("schema", settings.schema_name)
        kwargs.setdefault("trace", settings.trace_sql)
        kwargs.setdefault("autocommit", settings.autocommit)
        logger.info("context.opened", backend=info.backend, url=info.url)
        return cls(conn, info=info, **kwargs)

    # -- Lifecycle -------------------------------------------------------

    def init(self) -> Context:
        """Discover relations now instead of on first use."""
        self.relations.init()
        return self

    def reset(self) -> None:
        """Forget discovered relations (after registering more models)."""
        self.relations.reset()

    def close(self) -> None:
        close = getattr(self.connection, "close", None)
        if close is not None:
            close()

    @contextmanager
    def transaction(self) -> Iterator[Context]:
        with self.executor.transaction():
            yield self

    # -- Factories -------------------------------------------------------

    def qb(self) -> QueryBuilder:
        return QueryBuilder(self.executor, schema=self.schema, dialect=self.dialect)

    def table_name(self, model: type) -> str:
        return table_name(model, self.inflector)

    def table(self, model: type) -> SqlTable:
        return SqlTable(self.table_name(model), self.schema)

    def query(self, model: type) -> Query:
        return Query(model, self)

    def hydrator(self, identity_map: IdentityMap | None = None, query_cache: QueryCache | None = None) -> Hydrator:
        return Hydrator(self, identity_map, query_cache)

    def __repr__(self) -> str:
        backend = self.info.backend if self.info is not None else type(self.connection).__name__
        return f"Context({backend}, dialect={self.dialect.name}, models={len(self.registry)})"


# -- Current context -------------------------------------------------------------

_current: Context | None = None


def set_context(context: Context | None) -> Context | None:
    global _current
    _current = context
    return context


def get_context() -> Context:
    if _current is None:
        raise ConfigError("No ORM context is active; call keystone.connect() or set_context() first")
    return _current


def reset_context() -> None:
    set_context(None)


def connect(url: str | None = None, **kwargs: Any) -> Context:
    """Open a context (``url`` overrides ``KEYSTONE_DATABASE_URL``) and make it current."""
    settings = get_settings()
    if url is not None:
        settings = settings.model_copy(update={"database_url": url})
    return set_context(Context.from_settings(settings, **kwargs))


__all__ = [
    "Context",
    "set_context",
    "get_context",
    "reset_context",
    "connect",
]
