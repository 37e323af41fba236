"""
Query facade.

``Query`` is an immutable, chainable description of a SELECT over one model
type. Every refinement returns a new ``Query``; nothing touches the database
until a terminal operation (``to_list``, ``first``, ``count``, ``any`` ...)
assembles a fresh :class:`~keystone.orm.builder.QueryBuilder` from the
recorded state.

Soft-deleted rows (``DeletedAt`` set) are excluded by default;
``with_trashed()`` lifts the filter and ``only_trashed()`` inverts it.

Examples:
    >>> Post.query().filter("views > {0} && title != null", 10).order_by("-views").take(5).to_list()
    >>> Post.query().filter_by(author=alice).count()
    >>> Post.query().like("title == {0}", "%orm%").include("author").first()
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterator, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from keystone.core.errors import CardinalityError, ConfigError, ExpressionSyntaxError
from keystone.core.logging import get_logger
from keystone.core.timestamps import utc_now
from keystone.orm.builder import QueryBuilder, SqlColumn, SqlId, SqlTable
from keystone.orm.expressions import compile_assignments, compile_like, compile_predicate
from keystone.orm.tracking import IdentityMap, QueryCache

if TYPE_CHECKING:
    from keystone.orm.context import Context

logger = get_logger(__name__)

E = TypeVar("E")


class TrashedMode(str, Enum):
    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"


def _key_of(value: Any) -> Any:
    """Entities compare by their id."""
    return value.id if hasattr(value, "identity_key") else value


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for the primitive types models carry."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


class Query(Generic[E]):
    """Immutable query over ``model``."""

    def __init__(
        self,
        model: type[E],
        context: Context | None = None,
        *,
        identity_map: IdentityMap | None = None,
        query_cache: QueryCache | None = None,
    ) -> None:
        self.model = model
        self._context = context
        self._identity_map = identity_map
        self._query_cache = query_cache
        self._wheres: tuple[tuple[str, tuple[Any, ...]], ...] = ()
        self._orders: tuple[tuple[str, bool], ...] = ()
        self._limit: int | None = None
        self._offset: int | None = None
        self._includes: tuple[str, ...] = ()
        self._trashed = TrashedMode.EXCLUDE

    @property
    def context(self) -> Context:
        if self._context is None:
            from keystone.orm.context import get_context

            self._context = get_context()
        return self._context

    def _clone(self, **changes: Any) -> Query[E]:
        clone = copy.copy(self)
        for name, value in changes.items():
            setattr(clone, f"_{name}", value)
        return clone

    # -- Refinement ------------------------------------------------------

    def where(self, sql: str, *args: Any) -> Query[E]:
        """Raw SQL predicate with ``{n}`` placeholders."""
        return self._clone(wheres=(*self._wheres, (sql, args)))

    def filter(self, expression: str, *args: Any, **named: Any) -> Query[E]:
        """Predicate in the expression grammar, e.g. ``"views > {0} && !draft"``."""
        fragment = compile_predicate(expression, self.model.descriptor_table(), args, named)
        return self.where(fragment.text, *fragment.args)

    def like(self, expression: str, *args: Any, **named: Any) -> Query[E]:
        """Like :meth:`filter`, with ``==``/``!=`` compiled to ``LIKE``/``NOT LIKE``."""
        fragment = compile_like(expression, self.model.descriptor_table(), args, named)
        return self.where(fragment.text, *fragment.args)

    def filter_by(self, **equals: Any) -> Query[E]:
        """Equality on properties; lists become ``IN``, entities match their foreign key."""
        query = self
        for name, value in equals.items():
            column = SqlId(self._column_for(name))
            value = _key_of(value)
            if value is None:
                query = query.where("{0} IS NULL", column)
            elif isinstance(value, list | tuple | set | frozenset):
                query = query.where("{0} IN ({1})", column, [_key_of(v) for v in value])
            else:
                query = query.where("{0} = {1}", column, value)
        return query

    def _column_for(self, name: str) -> str:
        info = self.model.descriptor_table().resolve_member(name)
        if info is None:
            raise ExpressionSyntaxError(f"{self.model.__name__} has no property {name!r}", text=name, position=0)
        if not info.is_relation:
            return info.column
        relation = self.context.relations.for_property(self.model, info.name)
        if relation is None or not relation.holds_foreign_key:
            raise ExpressionSyntaxError(
                f"{self.model.__name__}.{info.name} does not store a foreign key on {self.model.__name__}",
                text=name,
                position=0,
            )
        return relation.foreign_key_column_name

    def order_by(self, *members: str) -> Query[E]:
        """Sort by properties; a leading ``-`` sorts descending."""
        orders = list(self._orders)
        for member in members:
            descending = member.startswith("-")
            orders.append((self._column_for(member.lstrip("-")), descending))
        return self._clone(orders=tuple(orders))

    def skip(self, count: int) -> Query[E]:
        return self._clone(offset=count)

    def take(self, count: int) -> Query[E]:
        return self._clone(limit=count)

    def include(self, *names: str) -> Query[E]:
        """Load the named to-one relations in the same statement."""
        for name in names:
            relation = self.context.relations.for_property(self.model, name)
            if relation is None or not relation.holds_foreign_key:
                raise ConfigError(
                    f"{self.model.__name__}.{name} cannot be included; only to-one relations "
                    f"storing their foreign key on {self.model.__name__} can"
                )
        return self._clone(includes=(*self._includes, *(n for n in names if n not in self._includes)))

    def with_trashed(self) -> Query[E]:
        return self._clone(trashed=TrashedMode.INCLUDE)

    def only_trashed(self) -> Query[E]:
        return self._clone(trashed=TrashedMode.ONLY)

    # -- Assembly --------------------------------------------------------

    @property
    def defining_query(self) -> QueryBuilder:
        """A fresh builder for this query's SELECT."""
        ctx = self.context
        table = ctx.table_name(self.model)
        qb = ctx.qb().select("*")
        if self._includes:
            qb.from_("{0} AS {1}", self._joined(table), SqlId("included"))
        else:
            qb.from_(table)

        if self._trashed is TrashedMode.EXCLUDE:
            qb.where("{0} IS NULL", SqlId("DeletedAt"))
        elif self._trashed is TrashedMode.ONLY:
            qb.where("{0} IS NOT NULL", SqlId("DeletedAt"))
        for sql, args in self._wheres:
            qb.where(f"({sql})", *args)
        for column, descending in self._orders:
            qb.order_by("{0} DESC" if descending else "{0}", SqlId(column))
        return qb.limit(self._limit).offset(self._offset)

    def _joined(self, table: str) -> QueryBuilder:
        ctx = self.context
        inner = ctx.qb().select("{0}.*", SqlTable(table, ctx.schema))
        relations = [ctx.relations.for_property(self.model, name) for name in self._includes]
        for name, relation in zip(self._includes, relations, strict=True):
            foreign = relation.foreign_type
            columns = foreign.descriptor_table().columns()
            columns += [r.foreign_key_column_name for r in ctx.relations.for_type(foreign) if r.holds_foreign_key]
            for column in columns:
                inner.select("{0} AS {1}", SqlColumn(f"inc_{name}", column), SqlId(f"{name}__{column}"))
        inner.from_(table)
        for name, relation in zip(self._includes, relations, strict=True):
            alias = f"inc_{name}"
            inner.left_join(
                "{0} AS {1} ON {2} = {3}",
                SqlTable(relation.foreign_table_name, ctx.schema),
                SqlId(alias),
                SqlColumn(alias, "Id"),
                SqlColumn(table, relation.foreign_key_column_name, ctx.schema),
            )
        return inner

    def _matching_ids(self) -> QueryBuilder:
        return self.context.qb().select("{0}", SqlId("Id")).from_("{0} AS {1}", self.defining_query, SqlId("matched"))

    @property
    def sql(self) -> str:
        return self.defining_query.sql

    @property
    def parameters(self) -> dict[str, Any]:
        return self.defining_query.parameters

    def _fetch(self, builder: QueryBuilder) -> list[dict[str, Any]]:
        cache = self._query_cache
        if cache is not None:
            rows = cache.get(builder.hash)
            if rows is not None:
                return rows
        rows = builder.rows()
        if cache is not None:
            cache.put(builder.hash, rows)
        return rows

    # -- Materialization -------------------------------------------------

    def to_list(self) -> list[E]:
        hydrator = self.context.hydrator(self._identity_map, self._query_cache)
        rows = self._fetch(self.defining_query)
        logger.debug("query.materialized", model=self.model.__name__, rows=len(rows))
        return hydrator.hydrate_all(self.model, rows)

    def __iter__(self) -> Iterator[E]:
        return iter(self.to_list())

    def _narrow(self, expression: str | None, args: tuple[Any, ...], named: dict[str, Any]) -> Query[E]:
        return self.filter(expression, *args, **named) if expression is not None else self

    def first(self, expression: str | None = None, *args: Any, **named: Any) -> E:
        found = self._narrow(expression, args, named).first_or_default()
        if found is None:
            raise CardinalityError(f"No {self.model.__name__} matches the query", expected="1+", actual=0)
        return found

    def first_or_default(self, expression: str | None = None, *args: Any, **named: Any) -> E | None:
        results = self._narrow(expression, args, named).take(1).to_list()
        return results[0] if results else None

    def single(self, expression: str | None = None, *args: Any, **named: Any) -> E:
        found = self._narrow(expression, args, named).single_or_default()
        if found is None:
            raise CardinalityError(f"No {self.model.__name__} matches the query", expected="1", actual=0)
        return found

    def single_or_default(self, expression: str | None = None, *args: Any, **named: Any) -> E | None:
        query = self._narrow(expression, args, named)
        probe = 2 if query._limit is None or query._limit > 2 else query._limit
        results = query.take(probe).to_list()
        if len(results) > 1:
            raise CardinalityError(
                f"More than one {self.model.__name__} matches the query", expected="1", actual=len(results)
            )
        return results[0] if results else None

    def find(self, entity_id: Any) -> E | None:
        """The entity with ``entity_id``, or None (``0``/``None`` never match)."""
        if not entity_id:
            return None
        return self.where("{0} = {1}", SqlId("Id"), entity_id).first_or_default()

    def count(self, expression: str | None = None, *args: Any, **named: Any) -> int:
        query = self._narrow(expression, args, named)
        qb = self.context.qb().select("COUNT(*)").from_("{0} AS {1}", query.defining_query, SqlId("counted"))
        return int(qb.scalar() or 0)

    def any(self, expression: str | None = None, *args: Any, **named: Any) -> bool:
        query = self._narrow(expression, args, named)
        qb = self.context.qb().select("CASE WHEN EXISTS {0} THEN 1 ELSE 0 END", query.defining_query)
        return bool(qb.scalar())

    def all(self, expression: str, *args: Any, **named: Any) -> bool:
        """True when every matching row satisfies ``expression``."""
        fragment = compile_predicate(expression, self.model.descriptor_table(), args, named)
        return not self.where(f"NOT {fragment.text}", *fragment.args).any()

    def to_dicts(self) -> list[dict[str, Any]]:
        return [entity.to_dict() for entity in self.to_list()]

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dicts(), default=json_default, **kwargs)

    # -- Bulk writes -----------------------------------------------------

    def update_all(self, assignments: str | Mapping[str, Any], *args: Any, **named: Any) -> int:
        """Apply assignments to every matching row; returns the affected count.

        ``assignments`` is either ``"views == {0} && draft == false"`` or a
        ``{property: value}`` mapping.
        """
        ctx = self.context
        qb = ctx.qb().update(ctx.table_name(self.model))
        if isinstance(assignments, Mapping):
            qb.set_values({self._column_for(name): _key_of(value) for name, value in assignments.items()})
        else:
            fragment = compile_assignments(assignments, self.model.descriptor_table(), args, named)
            qb.set(fragment.text, *fragment.args)
        qb.set("{0} = {1}", SqlId("ModifiedAt"), utc_now())
        qb.where("{0} IN {1}", SqlId("Id"), self._matching_ids())
        count = qb.execute()
        logger.info("query.update_all", model=self.model.__name__, rows=count)
        return count

    def delete_all(self, hard: bool = False) -> int:
        """Soft-delete (or with ``hard=True`` remove) every matching row."""
        ctx = self.context
        table = ctx.table_name(self.model)
        if hard:
            qb = ctx.qb().delete_from(table)
        else:
            now = utc_now()
            qb = ctx.qb().update(table).set_values({"DeletedAt": now, "ModifiedAt": now})
        qb.where("{0} IN {1}", SqlId("Id"), self._matching_ids())
        count = qb.execute()
        logger.info("query.delete_all", model=self.model.__name__, rows=count, hard=hard)
        return count

    def __repr__(self) -> str:
        return f"Query({self.model.__name__}, {self.sql!r})"


__all__ = [
    "Query",
    "TrashedMode",
    "json_default",
]
