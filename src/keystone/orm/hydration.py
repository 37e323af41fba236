"""
Hydration: raw rows → entity graphs.

Manifesto:
    One row becomes one instance, and one ``(type, id)`` becomes one instance
    per materialized graph. Relations are never fetched eagerly by accident:
    to-one references whose columns were joined in by ``Query.include`` are
    built from the same row, everything else gets a deferred loader that runs
    on first read and shares the graph's identity map and query cache.

Architecture:
    ::

        Query.to_list()
            └─ Hydrator.hydrate(model, row)
                 ├─ identity map hit? → same instance (cycles end here)
                 ├─ model.from_row(row, hydrator)   primitives, coerced
                 ├─ identity_map.add(entity)        before any relation work
                 ├─ for each discovered relation:
                 │     joined "{prop}__{Column}" columns → nested hydrate
                 │     NULL foreign key               → None, no query
                 │     otherwise                      → deferred loader
                 └─ snapshot                        zero dirty properties

Tags:
    hydration, identity-map, lazy-loading, eager-loading, keystone-orm

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from functools import partial
from typing import TYPE_CHECKING, Any

from keystone.core.errors import TypeMappingError
from keystone.core.logging import get_logger
from keystone.orm.builder import SqlId
from keystone.orm.query import Query
from keystone.orm.relations import Relation, RelationType
from keystone.orm.tracking import IdentityMap, QueryCache
from keystone.orm.types import coerce

if TYPE_CHECKING:
    from keystone.orm.context import Context

logger = get_logger(__name__)

INCLUDE_SEPARATOR = "__"


def split_prefixed(row: Mapping[str, Any], prefix: str) -> dict[str, Any]:
    """Columns of ``row`` starting with ``prefix``, with the prefix removed."""
    return {key[len(prefix):]: value for key, value in row.items() if key.startswith(prefix)}


class Hydrator:
    """Builds entities from rows for one object graph."""

    def __init__(
        self,
        context: Context,
        identity_map: IdentityMap | None = None,
        query_cache: QueryCache | None = None,
    ) -> None:
        self.context = context
        self.identity_map = identity_map if identity_map is not None else IdentityMap()
        self.query_cache = query_cache if query_cache is not None else QueryCache()

    def hydrate(self, model: type, row: Mapping[str, Any]) -> Any:
        """Return the graph's instance for ``row``, building it on first sight."""
        if row.get("Id") is None:
            raise TypeMappingError(f"Row for {model.__name__} has no Id column").with_context(model=model.__name__)
        entity_id = coerce(row["Id"], int, "Id")
        cached = self.identity_map.get(model, entity_id)
        if cached is not None:
            return cached

        entity = model.from_row(row, self)
        self.identity_map.add(entity)
        for relation in self.context.relations.for_type(model):
            self._wire(entity, relation, row)
        entity._state.snapshot()
        return entity

    def hydrate_all(self, model: type, rows: Iterable[Mapping[str, Any]]) -> list[Any]:
        return [self.hydrate(model, row) for row in rows]

    # -- Relation wiring -------------------------------------------------

    def _wire(self, entity: Any, relation: Relation, row: Mapping[str, Any]) -> None:
        state = entity._state
        name = relation.local_property

        if relation.holds_foreign_key:
            prefix = f"{name}{INCLUDE_SEPARATOR}"
            if f"{prefix}Id" in row:
                joined = split_prefixed(row, prefix)
                state.values[name] = (
                    self.hydrate(relation.foreign_type, joined) if joined.get("Id") is not None else None
                )
                return
            foreign_key = row.get(relation.foreign_key_column_name)
            if foreign_key is None:
                state.values[name] = None
            else:
                state.deferred[name] = partial(self._load_reference, relation, foreign_key)
            return

        if relation.relation_type is RelationType.ONE_TO_ONE:
            state.deferred[name] = partial(self._load_dependent, entity, relation)
        elif relation.relation_type is RelationType.ONE_TO_MANY:
            state.deferred[name] = partial(self._load_children, entity, relation)
        else:
            state.deferred[name] = partial(self._load_pivoted, entity, relation)

    # -- Deferred loaders ------------------------------------------------

    def query(self, model: type) -> Query:
        """A query sharing this graph's identity map and query cache."""
        return Query(model, self.context, identity_map=self.identity_map, query_cache=self.query_cache)

    def _load_reference(self, relation: Relation, foreign_key: Any) -> Any:
        cached = self.identity_map.get(relation.foreign_type, foreign_key)
        if cached is not None:
            return cached
        logger.debug("hydration.load_reference", relation=relation.describe(), id=foreign_key)
        return self.query(relation.foreign_type).with_trashed().find(foreign_key)

    def _load_dependent(self, entity: Any, relation: Relation) -> Any:
        logger.debug("hydration.load_dependent", relation=relation.describe(), id=entity.id)
        return (
            self.query(relation.foreign_type)
            .where("{0} = {1}", SqlId(relation.foreign_key_column_name), entity.id)
            .first_or_default()
        )

    def _load_children(self, entity: Any, relation: Relation) -> list[Any]:
        logger.debug("hydration.load_children", relation=relation.describe(), id=entity.id)
        return (
            self.query(relation.foreign_type)
            .where("{0} = {1}", SqlId(relation.foreign_key_column_name), entity.id)
            .order_by("id")
            .to_list()
        )

    def _load_pivoted(self, entity: Any, relation: Relation) -> list[Any]:
        logger.debug("hydration.load_pivoted", relation=relation.describe(), id=entity.id)
        linked = (
            self.context.qb()
            .select("{0}", SqlId(relation.foreign_pivot_column))
            .from_(relation.pivot_table_name)
            .where_eq(relation.local_pivot_column, entity.id)
        )
        return (
            self.query(relation.foreign_type)
            .where("{0} IN {1}", SqlId("Id"), linked)
            .order_by("id")
            .to_list()
        )


__all__ = [
    "Hydrator",
    "INCLUDE_SEPARATOR",
    "split_prefixed",
]
