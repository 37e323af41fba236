"""
Graph-aware persistence.

Manifesto:
    ``entity.save()`` persists everything reachable from the entity that
    needs it, exactly once, inside one transaction. Inserts write every
    column; updates write only the dirty ones; collections are diffed
    against their snapshot so that only added and removed members produce
    statements.

Architecture:
    ::

        Persister.save(entity, graph)
          ├─ visited? → return                       (cycles end here)
          ├─ validate + before_* hooks
          ├─ pre-phase   to-one relations holding the FK:
          │                save related if new/dirty, take its id
          ├─ row write   INSERT (all columns, stamped) or UPDATE (dirty only)
          ├─ post-phase  ONE_TO_MANY / owned ONE_TO_ONE:
          │                added members get FK = id, removed get FK = NULL
          │              MANY_TO_MANY:
          │                pivot INSERT for added pairs, DELETE for removed
          └─ root only:  deferred writes, then snapshot every saved entity

    The :class:`SaveGraph` is the visited set for one top-level save. It
    records persisted entities by ``(type, id)`` and new ones by object
    identity, plus the pivot pairs already written so mirrored collections
    do not write the same pair twice.

Tags:
    persistence, unit-of-work, dirty-tracking, pivot-tables, keystone-orm

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from typing import TYPE_CHECKING, Any

from keystone.core.errors import PersistenceError
from keystone.core.logging import get_logger
from keystone.core.timestamps import utc_now
from keystone.orm.builder import SqlId
from keystone.orm.relations import Relation, RelationType
from keystone.orm.tracking import entity_key

if TYPE_CHECKING:
    from keystone.orm.context import Context

logger = get_logger(__name__)


class SaveGraph:
    """Visited set and pending work for one top-level save."""

    def __init__(self) -> None:
        self._visited: set[Hashable] = set()
        self.saved: list[Any] = []
        self.inserted: list[Any] = []
        self.pivots: set[tuple[str, Any, Any]] = set()
        self.pending_keys: dict[int, tuple[Any, dict[str, Any]]] = {}
        self.deferred: list[Callable[[], None]] = []

    def is_visited(self, entity: Any) -> bool:
        return id(entity) in self._visited or entity_key(entity) in self._visited

    def visit(self, entity: Any) -> None:
        self._visited.add(id(entity))
        self._visited.add(entity_key(entity))
        self.saved.append(entity)

    def mark_persisted(self, entity: Any) -> None:
        self._visited.add(entity_key(entity))

    def assign_key(self, entity: Any, column: str, value: Any) -> None:
        """Queue a foreign-key value to be written with ``entity``'s row."""
        _, columns = self.pending_keys.setdefault(id(entity), (entity, {}))
        columns[column] = value

    def take_keys(self, entity: Any) -> dict[str, Any]:
        _, columns = self.pending_keys.pop(id(entity), (entity, {}))
        return columns

    def defer(self, action: Callable[[], None]) -> None:
        self.deferred.append(action)

    def __contains__(self, entity: object) -> bool:
        return self.is_visited(entity)

    def __len__(self) -> int:
        return len(self.saved)


class Persister:
    """Writes entity graphs through a context's executor."""

    def __init__(self, context: Context) -> None:
        self.context = context

    # -- Entry points ----------------------------------------------------

    def save(self, entity: Any, graph: SaveGraph | None = None) -> Any:
        root = graph is None
        graph = graph if graph is not None else SaveGraph()
        if graph.is_visited(entity):
            return entity
        graph.visit(entity)

        try:
            with self.context.transaction():
                self._save_one(entity, graph)
                if root:
                    self._finish(graph)
        except Exception:
            if root:
                # ids handed out inside the rolled-back transaction are void
                for inserted in graph.inserted:
                    inserted._state.values["id"] = 0
            raise
        if root:
            for saved in graph.saved:
                saved._state.snapshot()
            logger.debug("entity.saved", model=type(entity).__name__, id=entity.id, entities=len(graph))
        return entity

    def delete(self, entity: Any, hard: bool = False) -> None:
        if not entity.id:
            raise PersistenceError(f"Cannot delete an unsaved {type(entity).__name__}").with_context(
                model=type(entity).__name__
            )
        table = self.context.table_name(type(entity))
        entity.before_delete()
        with self.context.transaction():
            if hard:
                self.context.qb().delete_from(table).where_eq("Id", entity.id).execute()
            else:
                now = utc_now()
                self._write_clean(entity, {"deleted_at": now, "modified_at": now})
        entity.after_delete()
        logger.info("entity.deleted", model=type(entity).__name__, id=entity.id, hard=hard)

    def restore(self, entity: Any) -> None:
        if not entity.id:
            raise PersistenceError(f"Cannot restore an unsaved {type(entity).__name__}").with_context(
                model=type(entity).__name__
            )
        entity.before_restore()
        self._write_clean(entity, {"deleted_at": None, "modified_at": utc_now()})
        entity.after_restore()
        logger.info("entity.restored", model=type(entity).__name__, id=entity.id)

    def _write_clean(self, entity: Any, values: dict[str, Any]) -> None:
        """UPDATE the given properties and record them as the new baseline."""
        table = entity.descriptor_table()
        state = entity._state
        columns = {table[name].column: value for name, value in values.items()}
        (
            self.context.qb()
            .update(self.context.table_name(type(entity)))
            .set_values(columns)
            .where_eq("Id", entity.id)
            .execute()
        )
        for name, value in values.items():
            state.values[name] = value
            state.original[name] = value
            state.modified.discard(name)

    # -- One entity ------------------------------------------------------

    def _save_one(self, entity: Any, graph: SaveGraph) -> None:
        model = type(entity)
        state = entity._state
        relations = self.context.relations.for_type(model)
        is_new = not entity.id
        if state.context is None:
            state.context = self.context

        entity.validate()
        entity.before_save()
        if is_new:
            entity.before_insert()
        else:
            entity.before_update()

        # members unsaved at this point are added, whatever the baseline says
        fresh = self._unsaved_members(state, relations)
        key_columns, dirty_keys = self._save_references(entity, relations, graph, is_new)

        columns: dict[str, Any] = {}
        for info in entity.descriptor_table().primitives():
            if info.name == "id":
                continue
            if is_new or info.name in state.modified:
                columns[info.column] = state.values.get(info.name)
        for column, value in key_columns.items():
            if is_new or column in dirty_keys:
                columns[column] = value
        columns.update(graph.take_keys(entity))

        table = self.context.table_name(model)
        if is_new:
            now = utc_now()
            state.values["created_at"] = state.values["modified_at"] = now
            columns["CreatedAt"] = columns["ModifiedAt"] = now
            new_id = self.context.qb().insert_into(table).cols(*columns).values(*columns.values()).insert()
            state.values["id"] = new_id
            state.identity_map.add(entity)
            graph.mark_persisted(entity)
            graph.inserted.append(entity)
            logger.debug("entity.inserted", model=model.__name__, id=new_id)
            entity.after_insert()
        elif columns:
            now = utc_now()
            state.values["modified_at"] = now
            columns["ModifiedAt"] = now
            self.context.qb().update(table).set_values(columns).where_eq("Id", entity.id).execute()
            logger.debug("entity.updated", model=model.__name__, id=entity.id, columns=sorted(columns))
            entity.after_update()

        for relation in relations:
            if relation.local_property not in state.values:
                continue
            if relation.relation_type is RelationType.ONE_TO_MANY:
                self._save_children(entity, relation, graph, is_new, fresh)
            elif relation.relation_type is RelationType.ONE_TO_ONE and not relation.holds_foreign_key:
                self._save_dependent(entity, relation, graph, is_new, fresh)
            elif relation.relation_type is RelationType.MANY_TO_MANY:
                self._save_pivot(entity, relation, graph, is_new, fresh)

        entity.after_save()

    def _needs_save(self, entity: Any) -> bool:
        return not entity.id or entity.is_dirty

    @staticmethod
    def _unsaved_members(state: Any, relations: list[Relation]) -> set[int]:
        """Object ids of related entities without a database id."""
        fresh: set[int] = set()
        for relation in relations:
            value = state.values.get(relation.local_property)
            if value is None:
                continue
            members = value if isinstance(value, list) else [value]
            fresh.update(id(member) for member in members if not member.id)
        return fresh

    def _save_references(
        self, entity: Any, relations: list[Relation], graph: SaveGraph, is_new: bool
    ) -> tuple[dict[str, Any], set[str]]:
        """Save to-one targets whose key lives on ``entity``; return FK column values."""
        state = entity._state
        values: dict[str, Any] = {}
        dirty: set[str] = set()
        for relation in relations:
            name = relation.local_property
            if not relation.holds_foreign_key or name not in state.values:
                continue
            column = relation.foreign_key_column_name
            related = state.values[name]
            if related is not None and self._needs_save(related):
                self.save(related, graph)
            if related is not None and not related.id:
                # related is further up the current save and has no id yet
                graph.defer(lambda e=entity, c=column, r=related: self._link(e, c, r.id))
                continue
            values[column] = related.id if related is not None else None
            if is_new or name in state.modified:
                dirty.add(column)
        return values, dirty

    def _link(self, entity: Any, column: str, value: Any) -> None:
        (
            self.context.qb()
            .update(self.context.table_name(type(entity)))
            .set("{0} = {1}", SqlId(column), value)
            .where_eq("Id", entity.id)
            .execute()
        )

    def _unlink(self, relation: Relation, member: Any, owner_id: Any) -> None:
        """Clear ``member``'s foreign key when it still points at ``owner_id``."""
        column = SqlId(relation.foreign_key_column_name)
        (
            self.context.qb()
            .update(relation.foreign_key_table_name)
            .set("{0} = NULL", column)
            .where_eq("Id", member.id)
            .where("{0} = {1}", column, owner_id)
            .execute()
        )
        if relation.foreign_property is not None:
            member_state = member._state
            if member_state.values.get(relation.foreign_property) is not None:
                member_state.values[relation.foreign_property] = None
                member_state.original[relation.foreign_property] = None

    def _adopt(self, entity: Any, relation: Relation, member: Any, graph: SaveGraph) -> None:
        """Point ``member``'s foreign key at ``entity`` and save it."""
        graph.assign_key(member, relation.foreign_key_column_name, entity.id)
        if relation.foreign_property is not None:
            member_state = member._state
            member_state.deferred.pop(relation.foreign_property, None)
            member_state.values[relation.foreign_property] = entity
            member_state.original[relation.foreign_property] = entity
        self.save(member, graph)

    def _save_children(
        self, entity: Any, relation: Relation, graph: SaveGraph, is_new: bool, fresh: set[int]
    ) -> None:
        state = entity._state
        current = list(state.values[relation.local_property] or [])
        baseline = [] if is_new else list(state.original.get(relation.local_property) or [])
        baseline_keys = {entity_key(m) for m in baseline}

        for member in current:
            if id(member) in fresh or entity_key(member) not in baseline_keys:
                self._adopt(entity, relation, member, graph)
            elif self._needs_save(member):
                self.save(member, graph)

        current_keys = {entity_key(m) for m in current}
        for member in baseline:
            if member.id and entity_key(member) not in current_keys:
                self._unlink(relation, member, entity.id)

    def _save_dependent(
        self, entity: Any, relation: Relation, graph: SaveGraph, is_new: bool, fresh: set[int]
    ) -> None:
        state = entity._state
        current = state.values[relation.local_property]
        baseline = None if is_new else state.original.get(relation.local_property)

        if baseline is not None and baseline.id and (current is None or entity_key(current) != entity_key(baseline)):
            self._unlink(relation, baseline, entity.id)
        if current is None:
            return
        if baseline is None or id(current) in fresh or entity_key(current) != entity_key(baseline):
            self._adopt(entity, relation, current, graph)
        elif self._needs_save(current):
            self.save(current, graph)

    def _save_pivot(
        self, entity: Any, relation: Relation, graph: SaveGraph, is_new: bool, fresh: set[int]
    ) -> None:
        state = entity._state
        current = list(state.values[relation.local_property] or [])
        baseline = [] if is_new else list(state.original.get(relation.local_property) or [])

        for member in current:
            if self._needs_save(member):
                self.save(member, graph)

        current_keys = {entity_key(m): m for m in current}
        baseline_keys = {entity_key(m): m for m in baseline}
        for key, member in current_keys.items():
            if key in baseline_keys and id(member) not in fresh:
                continue
            if member.id:
                self._insert_pair(relation, entity.id, member.id, graph)
            else:
                graph.defer(lambda m=member: self._insert_pair(relation, entity.id, m.id, graph))
        for key, member in baseline_keys.items():
            if key not in current_keys and member.id:
                self._delete_pair(relation, entity.id, member.id, graph)

    def _pair(self, relation: Relation, local_id: Any, foreign_id: Any) -> tuple[Any, Any]:
        if relation.local_is_first_pivot_side:
            return local_id, foreign_id
        return foreign_id, local_id

    def _insert_pair(self, relation: Relation, local_id: Any, foreign_id: Any, graph: SaveGraph) -> None:
        first, second = self._pair(relation, local_id, foreign_id)
        marker = (relation.pivot_table_name, first, second)
        if marker in graph.pivots:
            return
        graph.pivots.add(marker)
        first_col = SqlId(relation.pivot_table_first_column_name)
        second_col = SqlId(relation.pivot_table_second_column_name)
        existing = (
            self.context.qb()
            .select("1")
            .from_(relation.pivot_table_name)
            .where("{0} = {1}", first_col, first)
            .where("{0} = {1}", second_col, second)
        )
        (
            self.context.qb()
            .insert_into(relation.pivot_table_name)
            .cols(first_col, second_col)
            .select("{0}, {1}", first, second)
            .where("NOT EXISTS {0}", existing)
            .execute()
        )

    def _delete_pair(self, relation: Relation, local_id: Any, foreign_id: Any, graph: SaveGraph) -> None:
        first, second = self._pair(relation, local_id, foreign_id)
        marker = (relation.pivot_table_name, first, second)
        if marker in graph.pivots:
            return
        graph.pivots.add(marker)
        (
            self.context.qb()
            .delete_from(relation.pivot_table_name)
            .where_eq(relation.pivot_table_first_column_name, first)
            .where_eq(relation.pivot_table_second_column_name, second)
            .execute()
        )

    # -- Root completion -------------------------------------------------

    def _finish(self, graph: SaveGraph) -> None:
        while graph.deferred:
            action = graph.deferred.pop(0)
            action()
        for entity, columns in list(graph.pending_keys.values()):
            if entity.id and columns:
                update = self.context.qb().update(self.context.table_name(type(entity))).set_values(columns)
                update.where_eq("Id", entity.id).execute()
        graph.pending_keys.clear()


__all__ = [
    "SaveGraph",
    "Persister",
]
