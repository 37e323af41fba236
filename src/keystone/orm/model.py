"""
Model base class.

Manifesto:
    A model is a plain annotated class. Subclassing :class:`Model` registers
    it, swaps its annotations for tracked properties and gives it the
    persistence surface: class-level queries, graph-aware ``save()``, soft
    ``delete()``/``restore()``, validation, dictionary/JSON conversion and
    lifecycle hooks.

Architecture:
    ::

        class Post(Model):            __init_subclass__
            title: str        ──────►   collect_options()  → Property descriptors
            author: Author              default_registry.register(Post)
            tags: list[Tag]
                                      descriptor_table()   (first use, cached)
                                        build_table()      → PropertyTable

        post.title = "x"      ──────►   set_property()     → EntityState.mark()
        post.tags.append(t)   ──────►   TrackedList        → EntityState.touch()
        post.save()           ──────►   Persister.save()   (one SaveGraph)

    Every model carries ``id``, ``created_at``, ``modified_at`` and
    ``deleted_at``; columns are ``Id``, ``CreatedAt``, ``ModifiedAt`` and
    ``DeletedAt``. ``id == 0`` means "not persisted yet".

Examples:
    >>> class Author(Model):
    ...     name: str = field(required=True)
    ...     posts: list[Post]
    >>> ada = Author.create(name="Ada")
    >>> Author.query().filter("name == {0}", "Ada").single() is not None
    True

Tags:
    model, active-record, dirty-tracking, hooks, keystone-orm

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import json
from collections.abc import Hashable, Mapping
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from keystone.core.errors import ModelValidationError, PersistenceError
from keystone.core.timestamps import utc_now
from keystone.orm.fields import FieldInfo, PropertyTable, build_table, collect_options
from keystone.orm.query import Query, json_default
from keystone.orm.registry import default_registry
from keystone.orm.tracking import EntityState, TrackedList, snapshot_value
from keystone.orm.types import coerce

if TYPE_CHECKING:
    from keystone.orm.context import Context
    from keystone.orm.hydration import Hydrator
    from keystone.orm.persistence import SaveGraph

M = TypeVar("M", bound="Model")


class Model:
    """Base class for persistent entities."""

    __table_name__: ClassVar[str | None] = None

    id: int = 0
    created_at: datetime | None = None
    modified_at: datetime | None = None
    deleted_at: datetime | None = None

    def __init_subclass__(cls, abstract: bool = False, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.__field_options__ = {**getattr(cls, "__field_options__", {}), **collect_options(cls)}
        cls.__descriptor_table__ = None
        if not abstract:
            default_registry.register(cls)

    def __init__(self, **values: Any) -> None:
        table = self.descriptor_table()
        unknown = sorted(set(values) - set(table))
        if unknown:
            raise TypeError(f"{type(self).__name__} has no properties {unknown}")
        self._state = EntityState()
        now = utc_now()
        for info in table.values():
            value = values[info.name] if info.name in values else self._initial(info, now)
            self._state.values[info.name] = self._wrap(info, value)
        self._state.snapshot()

    @staticmethod
    def _initial(info: FieldInfo, now: datetime) -> Any:
        if info.is_list:
            return []
        if info.name in ("created_at", "modified_at"):
            return now
        return info.default_value()

    # -- Entity capability -----------------------------------------------

    @classmethod
    def descriptor_table(cls) -> PropertyTable:
        table = cls.__dict__.get("__descriptor_table__")
        if table is None:
            table = build_table(cls, default_registry.namespace())
            cls.__descriptor_table__ = table
        return table

    @classmethod
    def from_row(cls: type[M], row: Mapping[str, Any], hydrator: Hydrator) -> M:
        entity = cls.__new__(cls)
        entity._state = EntityState(hydrator.identity_map, hydrator.query_cache, hydrator.context)
        for info in cls.descriptor_table().primitives():
            raw = row.get(info.column)
            value = coerce(raw, info.target, info.name) if raw is not None else info.default_value()
            entity._state.values[info.name] = value
        return entity

    def get_property(self, name: str) -> Any:
        state = self._state
        if name in state.values:
            return state.values[name]
        loader = state.deferred.pop(name, None)
        info = self.descriptor_table().get(name)
        if info is None:
            raise AttributeError(f"{type(self).__name__} has no property {name!r}")
        value = self._wrap(info, loader() if loader is not None else self._initial(info, utc_now()))
        state.values[name] = value
        state.original[name] = snapshot_value(value)
        return value

    def set_property(self, name: str, value: Any) -> None:
        info = self.descriptor_table().get(name)
        if info is None:
            raise AttributeError(f"{type(self).__name__} has no property {name!r}")
        if name not in self._state.values:
            # load the baseline first so the change can be diffed
            self.get_property(name)
        self._state.values[name] = self._wrap(info, value)
        self._state.mark(name)

    def identity_key(self) -> Hashable:
        if self.id:
            return (type(self), self.id)
        return ("new", id(self))

    def _wrap(self, info: FieldInfo, value: Any) -> Any:
        if info.is_list:
            return TrackedList(value or (), on_change=partial(self._state.touch, info.name))
        return value

    # -- Context ---------------------------------------------------------

    @property
    def context(self) -> Context:
        if self._state.context is None:
            from keystone.orm.context import get_context

            self._state.context = get_context()
        return self._state.context

    # -- Persistence -----------------------------------------------------

    def save(self: M, graph: SaveGraph | None = None) -> M:
        """Persist this entity and every reachable new or dirty entity."""
        return self.context.persister.save(self, graph)

    def delete(self, hard: bool = False) -> None:
        """Soft-delete (stamp ``deleted_at``) or, with ``hard=True``, remove the row."""
        self.context.persister.delete(self, hard=hard)

    def restore(self) -> None:
        """Clear ``deleted_at``."""
        self.context.persister.restore(self)

    def refresh(self: M) -> M:
        """Reload primitive values from the database and discard local changes."""
        if not self.id:
            raise PersistenceError(f"Cannot refresh an unsaved {type(self).__name__}")
        row = (
            self.context.qb()
            .select("*")
            .from_(self.context.table_name(type(self)))
            .where_eq("Id", self.id)
            .row()
        )
        if row is None:
            raise PersistenceError(f"{type(self).__name__} {self.id} no longer exists")
        state = self._state
        for info in self.descriptor_table().primitives():
            raw = row.get(info.column)
            state.values[info.name] = coerce(raw, info.target, info.name) if raw is not None else None
            state.original[info.name] = state.values[info.name]
            state.modified.discard(info.name)
        return self

    @property
    def is_persisted(self) -> bool:
        return bool(self.id)

    @property
    def is_trashed(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_dirty(self) -> bool:
        return bool(self._state.modified)

    @property
    def modified_properties(self) -> frozenset[str]:
        return frozenset(self._state.modified)

    # -- Validation ------------------------------------------------------

    def validate(self) -> None:
        """Check ``required`` and ``min_length`` options.

        Raises:
            ModelValidationError: with every failing property and its messages.
        """
        errors: dict[str, list[str]] = {}
        for info in self.descriptor_table().values():
            options = info.options
            if not options.required and options.min_length is None:
                continue
            value = self._state.values.get(info.name)
            messages = []
            if options.required and (value is None or value == ""):
                messages.append("is required")
            if options.min_length is not None and value is not None and len(value) < options.min_length:
                messages.append(f"must have length >= {options.min_length}")
            if messages:
                errors[info.name] = messages
        if errors:
            raise ModelValidationError(type(self).__name__, errors)

    # -- Hooks -----------------------------------------------------------

    def before_save(self) -> None:
        pass

    def after_save(self) -> None:
        pass

    def before_insert(self) -> None:
        pass

    def after_insert(self) -> None:
        pass

    def before_update(self) -> None:
        pass

    def after_update(self) -> None:
        pass

    def before_delete(self) -> None:
        pass

    def after_delete(self) -> None:
        pass

    def before_restore(self) -> None:
        pass

    def after_restore(self) -> None:
        pass

    # -- Conversion ------------------------------------------------------

    def to_dict(self, *, relations: bool = True, _seen: set[int] | None = None) -> dict[str, Any]:
        """Primitive values plus every already-loaded relation.

        An entity met again further down the tree appears as ``{"id": ...}``.
        """
        seen = _seen if _seen is not None else set()
        seen.add(id(self))
        table = self.descriptor_table()
        data = {info.name: self._state.values.get(info.name) for info in table.primitives()}
        if not relations:
            return data

        def convert(entity: Any) -> Any:
            if entity is None:
                return None
            if id(entity) in seen:
                return {"id": entity.id}
            return entity.to_dict(_seen=seen)

        for info in table.relations():
            if info.name not in self._state.values:
                continue
            value = self._state.values[info.name]
            data[info.name] = [convert(e) for e in value] if info.is_list else convert(value)
        return data

    @classmethod
    def from_dict(cls: type[M], data: Mapping[str, Any]) -> M:
        """Build an instance (and nested relations) from :meth:`to_dict` output.

        The result has no dirty properties; with an ``id`` it is treated as persisted.
        """
        table = cls.descriptor_table()
        entity = cls.__new__(cls)
        entity._state = EntityState()
        now = utc_now()
        for info in table.values():
            if info.name not in data:
                if not info.is_relation or info.is_list:
                    entity._state.values[info.name] = entity._wrap(info, cls._initial(info, now))
                else:
                    entity._state.values[info.name] = None
                continue
            raw = data[info.name]
            if info.is_list:
                value = [info.target.from_dict(item) for item in raw or ()]
            elif info.is_relation:
                value = info.target.from_dict(raw) if raw is not None else None
            else:
                value = coerce(raw, info.target, info.name) if raw is not None else None
            entity._state.values[info.name] = entity._wrap(info, value)
        entity._state.snapshot()
        return entity

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), default=json_default, **kwargs)

    @classmethod
    def from_json(cls: type[M], text: str) -> M:
        return cls.from_dict(json.loads(text))

    # -- Class-level queries ---------------------------------------------

    @classmethod
    def query(cls: type[M], context: Context | None = None) -> Query[M]:
        return Query(cls, context)

    @classmethod
    def find(cls: type[M], entity_id: Any, *, with_trashed: bool = False) -> M | None:
        query = cls.query()
        return (query.with_trashed() if with_trashed else query).find(entity_id)

    @classmethod
    def exists(cls, entity_id: Any) -> bool:
        if not entity_id:
            return False
        return cls.query().filter("id == {0}", entity_id).any()

    @classmethod
    def where(cls: type[M], sql: str, *args: Any) -> Query[M]:
        return cls.query().where(sql, *args)

    @classmethod
    def filter(cls: type[M], expression: str, *args: Any, **named: Any) -> Query[M]:
        return cls.query().filter(expression, *args, **named)

    @classmethod
    def filter_by(cls: type[M], **equals: Any) -> Query[M]:
        return cls.query().filter_by(**equals)

    @classmethod
    def create(cls: type[M], **values: Any) -> M:
        return cls(**values).save()

    @classmethod
    def first_or_create(cls: type[M], **values: Any) -> M:
        """The first entity whose properties equal ``values``, else a new saved one."""
        existing = cls.query().filter_by(**values).first_or_default()
        return existing if existing is not None else cls.create(**values)

    @classmethod
    def single_or_create(cls: type[M], **values: Any) -> M:
        """Like :meth:`first_or_create`, but more than one match raises ``CardinalityError``."""
        existing = cls.query().filter_by(**values).single_or_default()
        return existing if existing is not None else cls.create(**values)

    @classmethod
    def destroy(cls, *ids: Any, hard: bool = False) -> int:
        """Delete the entities with the given ids (hooks run); returns how many were found."""
        query = cls.query().filter_by(id=list(ids))
        if hard:
            query = query.with_trashed()
        entities = query.to_list()
        for entity in entities:
            entity.delete(hard=hard)
        return len(entities)

    def __repr__(self) -> str:
        dirty = f" dirty={sorted(self._state.modified)}" if self._state.modified else ""
        return f"<{type(self).__name__} id={self.id}{dirty}>"


Model.__field_options__ = collect_options(Model)


__all__ = [
    "Model",
]
