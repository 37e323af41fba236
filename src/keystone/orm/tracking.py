"""
Per-entity change tracking and per-graph caches.

``EntityState`` is the property bag behind every model instance:

- ``values``: current property values (primitives and loaded relations);
- ``original``: the snapshot taken after hydration, construction or save;
- ``modified``: names whose value differs from the snapshot;
- ``deferred``: loaders for relations not read yet;
- ``identity_map`` / ``query_cache``: shared by every entity of one
  materialized graph.

Collection relations are wrapped in :class:`TrackedList`, which reports
insertions and removals so the owning property is marked dirty even though
the list object itself never changes.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from typing import Any, SupportsIndex


class TrackedList(list):
    """A ``list`` that calls back on every membership change."""

    __slots__ = ("_on_change",)

    def __init__(self, iterable: Iterable[Any] = (), on_change: Callable[[], None] | None = None) -> None:
        super().__init__(iterable)
        self._on_change = on_change

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def append(self, item: Any) -> None:
        super().append(item)
        self._changed()

    def extend(self, items: Iterable[Any]) -> None:
        super().extend(items)
        self._changed()

    def insert(self, index: SupportsIndex, item: Any) -> None:
        super().insert(index, item)
        self._changed()

    def remove(self, item: Any) -> None:
        super().remove(item)
        self._changed()

    def pop(self, index: SupportsIndex = -1) -> Any:
        item = super().pop(index)
        self._changed()
        return item

    def clear(self) -> None:
        super().clear()
        self._changed()

    def __setitem__(self, index: Any, value: Any) -> None:
        super().__setitem__(index, value)
        self._changed()

    def __delitem__(self, index: Any) -> None:
        super().__delitem__(index)
        self._changed()

    def __iadd__(self, items: Iterable[Any]) -> TrackedList:
        super().__iadd__(items)
        self._changed()
        return self

    def __reduce__(self) -> Any:
        return (list, (list(self),))


def entity_key(entity: Any) -> Hashable:
    """``(type, id)`` for persisted entities, object identity otherwise."""
    entity_id = entity.get_property("id")
    if entity_id:
        return (type(entity), entity_id)
    return ("new", id(entity))


def snapshot_value(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    return value


def same_value(a: Any, b: Any) -> bool:
    """Equality used for dirty checks; entities compare by identity key."""
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(same_value(x, y) for x, y in zip(a, b, strict=True))
    if hasattr(a, "identity_key") and hasattr(b, "identity_key"):
        return a is b or entity_key(a) == entity_key(b)
    if a is None or b is None:
        return a is b
    try:
        return bool(a == b) and type(a) is type(b)
    except TypeError:
        return False


class IdentityMap:
    """``(type, id) -> instance`` cache shared across one object graph."""

    def __init__(self) -> None:
        self._entities: dict[tuple[type, int], Any] = {}

    def get(self, model: type, entity_id: Any) -> Any | None:
        return self._entities.get((model, entity_id))

    def add(self, entity: Any) -> None:
        self._entities[(type(entity), entity.get_property("id"))] = entity

    def discard(self, entity: Any) -> None:
        self._entities.pop((type(entity), entity.get_property("id")), None)

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)


class QueryCache:
    """Query fingerprint → materialized rows, shared across one object graph."""

    def __init__(self) -> None:
        self._rows: dict[str, list[dict[str, Any]]] = {}

    def get(self, fingerprint: str) -> list[dict[str, Any]] | None:
        return self._rows.get(fingerprint)

    def put(self, fingerprint: str, rows: list[dict[str, Any]]) -> None:
        self._rows[fingerprint] = rows

    def clear(self) -> None:
        self._rows.clear()

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._rows

    def __len__(self) -> int:
        return len(self._rows)


class EntityState:
    """Property bag, snapshot and dirty set for one entity instance."""

    __slots__ = ("values", "original", "modified", "deferred", "identity_map", "query_cache", "context")

    def __init__(
        self,
        identity_map: IdentityMap | None = None,
        query_cache: QueryCache | None = None,
        context: Any = None,
    ) -> None:
        self.values: dict[str, Any] = {}
        self.original: dict[str, Any] = {}
        self.modified: set[str] = set()
        self.deferred: dict[str, Callable[[], Any]] = {}
        self.identity_map = identity_map if identity_map is not None else IdentityMap()
        self.query_cache = query_cache if query_cache is not None else QueryCache()
        self.context = context

    def snapshot(self) -> None:
        """Capture the current values as the clean baseline."""
        self.original = {name: snapshot_value(value) for name, value in self.values.items()}
        self.modified.clear()

    def mark(self, name: str) -> None:
        """Re-evaluate whether ``name`` differs from its snapshot."""
        if name not in self.original:
            self.original[name] = None
        if same_value(self.values.get(name), self.original[name]):
            self.modified.discard(name)
        else:
            self.modified.add(name)

    def touch(self, name: str) -> None:
        """Record a structural change to a collection."""
        self.original.setdefault(name, [])
        self.modified.add(name)


__all__ = [
    "TrackedList",
    "EntityState",
    "IdentityMap",
    "QueryCache",
    "entity_key",
    "same_value",
    "snapshot_value",
]
