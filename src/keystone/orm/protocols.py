"""
Capability interface every model type implements.

Generic call sites (the hydrator, the persister, the query facade) dispatch
through :class:`Entity` instead of probing objects for attributes by name.
The type classifier also uses it: an annotation names a related entity when
the annotated class satisfies this protocol.

Tags:
    protocol, entity, capability, keystone-orm
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from keystone.orm.fields import PropertyTable
    from keystone.orm.hydration import Hydrator
    from keystone.orm.persistence import SaveGraph


@runtime_checkable
class Entity(Protocol):
    """Operations the ORM core needs from any model class."""

    @classmethod
    def descriptor_table(cls) -> PropertyTable:
        """The per-type property descriptor table."""
        ...

    @classmethod
    def from_row(cls, row: Mapping[str, Any], hydrator: Hydrator) -> Entity:
        """Materialize an instance from a raw column→value row."""
        ...

    def get_property(self, name: str) -> Any:
        """Read a property through the descriptor table."""
        ...

    def set_property(self, name: str, value: Any) -> None:
        """Write a property, recording it as dirty when it differs from the snapshot."""
        ...

    def identity_key(self) -> Hashable:
        """``(type, id)`` once persisted, else a per-object key."""
        ...

    def save(self, graph: SaveGraph | None = None) -> Entity:
        """Persist the entity and its reachable graph."""
        ...


__all__ = [
    "Entity",
]
