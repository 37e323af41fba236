"""
Per-type property descriptor tables.

A model class declares its properties as plain annotations::

    class Post(Model):
        title: str
        views: int = 0
        author: Author | None = None
        tags: list[Tag]
        slug: str = field(column="UrlSlug", min_length=3)

``Model.__init_subclass__`` replaces every annotated name with a
:class:`Property` data descriptor (the typed accessor pair routing get/set
through the entity state) and records its :class:`FieldOptions`. The first
time the type is used, :func:`build_table` resolves the annotations (forward
references included), classifies each one and freezes the result into a
:class:`PropertyTable`. The discoverer, the dirty tracker and the hydrator
all read this table; nothing in the core inspects classes at runtime after
that.

Column naming: attribute ``created_at`` maps to column ``CreatedAt`` unless
``field(column=...)`` overrides it.
"""

from __future__ import annotations

import inspect
import typing
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from keystone.core.errors import TypeMappingError
from keystone.orm.inflect import default_inflector
from keystone.orm.types import FieldKind, TypeInfo, classify

MISSING: Any = object()


@dataclass(frozen=True)
class FieldOptions:
    """Declaration-time options for one property."""

    default: Any = MISSING
    default_factory: Callable[[], Any] | None = None
    column: str | None = None
    inverse: str | None = None
    required: bool = False
    min_length: int | None = None


def field(
    default: Any = MISSING,
    *,
    default_factory: Callable[[], Any] | None = None,
    column: str | None = None,
    inverse: str | None = None,
    required: bool = False,
    min_length: int | None = None,
) -> Any:
    """Declare a property with options.

    Args:
        default: Value for new instances.
        default_factory: Zero-argument callable producing the default.
        column: Column name override (primitive properties only).
        inverse: Name of the property on the related type this one pairs with.
        required: Reject ``None`` and empty strings in :meth:`Model.validate`.
        min_length: Minimum ``len()`` enforced by :meth:`Model.validate`.
    """
    if default is not MISSING and default_factory is not None:
        raise ValueError("cannot specify both default and default_factory")
    return FieldOptions(
        default=default,
        default_factory=default_factory,
        column=column,
        inverse=inverse,
        required=required,
        min_length=min_length,
    )


@dataclass(frozen=True)
class FieldInfo:
    """A resolved, classified property of one model type."""

    name: str
    index: int
    owner: type
    type_info: TypeInfo
    options: FieldOptions
    column: str | None

    @property
    def kind(self) -> FieldKind:
        return self.type_info.kind

    @property
    def target(self) -> type:
        """The Python type for primitives, the related model for relations."""
        return self.type_info.python_type

    @property
    def is_relation(self) -> bool:
        return self.type_info.is_relation

    @property
    def is_list(self) -> bool:
        return self.type_info.kind is FieldKind.ENTITY_LIST

    def default_value(self) -> Any:
        if self.options.default_factory is not None:
            return self.options.default_factory()
        if self.options.default is not MISSING:
            return self.options.default
        return None

    def __repr__(self) -> str:
        return f"FieldInfo({self.owner.__name__}.{self.name}, {self.kind.value}, column={self.column!r})"


class Property:
    """Data descriptor installed for every declared property."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.get_property(self.name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance.set_property(self.name, value)

    def __repr__(self) -> str:
        return f"Property({self.name!r})"


class PropertyTable(Mapping[str, FieldInfo]):
    """Immutable ``name -> FieldInfo`` table in declaration order."""

    def __init__(self, model: type, fields: list[FieldInfo]) -> None:
        self.model = model
        self._fields = {f.name: f for f in fields}
        self._by_column = {f.column: f for f in fields if f.column is not None}
        self._primitives = tuple(f for f in fields if not f.is_relation)
        self._relations = tuple(f for f in fields if f.is_relation)

    def __getitem__(self, name: str) -> FieldInfo:
        return self._fields[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def primitives(self) -> tuple[FieldInfo, ...]:
        return self._primitives

    def relations(self) -> tuple[FieldInfo, ...]:
        return self._relations

    def by_column(self, column: str) -> FieldInfo | None:
        return self._by_column.get(column)

    def columns(self) -> list[str]:
        return list(self._by_column)

    def resolve_member(self, name: str) -> FieldInfo | None:
        """Find a primitive property by attribute name or column name."""
        found = self._fields.get(name) or self._by_column.get(name)
        if found is None:
            found = self._fields.get(default_inflector.underscore(name))
        return found


# -- Declaration helpers ---------------------------------------------------------


def _is_classvar(annotation: Any) -> bool:
    if isinstance(annotation, str):
        return annotation.startswith(("ClassVar", "typing.ClassVar"))
    return typing.get_origin(annotation) is typing.ClassVar


def declared_names(cls: type) -> list[str]:
    """Annotated, public, non-ClassVar names declared directly on ``cls``."""
    names = []
    for name, annotation in inspect.get_annotations(cls).items():
        if name.startswith("_") or _is_classvar(annotation):
            continue
        names.append(name)
    return names


def collect_options(cls: type) -> dict[str, FieldOptions]:
    """Swap declared attributes for :class:`Property` descriptors and return their options."""
    options: dict[str, FieldOptions] = {}
    for name in declared_names(cls):
        value = cls.__dict__.get(name, MISSING)
        if isinstance(value, FieldOptions):
            opts = value
        elif value is MISSING:
            opts = FieldOptions()
        else:
            opts = FieldOptions(default=value)
        options[name] = opts
        setattr(cls, name, Property(name))
    return options


def build_table(cls: type, namespace: Mapping[str, type] | None = None) -> PropertyTable:
    """Resolve and classify every declared property of ``cls`` (bases first)."""
    try:
        hints = typing.get_type_hints(cls, localns=dict(namespace or {}))
    except NameError as e:
        raise TypeMappingError(f"Cannot resolve annotations of {cls.__name__}: {e}", cause=e) from e

    all_options: dict[str, FieldOptions] = getattr(cls, "__field_options__", {})
    fields: list[FieldInfo] = []
    seen: set[str] = set()
    for klass in reversed(cls.__mro__):
        if "__field_options__" not in klass.__dict__:
            continue
        for name in declared_names(klass):
            if name in seen:
                continue
            seen.add(name)
            options = all_options.get(name, FieldOptions())
            try:
                type_info = classify(hints[name])
            except TypeMappingError as e:
                raise e.with_context(model=cls.__name__, property=name)
            column = None
            if type_info.kind is FieldKind.PRIMITIVE:
                column = options.column or default_inflector.camelize(name)
            fields.append(
                FieldInfo(
                    name=name,
                    index=len(fields),
                    owner=cls,
                    type_info=type_info,
                    options=options,
                    column=column,
                )
            )
    return PropertyTable(cls, fields)


__all__ = [
    "MISSING",
    "FieldOptions",
    "FieldInfo",
    "Property",
    "PropertyTable",
    "field",
    "build_table",
    "collect_options",
    "declared_names",
]
