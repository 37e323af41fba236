"""
Type classifier and value coercion.

Every model property annotation falls into exactly one of three kinds:

- ``PRIMITIVE``: a storage-native value (``int``, ``str``, ``datetime``...)
  that maps to one column;
- ``ENTITY``: a single related model;
- ``ENTITY_LIST``: a collection of related models.

The discoverer uses the kind to find relation candidates, the hydrator uses
it to decide between column assignment and relation wiring, and
:func:`coerce` turns raw driver values back into the annotated Python type.

Examples:
    >>> classify(int | None)
    TypeInfo(kind=<FieldKind.PRIMITIVE: 'primitive'>, python_type=<class 'int'>, nullable=True)
    >>> coerce("42", int, "age")
    42

Tags:
    types, classification, coercion, keystone-orm
"""

from __future__ import annotations

import types
import typing
from collections.abc import MutableSequence, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union
from uuid import UUID

from keystone.core.errors import TypeCoercionError, TypeMappingError
from keystone.core.timestamps import from_iso8601
from keystone.orm.protocols import Entity

PRIMITIVE_TYPES: tuple[type, ...] = (int, float, str, bool, bytes, Decimal, datetime, date, time, UUID)

_LIST_ORIGINS = (list, Sequence, MutableSequence)


class FieldKind(str, Enum):
    PRIMITIVE = "primitive"
    ENTITY = "entity"
    ENTITY_LIST = "entity_list"


@dataclass(frozen=True)
class TypeInfo:
    """Result of classifying one annotation."""

    kind: FieldKind
    python_type: type
    nullable: bool = False

    @property
    def is_relation(self) -> bool:
        return self.kind is not FieldKind.PRIMITIVE


def is_entity_type(tp: Any) -> bool:
    """True for classes implementing the :class:`Entity` capability interface."""
    return isinstance(tp, type) and issubclass(tp, Entity)


def is_primitive_type(tp: Any) -> bool:
    if not isinstance(tp, type):
        return False
    return issubclass(tp, PRIMITIVE_TYPES) or issubclass(tp, Enum)


def classify(annotation: Any) -> TypeInfo:
    """Classify a resolved annotation.

    Raises:
        TypeMappingError: for unions of several types, lists of primitives
            and anything that is neither primitive nor an entity.
    """
    nullable = False
    origin = typing.get_origin(annotation)

    if origin is typing.Annotated:
        return classify(typing.get_args(annotation)[0])

    if origin is Union or origin is types.UnionType:
        members = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(members) != 1:
            raise TypeMappingError(f"Unsupported union annotation {annotation!r}")
        nullable = True
        annotation = members[0]
        origin = typing.get_origin(annotation)

    if origin in _LIST_ORIGINS:
        args = typing.get_args(annotation)
        item = args[0] if args else Any
        if is_entity_type(item):
            return TypeInfo(FieldKind.ENTITY_LIST, item, nullable)
        raise TypeMappingError(f"Collections are only supported for related models, got {annotation!r}")

    if is_entity_type(annotation):
        return TypeInfo(FieldKind.ENTITY, annotation, nullable)

    if is_primitive_type(annotation):
        return TypeInfo(FieldKind.PRIMITIVE, annotation, nullable)

    raise TypeMappingError(f"Unsupported property type {annotation!r}")


# -- Coercion ------------------------------------------------------------------

_TRUE = {"1", "true", "t", "yes", "y"}
_FALSE = {"0", "false", "f", "no", "n"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValueError(value)


def _to_int(value: Any) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(value)
    if isinstance(value, bytes | bytearray):
        raise TypeError(value)
    return int(value)


def _to_str(value: Any) -> str:
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value).decode()
    return str(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value)
    raise TypeError(value)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return from_iso8601(value)
    if isinstance(value, int | float) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, UTC)
    raise TypeError(value)


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(value)


def _to_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return time.fromisoformat(value)
    raise TypeError(value)


def _to_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, bytes):
        return UUID(bytes=value)
    return UUID(str(value))


_COERCERS: dict[type, Any] = {
    bool: _to_bool,
    int: _to_int,
    float: float,
    str: _to_str,
    bytes: _to_bytes,
    Decimal: _to_decimal,
    datetime: _to_datetime,
    date: _to_date,
    time: _to_time,
    UUID: _to_uuid,
}


def coerce(value: Any, target: type, name: str) -> Any:
    """Convert a raw driver value to ``target``.

    ``None`` passes through untouched; NOT NULL is the database's concern.

    Raises:
        TypeCoercionError: when the value cannot represent ``target``.
    """
    if value is None:
        return None
    if type(value) is target:
        return value
    try:
        if issubclass(target, Enum):
            return target(value)
        converter = _COERCERS.get(target)
        if converter is None:
            for base, fn in _COERCERS.items():
                if issubclass(target, base):
                    converter = fn
                    break
        if converter is None:
            raise TypeError(f"no converter for {target!r}")
        return converter(value)
    except (ValueError, TypeError, ArithmeticError, InvalidOperation) as e:
        raise TypeCoercionError(name, value, target, cause=e) from e


__all__ = [
    "FieldKind",
    "TypeInfo",
    "PRIMITIVE_TYPES",
    "classify",
    "coerce",
    "is_entity_type",
    "is_primitive_type",
]
