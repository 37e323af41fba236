"""
Structured error types for keystone.

Every failure the ORM core surfaces is a ``KeystoneError`` subclass carrying a
category, a retry hint, structured context and an optional chained cause.
Nothing in the core retries or swallows these errors; they propagate to the
immediate caller.

Manifesto:
    - **Typed hierarchy:** discovery, coercion, cardinality and execution
      failures are different types, not different message strings
    - **Explicit retry semantics:** every error knows if it is retryable
    - **Rich context:** SQL text, parameters and model names travel with
      the error for logging
    - **Error chaining:** driver exceptions are preserved as ``__cause__``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       KeystoneError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │  ConfigError           ValidationError        DatabaseError     │
        │  (CONFIG)              (VALIDATION)           (DATABASE)        │
        │      │                     │                      │             │
        │  RelationDiscovery     ExpressionSyntax       QueryError        │
        │  TypeMapping           TypeCoercion           IntegrityError    │
        │                        ModelValidation        Cardinality       │
        │                                               Persistence       │
        │                                               ConnectionError   │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = QueryError("no such table: Users")
    >>> error.with_context(sql='SELECT * FROM "Users"')
    QueryError('no such table: Users', category=DATABASE)
    >>> error.context.metadata["sql"]
    'SELECT * FROM "Users"'

Tags:
    errors, exceptions, orm, keystone-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for classification and logging."""

    DATABASE = "DATABASE"  # Query failures, constraint violations
    VALIDATION = "VALIDATION"  # Coercion, expression and model validation
    CONFIG = "CONFIG"  # Model declarations, discovery, settings
    INTERNAL = "INTERNAL"  # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    ``model`` and ``property`` locate the failure in the model layer; ``sql``
    and ``params`` hold the statement that was executing. Anything else goes
    into ``metadata``.
    """

    model: str | None = None
    property: str | None = None
    sql: str | None = None
    params: dict[str, Any] | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["model", "property", "sql", "params"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class KeystoneError(Exception):
    """
    Base exception for all keystone errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> KeystoneError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("Failed").with_context(sql=sql, params=params)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(KeystoneError):
    """
    Configuration error.

    Never retryable - model declarations or settings must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class RelationDiscoveryError(ConfigError):
    """Relationships between two model types cannot be resolved unambiguously."""

    def __init__(self, message: str, *, local_type: str | None = None, prop: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.context.model = local_type
        self.context.property = prop


class TypeMappingError(ConfigError):
    """A model property is annotated with a type the ORM cannot store."""

    pass


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(KeystoneError):
    """
    Data validation error.

    Never retryable - data must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        constraint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.constraint = constraint

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.constraint:
            result["constraint"] = self.constraint
        return result


class TypeCoercionError(ValidationError):
    """A raw stored value cannot be converted to the property's type."""

    def __init__(self, field: str, value: Any, target: Any, *, cause: Exception | None = None):
        target_name = getattr(target, "__name__", repr(target))
        super().__init__(
            f"Cannot coerce {value!r} to {target_name} for '{field}'",
            field=field,
            value=value,
            constraint=target_name,
            cause=cause,
        )
        self.target = target


class ExpressionSyntaxError(ValidationError):
    """A predicate or assignment expression string failed to parse."""

    def __init__(self, message: str, *, text: str, position: int, **kwargs: Any):
        super().__init__(f"{message} at position {position} in {text!r}", **kwargs)
        self.text = text
        self.position = position


class ModelValidationError(ValidationError):
    """A model failed its field validation rules before save."""

    def __init__(self, model: str, errors: dict[str, list[str]]):
        summary = "; ".join(f"{name}: {', '.join(msgs)}" for name, msgs in errors.items())
        super().__init__(f"{model} is invalid ({summary})")
        self.errors = errors
        self.context.model = model


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(KeystoneError):
    """Database query or transaction error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


class DatabaseConnectionError(DatabaseError):
    """The database could not be reached or opened."""

    default_retryable = True


class QueryError(DatabaseError):
    """The execution collaborator reported a failure for a statement."""

    pass


class IntegrityError(QueryError):
    """Database integrity constraint violation."""

    pass


class CardinalityError(DatabaseError):
    """A single-result accessor observed zero or several rows."""

    def __init__(self, message: str, *, expected: str, actual: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class PersistenceError(DatabaseError):
    """An entity operation is impossible in the entity's current state."""

    pass


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, KeystoneError):
        return error.retryable
    return isinstance(error, (ConnectionError, BrokenPipeError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, KeystoneError):
        return error.category
    if isinstance(error, ValueError):
        return ErrorCategory.VALIDATION
    if isinstance(error, (KeyError, AttributeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "KeystoneError",
    # Config
    "ConfigError",
    "RelationDiscoveryError",
    "TypeMappingError",
    # Validation
    "ValidationError",
    "TypeCoercionError",
    "ExpressionSyntaxError",
    "ModelValidationError",
    # Database
    "DatabaseError",
    "DatabaseConnectionError",
    "QueryError",
    "IntegrityError",
    "CardinalityError",
    "PersistenceError",
    # Utilities
    "is_retryable",
    "categorize_error",
]
