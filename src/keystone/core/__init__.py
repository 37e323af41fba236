"""Keystone Core -- database plumbing shared by the ORM layer.

Architecture::

    errors.py          Structured error hierarchy (KeystoneError, QueryError)
    logging.py         structlog configuration and context binding
    settings.py        KeystoneSettings (pydantic-settings, KEYSTONE_ prefix)
    timestamps.py      UTC helpers and ISO-8601 conversion
    hashing.py         Deterministic fingerprints for query caching
    protocols.py       Connection / Cursor protocols
    dialect.py         SQL dialects (SQLite, PostgreSQL)
    connection.py      Connection factory (create_connection)
    executor.py        Statement execution, transactions, SQL tracing
"""

from keystone.core.connection import ConnectionInfo, create_connection
from keystone.core.dialect import Dialect, PostgreSQLDialect, SQLiteDialect, get_dialect, register_dialect
from keystone.core.errors import (
    CardinalityError,
    ConfigError,
    DatabaseConnectionError,
    DatabaseError,
    ErrorCategory,
    ErrorContext,
    ExpressionSyntaxError,
    IntegrityError,
    KeystoneError,
    ModelValidationError,
    PersistenceError,
    QueryError,
    RelationDiscoveryError,
    TypeCoercionError,
    TypeMappingError,
    ValidationError,
)
from keystone.core.executor import Executor
from keystone.core.logging import configure_from_settings, configure_logging, get_logger
from keystone.core.settings import KeystoneSettings, get_settings

__all__ = [
    "ConnectionInfo",
    "create_connection",
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "register_dialect",
    "ErrorCategory",
    "ErrorContext",
    "KeystoneError",
    "ConfigError",
    "RelationDiscoveryError",
    "TypeMappingError",
    "ValidationError",
    "TypeCoercionError",
    "ExpressionSyntaxError",
    "ModelValidationError",
    "DatabaseError",
    "DatabaseConnectionError",
    "QueryError",
    "IntegrityError",
    "CardinalityError",
    "PersistenceError",
    "Executor",
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "KeystoneSettings",
    "get_settings",
]
