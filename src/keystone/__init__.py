"""
Keystone - a convention-driven ORM core.

Models declare navigation properties; keystone discovers the relationships,
builds parameterized SQL, tracks changes and persists whole object graphs.

- keystone.core: Connections, dialects, errors, logging, settings
- keystone.orm: Models, relationship discovery, query building, persistence
- keystone.cli: Inspection commands (``keystone relations``, ``keystone sql``)
"""

__version__ = "0.1.0"

from keystone.core.errors import (
    CardinalityError,
    ConfigError,
    ExpressionSyntaxError,
    KeystoneError,
    ModelValidationError,
    PersistenceError,
    QueryError,
    RelationDiscoveryError,
)
from keystone.orm import (
    Context,
    Model,
    Query,
    QueryBuilder,
    Relation,
    RelationType,
    SqlColumn,
    SqlId,
    SqlTable,
    connect,
    field,
    get_context,
    reset_context,
    set_context,
)

__all__ = [
    "__version__",
    # errors
    "KeystoneError",
    "ConfigError",
    "RelationDiscoveryError",
    "ExpressionSyntaxError",
    "ModelValidationError",
    "QueryError",
    "CardinalityError",
    "PersistenceError",
    # orm
    "Model",
    "field",
    "Context",
    "connect",
    "set_context",
    "get_context",
    "reset_context",
    "Query",
    "QueryBuilder",
    "SqlId",
    "SqlTable",
    "SqlColumn",
    "Relation",
    "RelationType",
]
