"""Keystone ORM -- models, discovery, query building and persistence.

Architecture::

    inflect.py         Pluralize / singularize / camelize (inflection)
    types.py           Type classifier and value coercion
    protocols.py       Entity capability protocol
    fields.py          field(), Property descriptors, PropertyTable
    registry.py        ModelRegistry (explicit, resettable)
    relations.py       RelationshipDiscoverer, Relation, RelationCache
    builder.py         QueryBuilder, SqlId / SqlTable / SqlColumn
    expressions.py     Predicate grammar parser and SQL compiler
    tracking.py        EntityState, TrackedList, IdentityMap, QueryCache
    hydration.py       Hydrator (rows → entity graphs)
    persistence.py     Persister, SaveGraph
    query.py           Query facade
    context.py         Context, connect(), current-context helpers
    model.py           Model base class
"""

from keystone.orm.builder import QueryBuilder, SqlColumn, SqlId, SqlTable
from keystone.orm.context import Context, connect, get_context, reset_context, set_context
from keystone.orm.expressions import compile_assignments, compile_like, compile_predicate, parse
from keystone.orm.fields import FieldInfo, PropertyTable, field
from keystone.orm.hydration import Hydrator
from keystone.orm.model import Model
from keystone.orm.persistence import Persister, SaveGraph
from keystone.orm.protocols import Entity
from keystone.orm.query import Query, TrashedMode
from keystone.orm.registry import ModelRegistry, default_registry
from keystone.orm.relations import Relation, RelationCache, RelationshipDiscoverer, RelationType, table_name
from keystone.orm.tracking import EntityState, IdentityMap, QueryCache, TrackedList
from keystone.orm.types import FieldKind, TypeInfo, classify, coerce

__all__ = [
    "QueryBuilder",
    "SqlId",
    "SqlTable",
    "SqlColumn",
    "Context",
    "connect",
    "get_context",
    "set_context",
    "reset_context",
    "parse",
    "compile_predicate",
    "compile_like",
    "compile_assignments",
    "field",
    "FieldInfo",
    "PropertyTable",
    "Hydrator",
    "Model",
    "Persister",
    "SaveGraph",
    "Entity",
    "Query",
    "TrashedMode",
    "ModelRegistry",
    "default_registry",
    "Relation",
    "RelationType",
    "RelationshipDiscoverer",
    "RelationCache",
    "table_name",
    "EntityState",
    "TrackedList",
    "IdentityMap",
    "QueryCache",
    "FieldKind",
    "TypeInfo",
    "classify",
    "coerce",
]
