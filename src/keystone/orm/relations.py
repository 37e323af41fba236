"""
Relationship discovery.

Given the full set of model types, infer every relationship between them
from property shapes and names alone, and describe each direction with an
immutable :class:`Relation`.

Manifesto:
    Models declare navigation properties and nothing else: no foreign-key
    attributes, no join-table classes. The discoverer derives cardinality,
    table names, foreign-key columns and pivot tables from conventions, and
    refuses to guess when the conventions do not give a unique answer.

Architecture:
    ::

        for type A (sorted by name), property f (declaration order):
            foreign_peers = B's relation properties targeting A
            pairs         = every (A property, B property) that could link A and B
                 │
                 ├─ no foreign_peers ─────────► lazy relation, plus its mirror
                 │                              (kept out of B's lookups)
                 ├─ field(inverse=...) ───────► explicit pair
                 ├─ exactly one pair ─────────► pair, link_identifier = None
                 └─ otherwise: strip B's name from f, A's name from each
                    candidate; equal remainders pair ("old_posts" ↔ "old_author"
                    → link "Old"); zero or several matches is fatal

        single ↔ multi  → MANY_TO_ONE / ONE_TO_MANY   FK {OneSideSingular}{Link}Id
        single ↔ single → ONE_TO_ONE                  FK on the side sorting first
        multi  ↔ multi  → MANY_TO_MANY                pivot {ATable}To{BTable}

Examples:
    >>> relations = RelationshipDiscoverer([Author, Post]).discover()
    >>> [(r.local_property, r.relation_type.value) for r in relations]
    [('posts', 'OneToMany'), ('author', 'ManyToOne')]
    >>> relations[0].foreign_key_table_name, relations[0].foreign_key_column_name
    ('Posts', 'AuthorId')

Tags:
    relations, discovery, conventions, foreign-keys, pivot-tables, keystone-orm

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from keystone.core.errors import RelationDiscoveryError
from keystone.core.logging import get_logger
from keystone.orm.fields import FieldInfo
from keystone.orm.inflect import Inflector, default_inflector
from keystone.orm.registry import ModelRegistry

logger = get_logger(__name__)


class RelationType(str, Enum):
    ONE_TO_ONE = "OneToOne"
    ONE_TO_MANY = "OneToMany"
    MANY_TO_ONE = "ManyToOne"
    MANY_TO_MANY = "ManyToMany"

    def inverse(self) -> RelationType:
        return _INVERSE_TYPES[self]


_INVERSE_TYPES = {
    RelationType.ONE_TO_ONE: RelationType.ONE_TO_ONE,
    RelationType.ONE_TO_MANY: RelationType.MANY_TO_ONE,
    RelationType.MANY_TO_ONE: RelationType.ONE_TO_MANY,
    RelationType.MANY_TO_MANY: RelationType.MANY_TO_MANY,
}


@dataclass(frozen=True)
class Relation:
    """One direction of a discovered relationship."""

    local_type: type
    foreign_type: type
    local_property: str | None
    foreign_property: str | None
    relation_type: RelationType
    local_table_name: str
    foreign_table_name: str
    local_table_name_singular: str
    foreign_table_name_singular: str
    foreign_key_table_name: str | None = None
    foreign_key_column_name: str | None = None
    pivot_table_name: str | None = None
    pivot_table_first_column_name: str | None = None
    pivot_table_second_column_name: str | None = None
    link_identifier: str | None = None
    # True when the foreign-key column lives on the local entity's own row
    holds_foreign_key: bool = field(default=False, repr=False)
    # True when the local entity's id goes into the first pivot column
    local_is_first_pivot_side: bool = field(default=True, repr=False)

    @property
    def is_lazy(self) -> bool:
        return self.local_property is None or self.foreign_property is None

    @property
    def is_collection(self) -> bool:
        return self.relation_type in (RelationType.ONE_TO_MANY, RelationType.MANY_TO_MANY)

    @property
    def local_pivot_column(self) -> str | None:
        if self.local_is_first_pivot_side:
            return self.pivot_table_first_column_name
        return self.pivot_table_second_column_name

    @property
    def foreign_pivot_column(self) -> str | None:
        if self.local_is_first_pivot_side:
            return self.pivot_table_second_column_name
        return self.pivot_table_first_column_name

    @property
    def is_self_paired(self) -> bool:
        return self.local_type is self.foreign_type and self.local_property == self.foreign_property

    def mirror(self) -> Relation:
        """The same relationship seen from the foreign side."""
        return replace(
            self,
            local_type=self.foreign_type,
            foreign_type=self.local_type,
            local_property=self.foreign_property,
            foreign_property=self.local_property,
            relation_type=self.relation_type.inverse(),
            local_table_name=self.foreign_table_name,
            foreign_table_name=self.local_table_name,
            local_table_name_singular=self.foreign_table_name_singular,
            foreign_table_name_singular=self.local_table_name_singular,
            holds_foreign_key=self._mirror_holds_foreign_key(),
            local_is_first_pivot_side=(
                self.local_is_first_pivot_side if self.is_self_paired else not self.local_is_first_pivot_side
            ),
        )

    def _mirror_holds_foreign_key(self) -> bool:
        if self.relation_type is RelationType.MANY_TO_MANY:
            return False
        if self.is_self_paired:
            return self.holds_foreign_key
        return not self.holds_foreign_key

    def describe(self) -> str:
        local = f"{self.local_type.__name__}.{self.local_property or '<lazy>'}"
        foreign = f"{self.foreign_type.__name__}.{self.foreign_property or '<lazy>'}"
        return f"{local} -[{self.relation_type.value}]-> {foreign}"


def table_name(model: type, inflector: Inflector | None = None) -> str:
    """``__table_name__`` when declared, else the pluralized class name."""
    return getattr(model, "__table_name__", None) or (inflector or default_inflector).pluralize(model.__name__)


class RelationshipDiscoverer:
    """Infers :class:`Relation` descriptors for a set of model types."""

    def __init__(self, models: Iterable[type], inflector: Inflector | None = None) -> None:
        self.models = sorted(set(models), key=lambda m: (m.__name__, m.__module__))
        self.inflector = inflector or default_inflector
        self._model_set = set(self.models)

    # -- Naming ----------------------------------------------------------

    def table_name(self, model: type) -> str:
        return table_name(model, self.inflector)

    def singular_name(self, model: type) -> str:
        return self.inflector.singularize(self.table_name(model))

    def _type_token(self, model: type, plural: bool) -> str:
        name = self.inflector.pluralize(model.__name__) if plural else model.__name__
        return self.inflector.underscore(name)

    def link_token(self, prop: FieldInfo, other: type) -> str | None:
        """Property name with the other type's name removed, or None if absent.

        ``old_posts`` against ``Post`` gives ``"old"``; ``posts`` gives ``""``.
        """
        token = self._type_token(other, plural=prop.is_list)
        name = prop.name
        if name == token:
            return ""
        if name.startswith(token):
            rest = name[len(token):]
        elif name.endswith(token):
            rest = name[: -len(token)]
        else:
            return None
        return rest.strip("_")

    @staticmethod
    def _sort_key(model: type, prop: FieldInfo) -> tuple[str, str, int]:
        return (model.__name__, model.__module__, prop.index)

    # -- Discovery -------------------------------------------------------

    def discover(self) -> list[Relation]:
        """Discover every relation, in deterministic order.

        Raises:
            RelationDiscoveryError: when any property cannot be paired
                unambiguously or references an unknown model.
        """
        relations: list[Relation] = []
        for model in self.models:
            for prop in model.descriptor_table().relations():
                relation = self._discover_property(model, prop)
                relations.append(relation)
                if relation.foreign_property is None:
                    relations.append(relation.mirror())
        self._verify(relations)
        logger.info("relations.discovered", count=len(relations), models=len(self.models))
        return relations

    def _discover_property(self, model: type, prop: FieldInfo) -> Relation:
        target = prop.target
        if target not in self._model_set:
            raise RelationDiscoveryError(
                f"{model.__name__}.{prop.name} references {target.__name__}, which is not a registered model",
                local_type=model.__name__,
                prop=prop.name,
            )

        foreign_peers = self._foreign_peers(model, prop)
        if not foreign_peers:
            local_peers = [p for p in model.descriptor_table().relations() if p.target is target]
            return self._lazy(model, prop, local_peers)

        partner, link = self._pair(model, prop, foreign_peers)
        return self._build(model, prop, target, partner, link)

    @staticmethod
    def _foreign_peers(model: type, prop: FieldInfo) -> list[FieldInfo]:
        """Properties of ``prop.target`` pointing back at ``model``.

        On a self reference ``prop`` is left out unless it is the only one.
        """
        peers = [p for p in prop.target.descriptor_table().relations() if p.target is model]
        if prop.target is model and len(peers) > 1:
            peers = [p for p in peers if p.name != prop.name]
        return peers

    def _candidate_pairs(self, model: type, target: type) -> set[frozenset[tuple[type, str]]]:
        """Every unordered property pair that could link ``model`` and ``target``."""
        pairs: set[frozenset[tuple[type, str]]] = set()
        for local in model.descriptor_table().relations():
            if local.target is not target:
                continue
            for foreign in self._foreign_peers(model, local):
                pairs.add(frozenset({(model, local.name), (target, foreign.name)}))
        return pairs

    def _pair(
        self, model: type, prop: FieldInfo, foreign_peers: list[FieldInfo]
    ) -> tuple[FieldInfo, str | None]:
        explicit = self._explicit_pair(model, prop, foreign_peers)
        if explicit is not None:
            return explicit

        target = prop.target
        if len(self._candidate_pairs(model, target)) == 1:
            return foreign_peers[0], None

        token = self.link_token(prop, target)
        if token is None:
            raise RelationDiscoveryError(
                f"{model.__name__}.{prop.name} is one of several relations to {target.__name__}; "
                f"its name must contain '{self._type_token(target, prop.is_list)}' plus a link identifier",
                local_type=model.__name__,
                prop=prop.name,
            )

        matches = [
            p for p in foreign_peers
            if p.options.inverse is None and self.link_token(p, model) == token
        ]
        if len(matches) != 1:
            found = ", ".join(p.name for p in matches) or "none"
            raise RelationDiscoveryError(
                f"Cannot pair {model.__name__}.{prop.name} with a property of {target.__name__} "
                f"sharing link identifier {token!r} (matches: {found})",
                local_type=model.__name__,
                prop=prop.name,
            )
        return matches[0], (self.inflector.camelize(token) if token else None)

    def _explicit_pair(
        self, model: type, prop: FieldInfo, foreign_peers: list[FieldInfo]
    ) -> tuple[FieldInfo, str | None] | None:
        partner = None
        if prop.options.inverse is not None:
            partner = next((p for p in foreign_peers if p.name == prop.options.inverse), None)
            if partner is None:
                raise RelationDiscoveryError(
                    f"{model.__name__}.{prop.name} declares inverse={prop.options.inverse!r}, "
                    f"which is not a property of {prop.target.__name__} referencing {model.__name__}",
                    local_type=model.__name__,
                    prop=prop.name,
                )
        else:
            claimed = [p for p in foreign_peers if p.options.inverse == prop.name]
            if len(claimed) > 1:
                raise RelationDiscoveryError(
                    f"{model.__name__}.{prop.name} is claimed as inverse by several properties: "
                    f"{[p.name for p in claimed]}",
                    local_type=model.__name__,
                    prop=prop.name,
                )
            partner = claimed[0] if claimed else None
        if partner is None:
            return None

        first, second = sorted(
            [(model, prop), (prop.target, partner)], key=lambda pair: self._sort_key(*pair)
        )
        link = self.inflector.camelize(first[1].name) + self.inflector.camelize(second[1].name)
        return partner, link

    def _lazy(self, model: type, prop: FieldInfo, local_peers: list[FieldInfo]) -> Relation:
        target = prop.target
        link = None
        if len(local_peers) > 1:
            token = self.link_token(prop, target)
            if token is None:
                raise RelationDiscoveryError(
                    f"{model.__name__}.{prop.name} is one of several relations to {target.__name__}; "
                    f"its name must contain '{self._type_token(target, prop.is_list)}'",
                    local_type=model.__name__,
                    prop=prop.name,
                )
            link = self.inflector.camelize(token) if token else None

        names = self._names(model, target)
        suffix = link or ""
        if prop.is_list:
            return Relation(
                local_type=model,
                foreign_type=target,
                local_property=prop.name,
                foreign_property=None,
                relation_type=RelationType.ONE_TO_MANY,
                foreign_key_table_name=names["foreign_table_name"],
                foreign_key_column_name=f"{names['local_table_name_singular']}{suffix}Id",
                link_identifier=link,
                holds_foreign_key=False,
                **names,
            )
        return Relation(
            local_type=model,
            foreign_type=target,
            local_property=prop.name,
            foreign_property=None,
            relation_type=RelationType.MANY_TO_ONE,
            foreign_key_table_name=names["local_table_name"],
            foreign_key_column_name=f"{names['foreign_table_name_singular']}{suffix}Id",
            link_identifier=link,
            holds_foreign_key=True,
            **names,
        )

    def _names(self, model: type, target: type) -> dict[str, str]:
        return {
            "local_table_name": self.table_name(model),
            "foreign_table_name": self.table_name(target),
            "local_table_name_singular": self.singular_name(model),
            "foreign_table_name_singular": self.singular_name(target),
        }

    def _build(
        self, model: type, prop: FieldInfo, target: type, partner: FieldInfo, link: str | None
    ) -> Relation:
        names = self._names(model, target)
        lt, ft = names["local_table_name"], names["foreign_table_name"]
        ls, fs = names["local_table_name_singular"], names["foreign_table_name_singular"]
        suffix = link or ""
        local_first = self._sort_key(model, prop) <= self._sort_key(target, partner)
        common = dict(
            local_type=model,
            foreign_type=target,
            local_property=prop.name,
            foreign_property=partner.name,
            link_identifier=link,
            **names,
        )

        if not prop.is_list and partner.is_list:
            return Relation(
                relation_type=RelationType.MANY_TO_ONE,
                foreign_key_table_name=lt,
                foreign_key_column_name=f"{fs}{suffix}Id",
                holds_foreign_key=True,
                **common,
            )

        if prop.is_list and not partner.is_list:
            return Relation(
                relation_type=RelationType.ONE_TO_MANY,
                foreign_key_table_name=ft,
                foreign_key_column_name=f"{ls}{suffix}Id",
                holds_foreign_key=False,
                **common,
            )

        if not prop.is_list:
            if local_first:
                fk_table, fk_column = lt, f"{fs}{suffix}Id"
            else:
                fk_table, fk_column = ft, f"{ls}{suffix}Id"
            return Relation(
                relation_type=RelationType.ONE_TO_ONE,
                foreign_key_table_name=fk_table,
                foreign_key_column_name=fk_column,
                holds_foreign_key=local_first,
                **common,
            )

        if local_first:
            first_table, second_table, first_col, second_col = lt, ft, f"{ls}Id", f"{fs}Id"
        else:
            first_table, second_table, first_col, second_col = ft, lt, f"{fs}Id", f"{ls}Id"
        if first_col == second_col:
            second_col = f"Related{second_col}"
        return Relation(
            relation_type=RelationType.MANY_TO_MANY,
            pivot_table_name=f"{first_table}{link or 'To'}{second_table}",
            pivot_table_first_column_name=first_col,
            pivot_table_second_column_name=second_col,
            local_is_first_pivot_side=local_first,
            **common,
        )

    # -- Consistency -----------------------------------------------------

    def _verify(self, relations: list[Relation]) -> None:
        by_property = {(r.local_type, r.local_property): r for r in relations if r.local_property is not None}
        storage: dict[tuple[str, str], frozenset] = {}

        for relation in relations:
            if not relation.is_lazy:
                back = by_property.get((relation.foreign_type, relation.foreign_property))
                if back is None or back.foreign_property != relation.local_property or back.foreign_type is not relation.local_type:
                    paired = back.describe() if back is not None else "nothing"
                    raise RelationDiscoveryError(
                        f"{relation.describe()} is not mutual; the other side pairs with {paired}",
                        local_type=relation.local_type.__name__,
                        prop=relation.local_property,
                    )

            if relation.relation_type is RelationType.MANY_TO_MANY:
                slot = (relation.pivot_table_name, "")
            else:
                slot = (relation.foreign_key_table_name, relation.foreign_key_column_name)
            pair = frozenset(
                {(relation.local_type, relation.local_property), (relation.foreign_type, relation.foreign_property)}
            )
            owner = storage.setdefault(slot, pair)
            if owner != pair:
                raise RelationDiscoveryError(
                    f"{relation.describe()} would share storage {'.'.join(s for s in slot if s)} "
                    f"with another relation; add a link identifier to one of them",
                    local_type=relation.local_type.__name__,
                    prop=relation.local_property,
                )


class RelationCache:
    """Discovered relations for one model registry, computed once on demand."""

    def __init__(self, registry: ModelRegistry, inflector: Inflector | None = None) -> None:
        self.registry = registry
        self.inflector = inflector or default_inflector
        self._relations: list[Relation] | None = None
        self._by_type: dict[type, list[Relation]] = {}
        self._by_property: dict[tuple[type, str], Relation] = {}

    def init(self) -> list[Relation]:
        """Run discovery now (idempotent until :meth:`reset`)."""
        if self._relations is None:
            relations = RelationshipDiscoverer(self.registry.models(), self.inflector).discover()
            # mirrors of lazy relations have no property on their local type
            exposed = [r for r in relations if r.local_property is not None]
            by_type: dict[type, list[Relation]] = {}
            for relation in exposed:
                by_type.setdefault(relation.local_type, []).append(relation)
            self._by_type = by_type
            self._by_property = {(r.local_type, r.local_property): r for r in exposed}
            self._relations = relations
        return self._relations

    def reset(self) -> None:
        self._relations = None
        self._by_type = {}
        self._by_property = {}

    @property
    def relations(self) -> list[Relation]:
        return self.init()

    def for_type(self, model: type) -> list[Relation]:
        self.init()
        return self._by_type.get(model, [])

    def for_property(self, model: type, name: str) -> Relation | None:
        self.init()
        return self._by_property.get((model, name))


__all__ = [
    "Relation",
    "RelationType",
    "RelationshipDiscoverer",
    "RelationCache",
    "table_name",
]
