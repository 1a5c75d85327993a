"""
Record resolution.

Turns one canonical record into flat attributes for the upsert plus the
nested child syncs that must run after the parent is persisted. Related
fixtures are synced on demand through the ``sync_fixture`` callback, so a
failure deep inside a chain of relations propagates unchanged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final

from fixture_sync.domain.errors import LookupNotFound, RelationNotFound, StoreError
from fixture_sync.domain.models import (
    AssociationKind,
    Entity,
    FieldValueKind,
    Lookup,
    Nested,
    Relation,
    RelationKind,
    field_value_kind,
)
from fixture_sync.fixtures import Fixture
from fixture_sync.persistence.contracts import AssociationInspector, StoreAdapter

FixtureSyncer = Callable[[Fixture], Sequence[Entity]]

_CAMEL_BOUNDARY: Final[re.Pattern[str]] = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_CHILD_KINDS: Final[frozenset[AssociationKind]] = frozenset(
    {AssociationKind.HAS_MANY, AssociationKind.HAS_ONE}
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolvedRecord:
    attrs: dict[str, object] = field(default_factory=dict)
    deferred: list[tuple[str, Nested]] = field(default_factory=list)


class RecordResolver:
    """Resolve the field values of a record against the store and related fixtures."""

    def __init__(self, store: StoreAdapter, sync_fixture: FixtureSyncer) -> None:
        self._store = store
        self._sync_fixture = sync_fixture

    def resolve(self, target_type: AssociationInspector, record: Mapping[str, object]) -> ResolvedRecord:
        """Resolve every field in insertion order; the first failure aborts the record."""
        resolved = ResolvedRecord()
        for name, value in record.items():
            kind = field_value_kind(value)
            if kind is FieldValueKind.LITERAL:
                resolved.attrs[name] = value
            elif kind is FieldValueKind.RELATION:
                self._resolve_relation(target_type, name, value, resolved)  # type: ignore[arg-type]
            elif kind is FieldValueKind.RELATION_LIST:
                self._resolve_relation_list(target_type, name, list(value), resolved)  # type: ignore[call-overload]
            elif kind is FieldValueKind.NESTED:
                resolved.deferred.append((name, value))  # type: ignore[arg-type]
            elif kind is FieldValueKind.LOOKUP:
                resolved.attrs[name] = self.resolve_lookup(value)  # type: ignore[arg-type]
            else:
                raise AssertionError(f"unhandled field value kind {kind!r}")
        return resolved

    def resolve_lookup(self, lookup: Lookup) -> object:
        """Query the store for ``lookup``; inner lookups in the match resolve first."""
        pairs = lookup.match.items() if isinstance(lookup.match, Mapping) else (lookup.match,)
        criteria: dict[str, object] = {}
        for key, value in pairs:
            criteria[key] = self.resolve_lookup(value) if isinstance(value, Lookup) else value

        found = self._store.find_by(lookup.target_type, criteria)
        if found is None:
            raise LookupNotFound(lookup.target_type.name, criteria)
        if lookup.field is None:
            return found.identifier
        if lookup.field not in found.fields:
            raise StoreError(f"{lookup.target_type.name} has no field {lookup.field!r} to extract")
        return found.fields[lookup.field]

    def _resolve_relation(
        self,
        target_type: AssociationInspector,
        name: str,
        relation: Relation,
        resolved: ResolvedRecord,
    ) -> None:
        kind = relation.kind
        if kind is RelationKind.AUTO:
            association = target_type.association_kind(name)
            if association in _CHILD_KINDS:
                resolved.deferred.append((name, self._as_nested(target_type, name, relation)))
                return
            kind = (
                RelationKind.MANY_TO_MANY
                if association is AssociationKind.MANY_TO_MANY
                else RelationKind.BELONGS_TO
            )

        selected = self._select(name, relation)
        if kind is RelationKind.MANY_TO_MANY:
            _merge_related(resolved.attrs, name, [selected])
        else:
            resolved.attrs[f"{name}_id"] = selected.identifier

    def _resolve_relation_list(
        self,
        target_type: AssociationInspector,
        name: str,
        relations: list[Relation],
        resolved: ResolvedRecord,
    ) -> None:
        if target_type.association_kind(name) is AssociationKind.HAS_MANY and all(
            relation.kind is RelationKind.AUTO for relation in relations
        ):
            resolved.deferred.append((name, self._as_nested(target_type, name, relations[0])))
            return
        _merge_related(resolved.attrs, name, [self._select(name, item) for item in relations])

    def _select(self, name: str, relation: Relation) -> Entity:
        entities = self._sync_fixture(relation.fixture)
        if relation.lookup is None:
            if not entities:
                raise RelationNotFound(name, None)
            return entities[0]

        key, expected = relation.lookup
        for entity in entities:
            if entity.get(key) == expected:
                return entity
        raise RelationNotFound(key, expected)

    def _as_nested(
        self, target_type: AssociationInspector, name: str, relation: Relation
    ) -> Nested:
        foreign_key = target_type.foreign_key_field(name) or f"{_underscore(target_type.name)}_id"
        logger.debug(
            "relation detected as child association",
            extra={"field": name, "fixture": relation.fixture.name, "foreign_key": foreign_key},
        )
        return Nested(foreign_key=foreign_key, fixture=relation.fixture)


def _merge_related(attrs: dict[str, object], name: str, entities: list[Entity]) -> None:
    existing = attrs.get(name)
    if isinstance(existing, list):
        existing.extend(entities)
    else:
        attrs[name] = entities


def _underscore(type_name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", type_name.rsplit(".", 1)[-1]).lower()


__all__ = ["FixtureSyncer", "RecordResolver", "ResolvedRecord"]
