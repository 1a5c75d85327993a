"""Protocols the sync core depends on: schema introspection and store access."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from fixture_sync.domain.models import AssociationKind, Entity

EntityPredicate = Callable[["Entity"], bool]


@runtime_checkable
class AssociationInspector(Protocol):
    """Capability each target type implements for schema-driven dispatch."""

    @property
    def name(self) -> str: ...

    def primary_key_fields(self) -> tuple[str, ...]: ...

    def association_kind(self, field: str) -> AssociationKind | None: ...

    def foreign_key_field(self, field: str) -> str | None: ...

    def declared_associations(self) -> tuple[str, ...]: ...


class StoreAdapter(Protocol):
    """Persistence operations used by the sync orchestrator."""

    def find_by(
        self, target_type: AssociationInspector, criteria: Mapping[str, object]
    ) -> Entity | None: ...

    def upsert(self, entity: Entity, attrs: Mapping[str, object]) -> Entity: ...

    def delete_where(
        self, target_type: AssociationInspector, predicate: EntityPredicate
    ) -> list[Entity]: ...

    def preload(self, entity: Entity, association_names: Sequence[str]) -> Entity: ...


@dataclass(frozen=True, slots=True)
class IdentifierNotIn:
    """Predicate matching entities whose identifier is outside ``identifiers``."""

    identifiers: frozenset[object]

    @classmethod
    def of(cls, identifiers: Iterable[object]) -> IdentifierNotIn:
        return cls(frozenset(identifiers))

    def __call__(self, entity: Entity) -> bool:
        return entity.identifier not in self.identifiers


__all__ = [
    "AssociationInspector",
    "EntityPredicate",
    "IdentifierNotIn",
    "StoreAdapter",
]
