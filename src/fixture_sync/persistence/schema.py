"""Declarative entity types that double as the schema introspector."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from fixture_sync.constants import DEFAULT_PRIMARY_KEY
from fixture_sync.domain.models import AssociationKind

EntityValidator = Callable[[Mapping[str, object]], Iterable[str]]

_SQL_AFFINITY: Final[dict[str, str]] = {
    "text": "TEXT",
    "integer": "INTEGER",
    "real": "REAL",
    "boolean": "INTEGER",
    "blob": "BLOB",
}


class FieldType(StrEnum):
    TEXT = "text"
    INTEGER = "integer"
    REAL = "real"
    BOOLEAN = "boolean"
    BLOB = "blob"

    @property
    def sql_affinity(self) -> str:
        return _SQL_AFFINITY[self.value]


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    default: object = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.isidentifier():
            raise ValueError(f"field name must be an identifier, got {self.name!r}")
        object.__setattr__(self, "type", FieldType(self.type))


@dataclass(frozen=True, slots=True)
class Association:
    """One declared association; ``target`` names the related entity type."""

    name: str
    kind: AssociationKind
    target: str
    foreign_key: str | None = None
    join_table: str | None = None
    owner_key: str | None = None
    related_key: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", AssociationKind(self.kind))
        if self.kind is AssociationKind.MANY_TO_MANY:
            if not (self.join_table and self.owner_key and self.related_key):
                raise ValueError(
                    f"many_to_many {self.name!r} requires join_table, owner_key and related_key"
                )
        elif not self.foreign_key:
            raise ValueError(f"{self.kind.value} {self.name!r} requires a foreign_key")

    @classmethod
    def belongs_to(cls, name: str, target: str, *, foreign_key: str | None = None) -> Association:
        return cls(name, AssociationKind.BELONGS_TO, target, foreign_key=foreign_key or f"{name}_id")

    @classmethod
    def has_many(cls, name: str, target: str, *, foreign_key: str) -> Association:
        return cls(name, AssociationKind.HAS_MANY, target, foreign_key=foreign_key)

    @classmethod
    def has_one(cls, name: str, target: str, *, foreign_key: str) -> Association:
        return cls(name, AssociationKind.HAS_ONE, target, foreign_key=foreign_key)

    @classmethod
    def many_to_many(
        cls,
        name: str,
        target: str,
        *,
        join_table: str,
        owner_key: str,
        related_key: str,
    ) -> Association:
        return cls(
            name,
            AssociationKind.MANY_TO_MANY,
            target,
            join_table=join_table,
            owner_key=owner_key,
            related_key=related_key,
        )


class EntityType:
    """Table layout, primary key and associations of one persisted type."""

    def __init__(
        self,
        name: str,
        fields: Iterable[FieldSpec | str] = (),
        *,
        table: str | None = None,
        primary_key: Iterable[str] = DEFAULT_PRIMARY_KEY,
        associations: Iterable[Association] = (),
        validator: EntityValidator | None = None,
    ) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("entity type name must be a non-empty string")
        self._name = name
        self.table = table or name.lower()
        if not self.table.isidentifier():
            raise ValueError(f"table name must be an identifier, got {self.table!r}")

        self._primary_key = tuple(primary_key)
        if not self._primary_key:
            raise ValueError(f"{name}: primary key must name at least one field")

        self._associations: dict[str, Association] = {}
        for association in associations:
            if association.name in self._associations:
                raise ValueError(f"{name}: duplicate association {association.name!r}")
            self._associations[association.name] = association

        self._fields: dict[str, FieldSpec] = {}
        if self.autoincrement:
            self._fields["id"] = FieldSpec("id", FieldType.INTEGER)
        for spec in fields:
            field_spec = FieldSpec(spec) if isinstance(spec, str) else spec
            self._fields[field_spec.name] = field_spec
        for association in self._associations.values():
            if association.kind is AssociationKind.BELONGS_TO and association.foreign_key:
                self._fields.setdefault(
                    association.foreign_key,
                    FieldSpec(association.foreign_key, FieldType.INTEGER),
                )

        missing = [key for key in self._primary_key if key not in self._fields]
        if missing:
            raise ValueError(f"{name}: primary key fields are not declared: {missing}")
        self._validator = validator

    @property
    def name(self) -> str:
        return self._name

    @property
    def autoincrement(self) -> bool:
        return self._primary_key == DEFAULT_PRIMARY_KEY

    @property
    def fields(self) -> Mapping[str, FieldSpec]:
        return self._fields

    def field_names(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def primary_key_fields(self) -> tuple[str, ...]:
        return self._primary_key

    def association(self, name: str) -> Association | None:
        return self._associations.get(name)

    def association_kind(self, field: str) -> AssociationKind | None:
        association = self._associations.get(field)
        return None if association is None else association.kind

    def foreign_key_field(self, field: str) -> str | None:
        association = self._associations.get(field)
        if association is None or association.kind is AssociationKind.MANY_TO_MANY:
            return None
        return association.foreign_key

    def declared_associations(self) -> tuple[str, ...]:
        return tuple(self._associations)

    def many_to_many_associations(self) -> tuple[Association, ...]:
        return tuple(
            association
            for association in self._associations.values()
            if association.kind is AssociationKind.MANY_TO_MANY
        )

    def child_associations(self) -> tuple[Association, ...]:
        """``has_many``/``has_one`` associations, whose rows are deleted with the owner."""
        return tuple(
            association
            for association in self._associations.values()
            if association.kind in (AssociationKind.HAS_MANY, AssociationKind.HAS_ONE)
        )

    def validate(self, values: Mapping[str, object]) -> list[str]:
        """Return validation error details for the merged field values."""
        details: list[str] = []
        for spec in self._fields.values():
            if spec.required and values.get(spec.name) is None:
                details.append(f"{spec.name} can't be blank")
        if self._validator is not None:
            details.extend(str(item) for item in self._validator(values))
        return details

    def __repr__(self) -> str:
        return f"EntityType({self._name!r})"


__all__ = [
    "Association",
    "EntityType",
    "EntityValidator",
    "FieldSpec",
    "FieldType",
]
