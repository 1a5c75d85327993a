"""Value types for fixture records, references and sync results."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from fixture_sync.constants import DEFAULT_CALLBACK_NAME
from fixture_sync.domain.errors import CycleError, FixtureSyncError, SyncFailure

if TYPE_CHECKING:
    from fixture_sync.fixtures import Fixture
    from fixture_sync.persistence.contracts import AssociationInspector


class RelationKind(StrEnum):
    BELONGS_TO = "belongs_to"
    MANY_TO_MANY = "many_to_many"
    AUTO = "auto"


class AssociationKind(StrEnum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


class FieldValueKind(StrEnum):
    LITERAL = "literal"
    RELATION = "relation"
    NESTED = "nested"
    LOOKUP = "lookup"
    RELATION_LIST = "relation_list"


@dataclass(frozen=True, slots=True)
class FixtureConfig:
    """Target type, search keys and producer callback name for one fixture."""

    target_type: AssociationInspector
    search_keys: tuple[str, ...]
    callback_name: str = DEFAULT_CALLBACK_NAME

    def __post_init__(self) -> None:
        keys = _as_field_names(self.search_keys, "FixtureConfig.search_keys")
        if not keys:
            raise ValueError("FixtureConfig.search_keys must not be empty")
        object.__setattr__(self, "search_keys", keys)
        if not isinstance(self.callback_name, str) or not self.callback_name.strip():
            raise ValueError("FixtureConfig.callback_name must be a non-empty string")

    @classmethod
    def for_type(
        cls,
        target_type: AssociationInspector,
        search_keys: Iterable[str] | None = None,
        *,
        callback_name: str = DEFAULT_CALLBACK_NAME,
    ) -> FixtureConfig:
        """Build a config, defaulting search keys to the type's primary key."""
        keys = target_type.primary_key_fields() if search_keys is None else tuple(search_keys)
        return cls(target_type=target_type, search_keys=tuple(keys), callback_name=callback_name)

    def with_search_keys(self, search_keys: Iterable[str] | None) -> FixtureConfig:
        if search_keys is None:
            return self
        return replace(self, search_keys=tuple(search_keys))


@dataclass(frozen=True, slots=True)
class Relation:
    """Sync ``fixture`` first, then use one of the entities it produced."""

    fixture: Fixture
    lookup: tuple[str, object] | None = None
    kind: RelationKind = RelationKind.BELONGS_TO

    def __post_init__(self) -> None:
        if self.lookup is not None:
            object.__setattr__(self, "lookup", _as_pair(self.lookup, "Relation.lookup"))
        object.__setattr__(self, "kind", RelationKind(self.kind))


@dataclass(frozen=True, slots=True)
class Nested:
    """Children synced after the parent with the parent identifier injected."""

    foreign_key: str
    fixture: Fixture | None = None
    records: tuple[object, ...] | None = None
    target_type: AssociationInspector | None = None
    search_keys: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.foreign_key, str) or not self.foreign_key.strip():
            raise ValueError("Nested.foreign_key must be a non-empty string")
        if (self.fixture is None) == (self.records is None):
            raise ValueError("Nested requires exactly one of a fixture or inline records")
        if self.records is not None:
            if isinstance(self.records, (str, bytes, Mapping)) or not isinstance(
                self.records, Sequence
            ):
                raise TypeError("Nested.records must be a list of records")
            if self.target_type is None:
                raise ValueError("inline Nested records require a target_type")
            object.__setattr__(self, "records", tuple(self.records))
        if self.search_keys is not None:
            keys = _as_field_names(self.search_keys, "Nested.search_keys")
            if not keys:
                raise ValueError("Nested.search_keys must not be empty when given")
            object.__setattr__(self, "search_keys", keys)

    @property
    def is_inline(self) -> bool:
        return self.records is not None


@dataclass(frozen=True, slots=True)
class Lookup:
    """Query the store directly and extract one field from the match."""

    target_type: AssociationInspector
    match: tuple[str, object] | Mapping[str, object]
    field: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.match, Mapping):
            if not self.match:
                raise ValueError("Lookup.match must not be empty")
            for key in self.match:
                if not isinstance(key, str) or not key:
                    raise TypeError("Lookup.match keys must be non-empty strings")
            object.__setattr__(self, "match", dict(self.match))
        else:
            object.__setattr__(self, "match", _as_pair(self.match, "Lookup.match"))


FieldValue = object | Relation | Nested | Lookup | list[Relation]


def field_value_kind(value: object) -> FieldValueKind:
    """Classify a raw field value into its tagged variant."""
    if isinstance(value, Relation):
        return FieldValueKind.RELATION
    if isinstance(value, Nested):
        return FieldValueKind.NESTED
    if isinstance(value, Lookup):
        return FieldValueKind.LOOKUP
    if isinstance(value, (list, tuple)) and value:
        relation_count = sum(1 for item in value if isinstance(item, Relation))
        if relation_count == len(value):
            return FieldValueKind.RELATION_LIST
        if relation_count:
            raise TypeError("a field list must not mix relations with other values")
    return FieldValueKind.LITERAL


class Entity:
    """A row returned by a store adapter, or a draft about to be inserted."""

    def __init__(
        self,
        entity_type: AssociationInspector,
        values: Mapping[str, object] | None = None,
        *,
        persisted: bool = False,
        associations: Mapping[str, object] | None = None,
    ) -> None:
        self.entity_type = entity_type
        self.fields: dict[str, object] = dict(values or {})
        self.associations: dict[str, object] = dict(associations or {})
        self.persisted = persisted

    @classmethod
    def draft(
        cls, entity_type: AssociationInspector, values: Mapping[str, object] | None = None
    ) -> Entity:
        return cls(entity_type, values, persisted=False)

    @property
    def identifier(self) -> object:
        primary_key = self.entity_type.primary_key_fields()
        if len(primary_key) == 1:
            return self.fields.get(primary_key[0])
        return tuple(self.fields.get(name) for name in primary_key)

    def get(self, name: str, default: object = None) -> object:
        if name in self.fields:
            return self.fields[name]
        return self.associations.get(name, default)

    def is_loaded(self, association: str) -> bool:
        return association in self.associations

    def to_record(self) -> dict[str, object]:
        """Plain attribute mapping without store bookkeeping."""
        return dict(self.fields)

    def __getattr__(self, name: str) -> object:
        if name.startswith("__") or name in {"fields", "associations", "entity_type"}:
            raise AttributeError(name)
        values = self.__dict__.get("fields", {})
        if name in values:
            return values[name]
        loaded = self.__dict__.get("associations", {})
        if name in loaded:
            return loaded[name]
        raise AttributeError(f"{type(self).__name__} has no field {name!r}")

    def __repr__(self) -> str:
        state = "persisted" if self.persisted else "draft"
        return f"<Entity {self.entity_type.name} {self.fields!r} ({state})>"


def canonicalize_record(raw: object) -> dict[str, object]:
    """Normalize a produced record into a plain attribute mapping."""
    if isinstance(raw, Entity):
        return raw.to_record()
    if isinstance(raw, Mapping):
        return {_as_field_name(key): value for key, value in raw.items()}
    if is_dataclass(raw) and not isinstance(raw, type):
        return {
            item.name: getattr(raw, item.name)
            for item in fields(raw)
            if not item.name.startswith("_")
        }
    raise TypeError(f"record must be a mapping or entity, got {type(raw).__name__}")


def as_record_list(raw: object) -> list[object]:
    """Wrap a single produced record into a list."""
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return [raw]


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of syncing one fixture."""

    synced: tuple[Entity, ...] = ()
    deleted: tuple[Entity, ...] | None = None
    error: FixtureSyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def identifiers(self) -> tuple[object, ...]:
        return tuple(entity.identifier for entity in self.synced)

    def unwrap(self) -> tuple[Entity, ...]:
        if self.error is not None:
            raise self.error
        return self.synced


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Outcome of syncing several fixtures in dependency order."""

    results: Mapping[Fixture, SyncResult] = field(default_factory=dict)
    order: tuple[Fixture, ...] = ()
    error: CycleError | SyncFailure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def by_name(self) -> dict[str, SyncResult]:
        return {fixture.name: result for fixture, result in self.results.items()}

    def unwrap(self) -> Mapping[Fixture, SyncResult]:
        if self.error is not None:
            raise self.error
        return self.results


def _as_pair(value: object, path: str) -> tuple[str, object]:
    if not isinstance(value, (tuple, list)) or len(value) != 2:
        raise TypeError(f"{path} must be a (field, value) pair")
    key, item = value
    return _as_field_name(key, path), item


def _as_field_name(value: object, path: str = "field name") -> str:
    if not isinstance(value, str) or not value.strip():
        raise TypeError(f"{path} must be a non-empty string, got {value!r}")
    return value


def _as_field_names(values: object, path: str) -> tuple[str, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise TypeError(f"{path} must be a sequence of field names")
    names: list[str] = []
    for item in values:
        name = _as_field_name(item, path)
        if name not in names:
            names.append(name)
    return tuple(names)


__all__ = [
    "AssociationKind",
    "BatchResult",
    "Entity",
    "FieldValue",
    "FieldValueKind",
    "FixtureConfig",
    "Lookup",
    "Nested",
    "Relation",
    "RelationKind",
    "SyncResult",
    "as_record_list",
    "canonicalize_record",
    "field_value_kind",
]
