"""
YAML fixture documents.

A document declares entity ``types`` and ``fixtures``. Records reference
other fixtures and the store through tags::

    types:
      Country:
        fields: {code: {required: true}, name: text}
    fixtures:
      Countries:
        type: Country
        search_keys: [code]
        records:
          - {code: "NO", name: Norway}
      Organizations:
        type: Organization
        search_keys: [slug]
        records:
          - {slug: acme, country: !belongs_to [Countries, code, "NO"]}

Supported tags: ``!belongs_to``, ``!many_to_many``, ``!assoc``, ``!has_many``,
``!has_many_inline`` and ``!lookup``. Fixture and type names are resolved when
a producer runs, so fixtures may reference ones declared further down.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml
from yaml.constructor import ConstructorError

from fixture_sync.domain.models import Lookup, Nested, Relation, RelationKind
from fixture_sync.fixtures import Fixture
from fixture_sync.persistence.schema import Association, EntityType, FieldSpec, FieldType

_TYPE_KEYS: Final[frozenset[str]] = frozenset(
    {"fields", "table", "primary_key", "associations"}
)
_FIXTURE_KEYS: Final[frozenset[str]] = frozenset({"type", "search_keys", "records"})


class FixtureLoadError(ValueError):
    """Raised when a fixture document cannot be read or is malformed."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = tuple(errors)
        rendered = "\n".join(f"- {item}" for item in self.errors) or "- unknown load failure"
        super().__init__(f"invalid fixture document:\n{rendered}")


@dataclass(frozen=True, slots=True)
class _RelationRef:
    fixture: str
    lookup: tuple[str, object] | None
    kind: RelationKind


@dataclass(frozen=True, slots=True)
class _NestedRef:
    foreign_key: str
    fixture: str | None = None
    records: tuple[object, ...] | None = None
    target_type: str | None = None
    search_keys: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class _LookupRef:
    target_type: str
    match: object
    field: str | None = None


@dataclass(frozen=True, slots=True)
class FixtureDocument:
    """Entity types and fixtures declared by one document, in declaration order."""

    entity_types: Mapping[str, EntityType]
    fixtures: Mapping[str, Fixture]
    source: str = "<string>"

    def select(self, names: Iterable[str] | None = None) -> tuple[Fixture, ...]:
        """Return the named fixtures (all when ``names`` is None)."""
        if names is None:
            return tuple(self.fixtures.values())
        selected: list[Fixture] = []
        missing: list[str] = []
        for name in names:
            found = self.fixtures.get(name)
            if found is None:
                missing.append(f"unknown fixture {name!r}")
            else:
                selected.append(found)
        if missing:
            raise FixtureLoadError(missing)
        return tuple(selected)


class _FixtureYamlLoader(yaml.SafeLoader):
    """Safe loader extended with the fixture reference tags."""


def _relation_constructor(
    kind: RelationKind,
) -> Callable[[yaml.SafeLoader, yaml.Node], _RelationRef]:
    def construct(loader: yaml.SafeLoader, node: yaml.Node) -> _RelationRef:
        if isinstance(node, yaml.ScalarNode):
            return _RelationRef(str(loader.construct_scalar(node)), None, kind)
        if isinstance(node, yaml.SequenceNode):
            items = loader.construct_sequence(node, deep=True)
            if len(items) == 1:
                return _RelationRef(str(items[0]), None, kind)
            if len(items) == 3:
                return _RelationRef(str(items[0]), (str(items[1]), items[2]), kind)
        raise ConstructorError(
            None,
            None,
            f"!{kind.value} expects a fixture name or [fixture, key, value]",
            node.start_mark,
        )

    return construct


def _construct_has_many(loader: yaml.SafeLoader, node: yaml.Node) -> _NestedRef:
    if isinstance(node, yaml.SequenceNode):
        items = loader.construct_sequence(node, deep=True)
        if len(items) == 2:
            return _NestedRef(foreign_key=str(items[1]), fixture=str(items[0]))
    elif isinstance(node, yaml.MappingNode):
        options = loader.construct_mapping(node, deep=True)
        if "fixture" in options and "foreign_key" in options:
            return _NestedRef(
                foreign_key=str(options["foreign_key"]),
                fixture=str(options["fixture"]),
                search_keys=_optional_names(options.get("search_keys")),
            )
    raise ConstructorError(
        None,
        None,
        "!has_many expects [fixture, foreign_key] or {fixture, foreign_key, search_keys}",
        node.start_mark,
    )


def _construct_has_many_inline(loader: yaml.SafeLoader, node: yaml.Node) -> _NestedRef:
    if isinstance(node, yaml.MappingNode):
        options = loader.construct_mapping(node, deep=True)
        records = options.get("records")
        if {"type", "foreign_key"} <= set(options) and isinstance(records, list):
            return _NestedRef(
                foreign_key=str(options["foreign_key"]),
                records=tuple(records),
                target_type=str(options["type"]),
                search_keys=_optional_names(options.get("search_keys")),
            )
    raise ConstructorError(
        None,
        None,
        "!has_many_inline expects {type, foreign_key, records, search_keys}",
        node.start_mark,
    )


def _construct_lookup(loader: yaml.SafeLoader, node: yaml.Node) -> _LookupRef:
    if isinstance(node, yaml.SequenceNode):
        items = loader.construct_sequence(node, deep=True)
        if len(items) == 3:
            return _LookupRef(str(items[0]), (str(items[1]), items[2]))
    elif isinstance(node, yaml.MappingNode):
        options = loader.construct_mapping(node, deep=True)
        if "type" in options and isinstance(options.get("match"), dict):
            field = options.get("field")
            return _LookupRef(
                str(options["type"]),
                options["match"],
                None if field is None else str(field),
            )
    raise ConstructorError(
        None,
        None,
        "!lookup expects [type, key, value] or {type, match, field}",
        node.start_mark,
    )


_FixtureYamlLoader.add_constructor("!belongs_to", _relation_constructor(RelationKind.BELONGS_TO))
_FixtureYamlLoader.add_constructor(
    "!many_to_many", _relation_constructor(RelationKind.MANY_TO_MANY)
)
_FixtureYamlLoader.add_constructor("!assoc", _relation_constructor(RelationKind.AUTO))
_FixtureYamlLoader.add_constructor("!has_many", _construct_has_many)
_FixtureYamlLoader.add_constructor("!has_many_inline", _construct_has_many_inline)
_FixtureYamlLoader.add_constructor("!lookup", _construct_lookup)


def load_fixture_document(path: str | Path) -> FixtureDocument:
    """Read and build the fixture document at ``path``."""
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FixtureLoadError([f"failed to read {file_path.as_posix()}: {exc}"]) from exc
    return parse_fixture_document(text, source=file_path.as_posix())


def parse_fixture_document(text: str, *, source: str = "<string>") -> FixtureDocument:
    """Build entity types and fixtures from YAML ``text``."""
    try:
        payload = yaml.load(text, Loader=_FixtureYamlLoader)  # noqa: S506
    except yaml.YAMLError as exc:
        raise FixtureLoadError([f"invalid YAML in {source}: {exc}"]) from exc

    errors: list[str] = []
    if not isinstance(payload, dict):
        raise FixtureLoadError([f"{source} must contain a mapping with 'types' and 'fixtures'"])
    for key in sorted(set(payload) - {"types", "fixtures"}):
        errors.append(f"{source}: unknown top-level key {key!r}")

    entity_types = _build_entity_types(payload.get("types") or {}, errors)
    fixtures: dict[str, Fixture] = {}
    resolver = _ReferenceResolver(entity_types, fixtures)

    raw_fixtures = payload.get("fixtures") or {}
    if not isinstance(raw_fixtures, dict):
        errors.append("'fixtures' must be a mapping of fixture name to definition")
        raw_fixtures = {}
    for name, definition in raw_fixtures.items():
        built = _build_fixture(str(name), definition, entity_types, resolver, errors)
        if built is not None:
            fixtures[built.name] = built

    if not errors:
        for built in fixtures.values():
            try:
                built.producer()
            except FixtureLoadError as exc:
                errors.extend(f"fixture {built.name!r}: {item}" for item in exc.errors)
            except (TypeError, ValueError) as exc:
                errors.append(f"fixture {built.name!r}: {exc}")

    if errors:
        raise FixtureLoadError(errors)
    return FixtureDocument(entity_types=entity_types, fixtures=fixtures, source=source)


class _ReferenceResolver:
    """Turn tag placeholders into reference values against the loaded names."""

    def __init__(self, entity_types: Mapping[str, EntityType], fixtures: Mapping[str, Fixture]):
        self._entity_types = entity_types
        self._fixtures = fixtures

    def materialize(self, value: object) -> Any:
        if isinstance(value, _RelationRef):
            return Relation(self._fixture(value.fixture), value.lookup, value.kind)
        if isinstance(value, _NestedRef):
            if value.fixture is not None:
                return Nested(
                    foreign_key=value.foreign_key,
                    fixture=self._fixture(value.fixture),
                    search_keys=value.search_keys,
                )
            return Nested(
                foreign_key=value.foreign_key,
                records=tuple(self.materialize(item) for item in value.records or ()),
                target_type=self._entity_type(value.target_type or ""),
                search_keys=value.search_keys,
            )
        if isinstance(value, _LookupRef):
            match = value.match
            if isinstance(match, dict):
                match = {key: self.materialize(item) for key, item in match.items()}
            else:
                key, item = match  # type: ignore[misc]
                match = (key, self.materialize(item))
            return Lookup(self._entity_type(value.target_type), match, value.field)  # type: ignore[arg-type]
        if isinstance(value, dict):
            return {key: self.materialize(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.materialize(item) for item in value]
        return value

    def _fixture(self, name: str) -> Fixture:
        found = self._fixtures.get(name)
        if found is None:
            raise FixtureLoadError([f"unknown fixture reference {name!r}"])
        return found

    def _entity_type(self, name: str) -> EntityType:
        found = self._entity_types.get(name)
        if found is None:
            raise FixtureLoadError([f"unknown entity type {name!r}"])
        return found


def _build_entity_types(raw: object, errors: list[str]) -> dict[str, EntityType]:
    if not isinstance(raw, dict):
        errors.append("'types' must be a mapping of type name to definition")
        return {}

    built: dict[str, EntityType] = {}
    for name, definition in raw.items():
        path = f"types.{name}"
        if not isinstance(definition, dict):
            errors.append(f"{path} must be a mapping")
            continue
        unknown = sorted(set(definition) - _TYPE_KEYS)
        if unknown:
            errors.append(f"{path}: unknown keys {unknown}")
            continue
        try:
            built[str(name)] = EntityType(
                str(name),
                _field_specs(definition.get("fields") or {}),
                table=definition.get("table"),
                primary_key=tuple(definition.get("primary_key") or ("id",)),
                associations=_associations(definition.get("associations") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            errors.append(f"{path}: {exc}")

    for entity_type in built.values():
        for association_name in entity_type.declared_associations():
            association = entity_type.association(association_name)
            if association is not None and association.target not in built:
                errors.append(
                    f"types.{entity_type.name}.associations.{association_name}: "
                    f"unknown target {association.target!r}"
                )
    return built


def _field_specs(raw: object) -> list[FieldSpec]:
    if isinstance(raw, list):
        return [FieldSpec(str(item)) for item in raw]
    if not isinstance(raw, dict):
        raise TypeError("fields must be a list of names or a mapping")
    specs: list[FieldSpec] = []
    for name, options in raw.items():
        if options is None:
            specs.append(FieldSpec(str(name)))
        elif isinstance(options, str):
            specs.append(FieldSpec(str(name), FieldType(options)))
        elif isinstance(options, dict):
            specs.append(
                FieldSpec(
                    str(name),
                    FieldType(options.get("type", FieldType.TEXT)),
                    required=bool(options.get("required", False)),
                    default=options.get("default"),
                )
            )
        else:
            raise TypeError(f"field {name!r} must be a type name or a mapping")
    return specs


def _associations(raw: object) -> list[Association]:
    if not isinstance(raw, dict):
        raise TypeError("associations must be a mapping")
    built: list[Association] = []
    for name, options in raw.items():
        if not isinstance(options, dict) or "kind" not in options or "target" not in options:
            raise TypeError(f"association {name!r} needs at least 'kind' and 'target'")
        kind = str(options["kind"])
        target = str(options["target"])
        if kind == "belongs_to":
            built.append(
                Association.belongs_to(str(name), target, foreign_key=options.get("foreign_key"))
            )
        elif kind == "has_many":
            built.append(Association.has_many(str(name), target, foreign_key=options["foreign_key"]))
        elif kind == "has_one":
            built.append(Association.has_one(str(name), target, foreign_key=options["foreign_key"]))
        elif kind == "many_to_many":
            built.append(
                Association.many_to_many(
                    str(name),
                    target,
                    join_table=options["join_table"],
                    owner_key=options["owner_key"],
                    related_key=options["related_key"],
                )
            )
        else:
            raise ValueError(f"association {name!r} has unknown kind {kind!r}")
    return built


def _build_fixture(
    name: str,
    definition: object,
    entity_types: Mapping[str, EntityType],
    resolver: _ReferenceResolver,
    errors: list[str],
) -> Fixture | None:
    path = f"fixtures.{name}"
    if not isinstance(definition, dict):
        errors.append(f"{path} must be a mapping")
        return None
    unknown = sorted(set(definition) - _FIXTURE_KEYS)
    if unknown:
        errors.append(f"{path}: unknown keys {unknown}")
        return None
    target_type = entity_types.get(str(definition.get("type")))
    if target_type is None:
        errors.append(f"{path}: unknown entity type {definition.get('type')!r}")
        return None
    records = definition.get("records", [])
    if not isinstance(records, (list, dict)):
        errors.append(f"{path}.records must be a record or a list of records")
        return None

    def produce() -> object:
        return resolver.materialize(records)

    try:
        return Fixture(
            name,
            target_type=target_type,
            producer=produce,
            search_keys=_optional_names(definition.get("search_keys")),
        )
    except (TypeError, ValueError) as exc:
        errors.append(f"{path}: {exc}")
        return None


def _optional_names(raw: object) -> tuple[str, ...] | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        return (raw,)
    return tuple(str(item) for item in raw)  # type: ignore[attr-defined]


__all__ = [
    "FixtureDocument",
    "FixtureLoadError",
    "load_fixture_document",
    "parse_fixture_document",
]
