"""Unit tests for domain.models and domain.errors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

from fixture_sync.domain.errors import (
    CycleError,
    LookupNotFound,
    RelationNotFound,
    SyncFailure,
    ValidationError,
)
from fixture_sync.domain.models import (
    BatchResult,
    Entity,
    FieldValueKind,
    FixtureConfig,
    Lookup,
    Nested,
    Relation,
    RelationKind,
    SyncResult,
    as_record_list,
    canonicalize_record,
    field_value_kind,
)
from fixture_sync.fixtures import Fixture

if TYPE_CHECKING:
    from conftest import Catalog


def _fixture(catalog: Catalog, name: str = "Countries") -> Fixture:
    return Fixture(name, target_type=catalog.country, producer=lambda: [])


def test_fixture_config_defaults_search_keys_to_primary_key(catalog: Catalog) -> None:
    config = FixtureConfig.for_type(catalog.country)

    assert config.search_keys == ("id",)
    assert config.callback_name == "records"
    assert config.with_search_keys(None) is config
    assert config.with_search_keys(["code"]).search_keys == ("code",)


def test_fixture_config_rejects_empty_or_malformed_search_keys(catalog: Catalog) -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        FixtureConfig(target_type=catalog.country, search_keys=())
    with pytest.raises(TypeError):
        FixtureConfig(target_type=catalog.country, search_keys="code")  # type: ignore[arg-type]

    config = FixtureConfig(target_type=catalog.country, search_keys=("code", "code", "name"))
    assert config.search_keys == ("code", "name")


def test_relation_normalizes_lookup_pair_and_kind(catalog: Catalog) -> None:
    relation = Relation(_fixture(catalog), ["code", "NO"], "many_to_many")  # type: ignore[arg-type]

    assert relation.lookup == ("code", "NO")
    assert relation.kind is RelationKind.MANY_TO_MANY

    with pytest.raises(TypeError, match="pair"):
        Relation(_fixture(catalog), ("code",))  # type: ignore[arg-type]


def test_nested_requires_exactly_one_source(catalog: Catalog) -> None:
    countries = _fixture(catalog)

    with pytest.raises(ValueError, match="exactly one"):
        Nested(foreign_key="product_id")
    with pytest.raises(ValueError, match="exactly one"):
        Nested(foreign_key="product_id", fixture=countries, records=())
    with pytest.raises(ValueError, match="target_type"):
        Nested(foreign_key="product_id", records=[{"sku": "a"}])  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        Nested(
            foreign_key="product_id",
            records={"sku": "a"},  # type: ignore[arg-type]
            target_type=catalog.variant,
        )

    inline = Nested(
        foreign_key="product_id",
        records=[{"sku": "a"}],  # type: ignore[arg-type]
        target_type=catalog.variant,
    )
    assert inline.is_inline
    assert inline.records == ({"sku": "a"},)
    assert not Nested(foreign_key="product_id", fixture=countries).is_inline


def test_lookup_accepts_pair_or_mapping(catalog: Catalog) -> None:
    assert Lookup(catalog.country, ("code", "NO")).match == ("code", "NO")
    assert Lookup(catalog.country, {"code": "NO"}, "name").match == {"code": "NO"}

    with pytest.raises(ValueError, match="must not be empty"):
        Lookup(catalog.country, {})


def test_field_value_kind_tags_every_variant(catalog: Catalog) -> None:
    countries = _fixture(catalog)
    relation = Relation(countries)

    assert field_value_kind("Norway") is FieldValueKind.LITERAL
    assert field_value_kind([]) is FieldValueKind.LITERAL
    assert field_value_kind([1, 2]) is FieldValueKind.LITERAL
    assert field_value_kind(relation) is FieldValueKind.RELATION
    assert field_value_kind([relation, relation]) is FieldValueKind.RELATION_LIST
    assert field_value_kind(Nested("country_id", fixture=countries)) is FieldValueKind.NESTED
    assert field_value_kind(Lookup(catalog.country, ("code", "NO"))) is FieldValueKind.LOOKUP

    with pytest.raises(TypeError, match="mix"):
        field_value_kind([relation, "literal"])


def test_entity_identifier_and_attribute_access(catalog: Catalog) -> None:
    entity = Entity(
        catalog.country,
        {"id": 7, "code": "NO"},
        persisted=True,
        associations={"organizations": []},
    )

    assert entity.identifier == 7
    assert entity.code == "NO"
    assert entity.get("organizations") == []
    assert entity.get("missing", "fallback") == "fallback"
    assert entity.is_loaded("organizations")
    assert entity.to_record() == {"id": 7, "code": "NO"}
    with pytest.raises(AttributeError):
        _ = entity.missing


def test_canonicalize_record_accepts_entities_mappings_and_dataclasses(catalog: Catalog) -> None:
    @dataclass
    class CountryRecord:
        code: str
        name: str
        _cache: object = None

    entity = Entity(catalog.country, {"code": "NO"}, associations={"x": 1})

    assert canonicalize_record(entity) == {"code": "NO"}
    assert canonicalize_record({"code": "SE"}) == {"code": "SE"}
    assert canonicalize_record(CountryRecord("FI", "Finland")) == {"code": "FI", "name": "Finland"}
    with pytest.raises(TypeError, match="mapping or entity"):
        canonicalize_record("NO")


def test_as_record_list_wraps_single_records() -> None:
    assert as_record_list({"code": "NO"}) == [{"code": "NO"}]
    assert as_record_list(({"code": "NO"},)) == [{"code": "NO"}]


def test_sync_result_unwrap_reraises_error(catalog: Catalog) -> None:
    ok = SyncResult(synced=(Entity(catalog.country, {"id": 1}, persisted=True),))
    assert ok.ok
    assert ok.identifiers == (1,)
    assert len(ok.unwrap()) == 1

    failure = SyncResult(error=LookupNotFound("Country", {"code": "XX"}))
    assert not failure.ok
    with pytest.raises(LookupNotFound):
        failure.unwrap()


def test_batch_result_by_name_and_unwrap(catalog: Catalog) -> None:
    countries = _fixture(catalog)
    batch = BatchResult(results={countries: SyncResult()}, order=(countries,))

    assert batch.ok
    assert batch.by_name() == {"Countries": SyncResult()}
    assert batch.unwrap() == {countries: SyncResult()}

    failed = BatchResult(error=CycleError([countries]))
    with pytest.raises(CycleError):
        failed.unwrap()


def test_error_payloads_describe_their_inputs(catalog: Catalog) -> None:
    countries = _fixture(catalog)
    lookup_error = LookupNotFound("Country", {"code": "XX"})
    relation_error = RelationNotFound("code", "XX")
    validation_error = ValidationError("Country", {"name": "x"}, ["code can't be blank"])
    cycle = CycleError([countries], [("Countries", "Countries")])
    failure = SyncFailure(countries, lookup_error)

    assert lookup_error.criteria == {"code": "XX"}
    assert "Country" in str(lookup_error)
    assert (relation_error.field, relation_error.value) == ("code", "XX")
    assert validation_error.details == ("code can't be blank",)
    assert "code can't be blank" in str(validation_error)
    assert cycle.names == ("Countries",)
    assert "Countries -> Countries" in str(cycle)
    assert failure.fixture is countries
    assert failure.cause is lookup_error
    assert str(failure).startswith("Countries: ")
