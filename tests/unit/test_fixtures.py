"""Unit tests for fixture definitions and authoring helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fixture_sync.domain.models import Lookup, Nested, Relation, RelationKind
from fixture_sync.fixtures import (
    Fixture,
    FixtureKit,
    HelperTable,
    assoc,
    belongs_to,
    fixture,
    has_many,
    has_many_inline,
    lookup,
    many_to_many,
)

if TYPE_CHECKING:
    from conftest import Catalog


def test_fixture_exposes_config_and_producer(catalog: Catalog) -> None:
    countries = Fixture(
        "Countries",
        target_type=catalog.country,
        search_keys=["code"],
        producer=lambda: [{"code": "NO"}],
    )

    assert countries.target_type is catalog.country
    assert countries.config().search_keys == ("code",)
    assert countries.producer() == [{"code": "NO"}]
    assert repr(countries) == "Fixture('Countries', target_type='Country')"


def test_fixture_reads_producer_from_source_callback(catalog: Catalog) -> None:
    class CountrySource:
        def records(self) -> list[dict[str, str]]:
            return [{"code": "SE"}]

        def seed(self) -> dict[str, str]:
            return {"code": "FI"}

    default = Fixture("Countries", target_type=catalog.country, source=CountrySource())
    custom = Fixture(
        "Seeds", target_type=catalog.country, source=CountrySource(), callback_name="seed"
    )

    assert default.producer() == [{"code": "SE"}]
    assert custom.producer() == {"code": "FI"}
    assert custom.config().callback_name == "seed"


def test_fixture_constructor_validation(catalog: Catalog) -> None:
    with pytest.raises(ValueError, match="non-empty"):
        Fixture(" ", target_type=catalog.country, producer=list)
    with pytest.raises(ValueError, match="needs a producer"):
        Fixture("Countries", target_type=catalog.country)
    with pytest.raises(TypeError, match="no callable 'records'"):
        Fixture("Countries", target_type=catalog.country, source=object())
    with pytest.raises(TypeError, match="must be callable"):
        Fixture("Countries", target_type=catalog.country, producer="records")  # type: ignore[arg-type]


def test_fixtures_hash_by_identity(catalog: Catalog) -> None:
    first = Fixture("Countries", target_type=catalog.country, producer=list)
    second = Fixture("Countries", target_type=catalog.country, producer=list)

    assert first != second
    assert len({first, second}) == 2


def test_fixture_decorator_uses_function_name(catalog: Catalog) -> None:
    @fixture(catalog.country, search_keys=["code"])
    def countries() -> list[dict[str, str]]:
        return [{"code": "NO"}]

    @fixture(catalog.tag, name="Tags")
    def tag_rows() -> list[dict[str, str]]:
        return []

    assert isinstance(countries, Fixture)
    assert countries.name == "countries"
    assert countries.config().search_keys == ("code",)
    assert tag_rows.name == "Tags"


def test_relation_helpers_build_tagged_values(catalog: Catalog) -> None:
    countries = Fixture("Countries", target_type=catalog.country, producer=list)

    assert belongs_to(countries) == Relation(countries)
    assert belongs_to(countries, "code", "NO").lookup == ("code", "NO")
    assert many_to_many(countries).kind is RelationKind.MANY_TO_MANY
    assert assoc(countries, "code", None).lookup == ("code", None)
    assert assoc(countries).kind is RelationKind.AUTO
    with pytest.raises(TypeError, match="needs a value"):
        belongs_to(countries, "code")
    with pytest.raises(TypeError, match="needs a key"):
        belongs_to(countries, None, "NO")


def test_nested_and_lookup_helpers(catalog: Catalog) -> None:
    variants = Fixture("ProductVariants", target_type=catalog.variant, producer=list)

    nested = has_many(variants, foreign_key="product_id", search_keys=["sku"])
    inline = has_many_inline(
        ({"sku": str(index)} for index in range(2)),
        target_type=catalog.variant,
        foreign_key="product_id",
    )

    assert nested == Nested(foreign_key="product_id", fixture=variants, search_keys=("sku",))
    assert inline.records == ({"sku": "0"}, {"sku": "1"})
    assert lookup(catalog.country, "code", "NO") == Lookup(catalog.country, ("code", "NO"))
    assert lookup(catalog.country, {"code": "NO"}, field="name").field == "name"


def test_kit_applies_defaults_and_shares_helpers(catalog: Catalog) -> None:
    kit = FixtureKit(
        defaults={"target_type": catalog.country, "search_keys": ["code"]},
        helpers={"country": lambda code, name: {"code": code, "name": name}},
    )

    @kit.fixture("Countries")
    def countries() -> list[object]:
        return [kit.helpers.country("NO", "Norway"), kit.helpers["country"]("SE", "Sweden")]

    tags = kit.define("Tags", lambda: [{"label": "eco"}], target_type=catalog.tag, search_keys=["label"])

    assert countries.config().search_keys == ("code",)
    assert countries.target_type is catalog.country
    assert countries.producer() == [
        {"code": "NO", "name": "Norway"},
        {"code": "SE", "name": "Sweden"},
    ]
    assert tags.target_type is catalog.tag
    assert tags.config().search_keys == ("label",)


def test_kit_extend_layers_defaults_and_helpers(catalog: Catalog) -> None:
    base = FixtureKit(defaults={"target_type": catalog.country}, helpers={"one": lambda: 1})

    child = base.extend(defaults={"search_keys": ["code"]}, helpers={"two": lambda: 2})

    assert sorted(child.helpers) == ["one", "two"]
    assert child.defaults == {"target_type": catalog.country, "search_keys": ["code"]}
    assert dict(base.defaults) == {"target_type": catalog.country}


def test_kit_callback_name_default_resolves_source_producers(catalog: Catalog) -> None:
    class CountrySource:
        def seed_data(self) -> list[dict[str, str]]:
            return [{"code": "NO"}]

    kit = FixtureKit(defaults={"target_type": catalog.country, "callback_name": "seed_data"})

    countries = kit.define("Countries", source=CountrySource())

    assert countries.producer() == [{"code": "NO"}]
    assert countries.config().callback_name == "seed_data"
    with pytest.raises(ValueError, match="needs a producer or a source object"):
        kit.define("Empty")


def test_kit_rejects_unknown_options_and_missing_type(catalog: Catalog) -> None:
    with pytest.raises(ValueError, match="unknown fixture defaults"):
        FixtureKit(defaults={"prune": True})

    kit = FixtureKit()
    with pytest.raises(ValueError, match="unknown fixture options"):
        kit.define("Countries", list, colour="red")
    with pytest.raises(ValueError, match="no target_type"):
        kit.define("Countries", list)


def test_helper_table_is_read_only_and_validated() -> None:
    table = HelperTable({"double": lambda value: value * 2})

    assert table.double(4) == 8
    assert len(table) == 1
    with pytest.raises(AttributeError, match="no helper named 'triple'"):
        _ = table.triple
    with pytest.raises(ValueError, match="identifier"):
        HelperTable({"not valid": len})
    with pytest.raises(TypeError, match="callable"):
        HelperTable({"value": 3})  # type: ignore[dict-item]
