"""Unit tests for loaders.yaml_fixtures."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import pytest

from fixture_sync.domain.models import AssociationKind, Lookup, Nested, Relation, RelationKind
from fixture_sync.loaders import FixtureLoadError, load_fixture_document, parse_fixture_document
from fixture_sync.persistence import FieldType

if TYPE_CHECKING:
    from pathlib import Path

CATALOG_YAML = textwrap.dedent(
    """
    types:
      Country:
        table: countries
        fields:
          code: {required: true}
          name: text
      Organization:
        fields: [slug, name]
        associations:
          country: {kind: belongs_to, target: Country}
      Tag:
        fields: {label: {type: text, required: true}}
      Product:
        fields:
          sku: {required: true}
          price: integer
          active: {type: boolean, default: true}
        associations:
          organization: {kind: belongs_to, target: Organization}
          variants: {kind: has_many, target: ProductVariant, foreign_key: product_id}
          tags:
            kind: many_to_many
            target: Tag
            join_table: product_tags
            owner_key: product_id
            related_key: tag_id
      ProductVariant:
        fields: [sku, color]
        associations:
          product: {kind: belongs_to, target: Product}
    fixtures:
      Products:
        type: Product
        search_keys: [sku]
        records:
          - sku: p-1
            organization: !belongs_to Organizations
            tags: [!many_to_many [Tags, label, eco], !many_to_many [Tags, label, sale]]
            variants: !has_many {fixture: ProductVariants, foreign_key: product_id, search_keys: [sku]}
          - sku: p-2
            organization: !assoc [Organizations]
            variants: !has_many_inline
              type: ProductVariant
              foreign_key: product_id
              search_keys: [product_id, sku]
              records: [{sku: p-2-s}]
      Countries:
        type: Country
        search_keys: code
        records:
          - {code: "NO", name: Norway}
          - {code: SE, name: Sweden}
      Organizations:
        type: Organization
        search_keys: [slug]
        records:
          slug: acme
          country: !belongs_to [Countries, code, "NO"]
      Tags:
        type: Tag
        search_keys: [label]
        records: [{label: eco}, {label: sale}]
      ProductVariants:
        type: ProductVariant
        records:
          - {sku: red, color: red}
      Audits:
        type: Organization
        search_keys: [slug]
        records:
          - slug: audit
            country_id: !lookup [Country, code, SE]
            name: !lookup
              type: Country
              match: {code: !lookup {type: Country, match: {name: Sweden}, field: code}}
              field: name
    """
)


def test_entity_types_are_built_from_declarations() -> None:
    document = parse_fixture_document(CATALOG_YAML)

    country = document.entity_types["Country"]
    product = document.entity_types["Product"]
    organization = document.entity_types["Organization"]

    assert country.table == "countries"
    assert country.fields["code"].required
    assert organization.table == "organization"
    assert organization.has_field("country_id")
    assert product.fields["price"].type is FieldType.INTEGER
    assert product.fields["active"].default is True
    assert product.association_kind("variants") is AssociationKind.HAS_MANY
    assert product.association_kind("tags") is AssociationKind.MANY_TO_MANY
    assert product.foreign_key_field("variants") == "product_id"


def test_fixtures_keep_declaration_order_and_options() -> None:
    document = parse_fixture_document(CATALOG_YAML, source="catalog.yaml")

    assert list(document.fixtures) == [
        "Products",
        "Countries",
        "Organizations",
        "Tags",
        "ProductVariants",
        "Audits",
    ]
    assert document.source == "catalog.yaml"
    assert document.fixtures["Countries"].config().search_keys == ("code",)
    assert document.fixtures["ProductVariants"].config().search_keys == ("id",)
    assert document.fixtures["Countries"].producer() == [
        {"code": "NO", "name": "Norway"},
        {"code": "SE", "name": "Sweden"},
    ]


def test_tags_materialize_into_reference_values() -> None:
    document = parse_fixture_document(CATALOG_YAML)
    fixtures = document.fixtures

    first, second = fixtures["Products"].producer()  # type: ignore[misc]
    organization = fixtures["Organizations"].producer()

    assert first["organization"] == Relation(fixtures["Organizations"], None, RelationKind.BELONGS_TO)
    assert first["tags"] == [
        Relation(fixtures["Tags"], ("label", "eco"), RelationKind.MANY_TO_MANY),
        Relation(fixtures["Tags"], ("label", "sale"), RelationKind.MANY_TO_MANY),
    ]
    assert first["variants"] == Nested(
        foreign_key="product_id", fixture=fixtures["ProductVariants"], search_keys=("sku",)
    )
    assert second["organization"].kind is RelationKind.AUTO
    assert second["variants"].is_inline
    assert second["variants"].target_type is document.entity_types["ProductVariant"]
    assert second["variants"].records == ({"sku": "p-2-s"},)
    assert organization["country"].lookup == ("code", "NO")


def test_lookup_tags_support_pairs_mappings_and_nesting() -> None:
    document = parse_fixture_document(CATALOG_YAML)
    country = document.entity_types["Country"]

    (audit,) = document.fixtures["Audits"].producer()  # type: ignore[misc]

    assert audit["country_id"] == Lookup(country, ("code", "SE"))
    outer = audit["name"]
    assert isinstance(outer, Lookup)
    assert outer.field == "name"
    assert outer.match == {"code": Lookup(country, {"name": "Sweden"}, "code")}


def test_select_returns_named_fixtures_or_fails(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text(CATALOG_YAML, encoding="utf-8")
    document = load_fixture_document(path)

    assert [item.name for item in document.select(["Tags", "Countries"])] == ["Tags", "Countries"]
    assert len(document.select()) == 6
    with pytest.raises(FixtureLoadError, match="unknown fixture 'Nope'"):
        document.select(["Nope"])


def test_unknown_references_are_reported_eagerly() -> None:
    text = textwrap.dedent(
        """
        types:
          Country: {fields: [code]}
        fixtures:
          Countries:
            type: Country
            records: [{code: "NO", parent: !belongs_to Missing}]
          Others:
            type: Country
            records: [{code: SE, lookup: !lookup [Planet, code, X]}]
        """
    )

    with pytest.raises(FixtureLoadError) as exc_info:
        parse_fixture_document(text)

    assert exc_info.value.errors == (
        "fixture 'Countries': unknown fixture reference 'Missing'",
        "fixture 'Others': unknown entity type 'Planet'",
    )


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ("- not a mapping", "must contain a mapping"),
        ("types: {}\nfixtures: {}\nextra: 1", "unknown top-level key 'extra'"),
        ("types: {Country: {fields: [code], colour: red}}", "types.Country: unknown keys ['colour']"),
        (
            "types: {A: {associations: {b: {kind: owns, target: A}}}}",
            "unknown kind 'owns'",
        ),
        (
            "types: {A: {associations: {b: {kind: belongs_to, target: B}}}}",
            "unknown target 'B'",
        ),
        ("types: {A: {}}\nfixtures: {F: {type: B}}", "fixtures.F: unknown entity type 'B'"),
        ("types: {A: {}}\nfixtures: {F: {type: A, records: 3}}", "fixtures.F.records"),
        ("types: {A: {}}\nfixtures: {F: {type: A, records: [{x: !has_many [F]}]}}", "!has_many expects"),
        ("types: {A: {}}\nfixtures: {F: {type: A, records: [{x: !lookup [A]}]}}", "!lookup expects"),
        ("types: {A: {}}\nfixtures: {F: {type: A, records: [{x: !belongs_to [F, k]}]}}", "!belongs_to expects"),
        ("types: [", "invalid YAML"),
    ],
)
def test_malformed_documents_raise_fixture_load_error(body: str, expected: str) -> None:
    with pytest.raises(FixtureLoadError) as exc_info:
        parse_fixture_document(body)

    assert expected in str(exc_info.value)


def test_unreadable_file_is_a_load_error(tmp_path: Path) -> None:
    with pytest.raises(FixtureLoadError, match="failed to read"):
        load_fixture_document(tmp_path / "absent.yaml")
