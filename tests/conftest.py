"""Shared pytest fixtures: a small catalog schema and a migrated SQLite store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest

from fixture_sync.fixtures import Fixture
from fixture_sync.persistence import Association, EntityType, FieldSpec, FieldType, SQLiteStore

if TYPE_CHECKING:
    from pathlib import Path


@dataclass(frozen=True, slots=True)
class Catalog:
    country: EntityType
    organization: EntityType
    tag: EntityType
    product: EntityType
    variant: EntityType

    @property
    def types(self) -> tuple[EntityType, ...]:
        return (self.country, self.organization, self.tag, self.product, self.variant)


def make_catalog() -> Catalog:
    country = EntityType(
        "Country",
        [FieldSpec("code", required=True), "name"],
        table="countries",
    )
    organization = EntityType(
        "Organization",
        [FieldSpec("slug", required=True), "name"],
        table="organizations",
        associations=[Association.belongs_to("country", "Country")],
    )
    tag = EntityType("Tag", [FieldSpec("label", required=True)], table="tags")
    product = EntityType(
        "Product",
        [
            FieldSpec("sku", required=True),
            "name",
            FieldSpec("price", FieldType.INTEGER),
            FieldSpec("active", FieldType.BOOLEAN, default=True),
        ],
        table="products",
        associations=[
            Association.belongs_to("organization", "Organization"),
            Association.has_many("variants", "ProductVariant", foreign_key="product_id"),
            Association.many_to_many(
                "tags",
                "Tag",
                join_table="product_tags",
                owner_key="product_id",
                related_key="tag_id",
            ),
        ],
    )
    variant = EntityType(
        "ProductVariant",
        [FieldSpec("sku", required=True), "color"],
        table="product_variants",
        associations=[Association.belongs_to("product", "Product")],
    )
    return Catalog(country, organization, tag, product, variant)


@pytest.fixture()
def catalog() -> Catalog:
    return make_catalog()


@pytest.fixture()
def store(tmp_path: Path, catalog: Catalog) -> SQLiteStore:
    db = SQLiteStore(tmp_path / "state" / "fixtures.sqlite", catalog.types)
    db.migrate()
    return db


@pytest.fixture()
def countries(catalog: Catalog) -> Fixture:
    return Fixture(
        "Countries",
        target_type=catalog.country,
        search_keys=["code"],
        producer=lambda: [
            {"code": "NO", "name": "Norway"},
            {"code": "SE", "name": "Sweden"},
        ],
    )
