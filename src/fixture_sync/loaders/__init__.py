"""Fixture document loaders."""

from fixture_sync.loaders.yaml_fixtures import (
    FixtureDocument,
    FixtureLoadError,
    load_fixture_document,
    parse_fixture_document,
)

__all__ = [
    "FixtureDocument",
    "FixtureLoadError",
    "load_fixture_document",
    "parse_fixture_document",
]
