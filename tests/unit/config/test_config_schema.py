"""Unit tests for config.schema validation."""

from __future__ import annotations

import pytest

from fixture_sync.config import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    validate_config,
)


def test_defaults_are_valid_and_deep_copied() -> None:
    first = default_config()
    first["store"]["busy_timeout_ms"] = 1

    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["store"]["busy_timeout_ms"] == 5000
    assert result.config["sync"] == {"prune": False, "fixtures_path": "fixtures/fixtures.yaml"}
    assert result.config["observability"]["log_format"] == "json"


def test_unknown_and_missing_fields_are_reported_with_paths() -> None:
    config = default_config()
    config["store"]["pth"] = "typo.sqlite"  # type: ignore[typeddict-unknown-key]
    del config["sync"]["prune"]  # type: ignore[misc]
    payload = merge_config(config, {"extra": {"x": 1}})

    result = validate_config(payload)

    assert not result.is_valid
    rendered = {(issue.path, issue.message) for issue in result.issues}
    assert ("extra", "unknown field") in rendered
    assert ("store.pth", "unknown field") in rendered
    assert ("sync.prune", "missing required field") in rendered


def test_type_errors_are_collected_not_short_circuited() -> None:
    payload = merge_config(
        default_config(),
        {
            "store": {"busy_timeout_ms": -5},
            "sync": {"prune": "yes"},
            "observability": {"log_level": "LOUD", "log_format": "xml", "log_dir": "  "},
        },
    )

    with pytest.raises(ConfigValidationError) as exc_info:
        assert_valid_config(payload)

    paths = [issue.path for issue in exc_info.value.issues]
    assert paths == [
        "store.busy_timeout_ms",
        "sync.prune",
        "observability.log_level",
        "observability.log_format",
        "observability.log_dir",
    ]
    assert "expected one of: DEBUG, ERROR, INFO, WARNING" in str(exc_info.value)


def test_schema_version_mismatch_carries_migration_guidance() -> None:
    payload = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    result = validate_config(payload)

    assert result.issues[0].path == "meta.schema_version"
    assert "upgrade the fixture-sync runtime" in result.issues[0].message
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


def test_non_mapping_root_is_rejected() -> None:
    result = validate_config(["not", "a", "mapping"])

    assert result.config is None
    assert result.issues[0].path == "<root>"


def test_merge_config_is_deep_and_non_mutating() -> None:
    base = {"store": {"path": "a.sqlite", "busy_timeout_ms": 10}}

    merged = merge_config(base, {"store": {"path": "b.sqlite"}})

    assert merged == {"store": {"path": "b.sqlite", "busy_timeout_ms": 10}}
    assert base["store"]["path"] == "a.sqlite"
