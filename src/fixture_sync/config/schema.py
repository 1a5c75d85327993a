"""
fixture-sync configuration schema and validation.

Purpose
- Declare every supported setting once (``FIELD_RULES``) with its section,
  value kind, default and constraints. Validation, environment bindings and
  path normalization are all derived from that table.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown fields so typos in ``fixture_sync.toml`` fail loudly.
- Collect every issue in one pass instead of stopping at the first.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Final, Literal, TypedDict

from fixture_sync.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_BUSY_TIMEOUT_MS,
    DEFAULT_FIXTURES_PATH,
    DEFAULT_LOG_DIR,
    DEFAULT_STORE_PATH,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION


class ValueKind(StrEnum):
    TEXT = "str"
    PATH = "path"
    INTEGER = "int"
    BOOLEAN = "bool"
    CHOICE = "choice"


@dataclass(frozen=True, slots=True)
class FieldRule:
    """One setting: where it lives, what it holds and how it is checked."""

    section: str
    name: str
    kind: ValueKind
    default: object
    choices: tuple[str, ...] = ()
    minimum: int | None = None
    from_env: bool = True

    @property
    def path(self) -> tuple[str, str]:
        return (self.section, self.name)

    @property
    def dotted(self) -> str:
        return f"{self.section}.{self.name}"


FIELD_RULES: Final[tuple[FieldRule, ...]] = (
    FieldRule("meta", "schema_version", ValueKind.INTEGER, ConfigSchemaVersion, minimum=1, from_env=False),
    FieldRule("store", "path", ValueKind.PATH, DEFAULT_STORE_PATH.as_posix()),
    FieldRule("store", "busy_timeout_ms", ValueKind.INTEGER, DEFAULT_BUSY_TIMEOUT_MS, minimum=0),
    FieldRule("sync", "prune", ValueKind.BOOLEAN, False),
    FieldRule("sync", "fixtures_path", ValueKind.PATH, DEFAULT_FIXTURES_PATH.as_posix()),
    FieldRule(
        "observability",
        "log_level",
        ValueKind.CHOICE,
        "INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
    ),
    FieldRule("observability", "log_format", ValueKind.CHOICE, "json", choices=("json", "text")),
    FieldRule("observability", "log_dir", ValueKind.PATH, DEFAULT_LOG_DIR.as_posix()),
    FieldRule("observability", "log_to_stderr", ValueKind.BOOLEAN, False),
)

SECTIONS: Final[tuple[str, ...]] = tuple(dict.fromkeys(rule.section for rule in FIELD_RULES))

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = tuple(
    rule.path for rule in FIELD_RULES if rule.kind is ValueKind.PATH
)


class MetaConfig(TypedDict):
    schema_version: int


class StoreConfig(TypedDict):
    path: str
    busy_timeout_ms: int


class SyncConfig(TypedDict):
    prune: bool
    fixtures_path: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_dir: str
    log_to_stderr: bool


class FixtureSyncConfig(TypedDict):
    meta: MetaConfig
    store: StoreConfig
    sync: SyncConfig
    observability: ObservabilityConfig


def _build_defaults() -> FixtureSyncConfig:
    payload: dict[str, dict[str, object]] = {section: {} for section in SECTIONS}
    for rule in FIELD_RULES:
        payload[rule.section][rule.name] = rule.default
    return payload  # type: ignore[return-value]


DEFAULT_CONFIG: Final[FixtureSyncConfig] = _build_defaults()


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {item.path}: {item.message}" for item in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


def default_config() -> FixtureSyncConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def rule_for(dotted: str) -> FieldRule | None:
    for rule in FIELD_RULES:
        if rule.dotted == dotted:
            return rule
    return None


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade fixture_sync.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the fixture-sync runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; mappings merge, everything else replaces."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    stack: list[tuple[dict[str, Any], Mapping[str, object]]] = [(merged, overlay)]
    while stack:
        target, source = stack.pop()
        for key in sorted(source):
            value = source[key]
            if isinstance(value, Mapping):
                child = target.get(key)
                if not isinstance(child, dict):
                    child = target[key] = {}
                stack.append((child, value))
            else:
                target[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete config and return structured issues."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=issues.items())

    for key in sorted(config, key=str):
        if key not in SECTIONS:
            issues.add(str(key), "unknown field")

    normalized: dict[str, Any] = {}
    for section in SECTIONS:
        if section not in config:
            issues.add(section, "missing required field")
            continue
        payload = config[section]
        if not isinstance(payload, Mapping):
            issues.add(section, f"expected object, got {type(payload).__name__}")
            continue
        normalized[section] = _validate_section(section, payload, issues)

    if issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_section(
    section: str, payload: Mapping[str, object], issues: _IssueCollector
) -> dict[str, Any]:
    rules = [rule for rule in FIELD_RULES if rule.section == section]
    known = {rule.name for rule in rules}
    for key in sorted(payload, key=str):
        if key not in known:
            issues.add(f"{section}.{key}", "unknown field")

    out: dict[str, Any] = {}
    for rule in rules:
        if rule.name not in payload:
            issues.add(rule.dotted, "missing required field")
            continue
        message, value = _check(rule, payload[rule.name])
        if message is not None:
            issues.add(rule.dotted, message)
        else:
            out[rule.name] = value

    version = out.get("schema_version")
    if section == "meta" and version is not None and version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(version))
    return out


def _check(rule: FieldRule, value: object) -> tuple[str | None, object]:
    """Return ``(message, None)`` on failure or ``(None, normalized)``."""
    if rule.kind is ValueKind.BOOLEAN:
        if isinstance(value, bool):
            return None, value
        return f"expected boolean, got {type(value).__name__}", None

    if rule.kind is ValueKind.INTEGER:
        if isinstance(value, bool) or not isinstance(value, int):
            return f"expected integer, got {type(value).__name__}", None
        if rule.minimum is not None and value < rule.minimum:
            return f"must be >= {rule.minimum}", None
        return None, value

    if not isinstance(value, str):
        return f"expected string, got {type(value).__name__}", None
    text = value.strip()
    if not text:
        return "must not be empty", None
    if rule.kind is ValueKind.PATH and "\x00" in text:
        return "must not contain NUL bytes", None
    if rule.kind is ValueKind.CHOICE and text not in rule.choices:
        expected = ", ".join(sorted(rule.choices))
        return f"invalid value {text!r}; expected one of: {expected}", None
    return None, text


__all__ = [
    "FIELD_RULES",
    "PATH_FIELDS",
    "SECTIONS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "FieldRule",
    "FixtureSyncConfig",
    "ObservabilityConfig",
    "StoreConfig",
    "SyncConfig",
    "ValueKind",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "rule_for",
    "validate_config",
]
