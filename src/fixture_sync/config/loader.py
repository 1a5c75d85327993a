"""
fixture-sync runtime config loader.

The effective config is built from four layers applied in order: built-in
defaults, ``fixture_sync.toml``, ``FIXTURE_SYNC_*`` environment variables
and CLI overrides. Later layers win. The merged result is validated once the
file is applied and again after the overrides, and relative paths are
anchored at the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from fixture_sync.config.schema import (
    FIELD_RULES,
    PATH_FIELDS,
    FieldRule,
    ValueKind,
    assert_valid_config,
    default_config,
    merge_config,
)
from fixture_sync.constants import DEFAULT_CONFIG_FILE, ENV_PREFIX

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


@dataclass(slots=True)
class _Layer:
    """Partial config contributed by one source."""

    source: str
    values: dict[str, Any] = field(default_factory=dict)

    def put(self, path: tuple[str, ...], value: object) -> None:
        *parents, leaf = path
        node = self.values
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config (CLI > env > file > defaults).

    A missing default ``fixture_sync.toml`` is not an error; an explicitly
    requested path must exist. CLI override keys are dotted paths such as
    ``"store.path"``; ``None`` values are skipped.
    """

    if config_path is None:
        location = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        location = Path(config_path).expanduser().resolve()

    from_file = _read_toml(location, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), from_file.values))

    env = os.environ if environ is None else environ
    for layer in (_env_layer(env), _cli_layer(cli_overrides or {})):
        config = merge_config(config, layer.values)
    config = assert_valid_config(config)

    return normalize_paths(config, base_dir=location.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Anchor relative path settings at ``base_dir`` and normalize them."""

    anchored = merge_config({}, config)
    for section, name in PATH_FIELDS:
        values = anchored.get(section)
        if isinstance(values, dict) and isinstance(values.get(name), str):
            values[name] = _anchor(values[name], base_dir)
    return anchored


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def env_var_name(rule: FieldRule) -> str:
    """``store.busy_timeout_ms`` -> ``FIXTURE_SYNC_STORE_BUSY_TIMEOUT_MS``."""
    return f"{ENV_PREFIX}{rule.section.upper()}_{rule.name.upper()}"


def _read_toml(path: Path, *, required: bool) -> _Layer:
    layer = _Layer(source=str(path))
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return layer

    try:
        with path.open("rb") as handle:
            layer.values = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    return layer


def _env_layer(environ: Mapping[str, str]) -> _Layer:
    layer = _Layer(source="environment")
    for rule, name in _env_bindings():
        raw = environ.get(name)
        if raw is not None:
            layer.put(rule.path, _coerce(rule, raw.strip(), name))
    return layer


def _env_bindings() -> Iterator[tuple[FieldRule, str]]:
    for rule in FIELD_RULES:
        if rule.from_env:
            yield rule, env_var_name(rule)


def _coerce(rule: FieldRule, text: str, env_name: str) -> object:
    if rule.kind is ValueKind.INTEGER:
        try:
            return int(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {rule.dotted} must be an integer") from exc
    if rule.kind is ValueKind.BOOLEAN:
        lowered = text.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigLoadError(
            f"{env_name} -> {rule.dotted} must be a boolean (true/false/1/0/yes/no/on/off)"
        )
    return text


def _cli_layer(overrides: Mapping[str, object]) -> _Layer:
    layer = _Layer(source="cli")
    for key in sorted(overrides):
        value = overrides[key]
        if value is None:
            continue
        path = tuple(part for part in key.split(".") if part)
        if len(path) < 2:
            raise ConfigLoadError(f"invalid CLI override key {key!r}; expected section.field")
        layer.put(path, value)
    return layer


def _anchor(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "dump_effective_config",
    "env_var_name",
    "load_config",
    "normalize_paths",
]
