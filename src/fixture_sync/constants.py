"""Stable constants shared across fixture-sync layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Default callable name invoked on a fixture source object.
DEFAULT_CALLBACK_NAME: Final[str] = "records"

# Default identifier field for entity types that do not declare a primary key.
DEFAULT_PRIMARY_KEY: Final[tuple[str, ...]] = ("id",)

# SQLite busy handling.
DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000

# Default runtime paths (relative to the config file unless overridden).
DEFAULT_CONFIG_FILE: Final[str] = "fixture_sync.toml"
DEFAULT_STORE_PATH: Final[PurePosixPath] = PurePosixPath("state/fixtures.sqlite")
DEFAULT_FIXTURES_PATH: Final[PurePosixPath] = PurePosixPath("fixtures/fixtures.yaml")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Environment variable prefix for config overrides.
ENV_PREFIX: Final[str] = "FIXTURE_SYNC_"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DEFAULT_CALLBACK_NAME",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_FIXTURES_PATH",
    "DEFAULT_LOG_DIR",
    "DEFAULT_PRIMARY_KEY",
    "DEFAULT_STORE_PATH",
    "ENV_PREFIX",
]
