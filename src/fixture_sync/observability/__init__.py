"""Public observability primitives: structured logging and correlation scopes."""

from fixture_sync.observability.logging import (
    LogFormat,
    LoggingConfig,
    LoggingHandle,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
    to_json_value,
)

__all__ = [
    "LogFormat",
    "LoggingConfig",
    "LoggingHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
    "to_json_value",
]
