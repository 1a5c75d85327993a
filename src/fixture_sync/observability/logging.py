"""
Structured logging for fixture-sync.

Records from the ``fixture_sync`` logger hierarchy go through a bounded
queue to a background listener that writes them to a JSON-lines (or text)
file and, optionally, stderr. ``correlation_scope`` binds fields such as
the fixture name to every record logged inside it.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import sys
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final, cast

from fixture_sync.constants import DEFAULT_LOG_DIR

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_DEFAULT_LOG_FILENAME: Final[str] = "fixture_sync.jsonl"
_DEFAULT_LOGGER_NAME: Final[str] = "fixture_sync"
_DEFAULT_QUEUE_SIZE: Final[int] = 4096

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
    "correlation",
}

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "fixture_sync_correlation", default=()
)


class LogFormat(StrEnum):
    JSON = "json"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed logging of one process."""

    log_dir: Path | str | None = Path(DEFAULT_LOG_DIR)
    logger_name: str = _DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_format: LogFormat | str = LogFormat.JSON
    log_filename: str = _DEFAULT_LOG_FILENAME
    log_to_stderr: bool = False
    queue_size: int = _DEFAULT_QUEUE_SIZE

    def validated(self) -> tuple[int, LogFormat]:
        """Check the settings and return the parsed level and format."""
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        if not self.log_filename or Path(self.log_filename).name != self.log_filename:
            raise ValueError("log_filename must be a bare file name")
        return _parse_level(self.level), LogFormat(self.log_format)


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
    logger_name: str = _DEFAULT_LOGGER_NAME,
) -> LoggingHandle:
    """Configure logging from an ``[observability]`` config section."""

    section = dict(observability_config or {})
    level = section.get("log_level", "INFO")
    directory = log_dir if log_dir is not None else section.get("log_dir", DEFAULT_LOG_DIR)

    return setup_structured_logging(
        LoggingConfig(
            log_dir=directory if isinstance(directory, (Path, str)) else None,
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_format=str(section.get("log_format", LogFormat.JSON)),
            log_to_stderr=bool(section.get("log_to_stderr", False)),
        )
    )


class _ContextQueueHandler(logging.handlers.QueueHandler):
    """Copies the caller's correlation fields onto the record; drops on overflow."""

    def __init__(self, log_queue: queue.Queue[object]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see the caller's contextvars.
        bound = get_correlation_context()
        if bound:
            record.correlation = bound
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class _EventFormatter(logging.Formatter):
    def event(self, record: logging.LogRecord) -> tuple[dict[str, str], dict[str, JSONValue]]:
        """Return ``(correlation, extra fields)`` for ``record``."""
        carried = getattr(record, "correlation", None)
        correlation = dict(carried) if isinstance(carried, Mapping) else {}
        extras = {
            key: to_json_value(value)
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        return correlation, extras


class _JsonLineFormatter(_EventFormatter):
    def format(self, record: logging.LogRecord) -> str:
        correlation, extras = self.event(record)
        payload: dict[str, JSONValue] = {
            "timestamp": _utc_stamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **correlation,
        }
        if extras:
            payload["fields"] = extras
        if record.exc_info is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _TextFormatter(_EventFormatter):
    """``<time> <LEVEL> <logger> <message> key=value ...`` on one line."""

    def format(self, record: logging.LogRecord) -> str:
        correlation, extras = self.event(record)
        pairs = sorted({**correlation, **extras}.items())
        suffix = [
            f"{key}={value if isinstance(value, str) else json.dumps(value, sort_keys=True)}"
            for key, value in pairs
        ]
        line = " ".join(
            [_utc_stamp(record.created), record.levelname, record.name, record.getMessage(), *suffix]
        )
        if record.exc_info is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


class LoggingHandle:
    """An active logging setup; ``shutdown`` drains the queue and closes sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path | None,
        queue_handler: _ContextQueueHandler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        pending = cast("queue.Queue[object]", self._queue_handler.queue)
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while pending.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


class _ActiveHandle:
    """Process-wide slot for the current handle."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: LoggingHandle | None = None
        self._hooked = False

    def get(self) -> LoggingHandle | None:
        with self._lock:
            return self._handle

    def replace(self, handle: LoggingHandle | None) -> LoggingHandle | None:
        with self._lock:
            previous, self._handle = self._handle, handle
            if handle is not None and not self._hooked:
                atexit.register(shutdown_logging)
                self._hooked = True
            return previous

    def clear_if(self, handle: LoggingHandle) -> None:
        with self._lock:
            if self._handle is handle:
                self._handle = None


_ACTIVE = _ActiveHandle()


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Route the ``config.logger_name`` hierarchy through a queue to file/stderr sinks."""
    previous = _ACTIVE.replace(None)
    if previous is not None:
        previous.shutdown()

    level, log_format = config.validated()
    formatter = _JsonLineFormatter() if log_format is LogFormat.JSON else _TextFormatter()

    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_dir is not None:
        log_path = Path(config.log_dir) / config.log_filename
        log_path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    if not sinks:
        sinks.append(logging.NullHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    queue_handler = _ContextQueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = LoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        listener=listener,
    )
    _ACTIVE.replace(handle)
    return handle


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Stop the listener and close all sinks of ``handle`` or the active handle."""
    target = handle if handle is not None else _ACTIVE.get()
    if target is None:
        return
    target.shutdown()
    _ACTIVE.clear_if(target)


def get_active_logging_handle() -> LoggingHandle | None:
    return _ACTIVE.get()


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged in scope.

    Nested scopes extend the outer one; ``None`` removes a field.
    """
    bound = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
        elif isinstance(value, str) and value.strip():
            bound[key] = value.strip()
        else:
            raise ValueError(f"correlation value for {key!r} must be a non-empty string")
    token = _CORRELATION.set(tuple(bound.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def to_json_value(value: object) -> JSONValue:
    """Coerce a log ``extra`` value into something ``json.dumps`` accepts."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((to_json_value(item) for item in value), key=repr)
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    return repr(value)


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return level


def _utc_stamp(epoch_seconds: float) -> str:
    stamp = datetime.fromtimestamp(epoch_seconds, tz=UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


__all__ = [
    "JSONScalar",
    "JSONValue",
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
