"""Command-line interface router for fixture-sync."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fixture_sync.config import load_config
from fixture_sync.domain.errors import CycleError
from fixture_sync.domain.models import BatchResult
from fixture_sync.loaders import FixtureDocument, load_fixture_document
from fixture_sync.observability import setup_logging, shutdown_logging, to_json_value
from fixture_sync.persistence import SQLiteStore
from fixture_sync.planning import DependencyGraph
from fixture_sync.sync import sync_all

EXIT_SYNC_FAILED = 1
EXIT_CYCLE = 3


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="fixture-sync",
        description=(
            "fixture-sync: sync declarative fixtures into a store in dependency order.\n\n"
            "Common workflows:\n"
            "  fixture-sync order fixtures.yaml     Show the computed sync order\n"
            "  fixture-sync sync fixtures.yaml      Sync every fixture in the document\n"
            "  fixture-sync config --json           Print the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to fixture_sync.toml (default: ./fixture_sync.toml if present).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    order_parser = subparsers.add_parser(
        "order",
        parents=[common],
        help="Print the dependency-respecting sync order",
    )
    order_parser.add_argument(
        "fixtures_path",
        nargs="?",
        default=None,
        help="Fixture document (default: sync.fixtures_path from config)",
    )
    order_parser.set_defaults(handler=_cmd_order)

    sync_parser = subparsers.add_parser(
        "sync",
        parents=[common],
        help="Sync fixtures into the SQLite store",
    )
    sync_parser.add_argument(
        "fixtures_path",
        nargs="?",
        default=None,
        help="Fixture document (default: sync.fixtures_path from config)",
    )
    sync_parser.add_argument(
        "--only",
        nargs="+",
        default=None,
        metavar="NAME",
        help="Restrict the batch to the named fixtures",
    )
    sync_parser.add_argument(
        "--prune",
        action="store_true",
        default=None,
        help="Delete rows each fixture no longer produces",
    )
    sync_parser.add_argument("--db", default=None, help="SQLite database path override")
    sync_parser.set_defaults(handler=_cmd_sync)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def _cmd_order(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    document = _load_document(config)
    graph = DependencyGraph(document.select())

    try:
        order = graph.topological_order()
    except CycleError as exc:
        payload: dict[str, object] = {
            "command": "order",
            "cycle": list(exc.names),
            "paths": [list(path) for path in exc.cycles],
        }
        if args.json:
            _emit_json(payload)
        else:
            print(f"error: {exc}", file=sys.stderr)
        return EXIT_CYCLE

    if args.json:
        _emit_json({"command": "order", "order": [item.name for item in order], **graph.serialize()})
        return 0
    for index, item in enumerate(order, start=1):
        depends = ", ".join(dep.name for dep in graph.dependencies_of(item)) or "-"
        print(f"{index:>3}. {item.name}  (after: {depends})")
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        {"store.path": args.db, "sync.prune": args.prune},
    )
    document = _load_document(config)
    fixtures = document.select(args.only)

    handle = setup_logging(config["observability"])
    try:
        store = SQLiteStore(
            config["store"]["path"],
            document.entity_types.values(),
            busy_timeout_ms=config["store"]["busy_timeout_ms"],
        )
        store.migrate()
        batch = sync_all(fixtures, store, prune=config["sync"]["prune"])
    finally:
        shutdown_logging(handle)

    payload = _batch_payload(batch)
    if args.json:
        _emit_json(payload)
    else:
        _print_batch(batch)

    if isinstance(batch.error, CycleError):
        return EXIT_CYCLE
    if batch.error is not None:
        return EXIT_SYNC_FAILED
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.json:
        _emit_json({"command": "config", "config": config})
        return 0
    print(json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    cli_overrides: dict[str, object] = dict(overrides or {})
    if getattr(args, "fixtures_path", None) is not None:
        cli_overrides["sync.fixtures_path"] = str(Path(args.fixtures_path).resolve())
    if cli_overrides.get("store.path") is not None:
        cli_overrides["store.path"] = str(Path(str(cli_overrides["store.path"])).resolve())
    return load_config(args.config_path, cli_overrides=cli_overrides)


def _load_document(config: Mapping[str, Any]) -> FixtureDocument:
    document = load_fixture_document(config["sync"]["fixtures_path"])
    if not document.fixtures:
        raise CLIError(f"{document.source} defines no fixtures", exit_code=2)
    return document


def _batch_payload(batch: BatchResult) -> dict[str, object]:
    results: dict[str, object] = {}
    for item, result in batch.results.items():
        results[item.name] = {
            "synced": [to_json_value(entity.identifier) for entity in result.synced],
            "deleted": (
                None
                if result.deleted is None
                else [to_json_value(entity.identifier) for entity in result.deleted]
            ),
        }
    error: dict[str, object] | None = None
    if batch.error is not None:
        error = {"type": type(batch.error).__name__, "message": str(batch.error)}
    return {
        "command": "sync",
        "order": [item.name for item in batch.order],
        "results": results,
        "error": error,
    }


def _print_batch(batch: BatchResult) -> None:
    for item, result in batch.results.items():
        line = f"{item.name}: synced {len(result.synced)}"
        if result.deleted is not None:
            line = f"{line}, deleted {len(result.deleted)}"
        print(line)
    if batch.error is not None:
        print(f"error: {batch.error}", file=sys.stderr)


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "run_cli"]
