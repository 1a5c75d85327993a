"""
Fixture sync orchestration.

Purpose
- Apply one fixture's records to a store: resolve, upsert by search keys,
  run deferred child syncs with the parent identifier injected, and
  optionally prune rows the fixture no longer produces.
- Run a batch of fixtures in dependency order (``sync_all``).

Failure model
- Resolution and store failures are ``FixtureSyncError`` subclasses. They
  propagate unchanged while a sync is in flight and are returned inside
  ``SyncResult``/``BatchResult`` at the public boundary.
- Writes made before a failure stay in place; wrap the call in
  ``SQLiteStore.transaction()`` for all-or-nothing behavior.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from fixture_sync.domain.errors import CycleError, FixtureSyncError, SyncFailure
from fixture_sync.domain.models import (
    BatchResult,
    Entity,
    FixtureConfig,
    Nested,
    SyncResult,
    as_record_list,
    canonicalize_record,
)
from fixture_sync.fixtures import Fixture
from fixture_sync.observability.logging import correlation_scope
from fixture_sync.persistence.contracts import IdentifierNotIn, StoreAdapter
from fixture_sync.planning.dependency_graph import build_order
from fixture_sync.sync.resolver import RecordResolver

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Sync fixtures into one store."""

    def __init__(self, store: StoreAdapter) -> None:
        self._store = store
        self._resolver = RecordResolver(store, self.run)

    @property
    def store(self) -> StoreAdapter:
        return self._store

    def sync(self, fixture: Fixture, *, prune: bool = False) -> SyncResult:
        """Sync ``fixture`` and report the outcome as a value."""
        with correlation_scope(fixture=fixture.name):
            logger.info("fixture sync started", extra={"prune": prune})
            try:
                synced = self.run(fixture)
                deleted = self._prune(fixture.config(), synced) if prune else None
            except FixtureSyncError as exc:
                logger.warning(
                    "fixture sync failed",
                    extra={"error_type": type(exc).__name__, "error": str(exc)},
                )
                return SyncResult(error=exc)

            logger.info(
                "fixture sync finished",
                extra={
                    "synced": len(synced),
                    "deleted": None if deleted is None else len(deleted),
                },
            )
            return SyncResult(
                synced=tuple(synced),
                deleted=None if deleted is None else tuple(deleted),
            )

    def run(self, fixture: Fixture) -> list[Entity]:
        """Sync ``fixture`` and return its top-level entities; raises on failure."""
        return self.sync_records(fixture.config(), fixture.producer())

    def sync_records(self, config: FixtureConfig, raw: object) -> list[Entity]:
        """Sync already-produced records under ``config`` in producer order."""
        return [self._sync_record(config, item) for item in as_record_list(raw)]

    def _sync_record(self, config: FixtureConfig, raw: object) -> Entity:
        record = canonicalize_record(raw)
        resolved = self._resolver.resolve(config.target_type, record)
        entity = self._upsert(config, resolved.attrs)
        for name, nested in resolved.deferred:
            entity.associations[name] = self._sync_nested(entity, name, nested)
        return entity

    def _upsert(self, config: FixtureConfig, attrs: Mapping[str, object]) -> Entity:
        target_type = config.target_type
        criteria = {key: attrs[key] for key in config.search_keys if key in attrs}
        existing = self._store.find_by(target_type, criteria) if criteria else None

        if existing is None:
            primary_key = target_type.primary_key_fields()
            entity = Entity.draft(
                target_type, {key: attrs[key] for key in primary_key if key in attrs}
            )
        else:
            replaced = [
                name
                for name in target_type.declared_associations()
                if isinstance(attrs.get(name), list)
            ]
            entity = self._store.preload(existing, replaced) if replaced else existing

        saved = self._store.upsert(entity, attrs)
        logger.debug(
            "record upserted",
            extra={
                "entity_type": target_type.name,
                "action": "update" if existing is not None else "insert",
                "identifier": saved.identifier,
            },
        )
        return saved

    def _sync_nested(self, parent: Entity, name: str, nested: Nested) -> list[Entity]:
        if nested.fixture is not None:
            config = nested.fixture.config().with_search_keys(nested.search_keys)
            raw = nested.fixture.producer()
        elif nested.target_type is not None:
            config = FixtureConfig.for_type(nested.target_type, nested.search_keys)
            raw = nested.records
        else:
            raise TypeError(f"nested field {name!r} has neither a fixture nor a target_type")

        records = [
            {**canonicalize_record(item), nested.foreign_key: parent.identifier}
            for item in as_record_list(raw)
        ]
        logger.debug(
            "syncing nested records",
            extra={
                "field": name,
                "entity_type": config.target_type.name,
                "foreign_key": nested.foreign_key,
                "records": len(records),
            },
        )
        return self.sync_records(config, records)

    def _prune(self, config: FixtureConfig, synced: Iterable[Entity]) -> list[Entity]:
        keep = IdentifierNotIn.of(entity.identifier for entity in synced)
        deleted = self._store.delete_where(config.target_type, keep)
        logger.info(
            "pruned stale rows",
            extra={"entity_type": config.target_type.name, "deleted": len(deleted)},
        )
        return deleted


def sync(fixture: Fixture, store: StoreAdapter, *, prune: bool = False) -> SyncResult:
    """Sync one fixture into ``store``."""
    return SyncOrchestrator(store).sync(fixture, prune=prune)


def sync_all(
    fixtures: Iterable[Fixture],
    store: StoreAdapter,
    *,
    prune: bool = False,
) -> BatchResult:
    """Sync ``fixtures`` in dependency order, stopping at the first failure."""
    try:
        order = build_order(fixtures)
    except CycleError as exc:
        logger.warning("fixture batch has a dependency cycle", extra={"fixtures": exc.names})
        return BatchResult(error=exc)

    orchestrator = SyncOrchestrator(store)
    results: dict[Fixture, SyncResult] = {}
    for item in order:
        result = orchestrator.sync(item, prune=prune)
        if result.error is not None:
            return BatchResult(
                results=results,
                order=order,
                error=SyncFailure(item, result.error),
            )
        results[item] = result
    return BatchResult(results=results, order=order)


__all__ = ["SyncOrchestrator", "sync", "sync_all"]
