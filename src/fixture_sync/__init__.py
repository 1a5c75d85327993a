"""
fixture-sync: declarative fixture synchronization.

Fixtures produce records that may reference other fixtures (``belongs_to``,
``many_to_many``, ``assoc``), child records (``has_many``,
``has_many_inline``) and existing rows (``lookup``). ``sync`` upserts one
fixture into a store; ``sync_all`` orders a batch by dependencies first.

Importing the package has no side effects: no config loading and no
logging setup.
"""

from fixture_sync.domain.errors import (
    CycleError,
    FixtureSyncError,
    LookupNotFound,
    RelationNotFound,
    StoreError,
    SyncFailure,
    ValidationError,
)
from fixture_sync.domain.models import (
    BatchResult,
    Entity,
    FixtureConfig,
    Lookup,
    Nested,
    Relation,
    RelationKind,
    SyncResult,
)
from fixture_sync.fixtures import (
    Fixture,
    FixtureKit,
    assoc,
    belongs_to,
    fixture,
    has_many,
    has_many_inline,
    lookup,
    many_to_many,
)
from fixture_sync.persistence import Association, EntityType, FieldSpec, FieldType, SQLiteStore
from fixture_sync.planning import DependencyGraph, build_order
from fixture_sync.sync import SyncOrchestrator, sync, sync_all

__version__ = "0.1.0"

__all__ = [
    "Association",
    "BatchResult",
    "CycleError",
    "DependencyGraph",
    "Entity",
    "EntityType",
    "FieldSpec",
    "FieldType",
    "Fixture",
    "FixtureConfig",
    "FixtureKit",
    "FixtureSyncError",
    "Lookup",
    "LookupNotFound",
    "Nested",
    "Relation",
    "RelationKind",
    "RelationNotFound",
    "SQLiteStore",
    "StoreError",
    "SyncFailure",
    "SyncOrchestrator",
    "SyncResult",
    "ValidationError",
    "__version__",
    "assoc",
    "belongs_to",
    "build_order",
    "fixture",
    "has_many",
    "has_many_inline",
    "lookup",
    "many_to_many",
    "sync",
    "sync_all",
]
