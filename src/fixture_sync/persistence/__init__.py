"""
Persistence layer: store contracts, entity type declarations and the SQLite adapter.

Functional requirements
- The sync core depends only on ``StoreAdapter`` and ``AssociationInspector``.

Non-functional requirements
- SQLite-first; no ORM dependency.
"""

from fixture_sync.persistence.contracts import (
    AssociationInspector,
    EntityPredicate,
    IdentifierNotIn,
    StoreAdapter,
)
from fixture_sync.persistence.schema import (
    Association,
    EntityType,
    EntityValidator,
    FieldSpec,
    FieldType,
)
from fixture_sync.persistence.sqlite_store import SQLiteStore, StoreBusyError

__all__ = [
    "Association",
    "AssociationInspector",
    "EntityPredicate",
    "EntityType",
    "EntityValidator",
    "FieldSpec",
    "FieldType",
    "IdentifierNotIn",
    "SQLiteStore",
    "StoreAdapter",
    "StoreBusyError",
]
