"""Value types and the error taxonomy shared by every layer."""

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
    AssociationKind,
    BatchResult,
    Entity,
    FieldValue,
    FieldValueKind,
    FixtureConfig,
    Lookup,
    Nested,
    Relation,
    RelationKind,
    SyncResult,
    as_record_list,
    canonicalize_record,
    field_value_kind,
)

__all__ = [
    "AssociationKind",
    "BatchResult",
    "CycleError",
    "Entity",
    "FieldValue",
    "FieldValueKind",
    "FixtureConfig",
    "FixtureSyncError",
    "Lookup",
    "LookupNotFound",
    "Nested",
    "Relation",
    "RelationKind",
    "RelationNotFound",
    "StoreError",
    "SyncFailure",
    "SyncResult",
    "ValidationError",
    "as_record_list",
    "canonicalize_record",
    "field_value_kind",
]
