"""Error taxonomy for fixture resolution, persistence and batch ordering."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fixture_sync.fixtures import Fixture


class FixtureSyncError(Exception):
    """Base class for every failure a sync reports as a result value."""


class LookupNotFound(FixtureSyncError):
    """A ``Lookup`` matched no entity in the store."""

    def __init__(self, target_type: str, criteria: Mapping[str, object]) -> None:
        self.target_type = target_type
        self.criteria = dict(criteria)
        super().__init__(f"lookup matched no {target_type} for {self.criteria!r}")


class RelationNotFound(FixtureSyncError):
    """An explicit relation lookup matched none of the synced entities."""

    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"no synced entity has {field}={value!r}")


class ValidationError(FixtureSyncError):
    """The store rejected a write."""

    def __init__(
        self,
        target_type: str,
        attrs: Mapping[str, object],
        details: Sequence[str],
    ) -> None:
        self.target_type = target_type
        self.attrs = dict(attrs)
        self.details = tuple(details)
        rendered = "; ".join(self.details) or "rejected"
        super().__init__(f"invalid {target_type}: {rendered}")


class StoreError(FixtureSyncError):
    """The store adapter failed for a reason other than validation."""


class CycleError(FixtureSyncError):
    """The dependency graph has no valid total order."""

    def __init__(
        self,
        fixtures: Iterable[Fixture],
        cycles: Iterable[Sequence[str]] = (),
    ) -> None:
        self.fixtures: tuple[Fixture, ...] = tuple(fixtures)
        self.cycles: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)

        names = ", ".join(fixture.name for fixture in self.fixtures)
        message = f"fixture dependencies contain a cycle among: {names}"
        if self.cycles:
            preview = ", ".join(" -> ".join(path) for path in self.cycles[:3])
            suffix = "..." if len(self.cycles) > 3 else ""
            message = f"{message} ({preview}{suffix})"
        super().__init__(message)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(fixture.name for fixture in self.fixtures)


class SyncFailure(FixtureSyncError):
    """Wraps the first failure raised while syncing a batch."""

    def __init__(self, fixture: Fixture, cause: FixtureSyncError) -> None:
        self.fixture = fixture
        self.cause = cause
        super().__init__(f"{fixture.name}: {cause}")


__all__ = [
    "CycleError",
    "FixtureSyncError",
    "LookupNotFound",
    "RelationNotFound",
    "StoreError",
    "SyncFailure",
    "ValidationError",
]
