"""
Fixture definitions and the composition helpers used to author them.

A fixture is a named producer of records bound to a target entity type.
``FixtureKit`` carries shared defaults and a helper table so that a family
of fixtures can be declared without repeating options; producers reach the
helpers through an explicit ``kit.helpers`` reference.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Final

from fixture_sync.constants import DEFAULT_CALLBACK_NAME
from fixture_sync.domain.models import FixtureConfig, Lookup, Nested, Relation, RelationKind

if TYPE_CHECKING:
    from fixture_sync.domain.models import SyncResult
    from fixture_sync.persistence.contracts import AssociationInspector, StoreAdapter

Producer = Callable[[], object]

_MISSING: Final = object()
_KIT_OPTIONS: Final[frozenset[str]] = frozenset(
    {"target_type", "search_keys", "callback_name", "source"}
)


class Fixture:
    """Named record producer with its sync configuration.

    Fixtures compare and hash by identity; two fixtures with the same name
    are still distinct graph nodes.
    """

    def __init__(
        self,
        name: str,
        *,
        target_type: AssociationInspector,
        producer: Producer | None = None,
        search_keys: Iterable[str] | None = None,
        callback_name: str = DEFAULT_CALLBACK_NAME,
        source: object | None = None,
    ) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("fixture name must be a non-empty string")
        if producer is None:
            if source is None:
                raise ValueError(f"fixture {name!r} needs a producer or a source object")
            candidate = getattr(source, callback_name, None)
            if not callable(candidate):
                raise TypeError(f"{source!r} has no callable {callback_name!r} for fixture {name!r}")
            producer = candidate
        elif not callable(producer):
            raise TypeError(f"producer for fixture {name!r} must be callable")

        self.name = name
        self._producer = producer
        self._config = FixtureConfig.for_type(
            target_type,
            None if search_keys is None else tuple(search_keys),
            callback_name=callback_name,
        )

    @property
    def target_type(self) -> AssociationInspector:
        return self._config.target_type

    def config(self) -> FixtureConfig:
        return self._config

    def producer(self) -> object:
        return self._producer()

    def sync(self, store: StoreAdapter, *, prune: bool = False) -> SyncResult:
        from fixture_sync.sync.orchestrator import sync

        return sync(self, store, prune=prune)

    def __repr__(self) -> str:
        return f"Fixture({self.name!r}, target_type={self._config.target_type.name!r})"


def fixture(
    target_type: AssociationInspector,
    *,
    name: str | None = None,
    search_keys: Iterable[str] | None = None,
) -> Callable[[Producer], Fixture]:
    """Turn a zero-argument producer function into a ``Fixture``."""

    def decorate(producer: Producer) -> Fixture:
        return Fixture(
            name or producer.__name__,
            target_type=target_type,
            producer=producer,
            search_keys=search_keys,
        )

    return decorate


class HelperTable(Mapping[str, Callable[..., object]]):
    """Read-only table of named helper callables with attribute access."""

    __slots__ = ("_helpers",)

    def __init__(self, helpers: Mapping[str, Callable[..., object]] | None = None) -> None:
        table = dict(helpers or {})
        for key, value in table.items():
            if not isinstance(key, str) or not key.isidentifier():
                raise ValueError(f"helper name must be an identifier, got {key!r}")
            if not callable(value):
                raise TypeError(f"helper {key!r} must be callable")
        self._helpers = table

    def __getitem__(self, key: str) -> Callable[..., object]:
        return self._helpers[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._helpers)

    def __len__(self) -> int:
        return len(self._helpers)

    def __getattr__(self, name: str) -> Callable[..., object]:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._helpers[name]
        except KeyError:
            raise AttributeError(f"no helper named {name!r}") from None


class FixtureKit:
    """Shared defaults and helpers for a family of fixtures."""

    def __init__(
        self,
        defaults: Mapping[str, object] | None = None,
        helpers: Mapping[str, Callable[..., object]] | None = None,
    ) -> None:
        options = dict(defaults or {})
        unknown = sorted(set(options) - _KIT_OPTIONS)
        if unknown:
            raise ValueError(f"unknown fixture defaults: {unknown}")
        self.defaults: Mapping[str, object] = options
        self.helpers = HelperTable(helpers)

    def define(self, name: str, producer: Producer | None = None, **options: object) -> Fixture:
        """Build a fixture from ``producer``, or from ``source`` and the kit callback name."""
        unknown = sorted(set(options) - _KIT_OPTIONS)
        if unknown:
            raise ValueError(f"unknown fixture options: {unknown}")
        merged = {**self.defaults, **options}
        if merged.get("target_type") is None:
            raise ValueError(f"fixture {name!r} has no target_type and the kit sets none")
        return Fixture(name, producer=producer, **merged)  # type: ignore[arg-type]

    def fixture(self, name: str | None = None, **options: object) -> Callable[[Producer], Fixture]:
        def decorate(producer: Producer) -> Fixture:
            return self.define(name or producer.__name__, producer, **options)

        return decorate

    def extend(
        self,
        defaults: Mapping[str, object] | None = None,
        helpers: Mapping[str, Callable[..., object]] | None = None,
    ) -> FixtureKit:
        return FixtureKit(
            {**self.defaults, **(defaults or {})},
            {**self.helpers, **(helpers or {})},
        )


def belongs_to(fixture: Fixture, key: str | None = None, value: object = _MISSING) -> Relation:
    return Relation(fixture, _optional_pair(key, value), RelationKind.BELONGS_TO)


def many_to_many(fixture: Fixture, key: str | None = None, value: object = _MISSING) -> Relation:
    return Relation(fixture, _optional_pair(key, value), RelationKind.MANY_TO_MANY)


def assoc(fixture: Fixture, key: str | None = None, value: object = _MISSING) -> Relation:
    """Relation whose kind is detected from the parent type's schema."""
    return Relation(fixture, _optional_pair(key, value), RelationKind.AUTO)


def has_many(
    fixture: Fixture,
    *,
    foreign_key: str,
    search_keys: Iterable[str] | None = None,
) -> Nested:
    return Nested(
        foreign_key=foreign_key,
        fixture=fixture,
        search_keys=None if search_keys is None else tuple(search_keys),
    )


def has_many_inline(
    records: Iterable[object],
    *,
    target_type: AssociationInspector,
    foreign_key: str,
    search_keys: Iterable[str] | None = None,
) -> Nested:
    return Nested(
        foreign_key=foreign_key,
        records=tuple(records),
        target_type=target_type,
        search_keys=None if search_keys is None else tuple(search_keys),
    )


def lookup(
    target_type: AssociationInspector,
    match_or_key: object,
    value: object = _MISSING,
    *,
    field: str | None = None,
) -> Lookup:
    """Build a store lookup from ``(key, value)`` or a match mapping."""
    if value is not _MISSING:
        return Lookup(target_type, (match_or_key, value), field)  # type: ignore[arg-type]
    return Lookup(target_type, match_or_key, field)  # type: ignore[arg-type]


def _optional_pair(key: str | None, value: object) -> tuple[str, object] | None:
    if key is None:
        if value is not _MISSING:
            raise TypeError("a relation lookup value needs a key")
        return None
    if value is _MISSING:
        raise TypeError(f"relation lookup on {key!r} needs a value")
    return key, value


__all__ = [
    "Fixture",
    "FixtureKit",
    "HelperTable",
    "Producer",
    "assoc",
    "belongs_to",
    "fixture",
    "has_many",
    "has_many_inline",
    "lookup",
    "many_to_many",
]
