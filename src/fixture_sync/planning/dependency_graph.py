"""Dependency extraction and deterministic sync ordering for fixture batches."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import is_dataclass

from fixture_sync.domain.errors import CycleError
from fixture_sync.domain.models import Entity, Lookup, Nested, Relation, canonicalize_record
from fixture_sync.fixtures import Fixture


def dependencies(fixture: Fixture) -> tuple[Fixture, ...]:
    """Fixtures referenced by ``fixture``'s records, first-seen order, no duplicates."""
    found: dict[Fixture, None] = {}
    for referenced in _iter_references(fixture.producer()):
        found.setdefault(referenced, None)
    return tuple(found)


class DependencyGraph:
    """Directed graph ``fixture -> fixtures it depends on``, restricted to one batch."""

    __slots__ = ("_fixtures", "_requires", "_required_by")

    def __init__(self, fixtures: Iterable[Fixture]) -> None:
        self._fixtures: tuple[Fixture, ...] = tuple(dict.fromkeys(fixtures))
        members = set(self._fixtures)
        self._requires: dict[Fixture, tuple[Fixture, ...]] = {}
        self._required_by: dict[Fixture, list[Fixture]] = {item: [] for item in self._fixtures}

        for item in self._fixtures:
            direct = tuple(dep for dep in dependencies(item) if dep in members)
            self._requires[item] = direct
            for dep in direct:
                self._required_by[dep].append(item)

    @property
    def fixtures(self) -> tuple[Fixture, ...]:
        return self._fixtures

    @property
    def edges(self) -> tuple[tuple[Fixture, Fixture], ...]:
        """All edges as ``(dependent, dependency)`` pairs in input order."""
        return tuple((item, dep) for item in self._fixtures for dep in self._requires[item])

    def dependencies_of(self, fixture: Fixture, *, transitive: bool = False) -> tuple[Fixture, ...]:
        self._assert_member(fixture)
        if not transitive:
            return self._requires[fixture]
        return self._closure(fixture, self._requires)

    def dependents_of(self, fixture: Fixture, *, transitive: bool = False) -> tuple[Fixture, ...]:
        self._assert_member(fixture)
        if not transitive:
            return tuple(self._required_by[fixture])
        return self._closure(fixture, self._required_by)

    def topological_order(self) -> tuple[Fixture, ...]:
        """Kahn's algorithm with input-order tie breaking; raises ``CycleError``."""
        indegree: dict[Fixture, int] = {item: len(self._requires[item]) for item in self._fixtures}
        ready: deque[Fixture] = deque(item for item in self._fixtures if indegree[item] == 0)

        order: list[Fixture] = []
        while ready:
            item = ready.popleft()
            order.append(item)
            for dependent in self._required_by[item]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    ready.append(dependent)

        if len(order) != len(self._fixtures):
            remaining = [item for item in self._fixtures if indegree[item] > 0]
            raise CycleError(remaining, self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles by depth-first search.

        Returns closed name paths, e.g. ``("A", "B", "A")``, canonicalized so
        that each cycle appears once.
        """
        state: dict[Fixture, int] = {}
        stack: list[Fixture] = []
        stack_index: dict[Fixture, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in self._fixtures:
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[Fixture, Iterator[Fixture]]] = [
                (start, iter(self._requires[start]))
            ]

            while frames:
                node, dep_iter = frames[-1]
                try:
                    dep = next(dep_iter)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                dep_state = state.get(dep, 0)
                if dep_state == 0:
                    state[dep] = 1
                    stack_index[dep] = len(stack)
                    stack.append(dep)
                    frames.append((dep, iter(self._requires[dep])))
                elif dep_state == 1:
                    path = [item.name for item in stack[stack_index[dep] :]]
                    cycles[_canonicalize_cycle(path + [dep.name])] = None

        return tuple(cycles)

    def serialize(self) -> dict[str, object]:
        """JSON-friendly mapping keyed by fixture name."""
        return {
            "fixtures": [item.name for item in self._fixtures],
            "dependencies": {
                item.name: [dep.name for dep in self._requires[item]] for item in self._fixtures
            },
        }

    def _closure(
        self, fixture: Fixture, adjacency: Mapping[Fixture, Sequence[Fixture]]
    ) -> tuple[Fixture, ...]:
        visited: dict[Fixture, None] = {}
        pending: deque[Fixture] = deque(adjacency[fixture])
        while pending:
            item = pending.popleft()
            if item in visited or item is fixture:
                continue
            visited[item] = None
            pending.extend(adjacency[item])
        return tuple(visited)

    def _assert_member(self, fixture: Fixture) -> None:
        if fixture not in self._requires:
            raise KeyError(f"fixture {fixture.name!r} is not part of this graph")


def build_order(fixtures: Iterable[Fixture]) -> tuple[Fixture, ...]:
    """Return ``fixtures`` in a dependency-respecting order or raise ``CycleError``."""
    return DependencyGraph(fixtures).topological_order()


def _iter_references(value: object) -> Iterator[Fixture]:
    if isinstance(value, Relation):
        yield value.fixture
    elif isinstance(value, Nested):
        if value.fixture is not None:
            yield value.fixture
        else:
            yield from _iter_references(value.records)
    elif isinstance(value, Lookup):
        return
    elif isinstance(value, Entity):
        yield from _iter_references(value.fields)
    elif is_dataclass(value) and not isinstance(value, type):
        yield from _iter_references(canonicalize_record(value))
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_references(item)


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])
    best = core
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        if rotated < best:
            best = rotated
    return best + (best[0],)


__all__ = ["DependencyGraph", "build_order", "dependencies"]
