"""Batch planning: dependency extraction and topological sync order."""

from fixture_sync.planning.dependency_graph import DependencyGraph, build_order, dependencies

__all__ = ["DependencyGraph", "build_order", "dependencies"]
