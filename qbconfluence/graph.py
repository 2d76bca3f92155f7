"""Dependency graph — build_dependency_graph, topological_sort, realization_waves."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from qbconfluence.model import Edge, Resource


class CycleError(Exception):
    """Raised when declarations depend on each other in a loop."""


@dataclass
class DependencyGraph:
    # upstream logical id -> declarations that consume its identifiers
    adjacency: dict[str, list[str]] = field(default_factory=dict)
    nodes: dict[str, Resource] = field(default_factory=dict)

    def in_degrees(self) -> dict[str, int]:
        degrees = {node_id: 0 for node_id in self.adjacency}
        for targets in self.adjacency.values():
            for target in targets:
                degrees[target] += 1
        return degrees


def build_dependency_graph(resources: list[Resource], edges: list[Edge]) -> DependencyGraph:
    """Build an adjacency list from declarations and their reference edges."""
    g = DependencyGraph()
    for resource in resources:
        g.nodes[resource.logical_id] = resource
        g.adjacency.setdefault(resource.logical_id, [])
    for edge in edges:
        g.adjacency.setdefault(edge.from_id, [])
        g.adjacency.setdefault(edge.to_id, [])
        if edge.to_id not in g.adjacency[edge.from_id]:
            g.adjacency[edge.from_id].append(edge.to_id)
    return g


def topological_sort(graph: DependencyGraph) -> list[str]:
    """Kahn's algorithm. Ties are broken by declaration order, so a graph that is
    already declared in a valid order comes back unchanged."""
    position = {node_id: i for i, node_id in enumerate(graph.adjacency)}
    degrees = graph.in_degrees()
    queue: deque[str] = deque(n for n in graph.adjacency if degrees[n] == 0)
    order: list[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        released = []
        for neighbor in graph.adjacency[current]:
            degrees[neighbor] -= 1
            if degrees[neighbor] == 0:
                released.append(neighbor)
        queue = deque(sorted([*queue, *released], key=position.__getitem__))

    if len(order) != len(graph.adjacency):
        stuck = sorted(n for n, d in degrees.items() if d > 0)
        raise CycleError(f"Dependency cycle between: {', '.join(stuck)}")
    return order


def realization_waves(graph: DependencyGraph) -> list[list[str]]:
    """Group declarations into waves; everything in a wave may be realized in parallel
    once all earlier waves are complete."""
    position = {node_id: i for i, node_id in enumerate(graph.adjacency)}
    degrees = graph.in_degrees()
    wave = sorted((n for n in graph.adjacency if degrees[n] == 0), key=position.__getitem__)
    waves: list[list[str]] = []
    placed = 0

    while wave:
        waves.append(wave)
        placed += len(wave)
        following: list[str] = []
        for node_id in wave:
            for neighbor in graph.adjacency[node_id]:
                degrees[neighbor] -= 1
                if degrees[neighbor] == 0:
                    following.append(neighbor)
        wave = sorted(following, key=position.__getitem__)

    if placed != len(graph.adjacency):
        raise CycleError("Dependency cycle prevents a complete realization plan")
    return waves


def upstream(graph: DependencyGraph, logical_id: str) -> set[str]:
    """Every declaration *logical_id* transitively depends on."""
    reverse: dict[str, list[str]] = {node_id: [] for node_id in graph.adjacency}
    for source, targets in graph.adjacency.items():
        for target in targets:
            reverse[target].append(source)

    if logical_id not in reverse:
        return set()

    visited: set[str] = {logical_id}
    queue: deque[str] = deque([logical_id])
    while queue:
        current = queue.popleft()
        for neighbor in reverse[current]:
            if neighbor not in visited:
                visited.add(neighbor)
                queue.append(neighbor)

    visited.discard(logical_id)
    return visited
