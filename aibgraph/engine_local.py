"""Graph traversal engines and the in-memory engine over the SQLite store."""

from __future__ import annotations

import abc
from collections import defaultdict, deque
from typing import Optional

from .models import Edge, Node
from .query import ImpactNode, ImpactResult, blast_radius, blast_radius_tree
from .store_sqlite import SQLiteStore


class NoPathError(LookupError):
    """Raised when two assets are not connected."""

    def __init__(self, from_id: str, to_id: str) -> None:
        super().__init__(f"no path found between {from_id} and {to_id}")
        self.from_id = from_id
        self.to_id = to_id


class GraphEngine(abc.ABC):
    """Traversal operations over the asset graph."""

    @abc.abstractmethod
    def blast_radius(self, start_node_id: str) -> ImpactResult:
        """Return every asset affected if ``start_node_id`` fails."""

    @abc.abstractmethod
    def blast_radius_tree(self, start_node_id: str) -> ImpactNode:
        """Return the same analysis as a tree rooted at ``start_node_id``."""

    @abc.abstractmethod
    def neighbors(self, node_id: str) -> list[Node]:
        """Return assets directly connected to ``node_id`` in either direction."""

    @abc.abstractmethod
    def shortest_path(self, from_id: str, to_id: str) -> tuple[list[Node], list[Edge]]:
        """Return the shortest path between two assets; raise NoPathError if none."""

    @abc.abstractmethod
    def dependency_chain(self, node_id: str, max_depth: int) -> list[Node]:
        """Return what ``node_id`` depends on, transitively, up to ``max_depth`` hops."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release any resources held by the engine."""

    def __enter__(self) -> "GraphEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class LocalEngine(GraphEngine):
    """Breadth-first traversal over adjacency lists built from the SQLite store."""

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    def blast_radius(self, start_node_id: str) -> ImpactResult:
        return blast_radius(self._store, start_node_id)

    def blast_radius_tree(self, start_node_id: str) -> ImpactNode:
        return blast_radius_tree(self._store, start_node_id)

    def neighbors(self, node_id: str) -> list[Node]:
        return self._store.get_neighbors(node_id)

    def shortest_path(self, from_id: str, to_id: str) -> tuple[list[Node], list[Edge]]:
        """Find the shortest path ignoring edge direction; the edge list is empty."""
        downstream, upstream = self._store.build_adjacency()

        adjacent: dict[str, list[str]] = defaultdict(list)
        for node_id, edges in downstream.items():
            adjacent[node_id].extend(edge.to_id for edge in edges)
        for node_id, edges in upstream.items():
            adjacent[node_id].extend(edge.from_id for edge in edges)

        previous: dict[str, Optional[str]] = {from_id: None}
        queue: deque[str] = deque([from_id])
        while queue:
            current = queue.popleft()
            if current == to_id:
                path: list[str] = []
                step: Optional[str] = current
                while step is not None:
                    path.append(step)
                    step = previous[step]
                path.reverse()
                nodes = [node for node in map(self._store.get_node, path) if node is not None]
                return nodes, []
            for neighbor in adjacent.get(current, ()):
                if neighbor in previous:
                    continue
                previous[neighbor] = current
                queue.append(neighbor)

        raise NoPathError(from_id, to_id)

    def dependency_chain(self, node_id: str, max_depth: int) -> list[Node]:
        downstream, _ = self._store.build_adjacency()

        visited = {node_id}
        queue: deque[tuple[str, int]] = deque([(node_id, 0)])
        result: list[Node] = []

        while queue:
            current, depth = queue.popleft()
            if depth >= max_depth:
                continue
            for edge in downstream.get(current, ()):
                if edge.to_id in visited:
                    continue
                visited.add(edge.to_id)
                node = self._store.get_node(edge.to_id)
                if node is not None:
                    result.append(node)
                queue.append((edge.to_id, depth + 1))

        return result

    def close(self) -> None:
        """Nothing to release: the store is owned by the caller."""