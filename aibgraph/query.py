"""Blast-radius analysis: which assets are affected when one asset fails."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from .models import Edge, EdgeType, Node
from .store_sqlite import SQLiteStore


@dataclass
class ImpactNode:
    """One affected asset, as an entry of the impact map or a node of the impact tree."""

    node_id: str
    node: Optional[Node] = None
    edge_type: Union[EdgeType, str] = ""
    depth: int = 0
    path_from_root: list[str] = field(default_factory=list)
    children: list["ImpactNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this node and its children."""
        data: dict[str, Any] = {"node_id": self.node_id}
        if self.node is not None:
            data["node"] = self.node.to_dict()
        data["edge_type"] = str(self.edge_type)
        data["depth"] = self.depth
        data["path_from_root"] = list(self.path_from_root) if self.path_from_root else None
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data

    def walk(self) -> Iterator["ImpactNode"]:
        """Yield this node and every descendant, depth first."""
        stack = [self]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.children))


@dataclass
class ImpactResult:
    """The flat result of a blast-radius analysis."""

    root: str
    affected_nodes: int = 0
    impact_tree: dict[str, ImpactNode] = field(default_factory=dict)
    affected_by_type: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_tree(cls, root: str, impact_tree: dict[str, ImpactNode]) -> "ImpactResult":
        """Build a result from the impact map, counting affected assets by type."""
        counts = Counter(
            str(impact.node.type) for impact in impact_tree.values() if impact.node is not None
        )
        return cls(
            root=root,
            affected_nodes=len(impact_tree),
            impact_tree=impact_tree,
            affected_by_type=dict(counts),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this result."""
        return {
            "root": self.root,
            "affected_nodes": self.affected_nodes,
            "impact_tree": {key: impact.to_dict() for key, impact in self.impact_tree.items()},
            "affected_by_type": dict(self.affected_by_type),
        }


def _reconstruct_path(parents: dict[str, str], start: str, end: str) -> list[str]:
    path = [end]
    current = end
    while current != start:
        parent = parents.get(current)
        if parent is None:
            break
        path.append(parent)
        current = parent
    path.reverse()
    return path


def blast_radius(store: SQLiteStore, start_node_id: str) -> ImpactResult:
    """Find every asset that depends, directly or transitively, on ``start_node_id``.

    Edges point from a dependent to its dependency, so the search follows them backwards.
    """
    _, upstream = store.build_adjacency()

    visited = {start_node_id}
    parents: dict[str, str] = {}
    impact_tree: dict[str, ImpactNode] = {}
    queue: deque[tuple[str, int]] = deque([(start_node_id, 0)])

    while queue:
        current, depth = queue.popleft()
        for edge in upstream.get(current, ()):
            target = edge.from_id
            if target in visited:
                continue
            visited.add(target)
            parents[target] = current
            impact_tree[target] = ImpactNode(
                node_id=target,
                node=store.get_node(target),
                edge_type=edge.type,
                depth=depth + 1,
                path_from_root=_reconstruct_path(parents, start_node_id, target),
            )
            queue.append((target, depth + 1))

    return ImpactResult.from_tree(start_node_id, impact_tree)


def _grow_tree(
    root: ImpactNode,
    upstream: dict[str, list[Edge]],
    visited: set[str],
    lookup: Callable[[str], Optional[Node]],
) -> None:
    """Attach dependents below ``root`` depth first, visiting each asset once."""
    stack: list[tuple[ImpactNode, Iterator[Edge]]] = [
        (root, iter(upstream.get(root.node_id, ())))
    ]
    while stack:
        parent, edges = stack[-1]
        for edge in edges:
            target = edge.from_id
            if target in visited:
                continue
            visited.add(target)
            child = ImpactNode(
                node_id=target,
                node=lookup(target),
                edge_type=edge.type,
                depth=parent.depth + 1,
            )
            parent.children.append(child)
            stack.append((child, iter(upstream.get(target, ()))))
            break
        else:
            stack.pop()


def blast_radius_tree(store: SQLiteStore, start_node_id: str) -> ImpactNode:
    """Return the blast radius of ``start_node_id`` as a tree rooted at that asset."""
    _, upstream = store.build_adjacency()
    root = ImpactNode(node_id=start_node_id, node=store.get_node(start_node_id), depth=0)
    _grow_tree(root, upstream, {start_node_id}, store.get_node)
    return root


def _nodes_of(impacts: Iterable[ImpactNode]) -> list[Node]:
    return [impact.node for impact in impacts if impact.node is not None]