"""Graph engine that runs traversals as Cypher queries, falling back to the local engine."""

from __future__ import annotations

import json
import logging
import math
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator, Optional, Union

from .cypher import Record, Session, SessionFactory
from .engine_local import GraphEngine, LocalEngine, NoPathError
from .models import ZERO_TIME, AssetType, Edge, EdgeType, Node, parse_timestamp
from .query import ImpactNode, ImpactResult

_FIELDS = (
    "id", "name", "type", "source", "source_file",
    "provider", "metadata", "expires_at", "last_seen", "first_seen",
)

_MAX_DEPTH = 50


def _project(var: str) -> str:
    return ", ".join(f"{var}.{name} AS {name}" for name in _FIELDS)


_BLAST_RADIUS = f"""
    MATCH (affected:Asset)-[*1..]->(root:Asset {{id: $startID}})
    WHERE affected.id <> $startID
    WITH DISTINCT affected
    RETURN {_project("affected")}
    ORDER BY type, name
"""

_ROOT_NODE = f"""
    MATCH (n:Asset {{id: $id}})
    RETURN {_project("n")}
"""

_AFFECTED_NODES = f"""
    MATCH (affected:Asset)-[*1..]->(root:Asset {{id: $startID}})
    WITH DISTINCT affected
    RETURN {_project("affected")}
"""

_SUBGRAPH_EDGES = """
    MATCH (a:Asset)-[r:EDGE]->(b:Asset)
    WHERE a.id IN $ids AND b.id IN $ids
    RETURN a.id AS from_id, r.type AS edge_type, b.id AS to_id
"""

_NEIGHBORS = f"""
    MATCH (n:Asset {{id: $id}})-[r:EDGE]-(neighbor:Asset)
    RETURN DISTINCT {_project("neighbor")}
    ORDER BY type, name
"""

_SHORTEST_PATH = f"""
    MATCH p = shortestPath((a:Asset {{id: $fromID}})-[*]-(b:Asset {{id: $toID}}))
    UNWIND nodes(p) AS n
    RETURN {_project("n")}
"""


def _dependency_chain_query(max_depth: int) -> str:
    return f"""
    MATCH (start:Asset {{id: $id}})-[*1..{max_depth}]->(dep:Asset)
    RETURN DISTINCT {_project("dep")}
    ORDER BY type, name
"""


def _format_float(value: float) -> str:
    """Format a float with the shortest digits, switching to exponent form outside 1e-4..1e6."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    number = Decimal(repr(value)).normalize()
    sign, digits, exponent = number.as_tuple()
    exp10 = len(digits) + exponent - 1
    prefix = "-" if sign else ""
    if exp10 < -4 or exp10 >= 6:
        text = "".join(str(d) for d in digits)
        mantissa = text[0] + ("." + text[1:] if len(text) > 1 else "")
        return f"{prefix}{mantissa}e{'+' if exp10 >= 0 else '-'}{abs(exp10):02d}"
    return format(number, "f")


def to_string(value: Any) -> str:
    """Render a query value as text; None becomes the empty string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    return str(value)


def get_record_string(record: Record, key: str) -> str:
    """Return column ``key`` of ``record`` as text, or "" if absent or null."""
    return to_string(record.get(key))


def _timestamp(text: str, default: Any) -> Any:
    if not text:
        return default
    try:
        return parse_timestamp(text)
    except ValueError:
        return default


def record_to_node(record: Record) -> Node:
    """Build a node from a record holding the standard asset columns."""
    metadata: dict[str, str] = {}
    meta_text = get_record_string(record, "metadata")
    if meta_text:
        try:
            decoded = json.loads(meta_text)
        except ValueError:
            decoded = None
        if isinstance(decoded, dict):
            metadata = decoded

    return Node(
        id=get_record_string(record, "id"),
        name=get_record_string(record, "name"),
        type=AssetType.coerce(get_record_string(record, "type")),
        source=get_record_string(record, "source"),
        source_file=get_record_string(record, "source_file"),
        provider=get_record_string(record, "provider"),
        metadata=metadata,
        expires_at=_timestamp(get_record_string(record, "expires_at"), None),
        last_seen=_timestamp(get_record_string(record, "last_seen"), ZERO_TIME),
        first_seen=_timestamp(get_record_string(record, "first_seen"), ZERO_TIME),
    )


def build_mg_tree(
    parent: ImpactNode,
    upstream: dict[str, list[tuple[str, Union[EdgeType, str]]]],
    node_map: dict[str, Node],
    visited: set[str],
    depth: int,
) -> None:
    """Attach to ``parent`` every dependent reachable through ``upstream``, once each.

    ``upstream`` maps a node id to the (from_id, edge_type) pairs of edges pointing at it.
    """
    stack = [(parent, depth, iter(upstream.get(parent.node_id, ())))]
    while stack:
        current, level, pending = stack[-1]
        for from_id, edge_type in pending:
            if from_id in visited:
                continue
            visited.add(from_id)
            child = ImpactNode(
                node_id=from_id,
                node=node_map.get(from_id),
                edge_type=edge_type,
                depth=level + 1,
            )
            current.children.append(child)
            stack.append((child, level + 1, iter(upstream.get(from_id, ()))))
            break
        else:
            stack.pop()


class MemgraphEngine(GraphEngine):
    """Runs traversals in the graph database; on any failure, answers from ``fallback``."""

    def __init__(
        self,
        session_factory: SessionFactory,
        fallback: LocalEngine,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session_factory = session_factory
        self._fallback = fallback
        self._logger = logger or logging.getLogger(__name__)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            try:
                session.close()
            except Exception as exc:  # closing is best effort
                self._logger.debug("closing session failed: %s", exc)

    def _fetch(self, cypher: str, params: dict[str, Any]) -> list[Record]:
        with self._session() as session:
            return list(session.run(cypher, params))

    def _fetch_nodes(self, cypher: str, params: dict[str, Any]) -> list[Node]:
        return [record_to_node(record) for record in self._fetch(cypher, params)]

    def blast_radius(self, start_node_id: str) -> ImpactResult:
        try:
            nodes = self._fetch_nodes(_BLAST_RADIUS, {"startID": start_node_id})
        except Exception as exc:
            self._logger.warning("memgraph blast radius failed, falling back: %s", exc)
            return self._fallback.blast_radius(start_node_id)

        impact_tree = {node.id: ImpactNode(node_id=node.id, node=node) for node in nodes}
        return ImpactResult.from_tree(start_node_id, impact_tree)

    def blast_radius_tree(self, start_node_id: str) -> ImpactNode:
        try:
            with self._session() as session:
                root_records = list(session.run(_ROOT_NODE, {"id": start_node_id}))
                root_node = record_to_node(root_records[0]) if root_records else None

                node_map: dict[str, Node] = {}
                if root_node is not None:
                    node_map[root_node.id] = root_node

                affected_ids: list[str] = []
                for record in session.run(_AFFECTED_NODES, {"startID": start_node_id}):
                    node = record_to_node(record)
                    node_map[node.id] = node
                    affected_ids.append(node.id)

                upstream: dict[str, list[tuple[str, Union[EdgeType, str]]]] = {}
                edge_records = session.run(
                    _SUBGRAPH_EDGES, {"ids": [*affected_ids, start_node_id]}
                )
                for record in edge_records:
                    from_id = record.get("from_id")
                    to_id = record.get("to_id")
                    if from_id is None or to_id is None:
                        continue
                    edge_type = EdgeType.coerce(to_string(record.get("edge_type")))
                    upstream.setdefault(str(to_id), []).append((str(from_id), edge_type))
        except Exception as exc:
            self._logger.warning("memgraph blast radius tree failed, falling back: %s", exc)
            return self._fallback.blast_radius_tree(start_node_id)

        root = ImpactNode(node_id=start_node_id, node=root_node, depth=0)
        build_mg_tree(root, upstream, node_map, {start_node_id}, 0)
        return root

    def neighbors(self, node_id: str) -> list[Node]:
        try:
            return self._fetch_nodes(_NEIGHBORS, {"id": node_id})
        except Exception as exc:
            self._logger.warning("memgraph neighbors failed, falling back: %s", exc)
            return self._fallback.neighbors(node_id)

    def shortest_path(self, from_id: str, to_id: str) -> tuple[list[Node], list[Edge]]:
        try:
            nodes = self._fetch_nodes(_SHORTEST_PATH, {"fromID": from_id, "toID": to_id})
        except Exception as exc:
            self._logger.warning("memgraph shortest path failed, falling back: %s", exc)
            return self._fallback.shortest_path(from_id, to_id)
        if not nodes:
            raise NoPathError(from_id, to_id)
        return nodes, []

    def dependency_chain(self, node_id: str, max_depth: int) -> list[Node]:
        """Return downstream dependencies; depths outside 1..50 are treated as 50."""
        if max_depth <= 0 or max_depth > _MAX_DEPTH:
            max_depth = _MAX_DEPTH
        try:
            return self._fetch_nodes(_dependency_chain_query(max_depth), {"id": node_id})
        except Exception as exc:
            self._logger.warning("memgraph dependency chain failed, falling back: %s", exc)
            return self._fallback.dependency_chain(node_id, max_depth)

    def close(self) -> None:
        """Close the session factory if it holds a connection of its own."""
        closer = getattr(self._session_factory, "close", None)
        if callable(closer):
            closer()