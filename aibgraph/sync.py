"""Full synchronisation of the SQLite graph into a graph database."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .cypher import SessionFactory
from .models import Edge, Node, NodeFilter, format_timestamp
from .store_sqlite import SQLiteStore

_BATCH_SIZE = 500

_INDEXES = (
    "CREATE INDEX ON :Asset(id)",
    "CREATE INDEX ON :Asset(type)",
    "CREATE INDEX ON :Asset(source)",
)

_CREATE_NODES = """
    UNWIND $nodes AS n
    CREATE (a:Asset {
        id: n.id, name: n.name, type: n.type,
        source: n.source, source_file: n.sourceFile,
        provider: n.provider, metadata: n.metadata,
        expires_at: n.expiresAt, last_seen: n.lastSeen,
        first_seen: n.firstSeen
    })
"""

_CREATE_EDGES = """
    UNWIND $edges AS e
    MATCH (from:Asset {id: e.fromID})
    MATCH (to:Asset {id: e.toID})
    CREATE (from)-[:EDGE {id: e.id, type: e.type, metadata: e.metadata}]->(to)
"""


class SyncError(RuntimeError):
    """Raised when a full synchronisation cannot complete."""


def _json(metadata: Optional[dict[str, str]]) -> str:
    return json.dumps(metadata, sort_keys=True, separators=(",", ":"))


def node_to_params(node: Node) -> dict[str, Any]:
    """Return the query parameters describing a node."""
    return {
        "id": node.id,
        "name": node.name,
        "type": str(node.type),
        "source": node.source,
        "sourceFile": node.source_file,
        "provider": node.provider,
        "metadata": _json(node.metadata),
        "expiresAt": format_timestamp(node.expires_at) if node.expires_at is not None else None,
        "lastSeen": format_timestamp(node.last_seen),
        "firstSeen": format_timestamp(node.first_seen),
    }


def edge_to_params(edge: Edge) -> dict[str, Any]:
    """Return the query parameters describing an edge."""
    return {
        "id": edge.id,
        "fromID": edge.from_id,
        "toID": edge.to_id,
        "type": str(edge.type),
        "metadata": _json(edge.metadata),
    }


def sync_to_memgraph(
    store: SQLiteStore,
    session_factory: SessionFactory,
    logger: Optional[logging.Logger] = None,
) -> tuple[int, int]:
    """Clear the graph database and reload every node and edge from ``store``.

    Returns the numbers of nodes and edges written; raises SyncError on failure.
    """
    logger = logger or logging.getLogger(__name__)
    session = session_factory()
    try:
        logger.info("clearing memgraph data")
        try:
            list(session.run("MATCH (n) DETACH DELETE n", None))
        except Exception as exc:
            raise SyncError(f"clearing memgraph: {exc}") from exc

        logger.info("creating memgraph indexes")
        for cypher in _INDEXES:
            try:
                list(session.run(cypher, None))
            except Exception as exc:
                logger.warning("creating index (may already exist): %s", exc)

        try:
            nodes = store.list_nodes(NodeFilter())
        except Exception as exc:
            raise SyncError(f"listing nodes from sqlite: {exc}") from exc

        logger.info("syncing %d nodes to memgraph", len(nodes))
        for start in range(0, len(nodes), _BATCH_SIZE):
            batch = nodes[start:start + _BATCH_SIZE]
            end = start + len(batch)
            try:
                list(session.run(_CREATE_NODES, {"nodes": [node_to_params(n) for n in batch]}))
            except Exception as exc:
                raise SyncError(f"syncing node batch {start}-{end}: {exc}") from exc

        try:
            edges = store.all_edges()
        except Exception as exc:
            raise SyncError(f"listing edges from sqlite: {exc}") from exc

        logger.info("syncing %d edges to memgraph", len(edges))
        for start in range(0, len(edges), _BATCH_SIZE):
            batch = edges[start:start + _BATCH_SIZE]
            end = start + len(batch)
            try:
                list(session.run(_CREATE_EDGES, {"edges": [edge_to_params(e) for e in batch]}))
            except Exception as exc:
                raise SyncError(f"syncing edge batch {start}-{end}: {exc}") from exc
    finally:
        try:
            session.close()
        except Exception as exc:  # closing is best effort
            logger.debug("closing session failed: %s", exc)

    logger.info("memgraph sync complete: %d nodes, %d edges", len(nodes), len(edges))
    print(f"Synced {len(nodes)} nodes and {len(edges)} edges to Memgraph")
    return len(nodes), len(edges)