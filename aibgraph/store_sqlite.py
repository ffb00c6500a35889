"""SQLite-backed persistence for the asset graph."""

from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from .models import (
    ZERO_TIME,
    AssetType,
    Edge,
    EdgeFilter,
    EdgeType,
    Node,
    NodeFilter,
    Scan,
    format_timestamp,
    parse_timestamp,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    type        TEXT NOT NULL,
    source      TEXT NOT NULL,
    source_file TEXT,
    provider    TEXT,
    metadata    TEXT,
    expires_at  DATETIME,
    last_seen   DATETIME NOT NULL,
    first_seen  DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS edges (
    id        TEXT PRIMARY KEY,
    from_id   TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    to_id     TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    type      TEXT NOT NULL,
    metadata  TEXT,
    UNIQUE(from_id, to_id, type)
);

CREATE INDEX IF NOT EXISTS idx_nodes_type ON nodes(type);
CREATE INDEX IF NOT EXISTS idx_nodes_source ON nodes(source);
CREATE INDEX IF NOT EXISTS idx_nodes_expires_at ON nodes(expires_at) WHERE expires_at IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_edges_from ON edges(from_id);
CREATE INDEX IF NOT EXISTS idx_edges_to ON edges(to_id);
CREATE INDEX IF NOT EXISTS idx_edges_type ON edges(type);

CREATE TABLE IF NOT EXISTS scans (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    source      TEXT NOT NULL,
    source_path TEXT NOT NULL,
    started_at  DATETIME NOT NULL,
    finished_at DATETIME,
    nodes_found INTEGER DEFAULT 0,
    edges_found INTEGER DEFAULT 0,
    status      TEXT DEFAULT 'running'
);
"""

_NODE_COLUMNS = (
    "id, name, type, source, source_file, provider, metadata, expires_at, last_seen, first_seen"
)


def _load_metadata(text: Optional[str]) -> dict[str, str]:
    if text is None:
        return {}
    try:
        value = json.loads(text)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def _dump_metadata(metadata: Optional[dict[str, str]]) -> str:
    return json.dumps(metadata if metadata is not None else None, sort_keys=True, separators=(",", ":"))


def _parse_or(text: Optional[str], default: Optional[datetime]) -> Optional[datetime]:
    if text is None:
        return default
    try:
        return parse_timestamp(text)
    except ValueError:
        return default


def _row_to_node(row: tuple) -> Node:
    (node_id, name, node_type, source, source_file, provider, meta, expires_at, last_seen, first_seen) = row
    return Node(
        id=node_id,
        name=name,
        type=AssetType.coerce(node_type),
        source=source,
        source_file=source_file or "",
        provider=provider or "",
        metadata=_load_metadata(meta),
        expires_at=_parse_or(expires_at, None),
        last_seen=_parse_or(last_seen, ZERO_TIME),
        first_seen=_parse_or(first_seen, ZERO_TIME),
    )


def _row_to_edge(row: tuple) -> Edge:
    edge_id, from_id, to_id, edge_type, meta = row
    return Edge(
        id=edge_id,
        from_id=from_id,
        to_id=to_id,
        type=EdgeType.coerce(edge_type),
        metadata=_load_metadata(meta),
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteStore:
    """Stores nodes, edges and scan records in a SQLite database."""

    def __init__(self, db_path: str) -> None:
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, mode=0o750, exist_ok=True)
        self._db = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self._db.execute("PRAGMA foreign_keys = ON")
        self._db.execute("PRAGMA journal_mode = WAL")

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def init(self) -> None:
        """Create the schema if it does not exist."""
        self._db.executescript(_SCHEMA)

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    def upsert_node(self, node: Node) -> None:
        """Insert a node, or update it keeping its original first_seen."""
        expires_at = format_timestamp(node.expires_at) if node.expires_at is not None else None
        self._db.execute(
            """
            INSERT INTO nodes (id, name, type, source, source_file, provider, metadata, expires_at, last_seen, first_seen)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                type = excluded.type,
                source = excluded.source,
                source_file = excluded.source_file,
                provider = excluded.provider,
                metadata = excluded.metadata,
                expires_at = excluded.expires_at,
                last_seen = excluded.last_seen
            """,
            (
                node.id,
                node.name,
                str(node.type),
                node.source,
                node.source_file,
                node.provider,
                _dump_metadata(node.metadata),
                expires_at,
                format_timestamp(node.last_seen),
                format_timestamp(node.first_seen),
            ),
        )

    def upsert_edge(self, edge: Edge) -> None:
        """Insert an edge, or update the metadata of the same (from, to, type) edge."""
        self._db.execute(
            """
            INSERT INTO edges (id, from_id, to_id, type, metadata)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(from_id, to_id, type) DO UPDATE SET
                metadata = excluded.metadata
            """,
            (edge.id, edge.from_id, edge.to_id, str(edge.type), _dump_metadata(edge.metadata)),
        )

    def get_node(self, node_id: str) -> Optional[Node]:
        """Return the node with this id, or None."""
        row = self._db.execute(f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return _row_to_node(row) if row is not None else None

    def _query_nodes(self, query: str, args: Iterable[Any]) -> list[Node]:
        return [_row_to_node(row) for row in self._db.execute(query, tuple(args))]

    def list_nodes(self, node_filter: Optional[NodeFilter] = None) -> list[Node]:
        """Return nodes matching the filter, ordered by type then name."""
        node_filter = node_filter or NodeFilter()
        clauses: list[str] = []
        args: list[Any] = []
        if node_filter.type:
            clauses.append("type = ?")
            args.append(str(node_filter.type))
        if node_filter.source:
            clauses.append("source = ?")
            args.append(node_filter.source)
        if node_filter.provider:
            clauses.append("provider = ?")
            args.append(node_filter.provider)
        if node_filter.stale_days > 0:
            clauses.append("last_seen < ?")
            args.append(format_timestamp(_now() - timedelta(days=node_filter.stale_days)))
        where = "".join(f" AND {clause}" for clause in clauses)
        return self._query_nodes(
            f"SELECT {_NODE_COLUMNS} FROM nodes WHERE 1=1{where} ORDER BY type, name", args
        )

    def list_edges(self, edge_filter: Optional[EdgeFilter] = None) -> list[Edge]:
        """Return edges matching the filter, ordered by type then from_id."""
        edge_filter = edge_filter or EdgeFilter()
        clauses: list[str] = []
        args: list[Any] = []
        if edge_filter.type:
            clauses.append("type = ?")
            args.append(str(edge_filter.type))
        if edge_filter.from_id:
            clauses.append("from_id = ?")
            args.append(edge_filter.from_id)
        if edge_filter.to_id:
            clauses.append("to_id = ?")
            args.append(edge_filter.to_id)
        where = "".join(f" AND {clause}" for clause in clauses)
        query = f"SELECT id, from_id, to_id, type, metadata FROM edges WHERE 1=1{where} ORDER BY type, from_id"
        return [_row_to_edge(row) for row in self._db.execute(query, tuple(args))]

    def get_neighbors(self, node_id: str) -> list[Node]:
        """Return nodes directly connected to ``node_id`` in either direction."""
        return self._query_nodes(
            """
            SELECT DISTINCT n.id, n.name, n.type, n.source, n.source_file, n.provider,
                   n.metadata, n.expires_at, n.last_seen, n.first_seen
            FROM nodes n
            WHERE n.id IN (
                SELECT to_id FROM edges WHERE from_id = ?
                UNION
                SELECT from_id FROM edges WHERE to_id = ?
            )
            ORDER BY n.type, n.name
            """,
            (node_id, node_id),
        )

    def get_edges_from(self, node_id: str) -> list[Edge]:
        """Return edges originating at ``node_id``."""
        return self.list_edges(EdgeFilter(from_id=node_id))

    def get_edges_to(self, node_id: str) -> list[Edge]:
        """Return edges pointing at ``node_id``."""
        return self.list_edges(EdgeFilter(to_id=node_id))

    def delete_node(self, node_id: str) -> None:
        """Delete a node; its edges go with it."""
        self._db.execute("DELETE FROM nodes WHERE id = ?", (node_id,))

    def node_count(self) -> int:
        """Return the number of nodes."""
        return self._db.execute("SELECT COUNT(*) FROM nodes").fetchone()[0]

    def edge_count(self) -> int:
        """Return the number of edges."""
        return self._db.execute("SELECT COUNT(*) FROM edges").fetchone()[0]

    def record_scan(self, scan: Scan) -> int:
        """Insert a scan record and return its id."""
        cursor = self._db.execute(
            "INSERT INTO scans (source, source_path, started_at, status) VALUES (?, ?, ?, ?)",
            (scan.source, scan.source_path, format_timestamp(scan.started_at), scan.status),
        )
        return cursor.lastrowid

    def update_scan(self, scan_id: int, status: str, nodes_found: int, edges_found: int) -> None:
        """Set a scan's final status and counts, stamping its finish time."""
        self._db.execute(
            "UPDATE scans SET status = ?, nodes_found = ?, edges_found = ?, finished_at = ? WHERE id = ?",
            (status, nodes_found, edges_found, format_timestamp(_now()), scan_id),
        )

    def list_scans(self, limit: int) -> list[Scan]:
        """Return up to ``limit`` scans, newest first."""
        rows = self._db.execute(
            """
            SELECT id, source, source_path, started_at, finished_at, nodes_found, edges_found, status
            FROM scans ORDER BY id DESC LIMIT ?
            """,
            (limit,),
        )
        return [
            Scan(
                id=scan_id,
                source=source,
                source_path=source_path,
                started_at=_parse_or(started_at, ZERO_TIME),
                finished_at=_parse_or(finished_at, ZERO_TIME) if finished_at is not None else None,
                nodes_found=nodes_found or 0,
                edges_found=edges_found or 0,
                status=status or "",
            )
            for scan_id, source, source_path, started_at, finished_at, nodes_found, edges_found, status in rows
        ]

    def _count_by_type(self, table: str) -> dict[str, int]:
        rows = self._db.execute(f"SELECT type, COUNT(*) FROM {table} GROUP BY type ORDER BY type")
        return {type_name: count for type_name, count in rows}

    def node_count_by_type(self) -> dict[str, int]:
        """Return node counts keyed by type."""
        return self._count_by_type("nodes")

    def edge_count_by_type(self) -> dict[str, int]:
        """Return edge counts keyed by type."""
        return self._count_by_type("edges")

    def expiring_nodes(self, days: int) -> list[Node]:
        """Return nodes expiring between now and ``days`` days from now, soonest first."""
        now = _now()
        return self._query_nodes(
            f"""
            SELECT {_NODE_COLUMNS}
            FROM nodes
            WHERE expires_at IS NOT NULL AND expires_at <= ? AND expires_at >= ?
            ORDER BY expires_at
            """,
            (format_timestamp(now + timedelta(days=days)), format_timestamp(now)),
        )

    def all_edges(self) -> list[Edge]:
        """Return every edge."""
        return self.list_edges(EdgeFilter())

    def build_adjacency(self) -> tuple[dict[str, list[Edge]], dict[str, list[Edge]]]:
        """Return (downstream, upstream): edges keyed by from_id and by to_id."""
        downstream: dict[str, list[Edge]] = {}
        upstream: dict[str, list[Edge]] = {}
        for edge in self.all_edges():
            downstream.setdefault(edge.from_id, []).append(edge)
            upstream.setdefault(edge.to_id, []).append(edge)
        return downstream, upstream


def generate_edge_id(from_id: str, to_id: str, edge_type: EdgeType | str) -> str:
    """Return the deterministic id of an edge."""
    return "->".join([from_id, str(edge_type), to_id])