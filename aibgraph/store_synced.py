"""A SQLite store that mirrors its writes to a graph database."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from .cypher import Session, SessionFactory
from .models import Edge, Node, format_timestamp
from .store_sqlite import SQLiteStore

_UPSERT_NODE = """
    MERGE (n:Asset {id: $id})
    SET n.name = $name,
        n.type = $type,
        n.source = $source,
        n.source_file = $sourceFile,
        n.provider = $provider,
        n.metadata = $metadata,
        n.expires_at = $expiresAt,
        n.last_seen = $lastSeen,
        n.first_seen = $firstSeen
"""

_UPSERT_EDGE = """
    MATCH (from:Asset {id: $fromID})
    MATCH (to:Asset {id: $toID})
    MERGE (from)-[r:EDGE {id: $id}]->(to)
    SET r.type = $type,
        r.metadata = $metadata
"""

_DELETE_NODE = "MATCH (n:Asset {id: $id}) DETACH DELETE n"


def _json(metadata: Optional[dict[str, str]]) -> str:
    return json.dumps(metadata, sort_keys=True, separators=(",", ":"))


class SyncedStore:
    """Wraps a :class:`SQLiteStore` and mirrors writes to the graph database.

    Failures on the graph side are logged and never stop the SQLite write.
    Every other store method is served by the wrapped store.
    """

    def __init__(
        self,
        store: SQLiteStore,
        driver: Any = None,
        session_factory: Optional[SessionFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._driver = driver
        if session_factory is None and driver is not None:
            opener = getattr(driver, "session", None)
            if callable(opener):
                session_factory = opener
        self._session_factory = session_factory
        self._logger = logger or logging.getLogger(__name__)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") or name == "_store":
            raise AttributeError(name)
        return getattr(self._store, name)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        assert self._session_factory is not None
        session = self._session_factory()
        try:
            yield session
        finally:
            try:
                session.close()
            except Exception as exc:  # closing is best effort
                self._logger.debug("closing session failed: %s", exc)

    def _run(self, cypher: str, params: dict[str, Any]) -> None:
        with self._session() as session:
            list(session.run(cypher, params))

    def upsert_node(self, node: Node) -> None:
        """Insert or update a node in SQLite, then mirror it."""
        self._store.upsert_node(node)
        if self._session_factory is None:
            return
        params = {
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
        try:
            self._run(_UPSERT_NODE, params)
        except Exception as exc:
            self._logger.warning("failed to sync node %s to memgraph: %s", node.id, exc)

    def upsert_edge(self, edge: Edge) -> None:
        """Insert or update an edge in SQLite, then mirror it."""
        self._store.upsert_edge(edge)
        if self._session_factory is None:
            return
        params = {
            "id": edge.id,
            "fromID": edge.from_id,
            "toID": edge.to_id,
            "type": str(edge.type),
            "metadata": _json(edge.metadata),
        }
        try:
            self._run(_UPSERT_EDGE, params)
        except Exception as exc:
            self._logger.warning("failed to sync edge %s to memgraph: %s", edge.id, exc)

    def delete_node(self, node_id: str) -> None:
        """Delete a node from SQLite and from the graph database."""
        self._store.delete_node(node_id)
        if self._session_factory is None:
            return
        try:
            self._run(_DELETE_NODE, {"id": node_id})
        except Exception as exc:
            self._logger.warning("failed to delete node %s from memgraph: %s", node_id, exc)

    def close(self) -> None:
        """Close the SQLite store and the driver; the SQLite error wins if both fail."""
        sql_error: Optional[BaseException] = None
        try:
            self._store.close()
        except Exception as exc:
            sql_error = exc
        if self._driver is not None:
            try:
                self._driver.close()
            except Exception:
                if sql_error is None:
                    raise
        if sql_error is not None:
            raise sql_error

    def underlying(self) -> SQLiteStore:
        """Return the wrapped SQLite store."""
        return self._store

    def has_memgraph(self) -> bool:
        """Return True if a graph database driver is attached."""
        return self._driver is not None

    def memgraph_driver(self) -> Any:
        """Return the graph database driver, or None."""
        return self._driver