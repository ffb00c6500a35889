import logging
from datetime import datetime, timedelta, timezone

import pytest

from aibgraph.models import AssetType, Edge, EdgeType, Node
from aibgraph.store_sqlite import SQLiteStore, generate_edge_id
from aibgraph.sync import SyncError, edge_to_params, node_to_params, sync_to_memgraph

LOGGER = logging.getLogger("test_sync")


class MockSession:
    def __init__(self, run_func=None):
        self.run_func = run_func
        self.calls = []
        self.closed = False

    def run(self, cypher, params):
        self.calls.append((cypher, params))
        if self.run_func is not None:
            return self.run_func(cypher, params)
        return []

    def close(self):
        self.closed = True


def fail_after(count, message):
    calls = {"n": 0}

    def run(_cypher, _params):
        calls["n"] += 1
        if calls["n"] > count:
            raise RuntimeError(message)
        return []

    return run


def make_node(node_id, asset_type, source):
    now = datetime.now(timezone.utc).replace(microsecond=0)
    return Node(id=node_id, name=node_id, type=asset_type, source=source,
                provider="test", metadata={}, last_seen=now, first_seen=now)


def make_edge(from_id, to_id, edge_type):
    return Edge(id=generate_edge_id(from_id, to_id, edge_type), from_id=from_id,
                to_id=to_id, type=edge_type, metadata={})


@pytest.fixture
def store():
    s = SQLiteStore(":memory:")
    s.init()
    yield s
    s.close()


def test_node_to_params():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    expires = now + timedelta(days=30)
    node = Node(id="vm:web1", name="web1", type=AssetType.VM, source="terraform",
                source_file="main.tf", provider="gcp", metadata={"region": "us-east1"},
                expires_at=expires, last_seen=now, first_seen=now)
    params = node_to_params(node)
    assert params["id"] == "vm:web1"
    assert params["name"] == "web1"
    assert params["type"] == "vm"
    assert params["expiresAt"] == "2024-01-31T00:00:00Z"
    assert params["lastSeen"] == "2024-01-01T00:00:00Z"
    assert params["sourceFile"] == "main.tf"
    assert isinstance(params["metadata"], str)
    assert "us-east1" in params["metadata"]


def test_node_to_params_nil_expiry():
    node = Node(id="a", name="a", type="vm", source="tf", metadata={})
    params = node_to_params(node)
    assert params["expiresAt"] is None
    assert params["metadata"] == "{}"


def test_edge_to_params():
    edge = Edge(id="a->b", from_id="a", to_id="b", type=EdgeType.DEPENDS_ON,
                metadata={"via": "network"})
    params = edge_to_params(edge)
    assert params["id"] == "a->b"
    assert params["fromID"] == "a"
    assert params["toID"] == "b"
    assert params["type"] == "depends_on"
    assert "network" in params["metadata"]


def test_sync_empty_graph(store):
    sess = MockSession()
    assert sync_to_memgraph(store, lambda: sess, LOGGER) == (0, 0)
    assert len(sess.calls) == 4
    assert sess.closed


def test_sync_small_batch(store, capsys):
    for node in (make_node("A", AssetType.VM, "tf"), make_node("B", AssetType.NETWORK, "tf"),
                 make_node("C", AssetType.SUBNET, "tf")):
        store.upsert_node(node)
    store.upsert_edge(make_edge("A", "B", EdgeType.DEPENDS_ON))
    store.upsert_edge(make_edge("B", "C", EdgeType.DEPENDS_ON))

    sess = MockSession()
    assert sync_to_memgraph(store, lambda: sess, LOGGER) == (3, 2)
    assert len(sess.calls) == 6
    assert len(sess.calls[4][1]["nodes"]) == 3
    assert len(sess.calls[5][1]["edges"]) == 2
    assert "Synced 3 nodes and 2 edges to Memgraph" in capsys.readouterr().out


def test_sync_large_batch(store):
    for i in range(550):
        store.upsert_node(make_node(f"node-{i}", AssetType.VM, "tf"))
    sess = MockSession()
    sync_to_memgraph(store, lambda: sess, LOGGER)
    assert len(sess.calls) == 6
    assert len(sess.calls[4][1]["nodes"]) == 500
    assert len(sess.calls[5][1]["nodes"]) == 50


def test_sync_clear_error(store):
    sess = MockSession(fail_after(0, "clear failed"))
    with pytest.raises(SyncError, match="clearing memgraph"):
        sync_to_memgraph(store, lambda: sess, LOGGER)
    assert sess.closed


def test_sync_index_errors_are_tolerated(store):
    def run(cypher, _params):
        if cypher.startswith("CREATE INDEX"):
            raise RuntimeError("index exists")
        return []

    sess = MockSession(run)
    store.upsert_node(make_node("A", AssetType.VM, "tf"))
    assert sync_to_memgraph(store, lambda: sess, LOGGER) == (1, 0)
    assert len(sess.calls) == 5


def test_sync_node_error(store):
    store.upsert_node(make_node("A", AssetType.VM, "tf"))
    sess = MockSession(fail_after(4, "node sync error"))
    with pytest.raises(SyncError, match="syncing node batch 0-1"):
        sync_to_memgraph(store, lambda: sess, LOGGER)


def test_sync_edge_error(store):
    store.upsert_node(make_node("A", AssetType.VM, "tf"))
    store.upsert_node(make_node("B", AssetType.NETWORK, "tf"))
    store.upsert_edge(make_edge("A", "B", EdgeType.DEPENDS_ON))
    sess = MockSession(fail_after(5, "edge sync error"))
    with pytest.raises(SyncError, match="syncing edge batch"):
        sync_to_memgraph(store, lambda: sess, LOGGER)