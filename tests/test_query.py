from datetime import datetime, timezone

import pytest

from aibgraph.models import AssetType, Edge, EdgeType, Node
from aibgraph.query import ImpactNode, ImpactResult, blast_radius, blast_radius_tree
from aibgraph.store_sqlite import SQLiteStore, generate_edge_id


def make_node(node_id, asset_type, source="tf"):
    now = datetime.now(timezone.utc).replace(microsecond=0)
    return Node(id=node_id, name=node_id, type=asset_type, source=source,
                provider="test", metadata={}, last_seen=now, first_seen=now)


def make_edge(from_id, to_id, edge_type=EdgeType.DEPENDS_ON):
    return Edge(id=generate_edge_id(from_id, to_id, edge_type), from_id=from_id,
                to_id=to_id, type=edge_type, metadata={})


@pytest.fixture
def store():
    with SQLiteStore(":memory:") as db:
        db.init()
        yield db


def build(store, nodes, edges=()):
    for node in nodes:
        store.upsert_node(node)
    for edge in edges:
        store.upsert_edge(edge)


@pytest.fixture
def linear(store):
    build(store,
          [make_node("A", AssetType.VM), make_node("B", AssetType.NETWORK), make_node("C", AssetType.SUBNET)],
          [make_edge("A", "B"), make_edge("B", "C")])
    return store


def test_blast_radius_paths_and_depths(linear):
    result = blast_radius(linear, "C")
    assert result.root == "C"
    assert result.affected_nodes == len(result.impact_tree)
    assert set(result.impact_tree) == {"A", "B"}
    assert result.impact_tree["B"].path_from_root == ["C", "B"]
    assert result.impact_tree["A"].path_from_root == ["C", "B", "A"]
    assert result.impact_tree["A"].depth == result.impact_tree["B"].depth + 1
    assert result.impact_tree["B"].edge_type == EdgeType.DEPENDS_ON


def test_blast_radius_counts_by_type(linear):
    result = blast_radius(linear, "C")
    assert result.affected_by_type == {"network": 1, "vm": 1}
    assert sum(result.affected_by_type.values()) == result.affected_nodes


def test_blast_radius_of_top_node_is_empty(linear):
    result = blast_radius(linear, "A")
    assert result.affected_nodes == 0
    assert result.impact_tree == {}


def test_blast_radius_cycle_excludes_start(store):
    build(store,
          [make_node("A", AssetType.VM), make_node("B", AssetType.VM)],
          [make_edge("A", "B"), make_edge("B", "A")])
    result = blast_radius(store, "A")
    assert set(result.impact_tree) == {"B"}


def test_blast_radius_tree_root_node(linear):
    tree = blast_radius_tree(linear, "C")
    assert tree.node_id == "C"
    assert tree.node.id == "C"
    assert tree.depth == 0
    assert [child.node_id for child in tree.children] == ["B"]
    assert [child.depth for child in tree.children[0].children] == [tree.children[0].depth + 1]


def test_blast_radius_tree_missing_start(store):
    tree = blast_radius_tree(store, "ghost")
    assert tree.node is None
    assert tree.children == []


def test_blast_radius_tree_visits_each_node_once(store):
    build(store,
          [make_node(name, AssetType.VM) for name in "ABCD"],
          [make_edge("A", "C"), make_edge("B", "C"), make_edge("A", "D"), make_edge("B", "D"),
           make_edge("C", "D")])
    tree = blast_radius_tree(store, "D")
    ids = [node.node_id for node in tree.walk()]
    assert sorted(ids) == ["A", "B", "C", "D"]


def test_blast_radius_tree_deep_chain(store):
    names = [f"n{i}" for i in range(1500)]
    build(store, [make_node(name, AssetType.VM) for name in names],
          [make_edge(names[i + 1], names[i]) for i in range(len(names) - 1)])
    tree = blast_radius_tree(store, names[0])
    visited = list(tree.walk())
    assert len(visited) == len(names)
    assert visited[-1].node_id == names[-1]
    assert visited[-1].depth == len(names) - 1


def test_tree_and_flat_agree(linear):
    flat = blast_radius(linear, "C")
    tree = blast_radius_tree(linear, "C")
    assert {n.node_id for n in tree.walk()} - {"C"} == set(flat.impact_tree)


def test_impact_result_to_dict(linear):
    data = blast_radius(linear, "C").to_dict()
    assert data["root"] == "C"
    assert data["affected_nodes"] == 2
    assert data["impact_tree"]["A"]["path_from_root"] == ["C", "B", "A"]
    assert data["impact_tree"]["A"]["edge_type"] == "depends_on"
    assert data["impact_tree"]["A"]["node"]["id"] == "A"


def test_impact_node_to_dict_omits_empty():
    data = ImpactNode(node_id="x").to_dict()
    assert "node" not in data
    assert "children" not in data
    assert data["path_from_root"] is None


def test_from_tree_ignores_missing_nodes():
    result = ImpactResult.from_tree("r", {"x": ImpactNode(node_id="x")})
    assert result.affected_nodes == 1
    assert result.affected_by_type == {}