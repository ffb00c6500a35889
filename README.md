# aibgraph

A library for storing and analysing a graph of infrastructure assets (VMs,
networks, databases, certificates and the like) and the dependencies between
them. It uses only the standard library.

An edge `A -> B` means "A depends on B". If B fails, everything with a path
to B is affected: that is the *blast radius* of B.

## Modules

- `aibgraph.models`: the data types `Node`, `Edge`, `NodeFilter`,
  `EdgeFilter` and `Scan`, and the enums `AssetType` and `EdgeType`.
  Timestamps are stored as RFC 3339 strings in UTC.
- `aibgraph.store_sqlite`: `SQLiteStore`, persistent storage of nodes, edges
  and scan records. It creates the database's directory if needed, and is a
  context manager that closes the connection on exit. Call `init()` once to
  create the schema. Besides upserts and lookups it offers filtered listing,
  `get_neighbors`, `node_count_by_type` / `edge_count_by_type`,
  `expiring_nodes(days)`, scan records (`record_scan`, `update_scan`,
  `list_scans`) and `build_adjacency()`. Upserting a node keeps its original
  `first_seen`; deleting a node deletes its edges. `generate_edge_id` builds
  ids of the form `from->type->to`.
- `aibgraph.query`: `blast_radius` (a flat `ImpactResult`, with depth, edge
  type and path from the root for each affected asset, and counts by type)
  and `blast_radius_tree` (an `ImpactNode` tree rooted at the failing asset).
- `aibgraph.engine_local`: the abstract `GraphEngine` and `LocalEngine`,
  which answers `blast_radius`, `blast_radius_tree`, `neighbors`,
  `shortest_path` and `dependency_chain(node_id, max_depth)` from the SQLite
  store. `shortest_path` ignores edge direction, returns `(nodes, [])` and
  raises `NoPathError` when the assets are not connected.
- `aibgraph.export`: `export_json`, `export_dot` (Graphviz, coloured by asset
  type via `node_color`) and `export_mermaid` (ids made safe with
  `mermaid_safe_id`). `GraphData` holds a snapshot and can be rebuilt from the
  JSON with `GraphData.from_dict`.
- `aibgraph.cypher`: `Record` and the `Session` / `ResultIterator` protocols
  that the graph-database classes work against.
- `aibgraph.engine_memgraph`: `MemgraphEngine`, the same operations run as
  Cypher queries. Whenever a query fails it logs a warning and answers from
  the `LocalEngine` it was given. `dependency_chain` treats depths outside
  1..50 as 50.
- `aibgraph.store_synced`: `SyncedStore` wraps a `SQLiteStore` and mirrors
  `upsert_node`, `upsert_edge` and `delete_node` to the graph database; a
  mirroring failure is logged and never blocks the SQLite write. All other
  methods are served by the wrapped store.
- `aibgraph.sync`: `sync_to_memgraph` clears the graph database, creates
  indexes and reloads every node and edge in batches of 500. It returns the
  numbers of nodes and edges written and raises `SyncError` on failure.

## Usage

```python
from aibgraph.models import AssetType, EdgeType, Node, Edge
from aibgraph.store_sqlite import SQLiteStore, generate_edge_id
from aibgraph.engine_local import LocalEngine
from aibgraph.export import export_mermaid

with SQLiteStore("data/aib.db") as store:
    store.init()
    store.upsert_node(Node(id="web", name="web", type=AssetType.VM, source="terraform"))
    store.upsert_node(Node(id="net", name="net", type=AssetType.NETWORK, source="terraform"))
    store.upsert_edge(Edge(
        id=generate_edge_id("web", "net", EdgeType.DEPENDS_ON),
        from_id="web", to_id="net", type=EdgeType.DEPENDS_ON,
    ))

    engine = LocalEngine(store)
    impact = engine.blast_radius("net")
    print(impact.affected_nodes)          # 1
    print(export_mermaid(store))
```

## Graph database

`MemgraphEngine`, `SyncedStore` and `sync_to_memgraph` take a session factory:
a callable with no arguments returning an object with `run(cypher, params)` and
`close()`, where `run` returns an iterable of `Record` objects. `SyncedStore`
can instead be given a `driver` whose `session` method serves as the factory;
`SyncedStore.close()` closes that driver too.

## What this package does not do

- It ships no client for a graph database. To use `MemgraphEngine`,
  `SyncedStore` or `sync_to_memgraph`, adapt a Bolt client of your choice to
  the session shape above.
- It does not discover assets: it has no scanners and no command-line tool.
  Nodes, edges and scan records are whatever the caller stores.

## Tests

The tests use pytest, which the `test` extra installs.