"""Export the asset graph as JSON, Graphviz DOT or Mermaid."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from .models import AssetType, Edge, EdgeFilter, Node, NodeFilter


class _GraphSource(Protocol):
    def list_nodes(self, node_filter: NodeFilter) -> list[Node]: ...

    def list_edges(self, edge_filter: EdgeFilter) -> list[Edge]: ...


@dataclass
class GraphData:
    """A full snapshot of the graph."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the snapshot."""
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GraphData":
        """Build a snapshot from a mapping produced by :meth:`to_dict`."""
        return cls(
            nodes=[Node.from_dict(item) for item in data.get("nodes") or []],
            edges=[Edge.from_dict(item) for item in data.get("edges") or []],
        )


_COLORS = {
    AssetType.VM: "#AED6F1",
    AssetType.NODE: "#AED6F1",
    AssetType.POD: "#A3E4D7",
    AssetType.CONTAINER: "#A3E4D7",
    AssetType.SERVICE: "#F9E79F",
    AssetType.INGRESS: "#F5CBA7",
    AssetType.LOAD_BALANCER: "#F5CBA7",
    AssetType.DATABASE: "#D7BDE2",
    AssetType.CERTIFICATE: "#F1948A",
    AssetType.SECRET: "#E74C3C",
    AssetType.NETWORK: "#85C1E9",
    AssetType.SUBNET: "#85C1E9",
    AssetType.DNS_RECORD: "#82E0AA",
    AssetType.FIREWALL_RULE: "#F0B27A",
    AssetType.FUNCTION: "#F5B041",
    AssetType.API_GATEWAY: "#F9E79F",
    AssetType.NOSQL_DB: "#D7BDE2",
}
_DEFAULT_COLOR = "#D5D8DC"

_MERMAID_UNSAFE = str.maketrans({":": "_", ".": "_", "-": "_", "/": "_"})

_ESCAPES = {'"': '\\"', "\\": "\\\\", "\n": "\\n", "\t": "\\t", "\r": "\\r",
            "\a": "\\a", "\b": "\\b", "\f": "\\f", "\v": "\\v"}


def _quote(text: str) -> str:
    """Quote a string as a double-quoted literal with backslash escapes."""
    parts = []
    for char in text:
        if char in _ESCAPES:
            parts.append(_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            parts.append(f"\\x{ord(char):02x}")
        else:
            parts.append(char)
    return '"' + "".join(parts) + '"'


def _snapshot(store: _GraphSource) -> tuple[list[Node], list[Edge]]:
    return store.list_nodes(NodeFilter()), store.list_edges(EdgeFilter())


def node_color(asset_type: Union[AssetType, str]) -> str:
    """Return the fill colour used for an asset type in DOT output."""
    return _COLORS.get(AssetType.coerce(asset_type), _DEFAULT_COLOR)


def mermaid_safe_id(node_id: str) -> str:
    """Replace characters Mermaid cannot take in an identifier with underscores."""
    return node_id.translate(_MERMAID_UNSAFE)


def export_json(store: _GraphSource) -> str:
    """Return the whole graph as indented JSON."""
    nodes, edges = _snapshot(store)
    return json.dumps(GraphData(nodes=nodes, edges=edges).to_dict(), indent=2)


def export_dot(store: _GraphSource) -> str:
    """Return the whole graph in Graphviz DOT format."""
    nodes, edges = _snapshot(store)
    lines = ["digraph aib {", "  rankdir=LR;", "  node [shape=box, style=filled];", ""]
    for node in nodes:
        label = f"{node.name}\\n({node.type})"
        lines.append(
            f"  {_quote(node.id)} [label={_quote(label)}, fillcolor={_quote(node_color(node.type))}];"
        )
    lines.append("")
    for edge in edges:
        lines.append(f"  {_quote(edge.from_id)} -> {_quote(edge.to_id)} [label={_quote(str(edge.type))}];")
    lines.append("}")
    return "\n".join(lines) + "\n"


def export_mermaid(store: _GraphSource) -> str:
    """Return the whole graph as a Mermaid flowchart."""
    nodes, edges = _snapshot(store)
    lines = ["graph LR"]
    lines.extend(f'  {mermaid_safe_id(node.id)}["{node.name} ({node.type})"]' for node in nodes)
    lines.extend(
        f"  {mermaid_safe_id(edge.from_id)} -->|{edge.type}| {mermaid_safe_id(edge.to_id)}"
        for edge in edges
    )
    return "\n".join(lines) + "\n"