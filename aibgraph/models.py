"""Data types for the asset graph: assets, relationships, filters and scan records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
"""Timestamp used when a time is unset or could not be parsed."""


class _StrEnum(str, enum.Enum):
    """String enum whose str() is its value."""

    def __str__(self) -> str:
        return self.value

    @classmethod
    def coerce(cls, value: Any) -> Union["_StrEnum", str]:
        """Return the member for ``value`` if there is one, else the plain string."""
        text = value.value if isinstance(value, enum.Enum) else str(value)
        try:
            return cls(text)
        except ValueError:
            return text


class AssetType(_StrEnum):
    """Kind of infrastructure asset."""

    VM = "vm"
    NODE = "node"
    POD = "pod"
    CONTAINER = "container"
    SERVICE = "service"
    INGRESS = "ingress"
    LOAD_BALANCER = "load_balancer"
    DATABASE = "database"
    CERTIFICATE = "certificate"
    SECRET = "secret"
    NETWORK = "network"
    SUBNET = "subnet"
    DNS_RECORD = "dns_record"
    FIREWALL_RULE = "firewall_rule"
    FUNCTION = "function"
    API_GATEWAY = "api_gateway"
    NOSQL_DB = "nosql_db"


class EdgeType(_StrEnum):
    """Kind of relationship between two assets."""

    DEPENDS_ON = "depends_on"
    CONNECTS_TO = "connects_to"


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as an RFC 3339 string in UTC, without fractional seconds."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    utc = moment.astimezone(timezone.utc)
    return (
        f"{utc.year:04d}-{utc.month:02d}-{utc.day:02d}"
        f"T{utc.hour:02d}:{utc.minute:02d}:{utc.second:02d}Z"
    )


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; raise ValueError if it is malformed or has no zone."""
    if not isinstance(text, str) or not text:
        raise ValueError(f"invalid timestamp: {text!r}")
    candidate = text
    if candidate[-1] in "Zz":
        candidate = candidate[:-1] + "+00:00"
    moment = datetime.fromisoformat(candidate)
    if moment.tzinfo is None:
        raise ValueError(f"timestamp has no time zone: {text!r}")
    return moment


def _timestamp_or(text: Optional[str], default: Optional[datetime]) -> Optional[datetime]:
    if not text:
        return default
    try:
        return parse_timestamp(text)
    except ValueError:
        return default


@dataclass
class Node:
    """An asset in the graph."""

    id: str
    name: str
    type: Union[AssetType, str]
    source: str
    source_file: str = ""
    provider: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    last_seen: datetime = ZERO_TIME
    first_seen: datetime = ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this node."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": str(self.type),
            "source": self.source,
            "source_file": self.source_file,
            "provider": self.provider,
            "metadata": dict(self.metadata),
        }
        if self.expires_at is not None:
            data["expires_at"] = format_timestamp(self.expires_at)
        data["last_seen"] = format_timestamp(self.last_seen)
        data["first_seen"] = format_timestamp(self.first_seen)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        """Build a node from a mapping produced by :meth:`to_dict`."""
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            type=AssetType.coerce(data.get("type", "")),
            source=data.get("source", ""),
            source_file=data.get("source_file", "") or "",
            provider=data.get("provider", "") or "",
            metadata=dict(data.get("metadata") or {}),
            expires_at=_timestamp_or(data.get("expires_at"), None),
            last_seen=_timestamp_or(data.get("last_seen"), ZERO_TIME),
            first_seen=_timestamp_or(data.get("first_seen"), ZERO_TIME),
        )


@dataclass
class Edge:
    """A directed relationship: ``from_id`` relates to (usually depends on) ``to_id``."""

    id: str
    from_id: str
    to_id: str
    type: Union[EdgeType, str]
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this edge."""
        return {
            "id": self.id,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "type": str(self.type),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Edge":
        """Build an edge from a mapping produced by :meth:`to_dict`."""
        return cls(
            id=data.get("id", ""),
            from_id=data.get("from_id", ""),
            to_id=data.get("to_id", ""),
            type=EdgeType.coerce(data.get("type", "")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class NodeFilter:
    """Criteria for listing nodes; empty values match everything."""

    type: str = ""
    source: str = ""
    provider: str = ""
    stale_days: int = 0


@dataclass
class EdgeFilter:
    """Criteria for listing edges; empty values match everything."""

    type: str = ""
    from_id: str = ""
    to_id: str = ""


@dataclass
class Scan:
    """A record of one scan operation."""

    source: str = ""
    source_path: str = ""
    started_at: datetime = ZERO_TIME
    status: str = ""
    id: int = 0
    finished_at: Optional[datetime] = None
    nodes_found: int = 0
    edges_found: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of this scan."""
        data: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "source_path": self.source_path,
            "started_at": format_timestamp(self.started_at),
        }
        if self.finished_at is not None:
            data["finished_at"] = format_timestamp(self.finished_at)
        data["nodes_found"] = self.nodes_found
        data["edges_found"] = self.edges_found
        data["status"] = self.status
        return data