"""Core data models for generator graphs.

A :class:`NodeGraph` is an ordered set of :class:`GraphNode` records joined by
:class:`Edge` records between typed :class:`Port` s.  Node behaviour is selected
by the closed :class:`NodeType` enumeration and configured by a
variant-specific record from :mod:`graph.node_data`.

:class:`NodeGroup` and node positions exist for the editor only; the engine
never reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple, TYPE_CHECKING

from common.constants import ANY_DATA_TYPE

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from graph.node_data import NodeData


class NodeType(Enum):
    """Closed set of node variants understood by the engine."""

    # Structural
    START = "start"
    OUTPUT = "output"
    # Room / space
    ROOM = "room"
    ROOM_CHAIN = "room_chain"
    BRANCH = "branch"
    MERGE = "merge"
    # Content
    SPAWN_POINT = "spawn_point"
    LOOT_DROP = "loot_drop"
    ENCOUNTER = "encounter"
    PROP = "prop"
    # Logic
    RANDOM_SELECT = "random_select"
    SEQUENCE = "sequence"
    CONDITION = "condition"
    # Distribution
    DISTRIBUTION = "distribution"

    @classmethod
    def from_str(cls, value: str) -> "NodeType":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown node type: {value!r}") from None


CONTENT_NODE_TYPES = frozenset(
    {NodeType.SPAWN_POINT, NodeType.LOOT_DROP, NodeType.ENCOUNTER, NodeType.PROP}
)


class PortDirection(Enum):
    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True)
class Position:
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class Port:
    """A typed connection point on a node."""

    id: str
    direction: PortDirection
    data_type: str = "room"
    label: Optional[str] = None

    def accepts(self, other: "Port") -> bool:
        """Return ``True`` if an edge between ``self`` and ``other`` type-checks."""
        if ANY_DATA_TYPE in (self.data_type, other.data_type):
            return True
        return self.data_type == other.data_type


@dataclass(frozen=True)
class PortRef:
    node_id: str
    port_id: str


@dataclass(frozen=True)
class Edge:
    """Directed link from an output port to an input port."""

    id: str
    source: PortRef
    target: PortRef
    label: Optional[str] = None


@dataclass(frozen=True)
class GraphNode:
    id: str
    type: NodeType
    data: "NodeData"
    inputs: Tuple[Port, ...] = ()
    outputs: Tuple[Port, ...] = ()
    position: Position = field(default_factory=Position)

    def input_port(self, port_id: str) -> Optional[Port]:
        return next((p for p in self.inputs if p.id == port_id), None)

    def output_port(self, port_id: str) -> Optional[Port]:
        return next((p for p in self.outputs if p.id == port_id), None)


@dataclass(frozen=True)
class NodeGroup:
    """Editor-only visual grouping."""

    id: str
    name: str
    node_ids: Tuple[str, ...] = ()
    color: Optional[str] = None


@dataclass(frozen=True)
class NodeGraph:
    nodes: Tuple[GraphNode, ...] = ()
    edges: Tuple[Edge, ...] = ()
    groups: Tuple[NodeGroup, ...] = ()

    def node_map(self) -> Dict[str, GraphNode]:
        """Map node id to node (first occurrence wins for duplicate ids)."""
        out: Dict[str, GraphNode] = {}
        for node in self.nodes:
            out.setdefault(node.id, node)
        return out

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def nodes_of_type(self, node_type: NodeType) -> Iterator[GraphNode]:
        return (n for n in self.nodes if n.type is node_type)


__all__ = [
    "NodeType",
    "CONTENT_NODE_TYPES",
    "PortDirection",
    "Position",
    "Port",
    "PortRef",
    "Edge",
    "GraphNode",
    "NodeGroup",
    "NodeGraph",
]
