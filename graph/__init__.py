"""Generator graph model: typed nodes and ports, parsing, building and validation."""

from .models import (
    Edge,
    GraphNode,
    NodeGraph,
    NodeGroup,
    NodeType,
    Port,
    PortDirection,
    PortRef,
    Position,
)
from .node_data import *  # noqa: F401,F403
from .builder import GraphBuilder, default_ports
from .parser import parse_graph, parse_node_data
from .validation import GraphViolation, ValidationResult, ensure_valid, validate_graph

__all__ = [
    "Edge",
    "GraphNode",
    "NodeGraph",
    "NodeGroup",
    "NodeType",
    "Port",
    "PortDirection",
    "PortRef",
    "Position",
    "GraphBuilder",
    "default_ports",
    "parse_graph",
    "parse_node_data",
    "GraphViolation",
    "ValidationResult",
    "ensure_valid",
    "validate_graph",
]
