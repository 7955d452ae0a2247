"""Fluent construction of generator graphs.

The builder fills in the ports each node type carries in the editor, so graphs
can be assembled in code and tests without spelling out every port::

    graph = (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("hall", NodeType.ROOM_CHAIN, count_range=IntRange(3, 3))
        .add("exit", NodeType.OUTPUT)
        .chain("start", "hall", "exit")
        .build()
    )
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple, Union

from common.constants import ANY_DATA_TYPE
from graph.models import (
    CONTENT_NODE_TYPES,
    Edge,
    GraphNode,
    NodeGraph,
    NodeType,
    Port,
    PortDirection,
    PortRef,
    Position,
)
from graph.node_data import (
    BranchData,
    NodeData,
    RandomSelectData,
    default_data,
)

Ports = Tuple[Tuple[Port, ...], Tuple[Port, ...]]


def _in(port_id: str, data_type: str = "room", label: Optional[str] = None) -> Port:
    return Port(port_id, PortDirection.INPUT, data_type, label)


def _out(port_id: str, data_type: str = "room", label: Optional[str] = None) -> Port:
    return Port(port_id, PortDirection.OUTPUT, data_type, label)


def default_ports(node_type: NodeType, data: Optional[NodeData] = None) -> Ports:
    """Ports a node of ``node_type`` gets when placed in the editor."""
    if node_type is NodeType.START:
        return (), (_out("out", label="Out"),)
    if node_type is NodeType.OUTPUT:
        return (_in("in", label="In"),), ()
    if node_type in (NodeType.ROOM, NodeType.ROOM_CHAIN):
        return (_in("in", label="In"),), (_out("out", label="Out"),)
    if node_type in (NodeType.BRANCH, NodeType.RANDOM_SELECT):
        count = 2
        if isinstance(data, (BranchData, RandomSelectData)) and data.weights:
            count = max(2, len(data.weights))
        outputs = tuple(_out(f"out{i}", label=f"Path {i}") for i in range(1, count + 1))
        return (_in("in", label="In"),), outputs
    if node_type is NodeType.MERGE:
        inputs = tuple(_in(f"in{i}", label=f"Path {i}") for i in (1, 2))
        return inputs, (_out("out", label="Out"),)
    if node_type in CONTENT_NODE_TYPES:
        return (_in("room", label="Room"),), ()
    if node_type is NodeType.CONDITION:
        return (
            (_in("in", ANY_DATA_TYPE, "In"),),
            (_out("true", ANY_DATA_TYPE, "True"), _out("false", ANY_DATA_TYPE, "False")),
        )
    return (_in("in", ANY_DATA_TYPE, "In"),), (_out("out", ANY_DATA_TYPE, "Out"),)


class GraphBuilder:
    """Accumulates nodes and edges and produces an immutable :class:`NodeGraph`."""

    def __init__(self) -> None:
        self._nodes: Dict[str, GraphNode] = {}
        self._order: List[str] = []
        self._edges: List[Edge] = []

    def add(
        self,
        node_id: str,
        node_type: Union[NodeType, str],
        data: Optional[NodeData] = None,
        *,
        inputs: Optional[Tuple[Port, ...]] = None,
        outputs: Optional[Tuple[Port, ...]] = None,
        position: Optional[Position] = None,
        **overrides: Any,
    ) -> "GraphBuilder":
        """Add a node; keyword ``overrides`` replace fields on its data record."""
        if isinstance(node_type, str):
            node_type = NodeType.from_str(node_type)
        record = data if data is not None else default_data(node_type)
        if overrides:
            record = replace(record, **overrides)
        default_in, default_out = default_ports(node_type, record)
        node = GraphNode(
            id=node_id,
            type=node_type,
            data=record,
            inputs=default_in if inputs is None else tuple(inputs),
            outputs=default_out if outputs is None else tuple(outputs),
            position=position or Position(),
        )
        if node_id not in self._nodes:
            self._order.append(node_id)
        self._nodes[node_id] = node
        return self

    def _free_output(self, node: GraphNode) -> str:
        used = {e.source.port_id for e in self._edges if e.source.node_id == node.id}
        for port in node.outputs:
            if port.id not in used:
                return port.id
        if not node.outputs:
            raise ValueError(f"Node '{node.id}' has no output ports")
        return node.outputs[-1].id

    def _free_input(self, node: GraphNode) -> str:
        used = {e.target.port_id for e in self._edges if e.target.node_id == node.id}
        for port in node.inputs:
            if port.id not in used:
                return port.id
        if node.type is NodeType.MERGE:
            extra = _in(f"in{len(node.inputs) + 1}", label=f"Path {len(node.inputs) + 1}")
            self._nodes[node.id] = replace(node, inputs=node.inputs + (extra,))
            return extra.id
        if not node.inputs:
            raise ValueError(f"Node '{node.id}' has no input ports")
        return node.inputs[0].id

    def connect(
        self,
        source: str,
        target: str,
        source_port: Optional[str] = None,
        target_port: Optional[str] = None,
        edge_id: Optional[str] = None,
    ) -> "GraphBuilder":
        """Connect two nodes, picking the next free ports when none are given."""
        if source_port is None:
            source_port = self._free_output(self._nodes[source])
        if target_port is None:
            target_port = self._free_input(self._nodes[target])
        self._edges.append(
            Edge(
                id=edge_id or f"e{len(self._edges) + 1}",
                source=PortRef(source, source_port),
                target=PortRef(target, target_port),
            )
        )
        return self

    def chain(self, *node_ids: str) -> "GraphBuilder":
        for source, target in zip(node_ids, node_ids[1:]):
            self.connect(source, target)
        return self

    def build(self) -> NodeGraph:
        return NodeGraph(
            nodes=tuple(self._nodes[n] for n in self._order),
            edges=tuple(self._edges),
        )


__all__ = ["GraphBuilder", "default_ports"]
