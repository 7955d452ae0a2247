"""Structural validation of generator graphs.

:func:`validate_graph` runs every check before any random number is drawn
and collects all violations so the editor can show them together.  Checks run
in a fixed order:

1. edges reference existing nodes and ports (output → input);
2. port data types are compatible;
3. input ports take at most one edge, merge nodes take at least two;
4. the graph is acyclic;
5. exactly one ``start`` node with no incoming edges, every node reachable;
6. at least one ``output`` node, every ``output`` reachable.
"""

from __future__ import annotations

from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import structlog

from common.errors import GraphValidationError
from graph.models import Edge, NodeGraph, NodeType

log = structlog.get_logger()


@dataclass(frozen=True)
class GraphViolation:
    """One structural problem, addressable by node or edge id."""

    code: str
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "code": self.code,
            "message": self.message,
            "nodeId": self.node_id,
            "edgeId": self.edge_id,
        }


@dataclass(frozen=True)
class ValidationResult:
    errors: List[GraphViolation] = field(default_factory=list)
    warnings: List[GraphViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, object]:
        return {
            "valid": self.valid,
            "errors": [v.to_dict() for v in self.errors],
            "warnings": [v.to_dict() for v in self.warnings],
        }


def _check_references(graph: NodeGraph, errors: List[GraphViolation]) -> List[Edge]:
    """Return the edges whose endpoints resolve to real output/input ports."""
    node_counts = Counter(n.id for n in graph.nodes)
    for node_id, count in sorted(node_counts.items()):
        if count > 1:
            errors.append(
                GraphViolation(
                    "duplicate_node", f"Node id '{node_id}' is used {count} times", node_id=node_id
                )
            )
    edge_counts = Counter(e.id for e in graph.edges)
    for edge_id, count in sorted(edge_counts.items()):
        if count > 1:
            errors.append(
                GraphViolation(
                    "duplicate_edge", f"Edge id '{edge_id}' is used {count} times", edge_id=edge_id
                )
            )

    nodes = graph.node_map()
    resolved: List[Edge] = []
    for edge in graph.edges:
        ok = True
        source = nodes.get(edge.source.node_id)
        target = nodes.get(edge.target.node_id)
        if source is None:
            errors.append(
                GraphViolation(
                    "missing_node",
                    f"Edge '{edge.id}' starts at unknown node '{edge.source.node_id}'",
                    edge_id=edge.id,
                )
            )
            ok = False
        elif source.output_port(edge.source.port_id) is None:
            kind = "an input port" if source.input_port(edge.source.port_id) else "unknown"
            errors.append(
                GraphViolation(
                    "missing_port",
                    f"Edge '{edge.id}' source port '{edge.source.port_id}' on "
                    f"'{source.id}' is {kind}, expected an output port",
                    node_id=source.id,
                    edge_id=edge.id,
                )
            )
            ok = False
        if target is None:
            errors.append(
                GraphViolation(
                    "missing_node",
                    f"Edge '{edge.id}' ends at unknown node '{edge.target.node_id}'",
                    edge_id=edge.id,
                )
            )
            ok = False
        elif target.input_port(edge.target.port_id) is None:
            kind = "an output port" if target.output_port(edge.target.port_id) else "unknown"
            errors.append(
                GraphViolation(
                    "missing_port",
                    f"Edge '{edge.id}' target port '{edge.target.port_id}' on "
                    f"'{target.id}' is {kind}, expected an input port",
                    node_id=target.id,
                    edge_id=edge.id,
                )
            )
            ok = False
        if ok:
            resolved.append(edge)
    return resolved


def _check_port_types(
    graph: NodeGraph, edges: List[Edge], errors: List[GraphViolation]
) -> None:
    nodes = graph.node_map()
    for edge in edges:
        out_port = nodes[edge.source.node_id].output_port(edge.source.port_id)
        in_port = nodes[edge.target.node_id].input_port(edge.target.port_id)
        if out_port is None or in_port is None:
            # Dangling ports are reported by the reference check
            continue
        if not out_port.accepts(in_port):
            errors.append(
                GraphViolation(
                    "port_type_mismatch",
                    f"Edge '{edge.id}' connects '{out_port.data_type}' output to "
                    f"'{in_port.data_type}' input",
                    edge_id=edge.id,
                )
            )


def _check_fan_in(graph: NodeGraph, edges: List[Edge], errors: List[GraphViolation]) -> None:
    per_port = Counter((e.target.node_id, e.target.port_id) for e in edges)
    for (node_id, port_id), count in sorted(per_port.items()):
        if count > 1:
            errors.append(
                GraphViolation(
                    "port_overloaded",
                    f"Input port '{port_id}' on '{node_id}' has {count} incoming edges; "
                    "at most one is allowed",
                    node_id=node_id,
                )
            )
    per_node = Counter(e.target.node_id for e in edges)
    for node in graph.nodes_of_type(NodeType.MERGE):
        if per_node[node.id] < 2:
            errors.append(
                GraphViolation(
                    "merge_underfed",
                    f"Merge '{node.id}' has {per_node[node.id]} incoming edge(s); "
                    "a merge needs at least two",
                    node_id=node.id,
                )
            )


def _check_acyclic(
    node_ids: List[str], edges: List[Edge], errors: List[GraphViolation]
) -> bool:
    """Kahn in-degree peel; whatever cannot be peeled sits on a cycle."""
    indegree: Dict[str, int] = {n: 0 for n in node_ids}
    successors: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        successors[edge.source.node_id].append(edge.target.node_id)
        indegree[edge.target.node_id] += 1
    queue = deque(sorted(n for n, d in indegree.items() if d == 0))
    peeled = 0
    while queue:
        current = queue.popleft()
        peeled += 1
        for nxt in successors[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                queue.append(nxt)
    if peeled == len(indegree):
        return True
    stuck = sorted(n for n, d in indegree.items() if d > 0)
    errors.append(
        GraphViolation(
            "cycle",
            f"Graph contains a cycle through: {', '.join(stuck)}",
            node_id=stuck[0] if stuck else None,
        )
    )
    return False


def _reachable_from(start_id: str, edges: List[Edge]) -> Set[str]:
    successors: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        successors[edge.source.node_id].append(edge.target.node_id)
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        for nxt in successors[queue.popleft()]:
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen


def _check_start_and_outputs(
    graph: NodeGraph, edges: List[Edge], errors: List[GraphViolation]
) -> None:
    starts = list(graph.nodes_of_type(NodeType.START))
    outputs = list(graph.nodes_of_type(NodeType.OUTPUT))

    reachable: Optional[Set[str]] = None
    if len(starts) != 1:
        errors.append(
            GraphViolation(
                "start_count",
                f"Graph must have exactly one start node, found {len(starts)}",
            )
        )
    else:
        start = starts[0]
        incoming = [e for e in edges if e.target.node_id == start.id]
        if incoming:
            errors.append(
                GraphViolation(
                    "start_has_inputs",
                    f"Start node '{start.id}' must not have incoming edges",
                    node_id=start.id,
                )
            )
        reachable = _reachable_from(start.id, edges)
        for node in graph.nodes:
            if node.id not in reachable and node.type is not NodeType.OUTPUT:
                errors.append(
                    GraphViolation(
                        "unreachable",
                        f"Node '{node.id}' ({node.type.value}) is not reachable from start",
                        node_id=node.id,
                    )
                )

    if not outputs:
        errors.append(GraphViolation("no_output", "Graph has no output node"))
    elif reachable is not None:
        for node in outputs:
            if node.id not in reachable:
                errors.append(
                    GraphViolation(
                        "output_unreachable",
                        f"Output node '{node.id}' is not reachable from start",
                        node_id=node.id,
                    )
                )


def _collect_warnings(graph: NodeGraph, edges: List[Edge]) -> List[GraphViolation]:
    warnings: List[GraphViolation] = []
    known = {n.id for n in graph.nodes}
    for group in graph.groups:
        missing = [nid for nid in group.node_ids if nid not in known]
        if missing:
            warnings.append(
                GraphViolation(
                    "group_missing_nodes",
                    f"Group '{group.name}' references unknown nodes: {', '.join(missing)}",
                )
            )
    wired = {(e.source.node_id, e.source.port_id) for e in edges}
    for node in graph.nodes:
        for port in node.outputs:
            if (node.id, port.id) not in wired:
                warnings.append(
                    GraphViolation(
                        "dangling_output",
                        f"Output port '{port.id}' on '{node.id}' is not connected",
                        node_id=node.id,
                    )
                )
    return warnings


def validate_graph(graph: NodeGraph) -> ValidationResult:
    """Check ``graph`` structurally; never consumes randomness."""
    errors: List[GraphViolation] = []
    edges = _check_references(graph, errors)
    _check_port_types(graph, edges, errors)
    _check_fan_in(graph, edges, errors)
    _check_acyclic(list(graph.node_map()), edges, errors)
    # Reachability stays well defined on a cyclic graph, so it is reported too
    _check_start_and_outputs(graph, edges, errors)
    result = ValidationResult(errors=errors, warnings=_collect_warnings(graph, edges))
    log.debug(
        "Graph validated",
        nodes=len(graph.nodes),
        edges=len(graph.edges),
        errors=len(result.errors),
        warnings=len(result.warnings),
    )
    return result


def ensure_valid(graph: NodeGraph) -> ValidationResult:
    """Validate ``graph`` and raise :class:`GraphValidationError` on any error."""
    result = validate_graph(graph)
    if not result.valid:
        raise GraphValidationError(result.errors)
    return result


__all__ = ["GraphViolation", "ValidationResult", "validate_graph", "ensure_valid"]
