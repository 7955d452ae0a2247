"""Event-driven topological execution of a validated generator graph.

Each node keeps a counter of unresolved incoming edges.  When a node finishes,
every outgoing edge resolves either with a fragment or as pruned, and nodes
whose fan-in policy is satisfied move to a ready heap keyed by node id.  Ties
between independent nodes are therefore broken by node id, never by insertion
order, so the room ordering of a layout is reproducible for a graph and seed.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from common.constants import ROOM_PLACEMENT_RETRIES
from common.errors import NodeExecutionError
from engine.executors import EXECUTORS, NodeContext, NodeOutcome
from engine.fragments import Fragment
from engine.layout import DungeonLayout, GenerationMetadata, LayoutBuilder
from game_rng import derive_stream
from graph.models import Edge, GraphNode, NodeGraph, NodeType
from graph.node_data import MergeData, MergeStrategy
from graph.validation import ensure_valid

log = structlog.get_logger()


class NodeState(Enum):
    PENDING = "pending"
    READY = "ready"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"
    PRUNED = "pruned"


TERMINAL_STATES = frozenset({NodeState.DONE, NodeState.FAILED, NodeState.PRUNED})


@dataclass(frozen=True)
class ExecutionReport:
    layout: DungeonLayout
    metadata: GenerationMetadata
    warnings: Tuple[str, ...] = ()
    states: Dict[str, NodeState] = field(default_factory=dict)


@dataclass(order=True)
class _Arrival:
    port_index: int
    edge_id: str
    source_node: str = field(compare=False)
    fragment: Fragment = field(compare=False)


class _Run:
    """Mutable bookkeeping for one ``execute`` call."""

    def __init__(self, compiled: "GraphExecutor", seed: int, params: Mapping[str, Any]):
        self.compiled = compiled
        self.seed = seed
        self.params = params
        self.builder = LayoutBuilder()
        self.states: Dict[str, NodeState] = {n: NodeState.PENDING for n in compiled.nodes}
        self.pending: Dict[str, int] = dict(compiled.in_degree)
        self.arrivals: Dict[str, List[_Arrival]] = {n: [] for n in compiled.nodes}
        self.ready: List[str] = []
        self.executions = 0
        self.pruned: List[str] = []
        self.merge_winners: Dict[str, str] = {}

    def push(self, node_id: str) -> None:
        self.states[node_id] = NodeState.READY
        heapq.heappush(self.ready, node_id)

    def resolve(self, edge: Edge, fragment: Optional[Fragment]) -> None:
        target = edge.target.node_id
        self.pending[target] -= 1
        if self.states[target] is not NodeState.PENDING:
            # A single-arrival merge already fired; later arrivals are dropped
            return
        node = self.compiled.nodes[target]
        if fragment is not None:
            self.arrivals[target].append(
                _Arrival(
                    self.compiled.port_index[(target, edge.target.port_id)],
                    edge.id,
                    edge.source.node_id,
                    fragment,
                )
            )
            strategy = self.compiled.merge_strategy.get(target)
            if strategy in (MergeStrategy.ANY, MergeStrategy.FIRST):
                if strategy is MergeStrategy.FIRST:
                    self.merge_winners[target] = edge.source.node_id
                self.push(target)
                return
        if self.pending[target] == 0:
            if self.arrivals[target]:
                self.push(target)
            else:
                self.prune(node)

    def prune(self, node: GraphNode) -> None:
        self.states[node.id] = NodeState.PRUNED
        self.pruned.append(node.id)
        log.debug("Node pruned", node_id=node.id)
        for edge in self.compiled.outgoing[node.id]:
            self.resolve(edge, None)

    def execute_node(self, node: GraphNode) -> NodeOutcome:
        handler = EXECUTORS.get(node.type)
        if handler is None:
            raise NodeExecutionError(node.id, f"no executor for node type '{node.type.value}'")
        upstream = [a.fragment for a in sorted(self.arrivals[node.id])]
        ctx = NodeContext(
            node=node,
            rng=derive_stream(self.seed, node.id),
            params=self.params,
            layout=self.builder.scope(node.id),
            placement_retries=self.compiled.placement_retries,
        )
        self.states[node.id] = NodeState.EXECUTING
        try:
            outcome = handler(ctx, upstream)
        except NodeExecutionError:
            self.states[node.id] = NodeState.FAILED
            raise
        except Exception as err:
            self.states[node.id] = NodeState.FAILED
            log.error("Executor raised", node_id=node.id, error=str(err), exc_info=True)
            raise NodeExecutionError(node.id, f"{type(err).__name__}: {err}") from err
        self.states[node.id] = NodeState.DONE
        self.executions += 1
        return outcome

    def run(self) -> ExecutionReport:
        for node_id in self.compiled.roots:
            self.push(node_id)
        while self.ready:
            node = self.compiled.nodes[heapq.heappop(self.ready)]
            outcome = self.execute_node(node)
            for edge in self.compiled.outgoing[node.id]:
                self.resolve(edge, outcome.outputs.get(edge.source.port_id))

        stuck = sorted(n for n, s in self.states.items() if s not in TERMINAL_STATES)
        if stuck:
            # Only reachable with an unvalidated graph
            log.warning("Nodes never became ready", nodes=stuck)
        metadata = GenerationMetadata(
            node_executions=self.executions,
            pruned_nodes=tuple(sorted(self.pruned)),
            merge_winners=dict(self.merge_winners),
        )
        return ExecutionReport(
            layout=self.builder.freeze(),
            metadata=metadata,
            warnings=tuple(self.builder.warnings),
            states=dict(self.states),
        )


class GraphExecutor:
    """Compiled, read-only form of a graph; safe to share across threads.

    Every :meth:`execute` call owns its own state, so one instance can drive
    many concurrent runs.
    """

    def __init__(
        self,
        graph: NodeGraph,
        placement_retries: int = ROOM_PLACEMENT_RETRIES,
        validate: bool = True,
    ) -> None:
        if validate:
            ensure_valid(graph)
        self.graph = graph
        self.placement_retries = placement_retries
        self.nodes: Dict[str, GraphNode] = graph.node_map()
        self.port_index: Dict[Tuple[str, str], int] = {
            (node.id, port.id): i for node in graph.nodes for i, port in enumerate(node.inputs)
        }
        out_index = {
            (node.id, port.id): i for node in graph.nodes for i, port in enumerate(node.outputs)
        }
        self.outgoing: Dict[str, List[Edge]] = {n: [] for n in self.nodes}
        self.in_degree: Dict[str, int] = {n: 0 for n in self.nodes}
        for edge in graph.edges:
            self.outgoing[edge.source.node_id].append(edge)
            self.in_degree[edge.target.node_id] += 1
        for edges in self.outgoing.values():
            edges.sort(key=lambda e: (out_index.get((e.source.node_id, e.source.port_id), 0), e.id))
        self.merge_strategy: Dict[str, MergeStrategy] = {
            node.id: node.data.strategy
            for node in graph.nodes
            if node.type is NodeType.MERGE and isinstance(node.data, MergeData)
        }
        self.roots = sorted(n for n, d in self.in_degree.items() if d == 0)

    def execute(self, seed: int, params: Optional[Mapping[str, Any]] = None) -> ExecutionReport:
        """Run the graph once for ``seed``; raises :class:`NodeExecutionError`."""
        report = _Run(self, seed, dict(params or {})).run()
        log.debug(
            "Graph executed",
            seed=seed,
            nodes=report.metadata.node_executions,
            rooms=len(report.layout.rooms),
            pruned=len(report.metadata.pruned_nodes),
        )
        return report


__all__ = ["GraphExecutor", "ExecutionReport", "NodeState", "TERMINAL_STATES"]
