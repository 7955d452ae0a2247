"""Node executors.

Each :class:`~graph.models.NodeType` maps to one handler in
:data:`EXECUTORS`.  A handler receives a :class:`NodeContext` (the node, its
private RNG stream, resolved parameters and a layout scope) plus the fragments
delivered on its inputs, and returns a :class:`NodeOutcome` saying what flows
out of each output port.  ``None`` on a port prunes everything that depends
only on it.

Handlers raise :class:`~common.errors.NodeExecutionError` for configurations
they cannot honour; the graph executor aborts the whole run when that happens.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from common.constants import BRANCH_PATH_OFFSET, ROOM_PLACEMENT_RETRIES
from common.errors import NodeExecutionError
from engine.fragments import BRANCH_DIRECTIONS, Fragment, merge_fragments
from engine.layout import ExitPoint, NodeScope, PlacedEntity, SpawnPoint
from engine.rooms import (
    RoomSpec,
    build_room,
    checked_spec,
    connect_rooms,
    point_in_room,
    point_near_centre,
    room_ids_in_chain,
    trailing_cursor,
)
from game_rng import GameRNG
from graph.models import GraphNode, NodeType
from graph.node_data import (
    DIFFICULTY_LEVELS,
    BranchData,
    ConditionData,
    ConnectionStyle,
    DistributionData,
    EncounterData,
    IntRange,
    LootDropData,
    PropData,
    RandomSelectData,
    RoomChainData,
    RoomData,
    SpawnArea,
    SpawnPointData,
    StartData,
    OutputData,
)

log = structlog.get_logger()


@dataclass
class NodeContext:
    node: GraphNode
    rng: GameRNG
    params: Mapping[str, Any]
    layout: NodeScope
    placement_retries: int = ROOM_PLACEMENT_RETRIES

    def fail(self, reason: str) -> NodeExecutionError:
        return NodeExecutionError(self.node.id, reason)


@dataclass
class NodeOutcome:
    # Output port id -> fragment, or None when that path is pruned
    outputs: Dict[str, Optional[Fragment]] = field(default_factory=dict)


NodeExecutor = Callable[[NodeContext, List[Fragment]], NodeOutcome]
EXECUTORS: Dict[NodeType, NodeExecutor] = {}


def register_executor(node_type: NodeType, handler: NodeExecutor) -> None:
    """Register ``handler`` for ``node_type``, replacing any previous handler."""
    EXECUTORS[node_type] = handler


def executor(node_type: NodeType) -> Callable[[NodeExecutor], NodeExecutor]:
    def decorator(func: NodeExecutor) -> NodeExecutor:
        register_executor(node_type, func)
        return func

    return decorator


def normalize_weights(weights: Sequence[float]) -> Tuple[float, ...]:
    """Scale ``weights`` to sum to 1, preserving their ratios."""
    if not weights:
        raise ValueError("no weights given")
    if any(w < 0 or not math.isfinite(w) for w in weights):
        raise ValueError(f"weights must be finite and non-negative: {list(weights)}")
    total = math.fsum(weights)
    if total <= 0:
        raise ValueError("weights must not all be zero")
    return tuple(w / total for w in weights)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _single(ctx: NodeContext, upstream: List[Fragment]) -> Fragment:
    if not upstream:
        raise ctx.fail("no upstream fragment arrived")
    return upstream[0] if len(upstream) == 1 else merge_fragments(upstream)


def _anchor(ctx: NodeContext, fragment: Fragment) -> str:
    if fragment.anchor_room_id is None or not ctx.layout.has_room(fragment.anchor_room_id):
        raise ctx.fail(f"{ctx.node.type.value} node has no room to attach to")
    return fragment.anchor_room_id


def _sample_count(ctx: NodeContext, count: IntRange, name: str) -> int:
    problems = count.problems(name)
    if problems:
        raise ctx.fail("; ".join(problems))
    return ctx.rng.get_int(count.min, count.max)


def _only(ctx: NodeContext, fragment: Fragment, chosen: str) -> NodeOutcome:
    return NodeOutcome(
        {p.id: (fragment if p.id == chosen else None) for p in ctx.node.outputs}
    )


# ---------------------------------------------------------------------------
# structural
# ---------------------------------------------------------------------------


@executor(NodeType.START)
def execute_start(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: StartData = ctx.node.data
    offset = (0.5, 0.5)
    if data.spawn_area is SpawnArea.RANDOM:
        offset = (ctx.rng.get_float(0.2, 0.8), ctx.rng.get_float(0.2, 0.8))
    ctx.layout.set_player_start(data.spawn_area, offset)
    fragment = Fragment()
    return NodeOutcome({p.id: fragment for p in ctx.node.outputs})


@executor(NodeType.OUTPUT)
def execute_output(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: OutputData = ctx.node.data
    fragment = _single(ctx, upstream)
    room_id = _anchor(ctx, fragment)
    ctx.layout.add_exit(
        ExitPoint(
            position=ctx.layout.bounds_of(room_id).center,
            room_id=room_id,
            exit_type=data.exit_type,
            requires_key=data.requires_key,
            node_id=ctx.node.id,
        )
    )
    return NodeOutcome()


# ---------------------------------------------------------------------------
# rooms
# ---------------------------------------------------------------------------


def _continue(fragment: Fragment, room_id: str, ctx: NodeContext) -> Fragment:
    bounds = ctx.layout.bounds_of(room_id)
    return fragment.at_room(room_id, trailing_cursor(bounds, fragment.direction))


@executor(NodeType.ROOM)
def execute_room(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: RoomData = ctx.node.data
    spec = checked_spec(
        ctx, RoomSpec(data.size_range, data.shapes, data.door_count, data.room_type, data.tags)
    )
    fragment = _single(ctx, upstream)
    room_id = ctx.node.id
    build_room(
        ctx,
        room_id,
        spec,
        anchor_id=fragment.anchor_room_id,
        cursor=fragment.cursor,
        direction=fragment.direction,
        lateral=fragment.lateral_offset,
        variables=fragment.variables,
    )
    connect_rooms(ctx, fragment.anchors, room_id)
    out = _continue(fragment, room_id, ctx)
    return NodeOutcome({p.id: out for p in ctx.node.outputs})


@executor(NodeType.ROOM_CHAIN)
def execute_room_chain(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: RoomChainData = ctx.node.data
    spec = checked_spec(
        ctx, RoomSpec(data.room_size, data.shapes, data.door_count, data.room_type, data.tags)
    )
    fragment = _single(ctx, upstream)
    count = _sample_count(ctx, data.count_range, "countRange")
    if count == 0:
        return NodeOutcome({p.id: fragment for p in ctx.node.outputs})

    placed: List[str] = []
    for room_id in room_ids_in_chain(ctx.node.id, count):
        if not placed:
            parents: Tuple[str, ...] = fragment.anchors
            anchor = fragment.anchor_room_id
            direction = fragment.direction
            lateral = fragment.lateral_offset
        elif data.connection_style is ConnectionStyle.BRANCHING:
            anchor = ctx.rng.choice(placed)
            parents = (anchor,)
            forward = fragment.direction
            direction = ctx.rng.choice((forward, forward.turn_left(), forward.turn_right()))
            lateral = 0.0
        else:
            anchor = placed[-1]
            parents = (anchor,)
            direction = fragment.direction
            lateral = 0.0
        build_room(
            ctx,
            room_id,
            spec,
            anchor_id=anchor,
            cursor=fragment.cursor,
            direction=direction,
            lateral=lateral,
            variables=fragment.variables,
        )
        connect_rooms(ctx, parents, room_id)
        placed.append(room_id)

    out = _continue(fragment, placed[-1], ctx)
    return NodeOutcome({p.id: out for p in ctx.node.outputs})


# ---------------------------------------------------------------------------
# fan-out / fan-in
# ---------------------------------------------------------------------------


@executor(NodeType.BRANCH)
def execute_branch(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: BranchData = ctx.node.data
    fragment = _single(ctx, upstream)
    ports = ctx.node.outputs
    if len(data.weights) != len(ports):
        raise ctx.fail(f"{len(data.weights)} weights configured for {len(ports)} output paths")
    try:
        weights = normalize_weights(data.weights)
    except ValueError as err:
        raise ctx.fail(str(err)) from err

    paths = {
        port.id: fragment.heading(
            BRANCH_DIRECTIONS[i % len(BRANCH_DIRECTIONS)], BRANCH_PATH_OFFSET * i
        ).follow(ctx.node.id, i, weights[i])
        for i, port in enumerate(ports)
    }
    if not data.probabilistic:
        return NodeOutcome(paths)
    chosen = ports[ctx.rng.weighted_index(weights)].id
    log.debug("Branch path chosen", node_id=ctx.node.id, port=chosen)
    return NodeOutcome({pid: (frag if pid == chosen else None) for pid, frag in paths.items()})


@executor(NodeType.MERGE)
def execute_merge(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    # The graph executor only delivers the fragments the merge strategy admits
    merged = _single(ctx, upstream)
    return NodeOutcome({p.id: merged for p in ctx.node.outputs})


# ---------------------------------------------------------------------------
# content
# ---------------------------------------------------------------------------


def _place_entities(
    ctx: NodeContext,
    room_id: str,
    entity_type: str,
    count: int,
    metadata: Dict[str, Any],
    radius: Optional[float] = None,
) -> List[PlacedEntity]:
    bounds = ctx.layout.bounds_of(room_id)
    placed = []
    for i in range(count):
        if radius is None:
            pos = point_in_room(ctx.rng, bounds)
        else:
            pos = point_near_centre(ctx.rng, bounds, radius)
        entity = PlacedEntity(
            id=f"{ctx.node.id}:{entity_type}:{i}",
            type=entity_type,
            position=pos,
            metadata=dict(metadata),
        )
        ctx.layout.add_entity(room_id, entity)
        placed.append(entity)
    return placed


@executor(NodeType.SPAWN_POINT)
def execute_spawn_point(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: SpawnPointData = ctx.node.data
    room_id = _anchor(ctx, _single(ctx, upstream))
    if data.spawn_radius < 0:
        raise ctx.fail("spawnRadius must not be negative")
    count = _sample_count(ctx, data.count_range, "countRange")
    for entity in _place_entities(
        ctx, room_id, data.entity_type, count, {}, radius=data.spawn_radius
    ):
        ctx.layout.add_spawn_point(
            SpawnPoint(id=entity.id, type=entity.type, position=entity.position, room_id=room_id)
        )
    return NodeOutcome()


@executor(NodeType.LOOT_DROP)
def execute_loot_drop(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: LootDropData = ctx.node.data
    room_id = _anchor(ctx, _single(ctx, upstream))
    if not 0.0 <= data.drop_chance <= 1.0:
        raise ctx.fail(f"dropChance {data.drop_chance} outside [0, 1]")
    if not ctx.rng.chance(data.drop_chance):
        return NodeOutcome()
    count = _sample_count(ctx, data.item_count, "itemCount")
    _place_entities(ctx, room_id, "loot", count, {"lootTable": data.loot_table})
    return NodeOutcome()


@executor(NodeType.ENCOUNTER)
def execute_encounter(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: EncounterData = ctx.node.data
    room_id = _anchor(ctx, _single(ctx, upstream))
    if data.difficulty not in DIFFICULTY_LEVELS:
        raise ctx.fail(f"unknown difficulty {data.difficulty!r}")
    count = _sample_count(ctx, data.enemy_count, "enemyCount")
    metadata = {
        "encounterType": data.encounter_type,
        "difficulty": DIFFICULTY_LEVELS[data.difficulty],
        "difficultyLabel": data.difficulty,
        "rewardOnComplete": data.reward_on_complete,
    }
    _place_entities(ctx, room_id, "enemy", count, metadata)
    return NodeOutcome()


@executor(NodeType.PROP)
def execute_prop(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: PropData = ctx.node.data
    room_id = _anchor(ctx, _single(ctx, upstream))
    count = _sample_count(ctx, data.count_range, "countRange")
    _place_entities(ctx, room_id, "prop", count, {"propType": data.prop_type})
    return NodeOutcome()


# ---------------------------------------------------------------------------
# logic / distribution
# ---------------------------------------------------------------------------


@executor(NodeType.RANDOM_SELECT)
def execute_random_select(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: RandomSelectData = ctx.node.data
    fragment = _single(ctx, upstream)
    ports = ctx.node.outputs
    raw = data.weights or tuple(1.0 for _ in ports)
    if len(raw) != len(ports):
        raise ctx.fail(f"{len(raw)} weights configured for {len(ports)} output paths")
    try:
        weights = normalize_weights(raw)
    except ValueError as err:
        raise ctx.fail(str(err)) from err
    index = ctx.rng.weighted_index(weights)
    return _only(ctx, fragment.follow(ctx.node.id, index, weights[index]), ports[index].id)


@executor(NodeType.SEQUENCE)
def execute_sequence(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    fragment = _single(ctx, upstream)
    return NodeOutcome({p.id: fragment for p in ctx.node.outputs})


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}


@executor(NodeType.CONDITION)
def execute_condition(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: ConditionData = ctx.node.data
    fragment = _single(ctx, upstream)
    if data.parameter not in ctx.params:
        raise ctx.fail(f"parameter '{data.parameter}' is not bound")
    actual = ctx.params[data.parameter]
    if data.operator == "truthy":
        result = bool(actual)
    else:
        try:
            result = bool(_COMPARATORS[data.operator](actual, data.value))
        except TypeError as err:
            raise ctx.fail(
                f"cannot compare {actual!r} {data.operator} {data.value!r}"
            ) from err
    return _only(ctx, fragment, "true" if result else "false")


@executor(NodeType.DISTRIBUTION)
def execute_distribution(ctx: NodeContext, upstream: List[Fragment]) -> NodeOutcome:
    data: DistributionData = ctx.node.data
    fragment = _single(ctx, upstream)
    if data.min > data.max:
        raise ctx.fail(f"min {data.min} exceeds max {data.max}")
    try:
        unit = ctx.rng.get_distribution(data.distribution, power=data.power, lambd=data.lambd)
    except ValueError as err:
        raise ctx.fail(str(err)) from err
    value = data.min + (data.max - data.min) * unit
    out = fragment.with_variable(data.variable, value)
    return NodeOutcome({p.id: out for p in ctx.node.outputs})


__all__ = [
    "NodeContext",
    "NodeOutcome",
    "NodeExecutor",
    "EXECUTORS",
    "register_executor",
    "normalize_weights",
]
