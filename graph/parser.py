"""Conversion from plain dicts (the project-file shape) to typed graph models.

The editor stores node configuration as a loose ``data`` object with camelCase
keys.  This module converts each one into the concrete record for its node
type.  Every malformed node, port or edge is collected and reported together
through a single :class:`~common.errors.GraphValidationError`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

import structlog

from common.errors import GraphValidationError
from graph.builder import default_ports
from graph.models import (
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
from graph.node_data import (
    CONDITION_OPERATORS,
    DIFFICULTY_LEVELS,
    DISTRIBUTIONS,
    BranchData,
    ConditionData,
    ConnectionStyle,
    DistributionData,
    EncounterData,
    IntRange,
    LootDropData,
    MergeData,
    MergeStrategy,
    NodeData,
    OutputData,
    PropData,
    RandomSelectData,
    RoomChainData,
    RoomData,
    RoomShape,
    SequenceData,
    Size,
    SizeRange,
    SpawnArea,
    SpawnPointData,
    StartData,
)
from graph.validation import GraphViolation

log = structlog.get_logger()

E = TypeVar("E", bound=Enum)

_SHAPE_ALIASES = {
    "rectangular": RoomShape.RECTANGULAR,
    "rect": RoomShape.RECTANGULAR,
    "l-shaped": RoomShape.L_SHAPED,
    "lshaped": RoomShape.L_SHAPED,
    "circular": RoomShape.CIRCULAR,
    "circle": RoomShape.CIRCULAR,
    "irregular": RoomShape.IRREGULAR,
}


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    return float(value)


def _integer(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(value)


def _boolean(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def _string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {value!r}")
    return value


def _enum(enum_cls: Type[E], value: Any, name: str) -> E:
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{name} must be one of: {allowed}; got {value!r}") from None


def _size(raw: Any, name: str) -> Size:
    if not isinstance(raw, Mapping):
        raise ValueError(f"{name} must be an object with w and h")
    return Size(_number(raw.get("w"), f"{name}.w"), _number(raw.get("h"), f"{name}.h"))


def _size_range(raw: Any, default: SizeRange, name: str) -> SizeRange:
    if raw is None:
        return default
    if not isinstance(raw, Mapping):
        raise ValueError(f"{name} must be an object with min and max")
    low = _size(raw["min"], f"{name}.min") if "min" in raw else default.min
    high = _size(raw["max"], f"{name}.max") if "max" in raw else default.max
    return SizeRange(low, high)


def _int_range(raw: Any, default: IntRange, name: str) -> IntRange:
    if raw is None:
        return default
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        fixed = _integer(raw, name)
        return IntRange(fixed, fixed)
    if not isinstance(raw, Mapping):
        raise ValueError(f"{name} must be a number or an object with min and max")
    low = _integer(raw.get("min", default.min), f"{name}.min")
    high = _integer(raw.get("max", default.max), f"{name}.max")
    return IntRange(low, high)


def _weights(raw: Any, default: Tuple[float, ...]) -> Tuple[float, ...]:
    if raw is None:
        return default
    if not isinstance(raw, (list, tuple)):
        raise ValueError("weights must be a list of numbers")
    return tuple(_number(w, f"weights[{i}]") for i, w in enumerate(raw))


def _shapes(raw: Mapping[str, Any], default: Tuple[RoomShape, ...]) -> Tuple[RoomShape, ...]:
    values = raw.get("shapes", raw.get("shape"))
    if values is None:
        return default
    if isinstance(values, str):
        values = [values]
    out: List[RoomShape] = []
    for value in values:
        shape = _SHAPE_ALIASES.get(str(value).lower())
        if shape is None:
            raise ValueError(f"unknown room shape {value!r}")
        out.append(shape)
    if not out:
        raise ValueError("shapes must not be empty")
    return tuple(out)


def _tags(raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValueError("tags must be a list of strings")
    return tuple(_string(t, "tag") for t in raw)


# ---------------------------------------------------------------------------
# Node data records
# ---------------------------------------------------------------------------


def _parse_start(d: Mapping[str, Any]) -> StartData:
    return StartData(
        label=d.get("label", StartData.label),
        spawn_area=_enum(SpawnArea, d.get("spawnArea", "center"), "spawnArea"),
    )


def _parse_output(d: Mapping[str, Any]) -> OutputData:
    return OutputData(
        label=d.get("label", OutputData.label),
        exit_type=_string(d.get("exitType", "stairs"), "exitType"),
        requires_key=_boolean(d.get("requiresKey", False), "requiresKey"),
    )


def _parse_room(d: Mapping[str, Any]) -> RoomData:
    base = RoomData()
    return RoomData(
        label=d.get("label", base.label),
        size_range=_size_range(d.get("sizeRange"), base.size_range, "sizeRange"),
        shapes=_shapes(d, base.shapes),
        door_count=_int_range(d.get("doorCount"), base.door_count, "doorCount"),
        room_type=_string(d.get("roomType", base.room_type), "roomType"),
        tags=_tags(d.get("tags")),
    )


def _parse_room_chain(d: Mapping[str, Any]) -> RoomChainData:
    base = RoomChainData()
    return RoomChainData(
        label=d.get("label", base.label),
        count_range=_int_range(d.get("countRange"), base.count_range, "countRange"),
        room_size=_size_range(d.get("roomSize"), base.room_size, "roomSize"),
        connection_style=_enum(
            ConnectionStyle, d.get("connectionStyle", "linear"), "connectionStyle"
        ),
        shapes=_shapes(d, base.shapes),
        door_count=_int_range(d.get("doorCount"), base.door_count, "doorCount"),
        room_type=_string(d.get("roomType", base.room_type), "roomType"),
        tags=_tags(d.get("tags")),
    )


def _parse_branch(d: Mapping[str, Any]) -> BranchData:
    return BranchData(
        label=d.get("label", BranchData.label),
        weights=_weights(d.get("weights"), BranchData.weights),
        probabilistic=_boolean(d.get("probabilistic", False), "probabilistic"),
    )


def _parse_merge(d: Mapping[str, Any]) -> MergeData:
    return MergeData(
        label=d.get("label", MergeData.label),
        strategy=_enum(MergeStrategy, d.get("strategy", "all"), "strategy"),
    )


def _parse_spawn_point(d: Mapping[str, Any]) -> SpawnPointData:
    base = SpawnPointData()
    return SpawnPointData(
        label=d.get("label", base.label),
        entity_type=_string(d.get("entityType", base.entity_type), "entityType"),
        count_range=_int_range(d.get("countRange"), base.count_range, "countRange"),
        spawn_radius=_number(d.get("spawnRadius", base.spawn_radius), "spawnRadius"),
    )


def _parse_loot_drop(d: Mapping[str, Any]) -> LootDropData:
    base = LootDropData()
    return LootDropData(
        label=d.get("label", base.label),
        loot_table=_string(d.get("lootTable", base.loot_table), "lootTable"),
        drop_chance=_number(d.get("dropChance", base.drop_chance), "dropChance"),
        item_count=_int_range(d.get("itemCount"), base.item_count, "itemCount"),
    )


def _parse_encounter(d: Mapping[str, Any]) -> EncounterData:
    base = EncounterData()
    difficulty = _string(d.get("difficulty", base.difficulty), "difficulty").lower()
    if difficulty not in DIFFICULTY_LEVELS:
        raise ValueError(
            f"difficulty must be one of: {', '.join(DIFFICULTY_LEVELS)}; got {difficulty!r}"
        )
    return EncounterData(
        label=d.get("label", base.label),
        encounter_type=_string(d.get("encounterType", base.encounter_type), "encounterType"),
        difficulty=difficulty,
        enemy_count=_int_range(d.get("enemyCount"), base.enemy_count, "enemyCount"),
        reward_on_complete=_boolean(
            d.get("rewardOnComplete", base.reward_on_complete), "rewardOnComplete"
        ),
    )


def _parse_prop(d: Mapping[str, Any]) -> PropData:
    base = PropData()
    return PropData(
        label=d.get("label", base.label),
        prop_type=_string(d.get("propType", base.prop_type), "propType"),
        count_range=_int_range(d.get("countRange"), base.count_range, "countRange"),
    )


def _parse_random_select(d: Mapping[str, Any]) -> RandomSelectData:
    return RandomSelectData(
        label=d.get("label", RandomSelectData.label),
        weights=_weights(d.get("weights"), ()),
    )


def _parse_sequence(d: Mapping[str, Any]) -> SequenceData:
    return SequenceData(label=d.get("label", SequenceData.label))


def _parse_condition(d: Mapping[str, Any]) -> ConditionData:
    operator = _string(d.get("operator", "truthy"), "operator")
    if operator not in CONDITION_OPERATORS:
        raise ValueError(
            f"operator must be one of: {', '.join(CONDITION_OPERATORS)}; got {operator!r}"
        )
    return ConditionData(
        label=d.get("label", ConditionData.label),
        parameter=_string(d.get("parameter", ""), "parameter"),
        operator=operator,
        value=d.get("value"),
    )


def _parse_distribution(d: Mapping[str, Any]) -> DistributionData:
    base = DistributionData()
    distribution = _string(d.get("distribution", base.distribution), "distribution")
    if distribution not in DISTRIBUTIONS:
        raise ValueError(
            f"distribution must be one of: {', '.join(DISTRIBUTIONS)}; got {distribution!r}"
        )
    return DistributionData(
        label=d.get("label", base.label),
        variable=_string(d.get("variable", base.variable), "variable"),
        distribution=distribution,
        min=_number(d.get("min", base.min), "min"),
        max=_number(d.get("max", base.max), "max"),
        power=_number(d.get("power", base.power), "power"),
        lambd=_number(d.get("lambd", base.lambd), "lambd"),
    )


_DATA_PARSERS: Dict[NodeType, Callable[[Mapping[str, Any]], NodeData]] = {
    NodeType.START: _parse_start,
    NodeType.OUTPUT: _parse_output,
    NodeType.ROOM: _parse_room,
    NodeType.ROOM_CHAIN: _parse_room_chain,
    NodeType.BRANCH: _parse_branch,
    NodeType.MERGE: _parse_merge,
    NodeType.SPAWN_POINT: _parse_spawn_point,
    NodeType.LOOT_DROP: _parse_loot_drop,
    NodeType.ENCOUNTER: _parse_encounter,
    NodeType.PROP: _parse_prop,
    NodeType.RANDOM_SELECT: _parse_random_select,
    NodeType.SEQUENCE: _parse_sequence,
    NodeType.CONDITION: _parse_condition,
    NodeType.DISTRIBUTION: _parse_distribution,
}


def parse_node_data(node_type: NodeType, raw: Optional[Mapping[str, Any]]) -> NodeData:
    """Build the typed record for ``node_type`` from the editor's ``data`` dict."""
    raw = raw or {}
    if not isinstance(raw, Mapping):
        raise ValueError("node data must be an object")
    return _DATA_PARSERS[node_type](raw)


# ---------------------------------------------------------------------------
# Graph structure
# ---------------------------------------------------------------------------


def parse_port(raw: Mapping[str, Any], direction: PortDirection) -> Port:
    declared = raw.get("type", direction.value)
    if declared != direction.value:
        raise ValueError(
            f"port '{raw.get('id')}' is declared as {declared!r} in the {direction.value}s list"
        )
    return Port(
        id=_string(raw.get("id"), "port id"),
        direction=direction,
        data_type=_string(raw.get("dataType", "room"), "dataType"),
        label=raw.get("label"),
    )


def parse_edge(raw: Mapping[str, Any], index: int) -> Edge:
    source = raw.get("source") or {}
    target = raw.get("target") or {}
    metadata = raw.get("metadata") or {}
    return Edge(
        id=str(raw.get("id", f"edge_{index}")),
        source=PortRef(
            _string(source.get("nodeId"), "source.nodeId"),
            _string(source.get("portId"), "source.portId"),
        ),
        target=PortRef(
            _string(target.get("nodeId"), "target.nodeId"),
            _string(target.get("portId"), "target.portId"),
        ),
        label=metadata.get("label"),
    )


def parse_node(raw: Mapping[str, Any]) -> GraphNode:
    node_id = _string(raw.get("id"), "node id")
    type_name = _string(raw.get("type"), f"type of node '{node_id}'")
    node_type = NodeType.from_str(type_name)
    data = parse_node_data(node_type, raw.get("data"))
    default_in, default_out = default_ports(node_type, data)
    inputs = (
        tuple(parse_port(p, PortDirection.INPUT) for p in raw["inputs"])
        if raw.get("inputs") is not None
        else default_in
    )
    outputs = (
        tuple(parse_port(p, PortDirection.OUTPUT) for p in raw["outputs"])
        if raw.get("outputs") is not None
        else default_out
    )
    pos = raw.get("position") or {}
    return GraphNode(
        id=node_id,
        type=node_type,
        data=data,
        inputs=inputs,
        outputs=outputs,
        position=Position(float(pos.get("x", 0.0)), float(pos.get("y", 0.0))),
    )


def parse_graph(raw: Mapping[str, Any]) -> NodeGraph:
    """Parse a ``{nodes, edges, groups}`` mapping into a :class:`NodeGraph`.

    Raises
    ------
    GraphValidationError
        Listing every node or edge that could not be parsed.
    """
    violations: List[GraphViolation] = []
    nodes: List[GraphNode] = []
    for i, node_raw in enumerate(raw.get("nodes", []) or []):
        node_id = node_raw.get("id") if isinstance(node_raw, Mapping) else None
        try:
            nodes.append(parse_node(node_raw))
        except (ValueError, KeyError, TypeError, AttributeError) as err:
            code = "unsupported_node_type" if "Unknown node type" in str(err) else "bad_node"
            violations.append(
                GraphViolation(
                    code,
                    f"Node '{node_id or i}': {err}",
                    node_id=str(node_id) if node_id is not None else None,
                )
            )

    edges: List[Edge] = []
    for i, edge_raw in enumerate(raw.get("edges", []) or []):
        try:
            edges.append(parse_edge(edge_raw, i))
        except (ValueError, TypeError, AttributeError) as err:
            violations.append(GraphViolation("bad_edge", f"Edge #{i}: {err}"))

    groups = tuple(
        NodeGroup(
            id=str(g.get("id", "")),
            name=str(g.get("name", "")),
            node_ids=tuple(g.get("nodeIds", []) or []),
            color=g.get("color"),
        )
        for g in raw.get("groups", []) or []
    )

    if violations:
        log.warning("Graph parse failed", problems=len(violations))
        raise GraphValidationError(violations)
    return NodeGraph(nodes=tuple(nodes), edges=tuple(edges), groups=groups)


__all__ = ["parse_graph", "parse_node", "parse_node_data", "parse_edge", "parse_port"]
