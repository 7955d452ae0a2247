import pytest

from common.errors import GraphValidationError
from graph.builder import GraphBuilder, default_ports
from graph.models import NodeType
from graph.node_data import (
    BranchData,
    ConnectionStyle,
    IntRange,
    OutputData,
    RoomChainData,
    RoomData,
    RoomShape,
    Size,
    SpawnArea,
    StartData,
    default_data,
)
from graph.parser import parse_graph, parse_node_data
from graph.validation import validate_graph

RAW_GRAPH = {
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "position": {"x": 10, "y": 20},
            "data": {"label": "Start", "spawnArea": "entrance"},
        },
        {
            "id": "hall",
            "type": "room_chain",
            "data": {
                "label": "Hall",
                "countRange": {"min": 3, "max": 3},
                "roomSize": {"min": {"w": 5, "h": 5}, "max": {"w": 5, "h": 5}},
                "connectionStyle": "linear",
            },
        },
        {
            "id": "exit",
            "type": "output",
            "data": {"exitType": "portal", "requiresKey": True},
        },
    ],
    "edges": [
        {
            "id": "e1",
            "source": {"nodeId": "start", "portId": "out"},
            "target": {"nodeId": "hall", "portId": "in"},
        },
        {
            "id": "e2",
            "source": {"nodeId": "hall", "portId": "out"},
            "target": {"nodeId": "exit", "portId": "in"},
        },
    ],
    "groups": [{"id": "g1", "name": "Main", "nodeIds": ["start", "hall"]}],
}


def test_parse_graph_builds_typed_records():
    graph = parse_graph(RAW_GRAPH)
    nodes = graph.node_map()
    assert isinstance(nodes["start"].data, StartData)
    assert nodes["start"].data.spawn_area is SpawnArea.ENTRANCE
    assert nodes["start"].position.x == 10.0
    hall = nodes["hall"].data
    assert isinstance(hall, RoomChainData)
    assert hall.count_range == IntRange(3, 3)
    assert hall.room_size.max == Size(5.0, 5.0)
    assert hall.connection_style is ConnectionStyle.LINEAR
    assert nodes["exit"].data == OutputData(exit_type="portal", requires_key=True)
    assert [p.id for p in nodes["hall"].outputs] == ["out"]
    assert graph.groups[0].node_ids == ("start", "hall")
    assert validate_graph(graph).valid


def test_missing_data_uses_editor_defaults():
    data = parse_node_data(NodeType.ROOM, None)
    assert data == default_data(NodeType.ROOM)
    assert data.size_range.min == Size(5.0, 5.0)
    assert data.door_count == IntRange(1, 4)


def test_shape_aliases():
    data = parse_node_data(NodeType.ROOM, {"shape": ["LShaped", "circle", "rect"]})
    assert data.shapes == (RoomShape.L_SHAPED, RoomShape.CIRCULAR, RoomShape.RECTANGULAR)
    single = parse_node_data(NodeType.ROOM, {"shape": "irregular"})
    assert single.shapes == (RoomShape.IRREGULAR,)


def test_fixed_count_shorthand():
    data = parse_node_data(NodeType.SPAWN_POINT, {"countRange": 2, "entityType": "boss"})
    assert data.count_range == IntRange(2, 2)
    assert data.entity_type == "boss"


def test_bad_nodes_are_reported_together():
    raw = {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "sub", "type": "subgraph"},
            {"id": "r", "type": "room", "data": {"doorCount": {"min": "two"}}},
            {"id": "m", "type": "merge", "data": {"strategy": "sometimes"}},
        ],
        "edges": [{"id": "bad", "source": {"nodeId": "start"}, "target": {}}],
    }
    with pytest.raises(GraphValidationError) as info:
        parse_graph(raw)
    found = {(v.code, v.node_id) for v in info.value.violations}
    assert ("unsupported_node_type", "sub") in found
    assert ("bad_node", "r") in found
    assert ("bad_node", "m") in found
    assert any(v.code == "bad_edge" for v in info.value.violations)


def test_unknown_difficulty_rejected():
    with pytest.raises(ValueError, match="difficulty"):
        parse_node_data(NodeType.ENCOUNTER, {"difficulty": "impossible"})


def test_default_ports_per_type():
    ins, outs = default_ports(NodeType.BRANCH, BranchData(weights=(1.0, 1.0, 2.0)))
    assert [p.id for p in ins] == ["in"]
    assert [p.id for p in outs] == ["out1", "out2", "out3"]
    ins, outs = default_ports(NodeType.ENCOUNTER)
    assert [p.id for p in ins] == ["room"] and outs == ()
    ins, outs = default_ports(NodeType.CONDITION)
    assert [p.id for p in outs] == ["true", "false"]
    assert all(p.data_type == "any" for p in ins + outs)


def test_builder_grows_merge_inputs_and_applies_overrides():
    graph = (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("fork", NodeType.BRANCH, weights=(1.0, 1.0, 1.0))
        .add("a", NodeType.ROOM)
        .add("b", NodeType.ROOM)
        .add("c", NodeType.ROOM, room_type="treasure", tags=("loot",))
        .add("join", NodeType.MERGE)
        .add("exit", NodeType.OUTPUT)
        .chain("start", "fork")
        .chain("fork", "a", "join")
        .chain("fork", "b", "join")
        .chain("fork", "c", "join")
        .chain("join", "exit")
        .build()
    )
    join = graph.get_node("join")
    assert [p.id for p in join.inputs] == ["in1", "in2", "in3"]
    c = graph.get_node("c").data
    assert isinstance(c, RoomData) and c.room_type == "treasure" and c.tags == ("loot",)
    assert validate_graph(graph).valid
