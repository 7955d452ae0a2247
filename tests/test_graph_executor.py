import pytest

from common.errors import GraphValidationError, NodeExecutionError
from constraints.models import Constraint, ConstraintType
from engine.executors import EXECUTORS
from engine.graph_executor import GraphExecutor, NodeState
from engine.pipeline import generate_once
from graph.builder import GraphBuilder
from graph.models import NodeType
from graph.node_data import IntRange, MergeStrategy

from conftest import build_chain_graph, build_fork_graph


def test_chain_scenario_seed_42(chain_graph):
    result = generate_once(chain_graph, seed=42)
    assert result.success
    assert result.errors == ()
    assert result.constraint_results == ()
    layout = result.layout
    assert [r.id for r in layout.rooms] == ["hall_0", "hall_1", "hall_2"]
    assert all((r.bounds.width, r.bounds.height) == (5.0, 5.0) for r in layout.rooms)
    assert [(c.from_room_id, c.to_room_id) for c in layout.connections] == [
        ("hall_0", "hall_1"),
        ("hall_1", "hall_2"),
    ]
    assert layout.start_room_id == "hall_0"
    assert layout.player_start == layout.rooms[0].bounds.center
    assert layout.exits[0].room_id == "hall_2"

    again = generate_once(chain_graph, seed=42)
    assert again.layout == layout
    assert again.layout.to_dict() == layout.to_dict()


def test_same_seed_same_layout_different_seed_differs(fork_graph):
    executor = GraphExecutor(fork_graph)
    first = executor.execute(7).layout
    assert executor.execute(7).layout == first
    assert executor.execute(8).layout != first


def test_node_streams_are_independent():
    plain = build_chain_graph(count=4, size=6.0)
    decorated = (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("hall", NodeType.ROOM_CHAIN, count_range=plain.get_node("hall").data.count_range,
             room_size=plain.get_node("hall").data.room_size)
        .add("deco", NodeType.PROP)
        .add("exit", NodeType.OUTPUT)
        .chain("start", "hall", "exit")
        .connect("hall", "deco", "out", "room")
        .build()
    )
    base = GraphExecutor(plain).execute(99).layout
    busy = GraphExecutor(decorated).execute(99).layout
    assert [r.bounds for r in busy.rooms] == [r.bounds for r in base.rooms]
    assert len(busy.entities()) >= 1
    assert base.entities() == []


def test_merge_all_receives_every_path(monkeypatch, fork_graph):
    seen = []
    original = EXECUTORS[NodeType.MERGE]

    def spy(ctx, upstream):
        seen.append(len(upstream))
        return original(ctx, upstream)

    monkeypatch.setitem(EXECUTORS, NodeType.MERGE, spy)
    report = GraphExecutor(fork_graph).execute(3)
    assert seen == [2]
    after = [c.from_room_id for c in report.layout.connections if c.to_room_id == "after"]
    assert after == ["left", "right"]
    assert report.metadata.node_executions == 7
    assert all(state is NodeState.DONE for state in report.states.values())


@pytest.mark.parametrize("strategy", [MergeStrategy.ANY, MergeStrategy.FIRST])
def test_single_arrival_merge_fires_once(strategy):
    report = GraphExecutor(build_fork_graph(strategy=strategy)).execute(3)
    after = [c.from_room_id for c in report.layout.connections if c.to_room_id == "after"]
    assert after == ["left"]
    assert report.layout.get_room("right") is not None
    if strategy is MergeStrategy.FIRST:
        assert report.metadata.merge_winners == {"join": "left"}
    else:
        assert report.metadata.merge_winners == {}


def test_probabilistic_branch_prunes_other_path():
    graph = build_fork_graph(probabilistic=True)
    for seed in range(5):
        report = GraphExecutor(graph).execute(seed)
        pruned = report.metadata.pruned_nodes
        assert len(pruned) == 1 and pruned[0] in ("left", "right")
        assert report.states[pruned[0]] is NodeState.PRUNED
        assert len(report.layout.rooms) == 2
        survivor = "right" if pruned[0] == "left" else "left"
        assert [c.from_room_id for c in report.layout.connections] == [survivor]


def test_unexpected_executor_error_is_wrapped(monkeypatch):
    def boom(ctx, upstream):
        raise RuntimeError("boom")

    monkeypatch.setitem(EXECUTORS, NodeType.SEQUENCE, boom)
    graph = (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("seq", NodeType.SEQUENCE)
        .add("room", NodeType.ROOM)
        .add("exit", NodeType.OUTPUT)
        .chain("start", "seq", "room", "exit")
        .build()
    )
    with pytest.raises(NodeExecutionError) as info:
        GraphExecutor(graph).execute(1)
    assert info.value.node_id == "seq"
    assert "RuntimeError: boom" in str(info.value)

    result = generate_once(graph, seed=1)
    assert not result.success
    assert result.layout is None
    assert any("boom" in e for e in result.errors)


def test_invalid_graph_rejected_at_compile():
    graph = GraphBuilder().add("start", NodeType.START).build()
    with pytest.raises(GraphValidationError):
        GraphExecutor(graph)


def test_rooms_branching_straight_off_start_stay_connected():
    graph = (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("fork", NodeType.BRANCH)
        .add("left", NodeType.ROOM)
        .add("right", NodeType.ROOM_CHAIN, count_range=IntRange(2, 2))
        .add("exit_l", NodeType.OUTPUT)
        .add("exit_r", NodeType.OUTPUT)
        .chain("start", "fork")
        .connect("fork", "left", "out1")
        .connect("fork", "right", "out2")
        .chain("left", "exit_l")
        .chain("right", "exit_r")
        .build()
    )
    connected = [Constraint("connected", ConstraintType.CONNECTED)]
    for seed in range(5):
        result = generate_once(graph, connected, seed=seed)
        assert result.success, result.errors
        assert result.constraint_results[0].passed
        layout = result.layout
        assert layout.start_room_id == "left"
        assert [(c.from_room_id, c.to_room_id) for c in layout.connections] == [
            ("left", "right_0"),
            ("right_0", "right_1"),
        ]
