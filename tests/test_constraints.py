import pytest

from constraints import (
    PREDICATES,
    Constraint,
    ConstraintType,
    Severity,
    evaluate_constraint,
    evaluate_constraints,
    register_predicate,
)
from constraints.topology import adjacency, path_length, select_rooms, shortest_path
from engine.layout import (
    DungeonLayout,
    ExitPoint,
    GeneratedRoom,
    LayoutPosition,
    PlacedEntity,
    Rect,
    RoomConnection,
)
from engine.pipeline import generate_once

DOOR = LayoutPosition(0.0, 0.0)


def room(room_id, x=0.0, room_type="default", tags=(), entities=(), **metadata):
    return GeneratedRoom(
        id=room_id,
        type=room_type,
        bounds=Rect(x, 0.0, 5.0, 5.0),
        entities=tuple(entities),
        tags=tuple(tags),
        metadata=metadata,
    )


def entity(entity_id, entity_type="enemy", **metadata):
    return PlacedEntity(entity_id, entity_type, LayoutPosition(1.0, 1.0), metadata)


def link(a, b):
    return RoomConnection(a, b, DOOR, DOOR)


def layout_of(rooms, links, exit_room=None, start="a"):
    exits = (ExitPoint(LayoutPosition(0.0, 0.0), exit_room),) if exit_room else ()
    return DungeonLayout(
        rooms=tuple(rooms),
        connections=tuple(link(a, b) for a, b in links),
        start_room_id=start,
        exits=exits,
    )


@pytest.fixture
def line_layout():
    """a -> b -> c -> d with a treasure room and escalating enemies."""
    return layout_of(
        [
            room("a", 0),
            room("b", 10, entities=[entity("b:e0", difficulty=1)]),
            room("c", 20, room_type="treasure", tags=("loot",), entities=[entity("c:l0", "loot")]),
            room("d", 30, entities=[entity("d:e0", difficulty=3), entity("d:e1", difficulty=2)]),
        ],
        [("a", "b"), ("b", "c"), ("c", "d")],
        exit_room="d",
    )


def check(layout, ctype, **params):
    return evaluate_constraint(layout, Constraint("c1", ctype, params))


def test_topology_helpers(line_layout):
    adj = adjacency(line_layout)
    assert adj["b"] == ["a", "c"]
    assert adjacency(line_layout, directed=True)["b"] == ["c"]
    assert shortest_path(adj, "a", "d") == ["a", "b", "c", "d"]
    assert select_rooms(line_layout, "start") == ["a"]
    assert select_rooms(line_layout, "exit") == ["d"]
    assert select_rooms(line_layout, "treasure") == ["c"]
    assert select_rooms(line_layout, "loot") == ["c"]
    assert path_length(line_layout) == 4


def test_isolated_room_fails_connected(line_layout):
    broken = DungeonLayout(
        rooms=line_layout.rooms + (room("island", 100),),
        connections=line_layout.connections,
        start_room_id="a",
    )
    result = check(broken, ConstraintType.CONNECTED)
    assert not result.passed
    assert "island" in result.message
    assert check(line_layout, ConstraintType.CONNECTED).passed


def test_distance(line_layout):
    assert check(line_layout, ConstraintType.DISTANCE, **{"from": "start", "to": "exit", "min": 3}).passed
    result = check(line_layout, ConstraintType.DISTANCE, **{"from": "start", "to": "treasure", "max": 1})
    assert not result.passed and "distance 2" in result.message
    result = check(line_layout, ConstraintType.DISTANCE, **{"from": "start", "to": "nowhere"})
    assert not result.passed and "nowhere" in result.message


def test_count(line_layout):
    assert check(line_layout, ConstraintType.COUNT, min=4, max=4).passed
    assert check(line_layout, ConstraintType.COUNT, target="entities", tag="enemy", min=3).passed
    result = check(line_layout, ConstraintType.COUNT, tag="treasure", min=2)
    assert not result.passed and "1 rooms tagged 'treasure'" in result.message


def test_density(line_layout):
    assert check(line_layout, ConstraintType.DENSITY, entityType="enemy", max=1.0).passed
    result = check(line_layout, ConstraintType.DENSITY, entityType="enemy", mode="per_room", max=1)
    assert not result.passed and result.message.endswith("d")


def test_progression(line_layout):
    result = check(line_layout, ConstraintType.PROGRESSION)
    assert result.passed

    falling = layout_of(
        [room("a", 0, difficulty=4), room("b", 10, difficulty=2)],
        [("a", "b")],
        exit_room="b",
    )
    result = check(falling, ConstraintType.PROGRESSION)
    assert not result.passed
    assert "drops from 4" in result.message


def test_required_and_forbidden(line_layout):
    assert check(line_layout, ConstraintType.REQUIRED, tag="treasure").passed
    assert check(line_layout, ConstraintType.REQUIRED, tag="loot", target="entities").passed
    assert not check(line_layout, ConstraintType.REQUIRED, tag="boss").passed
    assert not check(line_layout, ConstraintType.REQUIRED, tag="treasure", after="exit").passed
    assert check(line_layout, ConstraintType.FORBIDDEN, tag="boss").passed
    result = check(line_layout, ConstraintType.FORBIDDEN, tag="enemy", before="treasure")
    assert not result.passed and result.message.endswith("in: b")


def test_custom_predicates(line_layout):
    direct = Constraint(
        "wide", ConstraintType.CUSTOM, predicate=lambda layout, params: len(layout.rooms) > 3
    )
    assert evaluate_constraint(line_layout, direct).passed

    register_predicate("has_exit", lambda layout, params: (bool(layout.exits), "no exit"))
    try:
        named = Constraint("exit", ConstraintType.CUSTOM, {"predicate": "has_exit"})
        assert evaluate_constraint(line_layout, named).passed
        no_exit = DungeonLayout(rooms=line_layout.rooms, start_room_id="a")
        assert evaluate_constraint(no_exit, named).message == "no exit"
    finally:
        PREDICATES.pop("has_exit", None)

    def explode(layout, params):
        raise RuntimeError("kaput")

    result = evaluate_constraint(
        line_layout, Constraint("bad", ConstraintType.CUSTOM, predicate=explode)
    )
    assert not result.passed and "kaput" in result.message
    unknown = Constraint("nope", ConstraintType.CUSTOM, {"predicate": "missing"})
    assert "unknown predicate" in evaluate_constraint(line_layout, unknown).message


@pytest.mark.parametrize(
    "ctype,params",
    [
        (ConstraintType.DISTANCE, {"to": "exit"}),
        (ConstraintType.COUNT, {"min": "many"}),
        (ConstraintType.COUNT, {"min": 5, "max": 1}),
        (ConstraintType.DENSITY, {"mode": "median"}),
        (ConstraintType.REQUIRED, {}),
        (ConstraintType.CUSTOM, {}),
    ],
)
def test_malformed_parameters_fail_cleanly(line_layout, ctype, params):
    result = check(line_layout, ctype, **params)
    assert not result.passed
    assert result.message.startswith("invalid parameters")


def test_error_message_overrides_and_order(line_layout):
    constraints = [
        Constraint("first", ConstraintType.CONNECTED),
        Constraint("second", ConstraintType.COUNT, {"min": 10}, error_message="too small"),
    ]
    results = evaluate_constraints(line_layout, constraints)
    assert [r.constraint_id for r in results] == ["first", "second"]
    assert results[1].message == "too small"
    assert results[1].to_dict()["constraintId"] == "second"


def test_from_dict():
    constraint = Constraint.from_dict(
        {"id": "rooms", "type": "count", "parameters": {"min": 2}, "severity": "warning"}
    )
    assert constraint.type is ConstraintType.COUNT
    assert constraint.severity is Severity.WARNING
    assert constraint.to_dict()["parameters"] == {"min": 2}
    with pytest.raises(ValueError, match="Unknown constraint type"):
        Constraint.from_dict({"type": "vibes"})


def test_warning_severity_does_not_fail_run(chain_graph):
    constraints = [
        Constraint("many", ConstraintType.COUNT, {"min": 50}, severity=Severity.WARNING),
        Constraint("connected", ConstraintType.CONNECTED),
    ]
    result = generate_once(chain_graph, constraints, seed=5)
    assert result.success
    assert any(w.startswith("many:") for w in result.warnings)
    assert [r.passed for r in result.constraint_results] == [False, True]

    strict = [Constraint("many", ConstraintType.COUNT, {"min": 50})]
    failed = generate_once(chain_graph, strict, seed=5)
    assert not failed.success
    assert failed.layout is not None
    assert failed.errors[0].startswith("many:")
