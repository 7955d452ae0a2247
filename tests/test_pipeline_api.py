import copy
import subprocess
import sys
from pathlib import Path

import orjson
import pytest
import yaml
from structlog.testing import capture_logs

import main
from api import load_generator, parse_generator
from constraints.models import Constraint, ConstraintType
from engine.parameters import Parameter
from engine.pipeline import generate_once, generate_with_retry
from graph.builder import GraphBuilder
from graph.models import NodeType
from graph.node_data import ConditionData

from test_graph_parser import RAW_GRAPH

DEFINITION = {
    "id": "crypt",
    "name": "Crypt",
    "description": "Three rooms in a row",
    "graph": RAW_GRAPH,
    "constraints": [
        {"id": "connected", "type": "connected"},
        {"id": "rooms", "type": "count", "parameters": {"min": 3}, "severity": "warning"},
    ],
    "parameters": [{"name": "depth", "type": "number", "default": 2, "min": 1, "max": 4}],
    "author": "level team",
}


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)


def condition_graph():
    return (
        GraphBuilder()
        .add("start", NodeType.START)
        .add("check", NodeType.CONDITION, data=ConditionData(parameter="hard"))
        .add("boss", NodeType.ROOM)
        .add("calm", NodeType.ROOM)
        .add("join", NodeType.MERGE)
        .add("exit", NodeType.OUTPUT)
        .chain("start", "check")
        .connect("check", "boss", "true")
        .connect("check", "calm", "false")
        .chain("boss", "join")
        .chain("calm", "join")
        .chain("join", "exit")
        .build()
    )


def test_failures_come_back_as_results():
    invalid = GraphBuilder().add("start", NodeType.START).build()
    result = generate_once(invalid, seed=11)
    assert not result.success and result.seed == 11
    assert result.layout is None
    assert any("output" in e for e in result.errors)

    unbound = generate_once(condition_graph(), seed=1)
    assert not unbound.success
    assert "not bound" in unbound.errors[0]


def test_condition_parameter_picks_path():
    graph = condition_graph()
    hard = generate_once(graph, seed=4, parameters={"hard": True})
    assert hard.success
    assert [r.id for r in hard.layout.rooms] == ["boss"]
    assert hard.metadata.pruned_nodes == ("calm",)
    calm = generate_once(graph, seed=4, parameters={"hard": False})
    assert [r.id for r in calm.layout.rooms] == ["calm"]


def test_room_size_overrides(chain_graph):
    result = generate_once(chain_graph, seed=3, parameters={"minRoomSize": 6, "maxRoomSize": 6})
    assert result.success
    assert {(r.bounds.width, r.bounds.height) for r in result.layout.rooms} == {(6.0, 6.0)}

    bad = generate_once(chain_graph, seed=3, parameters={"minRoomSize": 9, "maxRoomSize": 3})
    assert not bad.success
    assert "exceeds" in bad.errors[0]


def test_declared_parameters_are_clamped(chain_graph):
    declared = [Parameter("depth", "number", default=2, min=1, max=4)]
    result = generate_once(chain_graph, seed=1, parameters={"depth": "deep"}, declared=declared)
    assert not result.success
    assert "expects a number" in result.errors[0]


def test_retry_moves_to_next_seed(chain_graph):
    outcomes = iter([False, False, True])
    flaky = Constraint(
        "flaky", ConstraintType.CUSTOM, predicate=lambda layout, params: next(outcomes)
    )
    result = generate_with_retry(chain_graph, [flaky], seed=10, max_attempts=5)
    assert result.success
    assert result.seed == 12
    assert result.metadata.retry_count == 2


def test_retry_gives_up_with_last_failure(chain_graph):
    never = Constraint("never", ConstraintType.COUNT, {"min": 100})
    result = generate_with_retry(chain_graph, [never], seed=0, max_attempts=3)
    assert not result.success
    assert result.seed == 2
    assert result.metadata.retry_count == 2
    with pytest.raises(ValueError):
        generate_with_retry(chain_graph, max_attempts=0)


def test_retry_does_not_repeat_invalid_graph():
    invalid = GraphBuilder().add("start", NodeType.START).build()
    result = generate_with_retry(invalid, seed=5)
    assert not result.success
    assert result.seed == 5
    assert result.metadata.retry_count == 0


def test_result_serialises_camel_case(chain_graph):
    payload = generate_once(chain_graph, seed=42).to_dict()
    assert {"seed", "success", "layout", "constraintResults", "metadata", "durationMs"} <= set(payload)
    assert payload["layout"]["startRoomId"] == "hall_0"
    assert payload["metadata"]["nodeExecutions"] == 3
    orjson.dumps(payload)


def test_parse_generator_keeps_unknown_keys():
    definition = parse_generator(DEFINITION)
    assert definition.id == "crypt"
    assert [c.id for c in definition.constraints] == ["connected", "rooms"]
    assert definition.parameters[0].max == 4
    assert definition.extra == {"author": "level team"}
    assert definition.validate().valid


def test_parse_generator_accepts_flat_graph():
    flat = {"id": "flat", "nodes": RAW_GRAPH["nodes"], "edges": RAW_GRAPH["edges"]}
    assert len(parse_generator(flat).graph.nodes) == 3


def test_load_generator_json_and_yaml(tmp_path):
    json_path = tmp_path / "crypt.json"
    json_path.write_bytes(orjson.dumps(DEFINITION))
    yaml_path = tmp_path / "crypt.yaml"
    yaml_path.write_text(yaml.safe_dump(DEFINITION))
    from_json = load_generator(json_path)
    from_yaml = load_generator(yaml_path)
    assert from_json.graph == from_yaml.graph
    assert from_json.constraints == from_yaml.constraints


def test_load_generator_from_project(tmp_path):
    other = copy.deepcopy(DEFINITION)
    other["id"] = "sewer"
    path = tmp_path / "project.dfg"
    path.write_bytes(orjson.dumps({"generators": [DEFINITION, other]}))
    assert load_generator(path).id == "crypt"
    assert load_generator(path, "sewer").id == "sewer"
    with pytest.raises(KeyError):
        load_generator(path, "castle")
    with pytest.raises(FileNotFoundError):
        load_generator(tmp_path / "missing.json")


@pytest.fixture
def generator_file(tmp_path):
    path = tmp_path / "crypt.json"
    path.write_bytes(orjson.dumps(DEFINITION))
    return path


def run_cli(capsys, *argv):
    with capture_logs() as logs:
        code = main.main(list(argv))
    out = capsys.readouterr().out
    return code, (orjson.loads(out) if out.strip() else None), logs


def test_cli_generate(capsys, generator_file):
    code, payload, logs = run_cli(capsys, "generate", str(generator_file), "--seed", "42")
    assert code == 0
    assert payload["success"] is True
    assert payload["seed"] == 42
    assert len(payload["layout"]["rooms"]) == 3
    assert any(entry["event"] == "Generator loaded" for entry in logs)


def test_cli_generate_bad_parameters(capsys, generator_file):
    code, payload, _ = run_cli(
        capsys, "generate", str(generator_file), "--param", "minRoomSize=9", "--param", "maxRoomSize=3"
    )
    assert code == 1
    assert payload["success"] is False


def test_cli_validate_reports_errors(capsys, tmp_path):
    broken = copy.deepcopy(DEFINITION)
    broken["graph"]["edges"] = broken["graph"]["edges"][:1]
    path = tmp_path / "broken.json"
    path.write_bytes(orjson.dumps(broken))
    code, payload, _ = run_cli(capsys, "validate", str(path))
    assert code == 1
    assert payload["valid"] is False
    assert "output_unreachable" in {e["code"] for e in payload["errors"]}


def test_cli_simulate(capsys, generator_file):
    code, payload, _ = run_cli(
        capsys, "simulate", str(generator_file), "--runs", "12", "--workers", "2"
    )
    assert code == 0
    assert payload["runs"] == 12
    assert payload["successRate"] == 1.0
    assert payload["constraintResults"]["connected"]["passRate"] == 1.0


def test_cli_missing_file(capsys, tmp_path):
    code, payload, logs = run_cli(capsys, "generate", str(tmp_path / "nope.json"))
    assert code == 1
    assert payload is None
    assert any(entry["event"] == "Could not run command" for entry in logs)


@pytest.mark.parametrize("command", ["validate", "generate", "simulate"])
def test_cli_stdout_is_only_json(generator_file, command):
    root = Path(main.__file__).resolve().parent
    argv = [sys.executable, str(root / "main.py"), "-v", command, str(generator_file)]
    if command == "simulate":
        argv += ["--runs", "3", "--workers", "1"]
    proc = subprocess.run(argv, cwd=root, capture_output=True, timeout=120)
    assert proc.returncode == 0, proc.stderr.decode()
    payload = orjson.loads(proc.stdout)
    assert isinstance(payload, dict)
    assert b"Generator loaded" in proc.stderr


def test_param_overrides_parse_yaml_scalars():
    assert main.parse_param_overrides(["depth=3", "hard=true", "name=crypt"]) == {
        "depth": 3,
        "hard": True,
        "name": "crypt",
    }
    with pytest.raises(ValueError):
        main.parse_param_overrides(["oops"])
