import pytest

from common.config import EngineSettings
from common.errors import GraphValidationError
from constraints.models import Constraint, ConstraintType
from graph.builder import GraphBuilder
from graph.models import NodeType
from simulation.models import (
    SimulationCancelled,
    SimulationConfig,
    SimulationResults,
)
from simulation.runner import SimulationRunner, cancel_simulation, run_simulation

from conftest import build_fork_graph

CONNECTED = [Constraint("connected", ConstraintType.CONNECTED)]


def test_chain_batch_succeeds_everywhere(chain_graph):
    results = run_simulation(chain_graph, CONNECTED, run_count=100, seed_start=0)
    assert isinstance(results, SimulationResults)
    assert results.runs == 100
    assert results.success_rate == 1.0
    assert results.constraint_results["connected"].pass_rate == 1.0
    assert results.constraint_results["connected"].violations == 0
    rooms = results.distributions["roomCount"]
    assert (rooms.min, rooms.max, rooms.mean, rooms.std_dev) == (3.0, 3.0, 3.0, 0.0)
    assert results.distributions["pathLength"].mean == 3.0
    assert results.to_dict()["config"]["runCount"] == 100


def test_results_do_not_depend_on_worker_count():
    graph = build_fork_graph(probabilistic=True)
    serial = run_simulation(graph, CONNECTED, run_count=30, workers=1)
    parallel = run_simulation(graph, CONNECTED, run_count=30, workers=4)
    assert serial.distributions == parallel.distributions
    assert serial.constraint_results == parallel.constraint_results


def test_explicit_seeds(chain_graph):
    results = run_simulation(chain_graph, seeds=[3, 1, 4], workers=2)
    assert results.runs == 3
    assert results.config.seed_list() == [3, 1, 4]


def test_progress_reports_every_interval(chain_graph):
    seen = []
    run_simulation(
        chain_graph,
        run_count=25,
        workers=1,
        progress=lambda p: seen.append((p.completed, p.total)),
    )
    assert seen == [(10, 25), (20, 25), (25, 25)]


def test_cancel_from_progress_callback(chain_graph):
    signalled = []

    def on_progress(progress):
        if progress.completed >= 10:
            signalled.append(cancel_simulation())

    outcome = run_simulation(chain_graph, run_count=100, workers=1, progress=on_progress)
    assert isinstance(outcome, SimulationCancelled)
    assert outcome.completed == 10
    assert outcome.total == 100
    assert signalled == [1]
    assert outcome.to_dict()["cancelled"] is True


def test_cancelled_runner_starts_nothing(chain_graph):
    runner = SimulationRunner(EngineSettings(workers=2))
    runner.cancel()
    outcome = runner.run(chain_graph, [], SimulationConfig(run_count=20))
    assert isinstance(outcome, SimulationCancelled)
    assert outcome.completed == 0
    assert not runner.cancelled


def test_runner_is_reusable_after_cancel(chain_graph):
    runner = SimulationRunner(EngineSettings(workers=2))
    runner.cancel()
    first = runner.run(chain_graph, CONNECTED, SimulationConfig(run_count=5))
    assert isinstance(first, SimulationCancelled)
    second = runner.run(chain_graph, CONNECTED, SimulationConfig(run_count=5))
    assert isinstance(second, SimulationResults)
    assert second.runs == 5
    assert second.success_rate == 1.0


def test_cancel_after_last_run_keeps_results(chain_graph):
    runner = SimulationRunner(EngineSettings(workers=1))

    def on_progress(progress):
        if progress.completed == progress.total:
            runner.cancel()

    outcome = runner.run(chain_graph, CONNECTED, SimulationConfig(run_count=10), progress=on_progress)
    assert isinstance(outcome, SimulationResults)
    assert outcome.runs == 10
    assert not runner.cancelled


def test_cancel_with_nothing_running():
    assert cancel_simulation() == 0


def test_invalid_graph_raises_before_running():
    graph = GraphBuilder().add("start", NodeType.START).build()
    with pytest.raises(GraphValidationError):
        run_simulation(graph, run_count=5)


def test_zero_runs(chain_graph):
    results = run_simulation(chain_graph, run_count=0)
    assert results.runs == 0
    assert results.success_rate == 0.0
    assert results.distributions["roomCount"].count == 0


@pytest.mark.parametrize(
    "kwargs", [{"run_count": -1}, {"run_count": 1, "workers": 0}, {"run_count": 1, "histogram_buckets": 0}]
)
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        SimulationConfig(**kwargs)
