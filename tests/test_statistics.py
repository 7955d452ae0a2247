import math

import pytest

from constraints.models import Constraint, ConstraintResult, ConstraintType
from engine.layout import GenerationResult
from engine.pipeline import generate_once
from simulation.statistics import (
    METRICS,
    aggregate,
    compute_distribution,
    constraint_stats,
    layout_metrics,
    metrics_frame,
    percentile,
)

from conftest import build_chain_graph


def test_distribution_of_small_sample():
    stats = compute_distribution([5, 3, 1, 4, 2])
    assert (stats.min, stats.max, stats.mean, stats.median) == (1.0, 5.0, 3.0, 3.0)
    assert stats.percentiles == {"p5": 1.0, "p25": 2.0, "p75": 4.0, "p95": 4.0}
    assert stats.std_dev == pytest.approx(math.sqrt(2.0))
    assert stats.count == 5
    counts = [b.count for b in stats.histogram]
    assert len(counts) == 10 and sum(counts) == 5
    assert [i for i, c in enumerate(counts) if c] == [0, 2, 5, 7, 9]
    assert stats.histogram[0].start == 1.0
    assert stats.histogram[-1].end == 5.0


def test_even_sample_median_is_upper_middle():
    assert compute_distribution([4, 1, 3, 2]).median == 3.0


def test_constant_values_land_in_first_bucket():
    stats = compute_distribution([3.0, 3.0, 3.0], buckets=4)
    assert [b.count for b in stats.histogram] == [3, 0, 0, 0]
    assert stats.std_dev == 0.0
    assert stats.histogram[-1].end == 3.0


def test_empty_distribution():
    stats = compute_distribution([])
    assert stats.count == 0
    assert stats.histogram == ()
    assert set(stats.percentiles) == {"p5", "p25", "p75", "p95"}


def test_percentile_lookup():
    values = list(range(101))
    assert percentile(values, 0.25) == 25.0
    assert percentile([1, 2, 3, 4], 0.95) == 3.0
    with pytest.raises(ValueError):
        percentile([], 0.5)


def test_layout_metrics_for_chain():
    layout = generate_once(build_chain_graph(count=4), seed=1).layout
    metrics = layout_metrics(layout)
    assert set(metrics) == set(METRICS)
    assert metrics["roomCount"] == 4.0
    assert metrics["connectionCount"] == 3.0
    assert metrics["pathLength"] == 4.0
    assert metrics["enemyCount"] == 0.0


def test_frame_sorted_by_seed_and_failures_have_no_metrics():
    graph = build_chain_graph()
    results = [generate_once(graph, seed=s) for s in (9, 2, 5)]
    results.append(GenerationResult(seed=1, success=False, errors=("boom",)))
    frame = metrics_frame(results)
    assert frame.get_column("seed").to_list() == [1, 2, 5, 9]
    assert frame.get_column("roomCount").to_list() == [None, 3.0, 3.0, 3.0]

    distributions, _, success_rate = aggregate(results)
    assert success_rate == 0.75
    assert distributions["roomCount"].count == 3


def test_aggregate_ignores_completion_order():
    graph = build_chain_graph(count=2)
    results = [generate_once(graph, seed=s) for s in range(8)]
    forward = aggregate(results)
    backward = aggregate(list(reversed(results)))
    assert forward[0] == backward[0]
    assert forward[2] == backward[2] == 1.0


def test_constraint_pass_rates():
    def run(seed, passed):
        return GenerationResult(
            seed=seed,
            success=passed,
            constraint_results=(ConstraintResult("size", passed, None if passed else "small"),),
        )

    constraints = [
        Constraint("size", ConstraintType.COUNT, {"min": 1}),
        Constraint("unused", ConstraintType.CONNECTED),
    ]
    stats = constraint_stats([run(0, True), run(1, False), run(2, True), run(3, True)], constraints)
    assert stats["size"].pass_rate == 0.75
    assert stats["size"].violations == 1
    assert stats["size"].evaluated == 4
    assert stats["unused"].evaluated == 0 and stats["unused"].pass_rate == 0.0
