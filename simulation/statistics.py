"""Reduction of per-run results into distribution and pass-rate summaries.

Results are put in a ``polars`` frame sorted by seed before any reduction, so
the aggregate never depends on the order workers finished in.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import numpy as np
import polars as pl

from common.constants import (
    DEFAULT_HISTOGRAM_BUCKETS,
    ENEMY_ENTITY_TYPES,
    ITEM_ENTITY_TYPES,
    PERCENTILES,
)
from constraints.models import Constraint
from constraints.topology import path_length
from engine.layout import DungeonLayout, GenerationResult
from simulation.models import ConstraintStats, DistributionStats, HistogramBucket

METRICS: Tuple[str, ...] = (
    "roomCount",
    "pathLength",
    "enemyCount",
    "itemCount",
    "connectionCount",
    "spawnCount",
)


def percentile_key(p: float) -> str:
    return f"p{int(round(p * 100))}"


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank style lookup: ``sorted_values[floor(p * (n - 1))]``."""
    if not sorted_values:
        raise ValueError("no values")
    return float(sorted_values[math.floor(p * (len(sorted_values) - 1))])


def histogram(sorted_values: np.ndarray, buckets: int) -> Tuple[HistogramBucket, ...]:
    n = len(sorted_values)
    if n == 0:
        return ()
    lo, hi = float(sorted_values[0]), float(sorted_values[-1])
    if hi == lo:
        counts = np.zeros(buckets, dtype=int)
        counts[0] = n
        width = 0.0
    else:
        width = (hi - lo) / buckets
        idx = np.floor((sorted_values - lo) / width).astype(int)
        counts = np.bincount(np.minimum(idx, buckets - 1), minlength=buckets)
    return tuple(
        HistogramBucket(
            start=lo + i * width,
            end=hi if i == buckets - 1 else lo + (i + 1) * width,
            count=int(counts[i]),
        )
        for i in range(buckets)
    )


def compute_distribution(
    values: Iterable[float], buckets: int = DEFAULT_HISTOGRAM_BUCKETS
) -> DistributionStats:
    arr = np.sort(np.asarray(list(values), dtype=float))
    n = len(arr)
    if n == 0:
        return DistributionStats(percentiles={percentile_key(p): 0.0 for p in PERCENTILES})
    ordered = arr.tolist()
    mean = math.fsum(ordered) / n
    # Upper middle value for even counts
    median = ordered[n // 2]
    variance = math.fsum((x - mean) ** 2 for x in ordered) / n
    return DistributionStats(
        min=ordered[0],
        max=ordered[-1],
        mean=mean,
        median=median,
        std_dev=math.sqrt(variance),
        percentiles={percentile_key(p): percentile(ordered, p) for p in PERCENTILES},
        histogram=histogram(arr, buckets),
        count=n,
    )


def layout_metrics(layout: DungeonLayout) -> Dict[str, float]:
    entities = layout.entities()
    return {
        "roomCount": float(len(layout.rooms)),
        "pathLength": float(path_length(layout)),
        "enemyCount": float(sum(1 for e in entities if e.type in ENEMY_ENTITY_TYPES)),
        "itemCount": float(sum(1 for e in entities if e.type in ITEM_ENTITY_TYPES)),
        "connectionCount": float(len(layout.connections)),
        "spawnCount": float(len(layout.spawn_points)),
    }


def metrics_frame(results: Sequence[GenerationResult]) -> pl.DataFrame:
    """One row per run, sorted by seed; metric columns are null without a layout."""
    rows: List[Dict[str, Any]] = []
    for result in results:
        row: Dict[str, Any] = {"seed": result.seed, "success": result.success}
        metrics = layout_metrics(result.layout) if result.layout is not None else {}
        for name in METRICS:
            row[name] = metrics.get(name)
        rows.append(row)
    schema = {"seed": pl.Int64, "success": pl.Boolean, **{m: pl.Float64 for m in METRICS}}
    return pl.DataFrame(rows, schema=schema).sort("seed")


def constraint_stats(
    results: Sequence[GenerationResult], constraints: Sequence[Constraint]
) -> Dict[str, ConstraintStats]:
    passes = {c.id: 0 for c in constraints}
    evaluated = {c.id: 0 for c in constraints}
    for result in sorted(results, key=lambda r: r.seed):
        for cr in result.constraint_results:
            evaluated[cr.constraint_id] = evaluated.get(cr.constraint_id, 0) + 1
            passes[cr.constraint_id] = passes.get(cr.constraint_id, 0) + int(cr.passed)
    return {
        cid: ConstraintStats(
            constraint_id=cid,
            pass_rate=passes[cid] / evaluated[cid] if evaluated[cid] else 0.0,
            violations=evaluated[cid] - passes[cid],
            evaluated=evaluated[cid],
        )
        for cid in evaluated
    }


def aggregate(
    results: Sequence[GenerationResult],
    constraints: Sequence[Constraint] = (),
    buckets: int = DEFAULT_HISTOGRAM_BUCKETS,
) -> Tuple[Dict[str, DistributionStats], Dict[str, ConstraintStats], float]:
    """Return per-metric distributions, per-constraint stats and the success rate."""
    frame = metrics_frame(results)
    distributions = {
        name: compute_distribution(frame.get_column(name).drop_nulls().to_list(), buckets)
        for name in METRICS
    }
    total = frame.height
    succeeded = int(frame.get_column("success").sum()) if total else 0
    success_rate = succeeded / total if total else 0.0
    return distributions, constraint_stats(results, constraints), success_rate


__all__ = [
    "METRICS",
    "percentile",
    "histogram",
    "compute_distribution",
    "layout_metrics",
    "metrics_frame",
    "constraint_stats",
    "aggregate",
]
