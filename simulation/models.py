"""Records describing a simulation batch and its aggregated results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from common.constants import DEFAULT_HISTOGRAM_BUCKETS, DEFAULT_PROGRESS_INTERVAL


@dataclass(frozen=True)
class SimulationConfig:
    run_count: int
    seed_start: int = 0
    # Explicit seeds replace the seed_start range when given
    seeds: Optional[Tuple[int, ...]] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    workers: Optional[int] = None
    histogram_buckets: int = DEFAULT_HISTOGRAM_BUCKETS
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL

    def __post_init__(self) -> None:
        if self.run_count < 0:
            raise ValueError("run_count must not be negative")
        if self.histogram_buckets < 1:
            raise ValueError("histogram_buckets must be >= 1")
        if self.progress_interval < 1:
            raise ValueError("progress_interval must be >= 1")
        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be >= 1 when set")

    def seed_list(self) -> List[int]:
        if self.seeds is not None:
            return list(self.seeds)
        return list(range(self.seed_start, self.seed_start + self.run_count))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runCount": len(self.seed_list()),
            "seedStart": self.seed_start,
            "seeds": list(self.seeds) if self.seeds is not None else None,
            "parameters": dict(self.parameters),
            "workers": self.workers,
            "histogramBuckets": self.histogram_buckets,
        }


@dataclass(frozen=True)
class SimulationProgress:
    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0

    def to_dict(self) -> Dict[str, int]:
        return {"completed": self.completed, "total": self.total}


@dataclass(frozen=True)
class HistogramBucket:
    start: float
    end: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "count": self.count}


@dataclass(frozen=True)
class DistributionStats:
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    percentiles: Dict[str, float] = field(default_factory=dict)
    histogram: Tuple[HistogramBucket, ...] = ()
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "median": self.median,
            "stdDev": self.std_dev,
            "percentiles": dict(self.percentiles),
            "histogram": [b.to_dict() for b in self.histogram],
            "count": self.count,
        }


@dataclass(frozen=True)
class ConstraintStats:
    constraint_id: str
    pass_rate: float
    violations: int
    evaluated: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraintId": self.constraint_id,
            "passRate": self.pass_rate,
            "violations": self.violations,
            "evaluated": self.evaluated,
        }


@dataclass(frozen=True)
class SimulationResults:
    config: SimulationConfig
    runs: int
    success_rate: float
    duration_ms: float
    distributions: Dict[str, DistributionStats] = field(default_factory=dict)
    constraint_results: Dict[str, ConstraintStats] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "runs": self.runs,
            "successRate": self.success_rate,
            "durationMs": self.duration_ms,
            "distributions": {k: v.to_dict() for k, v in self.distributions.items()},
            "constraintResults": {k: v.to_dict() for k, v in self.constraint_results.items()},
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class SimulationCancelled:
    """Returned instead of results when a batch is cancelled; partial runs are dropped."""

    completed: int
    total: int
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cancelled": True,
            "completed": self.completed,
            "total": self.total,
            "durationMs": self.duration_ms,
        }


__all__ = [
    "SimulationConfig",
    "SimulationProgress",
    "HistogramBucket",
    "DistributionStats",
    "ConstraintStats",
    "SimulationResults",
    "SimulationCancelled",
]
