"""Batch simulation across many seeds on a thread pool.

Runs share only the compiled, read-only :class:`GraphExecutor`; each run owns
its layout.  Cancellation is cooperative: workers check the flag before
starting a run, so in-flight runs finish but nothing new starts, and the
batch returns :class:`SimulationCancelled` instead of partial statistics.
"""

from __future__ import annotations

import os
import threading
import time
from multiprocessing.dummy import Pool as ThreadPool
from typing import Any, Callable, List, Mapping, Optional, Sequence, Set, Union

import structlog

from common.config import EngineSettings
from constraints.models import Constraint
from engine.graph_executor import GraphExecutor
from engine.layout import GenerationResult
from engine.parameters import Parameter
from engine.pipeline import generate_once
from graph.models import NodeGraph
from graph.validation import ensure_valid
from simulation.models import (
    SimulationCancelled,
    SimulationConfig,
    SimulationProgress,
    SimulationResults,
)
from simulation.statistics import aggregate

log = structlog.get_logger()

ProgressCallback = Callable[[SimulationProgress], None]
SimulationOutcome = Union[SimulationResults, SimulationCancelled]


class SimulationRunner:
    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or EngineSettings()
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._completed = 0
        self._total = 0

    @property
    def progress(self) -> SimulationProgress:
        with self._lock:
            return SimulationProgress(self._completed, self._total)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        log.info("Simulation cancel requested")
        self._cancel.set()

    def _advance(self, callback: Optional[ProgressCallback], interval: int) -> None:
        with self._lock:
            self._completed += 1
            done, total = self._completed, self._total
        if callback is not None and (done % interval == 0 or done == total):
            callback(SimulationProgress(done, total))

    def run(
        self,
        graph: NodeGraph,
        constraints: Sequence[Constraint],
        config: SimulationConfig,
        progress: Optional[ProgressCallback] = None,
        declared: Sequence[Parameter] = (),
    ) -> SimulationOutcome:
        """Run the batch; raises :class:`GraphValidationError` for a bad graph."""
        ensure_valid(graph)
        executor = GraphExecutor(
            graph, placement_retries=self.settings.placement_retries, validate=False
        )
        seeds = config.seed_list()
        with self._lock:
            self._completed = 0
            self._total = len(seeds)
        workers = config.workers or self.settings.workers or os.cpu_count() or 1
        workers = max(1, min(workers, len(seeds)))
        start = time.perf_counter()
        log.info("Simulation started", runs=len(seeds), workers=workers)

        def _run(seed: int) -> Optional[GenerationResult]:
            if self._cancel.is_set():
                return None
            result = generate_once(
                graph,
                constraints,
                seed,
                config.parameters,
                declared,
                executor=executor,
            )
            self._advance(progress, config.progress_interval)
            return result

        results: List[GenerationResult] = []
        try:
            if seeds:
                with ThreadPool(workers) as pool:
                    for result in pool.imap_unordered(_run, seeds):
                        if result is not None:
                            results.append(result)
        finally:
            # Cancellation is scoped to one batch
            self._cancel.clear()

        duration_ms = (time.perf_counter() - start) * 1000.0
        # Runs are only skipped after a cancel
        if len(results) < len(seeds):
            completed = self.progress.completed
            log.info("Simulation cancelled", completed=completed, total=len(seeds))
            return SimulationCancelled(completed=completed, total=len(seeds), duration_ms=duration_ms)

        distributions, constraint_results, success_rate = aggregate(
            results, constraints, config.histogram_buckets
        )
        warnings = sorted({w for r in results for w in r.warnings})
        log.info(
            "Simulation finished",
            runs=len(results),
            success_rate=success_rate,
            duration_ms=round(duration_ms, 1),
        )
        return SimulationResults(
            config=config,
            runs=len(results),
            success_rate=success_rate,
            duration_ms=duration_ms,
            distributions=distributions,
            constraint_results=constraint_results,
            warnings=tuple(warnings),
        )


# ---------------------------------------------------------------------------
# Module-level entry points
# ---------------------------------------------------------------------------

_ACTIVE: Set[SimulationRunner] = set()
_ACTIVE_LOCK = threading.Lock()


def run_simulation(
    graph: NodeGraph,
    constraints: Sequence[Constraint] = (),
    run_count: int = 100,
    seed_start: int = 0,
    parameters: Optional[Mapping[str, Any]] = None,
    *,
    seeds: Optional[Sequence[int]] = None,
    workers: Optional[int] = None,
    progress: Optional[ProgressCallback] = None,
    declared: Sequence[Parameter] = (),
    settings: Optional[EngineSettings] = None,
) -> SimulationOutcome:
    """Run ``run_count`` generations on consecutive seeds from ``seed_start``."""
    settings = settings or EngineSettings()
    config = SimulationConfig(
        run_count=run_count if seeds is None else len(seeds),
        seed_start=seed_start,
        seeds=tuple(seeds) if seeds is not None else None,
        parameters=dict(parameters or {}),
        workers=workers,
        histogram_buckets=settings.histogram_buckets,
        progress_interval=settings.progress_interval,
    )
    runner = SimulationRunner(settings)
    with _ACTIVE_LOCK:
        _ACTIVE.add(runner)
    try:
        return runner.run(graph, constraints, config, progress=progress, declared=declared)
    finally:
        with _ACTIVE_LOCK:
            _ACTIVE.discard(runner)


def cancel_simulation() -> int:
    """Cancel every running simulation; returns how many were signalled."""
    with _ACTIVE_LOCK:
        runners = list(_ACTIVE)
    for runner in runners:
        runner.cancel()
    return len(runners)


__all__ = ["SimulationRunner", "run_simulation", "cancel_simulation"]
