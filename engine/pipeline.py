"""Single-run generation: parameters, execution, constraints, result."""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Mapping, Optional, Sequence

import structlog
from structlog.contextvars import bound_contextvars

from common.constants import DEFAULT_RETRY_ATTEMPTS, ROOM_PLACEMENT_RETRIES
from common.errors import GraphValidationError, NodeExecutionError, ParameterError
from constraints.models import Constraint, Severity
from constraints.solver import evaluate_constraints
from engine.graph_executor import GraphExecutor
from engine.layout import GenerationResult
from engine.parameters import Parameter, resolve_parameters
from graph.models import NodeGraph

log = structlog.get_logger()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def generate_once(
    graph: NodeGraph,
    constraints: Sequence[Constraint] = (),
    seed: int = 0,
    parameters: Optional[Mapping[str, Any]] = None,
    declared: Sequence[Parameter] = (),
    *,
    executor: Optional[GraphExecutor] = None,
    placement_retries: int = ROOM_PLACEMENT_RETRIES,
) -> GenerationResult:
    """Generate one layout for ``seed`` and check it against ``constraints``.

    Never raises for bad input: validation, parameter and node errors come
    back as a failed :class:`GenerationResult` carrying the seed.  Pass a
    pre-built ``executor`` to skip re-validating the graph on every call.
    """
    start = time.perf_counter()
    with bound_contextvars(seed=seed):
        try:
            params = resolve_parameters(declared, parameters)
            if executor is None:
                executor = GraphExecutor(graph, placement_retries=placement_retries)
            report = executor.execute(seed, params)
        except GraphValidationError as err:
            log.warning("Graph rejected", problems=len(err.violations))
            return GenerationResult(
                seed=seed, success=False, errors=tuple(err.messages), duration_ms=_elapsed_ms(start)
            )
        except (ParameterError, NodeExecutionError) as err:
            log.warning("Generation failed", error=str(err))
            return GenerationResult(
                seed=seed, success=False, errors=(str(err),), duration_ms=_elapsed_ms(start)
            )

        results = evaluate_constraints(report.layout, constraints)
        errors = []
        warnings = list(report.warnings)
        for result in results:
            if result.passed:
                continue
            text = f"{result.constraint_id}: {result.message}"
            if result.severity is Severity.ERROR:
                errors.append(text)
            else:
                warnings.append(text)
        success = not errors
        log.debug(
            "Generation finished",
            success=success,
            rooms=len(report.layout.rooms),
            constraint_failures=sum(1 for r in results if not r.passed),
        )
        return GenerationResult(
            seed=seed,
            success=success,
            layout=report.layout,
            constraint_results=tuple(results),
            metadata=report.metadata,
            errors=tuple(errors),
            warnings=tuple(warnings),
            duration_ms=_elapsed_ms(start),
        )


def generate_with_retry(
    graph: NodeGraph,
    constraints: Sequence[Constraint] = (),
    seed: int = 0,
    parameters: Optional[Mapping[str, Any]] = None,
    declared: Sequence[Parameter] = (),
    *,
    max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    placement_retries: int = ROOM_PLACEMENT_RETRIES,
) -> GenerationResult:
    """Retry with seeds ``seed, seed + 1, ...`` until a run succeeds.

    Invalid graphs are not retried.  The returned result is the first success
    or the last failure, with ``metadata.retry_count`` set to the number of
    extra attempts made.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    try:
        executor = GraphExecutor(graph, placement_retries=placement_retries)
    except GraphValidationError:
        return generate_once(graph, constraints, seed, parameters, declared)

    attempt = 0
    while True:
        result = generate_once(
            graph, constraints, seed + attempt, parameters, declared, executor=executor
        )
        result = replace(result, metadata=replace(result.metadata, retry_count=attempt))
        if result.success or attempt + 1 >= max_attempts:
            return result
        log.info("Generation attempt failed", seed=seed + attempt, attempt=attempt + 1)
        attempt += 1


__all__ = ["generate_once", "generate_with_retry"]
