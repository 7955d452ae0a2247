"""Boundary operations used by the editor, the CLI and batch tools.

Generator definitions are read from the plain dict shape of the project file:
``{"id", "name", "description", "graph": {...}, "constraints": [...],
"parameters": [...]}``.  A project file holding several generators is
accepted too; pick one with ``generator_id``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import orjson
import structlog

from common.config import load_yaml_config
from constraints.models import Constraint
from engine.parameters import Parameter
from engine.pipeline import generate_once, generate_with_retry
from graph.models import NodeGraph
from graph.parser import parse_graph
from graph.validation import ValidationResult, validate_graph
from simulation.runner import cancel_simulation, run_simulation

log = structlog.get_logger()


@dataclass(frozen=True)
class GeneratorDefinition:
    id: str
    name: str
    graph: NodeGraph
    constraints: Tuple[Constraint, ...] = ()
    parameters: Tuple[Parameter, ...] = ()
    description: str = ""
    extra: dict = field(default_factory=dict)

    def validate(self) -> ValidationResult:
        return validate_graph(self.graph)


def parse_generator(raw: Mapping[str, Any]) -> GeneratorDefinition:
    """Build a :class:`GeneratorDefinition`; raises ``GraphValidationError``."""
    graph_raw = raw.get("graph")
    if graph_raw is None:
        graph_raw = {k: raw.get(k, []) for k in ("nodes", "edges", "groups")}
    constraints = tuple(Constraint.from_dict(c) for c in raw.get("constraints", []) or [])
    parameters = tuple(Parameter.from_dict(p) for p in raw.get("parameters", []) or [])
    graph = parse_graph(graph_raw)
    known = {"id", "name", "description", "graph", "constraints", "parameters", "nodes", "edges", "groups"}
    return GeneratorDefinition(
        id=str(raw.get("id", "generator")),
        name=str(raw.get("name", raw.get("id", "Generator"))),
        graph=graph,
        constraints=constraints,
        parameters=parameters,
        description=str(raw.get("description", "")),
        extra={k: v for k, v in raw.items() if k not in known},
    )


def _read(path: Path) -> Mapping[str, Any]:
    if path.suffix.lower() in (".yaml", ".yml"):
        return load_yaml_config(path, "Generator")
    if not path.is_file():
        raise FileNotFoundError(f"Generator file not found: {path}")
    return orjson.loads(path.read_bytes())


def load_generator(path: Path, generator_id: Optional[str] = None) -> GeneratorDefinition:
    """Read a generator from a JSON/YAML file or a ``.dfg`` project file."""
    raw = _read(Path(path))
    if not isinstance(raw, Mapping):
        raise ValueError(f"{path}: expected a mapping at the top level")
    generators = raw.get("generators")
    if generators is not None:
        if not generators:
            raise ValueError(f"{path}: project has no generators")
        if generator_id is None:
            raw = generators[0]
        else:
            matches = [g for g in generators if g.get("id") == generator_id]
            if not matches:
                raise KeyError(f"{path}: no generator with id '{generator_id}'")
            raw = matches[0]
    definition = parse_generator(raw)
    log.info(
        "Generator loaded",
        path=str(path),
        generator=definition.id,
        nodes=len(definition.graph.nodes),
        constraints=len(definition.constraints),
    )
    return definition


__all__ = [
    "GeneratorDefinition",
    "parse_generator",
    "load_generator",
    "generate_once",
    "generate_with_retry",
    "validate_graph",
    "run_simulation",
    "cancel_simulation",
]
