# main.py
"""Command line front end: validate, generate or simulate a generator file."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import orjson
import structlog
import yaml

from api import GeneratorDefinition, load_generator
from common.config import CONFIG_FILE, EngineSettings, load_settings
from common.errors import GraphValidationError, ParameterError
from engine.pipeline import generate_once, generate_with_retry
from graph.validation import validate_graph
from simulation.models import SimulationCancelled, SimulationProgress
from simulation.runner import run_simulation
from utils.logging_utils import setup_logging

log = structlog.get_logger()


def _emit(payload: Any) -> None:
    sys.stdout.buffer.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()


def parse_param_overrides(pairs: Sequence[str]) -> Dict[str, Any]:
    """Turn ``name=value`` strings into bindings; values are read as YAML scalars."""
    params: Dict[str, Any] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise ParameterError(f"Expected NAME=VALUE, got {pair!r}")
        params[name.strip()] = yaml.safe_load(value) if value else ""
    return params


def cmd_validate(definition: GeneratorDefinition, args: argparse.Namespace, settings: EngineSettings) -> int:
    result = validate_graph(definition.graph)
    _emit(result.to_dict())
    return 0 if result.valid else 1


def cmd_generate(definition: GeneratorDefinition, args: argparse.Namespace, settings: EngineSettings) -> int:
    params = parse_param_overrides(args.param)
    if args.retry:
        result = generate_with_retry(
            definition.graph,
            definition.constraints,
            args.seed,
            params,
            definition.parameters,
            max_attempts=args.attempts or settings.retry_attempts,
            placement_retries=settings.placement_retries,
        )
    else:
        result = generate_once(
            definition.graph,
            definition.constraints,
            args.seed,
            params,
            definition.parameters,
            placement_retries=settings.placement_retries,
        )
    _emit(result.to_dict())
    return 0 if result.success else 1


def cmd_simulate(definition: GeneratorDefinition, args: argparse.Namespace, settings: EngineSettings) -> int:
    params = parse_param_overrides(args.param)

    def _report(progress: SimulationProgress) -> None:
        log.info(
            "Simulation progress",
            completed=progress.completed,
            total=progress.total,
            fraction=round(progress.fraction, 3),
        )

    outcome = run_simulation(
        definition.graph,
        definition.constraints,
        args.runs,
        args.seed_start,
        params,
        workers=args.workers,
        progress=_report,
        declared=definition.parameters,
        settings=settings,
    )
    _emit(outcome.to_dict())
    return 2 if isinstance(outcome, SimulationCancelled) else 0


COMMANDS = {
    "validate": cmd_validate,
    "generate": cmd_generate,
    "simulate": cmd_simulate,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deterministic graph-driven dungeon generation."
    )
    parser.add_argument(
        "--config", type=Path, default=CONFIG_FILE, help="Engine settings YAML file."
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: from config)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Write log events to stderr as JSON lines"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _add(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("generator", type=Path, help="Generator JSON/YAML or .dfg project file.")
        p.add_argument("--generator-id", default=None, help="Generator to use from a project file.")
        return p

    _add("validate", "Check the graph structure only.")

    gen = _add("generate", "Generate one layout.")
    gen.add_argument("--seed", type=int, default=0, help="Root seed.")
    gen.add_argument(
        "--param", action="append", default=[], metavar="NAME=VALUE", help="Parameter override."
    )
    gen.add_argument(
        "--retry", action="store_true", help="Retry with the next seeds until a run succeeds."
    )
    gen.add_argument("--attempts", type=int, default=None, help="Retry attempt cap.")

    sim = _add("simulate", "Run a batch simulation.")
    sim.add_argument("--runs", type=int, default=100, help="Number of runs.")
    sim.add_argument("--seed-start", type=int, default=0, help="First seed.")
    sim.add_argument("--workers", type=int, default=None, help="Worker threads.")
    sim.add_argument(
        "--param", action="append", default=[], metavar="NAME=VALUE", help="Parameter override."
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # Until setup_logging runs, send events through stdlib logging (stderr);
    # stdout carries only the JSON result.
    structlog.configure(logger_factory=structlog.stdlib.LoggerFactory())
    settings = load_settings(args.config)
    if args.verbose:
        level = logging.DEBUG
    elif args.log_level:
        level = getattr(logging, args.log_level, logging.INFO)
    else:
        level = settings.logging_level
    setup_logging(level, json_logs=args.json_logs)

    try:
        definition = load_generator(args.generator, args.generator_id)
        return COMMANDS[args.command](definition, args, settings)
    except GraphValidationError as e:
        log.error("Invalid generator graph", problems=e.messages)
        _emit({"valid": False, "errors": [v.to_dict() for v in e.violations]})
        return 1
    except (FileNotFoundError, KeyError, ValueError, yaml.YAMLError, orjson.JSONDecodeError) as e:
        log.error("Could not run command", command=args.command, error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
