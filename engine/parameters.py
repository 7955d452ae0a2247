"""Declared runtime parameters and their resolution for a single run."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import structlog

from common.errors import ParameterError
from graph.node_data import Size, SizeRange

log = structlog.get_logger()

PARAMETER_TYPES = ("string", "number", "boolean", "select")

# Bindings that override every room size range in the graph
MIN_ROOM_SIZE = "minRoomSize"
MAX_ROOM_SIZE = "maxRoomSize"


@dataclass(frozen=True)
class Parameter:
    name: str
    type: str = "number"
    default: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    options: Tuple[Any, ...] = ()
    description: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Parameter":
        ptype = str(raw.get("type", "number"))
        if ptype not in PARAMETER_TYPES:
            raise ParameterError(
                f"Parameter '{raw.get('name')}' has unknown type {ptype!r}"
            )
        return cls(
            name=str(raw["name"]),
            type=ptype,
            default=raw.get("default"),
            min=raw.get("min"),
            max=raw.get("max"),
            options=tuple(raw.get("options") or ()),
            description=str(raw.get("description", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "default": self.default,
            "min": self.min,
            "max": self.max,
            "options": list(self.options),
            "description": self.description,
        }

    def coerce(self, value: Any) -> Any:
        """Check ``value`` against this declaration; numbers are clamped."""
        if self.type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ParameterError(f"Parameter '{self.name}' expects a number, got {value!r}")
            if self.min is not None and value < self.min:
                value = self.min
            if self.max is not None and value > self.max:
                value = self.max
            return value
        if self.type == "boolean":
            if not isinstance(value, bool):
                raise ParameterError(f"Parameter '{self.name}' expects true/false, got {value!r}")
            return value
        if self.type == "select":
            if value not in self.options:
                raise ParameterError(
                    f"Parameter '{self.name}' must be one of {list(self.options)}, got {value!r}"
                )
            return value
        return str(value)


def resolve_parameters(
    declared: Sequence[Parameter] = (), overrides: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """Merge declared defaults with caller overrides.

    Undeclared overrides are passed through unchanged so generators without a
    parameter block can still receive ad-hoc bindings.
    """
    by_name = {p.name: p for p in declared}
    values: Dict[str, Any] = {
        p.name: p.coerce(p.default) for p in declared if p.default is not None
    }
    for name, value in (overrides or {}).items():
        param = by_name.get(name)
        values[name] = param.coerce(value) if param is not None else value

    low, high = values.get(MIN_ROOM_SIZE), values.get(MAX_ROOM_SIZE)
    for name, bound in ((MIN_ROOM_SIZE, low), (MAX_ROOM_SIZE, high)):
        if bound is not None and (
            isinstance(bound, bool) or not isinstance(bound, (int, float)) or bound <= 0
        ):
            raise ParameterError(f"{name} must be a positive number, got {bound!r}")
    if low is not None and high is not None and low > high:
        raise ParameterError(f"{MIN_ROOM_SIZE} {low} exceeds {MAX_ROOM_SIZE} {high}")
    log.debug("Parameters resolved", parameters=sorted(values))
    return values


def effective_size_range(size_range: SizeRange, params: Mapping[str, Any]) -> SizeRange:
    """Apply ``minRoomSize`` / ``maxRoomSize`` overrides to a node's size range."""
    low, high = params.get(MIN_ROOM_SIZE), params.get(MAX_ROOM_SIZE)
    if low is not None:
        size_range = replace(size_range, min=Size(float(low), float(low)))
    if high is not None:
        size_range = replace(size_range, max=Size(float(high), float(high)))
    return size_range


__all__ = [
    "Parameter",
    "PARAMETER_TYPES",
    "resolve_parameters",
    "effective_size_range",
    "MIN_ROOM_SIZE",
    "MAX_ROOM_SIZE",
]
