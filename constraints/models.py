"""Constraint declarations and their per-run results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union, TYPE_CHECKING

import structlog

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from engine.layout import DungeonLayout

log = structlog.get_logger()


class ConstraintType(Enum):
    DISTANCE = "distance"
    COUNT = "count"
    DENSITY = "density"
    PROGRESSION = "progression"
    REQUIRED = "required"
    FORBIDDEN = "forbidden"
    CONNECTED = "connected"
    CUSTOM = "custom"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


PredicateResult = Union[bool, Tuple[bool, str]]
Predicate = Callable[["DungeonLayout", Mapping[str, Any]], PredicateResult]
PREDICATES: Dict[str, Predicate] = {}


def register_predicate(name: str, predicate: Predicate) -> None:
    """Make ``predicate`` available to ``custom`` constraints as ``name``."""
    PREDICATES[name] = predicate
    log.debug("Registered constraint predicate", name=name)


@dataclass(frozen=True)
class Constraint:
    id: str
    type: ConstraintType
    parameters: Dict[str, Any] = field(default_factory=dict)
    severity: Severity = Severity.ERROR
    error_message: Optional[str] = None
    predicate: Optional[Predicate] = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Constraint":
        try:
            ctype = ConstraintType(raw["type"])
        except ValueError:
            raise ValueError(f"Unknown constraint type: {raw['type']!r}") from None
        try:
            severity = Severity(raw.get("severity", "error"))
        except ValueError:
            raise ValueError(f"Unknown severity: {raw.get('severity')!r}") from None
        return cls(
            id=str(raw.get("id", ctype.value)),
            type=ctype,
            parameters=dict(raw.get("parameters") or {}),
            severity=severity,
            error_message=raw.get("errorMessage"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "parameters": dict(self.parameters),
            "severity": self.severity.value,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class ConstraintResult:
    constraint_id: str
    passed: bool
    message: Optional[str] = None
    severity: Severity = Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraintId": self.constraint_id,
            "passed": self.passed,
            "message": self.message,
            "severity": self.severity.value,
        }


__all__ = [
    "ConstraintType",
    "Severity",
    "Constraint",
    "ConstraintResult",
    "Predicate",
    "PREDICATES",
    "register_predicate",
]
