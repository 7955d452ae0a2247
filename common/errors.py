"""Exception taxonomy shared by the graph, engine and simulation packages."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from graph.validation import GraphViolation


class ForgeError(Exception):
    """Base class for all engine errors."""


class GraphValidationError(ForgeError):
    """Raised when a graph is structurally invalid.

    ``violations`` holds every problem found, not just the first, so callers
    can surface them together.
    """

    def __init__(self, violations: Sequence["GraphViolation"]) -> None:
        self.violations = list(violations)
        lines = "; ".join(v.message for v in self.violations)
        super().__init__(f"Graph validation failed ({len(self.violations)}): {lines}")

    @property
    def messages(self) -> list[str]:
        return [v.message for v in self.violations]


class NodeExecutionError(ForgeError):
    """Raised by a node executor; aborts the whole generation run."""

    def __init__(self, node_id: str, reason: str) -> None:
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Node '{node_id}' failed: {reason}")


class ParameterError(ForgeError, ValueError):
    """Raised when runtime parameter bindings do not match their declarations."""


__all__ = [
    "ForgeError",
    "GraphValidationError",
    "NodeExecutionError",
    "ParameterError",
]
