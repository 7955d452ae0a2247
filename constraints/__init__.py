"""Constraint declarations and the solver that checks them against a layout."""

from .models import (
    Constraint,
    ConstraintResult,
    ConstraintType,
    PREDICATES,
    Severity,
    register_predicate,
)
from .solver import evaluate_constraint, evaluate_constraints

__all__ = [
    "Constraint",
    "ConstraintResult",
    "ConstraintType",
    "PREDICATES",
    "Severity",
    "register_predicate",
    "evaluate_constraint",
    "evaluate_constraints",
]
