"""Evaluation of declared constraints against a finished layout.

One :class:`ConstraintResult` is produced per constraint, in declaration
order.  Malformed parameters fail that constraint with a message instead of
raising, so a bad declaration cannot abort a simulation batch.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from constraints.models import PREDICATES, Constraint, ConstraintResult, ConstraintType
from constraints.topology import adjacency, bfs_distances, select_rooms, shortest_path
from engine.layout import DungeonLayout, GeneratedRoom, PlacedEntity

log = structlog.get_logger()

Verdict = Tuple[bool, Optional[str]]
Evaluator = Callable[[DungeonLayout, Constraint], Verdict]
EVALUATORS: Dict[ConstraintType, Evaluator] = {}


def _evaluator(ctype: ConstraintType) -> Callable[[Evaluator], Evaluator]:
    def decorator(func: Evaluator) -> Evaluator:
        EVALUATORS[ctype] = func
        return func

    return decorator


def _bounds(params: Mapping[str, Any], low_default: float = 0.0) -> Tuple[float, float]:
    low = params.get("min", low_default)
    high = params.get("max", math.inf)
    for name, value in (("min", low), ("max", high)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{name}' must be a number, got {value!r}")
    if low > high:
        raise ValueError(f"min {low} exceeds max {high}")
    return float(low), float(high)


def _fmt(low: float, high: float) -> str:
    return f"[{low:g}, {'inf' if math.isinf(high) else f'{high:g}'}]"


def _room_matches(room: GeneratedRoom, tag: Optional[str]) -> bool:
    return tag is None or room.type == tag or tag in room.tags


def _entity_matches(entity: PlacedEntity, tag: Optional[str]) -> bool:
    if tag is None:
        return True
    return entity.type == tag or tag in entity.metadata.get("tags", ())


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _room_level(room: GeneratedRoom, key: str) -> Optional[float]:
    """Room metadata value, else the highest value among its entities."""
    own = _numeric(room.metadata.get(key))
    if own is not None:
        return own
    values = [v for v in (_numeric(e.metadata.get(key)) for e in room.entities) if v is not None]
    return max(values) if values else None


# ---------------------------------------------------------------------------
# evaluators
# ---------------------------------------------------------------------------


@_evaluator(ConstraintType.DISTANCE)
def _distance(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    params = constraint.parameters
    source, target = str(params["from"]), str(params["to"])
    low, high = _bounds(params)
    sources, targets = select_rooms(layout, source), select_rooms(layout, target)
    if not sources or not targets:
        missing = source if not sources else target
        return False, f"no rooms match '{missing}'"
    adj = adjacency(layout)
    best: Optional[int] = None
    for room_id in sources:
        dist = bfs_distances(adj, room_id)
        for other in targets:
            if other in dist and (best is None or dist[other] < best):
                best = dist[other]
    if best is None:
        return False, f"no path between '{source}' and '{target}'"
    if low <= best <= high:
        return True, None
    return False, f"distance {best} between '{source}' and '{target}' outside {_fmt(low, high)}"


@_evaluator(ConstraintType.COUNT)
def _count(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    params = constraint.parameters
    target = params.get("target", "rooms")
    tag = params.get("tag")
    low, high = _bounds(params)
    if target == "rooms":
        count = sum(1 for r in layout.rooms if _room_matches(r, tag))
    elif target == "entities":
        count = sum(1 for e in layout.entities() if _entity_matches(e, tag))
    else:
        raise ValueError(f"target must be 'rooms' or 'entities', got {target!r}")
    if low <= count <= high:
        return True, None
    what = f"{target} tagged '{tag}'" if tag else target
    return False, f"{count} {what}, expected {_fmt(low, high)}"


@_evaluator(ConstraintType.DENSITY)
def _density(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    params = constraint.parameters
    entity_type = params.get("entityType")
    mode = params.get("mode", "average")
    low, high = _bounds(params)
    if not layout.rooms:
        return False, "layout has no rooms"
    counts = {
        r.id: sum(1 for e in r.entities if _entity_matches(e, entity_type)) for r in layout.rooms
    }
    if mode == "average":
        average = math.fsum(counts.values()) / len(counts)
        if low <= average <= high:
            return True, None
        return False, f"average density {average:.2f} outside {_fmt(low, high)}"
    if mode == "per_room":
        bad = [rid for rid, n in counts.items() if not low <= n <= high]
        if not bad:
            return True, None
        return False, f"rooms outside {_fmt(low, high)}: {', '.join(bad)}"
    raise ValueError(f"mode must be 'average' or 'per_room', got {mode!r}")


@_evaluator(ConstraintType.PROGRESSION)
def _progression(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    key = str(constraint.parameters.get("key", "difficulty"))
    if layout.start_room_id is None:
        return False, "layout has no start room"
    rooms = layout.room_map()
    adj = adjacency(layout, directed=True)
    for exit_room in sorted({e.room_id for e in layout.exits}):
        path = shortest_path(adj, layout.start_room_id, exit_room)
        if path is None:
            return False, f"exit room '{exit_room}' is not reachable from the start"
        previous: Optional[Tuple[str, float]] = None
        for room_id in path:
            level = _room_level(rooms[room_id], key)
            if level is None:
                continue
            if previous is not None and level < previous[1]:
                return False, (
                    f"{key} drops from {previous[1]:g} in '{previous[0]}' "
                    f"to {level:g} in '{room_id}'"
                )
            previous = (room_id, level)
    return True, None


def _tagged_rooms(layout: DungeonLayout, tag: str, target: str) -> List[str]:
    found = []
    for room in layout.rooms:
        in_room = target in ("any", "rooms") and _room_matches(room, tag)
        in_entities = target in ("any", "entities") and any(
            _entity_matches(e, tag) for e in room.entities
        )
        if in_room or in_entities:
            found.append(room.id)
    return found


def _ordered(layout: DungeonLayout, params: Mapping[str, Any], room_ids: List[str]) -> List[str]:
    """Keep rooms that sit before/after the reference selector, by hops from start."""
    before, after = params.get("before"), params.get("after")
    if before is None and after is None:
        return room_ids
    if layout.start_room_id is None:
        return []
    dist = bfs_distances(adjacency(layout), layout.start_room_id)
    reference = select_rooms(layout, str(before if before is not None else after))
    ref_hops = [dist[r] for r in reference if r in dist]
    if not ref_hops:
        raise ValueError(f"no reachable room matches '{before if before is not None else after}'")
    if before is not None:
        limit = min(ref_hops)
        return [r for r in room_ids if r in dist and dist[r] < limit]
    limit = max(ref_hops)
    return [r for r in room_ids if r in dist and dist[r] > limit]


def _describe(params: Mapping[str, Any]) -> str:
    if params.get("before") is not None:
        return f" before '{params['before']}'"
    if params.get("after") is not None:
        return f" after '{params['after']}'"
    return ""


@_evaluator(ConstraintType.REQUIRED)
def _required(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    params = constraint.parameters
    tag = str(params["tag"])
    matches = _ordered(layout, params, _tagged_rooms(layout, tag, params.get("target", "any")))
    if matches:
        return True, None
    return False, f"required '{tag}' not found{_describe(params)}"


@_evaluator(ConstraintType.FORBIDDEN)
def _forbidden(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    params = constraint.parameters
    tag = str(params["tag"])
    matches = _ordered(layout, params, _tagged_rooms(layout, tag, params.get("target", "any")))
    if not matches:
        return True, None
    return False, f"forbidden '{tag}' found{_describe(params)} in: {', '.join(matches)}"


@_evaluator(ConstraintType.CONNECTED)
def _connected(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    if not layout.rooms:
        return True, None
    if layout.start_room_id is None:
        return False, "layout has no start room"
    reached = bfs_distances(adjacency(layout), layout.start_room_id)
    unreached = [r.id for r in layout.rooms if r.id not in reached]
    if not unreached:
        return True, None
    return False, f"rooms unreachable from start: {', '.join(unreached)}"


@_evaluator(ConstraintType.CUSTOM)
def _custom(layout: DungeonLayout, constraint: Constraint) -> Verdict:
    predicate = constraint.predicate
    if predicate is None:
        name = constraint.parameters.get("predicate")
        if name is None:
            raise ValueError("custom constraint needs a predicate")
        predicate = PREDICATES.get(str(name))
        if predicate is None:
            return False, f"unknown predicate '{name}'"
    outcome = predicate(layout, constraint.parameters)
    if isinstance(outcome, tuple):
        passed, message = outcome
        return bool(passed), message
    return bool(outcome), None


def evaluate_constraint(layout: DungeonLayout, constraint: Constraint) -> ConstraintResult:
    evaluate = EVALUATORS[constraint.type]
    try:
        passed, message = evaluate(layout, constraint)
    except (KeyError, ValueError, TypeError) as err:
        detail = f"missing parameter {err}" if isinstance(err, KeyError) else str(err)
        passed, message = False, f"invalid parameters: {detail}"
    except Exception as err:
        if constraint.type is not ConstraintType.CUSTOM:
            raise
        log.warning("Custom predicate raised", constraint_id=constraint.id, error=str(err))
        passed, message = False, f"predicate raised {type(err).__name__}: {err}"
    if not passed and constraint.error_message:
        message = constraint.error_message
    return ConstraintResult(constraint.id, passed, message, constraint.severity)


def evaluate_constraints(
    layout: DungeonLayout, constraints: Sequence[Constraint]
) -> List[ConstraintResult]:
    return [evaluate_constraint(layout, c) for c in constraints]


__all__ = ["evaluate_constraint", "evaluate_constraints", "EVALUATORS"]
