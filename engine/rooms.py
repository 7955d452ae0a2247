"""Room sizing, placement and door geometry shared by the room executors."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from common.constants import (
    DOOR_EDGE_MAX_FRACTION,
    DOOR_EDGE_MIN_FRACTION,
    ENTITY_WALL_PADDING,
    ROOM_JITTER,
    ROOM_SPACING_MAX,
    ROOM_SPACING_MIN,
)
from common.errors import NodeExecutionError
from engine.fragments import Direction
from engine.layout import LayoutPosition, Rect
from engine.parameters import effective_size_range
from game_rng import GameRNG
from graph.node_data import IntRange, RoomShape, SizeRange

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from engine.executors import NodeContext


@dataclass(frozen=True)
class RoomSpec:
    """What a single room needs, whether it comes from a room or a chain node."""

    size_range: SizeRange
    shapes: Tuple[RoomShape, ...]
    door_count: IntRange
    room_type: str
    tags: Tuple[str, ...] = ()


def checked_spec(ctx: "NodeContext", spec: RoomSpec) -> RoomSpec:
    """Apply size overrides and reject configurations no room can satisfy."""
    size_range = effective_size_range(spec.size_range, ctx.params)
    problems = size_range.problems() + spec.door_count.problems("doorCount")
    if not spec.shapes:
        problems.append("no room shapes configured")
    if problems:
        raise NodeExecutionError(ctx.node.id, "; ".join(problems))
    return RoomSpec(size_range, spec.shapes, spec.door_count, spec.room_type, spec.tags)


def _candidate(
    rng: GameRNG,
    ref: Rect,
    direction: Direction,
    lateral: float,
    width: float,
    height: float,
) -> Rect:
    spacing = rng.get_float(ROOM_SPACING_MIN, ROOM_SPACING_MAX)
    jitter = rng.get_float(-ROOM_JITTER, ROOM_JITTER) + lateral
    centre = ref.center
    if direction is Direction.RIGHT:
        return Rect(ref.x2 + spacing, centre.y - height / 2.0 + jitter, width, height)
    if direction is Direction.LEFT:
        return Rect(ref.x - spacing - width, centre.y - height / 2.0 + jitter, width, height)
    if direction is Direction.DOWN:
        return Rect(centre.x - width / 2.0 + jitter, ref.y2 + spacing, width, height)
    return Rect(centre.x - width / 2.0 + jitter, ref.y - spacing - height, width, height)


def place_bounds(
    rng: GameRNG,
    ref: Rect,
    direction: Direction,
    lateral: float,
    width: float,
    height: float,
    placed: Sequence[Rect],
    retries: int,
) -> Tuple[Rect, bool]:
    """Find bounds next to ``ref`` that overlap nothing in ``placed``.

    Returns the bounds and whether the last attempt still overlapped.
    """
    bounds = _candidate(rng, ref, direction, lateral, width, height)
    for _ in range(retries):
        if not any(bounds.intersects(other) for other in placed):
            return bounds, False
        bounds = _candidate(rng, ref, direction, lateral, width, height)
    return bounds, any(bounds.intersects(other) for other in placed)


def facing_doors(rng: GameRNG, a: Rect, b: Rect) -> Tuple[LayoutPosition, LayoutPosition]:
    """Door positions on the edges of ``a`` and ``b`` that face each other."""
    dx = b.center.x - a.center.x
    dy = b.center.y - a.center.y
    fa = rng.get_float(DOOR_EDGE_MIN_FRACTION, DOOR_EDGE_MAX_FRACTION)
    fb = rng.get_float(DOOR_EDGE_MIN_FRACTION, DOOR_EDGE_MAX_FRACTION)
    if abs(dx) >= abs(dy):
        ax, bx = (a.x2, b.x) if dx >= 0 else (a.x, b.x2)
        return (
            LayoutPosition(ax, a.y + fa * a.height),
            LayoutPosition(bx, b.y + fb * b.height),
        )
    ay, by = (a.y2, b.y) if dy >= 0 else (a.y, b.y2)
    return (
        LayoutPosition(a.x + fa * a.width, ay),
        LayoutPosition(b.x + fb * b.width, by),
    )


def build_room(
    ctx: "NodeContext",
    room_id: str,
    spec: RoomSpec,
    *,
    anchor_id: Optional[str],
    cursor: Tuple[float, float],
    direction: Direction,
    lateral: float = 0.0,
    variables: Optional[Dict[str, Any]] = None,
) -> Rect:
    """Sample, place and record one room.

    Draws happen in a fixed order (size, shape, door count, placement) so a
    node's stream yields the same room for the same seed.
    """
    rng = ctx.rng
    width = rng.get_float(spec.size_range.min.w, spec.size_range.max.w)
    height = rng.get_float(spec.size_range.min.h, spec.size_range.max.h)
    shape = rng.choice(spec.shapes)
    doors = rng.get_int(spec.door_count.min, spec.door_count.max)

    if anchor_id is not None:
        ref = ctx.layout.bounds_of(anchor_id)
    else:
        ref = Rect(cursor[0], cursor[1], 0.0, 0.0)
    bounds, overlapped = place_bounds(
        rng,
        ref,
        direction,
        lateral,
        width,
        height,
        ctx.layout.placed_bounds(),
        ctx.placement_retries,
    )

    metadata: Dict[str, Any] = dict(variables or {})
    metadata["shape"] = shape.value
    metadata["doorCount"] = doors
    if overlapped:
        metadata["overlap"] = True
        ctx.layout.warn(f"room '{room_id}' overlaps after {ctx.placement_retries} retries")
    ctx.layout.add_room(
        room_id,
        spec.room_type,
        bounds,
        tags=spec.tags,
        metadata=metadata,
        root=anchor_id is None,
    )
    return bounds


def connect_rooms(ctx: "NodeContext", from_ids: Sequence[str], to_id: str) -> None:
    """Link ``to_id`` to each room in ``from_ids``.

    A root room with no parents hangs off the start room, unless it is the
    start room, so sibling roots below a branch stay reachable.
    """
    if not from_ids:
        start = ctx.layout.start_room_id
        from_ids = (start,) if start is not None and start != to_id else ()
    to_bounds = ctx.layout.bounds_of(to_id)
    for from_id in from_ids:
        from_door, to_door = facing_doors(ctx.rng, ctx.layout.bounds_of(from_id), to_bounds)
        ctx.layout.connect(from_id, to_id, from_door, to_door)


def trailing_cursor(bounds: Rect, direction: Direction) -> Tuple[float, float]:
    """Point on the edge of ``bounds`` the next room grows from."""
    centre = bounds.center
    if direction is Direction.RIGHT:
        return bounds.x2, centre.y
    if direction is Direction.LEFT:
        return bounds.x, centre.y
    if direction is Direction.DOWN:
        return centre.x, bounds.y2
    return centre.x, bounds.y


# ---------------------------------------------------------------------------
# Entity positions
# ---------------------------------------------------------------------------


def _padded(bounds: Rect, padding: float) -> Tuple[float, float, float, float]:
    centre = bounds.center
    if bounds.width <= 2 * padding:
        x_lo = x_hi = centre.x
    else:
        x_lo, x_hi = bounds.x + padding, bounds.x2 - padding
    if bounds.height <= 2 * padding:
        y_lo = y_hi = centre.y
    else:
        y_lo, y_hi = bounds.y + padding, bounds.y2 - padding
    return x_lo, x_hi, y_lo, y_hi


def point_in_room(
    rng: GameRNG, bounds: Rect, padding: float = ENTITY_WALL_PADDING
) -> LayoutPosition:
    x_lo, x_hi, y_lo, y_hi = _padded(bounds, padding)
    return LayoutPosition(rng.get_float(x_lo, x_hi), rng.get_float(y_lo, y_hi))


def point_near_centre(
    rng: GameRNG, bounds: Rect, radius: float, padding: float = ENTITY_WALL_PADDING
) -> LayoutPosition:
    """Uniform point within ``radius`` of the room centre, kept off the walls."""
    angle = rng.get_float(0.0, 2.0 * math.pi)
    dist = radius * math.sqrt(rng.get_float())
    centre = bounds.center
    x_lo, x_hi, y_lo, y_hi = _padded(bounds, padding)
    x = min(max(centre.x + dist * math.cos(angle), x_lo), x_hi)
    y = min(max(centre.y + dist * math.sin(angle), y_lo), y_hi)
    return LayoutPosition(x, y)


def room_ids_in_chain(node_id: str, count: int) -> List[str]:
    return [f"{node_id}_{i}" for i in range(count)]


__all__ = [
    "RoomSpec",
    "checked_spec",
    "place_bounds",
    "facing_doors",
    "build_room",
    "connect_rooms",
    "trailing_cursor",
    "point_in_room",
    "point_near_centre",
    "room_ids_in_chain",
]
