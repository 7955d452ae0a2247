"""Fragments: the partial content passed along an edge between executors."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


class Direction(Enum):
    """Heading used to place the next room, in screen coordinates (y grows down)."""

    RIGHT = (1, 0)
    DOWN = (0, 1)
    LEFT = (-1, 0)
    UP = (0, -1)

    @property
    def dx(self) -> int:
        return self.value[0]

    @property
    def dy(self) -> int:
        return self.value[1]

    def turn_left(self) -> "Direction":
        return Direction((self.dy, -self.dx))

    def turn_right(self) -> "Direction":
        return Direction((-self.dy, self.dx))


# Heading of each branch output, by output index
BRANCH_DIRECTIONS = (Direction.RIGHT, Direction.DOWN, Direction.LEFT, Direction.UP)


@dataclass(frozen=True)
class PathStep:
    node_id: str
    index: int
    weight: float


@dataclass(frozen=True)
class Fragment:
    anchor_room_id: Optional[str] = None
    # Every room converging here through a merge, anchor first
    joined_room_ids: Tuple[str, ...] = ()
    cursor: Tuple[float, float] = (0.0, 0.0)
    direction: Direction = Direction.RIGHT
    lateral_offset: float = 0.0
    variables: Dict[str, Any] = field(default_factory=dict)
    path: Tuple[PathStep, ...] = ()

    @property
    def anchors(self) -> Tuple[str, ...]:
        if self.joined_room_ids:
            return self.joined_room_ids
        return (self.anchor_room_id,) if self.anchor_room_id is not None else ()

    def at_room(self, room_id: str, cursor: Tuple[float, float]) -> "Fragment":
        """Continue from ``room_id``; any branch offset has been consumed."""
        return replace(
            self, anchor_room_id=room_id, joined_room_ids=(), cursor=cursor, lateral_offset=0.0
        )

    def heading(self, direction: Direction, lateral_offset: float = 0.0) -> "Fragment":
        return replace(self, direction=direction, lateral_offset=lateral_offset)

    def with_variable(self, name: str, value: Any) -> "Fragment":
        variables = dict(self.variables)
        variables[name] = value
        return replace(self, variables=variables)

    def follow(self, node_id: str, index: int, weight: float) -> "Fragment":
        return replace(self, path=self.path + (PathStep(node_id, index, weight),))


def merge_fragments(fragments: Sequence[Fragment]) -> Fragment:
    """Join fragments arriving at a merge, in input-port order."""
    if not fragments:
        raise ValueError("nothing to merge")
    if len(fragments) == 1:
        return fragments[0]
    first = fragments[0]
    joined: list[str] = []
    variables: Dict[str, Any] = {}
    path: list[PathStep] = []
    for frag in fragments:
        for room_id in frag.anchors:
            if room_id not in joined:
                joined.append(room_id)
        variables.update(frag.variables)
        path.extend(step for step in frag.path if step not in path)
    return Fragment(
        anchor_room_id=joined[0] if joined else None,
        joined_room_ids=tuple(joined),
        cursor=first.cursor,
        direction=first.direction,
        variables=variables,
        path=tuple(path),
    )


__all__ = ["Direction", "BRANCH_DIRECTIONS", "PathStep", "Fragment", "merge_fragments"]
