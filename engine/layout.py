"""Layout records produced by a generation run.

Executors never touch the frozen records directly.  They write through a
:class:`NodeScope` handed out by the run's :class:`LayoutBuilder`, which
stamps every new room with the creating node's id and only lets other nodes
append entities.  :meth:`LayoutBuilder.freeze` turns the drafts into the
immutable :class:`DungeonLayout` returned to callers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from common.constants import ENTRANCE_OFFSET
from graph.node_data import SpawnArea

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from constraints.models import ConstraintResult


@dataclass(frozen=True)
class LayoutPosition:
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in layout units, ``(x, y)`` is the top-left corner."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> LayoutPosition:
        return LayoutPosition(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def intersects(self, other: "Rect") -> bool:
        """True when the two rectangles share a region of positive area."""
        return (
            self.x < other.x2
            and self.x2 > other.x
            and self.y < other.y2
            and self.y2 > other.y
        )

    def contains(self, pos: LayoutPosition) -> bool:
        return self.x <= pos.x <= self.x2 and self.y <= pos.y <= self.y2

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class PlacedEntity:
    id: str
    type: str
    position: LayoutPosition
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": self.position.to_dict(),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class GeneratedRoom:
    id: str
    type: str
    bounds: Rect
    entities: Tuple[PlacedEntity, ...] = ()
    tags: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    source_node: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "bounds": self.bounds.to_dict(),
            "entities": [e.to_dict() for e in self.entities],
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "sourceNode": self.source_node,
        }


@dataclass(frozen=True)
class SpawnPoint:
    id: str
    type: str
    position: LayoutPosition
    room_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": self.position.to_dict(),
            "roomId": self.room_id,
        }


@dataclass(frozen=True)
class RoomConnection:
    """Directed door-to-door link between two rooms."""

    from_room_id: str
    to_room_id: str
    from_door: LayoutPosition
    to_door: LayoutPosition

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromRoomId": self.from_room_id,
            "toRoomId": self.to_room_id,
            "fromDoor": self.from_door.to_dict(),
            "toDoor": self.to_door.to_dict(),
        }


@dataclass(frozen=True)
class ExitPoint:
    position: LayoutPosition
    room_id: str
    exit_type: str = "stairs"
    requires_key: bool = False
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position.to_dict(),
            "roomId": self.room_id,
            "exitType": self.exit_type,
            "requiresKey": self.requires_key,
            "nodeId": self.node_id,
        }


@dataclass(frozen=True)
class DungeonLayout:
    rooms: Tuple[GeneratedRoom, ...] = ()
    connections: Tuple[RoomConnection, ...] = ()
    spawn_points: Tuple[SpawnPoint, ...] = ()
    player_start: LayoutPosition = field(default_factory=lambda: LayoutPosition(0.0, 0.0))
    start_room_id: Optional[str] = None
    exits: Tuple[ExitPoint, ...] = ()

    def room_map(self) -> Dict[str, GeneratedRoom]:
        return {room.id: room for room in self.rooms}

    def get_room(self, room_id: str) -> Optional[GeneratedRoom]:
        return next((r for r in self.rooms if r.id == room_id), None)

    def entities(self) -> List[PlacedEntity]:
        return [e for room in self.rooms for e in room.entities]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rooms": [r.to_dict() for r in self.rooms],
            "connections": [c.to_dict() for c in self.connections],
            "spawnPoints": [s.to_dict() for s in self.spawn_points],
            "playerStart": self.player_start.to_dict(),
            "startRoomId": self.start_room_id,
            "exits": [e.to_dict() for e in self.exits],
        }


@dataclass(frozen=True)
class GenerationMetadata:
    node_executions: int = 0
    retry_count: int = 0
    pruned_nodes: Tuple[str, ...] = ()
    merge_winners: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeExecutions": self.node_executions,
            "retryCount": self.retry_count,
            "prunedNodes": list(self.pruned_nodes),
            "mergeWinners": dict(self.merge_winners),
        }


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one generation run; plain data, safe to serialise."""

    seed: int
    success: bool
    layout: Optional[DungeonLayout] = None
    constraint_results: Tuple["ConstraintResult", ...] = ()
    metadata: GenerationMetadata = field(default_factory=GenerationMetadata)
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    duration_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "success": self.success,
            "layout": self.layout.to_dict() if self.layout is not None else None,
            "constraintResults": [r.to_dict() for r in self.constraint_results],
            "metadata": self.metadata.to_dict(),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Mutable drafts
# ---------------------------------------------------------------------------


@dataclass
class _RoomDraft:
    id: str
    type: str
    bounds: Rect
    source_node: str
    tags: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    entities: List[PlacedEntity] = field(default_factory=list)

    def freeze(self) -> GeneratedRoom:
        return GeneratedRoom(
            id=self.id,
            type=self.type,
            bounds=self.bounds,
            entities=tuple(self.entities),
            tags=self.tags,
            metadata=dict(self.metadata),
            source_node=self.source_node,
        )


class LayoutBuilder:
    """Accumulates the layout of a single run.  Not shared between runs."""

    def __init__(self) -> None:
        self._rooms: Dict[str, _RoomDraft] = {}
        self._connections: List[RoomConnection] = []
        self._spawn_points: List[SpawnPoint] = []
        self._exits: List[ExitPoint] = []
        self._start_room_id: Optional[str] = None
        self._start_area = SpawnArea.CENTER
        self._start_offset: Tuple[float, float] = (0.5, 0.5)
        self.warnings: List[str] = []

    def scope(self, node_id: str) -> "NodeScope":
        return NodeScope(self, node_id)

    def placed_bounds(self) -> List[Rect]:
        return [draft.bounds for draft in self._rooms.values()]

    def bounds_of(self, room_id: str) -> Rect:
        return self._rooms[room_id].bounds

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    @property
    def start_room_id(self) -> Optional[str]:
        return self._start_room_id

    def set_player_start(self, area: SpawnArea, offset: Tuple[float, float]) -> None:
        self._start_area = area
        self._start_offset = offset

    def _player_start(self) -> LayoutPosition:
        if self._start_room_id is None:
            return LayoutPosition(0.0, 0.0)
        bounds = self._rooms[self._start_room_id].bounds
        if self._start_area is SpawnArea.ENTRANCE:
            return LayoutPosition(bounds.x + min(ENTRANCE_OFFSET, bounds.width / 2.0), bounds.center.y)
        if self._start_area is SpawnArea.RANDOM:
            u, v = self._start_offset
            return LayoutPosition(bounds.x + u * bounds.width, bounds.y + v * bounds.height)
        return bounds.center

    def freeze(self) -> DungeonLayout:
        return DungeonLayout(
            rooms=tuple(draft.freeze() for draft in self._rooms.values()),
            connections=tuple(self._connections),
            spawn_points=tuple(self._spawn_points),
            player_start=self._player_start(),
            start_room_id=self._start_room_id,
            exits=tuple(self._exits),
        )


class NodeScope:
    """Write access to the layout for one executing node."""

    def __init__(self, builder: LayoutBuilder, node_id: str) -> None:
        self._builder = builder
        self.node_id = node_id

    # -- reads ---------------------------------------------------------------
    def placed_bounds(self) -> List[Rect]:
        return self._builder.placed_bounds()

    def bounds_of(self, room_id: str) -> Rect:
        return self._builder.bounds_of(room_id)

    def has_room(self, room_id: str) -> bool:
        return self._builder.has_room(room_id)

    @property
    def start_room_id(self) -> Optional[str]:
        return self._builder.start_room_id

    # -- writes --------------------------------------------------------------
    def add_room(
        self,
        room_id: str,
        room_type: str,
        bounds: Rect,
        *,
        tags: Tuple[str, ...] = (),
        metadata: Optional[Dict[str, Any]] = None,
        root: bool = False,
    ) -> None:
        b = self._builder
        if room_id in b._rooms:
            raise ValueError(f"room id '{room_id}' already placed")
        b._rooms[room_id] = _RoomDraft(
            id=room_id,
            type=room_type,
            bounds=bounds,
            source_node=self.node_id,
            tags=tuple(tags),
            metadata=dict(metadata or {}),
        )
        if root and b._start_room_id is None:
            b._start_room_id = room_id

    def connect(
        self,
        from_room_id: str,
        to_room_id: str,
        from_door: LayoutPosition,
        to_door: LayoutPosition,
    ) -> None:
        self._builder._connections.append(
            RoomConnection(from_room_id, to_room_id, from_door, to_door)
        )

    def add_entity(self, room_id: str, entity: PlacedEntity) -> None:
        self._builder._rooms[room_id].entities.append(entity)

    def add_spawn_point(self, spawn: SpawnPoint) -> None:
        self._builder._spawn_points.append(spawn)

    def add_exit(self, exit_point: ExitPoint) -> None:
        self._builder._exits.append(exit_point)

    def set_player_start(self, area: SpawnArea, offset: Tuple[float, float]) -> None:
        self._builder.set_player_start(area, offset)

    def warn(self, message: str) -> None:
        self._builder.warnings.append(f"{self.node_id}: {message}")


__all__ = [
    "LayoutPosition",
    "Rect",
    "PlacedEntity",
    "GeneratedRoom",
    "SpawnPoint",
    "RoomConnection",
    "ExitPoint",
    "DungeonLayout",
    "GenerationMetadata",
    "GenerationResult",
    "LayoutBuilder",
    "NodeScope",
]
