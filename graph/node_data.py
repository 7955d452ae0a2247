"""Per-variant configuration records for graph nodes.

Each :class:`~graph.models.NodeType` owns exactly one frozen record type,
listed in :data:`NODE_DATA_TYPES`.  Executors receive the concrete record and
never probe optional keys of an open property bag.  Defaults match the values
a freshly placed node gets in the editor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from common.constants import (
    DEFAULT_CHAIN_ROOM_MAX_SIZE,
    DEFAULT_ROOM_MAX_SIZE,
    DEFAULT_ROOM_MIN_SIZE,
)
from graph.models import NodeType


# =========================
# Shared value types
# =========================


@dataclass(frozen=True)
class Size:
    w: float
    h: float


@dataclass(frozen=True)
class SizeRange:
    min: Size = field(default_factory=lambda: Size(DEFAULT_ROOM_MIN_SIZE, DEFAULT_ROOM_MIN_SIZE))
    max: Size = field(default_factory=lambda: Size(DEFAULT_ROOM_MAX_SIZE, DEFAULT_ROOM_MAX_SIZE))

    def problems(self) -> List[str]:
        out = []
        if self.min.w <= 0 or self.min.h <= 0:
            out.append("room size must be positive")
        if self.min.w > self.max.w or self.min.h > self.max.h:
            out.append("size range min exceeds max")
        return out


@dataclass(frozen=True)
class IntRange:
    min: int
    max: int

    def problems(self, name: str) -> List[str]:
        out = []
        if self.min < 0:
            out.append(f"{name} must not be negative")
        if self.min > self.max:
            out.append(f"{name} min {self.min} exceeds max {self.max}")
        return out


class RoomShape(Enum):
    RECTANGULAR = "rectangular"
    L_SHAPED = "l-shaped"
    CIRCULAR = "circular"
    IRREGULAR = "irregular"


class ConnectionStyle(Enum):
    LINEAR = "linear"
    BRANCHING = "branching"


class MergeStrategy(Enum):
    ALL = "all"
    ANY = "any"
    FIRST = "first"


class SpawnArea(Enum):
    CENTER = "center"
    ENTRANCE = "entrance"
    RANDOM = "random"


DIFFICULTY_LEVELS: Dict[str, int] = {
    "trivial": 1,
    "easy": 2,
    "medium": 3,
    "hard": 4,
    "deadly": 5,
}

CONDITION_OPERATORS = ("eq", "ne", "gt", "ge", "lt", "le", "truthy")
DISTRIBUTIONS = ("uniform", "bell", "triangle", "power", "exponential")


# =========================
# Node variants
# =========================


@dataclass(frozen=True)
class StartData:
    label: str = "Start"
    spawn_area: SpawnArea = SpawnArea.CENTER


@dataclass(frozen=True)
class OutputData:
    label: str = "Output"
    exit_type: str = "stairs"
    requires_key: bool = False


@dataclass(frozen=True)
class RoomData:
    label: str = "Room"
    size_range: SizeRange = field(default_factory=SizeRange)
    shapes: Tuple[RoomShape, ...] = (RoomShape.RECTANGULAR,)
    door_count: IntRange = field(default_factory=lambda: IntRange(1, 4))
    room_type: str = "default"
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RoomChainData:
    label: str = "Room Chain"
    count_range: IntRange = field(default_factory=lambda: IntRange(3, 5))
    room_size: SizeRange = field(
        default_factory=lambda: SizeRange(
            Size(DEFAULT_ROOM_MIN_SIZE, DEFAULT_ROOM_MIN_SIZE),
            Size(DEFAULT_CHAIN_ROOM_MAX_SIZE, DEFAULT_CHAIN_ROOM_MAX_SIZE),
        )
    )
    connection_style: ConnectionStyle = ConnectionStyle.LINEAR
    shapes: Tuple[RoomShape, ...] = (RoomShape.RECTANGULAR,)
    door_count: IntRange = field(default_factory=lambda: IntRange(1, 4))
    room_type: str = "default"
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BranchData:
    label: str = "Branch"
    weights: Tuple[float, ...] = (0.5, 0.5)
    probabilistic: bool = False


@dataclass(frozen=True)
class MergeData:
    label: str = "Merge"
    strategy: MergeStrategy = MergeStrategy.ALL


@dataclass(frozen=True)
class SpawnPointData:
    label: str = "Spawn Point"
    entity_type: str = "enemy"
    count_range: IntRange = field(default_factory=lambda: IntRange(1, 3))
    spawn_radius: float = 2.0


@dataclass(frozen=True)
class LootDropData:
    label: str = "Loot Drop"
    loot_table: str = "default"
    drop_chance: float = 1.0
    item_count: IntRange = field(default_factory=lambda: IntRange(1, 3))


@dataclass(frozen=True)
class EncounterData:
    label: str = "Encounter"
    encounter_type: str = "combat"
    difficulty: str = "medium"
    enemy_count: IntRange = field(default_factory=lambda: IntRange(1, 4))
    reward_on_complete: bool = True


@dataclass(frozen=True)
class PropData:
    label: str = "Prop"
    prop_type: str = "decoration"
    count_range: IntRange = field(default_factory=lambda: IntRange(1, 3))


@dataclass(frozen=True)
class RandomSelectData:
    label: str = "Random Select"
    # Empty means uniform over the output ports
    weights: Tuple[float, ...] = ()


@dataclass(frozen=True)
class SequenceData:
    label: str = "Sequence"


@dataclass(frozen=True)
class ConditionData:
    label: str = "Condition"
    parameter: str = ""
    operator: str = "truthy"
    value: Optional[Any] = None


@dataclass(frozen=True)
class DistributionData:
    label: str = "Distribution"
    variable: str = "difficulty"
    distribution: str = "uniform"
    min: float = 0.0
    max: float = 1.0
    power: float = 2.0
    lambd: float = 1.0


NodeData = Union[
    StartData,
    OutputData,
    RoomData,
    RoomChainData,
    BranchData,
    MergeData,
    SpawnPointData,
    LootDropData,
    EncounterData,
    PropData,
    RandomSelectData,
    SequenceData,
    ConditionData,
    DistributionData,
]

NODE_DATA_TYPES: Dict[NodeType, Type[Any]] = {
    NodeType.START: StartData,
    NodeType.OUTPUT: OutputData,
    NodeType.ROOM: RoomData,
    NodeType.ROOM_CHAIN: RoomChainData,
    NodeType.BRANCH: BranchData,
    NodeType.MERGE: MergeData,
    NodeType.SPAWN_POINT: SpawnPointData,
    NodeType.LOOT_DROP: LootDropData,
    NodeType.ENCOUNTER: EncounterData,
    NodeType.PROP: PropData,
    NodeType.RANDOM_SELECT: RandomSelectData,
    NodeType.SEQUENCE: SequenceData,
    NodeType.CONDITION: ConditionData,
    NodeType.DISTRIBUTION: DistributionData,
}


def default_data(node_type: NodeType) -> NodeData:
    """Return the default configuration record for ``node_type``."""
    return NODE_DATA_TYPES[node_type]()


__all__ = [
    "Size",
    "SizeRange",
    "IntRange",
    "RoomShape",
    "ConnectionStyle",
    "MergeStrategy",
    "SpawnArea",
    "DIFFICULTY_LEVELS",
    "CONDITION_OPERATORS",
    "DISTRIBUTIONS",
    "StartData",
    "OutputData",
    "RoomData",
    "RoomChainData",
    "BranchData",
    "MergeData",
    "SpawnPointData",
    "LootDropData",
    "EncounterData",
    "PropData",
    "RandomSelectData",
    "SequenceData",
    "ConditionData",
    "DistributionData",
    "NodeData",
    "NODE_DATA_TYPES",
    "default_data",
]
