"""Engine-wide defaults for dungeon generation and simulation."""

# Room sizing defaults (original editor defaults for a fresh room node)
DEFAULT_ROOM_MIN_SIZE: float = 5.0
DEFAULT_ROOM_MAX_SIZE: float = 10.0
DEFAULT_CHAIN_ROOM_MAX_SIZE: float = 8.0

# Placement
ROOM_SPACING_MIN: float = 3.0
ROOM_SPACING_MAX: float = 8.0
ROOM_JITTER: float = 2.0
ROOM_PLACEMENT_RETRIES: int = 8
BRANCH_PATH_OFFSET: float = 15.0
DOOR_EDGE_MIN_FRACTION: float = 0.25
DOOR_EDGE_MAX_FRACTION: float = 0.75
ENTITY_WALL_PADDING: float = 1.5

# Simulation / statistics
DEFAULT_HISTOGRAM_BUCKETS: int = 10
DEFAULT_PROGRESS_INTERVAL: int = 10
DEFAULT_RETRY_ATTEMPTS: int = 5
PERCENTILES: tuple[float, ...] = (0.05, 0.25, 0.75, 0.95)

# Fixed fraction used by the "entrance" player start policy
ENTRANCE_OFFSET: float = 1.0

# Entity type names counted by the simulation metrics
ENEMY_ENTITY_TYPES: frozenset[str] = frozenset({"enemy"})
ITEM_ENTITY_TYPES: frozenset[str] = frozenset({"loot", "item"})

# Wildcard port data type
ANY_DATA_TYPE: str = "any"
