"""Room-graph helpers over a layout's connections."""

from __future__ import annotations

from collections import deque
from typing import Dict, List, Optional

from engine.layout import DungeonLayout

Adjacency = Dict[str, List[str]]


def adjacency(layout: DungeonLayout, directed: bool = False) -> Adjacency:
    adj: Adjacency = {room.id: [] for room in layout.rooms}
    for conn in layout.connections:
        adj.setdefault(conn.from_room_id, []).append(conn.to_room_id)
        if not directed:
            adj.setdefault(conn.to_room_id, []).append(conn.from_room_id)
    for neighbours in adj.values():
        neighbours.sort()
    return adj


def bfs_distances(adj: Adjacency, source: str) -> Dict[str, int]:
    """Hop count from ``source`` to every room it reaches."""
    if source not in adj:
        return {}
    dist = {source: 0}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        for nxt in adj.get(current, ()):
            if nxt not in dist:
                dist[nxt] = dist[current] + 1
                queue.append(nxt)
    return dist


def shortest_path(adj: Adjacency, source: str, target: str) -> Optional[List[str]]:
    if source not in adj:
        return None
    parent: Dict[str, Optional[str]] = {source: None}
    queue = deque([source])
    while queue:
        current = queue.popleft()
        if current == target:
            path = [current]
            while parent[path[-1]] is not None:
                path.append(parent[path[-1]])  # type: ignore[arg-type]
            return path[::-1]
        for nxt in adj.get(current, ()):
            if nxt not in parent:
                parent[nxt] = current
                queue.append(nxt)
    return None


def select_rooms(layout: DungeonLayout, selector: str) -> List[str]:
    """Resolve a selector to room ids.

    ``start`` and ``exit`` are keywords; otherwise the selector matches a room
    id, then a room type, then a room tag.
    """
    if selector == "start":
        return [layout.start_room_id] if layout.start_room_id else []
    if selector == "exit":
        return sorted({e.room_id for e in layout.exits})
    if layout.get_room(selector) is not None:
        return [selector]
    by_type = [r.id for r in layout.rooms if r.type == selector]
    if by_type:
        return by_type
    return [r.id for r in layout.rooms if selector in r.tags]


def path_length(layout: DungeonLayout) -> int:
    """Rooms on the shortest path from the start room to the nearest exit."""
    if layout.start_room_id is None or not layout.exits:
        return 0
    dist = bfs_distances(adjacency(layout), layout.start_room_id)
    hops = [dist[e.room_id] for e in layout.exits if e.room_id in dist]
    return min(hops) + 1 if hops else 0


__all__ = ["adjacency", "bfs_distances", "shortest_path", "select_rooms", "path_length"]
