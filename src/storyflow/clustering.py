"""Post-layout element clustering.

Pulls each puzzle's elements toward the puzzle's vertical center.  Every
move is checked against an occupancy index keyed by bucketed x, and a node
that would collide is moved to the nearest collision-free slot just above or
below an occupied range instead.

The pass is deterministic but order-dependent: puzzle groups are handled in
the order their first edge appears, elements in ascending y within a group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from .models import Edge, EdgeKind, EntityKind, Node


DEFAULT_COMPRESSION_FACTOR = 0.6
DEFAULT_BUCKET_SIZE = 50
DEFAULT_PADDING = 10
CANDIDATE_PADDING = 15


@dataclass
class OccupiedRange:
    id: str
    top: float
    bottom: float


class OccupancyIndex:
    """Vertical ranges taken in each x bucket."""

    def __init__(self, bucket_size: float = DEFAULT_BUCKET_SIZE, padding: float = DEFAULT_PADDING):
        self.bucket_size = bucket_size
        self.padding = padding
        self._buckets: dict[float, list[OccupiedRange]] = {}

    def bucket(self, x: float) -> float:
        return round(x / self.bucket_size) * self.bucket_size

    def ranges(self, x: float) -> list[OccupiedRange]:
        return self._buckets.get(self.bucket(x), [])

    def overlaps(self, x: float, top: float, bottom: float, exclude_id: Optional[str] = None) -> bool:
        for occupied in self.ranges(x):
            if exclude_id and occupied.id == exclude_id:
                continue
            if not (bottom + self.padding < occupied.top or top - self.padding > occupied.bottom):
                return True
        return False

    def register(self, node_id: str, x: float, top: float, bottom: float) -> None:
        ranges = self._buckets.setdefault(self.bucket(x), [])
        ranges[:] = [r for r in ranges if r.id != node_id]
        ranges.append(OccupiedRange(node_id, top, bottom))
        ranges.sort(key=lambda r: r.top)

    def find_safe_position(self, x: float, desired_y: float, height: float, node_id: str) -> float:
        """Closest collision-free top to ``desired_y`` among the candidate slots."""
        ranges = self.ranges(x)
        if not ranges:
            return desired_y

        candidates = [desired_y]
        for occupied in ranges:
            candidates.append(occupied.bottom + CANDIDATE_PADDING)
            candidates.append(occupied.top - height - CANDIDATE_PADDING)

        best, best_distance = desired_y, float("inf")
        for candidate in candidates:
            if self.overlaps(x, candidate, candidate + height, node_id):
                continue
            distance = abs(candidate - desired_y)
            if distance < best_distance:
                best, best_distance = candidate, distance
        return best


def _puzzle_groups(nodes: dict[str, Node], edges: list[Edge]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = {}
    for edge in edges:
        if edge.kind == EdgeKind.REQUIREMENT:
            element_id, puzzle_id = edge.source, edge.target
        elif edge.kind == EdgeKind.REWARD:
            puzzle_id, element_id = edge.source, edge.target
        else:
            continue
        if element_id not in nodes or puzzle_id not in nodes:
            continue
        groups.setdefault(puzzle_id, []).append(element_id)
    return groups


def apply_element_clustering(
    nodes: list[Node],
    edges: list[Edge],
    compression_factor: float = DEFAULT_COMPRESSION_FACTOR,
    *,
    bucket_size: float = DEFAULT_BUCKET_SIZE,
    padding: float = DEFAULT_PADDING,
    logger: Optional[logging.Logger] = None,
) -> list[Node]:
    """Copies of ``nodes`` with each puzzle's elements compressed toward it."""
    log = logger or logging.getLogger(__name__)
    current: dict[str, Node] = {node.id: node for node in nodes}
    groups = _puzzle_groups(current, edges)
    occupancy = OccupancyIndex(bucket_size, padding)

    for node in nodes:
        if node.entity_kind != EntityKind.ELEMENT:
            occupancy.register(node.id, node.x, node.y, node.y + node.effective_height())

    for puzzle_id, element_ids in groups.items():
        members = [current[eid] for eid in dict.fromkeys(element_ids) if current[eid].entity_kind == EntityKind.ELEMENT]
        if len(members) <= 1:
            continue
        puzzle = current[puzzle_id]

        members.sort(key=lambda n: n.y)
        min_y = members[0].y
        max_y = members[-1].y + members[-1].effective_height()
        group_center = (min_y + max_y) / 2
        puzzle_center = puzzle.y + puzzle.effective_height() / 2

        collisions = 0
        for member in members:
            height = member.effective_height()
            desired_y = puzzle_center + (member.y - group_center) * compression_factor - height / 2
            final_y = desired_y
            if occupancy.overlaps(member.x, desired_y, desired_y + height, member.id):
                final_y = occupancy.find_safe_position(member.x, desired_y, height, member.id)
                collisions += 1
            current[member.id] = member.model_copy(update={"y": final_y})
            occupancy.register(member.id, member.x, final_y, final_y + height)

        label = puzzle.get_label()
        if collisions:
            log.debug(f"Clustered {len(members)} elements around puzzle '{label}' ({collisions} overlaps prevented)")
        else:
            log.debug(f"Clustered {len(members)} elements around puzzle '{label}'")

    return [current[node.id] for node in nodes]


class ClusteringStats(BaseModel):
    moved_nodes: int = 0
    average_movement: float = 0.0
    max_movement: float = 0.0


def clustering_stats(before: list[Node], after: list[Node]) -> ClusteringStats:
    """Vertical movement between two layouts of the same nodes, matched by id."""
    after_map = {node.id: node for node in after}
    moved, total, largest = 0, 0.0, 0.0
    for original in before:
        clustered = after_map.get(original.id)
        if clustered is None:
            continue
        movement = abs(clustered.y - original.y)
        if movement > 0.01:
            moved += 1
            total += movement
            largest = max(largest, movement)
    return ClusteringStats(
        moved_nodes=moved,
        average_movement=total / moved if moved else 0.0,
        max_movement=largest,
    )
