"""Edge synthesis: relationship records to weighted, styled edges.

The structural weight says how strongly ranking should pull two nodes
together.  It starts from a base weight (1 unless the caller supplies one)
and is scaled by what the affinity index knows about the endpoints:

    element <-> puzzle   x3 dual-role element, else x2 if used by more than
                         one puzzle; then x1.5 if it carries SF_ metadata
    puzzle  -> puzzle    x5 sub-puzzle containment; x2 shared narrative thread
    ownership            x1.5
    timeline             x0.7
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from .models import (
    EDGE_STYLES,
    Edge,
    EdgeKind,
    EntityKind,
    GameData,
    Node,
    RelationshipRecord,
)


DUAL_ROLE_MULTIPLIER = 3.0
SHARED_ELEMENT_MULTIPLIER = 2.0
SF_PATTERN_MULTIPLIER = 1.5
CONTAINMENT_MULTIPLIER = 5.0
SHARED_THREAD_MULTIPLIER = 2.0
OWNERSHIP_MULTIPLIER = 1.5
TIMELINE_MULTIPLIER = 0.7

WEIGHT_BUCKETS = ((1, "<1"), (2, "1-2"), (5, "2-5"), (10, "5-10"), (float("inf"), "10+"))


# ---------------------------------------------------------------------------
# Affinity index
# ---------------------------------------------------------------------------

class AffinityIndex(BaseModel):
    """What the weighting rules need to know about each entity."""
    kinds: dict[str, EntityKind] = Field(default_factory=dict)
    requiring_puzzles: dict[str, set[str]] = Field(default_factory=dict)
    rewarding_puzzles: dict[str, set[str]] = Field(default_factory=dict)
    sf_elements: set[str] = Field(default_factory=set)
    containment: set[tuple[str, str]] = Field(default_factory=set)
    threads: dict[str, set[str]] = Field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        records: Iterable[RelationshipRecord],
        game: Optional[GameData] = None,
        nodes: Optional[Iterable[Node]] = None,
    ) -> "AffinityIndex":
        index = cls()
        if game is not None:
            for entity in game.all_entities():
                index.kinds[entity.id] = EntityKind(entity.entity_kind)
            for element in game.elements:
                if not element.sf_patterns.is_empty():
                    index.sf_elements.add(element.id)
                if element.narrative_threads:
                    index.threads[element.id] = set(element.narrative_threads)
            for puzzle in game.puzzles:
                if puzzle.narrative_threads:
                    index.threads[puzzle.id] = set(puzzle.narrative_threads)
        for node in nodes or []:
            index.kinds.setdefault(node.id, node.entity_kind)

        for record in records:
            if record.kind == EdgeKind.REQUIREMENT:
                index.requiring_puzzles.setdefault(record.source, set()).add(record.target)
            elif record.kind == EdgeKind.REWARD:
                index.rewarding_puzzles.setdefault(record.target, set()).add(record.source)
            elif record.kind == EdgeKind.CHAIN:
                index.containment.add((record.source, record.target))
        return index

    def puzzles_using(self, element_id: str) -> set[str]:
        return self.requiring_puzzles.get(element_id, set()) | self.rewarding_puzzles.get(element_id, set())

    def is_dual_role(self, element_id: str) -> bool:
        """Rewarded by one puzzle and required by a different one."""
        providers = self.rewarding_puzzles.get(element_id, set())
        consumers = self.requiring_puzzles.get(element_id, set())
        return any(p != c for p in providers for c in consumers)

    def is_contained(self, a: str, b: str) -> bool:
        return (a, b) in self.containment or (b, a) in self.containment

    def share_thread(self, a: str, b: str) -> bool:
        return bool(self.threads.get(a, set()) & self.threads.get(b, set()))


def structural_weight(
    source: str,
    target: str,
    kind: EdgeKind,
    affinity: Optional[AffinityIndex] = None,
    base_weight: float = 1.0,
) -> float:
    """Scale ``base_weight`` by the structural rules for this edge."""
    weight = base_weight
    affinity = affinity or AffinityIndex()
    source_kind = affinity.kinds.get(source)
    target_kind = affinity.kinds.get(target)

    element_puzzle = {source_kind, target_kind} == {EntityKind.ELEMENT, EntityKind.PUZZLE}
    if kind in (EdgeKind.REQUIREMENT, EdgeKind.REWARD) or element_puzzle:
        element_id = source if source_kind == EntityKind.ELEMENT or kind == EdgeKind.REQUIREMENT else target
        if affinity.is_dual_role(element_id):
            weight *= DUAL_ROLE_MULTIPLIER
        elif len(affinity.puzzles_using(element_id)) > 1:
            weight *= SHARED_ELEMENT_MULTIPLIER
        if element_id in affinity.sf_elements:
            weight *= SF_PATTERN_MULTIPLIER
    elif kind == EdgeKind.CHAIN or (source_kind == target_kind == EntityKind.PUZZLE):
        if affinity.is_contained(source, target):
            weight *= CONTAINMENT_MULTIPLIER
        if affinity.share_thread(source, target):
            weight *= SHARED_THREAD_MULTIPLIER
    elif kind == EdgeKind.OWNERSHIP:
        weight *= OWNERSHIP_MULTIPLIER
    elif kind == EdgeKind.TIMELINE:
        weight *= TIMELINE_MULTIPLIER

    return weight


# ---------------------------------------------------------------------------
# Edge builder
# ---------------------------------------------------------------------------

class EdgeStatistics(BaseModel):
    total: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    average_weight: float = 0.0
    weight_distribution: dict[str, int] = Field(default_factory=dict)


def _edge_key(source: str, target: str, kind: EdgeKind) -> tuple[str, str, str]:
    return (EdgeKind(kind).value, source, target)


class EdgeBuilder:
    """Idempotent edge factory.

    An edge is keyed by ``(kind, source, target)``; creating the same key
    twice returns None the second time and leaves the first edge in place.
    When the builder knows the node set, edges to unknown nodes are refused.
    """

    def __init__(
        self,
        nodes: Optional[Iterable[Node]] = None,
        affinity: Optional[AffinityIndex] = None,
        existing_edges: Optional[Iterable[Edge]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.affinity = affinity
        self._node_ids = {node.id for node in nodes} if nodes is not None else None
        self._edges: dict[tuple[str, str, str], Edge] = {}
        for edge in existing_edges or []:
            self.add_edge(edge)

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges.values())

    def __len__(self) -> int:
        return len(self._edges)

    def add_edge(self, edge: Edge) -> bool:
        """Insert a prebuilt edge as-is. Returns False on a duplicate key."""
        key = edge.key()
        if key in self._edges:
            return False
        self._edges[key] = edge
        return True

    def create_edge(
        self,
        source: str,
        target: str,
        kind: EdgeKind,
        weight: Optional[float] = None,
        metadata: Optional[dict[str, Any]] = None,
        minimum_rank_gap: int = 1,
    ) -> Optional[Edge]:
        """Create an edge, or return None for a duplicate or unknown endpoint.

        ``weight`` is the base weight; structural multipliers are applied on
        top of it when the builder has an affinity index.
        """
        kind = EdgeKind(kind)
        key = _edge_key(source, target, kind)
        if key in self._edges:
            self.logger.debug(f"Edge already exists: {key}")
            return None

        if self._node_ids is not None:
            if source not in self._node_ids:
                self.logger.debug(f"Source node not found for edge: {source}")
                return None
            if target not in self._node_ids:
                self.logger.debug(f"Target node not found for edge: {target}")
                return None

        base = weight if weight is not None else 1.0
        if self.affinity is not None:
            final_weight = structural_weight(source, target, kind, self.affinity, base)
        else:
            final_weight = base

        style = EDGE_STYLES.get(kind)
        edge = Edge(
            id=f"{kind.value}-{source}-{target}",
            source=source,
            target=target,
            kind=kind,
            weight=final_weight,
            minimum_rank_gap=minimum_rank_gap,
            label=style.label if style else None,
            metadata=dict(metadata or {}),
        )
        self._edges[key] = edge
        return edge

    def create_edges(self, records: Iterable[RelationshipRecord]) -> list[Edge]:
        created = []
        for record in records:
            edge = self.create_edge(record.source, record.target, record.kind)
            if edge:
                created.append(edge)
        return created

    def create_chain_edges(self, node_ids: list[str], kind: EdgeKind = EdgeKind.CHAIN, **options) -> list[Edge]:
        created = []
        for source, target in zip(node_ids, node_ids[1:]):
            edge = self.create_edge(source, target, kind, **options)
            if edge:
                created.append(edge)
        return created

    def create_fan_out_edges(self, source: str, targets: Iterable[str], kind: EdgeKind, **options) -> list[Edge]:
        created = []
        for target in targets:
            edge = self.create_edge(source, target, kind, **options)
            if edge:
                created.append(edge)
        return created

    def create_fan_in_edges(self, sources: Iterable[str], target: str, kind: EdgeKind, **options) -> list[Edge]:
        created = []
        for source in sources:
            edge = self.create_edge(source, target, kind, **options)
            if edge:
                created.append(edge)
        return created

    def has_edge(self, source: str, target: str, kind: EdgeKind) -> bool:
        return _edge_key(source, target, kind) in self._edges

    def remove_edge(self, source: str, target: str, kind: EdgeKind) -> bool:
        return self._edges.pop(_edge_key(source, target, kind), None) is not None

    def filter_by_kind(self, kinds: Iterable[EdgeKind]) -> list[Edge]:
        wanted = {EdgeKind(kind) for kind in kinds}
        return [edge for edge in self._edges.values() if edge.kind in wanted]

    def node_edges(self, node_id: str) -> dict[str, list[Edge]]:
        return {
            "incoming": [edge for edge in self._edges.values() if edge.target == node_id],
            "outgoing": [edge for edge in self._edges.values() if edge.source == node_id],
        }

    def clear(self) -> None:
        self._edges.clear()

    def statistics(self) -> EdgeStatistics:
        stats = EdgeStatistics(total=len(self._edges))
        if not self._edges:
            return stats

        total_weight = 0.0
        for edge in self._edges.values():
            stats.by_kind[edge.kind.value] = stats.by_kind.get(edge.kind.value, 0) + 1
            total_weight += edge.weight
            for upper, label in WEIGHT_BUCKETS:
                if edge.weight < upper:
                    stats.weight_distribution[label] = stats.weight_distribution.get(label, 0) + 1
                    break
        stats.average_weight = total_weight / len(self._edges)
        return stats


def merge_builders(*builders: EdgeBuilder) -> EdgeBuilder:
    """Union of several builders; the first edge seen for a key wins."""
    merged = EdgeBuilder()
    for builder in builders:
        for edge in builder.edges:
            merged.add_edge(edge)
    return merged
