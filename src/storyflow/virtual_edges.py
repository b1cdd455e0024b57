"""
Virtual edge injection for the dual-role ordering problem.

An element can be the reward of puzzle A and the requirement of puzzle B.
Ranking only sees ``A -> element`` and ``element -> B`` and has no reason
to keep A left of B when nothing else connects them, yet B cannot be
attempted before A hands the element out.

Two kinds of hidden, layout-only edge fix this:

  virtual-dependency  provider puzzle -> consumer puzzle, one per pair,
                      heavy weight, minimum rank gap 1.  Forces every
                      provider strictly left of every consumer.
  grouping            puzzle <-> puzzle for puzzles that share an element,
                      medium weight, minimum rank gap 0.  Pulls related
                      puzzles into the same column without ordering them.

Elements that are only provided (dead ends) or only consumed (missing
providers) are reported.  Both are normal while a game is being authored,
so they are logged as warnings and never fail the layout.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from .errors import DataIntegrityWarning
from .models import EDGE_STYLES, Edge, EdgeKind, EntityKind, Node


DEFAULT_DEPENDENCY_WEIGHT = 1000
DEFAULT_GROUPING_WEIGHT = 500


class VirtualEdgeReport(BaseModel):
    dual_role_elements: list[str] = Field(default_factory=list)
    virtual_dependency_edges: int = 0
    puzzle_grouping_edges: int = 0
    dead_end_elements: list[str] = Field(default_factory=list)
    missing_providers: list[str] = Field(default_factory=list)

    def warnings(self) -> list[DataIntegrityWarning]:
        findings = [
            DataIntegrityWarning(category="dead-end", entity_id=element_id,
                                 message="Element is rewarded but never required")
            for element_id in self.dead_end_elements
        ]
        findings.extend(
            DataIntegrityWarning(category="missing-provider", entity_id=element_id,
                                 message="Element is required but no puzzle rewards it")
            for element_id in self.missing_providers
        )
        return findings


class InjectionResult(BaseModel):
    edges: list[Edge] = Field(default_factory=list)
    virtual_edges: list[Edge] = Field(default_factory=list)
    report: VirtualEdgeReport = Field(default_factory=VirtualEdgeReport)


# ---------------------------------------------------------------------------
# Provider / consumer analysis
# ---------------------------------------------------------------------------

def _puzzle_ids(nodes: Iterable[Node]) -> set[str]:
    return {node.id for node in nodes if node.entity_kind == EntityKind.PUZZLE}


def _provider_consumer_maps(
    puzzles: set[str],
    edges: Iterable[Edge],
) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Map each non-puzzle node to the puzzles that reward it and that require it.

    Lists keep first-seen order so that output is deterministic.
    """
    providers: dict[str, list[str]] = {}
    consumers: dict[str, list[str]] = {}
    for edge in edges:
        if edge.is_virtual:
            continue
        if edge.kind == EdgeKind.REWARD and edge.source in puzzles and edge.target not in puzzles:
            bucket = providers.setdefault(edge.target, [])
            if edge.source not in bucket:
                bucket.append(edge.source)
        elif edge.kind == EdgeKind.REQUIREMENT and edge.target in puzzles and edge.source not in puzzles:
            bucket = consumers.setdefault(edge.source, [])
            if edge.target not in bucket:
                bucket.append(edge.target)
    return providers, consumers


def _virtual_edge(source: str, target: str, kind: EdgeKind, weight: float, gap: int, **metadata) -> Edge:
    prefix = "virtual" if kind == EdgeKind.VIRTUAL_DEPENDENCY else "group"
    return Edge(
        id=f"{prefix}-{source}-{target}",
        source=source,
        target=target,
        kind=kind,
        weight=weight,
        minimum_rank_gap=gap,
        is_virtual=True,
        style=EDGE_STYLES[kind],
        metadata=metadata,
    )


# ---------------------------------------------------------------------------
# Injection
# ---------------------------------------------------------------------------

def inject_virtual_edges(
    nodes: list[Node],
    edges: list[Edge],
    *,
    dependency_weight: float = DEFAULT_DEPENDENCY_WEIGHT,
    grouping_weight: float = DEFAULT_GROUPING_WEIGHT,
    logger: Optional[logging.Logger] = None,
) -> InjectionResult:
    """Return ``edges`` plus the virtual edges the puzzle structure implies.

    Input edges are passed through untouched.  Virtual edges already present
    in the input are dropped first, so injecting twice gives the same result
    as injecting once.
    """
    log = logger or logging.getLogger(__name__)
    real_edges = [edge for edge in edges if not edge.is_virtual]
    puzzles = _puzzle_ids(nodes)
    providers, consumers = _provider_consumer_maps(puzzles, real_edges)

    report = VirtualEdgeReport(
        dead_end_elements=[eid for eid in providers if eid not in consumers],
        missing_providers=[eid for eid in consumers if eid not in providers],
    )
    if report.dead_end_elements:
        log.warning(f"Elements only provided (dead ends): {report.dead_end_elements}")
    if report.missing_providers:
        log.warning(f"Elements only consumed (missing providers): {report.missing_providers}")

    # --- Dependency edges for dual-role elements ---
    virtual: list[Edge] = []
    dependency_pairs: set[tuple[str, str]] = set()
    for element_id, provider_ids in providers.items():
        consumer_ids = consumers.get(element_id)
        if not consumer_ids:
            continue
        pairs = [(p, c) for p in provider_ids for c in consumer_ids if p != c]
        if not pairs:
            continue
        report.dual_role_elements.append(element_id)
        for provider_id, consumer_id in pairs:
            if (provider_id, consumer_id) in dependency_pairs:
                continue
            dependency_pairs.add((provider_id, consumer_id))
            virtual.append(_virtual_edge(
                provider_id, consumer_id, EdgeKind.VIRTUAL_DEPENDENCY,
                dependency_weight, 1, via=element_id,
            ))
            log.debug(f"Virtual edge {provider_id} -> {consumer_id} via {element_id}")
    report.virtual_dependency_edges = len(virtual)

    # --- Grouping edges for puzzles sharing an element ---
    grouping = _grouping_edges(real_edges, puzzles, dependency_pairs, grouping_weight, log)
    report.puzzle_grouping_edges = len(grouping)
    virtual.extend(grouping)

    log.info(f"Injected {len(virtual)} virtual edges "
             f"({report.virtual_dependency_edges} dependency, {report.puzzle_grouping_edges} grouping) "
             f"for {len(report.dual_role_elements)} dual-role elements")

    return InjectionResult(edges=[*real_edges, *virtual], virtual_edges=virtual, report=report)


def _grouping_edges(
    edges: list[Edge],
    puzzles: set[str],
    dependency_pairs: set[tuple[str, str]],
    weight: float,
    log: logging.Logger,
) -> list[Edge]:
    # element -> puzzles touching it, in first-seen order
    sharing: dict[str, list[str]] = {}
    for edge in edges:
        if edge.kind == EdgeKind.REQUIREMENT and edge.target in puzzles and edge.source not in puzzles:
            element_id, puzzle_id = edge.source, edge.target
        elif edge.kind == EdgeKind.REWARD and edge.source in puzzles and edge.target not in puzzles:
            element_id, puzzle_id = edge.target, edge.source
        else:
            continue
        bucket = sharing.setdefault(element_id, [])
        if puzzle_id not in bucket:
            bucket.append(puzzle_id)

    created: list[Edge] = []
    processed: set[tuple[str, str]] = set()
    for element_id, puzzle_ids in sharing.items():
        for i, first in enumerate(puzzle_ids):
            for second in puzzle_ids[i + 1:]:
                pair = tuple(sorted((first, second)))
                if pair in processed:
                    continue
                processed.add(pair)
                if (first, second) in dependency_pairs or (second, first) in dependency_pairs:
                    continue
                created.append(_virtual_edge(first, second, EdgeKind.GROUPING, weight, 0, via=element_id))
                log.debug(f"Grouping edge {first} <-> {second} (shared: {element_id})")
    return created


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def virtual_edge_stats(nodes: list[Node], edges: list[Edge]) -> VirtualEdgeReport:
    """Recompute the diagnostics report from an edge set that may already hold virtual edges."""
    puzzles = _puzzle_ids(nodes)
    providers, consumers = _provider_consumer_maps(puzzles, edges)
    dual_role = [
        eid for eid, provider_ids in providers.items()
        if any(p != c for p in provider_ids for c in consumers.get(eid, []))
    ]
    return VirtualEdgeReport(
        dual_role_elements=dual_role,
        virtual_dependency_edges=sum(1 for e in edges if e.kind == EdgeKind.VIRTUAL_DEPENDENCY),
        puzzle_grouping_edges=sum(1 for e in edges if e.kind == EdgeKind.GROUPING),
        dead_end_elements=[eid for eid in providers if eid not in consumers],
        missing_providers=[eid for eid in consumers if eid not in providers],
    )


def strip_virtual_edges(edges: list[Edge]) -> list[Edge]:
    """The subset of ``edges`` a renderer should draw."""
    return [edge for edge in edges if not edge.is_virtual]
