"""
Hierarchical ranking layout for storyflow.

Layered left-to-right placement: every node gets a rank (its column) and an
offset within the column, so that requirement and reward edges point
rightwards and related puzzles line up.

Steps:
  1. Drop edges with missing endpoints
  2. Build the constraint graph:
       - real edges, with cycles broken by a greedy feedback-arc-set order
       - virtual dependency edges, kept only when they leave it acyclic
       - grouping edges (minimum gap 0), oriented whichever way stays acyclic
  3. Rank (longest-path, tight-tree or network-simplex)
  4. Optionally move dual-role elements to fractional ranks
  5. Order nodes within ranks (dummy nodes, barycenter sweeps)
  6. Assign coordinates with parent-center alignment and overlap prevention

Any exception raised along the way is logged and the input nodes come back
unmodified: a failed layout leaves positions stale, it never crashes the
editor.

Spacing:
  - rank separation: horizontal gap between columns (default 300px)
  - node separation: vertical gap between nodes in a column (default 100px)
  - both scale with graph density when adaptive spacing is on
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

import networkx as nx
from pydantic import BaseModel, Field

from .config import LayoutConfig
from .models import Edge, EdgeKind, EntityKind, Node


# --- Ranking constants ---

RANK_WEIGHT_BOOSTS = {
    EdgeKind.REQUIREMENT: 2.0,
    EdgeKind.REWARD: 1.5,
}

MAX_SIMPLEX_PASSES = 200
ORDERING_SWEEPS = 24
DUMMY_PREFIX = "__dummy"


@dataclass
class RankEdge:
    """A ranking constraint: rank[target] - rank[source] >= gap."""
    source: str
    target: str
    weight: float
    gap: int
    kind: EdgeKind
    reversed: bool = False


@dataclass
class ConstraintGraph:
    graph: nx.DiGraph
    real_edges: list[RankEdge] = field(default_factory=list)
    reversed_edges: list[tuple[str, str]] = field(default_factory=list)
    skipped_edges: list[str] = field(default_factory=list)


class RankingResult(BaseModel):
    """Ranks, positions and the spacing that produced them."""
    ranks: dict[str, float] = Field(default_factory=dict)
    offsets: dict[str, float] = Field(default_factory=dict)
    positions: dict[str, tuple[float, float]] = Field(default_factory=dict)
    order: list[list[str]] = Field(default_factory=list)
    rank_separation: float = 0.0
    node_separation: float = 0.0
    reversed_edges: list[tuple[str, str]] = Field(default_factory=list)
    skipped_edges: list[str] = Field(default_factory=list)
    crossings: int = 0


# ---------------------------------------------------------------------------
# Cycle removal
# ---------------------------------------------------------------------------

def greedy_fas_ordering(graph: nx.DiGraph) -> list[str]:
    """Node ordering from the greedy feedback-arc-set heuristic.

    Edges pointing backwards in this ordering form a small feedback arc set.
    ``active`` is an insertion-ordered dict so ties break the same way on
    every run.
    """
    active: dict[str, None] = dict.fromkeys(graph.nodes)
    out_deg = {node: graph.out_degree(node) for node in graph.nodes}
    in_deg = {node: graph.in_degree(node) for node in graph.nodes}

    head: list[str] = []
    tail: list[str] = []

    def take(node: str) -> None:
        del active[node]
        for succ in graph.successors(node):
            if succ in active:
                in_deg[succ] -= 1
        for pred in graph.predecessors(node):
            if pred in active:
                out_deg[pred] -= 1

    while active:
        sinks = [n for n in active if out_deg[n] == 0]
        while sinks:
            for sink in sinks:
                take(sink)
                tail.append(sink)
            sinks = [n for n in active if out_deg[n] == 0]

        sources = [n for n in active if in_deg[n] == 0]
        while sources:
            for source in sources:
                take(source)
                head.append(source)
            sources = [n for n in active if in_deg[n] == 0]

        if active:
            best = max(active, key=lambda n: out_deg[n] - in_deg[n])
            take(best)
            head.append(best)

    tail.reverse()
    return head + tail


def build_constraint_graph(
    node_ids: list[str],
    edges: list[Edge],
    log: logging.Logger,
) -> ConstraintGraph:
    """Turn real and virtual edges into an acyclic set of rank constraints."""
    real = [e for e in edges if not e.is_virtual]
    dependencies = [e for e in edges if e.kind == EdgeKind.VIRTUAL_DEPENDENCY]
    groupings = [e for e in edges if e.kind == EdgeKind.GROUPING]

    # --- Real edges: break cycles ---
    real_graph = nx.DiGraph()
    real_graph.add_nodes_from(node_ids)
    for edge in real:
        real_graph.add_edge(edge.source, edge.target)

    position = {node: i for i, node in enumerate(greedy_fas_ordering(real_graph))}
    result = ConstraintGraph(graph=nx.DiGraph())
    result.graph.add_nodes_from(node_ids)

    for edge in real:
        weight = edge.weight * RANK_WEIGHT_BOOSTS.get(edge.kind, 1.0)
        rank_edge = RankEdge(edge.source, edge.target, weight, edge.minimum_rank_gap, edge.kind)
        if position[edge.source] > position[edge.target]:
            rank_edge = RankEdge(edge.target, edge.source, weight, edge.minimum_rank_gap, edge.kind, reversed=True)
            result.reversed_edges.append((edge.source, edge.target))
            log.debug(f"Reversed {edge.kind.value} edge {edge.source} -> {edge.target} to break a cycle")
        result.real_edges.append(rank_edge)
        _add_constraint(result.graph, rank_edge)

    # --- Virtual dependency edges: only if still acyclic ---
    for edge in dependencies:
        if nx.has_path(result.graph, edge.target, edge.source):
            log.warning(f"Skipping virtual dependency {edge.source} -> {edge.target}: it would create a cycle")
            result.skipped_edges.append(edge.id)
            continue
        _add_constraint(result.graph, RankEdge(edge.source, edge.target, edge.weight,
                                               edge.minimum_rank_gap, edge.kind))

    # --- Grouping edges: whichever orientation is acyclic ---
    for edge in groupings:
        source, target = edge.source, edge.target
        if nx.has_path(result.graph, target, source):
            source, target = target, source
        _add_constraint(result.graph, RankEdge(source, target, edge.weight, edge.minimum_rank_gap, edge.kind))

    return result


def _add_constraint(graph: nx.DiGraph, edge: RankEdge) -> None:
    """Merge parallel constraints: weights add, the larger gap wins."""
    if edge.source == edge.target:
        return
    if graph.has_edge(edge.source, edge.target):
        data = graph.edges[edge.source, edge.target]
        data["weight"] += edge.weight
        data["gap"] = max(data["gap"], edge.gap)
    else:
        graph.add_edge(edge.source, edge.target, weight=edge.weight, gap=edge.gap)


# ---------------------------------------------------------------------------
# Rankers
# ---------------------------------------------------------------------------

def _topological_order(graph: nx.DiGraph) -> list[str]:
    index = {node: i for i, node in enumerate(graph.nodes)}
    return list(nx.lexicographical_topological_sort(graph, key=index.get))


def _normalize(ranks: dict[str, int]) -> dict[str, int]:
    """Shift so the lowest rank is 0.

    Empty ranks stay: an edge with a minimum gap above 1 may need one.
    """
    if not ranks:
        return ranks
    lowest = min(ranks.values())
    return {node: rank - lowest for node, rank in ranks.items()}


def longest_path_ranks(graph: nx.DiGraph) -> dict[str, int]:
    ranks: dict[str, int] = {}
    for node in _topological_order(graph):
        preds = [ranks[p] + graph.edges[p, node]["gap"] for p in graph.predecessors(node)]
        ranks[node] = max(preds) if preds else 0
    return ranks


def tight_tree_ranks(graph: nx.DiGraph) -> dict[str, int]:
    """Longest path, then pull every source up against its nearest successor."""
    ranks = longest_path_ranks(graph)
    for node in reversed(_topological_order(graph)):
        if graph.in_degree(node) == 0 and graph.out_degree(node) > 0:
            ranks[node] = min(ranks[s] - graph.edges[node, s]["gap"] for s in graph.successors(node))
    return ranks


def network_simplex_ranks(graph: nx.DiGraph) -> dict[str, int]:
    """Minimise total weighted edge span, sum(w * (rank[t] - rank[s])).

    Starts from the longest-path ranking and moves one node at a time to the
    end of its feasible interval that lowers the cost, until no single move
    helps.  Weights are floats, so the number of passes is capped at
    ``MAX_SIMPLEX_PASSES``.
    """
    ranks = longest_path_ranks(graph)
    order = _topological_order(graph)

    for _ in range(MAX_SIMPLEX_PASSES):
        moved = False
        for node in order:
            in_weight = sum(graph.edges[p, node]["weight"] for p in graph.predecessors(node))
            out_weight = sum(graph.edges[node, s]["weight"] for s in graph.successors(node))
            if in_weight == out_weight:
                continue
            if in_weight > out_weight:
                target = max(ranks[p] + graph.edges[p, node]["gap"] for p in graph.predecessors(node))
            else:
                target = min(ranks[s] - graph.edges[node, s]["gap"] for s in graph.successors(node))
            if target != ranks[node]:
                ranks[node] = target
                moved = True
        if not moved:
            break

    return ranks


RANKERS: dict[str, Callable[[nx.DiGraph], dict[str, int]]] = {
    "longest-path": longest_path_ranks,
    "tight-tree": tight_tree_ranks,
    "network-simplex": network_simplex_ranks,
}


# ---------------------------------------------------------------------------
# Fractional ranks
# ---------------------------------------------------------------------------

def fractional_ranks(
    ranks: dict[str, int],
    nodes: list[Node],
    edges: list[Edge],
) -> dict[str, float]:
    """Place each dual-role element midway between its last provider and first consumer."""
    kinds = {node.id: node.entity_kind for node in nodes}
    providers: dict[str, list[str]] = {}
    consumers: dict[str, list[str]] = {}
    for edge in edges:
        if edge.is_virtual:
            continue
        if edge.kind == EdgeKind.REWARD and kinds.get(edge.source) == EntityKind.PUZZLE:
            providers.setdefault(edge.target, []).append(edge.source)
        elif edge.kind == EdgeKind.REQUIREMENT and kinds.get(edge.target) == EntityKind.PUZZLE:
            consumers.setdefault(edge.source, []).append(edge.target)

    result = {node: float(rank) for node, rank in ranks.items()}
    for element_id, provider_ids in providers.items():
        if kinds.get(element_id) != EntityKind.ELEMENT or element_id not in consumers:
            continue
        latest = max(ranks[p] for p in provider_ids)
        earliest = min(ranks[c] for c in consumers[element_id])
        if earliest > latest:
            result[element_id] = (latest + earliest) / 2
    return result


# ---------------------------------------------------------------------------
# Ordering within ranks
# ---------------------------------------------------------------------------

def _layered_graph(
    node_ids: list[str],
    ranks: dict[str, int],
    edges: list[RankEdge],
) -> tuple[nx.DiGraph, dict[str, int]]:
    """Split long edges with dummy nodes so every edge spans one rank."""
    layered = nx.DiGraph()
    layered.add_nodes_from(node_ids)
    layers = dict(ranks)
    counter = 0

    for edge in edges:
        span = layers[edge.target] - layers[edge.source]
        if span < 1:
            continue
        previous = edge.source
        for step in range(1, span):
            dummy = f"{DUMMY_PREFIX}_{counter}_{step}"
            layered.add_node(dummy)
            layers[dummy] = layers[edge.source] + step
            layered.add_edge(previous, dummy)
            previous = dummy
        layered.add_edge(previous, edge.target)
        counter += 1

    return layered, layers


def count_layer_crossings(ordering: list[list[str]], graph: nx.DiGraph) -> int:
    total = 0
    for index in range(len(ordering) - 1):
        target_pos = {node: i for i, node in enumerate(ordering[index + 1])}
        segments: list[tuple[int, int]] = []
        for source_pos, node in enumerate(ordering[index]):
            for succ in graph.successors(node):
                if succ in target_pos:
                    segments.append((source_pos, target_pos[succ]))
        for i in range(len(segments)):
            for j in range(i + 1, len(segments)):
                (a1, b1), (a2, b2) = segments[i], segments[j]
                if (a1 - a2) * (b1 - b2) < 0:
                    total += 1
    return total


def _barycenter(node: str, neighbors: list[str], positions: dict[str, int], fallback: int) -> float:
    placed = [positions[n] for n in neighbors if n in positions]
    if not placed:
        return float(fallback)
    return sum(placed) / len(placed)


def order_within_ranks(graph: nx.DiGraph, layers: dict[str, int]) -> tuple[list[list[str]], int]:
    """Barycenter sweeps, keeping the ordering with the fewest crossings."""
    layer_count = max(layers.values()) + 1 if layers else 0
    ordering: list[list[str]] = [[] for _ in range(layer_count)]
    for node in graph.nodes:
        ordering[layers[node]].append(node)

    best = [list(layer) for layer in ordering]
    best_crossings = count_layer_crossings(best, graph)

    for _ in range(ORDERING_SWEEPS):
        if best_crossings == 0:
            break
        for index in range(1, layer_count):
            previous = {n: i for i, n in enumerate(ordering[index - 1])}
            layer = ordering[index]
            ordering[index] = sorted(layer, key=lambda n, p=previous, cur=layer: _barycenter(
                n, list(graph.predecessors(n)), p, cur.index(n)))
        for index in range(layer_count - 2, -1, -1):
            following = {n: i for i, n in enumerate(ordering[index + 1])}
            layer = ordering[index]
            ordering[index] = sorted(layer, key=lambda n, f=following, cur=layer: _barycenter(
                n, list(graph.successors(n)), f, cur.index(n)))

        crossings = count_layer_crossings(ordering, graph)
        if crossings < best_crossings:
            best = [list(layer) for layer in ordering]
            best_crossings = crossings
        else:
            break

    return best, best_crossings


# ---------------------------------------------------------------------------
# Adaptive spacing
# ---------------------------------------------------------------------------

def adaptive_spacing(nodes: list[Node], config: LayoutConfig) -> tuple[float, float]:
    """Rank and node separation, scaled by density when enabled."""
    rank_sep = config.rank_separation
    node_sep = config.node_separation
    if not config.adaptive_spacing or not nodes:
        return rank_sep, node_sep

    counts: dict[EntityKind, int] = {}
    for node in nodes:
        counts[node.entity_kind] = counts.get(node.entity_kind, 0) + 1

    puzzles = counts.get(EntityKind.PUZZLE, 0)
    elements = counts.get(EntityKind.ELEMENT, 0)
    elements_per_puzzle = elements / puzzles if puzzles else 0.0

    rules = config.spacing_rules
    return (
        rules.rank_separation(rank_sep, elements_per_puzzle),
        rules.node_separation(node_sep, max(counts.values())),
    )


# ---------------------------------------------------------------------------
# Coordinate assignment
# ---------------------------------------------------------------------------

def _column_positions(
    groups: dict[int, list[Node]],
    column_count: int,
    rank_sep: float,
    margin: float,
) -> list[float]:
    """Left edge of each integer column."""
    xs = []
    current_x = margin
    for column in range(column_count):
        xs.append(current_x)
        members = groups.get(column, [])
        column_width = max((n.effective_width() for n in members), default=0.0)
        current_x += column_width + rank_sep
    return xs


def _rank_to_x(rank: float, column_xs: list[float]) -> float:
    column = int(math.floor(rank))
    frac = rank - column
    if frac == 0 or column + 1 >= len(column_xs):
        return column_xs[column]
    return column_xs[column] + frac * (column_xs[column + 1] - column_xs[column])


def assign_coordinates(
    nodes: list[Node],
    ranks: dict[str, float],
    ordering: list[list[str]],
    edges: list[RankEdge],
    rank_sep: float,
    node_sep: float,
    alignment: str,
    margin: float,
) -> dict[str, tuple[float, float]]:
    """Columns left to right; rows by parent-center alignment.

    The alignment corner picks the neighbour side (L: predecessors, placed
    left to right; R: successors, placed right to left) and the packing
    direction (U: overlaps pushed down, D: overlaps pushed up).
    """
    node_map = {node.id: node for node in nodes}
    order_index = {}
    for layer in ordering:
        for i, node_id in enumerate(layer):
            order_index[node_id] = i

    groups: dict[int, list[Node]] = {}
    for node in nodes:
        groups.setdefault(int(math.floor(ranks[node.id])), []).append(node)
    for column, members in groups.items():
        members.sort(key=lambda n: (order_index.get(n.id, 0), ranks[n.id], n.id))

    column_count = max(groups.keys()) + 1 if groups else 0
    column_xs = _column_positions(groups, column_count, rank_sep, margin)

    vertical, horizontal = alignment[0], alignment[1]
    neighbours: dict[str, list[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        if horizontal == "L":
            neighbours[edge.target].append(edge.source)
        else:
            neighbours[edge.source].append(edge.target)

    columns = range(column_count) if horizontal == "L" else range(column_count - 1, -1, -1)
    tops: dict[str, float] = {}

    for column in columns:
        members = groups.get(column, [])
        if not members:
            continue
        if vertical == "D":
            members = list(reversed(members))

        boundary = None
        for node in members:
            height = node.effective_height()
            centers = [tops[n] + node_map[n].effective_height() / 2 for n in neighbours[node.id] if n in tops]

            if centers:
                desired_top = sum(centers) / len(centers) - height / 2
            elif boundary is None:
                desired_top = margin if vertical == "U" else -height
            elif vertical == "U":
                desired_top = boundary + node_sep
            else:
                desired_top = boundary - node_sep - height

            if not math.isfinite(desired_top):
                desired_top = margin

            # Overlap prevention
            if boundary is not None:
                if vertical == "U":
                    desired_top = max(desired_top, boundary + node_sep)
                else:
                    desired_top = min(desired_top, boundary - node_sep - height)

            tops[node.id] = desired_top
            boundary = desired_top + height if vertical == "U" else desired_top

    min_top = min(tops.values()) if tops else margin
    shift = margin - min_top
    return {
        node.id: (round(_rank_to_x(ranks[node.id], column_xs)), round(tops[node.id] + shift))
        for node in nodes
    }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _unique_nodes(nodes: list[Node], log: logging.Logger) -> list[Node]:
    seen: dict[str, Node] = {}
    for node in nodes:
        if node.id in seen:
            log.warning(f"Duplicate node id {node.id}; keeping the first")
            continue
        seen[node.id] = node
    return list(seen.values())


def compute_ranking(
    nodes: list[Node],
    edges: list[Edge],
    config: Optional[LayoutConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> RankingResult:
    """Rank, order and place ``nodes``.  Raises on internal failure."""
    log = logger or logging.getLogger(__name__)
    config = config or LayoutConfig()
    nodes = _unique_nodes(nodes, log)
    node_ids = [node.id for node in nodes]
    known = set(node_ids)

    valid = [e for e in edges if e.source in known and e.target in known and e.source != e.target]
    if len(valid) != len(edges):
        log.debug(f"Ignoring {len(edges) - len(valid)} edges with missing endpoints")

    rank_sep, node_sep = adaptive_spacing(nodes, config)
    if not nodes:
        return RankingResult(rank_separation=rank_sep, node_separation=node_sep)

    constraints = build_constraint_graph(node_ids, valid, log)
    ranker = RANKERS[config.ranker]
    int_ranks = _normalize(ranker(constraints.graph))

    ranks: dict[str, float] = {node: float(rank) for node, rank in int_ranks.items()}
    if config.fractional_ranks:
        ranks = fractional_ranks(int_ranks, nodes, valid)

    layered, layers = _layered_graph(node_ids, int_ranks, constraints.real_edges)
    ordering, crossings = order_within_ranks(layered, layers)
    real_ordering = [[n for n in layer if n in known] for layer in ordering]

    positions = assign_coordinates(
        nodes, ranks, real_ordering, constraints.real_edges,
        rank_sep, node_sep, config.alignment, config.margin,
    )

    log.info(f"Ranked {len(nodes)} nodes into {len(real_ordering)} ranks "
             f"({config.ranker}, {len(constraints.reversed_edges)} reversed edges, {crossings} crossings)")

    return RankingResult(
        ranks=ranks,
        offsets={node_id: pos[1] for node_id, pos in positions.items()},
        positions=positions,
        order=real_ordering,
        rank_separation=rank_sep,
        node_separation=node_sep,
        reversed_edges=constraints.reversed_edges,
        skipped_edges=constraints.skipped_edges,
        crossings=crossings,
    )


def apply_hierarchical_layout(
    nodes: list[Node],
    edges: list[Edge],
    config: Optional[LayoutConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> list[Node]:
    """Positioned copies of ``nodes``; the input nodes unmodified on failure."""
    log = logger or logging.getLogger(__name__)
    try:
        result = compute_ranking(nodes, edges, config=config, logger=log)
    except Exception as e:
        log.error(f"Hierarchical layout failed, keeping previous positions: {e}")
        return list(nodes)

    laid_out = []
    for node in nodes:
        if node.id not in result.positions:
            laid_out.append(node)
            continue
        x, y = result.positions[node.id]
        laid_out.append(node.model_copy(update={
            "x": float(x),
            "y": float(y),
            "width": node.effective_width(),
            "height": node.effective_height(),
            "rank": result.ranks[node.id],
        }))
    return laid_out
