"""
Layout algorithms and the registry that picks between them.

Every algorithm takes nodes and edges and returns positioned copies of the
nodes; inputs are never modified.  Each one describes itself with metadata
(category, speed, quality, the views it suits, size limits, capabilities)
so the registry can score it against a graph.

Algorithms:
  hierarchical     layered ranking with virtual edges and optional clustering
  force            networkx spring layout, all-pairs collision pass
  force-optimized  shorter spring layout, collisions checked in nearby cells
  circular         one ring, input order
  grid             rows and columns, grouped by entity kind
  radial           rings around the best-connected node

``steps()`` yields ``(progress, nodes)`` snapshots so a caller can render
intermediate states and cancel between chunks.  Only the force family has
more than one step; the others finish in a single chunk.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterator, Optional

import networkx as nx

from .clustering import apply_element_clustering
from .config import LayoutConfig
from .errors import LayoutAlgorithmError, UnknownAlgorithmError
from .models import Edge, EdgeKind, EntityKind, Node
from .ranking import compute_ranking
from .virtual_edges import inject_virtual_edges


Progress = tuple[float, list[Node]]

KIND_ORDER = [EntityKind.PUZZLE, EntityKind.ELEMENT, EntityKind.CHARACTER, EntityKind.TIMELINE]


def _translate_to_margin(nodes: list[Node], margin: float) -> list[Node]:
    """Shift so the top-left corner of the bounding box sits at (margin, margin)."""
    if not nodes:
        return nodes
    min_x = min(n.x for n in nodes)
    min_y = min(n.y for n in nodes)
    dx, dy = margin - min_x, margin - min_y
    return [n.model_copy(update={"x": n.x + dx, "y": n.y + dy}) for n in nodes]


def _placed(node: Node, center_x: float, center_y: float) -> Node:
    width, height = node.effective_width(), node.effective_height()
    return node.model_copy(update={
        "x": center_x - width / 2,
        "y": center_y - height / 2,
        "width": width,
        "height": height,
    })


class LayoutAlgorithm:
    """Base class.  Subclasses set the metadata and implement ``apply``."""

    name = ""
    description = ""
    category = "custom"          # hierarchical | force | radial | grid | custom
    performance = "medium"       # fast | medium | slow
    quality = "medium"           # low | medium | high | best
    best_for: tuple[str, ...] = ()
    max_nodes: Optional[int] = None
    supports_hierarchy = False
    supports_clustering = False
    supports_async = False

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(__name__)

    def supports(self, node_count: int, edge_count: int, view_type: Optional[str] = None) -> bool:
        return self.max_nodes is None or node_count <= self.max_nodes

    def apply(self, nodes: list[Node], edges: list[Edge], config: Optional[LayoutConfig] = None) -> list[Node]:
        raise NotImplementedError

    def steps(self, nodes: list[Node], edges: list[Edge], config: Optional[LayoutConfig] = None) -> Iterator[Progress]:
        yield 1.0, self.apply(nodes, edges, config)

    def describe(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "performance": self.performance,
            "quality": self.quality,
            "best_for": list(self.best_for),
            "max_nodes": self.max_nodes,
            "supports_hierarchy": self.supports_hierarchy,
            "supports_clustering": self.supports_clustering,
            "supports_async": self.supports_async,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


# ---------------------------------------------------------------------------
# Hierarchical
# ---------------------------------------------------------------------------

class HierarchicalLayout(LayoutAlgorithm):
    name = "hierarchical"
    description = "Left-to-right layered layout that keeps puzzle dependencies in order"
    category = "hierarchical"
    performance = "medium"
    quality = "best"
    best_for = ("puzzle-focus", "timeline")
    max_nodes = 1000
    supports_hierarchy = True
    supports_clustering = True

    def apply(self, nodes, edges, config=None):
        config = config or LayoutConfig()
        if config.inject_virtual_edges:
            edges = inject_virtual_edges(
                nodes, edges,
                dependency_weight=config.dependency_weight,
                grouping_weight=config.grouping_weight,
                logger=self.log,
            ).edges

        try:
            result = compute_ranking(nodes, edges, config=config, logger=self.log)
        except Exception as e:
            raise LayoutAlgorithmError(self.name, str(e)) from e

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

        if config.cluster_elements:
            laid_out = apply_element_clustering(laid_out, edges, config.compression_factor, logger=self.log)
        return laid_out


# ---------------------------------------------------------------------------
# Force-directed
# ---------------------------------------------------------------------------

# Spring weight per edge kind; heavier edges pull their endpoints closer.
LINK_WEIGHTS = {
    EdgeKind.OWNERSHIP: 1.5,
    EdgeKind.REQUIREMENT: 1.0,
    EdgeKind.REWARD: 0.75,
    EdgeKind.TIMELINE: 0.5,
}

# Collision distance multiplier per node kind.
COLLISION_FACTORS = {
    EntityKind.CHARACTER: 1.3,
    EntityKind.PUZZLE: 1.1,
    EntityKind.ELEMENT: 1.0,
    EntityKind.TIMELINE: 0.9,
}

TICKS_PER_STEP = 25
FORCE_SEED = 42
COLLISION_SWEEPS = 50


@dataclass
class ForceParameters:
    link_distance: float
    collision_radius: float
    iterations: int
    threshold: float = 1e-4


def force_parameters(node_count: int) -> ForceParameters:
    """Simulation settings scaled to graph size."""
    if node_count > 200:
        return ForceParameters(400, 180, 800)
    if node_count > 150:
        return ForceParameters(350, 140, 600)
    if node_count > 100:
        return ForceParameters(250, 100, 500)
    return ForceParameters(150, 80, 400)


def story_nx_graph(nodes: list[Node], edges: list[Edge]) -> nx.Graph:
    """Undirected view of the visible edges, weighted by edge kind.

    Nodes keep input order.  Parallel edges between one pair add up.
    """
    graph = nx.Graph()
    graph.add_nodes_from((node.id, {"kind": node.entity_kind}) for node in nodes)
    for edge in edges:
        if edge.is_virtual or edge.source == edge.target:
            continue
        if edge.source not in graph or edge.target not in graph:
            continue
        weight = LINK_WEIGHTS.get(edge.kind, 1.0)
        if graph.has_edge(edge.source, edge.target):
            graph.edges[edge.source, edge.target]["weight"] += weight
        else:
            graph.add_edge(edge.source, edge.target, weight=weight)
    return graph


def _initial_centers(nodes: list[Node]) -> dict[str, tuple[float, float]]:
    """Existing centers, or a phyllotaxis spiral when they are unset or coincide."""
    centers = [(n.x + n.effective_width() / 2, n.y + n.effective_height() / 2) for n in nodes]
    if any(n.x or n.y for n in nodes) and len(set(centers)) == len(centers):
        return {node.id: center for node, center in zip(nodes, centers)}

    spiral = {}
    for i, node in enumerate(nodes):
        radius = 10 * math.sqrt(0.5 + i)
        angle = i * math.pi * (3 - math.sqrt(5))
        spiral[node.id] = (radius * math.cos(angle), radius * math.sin(angle))
    return spiral


class ForceLayout(LayoutAlgorithm):
    """Fruchterman-Reingold springs via ``nx.spring_layout``, run in chunks.

    The simulation works in networkx's unit box; each snapshot is scaled so
    the average edge spans the link distance.  The final snapshot also
    pushes apart nodes closer than their collision distance.
    """

    name = "force"
    description = "Spring layout for loosely structured relationship webs"
    category = "force"
    performance = "slow"
    quality = "high"
    best_for = ("character-journey",)
    max_nodes = 500
    supports_clustering = True
    supports_async = True

    def parameters(self, node_count: int) -> ForceParameters:
        return force_parameters(node_count)

    def apply(self, nodes, edges, config=None):
        result = list(nodes)
        for _, result in self.steps(nodes, edges, config):
            pass
        return result

    def steps(self, nodes, edges, config=None):
        config = config or LayoutConfig()
        if not nodes:
            yield 1.0, []
            return

        params = self.parameters(len(nodes))
        graph = story_nx_graph(nodes, edges)
        positions = nx.rescale_layout_dict(_initial_centers(nodes))
        k = 1 / math.sqrt(len(nodes))

        done = 0
        while done < params.iterations:
            chunk = min(TICKS_PER_STEP, params.iterations - done)
            layout = nx.spring_layout(
                graph,
                k=k,
                pos=positions,
                iterations=chunk,
                threshold=params.threshold,
                weight="weight",
                seed=FORCE_SEED,
            )
            positions = {node: (float(x), float(y)) for node, (x, y) in layout.items()}
            done += chunk
            if done < params.iterations:
                yield done / params.iterations, self._snapshot(nodes, graph, positions, params, config)

        self.log.debug(f"Spring layout ran {done} iterations over {len(nodes)} nodes")
        yield 1.0, self._snapshot(nodes, graph, positions, params, config, settle=True)

    def _snapshot(self, nodes, graph, positions, params: ForceParameters, config: LayoutConfig, settle=False):
        scale = self._pixel_scale(graph, positions, params)
        centers = [(positions[n.id][0] * scale, positions[n.id][1] * scale) for n in nodes]
        if settle:
            centers = self._separate(nodes, centers, params)
        placed = [_placed(node, x, y) for node, (x, y) in zip(nodes, centers)]
        return _translate_to_margin(placed, config.margin)

    @staticmethod
    def _pixel_scale(graph: nx.Graph, positions, params: ForceParameters) -> float:
        """Pixels per layout unit."""
        lengths = [math.dist(positions[u], positions[v]) for u, v in graph.edges]
        mean = sum(lengths) / len(lengths) if lengths else 0.0
        if mean <= 0:
            mean = 1 / math.sqrt(max(graph.number_of_nodes(), 1))
        return params.link_distance / mean

    def _separate(self, nodes: list[Node], centers, params: ForceParameters) -> list[tuple[float, float]]:
        """Push apart pairs closer than their collision distance."""
        points = [list(center) for center in centers]
        for _ in range(COLLISION_SWEEPS):
            moved = False
            for i, j in self._collision_pairs(points, params):
                min_dist = params.collision_radius * (
                    COLLISION_FACTORS.get(nodes[i].entity_kind, 1.0) + COLLISION_FACTORS.get(nodes[j].entity_kind, 1.0)
                ) / 2
                dx = points[j][0] - points[i][0]
                dy = points[j][1] - points[i][1]
                dist = math.hypot(dx, dy)
                if dist >= min_dist:
                    continue
                if dist == 0:
                    dx, dy, dist = 1e-6, 0.0, 1e-6
                push = (min_dist - dist) / dist / 2
                points[i][0] -= dx * push
                points[i][1] -= dy * push
                points[j][0] += dx * push
                points[j][1] += dy * push
                moved = True
            if not moved:
                break
        return [(x, y) for x, y in points]

    def _collision_pairs(self, points, params: ForceParameters) -> Iterator[tuple[int, int]]:
        for i in range(len(points)):
            for j in range(i + 1, len(points)):
                yield i, j


class OptimizedForceLayout(ForceLayout):
    """Force layout with half the iterations and collisions checked within neighbouring cells."""

    name = "force-optimized"
    description = "Shorter spring layout with cell-bucketed collision for larger graphs"
    performance = "medium"
    quality = "medium"
    best_for = ("character-journey", "node-connections")
    max_nodes = 2000

    def parameters(self, node_count):
        params = force_parameters(node_count)
        params.iterations //= 2
        return params

    def _collision_pairs(self, points, params):
        # Collision distances never exceed two radii, so adjacent cells suffice.
        cell = params.collision_radius * 2
        cells: dict[tuple[int, int], list[int]] = {}
        for i, (x, y) in enumerate(points):
            cells.setdefault((math.floor(x / cell), math.floor(y / cell)), []).append(i)

        for (cx, cy), members in cells.items():
            for ox in (-1, 0, 1):
                for oy in (-1, 0, 1):
                    neighbours = cells.get((cx + ox, cy + oy))
                    if not neighbours:
                        continue
                    for i in members:
                        for j in neighbours:
                            if i < j:
                                yield i, j


# ---------------------------------------------------------------------------
# Geometric layouts
# ---------------------------------------------------------------------------

class CircularLayout(LayoutAlgorithm):
    name = "circular"
    description = "Places every node on a single ring in input order"
    category = "radial"
    performance = "fast"
    quality = "medium"
    max_nodes = 5000

    min_radius = 400.0

    def apply(self, nodes, edges, config=None):
        config = config or LayoutConfig()
        if not nodes:
            return []

        # Ring must be long enough for every node plus separation.
        widest = max(n.effective_width() for n in nodes)
        circumference = len(nodes) * (widest + config.node_separation)
        radius = max(self.min_radius, circumference / (2 * math.pi))

        ring = nx.circular_layout(story_nx_graph(nodes, edges), scale=radius)
        placed = [_placed(node, float(ring[node.id][0]), float(ring[node.id][1])) for node in nodes]
        return _translate_to_margin(placed, config.margin)


class GridLayout(LayoutAlgorithm):
    name = "grid"
    description = "Rows and columns grouped by entity kind"
    category = "grid"
    performance = "fast"
    quality = "low"
    best_for = ("content-status",)
    max_nodes = 10000

    def apply(self, nodes, edges, config=None):
        config = config or LayoutConfig()
        if not nodes:
            return []

        ordered = sorted(nodes, key=lambda n: KIND_ORDER.index(n.entity_kind))
        columns = math.ceil(math.sqrt(len(ordered)))
        cell_width = max(n.effective_width() for n in nodes) + config.node_separation
        cell_height = max(n.effective_height() for n in nodes) + config.node_separation

        positions = {}
        for i, node in enumerate(ordered):
            row, col = divmod(i, columns)
            positions[node.id] = (config.margin + col * cell_width, config.margin + row * cell_height)

        return [
            node.model_copy(update={
                "x": positions[node.id][0],
                "y": positions[node.id][1],
                "width": node.effective_width(),
                "height": node.effective_height(),
            })
            for node in nodes
        ]


class RadialLayout(LayoutAlgorithm):
    name = "radial"
    description = "Concentric rings by hop distance from the best-connected node"
    category = "radial"
    performance = "fast"
    quality = "high"
    best_for = ("node-connections",)
    max_nodes = 5000
    supports_hierarchy = True

    def apply(self, nodes, edges, config=None):
        config = config or LayoutConfig()
        if not nodes:
            return []

        graph = story_nx_graph(nodes, edges)
        center = max(nodes, key=lambda n: graph.degree(n.id))
        levels = self._levels(graph, nodes, center.id)

        rings: dict[int, list[Node]] = {}
        for node in nodes:
            rings.setdefault(levels[node.id], []).append(node)
        for members in rings.values():
            members.sort(key=lambda n: -graph.degree(n.id))

        widest = max(n.effective_width() for n in nodes)
        placed = {}
        radius = 0.0
        for level in sorted(rings):
            members = rings[level]
            if level == 0:
                placed.update({n.id: _placed(n, 0, 0) for n in members})
                continue
            needed = len(members) * (widest + config.node_separation) / (2 * math.pi)
            radius = max(radius + config.rank_separation, level * config.rank_separation, needed)
            for i, node in enumerate(members):
                angle = 2 * math.pi * i / len(members)
                placed[node.id] = _placed(node, radius * math.cos(angle), radius * math.sin(angle))

        return _translate_to_margin([placed[n.id] for n in nodes], config.margin)

    @staticmethod
    def _levels(graph: nx.Graph, nodes: list[Node], center_id: str) -> dict[str, int]:
        """Hop distance from the center; unreachable nodes go one ring further out."""
        levels = dict(nx.single_source_shortest_path_length(graph, center_id))
        outer = max(levels.values()) + 1
        for node in nodes:
            levels.setdefault(node.id, outer)
        return levels


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

DEFAULT_VIEW_ALGORITHMS = {
    "puzzle-focus": "hierarchical",
    "timeline": "hierarchical",
    "character-journey": "force",
    "node-connections": "radial",
    "content-status": "grid",
}

SMALL_GRAPH = 50
MEDIUM_GRAPH = 150
DENSE_GRAPH = 0.3


class AlgorithmRegistry:
    """Named layout algorithms plus per-view defaults.

    Build one per view context; nothing here is shared between instances.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(__name__)
        self._algorithms: dict[str, LayoutAlgorithm] = {}
        self._view_defaults: dict[str, str] = {}

    @classmethod
    def with_defaults(cls, logger: Optional[logging.Logger] = None) -> "AlgorithmRegistry":
        registry = cls(logger=logger)
        for algorithm_cls in (HierarchicalLayout, ForceLayout, OptimizedForceLayout,
                              CircularLayout, GridLayout, RadialLayout):
            registry.register(algorithm_cls(logger=logger))
        for view_type, name in DEFAULT_VIEW_ALGORITHMS.items():
            registry.set_view_default(view_type, name)
        return registry

    def register(self, algorithm: LayoutAlgorithm) -> None:
        if algorithm.name in self._algorithms:
            self.log.debug(f"Replacing layout algorithm '{algorithm.name}'")
        self._algorithms[algorithm.name] = algorithm

    def get(self, name: str) -> LayoutAlgorithm:
        if name not in self._algorithms:
            raise UnknownAlgorithmError(name)
        return self._algorithms[name]

    def __contains__(self, name: str) -> bool:
        return name in self._algorithms

    def names(self) -> list[str]:
        return list(self._algorithms)

    def all(self) -> list[LayoutAlgorithm]:
        return list(self._algorithms.values())

    def by_category(self, category: str) -> list[LayoutAlgorithm]:
        return [a for a in self._algorithms.values() if a.category == category]

    def view_default(self, view_type: Optional[str]) -> Optional[str]:
        return self._view_defaults.get(view_type) if view_type else None

    def set_view_default(self, view_type: str, name: str) -> None:
        self._view_defaults[view_type] = name

    def select_optimal(
        self,
        nodes: list[Node],
        edges: list[Edge],
        view_type: Optional[str] = None,
        prefer_async: bool = False,
    ) -> Optional[LayoutAlgorithm]:
        """Score every candidate against the graph and return the best one.

        Small graphs favour quality, large ones speed.  Requirement edges
        favour algorithms that respect hierarchy, dense graphs favour force
        layouts, and tier or cluster hints favour clustering support.  With
        no candidate left after filtering, the view's default is returned.
        """
        node_count, edge_count = len(nodes), len(edges)
        candidates = [
            a for a in self._algorithms.values()
            if a.supports(node_count, edge_count, view_type) and (not prefer_async or a.supports_async)
        ]
        if not candidates:
            default = self.view_default(view_type)
            return self._algorithms.get(default) if default else None

        pairs = node_count * (node_count - 1) / 2
        density = edge_count / pairs if pairs else 0.0
        hierarchy = any(e.kind == EdgeKind.REQUIREMENT for e in edges)
        clusters = any(n.metadata.get("tier") or n.metadata.get("cluster") for n in nodes)

        best, best_score = None, -1
        for algorithm in candidates:
            score = 0
            if view_type and view_type in algorithm.best_for:
                score += 10

            if node_count < SMALL_GRAPH:
                score += {"best": 5, "high": 3, "medium": 1}.get(algorithm.quality, 0)
            elif node_count < MEDIUM_GRAPH:
                score += {"fast": 2, "medium": 3}.get(algorithm.performance, 0)
                score += {"high": 2, "medium": 3}.get(algorithm.quality, 0)
            else:
                score += {"fast": 5, "medium": 2}.get(algorithm.performance, 0)

            if hierarchy and algorithm.supports_hierarchy:
                score += 5
            if density > DENSE_GRAPH and algorithm.category == "force":
                score += 3
            if clusters and algorithm.supports_clustering:
                score += 3

            self.log.debug(f"Algorithm '{algorithm.name}' scored {score}")
            # Ties go to the earlier registration.
            if score > best_score:
                best, best_score = algorithm, score
        return best
