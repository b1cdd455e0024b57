"""
Layout quality metrics.

Pure functions over (nodes, edges).  Positions are node top-left corners.

Basic metrics:
  - edge crossings      pairwise segment-intersection test, O(E^2)
  - edge lengths        total, mean, population variance
  - node overlaps       pairs closer than 50px on both axes
  - aspect ratio        bounding-box width / height (1 when degenerate)
  - density             nodes per square pixel of bounding box
  - element clustering  mean over elements of max(0, 1 - d / 500), d the
                        distance to the nearest connected puzzle
  - puzzle alignment    max(0, 1 - stddev(puzzle y) / 200)

Advanced metrics add stress, angular resolution, symmetry and
orthogonality, which feed pattern detection and improvement suggestions.
"""

from __future__ import annotations

import logging
import math
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import Edge, EdgeKind, EntityKind, Node


OVERLAP_THRESHOLD = 50
CLUSTER_DISTANCE = 500
ALIGNMENT_SPREAD = 200

CROSSING_CAP = 20
OVERLAP_CAP = 10
ASPECT_TARGET = 3

Point = tuple[float, float]


def _round(value: float, digits: int = 0) -> float:
    """Round half up, so 0.125 -> 0.13 rather than banker's 0.12."""
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


# ---------------------------------------------------------------------------
# Basic metrics
# ---------------------------------------------------------------------------

class LayoutQualityMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    edge_crossings: int = 0
    total_edge_length: float = 0
    average_edge_length: float = 0
    node_overlaps: int = 0
    aspect_ratio: float = 1
    density: float = 0
    edge_length_variance: float = 0
    element_clustering_score: float = 1
    puzzle_alignment_score: float = 1


def segments_intersect(p1: Point, p2: Point, p3: Point, p4: Point) -> bool:
    """Proper-intersection test for segments p1-p2 and p3-p4.

    Collinear and touching segments do not count.
    """
    def ccw(a: Point, b: Point, c: Point) -> bool:
        return (c[1] - a[1]) * (b[0] - a[0]) > (b[1] - a[1]) * (c[0] - a[0])

    return ccw(p1, p3, p4) != ccw(p2, p3, p4) and ccw(p1, p2, p3) != ccw(p1, p2, p4)


def _edge_segments(nodes: dict[str, Node], edges: list[Edge]) -> list[tuple[Point, Point]]:
    segments = []
    for edge in edges:
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)
        if source and target:
            segments.append(((source.x, source.y), (target.x, target.y)))
    return segments


def _length(segment: tuple[Point, Point]) -> float:
    (x1, y1), (x2, y2) = segment
    return math.hypot(x2 - x1, y2 - y1)


def _element_clustering_score(nodes: list[Node], node_map: dict[str, Node], edges: list[Edge]) -> float:
    elements = [n for n in nodes if n.entity_kind == EntityKind.ELEMENT]
    if not elements:
        return 1.0

    connected: dict[str, list[str]] = {}
    for edge in edges:
        if edge.kind == EdgeKind.REQUIREMENT:
            connected.setdefault(edge.source, []).append(edge.target)
        elif edge.kind == EdgeKind.REWARD:
            connected.setdefault(edge.target, []).append(edge.source)

    total = 0.0
    for element in elements:
        distances = [
            math.hypot(puzzle.x - element.x, puzzle.y - element.y)
            for puzzle in (node_map.get(pid) for pid in connected.get(element.id, []))
            if puzzle is not None and puzzle.entity_kind == EntityKind.PUZZLE
        ]
        if distances:
            total += max(0.0, 1 - min(distances) / CLUSTER_DISTANCE)
    return total / len(elements)


def _puzzle_alignment_score(nodes: list[Node]) -> float:
    ys = [n.y for n in nodes if n.entity_kind == EntityKind.PUZZLE]
    if len(ys) <= 1:
        return 1.0
    mean = sum(ys) / len(ys)
    variance = sum((y - mean) ** 2 for y in ys) / len(ys)
    return max(0.0, 1 - math.sqrt(variance) / ALIGNMENT_SPREAD)


def evaluate_layout(nodes: list[Node], edges: list[Edge]) -> LayoutQualityMetrics:
    """Compute every basic metric for one layout."""
    node_map = {node.id: node for node in nodes}
    segments = _edge_segments(node_map, edges)

    crossings = 0
    for i in range(len(segments)):
        for j in range(i + 1, len(segments)):
            if segments_intersect(*segments[i], *segments[j]):
                crossings += 1

    lengths = [_length(segment) for segment in segments]
    total_length = sum(lengths)
    average_length = total_length / len(lengths) if lengths else 0.0
    variance = sum((l - average_length) ** 2 for l in lengths) / len(lengths) if lengths else 0.0

    overlaps = 0
    for i in range(len(nodes)):
        for j in range(i + 1, len(nodes)):
            if (abs(nodes[i].x - nodes[j].x) < OVERLAP_THRESHOLD
                    and abs(nodes[i].y - nodes[j].y) < OVERLAP_THRESHOLD):
                overlaps += 1

    if nodes:
        width = max(n.x for n in nodes) - min(n.x for n in nodes)
        height = max(n.y for n in nodes) - min(n.y for n in nodes)
    else:
        width = height = 0.0
    aspect_ratio = width / height if width > 0 and height > 0 else 1.0
    area = width * height
    density = len(nodes) / area if area > 0 else 0.0

    return LayoutQualityMetrics(
        edge_crossings=crossings,
        total_edge_length=_round(total_length),
        average_edge_length=_round(average_length),
        node_overlaps=overlaps,
        aspect_ratio=_round(aspect_ratio, 2),
        density=_round(density, 4),
        edge_length_variance=_round(variance),
        element_clustering_score=_round(_element_clustering_score(nodes, node_map, edges), 2),
        puzzle_alignment_score=_round(_puzzle_alignment_score(nodes), 2),
    )


def overall_quality_score(metrics: LayoutQualityMetrics) -> float:
    """Weighted blend of the basic metrics, 0 (poor) to 1 (excellent)."""
    return (
        (1 - min(metrics.edge_crossings / CROSSING_CAP, 1)) * 0.3
        + (1 - min(metrics.node_overlaps / OVERLAP_CAP, 1)) * 0.2
        + min(metrics.aspect_ratio / ASPECT_TARGET, 1) * 0.1
        + metrics.element_clustering_score * 0.2
        + metrics.puzzle_alignment_score * 0.2
    )


def quality_level(score: float) -> str:
    if score > 0.8:
        return "Excellent"
    if score > 0.6:
        return "Good"
    if score > 0.4:
        return "Fair"
    return "Poor"


def report_layout_quality(metrics: LayoutQualityMetrics, logger: Optional[logging.Logger] = None) -> str:
    """Log a multi-line quality report and return the quality level."""
    log = logger or logging.getLogger(__name__)
    score = overall_quality_score(metrics)
    level = quality_level(score)
    log.info(
        "Layout quality report:\n"
        f"  Edge crossings: {metrics.edge_crossings}\n"
        f"  Total edge length: {metrics.total_edge_length:g}px\n"
        f"  Average edge length: {metrics.average_edge_length:g}px\n"
        f"  Edge length variance: {metrics.edge_length_variance:g}\n"
        f"  Node overlaps: {metrics.node_overlaps}\n"
        f"  Aspect ratio: {metrics.aspect_ratio:g}\n"
        f"  Node density: {metrics.density:g}\n"
        f"  Element clustering score: {metrics.element_clustering_score:g} (0-1, higher is better)\n"
        f"  Puzzle alignment score: {metrics.puzzle_alignment_score:g} (0-1, higher is better)\n"
        f"  Overall quality: {level} ({round(score * 100)}%)"
    )
    return level


# ---------------------------------------------------------------------------
# Advanced metrics
# ---------------------------------------------------------------------------

class AdvancedLayoutMetrics(LayoutQualityMetrics):
    stress: float = 0
    angular_resolution: float = 1
    symmetry: float = 1
    orthogonality: float = 1


def _stress(lengths: list[float], ideal: float) -> float:
    if not lengths or ideal <= 0:
        return 0.0
    return sum(((l - ideal) / ideal) ** 2 for l in lengths) / len(lengths)


def _angular_resolution(nodes: dict[str, Node], edges: list[Edge]) -> float:
    """Mean over nodes of (smallest angle between incident edges) / (2*pi / degree)."""
    angles: dict[str, list[float]] = {}
    for edge in edges:
        source = nodes.get(edge.source)
        target = nodes.get(edge.target)
        if not source or not target or (source.x, source.y) == (target.x, target.y):
            continue
        angles.setdefault(source.id, []).append(math.atan2(target.y - source.y, target.x - source.x))
        angles.setdefault(target.id, []).append(math.atan2(source.y - target.y, source.x - target.x))

    scores = []
    for incident in angles.values():
        if len(incident) < 2:
            continue
        incident.sort()
        gaps = [b - a for a, b in zip(incident, incident[1:])]
        gaps.append(2 * math.pi - (incident[-1] - incident[0]))
        ideal = 2 * math.pi / len(incident)
        scores.append(min(min(gaps) / ideal, 1.0))
    return sum(scores) / len(scores) if scores else 1.0


def _symmetry(nodes: list[Node]) -> float:
    """Share of nodes with a mirror partner across the vertical centre line."""
    if not nodes:
        return 1.0
    axis = sum(n.x for n in nodes) / len(nodes)
    matched = 0
    for node in nodes:
        mirror_x = 2 * axis - node.x
        if any(abs(other.x - mirror_x) < OVERLAP_THRESHOLD and abs(other.y - node.y) < OVERLAP_THRESHOLD
               for other in nodes):
            matched += 1
    return matched / len(nodes)


def _orthogonality(segments: list[tuple[Point, Point]]) -> float:
    """1 when every edge is horizontal or vertical, 0 when all sit at 45 degrees."""
    deviations = []
    for (x1, y1), (x2, y2) in segments:
        if (x1, y1) == (x2, y2):
            continue
        angle = math.degrees(math.atan2(abs(y2 - y1), abs(x2 - x1))) % 90
        deviations.append(min(angle, 90 - angle))
    if not deviations:
        return 1.0
    return 1 - (sum(deviations) / len(deviations)) / 45


def evaluate_layout_advanced(
    nodes: list[Node],
    edges: list[Edge],
    ideal_edge_length: Optional[float] = None,
) -> AdvancedLayoutMetrics:
    """Basic metrics plus stress, angular resolution, symmetry and orthogonality.

    Without an ideal edge length, the mean edge length is used.
    """
    basic = evaluate_layout(nodes, edges)
    node_map = {node.id: node for node in nodes}
    segments = _edge_segments(node_map, edges)
    lengths = [_length(segment) for segment in segments]
    ideal = ideal_edge_length or (sum(lengths) / len(lengths) if lengths else 0.0)

    return AdvancedLayoutMetrics(
        **basic.model_dump(),
        stress=_round(_stress(lengths, ideal), 4),
        angular_resolution=_round(_angular_resolution(node_map, edges), 2),
        symmetry=_round(_symmetry(nodes), 2),
        orthogonality=_round(_orthogonality(segments), 2),
    )


# ---------------------------------------------------------------------------
# Pattern detection
# ---------------------------------------------------------------------------

LayoutPattern = Literal["hierarchical", "circular", "grid", "clustered", "force-directed"]

PATTERN_ALGORITHMS: dict[str, set[str]] = {
    "hierarchical": {"hierarchical"},
    "circular": {"circular", "radial"},
    "grid": {"grid"},
    "clustered": {"force", "force-optimized"},
    "force-directed": {"force", "force-optimized"},
}


class PatternDetection(BaseModel):
    pattern: LayoutPattern
    confidence: float
    scores: dict[str, float] = Field(default_factory=dict)


def _pattern_scores(nodes: list[Node], edges: list[Edge]) -> dict[str, float]:
    node_map = {node.id: node for node in nodes}
    n = len(nodes)
    scores = {"hierarchical": 0.0, "circular": 0.0, "grid": 0.0, "clustered": 0.0}

    # hierarchical: edges point rightwards and nodes share columns
    segments = _edge_segments(node_map, edges)
    if segments:
        rightward = sum(1 for (x1, _), (x2, _) in segments if x2 > x1) / len(segments)
        distinct_x = len({round(node.x / 10) for node in nodes})
        scores["hierarchical"] = rightward if distinct_x < n else rightward * 0.5

    if n < 4:
        return scores

    # circular: equal distance from the centroid
    cx = sum(node.x for node in nodes) / n
    cy = sum(node.y for node in nodes) / n
    radii = [math.hypot(node.x - cx, node.y - cy) for node in nodes]
    mean_radius = sum(radii) / n
    if mean_radius > 0:
        cv = math.sqrt(sum((r - mean_radius) ** 2 for r in radii) / n) / mean_radius
        scores["circular"] = max(0.0, 1 - cv)

    # grid: few distinct rows and columns
    columns = len({round(node.x / 10) for node in nodes})
    rows = len({round(node.y / 10) for node in nodes})
    scores["grid"] = min(1.0, n / (columns * rows))

    # clustered: nearest neighbours much closer than a uniform spread would put them
    width = max(node.x for node in nodes) - min(node.x for node in nodes)
    height = max(node.y for node in nodes) - min(node.y for node in nodes)
    area = max(width, 1.0) * max(height, 1.0)
    expected = 0.5 * math.sqrt(area / n)
    nearest = [
        min(math.hypot(a.x - b.x, a.y - b.y) for b in nodes if b is not a)
        for a in nodes
    ]
    ratio = (sum(nearest) / n) / expected if expected > 0 else 1.0
    scores["clustered"] = max(0.0, 1 - ratio)

    return scores


def detect_layout_pattern(nodes: list[Node], edges: list[Edge]) -> PatternDetection:
    """Classify the overall shape of a layout."""
    scores = _pattern_scores(nodes, edges)
    rounded = {name: _round(value, 2) for name, value in scores.items()}

    if scores["hierarchical"] >= 0.8:
        return PatternDetection(pattern="hierarchical", confidence=rounded["hierarchical"], scores=rounded)
    if scores["circular"] > 0.9:
        return PatternDetection(pattern="circular", confidence=rounded["circular"], scores=rounded)
    if scores["grid"] >= 0.9:
        return PatternDetection(pattern="grid", confidence=rounded["grid"], scores=rounded)
    if scores["clustered"] > 0.5:
        return PatternDetection(pattern="clustered", confidence=rounded["clustered"], scores=rounded)
    return PatternDetection(
        pattern="force-directed",
        confidence=_round(1 - max(scores.values(), default=0.0), 2),
        scores=rounded,
    )


# ---------------------------------------------------------------------------
# Suggestions and comparison
# ---------------------------------------------------------------------------

Priority = Literal["critical", "high", "medium", "low"]

MANY_CROSSINGS = 10
MAX_ASPECT_RATIO = 3
EDGE_LENGTH_CV_LIMIT = 0.5


class ImprovementSuggestion(BaseModel):
    priority: Priority
    category: str
    message: str


def suggest_improvements(
    metrics: LayoutQualityMetrics,
    pattern: Optional[PatternDetection] = None,
    algorithm: Optional[str] = None,
) -> list[ImprovementSuggestion]:
    """Actionable suggestions, most urgent first."""
    suggestions = []

    if metrics.node_overlaps > 0:
        suggestions.append(ImprovementSuggestion(
            priority="critical", category="overlap",
            message=f"{metrics.node_overlaps} overlapping node pairs; increase node separation",
        ))
    if metrics.edge_crossings > MANY_CROSSINGS:
        suggestions.append(ImprovementSuggestion(
            priority="high", category="crossings",
            message=f"{metrics.edge_crossings} edge crossings; try the hierarchical layout or more ordering sweeps",
        ))
    if metrics.aspect_ratio > MAX_ASPECT_RATIO or metrics.aspect_ratio < 1 / MAX_ASPECT_RATIO:
        suggestions.append(ImprovementSuggestion(
            priority="medium", category="aspect-ratio",
            message=f"Aspect ratio {metrics.aspect_ratio:g} is far from balanced; adjust rank or node separation",
        ))
    if pattern is not None and algorithm and algorithm not in PATTERN_ALGORITHMS[pattern.pattern]:
        better = sorted(PATTERN_ALGORITHMS[pattern.pattern])[0]
        suggestions.append(ImprovementSuggestion(
            priority="medium", category="algorithm",
            message=f"Layout reads as {pattern.pattern} but was produced by {algorithm}; consider {better}",
        ))
    if metrics.average_edge_length > 0:
        cv = math.sqrt(metrics.edge_length_variance) / metrics.average_edge_length
        if cv > EDGE_LENGTH_CV_LIMIT:
            suggestions.append(ImprovementSuggestion(
                priority="low", category="edge-length",
                message=f"Edge lengths vary widely (cv {cv:.2f}); consider adaptive spacing",
            ))

    return suggestions


class LayoutComparison(BaseModel):
    score_a: float
    score_b: float
    better: Literal["a", "b", "tie"]
    deltas: dict[str, float] = Field(default_factory=dict)


def compare_layouts(a: LayoutQualityMetrics, b: LayoutQualityMetrics) -> LayoutComparison:
    """Overall scores of two layouts and the per-metric change from a to b."""
    score_a = overall_quality_score(a)
    score_b = overall_quality_score(b)
    if math.isclose(score_a, score_b, abs_tol=1e-9):
        better = "tie"
    else:
        better = "a" if score_a > score_b else "b"

    first, second = a.model_dump(), b.model_dump()
    deltas = {name: _round(second[name] - first[name], 4) for name in LayoutQualityMetrics.model_fields}
    return LayoutComparison(score_a=_round(score_a, 4), score_b=_round(score_b, 4), better=better, deltas=deltas)
