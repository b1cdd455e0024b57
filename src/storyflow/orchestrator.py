"""
Layout orchestration: algorithm selection, fallback, view post-processing.

One orchestrator runs at most one layout at a time.  A run moves through

    idle -> loading-algorithm -> applying -> optimizing -> complete

and leaves early through ``cancelled`` (async runs only) or ends in
``fallback`` when the requested algorithm was unknown or failed and the
hierarchical layout stood in for it.  When the hierarchical layout itself
fails the run still ends in ``fallback``, with the input positions kept and
the cause recorded on the result.  A request made while a run is in
flight raises LayoutBusyError instead of queueing behind it.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .algorithms import AlgorithmRegistry, LayoutAlgorithm
from .clustering import apply_element_clustering
from .config import LayoutConfig, Viewport
from .errors import (
    LayoutAlgorithmError,
    LayoutBusyError,
    LayoutCancelledError,
    UnknownAlgorithmError,
)
from .graph import build_story_graph
from .models import Edge, EntityKind, GameData, GraphData, Node
from .quality import LayoutQualityMetrics, evaluate_layout, report_layout_quality
from .virtual_edges import (
    InjectionResult,
    VirtualEdgeReport,
    inject_virtual_edges,
    strip_virtual_edges,
    virtual_edge_stats,
)


FALLBACK_ALGORITHM = "hierarchical"
AUTO_ALGORITHM = "auto"
GRID_SNAP = 50


class LayoutState(str, Enum):
    IDLE = "idle"
    LOADING_ALGORITHM = "loading-algorithm"
    APPLYING = "applying"
    OPTIMIZING = "optimizing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FALLBACK = "fallback"


BUSY_STATES = frozenset({LayoutState.LOADING_ALGORITHM, LayoutState.APPLYING, LayoutState.OPTIMIZING})


class LayoutResult(BaseModel):
    """Positioned nodes and the edges a renderer should draw."""
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    algorithm: str = ""
    state: LayoutState = LayoutState.COMPLETE
    metrics: Optional[LayoutQualityMetrics] = None
    report: VirtualEdgeReport = Field(default_factory=VirtualEdgeReport)
    fell_back: bool = False
    error: Optional[str] = None

    def to_graph_data(self) -> GraphData:
        return GraphData(nodes=self.nodes, edges=self.edges)


class _Prepared(BaseModel):
    nodes: list[Node]
    real_edges: list[Edge]
    injection: Optional[InjectionResult] = None

    def edges_for(self, algorithm: LayoutAlgorithm) -> list[Edge]:
        # Only the layered layout understands virtual edges.
        if self.injection and algorithm.category == "hierarchical":
            return self.injection.edges
        return self.real_edges


# ---------------------------------------------------------------------------
# View post-processing
# ---------------------------------------------------------------------------

def snap_to_grid(nodes: list[Node], size: float = GRID_SNAP) -> list[Node]:
    return [n.model_copy(update={"x": round(n.x / size) * size, "y": round(n.y / size) * size}) for n in nodes]


def center_on_origin(nodes: list[Node]) -> list[Node]:
    """Translate so the bounding-box center sits at (0, 0)."""
    if not nodes:
        return nodes
    min_x = min(n.x for n in nodes)
    max_x = max(n.x + n.effective_width() for n in nodes)
    min_y = min(n.y for n in nodes)
    max_y = max(n.y + n.effective_height() for n in nodes)
    dx, dy = (min_x + max_x) / 2, (min_y + max_y) / 2
    return [n.model_copy(update={"x": n.x - dx, "y": n.y - dy}) for n in nodes]


def order_timeline_events(nodes: list[Node]) -> list[Node]:
    """Reassign the x slots of dated timeline events in chronological order."""
    dated = [n for n in nodes if n.entity_kind == EntityKind.TIMELINE and n.metadata.get("date")]
    if len(dated) < 2:
        return nodes
    slots = sorted((n.x, n.y) for n in dated)
    chronological = sorted(dated, key=lambda n: str(n.metadata["date"]))
    moved = {node.id: slot for node, slot in zip(chronological, slots)}
    return [
        n.model_copy(update={"x": moved[n.id][0], "y": moved[n.id][1]}) if n.id in moved else n
        for n in nodes
    ]


def prioritize_for_viewport(nodes: list[Node], viewport: Viewport) -> list[Node]:
    """Nodes inside the viewport first, then everything else by distance to its center."""
    cx, cy = viewport.center

    def key(node: Node):
        x = node.x + node.effective_width() / 2
        y = node.y + node.effective_height() / 2
        return (not viewport.contains(x, y), math.hypot(x - cx, y - cy))

    return sorted(nodes, key=key)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

ProgressCallback = Callable[[float], None]


class LayoutOrchestrator:
    def __init__(self, registry: Optional[AlgorithmRegistry] = None, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(__name__)
        self.registry = registry or AlgorithmRegistry.with_defaults(logger=self.log)
        self.state = LayoutState.IDLE
        self._cancel_requested = False

    @property
    def busy(self) -> bool:
        return self.state in BUSY_STATES

    def cancel(self) -> bool:
        """Ask the in-flight async run to stop at its next chunk boundary."""
        if not self.busy:
            return False
        self._cancel_requested = True
        return True

    # --- Public entry points ---

    def apply_layout(self, graph: GraphData, config: Optional[LayoutConfig] = None) -> LayoutResult:
        """Run one layout synchronously."""
        config = config or LayoutConfig()
        self._begin()
        try:
            algorithm, fell_back = self._resolve(graph, config)
            prepared = self._prepare(graph, config)
            self.state = LayoutState.APPLYING
            try:
                nodes = algorithm.apply(prepared.nodes, prepared.edges_for(algorithm), self._run_config(config))
            except Exception as e:
                return self._recover(algorithm, prepared, config, e)
            return self._finish(nodes, prepared, config, algorithm, fell_back)
        except BaseException:
            self.state = LayoutState.IDLE
            raise

    async def apply_layout_async(
        self,
        graph: GraphData,
        config: Optional[LayoutConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> LayoutResult:
        """Run one layout in chunks, yielding to the event loop between them."""
        config = config or LayoutConfig()
        self._begin()
        try:
            algorithm, fell_back = self._resolve(graph, config)
            prepared = self._prepare(graph, config)
            self.state = LayoutState.APPLYING
            nodes = prepared.nodes
            try:
                for progress, nodes in algorithm.steps(prepared.nodes, prepared.edges_for(algorithm), self._run_config(config)):
                    if on_progress:
                        on_progress(progress)
                    await asyncio.sleep(0)
                    if self._cancel_requested:
                        raise LayoutCancelledError(f"Layout '{algorithm.name}' cancelled at {progress:.0%}")
            except LayoutCancelledError as e:
                self.log.info(str(e))
                self.state = LayoutState.CANCELLED
                return LayoutResult(
                    nodes=list(graph.nodes),
                    edges=strip_virtual_edges(graph.edges),
                    algorithm=algorithm.name,
                    state=LayoutState.CANCELLED,
                    report=prepared.injection.report if prepared.injection else VirtualEdgeReport(),
                    fell_back=fell_back,
                )
            except Exception as e:
                result = self._recover(algorithm, prepared, config, e)
            else:
                result = self._finish(nodes, prepared, config, algorithm, fell_back)

            if on_progress:
                on_progress(1.0)
            return result
        except BaseException:
            self.state = LayoutState.IDLE
            raise
        finally:
            self._cancel_requested = False

    # --- Steps ---

    def _begin(self) -> None:
        if self.busy:
            raise LayoutBusyError(f"A layout is already in progress ({self.state.value})")
        self._cancel_requested = False
        self.state = LayoutState.LOADING_ALGORITHM

    def _resolve(self, graph: GraphData, config: LayoutConfig) -> tuple[LayoutAlgorithm, bool]:
        name = config.algorithm
        if name == AUTO_ALGORITHM:
            chosen = self.registry.select_optimal(graph.nodes, graph.edges, config.view_type)
            if chosen is not None:
                self.log.info(f"Selected layout algorithm '{chosen.name}' for {len(graph.nodes)} nodes")
                return chosen, False
            name = self.registry.view_default(config.view_type) or FALLBACK_ALGORITHM

        try:
            return self.registry.get(name), False
        except UnknownAlgorithmError as e:
            self.log.warning(f"{e}; using '{FALLBACK_ALGORITHM}'")
            return self.registry.get(FALLBACK_ALGORITHM), True

    def _prepare(self, graph: GraphData, config: LayoutConfig) -> _Prepared:
        real_edges = strip_virtual_edges(graph.edges)
        injection = None
        if config.inject_virtual_edges:
            injection = inject_virtual_edges(
                graph.nodes, real_edges,
                dependency_weight=config.dependency_weight,
                grouping_weight=config.grouping_weight,
                logger=self.log,
            )
        return _Prepared(nodes=list(graph.nodes), real_edges=real_edges, injection=injection)

    def _run_config(self, config: LayoutConfig) -> LayoutConfig:
        # Virtual edges were injected once in _prepare.
        return config.model_copy(update={"inject_virtual_edges": False})

    def _fall_back(
        self,
        failed: LayoutAlgorithm,
        prepared: _Prepared,
        config: LayoutConfig,
        error: Exception,
    ) -> tuple[list[Node], LayoutAlgorithm]:
        if failed.name == FALLBACK_ALGORITHM:
            raise error if isinstance(error, LayoutAlgorithmError) else LayoutAlgorithmError(failed.name, str(error))

        self.log.error(f"Layout algorithm '{failed.name}' failed: {error}; falling back to '{FALLBACK_ALGORITHM}'")
        fallback = self.registry.get(FALLBACK_ALGORITHM)
        try:
            nodes = fallback.apply(prepared.nodes, prepared.edges_for(fallback), self._run_config(config))
        except LayoutAlgorithmError:
            raise
        except Exception as e:
            raise LayoutAlgorithmError(FALLBACK_ALGORITHM, str(e)) from e
        return nodes, fallback

    def _recover(
        self,
        failed: LayoutAlgorithm,
        prepared: _Prepared,
        config: LayoutConfig,
        error: Exception,
    ) -> LayoutResult:
        try:
            nodes, algorithm = self._fall_back(failed, prepared, config, error)
        except LayoutAlgorithmError as failure:
            return self._keep_positions(prepared, config, failure)
        return self._finish(nodes, prepared, config, algorithm, fell_back=True)

    def _keep_positions(self, prepared: _Prepared, config: LayoutConfig, failure: LayoutAlgorithmError) -> LayoutResult:
        """The input layout, unchanged, when even the hierarchical layout failed."""
        self.log.error(f"Layout failed ({failure}); keeping previous positions")
        metrics = evaluate_layout(prepared.nodes, prepared.real_edges) if config.evaluate_quality else None
        report = prepared.injection.report if prepared.injection else virtual_edge_stats(prepared.nodes, prepared.real_edges)
        self.state = LayoutState.FALLBACK
        return LayoutResult(
            nodes=list(prepared.nodes),
            edges=prepared.real_edges,
            algorithm=FALLBACK_ALGORITHM,
            state=LayoutState.FALLBACK,
            metrics=metrics,
            report=report,
            fell_back=True,
            error=str(failure),
        )

    def _finish(
        self,
        nodes: list[Node],
        prepared: _Prepared,
        config: LayoutConfig,
        algorithm: LayoutAlgorithm,
        fell_back: bool,
    ) -> LayoutResult:
        self.state = LayoutState.OPTIMIZING
        nodes = self._post_process(nodes, prepared.real_edges, config, algorithm)

        metrics = None
        if config.evaluate_quality:
            metrics = evaluate_layout(nodes, prepared.real_edges)
            report_layout_quality(metrics, logger=self.log)

        if config.viewport:
            nodes = prioritize_for_viewport(nodes, config.viewport)

        report = prepared.injection.report if prepared.injection else virtual_edge_stats(prepared.nodes, prepared.real_edges)
        self.state = LayoutState.FALLBACK if fell_back else LayoutState.COMPLETE
        self.log.info(f"Layout '{algorithm.name}' finished: {len(nodes)} nodes, "
                      f"{len(prepared.real_edges)} visible edges")
        return LayoutResult(
            nodes=nodes,
            edges=prepared.real_edges,
            algorithm=algorithm.name,
            state=self.state,
            metrics=metrics,
            report=report,
            fell_back=fell_back,
        )

    def _post_process(self, nodes: list[Node], edges: list[Edge], config: LayoutConfig, algorithm: LayoutAlgorithm) -> list[Node]:
        view = config.view_type
        if not view:
            return nodes
        if algorithm.category == "force":
            self.log.debug(f"Skipping '{view}' post-processing for force layout '{algorithm.name}'")
            return nodes

        if view == "puzzle-focus":
            if algorithm.name == "hierarchical" and config.cluster_elements:
                return nodes
            return apply_element_clustering(nodes, edges, config.compression_factor, logger=self.log)
        if view == "content-status":
            return snap_to_grid(nodes)
        if view == "node-connections":
            return center_on_origin(nodes)
        if view == "timeline":
            return order_timeline_events(nodes)
        return nodes


def layout_story(
    game: GameData,
    config: Optional[LayoutConfig] = None,
    orchestrator: Optional[LayoutOrchestrator] = None,
    logger: Optional[logging.Logger] = None,
) -> LayoutResult:
    """Build the story graph for ``game`` and lay it out."""
    log = logger or logging.getLogger(__name__)
    orchestrator = orchestrator or LayoutOrchestrator(logger=log)
    story = build_story_graph(game, logger=log)
    return orchestrator.apply_layout(story.to_graph_data(), config)
