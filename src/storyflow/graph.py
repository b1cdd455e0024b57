"""Story graph assembly: game data to nodes and weighted edges."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from .edges import AffinityIndex, EdgeBuilder
from .models import Edge, GameData, GraphData, Node
from .parser import build_nodes
from .relationships import ExtractionReport, extract_relationships_with_report


class StoryGraph(BaseModel):
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    extraction: ExtractionReport = Field(default_factory=ExtractionReport)

    def to_graph_data(self) -> GraphData:
        return GraphData(nodes=self.nodes, edges=self.edges)


def build_story_graph(game: GameData, logger: Optional[logging.Logger] = None) -> StoryGraph:
    """Extract relationships from ``game`` and synthesize the real edge set."""
    log = logger or logging.getLogger(__name__)
    nodes = build_nodes(game)
    extraction = extract_relationships_with_report(game, logger=log)
    affinity = AffinityIndex.from_records(extraction.records, game=game, nodes=nodes)

    builder = EdgeBuilder(nodes=nodes, affinity=affinity, logger=log)
    builder.create_edges(extraction.records)

    stats = builder.statistics()
    log.info(f"Built story graph: {len(nodes)} nodes, {stats.total} edges, "
             f"average weight {stats.average_weight:.2f}")
    log.debug(f"Edge counts by kind: {stats.by_kind}")
    return StoryGraph(nodes=nodes, edges=builder.edges, extraction=extraction)
