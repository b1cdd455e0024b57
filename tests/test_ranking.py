"""
Hierarchical Ranking Tests
==========================

Ordering edges point rightwards, dual-role providers sit left of their
consumers, and a failed pass leaves positions untouched.
"""

import logging

import networkx as nx
import pytest

from storyflow import ranking
from storyflow.config import LayoutConfig
from storyflow.graph import build_story_graph
from storyflow.models import ORDERING_EDGE_KINDS, EdgeKind
from storyflow.ranking import (
    adaptive_spacing,
    apply_hierarchical_layout,
    build_constraint_graph,
    compute_ranking,
    count_layer_crossings,
    fractional_ranks,
    greedy_fas_ordering,
    longest_path_ranks,
    network_simplex_ranks,
    tight_tree_ranks,
)
from storyflow.virtual_edges import inject_virtual_edges

from conftest import make_edge, make_node


RANKER_NAMES = ["longest-path", "tight-tree", "network-simplex"]

FIXED_SPACING = LayoutConfig(adaptive_spacing=False)


def constraint_graph(*edges):
    graph = nx.DiGraph()
    for source, target in edges:
        graph.add_edge(source, target, weight=1.0, gap=1)
    return graph


class TestOrdering:

    @pytest.mark.parametrize("ranker", RANKER_NAMES)
    def test_ordering_edges_point_right(self, game, ranker):
        story = build_story_graph(game)
        edges = inject_virtual_edges(story.nodes, story.edges).edges
        result = compute_ranking(story.nodes, edges, LayoutConfig(ranker=ranker))

        for edge in story.edges:
            if edge.kind in ORDERING_EDGE_KINDS:
                assert result.ranks[edge.target] > result.ranks[edge.source], edge.id
                assert result.positions[edge.target][0] > result.positions[edge.source][0], edge.id

    @pytest.mark.parametrize("ranker", RANKER_NAMES)
    def test_dual_role_provider_left_of_consumer(self, dual_role_graph, ranker):
        """Puzzle B is listed first, but A hands out the element B needs."""
        nodes, edges = dual_role_graph
        injected = inject_virtual_edges(nodes, edges).edges
        result = compute_ranking(nodes, injected, LayoutConfig(ranker=ranker))
        assert result.ranks["A"] < result.ranks["E"] < result.ranks["B"]

    def test_unrelated_providers_are_ordered_by_virtual_edges(self):
        """Two puzzles joined only through an element still line up."""
        nodes = [make_node("late", "puzzle"), make_node("early", "puzzle"),
                 make_node("clue"), make_node("key")]
        edges = [make_edge("early", "clue", "reward"), make_edge("clue", "late"), make_edge("key", "late")]
        injected = inject_virtual_edges(nodes, edges).edges
        result = compute_ranking(nodes, injected)
        assert result.ranks["early"] < result.ranks["late"]

    def test_deterministic(self, game):
        story = build_story_graph(game)
        edges = inject_virtual_edges(story.nodes, story.edges).edges
        first = compute_ranking(story.nodes, edges)
        second = compute_ranking(story.nodes, edges)
        assert first.positions == second.positions
        assert first.order == second.order

    def test_cycles_are_broken_not_fatal(self):
        nodes = [make_node("p1", "puzzle"), make_node("p2", "puzzle")]
        edges = [make_edge("p1", "p2", "chain"), make_edge("p2", "p1", "chain")]
        result = compute_ranking(nodes, edges)
        assert len(result.reversed_edges) == 1
        assert result.ranks["p1"] != result.ranks["p2"]

    @pytest.mark.parametrize("ranker", RANKER_NAMES)
    def test_minimum_rank_gap_survives_empty_ranks(self, ranker):
        """Nothing sits in the rank between e and p, but the gap of two holds."""
        nodes = [make_node("e"), make_node("p", "puzzle")]
        edges = [make_edge("e", "p", minimum_rank_gap=2)]
        config = LayoutConfig(ranker=ranker, adaptive_spacing=False)
        result = compute_ranking(nodes, edges, config)
        assert result.ranks["p"] >= result.ranks["e"] + 2
        assert min(result.ranks.values()) == 0
        # the empty column still takes one rank separation
        assert result.positions["p"][0] == 50 + 180 + 300 + 300

    @pytest.mark.parametrize("ranker", RANKER_NAMES)
    def test_every_gap_respected_on_story_graph(self, game, ranker):
        story = build_story_graph(game)
        edges = [e.model_copy(update={"minimum_rank_gap": 2}) if e.kind == EdgeKind.REWARD else e
                 for e in story.edges]
        result = compute_ranking(story.nodes, edges, LayoutConfig(ranker=ranker))
        for edge in edges:
            if (edge.source, edge.target) in result.reversed_edges:
                continue
            assert result.ranks[edge.target] >= result.ranks[edge.source] + edge.minimum_rank_gap, edge.id


class TestCoordinates:

    def test_chain_positions(self):
        nodes = [make_node("e"), make_node("p", "puzzle")]
        result = compute_ranking(nodes, [make_edge("e", "p")], FIXED_SPACING)
        # margin, then the element column (180 wide) plus rank separation
        assert result.positions["e"] == (50, 50)
        assert result.positions["p"] == (530, 50)

    def test_target_centered_on_sources(self):
        nodes = [make_node("e1"), make_node("e2"), make_node("p", "puzzle")]
        edges = [make_edge("e1", "p"), make_edge("e2", "p")]
        result = compute_ranking(nodes, edges, FIXED_SPACING)
        assert result.positions["e1"][1] == 50
        assert result.positions["e2"][1] == 210
        assert result.positions["p"][1] == 130

    def test_no_vertical_overlap_within_a_column(self, game):
        story = build_story_graph(game)
        result = compute_ranking(story.nodes, story.edges)
        by_rank = {}
        for node_id, rank in result.ranks.items():
            by_rank.setdefault(rank, []).append(result.positions[node_id][1])
        for ys in by_rank.values():
            ys.sort()
            for upper, lower in zip(ys, ys[1:]):
                assert lower - upper >= 60

    def test_empty_graph(self):
        result = compute_ranking([], [])
        assert result.positions == {}
        assert result.order == []


class TestRankers:

    def test_longest_path(self):
        graph = constraint_graph(("a", "b"), ("b", "c"), ("x", "c"))
        assert longest_path_ranks(graph) == {"a": 0, "b": 1, "c": 2, "x": 0}

    def test_tight_tree_pulls_sources_forward(self):
        graph = constraint_graph(("a", "b"), ("b", "c"), ("x", "c"))
        assert tight_tree_ranks(graph)["x"] == 1

    def test_network_simplex_minimises_span(self):
        graph = constraint_graph(("a", "b"), ("b", "c"), ("x", "c"))
        assert network_simplex_ranks(graph) == {"a": 0, "b": 1, "c": 2, "x": 1}

    def test_greedy_fas_covers_every_node(self):
        graph = constraint_graph(("a", "b"), ("b", "c"), ("c", "a"))
        assert sorted(greedy_fas_ordering(graph)) == ["a", "b", "c"]

    def test_cyclic_virtual_dependency_is_skipped(self):
        edges = [
            make_edge("q", "p", "chain"),
            make_edge("p", "q", "virtual-dependency", is_virtual=True),
        ]
        constraints = build_constraint_graph(["p", "q"], edges, logging.getLogger(__name__))
        assert constraints.skipped_edges == ["virtual-dependency-p-q"]
        assert nx.is_directed_acyclic_graph(constraints.graph)

    def test_crossing_count(self):
        graph = constraint_graph(("a", "d"), ("b", "c"))
        assert count_layer_crossings([["a", "b"], ["c", "d"]], graph) == 1
        assert count_layer_crossings([["a", "b"], ["d", "c"]], graph) == 0


class TestFractionalRanks:

    def test_dual_role_element_moves_to_midpoint(self):
        nodes = [make_node("A", "puzzle"), make_node("E"), make_node("B", "puzzle")]
        edges = [make_edge("A", "E", "reward"), make_edge("E", "B")]
        ranks = fractional_ranks({"A": 0, "E": 1, "B": 3}, nodes, edges)
        assert ranks == {"A": 0.0, "E": 1.5, "B": 3.0}

    def test_unordered_provider_left_alone(self):
        nodes = [make_node("A", "puzzle"), make_node("E"), make_node("B", "puzzle")]
        edges = [make_edge("A", "E", "reward"), make_edge("E", "B")]
        ranks = fractional_ranks({"A": 2, "E": 1, "B": 1}, nodes, edges)
        assert ranks["E"] == 1.0

    def test_fractional_x_between_columns(self):
        nodes = [make_node(p, "puzzle") for p in ("A", "C", "D", "B")] + [make_node("E")]
        edges = [make_edge("A", "E", "reward"), make_edge("E", "B"),
                 make_edge("A", "C", "chain"), make_edge("C", "D", "chain"), make_edge("D", "B", "chain")]
        config = LayoutConfig(ranker="longest-path", fractional_ranks=True, adaptive_spacing=False)
        result = compute_ranking(nodes, edges, config)
        assert result.ranks["E"] == 1.5
        # halfway between column 1 (x=550) and column 2 (x=1050)
        assert result.positions["E"][0] == 800


class TestAdaptiveSpacing:

    def test_dense_puzzles_widen_ranks(self):
        nodes = [make_node("p", "puzzle")] + [make_node(f"e{i}") for i in range(6)]
        assert adaptive_spacing(nodes, LayoutConfig()) == (400, 80)

    def test_disabled(self):
        nodes = [make_node("p", "puzzle")] + [make_node(f"e{i}") for i in range(6)]
        assert adaptive_spacing(nodes, FIXED_SPACING) == (300, 100)

    def test_custom_thresholds(self):
        nodes = [make_node("p", "puzzle")] + [make_node(f"e{i}") for i in range(3)]
        config = LayoutConfig.model_validate({"spacing_rules": {"rank_tier_low": 2}})
        assert adaptive_spacing(nodes, config)[0] == 350


class TestGracefulDegradation:

    def test_ghost_edge_ignored(self):
        nodes = [make_node("e"), make_node("p", "puzzle")]
        edges = [make_edge("e", "p"), make_edge("ghost", "p")]
        laid_out = apply_hierarchical_layout(nodes, edges)
        assert [n.id for n in laid_out] == ["e", "p"]
        assert laid_out[1].x > laid_out[0].x

    def test_ranker_failure_returns_input_nodes(self, monkeypatch, caplog):
        def broken(graph):
            raise RuntimeError("solver exploded")

        monkeypatch.setitem(ranking.RANKERS, "network-simplex", broken)
        nodes = [make_node("e", x=7, y=9), make_node("p", "puzzle")]
        with caplog.at_level(logging.ERROR):
            laid_out = apply_hierarchical_layout(nodes, [make_edge("e", "p")])

        assert laid_out == nodes
        assert laid_out[0] is nodes[0]
        assert "solver exploded" in caplog.text

    def test_input_nodes_never_mutated(self):
        nodes = [make_node("e"), make_node("p", "puzzle")]
        laid_out = apply_hierarchical_layout(nodes, [make_edge("e", "p")])
        assert (nodes[1].x, nodes[1].rank) == (0.0, None)
        assert laid_out[1].rank == 1.0
        assert laid_out[1].width == 200.0

    def test_duplicate_node_ids_keep_first(self, caplog):
        nodes = [make_node("e"), make_node("e", "puzzle")]
        with caplog.at_level(logging.WARNING):
            result = compute_ranking(nodes, [])
        assert list(result.positions) == ["e"]
        assert "Duplicate node id" in caplog.text
