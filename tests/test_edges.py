"""
Edge Synthesizer Tests
======================

Idempotent construction, endpoint validation and structural weighting.
"""

import pytest

from storyflow.edges import AffinityIndex, EdgeBuilder, merge_builders, structural_weight
from storyflow.graph import build_story_graph
from storyflow.models import EdgeKind, RelationshipRecord
from storyflow.parser import build_nodes
from storyflow.relationships import extract_relationships

from conftest import make_node


@pytest.fixture
def nodes():
    return [make_node("p1", "puzzle"), make_node("p2", "puzzle"), make_node("e1"), make_node("e2")]


class TestIdempotence:

    def test_same_key_twice_yields_one_edge(self, nodes):
        builder = EdgeBuilder(nodes=nodes)
        first = builder.create_edge("e1", "p1", EdgeKind.REQUIREMENT)
        second = builder.create_edge("e1", "p1", EdgeKind.REQUIREMENT)
        assert first is not None
        assert second is None
        assert len(builder.edges) == 1

    def test_kind_is_part_of_the_key(self, nodes):
        builder = EdgeBuilder(nodes=nodes)
        builder.create_edge("p1", "p2", EdgeKind.CHAIN)
        builder.create_edge("p1", "p2", "grouping")
        assert len(builder) == 2

    def test_unknown_endpoints_refused(self, nodes):
        builder = EdgeBuilder(nodes=nodes)
        assert builder.create_edge("ghost", "p1", EdgeKind.REQUIREMENT) is None
        assert builder.create_edge("e1", "ghost", EdgeKind.REQUIREMENT) is None
        assert builder.edges == []

    def test_without_node_set_anything_goes(self):
        builder = EdgeBuilder()
        edge = builder.create_edge("a", "b", EdgeKind.CHAIN, weight=2.5)
        assert edge.id == "chain-a-b"
        assert edge.weight == 2.5
        assert edge.get_style().label == "chain"


class TestBuilderOperations:

    def test_chain_and_fan_edges(self, nodes):
        builder = EdgeBuilder(nodes=nodes)
        assert len(builder.create_chain_edges(["p1", "p2"])) == 1
        assert len(builder.create_fan_out_edges("p1", ["e1", "e2"], EdgeKind.REWARD)) == 2
        assert len(builder.create_fan_in_edges(["e1", "e2"], "p2", EdgeKind.REQUIREMENT)) == 2
        assert len(builder) == 5

    def test_lookup_and_removal(self, nodes):
        builder = EdgeBuilder(nodes=nodes)
        builder.create_edge("e1", "p1", EdgeKind.REQUIREMENT)
        builder.create_edge("p1", "e2", EdgeKind.REWARD)

        assert builder.has_edge("e1", "p1", EdgeKind.REQUIREMENT)
        connected = builder.node_edges("p1")
        assert [e.source for e in connected["incoming"]] == ["e1"]
        assert [e.target for e in connected["outgoing"]] == ["e2"]
        assert [e.kind for e in builder.filter_by_kind([EdgeKind.REWARD])] == [EdgeKind.REWARD]

        assert builder.remove_edge("e1", "p1", EdgeKind.REQUIREMENT)
        assert not builder.remove_edge("e1", "p1", EdgeKind.REQUIREMENT)
        assert len(builder) == 1

        builder.clear()
        assert builder.edges == []

    def test_statistics(self, nodes):
        builder = EdgeBuilder(nodes=nodes)
        builder.create_edge("e1", "p1", EdgeKind.REQUIREMENT, weight=1)
        builder.create_edge("p1", "e2", EdgeKind.REWARD, weight=3)
        stats = builder.statistics()
        assert stats.total == 2
        assert stats.by_kind == {"requirement": 1, "reward": 1}
        assert stats.average_weight == 2.0
        assert stats.weight_distribution == {"1-2": 1, "2-5": 1}

    def test_empty_statistics(self):
        stats = EdgeBuilder().statistics()
        assert stats.total == 0
        assert stats.average_weight == 0.0

    def test_merge_keeps_first_edge_per_key(self):
        a, b = EdgeBuilder(), EdgeBuilder()
        a.create_edge("x", "y", EdgeKind.CHAIN, weight=1)
        b.create_edge("x", "y", EdgeKind.CHAIN, weight=9)
        b.create_edge("y", "z", EdgeKind.CHAIN)
        merged = merge_builders(a, b)
        assert len(merged) == 2
        assert merged.edges[0].weight == 1


class TestStructuralWeight:

    def test_sample_game_weights(self, game):
        records = extract_relationships(game)
        affinity = AffinityIndex.from_records(records, game=game, nodes=build_nodes(game))

        # dual-role element, both sides
        assert structural_weight("desk", "safe-code", EdgeKind.REWARD, affinity) == 3.0
        assert structural_weight("safe-code", "safe", EdgeKind.REQUIREMENT, affinity) == 3.0
        # single-use element with SF_ metadata
        assert structural_weight("journal", "desk", EdgeKind.REQUIREMENT, affinity) == 1.5
        # plain single-use element
        assert structural_weight("desk-key", "desk", EdgeKind.REQUIREMENT, affinity) == 1.0
        assert structural_weight("alex", "journal", EdgeKind.OWNERSHIP, affinity) == 1.5
        assert structural_weight("party", "alex", EdgeKind.TIMELINE, affinity) == pytest.approx(0.7)

    def test_shared_element(self):
        records = [
            RelationshipRecord(source="e1", target="p1", kind=EdgeKind.REQUIREMENT),
            RelationshipRecord(source="e1", target="p2", kind=EdgeKind.REQUIREMENT),
        ]
        affinity = AffinityIndex.from_records(records, nodes=[make_node("e1"), make_node("p1", "puzzle"),
                                                              make_node("p2", "puzzle")])
        assert not affinity.is_dual_role("e1")
        assert structural_weight("e1", "p1", EdgeKind.REQUIREMENT, affinity) == 2.0

    def test_self_provided_element_is_not_dual_role(self):
        """Rewarded and required by the same puzzle only."""
        records = [
            RelationshipRecord(source="p1", target="e1", kind=EdgeKind.REWARD),
            RelationshipRecord(source="e1", target="p1", kind=EdgeKind.REQUIREMENT),
        ]
        affinity = AffinityIndex.from_records(records)
        assert not affinity.is_dual_role("e1")

    def test_containment_and_threads_compound(self):
        records = [RelationshipRecord(source="p1", target="p2", kind=EdgeKind.CHAIN)]
        affinity = AffinityIndex.from_records(records, nodes=[make_node("p1", "puzzle"), make_node("p2", "puzzle")])
        affinity.threads.update({"p1": {"blackmail"}, "p2": {"blackmail", "affair"}})
        assert structural_weight("p1", "p2", EdgeKind.CHAIN, affinity) == 10.0

    def test_base_weight_is_scaled(self):
        assert structural_weight("a", "b", EdgeKind.OWNERSHIP, base_weight=2) == 3.0


def test_story_graph_edges_match_records(game):
    story = build_story_graph(game)
    assert len(story.nodes) == 8
    assert {e.key() for e in story.edges} == {(r.kind.value, r.source, r.target) for r in story.extraction.records}
    by_id = {e.id: e for e in story.edges}
    assert by_id["reward-desk-safe-code"].weight == 3.0
    assert not any(e.is_virtual for e in story.edges)
