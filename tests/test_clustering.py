"""Tests for post-layout element clustering."""

import pytest

from storyflow.clustering import OccupancyIndex, apply_element_clustering, clustering_stats

from conftest import make_edge, make_node


def fan_in(puzzle_y=500, element_ys=(0, 200, 400)):
    nodes = [make_node("p", "puzzle", x=300, y=puzzle_y)]
    nodes += [make_node(f"e{i}", x=0, y=y) for i, y in enumerate(element_ys)]
    edges = [make_edge(f"e{i}", "p") for i in range(len(element_ys))]
    return nodes, edges


class TestElementClustering:

    def test_elements_pulled_toward_puzzle_center(self):
        nodes, edges = fan_in()
        clustered = {n.id: n for n in apply_element_clustering(nodes, edges)}
        assert [clustered[f"e{i}"].y for i in range(3)] == pytest.approx([362, 482, 602])
        assert clustered["p"].y == 500

    def test_relative_order_and_x_kept(self):
        nodes, edges = fan_in()
        clustered = apply_element_clustering(nodes, edges)
        assert [n.id for n in clustered] == [n.id for n in nodes]
        assert [n.x for n in clustered] == [n.x for n in nodes]

    def test_input_not_mutated(self):
        nodes, edges = fan_in()
        apply_element_clustering(nodes, edges)
        assert [n.y for n in nodes] == [500, 0, 200, 400]

    def test_full_compression_factor_only_recenters(self):
        nodes, edges = fan_in()
        clustered = {n.id: n for n in apply_element_clustering(nodes, edges, compression_factor=1.0)}
        assert clustered["e1"].y - clustered["e0"].y == pytest.approx(200)

    def test_single_element_group_untouched(self):
        nodes, edges = fan_in(element_ys=(0,))
        clustered = apply_element_clustering(nodes, edges)
        assert clustered == nodes

    def test_collision_moves_to_nearest_free_slot(self):
        nodes = [
            make_node("p", "puzzle", x=300, y=0),
            make_node("e1", x=0, y=0),
            make_node("e2", x=0, y=100),
        ]
        edges = [make_edge("e1", "p"), make_edge("e2", "p")]
        clustered = {n.id: n for n in apply_element_clustering(nodes, edges)}
        assert clustered["e1"].y == pytest.approx(-48)
        # the compressed slot at 12 would touch e1; just below it is free
        assert clustered["e2"].y == pytest.approx(27)

    def test_stats(self):
        nodes, edges = fan_in()
        stats = clustering_stats(nodes, apply_element_clustering(nodes, edges))
        assert stats.moved_nodes == 3
        assert stats.max_movement == pytest.approx(362)
        assert stats.average_movement == pytest.approx(282)


class TestOccupancyIndex:

    def test_padding_counts_as_overlap(self):
        index = OccupancyIndex()
        index.register("a", 0, 0, 60)
        assert index.overlaps(0, 65, 125)
        assert not index.overlaps(0, 71, 131)
        assert not index.overlaps(0, 65, 125, exclude_id="a")

    def test_buckets_by_x(self):
        index = OccupancyIndex(bucket_size=50)
        index.register("a", 0, 0, 60)
        assert index.overlaps(20, 0, 60)
        assert not index.overlaps(200, 0, 60)

    def test_free_column_keeps_desired_y(self):
        assert OccupancyIndex().find_safe_position(0, 42, 60, "a") == 42
