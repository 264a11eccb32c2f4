"""Tests for the cluster graph builder."""

import numpy as np
import pytest
from scipy.sparse.csgraph import minimum_spanning_tree

from lintrace.contracts import ConfigError, InputError, assert_tree
from lintrace.core import ClusterSet
from lintrace.lineage import ClusterGraphBuilder, minimum_spanning_edges
from tests.helpers.synthetic import cluster_set_from_centroids

pytestmark = pytest.mark.unit


def build(make_config, centroids, **lineage):
    clusters, _, _ = cluster_set_from_centroids(centroids)
    config = make_config(lineage=lineage) if lineage else make_config()
    return ClusterGraphBuilder(config).build(clusters)


class TestSpanningTree:

    def test_kruskal_breaks_ties_by_lowest_pair(self):
        distances = {(0, 1): 1.0, (0, 2): 1.0, (1, 2): 1.0}

        edges = minimum_spanning_edges([0, 1, 2], distances)

        assert edges == [(0, 1, 1.0), (0, 2, 1.0)]

    def test_zero_weight_edges_kept(self):
        distances = {(0, 1): 0.0, (0, 2): 2.0, (1, 2): 2.0}

        edges = minimum_spanning_edges([0, 1, 2], distances)

        assert (0, 1, 0.0) in edges
        assert len(edges) == 2

    def test_zero_weight_edge_that_dense_csgraph_drops(self):
        # a dense csgraph input reads 0 as "no edge"
        D = np.array([[0.0, 0.0, 3.0], [0.0, 0.0, 3.0], [3.0, 3.0, 0.0]])
        distances = {(i, j): D[i, j] for i in range(3) for j in range(i + 1, 3)}

        reference = minimum_spanning_tree(D).toarray()
        edges = minimum_spanning_edges([0, 1, 2], distances)

        assert reference.sum() == pytest.approx(6.0)
        assert reference[0, 1] == 0.0
        assert edges == [(0, 1, 0.0), (0, 2, 3.0)]
        assert sum(w for _, _, w in edges) == pytest.approx(3.0)

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_random_centroids_give_spanning_tree(self, make_config, seed):
        rng = np.random.default_rng(seed)
        centroids = rng.normal(size=(7, 3))

        graph = build(make_config, centroids)

        assert len(graph.edges) == 6
        assert_tree(graph)
        assert all(i < j for i, j, _ in graph.edges)

    def test_duplicate_centroids(self, make_config):
        graph = build(make_config, [(0, 0), (0, 0), (3, 0)], root_cluster=0)

        assert (0, 1, 0.0) in graph.edges
        assert_tree(graph)


class TestLinearLineage:

    def test_three_collinear_clusters(self, make_config):
        graph = build(make_config, [(0, 0), (1, 0), (2, 0)])

        assert len(graph.lineages) == 1
        assert graph.lineages[0].clusters == (0, 1, 2)
        assert graph.branch_points == ()
        assert graph.root == 0
        assert len(graph.edges) == 2

    def test_explicit_root_at_end(self, make_config):
        graph = build(make_config, [(0, 0), (1, 0), (2, 0)], root_cluster=2)

        assert graph.lineages[0].clusters == (2, 1, 0)

    def test_root_in_middle_creates_branch(self, make_config):
        graph = build(make_config, [(0, 0), (1, 0), (2, 0)], root_cluster=1)

        assert graph.branch_points == (1,)
        assert [lin.clusters for lin in graph.lineages] == [(1, 0), (1, 2)]


class TestBranching:

    def test_y_shape(self, make_config):
        # stem 0 - 1, then 1 splits to 2 and 3
        centroids = [(0, 0), (2, 0), (4, 2), (4, -2)]

        graph = build(make_config, centroids, root_cluster=0)

        assert graph.branch_points == (1,)
        assert [lin.clusters for lin in graph.lineages] == [(0, 1, 2), (0, 1, 3)]
        assert graph.children[1] == (2, 3)
        assert graph.parent[2] == 1
        assert graph.lineages_through(1) == (0, 1)
        assert graph.leaves == (2, 3)

    def test_root_equidistant_to_two_clusters(self, make_config):
        centroids = [(0.5, 0.0), (2.0, 1.0), (2.0, -1.0)]

        graph = build(make_config, centroids, root_cluster=0)

        assert graph.branch_points == (0,)
        assert [lin.clusters for lin in graph.lineages] == [(0, 1), (0, 2)]

    def test_root_candidates_pick_shortest_total_path(self, make_config):
        # chain 0-1-2-3 plus leaf 4 hanging off cluster 2
        centroids = [(0, 0), (1, 0), (2, 0), (3, 0), (2, 1.2)]

        graph = build(make_config, centroids, root_candidates=[0, 4])

        # from 0: 3 + 3.2 = 6.2 ; from 4: 3.2 + 2.2 = 5.4
        assert graph.root == 4
        assert graph.branch_points == (2,)

    def test_default_root_is_a_tip(self, make_config):
        centroids = [(0, 0), (1, 0), (2, 0), (3, 0), (2, 1.2)]

        graph = build(make_config, centroids)

        # tips 0, 3, 4 total 6.2, 5.2, 5.4
        assert graph.root == 3
        assert graph.degree(graph.root) == 1

    def test_end_clusters_become_leaves(self, make_config):
        # without end_clusters, 1 would sit between 0 and 2
        centroids = [(0, 0), (1, 0), (2, 0)]

        graph = build(make_config, centroids, root_cluster=0, end_clusters=[1])

        assert graph.children[1] == ()
        assert 1 in graph.leaves
        assert set(graph.leaves) == {1, 2}
        assert_tree(graph)


class TestEdgeCases:

    def test_single_cluster(self, make_config):
        graph = build(make_config, [(1.0, 1.0)])

        assert graph.nodes == (0,)
        assert graph.edges == ()
        assert graph.lineages[0].clusters == (0,)
        assert graph.branch_points == ()
        assert_tree(graph)

    def test_no_clusters(self, make_config):
        with pytest.raises(InputError, match="No consensus clusters"):
            ClusterGraphBuilder(make_config()).build(ClusterSet(clusters=()))

    def test_unknown_root_cluster(self, make_config):
        with pytest.raises(ConfigError, match="root_cluster 7"):
            build(make_config, [(0, 0), (1, 0)], root_cluster=7)

    def test_unknown_end_cluster(self, make_config):
        with pytest.raises(ConfigError, match="end_clusters"):
            build(make_config, [(0, 0), (1, 0)], end_clusters=[5])

    def test_non_finite_distance(self, make_config):
        # cosine distance to a zero-length centroid is undefined
        with pytest.raises(InputError, match="Non-finite"):
            build(make_config, [(0, 0), (1, 0), (0, 1)], distance_metric="cosine")

    @pytest.mark.parametrize("metric", ["cityblock", "chebyshev", "sqeuclidean"])
    def test_other_metrics(self, make_config, metric):
        graph = build(make_config, [(0, 0), (1, 0), (2, 0)], distance_metric=metric)

        assert graph.distance_metric == metric
        assert graph.lineages[0].clusters == (0, 1, 2)

    def test_to_dict(self, make_config):
        info = build(make_config, [(0, 0), (1, 0), (2, 0)]).to_dict()

        assert info["root"] == 0
        assert info["lineages"] == {0: [0, 1, 2]}
        assert info["edges"] == [(0, 1, 1.0), (1, 2, 1.0)]
