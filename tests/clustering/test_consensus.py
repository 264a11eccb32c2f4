"""Tests for deterministic consensus extraction."""

import numpy as np
import pytest
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import squareform

from lintrace.clustering.consensus import average_linkage_groups, cell_stability, extract_consensus
from lintrace.core import UNASSIGNED, CoClusterMatrix
from tests.helpers.synthetic import cell_ids, co_cluster_matrix

pytestmark = pytest.mark.unit


def two_pairs(within=0.1, between=0.9):
    D = np.full((4, 4), between)
    D[0, 1] = D[1, 0] = within
    D[2, 3] = D[3, 2] = within
    np.fill_diagonal(D, 0.0)
    return D


class TestAverageLinkage:

    def test_cut_separates_pairs(self):
        groups = average_linkage_groups(two_pairs(), cut_height=0.4)

        np.testing.assert_array_equal(groups, [0, 0, 2, 2])

    def test_high_cut_merges_everything(self):
        groups = average_linkage_groups(two_pairs(), cut_height=0.95)

        np.testing.assert_array_equal(groups, [0, 0, 0, 0])

    def test_zero_cut_keeps_singletons(self):
        groups = average_linkage_groups(two_pairs(), cut_height=0.0)

        np.testing.assert_array_equal(groups, [0, 1, 2, 3])

    def test_merge_at_exact_cut_height(self):
        groups = average_linkage_groups(two_pairs(within=0.4), cut_height=0.4)

        np.testing.assert_array_equal(groups, [0, 0, 2, 2])

    def test_ties_merge_lowest_pair_first(self):
        # all pairs equally dissimilar; (0, 1) merges first, then 2 joins at
        # the same average, then 3
        D = np.full((4, 4), 0.2)
        np.fill_diagonal(D, 0.0)

        groups = average_linkage_groups(D, cut_height=0.2)

        np.testing.assert_array_equal(groups, [0, 0, 0, 0])

    def test_tied_chain_joins_lower_pair(self):
        # (0, 1) and (1, 2) tie; the lower pair merges and 2 stays alone at 1.5
        D = np.array([
            [0.0, 1.0, 2.0],
            [1.0, 0.0, 1.0],
            [2.0, 1.0, 0.0],
        ])

        groups = average_linkage_groups(D, cut_height=1.2)

        np.testing.assert_array_equal(groups, [0, 0, 2])

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_matches_scipy_average_linkage_without_ties(self, seed):
        rng = np.random.default_rng(seed)
        A = rng.uniform(0.1, 1.0, size=(25, 25))
        D = (A + A.T) / 2
        np.fill_diagonal(D, 0.0)

        ours = average_linkage_groups(D, cut_height=0.45)
        Z = linkage(squareform(D, checks=False), method="average")
        ref = fcluster(Z, t=0.45, criterion="distance")

        # same partition up to relabelling
        np.testing.assert_array_equal(ours[:, None] == ours[None, :], ref[:, None] == ref[None, :])

    def test_average_linkage_not_single_linkage(self):
        # 2 is close to 1 but far from 0: average distance to {0, 1} is 0.5
        D = np.array([
            [0.0, 0.1, 0.9],
            [0.1, 0.0, 0.1],
            [0.9, 0.1, 0.0],
        ])

        groups = average_linkage_groups(D, cut_height=0.3)

        np.testing.assert_array_equal(groups, [0, 0, 2])

    def test_group_named_by_lowest_member(self):
        D = np.array([
            [0.0, 0.9, 0.1],
            [0.9, 0.0, 0.9],
            [0.1, 0.9, 0.0],
        ])

        groups = average_linkage_groups(D, cut_height=0.5)

        np.testing.assert_array_equal(groups, [0, 1, 0])

    def test_single_cell(self):
        np.testing.assert_array_equal(average_linkage_groups(np.zeros((1, 1)), 0.5), [0])

    def test_input_not_modified(self):
        D = two_pairs()
        before = D.copy()
        average_linkage_groups(D, cut_height=0.4)

        np.testing.assert_array_equal(D, before)


class TestCellStability:

    def test_mean_frequency_to_other_members(self):
        freq = np.array([
            [1.0, 0.8, 0.6],
            [0.8, 1.0, 1.0],
            [0.6, 1.0, 1.0],
        ])

        stability = cell_stability(freq, np.array([0, 0, 0]))

        np.testing.assert_allclose(stability, [0.7, 0.9, 0.8])

    def test_singletons_get_zero(self):
        stability = cell_stability(np.eye(2), np.array([0, 1]))

        np.testing.assert_array_equal(stability, [0.0, 0.0])


class TestExtractConsensus:

    def test_blocks_become_clusters(self):
        matrix = co_cluster_matrix([0] * 5 + [1] * 5)

        assignment, n_rejected = extract_consensus(
            matrix, cell_ids(10), cut_height=0.4, stability_threshold=0.6, min_cluster_size=3,
        )

        np.testing.assert_array_equal(assignment.labels, [0] * 5 + [1] * 5)
        np.testing.assert_allclose(assignment.stability, 1.0)
        assert n_rejected == 0

    def test_labels_follow_lowest_member_index(self):
        matrix = co_cluster_matrix([1, 0, 1, 0, 1, 0])

        assignment, _ = extract_consensus(
            matrix, cell_ids(6), cut_height=0.4, stability_threshold=0.5, min_cluster_size=2,
        )

        np.testing.assert_array_equal(assignment.labels, [0, 1, 0, 1, 0, 1])

    def test_small_groups_unassigned(self):
        matrix = co_cluster_matrix([0, 0, 0, 0, 1, 1])

        assignment, n_rejected = extract_consensus(
            matrix, cell_ids(6), cut_height=0.4, stability_threshold=0.5, min_cluster_size=3,
        )

        np.testing.assert_array_equal(assignment.labels, [0, 0, 0, 0, UNASSIGNED, UNASSIGNED])
        assert n_rejected == 1

    def test_unstable_groups_unassigned(self):
        # cells 0-3 were together in 7 of 10 draws
        occ = np.full((6, 6), 10)
        clu = np.zeros((6, 6), dtype=int)
        clu[:4, :4] = 7
        clu[4:, 4:] = 10
        np.fill_diagonal(clu, 10)
        matrix = CoClusterMatrix(co_occurrence=occ, co_clustered=clu, n_draws=10)

        assignment, _ = extract_consensus(
            matrix, cell_ids(6), cut_height=0.4, stability_threshold=0.8, min_cluster_size=2,
        )

        np.testing.assert_array_equal(assignment.labels, [UNASSIGNED] * 4 + [0, 0])
        np.testing.assert_allclose(assignment.stability[:4], 0.7)

    def test_singletons_unassigned_with_zero_stability(self):
        matrix = co_cluster_matrix([-1, -1, -1])

        assignment, _ = extract_consensus(
            matrix, cell_ids(3), cut_height=0.4, stability_threshold=0.5, min_cluster_size=1,
        )

        np.testing.assert_array_equal(assignment.labels, [UNASSIGNED] * 3)
        np.testing.assert_array_equal(assignment.stability, [0.0, 0.0, 0.0])
