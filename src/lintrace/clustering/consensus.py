"""Consensus extraction from a co-clustering matrix.

Average-linkage (UPGMA) agglomeration on the co-clustering dissimilarity,
cut at a fixed height, followed by stability filtering. Everything here is
deterministic: ties are broken by lowest cluster index, and the merged
cluster keeps the lower of the two indices.
"""

import logging
from typing import Tuple

import numpy as np
import pandas as pd

from lintrace.core.records import UNASSIGNED, ClusterAssignment, CoClusterMatrix

logger = logging.getLogger(__name__)

__all__ = ["average_linkage_groups", "cell_stability", "extract_consensus"]

_TOL = 1e-12


def average_linkage_groups(dissimilarity: np.ndarray, cut_height: float) -> np.ndarray:
    """Agglomerate cells until the closest pair of groups is above `cut_height`.

    Parameters
    ----------
    dissimilarity : np.ndarray
        (n, n) symmetric dissimilarity with zero diagonal.
    cut_height : float
        Merging stops once the smallest inter-group dissimilarity exceeds it.

    Returns
    -------
    np.ndarray
        Group index per cell. A group is named after its lowest member row.

    Notes
    -----
    Each row caches its nearest active neighbour; after a merge only rows
    whose cached neighbour was one of the merged pair are rescanned.
    Among equal minima the lowest (row, column) pair is merged first.
    """
    n = dissimilarity.shape[0]
    groups = np.arange(n)
    if n < 2:
        return groups

    dist = np.array(dissimilarity, dtype=np.float64, copy=True)
    np.fill_diagonal(dist, np.inf)
    size = np.ones(n, dtype=np.float64)
    active = np.ones(n, dtype=bool)

    nearest = np.argmin(dist, axis=1)
    nearest_val = dist[np.arange(n), nearest]

    n_merges = 0
    while True:
        row_vals = np.where(active, nearest_val, np.inf)
        i = int(np.argmin(row_vals))
        best = row_vals[i]
        if not np.isfinite(best) or best > cut_height + _TOL:
            break
        j = int(nearest[i])
        # i is the lowest row reaching the global minimum, so j > i

        merged = (size[i] * dist[i] + size[j] * dist[j]) / (size[i] + size[j])
        merged[i] = np.inf
        merged[j] = np.inf
        merged[~active] = np.inf
        dist[i, :] = merged
        dist[:, i] = merged
        dist[j, :] = np.inf
        dist[:, j] = np.inf
        size[i] += size[j]
        active[j] = False
        groups[groups == j] = i
        n_merges += 1

        nearest_val[j] = np.inf
        stale = np.flatnonzero(active & ((nearest == i) | (nearest == j)))
        for r in stale:
            nearest[r] = int(np.argmin(dist[r]))
            nearest_val[r] = dist[r, nearest[r]]
        d = dist[:, i]
        closer = active & ((d < nearest_val) | ((d == nearest_val) & (i < nearest)))
        closer[i] = False
        nearest[closer] = i
        nearest_val[closer] = d[closer]
        nearest[i] = int(np.argmin(dist[i]))
        nearest_val[i] = dist[i, nearest[i]]

    logger.debug("Agglomeration: %d merges, %d groups at cut %.3f",
                 n_merges, int(active.sum()), cut_height)
    return groups


def cell_stability(frequency: np.ndarray, groups: np.ndarray) -> np.ndarray:
    """Mean co-clustering frequency of each cell to the other members of its group.

    Singletons get 0.
    """
    n = len(groups)
    stability = np.zeros(n, dtype=np.float64)
    for g in np.unique(groups):
        idx = np.flatnonzero(groups == g)
        if idx.size < 2:
            continue
        block = frequency[np.ix_(idx, idx)]
        stability[idx] = (block.sum(axis=1) - np.diag(block)) / (idx.size - 1)
    return np.clip(stability, 0.0, 1.0)


def extract_consensus(
    matrix: CoClusterMatrix,
    cell_ids: pd.Index,
    cut_height: float,
    stability_threshold: float,
    min_cluster_size: int,
) -> Tuple[ClusterAssignment, int]:
    """Turn accumulated co-clustering counts into consensus labels.

    Groups smaller than `min_cluster_size`, or whose mean member stability
    is below `stability_threshold`, are marked UNASSIGNED. Survivors are
    numbered 0..K-1 in order of their lowest member row.

    Returns
    -------
    assignment : ClusterAssignment
    n_rejected : int
        Number of groups of size >= 2 that failed the size or stability filter.
    """
    groups = average_linkage_groups(matrix.dissimilarity(), cut_height)
    stability = cell_stability(matrix.frequency(), groups)

    labels = np.full(len(groups), UNASSIGNED, dtype=np.int64)
    next_label = 0
    n_rejected = 0
    # np.unique sorts, and groups are named by lowest member row
    for g in np.unique(groups):
        idx = np.flatnonzero(groups == g)
        mean_stab = float(stability[idx].mean())
        if idx.size < min_cluster_size or mean_stab < stability_threshold:
            if idx.size > 1:
                n_rejected += 1
                logger.debug("Rejected group %d: size=%d stability=%.3f", g, idx.size, mean_stab)
            continue
        labels[idx] = next_label
        next_label += 1

    n_unassigned = int((labels == UNASSIGNED).sum())
    if n_unassigned:
        logger.info("Consensus: %d clusters, %d/%d cells unassigned",
                    next_label, n_unassigned, len(labels))
    else:
        logger.info("Consensus: %d clusters", next_label)

    return ClusterAssignment(cell_ids=cell_ids, labels=labels, stability=stability), n_rejected
