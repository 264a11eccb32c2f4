"""Clustering stage contracts.

Enforces the guarantees that the co-clustering matrix is a valid empirical
frequency matrix and that consensus labels are canonical.
"""

from typing import TYPE_CHECKING

import numpy as np

from lintrace.contracts.base import require

if TYPE_CHECKING:
    from lintrace.core.records import ClusterAssignment, CoClusterMatrix

UNASSIGNED = -1


def assert_co_clustering(matrix: "CoClusterMatrix") -> None:
    """Enforce co-clustering contract.

    Verifies symmetry, that no pair was clustered together more often than
    it was drawn together, and that derived frequencies lie in [0, 1].

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    occ = matrix.co_occurrence
    clu = matrix.co_clustered
    require(
        occ.ndim == 2 and occ.shape[0] == occ.shape[1] and occ.shape == clu.shape,
        f"Co-clustering contract violated: shapes {occ.shape} / {clu.shape}",
    )
    require(
        np.array_equal(occ, occ.T) and np.array_equal(clu, clu.T),
        "Co-clustering contract violated: count matrices are not symmetric",
    )
    require(
        (clu >= 0).all() and (clu <= occ).all(),
        "Co-clustering contract violated: co-clustered count exceeds co-occurrence",
    )
    freq = matrix.frequency()
    require(
        (freq >= 0.0).all() and (freq <= 1.0).all(),
        "Co-clustering contract violated: frequencies outside [0, 1]",
    )


def assert_consensus(assignment: "ClusterAssignment", n_cells: int) -> None:
    """Enforce consensus contract.

    Labels are UNASSIGNED or contiguous 0..K-1, stability lies in [0, 1].

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    labels = assignment.labels
    require(
        labels.shape == (n_cells,),
        f"Consensus contract violated: {labels.shape[0]} labels for {n_cells} cells",
    )
    require(
        labels.dtype.kind == "i",
        f"Consensus contract violated: labels dtype is {labels.dtype}, expected integer",
    )
    require(
        (labels >= UNASSIGNED).all(),
        f"Consensus contract violated: labels below sentinel (min={labels.min()})",
    )
    ids = assignment.cluster_ids
    require(
        ids == list(range(len(ids))),
        f"Consensus contract violated: cluster ids not contiguous from 0: {ids[:10]}",
    )
    stab = assignment.stability
    require(
        np.isfinite(stab).all() and (stab >= 0.0).all() and (stab <= 1.0).all(),
        "Consensus contract violated: stability outside [0, 1]",
    )
