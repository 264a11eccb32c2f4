"""Typed records handed forward between stages.

Each record has exactly one owner (the stage that creates it) and is read
only for everyone downstream. Arrays are stored as read-only numpy views so
an accidental in-place mutation fails loudly instead of corrupting an
upstream result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from lintrace.contracts.failure import InputError

__all__ = [
    "UNASSIGNED",
    "RunStatus",
    "Embedding",
    "ClusterAssignment",
    "Cluster",
    "ClusterSet",
    "CoClusterMatrix",
    "Lineage",
    "LineageGraph",
]


UNASSIGNED = -1


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


class RunStatus(str, Enum):
    """Completion status of a long-running stage."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, eq=False)
class Embedding:
    """Cell x latent-dimension matrix with cell identifiers.

    Parameters
    ----------
    cell_ids : sequence of str
        Unique cell identifiers, one per row.
    values : array-like
        (n_cells, n_dims) finite numeric embedding.
    metadata : pd.DataFrame, optional
        Per-cell annotations (batch, condition, ...). Must have one row per
        cell; when its index holds the cell ids it is reordered to match.

    Raises
    ------
    InputError
        On non-finite values, wrong dimensionality, duplicate ids, or a
        metadata table whose rows do not match the cells.
    """
    cell_ids: pd.Index
    values: np.ndarray
    metadata: Optional[pd.DataFrame] = None

    def __post_init__(self):
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim != 2:
            raise InputError(f"Embedding must be 2-D (cells x dims), got {values.ndim}-D")
        if values.shape[0] == 0 or values.shape[1] == 0:
            raise InputError(f"Embedding is empty: shape {values.shape}")
        if not np.isfinite(values).all():
            n_bad = int((~np.isfinite(values)).sum())
            raise InputError(f"Embedding contains {n_bad} non-finite values (NaN/Inf)")

        cell_ids = pd.Index([str(c) for c in self.cell_ids], name="cell_id")
        if len(cell_ids) != values.shape[0]:
            raise InputError(
                f"Got {len(cell_ids)} cell ids for {values.shape[0]} embedding rows"
            )
        if not cell_ids.is_unique:
            dupes = cell_ids[cell_ids.duplicated()].unique()[:5].tolist()
            raise InputError(f"Duplicate cell ids in embedding: {dupes}")

        metadata = self.metadata
        if metadata is not None:
            if len(metadata) != len(cell_ids):
                raise InputError(
                    f"Metadata has {len(metadata)} rows but embedding has {len(cell_ids)} cells"
                )
            meta_index = metadata.index.astype(str)
            if set(meta_index) == set(cell_ids):
                metadata = metadata.copy()
                metadata.index = meta_index
                metadata = metadata.loc[cell_ids]
            elif isinstance(metadata.index, pd.RangeIndex):
                # positional metadata follows the embedding row order
                metadata = metadata.copy()
                metadata.index = cell_ids
            else:
                unknown = sorted(set(meta_index) - set(cell_ids))[:5]
                raise InputError(
                    f"Metadata index does not match the embedding cell ids (e.g. {unknown})"
                )
            metadata.index.name = "cell_id"

        object.__setattr__(self, "cell_ids", cell_ids)
        object.__setattr__(self, "values", _frozen(values))
        object.__setattr__(self, "metadata", metadata)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, metadata: Optional[pd.DataFrame] = None) -> "Embedding":
        """Build from a DataFrame indexed by cell id (one column per dimension)."""
        return cls(cell_ids=df.index, values=df.to_numpy(dtype=np.float64), metadata=metadata)

    @property
    def n_cells(self) -> int:
        return self.values.shape[0]

    @property
    def n_dims(self) -> int:
        return self.values.shape[1]


@dataclass(frozen=True, eq=False)
class ClusterAssignment:
    """Per-cell consensus label (or UNASSIGNED) and stability in [0, 1]."""
    cell_ids: pd.Index
    labels: np.ndarray
    stability: np.ndarray

    def __post_init__(self):
        labels = np.asarray(self.labels, dtype=np.int64)
        stability = np.asarray(self.stability, dtype=np.float64)
        if labels.shape != (len(self.cell_ids),) or stability.shape != labels.shape:
            raise InputError(
                f"Assignment shape mismatch: {len(self.cell_ids)} cells, "
                f"labels {labels.shape}, stability {stability.shape}"
            )
        object.__setattr__(self, "labels", _frozen(labels))
        object.__setattr__(self, "stability", _frozen(stability))

    @property
    def cluster_ids(self) -> List[int]:
        """Sorted ids of assigned clusters (sentinel excluded)."""
        return sorted(int(k) for k in np.unique(self.labels) if k != UNASSIGNED)

    @property
    def n_clusters(self) -> int:
        return len(self.cluster_ids)

    @property
    def assigned_mask(self) -> np.ndarray:
        return self.labels != UNASSIGNED

    def members(self, cluster_id: int) -> np.ndarray:
        """Row indices of the cells carrying `cluster_id`."""
        return np.flatnonzero(self.labels == cluster_id)

    def to_series(self) -> pd.Series:
        return pd.Series(self.labels, index=self.cell_ids, name="cluster_label")


@dataclass(frozen=True, eq=False)
class Cluster:
    """One consensus cluster: centroid, members, stability index."""
    id: int
    centroid: np.ndarray
    member_index: np.ndarray
    member_ids: Tuple[str, ...]
    stability: float

    def __post_init__(self):
        object.__setattr__(self, "centroid", _frozen(np.asarray(self.centroid, dtype=np.float64)))
        object.__setattr__(self, "member_index", _frozen(np.asarray(self.member_index, dtype=np.int64)))

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclass(frozen=True, eq=False)
class ClusterSet:
    """Clusters of one consensus run, ordered by id."""
    clusters: Tuple[Cluster, ...]

    @classmethod
    def from_assignment(cls, embedding: Embedding, assignment: ClusterAssignment) -> "ClusterSet":
        """Compute centroids (member means) and stability indices."""
        clusters = []
        for cluster_id in assignment.cluster_ids:
            idx = assignment.members(cluster_id)
            clusters.append(Cluster(
                id=cluster_id,
                centroid=embedding.values[idx].mean(axis=0),
                member_index=idx,
                member_ids=tuple(embedding.cell_ids[idx]),
                stability=float(assignment.stability[idx].mean()),
            ))
        return cls(clusters=tuple(clusters))

    def __len__(self) -> int:
        return len(self.clusters)

    def __iter__(self):
        return iter(self.clusters)

    @property
    def ids(self) -> List[int]:
        return [c.id for c in self.clusters]

    @property
    def centroids(self) -> np.ndarray:
        """(n_clusters, n_dims) centroid matrix in id order."""
        if not self.clusters:
            return np.empty((0, 0))
        return np.stack([c.centroid for c in self.clusters])

    def get(self, cluster_id: int) -> Cluster:
        for c in self.clusters:
            if c.id == cluster_id:
                return c
        raise KeyError(f"No cluster with id {cluster_id}")


@dataclass(frozen=True, eq=False)
class CoClusterMatrix:
    """Pairwise co-occurrence and co-clustering counts over resampling draws.

    Built incrementally by the ensemble and discarded after consensus
    extraction. Counts are integers so that partial accumulators from
    parallel workers combine exactly, in any order.
    """
    co_occurrence: np.ndarray
    co_clustered: np.ndarray
    n_draws: int

    def __post_init__(self):
        object.__setattr__(self, "co_occurrence", _frozen(np.asarray(self.co_occurrence, dtype=np.int64)))
        object.__setattr__(self, "co_clustered", _frozen(np.asarray(self.co_clustered, dtype=np.int64)))

    @property
    def n_cells(self) -> int:
        return self.co_occurrence.shape[0]

    def frequency(self) -> np.ndarray:
        """Empirical co-clustering proportion; 0 for pairs never drawn together."""
        with np.errstate(divide="ignore", invalid="ignore"):
            freq = np.divide(
                self.co_clustered, self.co_occurrence,
                out=np.zeros(self.co_occurrence.shape, dtype=np.float64),
                where=self.co_occurrence > 0,
            )
        return freq

    def dissimilarity(self) -> np.ndarray:
        """1 - frequency; maximal (1) for pairs that never co-occurred."""
        dissim = 1.0 - self.frequency()
        dissim[self.co_occurrence == 0] = 1.0
        np.fill_diagonal(dissim, 0.0)
        return dissim

    def pac_score(self, lower: float = 0.1, upper: float = 0.9) -> float:
        """Proportion of ambiguous clustering among co-occurring pairs.

        Low values mean the draws mostly agree (pairs almost always or
        almost never together).
        """
        iu = np.triu_indices(self.n_cells, k=1)
        observed = self.co_occurrence[iu] > 0
        if not observed.any():
            return 1.0
        freq = self.frequency()[iu][observed]
        return float(((freq > lower) & (freq < upper)).mean())


@dataclass(frozen=True)
class Lineage:
    """Ordered cluster ids from the root to one leaf."""
    id: int
    clusters: Tuple[int, ...]

    def __iter__(self):
        return iter(self.clusters)

    def __len__(self) -> int:
        return len(self.clusters)

    def __contains__(self, cluster_id) -> bool:
        return cluster_id in self.clusters

    @property
    def root(self) -> int:
        return self.clusters[0]

    @property
    def leaf(self) -> int:
        return self.clusters[-1]


@dataclass(frozen=True, eq=False)
class LineageGraph:
    """Rooted minimum spanning tree over cluster centroids.

    Attributes
    ----------
    nodes : tuple of int
        Cluster ids.
    edges : tuple of (int, int, float)
        MST edges as (i, j, weight) with i < j, sorted.
    root : int
        Designated root cluster.
    children : dict
        Cluster id -> tuple of child ids (ascending) in the rooted tree.
    branch_points : tuple of int
        Clusters with two or more children.
    lineages : tuple of Lineage
        One per root-to-leaf path.
    """
    nodes: Tuple[int, ...]
    edges: Tuple[Tuple[int, int, float], ...]
    root: int
    children: Dict[int, Tuple[int, ...]]
    branch_points: Tuple[int, ...]
    lineages: Tuple[Lineage, ...]
    distance_metric: str = "euclidean"
    distances: Optional[np.ndarray] = field(default=None, repr=False)

    def degree(self, node: int) -> int:
        return sum(1 for i, j, _ in self.edges if node in (i, j))

    @property
    def parent(self) -> Dict[int, Optional[int]]:
        parents: Dict[int, Optional[int]] = {self.root: None}
        for p, kids in self.children.items():
            for k in kids:
                parents[k] = p
        return parents

    @property
    def leaves(self) -> Tuple[int, ...]:
        return tuple(lin.leaf for lin in self.lineages)

    def lineages_through(self, cluster_id: int) -> Tuple[int, ...]:
        """Ids of lineages whose cluster sequence contains `cluster_id`."""
        return tuple(lin.id for lin in self.lineages if cluster_id in lin)

    def to_dict(self) -> dict:
        """Plain-python view for downstream collaborators."""
        return {
            "nodes": list(self.nodes),
            "edges": [(int(i), int(j), float(w)) for i, j, w in self.edges],
            "root": int(self.root),
            "branch_points": list(self.branch_points),
            "lineages": {lin.id: list(lin.clusters) for lin in self.lineages},
            "distance_metric": self.distance_metric,
        }
