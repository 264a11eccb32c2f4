"""Resampling cluster ensemble.

Runs a base clusterer on many random subsamples of the cells and records,
for every pair, how often it was drawn together and how often it was
clustered together. A deterministic consensus is extracted from those
counts.

Each draw owns a child of one ``SeedSequence(seed)``, so the draws are
independent of which worker thread runs them. Workers accumulate into their
own integer matrices and the partial sums are added at the end: the result
is bit-identical for any number of workers.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from lintrace.clustering.base_clusterers import get_base_clusterer
from lintrace.clustering.consensus import extract_consensus
from lintrace.contracts.base import require
from lintrace.contracts.failure import ConfigError, NumericalInstability
from lintrace.core.cancellation import CancellationToken, is_cancelled
from lintrace.core.records import (
    ClusterAssignment,
    ClusterSet,
    CoClusterMatrix,
    Embedding,
    RunStatus,
)
from lintrace.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ["DrawStats", "ConsensusResult", "ResamplingClusterEnsemble"]

# Errors a base clusterer may raise on a degenerate subsample
_DEGENERATE = (ValueError, FloatingPointError, np.linalg.LinAlgError, NumericalInstability)


@dataclass
class DrawStats:
    """Bookkeeping over all resampling draws."""
    requested: int = 0
    completed: int = 0
    skipped: int = 0
    retries: int = 0
    k_counts: Dict[int, int] = field(default_factory=dict)

    def merge(self, other: "DrawStats") -> "DrawStats":
        k_counts = dict(self.k_counts)
        for k, c in other.k_counts.items():
            k_counts[k] = k_counts.get(k, 0) + c
        return DrawStats(
            requested=self.requested + other.requested,
            completed=self.completed + other.completed,
            skipped=self.skipped + other.skipped,
            retries=self.retries + other.retries,
            k_counts=dict(sorted(k_counts.items())),
        )


@dataclass(frozen=True, eq=False)
class ConsensusResult:
    """Output of the ensemble: consensus labels, clusters and diagnostics.

    Attributes
    ----------
    assignment : ClusterAssignment
        Per-cell label (or -1) and stability.
    clusters : ClusterSet
        Centroids and members of the surviving clusters.
    stats : DrawStats
        Draw counts, retries and the k used per draw.
    pac_score : float
        Proportion of ambiguous clustering among co-occurring pairs.
        Lower is more stable.
    n_rejected : int
        Groups dropped by the size or stability filter.
    status : RunStatus
        CANCELLED when the draws were interrupted.
    """
    assignment: ClusterAssignment
    clusters: ClusterSet
    stats: DrawStats
    pac_score: float
    n_rejected: int = 0
    status: RunStatus = RunStatus.COMPLETED


class ResamplingClusterEnsemble:
    """Consensus clustering over random subsamples.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.clustering`` and ``config.runtime.n_jobs``.
    base_clusterer : callable, optional
        ``fn(X, k, random_state) -> labels``. Overrides
        ``config.clustering.base_algorithm`` when given.

    Examples
    --------
    >>> ensemble = ResamplingClusterEnsemble(config)
    >>> result = ensemble.run(embedding)
    >>> result.assignment.n_clusters
    3
    """

    def __init__(self, config: InternalConfig, base_clusterer: Optional[Callable] = None):
        self.config = config
        self.cfg = config.clustering
        self.n_jobs = config.runtime.n_jobs
        algorithm: Union[str, Callable] = base_clusterer if base_clusterer is not None else self.cfg.base_algorithm
        self._cluster = get_base_clusterer(algorithm, self.cfg.distance_metric)

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def subsample_size(self, n_cells: int) -> int:
        return int(math.ceil(self.cfg.subsample_fraction * n_cells))

    def _check_viable(self, n_cells: int) -> int:
        m = self.subsample_size(n_cells)
        needed = max(self.cfg.min_cluster_size, max(self.cfg.k_range))
        require(
            m >= needed,
            f"Subsample of {m} cells ({self.cfg.subsample_fraction:.2f} x {n_cells}) is smaller "
            f"than max(min_cluster_size={self.cfg.min_cluster_size}, max(k_range)={max(self.cfg.k_range)})",
            ConfigError,
        )
        return m

    # ------------------------------------------------------------------
    # Draws
    # ------------------------------------------------------------------

    def _draw(self, X: np.ndarray, m: int, seed_seq: np.random.SeedSequence,
              stats: DrawStats) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """One draw with retries. Returns (unique cell rows, labels) or None if skipped."""
        rng = np.random.default_rng(seed_seq)
        n = X.shape[0]
        for attempt in range(self.cfg.max_retries + 1):
            if attempt:
                stats.retries += 1
            idx = rng.choice(n, size=m, replace=self.cfg.with_replacement)
            k = int(rng.choice(self.cfg.k_range))
            random_state = int(rng.integers(0, 2**31 - 1))
            try:
                labels = np.asarray(self._cluster(X[idx], k, random_state))
            except _DEGENERATE as exc:
                logger.debug("Draw attempt %d (k=%d) failed: %s", attempt, k, exc)
                continue

            if labels.shape != (m,) or labels.dtype.kind not in "iuf":
                logger.debug("Draw attempt %d (k=%d) returned malformed labels %s",
                             attempt, k, labels.shape)
                continue
            if labels.dtype.kind == "f":
                if not np.isfinite(labels).all() or not np.equal(np.mod(labels, 1), 0).all():
                    logger.debug("Draw attempt %d (k=%d) returned non-integer labels", attempt, k)
                    continue
                labels = labels.astype(np.int64)

            # duplicates from sampling with replacement collapse to one presence
            rows, first = np.unique(idx, return_index=True)
            stats.k_counts[k] = stats.k_counts.get(k, 0) + 1
            return rows, labels[first]
        return None

    def _work(self, X: np.ndarray, m: int, seeds: List[np.random.SeedSequence],
              cancel: Optional[CancellationToken]) -> Tuple[np.ndarray, np.ndarray, DrawStats, bool]:
        n = X.shape[0]
        occ = np.zeros((n, n), dtype=np.int64)
        clu = np.zeros((n, n), dtype=np.int64)
        stats = DrawStats()
        interrupted = False
        for seed_seq in seeds:
            if is_cancelled(cancel):
                interrupted = True
                break
            stats.requested += 1
            drawn = self._draw(X, m, seed_seq, stats)
            if drawn is None:
                stats.skipped += 1
                logger.warning(
                    "Skipping draw %s after %d failed attempts",
                    seed_seq.spawn_key, self.cfg.max_retries + 1,
                )
                continue
            rows, labels = drawn
            block = np.ix_(rows, rows)
            occ[block] += 1
            _, codes = np.unique(labels, return_inverse=True)
            onehot = np.zeros((rows.size, codes.max() + 1), dtype=np.int64)
            onehot[np.arange(rows.size), codes] = 1
            clu[block] += onehot @ onehot.T
            stats.completed += 1
        return occ, clu, stats, interrupted

    def accumulate(self, embedding: Embedding,
                   cancel: Optional[CancellationToken] = None) -> Tuple[CoClusterMatrix, DrawStats, RunStatus]:
        """Run all draws and return the co-clustering counts.

        Raises
        ------
        ConfigError
            If the subsample cannot hold the largest k or a minimal cluster.
        NumericalInstability
            If every draw was skipped.
        """
        X = embedding.values
        n = X.shape[0]
        m = self._check_viable(n)
        seeds = np.random.SeedSequence(self.cfg.seed).spawn(self.cfg.num_draws)

        n_workers = max(1, min(self.n_jobs, len(seeds)))
        logger.info(
            "Ensemble: %d draws of %d/%d cells, k in %s, %s, %d worker(s)",
            self.cfg.num_draws, m, n, list(self.cfg.k_range), getattr(self._cluster, "__name__", "custom"),
            n_workers,
        )

        if n_workers == 1:
            partials = [self._work(X, m, seeds, cancel)]
        else:
            chunks = [list(c) for c in np.array_split(np.arange(len(seeds)), n_workers)]
            with ThreadPoolExecutor(max_workers=n_workers, thread_name_prefix="lintrace-draw") as pool:
                futures = [
                    pool.submit(self._work, X, m, [seeds[i] for i in chunk], cancel)
                    for chunk in chunks
                ]
                partials = [f.result() for f in futures]

        occ = np.zeros((n, n), dtype=np.int64)
        clu = np.zeros((n, n), dtype=np.int64)
        stats = DrawStats()
        interrupted = False
        for p_occ, p_clu, p_stats, p_interrupted in partials:
            occ += p_occ
            clu += p_clu
            stats = stats.merge(p_stats)
            interrupted = interrupted or p_interrupted

        status = RunStatus.CANCELLED if interrupted else RunStatus.COMPLETED
        if stats.completed == 0 and status is RunStatus.COMPLETED:
            raise NumericalInstability(
                f"All {stats.requested} resampling draws failed after "
                f"{self.cfg.max_retries} retries each"
            )
        if stats.skipped:
            logger.warning("Ensemble skipped %d/%d draws", stats.skipped, stats.requested)
        if status is RunStatus.CANCELLED:
            logger.warning("Ensemble cancelled after %d/%d draws", stats.completed, self.cfg.num_draws)
        logger.debug("Draws per k: %s, retries: %d", stats.k_counts, stats.retries)

        return CoClusterMatrix(co_occurrence=occ, co_clustered=clu, n_draws=stats.completed), stats, status

    # ------------------------------------------------------------------
    # Consensus
    # ------------------------------------------------------------------

    def consensus(self, embedding: Embedding, matrix: CoClusterMatrix,
                  stats: Optional[DrawStats] = None,
                  status: RunStatus = RunStatus.COMPLETED) -> ConsensusResult:
        """Extract consensus labels and clusters from accumulated counts."""
        assignment, n_rejected = extract_consensus(
            matrix,
            embedding.cell_ids,
            cut_height=self.cfg.cut_height,
            stability_threshold=self.cfg.stability_threshold,
            min_cluster_size=self.cfg.min_cluster_size,
        )
        pac = matrix.pac_score()
        logger.info("PAC score: %.3f over %d draws", pac, matrix.n_draws)
        return ConsensusResult(
            assignment=assignment,
            clusters=ClusterSet.from_assignment(embedding, assignment),
            stats=stats if stats is not None else DrawStats(completed=matrix.n_draws),
            pac_score=pac,
            n_rejected=n_rejected,
            status=status,
        )

    def run(self, embedding: Embedding, cancel: Optional[CancellationToken] = None) -> ConsensusResult:
        """Accumulate draws, extract consensus, discard the matrix."""
        matrix, stats, status = self.accumulate(embedding, cancel=cancel)
        result = self.consensus(embedding, matrix, stats=stats, status=status)
        del matrix
        return result
