"""Simultaneous principal curves and pseudotime.

One curve per lineage is initialized through the lineage's cluster
centroids and then alternately refit to its cells and re-projected. Cells
in clusters shared by several lineages carry soft (or hard) membership
weights derived from their distances to each curve.

Each iteration:

1. refit every lineage curve to its weighted cells (in parallel when
   ``runtime.n_jobs > 1``),
2. shrink curves toward their average over the cells they share,
3. project candidate cells onto every new curve,
4. recompute branch weights from the residuals,
5. shift pseudotime to start at zero and average it over shared cells,
6. stop once the summed squared pseudotime change is below epsilon times
   the number of (cell, lineage) pairs present in either iteration.
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
import xarray as xr

from lintrace.contracts.base import require
from lintrace.contracts.failure import ConvergenceWarning, InputError
from lintrace.core.cancellation import CancellationToken, is_cancelled
from lintrace.core.records import ClusterAssignment, ClusterSet, Embedding, LineageGraph, RunStatus
from lintrace.curves.principal_curve import PrincipalCurve
from lintrace.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ["PseudotimeEngine", "PseudotimeResult"]

_RESID_FLOOR = 1e-12


@dataclass(frozen=True, eq=False)
class PseudotimeResult:
    """Curves, pseudotime and membership weights for every (cell, lineage).

    Attributes
    ----------
    record : xr.Dataset
        dims (cell, lineage); variables ``pseudotime``, ``weight``, ``present``.
        Absent pairs have weight 0 and NaN pseudotime.
    curves : tuple of PrincipalCurve
        Final curve per lineage, in lineage id order.
    iterations : int
        Refit iterations performed.
    converged : bool
    displacement : tuple of float
        Summed squared pseudotime change after each iteration.
    warnings : tuple of str
        Non-fatal conditions (non-convergence) encountered during the fit.
    status : RunStatus
    """
    record: xr.Dataset
    curves: Tuple[PrincipalCurve, ...]
    iterations: int
    converged: bool
    displacement: Tuple[float, ...] = ()
    warnings: Tuple[str, ...] = ()
    status: RunStatus = RunStatus.COMPLETED

    @property
    def pseudotime(self) -> np.ndarray:
        return self.record["pseudotime"].values

    @property
    def weights(self) -> np.ndarray:
        return self.record["weight"].values

    @property
    def present(self) -> np.ndarray:
        return self.record["present"].values


@dataclass
class _State:
    curves: List[PrincipalCurve]
    arc: np.ndarray
    resid: np.ndarray
    weight: np.ndarray
    fit_weight: np.ndarray
    pseudotime: np.ndarray
    present: np.ndarray
    history: List[float] = field(default_factory=list)


class PseudotimeEngine:
    """Fit lineage curves and assign pseudotime.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.curve``, ``config.lineage.branch_sensitivity`` and
        ``config.runtime.n_jobs``.
    """

    def __init__(self, config: InternalConfig):
        self.cfg = config.curve
        self.branch_sensitivity = config.lineage.branch_sensitivity
        self.n_jobs = config.runtime.n_jobs

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    @staticmethod
    def candidate_matrix(assignment: ClusterAssignment, graph: LineageGraph) -> np.ndarray:
        """(n_cells, n_lineages) bool: cell's cluster lies on the lineage.

        Unassigned cells are candidates for nothing.
        """
        labels = assignment.labels
        cand = np.zeros((labels.size, len(graph.lineages)), dtype=bool)
        for lin in graph.lineages:
            cand[:, lin.id] = np.isin(labels, lin.clusters)
        return cand

    def _initial_curves(self, embedding: Embedding, assignment: ClusterAssignment,
                        clusters: ClusterSet, graph: LineageGraph) -> List[PrincipalCurve]:
        curves = []
        for lin in graph.lineages:
            if len(lin) == 1:
                members = assignment.members(lin.root)
                curves.append(PrincipalCurve.from_principal_axis(embedding.values[members], self.cfg.approx_points))
            else:
                centroids = np.stack([clusters.get(c).centroid for c in lin.clusters])
                curves.append(PrincipalCurve.from_centroids(centroids, self.cfg.approx_points))
        return curves

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _project(self, X: np.ndarray, curves: List[PrincipalCurve],
                 cand: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        arc = np.full(cand.shape, np.nan)
        resid = np.full(cand.shape, np.inf)
        for lid, curve in enumerate(curves):
            rows = np.flatnonzero(cand[:, lid])
            if rows.size:
                arc[rows, lid], resid[rows, lid] = curve.project(X[rows])
        return arc, resid

    def _weights(self, resid: np.ndarray, cand: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Membership weights and curve-fitting weights.

        Soft weights are proportional to (1 / residual^2) ** branch_sensitivity
        over each cell's candidate lineages. Fitting weights rescale the soft
        weights so each cell's best lineage gets 1.
        """
        n_cand = cand.sum(axis=1)
        log_w = np.where(cand, -self.branch_sensitivity * np.log(np.maximum(resid, _RESID_FLOOR)), -np.inf)
        row_max = np.max(log_w, axis=1, keepdims=True)
        row_max = np.where(np.isfinite(row_max), row_max, 0.0)
        rel = np.where(cand, np.exp(log_w - row_max), 0.0)
        totals = rel.sum(axis=1, keepdims=True)
        soft = np.divide(rel, totals, out=np.zeros_like(rel), where=totals > 0)

        if self.cfg.soft_assignment:
            weight = soft
        else:
            weight = np.zeros_like(soft)
            rows = np.flatnonzero(n_cand > 0)
            # argmax returns the first maximum, i.e. the lowest lineage id
            best = np.argmax(np.where(cand[rows], -resid[rows], -np.inf), axis=1)
            weight[rows, best] = 1.0
        return weight, rel

    def _normalize(self, arc: np.ndarray, weight: np.ndarray,
                   cand: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Shift arc length to start at 0 and average it over shared cells.

        The shift of each lineage is taken over all its candidate cells, not
        only the ones it currently holds, so in hard mode a lineage that
        lost the first root cells still starts at the root end.
        """
        present = weight > 0
        pt = np.full(arc.shape, np.nan)
        for lid in range(arc.shape[1]):
            rows = present[:, lid]
            if rows.any():
                pt[rows, lid] = arc[rows, lid] - arc[cand[:, lid], lid].min()

        shared = present.sum(axis=1) > 1
        if shared.any():
            w = np.where(present[shared], weight[shared], 0.0)
            avg = np.nansum(np.where(present[shared], pt[shared], 0.0) * w, axis=1) / w.sum(axis=1)
            pt[shared] = np.where(present[shared], avg[:, None], np.nan)
        return pt, present

    def _tolerance(self, pairs: np.ndarray) -> float:
        """Convergence threshold: epsilon per (cell, lineage) pair involved."""
        return self.cfg.convergence_epsilon * max(int(pairs.sum()), 1)

    def _refit(self, X: np.ndarray, state: _State) -> List[PrincipalCurve]:
        def fit_one(lid: int) -> PrincipalCurve:
            w = state.fit_weight[:, lid]
            rows = np.flatnonzero(w > 0)
            return state.curves[lid].refit(
                X[rows], state.arc[rows, lid], w[rows],
                bandwidth=self.cfg.smoothing_bandwidth,
                approx_points=self.cfg.approx_points,
            )

        lineage_ids = range(len(state.curves))
        if self.n_jobs > 1 and len(state.curves) > 1:
            with ThreadPoolExecutor(max_workers=min(self.n_jobs, len(state.curves)),
                                    thread_name_prefix="lintrace-curve") as pool:
                return list(pool.map(fit_one, lineage_ids))
        return [fit_one(lid) for lid in lineage_ids]

    @staticmethod
    def _depth(graph: LineageGraph) -> Dict[int, int]:
        depth = {graph.root: 0}
        stack = [graph.root]
        while stack:
            node = stack.pop()
            for kid in graph.children.get(node, ()):
                depth[kid] = depth[node] + 1
                stack.append(kid)
        return depth

    def _shrink(self, curves: List[PrincipalCurve], state: _State, assignment: ClusterAssignment,
                graph: LineageGraph) -> List[PrincipalCurve]:
        """Pull curves sharing a branch point toward their average before it.

        Branch points are handled from the leaves toward the root. The pull
        on a curve point at arc length s is the fraction of shared cells
        lying beyond s: full strength at the root end, none past the branch.
        """
        depth = self._depth(graph)
        parent = graph.parent
        curves = list(curves)
        for bp in sorted(graph.branch_points, key=lambda c: (-depth[c], c)):
            lids = graph.lineages_through(bp)
            if len(lids) < 2:
                continue
            prefix = []
            node = bp
            while node is not None:
                prefix.append(node)
                node = parent[node]
            shared_rows = np.flatnonzero(np.isin(assignment.labels, prefix))
            if shared_rows.size == 0:
                continue

            new = {}
            for lid in lids:
                curve = curves[lid]
                shared_arc = np.sort(state.arc[shared_rows, lid])
                shared_arc = shared_arc[np.isfinite(shared_arc)]
                if shared_arc.size == 0:
                    continue
                s = curve.arc_length
                avg = np.mean([curves[o].point_at(s) for o in lids], axis=0)
                pull = 1.0 - np.searchsorted(shared_arc, s, side="left") / shared_arc.size
                new[lid] = PrincipalCurve((1.0 - pull)[:, None] * curve.points + pull[:, None] * avg)
            for lid, curve in new.items():
                curves[lid] = curve
            logger.debug("Shrunk lineages %s toward their average before branch point %d", list(lids), bp)
        return curves

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fit(self, embedding: Embedding, assignment: ClusterAssignment, clusters: ClusterSet,
            graph: LineageGraph, cancel: Optional[CancellationToken] = None) -> PseudotimeResult:
        """Fit curves and compute pseudotime.

        Always returns within ``max_iterations`` refits. Failing to reach
        ``convergence_epsilon`` issues a ConvergenceWarning and returns the
        current estimate; cancellation returns it with status CANCELLED.

        Raises
        ------
        InputError
            If the assignment does not match the embedding's cells.
        """
        require(
            assignment.labels.shape[0] == embedding.n_cells,
            f"Assignment has {assignment.labels.shape[0]} cells, embedding has {embedding.n_cells}",
            InputError,
        )
        X = embedding.values
        cand = self.candidate_matrix(assignment, graph)
        curves = self._initial_curves(embedding, assignment, clusters, graph)

        arc, resid = self._project(X, curves, cand)
        weight, fit_weight = self._weights(resid, cand)
        pt, present = self._normalize(arc, weight, cand)
        state = _State(curves, arc, resid, weight, fit_weight, pt, present)

        logger.info(
            "Fitting %d lineage curve(s) over %d cells (%s weights, epsilon=%g, max %d iterations)",
            len(curves), int(cand.any(axis=1).sum()),
            "soft" if self.cfg.soft_assignment else "hard",
            self.cfg.convergence_epsilon, self.cfg.max_iterations,
        )

        status = RunStatus.COMPLETED
        converged = False
        iterations = 0
        for iteration in range(1, self.cfg.max_iterations + 1):
            if is_cancelled(cancel):
                status = RunStatus.CANCELLED
                logger.warning("Curve fitting cancelled after %d iteration(s)", iterations)
                break

            curves = self._refit(X, state)
            if self.cfg.shrink and graph.branch_points:
                curves = self._shrink(curves, state, assignment, graph)
            arc, resid = self._project(X, curves, cand)
            weight, fit_weight = self._weights(resid, cand)
            pt, present = self._normalize(arc, weight, cand)

            both = present & state.present
            displacement = float(np.sum((pt[both] - state.pseudotime[both]) ** 2))
            # pairs entering or leaving a lineage count as a full move
            moved = present ^ state.present
            if moved.any():
                displacement += float(np.sum(np.nan_to_num(np.where(present, pt, state.pseudotime)[moved]) ** 2))

            tolerance = self._tolerance(present | state.present)
            state = _State(curves, arc, resid, weight, fit_weight, pt, present,
                           history=state.history + [displacement])
            iterations = iteration
            logger.debug("Iteration %d: displacement %.6g", iteration, displacement)

            if displacement < tolerance:
                converged = True
                break

        notes: List[str] = []
        if not converged and status is RunStatus.COMPLETED:
            last = state.history[-1] if state.history else float("nan")
            message = (
                f"Principal curves did not converge in {self.cfg.max_iterations} iterations "
                f"(displacement {last:.4g} >= tolerance {tolerance:.4g}, "
                f"epsilon {self.cfg.convergence_epsilon:g} per cell-lineage pair)"
            )
            notes.append(message)
            logger.warning(message)
            warnings.warn(message, ConvergenceWarning, stacklevel=2)
        elif converged:
            logger.info("Curves converged after %d iteration(s)", iterations)

        return PseudotimeResult(
            record=self._to_dataset(embedding, graph, state, converged, iterations),
            curves=tuple(state.curves),
            iterations=iterations,
            converged=converged,
            displacement=tuple(state.history),
            warnings=tuple(notes),
            status=status,
        )

    @staticmethod
    def _to_dataset(embedding: Embedding, graph: LineageGraph, state: _State,
                    converged: bool, iterations: int) -> xr.Dataset:
        coords = {
            "cell": np.asarray(embedding.cell_ids, dtype=object),
            "lineage": np.array([lin.id for lin in graph.lineages], dtype=np.int64),
        }
        dims = ("cell", "lineage")
        return xr.Dataset(
            data_vars={
                "pseudotime": (dims, np.where(state.present, state.pseudotime, np.nan)),
                "weight": (dims, np.where(state.present, state.weight, 0.0)),
                "present": (dims, state.present.copy()),
            },
            coords=coords,
            attrs={
                "converged": int(converged),
                "iterations": iterations,
                "root": int(graph.root),
            },
        )
