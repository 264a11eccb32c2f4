"""Polyline principal curve parameterized by arc length.

A curve is an ordered set of points in embedding space. Cells are placed on
it by orthogonal projection onto the nearest segment; the arc length at the
foot of that projection is the cell's raw pseudotime. Each refit produces a
new curve instance; curves are never modified in place.
"""

import logging
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

__all__ = ["PrincipalCurve"]

# cells per projection block (bounds the cells x segments x dims buffer)
_CHUNK = 2048


class PrincipalCurve:
    """Ordered points through embedding space.

    Parameters
    ----------
    points : np.ndarray
        (n_points, n_dims) curve vertices, start first.
    """

    def __init__(self, points: np.ndarray):
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[0] < 1:
            raise ValueError(f"Curve needs a (n_points, n_dims) array, got shape {points.shape}")
        if points.shape[0] == 1:
            points = np.vstack([points, points])
        self.points = points
        seg = np.linalg.norm(np.diff(points, axis=0), axis=1)
        self.arc_length = np.concatenate([[0.0], np.cumsum(seg)])

    def __repr__(self) -> str:
        return f"PrincipalCurve(n_points={len(self.points)}, length={self.length:.4g})"

    @property
    def length(self) -> float:
        return float(self.arc_length[-1])

    @property
    def n_dims(self) -> int:
        return self.points.shape[1]

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_centroids(cls, centroids: np.ndarray, approx_points: int) -> "PrincipalCurve":
        """Piecewise-linear curve through ordered centroids, resampled evenly by arc length."""
        skeleton = cls(centroids)
        if skeleton.length <= 0.0:
            return cls(np.repeat(skeleton.points[:1], approx_points, axis=0))
        grid = np.linspace(0.0, skeleton.length, approx_points)
        return cls(skeleton.point_at(grid))

    @classmethod
    def from_principal_axis(cls, X: np.ndarray, approx_points: int) -> "PrincipalCurve":
        """Segment through the mean of `X` along its first principal axis.

        Used for a lineage with a single cluster. Spans the range of the
        projections onto the axis; collapses to a point for identical rows.
        """
        center = X.mean(axis=0)
        centered = X - center
        if X.shape[0] < 2 or not np.any(centered):
            return cls(np.repeat(center[None, :], approx_points, axis=0))
        _, _, vt = np.linalg.svd(centered, full_matrices=False)
        axis = vt[0]
        proj = centered @ axis
        ends = np.vstack([center + proj.min() * axis, center + proj.max() * axis])
        return cls.from_centroids(ends, approx_points)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def point_at(self, s: np.ndarray) -> np.ndarray:
        """Points at arc lengths `s`, clamped to the curve ends."""
        s = np.atleast_1d(np.asarray(s, dtype=np.float64))
        if self.length <= 0.0:
            return np.repeat(self.points[:1], s.size, axis=0)
        return np.column_stack([
            np.interp(s, self.arc_length, self.points[:, dim]) for dim in range(self.n_dims)
        ])

    def project(self, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Orthogonal projection of rows of `X` onto the polyline.

        Returns
        -------
        arc : np.ndarray
            Arc length of each projection foot, in [0, length].
        residual_sq : np.ndarray
            Squared distance from each row to its projection.
        """
        X = np.asarray(X, dtype=np.float64)
        n = X.shape[0]
        arc = np.zeros(n)
        resid = np.zeros(n)
        if n == 0:
            return arc, resid

        a = self.points[:-1]
        d = np.diff(self.points, axis=0)
        seg_len_sq = np.einsum("ij,ij->i", d, d)
        seg_len = np.sqrt(seg_len_sq)
        safe = np.where(seg_len_sq > 0, seg_len_sq, 1.0)

        for start in range(0, n, _CHUNK):
            block = X[start:start + _CHUNK]
            rel = block[:, None, :] - a[None, :, :]
            t = np.einsum("csd,sd->cs", rel, d) / safe
            t = np.where(seg_len_sq > 0, np.clip(t, 0.0, 1.0), 0.0)
            foot = a[None, :, :] + t[:, :, None] * d[None, :, :]
            dist_sq = np.sum((block[:, None, :] - foot) ** 2, axis=2)
            best = np.argmin(dist_sq, axis=1)
            rows = np.arange(block.shape[0])
            arc[start:start + block.shape[0]] = self.arc_length[best] + t[rows, best] * seg_len[best]
            resid[start:start + block.shape[0]] = dist_sq[rows, best]
        return arc, resid

    # ------------------------------------------------------------------
    # Smoothing
    # ------------------------------------------------------------------

    def refit(self, X: np.ndarray, arc: np.ndarray, weights: np.ndarray,
              bandwidth: float, approx_points: Optional[int] = None) -> "PrincipalCurve":
        """Gaussian-kernel local-linear regression of coordinates on arc length.

        Parameters
        ----------
        X : np.ndarray
            (n, d) cell coordinates.
        arc : np.ndarray
            Arc length of each cell on the current curve.
        weights : np.ndarray
            Non-negative fitting weight per cell; zero-weight cells are ignored.
        bandwidth : float
            Kernel width as a fraction of the weighted arc-length range.
        approx_points : int, optional
            Points on the new curve (default: as many as this one).

        Returns
        -------
        PrincipalCurve
            The smoothed curve, or ``self`` when the data cannot support a
            fit (fewer than two weighted cells or a zero arc-length range).

        Notes
        -----
        Where the local-linear system is ill-conditioned the estimate falls
        back to the Nadaraya-Watson (locally constant) mean.
        """
        n_out = approx_points or len(self.points)
        keep = weights > 0
        if keep.sum() < 2:
            return self
        Xk, sk, wk = X[keep], arc[keep], weights[keep]
        lo, hi = float(sk.min()), float(sk.max())
        span = hi - lo
        if span <= 1e-12:
            return self

        h = bandwidth * span
        grid = np.linspace(lo, hi, n_out)
        diff = sk[None, :] - grid[:, None]
        K = wk[None, :] * np.exp(-0.5 * (diff / h) ** 2)
        S0 = K.sum(axis=1)
        S1 = (K * diff).sum(axis=1)
        S2 = (K * diff ** 2).sum(axis=1)

        valid = S0 > 1e-300
        if valid.sum() < 2:
            return self
        K, diff, S0, S1, S2 = K[valid], diff[valid], S0[valid], S1[valid], S2[valid]

        denom = S0 * S2 - S1 ** 2
        local_linear = denom > 1e-10 * S0 ** 2
        W = np.where(
            local_linear[:, None],
            K * (S2[:, None] - diff * S1[:, None]) / np.where(local_linear, denom, 1.0)[:, None],
            K / S0[:, None],
        )
        points = W @ Xk
        if not np.isfinite(points).all():
            logger.debug("Refit produced non-finite points; keeping previous curve")
            return self
        return PrincipalCurve(points)
