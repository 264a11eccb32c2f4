"""ParamConfig: Expert defaults for the lintrace core.

This module defines the complete default configuration. ALL tunable
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

The consensus heuristics (stability_threshold, cut_height,
min_cluster_size) live here too; no stage hard-codes them.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator, model_validator
from lintrace.schemas.base import LintraceBaseModel


BaseAlgorithm = Literal["kmeans", "minibatch_kmeans", "gaussian_mixture", "agglomerative"]
ClusterMetric = Literal["euclidean", "cosine"]
GraphMetric = Literal["euclidean", "sqeuclidean", "cityblock", "cosine", "chebyshev"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Nested Configuration Models
# =============================================================================

class ClusteringConfig(LintraceBaseModel):
    """Resampling cluster ensemble configuration."""
    num_draws: int = Field(100, ge=1, description="Number of resampling draws")
    subsample_fraction: float = Field(0.8, gt=0, le=1.0, description="Fraction of cells per draw")
    k_range: list[int] = Field(
        default_factory=lambda: [3, 4, 5, 6, 7, 8],
        description="Candidate cluster counts, one drawn uniformly per draw",
    )
    base_algorithm: BaseAlgorithm = "kmeans"
    distance_metric: ClusterMetric = "euclidean"
    stability_threshold: float = Field(0.6, ge=0, le=1.0)
    cut_height: Optional[float] = Field(
        None, ge=0, le=1.0,
        description="Consensus dendrogram cut; defaults to 1 - stability_threshold",
    )
    min_cluster_size: int = Field(5, ge=1)
    with_replacement: bool = False
    max_retries: int = Field(3, ge=0, description="Retries for a degenerate draw before skipping it")
    seed: int = Field(0, ge=0)

    @field_validator("base_algorithm", mode="before")
    @classmethod
    def normalize_algorithm_name(cls, v):
        """Normalize algorithm names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip().replace("-", "_")
        return v

    @field_validator("k_range", mode="before")
    @classmethod
    def coerce_k_range(cls, v):
        """Accept a single int or any iterable of ints (e.g. range(3, 9))."""
        if isinstance(v, int):
            return [v]
        if isinstance(v, (range, tuple, set)):
            return list(v)
        return v

    @field_validator("k_range")
    @classmethod
    def check_k_range(cls, v):
        if not v:
            raise ValueError("k_range must contain at least one cluster count")
        if min(v) < 2:
            raise ValueError(f"k_range values must be >= 2, got {min(v)}")
        return sorted(set(v))


class LineageConfig(LintraceBaseModel):
    """Cluster graph and lineage configuration."""
    root_cluster: Optional[int] = Field(None, ge=0)
    root_candidates: Optional[list[int]] = None
    end_clusters: list[int] = Field(default_factory=list, description="Known terminal clusters")
    distance_metric: GraphMetric = "euclidean"
    branch_sensitivity: float = Field(
        1.0, ge=0,
        description="Exponent on inverse squared residuals when splitting branch membership",
    )

    @model_validator(mode="after")
    def check_root_choice(self):
        """Root may be given as a single id or as a candidate set, not both."""
        if self.root_cluster is not None and self.root_candidates is not None:
            raise ValueError("Specify either root_cluster or root_candidates, not both")
        if self.root_candidates is not None and len(self.root_candidates) == 0:
            raise ValueError("root_candidates must not be empty")
        if self.root_cluster is not None and self.root_cluster in self.end_clusters:
            raise ValueError(f"root_cluster {self.root_cluster} is also listed in end_clusters")
        return self


class CurveConfig(LintraceBaseModel):
    """Principal curve / pseudotime configuration."""
    smoothing_bandwidth: float = Field(
        0.25, gt=0, le=1.0,
        description="Kernel bandwidth as a fraction of each lineage's arc-length range",
    )
    convergence_epsilon: float = Field(
        1e-3, gt=0,
        description="Mean squared pseudotime change per (cell, lineage) pair below which curves stop",
    )
    max_iterations: int = Field(30, ge=1)
    soft_assignment: bool = True
    approx_points: int = Field(100, ge=2, description="Points per fitted curve")
    shrink: bool = Field(True, description="Pull curves together over shared prefixes")

    @field_validator("convergence_epsilon", "smoothing_bandwidth", mode="before")
    @classmethod
    def coerce_to_float(cls, v):
        """Allow int or float."""
        return float(v)


class RuntimeConfig(LintraceBaseModel):
    """Execution settings."""
    n_jobs: int = Field(1, ge=1, description="Worker threads for draws and curve refits")


class LoggingConfig(LintraceBaseModel):
    """Logging configuration."""
    level: LogLevel = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(LintraceBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg)

    Runtime code only sees InternalConfig.
    """

    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    lineage: LineageConfig = Field(default_factory=LineageConfig)
    curve: CurveConfig = Field(default_factory=CurveConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
