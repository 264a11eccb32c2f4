"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that processing code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import ConfigDict
from lintrace.schemas.base import LintraceBaseModel
from lintrace.schemas.param import BaseAlgorithm, ClusterMetric, GraphMetric, LogLevel


_FROZEN = ConfigDict(
    extra='forbid',
    validate_assignment=True,
    use_enum_values=True,
    str_strip_whitespace=True,
    frozen=True,  # Immutable after construction
)


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalClusteringConfig(LintraceBaseModel):
    """Runtime ensemble configuration.

    cut_height is always concrete here; resolve_config() fills it from
    stability_threshold when the user leaves it unset.
    """
    num_draws: int
    subsample_fraction: float
    k_range: tuple[int, ...]
    base_algorithm: BaseAlgorithm
    distance_metric: ClusterMetric
    stability_threshold: float
    cut_height: float
    min_cluster_size: int
    with_replacement: bool
    max_retries: int
    seed: int

    model_config = _FROZEN


class InternalLineageConfig(LintraceBaseModel):
    """Runtime lineage configuration."""
    root_cluster: Optional[int]
    root_candidates: Optional[tuple[int, ...]]
    end_clusters: tuple[int, ...]
    distance_metric: GraphMetric
    branch_sensitivity: float

    model_config = _FROZEN


class InternalCurveConfig(LintraceBaseModel):
    """Runtime curve configuration."""
    smoothing_bandwidth: float
    convergence_epsilon: float
    max_iterations: int
    soft_assignment: bool
    approx_points: int
    shrink: bool

    model_config = _FROZEN


class InternalRuntimeConfig(LintraceBaseModel):
    n_jobs: int

    model_config = _FROZEN


class InternalLoggingConfig(LintraceBaseModel):
    """Runtime logging configuration."""
    level: LogLevel

    model_config = _FROZEN


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(LintraceBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that processing code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters (no None for fields that runtime depends on).

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.num_draws = config.clustering.num_draws  # NOT .get()
            self.epsilon = config.curve.convergence_epsilon

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO type checking
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    clustering: InternalClusteringConfig
    lineage: InternalLineageConfig
    curve: InternalCurveConfig
    runtime: InternalRuntimeConfig
    logging: InternalLoggingConfig

    model_config = _FROZEN
