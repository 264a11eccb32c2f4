"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., NUM_DRAWS → clustering.num_draws,
ROOT_CLUSTER → lineage.root_cluster).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected, etc.
"""

from typing import Optional, Any
from pydantic import Field, field_validator
from lintrace.schemas.base import LintraceBaseModel


class UserClusteringConfig(LintraceBaseModel):
    """User-facing clustering config."""
    num_draws: Optional[int] = None
    subsample_fraction: Optional[float] = None
    k_range: Optional[Any] = None
    base_algorithm: Optional[str] = None
    distance_metric: Optional[str] = None
    stability_threshold: Optional[float] = None
    cut_height: Optional[float] = None
    min_cluster_size: Optional[int] = None
    with_replacement: Optional[bool] = None
    max_retries: Optional[int] = None
    seed: Optional[int] = None

    @field_validator("base_algorithm", "distance_metric", mode="before")
    @classmethod
    def normalize_names(cls, v):
        """Normalize method names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v


class UserLineageConfig(LintraceBaseModel):
    """User-facing lineage config."""
    root_cluster: Optional[int] = None
    root_candidates: Optional[list[int]] = None
    end_clusters: Optional[list[int]] = None
    distance_metric: Optional[str] = None
    branch_sensitivity: Optional[float] = None


class UserCurveConfig(LintraceBaseModel):
    """User-facing curve config."""
    smoothing_bandwidth: Optional[float] = None
    convergence_epsilon: Optional[float] = None
    max_iterations: Optional[int] = None
    soft_assignment: Optional[bool] = None
    approx_points: Optional[int] = None
    shrink: Optional[bool] = None


class UserConfig(LintraceBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig(
            NUM_DRAWS=200,
            K_RANGE=range(4, 12),
            ROOT_CLUSTER=0,
            SOFT_ASSIGNMENT=False,
        )

        internal = resolve_config(param_cfg, user_cfg)
    """

    # Ensemble settings (flat aliases)
    num_draws: Optional[int] = Field(None, alias="NUM_DRAWS")
    subsample_fraction: Optional[float] = Field(None, alias="SUBSAMPLE_FRACTION")
    k_range: Optional[Any] = Field(None, alias="K_RANGE")
    base_algorithm: Optional[str] = Field(None, alias="BASE_ALGORITHM")
    stability_threshold: Optional[float] = Field(None, alias="STABILITY_THRESHOLD")
    min_cluster_size: Optional[int] = Field(None, alias="MIN_CLUSTER_SIZE")
    seed: Optional[int] = Field(None, alias="SEED")

    # Lineage settings (flat aliases)
    root_cluster: Optional[int] = Field(None, alias="ROOT_CLUSTER")
    end_clusters: Optional[list[int]] = Field(None, alias="END_CLUSTERS")

    # Curve settings (flat aliases)
    smoothing_bandwidth: Optional[float] = Field(None, alias="SMOOTHING_BANDWIDTH")
    convergence_epsilon: Optional[float] = Field(None, alias="CONVERGENCE_EPSILON")
    max_iterations: Optional[int] = Field(None, alias="MAX_ITERATIONS")
    soft_assignment: Optional[bool] = Field(None, alias="SOFT_ASSIGNMENT")

    # Runtime
    n_jobs: Optional[int] = Field(None, alias="N_JOBS")
    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")

    # Nested overrides (advanced users)
    clustering: Optional[UserClusteringConfig] = None
    lineage: Optional[UserLineageConfig] = None
    curve: Optional[UserCurveConfig] = None

    model_config = LintraceBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator(
        "subsample_fraction", "stability_threshold", "smoothing_bandwidth",
        "convergence_epsilon", mode="before",
    )
    @classmethod
    def coerce_numeric_fields(cls, v):
        """Accept int or float for numeric fields."""
        if v is not None:
            return float(v)
        return v

    @field_validator("base_algorithm", mode="before")
    @classmethod
    def normalize_method_names(cls, v):
        """Normalize method names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Explicit nested sections win over flat aliases.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        # Clustering section
        clustering = {}
        for name in ("num_draws", "subsample_fraction", "k_range", "base_algorithm",
                     "stability_threshold", "min_cluster_size", "seed"):
            value = getattr(self, name)
            if value is not None:
                clustering[name] = value
        if self.clustering is not None:
            clustering.update(self.clustering.model_dump(exclude_none=True))
        if clustering:
            overrides["clustering"] = clustering

        # Lineage section
        lineage = {}
        if self.root_cluster is not None:
            lineage["root_cluster"] = self.root_cluster
        if self.end_clusters is not None:
            lineage["end_clusters"] = self.end_clusters
        if self.lineage is not None:
            lineage.update(self.lineage.model_dump(exclude_none=True))
        if lineage:
            overrides["lineage"] = lineage

        # Curve section
        curve = {}
        for name in ("smoothing_bandwidth", "convergence_epsilon", "max_iterations", "soft_assignment"):
            value = getattr(self, name)
            if value is not None:
                curve[name] = value
        if self.curve is not None:
            curve.update(self.curve.model_dump(exclude_none=True))
        if curve:
            overrides["curve"] = curve

        if self.n_jobs is not None:
            overrides["runtime"] = {"n_jobs": self.n_jobs}
        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
