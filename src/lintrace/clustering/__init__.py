"""Resampling consensus clustering."""

from lintrace.clustering.base_clusterers import BASE_CLUSTERERS, get_base_clusterer
from lintrace.clustering.consensus import average_linkage_groups, cell_stability, extract_consensus
from lintrace.clustering.ensemble import ConsensusResult, DrawStats, ResamplingClusterEnsemble

__all__ = [
    "BASE_CLUSTERERS",
    "get_base_clusterer",
    "average_linkage_groups",
    "cell_stability",
    "extract_consensus",
    "ConsensusResult",
    "DrawStats",
    "ResamplingClusterEnsemble",
]
