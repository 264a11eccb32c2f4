"""Core records shared by all stages.

This module provides the typed, separately owned records that flow between
the ensemble, graph builder, curve engine and assembler.
"""

from lintrace.core.records import (
    UNASSIGNED,
    RunStatus,
    Embedding,
    ClusterAssignment,
    Cluster,
    ClusterSet,
    CoClusterMatrix,
    Lineage,
    LineageGraph,
)
from lintrace.core.cancellation import CancellationToken, is_cancelled

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
    "CancellationToken",
    "is_cancelled",
]
