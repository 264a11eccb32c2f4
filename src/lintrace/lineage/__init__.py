"""Lineage topology over consensus clusters."""

from lintrace.lineage.graph_builder import ClusterGraphBuilder, minimum_spanning_edges

__all__ = ["ClusterGraphBuilder", "minimum_spanning_edges"]
