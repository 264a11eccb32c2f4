"""Lineage graph contract.

Enforces the guarantee that the graph builder produced a rooted spanning
tree: n-1 edges, connected, acyclic, and lineages that start at the root.
"""

from typing import TYPE_CHECKING

from lintrace.contracts.base import require
from lintrace.contracts.failure import DisconnectedGraphError

if TYPE_CHECKING:
    from lintrace.core.records import LineageGraph


def assert_tree(graph: "LineageGraph") -> None:
    """Enforce lineage graph contract.

    Raises
    ------
    DisconnectedGraphError
        If the edges do not connect every node.
    ContractViolation
        If any other invariant is violated.
    """
    nodes = set(graph.nodes)
    require(graph.root in nodes, f"Lineage contract violated: root {graph.root} not a node")

    expected_edges = max(len(nodes) - 1, 0)
    require(
        len(graph.edges) == expected_edges,
        f"Lineage contract violated: {len(graph.edges)} edges for {len(nodes)} nodes, "
        f"expected {expected_edges}",
    )

    # n-1 edges + connected implies acyclic
    adjacency = {n: set() for n in nodes}
    for i, j, _ in graph.edges:
        require(i in nodes and j in nodes, f"Lineage contract violated: edge ({i}, {j}) off-graph")
        adjacency[i].add(j)
        adjacency[j].add(i)

    seen = {graph.root}
    stack = [graph.root]
    while stack:
        node = stack.pop()
        for nxt in adjacency[node] - seen:
            seen.add(nxt)
            stack.append(nxt)
    require(
        seen == nodes,
        f"Lineage contract violated: {len(nodes - seen)} clusters unreachable from root",
        DisconnectedGraphError,
    )

    require(len(graph.lineages) >= 1, "Lineage contract violated: no lineages")
    for lineage in graph.lineages:
        require(
            lineage.root == graph.root,
            f"Lineage contract violated: lineage {lineage.id} starts at {lineage.root}, "
            f"not root {graph.root}",
        )
    covered = {c for lin in graph.lineages for c in lin}
    require(covered == nodes, "Lineage contract violated: some clusters belong to no lineage")
