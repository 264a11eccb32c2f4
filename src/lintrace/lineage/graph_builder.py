"""Cluster graph builder.

Connects consensus clusters with a minimum spanning tree over their
centroids, roots it, and enumerates one lineage per root-to-leaf path.

Known terminal clusters (``end_clusters``) are kept out of the spanning
tree and hung as leaves off their nearest non-terminal cluster, so they can
never become interior nodes of a lineage.
"""

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from lintrace.contracts.base import require
from lintrace.contracts.failure import ConfigError, DisconnectedGraphError, InputError
from lintrace.core.records import ClusterSet, Lineage, LineageGraph
from lintrace.schemas.internal import InternalConfig

logger = logging.getLogger(__name__)

__all__ = ["ClusterGraphBuilder", "minimum_spanning_edges"]

Edge = Tuple[int, int, float]


class _UnionFind:
    def __init__(self, items: Sequence[int]):
        self.parent = {i: i for i in items}

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> bool:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        # lower id becomes the representative
        if rb < ra:
            ra, rb = rb, ra
        self.parent[rb] = ra
        return True


def minimum_spanning_edges(nodes: Sequence[int], distances: Dict[Tuple[int, int], float]) -> List[Edge]:
    """Kruskal's algorithm over a complete graph.

    Candidate edges are sorted by (weight, i, j), so equal weights resolve
    to the lowest id pair. Zero-weight edges are legitimate and kept.

    Parameters
    ----------
    nodes : sequence of int
        Cluster ids.
    distances : dict
        (i, j) -> weight for every i < j in `nodes`.

    Returns
    -------
    list of (i, j, weight)
        Tree edges with i < j, in acceptance order.
    """
    uf = _UnionFind(nodes)
    candidates = sorted((w, i, j) for (i, j), w in distances.items())
    edges: List[Edge] = []
    for w, i, j in candidates:
        if uf.union(i, j):
            edges.append((i, j, float(w)))
            if len(edges) == len(nodes) - 1:
                break
    return edges


class ClusterGraphBuilder:
    """Build a rooted lineage tree over consensus clusters.

    Parameters
    ----------
    config : InternalConfig
        Uses ``config.lineage``: root_cluster or root_candidates,
        end_clusters, distance_metric.

    Examples
    --------
    >>> graph = ClusterGraphBuilder(config).build(result.clusters)
    >>> [lin.clusters for lin in graph.lineages]
    [(0, 1, 2), (0, 1, 3)]
    """

    def __init__(self, config: InternalConfig):
        self.cfg = config.lineage

    def _check_ids(self, ids: List[int]) -> None:
        known = set(ids)
        if self.cfg.root_cluster is not None:
            require(
                self.cfg.root_cluster in known,
                f"root_cluster {self.cfg.root_cluster} is not a consensus cluster (have {ids})",
                ConfigError,
            )
        if self.cfg.root_candidates is not None:
            unknown = sorted(set(self.cfg.root_candidates) - known)
            require(not unknown, f"root_candidates {unknown} are not consensus clusters (have {ids})",
                    ConfigError)
        unknown_ends = sorted(set(self.cfg.end_clusters) - known)
        require(not unknown_ends, f"end_clusters {unknown_ends} are not consensus clusters (have {ids})",
                ConfigError)

    def _distances(self, clusters: ClusterSet) -> np.ndarray:
        D = cdist(clusters.centroids, clusters.centroids, metric=self.cfg.distance_metric)
        if not np.isfinite(D).all():
            raise InputError(
                f"Non-finite {self.cfg.distance_metric} distances between cluster centroids"
            )
        return D

    def _spanning_tree(self, ids: List[int], D: np.ndarray) -> List[Edge]:
        pos = {c: p for p, c in enumerate(ids)}
        ends = set(self.cfg.end_clusters)
        core = [c for c in ids if c not in ends]
        require(len(core) >= 1, "Every cluster is listed in end_clusters; nothing left to root",
                ConfigError)

        pair_dist = {
            (a, b): D[pos[a], pos[b]]
            for x, a in enumerate(core) for b in core[x + 1:]
        }
        edges = minimum_spanning_edges(core, pair_dist)
        if len(edges) != len(core) - 1:
            raise DisconnectedGraphError(
                f"Spanning tree has {len(edges)} edges for {len(core)} clusters"
            )

        for end in sorted(ends):
            nearest = min(core, key=lambda c: (D[pos[end], pos[c]], c))
            a, b = sorted((end, nearest))
            edges.append((a, b, float(D[pos[end], pos[nearest]])))

        return sorted(edges, key=lambda e: (e[0], e[1]))

    @staticmethod
    def _adjacency(ids: List[int], edges: List[Edge]) -> Dict[int, Dict[int, float]]:
        adj: Dict[int, Dict[int, float]] = {c: {} for c in ids}
        for i, j, w in edges:
            adj[i][j] = w
            adj[j][i] = w
        return adj

    @staticmethod
    def _path_lengths(adj: Dict[int, Dict[int, float]], source: int) -> Dict[int, float]:
        lengths = {source: 0.0}
        stack = [source]
        while stack:
            node = stack.pop()
            for nxt, w in adj[node].items():
                if nxt not in lengths:
                    lengths[nxt] = lengths[node] + w
                    stack.append(nxt)
        return lengths

    def _choose_root(self, ids: List[int], adj: Dict[int, Dict[int, float]]) -> int:
        if self.cfg.root_cluster is not None:
            return self.cfg.root_cluster

        ends = set(self.cfg.end_clusters)
        degree_one = [c for c in ids if len(adj[c]) == 1]
        if self.cfg.root_candidates is not None:
            candidates = [c for c in self.cfg.root_candidates if c not in ends]
            require(candidates, "All root_candidates are end_clusters", ConfigError)
        else:
            candidates = [c for c in degree_one if c not in ends] or degree_one

        best = None
        for c in sorted(set(candidates)):
            lengths = self._path_lengths(adj, c)
            leaves = [x for x in degree_one if x != c]
            total = sum(lengths[x] for x in leaves)
            logger.debug("Root candidate %d: total path length to %d leaves %.4f", c, len(leaves), total)
            if best is None or total < best[0]:
                best = (total, c)
        return best[1]

    @staticmethod
    def _orient(root: int, adj: Dict[int, Dict[int, float]]) -> Dict[int, Tuple[int, ...]]:
        children: Dict[int, Tuple[int, ...]] = {}
        seen = {root}
        queue = [root]
        while queue:
            node = queue.pop(0)
            kids = tuple(sorted(n for n in adj[node] if n not in seen))
            children[node] = kids
            seen.update(kids)
            queue.extend(kids)
        return children

    @staticmethod
    def _enumerate_lineages(root: int, children: Dict[int, Tuple[int, ...]]) -> Tuple[Lineage, ...]:
        paths: List[Tuple[int, ...]] = []

        def walk(path: Tuple[int, ...]) -> None:
            kids = children[path[-1]]
            if not kids:
                paths.append(path)
                return
            for kid in kids:
                walk(path + (kid,))

        walk((root,))
        return tuple(Lineage(id=i, clusters=p) for i, p in enumerate(paths))

    def build(self, clusters: ClusterSet) -> LineageGraph:
        """Spanning tree, root, branch points and lineages for `clusters`.

        Raises
        ------
        InputError
            If there are no clusters or centroid distances are not finite.
        ConfigError
            If a configured root, candidate or end cluster does not exist.
        DisconnectedGraphError
            If the tree does not span every cluster.
        """
        ids = list(clusters.ids)
        require(len(ids) >= 1, "No consensus clusters to build a lineage graph from", InputError)
        self._check_ids(ids)

        if len(ids) == 1:
            only = ids[0]
            logger.info("Single cluster %d: trivial lineage", only)
            return LineageGraph(
                nodes=(only,), edges=(), root=only, children={only: ()},
                branch_points=(), lineages=(Lineage(id=0, clusters=(only,)),),
                distance_metric=self.cfg.distance_metric, distances=np.zeros((1, 1)),
            )

        D = self._distances(clusters)
        edges = self._spanning_tree(ids, D)
        adj = self._adjacency(ids, edges)
        root = self._choose_root(ids, adj)
        children = self._orient(root, adj)
        if len(children) != len(ids):
            raise DisconnectedGraphError(
                f"{len(ids) - len(children)} clusters unreachable from root {root}"
            )

        branch_points = tuple(sorted(c for c, kids in children.items() if len(kids) >= 2))
        lineages = self._enumerate_lineages(root, children)

        logger.info(
            "Lineage graph: %d clusters, root %d, %d lineage(s), branch points %s",
            len(ids), root, len(lineages), list(branch_points),
        )
        for lin in lineages:
            logger.debug("  lineage %d: %s", lin.id, list(lin.clusters))

        return LineageGraph(
            nodes=tuple(ids),
            edges=tuple(edges),
            root=root,
            children=children,
            branch_points=branch_points,
            lineages=lineages,
            distance_metric=self.cfg.distance_metric,
            distances=D,
        )
