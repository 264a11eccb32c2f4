"""Pipeline orchestration.

Runs embedding → consensus clustering → lineage graph → pseudotime →
assembly, enforcing the stage contracts at every boundary.
"""

import logging
import time
from typing import Callable, Optional, Sequence

from lintrace.clustering.ensemble import ResamplingClusterEnsemble
from lintrace.contracts import (
    assert_co_clustering,
    assert_consensus,
    assert_embedding,
    assert_pseudotime,
    assert_tree,
)
from lintrace.core.cancellation import CancellationToken
from lintrace.core.records import RunStatus
from lintrace.curves.engine import PseudotimeEngine
from lintrace.lineage.graph_builder import ClusterGraphBuilder
from lintrace.pipeline.assembler import AssembledOutput, OutputAssembler
from lintrace.pipeline.provider import EmbeddingProvider
from lintrace.schemas.internal import InternalConfig

__all__ = ['LineagePipeline']

logger = logging.getLogger(__name__)

_PACKAGE_LOGGER = "lintrace"


class LineagePipeline:
    """Clustering and lineage inference over one embedding.

    Stages run sequentially; each receives only the records produced by
    the stages before it:

    1. **Embedding**: fetched once from the provider and checked for
       finiteness and the requested cell ids.

    2. **Ensemble**: resampling draws fill a co-clustering matrix, from
       which a consensus assignment and cluster set are extracted. The
       matrix is dropped afterwards.

    3. **Graph**: minimum spanning tree over centroids, rooted, with
       branch points and lineages.

    4. **Curves**: simultaneous principal curves give pseudotime and
       branch weights per (cell, lineage).

    5. **Assembly**: one table keyed by cell id.

    Cancellation is cooperative: the token is checked between draws and
    between curve iterations. A run cancelled during clustering returns
    cluster labels only; one cancelled during curve fitting returns the
    current curve estimate. Both are marked ``RunStatus.CANCELLED``.

    Parameters
    ----------
    config : InternalConfig
        Fully resolved configuration.
    provider : EmbeddingProvider
        Source of the embedding.
    base_clusterer : callable, optional
        Custom ``fn(X, k, random_state) -> labels`` for the ensemble.
    configure_logging : bool
        Attach a console handler at ``config.logging.level`` to the
        package logger (default True).

    Examples
    --------
    >>> config = resolve_config(ParamConfig(), UserConfig(ROOT_CLUSTER=0))
    >>> pipeline = LineagePipeline(config, ArrayEmbeddingProvider(X))
    >>> output = pipeline.run()
    >>> output.table.head()
    """

    def __init__(self, config: InternalConfig, provider: EmbeddingProvider,
                 base_clusterer: Optional[Callable] = None, configure_logging: bool = True):
        self.config = config
        self.provider = provider
        self.base_clusterer = base_clusterer
        self.configure_logging = configure_logging

    def _setup_logging(self):
        """Configure the package logger from config.logging.level.

        Replaces handlers previously installed here so repeated runs do not
        duplicate output. Records still propagate to the root logger.
        """
        log_level = getattr(logging, self.config.logging.level, logging.INFO)

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        pkg = logging.getLogger(_PACKAGE_LOGGER)
        pkg.setLevel(log_level)
        for handler in pkg.handlers[:]:
            if getattr(handler, "_lintrace_console", False):
                pkg.removeHandler(handler)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        ch._lintrace_console = True
        pkg.addHandler(ch)

    def run(self, cell_ids: Optional[Sequence[str]] = None,
            cancel: Optional[CancellationToken] = None) -> AssembledOutput:
        """Run every stage and return the assembled output.

        Parameters
        ----------
        cell_ids : sequence of str, optional
            Cells to request from the provider (all when None).
        cancel : CancellationToken, optional

        Raises
        ------
        ConfigError, InputError, NumericalInstability, DisconnectedGraphError
            Propagated unchanged from the stage that raised them.
        ContractViolation
            If a stage broke its output invariant.
        """
        if self.configure_logging:
            self._setup_logging()

        start = time.time()
        logger.info("=" * 60)
        logger.info("Starting lineage inference")
        logger.info("=" * 60)

        # Stage 1: embedding
        embedding = self.provider.get_embedding(cell_ids)
        assert_embedding(embedding, cell_ids)
        logger.info("Embedding: %d cells x %d dims", embedding.n_cells, embedding.n_dims)

        # Stage 2: consensus clustering
        ensemble = ResamplingClusterEnsemble(self.config, base_clusterer=self.base_clusterer)
        matrix, stats, status = ensemble.accumulate(embedding, cancel=cancel)
        assert_co_clustering(matrix)
        consensus = ensemble.consensus(embedding, matrix, stats=stats, status=status)
        del matrix
        assert_consensus(consensus.assignment, embedding.n_cells)

        diagnostics = {
            "draws_requested": stats.requested,
            "draws_completed": stats.completed,
            "draws_skipped": stats.skipped,
            "draw_retries": stats.retries,
            "pac_score": consensus.pac_score,
            "n_clusters": consensus.assignment.n_clusters,
            "n_unassigned": int((~consensus.assignment.assigned_mask).sum()),
        }
        assembler = OutputAssembler()

        if consensus.status is RunStatus.CANCELLED:
            logger.warning("Run cancelled during clustering; returning cluster labels only")
            return assembler.assemble(
                consensus.assignment, metadata=embedding.metadata,
                status=RunStatus.CANCELLED, diagnostics=diagnostics,
            )

        if consensus.assignment.n_clusters == 0:
            logger.warning("Consensus kept no clusters (%d rejected); returning cluster labels only",
                           consensus.n_rejected)
            return assembler.assemble(
                consensus.assignment, metadata=embedding.metadata,
                status=consensus.status, diagnostics=diagnostics,
            )

        # Stage 3: lineage graph
        graph = ClusterGraphBuilder(self.config).build(consensus.clusters)
        assert_tree(graph)

        # Stage 4: curves and pseudotime
        pseudotime = PseudotimeEngine(self.config).fit(
            embedding, consensus.assignment, consensus.clusters, graph, cancel=cancel,
        )
        assert_pseudotime(pseudotime.record, consensus.assignment.assigned_mask,
                          soft=self.config.curve.soft_assignment)
        diagnostics.update({
            "curve_iterations": pseudotime.iterations,
            "converged": pseudotime.converged,
        })

        # Stage 5: assembly
        output = assembler.assemble(
            consensus.assignment, graph, pseudotime,
            metadata=embedding.metadata, diagnostics=diagnostics,
        )

        elapsed = time.time() - start
        logger.info("Lineage inference finished in %.2f s (%s)", elapsed, output.status.value)
        return output
