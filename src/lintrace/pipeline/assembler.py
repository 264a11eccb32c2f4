"""Output assembler.

Merges the consensus assignment, the lineage graph and the pseudotime
record into one table keyed by cell id. Pure: it only reads its inputs and
returns new objects, so assembling the same inputs twice gives equal
output.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from lintrace.contracts.base import require
from lintrace.contracts.failure import InputError
from lintrace.core.records import ClusterAssignment, LineageGraph, RunStatus
from lintrace.curves.engine import PseudotimeResult

logger = logging.getLogger(__name__)

__all__ = ["AssembledOutput", "OutputAssembler"]


@dataclass(frozen=True, eq=False)
class AssembledOutput:
    """Final per-cell table plus lineage graph metadata.

    Attributes
    ----------
    table : pd.DataFrame
        Indexed by ``cell_id``. Columns ``cluster_label``, ``stability``,
        then ``pseudotime_<lineage>`` (nullable, <NA> where the cell is not
        on the lineage) and ``weight_<lineage>`` per lineage, then any
        metadata columns.
    graph : dict or None
        Root, edges, branch points and lineages (None when the run stopped
        before the graph was built).
    status : RunStatus
    warnings : tuple of str
    diagnostics : dict
        Run statistics (draw counts, PAC score, iterations, ...).
    """
    table: pd.DataFrame
    graph: Optional[Dict[str, Any]]
    status: RunStatus = RunStatus.COMPLETED
    warnings: Tuple[str, ...] = ()
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def pseudotime_columns(self) -> list:
        return [c for c in self.table.columns if c.startswith("pseudotime_")]

    def weight_columns(self) -> list:
        return [c for c in self.table.columns if c.startswith("weight_")]


class OutputAssembler:
    """Build the per-cell result table."""

    def assemble(
        self,
        assignment: ClusterAssignment,
        graph: Optional[LineageGraph] = None,
        pseudotime: Optional[PseudotimeResult] = None,
        metadata: Optional[pd.DataFrame] = None,
        status: RunStatus = RunStatus.COMPLETED,
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> AssembledOutput:
        """Merge stage outputs into one table.

        Parameters
        ----------
        assignment : ClusterAssignment
            Consensus labels and stability.
        graph : LineageGraph, optional
        pseudotime : PseudotimeResult, optional
            Both omitted when the run was cancelled during clustering.
        metadata : pd.DataFrame, optional
            Per-cell annotations indexed by cell id, appended as columns.
        status : RunStatus
            Overall status; a cancelled pseudotime fit also marks the output
            cancelled.
        diagnostics : dict, optional

        Raises
        ------
        InputError
            If the pseudotime record or metadata does not cover the same cells.
        """
        index = pd.Index(assignment.cell_ids, name="cell_id")
        columns: Dict[str, Any] = {
            "cluster_label": pd.Series(np.array(assignment.labels, dtype=np.int64), index=index),
            "stability": pd.Series(np.array(assignment.stability, dtype=np.float64), index=index),
        }

        warnings: Tuple[str, ...] = ()
        if pseudotime is not None:
            record = pseudotime.record
            require(
                list(record["cell"].values) == list(index),
                "Pseudotime record cells do not match the assignment",
                InputError,
            )
            present = record["present"].values
            pt = record["pseudotime"].values
            weight = record["weight"].values
            for pos, lid in enumerate(record["lineage"].values):
                values = pd.array(pt[:, pos], dtype="Float64")
                values[~present[:, pos]] = pd.NA
                columns[f"pseudotime_{int(lid)}"] = pd.Series(values, index=index)
            for pos, lid in enumerate(record["lineage"].values):
                columns[f"weight_{int(lid)}"] = pd.Series(np.array(weight[:, pos], dtype=np.float64), index=index)
            warnings = tuple(pseudotime.warnings)
            if pseudotime.status is RunStatus.CANCELLED:
                status = RunStatus.CANCELLED

        table = pd.DataFrame(columns, index=index)

        if metadata is not None:
            meta = metadata.copy()
            meta.index = meta.index.astype(str)
            require(
                set(meta.index) == set(index),
                "Metadata rows do not match the assembled cells",
                InputError,
            )
            clash = sorted(set(meta.columns) & set(table.columns))
            require(not clash, f"Metadata columns collide with result columns: {clash}", InputError)
            table = table.join(meta.loc[index])
            table.index.name = "cell_id"

        graph_info = graph.to_dict() if graph is not None else None
        diagnostics = copy.deepcopy(diagnostics) if diagnostics else {}
        table.attrs = {
            "status": status.value,
            "graph": copy.deepcopy(graph_info),
            "diagnostics": copy.deepcopy(diagnostics),
        }

        logger.info(
            "Assembled %d cells x %d columns (%s)",
            table.shape[0], table.shape[1], status.value,
        )
        return AssembledOutput(
            table=table,
            graph=graph_info,
            status=status,
            warnings=warnings,
            diagnostics=diagnostics,
        )
