"""Embedding providers.

The pipeline consumes its embedding exactly once, through an object with a
``get_embedding(cell_ids)`` method. The embedding model itself lives
outside this package; ArrayEmbeddingProvider wraps an embedding that has
already been computed.
"""

import logging
from typing import Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np
import pandas as pd

from lintrace.contracts.failure import InputError
from lintrace.core.records import Embedding

__all__ = ["EmbeddingProvider", "ArrayEmbeddingProvider"]

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that can hand over a cell x latent-dimension embedding."""

    def get_embedding(self, cell_ids: Optional[Sequence[str]] = None) -> Embedding:
        ...


class ArrayEmbeddingProvider:
    """Serve a precomputed embedding from an array or DataFrame.

    Parameters
    ----------
    values : np.ndarray or pd.DataFrame
        (n_cells, n_dims) embedding. A DataFrame's index is used as cell ids
        unless `cell_ids` is given.
    cell_ids : sequence of str, optional
        Row identifiers. Defaults to the DataFrame index, or "0".."n-1".
    metadata : pd.DataFrame, optional
        Per-cell annotations, one row per cell.

    Raises
    ------
    InputError
        On non-finite values or mismatched ids/metadata.
    """

    def __init__(self, values: Union[np.ndarray, pd.DataFrame],
                 cell_ids: Optional[Sequence[str]] = None,
                 metadata: Optional[pd.DataFrame] = None):
        if isinstance(values, pd.DataFrame):
            ids = values.index if cell_ids is None else cell_ids
            array = values.to_numpy(dtype=np.float64)
        else:
            array = np.asarray(values, dtype=np.float64)
            ids = cell_ids if cell_ids is not None else [str(i) for i in range(array.shape[0] if array.ndim else 0)]
        self._embedding = Embedding(cell_ids=ids, values=array, metadata=metadata)

    @property
    def cell_ids(self) -> pd.Index:
        return self._embedding.cell_ids

    def get_embedding(self, cell_ids: Optional[Sequence[str]] = None) -> Embedding:
        """Embedding for `cell_ids` (all cells, in stored order, when None)."""
        if cell_ids is None:
            return self._embedding

        wanted = pd.Index([str(c) for c in cell_ids])
        missing = wanted.difference(self._embedding.cell_ids)
        if len(missing):
            raise InputError(f"{len(missing)} requested cells not in embedding: {missing[:5].tolist()}")
        rows = self._embedding.cell_ids.get_indexer(wanted)
        metadata = self._embedding.metadata
        logger.debug("Serving %d/%d cells", len(rows), self._embedding.n_cells)
        return Embedding(
            cell_ids=wanted,
            values=self._embedding.values[rows],
            metadata=None if metadata is None else metadata.iloc[rows],
        )
