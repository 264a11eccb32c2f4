"""Embedding entry contract.

Enforces the guarantee that the provider returned a finite matrix with one
row per requested cell.
"""

from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from lintrace.contracts.base import require
from lintrace.contracts.failure import InputError

if TYPE_CHECKING:
    from lintrace.core.records import Embedding


def assert_embedding(embedding: "Embedding", expected_cell_ids: Optional[Sequence[str]] = None) -> None:
    """Enforce embedding contract.

    Called once, right after EmbeddingProvider.get_embedding().

    Parameters
    ----------
    embedding : Embedding
        Provider output.

    expected_cell_ids : sequence of str, optional
        Cell ids that were requested. When given, the embedding must hold
        exactly these cells, in this order.

    Raises
    ------
    InputError
        If the provider output is malformed.
    """
    from lintrace.core.records import Embedding

    require(
        isinstance(embedding, Embedding),
        f"Embedding contract violated: provider returned {type(embedding)}, expected Embedding",
        InputError,
    )
    require(
        np.isfinite(embedding.values).all(),
        "Embedding contract violated: non-finite values",
        InputError,
    )
    if expected_cell_ids is not None:
        expected = [str(c) for c in expected_cell_ids]
        require(
            list(embedding.cell_ids) == expected,
            f"Embedding contract violated: got {embedding.n_cells} cells, "
            f"expected the {len(expected)} requested ids in order",
            InputError,
        )
