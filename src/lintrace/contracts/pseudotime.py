"""Pseudotime stage contract.

Enforces the guarantee that membership weights are normalized per cell and
that pseudotime is finite and rooted at zero wherever it is defined.
"""

import numpy as np
import xarray as xr

from lintrace.contracts.base import require


def assert_pseudotime(record: xr.Dataset, assigned_mask: np.ndarray, soft: bool, atol: float = 1e-8) -> None:
    """Enforce pseudotime contract.

    Parameters
    ----------
    record : xr.Dataset
        PseudotimeResult.record with dims (cell, lineage) and variables
        pseudotime, weight, present.

    assigned_mask : np.ndarray
        Boolean mask of cells holding a cluster label.

    soft : bool
        Soft mode (weights sum to 1) or hard mode (one-hot).

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    for var in ("pseudotime", "weight", "present"):
        require(var in record.data_vars, f"Pseudotime contract violated: missing '{var}'")
    require(
        record["weight"].dims == ("cell", "lineage"),
        f"Pseudotime contract violated: weight dims {record['weight'].dims}",
    )

    weight = record["weight"].values
    present = record["present"].values
    pseudotime = record["pseudotime"].values

    require(
        (weight >= 0.0).all() and (weight <= 1.0 + atol).all(),
        "Pseudotime contract violated: weights outside [0, 1]",
    )
    require(
        (weight[~present] == 0.0).all(),
        "Pseudotime contract violated: absent entries carry weight",
    )
    require(
        not present[~assigned_mask].any(),
        "Pseudotime contract violated: unassigned cells placed on a lineage",
    )

    sums = weight[assigned_mask].sum(axis=1)
    require(
        np.allclose(sums, 1.0, atol=1e-6),
        f"Pseudotime contract violated: weight sums range [{sums.min() if sums.size else 1:.4f}, "
        f"{sums.max() if sums.size else 1:.4f}], expected 1",
    )
    if not soft:
        nonzero = (weight[assigned_mask] > 0).sum(axis=1)
        require(
            (nonzero == 1).all(),
            "Pseudotime contract violated: hard mode requires exactly one lineage per cell",
        )

    values = pseudotime[present]
    require(np.isfinite(values).all(), "Pseudotime contract violated: non-finite pseudotime")
    require(
        (values >= -atol).all(),
        f"Pseudotime contract violated: negative pseudotime (min={values.min() if values.size else 0:.4g})",
    )
