"""Base contract enforcement utilities.

The require() function is the single enforcement mechanism for all contracts.
"""

from lintrace.contracts.failure import ContractViolation, LintraceError


def require(condition: bool, message: str, error: type = ContractViolation) -> None:
    """Enforce a stage invariant.

    Called at stage boundaries to verify the preceding stage produced the
    guaranteed invariants, and at component entry to reject bad input.
    It is fail-fast: no recovery, no fallback, no silence.

    Parameters
    ----------
    condition : bool
        The invariant that must be true.

    message : str
        Error message explaining the violation.

    error : type, optional
        LintraceError subclass to raise (default ContractViolation).
        Entry checks pass ConfigError or InputError.

    Raises
    ------
    LintraceError
        If condition is False.

    Examples
    --------
    >>> require(matrix.is_symmetric(), "Co-clustering contract: matrix not symmetric")
    >>> require(np.isfinite(x).all(), "embedding has NaN/Inf", InputError)
    """
    if not condition:
        if not issubclass(error, LintraceError):
            raise TypeError(f"require() error must be a LintraceError, got {error!r}")
        raise error(message)
