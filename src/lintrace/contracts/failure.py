"""Centralized error taxonomy.

Every error raised by the core derives from LintraceError, so callers can
catch the whole family at once or a single kind precisely. The numeric
kinds also derive from the matching builtin (ValueError, ArithmeticError)
so generic handlers keep working.
"""


class LintraceError(Exception):
    """Base class for all lintrace errors."""
    pass


class ConfigError(LintraceError, ValueError):
    """Invalid parameter values.

    Raised before any heavy computation: out-of-range fractions, empty
    k_range, non-positive epsilon, unknown root cluster, subsample smaller
    than the minimum viable cluster size.
    """
    pass


class InputError(LintraceError, ValueError):
    """Malformed input data.

    NaN/Inf in the embedding, mismatched cell counts between embedding and
    metadata, duplicate cell ids, non-finite centroid distances.
    """
    pass


class NumericalInstability(LintraceError, ArithmeticError):
    """A degenerate draw or cluster.

    Recovered locally by retry/skip inside the ensemble. Propagates only
    when the retry budget is exhausted for every draw.
    """
    pass


class DisconnectedGraphError(LintraceError):
    """The spanning tree does not connect every cluster."""
    pass


class ContractViolation(LintraceError, RuntimeError):
    """Raised when a pipeline stage breaks the invariant it promised.

    This indicates a bug in pipeline logic, not bad user input or a
    recoverable numerical edge case.

    Key distinction:
    - ConfigError / InputError: caller error
    - ContractViolation: pipeline bug (programmer error)
    - NumericalInstability: recoverable science issue
    """
    pass


class ConvergenceWarning(UserWarning):
    """Curve fitting did not reach epsilon within max_iterations.

    Non-fatal: the best current estimate is returned alongside it.
    """
    pass
