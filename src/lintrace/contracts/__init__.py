"""Pipeline contracts and error taxonomy.

This package enforces semantic guarantees between pipeline stages.
Contracts fail immediately and loudly when a stage does not produce the
invariants it promised.

Key principle:
- Pydantic validates config correctness
- Contracts validate pipeline correctness
- Algorithms handle numerical edge cases (retry, skip, warn)
"""

from lintrace.contracts.failure import (
    LintraceError,
    ConfigError,
    InputError,
    NumericalInstability,
    DisconnectedGraphError,
    ContractViolation,
    ConvergenceWarning,
)
from lintrace.contracts.base import require
from lintrace.contracts.embedding import assert_embedding
from lintrace.contracts.clustering import assert_co_clustering, assert_consensus
from lintrace.contracts.lineage import assert_tree
from lintrace.contracts.pseudotime import assert_pseudotime

__all__ = [
    "LintraceError",
    "ConfigError",
    "InputError",
    "NumericalInstability",
    "DisconnectedGraphError",
    "ContractViolation",
    "ConvergenceWarning",
    "require",
    "assert_embedding",
    "assert_co_clustering",
    "assert_consensus",
    "assert_tree",
    "assert_pseudotime",
]
