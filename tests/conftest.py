"""Root-level pytest fixtures for the lintrace test suite.

Provides shared configuration fixtures following Pydantic-based architecture.
All tests must use these fixtures instead of creating raw dict configs.
"""

import pytest

from lintrace.schemas import ParamConfig, UserConfig, resolve_config
from tests.helpers.synthetic import blobs_embedding, branching_trajectory


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults.

    Use this as the base for all test configs. Override specific values
    using user_config or by creating custom UserConfig instances.
    """
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration (no overrides).

    Use this when tests don't care about specific config values and just
    need a valid InternalConfig to pass to constructors.
    """
    return resolve_config(param_config, None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Use this when you need to override specific values for a test.
    Returns a callable that accepts UserConfig-compatible kwargs.

    Examples
    --------
    >>> def test_custom_draws(make_config):
    ...     config = make_config(NUM_DRAWS=10, lineage={"root_cluster": 0})
    ...     assert config.clustering.num_draws == 10
    """
    def _make(**user_overrides):
        """Create InternalConfig with user overrides."""
        if user_overrides:
            user = UserConfig(**user_overrides)
            return resolve_config(param_config, user)
        else:
            return resolve_config(param_config, None)

    return _make


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
def three_blobs():
    """Three well separated Gaussian blobs, 20 cells each."""
    return blobs_embedding([(0.0, 0.0), (10.0, 0.0), (0.0, 10.0)], n_per=20, spread=0.3, seed=1)


@pytest.fixture
def branching():
    """Stem plus two arms: (embedding, assignment, true position)."""
    return branching_trajectory(n_per_segment=40, noise=0.05, seed=3)
