import logging

import pytest

from lintrace.pipeline import ArrayEmbeddingProvider
from lintrace.schemas import ParamConfig, InternalConfig
from lintrace.schemas.resolve import resolve_config
from lintrace.schemas.user import UserConfig
from tests.helpers.synthetic import blobs_embedding


@pytest.fixture
def pipeline_config() -> InternalConfig:
    """InternalConfig for pipeline tests: few draws, one k, fixed root."""
    user = UserConfig(
        NUM_DRAWS=10,
        K_RANGE=[3],
        MIN_CLUSTER_SIZE=5,
        SEED=5,
        ROOT_CLUSTER=0,
        LOG_LEVEL="DEBUG",
    )
    return resolve_config(ParamConfig(), user)


@pytest.fixture
def blob_embedding():
    """Three blobs with a per-cell batch annotation."""
    return blobs_embedding([(0.0, 0.0), (10.0, 0.0), (0.0, 10.0)], n_per=20, spread=0.3, seed=2, metadata=True)


@pytest.fixture
def blob_provider(blob_embedding):
    return ArrayEmbeddingProvider(
        blob_embedding.values,
        cell_ids=list(blob_embedding.cell_ids),
        metadata=blob_embedding.metadata,
    )


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Remove console handlers installed by LineagePipeline._setup_logging."""
    yield
    pkg = logging.getLogger("lintrace")
    for handler in pkg.handlers[:]:
        if getattr(handler, "_lintrace_console", False):
            pkg.removeHandler(handler)
    pkg.setLevel(logging.NOTSET)
