"""Base clusterers run on each resampling draw.

Every entry takes ``(X, k, random_state)`` and returns one integer label per
row of ``X``. The ensemble only needs that signature, so any callable with
it can be passed in place of a registry name.
"""

import logging
from typing import Callable, Dict, Union

import numpy as np
from sklearn.cluster import AgglomerativeClustering, KMeans, MiniBatchKMeans
from sklearn.mixture import GaussianMixture
from sklearn.preprocessing import normalize

from lintrace.contracts.failure import ConfigError

logger = logging.getLogger(__name__)

BaseClusterer = Callable[[np.ndarray, int, int], np.ndarray]

__all__ = ["BaseClusterer", "BASE_CLUSTERERS", "get_base_clusterer"]


def _prepare(X: np.ndarray, metric: str) -> np.ndarray:
    if metric == "cosine":
        return normalize(X, norm="l2")
    return X


def cluster_kmeans(X: np.ndarray, k: int, random_state: int, metric: str = "euclidean") -> np.ndarray:
    km = KMeans(n_clusters=k, random_state=random_state, n_init=10, max_iter=300)
    return km.fit_predict(_prepare(X, metric))


def cluster_minibatch_kmeans(X: np.ndarray, k: int, random_state: int, metric: str = "euclidean") -> np.ndarray:
    km = MiniBatchKMeans(n_clusters=k, random_state=random_state, n_init=3, batch_size=1024)
    return km.fit_predict(_prepare(X, metric))


def cluster_gmm(X: np.ndarray, k: int, random_state: int, metric: str = "euclidean") -> np.ndarray:
    gmm = GaussianMixture(
        n_components=k, covariance_type="full", random_state=random_state,
        max_iter=500, n_init=1, reg_covar=1e-6,
    )
    return gmm.fit_predict(_prepare(X, metric))


def cluster_agglomerative(X: np.ndarray, k: int, random_state: int, metric: str = "euclidean") -> np.ndarray:
    # deterministic; random_state unused
    if metric == "cosine":
        model = AgglomerativeClustering(n_clusters=k, metric="cosine", linkage="average")
    else:
        model = AgglomerativeClustering(n_clusters=k, linkage="ward")
    return model.fit_predict(X)


BASE_CLUSTERERS: Dict[str, Callable[..., np.ndarray]] = {
    "kmeans": cluster_kmeans,
    "minibatch_kmeans": cluster_minibatch_kmeans,
    "gaussian_mixture": cluster_gmm,
    "agglomerative": cluster_agglomerative,
}


def get_base_clusterer(algorithm: Union[str, Callable], metric: str = "euclidean") -> BaseClusterer:
    """Resolve a registry name (or custom callable) to a base clusterer.

    Parameters
    ----------
    algorithm : str or callable
        One of BASE_CLUSTERERS, or a callable ``fn(X, k, random_state)``.
    metric : str
        'euclidean' or 'cosine'. Cosine rows are L2-normalized first
        (spherical k-means), or use average linkage for agglomerative.

    Raises
    ------
    ConfigError
        If the name is not registered.
    """
    if callable(algorithm):
        return algorithm
    try:
        fn = BASE_CLUSTERERS[algorithm]
    except KeyError:
        raise ConfigError(
            f"Unknown base_algorithm '{algorithm}'. Available: {sorted(BASE_CLUSTERERS)}"
        ) from None

    def run(X: np.ndarray, k: int, random_state: int) -> np.ndarray:
        return fn(X, k, random_state, metric=metric)

    run.__name__ = f"{fn.__name__}[{metric}]"
    logger.debug("Base clusterer: %s", run.__name__)
    return run
