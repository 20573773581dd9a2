import logging

import numpy as np
from sklearn.utils import check_random_state

from exactTSNE import utils

log = logging.getLogger(__name__)


def random(n_samples, n_components=2, random_state=None, std=1e-2, verbose=False):
    """Initialize an embedding using samples from an isotropic Gaussian.

    Parameters
    ----------
    n_samples: int
        The number of samples.

    n_components: int
        The dimension of the embedding space.

    random_state: Union[int, RandomState]
        If the value is an int, random_state is the seed used by the random
        number generator. If the value is a RandomState instance, then it will
        be used as the random number generator. If the value is None, the random
        number generator is the RandomState instance used by `np.random`.

    std: float
        The standard deviation of the Gaussian.

    verbose: bool

    Returns
    -------
    initialization: np.ndarray

    """
    random_state = check_random_state(random_state)
    with utils.Timer("Calculating random initialization...", verbose):
        embedding = random_state.normal(0, std, (n_samples, n_components))
    return np.ascontiguousarray(embedding, dtype=np.float64)


def precomputed(embedding, n_samples, n_components=2):
    """Validate and copy user provided initial positions.

    Parameters
    ----------
    embedding: np.ndarray
        An ``n_samples x n_components`` matrix.

    n_samples: int

    n_components: int

    Returns
    -------
    initialization: np.ndarray

    """
    embedding = np.array(embedding, dtype=np.float64, order="C")
    if embedding.ndim != 2:
        raise ValueError("The provided initialization must be a 2-dimensional matrix.")
    if embedding.shape[0] != n_samples:
        raise ValueError(
            "The provided initialization contains a different number "
            "of points (%d) than the data provided (%d)."
            % (embedding.shape[0], n_samples)
        )
    if embedding.shape[1] != n_components:
        raise ValueError(
            "The provided initialization contains a different number "
            "of components (%d) than the embedding (%d)."
            % (embedding.shape[1], n_components)
        )

    stddev = np.std(embedding, axis=0)
    if any(stddev > 1e-1):
        log.warning(
            "Standard deviation of embedding is greater than 0.1. Initial "
            "embeddings with high variance may have display poor convergence."
        )

    return embedding
