import logging
from time import perf_counter

import numpy as np
from scipy.spatial.distance import pdist, squareform

log = logging.getLogger(__name__)


class Timer:
    """Time a block of work, announcing it on stdout when ``verbose``.

    The duration is kept in ``elapsed`` and always logged at debug level.

    """

    def __init__(self, message, verbose=False):
        self.message = message
        self.verbose = verbose
        self.start_time = None
        self.elapsed = None

    def __enter__(self):
        if self.verbose:
            print("===>", self.message)
        self.start_time = perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = perf_counter() - self.start_time
        log.debug("%s took %.4f seconds", self.message, self.elapsed)
        if self.verbose:
            print("   --> Time elapsed: %.2f seconds" % self.elapsed)


def squared_distances(embedding):
    """Compute the dense matrix of squared euclidean distances between the
    rows of an embedding.

    Parameters
    ----------
    embedding: np.ndarray
        An ``N x d`` matrix of point positions.

    Returns
    -------
    np.ndarray
        A symmetric ``N x N`` matrix with a zero diagonal.

    """
    embedding = np.asarray(embedding, dtype=np.float64)
    return squareform(pdist(embedding, metric="sqeuclidean"))
