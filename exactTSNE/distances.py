import logging

import numpy as np
from scipy.spatial.distance import pdist, squareform

from exactTSNE import utils

log = logging.getLogger(__name__)

SQUARED_METRICS = {"sqeuclidean"}


def is_squared_metric(metric):
    """Check whether a metric already produces squared euclidean distances,
    in which case the distance matrix builder must not square it again."""
    return isinstance(metric, str) and metric in SQUARED_METRICS


def max_distance(distances):
    """Find the largest finite off-diagonal entry of a distance matrix.

    Returns ``-inf`` if there is no such entry.

    """
    distances = np.asarray(distances)
    off_diagonal = ~np.eye(distances.shape[0], dtype=bool)
    values = distances[off_diagonal & np.isfinite(distances)]
    if values.size == 0:
        return -np.inf
    return float(np.max(values))


def build_distance_matrix(identities, distance, squared=False, verbose=False):
    """Materialize the dense pairwise distance matrix from a distance oracle.

    Only the lower triangle is queried from ``distance``, the upper triangle is
    filled in by symmetry. Any exception raised by the oracle is propagated.

    Parameters
    ----------
    identities: Sequence
        The object identities in their index order.

    distance: Callable[[Any, Any], float]
        The distance oracle. Given two identities, it returns a non-negative
        dissimilarity.

    squared: bool
        Whether ``distance`` already returns squared euclidean distances. If
        not, the distances are squared.

    verbose: bool

    Returns
    -------
    distances: np.ndarray
        A symmetric ``N x N`` matrix of squared distances with a zero diagonal.

    max_distance: float
        The largest off-diagonal entry of ``distances``.

    """
    if not callable(distance):
        raise ValueError("`distance` must be a callable object!")

    identities = list(identities)
    n_samples = len(identities)

    with utils.Timer(
        "Computing %d pairwise distances..." % (n_samples * (n_samples - 1) // 2),
        verbose,
    ):
        distances = np.zeros((n_samples, n_samples), dtype=np.float64)
        for i in range(1, n_samples):
            id_i = identities[i]
            for j in range(i):
                dist = float(distance(id_i, identities[j]))
                if dist < 0:
                    raise ValueError(
                        "Negative distance %g between `%r` and `%r`."
                        % (dist, id_i, identities[j])
                    )
                if not squared:
                    dist *= dist
                distances[i, j] = distances[j, i] = dist

    return distances, max_distance(distances)


def metric_distance_matrix(X, metric="euclidean", metric_params=None, verbose=False):
    """Compute the dense pairwise distance matrix of a data matrix.

    Parameters
    ----------
    X: np.ndarray
        The data matrix with samples in rows. If ``metric="precomputed"``, a
        square, symmetric matrix of raw (not squared) distances.

    metric: Union[str, Callable]
        Any metric supported by :func:`scipy.spatial.distance.pdist`, a
        callable taking two rows, or ``precomputed``.

    metric_params: dict
        Additional keyword arguments for the metric function.

    verbose: bool

    Returns
    -------
    distances: np.ndarray
        A symmetric ``N x N`` matrix of squared distances with a zero diagonal.

    max_distance: float
        The largest off-diagonal entry of ``distances``.

    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError("The data matrix must be a 2-dimensional matrix.")

    if metric == "precomputed":
        check_distance_matrix(X)
        distances = X ** 2
    else:
        metric_params = metric_params or {}
        with utils.Timer(
            "Computing pairwise distances using %s distance..." % metric, verbose
        ):
            distances = squareform(pdist(X, metric=metric, **metric_params))
        if not is_squared_metric(metric):
            distances **= 2

    return distances, max_distance(distances)


def check_distance_matrix(distances):
    if distances.ndim != 2 or distances.shape[0] != distances.shape[1]:
        raise ValueError("The precomputed distance matrix must be square.")
    if np.any(np.diag(distances) != 0):
        raise ValueError("The precomputed distance matrix must have a zero diagonal.")
    if np.any(distances < 0):
        raise ValueError("The precomputed distance matrix contains negative values.")
    if not np.allclose(distances, distances.T, equal_nan=True):
        raise ValueError("The precomputed distance matrix must be symmetric.")
