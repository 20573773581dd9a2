import logging

import numpy as np

from exactTSNE import utils
from exactTSNE.distances import max_distance as find_max_distance

log = logging.getLogger(__name__)

MIN_PIJ = 1e-12

EARLY_EXAGGERATION = 4.0


class InsufficientSamplesError(ValueError):
    """t-SNE needs at least two samples to define any affinities."""


def check_n_samples(n_samples):
    if n_samples <= 1:
        raise InsufficientSamplesError(
            "t-SNE requires at least 2 samples, but got %d." % n_samples
        )
    return n_samples


class Affinities:
    """Compute the affinities between samples.

    t-SNE takes as input an affinity matrix :math:`P`, and does not really care
    about anything else from the data. The affinities are kept as a dense
    :math:`N \\times N` matrix.

    Attributes
    ----------
    P: np.ndarray
        The :math:`N \\times N` affinity matrix expressing interactions between
        :math:`N` data samples.

    exaggeration: float
        The factor the entries of ``P`` are currently multiplied with. The
        matrix sums to approximately this value.

    verbose: bool

    """

    def __init__(self, verbose=False):
        self.P = None
        self.exaggeration = 1.0
        self.verbose = verbose

    @property
    def n_samples(self):
        if self.P is None:
            raise RuntimeError("`P` is not set!")
        return self.P.shape[0]

    def remove_exaggeration(self):
        """Scale ``P`` back down to a proper joint probability distribution.

        The division is done in place, so any optimizer holding a reference to
        ``P`` sees the change. Calling this again has no effect.

        """
        if self.exaggeration != 1:
            log.debug("Removing exaggeration %.2f from affinities.", self.exaggeration)
            self.P /= self.exaggeration
            self.exaggeration = 1.0


class PerplexityBased(Affinities):
    """Compute affinities from a full distance matrix, calibrating a Gaussian
    kernel bandwidth for each point to match the desired perplexity.

    The resulting matrix is multiplied by the early exaggeration factor, which
    the optimizer removes later with :meth:`remove_exaggeration`.

    Parameters
    ----------
    distances: np.ndarray
        A symmetric :math:`N \\times N` matrix of squared distances.

    perplexity: float
        Perplexity can be thought of as the continuous :math:`k` number of
        nearest neighbors, for which t-SNE will attempt to preserve distances.

    max_distance: float
        The largest entry in ``distances``. Used to initialize the bandwidth
        search. Computed from ``distances`` if not given.

    exaggeration: float
        The early exaggeration factor to apply to ``P``.

    tol: float
        Absolute tolerance of the entropy match in the bandwidth search.

    max_tries: int
        The maximum number of bandwidth search steps for each point.

    verbose: bool

    Attributes
    ----------
    betas: np.ndarray
        The calibrated precisions :math:`\\beta_i = 1 / (2 \\sigma_i^2)`.

    sigmas: np.ndarray
        The bandwidths corresponding to ``betas``. Diagnostic only.

    converged: np.ndarray
        Whether the bandwidth search for each point met the tolerance.

    """

    def __init__(
        self,
        distances,
        perplexity=40,
        max_distance=None,
        exaggeration=EARLY_EXAGGERATION,
        tol=1e-5,
        max_tries=50,
        verbose=False,
    ):
        super().__init__(verbose=verbose)

        distances = np.asarray(distances, dtype=np.float64)
        if distances.ndim != 2 or distances.shape[0] != distances.shape[1]:
            raise ValueError("The distance matrix must be a square matrix.")
        n_samples = check_n_samples(distances.shape[0])

        self.perplexity = self.check_perplexity(perplexity, n_samples)

        if max_distance is None:
            max_distance = find_max_distance(distances)

        with utils.Timer("Calculating affinity matrix...", verbose):
            self.P, self.betas, self.converged = joint_probabilities(
                distances,
                self.perplexity,
                max_distance,
                exaggeration=exaggeration,
                tol=tol,
                max_tries=max_tries,
            )
        self.exaggeration = exaggeration
        self.sigmas = np.sqrt(0.5 / self.betas)

        log.debug("Average sigma: %.4f", np.mean(self.sigmas))
        n_failed = np.sum(~self.converged)
        if n_failed:
            log.info(
                "Bandwidth search did not reach the desired perplexity within "
                "%d steps for %d of %d points. Using the last bandwidth found.",
                max_tries, n_failed, n_samples,
            )

    @staticmethod
    def check_perplexity(perplexity, n_samples):
        if perplexity <= 0:
            raise ValueError("Perplexity must be >0. %.2f given" % perplexity)

        if perplexity >= n_samples:
            raise ValueError(
                "Perplexity (%.2f) must be smaller than the number of samples "
                "(%d)." % (perplexity, n_samples)
            )

        return perplexity


def _conditional_row(distances_i, i, beta):
    """Compute the conditional probabilities :math:`p_{j|i}` for a single
    point and a given precision.

    Returns the row and the observed log-perplexity (entropy)
    :math:`H = \\ln \\sum_j e^{-\\beta d_{ij}} + \\beta \\sum_j d_{ij} p_{j|i}`.

    """
    n_samples = distances_i.shape[0]
    p_i = np.zeros(n_samples, dtype=np.float64)

    neighbors = np.isfinite(distances_i)
    neighbors[i] = False

    # With no neighbors at finite distance, use the beta -> 0 limit
    if not np.any(neighbors):
        p_i[:] = 1 / (n_samples - 1)
        p_i[i] = 0
        return p_i, np.log(n_samples - 1)

    # Shift by the nearest distance so the largest weight is exactly 1. This
    # leaves H unchanged, but the sum cannot underflow to zero
    d = distances_i[neighbors]
    d = d - np.min(d)
    weights = np.exp(-beta * d)
    sum_weights = np.sum(weights)
    weights /= sum_weights
    p_i[neighbors] = weights

    return p_i, np.log(sum_weights) + beta * np.sum(d * weights)


def conditional_probabilities(
    distances, log_perplexity, beta_init, start=0, stop=None, tol=1e-5, max_tries=50
):
    """Compute the conditional probabilities :math:`p_{j|i}` for the rows
    ``start`` to ``stop``, binary searching each point's precision so its
    distribution matches the desired perplexity.

    Rows are computed independently of each other and of any shared state, so
    disjoint row ranges may be processed in any order.

    Parameters
    ----------
    distances: np.ndarray
        The full :math:`N \\times N` squared distance matrix.

    log_perplexity: float
        The natural logarithm of the desired perplexity, i.e. the target
        entropy.

    beta_init: float
        The starting precision of every search.

    start: int
    stop: int

    tol: float
        The search stops once the entropy is within ``tol`` of the target.

    max_tries: int
        The maximum number of search steps. If the tolerance is not met by
        then, the last computed row is used.

    Returns
    -------
    rows: np.ndarray
        A ``(stop - start) x N`` matrix of conditional probabilities.

    betas: np.ndarray
        The final precision for each row.

    converged: np.ndarray
        Whether each row met the tolerance.

    """
    n_samples = distances.shape[0]
    if stop is None:
        stop = n_samples

    rows = np.zeros((stop - start, n_samples), dtype=np.float64)
    betas = np.zeros(stop - start, dtype=np.float64)
    converged = np.zeros(stop - start, dtype=bool)

    for row, i in enumerate(range(start, stop)):
        beta, beta_min, beta_max = beta_init, 0., np.inf
        p_i, entropy = _conditional_row(distances[i], i, beta)
        diff = entropy - log_perplexity

        tries = 0
        while tries < max_tries and abs(diff) > tol:
            # Distribution too flat, so narrow the kernel
            if diff > 0:
                beta_min = beta
                if np.isinf(beta_max):
                    beta *= 2
                else:
                    beta += (beta_max - beta) / 2
            else:
                beta_max = beta
                beta = (beta + beta_min) / 2

            p_i, entropy = _conditional_row(distances[i], i, beta)
            diff = entropy - log_perplexity
            tries += 1

        rows[row] = p_i
        betas[row] = beta
        converged[row] = abs(diff) <= tol

    return rows, betas, converged


def joint_probabilities(
    distances,
    perplexity,
    max_distance,
    exaggeration=EARLY_EXAGGERATION,
    tol=1e-5,
    max_tries=50,
):
    """Compute the symmetric joint probability matrix :math:`P`.

    The conditional probabilities are symmetrized as
    :math:`p_{ij} = p_{j|i} + p_{i|j}` and scaled so the whole matrix sums to
    ``exaggeration``. Off-diagonal entries are then floored at ``MIN_PIJ``.

    Parameters
    ----------
    distances: np.ndarray
        A symmetric :math:`N \\times N` matrix of squared distances.

    perplexity: float
        The desired perplexity of each point's distribution.

    max_distance: float
        The largest entry of ``distances``. Every bandwidth search starts at
        :math:`\\beta = 1 / \\max`.

    exaggeration: float

    tol: float

    max_tries: int

    Returns
    -------
    P: np.ndarray
        The scaled joint probability matrix with a zero diagonal.

    betas: np.ndarray

    converged: np.ndarray

    """
    n_samples = distances.shape[0]

    # All points coincide or no finite distances at all
    if np.isfinite(max_distance) and max_distance > 0:
        beta_init = 1 / max_distance
    else:
        beta_init = 1.

    conditional_P, betas, converged = conditional_probabilities(
        distances,
        np.log(perplexity),
        beta_init,
        tol=tol,
        max_tries=max_tries,
    )

    P = conditional_P + conditional_P.T
    # The lower triangle holds every pair once
    sum_P = np.sum(np.tril(P, k=-1))
    P *= exaggeration / (2 * sum_P)

    np.maximum(P, MIN_PIJ, out=P)
    P[np.diag_indices(n_samples)] = 0

    return P, betas, converged
