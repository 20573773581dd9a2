import copy
import logging
from collections.abc import Iterable
from time import time

import numpy as np
from sklearn.base import BaseEstimator

from exactTSNE import distances as distance_matrix
from exactTSNE import initialization as initialization_scheme
from exactTSNE import utils
from exactTSNE.affinity import Affinities, PerplexityBased, check_n_samples
from exactTSNE.projection import IdentityIndex, project

EPSILON = np.finfo(np.float64).eps

MIN_QIJ = 1e-12

MIN_GAIN = 0.01

N_COMPONENTS = 2

# The early exaggeration is removed from P after this iteration
EXAGGERATION_RELEASE_ITER = 100

# Use the initial momentum for iterations before this one
MOMENTUM_SWITCH_ITER = 20

log = logging.getLogger(__name__)


def _check_callbacks(callbacks):
    if callbacks is not None:
        # If list was passed, make sure all of them are actually callable
        if isinstance(callbacks, Iterable):
            if any(not callable(c) for c in callbacks):
                raise ValueError("`callbacks` must contain callable objects!")
        # The gradient descent method deals with lists
        elif callable(callbacks):
            callbacks = (callbacks,)
        else:
            raise ValueError("`callbacks` must be a callable object!")

    return callbacks


def _handle_nice_params(optim_params: dict) -> None:
    """Convert the user friendly params into something the optimizer can
    understand."""
    optim_params["callbacks"] = _check_callbacks(optim_params.get("callbacks"))
    optim_params["use_callbacks"] = optim_params["callbacks"] is not None

    if optim_params["n_iter"] < 0:
        raise ValueError(
            "The number of iterations must be non-negative. %d given"
            % optim_params["n_iter"]
        )

    learning_rate = optim_params.get("learning_rate", 100)
    if learning_rate <= 0:
        raise ValueError("The learning rate must be positive. %.2f given" % learning_rate)


def _check_run_params(perplexity, n_iter, learning_rate):
    if perplexity <= 0:
        raise ValueError("Perplexity must be >0. %.2f given" % perplexity)
    if n_iter < 0:
        raise ValueError("The number of iterations must be non-negative. %d given" % n_iter)
    if learning_rate <= 0:
        raise ValueError("The learning rate must be positive. %.2f given" % learning_rate)


class TSNEEmbedding(np.ndarray):
    """A t-SNE embedding.

    Parameters
    ----------
    embedding: np.ndarray
        Initial positions for each data point.

    affinities: Affinities
        The affinity object containing the affinity matrix :math:`P` used
        during optimization. The matrix is modified in place when the early
        exaggeration is removed.

    identities: IdentityIndex
        The object identities of the rows. Defaults to the row indices.

    learning_rate: float
        The learning rate for t-SNE optimization.

    initial_momentum: float
        The momentum to use during the first iterations.

    final_momentum: float
        The momentum to use for the rest of the optimization.

    callbacks: Callable[[int, float, np.ndarray] -> Any]
        Callbacks, which will be run every ``callbacks_every_iters``
        iterations. They can observe the optimization, but not stop it.

    callbacks_every_iters: int
        How many iterations should pass between each time the callbacks are
        invoked.

    optimizer: gradient_descent
        Optionally, an existing optimizer can be used for optimization. This is
        useful for keeping momentum and gains between different calls to
        :func:`optimize`.

    Attributes
    ----------
    kl_divergence: float
        The KL divergence or error of the embedding.

    """

    def __new__(
        cls,
        embedding,
        affinities,
        identities=None,
        optimizer=None,
        **gradient_descent_params,
    ):
        if embedding.shape[0] != affinities.n_samples:
            raise ValueError(
                "The provided embedding contains a different number of points "
                "(%d) than the affinity matrix (%d)."
                % (embedding.shape[0], affinities.n_samples)
            )

        obj = np.asarray(embedding, dtype=np.float64, order="C").view(TSNEEmbedding)

        if identities is None:
            identities = IdentityIndex(range(embedding.shape[0]))
        elif not isinstance(identities, IdentityIndex):
            identities = IdentityIndex(identities)
        if len(identities) != embedding.shape[0]:
            raise ValueError(
                "The provided embedding contains a different number of points "
                "(%d) than there are identities (%d)."
                % (embedding.shape[0], len(identities))
            )

        obj.affinities = affinities  # type: Affinities
        obj.identities = identities  # type: IdentityIndex
        obj.gradient_descent_params = gradient_descent_params  # type: dict

        if optimizer is None:
            optimizer = gradient_descent()
        elif not isinstance(optimizer, gradient_descent):
            raise TypeError(
                "`optimizer` must be an instance of `%s`, but got `%s`."
                % (gradient_descent.__name__, type(optimizer))
            )
        obj.optimizer = optimizer

        obj.kl_divergence = None

        return obj

    def optimize(self, n_iter, inplace=False, **gradient_descent_params):
        """Run optmization on the embedding for a given number of steps.

        Parameters
        ----------
        n_iter: int
            The number of optimization iterations. Exactly this many updates
            are applied, there is no convergence check.

        inplace: bool
            Whether or not to create a copy of the embedding or to perform
            updates inplace. When copying, the affinities and the optimizer
            state are copied as well.

        learning_rate: float
            The learning rate for t-SNE optimization.

        initial_momentum: float
            The momentum to use during the first iterations.

        final_momentum: float
            The momentum to use for the rest of the optimization.

        exaggeration_iter: int
            The iteration after which the early exaggeration is removed from
            the affinity matrix.

        callbacks: Callable[[int, float, np.ndarray] -> Any]
            Callbacks, which will be run every ``callbacks_every_iters``
            iterations.

        callbacks_every_iters: int
            How many iterations should pass between each time the callbacks are
            invoked.

        verbose: bool

        Returns
        -------
        TSNEEmbedding
            An optimized t-SNE embedding.

        """
        # Typically we want to return a new embedding and keep the old one intact
        if inplace:
            embedding = self
        else:
            embedding = TSNEEmbedding(
                np.copy(self),
                copy.deepcopy(self.affinities),
                identities=self.identities,
                optimizer=self.optimizer.copy(),
                **self.gradient_descent_params,
            )

        # If optimization parameters were passed to this funciton, prefer those
        # over the defaults specified in the TSNE object
        optim_params = dict(self.gradient_descent_params)
        optim_params.update(gradient_descent_params)
        optim_params["n_iter"] = n_iter
        _handle_nice_params(optim_params)

        # Run gradient descent with the embedding optimizer so gains are
        # properly updated and kept
        error, embedding = embedding.optimizer(
            embedding=embedding, affinities=embedding.affinities, **optim_params
        )

        embedding.kl_divergence = error

        return embedding

    def project(self, name="tSNE"):
        """Map the embedding coordinates back to the object identities.

        Returns
        -------
        Projection

        """
        return project(self.view(np.ndarray), self.identities, name=name)

    def __reduce__(self):
        state = super().__reduce__()
        new_state = state[2] + (
            self.affinities,
            self.identities,
            self.gradient_descent_params,
            self.optimizer,
            self.kl_divergence,
        )
        return state[0], state[1], new_state

    def __setstate__(self, state):
        self.kl_divergence = state[-1]
        self.optimizer = state[-2]
        self.gradient_descent_params = state[-3]
        self.identities = state[-4]
        self.affinities = state[-5]
        super().__setstate__(state[0:-5])


class TSNE(BaseEstimator):
    """Exact t-Distributed Stochastic Neighbor Embedding.

    Embeds a set of objects into two dimensions given only a function that
    computes the distance between any two of them. All pairwise affinities are
    computed exactly, so time and memory are quadratic in the number of
    objects.

    Parameters
    ----------
    perplexity: float
        Perplexity can be thought of as the continuous :math:`k` number of
        nearest neighbors, for which t-SNE will attempt to preserve distances.
        Must be positive and smaller than the number of objects.

    learning_rate: float
        The learning rate for t-SNE optimization.

    n_iter: int
        The total number of optimization iterations. The early exaggeration is
        removed after iteration 100, so with 100 or fewer iterations the
        embedding is only ever optimized with exaggerated affinities.

    initial_momentum: float
        The momentum to use during the first 20 iterations. Only used if it
        is smaller than ``final_momentum``.

    final_momentum: float
        The momentum to use for the rest of the optimization.

    initialization: Union[np.ndarray, str]
        The initial point positions to be used in the embedding space. Can be a
        precomputed numpy array or ``random``. Please note that when passing in
        a precomputed positions, it is highly recommended that the point
        positions have small variance, otherwise you may get poor embeddings.

    squared_distances: bool
        Whether the distance function already returns squared euclidean
        distances. Otherwise, the distances are squared before computing
        affinities.

    affinities: exactTSNE.affinity.Affinities
        A precomputed affinity object. If specified, the distance function and
        perplexity are ignored.

    callbacks: Union[Callable, List[Callable]]
        Callbacks, which will be run every ``callbacks_every_iters`` iterations.

    callbacks_every_iters: int
        How many iterations should pass between each time the callbacks are
        invoked.

    random_state: Union[int, RandomState]
        If the value is an int, random_state is the seed used by the random
        number generator. If the value is a RandomState instance, then it will
        be used as the random number generator. If the value is None, the random
        number generator is the RandomState instance used by `np.random`.

    verbose: bool

    """

    def __init__(
        self,
        perplexity=40.0,
        learning_rate=100,
        n_iter=300,
        initial_momentum=0.5,
        final_momentum=0.8,
        initialization="random",
        squared_distances=False,
        affinities=None,
        callbacks=None,
        callbacks_every_iters=50,
        random_state=None,
        verbose=False,
    ):
        # Validate everything we can before any data is seen
        _check_run_params(perplexity, n_iter, learning_rate)

        if isinstance(initialization, np.ndarray):
            if initialization.ndim != 2 or initialization.shape[1] != N_COMPONENTS:
                raise ValueError(
                    "The provided initialization must be an N x %d matrix."
                    % N_COMPONENTS
                )
        elif initialization != "random":
            raise ValueError(
                f"Unrecognized initialization scheme `{initialization}`."
            )

        if affinities is not None and not isinstance(affinities, Affinities):
            raise ValueError(
                "`affinities` must be an instance of `exactTSNE.affinity.Affinities`"
            )
        _check_callbacks(callbacks)

        self.perplexity = perplexity
        self.learning_rate = learning_rate
        self.n_iter = n_iter
        self.initial_momentum = initial_momentum
        self.final_momentum = final_momentum
        self.initialization = initialization
        self.squared_distances = squared_distances
        self.affinities = affinities

        self.callbacks = callbacks
        self.callbacks_every_iters = callbacks_every_iters

        self.random_state = random_state
        self.verbose = verbose

    def fit(self, objects, distance=None):
        """Fit a t-SNE embedding for a given set of objects.

        Parameters
        ----------
        objects: Iterable[Hashable]
            The object identities. Their iteration order determines the row
            order of the embedding.

        distance: Callable[[Any, Any], float]
            The distance function, called with two object identities.

        Returns
        -------
        TSNEEmbedding
            A fully optimized t-SNE embedding.

        """
        if self.verbose:
            print("-" * 80, repr(self), "-" * 80, sep="\n")

        embedding = self.prepare_initial(objects, distance)
        embedding.optimize(n_iter=self.n_iter, inplace=True)

        return embedding

    def run(self, objects, distance=None):
        """Fit a t-SNE embedding and return its coordinates keyed by object
        identity.

        Returns
        -------
        Projection

        """
        return self.fit(objects, distance).project()

    def prepare_initial(self, objects, distance=None):
        """Prepare the initial embedding which can be optimized as needed.

        Parameters
        ----------
        objects: Iterable[Hashable]
            The object identities.

        distance: Callable[[Any, Any], float]
            The distance function, called with two object identities.

        Returns
        -------
        TSNEEmbedding
            An unoptimized :class:`TSNEEmbedding` object, prepared for
            optimization.

        """
        # Parameters may have been changed through `set_params`
        _check_run_params(self.perplexity, self.n_iter, self.learning_rate)

        identities = IdentityIndex(objects)
        n_samples = check_n_samples(len(identities))

        if self.affinities is None:
            if distance is None:
                raise ValueError(
                    "A `distance` function is required when no precomputed "
                    "affinities are given."
                )
            PerplexityBased.check_perplexity(self.perplexity, n_samples)
            distances, max_distance = distance_matrix.build_distance_matrix(
                identities,
                distance,
                squared=self.squared_distances,
                verbose=self.verbose,
            )
            affinities = self._calibrate(distances, max_distance)
        else:
            affinities = self._precomputed_affinities(n_samples)

        return self._initial_embedding(identities, affinities)

    def _calibrate(self, distances, max_distance):
        return PerplexityBased(
            distances,
            self.perplexity,
            max_distance=max_distance,
            verbose=self.verbose,
        )

    def _precomputed_affinities(self, n_samples):
        log.info(
            "Precomputed affinities provided. Ignoring distance and "
            "perplexity-related parameters."
        )
        if self.affinities.n_samples != n_samples:
            raise ValueError(
                "The precomputed affinities contain a different number of "
                "points (%d) than the data provided (%d)."
                % (self.affinities.n_samples, n_samples)
            )
        # The optimizer modifies the affinity matrix in place
        return copy.deepcopy(self.affinities)

    def _initial_embedding(self, identities, affinities):
        n_samples = len(identities)

        # If initial positions are given in an array, use a copy of that
        if isinstance(self.initialization, np.ndarray):
            embedding = initialization_scheme.precomputed(
                self.initialization, n_samples, N_COMPONENTS
            )
        else:
            embedding = initialization_scheme.random(
                n_samples,
                N_COMPONENTS,
                random_state=self.random_state,
                verbose=self.verbose,
            )

        gradient_descent_params = {
            "learning_rate": self.learning_rate,
            "initial_momentum": self.initial_momentum,
            "final_momentum": self.final_momentum,
            "verbose": self.verbose,
            # Callback params
            "callbacks": self.callbacks,
            "callbacks_every_iters": self.callbacks_every_iters,
        }

        return TSNEEmbedding(
            embedding,
            affinities,
            identities=identities,
            **gradient_descent_params,
        )


def compute_q(embedding):
    """Compute the unnormalized low-dimensional affinities.

    Parameters
    ----------
    embedding: np.ndarray
        The embedding :math:`Y`.

    Returns
    -------
    Q: np.ndarray
        The symmetric matrix :math:`q_{ij} = (1 + \\|y_i - y_j\\|^2)^{-1}` with a
        zero diagonal.

    sum_Q: float
        The sum over all off-diagonal entries, i.e. twice the sum over the
        lower triangle.

    """
    Q = 1 / (1 + utils.squared_distances(embedding))
    np.fill_diagonal(Q, 0)
    sum_Q = 2 * np.sum(np.tril(Q, k=-1))
    log.debug("Qij sum prior to normalization: %f", sum_Q)
    return Q, sum_Q


def kl_divergence_exact(embedding, P, should_eval_error=False, **_):
    """Compute the exact gradient and, optionally, the KL divergence between
    the affinities :math:`P` and the embedding affinities :math:`Q`.

    Parameters
    ----------
    embedding: np.ndarray
        The embedding :math:`Y`.

    P: np.ndarray
        The dense joint probability matrix.

    should_eval_error: bool
        Whether to compute the KL divergence. It costs another pass over the
        full matrices.

    Returns
    -------
    kl_divergence: Optional[float]
        ``None`` unless ``should_eval_error`` is set.

    gradient: np.ndarray

    """
    Y = np.asarray(embedding, dtype=np.float64)
    Q, sum_Q = compute_q(Y)
    q = np.maximum(Q / sum_Q, MIN_QIJ)

    # The diagonal vanishes because Q has a zero diagonal
    W = (P - q) * Q
    gradient = np.sum(W, axis=1)[:, np.newaxis] * Y - W @ Y

    kl_divergence_ = None
    if should_eval_error:
        mask = ~np.eye(Y.shape[0], dtype=bool)
        p_ij, q_ij = P[mask], q[mask]
        kl_divergence_ = float(np.sum(p_ij * np.log(np.maximum(p_ij, EPSILON) / q_ij)))

    return kl_divergence_, np.ascontiguousarray(gradient)


def _correct_exaggerated_error(error, affinities):
    """Convert the KL divergence computed with an exaggerated P into the one
    for the true P.

    With :math:`P = \\alpha \\tilde{P}`, the computed divergence is
    :math:`\\alpha KL(\\tilde{P} || Q) + \\alpha \\ln \\alpha \\sum_{ij} \\tilde{P}_{ij}`.
    The floored entries make :math:`\\sum \\tilde{P}` slightly larger than 1.

    """
    exaggeration = affinities.exaggeration
    return (error - np.log(exaggeration) * np.sum(affinities.P)) / exaggeration


class gradient_descent:
    def __init__(self):
        self.gains = None
        self.update = None

    def copy(self):
        optimizer = self.__class__()
        if self.gains is not None:
            optimizer.gains = np.copy(self.gains)
        if self.update is not None:
            optimizer.update = np.copy(self.update)
        return optimizer

    def __call__(
        self,
        embedding,
        affinities,
        n_iter,
        learning_rate=100,
        initial_momentum=0.5,
        final_momentum=0.8,
        exaggeration_iter=EXAGGERATION_RELEASE_ITER,
        momentum_switch_iter=MOMENTUM_SWITCH_ITER,
        min_gain=MIN_GAIN,
        use_callbacks=False,
        callbacks=None,
        callbacks_every_iters=50,
        verbose=False,
    ):
        """Perform batch gradient descent with momentum and gains.

        Parameters
        ----------
        embedding: np.ndarray
            The embedding :math:`Y`. Updated in place.

        affinities: Affinities
            Holds the joint probability matrix :math:`P`, possibly exaggerated.

        n_iter: int
            The number of iterations to run for.

        learning_rate: float
            The learning rate for t-SNE optimization.

        initial_momentum: float
            The momentum used before ``momentum_switch_iter``, if it is smaller
            than ``final_momentum``.

        final_momentum: float
            The momentum used for the remaining iterations.

        exaggeration_iter: int
            The early exaggeration is removed from :math:`P` right after the
            update of exactly this iteration. If ``n_iter`` does not exceed it,
            the exaggeration is kept.

        momentum_switch_iter: int

        min_gain: float
            Minimum individual gain for each parameter.

        use_callbacks: bool

        callbacks: Callable[[int, float, np.ndarray] -> Any]
            Callbacks, which will be run every ``callbacks_every_iters``
            iterations. Their return values are ignored.

        callbacks_every_iters: int
            How many iterations should pass between each time the callbacks are
            invoked.

        verbose: bool

        Returns
        -------
        float
            The KL divergence of the optimized embedding.
        np.ndarray
            The optimized embedding Y.

        """
        assert isinstance(embedding, np.ndarray), (
            "`embedding` must be an instance of `np.ndarray`. Got `%s` instead"
            % type(embedding)
        )

        if self.update is None:
            self.update = np.zeros(embedding.shape, dtype=np.float64)
        if self.gains is None:
            self.gains = np.ones(embedding.shape, dtype=np.float64)

        # Notify the callbacks that the optimization is about to start
        if isinstance(callbacks, Iterable):
            for callback in callbacks:
                # Only call function if present on object
                getattr(callback, "optimization_about_to_start", lambda: ...)()

        timer = utils.Timer(
            "Running optimization with exaggeration=%.2f, lr=%.2f for %d iterations..." % (
                affinities.exaggeration, learning_rate, n_iter
            ),
            verbose=verbose,
        )
        timer.__enter__()

        if verbose:
            start_time = time()

        for iteration in range(n_iter):
            should_call_callback = use_callbacks and (iteration + 1) % callbacks_every_iters == 0
            # Evaluate error on 50 iterations for logging, or when callbacks
            should_eval_error = should_call_callback or \
                (verbose and (iteration + 1) % 50 == 0)

            error, gradient = kl_divergence_exact(
                embedding, affinities.P, should_eval_error=should_eval_error
            )

            # Correct the KL divergence w.r.t. the exaggeration if needed
            if should_eval_error and affinities.exaggeration != 1:
                error = _correct_exaggerated_error(error, affinities)

            if should_call_callback:
                for callback in callbacks:
                    callback(iteration + 1, error, embedding)

            if iteration < momentum_switch_iter and initial_momentum < final_momentum:
                momentum = initial_momentum
            else:
                momentum = final_momentum

            # Grow the gains where the gradient disagrees with the direction of
            # the last update, shrink them elsewhere
            flipped = (gradient > 0) != (self.update > 0)
            self.gains[flipped] += 0.2
            self.gains[~flipped] *= 0.8
            np.maximum(self.gains, min_gain, out=self.gains)

            self.update *= momentum
            self.update -= learning_rate * gradient * self.gains
            embedding += self.update

            if iteration == exaggeration_iter:
                affinities.remove_exaggeration()

            if verbose and (iteration + 1) % 50 == 0:
                stop_time = time()
                print("Iteration %4d, KL divergence %6.4f, 50 iterations in %.4f sec" % (
                    iteration + 1, error, stop_time - start_time))
                start_time = time()

        timer.__exit__()

        # The error from the loop is the one for the previous, non-updated
        # embedding. We need to return the error for the actual final embedding, so
        # compute that at the end before returning
        error, _ = kl_divergence_exact(embedding, affinities.P, should_eval_error=True)
        if affinities.exaggeration != 1:
            error = _correct_exaggerated_error(error, affinities)

        return error, embedding
