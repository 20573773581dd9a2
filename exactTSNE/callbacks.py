import logging
from time import time

import numpy as np

from exactTSNE.tsne import TSNEEmbedding, kl_divergence_exact

log = logging.getLogger(__name__)


class Callback:
    def optimization_about_to_start(self):
        """Called once before the first iteration of every optimization run."""

    def __call__(self, iteration, error, embedding):
        """Observe the optimization.

        Callbacks only observe the optimization. Any value they return is
        ignored and they cannot stop the optimization early.

        Parameters
        ----------
        iteration: int
            The 1-based iteration number within the current run.

        error: float
            The KL divergence of the embedding before this iteration's update,
            corrected for the early exaggeration.

        embedding: TSNEEmbedding
            The embedding being optimized. Must not be modified.

        """


class ErrorLogger(Callback):
    """Print the KL divergence and the extent of the embedding.

    Each line also shows how many iterations passed since the last line and how
    long they took.

    """

    def __init__(self):
        self._last_iteration = 0
        self._last_time = None

    def optimization_about_to_start(self):
        self._last_iteration, self._last_time = 0, time()

    def __call__(self, iteration, error, embedding):
        elapsed, self._last_time = time() - self._last_time, time()
        n_iters, self._last_iteration = iteration - self._last_iteration, iteration

        span = np.ptp(np.asarray(embedding), axis=0)
        print(
            "Iteration % 4d, KL divergence % 6.4f, span %.2f x %.2f, "
            "%d iterations in %.4f sec"
            % (iteration, error, span[0], span[1], n_iters, elapsed)
        )


class VerifyExaggerationError(Callback):
    """Check the exaggeration-corrected error reported by `gradient_descent`
    against the KL divergence recomputed from the true affinities.

    Raises
    ------
    RuntimeError
        When the two differ by more than a relative tolerance of 1e-8.

    """
    def __init__(self, embedding: TSNEEmbedding) -> None:
        affinities = embedding.affinities
        # The embedding's P is scaled down in place later on, keep our own
        self.P = affinities.P / affinities.exaggeration
        self._warned = False

    def optimization_about_to_start(self):
        self._warned = False

    def __call__(self, iteration: int, corrected_error: float, embedding: TSNEEmbedding):
        if embedding.affinities.exaggeration == 1 and not self._warned:
            log.warning(
                "Iteration %d: P is not exaggerated, nothing to verify.", iteration
            )
            self._warned = True

        true_error, _ = kl_divergence_exact(embedding, self.P, should_eval_error=True)
        difference = abs(true_error - corrected_error)
        if difference > 1e-8 * max(1, abs(true_error)):
            raise RuntimeError(
                "Exaggeration correction is off by %g at iteration %d."
                % (difference, iteration)
            )
        log.debug("Iteration %d: corrected %.6f, true %.6f", iteration,
                  corrected_error, true_error)


class ErrorHistory(Callback):
    """Record the KL divergence at every callback invocation."""
    def __init__(self):
        self.iterations = []
        self.errors = []

    def optimization_about_to_start(self):
        self.iterations, self.errors = [], []

    def __call__(self, iteration: int, error: float, embedding: TSNEEmbedding):
        self.iterations.append(iteration)
        self.errors.append(error)

    def report(self):
        errors = np.array(self.errors)
        if errors.size == 0:
            print("No errors recorded.")
            return
        print("KL divergence: first %.4f, last %.4f, min %.4f" % (
            errors[0], errors[-1], np.min(errors)))
