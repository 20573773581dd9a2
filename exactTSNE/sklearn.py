import numpy as np

import exactTSNE
from exactTSNE import distances
from exactTSNE.affinity import PerplexityBased, check_n_samples
from exactTSNE.projection import IdentityIndex
from exactTSNE.tsne import _check_run_params


class TSNE(exactTSNE.TSNE):
    """Exact t-SNE with a scikit-learn style interface over a data matrix.

    Samples are the rows of the data matrix and are identified by their row
    position. All other parameters are documented on
    :class:`exactTSNE.TSNE`.

    Parameters
    ----------
    metric: Union[str, Callable]
        The metric to be used to compute affinities between points in the
        original space. Any metric supported by
        :func:`scipy.spatial.distance.pdist`, a callable or ``precomputed``.

    metric_params: dict
        Additional keyword arguments for the metric function.

    """

    def __init__(
        self,
        perplexity=40.0,
        learning_rate=100,
        n_iter=300,
        initial_momentum=0.5,
        final_momentum=0.8,
        initialization="random",
        metric="euclidean",
        metric_params=None,
        affinities=None,
        callbacks=None,
        callbacks_every_iters=50,
        random_state=None,
        verbose=False,
    ):
        super().__init__(
            perplexity=perplexity,
            learning_rate=learning_rate,
            n_iter=n_iter,
            initial_momentum=initial_momentum,
            final_momentum=final_momentum,
            initialization=initialization,
            affinities=affinities,
            callbacks=callbacks,
            callbacks_every_iters=callbacks_every_iters,
            random_state=random_state,
            verbose=verbose,
        )
        self.metric = metric
        self.metric_params = metric_params

    def prepare_initial(self, X, distance=None):
        """Prepare the initial embedding of a data matrix.

        Parameters
        ----------
        X: np.ndarray
            The data matrix to be embedded.

        distance: ignored

        Returns
        -------
        TSNEEmbedding

        """
        _check_run_params(self.perplexity, self.n_iter, self.learning_rate)

        X = np.asarray(X)
        if X.ndim != 2:
            raise ValueError("The data matrix must be a 2-dimensional matrix.")

        identities = IdentityIndex(range(X.shape[0]))
        n_samples = check_n_samples(len(identities))

        if self.affinities is None:
            PerplexityBased.check_perplexity(self.perplexity, n_samples)
            distance_matrix, max_distance = distances.metric_distance_matrix(
                X, self.metric, self.metric_params, verbose=self.verbose
            )
            affinities = self._calibrate(distance_matrix, max_distance)
        else:
            affinities = self._precomputed_affinities(n_samples)

        return self._initial_embedding(identities, affinities)

    def fit(self, X, y=None):
        """Fit X into an embedded space.

        Parameters
        ----------
        X: np.ndarray
            The data matrix to be embedded.
        y : ignored

        """
        self.fit_transform(X, y)
        return self

    def fit_transform(self, X, y=None):
        """Fit X into an embedded space and return that transformed output.

        Parameters
        ----------
        X: np.ndarray
            The data matrix to be embedded.
        y : ignored

        Returns
        -------
        np.ndarray
            Embedding of the training data in low-dimensional space.

        """
        embedding = super().fit(X)
        self.embedding_ = embedding
        return self.embedding_.view(np.ndarray)
