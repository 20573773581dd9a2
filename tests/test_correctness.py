import logging
import unittest

import numpy as np
from scipy.spatial.distance import pdist, squareform
from sklearn import datasets
from sklearn.metrics import accuracy_score
from sklearn.neighbors import KNeighborsClassifier

import exactTSNE
from exactTSNE import affinity, callbacks
from exactTSNE.callbacks import VerifyExaggerationError
from exactTSNE.metrics import pBIC

affinity.log.setLevel(logging.ERROR)
callbacks.log.setLevel(logging.ERROR)


def euclidean_oracle(x):
    def distance(i, j):
        return np.linalg.norm(x[i] - x[j])
    return distance


class TestTSNECorrectness(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.tsne = exactTSNE.TSNE(n_iter=150, perplexity=20, random_state=0)
        # Set up two modalities, if we want to viually inspect test results
        random_state = np.random.RandomState(0)
        cls.x = np.vstack(
            (random_state.normal(+1, 1, (50, 4)), random_state.normal(-1, 1, (50, 4)))
        )
        cls.ids = list(range(cls.x.shape[0]))
        cls.distance = staticmethod(euclidean_oracle(cls.x))
        cls.iris = datasets.load_iris()

    def test_basic_flow(self):
        """Verify that the basic flow does not crash."""
        embedding = self.tsne.fit(self.ids, self.distance)
        self.assertFalse(np.any(np.isnan(embedding)))
        self.assertEqual(embedding.shape, (self.x.shape[0], 2))
        self.assertTrue(np.isfinite(embedding.kl_divergence))

    def test_advanced_flow(self):
        """Verify that the advanced flow does not crash."""
        embedding = self.tsne.prepare_initial(self.ids, self.distance)
        embedding = embedding.optimize(50)
        embedding = embedding.optimize(100)  # type: exactTSNE.TSNEEmbedding
        self.assertFalse(np.any(np.isnan(embedding)))

    def test_error_exaggeration_correction(self):
        embedding = self.tsne.prepare_initial(self.ids, self.distance)

        # The callback raises if the KL divergence does not match the true one
        embedding.optimize(
            50,
            callbacks=[VerifyExaggerationError(embedding)],
            callbacks_every_iters=1,
            inplace=True,
        )

    def test_error_verification_warns_once_without_exaggeration(self):
        embedding = self.tsne.prepare_initial(self.ids, self.distance)

        with self.assertLogs(callbacks.log, level="WARNING") as logs:
            embedding.optimize(
                110,
                callbacks=[VerifyExaggerationError(embedding)],
                callbacks_every_iters=1,
                inplace=True,
            )
        self.assertEqual(len(logs.records), 1)
        self.assertIn("Iteration 102", logs.records[0].getMessage())

    def test_error_decreases(self):
        embedding = self.tsne.prepare_initial(self.ids, self.distance)
        embedding.optimize(10, inplace=True)
        early_error = embedding.kl_divergence
        embedding.optimize(200, inplace=True)
        self.assertLess(embedding.kl_divergence, early_error)

    def test_clusters_are_separated(self):
        embedding = exactTSNE.TSNE(perplexity=20, random_state=1).fit(
            self.ids, self.distance
        )
        labels = np.repeat([0, 1], 50)
        knn = KNeighborsClassifier(n_neighbors=5)
        knn.fit(embedding, labels)
        self.assertGreater(accuracy_score(knn.predict(embedding), labels), 0.85)

    def test_iris(self):
        x, y = self.iris.data, self.iris.target

        # Evaluate t-SNE optimization using a KNN classifier
        knn = KNeighborsClassifier(n_neighbors=10)
        tsne = exactTSNE.TSNE(perplexity=30, random_state=0)

        # Prepare a random initialization
        embedding = tsne.prepare_initial(range(x.shape[0]), euclidean_oracle(x))

        # KNN should do poorly on a random initialization
        knn.fit(embedding, y)
        predictions = knn.predict(embedding)
        self.assertLess(accuracy_score(predictions, y), 0.5)

        embedding.optimize(300, inplace=True)

        # Similar points should be grouped together, therefore KNN should do well
        knn.fit(embedding, y)
        predictions = knn.predict(embedding)
        self.assertGreater(accuracy_score(predictions, y), 0.9)

    def test_iris_with_squared_distances(self):
        x, y = self.iris.data, self.iris.target
        D = squareform(pdist(x, "sqeuclidean"))

        tsne = exactTSNE.TSNE(perplexity=30, random_state=0, squared_distances=True)
        embedding = tsne.fit(range(x.shape[0]), lambda i, j: D[i, j])

        knn = KNeighborsClassifier(n_neighbors=10)
        knn.fit(embedding, y)
        self.assertGreater(accuracy_score(knn.predict(embedding), y), 0.9)


class TestPBIC(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        random_state = np.random.RandomState(0)
        cls.x = random_state.normal(0, 1, (40, 3))
        cls.distance = staticmethod(euclidean_oracle(cls.x))

    def test_pbic(self):
        embedding = exactTSNE.TSNE(perplexity=10, n_iter=120, random_state=0).fit(
            range(40), self.distance
        )
        expected = 2 * embedding.kl_divergence + np.log(40) * 10 / 40
        self.assertAlmostEqual(pBIC(embedding), expected)

    def test_pbic_requires_optimized_embedding(self):
        embedding = exactTSNE.TSNE(perplexity=10, random_state=0).prepare_initial(
            range(40), self.distance
        )
        with self.assertRaises(RuntimeError):
            pBIC(embedding)

    def test_pbic_requires_perplexity(self):
        aff = affinity.Affinities()
        aff.P = np.full((3, 3), 1 / 6)
        np.fill_diagonal(aff.P, 0)
        embedding = exactTSNE.TSNEEmbedding(np.zeros((3, 2)), aff)
        with self.assertRaises(TypeError):
            pBIC(embedding)
