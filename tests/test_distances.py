import unittest
from unittest.mock import MagicMock

import numpy as np
from scipy.spatial.distance import pdist, squareform

from exactTSNE import distances


class TestBuildDistanceMatrix(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        random_state = np.random.RandomState(0)
        cls.x = random_state.normal(0, 1, (20, 3))
        cls.ids = ["obj-%d" % i for i in range(20)]
        cls.lookup = dict(zip(cls.ids, cls.x))

    def euclidean(self, a, b):
        return np.linalg.norm(self.lookup[a] - self.lookup[b])

    def test_squares_raw_distances(self):
        D, _ = distances.build_distance_matrix(self.ids, self.euclidean)
        expected = squareform(pdist(self.x, "sqeuclidean"))
        np.testing.assert_allclose(D, expected, rtol=1e-10, atol=1e-12)

    def test_does_not_square_squared_distances(self):
        def sqeuclidean(a, b):
            return np.sum((self.lookup[a] - self.lookup[b]) ** 2)

        D, _ = distances.build_distance_matrix(self.ids, sqeuclidean, squared=True)
        expected = squareform(pdist(self.x, "sqeuclidean"))
        np.testing.assert_allclose(D, expected, rtol=1e-10, atol=1e-12)

    def test_matrix_is_symmetric_with_zero_diagonal(self):
        D, _ = distances.build_distance_matrix(self.ids, self.euclidean)
        np.testing.assert_array_equal(D, D.T)
        np.testing.assert_array_equal(np.diag(D), 0)

    def test_queries_only_lower_triangle(self):
        oracle = MagicMock(return_value=1.)
        distances.build_distance_matrix(self.ids, oracle)

        n = len(self.ids)
        self.assertEqual(oracle.call_count, n * (n - 1) // 2)
        for call in oracle.call_args_list:
            a, b = call[0]
            self.assertGreater(self.ids.index(a), self.ids.index(b))

    def test_max_distance(self):
        D, max_distance = distances.build_distance_matrix(self.ids, self.euclidean)
        self.assertEqual(max_distance, np.max(D))

    def test_max_distance_ignores_infinite_entries(self):
        D = np.array([[0, 1, np.inf], [1, 0, 4], [np.inf, 4, 0]], dtype=float)
        self.assertEqual(distances.max_distance(D), 4)

    def test_oracle_errors_propagate(self):
        def failing(a, b):
            raise KeyError(a)

        with self.assertRaises(KeyError):
            distances.build_distance_matrix(self.ids, failing)

    def test_rejects_negative_distances(self):
        for squared in (False, True):
            with self.assertRaises(ValueError):
                distances.build_distance_matrix(
                    self.ids, MagicMock(return_value=-1.), squared=squared
                )

    def test_rejects_non_callable_distance(self):
        with self.assertRaises(ValueError):
            distances.build_distance_matrix(self.ids, "euclidean")

    def test_three_point_scenario(self):
        table = {(1, 0): 1, (2, 0): 2, (2, 1): 1}
        D, max_distance = distances.build_distance_matrix(
            [0, 1, 2], lambda a, b: table[a, b]
        )
        np.testing.assert_array_equal(D, [[0, 1, 4], [1, 0, 1], [4, 1, 0]])
        self.assertEqual(max_distance, 4)


class TestMetricDistanceMatrix(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.x = np.random.RandomState(1).normal(0, 1, (15, 4))

    def test_euclidean_is_squared(self):
        D, max_distance = distances.metric_distance_matrix(self.x, "euclidean")
        expected = squareform(pdist(self.x, "euclidean")) ** 2
        np.testing.assert_allclose(D, expected)
        self.assertAlmostEqual(max_distance, np.max(expected))

    def test_sqeuclidean_is_not_squared_again(self):
        D, _ = distances.metric_distance_matrix(self.x, "sqeuclidean")
        D_euclidean, _ = distances.metric_distance_matrix(self.x, "euclidean")
        np.testing.assert_allclose(D, D_euclidean)

    def test_callable_metric(self):
        def manhattan(a, b):
            return np.sum(np.abs(a - b))

        D, _ = distances.metric_distance_matrix(self.x, manhattan)
        expected = squareform(pdist(self.x, "cityblock")) ** 2
        np.testing.assert_allclose(D, expected)

    def test_precomputed(self):
        raw = squareform(pdist(self.x, "euclidean"))
        D, _ = distances.metric_distance_matrix(raw, "precomputed")
        np.testing.assert_allclose(D, raw ** 2)

    def test_precomputed_must_be_square(self):
        with self.assertRaises(ValueError):
            distances.metric_distance_matrix(np.zeros((3, 4)), "precomputed")

    def test_precomputed_must_be_symmetric(self):
        D = np.array([[0, 1], [2, 0]], dtype=float)
        with self.assertRaises(ValueError):
            distances.metric_distance_matrix(D, "precomputed")

    def test_precomputed_must_have_zero_diagonal(self):
        D = np.array([[1, 1], [1, 0]], dtype=float)
        with self.assertRaises(ValueError):
            distances.metric_distance_matrix(D, "precomputed")

    def test_precomputed_must_be_non_negative(self):
        D = np.array([[0, -1], [-1, 0]], dtype=float)
        with self.assertRaises(ValueError):
            distances.metric_distance_matrix(D, "precomputed")

    def test_is_squared_metric(self):
        self.assertTrue(distances.is_squared_metric("sqeuclidean"))
        self.assertFalse(distances.is_squared_metric("euclidean"))
        self.assertFalse(distances.is_squared_metric(lambda a, b: 0))
