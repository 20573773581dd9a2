import unittest
from contextlib import redirect_stdout
from io import StringIO

import numpy as np

from exactTSNE.utils import Timer, squared_distances


class TestTimer(unittest.TestCase):
    def test_prints_when_verbose(self):
        out = StringIO()
        with redirect_stdout(out):
            with Timer("Doing things...", verbose=True):
                pass
        self.assertIn("===> Doing things...", out.getvalue())
        self.assertIn("Time elapsed", out.getvalue())

    def test_silent_by_default(self):
        out = StringIO()
        with redirect_stdout(out):
            with Timer("Doing things..."):
                pass
        self.assertEqual(out.getvalue(), "")

    def test_elapsed_is_recorded(self):
        with Timer("Doing things...") as timer:
            pass
        self.assertGreaterEqual(timer.elapsed, 0)

    def test_does_not_swallow_exceptions(self):
        with self.assertRaises(KeyError):
            with Timer("Failing..."):
                raise KeyError("x")


class TestSquaredDistances(unittest.TestCase):
    def test_values(self):
        x = np.array([[0, 0], [3, 4], [0, 1]], dtype=np.float64)
        D = squared_distances(x)
        np.testing.assert_almost_equal(D, [[0, 25, 1], [25, 0, 18], [1, 18, 0]])

    def test_accepts_integer_input(self):
        D = squared_distances([[0, 0], [1, 1]])
        self.assertEqual(D.dtype, np.float64)
        np.testing.assert_almost_equal(D, [[0, 2], [2, 0]])
