""" Test the priors and initial posteriors. """

import numpy as np
import unittest
from unittest import mock

from .. import initialization


class TestPriors(unittest.TestCase):

    def test_default_priors(self):
        y = np.random.RandomState(0).normal(size=(100, 3))
        prior = initialization.default_priors(y, 4)

        self.assertEqual(prior.num_components, 4)
        self.assertEqual(prior.dimensions, 3)
        self.assertTrue(np.all(prior.dirichlet_alpha == 1))
        self.assertTrue(np.all(prior.wishart_alpha == 4))
        self.assertTrue(np.allclose(prior.normal_mean[2], np.median(y, axis=0)))
        self.assertTrue(np.allclose(
            np.diag(prior.normal_covariance[0]), np.ptp(y, axis=0)**2))
        self.assertTrue(np.allclose(
            np.diag(prior.wishart_scale[3]), np.ptp(y, axis=0)))


    def test_constant_dimension(self):
        y = np.random.RandomState(1).normal(size=(30, 2))
        y[:, 1] = 4.0
        prior = initialization.default_priors(y, 2)
        self.assertTrue(np.all(np.isfinite(prior.normal_covariance)))


class TestInitialize(unittest.TestCase):

    def _generate_data(self, D=2):
        random_state = np.random.RandomState(2)
        return np.vstack([
            random_state.normal(0, 1, size=(40, D)),
            random_state.normal(8, 1, size=(40, D))
        ])


    def test_methods(self):
        y = self._generate_data()
        N, D = y.shape
        for method in ("conditional", "random", "kmeans"):
            for covariance_type in ("diag", "full"):
                prior, posterior, responsibility = initialization.initialize(
                    y, 2, covariance_type=covariance_type,
                    initialization_method=method, random_state=0)

                self.assertEqual(responsibility.shape, (N, 2))
                self.assertTrue(np.allclose(responsibility.sum(axis=1), 1))
                self.assertEqual(posterior.normal_mean.shape, (2, D))
                self.assertEqual(posterior.wishart_scale.shape, (2, D, D))


    def test_kmeans_assignments(self):
        y = self._generate_data()
        prior, posterior, responsibility = initialization.initialize(
            y, 2, initialization_method="kmeans", random_state=0)

        labels = np.argmax(responsibility, axis=1)
        self.assertTrue(np.all(np.isin(responsibility, (0, 1))))
        self.assertEqual(len(set(labels[:40])), 1)
        self.assertEqual(len(set(labels[40:])), 1)
        self.assertNotEqual(labels[0], labels[-1])


    def test_kmeans_fallback_single_component(self):
        y = self._generate_data()
        with self.assertLogs("vbgmm.initialization", level="WARNING") as cm:
            prior, posterior, responsibility = initialization.initialize(
                y, 1, initialization_method="kmeans", random_state=0)

        self.assertIn("conditional", cm.output[0])
        self.assertTrue(np.all(responsibility == 1))


    def test_kmeans_fallback_dimensions(self):
        y = self._generate_data(D=3)
        with self.assertLogs("vbgmm.initialization", level="WARNING"):
            initialization.initialize(
                y, 2, initialization_method="kmeans", random_state=0)


    def test_reproducible(self):
        y = self._generate_data()
        a = initialization.initialize(y, 3, random_state=5)
        b = initialization.initialize(y, 3, random_state=5)
        self.assertTrue(np.all(a[1].normal_mean == b[1].normal_mean))
        self.assertTrue(np.all(a[2] == b[2]))


    def test_unknown_method(self):
        with self.assertRaises(ValueError):
            initialization.initialize(
                self._generate_data(), 2, initialization_method="foo")


    def test_kmeans_fallback_more_components_than_observations(self):
        y = np.array([[0.0], [0.1], [5.0], [5.1]])
        with self.assertLogs("vbgmm.initialization", level="WARNING") as cm:
            prior, posterior, responsibility = initialization.initialize(
                y, 6, initialization_method="kmeans", random_state=0)

        self.assertIn("conditional", cm.output[0])
        self.assertEqual(responsibility.shape, (4, 6))
        self.assertTrue(np.allclose(responsibility.sum(axis=1), 1))


    def test_kmeans_failure_falls_back(self):
        y = self._generate_data()
        with mock.patch.object(initialization.cluster.KMeans, "fit",
            side_effect=ValueError("clustering failed")):
            with self.assertLogs("vbgmm.initialization", level="WARNING") as cm:
                prior, posterior, responsibility = initialization.initialize(
                    y, 2, initialization_method="kmeans", random_state=0)

        self.assertIn("clustering failed", cm.output[0])
        self.assertEqual(responsibility.shape, (80, 2))
        self.assertTrue(np.allclose(responsibility.sum(axis=1), 1))


    def test_non_string_method(self):
        for method in (None, 1):
            with self.assertRaises(ValueError):
                initialization.initialize(
                    self._generate_data(), 2, initialization_method=method)
