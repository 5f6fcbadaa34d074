""" Test the variational mixture of Gaussians estimator. """

import numpy as np
import unittest
from unittest import mock

from .. import mixture


class TestOptions(unittest.TestCase):

    def test_invalid_options(self):

        for K in (0, -1, 2.5, None):
            with self.assertRaises(ValueError):
                mixture.VariationalGaussianMixture(K)

        with self.assertRaises(ValueError):
            mixture.VariationalGaussianMixture(2, tolerance=0)

        with self.assertRaises(ValueError):
            mixture.VariationalGaussianMixture(2, max_iter=0)

        with self.assertRaises(ValueError):
            mixture.VariationalGaussianMixture(2, covariance_type="spherical")

        with self.assertRaises(ValueError):
            mixture.VariationalGaussianMixture(2, initialization_method="foo")

        with self.assertRaises(ValueError):
            mixture.VariationalGaussianMixture(2, display=3)

        for value in (None, 1):
            with self.assertRaises(ValueError):
                mixture.VariationalGaussianMixture(2, covariance_type=value)

            with self.assertRaises(ValueError):
                mixture.VariationalGaussianMixture(
                    2, initialization_method=value)


    def test_normalized_options(self):
        model = mixture.VariationalGaussianMixture(
            3, covariance_type=" FULL ", initialization_method="KMeans")

        self.assertEqual(model.covariance_type, "full")
        self.assertEqual(model.initialization_method, "kmeans")
        self.assertEqual(model.max_iter, 100)
        self.assertEqual(model.tolerance, 1e-5)
        self.assertIsNone(model.state)


class TestPrepareData(unittest.TestCase):

    def test_orientation(self):
        y = np.random.RandomState(0).normal(size=(3, 10))
        self.assertEqual(mixture._prepare_data(y).shape, (10, 3))
        self.assertEqual(mixture._prepare_data(y.T).shape, (10, 3))

        # Square data are taken to have observations as rows.
        y = np.arange(16.0).reshape((4, 4))
        self.assertTrue(np.all(mixture._prepare_data(y) == y))

        self.assertEqual(mixture._prepare_data([1, 2, 3]).shape, (3, 1))


    def test_invalid_data(self):
        with self.assertRaises(ValueError):
            mixture._prepare_data([])

        with self.assertRaises(ValueError):
            mixture._prepare_data([[1, 2], [np.nan, 3], [4, 5]])

        with self.assertRaises(ValueError):
            mixture._prepare_data(np.ones((2, 3, 4)))


class TestFit(unittest.TestCase):

    def _generate_data(self, seed=0, N=50, D=2):
        random_state = np.random.RandomState(seed)
        while True:
            mu = random_state.uniform(-20, 20, size=(3, D))
            distance = np.sqrt(np.sum((mu[:, None] - mu[None, :])**2, axis=2))
            if np.min(distance[np.triu_indices(3, 1)]) > 10:
                break

        y = np.vstack([random_state.normal(m, 1.0, size=(N, D)) for m in mu])
        return (y, np.repeat(np.arange(3), N))


    def test_free_energy_non_increasing(self):
        for seed in range(5):
            y, labels = self._generate_data(seed)
            for covariance_type in ("diag", "full"):
                model = mixture.VariationalGaussianMixture(3,
                    covariance_type=covariance_type, random_state=seed)
                model.fit(y)

                free_energy = np.sum(model.history, axis=1)
                self.assertEqual(free_energy.size, model.n_iter)
                self.assertTrue(np.all(np.diff(free_energy) \
                    <= 1e-8 * np.abs(free_energy[:-1]) + 1e-8))
                self.assertEqual(model.free_energy_increases, [])


    def test_responsibility_rows_sum_to_one(self):
        y, labels = self._generate_data(1)

        def observer(model, iteration, y):
            self.assertTrue(np.allclose(
                model.responsibility.sum(axis=1), 1, rtol=0, atol=1e-9))

        model = mixture.VariationalGaussianMixture(4, random_state=1)
        model.fit(y, observer=observer)


    def test_converged(self):
        y, labels = self._generate_data(2)
        model = mixture.VariationalGaussianMixture(3, max_iter=500,
            initialization_method="kmeans", random_state=2)
        model.fit(y)

        self.assertEqual(model.state, "converged")
        self.assertEqual(model.stop_reason, "tolerance")
        self.assertTrue(model.converged)
        self.assertTrue(model.n_iter < 500)
        self.assertEqual(model.history.shape, (model.n_iter, 3))
        self.assertAlmostEqual(model.free_energy, np.sum(model.history[-1]))


    def test_converged_is_stationary(self):
        y, labels = self._generate_data(3)
        model = mixture.VariationalGaussianMixture(3, max_iter=500,
            initialization_method="kmeans", random_state=3)
        model.fit(y)
        self.assertTrue(model.converged)

        before = model.free_energy
        model.expectation(y)
        model.maximization(y)
        after, terms = model.evaluate_free_energy(y)

        self.assertTrue(100 * abs((after - before)/before) < model.tolerance)


    def test_max_iter(self):
        y, labels = self._generate_data(4)
        model = mixture.VariationalGaussianMixture(3, max_iter=2,
            tolerance=1e-12, random_state=4)

        with self.assertLogs("vbgmm.mixture", level="WARNING"):
            model.fit(y)

        self.assertEqual(model.state, "converged")
        self.assertEqual(model.stop_reason, "max_iter")
        self.assertFalse(model.converged)
        self.assertEqual(model.n_iter, 2)
        self.assertEqual(model.history.shape, (2, 3))


    def test_single_component(self):
        y, labels = self._generate_data(5)
        N = y.shape[0]

        model = mixture.VariationalGaussianMixture(
            1, initialization_method="kmeans")
        model.initialize(y)
        self.assertEqual(model.state, "initialized")

        responsibility = model.expectation(y)
        self.assertEqual(responsibility.shape, (N, 1))
        self.assertTrue(np.all(responsibility == 1.0))

        model.maximization(y)
        self.assertAlmostEqual(model.posterior.dirichlet_alpha[0],
            N + model.prior.dirichlet_alpha[0])


    def test_free_energy_increase_is_reported(self):
        y, labels = self._generate_data(6)
        model = mixture.VariationalGaussianMixture(2, random_state=6)
        terms = np.zeros(3)

        with mock.patch.object(model, "evaluate_free_energy",
            side_effect=[(10.0, terms), (11.0, terms), (11.0, terms)]):
            with self.assertLogs("vbgmm.mixture", level="WARNING"):
                model.fit(y)

        self.assertEqual(model.free_energy_increases, [2])
        self.assertEqual(model.stop_reason, "tolerance")
        self.assertEqual(model.n_iter, 3)


    def test_numerical_instability(self):
        y, labels = self._generate_data(7)

        def observer(model, iteration, y):
            if iteration == 3:
                raise mixture.NumericalInstabilityError("unstable")

        model = mixture.VariationalGaussianMixture(2, random_state=7)
        with self.assertRaises(mixture.NumericalInstabilityError):
            model.fit(y, observer=observer)

        self.assertEqual(model.state, "unstable")
        self.assertIsNotNone(model.error)
        self.assertEqual(model.history.shape, (3, 3))


    def test_observer_failure(self):
        y, labels = self._generate_data(10)

        def observer(model, iteration, y):
            if iteration == 2:
                raise RuntimeError("observer failed")

        model = mixture.VariationalGaussianMixture(2, random_state=10)
        with self.assertRaises(RuntimeError):
            model.fit(y, observer=observer)

        self.assertEqual(model.state, "failed")
        self.assertIsInstance(model.error, RuntimeError)
        self.assertEqual(model.history.shape, (2, 3))


    def test_without_positive_definite_check(self):
        y, labels = self._generate_data(11)
        kwds = dict(max_iter=10, tolerance=1e-12, covariance_type="full",
            random_state=11)

        checked = mixture.VariationalGaussianMixture(3, **kwds).fit(y)
        unchecked = mixture.VariationalGaussianMixture(
            3, test_covariance=False, **kwds).fit(y)

        self.assertFalse(unchecked.posterior.test_covariance)
        self.assertEqual(checked.n_iter, unchecked.n_iter)
        self.assertTrue(np.allclose(checked.history, unchecked.history))


    def test_display(self):
        y, labels = self._generate_data(8)
        model = mixture.VariationalGaussianMixture(
            2, max_iter=3, display=True, random_state=8)

        with self.assertLogs("vbgmm.mixture", level="INFO") as cm:
            model.fit(y)

        self.assertTrue(any("Free-Energy" in line for line in cm.output))


    def test_predict(self):
        y, labels = self._generate_data(9)
        model = mixture.VariationalGaussianMixture(3,
            initialization_method="kmeans", random_state=9)
        model.fit(y)

        predicted = model.predict(y)
        for k in range(3):
            # Each true cluster maps to a single component.
            self.assertEqual(len(set(predicted[labels == k])), 1)

        self.assertEqual(model.predict_proba(y[0]).shape, (1, 3))
