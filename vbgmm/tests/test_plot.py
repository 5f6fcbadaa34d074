""" Test the plotting of intermediate fits. """

import matplotlib
matplotlib.use("Agg")

import os
import numpy as np
import shutil
import tempfile
import unittest

from .. import (mixture, plot, search)


class TestContourPlotObserver(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tempdir)


    def test_figures_are_saved(self):
        random_state = np.random.RandomState(0)
        y = np.vstack([
            random_state.normal([0, 0], 1.0, size=(30, 2)),
            random_state.normal([6, 6], 1.0, size=(30, 2))
        ])

        observer = plot.ContourPlotObserver(y, contours=True,
            figure_prefix=os.path.join(self.tempdir, "iter"))

        model = mixture.VariationalGaussianMixture(2, max_iter=3,
            tolerance=1e-12, covariance_type="full", random_state=0)

        with self.assertLogs("vbgmm.plot", level="DEBUG"):
            model.fit(y, observer=observer)
        observer.close()

        self.assertEqual(sorted(os.listdir(self.tempdir)), [
            "iter_00001.png", "iter_00002.png", "iter_00003.png"])


    def test_requires_two_dimensions(self):
        with self.assertRaises(ValueError):
            plot.ContourPlotObserver(np.zeros((10, 3)))


class TestSearchFigures(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tempdir)


    def test_figure_prefix(self):
        random_state = np.random.RandomState(1)
        y = np.vstack([
            random_state.normal([0, 0], 1.0, size=(30, 2)),
            random_state.normal([6, 6], 1.0, size=(30, 2))
        ])

        models, free_energy, diagnostics = search.search(y, [1, 2],
            max_iter=3, tolerance=1e-12, plot=1, random_state=1,
            figure_prefix=os.path.join(self.tempdir, "search"))

        paths = os.listdir(self.tempdir)
        self.assertEqual(len(paths), sum(model.n_iter for model in models))
        self.assertTrue(all(path.startswith("search_") for path in paths))
