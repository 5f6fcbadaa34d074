"""
Visualise intermediate fits of two dimensional mixtures.
"""

__all__ = ["ContourPlotObserver"]

import logging
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Ellipse
from scipy import stats

logger = logging.getLogger(__name__)


class ContourPlotObserver(object):

    r"""
    Plot the data, coloured by their most probable component, together with
    the posterior component locations after every iteration of a fit. Each
    figure is saved to disk.

    :param y:
        A :math:`N\times{}2` array of the observations :math:`y`.

    :param contours: [optional]
        Also draw a density contour for every component (default: ``False``).

    :param figure_prefix: [optional]
        The path prefix for saved figures.

    :param grid_size: [optional]
        The number of grid points per dimension used to draw the density
        contours (default: ``30``).
    """

    colors = ("y", "m", "c", "r", "g", "b", "k")

    def __init__(self, y, contours=False, figure_prefix=None, grid_size=30,
        **kwargs):

        y = np.atleast_2d(y)
        if y.shape[1] != 2:
            raise ValueError("plotting is only available for two dimensions")

        self._contours = contours
        self._model = []
        self._figure_iter = 1
        self._figure_prefix = figure_prefix \
            or "iter_{}".format(int(np.random.uniform(0, 1000)))

        x_grid, y_grid = [np.linspace(lower, upper, grid_size) \
            for lower, upper in zip(np.min(y, axis=0), np.max(y, axis=0))]
        self._grid = np.meshgrid(x_grid, y_grid)

        self.fig, self.ax = plt.subplots()
        self.ax.set_xlabel("Data X")
        self.ax.set_ylabel("Data Y")


    def _clear_model(self):

        L = len(self._model)
        for l in range(L):
            item = self._model.pop(0)
            item.remove()
            del item


    def __call__(self, model, iteration, y):

        self._clear_model()

        posterior = model.posterior
        labels = np.argmax(model.responsibility, axis=1)

        for k in range(posterior.num_components):
            color = self.colors[k % len(self.colors)]
            match = (labels == k)

            self._model.append(self.ax.scatter(
                y[match, 0], y[match, 1], facecolor=color, s=10))

            mean = posterior.normal_mean[k]
            cov = posterior.wishart_scale[k] / posterior.wishart_alpha[k]

            self._model.append(self.ax.text(
                mean[0], mean[1], "X-{}".format(k + 1)))

            vals, vecs = np.linalg.eigh(cov)
            order = vals.argsort()[::-1]
            vals = vals[order]
            vecs = vecs[:, order]

            theta = np.degrees(np.arctan2(*vecs[:, 0][::-1]))

            # Show 2 standard deviations
            width, height = 2 * 2 * np.sqrt(vals)
            ellip = Ellipse(xy=mean, width=width, height=height, angle=theta,
                facecolor=color, alpha=0.25)
            self._model.append(self.ax.add_artist(ellip))

            if self._contours:
                X, Y = self._grid
                pdf = stats.multivariate_normal(mean, cov).pdf(
                    np.dstack([X, Y]))
                pdf = pdf / (np.max(pdf) - np.min(pdf))
                self._model.append(self.ax.contour(
                    X, Y, pdf, levels=[0.67], colors="b", linestyles=":"))

        self.ax.set_title("K = {}, iteration {}, free energy {:.2f}".format(
            posterior.num_components, iteration, model.free_energy))

        self.savefig()
        return None


    def savefig(self):
        plt.draw()
        self.fig.tight_layout()
        path = "{0:s}_{1:05d}.png".format(self._figure_prefix, self._figure_iter)
        self.fig.savefig(path)
        logger.debug("Created {}".format(path))
        self._figure_iter += 1
        return path


    def close(self):
        plt.close(self.fig)
