"""
Fit variational mixtures of Gaussians with different numbers of components,
and compare them by their free energy.
"""

__all__ = ["search", "model_probabilities"]

import logging
import numpy as np
from joblib import Parallel, delayed
from scipy.special import logsumexp
from sklearn.utils import check_random_state

from . import (mixture, plot as plotting)
from .inference import NumericalInstabilityError

logger = logging.getLogger(__name__)


def model_probabilities(free_energy):
    r"""
    Return the posterior probability of each candidate model, given their
    free energies :math:`F_a`,

    .. math::

        p_a = \frac{1}{\sum_{b}\exp\left(F_a - F_b\right)}
            = \frac{\exp(-F_a)}{\sum_b\exp(-F_b)}

    Candidates with a non-finite free energy (e.g., failed fits) are given
    zero probability.

    :param free_energy:
        An array of the final free energies of all candidate models.

    :returns:
        An array of probabilities that sum to one. If no free energy is
        finite then all probabilities are NaN.
    """

    free_energy = np.atleast_1d(free_energy).astype(float)

    finite = np.isfinite(free_energy)
    probability = np.zeros_like(free_energy)
    if not np.any(finite):
        logger.warning("No candidate model has a finite free energy")
        return np.nan * probability

    log_p = -free_energy[finite]
    probability[finite] = np.exp(log_p - logsumexp(log_p))
    return probability


def _chain_observers(*observers):
    observers = [observer for observer in observers if observer is not None]
    if not observers:
        return None

    def observer(model, iteration, y):
        for each in observers:
            each(model, iteration, y)

    return observer


def _fit(model, y, observer=None):
    r"""
    Fit a single candidate mixture, without raising numerical problems.

    :returns:
        The fitted (or failed) model.
    """

    try:
        model.fit(y, observer=observer)

    except NumericalInstabilityError as e:
        model.error = e
        logger.exception(
            "Numerical instability when fitting K = {}".format(
                model.num_components))

    return model


def search(y, num_components, max_iter=100, tolerance=1e-5,
    covariance_type="diag", initialization_method="random", display=False,
    plot=0, figure_prefix=None, test_covariance=True, random_state=None,
    n_jobs=1, observer=None, **kwargs):
    r"""
    Fit a variational mixture of Gaussians for each number of components
    given, and compute the posterior probability of each model from their
    free energies.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`,
        where :math:`N` is the number of observations, and :math:`D` is
        the number of dimensions per observation. If :math:`N < D` the array
        is transposed.

    :param num_components:
        The number of components, or a list of the number of components, to
        fit. A model is fitted for each entry.

    :param max_iter: [optional]
        The maximum number of iterations per model (default: ``100``).

    :param tolerance: [optional]
        The relative change in free energy, as a percentage, required before
        stopping (default: ``1e-5``).

    :param covariance_type: [optional]
        The structure of the covariance matrices: ``full`` or ``diag``
        (default: ``diag``).

    :param initialization_method: [optional]
        The initialization method: ``conditional``, ``random``, or
        ``kmeans`` (default: ``random``).

    :param display: [optional]
        Log the free energy of every iteration (default: ``False``).

    :param plot: [optional]
        Plot intermediate fits: ``0`` for no plots, ``1`` to plot the data
        and components, ``2`` to also draw density contours. Only available
        for two dimensional data (default: ``0``).

    :param figure_prefix: [optional]
        The path prefix for the figures saved when plotting. One figure is
        saved per iteration of every model, named
        ``<figure_prefix>_<number>.png``. By default a random prefix in the
        current directory is used.

    :param test_covariance: [optional]
        Check that posterior matrices are positive definite when they are
        updated (default: ``True``).

    :param random_state: [optional]
        A seed or :class:`numpy.random.RandomState` instance.

    :param n_jobs: [optional]
        The number of candidate models to fit in parallel (default: ``1``).

    :param observer: [optional]
        A callable that is given ``(model, iteration, y)`` after every
        iteration of every model.

    :returns:
        A three-length tuple containing the list of fitted models, a
        :math:`2\times{}A` array with the free energies of the :math:`A`
        models in the first row and their posterior probabilities in the
        second row, and a ``(max_iter, A, 3)`` array with the entropy,
        negative expected log likelihood, and Kullback-Leibler divergence
        terms of every iteration.
    """

    if num_components is None:
        raise ValueError("missing number of components")

    K = np.atleast_1d(num_components)
    if K.ndim != 1 or K.size == 0:
        raise ValueError("num_components must be a positive integer or a "
                         "list of positive integers")

    if plot not in (0, 1, 2):
        raise ValueError("plot must be one of: 0, 1, 2")

    y = mixture._prepare_data(y)
    N, D = y.shape

    if plot and D != 2:
        logger.info("Plotting is only available for two dimensional data")
        plot = 0

    if plot and n_jobs != 1:
        logger.warning("Plotting requires n_jobs = 1")
        n_jobs = 1

    # Seed each candidate up front so results do not depend on n_jobs.
    random_state = check_random_state(random_state)
    seeds = random_state.randint(np.iinfo(np.int32).max, size=K.size)

    # Validate all options before fitting anything.
    models = [mixture.VariationalGaussianMixture(k, tolerance=tolerance,
        max_iter=max_iter, covariance_type=covariance_type,
        initialization_method=initialization_method,
        test_covariance=test_covariance, display=display, random_state=seed,
        **kwargs) for k, seed in zip(K, seeds)]

    if plot:
        plot_observer = plotting.ContourPlotObserver(y, contours=(plot == 2),
            figure_prefix=figure_prefix)
        models = [_fit(model, y, _chain_observers(observer, plot_observer)) \
            for model in models]
        plot_observer.close()

    else:
        models = Parallel(n_jobs=n_jobs)(
            delayed(_fit)(model, y, observer) for model in models)

    A = len(models)
    free_energy = np.nan * np.ones((2, A))
    diagnostics = np.nan * np.ones((models[0].max_iter, A, 3))

    for a, model in enumerate(models):
        logger.info("Model {}: {} kernels, {} dimensions, {} data samples"\
            .format(a + 1, model.num_components, D, N))

        n = model.history.shape[0]
        diagnostics[:n, a] = model.history

        if model.error is None:
            free_energy[0, a] = model.free_energy
            logger.info("Final Free-Energy (after {} iterations) = {:f}".format(
                model.n_iter, model.free_energy))

        else:
            logger.warning("Model {} failed after {} iterations: {}".format(
                a + 1, model.n_iter, model.error))

    free_energy[1] = model_probabilities(free_energy[0])

    return (models, free_energy, diagnostics)
