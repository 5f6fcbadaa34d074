"""
Priors and initial posteriors for variational mixtures of Gaussians.
"""

__all__ = ["default_priors", "initialize"]

import logging
import numpy as np
from sklearn import cluster
from sklearn.utils import check_random_state

from . import inference

logger = logging.getLogger(__name__)


def default_priors(y, num_components, covariance_type="diag",
    test_covariance=True):
    r"""
    Return weakly informative priors that are scaled to the data.

    The Dirichlet prior has unit concentration for every component. The
    Normal priors are centred on the median of the data with a covariance
    matrix of :math:`\mathrm{diag}(r^2)`, where :math:`r` is the range of the
    data in each dimension. The Wishart priors have a scale matrix of
    :math:`\mathrm{diag}(r)` and :math:`D + 1` (half) degrees of freedom.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`.

    :param num_components:
        The number of components, :math:`K`.

    :param covariance_type: [optional]
        The structure of the covariance matrices (default: ``diag``). The
        default priors are diagonal for both ``full`` and ``diag``.

    :param test_covariance: [optional]
        Check that matrices are positive definite when they are set
        (default: ``True``).

    :returns:
        A :class:`vbgmm.inference.DirichletNormalWishart` instance.
    """

    N, D = y.shape
    K = int(num_components)

    data_range = np.ptp(y, axis=0)
    # Constant dimensions would give singular priors.
    data_range = np.where(data_range > 0, data_range, 1.0)

    normal_precision = np.diag(1.0/data_range**2)
    wishart_scale = np.diag(data_range)

    return inference.DirichletNormalWishart(
        dirichlet_alpha=np.ones(K),
        normal_mean=np.tile(np.median(y, axis=0), (K, 1)),
        normal_precision=np.tile(normal_precision, (K, 1, 1)),
        wishart_alpha=(D + 1.0) * np.ones(K),
        wishart_scale=np.tile(wishart_scale, (K, 1, 1)),
        test_covariance=test_covariance)


def _initialize_conditional(y, prior, covariance_type, random_state):
    r"""
    Initialize the posterior at the prior, with the Normal means conditioned
    on randomly chosen observations.
    """

    N, D = y.shape
    K = prior.num_components

    indices = random_state.choice(N, size=K, replace=N < K)

    posterior = prior.copy()
    posterior.set_parameters(
        dirichlet_alpha=prior.dirichlet_alpha,
        normal_mean=y[indices],
        normal_precision=prior.normal_precision,
        wishart_alpha=prior.wishart_alpha,
        wishart_scale=prior.wishart_scale)

    responsibility, _ = inference.expectation(y, posterior)
    return (posterior, responsibility)


def _initialize_random(y, prior, covariance_type, random_state):
    r"""
    Initialize the posterior from a random responsibility matrix.
    """

    N, D = y.shape
    K = prior.num_components

    responsibility = random_state.uniform(size=(N, K))
    responsibility /= responsibility.sum(axis=1)[:, np.newaxis]

    posterior = inference.maximization(
        y, responsibility, prior.copy(), prior, covariance_type)
    return (posterior, responsibility)


def _initialize_kmeans(y, prior, covariance_type, random_state):
    r"""
    Initialize the posterior from the hard assignments of k-means clustering.
    """

    N, D = y.shape
    K = prior.num_components

    kmeans = cluster.KMeans(n_clusters=K, n_init=1, random_state=random_state)
    labels = kmeans.fit(y).labels_

    responsibility = np.zeros((N, K))
    responsibility[np.arange(N), labels] = 1

    posterior = inference.maximization(
        y, responsibility, prior.copy(), prior, covariance_type)
    return (posterior, responsibility)


_initializers = {
    "conditional": _initialize_conditional,
    "random": _initialize_random,
    "kmeans": _initialize_kmeans,
}


def initialize(y, num_components, covariance_type="diag",
    initialization_method="random", random_state=None, test_covariance=True):
    r"""
    Return the priors, initial posterior, and initial responsibility matrix
    for a mixture of ``num_components`` Gaussians.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`,
        where :math:`N` is the number of observations, and :math:`D` is
        the number of dimensions per observation.

    :param num_components:
        The number of components, :math:`K`.

    :param covariance_type: [optional]
        The structure of the covariance matrices: ``full`` or ``diag``
        (default: ``diag``).

    :param initialization_method: [optional]
        The method used to initialize the posterior. Available options are:
        ``conditional`` (the prior, conditioned on random observations),
        ``random`` (random responsibilities), and ``kmeans`` (k-means
        assignments). k-means initialization falls back to ``conditional``
        when :math:`K = 1`, when :math:`D > K`, when :math:`N < K`, or when
        the clustering itself fails (default: ``random``).

    :param random_state: [optional]
        A seed or :class:`numpy.random.RandomState` instance.

    :param test_covariance: [optional]
        Check that matrices are positive definite when they are set
        (default: ``True``).

    :returns:
        A three-length tuple containing the prior, the posterior, and the
        :math:`N\times{}K` responsibility matrix.
    """

    N, D = y.shape
    K = int(num_components)

    if not isinstance(initialization_method, str) \
    or initialization_method.strip().lower() not in _initializers:
        raise ValueError(
            "Initialization method '{}' is invalid. Must be one of: {}"\
            .format(initialization_method, ", ".join(_initializers)))

    initialization_method = initialization_method.strip().lower()
    if initialization_method == "kmeans" and (K == 1 or D > K or N < K):
        logger.warning(
            "Changing initialization from kmeans to conditional "
            "(K = {}, D = {}, N = {})".format(K, D, N))
        initialization_method = "conditional"

    random_state = check_random_state(random_state)

    prior = default_priors(y, K, covariance_type, test_covariance)

    try:
        posterior, responsibility = _initializers[initialization_method](
            y, prior, covariance_type, random_state)

    except inference.NumericalInstabilityError:
        raise

    except ValueError as e:
        if initialization_method != "kmeans":
            raise

        logger.warning(
            "k-means initialization failed ({}); changing initialization to "
            "conditional (K = {}, D = {}, N = {})".format(e, K, D, N))
        posterior, responsibility = _initialize_conditional(
            y, prior, covariance_type, random_state)

    return (prior, posterior, responsibility)
