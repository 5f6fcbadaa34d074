"""
Variational Bayesian expectation-maximization steps for a mixture of
multivariate Gaussians under conjugate Dirichlet-Normal-Wishart priors.
"""

__all__ = [
    "NumericalInstabilityError", "DirichletNormalWishart",
    "quadratic_form", "expectation", "maximization", "free_energy",
]

import logging
import numpy as np
import scipy.linalg
from scipy.special import digamma, logsumexp

from . import divergences

logger = logging.getLogger(__name__)


class NumericalInstabilityError(ValueError):

    """
    Raised when a variational fit becomes numerically degenerate: a
    responsibility row cannot be normalised, a precision or scale matrix is
    not positive definite, or parameters become non-finite.
    """


def _inverse(matrices, description, test_covariance=True):
    r"""
    Return the inverses of a stack of symmetric positive definite matrices.

    :param matrices:
        A :math:`K\times{}D\times{}D` array of matrices.

    :param description:
        A short description of the matrices, used in error messages.

    :param test_covariance: [optional]
        Invert through a Cholesky decomposition, which fails for matrices that
        are not positive definite (default: ``True``). Otherwise a general
        matrix inverse is used.

    :raise NumericalInstabilityError:
        If any matrix cannot be inverted.
    """

    K, D, _ = matrices.shape
    I = np.eye(D)

    inverse = np.empty_like(matrices)
    for k, matrix in enumerate(matrices):
        try:
            if test_covariance:
                cholesky = scipy.linalg.cho_factor(matrix, lower=True)
                inverse[k] = scipy.linalg.cho_solve(cholesky, I)
            else:
                inverse[k] = np.linalg.inv(matrix)

        except (np.linalg.LinAlgError, ValueError):
            raise NumericalInstabilityError(
                "{} of component {} is not positive definite".format(
                    description, k))

    # Keep the inverses exactly symmetric.
    inverse = 0.5 * (inverse + np.transpose(inverse, (0, 2, 1)))

    if not np.all(np.isfinite(inverse)):
        raise NumericalInstabilityError(
            "inverse of {} is not finite".format(description))

    return inverse


def _log_det(matrix, description="matrix"):
    try:
        return divergences.log_det(matrix)

    except ValueError:
        raise NumericalInstabilityError(
            "{} is not positive definite".format(description))


class DirichletNormalWishart(object):

    r"""
    The parameters of a factorised Dirichlet-Normal-Wishart distribution over
    the mixing weights, means and precision matrices of :math:`K` Gaussian
    components in :math:`D` dimensions. Instances are used both for the
    priors and for the variational posteriors.

    The covariance of the Normal distribution and the inverse of the Wishart
    scale matrix are cached, and are always refreshed together with the
    matrices they are derived from.

    :param dirichlet_alpha:
        A :math:`K`-length array of Dirichlet concentration parameters.

    :param normal_mean:
        A :math:`K\times{}D` array of means of the Normal distributions.

    :param normal_precision:
        A :math:`K\times{}D\times{}D` array of precision matrices of the
        Normal distributions.

    :param wishart_alpha:
        A :math:`K`-length array of (half) degrees of freedom of the Wishart
        distributions.

    :param wishart_scale:
        A :math:`K\times{}D\times{}D` array of Wishart scale matrices, such
        that the expected precision is ``wishart_alpha * inv(wishart_scale)``.

    :param test_covariance: [optional]
        Check that the precision and scale matrices are positive definite
        whenever they are set, by inverting them through a Cholesky
        decomposition (default: ``True``). Otherwise they are inverted with a
        general matrix inverse and are not checked when set; the
        log-determinants evaluated in :func:`expectation` and
        :func:`free_energy` still require positive definite scale matrices.
    """

    parameter_names = ("dirichlet_alpha", "normal_mean", "normal_precision",
        "wishart_alpha", "wishart_scale")

    def __init__(self, dirichlet_alpha, normal_mean, normal_precision,
        wishart_alpha, wishart_scale, test_covariance=True):

        self._test_covariance = test_covariance
        self.set_parameters(dirichlet_alpha, normal_mean, normal_precision,
            wishart_alpha, wishart_scale)
        return None


    def __repr__(self):
        return "<{name} with {K} components in {D} dimensions>".format(
            name=self.__class__.__name__, K=self.num_components,
            D=self.dimensions)


    def set_parameters(self, dirichlet_alpha, normal_mean, normal_precision,
        wishart_alpha, wishart_scale):
        r"""
        Set the distribution parameters, and refresh the cached inverses.

        :raise ValueError:
            If there is a shape mis-match between the input arrays.

        :raise NumericalInstabilityError:
            If any parameter is not finite, or if a matrix is not positive
            definite.
        """

        dirichlet_alpha = np.atleast_1d(dirichlet_alpha).astype(float)
        normal_mean = np.atleast_2d(normal_mean).astype(float)
        normal_precision = np.array(normal_precision, dtype=float)
        wishart_alpha = np.atleast_1d(wishart_alpha).astype(float)
        wishart_scale = np.array(wishart_scale, dtype=float)

        K, D = normal_mean.shape
        if dirichlet_alpha.shape != (K, ) or wishart_alpha.shape != (K, ):
            raise ValueError(
                "dirichlet_alpha and wishart_alpha must have shape ({K}, )"\
                .format(K=K))

        for name, matrix in (("normal_precision", normal_precision),
                             ("wishart_scale", wishart_scale)):
            if matrix.shape != (K, D, D):
                raise ValueError(
                    "{name} has wrong expected shape ({K}, {D}, {D} != {a})"\
                    .format(name=name, K=K, D=D, a=matrix.shape))

        for name, value in zip(self.parameter_names, (dirichlet_alpha,
            normal_mean, normal_precision, wishart_alpha, wishart_scale)):
            if not np.all(np.isfinite(value)):
                raise NumericalInstabilityError(
                    "{} contains non-finite values".format(name))

        if not np.all(dirichlet_alpha > 0):
            raise NumericalInstabilityError(
                "dirichlet_alpha must be positive")

        if not np.all(wishart_alpha > 0.5 * (D - 1)):
            raise NumericalInstabilityError(
                "wishart_alpha must exceed (D - 1)/2")

        self._normal_covariance = _inverse(
            normal_precision, "normal precision", self._test_covariance)
        self._wishart_scale_inverse = _inverse(
            wishart_scale, "Wishart scale", self._test_covariance)

        self._dirichlet_alpha = dirichlet_alpha
        self._normal_mean = normal_mean
        self._normal_precision = normal_precision
        self._wishart_alpha = wishart_alpha
        self._wishart_scale = wishart_scale
        return True


    def copy(self):
        r""" Return an independent copy of these parameters. """
        return self.__class__(*[np.copy(getattr(self, parameter_name)) \
            for parameter_name in self.parameter_names],
            test_covariance=self._test_covariance)


    @property
    def test_covariance(self):
        r""" Return whether matrices are checked to be positive definite. """
        return self._test_covariance


    @property
    def num_components(self):
        r""" Return the number of components, :math:`K`. """
        return self._normal_mean.shape[0]


    @property
    def dimensions(self):
        r""" Return the number of dimensions, :math:`D`. """
        return self._normal_mean.shape[1]


    @property
    def dirichlet_alpha(self):
        r""" Return the Dirichlet concentration parameters. """
        return self._dirichlet_alpha


    @property
    def normal_mean(self):
        r""" Return the means of the Normal distributions. """
        return self._normal_mean


    @property
    def normal_precision(self):
        r""" Return the precision matrices of the Normal distributions. """
        return self._normal_precision


    @property
    def normal_covariance(self):
        r""" Return the covariance matrices of the Normal distributions. """
        return self._normal_covariance


    @property
    def wishart_alpha(self):
        r""" Return the (half) degrees of freedom of the Wishart distributions. """
        return self._wishart_alpha


    @property
    def wishart_scale(self):
        r""" Return the scale matrices of the Wishart distributions. """
        return self._wishart_scale


    @property
    def wishart_scale_inverse(self):
        r""" Return the inverse scale matrices of the Wishart distributions. """
        return self._wishart_scale_inverse


    @property
    def expected_precision(self):
        r"""
        Return the expected precision matrices under the Wishart
        distributions, :math:`E[\Lambda_k] = \alpha_k{}B_k^{-1}`.
        """
        return self._wishart_alpha[:, np.newaxis, np.newaxis] \
             * self._wishart_scale_inverse


def quadratic_form(y, mean, precision):
    r"""
    Return the quadratic form

    .. math::

        -\frac{1}{2}(y_i - \mu)^\top\Lambda(y_i - \mu)

    for every observation :math:`y_i`.

    :param y:
        A :math:`N\times{}D` (or :math:`D\times{}N`) array of observations.

    :param mean:
        The :math:`D`-length mean vector, :math:`\mu`.

    :param precision:
        The :math:`D\times{}D` precision matrix, :math:`\Lambda`.

    :returns:
        A :math:`N`-length array.
    """

    precision = np.atleast_2d(precision)
    D = precision.shape[0]

    mean = np.array(mean, dtype=float).flatten()
    if mean.size != D:
        raise ValueError("mean has wrong expected size ({} != {})".format(
            mean.size, D))

    y = np.atleast_2d(y)
    if y.shape[1] != D:
        if y.shape[0] != D:
            raise ValueError("observations do not have {} dimensions".format(D))
        y = y.T

    diff = y - mean
    return -0.5 * np.sum(diff * np.dot(diff, precision), axis=1)


def _expected_log_terms(posterior):
    r"""
    Return the expectations under the posterior that are shared by the
    expectation step and the free energy.

    :returns:
        A four-length tuple containing :math:`E[\log\pi_k]`,
        :math:`\frac{1}{2}E[\log|\Lambda_k|]`, the expected precision
        matrices :math:`E[\Lambda_k]`, and the trace terms
        :math:`\frac{1}{2}\mathrm{Tr}(E[\Lambda_k]\Sigma_k)` for all
        :math:`K` components.
    """

    K, D = posterior.num_components, posterior.dimensions

    alpha = posterior.dirichlet_alpha
    expected_log_weight = digamma(alpha) - digamma(np.sum(alpha))

    half_expected_log_det = np.array([
        0.5 * (divergences.multivariate_digamma(a, D) \
            - _log_det(B, "Wishart scale of component {}".format(k))) \
        for k, (a, B) in enumerate(
            zip(posterior.wishart_alpha, posterior.wishart_scale))])

    precision = posterior.expected_precision
    trace = np.array([0.5 * np.trace(np.dot(p, c)) \
        for p, c in zip(precision, posterior.normal_covariance)])

    return (expected_log_weight, half_expected_log_det, precision, trace)


def _estimate_weighted_log_prob(y, posterior):
    r"""
    Return the unnormalised log responsibilities :math:`\log\rho_{ik}` of
    the observations :math:`y` under the current posterior.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`.

    :param posterior:
        The current posterior, a :class:`DirichletNormalWishart`.

    :returns:
        A :math:`N\times{}K` array.
    """

    N, D = y.shape
    K = posterior.num_components

    expected_log_weight, half_expected_log_det, precision, trace \
        = _expected_log_terms(posterior)

    log_prob = np.empty((N, K))
    for k in range(K):
        log_prob[:, k] = quadratic_form(y, posterior.normal_mean[k], precision[k]) \
                       + expected_log_weight[k] + half_expected_log_det[k] \
                       - trace[k] - 0.5 * D * np.log(2 * np.pi)

    return log_prob


def expectation(y, posterior):
    r"""
    Perform the expectation step of the variational expectation-maximization
    algorithm.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`,
        where :math:`N` is the number of observations, and :math:`D` is
        the number of dimensions per observation.

    :param posterior:
        The current posterior, a :class:`DirichletNormalWishart`.

    :returns:
        A two-length tuple containing the :math:`N\times{}K` responsibility
        matrix, and the log normalisation constant of each observation.

    :raise NumericalInstabilityError:
        If the responsibilities of any observation cannot be normalised.
    """

    weighted_log_prob = _estimate_weighted_log_prob(y, posterior)

    log_prob_norm = logsumexp(weighted_log_prob, axis=1)
    if not np.all(np.isfinite(log_prob_norm)):
        raise NumericalInstabilityError(
            "responsibilities of {} observations could not be normalised"\
            .format(np.sum(~np.isfinite(log_prob_norm))))

    with np.errstate(under="ignore"):
        # Ignore underflow errors.
        responsibility = np.exp(weighted_log_prob - log_prob_norm[:, np.newaxis])

    if not np.allclose(np.sum(responsibility, axis=1), 1, rtol=0, atol=1e-8):
        raise NumericalInstabilityError(
            "responsibility matrix rows do not sum to one")

    return (responsibility, log_prob_norm)


def maximization(y, responsibility, posterior, prior, covariance_type="full"):
    r"""
    Perform the maximization step of the variational expectation-maximization
    algorithm on all components, updating the posterior in place.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`,
        where :math:`N` is the number of observations, and :math:`D` is
        the number of dimensions per observation.

    :param responsibility:
        The responsibility matrix for all :math:`N` observations being
        partially assigned to each :math:`K` component.

    :param posterior:
        The current posterior, a :class:`DirichletNormalWishart`.

    :param prior:
        The prior, a :class:`DirichletNormalWishart`. It is not modified.

    :param covariance_type: [optional]
        The structure of the Wishart scale matrices: ``full`` for a full
        matrix, or ``diag`` to restrict them to their diagonal
        (default: ``full``).

    :returns:
        The updated posterior.
    """

    N, D = y.shape
    K = posterior.num_components

    effective_membership = np.sum(responsibility, axis=0)
    expected_precision = posterior.expected_precision

    dirichlet_alpha = effective_membership + prior.dirichlet_alpha
    wishart_alpha = 0.5 * effective_membership + prior.wishart_alpha

    normal_mean = np.empty((K, D))
    normal_precision = np.empty((K, D, D))
    wishart_scale = np.empty((K, D, D))

    # Normal.
    for k in range(K):
        normal_precision[k] = effective_membership[k] * expected_precision[k] \
                            + prior.normal_precision[k]

    normal_covariance = _inverse(normal_precision, "normal precision",
        posterior.test_covariance)

    for k in range(K):
        # Unnormalised weighted sample mean.
        weighted_sum = np.dot(responsibility[:, k], y)

        normal_mean[k] = np.dot(normal_covariance[k],
            np.dot(expected_precision[k], weighted_sum) \
          + np.dot(prior.normal_precision[k], prior.normal_mean[k]))

    # Wishart, about the updated means.
    for k in range(K):
        diff = y - normal_mean[k]
        scatter = np.dot(responsibility[:, k] * diff.T, diff)
        if covariance_type == "diag":
            scatter = np.diag(np.diag(scatter))

        wishart_scale[k] = 0.5 * (scatter \
            + effective_membership[k] * normal_covariance[k]) \
            + prior.wishart_scale[k]

    posterior.set_parameters(dirichlet_alpha, normal_mean, normal_precision,
        wishart_alpha, wishart_scale)

    return posterior


def free_energy(y, responsibility, posterior, prior):
    r"""
    Return the variational free energy, the negative of the evidence lower
    bound,

    .. math::

        F = \sum_{i,k}r_{ik}\log{r_{ik}} - \langle\log{L}\rangle + \mathrm{KL}

    where the expected log likelihood is
    :math:`\sum_{i,k}r_{ik}\log\rho_{ik}` and the Kullback-Leibler term sums
    the divergences of the Wishart and Normal posteriors of every component
    and of the Dirichlet posterior from their priors.

    :param y:
        A :math:`N\times{}D` array of the observations :math:`y`.

    :param responsibility:
        The :math:`N\times{}K` responsibility matrix.

    :param posterior:
        The current posterior, a :class:`DirichletNormalWishart`.

    :param prior:
        The prior, a :class:`DirichletNormalWishart`.

    :returns:
        A two-length tuple containing the free energy, and a three-length
        array of the entropy, negative expected log likelihood, and
        Kullback-Leibler divergence terms.
    """

    # Entropy of the hidden variables that are not zero.
    non_zero = responsibility > 0
    entropy = np.sum(responsibility[non_zero] * np.log(responsibility[non_zero]))

    weighted_log_prob = _estimate_weighted_log_prob(y, posterior)
    expected_log_likelihood = np.sum(responsibility * weighted_log_prob)

    try:
        kl = np.sum([
            divergences.kullback_leibler_for_wisharts(
                posterior.wishart_scale[k], prior.wishart_scale[k],
                posterior.wishart_alpha[k], prior.wishart_alpha[k]) \
          + divergences.kullback_leibler_for_multivariate_normals(
                posterior.normal_mean[k], prior.normal_mean[k],
                posterior.normal_covariance[k], prior.normal_covariance[k]) \
            for k in range(posterior.num_components)])

        kl += divergences.kullback_leibler_for_dirichlets(
            posterior.dirichlet_alpha, prior.dirichlet_alpha)

    except (np.linalg.LinAlgError, ValueError) as e:
        raise NumericalInstabilityError(
            "could not evaluate Kullback-Leibler divergence: {}".format(e))

    terms = np.array([entropy, -expected_log_likelihood, kl])
    return (np.sum(terms), terms)
