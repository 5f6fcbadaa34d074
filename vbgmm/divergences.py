"""
Closed-form Kullback-Leibler divergences for the distributions in the
conjugate Dirichlet-Normal-Wishart family.
"""

__all__ = [
    "kullback_leibler_for_multivariate_normals",
    "kullback_leibler_for_wisharts",
    "kullback_leibler_for_dirichlets",
    "log_det",
    "multivariate_digamma",
]

import logging
import numpy as np
import scipy.linalg
from scipy.special import digamma, gammaln, multigammaln

logger = logging.getLogger(__name__)


def log_det(matrix):
    r"""
    Return the natural logarithm of the determinant of a symmetric positive
    definite matrix, using its Cholesky decomposition.

    :param matrix:
        A :math:`D\times{}D` symmetric positive definite matrix.

    :raise ValueError:
        If the matrix is not positive definite.
    """

    try:
        cholesky = scipy.linalg.cholesky(matrix, lower=True)

    except (scipy.linalg.LinAlgError, ValueError):
        raise ValueError("matrix is not positive definite")

    return 2 * np.sum(np.log(np.diag(cholesky)))


def multivariate_digamma(alpha, D):
    r"""
    Return the sum of digamma functions that appears in the expectation of
    the log-determinant of a Wishart distributed precision matrix,

    .. math::

        \Psi_D(\alpha) = \sum_{d=1}^{D}\psi\left(\alpha + \frac{1}{2} - \frac{d}{2}\right)

    :param alpha:
        The (half) degrees of freedom of the Wishart distribution.

    :param D:
        The number of dimensions.
    """
    d = np.arange(1, D + 1)
    return np.sum(digamma(alpha + 0.5 - 0.5 * d))


def kullback_leibler_for_multivariate_normals(mu_q, mu_p, cov_q, cov_p):
    r"""
    Return the Kullback-Leibler divergence from one multivariate normal
    distribution with mean :math:`\mu_q` and covariance :math:`\Sigma_q`,
    to another multivariate normal distribution with mean :math:`\mu_p` and
    covariance matrix :math:`\Sigma_p`:

    .. math::

        D_{\mathrm{KL}}\left(\mathcal{N}_{q}||\mathcal{N}_{p}\right) =
            \frac{1}{2}\left(\mathrm{Tr}\left(\Sigma_{p}^{-1}\Sigma_{q}\right) + \left(\mu_{p}-\mu_{q}\right)^\top\Sigma_{p}^{-1}\left(\mu_{p} - \mu_{q}\right) - D + \ln{\left(\frac{\det{\Sigma_{p}}}{\det{\Sigma_{q}}}\right)}\right)

    where :math:`D` is the number of dimensions and the resulting divergence
    is given in units of nats.

    .. warning::

        It is important to remember that
        :math:`D_{\mathrm{KL}}\left(\mathcal{N}_{q}||\mathcal{N}_{p}\right) \neq D_{\mathrm{KL}}\left(\mathcal{N}_{p}||\mathcal{N}_{q}\right)`.

    :param mu_q:
        The mean of the first (posterior) multivariate normal distribution.

    :param mu_p:
        The mean of the second (prior) multivariate normal distribution.

    :param cov_q:
        The covariance matrix of the first multivariate normal distribution.
        A one dimensional array is taken to be the diagonal.

    :param cov_p:
        The covariance matrix of the second multivariate normal distribution.
        A one dimensional array is taken to be the diagonal.

    :returns:
        The Kullback-Leibler divergence from distribution :math:`q` to
        :math:`p` in units of nats.
    """

    mu_q, mu_p = (np.atleast_1d(mu_q).flatten(), np.atleast_1d(mu_p).flatten())
    cov_q, cov_p = (np.atleast_1d(cov_q), np.atleast_1d(cov_p))

    if len(cov_q.shape) == 1:
        cov_q = cov_q * np.eye(cov_q.size)

    if len(cov_p.shape) == 1:
        cov_p = cov_p * np.eye(cov_p.size)

    D = mu_q.size
    if mu_p.size != D or cov_q.shape != (D, D) or cov_p.shape != (D, D):
        raise ValueError("shape mis-match between the normal distributions")

    cholesky_p = scipy.linalg.cho_factor(cov_p, lower=True)
    offset = mu_p - mu_q

    return 0.5 * np.sum([
        +np.trace(scipy.linalg.cho_solve(cholesky_p, cov_q)),
        +np.dot(offset, scipy.linalg.cho_solve(cholesky_p, offset)),
        -D,
        +log_det(cov_p) - log_det(cov_q)
    ])


def kullback_leibler_for_wisharts(B_q, B_p, alpha_q, alpha_p):
    r"""
    Return the Kullback-Leibler divergence between two Wishart distributions
    over a precision matrix :math:`\Lambda`, which are parameterised by the
    (half) degrees of freedom :math:`\alpha` and the scale matrix :math:`B`
    such that

    .. math::

        p(\Lambda) = \frac{|B|^{\alpha}}{\Gamma_D(\alpha)}|\Lambda|^{\alpha - (D + 1)/2}\exp\left(-\mathrm{Tr}(B\Lambda)\right)

    and :math:`E[\Lambda] = \alpha{}B^{-1}`. The divergence is

    .. math::

        D_{\mathrm{KL}}\left(q||p\right) = \alpha_p\log\frac{|B_q|}{|B_p|}
            + \alpha_q\mathrm{Tr}\left(B_pB_q^{-1}\right) - D\alpha_q
            + \log\frac{\Gamma_D(\alpha_p)}{\Gamma_D(\alpha_q)}
            + (\alpha_q - \alpha_p)\Psi_D(\alpha_q)

    :param B_q:
        The scale matrix of the first (posterior) Wishart distribution.

    :param B_p:
        The scale matrix of the second (prior) Wishart distribution.

    :param alpha_q:
        The (half) degrees of freedom of the first Wishart distribution.

    :param alpha_p:
        The (half) degrees of freedom of the second Wishart distribution.

    :returns:
        The Kullback-Leibler divergence in units of nats.
    """

    B_q, B_p = (np.atleast_2d(B_q), np.atleast_2d(B_p))
    D = B_q.shape[0]
    if B_q.shape != (D, D) or B_p.shape != (D, D):
        raise ValueError("shape mis-match between the Wishart scale matrices")

    if min(alpha_q, alpha_p) <= 0.5 * (D - 1):
        raise ValueError(
            "Wishart degrees of freedom must exceed (D - 1)/2 = {}".format(
                0.5 * (D - 1)))

    cholesky_q = scipy.linalg.cho_factor(B_q, lower=True)

    return np.sum([
        +alpha_p * (log_det(B_q) - log_det(B_p)),
        +alpha_q * np.trace(scipy.linalg.cho_solve(cholesky_q, B_p)),
        -alpha_q * D,
        +multigammaln(alpha_p, D) - multigammaln(alpha_q, D),
        +(alpha_q - alpha_p) * multivariate_digamma(alpha_q, D)
    ])


def kullback_leibler_for_dirichlets(alpha_q, alpha_p):
    r"""
    Return the Kullback-Leibler divergence between two Dirichlet
    distributions with concentration vectors :math:`\alpha_q` and
    :math:`\alpha_p`:

    .. math::

        D_{\mathrm{KL}}\left(q||p\right) = \log\Gamma\left(\sum_k\alpha_{q,k}\right)
            - \log\Gamma\left(\sum_k\alpha_{p,k}\right)
            - \sum_k\log\frac{\Gamma(\alpha_{q,k})}{\Gamma(\alpha_{p,k})}
            + \sum_k(\alpha_{q,k} - \alpha_{p,k})\left(\psi(\alpha_{q,k}) - \psi\left(\sum_j\alpha_{q,j}\right)\right)

    :param alpha_q:
        The concentration vector of the first (posterior) distribution.

    :param alpha_p:
        The concentration vector of the second (prior) distribution.

    :returns:
        The Kullback-Leibler divergence in units of nats.
    """

    alpha_q = np.atleast_1d(alpha_q).astype(float)
    alpha_p = np.atleast_1d(alpha_p).astype(float)

    if alpha_q.shape != alpha_p.shape:
        raise ValueError("shape mis-match between concentration vectors "\
                         "({} != {})".format(alpha_q.shape, alpha_p.shape))

    if not np.all(alpha_q > 0) or not np.all(alpha_p > 0):
        raise ValueError("concentration parameters must be positive")

    sum_alpha_q = np.sum(alpha_q)
    return np.sum([
        +gammaln(sum_alpha_q),
        -gammaln(np.sum(alpha_p)),
        -np.sum(gammaln(alpha_q) - gammaln(alpha_p)),
        +np.sum((alpha_q - alpha_p) * (digamma(alpha_q) - digamma(sum_alpha_q)))
    ])
