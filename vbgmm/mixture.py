"""
A variational Bayesian estimator for a mixture of multivariate Gaussians
with a prescribed number of components.
"""

__all__ = ["VariationalGaussianMixture", "NumericalInstabilityError"]

import logging
import numpy as np

from . import (inference, initialization)
from .inference import NumericalInstabilityError

logger = logging.getLogger(__name__)


def _prepare_data(y):
    r"""
    Return the observations as a finite :math:`N\times{}D` float array.

    Observations are expected as rows. If there are fewer rows than columns
    then the array is transposed. When the number of rows equals the number
    of columns the rows are taken to be the observations.

    :param y:
        An array-like object of observations.

    :raise ValueError:
        If the data are empty, not two dimensional, or not finite.
    """

    y = np.array(y, dtype=float)
    if y.ndim == 1:
        y = y.reshape((-1, 1))

    if y.ndim != 2:
        raise ValueError("data must be a two dimensional array")

    if 0 in y.shape:
        raise ValueError("data must not be empty")

    N, D = y.shape
    if N < D:
        y = y.T

    if not np.all(np.isfinite(y)):
        raise ValueError("data must be finite")

    return y


class VariationalGaussianMixture(object):

    r"""
    Model data from a prescribed number of multivariate Gaussian
    distributions, using variational Bayesian inference under conjugate
    Dirichlet-Normal-Wishart priors. The free energy (the negative of the
    evidence lower bound) is minimised by iterating the expectation and
    maximization steps.

    :param num_components:
        The number of multivariate Gaussian components to model.

    :param tolerance: [optional]
        The relative change in free energy, as a percentage, required
        before stopping the expectation-maximization loop
        (default: ``1e-5``).

    :param max_iter: [optional]
        The maximum number of iterations to run per expectation-maximization
        loop (default: ``100``).

    :param covariance_type: [optional]
        The structure of the covariance matrix for individual components.
        The available options are: `full` for a full covariance matrix, or
        `diag` for a diagonal covariance matrix (default: ``diag``).

    :param initialization_method: [optional]
        The method to use to initialize the posterior. Available options
        are: ``conditional``, ``random``, and ``kmeans``
        (default: ``random``).

    :param test_covariance: [optional]
        Check that the posterior precision and scale matrices are positive
        definite whenever they are updated, by inverting them through a
        Cholesky decomposition (default: ``True``). Otherwise a general
        matrix inverse is used and no check is made when they are updated;
        a matrix that is not positive definite is then only detected when
        its log-determinant is evaluated in the next expectation step or
        free energy.

    :param display: [optional]
        Log the free energy of every iteration at the ``INFO`` level
        (default: ``False``).

    :param random_state: [optional]
        A seed or :class:`numpy.random.RandomState` used for initialization.
    """

    parameter_names = ("prior", "posterior", "responsibility")

    def __init__(self, num_components, tolerance=1e-5, max_iter=100,
        covariance_type="diag", initialization_method="random",
        test_covariance=True, display=False, random_state=None, **kwargs):

        if num_components is None:
            raise ValueError("missing number of components")

        if int(num_components) != num_components or 1 > num_components:
            raise ValueError("number of components must be a positive integer")

        if 0 >= tolerance:
            raise ValueError("tolerance must be a positive value")

        if int(max_iter) != max_iter or 1 > max_iter:
            raise ValueError("max_iter must be a positive integer")

        available = ("full", "diag")
        if not isinstance(covariance_type, str) \
        or covariance_type.strip().lower() not in available:
            raise ValueError(
                "Covariance type '{}' is invalid. Must be one of: {}"\
                .format(covariance_type, ", ".join(available)))

        available = ("conditional", "random", "kmeans")
        if not isinstance(initialization_method, str) \
        or initialization_method.strip().lower() not in available:
            raise ValueError(
                "Initialization method '{}' is invalid. Must be one of: {}"\
                .format(initialization_method, ", ".join(available)))

        if test_covariance not in (0, 1):
            raise ValueError("test_covariance must be True or False")

        if display not in (0, 1):
            raise ValueError("display must be True or False")

        self._num_components = int(num_components)
        self._tolerance = tolerance
        self._max_iter = int(max_iter)
        self._covariance_type = covariance_type.strip().lower()
        self._initialization_method = initialization_method.strip().lower()
        self._test_covariance = bool(test_covariance)
        self._display = bool(display)
        self._random_state = random_state
        self.meta = {}

        self._prior, self._posterior, self._responsibility = (None, None, None)
        self._state = None
        self._reset_fit()
        return None


    def __repr__(self):
        return "<{name} with {K} components, {state} and free energy "\
               "{F:.3f}>".format(name=self.__class__.__name__,
                    K=self.num_components, state=self.state,
                    F=np.nan if self.free_energy is None else self.free_energy)


    def _reset_fit(self):
        self._stop_reason = None
        self._n_iter = 0
        self._free_energy = None
        self._free_energy_terms = None
        self._history = np.empty((0, 3))
        self.free_energy_increases = []
        self.error = None


    @property
    def num_components(self):
        r""" Return the number of Gaussian components. """
        return self._num_components


    @property
    def tolerance(self):
        r""" Return the relative change in free energy (in per cent) required. """
        return self._tolerance


    @property
    def max_iter(self):
        r""" Return the maximum number of expectation-maximization steps. """
        return self._max_iter


    @property
    def covariance_type(self):
        r""" Return the type of covariance stucture assumed. """
        return self._covariance_type


    @property
    def initialization_method(self):
        r""" Return the method used to initialize the posterior. """
        return self._initialization_method


    @property
    def test_covariance(self):
        r""" Return whether posterior matrices are checked for definiteness. """
        return self._test_covariance


    @property
    def display(self):
        r""" Return whether the free energy is logged every iteration. """
        return self._display


    @property
    def prior(self):
        r""" Return the Dirichlet-Normal-Wishart prior. """
        return self._prior


    @property
    def posterior(self):
        r""" Return the Dirichlet-Normal-Wishart posterior. """
        return self._posterior


    @property
    def responsibility(self):
        r""" Return the :math:`N\times{}K` responsibility matrix. """
        return self._responsibility


    @property
    def state(self):
        r"""
        Return the state of the fit: ``None`` before initialization, then
        ``initialized``, ``iterating``, and finally ``converged``. A fit that
        raised ends in ``unstable`` (a numerical instability) or ``failed``
        (any other exception), and the exception is stored in ``error``.
        """
        return self._state


    @property
    def stop_reason(self):
        r"""
        Return why the fit stopped: ``tolerance`` if the relative change in
        free energy fell below the tolerance, or ``max_iter`` if the maximum
        number of iterations was reached.
        """
        return self._stop_reason


    @property
    def converged(self):
        r""" Return whether the fit stopped because it met the tolerance. """
        return self._stop_reason == "tolerance"


    @property
    def n_iter(self):
        r""" Return the number of iterations performed. """
        return self._n_iter


    @property
    def free_energy(self):
        r""" Return the free energy after the last iteration. """
        return self._free_energy


    @property
    def free_energy_terms(self):
        r"""
        Return the entropy, negative expected log likelihood, and
        Kullback-Leibler divergence terms of the last free energy.
        """
        return self._free_energy_terms


    @property
    def history(self):
        r"""
        Return an array with the free energy terms of every iteration, with
        shape ``(n_iter, 3)``.
        """
        return self._history


    def initialize(self, y):
        r"""
        Initialize the priors, posterior and responsibility matrix.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`,
            where :math:`N` is the number of observations, and :math:`D` is
            the number of dimensions per observation.

        :returns:
            The mixture.
        """

        y = _prepare_data(y)
        self._prior, self._posterior, self._responsibility \
            = initialization.initialize(y, self.num_components,
                covariance_type=self.covariance_type,
                initialization_method=self.initialization_method,
                random_state=self._random_state,
                test_covariance=self.test_covariance)

        self._state = "initialized"
        self._reset_fit()
        return self


    def _soft_initialize(self, y):
        r"""
        Initialize the mixture, only if it has not been initialized.

        :returns:
            ``True`` or ``False`` whether the mixture was initialized.
        """

        for parameter_name in self.parameter_names:
            if getattr(self, parameter_name) is None:
                break

        else:
            return False

        self.initialize(y)
        return True


    def expectation(self, y):
        r"""
        Perform the expectation step, and store the responsibility matrix.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`.

        :returns:
            The :math:`N\times{}K` responsibility matrix.
        """
        self._responsibility, _ = inference.expectation(y, self.posterior)
        return self._responsibility


    def maximization(self, y):
        r"""
        Perform the maximization step, updating the posterior in place.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`.

        :returns:
            The updated posterior.
        """
        return inference.maximization(y, self.responsibility, self.posterior,
            self.prior, self.covariance_type)


    def evaluate_free_energy(self, y):
        r"""
        Return the free energy of the current posterior and responsibilities.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`.

        :returns:
            A two-length tuple containing the free energy and an array of the
            entropy, negative expected log likelihood, and Kullback-Leibler
            divergence terms.
        """
        return inference.free_energy(
            y, self.responsibility, self.posterior, self.prior)


    def fit(self, y, observer=None):
        r"""
        Fit the mixture to the data by iterating the variational expectation
        and maximization steps until the relative change in free energy is
        below the tolerance, or the maximum number of iterations is reached.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`,
            where :math:`N` is the number of observations, and :math:`D` is
            the number of dimensions per observation.

        :param observer: [optional]
            A callable that is given ``(model, iteration, y)`` after every
            iteration.

        :returns:
            The mixture.

        :raise NumericalInstabilityError:
            If the fit becomes numerically degenerate.
        """

        y = _prepare_data(y)

        history = []
        previous, change = (None, np.nan)

        try:
            # Only initialize if we don't have parameters already.
            self._soft_initialize(y)
            self._reset_fit()
            self._state = "iterating"

            for iteration in range(1, 1 + self.max_iter):

                self.expectation(y)
                self.maximization(y)
                free_energy, terms = self.evaluate_free_energy(y)

                if not np.isfinite(free_energy):
                    raise NumericalInstabilityError(
                        "free energy is not finite at iteration {}".format(
                            iteration))

                history.append(terms)
                self._n_iter = iteration
                self._free_energy, self._free_energy_terms \
                    = (free_energy, terms)

                if self.display:
                    logger.info("Iteration {} ; Free-Energy = {:f}".format(
                        iteration, free_energy))

                # Check the change in free energy.
                converged = False
                if previous is not None:
                    if free_energy - previous > 1e-9 * max(1, abs(previous)):
                        logger.warning(
                            "Free energy increased from {} to {} at iteration "
                            "{} with K = {}".format(previous, free_energy,
                                iteration, self.num_components))
                        self.free_energy_increases.append(iteration)

                    change = 100 * abs((free_energy - previous) \
                                / (previous if previous != 0 else 1))
                    converged = self.tolerance > change

                if observer is not None:
                    observer(self, iteration, y)

                if converged:
                    self._stop_reason = "tolerance"
                    break

                previous = free_energy

            else:
                self._stop_reason = "max_iter"
                logger.warning(
                    "Hit maximum number of expectation-maximization iterations "
                    "({}) with K = {}".format(self.max_iter, self.num_components))

        except NumericalInstabilityError as e:
            self._state = "unstable"
            self.error = e
            raise

        except Exception as e:
            # For example, an observer that raised.
            self._state = "failed"
            self.error = e
            raise

        finally:
            self._history = np.array(history).reshape((-1, 3))

        self._state = "converged"
        self.meta.update(iterations=self.n_iter, delta_free_energy=change,
            stop_reason=self.stop_reason)

        return self


    def predict_proba(self, y):
        r"""
        Return the responsibility matrix of (new) observations under the
        current posterior.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`.
        """
        if self.posterior is None:
            raise ValueError("the mixture has not been fit")

        D = self.posterior.dimensions
        y = np.atleast_2d(np.array(y, dtype=float))
        if y.shape[1] != D:
            if y.shape[0] != D:
                raise ValueError("data do not have {} dimensions".format(D))
            y = y.T

        responsibility, _ = inference.expectation(y, self.posterior)
        return responsibility


    def predict(self, y):
        r"""
        Return the most probable component of each observation.

        :param y:
            A :math:`N\times{}D` array of the observations :math:`y`.
        """
        return np.argmax(self.predict_proba(y), axis=1)
