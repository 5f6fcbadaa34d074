""" Variational Bayesian mixtures of Gaussians, compared by free energy. """

import logging

from . import (divergences, inference, initialization, mixture, search)

__version__ = "0.0.1"

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG)

handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter(
    "%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)

del handler, logger, logging
