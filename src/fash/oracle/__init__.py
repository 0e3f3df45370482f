"""Per-unit marginal-likelihood oracles.

- ``LikelihoodOracle``: structural interface every oracle satisfies.
- ``IWPLikelihoodOracle``: closed-form marginal likelihood of the
  integrated-Wiener-process smoothing model.
"""

from .base import LikelihoodOracle
from .iwp import IWPLikelihoodOracle
from ._basis import psd_to_sd

__all__ = [
    "LikelihoodOracle",
    "IWPLikelihoodOracle",
    "psd_to_sd",
]
