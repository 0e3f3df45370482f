"""Empirical-Bayes engine of FASH.

Stages
------
- ``build_likelihood_matrix``: N x K log marginal likelihoods over the
  smoothness grid.
- ``fit_mixture_weights``: mix-SQP estimate of the mixing distribution
  over the grid.
- ``compute_posterior`` / ``posterior_weights``: per-unit posterior
  weights; the mass at grid point 0 is the local false-discovery value.
- ``discover``: ranking by lfdr and cumulative-fdr cut at level alpha.
- ``summarize``: posterior mean and credible band of a unit's function.

Results
-------
- ``FashResults`` with the factories ``fash``, ``fash_from_likelihood``
  and ``load_results``.
- ``LocalFdrMethod``, ``StaticLocalFdr``, ``evaluate_discoveries`` and
  ``fdr_calibration`` compare FASH with other methods that report lfdr.
"""

from ._grid import build_likelihood_matrix
from ._mixsqp import fit_mixture_weights, mixture_log_likelihood
from ._posterior import compute_posterior, posterior_weights, summarize
from ._discovery import DiscoverySet, cumulative_fdr, discover
from ._evaluation import (
    LocalFdrMethod,
    StaticLocalFdr,
    evaluate_discoveries,
    fdr_calibration,
)
from .results import (
    FashResults,
    fash,
    fash_from_likelihood,
    load_results,
)

__all__ = [
    "build_likelihood_matrix",
    "fit_mixture_weights",
    "mixture_log_likelihood",
    "compute_posterior",
    "posterior_weights",
    "summarize",
    "DiscoverySet",
    "cumulative_fdr",
    "discover",
    "LocalFdrMethod",
    "StaticLocalFdr",
    "evaluate_discoveries",
    "fdr_calibration",
    "FashResults",
    "fash",
    "fash_from_likelihood",
    "load_results",
]
