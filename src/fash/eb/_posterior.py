"""Posterior weights over the smoothness grid and function summaries.

Given the fitted mixture weights ``w`` and a unit's log-likelihood row ``L``,
the unit's posterior over grid points is::

    p_j ∝ w_j exp(L_j)

computed in log space with max-subtraction. The mass at grid point 0 is the
unit's local false-discovery value: the posterior probability that it is
non-dynamic.

The posterior of the unit's underlying function is the corresponding mixture
of the per-grid-point Gaussian fits, summarised by its mean, standard
deviation (law of total variance) and pointwise equal-tailed credible band.
"""

import warnings
from typing import Hashable, Optional, Sequence

import numpy as np
import jax
import jax.numpy as jnp
from jax.scipy.stats import norm

from ..core.types import (
    FittedFunction,
    FunctionSummary,
    LikelihoodMatrix,
    MixtureWeights,
    PosteriorResult,
    PosteriorWeights,
)
from ..errors import DegenerateRow, ShapeMismatch


# --------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------


def _log_weights(w: jnp.ndarray) -> jnp.ndarray:
    """``log(w)`` with exact ``-inf`` at zero weights."""
    return jnp.where(w > 0, jnp.log(jnp.where(w > 0, w, 1.0)), -jnp.inf)


def _normalize_log(log_num: jnp.ndarray) -> jnp.ndarray:
    """Row-normalise ``exp(log_num)`` with max-subtraction."""
    row_max = jnp.max(log_num, axis=-1, keepdims=True)
    safe_max = jnp.where(jnp.isfinite(row_max), row_max, 0.0)
    unnorm = jnp.exp(log_num - safe_max)
    return unnorm / jnp.sum(unnorm, axis=-1, keepdims=True)


# --------------------------------------------------------------------------
# Single-unit posterior
# --------------------------------------------------------------------------


def posterior_weights(
    row: jnp.ndarray,
    weights: MixtureWeights,
    unit_id: Optional[Hashable] = None,
) -> PosteriorWeights:
    """Posterior distribution of one unit over the smoothness grid.

    Parameters
    ----------
    row : jnp.ndarray, shape ``(K,)``
        The unit's log-likelihood row.
    weights : MixtureWeights
        Fitted mixture weights.
    unit_id : hashable, optional
        Identifier attached to the result.

    Returns
    -------
    PosteriorWeights
        Nonnegative weights summing to 1. If no grid point has both positive
        prior weight and finite likelihood, the mass is placed on the grid
        points with finite likelihood in proportion to their likelihood.

    Raises
    ------
    ShapeMismatch
        If ``row`` and ``weights`` have different lengths.
    DegenerateRow
        If every entry of ``row`` is ``-inf``.
    """
    row = jnp.asarray(row, dtype=jnp.float64)
    if row.ndim != 1 or row.shape[0] != weights.K:
        raise ShapeMismatch(
            f"Likelihood row has shape {row.shape}, weights have "
            f"K={weights.K}"
        )
    if not bool(jnp.any(jnp.isfinite(row))):
        raise DegenerateRow(unit_id)

    log_num = row + _log_weights(weights.values)
    if not bool(jnp.any(jnp.isfinite(log_num))):
        log_num = row
    return PosteriorWeights(unit_id, _normalize_log(log_num), weights.grid)


# --------------------------------------------------------------------------
# Batch posterior
# --------------------------------------------------------------------------


def compute_posterior(
    L: LikelihoodMatrix, weights: MixtureWeights
) -> PosteriorResult:
    """Posterior weights of every unit of a likelihood matrix.

    Vectorised over units. Degenerate units (no finite likelihood) get a row
    of NaN and an entry in ``PosteriorResult.failures``; they never abort the
    batch.

    Parameters
    ----------
    L : LikelihoodMatrix
        Log marginal likelihoods.
    weights : MixtureWeights
        Fitted mixture weights on the same grid.

    Returns
    -------
    PosteriorResult

    Raises
    ------
    ShapeMismatch
        If ``L`` and ``weights`` are not aligned with the same grid.
    """
    if L.K != weights.K or L.grid != weights.grid:
        raise ShapeMismatch(
            f"Likelihood matrix (K={L.K}) and mixture weights "
            f"(K={weights.K}) are not aligned with the same grid"
        )
    values = jnp.asarray(L.values)
    has_finite = jnp.any(jnp.isfinite(values), axis=1)

    log_num = values + _log_weights(weights.values)[None, :]
    # Rows whose finite likelihoods all sit on zero-weight grid points.
    fallback = has_finite & ~jnp.any(jnp.isfinite(log_num), axis=1)
    log_num = jnp.where(fallback[:, None], values, log_num)

    probs = _normalize_log(log_num)
    probs = jnp.where(has_finite[:, None], probs, jnp.nan)

    degenerate = np.flatnonzero(~np.asarray(has_finite))
    failures = {L.unit_ids[i]: DegenerateRow(L.unit_ids[i]) for i in degenerate}
    if failures:
        warnings.warn(
            f"{len(failures)} unit(s) have no finite likelihood; see "
            f"PosteriorResult.failures",
            RuntimeWarning,
        )
    return PosteriorResult(
        matrix=probs,
        unit_ids=L.unit_ids,
        grid=L.grid,
        failures=failures,
    )


# --------------------------------------------------------------------------
# Function summaries
# --------------------------------------------------------------------------


def _mixture_quantile(
    probs: jnp.ndarray,
    means: jnp.ndarray,
    sds: jnp.ndarray,
    q: float,
    n_iter: int = 100,
) -> jnp.ndarray:
    """Pointwise quantile of a Gaussian mixture by bisection on its CDF.

    Parameters
    ----------
    probs : jnp.ndarray, shape ``(K,)``
        Mixture weights.
    means, sds : jnp.ndarray, shape ``(K, M)``
        Component means and standard deviations at M points.
    q : float
        Quantile level in ``(0, 1)``.
    """
    lo = jnp.min(means - 10.0 * sds, axis=0)
    hi = jnp.max(means + 10.0 * sds, axis=0)

    def body(_, bounds):
        lo, hi = bounds
        mid = 0.5 * (lo + hi)
        cdf = jnp.sum(
            probs[:, None] * norm.cdf((mid[None, :] - means) / sds), axis=0
        )
        below = cdf < q
        return jnp.where(below, mid, lo), jnp.where(below, hi, mid)

    lo, hi = jax.lax.fori_loop(0, n_iter, body, (lo, hi))
    return 0.5 * (lo + hi)


# --------------------------------------------------------------------------


def summarize(
    fits: Optional[Sequence[FittedFunction]],
    posterior: PosteriorWeights,
    level: float = 0.95,
) -> FunctionSummary:
    """Posterior summary of a unit's function from its per-grid-point fits.

    The posterior of the function is the mixture over grid points of the
    Gaussian fits, weighted by the unit's posterior weights.

    Parameters
    ----------
    fits : sequence of FittedFunction, length K
        The unit's fitted function at every grid point, all evaluated at the
        same times.
    posterior : PosteriorWeights
        The unit's posterior weights.
    level : float, default=0.95
        Credible level of the pointwise band.

    Returns
    -------
    FunctionSummary
        Mixture mean, standard deviation and equal-tailed band.

    Raises
    ------
    ValueError
        If ``fits`` is ``None`` (fits were not retained) or ``level`` is not
        in ``(0, 1)``.
    ShapeMismatch
        If the number of fits differs from K or the fits use different
        evaluation times.
    """
    if fits is None:
        raise ValueError(
            "Fitted functions were not retained; rebuild the likelihood "
            "matrix with retain_fits=True"
        )
    if not 0.0 < level < 1.0:
        raise ValueError(f"level must be in (0, 1), got {level}")
    fits = list(fits)
    probs = jnp.asarray(posterior.values)
    if len(fits) != probs.shape[0]:
        raise ShapeMismatch(
            f"{len(fits)} fitted functions for K={probs.shape[0]} grid points"
        )
    times = fits[0].times
    if any(f.times.shape != times.shape for f in fits) or not all(
        bool(jnp.allclose(f.times, times)) for f in fits
    ):
        raise ShapeMismatch("Fitted functions use different evaluation times")

    means = jnp.stack([f.mean for f in fits])  # (K, M)
    variances = jnp.maximum(jnp.stack([f.var for f in fits]), 0.0)

    # Law of total variance: E[V] + E[M^2] - E[M]^2
    mean = jnp.sum(probs[:, None] * means, axis=0)
    second = jnp.sum(probs[:, None] * (variances + means**2), axis=0)
    sd = jnp.sqrt(jnp.maximum(second - mean**2, 0.0))

    sds = jnp.sqrt(jnp.maximum(variances, 1e-300))
    tail = 0.5 * (1.0 - level)
    return FunctionSummary(
        unit_id=posterior.unit_id,
        times=times,
        mean=mean,
        sd=sd,
        lower=_mixture_quantile(probs, means, sds, tail),
        upper=_mixture_quantile(probs, means, sds, 1.0 - tail),
        level=level,
    )
