"""Empirical-Bayes estimation of mixture weights over the smoothness grid.

Fits the categorical mixing distribution ``pi`` over the K grid points by
maximising the total marginal log-likelihood of all units::

    f(pi) = sum_i log( sum_j pi_j exp(L[i, j]) ) + (lambda - 1) log(pi_0)

over the probability simplex. The second term is an optional null-biased
prior (``lambda = null_penalty``, off by default). ``f`` is concave, so every
local maximum is global.

The optimizer is a sequential quadratic programming method on the simplex
(mix-SQP; Kim, Carbonetto & Stephens, 2020). Each iteration

1. rescales each row by its maximum (``Lt = exp(L - max_j L)``; ``-inf``
   becomes an exact zero),
2. builds the gradient and Hessian of the surrogate
   ``phi(x) = -f(x) / m + sum(x)`` with ``m = n + lambda - 1`` (whose
   minimiser over ``x >= 0`` lies on the simplex),
3. solves the quadratic sub-problem subject to ``x >= 0`` with a primal
   active-set method started on the current face,
4. backtracks along the step, renormalised onto the simplex, accepting only
   points where the true objective does not decrease; if no step size is
   accepted an EM step, which never decreases ``f``, is tried instead.

Iteration stops when the increase of ``f`` falls below ``tol``. On hitting
``max_iter`` the best iterate is returned with an
``OptimizerNonConvergence`` warning.
"""

import logging
import warnings
from typing import Optional, Union

import numpy as np
import jax.numpy as jnp
from jax.scipy.special import logsumexp

from ..config import OptimizerConfig
from ..core.types import SIMPLEX_ATOL, LikelihoodMatrix, MixtureWeights
from ..errors import OptimizerNonConvergence, ShapeMismatch

logger = logging.getLogger(__name__)

# Ridge added to the Hessian diagonal so the sub-problem stays well posed when
# columns of the likelihood matrix are (nearly) collinear.
_HESSIAN_RIDGE = 1e-10


# --------------------------------------------------------------------------
# Objective
# --------------------------------------------------------------------------


def mixture_log_likelihood(
    L: Union[LikelihoodMatrix, jnp.ndarray],
    weights: Union[MixtureWeights, jnp.ndarray],
) -> float:
    """Total marginal log-likelihood ``sum_i log sum_j w_j exp(L[i, j])``.

    Computed with a row-wise log-sum-exp. Zero weights and ``-inf`` entries
    contribute nothing; a row with no grid point of positive weight and
    finite likelihood contributes ``-inf``.
    """
    L = jnp.asarray(L.values if isinstance(L, LikelihoodMatrix) else L)
    w = jnp.asarray(
        weights.values if isinstance(weights, MixtureWeights) else weights
    )
    if L.shape[-1] != w.shape[0]:
        raise ShapeMismatch(
            f"Likelihood matrix has K={L.shape[-1]}, weights have "
            f"K={w.shape[0]}"
        )
    log_w = jnp.where(w > 0, jnp.log(jnp.where(w > 0, w, 1.0)), -jnp.inf)
    return float(jnp.sum(logsumexp(L + log_w[None, :], axis=1)))


# --------------------------------------------------------------------------


class _Problem:
    """Row-rescaled likelihoods and the penalised objective."""

    def __init__(self, L: jnp.ndarray, null_penalty: float):
        row_max = jnp.max(L, axis=1)
        self.offset = float(jnp.sum(row_max))
        self.Lt = jnp.exp(L - row_max[:, None])
        self.n = L.shape[0]
        self.penalty = null_penalty - 1.0
        self.m = self.n + self.penalty

    # ------------------------------------------------------------------

    def objective(self, x: np.ndarray) -> float:
        """Penalised objective ``f(x)`` (``-inf`` outside the support)."""
        u = self.Lt @ jnp.asarray(x)
        f = self.offset + float(jnp.sum(jnp.log(u)))
        if self.penalty > 0:
            f += self.penalty * float(np.log(x[0])) if x[0] > 0 else -np.inf
        return f

    # ------------------------------------------------------------------

    def gradient_hessian(self, x: np.ndarray):
        """Gradient and Hessian of ``phi(x) = -f(x) / m + sum(x)``."""
        d = 1.0 / (self.Lt @ jnp.asarray(x))
        Ld = self.Lt * d[:, None]
        g = np.array(1.0 - jnp.sum(Ld, axis=0) / self.m)
        H = np.array(Ld.T @ Ld / self.m)
        if self.penalty > 0:
            g[0] -= self.penalty / (self.m * x[0])
            H[0, 0] += self.penalty / (self.m * x[0] ** 2)
        H = H + _HESSIAN_RIDGE * np.eye(H.shape[0])
        return g, H

    # ------------------------------------------------------------------

    def em_step(self, x: np.ndarray) -> np.ndarray:
        """One EM update ``pi_j ∝ sum_i r_ij`` (plus the null prior count)."""
        xj = jnp.asarray(x)
        u = self.Lt @ xj
        resp = self.Lt * xj[None, :] / u[:, None]
        counts = np.array(jnp.sum(resp, axis=0))
        if self.penalty > 0:
            counts[0] += self.penalty
        return counts / counts.sum()


# --------------------------------------------------------------------------
# Active-set quadratic sub-problem
# --------------------------------------------------------------------------


def _solve_face(H: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Solve ``H p = rhs`` on a face, falling back to least squares."""
    try:
        return np.linalg.solve(H, rhs)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(H, rhs, rcond=None)[0]


def _active_set_qp(
    H: np.ndarray,
    g: np.ndarray,
    x: np.ndarray,
    max_iter: int,
    tol: float = 1e-10,
) -> np.ndarray:
    """Minimise ``1/2 (y-x)^T H (y-x) + g^T (y-x)`` subject to ``y >= 0``.

    Primal active-set method. The working set starts at the face of the
    current iterate (coordinates where ``x_j = 0``); constraints are added
    when a step is blocked by a bound and released when their Lagrange
    multiplier is negative.

    Returns
    -------
    np.ndarray, shape ``(K,)``
        Nonnegative solution ``y``.
    """
    y = np.maximum(x, 0.0)
    active = y <= 0.0

    for _ in range(max_iter):
        grad = g + H @ (y - x)
        free = ~active
        p = np.zeros_like(y)
        if free.any():
            p[free] = _solve_face(H[np.ix_(free, free)], -grad[free])

        if np.max(np.abs(p)) <= tol:
            # Stationary on the face: release the most violated bound.
            if not active.any():
                break
            mult = grad[active]
            k = int(np.argmin(mult))
            if mult[k] >= -tol:
                break
            active[np.flatnonzero(active)[k]] = False
            continue

        step = 1.0
        blocking_index = None
        blocking = free & (p < 0)
        if blocking.any():
            ratios = -y[blocking] / p[blocking]
            k = int(np.argmin(ratios))
            if ratios[k] < 1.0:
                step = float(ratios[k])
                blocking_index = np.flatnonzero(blocking)[k]

        y = y + step * p
        if blocking_index is not None:
            y[blocking_index] = 0.0
            active[blocking_index] = True

    return np.maximum(y, 0.0)


# --------------------------------------------------------------------------
# Public API
# --------------------------------------------------------------------------


def _initial_point(
    init: Optional[Union[MixtureWeights, jnp.ndarray]], L: LikelihoodMatrix
) -> np.ndarray:
    """Validate ``init`` against the grid, defaulting to uniform weights."""
    if init is None:
        return np.full(L.K, 1.0 / L.K)
    if isinstance(init, MixtureWeights):
        if init.grid != L.grid:
            raise ShapeMismatch(
                "Initial weights are aligned with a different grid"
            )
        init = init.values
    x = np.asarray(init, dtype=float)
    if x.shape != (L.K,):
        raise ShapeMismatch(
            f"Initial weights have shape {x.shape}, expected ({L.K},)"
        )
    if np.any(x < 0) or abs(x.sum() - 1.0) > SIMPLEX_ATOL:
        raise ValueError("Initial weights must lie on the simplex")
    return x / x.sum()


# --------------------------------------------------------------------------


def fit_mixture_weights(
    L: LikelihoodMatrix,
    init: Optional[Union[MixtureWeights, jnp.ndarray]] = None,
    config: Optional[OptimizerConfig] = None,
) -> MixtureWeights:
    """Fit mixture weights over the smoothness grid by mix-SQP.

    Parameters
    ----------
    L : LikelihoodMatrix
        Log marginal likelihoods, shape ``(N, K)``.
    init : MixtureWeights or array_like, optional
        Starting simplex point. Defaults to uniform weights.
    config : OptimizerConfig, optional
        Optimizer settings. Defaults to ``OptimizerConfig()``.

    Returns
    -------
    MixtureWeights
        Fitted weights with diagnostics. ``trace`` holds the objective at the
        starting point and after every iteration and is non-decreasing.

    Raises
    ------
    ShapeMismatch
        If ``init`` is not aligned with the grid of ``L``.

    Warns
    -----
    OptimizerNonConvergence
        If ``max_iter`` iterations were reached before convergence.
    RuntimeWarning
        If rows with no finite likelihood were excluded from the fit.

    Examples
    --------
    >>> weights = fit_mixture_weights(L)
    >>> weights.null_proportion
    """
    config = config if config is not None else OptimizerConfig()
    x = _initial_point(init, L)
    values = jnp.asarray(L.values)

    informative = np.asarray(jnp.any(jnp.isfinite(values), axis=1))
    if not informative.all():
        warnings.warn(
            f"{int((~informative).sum())} unit(s) have no finite likelihood "
            f"and were excluded from the mixture fit",
            RuntimeWarning,
        )
        values = values[informative]

    if L.K == 1 or values.shape[0] == 0:
        x = np.ones(1) if L.K == 1 else x
        f = (
            mixture_log_likelihood(values, x)
            if values.shape[0] > 0
            else float("nan")
        )
        return MixtureWeights(
            x, L.grid, objective=f, n_iter=0, converged=True, trace=(f,)
        )

    problem = _Problem(values, config.null_penalty)
    f = problem.objective(x)
    if not np.isfinite(f):
        warnings.warn(
            "Initial weights give zero likelihood to some units; "
            "starting from uniform weights instead",
            RuntimeWarning,
        )
        x = np.full(L.K, 1.0 / L.K)
        f = problem.objective(x)

    trace = [f]
    converged = False
    n_iter = 0
    for n_iter in range(1, config.max_iter + 1):
        g, H = problem.gradient_hessian(x)
        y = _active_set_qp(H, g, x, config.active_set_max_iter)

        # Backtracking line search on the true objective.
        x_new, f_new = None, -np.inf
        t = 1.0
        for _ in range(config.max_backtrack):
            z = np.maximum(x + t * (y - x), 0.0)
            total = z.sum()
            if total > 0:
                z = z / total
                f_z = problem.objective(z)
                if np.isfinite(f_z) and f_z >= f:
                    x_new, f_new = z, f_z
                    break
            t *= 0.5

        if x_new is None:
            z = problem.em_step(x)
            f_z = problem.objective(z)
            if np.isfinite(f_z) and f_z >= f:
                x_new, f_new = z, f_z
            else:
                x_new, f_new = x, f

        if f_new - f < config.tol:
            # A stalled SQP step is confirmed with an EM step before stopping.
            z = problem.em_step(x_new)
            f_z = problem.objective(z)
            if np.isfinite(f_z) and f_z > f_new:
                x_new, f_new = z, f_z

        improvement = f_new - f
        x, f = x_new, f_new
        trace.append(f)
        if improvement < config.tol:
            converged = True
            break

    if converged:
        logger.debug("mix-SQP converged after %d iterations", n_iter)
    else:
        logger.debug("mix-SQP stopped at max_iter=%d", config.max_iter)
        warnings.warn(
            f"Mixture weights did not converge within {config.max_iter} "
            f"iterations; returning the best iterate",
            OptimizerNonConvergence,
        )

    # Report tiny weights as pruned, unless zeroing them costs likelihood.
    pruned = x < config.prune_tol
    if pruned.any() and not pruned.all():
        z = np.where(pruned, 0.0, x)
        z = z / z.sum()
        f_z = problem.objective(z)
        if np.isfinite(f_z) and f_z >= f - config.tol:
            x, f = z, f_z
        else:
            pruned = np.zeros_like(pruned)
    else:
        pruned = np.zeros_like(pruned)

    return MixtureWeights(
        values=x,
        grid=L.grid,
        objective=f,
        n_iter=n_iter,
        converged=converged,
        trace=tuple(trace),
        pruned=pruned,
    )
