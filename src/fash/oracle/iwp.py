"""Conjugate-Gaussian marginal likelihood of the IWP smoothing model.

For one unit with observations ``y`` at times ``t`` and noise ``S``::

    y | beta, w  ~ N(X beta + B w, diag(S^2))
    beta         ~ N(0, betaprec^{-1} I)          (polynomial base model)
    w_k          ~ N(0, sigma^2 (s_k - s_{k-1}))   (O-spline weights)

Because the model is linear-Gaussian, the marginal likelihood is available in
closed form. It is evaluated in information form through a Cholesky factor of
the posterior precision ``A = P + Z^T S^{-2} Z`` of the stacked coefficients
``theta = (beta, w)``::

    log p(y) = -n/2 log(2 pi) - sum(log S) - 1/2 y^T S^{-2} y
               + 1/2 log|P| - 1/2 log|A| + 1/2 b^T A^{-1} b,
    b = Z^T S^{-2} y.

The same factor gives the posterior mean ``A^{-1} b`` and covariance
``A^{-1}`` of the coefficients, from which the fitted function is evaluated.
"""

from typing import Sequence, Tuple, Union

import numpy as np
import jax
import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from ..config import BasisConfig
from ..core.types import FittedFunction
from ..errors import OracleFailure
from ._basis import (
    knot_locations,
    ospline_design,
    polynomial_design,
    psd_to_sd,
)


# --------------------------------------------------------------------------
# Gaussian marginal likelihood in information form
# --------------------------------------------------------------------------


@jax.jit
def _gaussian_marginal(
    Z: jnp.ndarray,
    y: jnp.ndarray,
    noise_sd: jnp.ndarray,
    prior_prec: jnp.ndarray,
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Log marginal likelihood, posterior mean and Cholesky factor.

    Parameters
    ----------
    Z : jnp.ndarray, shape ``(n, q)``
        Stacked design matrix.
    y : jnp.ndarray, shape ``(n,)``
        Observations.
    noise_sd : jnp.ndarray, shape ``(n,)``
        Observation noise standard deviations.
    prior_prec : jnp.ndarray, shape ``(q,)``
        Diagonal prior precision of the coefficients.

    Returns
    -------
    loglik : jnp.ndarray
        Scalar log marginal likelihood (NaN if the factorisation failed).
    coef : jnp.ndarray, shape ``(q,)``
        Posterior mean of the coefficients.
    chol : jnp.ndarray, shape ``(q, q)``
        Lower Cholesky factor of the posterior precision.
    """
    w = 1.0 / noise_sd**2
    Zw = Z * w[:, None]
    A = jnp.diag(prior_prec) + Z.T @ Zw
    b = Zw.T @ y
    chol = jnp.linalg.cholesky(A)
    half = solve_triangular(chol, b, lower=True)
    coef = solve_triangular(chol.T, half, lower=False)

    n = y.shape[0]
    loglik = (
        -0.5 * n * jnp.log(2.0 * jnp.pi)
        - jnp.sum(jnp.log(noise_sd))
        - 0.5 * jnp.sum(w * y**2)
        + 0.5 * jnp.sum(jnp.log(prior_prec))
        - jnp.sum(jnp.log(jnp.diag(chol)))
        + 0.5 * jnp.sum(half**2)
    )
    return loglik, coef, chol


# --------------------------------------------------------------------------
# Oracle
# --------------------------------------------------------------------------


class IWPLikelihoodOracle:
    """Likelihood oracle for the integrated-Wiener-process smoothing model.

    Grid values are interpreted as predictive standard deviations over
    ``basis_config.pred_step`` and converted to the process scale with
    :func:`psd_to_sd`. A smoothness of 0, or ``base_only=True``, evaluates the
    polynomial base model alone.

    Examples
    --------
    >>> oracle = IWPLikelihoodOracle()
    >>> loglik, fit = oracle.evaluate(
    ...     times=[0, 1, 2, 3], values=[0.1, -0.2, 0.0, 0.1],
    ...     noise_sd=0.2, smoothness=0.5, basis_config=BasisConfig(),
    ... )
    """

    def evaluate(
        self,
        times: Sequence[float],
        values: Sequence[float],
        noise_sd: Union[float, Sequence[float]],
        smoothness: float,
        basis_config: BasisConfig,
        base_only: bool = False,
    ) -> Tuple[float, FittedFunction]:
        """Evaluate the log marginal likelihood of one unit.

        Parameters
        ----------
        times, values : sequence of float
            Observation times and values.
        noise_sd : float or sequence of float
            Observation noise standard deviation(s).
        smoothness : float
            Predictive standard deviation of the process.
        basis_config : BasisConfig
            Basis configuration.
        base_only : bool, default=False
            Evaluate the base model without the process component.

        Returns
        -------
        loglik : float
            Log marginal likelihood.
        fit : FittedFunction
            Posterior mean and pointwise variance of the function.

        Raises
        ------
        OracleFailure
            If the inputs are unusable or the likelihood is not finite.
        """
        t, y, s = self._validate(times, values, noise_sd, smoothness)
        p = basis_config.order

        t0 = float(t.min())
        x = jnp.asarray(t - t0)
        x_max = float(x.max())
        if basis_config.eval_points is None:
            x_eval = jnp.asarray(np.unique(t) - t0)
        else:
            x_eval = jnp.linspace(0.0, x_max, basis_config.eval_points)

        X = polynomial_design(x, p)
        X_eval = polynomial_design(x_eval, p)
        prior_prec = jnp.full(p, basis_config.betaprec)

        if base_only or smoothness == 0.0:
            Z, Z_eval = X, X_eval
        else:
            sigma = psd_to_sd(smoothness, p, basis_config.pred_step)
            knots = knot_locations(x_max, basis_config.num_knots)
            Z = jnp.hstack([X, ospline_design(x, knots, p)])
            Z_eval = jnp.hstack([X_eval, ospline_design(x_eval, knots, p)])
            prior_prec = jnp.concatenate(
                [prior_prec, 1.0 / (sigma**2 * jnp.diff(knots))]
            )

        loglik, coef, chol = _gaussian_marginal(
            Z, jnp.asarray(y), jnp.asarray(s), prior_prec
        )
        loglik = float(loglik)
        if not np.isfinite(loglik):
            raise OracleFailure(
                "non-finite log-likelihood (ill-conditioned system)",
                smoothness=smoothness,
            )

        # Pointwise variance: diag(Z* A^{-1} Z*^T) = column norms of L^{-1} Z*^T
        half = solve_triangular(chol, Z_eval.T, lower=True)
        fit = FittedFunction(
            times=x_eval + t0,
            mean=Z_eval @ coef,
            var=jnp.sum(half**2, axis=0),
        )
        return loglik, fit

    # --------------------------------------------------------------------------

    @staticmethod
    def _validate(times, values, noise_sd, smoothness):
        """Convert inputs to float arrays and check the oracle's contract."""
        t = np.asarray(times, dtype=float).ravel()
        y = np.asarray(values, dtype=float).ravel()
        if t.shape != y.shape:
            raise OracleFailure(
                f"times and values have different lengths "
                f"({t.shape[0]} vs {y.shape[0]})"
            )
        try:
            s = np.broadcast_to(np.asarray(noise_sd, dtype=float), y.shape)
        except ValueError:
            raise OracleFailure(
                "noise_sd cannot be broadcast to the observations"
            ) from None
        if not (np.all(np.isfinite(t)) and np.all(np.isfinite(y))):
            raise OracleFailure("times and values must be finite")
        if not np.all(np.isfinite(s)) or np.any(s <= 0):
            raise OracleFailure("noise_sd must be finite and positive")
        if np.unique(t).size < 2:
            raise OracleFailure("fewer than 2 distinct observation times")
        if not np.isfinite(smoothness) or smoothness < 0:
            raise OracleFailure(
                f"smoothness must be finite and nonnegative, got {smoothness}"
            )
        return t, y, s
