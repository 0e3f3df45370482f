"""Design matrices of the integrated Wiener process (IWP) model.

The p-th order IWP is represented through overlapping splines (O-splines):
its (p-1)-th derivative is approximated by a Wiener process interpolated
linearly between knots, and integrated p-1 times from the origin. With knots
``0 = s_0 < s_1 < ... < s_m`` this gives the basis

    phi_k(t) = [(t - s_{k-1})_+^p - (t - s_k)_+^p] / (p! (s_k - s_{k-1}))

with independent weights ``w_k ~ N(0, sigma^2 (s_k - s_{k-1}))``. The
polynomial of degree ``p - 1`` spans the null space of the process and forms
the base (non-dynamic) model.
"""

import math

import jax.numpy as jnp


# --------------------------------------------------------------------------
# Smoothness scaling
# --------------------------------------------------------------------------


def psd_to_sd(psd: float, order: int, pred_step: float) -> float:
    """Convert a predictive standard deviation to the IWP scale ``sigma``.

    The predictive SD is the standard deviation of the process ``pred_step``
    time units ahead given its current state,
    ``psd = sigma * sqrt(h^(2p-1) / ((2p-1) ((p-1)!)^2))``.

    Parameters
    ----------
    psd : float
        Predictive standard deviation (grid value).
    order : int
        IWP order ``p``.
    pred_step : float
        Prediction step ``h``.

    Returns
    -------
    float
        Scale ``sigma`` of the p-fold integrated white noise.
    """
    p = order
    c = pred_step ** (2 * p - 1) / ((2 * p - 1) * math.factorial(p - 1) ** 2)
    return psd / math.sqrt(c)


# --------------------------------------------------------------------------
# Design matrices
# --------------------------------------------------------------------------


def polynomial_design(x: jnp.ndarray, order: int) -> jnp.ndarray:
    """Polynomial design ``[1, x, ..., x^(p-1)]``, shape ``(n, p)``."""
    return jnp.stack([x**k for k in range(order)], axis=1)


def knot_locations(x_max: float, num_knots: int) -> jnp.ndarray:
    """Equally spaced knots on ``[0, x_max]``."""
    return jnp.linspace(0.0, x_max, num_knots)


def ospline_design(
    x: jnp.ndarray, knots: jnp.ndarray, order: int
) -> jnp.ndarray:
    """O-spline design matrix, shape ``(n, len(knots) - 1)``.

    Parameters
    ----------
    x : jnp.ndarray, shape ``(n,)``
        Times, shifted so that the first knot is 0.
    knots : jnp.ndarray, shape ``(m + 1,)``
        Strictly increasing knots starting at 0.
    order : int
        IWP order ``p``.
    """
    left = knots[:-1]
    right = knots[1:]
    width = right - left
    lo = jnp.maximum(x[:, None] - left[None, :], 0.0) ** order
    hi = jnp.maximum(x[:, None] - right[None, :], 0.0) ** order
    return (lo - hi) / (math.factorial(order) * width[None, :])
