"""Data model shared by the FASH stages.

Every object here is immutable once constructed: numeric payloads are stored
as JAX arrays and containers as frozen dataclasses. Producers (grid builder,
optimizer, posterior engine) construct these objects completely before
handing them to the next stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import jax.numpy as jnp

from ..config import BasisConfig
from ..errors import DegenerateRow, OracleFailure, ShapeMismatch

# Absolute tolerance for simplex membership checks.
SIMPLEX_ATOL = 1e-8


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------


def _check_unique_ids(unit_ids: Sequence[Hashable]) -> None:
    """Raise ``ShapeMismatch`` if any unit id appears twice."""
    seen = set()
    duplicates = []
    for uid in unit_ids:
        if uid in seen:
            duplicates.append(uid)
        seen.add(uid)
    if duplicates:
        raise ShapeMismatch(f"Duplicate unit ids: {duplicates[:5]}")


# ==============================================================================
# Unit
# ==============================================================================


@dataclass(frozen=True, eq=False)
class Unit:
    """One independently observed trajectory.

    Observations are sorted by time on construction. ``noise_sd`` may be a
    scalar or one standard deviation per observation; it is broadcast to the
    length of ``values``.

    Parameters
    ----------
    unit_id : hashable
        Identifier of the unit (``str`` or ``int`` for persistence).
    times : array_like, shape ``(n,)``
        Observation times.
    values : array_like, shape ``(n,)``
        Observed values (e.g. effect sizes).
    noise_sd : float or array_like, shape ``(n,)``
        Known or estimated noise standard deviation.
    """

    unit_id: Hashable
    times: jnp.ndarray
    values: jnp.ndarray
    noise_sd: jnp.ndarray

    def __post_init__(self):
        times = np.asarray(self.times, dtype=float).ravel()
        values = np.asarray(self.values, dtype=float).ravel()
        if times.shape != values.shape:
            raise ValueError(
                f"unit={self.unit_id!r}: times and values have different "
                f"lengths ({times.shape[0]} vs {values.shape[0]})"
            )
        if times.size == 0:
            raise ValueError(f"unit={self.unit_id!r}: no observations")
        try:
            noise = np.broadcast_to(
                np.asarray(self.noise_sd, dtype=float), values.shape
            )
        except ValueError as exc:
            raise ValueError(
                f"unit={self.unit_id!r}: noise_sd cannot be broadcast to "
                f"{values.shape[0]} observations"
            ) from exc
        if not (np.all(np.isfinite(times)) and np.all(np.isfinite(values))):
            raise ValueError(
                f"unit={self.unit_id!r}: times and values must be finite"
            )
        if not np.all(np.isfinite(noise)) or np.any(noise <= 0):
            raise ValueError(
                f"unit={self.unit_id!r}: noise_sd must be finite and positive"
            )

        order = np.argsort(times, kind="stable")
        object.__setattr__(self, "times", jnp.asarray(times[order]))
        object.__setattr__(self, "values", jnp.asarray(values[order]))
        object.__setattr__(self, "noise_sd", jnp.asarray(noise[order]))

    @property
    def n_obs(self) -> int:
        """Number of observations."""
        return int(self.values.shape[0])

    def __repr__(self) -> str:
        return f"Unit(unit_id={self.unit_id!r}, n_obs={self.n_obs})"


# ==============================================================================
# Smoothness grid
# ==============================================================================


@dataclass(frozen=True, eq=False)
class SmoothnessGrid:
    """Fixed grid of candidate smoothness values.

    Values are predictive standard deviations of the governing process.
    The first value must be exactly 0 and denotes the non-dynamic base
    model; the grid is strictly increasing.
    """

    values: jnp.ndarray

    def __post_init__(self):
        values = np.asarray(self.values, dtype=float)
        if values.ndim != 1 or values.size == 0:
            raise ShapeMismatch(
                f"Smoothness grid must be a non-empty 1-D sequence, "
                f"got shape {values.shape}"
            )
        if not np.all(np.isfinite(values)):
            raise ValueError("Smoothness grid values must be finite")
        if values[0] != 0.0:
            raise ValueError(
                f"First grid value must be exactly 0, got {values[0]}"
            )
        if values.size > 1 and not np.all(np.diff(values) > 0):
            raise ValueError(
                "Smoothness grid must be strictly increasing without "
                "duplicates"
            )
        object.__setattr__(self, "values", jnp.asarray(values))

    # --------------------------------------------------------------------------

    @classmethod
    def linear(cls, max_value: float, K: int) -> "SmoothnessGrid":
        """Evenly spaced grid ``[0, ..., max_value]`` with ``K`` points."""
        if K < 1:
            raise ValueError(f"K must be at least 1, got {K}")
        if K == 1:
            return cls([0.0])
        return cls(np.linspace(0.0, max_value, K))

    @classmethod
    def geometric(
        cls, min_value: float, max_value: float, K: int
    ) -> "SmoothnessGrid":
        """Grid ``0`` followed by ``K - 1`` geometrically spaced values."""
        if K < 2:
            raise ValueError(f"K must be at least 2, got {K}")
        return cls(
            np.concatenate([[0.0], np.geomspace(min_value, max_value, K - 1)])
        )

    # --------------------------------------------------------------------------

    @property
    def K(self) -> int:
        """Number of grid points."""
        return int(self.values.shape[0])

    def __len__(self) -> int:
        return self.K

    def __iter__(self) -> Iterator[float]:
        return iter(float(v) for v in np.asarray(self.values))

    def __eq__(self, other) -> bool:
        if not isinstance(other, SmoothnessGrid):
            return NotImplemented
        return bool(
            np.array_equal(np.asarray(self.values), np.asarray(other.values))
        )

    def __hash__(self) -> int:
        return hash(tuple(self))

    def __repr__(self) -> str:
        return f"SmoothnessGrid(K={self.K}, values={list(self)})"


# ==============================================================================
# Fitted functions
# ==============================================================================


@dataclass(frozen=True, eq=False)
class FittedFunction:
    """Gaussian posterior of a unit's function under one grid point.

    Attributes
    ----------
    times : jnp.ndarray, shape ``(M,)``
        Evaluation times.
    mean : jnp.ndarray, shape ``(M,)``
        Posterior mean of the function.
    var : jnp.ndarray, shape ``(M,)``
        Pointwise posterior variance of the function.
    """

    times: jnp.ndarray
    mean: jnp.ndarray
    var: jnp.ndarray


# ==============================================================================
# Likelihood matrix
# ==============================================================================


@dataclass(frozen=True, eq=False)
class LikelihoodMatrix:
    """N x K matrix of log marginal likelihoods.

    Row ``i`` holds unit ``unit_ids[i]`` and column ``j`` the grid point
    ``grid.values[j]``. Entries are finite or ``-inf``.

    Parameters
    ----------
    values : array_like, shape ``(N, K)``
        Log marginal likelihoods.
    grid : SmoothnessGrid
        Grid the columns are aligned with.
    unit_ids : sequence of hashable
        Row identifiers.
    basis : BasisConfig, optional
        Basis configuration used for every evaluation.
    fits : tuple of tuple of FittedFunction, optional
        Per-unit, per-grid-point fitted functions.
    failures : tuple of OracleFailure
        Failures of units dropped while building the matrix.
    """

    values: jnp.ndarray
    grid: SmoothnessGrid
    unit_ids: Tuple[Hashable, ...]
    basis: Optional[BasisConfig] = None
    fits: Optional[Tuple[Tuple[FittedFunction, ...], ...]] = None
    failures: Tuple[OracleFailure, ...] = ()

    def __post_init__(self):
        values = np.asarray(self.values, dtype=float)
        unit_ids = tuple(self.unit_ids)
        if values.ndim != 2:
            raise ShapeMismatch(
                f"Likelihood matrix must be 2-D, got shape {values.shape}"
            )
        if values.shape[0] == 0:
            raise ShapeMismatch("Likelihood matrix has no units")
        if values.shape[1] != self.grid.K:
            raise ShapeMismatch(
                f"Likelihood matrix has {values.shape[1]} columns but the "
                f"grid has K={self.grid.K} points"
            )
        if values.shape[0] != len(unit_ids):
            raise ShapeMismatch(
                f"Likelihood matrix has {values.shape[0]} rows but "
                f"{len(unit_ids)} unit ids were given"
            )
        _check_unique_ids(unit_ids)
        if np.any(np.isnan(values)) or np.any(values == np.inf):
            raise ValueError(
                "Likelihood matrix entries must be finite or -inf"
            )
        if self.fits is not None:
            fits = tuple(tuple(row) for row in self.fits)
            if len(fits) != values.shape[0] or any(
                len(row) != self.grid.K for row in fits
            ):
                raise ShapeMismatch(
                    "Fitted functions are not aligned with the matrix"
                )
            object.__setattr__(self, "fits", fits)

        object.__setattr__(self, "values", jnp.asarray(values))
        object.__setattr__(self, "unit_ids", unit_ids)
        object.__setattr__(self, "failures", tuple(self.failures))
        object.__setattr__(
            self, "_index", {uid: i for i, uid in enumerate(unit_ids)}
        )

    # --------------------------------------------------------------------------

    @property
    def n_units(self) -> int:
        """Number of units (rows)."""
        return int(self.values.shape[0])

    @property
    def K(self) -> int:
        """Number of grid points (columns)."""
        return self.grid.K

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.n_units, self.K)

    def index_of(self, unit_id: Hashable) -> int:
        """Row index of ``unit_id``."""
        try:
            return self._index[unit_id]
        except KeyError:
            raise KeyError(f"Unknown unit id: {unit_id!r}") from None

    def row(self, unit_id: Hashable) -> jnp.ndarray:
        """Log-likelihood row of ``unit_id``."""
        return self.values[self.index_of(unit_id)]

    # --------------------------------------------------------------------------

    def drop(self, unit_ids: Sequence[Hashable]) -> "LikelihoodMatrix":
        """Return a new matrix without the given units."""
        dropped = set(unit_ids)
        keep = [i for i, uid in enumerate(self.unit_ids) if uid not in dropped]
        fits = None
        if self.fits is not None:
            fits = tuple(self.fits[i] for i in keep)
        return LikelihoodMatrix(
            values=np.asarray(self.values)[keep],
            grid=self.grid,
            unit_ids=tuple(self.unit_ids[i] for i in keep),
            basis=self.basis,
            fits=fits,
            failures=self.failures,
        )

    # --------------------------------------------------------------------------

    def to_frame(self):
        """Return the matrix as a ``pandas.DataFrame`` indexed by unit id."""
        import pandas as pd

        return pd.DataFrame(
            np.asarray(self.values),
            index=pd.Index(list(self.unit_ids), name="unit_id"),
            columns=list(self.grid),
        )

    def __repr__(self) -> str:
        return (
            f"LikelihoodMatrix(n_units={self.n_units}, K={self.K}, "
            f"fits={'yes' if self.fits is not None else 'no'})"
        )


# ==============================================================================
# Mixture weights
# ==============================================================================


@dataclass(frozen=True, eq=False)
class MixtureWeights:
    """Empirical-Bayes mixing distribution over the smoothness grid.

    Parameters
    ----------
    values : array_like, shape ``(K,)``
        Nonnegative weights summing to 1.
    grid : SmoothnessGrid
        Grid the weights are aligned with.
    objective : float
        Objective value at ``values``.
    n_iter : int
        Number of optimizer iterations.
    converged : bool
        Whether the optimizer met its tolerance.
    trace : tuple of float
        Objective value at the initial point and after each iteration.
    pruned : array_like of bool, shape ``(K,)``, optional
        Grid points whose weight fell below the pruning tolerance. Pruned
        entries are zero in ``values``.
    """

    values: jnp.ndarray
    grid: SmoothnessGrid
    objective: float = float("nan")
    n_iter: int = 0
    converged: bool = True
    trace: Tuple[float, ...] = ()
    pruned: Optional[jnp.ndarray] = None

    def __post_init__(self):
        values = np.asarray(self.values, dtype=float)
        if values.ndim != 1 or values.shape[0] != self.grid.K:
            raise ShapeMismatch(
                f"Mixture weights have shape {values.shape} but the grid "
                f"has K={self.grid.K} points"
            )
        if np.any(~np.isfinite(values)) or np.any(values < 0):
            raise ValueError("Mixture weights must be finite and nonnegative")
        if abs(values.sum() - 1.0) > SIMPLEX_ATOL:
            raise ValueError(
                f"Mixture weights must sum to 1, got {values.sum()}"
            )
        pruned = (
            np.zeros(values.shape, dtype=bool)
            if self.pruned is None
            else np.asarray(self.pruned, dtype=bool)
        )
        if pruned.shape != values.shape:
            raise ShapeMismatch("Pruned mask is not aligned with the weights")

        object.__setattr__(self, "values", jnp.asarray(values))
        object.__setattr__(self, "pruned", jnp.asarray(pruned))
        object.__setattr__(self, "trace", tuple(float(t) for t in self.trace))

    @classmethod
    def uniform(cls, grid: SmoothnessGrid) -> "MixtureWeights":
        """Uniform weights over the grid."""
        return cls(np.full(grid.K, 1.0 / grid.K), grid)

    @property
    def K(self) -> int:
        return self.grid.K

    @property
    def null_proportion(self) -> float:
        """Estimated proportion of non-dynamic units (weight at index 0)."""
        return float(self.values[0])

    def __repr__(self) -> str:
        return (
            f"MixtureWeights(K={self.K}, null_proportion="
            f"{self.null_proportion:.4f}, converged={self.converged})"
        )


# ==============================================================================
# Posterior weights
# ==============================================================================


@dataclass(frozen=True, eq=False)
class PosteriorWeights:
    """Posterior distribution of one unit over the smoothness grid."""

    unit_id: Hashable
    values: jnp.ndarray
    grid: SmoothnessGrid

    @property
    def local_fdr(self) -> float:
        """Posterior probability that the unit is non-dynamic."""
        return float(self.values[0])


# ------------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class PosteriorResult:
    """Posterior weights of every unit of a likelihood matrix.

    Rows are aligned with the likelihood matrix. Units with no finite
    likelihood have a row of NaN and an entry in ``failures``.

    Attributes
    ----------
    matrix : jnp.ndarray, shape ``(N, K)``
        Posterior weights.
    unit_ids : tuple of hashable
        Row identifiers.
    grid : SmoothnessGrid
        Grid the columns are aligned with.
    failures : dict
        ``unit_id -> DegenerateRow`` for degenerate units.
    """

    matrix: jnp.ndarray
    unit_ids: Tuple[Hashable, ...]
    grid: SmoothnessGrid
    failures: Dict[Hashable, DegenerateRow] = field(default_factory=dict)

    def __post_init__(self):
        unit_ids = tuple(self.unit_ids)
        if int(self.matrix.shape[0]) != len(unit_ids):
            raise ShapeMismatch(
                f"Posterior matrix has {self.matrix.shape[0]} rows but "
                f"{len(unit_ids)} unit ids were given"
            )
        object.__setattr__(self, "unit_ids", unit_ids)
        object.__setattr__(
            self, "_index", {uid: i for i, uid in enumerate(unit_ids)}
        )

    @property
    def local_fdr(self) -> jnp.ndarray:
        """Local false-discovery values (NaN for degenerate units)."""
        return self.matrix[:, 0]

    @property
    def degenerate(self) -> jnp.ndarray:
        """Boolean mask of degenerate rows."""
        return jnp.asarray([uid in self.failures for uid in self.unit_ids])

    def __getitem__(self, unit_id: Hashable) -> PosteriorWeights:
        if unit_id in self.failures:
            raise self.failures[unit_id]
        try:
            i = self._index[unit_id]
        except KeyError:
            raise KeyError(f"Unknown unit id: {unit_id!r}") from None
        return PosteriorWeights(unit_id, self.matrix[i], self.grid)

    def __len__(self) -> int:
        return len(self.unit_ids)

    def local_fdr_pairs(self) -> List[Tuple[Hashable, float]]:
        """``(unit_id, lfdr)`` pairs of the non-degenerate units."""
        lfdr = np.asarray(self.local_fdr)
        return [
            (uid, float(lfdr[i]))
            for i, uid in enumerate(self.unit_ids)
            if uid not in self.failures
        ]


# ==============================================================================
# Function summaries
# ==============================================================================


@dataclass(frozen=True, eq=False)
class FunctionSummary:
    """Posterior summary of one unit's underlying function."""

    unit_id: Hashable
    times: jnp.ndarray
    mean: jnp.ndarray
    sd: jnp.ndarray
    lower: jnp.ndarray
    upper: jnp.ndarray
    level: float

    def to_frame(self):
        """Return the summary as a ``pandas.DataFrame``."""
        import pandas as pd

        return pd.DataFrame(
            {
                "unit_id": [self.unit_id] * int(self.times.shape[0]),
                "time": np.asarray(self.times),
                "mean": np.asarray(self.mean),
                "sd": np.asarray(self.sd),
                "lower": np.asarray(self.lower),
                "upper": np.asarray(self.upper),
            }
        )
