"""False-discovery control from local false-discovery values.

Units are ranked by ascending lfdr. Declaring the top ``r`` units dynamic has
estimated false discovery rate equal to the mean lfdr of those ``r`` units
(the posterior expected proportion of non-dynamic units among them). The
discovery set at level ``alpha`` is the longest prefix of the ranking whose
cumulative mean lfdr is at most ``alpha``, so discovery sets are nested as
``alpha`` decreases.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Mapping, Sequence, Tuple, Union

import numpy as np
import jax.numpy as jnp

from ..errors import ShapeMismatch

# Posterior probabilities may overshoot [0, 1] by rounding error.
_LFDR_SLACK = 1e-9

LocalFdrInput = Union[
    Mapping[Hashable, float], Sequence[Tuple[Hashable, float]]
]


# --------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------


def _tie_key(unit_id: Hashable):
    """Deterministic ordering key for unit ids of possibly mixed type."""
    return (type(unit_id).__name__, unit_id)


def _check_alpha(alpha: float) -> float:
    alpha = float(alpha)
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be in [0, 1], got {alpha}")
    return alpha


def _cut_rank(curve: np.ndarray, alpha: float) -> int:
    """Largest rank ``r`` (1-based) with ``curve[r - 1] <= alpha``; 0 if none."""
    valid = np.flatnonzero(curve <= alpha)
    return int(valid[-1]) + 1 if valid.size else 0


def cumulative_fdr(sorted_lfdr: jnp.ndarray, monotone: bool = True):
    """Running mean of ascending lfdr values.

    ``curve[r - 1]`` is the estimated FDR of declaring the first ``r`` units
    discoveries. With ``monotone=True`` the curve is replaced by its running
    maximum, which removes rounding-level decreases.
    """
    sorted_lfdr = jnp.asarray(sorted_lfdr)
    curve = jnp.cumsum(sorted_lfdr) / jnp.arange(1, sorted_lfdr.shape[0] + 1)
    if monotone:
        curve = jnp.asarray(np.maximum.accumulate(np.asarray(curve)))
    return curve


# --------------------------------------------------------------------------
# Discovery set
# --------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class DiscoverySet:
    """Units ranked by lfdr with their cumulative-fdr curve and cut.

    Attributes
    ----------
    unit_ids : tuple of hashable
        Unit ids in rank order (rank 1 first).
    local_fdr : jnp.ndarray, shape ``(N,)``
        lfdr values in rank order.
    cumulative_fdr : jnp.ndarray, shape ``(N,)``
        Estimated FDR of declaring the first ``r`` units discoveries.
    alpha : float
        Level the cut was made at.
    cut_rank : int
        Number of discoveries; ranks ``1..cut_rank`` are discoveries.
    """

    unit_ids: Tuple[Hashable, ...]
    local_fdr: jnp.ndarray
    cumulative_fdr: jnp.ndarray
    alpha: float
    cut_rank: int

    @property
    def discoveries(self) -> Tuple[Hashable, ...]:
        """Unit ids declared dynamic, in rank order."""
        return self.unit_ids[: self.cut_rank]

    @property
    def n_discoveries(self) -> int:
        return self.cut_rank

    @property
    def estimated_fdr(self) -> float:
        """Estimated FDR of the discovery set (0 when it is empty)."""
        if self.cut_rank == 0:
            return 0.0
        return float(self.cumulative_fdr[self.cut_rank - 1])

    def __len__(self) -> int:
        return len(self.unit_ids)

    # ------------------------------------------------------------------

    def at(self, alpha: float) -> "DiscoverySet":
        """Re-cut the same ranking at another level, without recomputation."""
        alpha = _check_alpha(alpha)
        return DiscoverySet(
            unit_ids=self.unit_ids,
            local_fdr=self.local_fdr,
            cumulative_fdr=self.cumulative_fdr,
            alpha=alpha,
            cut_rank=_cut_rank(np.asarray(self.cumulative_fdr), alpha),
        )

    def is_discovery(self, unit_id: Hashable) -> bool:
        """Whether ``unit_id`` is declared dynamic."""
        return unit_id in set(self.discoveries)

    # ------------------------------------------------------------------

    def to_frame(self):
        """Ranking as a ``pandas.DataFrame``.

        Columns: ``rank``, ``unit_id``, ``lfdr``, ``cumulative_fdr``,
        ``discovery``.
        """
        import pandas as pd

        n = len(self.unit_ids)
        rank = np.arange(1, n + 1)
        return pd.DataFrame(
            {
                "rank": rank,
                "unit_id": list(self.unit_ids),
                "lfdr": np.asarray(self.local_fdr),
                "cumulative_fdr": np.asarray(self.cumulative_fdr),
                "discovery": rank <= self.cut_rank,
            }
        )

    def __repr__(self) -> str:
        return (
            f"DiscoverySet(n_units={len(self)}, alpha={self.alpha}, "
            f"n_discoveries={self.cut_rank})"
        )


# --------------------------------------------------------------------------
# Public API
# --------------------------------------------------------------------------


def discover(
    local_fdr: LocalFdrInput,
    alpha: float = 0.05,
    monotone: bool = True,
) -> DiscoverySet:
    """Rank units by lfdr and declare discoveries at level ``alpha``.

    Parameters
    ----------
    local_fdr : mapping or sequence of (unit_id, value) pairs
        Local false-discovery value of each unit.
    alpha : float, default=0.05
        Target false discovery rate.
    monotone : bool, default=True
        Apply a running maximum to the cumulative-fdr curve before cutting.

    Returns
    -------
    DiscoverySet
        Ranking (ties broken by unit id), cumulative-fdr curve and cut. The
        cut is the largest rank whose cumulative mean lfdr is at most
        ``alpha``.

    Raises
    ------
    ShapeMismatch
        If no units are given or a unit id appears twice.
    ValueError
        If an lfdr value is not in ``[0, 1]`` or ``alpha`` is not in
        ``[0, 1]``.

    Examples
    --------
    >>> ds = discover({"a": 0.01, "b": 0.5, "c": 0.02}, alpha=0.05)
    >>> ds.discoveries
    ('a', 'c')
    """
    alpha = _check_alpha(alpha)
    pairs = list(
        local_fdr.items() if isinstance(local_fdr, Mapping) else local_fdr
    )
    if not pairs:
        raise ShapeMismatch("No local false-discovery values to rank")
    ids = [uid for uid, _ in pairs]
    if len(set(ids)) != len(ids):
        raise ShapeMismatch("Duplicate unit ids in local false-discovery input")

    values = np.asarray([v for _, v in pairs], dtype=float)
    if not np.all(np.isfinite(values)) or np.any(
        (values < -_LFDR_SLACK) | (values > 1.0 + _LFDR_SLACK)
    ):
        raise ValueError("Local false-discovery values must lie in [0, 1]")
    values = np.clip(values, 0.0, 1.0)

    order = sorted(
        range(len(ids)), key=lambda i: (values[i], _tie_key(ids[i]))
    )
    ranked_values = jnp.asarray(values[order])
    curve = cumulative_fdr(ranked_values, monotone=monotone)
    return DiscoverySet(
        unit_ids=tuple(ids[i] for i in order),
        local_fdr=ranked_values,
        cumulative_fdr=curve,
        alpha=alpha,
        cut_rank=_cut_rank(np.asarray(curve), alpha),
    )
