"""Method-agnostic FDR evaluation harness.

Any method that produces local false-discovery values for "unit is
non-dynamic" can be ranked and thresholded by :func:`discover` and compared
against ground truth here. FASH results satisfy :class:`LocalFdrMethod`
directly; external baselines (e.g. multivariate adaptive shrinkage on raw
per-time-point effects) are wrapped with :class:`StaticLocalFdr`.
"""

from dataclasses import dataclass, field
from typing import (
    Dict,
    Hashable,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

import pandas as pd

from ._discovery import DiscoverySet, discover


@runtime_checkable
class LocalFdrMethod(Protocol):
    """Anything that reports a local false-discovery value per unit."""

    def local_fdr(self) -> Mapping[Hashable, float]:
        ...


# --------------------------------------------------------------------------


@dataclass
class StaticLocalFdr:
    """Precomputed local false-discovery values from an external method."""

    values: Dict[Hashable, float] = field(default_factory=dict)

    def local_fdr(self) -> Mapping[Hashable, float]:
        return dict(self.values)


# --------------------------------------------------------------------------
# Realised error rates
# --------------------------------------------------------------------------


def evaluate_discoveries(
    discovery_set: DiscoverySet,
    truth: Mapping[Hashable, bool],
) -> Dict[str, float]:
    """Realised false discovery proportion and power of a discovery set.

    Parameters
    ----------
    discovery_set : DiscoverySet
        Discoveries to evaluate.
    truth : mapping
        ``unit_id -> True`` if the unit is truly dynamic. Every ranked unit
        must be present.

    Returns
    -------
    dict
        ``n_discoveries``, ``false_discoveries``, ``fdp`` (0 when there are
        no discoveries), ``estimated_fdr``, ``n_dynamic`` and ``power``
        (NaN when no unit is truly dynamic).
    """
    missing = [uid for uid in discovery_set.unit_ids if uid not in truth]
    if missing:
        raise KeyError(f"No ground truth for unit(s): {missing[:5]}")

    discoveries = discovery_set.discoveries
    false_discoveries = sum(1 for uid in discoveries if not truth[uid])
    n_dynamic = sum(1 for uid in discovery_set.unit_ids if truth[uid])
    n_disc = len(discoveries)
    return {
        "n_discoveries": n_disc,
        "false_discoveries": false_discoveries,
        "fdp": false_discoveries / n_disc if n_disc else 0.0,
        "estimated_fdr": discovery_set.estimated_fdr,
        "n_dynamic": n_dynamic,
        "power": (
            (n_disc - false_discoveries) / n_dynamic
            if n_dynamic
            else float("nan")
        ),
    }


# --------------------------------------------------------------------------


def fdr_calibration(
    methods: Mapping[str, LocalFdrMethod],
    truth: Mapping[Hashable, bool],
    alphas: Sequence[float] = (0.01, 0.05, 0.1, 0.2),
    monotone: bool = True,
) -> pd.DataFrame:
    """Compare estimated and realised FDR of several methods across levels.

    Each method is ranked once; the curve is then re-cut at every level.

    Returns
    -------
    pandas.DataFrame
        One row per (method, alpha) with the columns of
        :func:`evaluate_discoveries`.
    """
    rows = []
    for name, method in methods.items():
        ranking = discover(method.local_fdr(), alpha=0.0, monotone=monotone)
        for alpha in alphas:
            row = {"method": name, "alpha": float(alpha)}
            row.update(evaluate_discoveries(ranking.at(alpha), truth))
            rows.append(row)
    return pd.DataFrame(rows)
