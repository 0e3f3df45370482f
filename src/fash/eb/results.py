"""FashResults: structured results of a FASH run.

The factory :func:`fash` runs the pipeline stage by stage, each stage fully
constructed before the next one reads it:

1. likelihood matrix (``build_likelihood_matrix``),
2. mixture weights (``fit_mixture_weights``),
3. posterior weights and local false-discovery values
   (``compute_posterior``),

and wraps them in a :class:`FashResults` object that exposes discovery at
any level, function summaries and tabular output. :func:`fash_from_likelihood`
resumes from a stored likelihood matrix.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Hashable, Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config import FashConfig
from ..core.serialization import (
    load_likelihood_matrix,
    load_mixture_weights,
    save_likelihood_matrix,
    save_mixture_weights,
)
from ..core.types import (
    FunctionSummary,
    LikelihoodMatrix,
    MixtureWeights,
    PosteriorResult,
    PosteriorWeights,
    SmoothnessGrid,
    Unit,
)
from ..errors import ShapeMismatch
from ..oracle import LikelihoodOracle
from ._discovery import DiscoverySet, discover
from ._grid import build_likelihood_matrix
from ._mixsqp import fit_mixture_weights
from ._posterior import compute_posterior, summarize


# --------------------------------------------------------------------------
# Results class
# --------------------------------------------------------------------------


@dataclass
class FashResults:
    """Results of a FASH run.

    Parameters
    ----------
    likelihood : LikelihoodMatrix
        Log marginal likelihoods (N x K).
    weights : MixtureWeights
        Fitted mixture weights.
    posterior : PosteriorResult
        Posterior weights of every unit.
    config : FashConfig
        Configuration of the run.
    """

    likelihood: LikelihoodMatrix
    weights: MixtureWeights
    posterior: PosteriorResult
    config: FashConfig = field(default_factory=FashConfig)

    # Ranking is computed once and re-cut for every alpha.
    _ranking: Optional[DiscoverySet] = field(
        default=None, repr=False, init=False
    )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def grid(self) -> SmoothnessGrid:
        return self.likelihood.grid

    @property
    def unit_ids(self):
        return self.likelihood.unit_ids

    @property
    def null_proportion(self) -> float:
        """Estimated proportion of non-dynamic units."""
        return self.weights.null_proportion

    # ------------------------------------------------------------------
    # Local false-discovery values and discoveries
    # ------------------------------------------------------------------

    def local_fdr(self) -> Dict[Hashable, float]:
        """``unit_id -> lfdr`` for every non-degenerate unit."""
        return dict(self.posterior.local_fdr_pairs())

    def posterior_weights(self, unit_id: Hashable) -> PosteriorWeights:
        """Posterior weights of one unit (raises ``DegenerateRow``)."""
        return self.posterior[unit_id]

    def discover(self, alpha: Optional[float] = None) -> DiscoverySet:
        """Discoveries at level ``alpha`` (default: ``config.discovery``).

        Parameters
        ----------
        alpha : float, optional
            Target false discovery rate.

        Returns
        -------
        DiscoverySet
        """
        if alpha is None:
            alpha = self.config.discovery.alpha
        if self._ranking is None:
            self._ranking = discover(
                self.posterior.local_fdr_pairs(),
                alpha=alpha,
                monotone=self.config.discovery.monotone,
            )
        return self._ranking.at(alpha)

    # ------------------------------------------------------------------
    # Function summaries
    # ------------------------------------------------------------------

    def summarize(
        self, unit_id: Hashable, level: float = 0.95
    ) -> FunctionSummary:
        """Posterior mean and credible band of one unit's function.

        Requires the likelihood matrix to have been built with
        ``retain_fits=True``.
        """
        if self.likelihood.fits is None:
            raise ValueError(
                "Fitted functions were not retained; rerun with "
                "retain_fits=True"
            )
        fits = self.likelihood.fits[self.likelihood.index_of(unit_id)]
        return summarize(fits, self.posterior[unit_id], level=level)

    # ------------------------------------------------------------------
    # Tabular output
    # ------------------------------------------------------------------

    def to_frame(self, alpha: Optional[float] = None) -> pd.DataFrame:
        """Per-unit table: lfdr, discovery flag and posterior weights."""
        ds = self.discover(alpha)
        discovered = set(ds.discoveries)
        probs = np.asarray(self.posterior.matrix)
        df = pd.DataFrame(
            probs,
            columns=[f"post_{v:g}" for v in self.grid],
        )
        df.insert(0, "unit_id", list(self.unit_ids))
        df.insert(1, "lfdr", probs[:, 0])
        df.insert(2, "discovery", [u in discovered for u in self.unit_ids])
        return df

    def summary(
        self, alpha: Optional[float] = None, top_n: Optional[int] = 20
    ) -> str:
        """Formatted table of the top-ranked units.

        Parameters
        ----------
        alpha : float, optional
            Target false discovery rate.
        top_n : int, optional
            Number of units to display. ``None`` shows all.

        Returns
        -------
        str
            Formatted table.
        """
        ds = self.discover(alpha)
        df = ds.to_frame()
        if top_n is not None:
            df = df.head(top_n)
        header = (
            f"FASH: {self.likelihood.n_units} units, K={self.grid.K}, "
            f"null proportion={self.null_proportion:.4f}, "
            f"{ds.n_discoveries} discoveries at alpha={ds.alpha:g}"
        )
        return header + "\n" + df.to_string(index=False)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Union[str, os.PathLike]) -> None:
        """Save the likelihood matrix and mixture weights under ``path``."""
        path = Path(path)
        save_likelihood_matrix(path / "likelihood", self.likelihood)
        save_mixture_weights(path / "weights", self.weights)


# --------------------------------------------------------------------------
# Factories
# --------------------------------------------------------------------------


def _resolve_config(config: Optional[FashConfig], grid) -> FashConfig:
    config = config if config is not None else FashConfig()
    if grid is not None:
        values = grid.values if isinstance(grid, SmoothnessGrid) else grid
        # Rebuilt through the constructor so the grid is validated.
        config = FashConfig(
            **{
                **config.model_dump(),
                "grid": [float(v) for v in np.asarray(values)],
            }
        )
    return config


def fash(
    units: Iterable[Unit],
    grid: Optional[Union[SmoothnessGrid, Sequence[float]]] = None,
    config: Optional[FashConfig] = None,
    oracle: Optional[LikelihoodOracle] = None,
    init: Optional[MixtureWeights] = None,
) -> FashResults:
    """Run FASH end to end.

    Parameters
    ----------
    units : iterable of Unit
        Observed trajectories.
    grid : SmoothnessGrid or sequence of float, optional
        Smoothness grid; overrides ``config.grid``.
    config : FashConfig, optional
        Run configuration. Defaults to ``FashConfig()``.
    oracle : LikelihoodOracle, optional
        Likelihood oracle. Defaults to ``IWPLikelihoodOracle()``.
    init : MixtureWeights, optional
        Starting point of the mixture-weight optimizer.

    Returns
    -------
    FashResults

    Examples
    --------
    >>> results = fash(units, grid=[0.0, 0.1, 0.5, 1.0])
    >>> results.discover(alpha=0.05).discoveries
    """
    config = _resolve_config(config, grid)
    L = build_likelihood_matrix(
        units,
        config.smoothness_grid(),
        basis_config=config.basis,
        oracle=oracle,
        n_jobs=config.n_jobs,
        errors=config.errors,
        retain_fits=config.retain_fits,
        progress=config.progress,
    )
    return fash_from_likelihood(L, config=config, init=init)


# --------------------------------------------------------------------------


def fash_from_likelihood(
    L: LikelihoodMatrix,
    config: Optional[FashConfig] = None,
    init: Optional[MixtureWeights] = None,
) -> FashResults:
    """Fit mixture weights and posteriors from an existing likelihood matrix.

    The grid of ``L`` takes precedence over ``config.grid``.
    """
    config = _resolve_config(config, L.grid)
    weights = fit_mixture_weights(L, init=init, config=config.optimizer)
    posterior = compute_posterior(L, weights)
    return FashResults(
        likelihood=L, weights=weights, posterior=posterior, config=config
    )


# --------------------------------------------------------------------------


def load_results(
    path: Union[str, os.PathLike], config: Optional[FashConfig] = None
) -> FashResults:
    """Load results saved with :meth:`FashResults.save`.

    The posterior is recomputed from the stored likelihood matrix and
    weights; the optimizer is not rerun.
    """
    path = Path(path)
    L = load_likelihood_matrix(path / "likelihood")
    weights = load_mixture_weights(path / "weights")
    if weights.grid != L.grid:
        raise ShapeMismatch(
            "Stored likelihood matrix and weights use different grids"
        )
    config = _resolve_config(config, L.grid)
    if L.basis is not None:
        config = config.model_copy(update={"basis": L.basis})
    return FashResults(
        likelihood=L,
        weights=weights,
        posterior=compute_posterior(L, weights),
        config=config,
    )
