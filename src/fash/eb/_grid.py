"""Likelihood grid construction.

Drives a likelihood oracle across every (unit, grid point) pair and assembles
the N x K matrix of log marginal likelihoods. Grid point 0 is always evaluated
with ``base_only=True``: the base (polynomial) model with no process
component.

Evaluations of different units share no mutable state. Each worker fills its
own row of a pre-sized buffer, so the matrix can be built with a thread pool
without locking. Failures are collected per (unit, grid point) instead of
aborting at the first one; the error policy then decides whether to raise or
to drop the failing units.
"""

import logging
import warnings
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed
from tqdm.auto import tqdm

from ..config import BasisConfig, ErrorPolicy
from ..core.types import (
    FittedFunction,
    LikelihoodMatrix,
    SmoothnessGrid,
    Unit,
    _check_unique_ids,
)
from ..errors import GridBuildError, OracleFailure, ShapeMismatch
from ..oracle import IWPLikelihoodOracle, LikelihoodOracle

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------
# Single-unit evaluation
# --------------------------------------------------------------------------


def _evaluate_unit(
    unit: Unit,
    grid: SmoothnessGrid,
    basis_config: BasisConfig,
    oracle: LikelihoodOracle,
    out: np.ndarray,
) -> Tuple[List[Optional[FittedFunction]], List[OracleFailure]]:
    """Evaluate one unit at every grid point, writing into ``out``.

    Parameters
    ----------
    unit : Unit
        Unit to evaluate.
    grid : SmoothnessGrid
        Smoothness grid.
    basis_config : BasisConfig
        Shared basis configuration.
    oracle : LikelihoodOracle
        Likelihood oracle.
    out : np.ndarray, shape ``(K,)``
        Row of the shared buffer owned by this unit.

    Returns
    -------
    fits : list of FittedFunction or None
        Fitted function per grid point (``None`` where evaluation failed).
    failures : list of OracleFailure
        Failures attributed to (unit, grid point).
    """
    fits: List[Optional[FittedFunction]] = [None] * grid.K
    failures: List[OracleFailure] = []
    for j, smoothness in enumerate(grid):
        try:
            loglik, fit = oracle.evaluate(
                unit.times,
                unit.values,
                unit.noise_sd,
                smoothness,
                basis_config,
                base_only=(j == 0),
            )
        except OracleFailure as exc:
            failures.append(exc.attributed(unit.unit_id, j, smoothness))
            continue
        except np.linalg.LinAlgError as exc:
            failures.append(
                OracleFailure(str(exc), unit.unit_id, j, smoothness)
            )
            continue

        loglik = float(loglik)
        if np.isnan(loglik) or loglik == np.inf:
            failures.append(
                OracleFailure(
                    f"oracle returned {loglik}", unit.unit_id, j, smoothness
                )
            )
            continue
        out[j] = loglik
        fits[j] = fit
    return fits, failures


# --------------------------------------------------------------------------
# Public API
# --------------------------------------------------------------------------


def build_likelihood_matrix(
    units: Iterable[Unit],
    grid: Union[SmoothnessGrid, Sequence[float]],
    basis_config: Optional[BasisConfig] = None,
    oracle: Optional[LikelihoodOracle] = None,
    n_jobs: int = 1,
    errors: Union[str, ErrorPolicy] = ErrorPolicy.RAISE,
    retain_fits: bool = False,
    progress: bool = False,
) -> LikelihoodMatrix:
    """Evaluate the log marginal likelihood of every unit at every grid point.

    Parameters
    ----------
    units : iterable of Unit
        Units to evaluate. Ids must be unique.
    grid : SmoothnessGrid or sequence of float
        Smoothness grid; the first value (0) is the base model.
    basis_config : BasisConfig, optional
        Shared basis configuration. Defaults to ``BasisConfig()``.
    oracle : LikelihoodOracle, optional
        Likelihood oracle. Defaults to ``IWPLikelihoodOracle()``.
    n_jobs : int, default=1
        Number of worker threads (``-1`` for all cores).
    errors : {"raise", "drop"}, default="raise"
        ``"raise"`` raises ``GridBuildError`` listing every failure after
        all evaluations ran. ``"drop"`` removes failing units and keeps the
        failures on ``LikelihoodMatrix.failures``.
    retain_fits : bool, default=False
        Keep the per-grid-point fitted functions (needed for
        posterior function summaries).
    progress : bool, default=False
        Show a progress bar.

    Returns
    -------
    LikelihoodMatrix
        Matrix of shape ``(N, K)`` (N after dropping, if applicable).

    Raises
    ------
    ShapeMismatch
        If ``units`` is empty or contains duplicate ids.
    GridBuildError
        If any evaluation failed under ``errors="raise"``, or every unit
        failed under ``errors="drop"``.
    """
    units = list(units)
    if not units:
        raise ShapeMismatch("No units to evaluate")
    _check_unique_ids([u.unit_id for u in units])
    if not isinstance(grid, SmoothnessGrid):
        grid = SmoothnessGrid(grid)
    basis_config = basis_config if basis_config is not None else BasisConfig()
    oracle = oracle if oracle is not None else IWPLikelihoodOracle()
    policy = ErrorPolicy(errors)

    N, K = len(units), grid.K
    buffer = np.full((N, K), np.nan)

    iterator = range(N)
    if progress:
        iterator = tqdm(iterator, desc="Evaluating likelihood grid", unit="unit")

    if n_jobs == 1:
        results = [
            _evaluate_unit(units[i], grid, basis_config, oracle, buffer[i])
            for i in iterator
        ]
    else:
        results = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_evaluate_unit)(
                units[i], grid, basis_config, oracle, buffer[i]
            )
            for i in iterator
        )

    failures = [f for _, unit_failures in results for f in unit_failures]
    failed_ids = {f.unit_id for f in failures}

    if failures:
        logger.warning(
            "%d likelihood evaluation(s) failed for %d of %d unit(s)",
            len(failures),
            len(failed_ids),
            N,
        )
        if policy is ErrorPolicy.RAISE or len(failed_ids) == N:
            raise GridBuildError(failures)
        warnings.warn(
            f"Dropped {len(failed_ids)} unit(s) with failed likelihood "
            f"evaluations; see LikelihoodMatrix.failures",
            RuntimeWarning,
        )

    keep = [i for i, u in enumerate(units) if u.unit_id not in failed_ids]
    fits = None
    if retain_fits:
        fits = tuple(tuple(results[i][0]) for i in keep)

    return LikelihoodMatrix(
        values=buffer[keep],
        grid=grid,
        unit_ids=tuple(units[i].unit_id for i in keep),
        basis=basis_config,
        fits=fits,
        failures=tuple(failures),
    )
