"""Run configuration classes using Pydantic."""

from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from .enums import ErrorPolicy

# ==============================================================================
# Basis configuration
# ==============================================================================


class BasisConfig(BaseModel):
    """
    Basis configuration shared by every likelihood evaluation of a run.

    The same configuration is applied across a whole row of the likelihood
    matrix (and in practice across the whole matrix), so the per-grid-point
    likelihoods of a unit are directly comparable.

    Parameters
    ----------
    order : int
        Order ``p`` of the integrated Wiener process. The base (non-dynamic)
        model is the polynomial of degree ``p - 1``. ``p = 2`` corresponds to
        cubic smoothing splines.
    num_knots : int
        Number of equally spaced knots of the overlapping-spline basis.
    betaprec : float
        Ridge precision of the polynomial fixed effects.
    pred_step : float
        Prediction step ``h`` used to express grid values as predictive
        standard deviations of the process over one step.
    eval_points : int, optional
        Number of equally spaced points on which fitted functions are
        evaluated. ``None`` evaluates at the unit's distinct observation
        times.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    order: int = Field(2, ge=1, description="IWP order p")
    num_knots: int = Field(30, ge=3, description="Number of spline knots")
    betaprec: float = Field(
        1e-6, gt=0, description="Ridge precision of fixed effects"
    )
    pred_step: float = Field(
        1.0, gt=0, description="Prediction step for PSD scaling"
    )
    eval_points: Optional[int] = Field(
        None, ge=2, description="Evaluation points for fitted functions"
    )


# ==============================================================================
# Optimizer configuration
# ==============================================================================


class OptimizerConfig(BaseModel):
    """
    Settings of the mix-SQP mixture-weight optimizer.

    Parameters
    ----------
    max_iter : int
        Maximum number of outer SQP iterations.
    tol : float
        Convergence tolerance on the increase of the objective.
    max_backtrack : int
        Maximum number of step halvings in the line search.
    null_penalty : float
        Prior weight on the null grid point. A value ``lambda > 1`` adds
        ``(lambda - 1) * log(pi_0)`` to the objective.
    prune_tol : float
        Weights below this value are reported as pruned and set to zero.
    active_set_max_iter : int
        Iteration cap of the inner active-set quadratic solver.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_iter: int = Field(1000, ge=1)
    tol: float = Field(1e-8, gt=0)
    max_backtrack: int = Field(30, ge=1)
    null_penalty: float = Field(1.0, ge=1.0)
    prune_tol: float = Field(1e-8, ge=0)
    active_set_max_iter: int = Field(100, ge=1)


# ==============================================================================
# Discovery configuration
# ==============================================================================


class DiscoveryConfig(BaseModel):
    """
    Settings of the false-discovery decision rule.

    Parameters
    ----------
    alpha : float
        Target false discovery rate.
    monotone : bool
        Replace the cumulative-fdr curve with its running maximum before
        cutting.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    alpha: float = Field(0.05, ge=0.0, le=1.0)
    monotone: bool = True


# ==============================================================================
# Top-level run configuration
# ==============================================================================


class FashConfig(BaseModel):
    """
    Complete configuration of a FASH run.

    Parameters
    ----------
    grid : list of float
        Smoothness grid (predictive standard deviations). Must start at
        exactly 0 and be strictly increasing.
    basis : BasisConfig
        Basis configuration passed to the likelihood oracle.
    optimizer : OptimizerConfig
        Mixture-weight optimizer settings.
    discovery : DiscoveryConfig
        False-discovery decision settings.
    n_jobs : int
        Number of worker threads used to build the likelihood matrix.
        ``-1`` uses all cores.
    errors : ErrorPolicy
        Handling of units whose likelihood evaluation fails.
    retain_fits : bool
        Keep per-grid-point fitted functions so posterior summaries can be
        computed.
    progress : bool
        Show a progress bar while building the likelihood matrix.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    grid: List[float] = Field(
        default_factory=lambda: [0.0, 0.05, 0.1, 0.2, 0.4, 0.8, 1.6]
    )
    basis: BasisConfig = Field(default_factory=BasisConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    n_jobs: int = Field(1, description="Worker threads for grid building")
    errors: ErrorPolicy = Field(
        ErrorPolicy.RAISE, description="Failure policy for grid building"
    )
    retain_fits: bool = True
    progress: bool = False

    # --------------------------------------------------------------------------
    # Validation Methods
    # --------------------------------------------------------------------------

    @field_validator("grid")
    @classmethod
    def validate_grid(cls, v: List[float]) -> List[float]:
        """Validate grid invariants (first element 0, strictly increasing)."""
        from ..core.types import SmoothnessGrid

        SmoothnessGrid(v)
        return [float(x) for x in v]

    # --------------------------------------------------------------------------

    @field_validator("n_jobs")
    @classmethod
    def validate_n_jobs(cls, v: int) -> int:
        """Validate worker count (positive or -1)."""
        if v == 0 or v < -1:
            raise ValueError(f"n_jobs must be positive or -1, got {v}")
        return v

    # --------------------------------------------------------------------------

    def smoothness_grid(self):
        """Return the grid as a ``SmoothnessGrid``."""
        from ..core.types import SmoothnessGrid

        return SmoothnessGrid(self.grid)


# ==============================================================================
# Public API
# ==============================================================================


def create_default_config() -> FashConfig:
    """Create a default ``FashConfig``.

    Defaults: IWP order 2 with 30 knots, ridge precision 1e-6, prediction
    step 1, a 7-point grid ``[0, 0.05, ..., 1.6]``, at most 1000 optimizer
    iterations with tolerance 1e-8, and ``alpha = 0.05``.
    """
    return FashConfig()
