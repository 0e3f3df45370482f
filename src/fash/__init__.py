"""
FASH: Functional Adaptive SHrinkage

An empirical-Bayes method that classifies many noisy trajectories (e.g.
per-eQTL effect sizes over time) from non-dynamic to highly dynamic, and
reports calibrated false-discovery statistics for "this unit is non-dynamic".
"""

# Posterior weights must sum to 1 at double precision, so 64-bit floats are
# enabled before any array is created.
import jax

jax.config.update("jax_enable_x64", True)

from .config import (
    BasisConfig,
    DiscoveryConfig,
    ErrorPolicy,
    FashConfig,
    OptimizerConfig,
    create_default_config,
)
from .errors import (
    DegenerateRow,
    FashError,
    GridBuildError,
    OptimizerNonConvergence,
    OracleFailure,
    ShapeMismatch,
)
from .core import (
    FittedFunction,
    FunctionSummary,
    LikelihoodMatrix,
    MixtureWeights,
    PosteriorResult,
    PosteriorWeights,
    SmoothnessGrid,
    Unit,
    load_likelihood_matrix,
    load_mixture_weights,
    save_likelihood_matrix,
    save_mixture_weights,
)
from .oracle import IWPLikelihoodOracle, LikelihoodOracle
from .eb import (
    DiscoverySet,
    FashResults,
    LocalFdrMethod,
    StaticLocalFdr,
    build_likelihood_matrix,
    compute_posterior,
    discover,
    evaluate_discoveries,
    fash,
    fash_from_likelihood,
    fdr_calibration,
    fit_mixture_weights,
    load_results,
    posterior_weights,
    summarize,
)
from . import data_loader

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "BasisConfig",
    "DiscoveryConfig",
    "ErrorPolicy",
    "FashConfig",
    "OptimizerConfig",
    "create_default_config",
    # Errors
    "DegenerateRow",
    "FashError",
    "GridBuildError",
    "OptimizerNonConvergence",
    "OracleFailure",
    "ShapeMismatch",
    # Data model
    "FittedFunction",
    "FunctionSummary",
    "LikelihoodMatrix",
    "MixtureWeights",
    "PosteriorResult",
    "PosteriorWeights",
    "SmoothnessGrid",
    "Unit",
    # Persistence
    "load_likelihood_matrix",
    "load_mixture_weights",
    "save_likelihood_matrix",
    "save_mixture_weights",
    "load_results",
    # Oracles
    "IWPLikelihoodOracle",
    "LikelihoodOracle",
    # Pipeline
    "build_likelihood_matrix",
    "fit_mixture_weights",
    "compute_posterior",
    "posterior_weights",
    "summarize",
    "discover",
    "DiscoverySet",
    "FashResults",
    "fash",
    "fash_from_likelihood",
    # Evaluation
    "LocalFdrMethod",
    "StaticLocalFdr",
    "evaluate_discoveries",
    "fdr_calibration",
    # Modules
    "data_loader",
]
