"""Core data model and persistence."""

from .types import (
    FittedFunction,
    FunctionSummary,
    LikelihoodMatrix,
    MixtureWeights,
    PosteriorResult,
    PosteriorWeights,
    SmoothnessGrid,
    Unit,
)
from .serialization import (
    load_likelihood_matrix,
    load_mixture_weights,
    save_likelihood_matrix,
    save_mixture_weights,
)

__all__ = [
    "FittedFunction",
    "FunctionSummary",
    "LikelihoodMatrix",
    "MixtureWeights",
    "PosteriorResult",
    "PosteriorWeights",
    "SmoothnessGrid",
    "Unit",
    "load_likelihood_matrix",
    "load_mixture_weights",
    "save_likelihood_matrix",
    "save_mixture_weights",
]
