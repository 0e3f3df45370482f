"""Interface of the per-unit marginal-likelihood oracle."""

from typing import Protocol, Sequence, Tuple, Union, runtime_checkable

from ..config import BasisConfig
from ..core.types import FittedFunction


@runtime_checkable
class LikelihoodOracle(Protocol):
    """Evaluates one unit's log marginal likelihood at one smoothness value.

    Implementations must be deterministic for fixed inputs and must raise
    ``OracleFailure`` (never return NaN) when the time grid has fewer than
    two distinct points or the system to solve is ill-conditioned.

    ``base_only=True`` requests the likelihood under the base (polynomial)
    model alone, with no stochastic-process contribution; the grid builder
    uses it for grid point 0.
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
        ...
