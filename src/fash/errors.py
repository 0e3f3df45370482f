"""Exception and warning types raised by FASH.

Failures are attributed as precisely as possible: oracle failures name the
(unit, grid point) pair that could not be evaluated, degenerate rows name the
unit, and shape problems are raised before any numerical work starts.
Optimizer non-convergence is a warning category, never an exception, because
a valid simplex point is always returned.
"""

from typing import Hashable, List, Optional


class FashError(Exception):
    """Base class for all FASH errors."""


# ------------------------------------------------------------------------------


class OracleFailure(FashError):
    """A likelihood evaluation did not produce a finite value.

    Parameters
    ----------
    reason : str
        Human-readable description of the failure.
    unit_id : hashable, optional
        Identifier of the unit being evaluated.
    grid_index : int, optional
        Index of the grid point being evaluated.
    smoothness : float, optional
        Grid value at ``grid_index``.
    """

    def __init__(
        self,
        reason: str,
        unit_id: Optional[Hashable] = None,
        grid_index: Optional[int] = None,
        smoothness: Optional[float] = None,
    ):
        self.reason = reason
        self.unit_id = unit_id
        self.grid_index = grid_index
        self.smoothness = smoothness
        super().__init__(self._message())

    def _message(self) -> str:
        if self.unit_id is None and self.grid_index is None:
            return self.reason
        return (
            f"unit={self.unit_id!r}, grid_index={self.grid_index}, "
            f"smoothness={self.smoothness}: {self.reason}"
        )

    def attributed(
        self, unit_id: Hashable, grid_index: int, smoothness: float
    ) -> "OracleFailure":
        """Return a copy of this failure tagged with its (unit, grid) cell."""
        return OracleFailure(
            self.reason,
            unit_id=unit_id,
            grid_index=grid_index,
            smoothness=smoothness,
        )


# ------------------------------------------------------------------------------


class GridBuildError(OracleFailure):
    """One or more cells of the likelihood grid failed.

    Raised after every evaluation has run, so ``failures`` lists all failing
    (unit, grid point) pairs rather than only the first.
    """

    def __init__(self, failures: List[OracleFailure]):
        self.failures = list(failures)
        units = sorted({str(f.unit_id) for f in self.failures})
        preview = ", ".join(units[:5])
        if len(units) > 5:
            preview += ", ..."
        super().__init__(
            f"{len(self.failures)} likelihood evaluation(s) failed "
            f"across {len(units)} unit(s): {preview}"
        )


# ------------------------------------------------------------------------------


class DegenerateRow(FashError):
    """A unit has no grid point with finite likelihood."""

    def __init__(self, unit_id: Optional[Hashable] = None):
        self.unit_id = unit_id
        super().__init__(
            f"unit={unit_id!r}: every grid point has -inf log-likelihood"
        )


# ------------------------------------------------------------------------------


class ShapeMismatch(FashError, ValueError):
    """Inputs are empty or not aligned (K, grid values, unit ids)."""


# ------------------------------------------------------------------------------


class OptimizerNonConvergence(RuntimeWarning):
    """The mixture optimizer hit its iteration cap before converging."""
