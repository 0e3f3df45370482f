"""Tests for likelihood grid construction."""

import numpy as np
import pytest

from fash import (
    ErrorPolicy,
    GridBuildError,
    IWPLikelihoodOracle,
    LikelihoodMatrix,
    ShapeMismatch,
    Unit,
    build_likelihood_matrix,
)


# --------------------------------------------------------------------------
# Fixtures
# --------------------------------------------------------------------------


class NanOracle:
    """Oracle returning NaN at every non-base grid point."""

    def __init__(self):
        self._inner = IWPLikelihoodOracle()

    def evaluate(self, times, values, noise_sd, smoothness, basis_config,
                 base_only=False):
        loglik, fit = self._inner.evaluate(
            times, values, noise_sd, smoothness, basis_config, base_only
        )
        if not base_only:
            return float("nan"), fit
        return loglik, fit


class RecordingOracle:
    """Oracle recording the ``base_only`` flag of each call."""

    def __init__(self):
        self._inner = IWPLikelihoodOracle()
        self.calls = []

    def evaluate(self, times, values, noise_sd, smoothness, basis_config,
                 base_only=False):
        self.calls.append((smoothness, base_only))
        return self._inner.evaluate(
            times, values, noise_sd, smoothness, basis_config, base_only
        )


@pytest.fixture
def bad_unit():
    """Unit with a single distinct observation time."""
    return Unit("bad", [2.0, 2.0, 2.0], [0.1, 0.2, 0.3], 0.1)


# --------------------------------------------------------------------------
# Construction
# --------------------------------------------------------------------------


class TestBuild:
    def test_shape_and_alignment(self, flat_units, small_grid, fast_basis):
        L = build_likelihood_matrix(flat_units, small_grid, fast_basis)
        assert isinstance(L, LikelihoodMatrix)
        assert L.shape == (len(flat_units), small_grid.K)
        assert L.unit_ids == tuple(u.unit_id for u in flat_units)
        assert L.grid == small_grid
        assert L.basis == fast_basis
        assert np.all(np.isfinite(np.asarray(L.values)))

    def test_cells_match_oracle(self, flat_units, small_grid, fast_basis):
        L = build_likelihood_matrix(flat_units[:2], small_grid, fast_basis)
        oracle = IWPLikelihoodOracle()
        u = flat_units[1]
        for j, s in enumerate(small_grid):
            expected, _ = oracle.evaluate(
                u.times, u.values, u.noise_sd, s, fast_basis,
                base_only=(j == 0),
            )
            assert float(L.values[1, j]) == pytest.approx(expected)

    def test_grid_point_zero_is_base_only(self, flat_units, small_grid,
                                          fast_basis):
        oracle = RecordingOracle()
        build_likelihood_matrix(
            flat_units[:1], small_grid, fast_basis, oracle=oracle
        )
        assert oracle.calls[0] == (0.0, True)
        assert all(not base for _, base in oracle.calls[1:])

    def test_grid_from_sequence(self, flat_units, fast_basis):
        L = build_likelihood_matrix(flat_units[:2], [0.0, 0.5], fast_basis)
        assert L.K == 2

    def test_threads_match_serial(self, mixed_units, small_grid, fast_basis):
        serial = build_likelihood_matrix(mixed_units, small_grid, fast_basis)
        threaded = build_likelihood_matrix(
            mixed_units, small_grid, fast_basis, n_jobs=4
        )
        np.testing.assert_allclose(
            np.asarray(threaded.values), np.asarray(serial.values)
        )
        assert threaded.unit_ids == serial.unit_ids

    def test_progress_bar(self, flat_units, small_grid, fast_basis):
        L = build_likelihood_matrix(
            flat_units[:2], small_grid, fast_basis, progress=True
        )
        assert L.n_units == 2

    def test_retain_fits(self, flat_units, small_grid, fast_basis):
        L = build_likelihood_matrix(
            flat_units[:3], small_grid, fast_basis, retain_fits=True
        )
        assert len(L.fits) == 3
        assert all(len(row) == small_grid.K for row in L.fits)
        without = build_likelihood_matrix(
            flat_units[:3], small_grid, fast_basis
        )
        assert without.fits is None


# --------------------------------------------------------------------------
# Input validation
# --------------------------------------------------------------------------


class TestInputs:
    def test_empty(self, small_grid):
        with pytest.raises(ShapeMismatch):
            build_likelihood_matrix([], small_grid)

    def test_duplicate_ids(self, small_grid):
        units = [
            Unit("a", [0, 1, 2], [0, 1, 2], 0.1),
            Unit("a", [0, 1, 2], [2, 1, 0], 0.1),
        ]
        with pytest.raises(ShapeMismatch, match="Duplicate"):
            build_likelihood_matrix(units, small_grid)


# --------------------------------------------------------------------------
# Failure handling
# --------------------------------------------------------------------------


class TestFailures:
    def test_raise_lists_every_cell(self, flat_units, bad_unit, small_grid,
                                    fast_basis):
        with pytest.raises(GridBuildError) as excinfo:
            build_likelihood_matrix(
                flat_units[:3] + [bad_unit], small_grid, fast_basis
            )
        failures = excinfo.value.failures
        assert len(failures) == small_grid.K
        assert {f.unit_id for f in failures} == {"bad"}
        assert sorted(f.grid_index for f in failures) == list(
            range(small_grid.K)
        )

    def test_drop_removes_failed_units(self, flat_units, bad_unit,
                                       small_grid, fast_basis):
        with pytest.warns(RuntimeWarning, match="Dropped 1"):
            L = build_likelihood_matrix(
                flat_units[:3] + [bad_unit],
                small_grid,
                fast_basis,
                errors=ErrorPolicy.DROP,
            )
        assert L.unit_ids == tuple(u.unit_id for u in flat_units[:3])
        assert len(L.failures) == small_grid.K
        assert all(f.unit_id == "bad" for f in L.failures)

    def test_drop_accepts_string(self, flat_units, bad_unit, small_grid,
                                 fast_basis):
        with pytest.warns(RuntimeWarning):
            L = build_likelihood_matrix(
                [bad_unit] + flat_units[:2],
                small_grid,
                fast_basis,
                errors="drop",
            )
        assert L.n_units == 2

    def test_drop_everything_raises(self, bad_unit, small_grid, fast_basis):
        with pytest.raises(GridBuildError):
            build_likelihood_matrix(
                [bad_unit], small_grid, fast_basis, errors="drop"
            )

    def test_nan_is_a_failure(self, flat_units, small_grid, fast_basis):
        with pytest.raises(GridBuildError) as excinfo:
            build_likelihood_matrix(
                flat_units[:2], small_grid, fast_basis, oracle=NanOracle()
            )
        failures = excinfo.value.failures
        assert len(failures) == 2 * (small_grid.K - 1)
        assert all(f.grid_index > 0 for f in failures)
