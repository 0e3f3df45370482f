"""Tests for the FASH data model.

Covers:
- ``Unit``: validation, sorting by time, noise broadcasting
- ``SmoothnessGrid``: invariants, constructors, equality
- ``LikelihoodMatrix``: shape checks, row lookup, dropping units
- ``MixtureWeights``: simplex validation, uniform constructor
- ``PosteriorResult``: lookup and degenerate rows
"""

import numpy as np
import pytest

from fash import (
    DegenerateRow,
    LikelihoodMatrix,
    MixtureWeights,
    PosteriorResult,
    ShapeMismatch,
    SmoothnessGrid,
    Unit,
)


# --------------------------------------------------------------------------
# Unit
# --------------------------------------------------------------------------


class TestUnit:
    def test_sorted_by_time(self):
        u = Unit("a", [2.0, 0.0, 1.0], [20.0, 0.0, 10.0], [0.2, 0.1, 0.3])
        np.testing.assert_array_equal(np.asarray(u.times), [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(np.asarray(u.values), [0.0, 10.0, 20.0])
        np.testing.assert_array_equal(
            np.asarray(u.noise_sd), [0.1, 0.3, 0.2]
        )

    def test_scalar_noise_broadcast(self):
        u = Unit(1, [0, 1, 2], [0, 0, 0], 0.5)
        assert u.noise_sd.shape == (3,)
        assert u.n_obs == 3

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="different"):
            Unit("a", [0, 1, 2], [0, 1], 1.0)

    def test_empty(self):
        with pytest.raises(ValueError, match="no observations"):
            Unit("a", [], [], 1.0)

    @pytest.mark.parametrize("noise", [0.0, -1.0, np.inf])
    def test_bad_noise(self, noise):
        with pytest.raises(ValueError, match="noise_sd"):
            Unit("a", [0, 1], [0, 1], noise)

    def test_non_finite_values(self):
        with pytest.raises(ValueError, match="finite"):
            Unit("a", [0, 1], [0, np.nan], 1.0)


# --------------------------------------------------------------------------
# SmoothnessGrid
# --------------------------------------------------------------------------


class TestSmoothnessGrid:
    def test_valid(self):
        grid = SmoothnessGrid([0.0, 0.5, 1.0])
        assert grid.K == 3
        assert len(grid) == 3
        assert list(grid) == [0.0, 0.5, 1.0]

    def test_single_point(self):
        assert SmoothnessGrid([0.0]).K == 1

    def test_first_value_must_be_zero(self):
        with pytest.raises(ValueError, match="exactly 0"):
            SmoothnessGrid([0.1, 0.5])

    def test_duplicates_rejected(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            SmoothnessGrid([0.0, 0.5, 0.5])

    def test_decreasing_rejected(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            SmoothnessGrid([0.0, 1.0, 0.5])

    def test_empty_rejected(self):
        with pytest.raises(ShapeMismatch):
            SmoothnessGrid([])

    def test_linear(self):
        grid = SmoothnessGrid.linear(1.0, 5)
        np.testing.assert_allclose(
            np.asarray(grid.values), [0.0, 0.25, 0.5, 0.75, 1.0]
        )

    def test_geometric(self):
        grid = SmoothnessGrid.geometric(0.01, 1.0, 4)
        np.testing.assert_allclose(
            np.asarray(grid.values), [0.0, 0.01, 0.1, 1.0]
        )

    def test_equality_and_hash(self):
        a = SmoothnessGrid([0.0, 1.0])
        b = SmoothnessGrid(np.array([0.0, 1.0]))
        assert a == b
        assert hash(a) == hash(b)
        assert a != SmoothnessGrid([0.0, 2.0])


# --------------------------------------------------------------------------
# LikelihoodMatrix
# --------------------------------------------------------------------------


class TestLikelihoodMatrix:
    def test_shape_and_row(self, small_grid):
        values = np.arange(8, dtype=float).reshape(2, 4)
        L = LikelihoodMatrix(values, small_grid, ("a", "b"))
        assert L.shape == (2, 4)
        assert L.n_units == 2
        np.testing.assert_array_equal(np.asarray(L.row("b")), values[1])

    def test_column_mismatch(self, small_grid):
        with pytest.raises(ShapeMismatch):
            LikelihoodMatrix(np.zeros((2, 3)), small_grid, ("a", "b"))

    def test_row_mismatch(self, small_grid):
        with pytest.raises(ShapeMismatch):
            LikelihoodMatrix(np.zeros((2, 4)), small_grid, ("a",))

    def test_duplicate_ids(self, small_grid):
        with pytest.raises(ShapeMismatch, match="Duplicate"):
            LikelihoodMatrix(np.zeros((2, 4)), small_grid, ("a", "a"))

    def test_no_units(self, small_grid):
        with pytest.raises(ShapeMismatch):
            LikelihoodMatrix(np.zeros((0, 4)), small_grid, ())

    @pytest.mark.parametrize("bad", [np.nan, np.inf])
    def test_nan_and_positive_inf_rejected(self, small_grid, bad):
        values = np.zeros((1, 4))
        values[0, 2] = bad
        with pytest.raises(ValueError):
            LikelihoodMatrix(values, small_grid, ("a",))

    def test_negative_inf_allowed(self, small_grid):
        values = np.full((1, 4), -np.inf)
        L = LikelihoodMatrix(values, small_grid, ("a",))
        assert np.all(np.isneginf(np.asarray(L.values)))

    def test_drop(self, small_grid):
        values = np.arange(12, dtype=float).reshape(3, 4)
        L = LikelihoodMatrix(values, small_grid, ("a", "b", "c"))
        dropped = L.drop(["b"])
        assert dropped.unit_ids == ("a", "c")
        np.testing.assert_array_equal(
            np.asarray(dropped.values), values[[0, 2]]
        )

    def test_unknown_id(self, small_grid):
        L = LikelihoodMatrix(np.zeros((1, 4)), small_grid, ("a",))
        with pytest.raises(KeyError):
            L.index_of("missing")

    def test_to_frame(self, small_grid):
        L = LikelihoodMatrix(np.zeros((2, 4)), small_grid, ("a", "b"))
        df = L.to_frame()
        assert list(df.index) == ["a", "b"]
        assert list(df.columns) == [0.0, 0.1, 0.5, 1.0]


# --------------------------------------------------------------------------
# MixtureWeights
# --------------------------------------------------------------------------


class TestMixtureWeights:
    def test_uniform(self, small_grid):
        w = MixtureWeights.uniform(small_grid)
        np.testing.assert_allclose(np.asarray(w.values), 0.25)
        assert w.null_proportion == pytest.approx(0.25)

    def test_not_on_simplex(self, small_grid):
        with pytest.raises(ValueError, match="sum to 1"):
            MixtureWeights([0.5, 0.5, 0.5, 0.0], small_grid)

    def test_negative(self, small_grid):
        with pytest.raises(ValueError):
            MixtureWeights([1.5, -0.5, 0.0, 0.0], small_grid)

    def test_wrong_length(self, small_grid):
        with pytest.raises(ShapeMismatch):
            MixtureWeights([0.5, 0.5], small_grid)

    def test_default_pruned_mask(self, small_grid):
        w = MixtureWeights.uniform(small_grid)
        assert not np.any(np.asarray(w.pruned))


# --------------------------------------------------------------------------
# PosteriorResult
# --------------------------------------------------------------------------


class TestPosteriorResult:
    def test_lookup_and_degenerate(self, small_grid):
        matrix = np.array(
            [[0.1, 0.2, 0.3, 0.4], [np.nan, np.nan, np.nan, np.nan]]
        )
        result = PosteriorResult(
            matrix=matrix,
            unit_ids=("a", "b"),
            grid=small_grid,
            failures={"b": DegenerateRow("b")},
        )
        assert result["a"].local_fdr == pytest.approx(0.1)
        with pytest.raises(DegenerateRow):
            result["b"]
        with pytest.raises(KeyError):
            result["c"]
        assert result.local_fdr_pairs() == [("a", pytest.approx(0.1))]
        assert list(np.asarray(result.degenerate)) == [False, True]

    def test_lookup_every_unit(self, small_grid, rng):
        ids = tuple(f"u{i}" for i in range(50))
        matrix = rng.dirichlet(np.ones(4), size=50)
        result = PosteriorResult(matrix=matrix, unit_ids=ids, grid=small_grid)
        for i, uid in enumerate(ids):
            np.testing.assert_array_equal(
                np.asarray(result[uid].values), matrix[i]
            )

    def test_row_count_mismatch(self, small_grid):
        with pytest.raises(ShapeMismatch):
            PosteriorResult(
                matrix=np.full((2, 4), 0.25),
                unit_ids=("a",),
                grid=small_grid,
            )
