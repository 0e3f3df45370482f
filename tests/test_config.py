"""Tests for FASH configuration classes."""

import pytest
from pydantic import ValidationError

from fash import (
    BasisConfig,
    DiscoveryConfig,
    ErrorPolicy,
    FashConfig,
    OptimizerConfig,
    SmoothnessGrid,
    create_default_config,
)


class TestDefaults:
    def test_default_config(self):
        config = create_default_config()
        assert config == FashConfig()
        assert config.grid[0] == 0.0
        assert config.basis.order == 2
        assert config.optimizer.max_iter == 1000
        assert config.discovery.alpha == 0.05
        assert config.errors is ErrorPolicy.RAISE

    def test_smoothness_grid(self):
        config = FashConfig(grid=[0.0, 0.2, 0.4])
        assert config.smoothness_grid() == SmoothnessGrid([0.0, 0.2, 0.4])


class TestValidation:
    def test_grid_must_start_at_zero(self):
        with pytest.raises(ValidationError):
            FashConfig(grid=[0.1, 0.2])

    def test_grid_must_increase(self):
        with pytest.raises(ValidationError):
            FashConfig(grid=[0.0, 0.2, 0.1])

    @pytest.mark.parametrize("n_jobs", [0, -2])
    def test_bad_n_jobs(self, n_jobs):
        with pytest.raises(ValidationError):
            FashConfig(n_jobs=n_jobs)

    def test_all_cores(self):
        assert FashConfig(n_jobs=-1).n_jobs == -1

    def test_error_policy_from_string(self):
        assert FashConfig(errors="drop").errors is ErrorPolicy.DROP

    def test_unknown_error_policy(self):
        with pytest.raises(ValidationError):
            FashConfig(errors="ignore")

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            BasisConfig(knots=10)

    def test_frozen(self):
        config = OptimizerConfig()
        with pytest.raises(ValidationError):
            config.tol = 1.0

    def test_null_penalty_at_least_one(self):
        with pytest.raises(ValidationError):
            OptimizerConfig(null_penalty=0.5)

    @pytest.mark.parametrize("alpha", [-0.1, 1.1])
    def test_alpha_range(self, alpha):
        with pytest.raises(ValidationError):
            DiscoveryConfig(alpha=alpha)

    def test_nested_from_dict(self):
        config = FashConfig(
            basis={"order": 3, "num_knots": 10},
            optimizer={"tol": 1e-6},
        )
        assert config.basis.order == 3
        assert config.optimizer.tol == 1e-6
