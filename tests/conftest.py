"""
Shared test fixtures and configuration for FASH tests.
"""

import os

import numpy as np
import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--device",
        default="cpu",
        choices=["cpu", "gpu"],
        help="Device to run tests on: cpu or gpu",
    )


def pytest_configure(config):
    """Configure JAX device before any imports happen."""
    device = config.getoption("--device")
    if device == "cpu":
        os.environ["JAX_PLATFORM_NAME"] = "cpu"
    else:
        # Remove the environment variable to allow JAX to use GPU
        if "JAX_PLATFORM_NAME" in os.environ:
            del os.environ["JAX_PLATFORM_NAME"]


# --------------------------------------------------------------------------
# Fixtures
# --------------------------------------------------------------------------


@pytest.fixture
def rng():
    """Seeded NumPy generator."""
    return np.random.default_rng(42)


@pytest.fixture
def small_grid():
    """Four-point smoothness grid."""
    from fash import SmoothnessGrid

    return SmoothnessGrid([0.0, 0.1, 0.5, 1.0])


@pytest.fixture
def fast_basis():
    """Basis with few knots, to keep oracle calls cheap."""
    from fash import BasisConfig

    return BasisConfig(order=2, num_knots=8)


def _make_units(rng, n_flat, n_dynamic, n_obs=16, noise_sd=0.1):
    """Flat units (constant plus noise) followed by sinusoidal units."""
    from fash import Unit

    times = np.arange(n_obs, dtype=float)
    units = []
    for i in range(n_flat):
        values = 0.3 + noise_sd * rng.standard_normal(n_obs)
        units.append(Unit(f"flat_{i}", times, values, noise_sd))
    for i in range(n_dynamic):
        phase = rng.uniform(0, 2 * np.pi)
        signal = 2.0 * np.sin(times / 2.5 + phase)
        values = signal + noise_sd * rng.standard_normal(n_obs)
        units.append(Unit(f"dyn_{i}", times, values, noise_sd))
    return units


@pytest.fixture
def flat_units(rng):
    """Ten non-dynamic units."""
    return _make_units(rng, n_flat=10, n_dynamic=0)


@pytest.fixture
def mixed_units(rng):
    """Twelve flat units and eight strongly dynamic units."""
    return _make_units(rng, n_flat=12, n_dynamic=8)


@pytest.fixture
def random_L(rng):
    """Random 40 x 5 log-likelihood matrix on a geometric grid."""
    from fash import LikelihoodMatrix, SmoothnessGrid

    grid = SmoothnessGrid.geometric(0.1, 2.0, 5)
    values = rng.normal(loc=-20.0, scale=3.0, size=(40, 5))
    return LikelihoodMatrix(
        values, grid, unit_ids=tuple(f"u{i}" for i in range(40))
    )
