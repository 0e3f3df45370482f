"""Tests that the command-line runner's default configuration is valid."""

from pathlib import Path

import pytest
from omegaconf import OmegaConf

from fash import ErrorPolicy, FashConfig

CONFIG_PATH = Path(__file__).resolve().parents[1] / "conf" / "config.yaml"


@pytest.fixture
def cfg():
    return OmegaConf.load(CONFIG_PATH)


def test_data_path_is_required(cfg):
    assert OmegaConf.is_missing(cfg.data, "path")


def test_builds_fash_config(cfg):
    kwargs = OmegaConf.to_container(cfg, resolve=False)
    del kwargs["data"]
    config = FashConfig(**kwargs)
    assert config.grid == FashConfig().grid
    assert config.basis == FashConfig().basis
    assert config.optimizer == FashConfig().optimizer
    assert config.errors is ErrorPolicy.RAISE
    assert config.retain_fits == FashConfig().retain_fits
    assert config.progress is True


def test_overrides(cfg):
    cfg = OmegaConf.merge(
        cfg, OmegaConf.from_dotlist(["discovery.alpha=0.1", "errors=drop"])
    )
    kwargs = OmegaConf.to_container(cfg, resolve=False)
    del kwargs["data"]
    config = FashConfig(**kwargs)
    assert config.discovery.alpha == 0.1
    assert config.errors is ErrorPolicy.DROP
