"""Configuration classes for FASH runs."""

from .base import (
    BasisConfig,
    DiscoveryConfig,
    FashConfig,
    OptimizerConfig,
    create_default_config,
)
from .enums import ErrorPolicy

__all__ = [
    "BasisConfig",
    "DiscoveryConfig",
    "FashConfig",
    "OptimizerConfig",
    "ErrorPolicy",
    "create_default_config",
]
