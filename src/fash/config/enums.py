"""
Enums for FASH configuration.

Enums restrict configurable choices to a fixed set of symbolic values, so that
invalid options are rejected when a configuration is validated rather than
deep inside a computation.
"""

from enum import Enum

# ==============================================================================
# Enums for run configuration
# ==============================================================================


class ErrorPolicy(str, Enum):
    """What the grid builder does with units whose evaluation failed.

    ``RAISE`` evaluates every cell and then raises a single error listing all
    failures. ``DROP`` removes the failing units from the likelihood matrix
    and keeps the failures for inspection.
    """

    RAISE = "raise"
    DROP = "drop"
