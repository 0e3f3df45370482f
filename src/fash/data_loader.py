import logging
import os
from typing import List, Optional, Union

import pandas as pd

from .core.types import Unit

logger = logging.getLogger(__name__)

# ==============================================================================
# Data Loader
# ==============================================================================


def _unit_id(value) -> Union[str, int]:
    """Return an identifier read from a table as a ``str`` or ``int``.

    Saved results only accept ``str`` and ``int`` ids. Integral floats (as
    produced by pandas for numeric columns with missing values) become
    ``int``; anything else becomes its string form.
    """
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return str(value)


def units_from_frame(
    df: pd.DataFrame,
    unit_col: str = "unit_id",
    time_col: str = "time",
    value_col: str = "value",
    sd_col: Optional[str] = "sd",
    noise_sd: Optional[float] = None,
) -> List[Unit]:
    """
    Build units from a long-format table with one row per observation.

    Parameters
    ----------
    df : pandas.DataFrame
        Long-format observations.
    unit_col, time_col, value_col : str
        Columns holding the unit identifier, observation time and value.
    sd_col : str, optional
        Column holding the per-observation noise standard deviation.
    noise_sd : float, optional
        Shared noise standard deviation, used when ``sd_col`` is ``None`` or
        absent from ``df``.

    Returns
    -------
    list of Unit
        One unit per distinct identifier, in order of first appearance.
        Identifiers are converted to ``int`` or ``str``.

    Raises
    ------
    ValueError
        If a required column is missing, or no noise level is available.
    """
    required = [unit_col, time_col, value_col]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required column(s): {missing}")

    use_sd_col = sd_col is not None and sd_col in df.columns
    if not use_sd_col and noise_sd is None:
        raise ValueError(
            f"Column {sd_col!r} not found and no shared noise_sd given"
        )

    units = []
    for unit_id, group in df.groupby(unit_col, sort=False):
        units.append(
            Unit(
                unit_id=_unit_id(unit_id),
                times=group[time_col].to_numpy(dtype=float),
                values=group[value_col].to_numpy(dtype=float),
                noise_sd=(
                    group[sd_col].to_numpy(dtype=float)
                    if use_sd_col
                    else noise_sd
                ),
            )
        )
    logger.info("Loaded %d units from %d observations", len(units), len(df))
    return units


# ------------------------------------------------------------------------------


def load_units(
    path: Union[str, os.PathLike],
    unit_col: str = "unit_id",
    time_col: str = "time",
    value_col: str = "value",
    sd_col: Optional[str] = "sd",
    noise_sd: Optional[float] = None,
) -> List[Unit]:
    """
    Load units from a long-format CSV file.

    Lines starting with ``#`` are ignored. See :func:`units_from_frame` for
    the column arguments.
    """
    _, extension = os.path.splitext(str(path))
    if extension != ".csv":
        raise ValueError(
            f"Unsupported file format: {extension}. Please use .csv"
        )
    df = pd.read_csv(path, comment="#")
    return units_from_frame(
        df,
        unit_col=unit_col,
        time_col=time_col,
        value_col=value_col,
        sd_col=sd_col,
        noise_sd=noise_sd,
    )
