"""Persistence of likelihood matrices and mixture weights.

Each object is stored in its own directory so that an expensive likelihood
grid can be reused, or a fitted mixture resumed, without recomputation::

    path/
      metadata.json   # kind, format version, K, unit ids, basis, diagnostics
      values.npy      # likelihood matrix (N, K) or weights (K,)
      grid.npy        # smoothness grid (K,)
      trace.npy       # optimizer trace (weights only)
      pruned.npy      # pruned mask (weights only)

Arrays are written as float64 ``.npy`` files, so a round trip reproduces the
values exactly. Grid alignment is checked again when loading.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Hashable, Union

import numpy as np

from ..config import BasisConfig
from ..errors import ShapeMismatch
from .types import LikelihoodMatrix, MixtureWeights, SmoothnessGrid

FORMAT_VERSION = 1

_LIKELIHOOD_KIND = "likelihood_matrix"
_WEIGHTS_KIND = "mixture_weights"

PathLike = Union[str, os.PathLike]


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------


def _json_unit_id(unit_id: Hashable) -> Union[str, int]:
    """Return ``unit_id`` as a JSON-representable ``str`` or ``int``."""
    if isinstance(unit_id, (bool, np.bool_)):
        raise TypeError(f"Unit ids must be str or int, got {unit_id!r}")
    if isinstance(unit_id, (int, np.integer)):
        return int(unit_id)
    if isinstance(unit_id, str):
        return unit_id
    raise TypeError(
        f"Unit ids must be str or int to be saved, got {type(unit_id)}"
    )


def _write_metadata(path: Path, metadata: Dict[str, Any]) -> None:
    with open(path / "metadata.json", "w") as f:
        json.dump(metadata, f, indent=2)


def _read_metadata(path: Path, kind: str) -> Dict[str, Any]:
    metadata_path = path / "metadata.json"
    if not metadata_path.exists():
        raise FileNotFoundError(f"No metadata.json in {path}")
    with open(metadata_path, "r") as f:
        metadata = json.load(f)
    if metadata.get("kind") != kind:
        raise ValueError(
            f"{path} holds a {metadata.get('kind')!r}, expected {kind!r}"
        )
    if metadata.get("format_version") != FORMAT_VERSION:
        raise ValueError(
            f"Unsupported format version {metadata.get('format_version')} "
            f"in {path}"
        )
    return metadata


def _load_grid(path: Path, K: int) -> SmoothnessGrid:
    grid = SmoothnessGrid(np.load(path / "grid.npy"))
    if grid.K != K:
        raise ShapeMismatch(
            f"Stored grid has {grid.K} points but metadata says K={K}"
        )
    return grid


# ------------------------------------------------------------------------------
# Likelihood matrix
# ------------------------------------------------------------------------------


def save_likelihood_matrix(path: PathLike, L: LikelihoodMatrix) -> None:
    """Save a likelihood matrix to the directory ``path``.

    Fitted functions are not persisted.

    Parameters
    ----------
    path : str or PathLike
        Target directory (created if needed).
    L : LikelihoodMatrix
        Matrix to save.
    """
    path = Path(path)
    os.makedirs(path, exist_ok=True)

    np.save(path / "values.npy", np.asarray(L.values, dtype=np.float64))
    np.save(path / "grid.npy", np.asarray(L.grid.values, dtype=np.float64))
    _write_metadata(
        path,
        {
            "kind": _LIKELIHOOD_KIND,
            "format_version": FORMAT_VERSION,
            "K": L.K,
            "n_units": L.n_units,
            "unit_ids": [_json_unit_id(uid) for uid in L.unit_ids],
            "basis": None if L.basis is None else L.basis.model_dump(),
        },
    )


# ------------------------------------------------------------------------------


def load_likelihood_matrix(path: PathLike) -> LikelihoodMatrix:
    """Load a likelihood matrix saved with :func:`save_likelihood_matrix`.

    Raises
    ------
    ShapeMismatch
        If the stored grid, matrix and unit ids are not aligned.
    """
    path = Path(path)
    metadata = _read_metadata(path, _LIKELIHOOD_KIND)
    grid = _load_grid(path, metadata["K"])
    values = np.load(path / "values.npy")
    if values.shape != (metadata["n_units"], metadata["K"]):
        raise ShapeMismatch(
            f"Stored matrix has shape {values.shape}, metadata says "
            f"({metadata['n_units']}, {metadata['K']})"
        )
    basis = metadata.get("basis")
    return LikelihoodMatrix(
        values=values,
        grid=grid,
        unit_ids=tuple(metadata["unit_ids"]),
        basis=None if basis is None else BasisConfig(**basis),
    )


# ------------------------------------------------------------------------------
# Mixture weights
# ------------------------------------------------------------------------------


def save_mixture_weights(path: PathLike, weights: MixtureWeights) -> None:
    """Save mixture weights and optimizer diagnostics to ``path``."""
    path = Path(path)
    os.makedirs(path, exist_ok=True)

    np.save(path / "values.npy", np.asarray(weights.values, dtype=np.float64))
    np.save(
        path / "grid.npy", np.asarray(weights.grid.values, dtype=np.float64)
    )
    np.save(path / "trace.npy", np.asarray(weights.trace, dtype=np.float64))
    np.save(path / "pruned.npy", np.asarray(weights.pruned, dtype=bool))
    _write_metadata(
        path,
        {
            "kind": _WEIGHTS_KIND,
            "format_version": FORMAT_VERSION,
            "K": weights.K,
            "objective": float(weights.objective),
            "n_iter": int(weights.n_iter),
            "converged": bool(weights.converged),
        },
    )


# ------------------------------------------------------------------------------


def load_mixture_weights(path: PathLike) -> MixtureWeights:
    """Load mixture weights saved with :func:`save_mixture_weights`."""
    path = Path(path)
    metadata = _read_metadata(path, _WEIGHTS_KIND)
    grid = _load_grid(path, metadata["K"])
    values = np.load(path / "values.npy")
    if values.shape != (metadata["K"],):
        raise ShapeMismatch(
            f"Stored weights have shape {values.shape}, metadata says "
            f"K={metadata['K']}"
        )
    return MixtureWeights(
        values=values,
        grid=grid,
        objective=metadata["objective"],
        n_iter=metadata["n_iter"],
        converged=metadata["converged"],
        trace=tuple(np.load(path / "trace.npy").tolist()),
        pruned=np.load(path / "pruned.npy"),
    )
