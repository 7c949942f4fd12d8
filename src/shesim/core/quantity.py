# core/quantity.py
"""
Named field quantities exchanged between the simulator, the flux
reconstruction and output writers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np

POTENTIAL = "potential"
ELECTRON_DENSITY = "electron_density"
HOLE_DENSITY = "hole_density"
ELECTRON_DISTRIBUTION_FUNCTION = "electron_distribution_function"
HOLE_DISTRIBUTION_FUNCTION = "hole_distribution_function"

DENSITY_NAMES = {"n": ELECTRON_DENSITY, "p": HOLE_DENSITY}
DISTRIBUTION_NAMES = {"n": ELECTRON_DISTRIBUTION_FUNCTION, "p": HOLE_DISTRIBUTION_FUNCTION}


def _readonly(values: np.ndarray) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class CellQuantity:
    """Read-only named per-cell scalar array."""
    name: str
    unit: str
    values: np.ndarray

    def __post_init__(self) -> None:
        arr = _readonly(self.values)
        if arr.ndim != 1:
            raise ValueError(f"{self.name}: cell quantity must be 1D; got shape {arr.shape}")
        object.__setattr__(self, "values", arr)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __array__(self, dtype=None, copy=None):
        return np.asarray(self.values, dtype=dtype)


@dataclass(frozen=True)
class FacetQuantity:
    """
    Per-facet scalar flux samples.

    Signs refer to the facet's intrinsic orientation, from its first
    coboundary cell to the second.
    """
    name: str
    unit: str
    values: np.ndarray

    def __post_init__(self) -> None:
        arr = _readonly(self.values)
        if arr.ndim != 1:
            raise ValueError(f"{self.name}: facet quantity must be 1D; got shape {arr.shape}")
        object.__setattr__(self, "values", arr)

    def accessor(self) -> Callable[[int], float]:
        values = self.values

        def get(facet: int) -> float:
            return float(values[int(facet)])

        return get


class CellVectorField:
    """Zero-initialised (n_cells, geo_dim) vector field written cell by cell through setter()."""

    def __init__(self, name: str, n_cells: int, geo_dim: int, unit: str = "") -> None:
        self.name = name
        self.unit = unit
        self._values = np.zeros((int(n_cells), int(geo_dim)), dtype=np.float64)

    @property
    def values(self) -> np.ndarray:
        out = self._values.copy()
        out.setflags(write=False)
        return out

    def __getitem__(self, cell: int) -> np.ndarray:
        return self._values[int(cell)].copy()

    def setter(self) -> Callable[[int, np.ndarray], None]:
        values = self._values
        geo_dim = values.shape[1]

        def set_(cell: int, vector: np.ndarray) -> None:
            v = np.asarray(vector, dtype=np.float64)
            if v.shape != (geo_dim,):
                raise ValueError(f"{self.name}: expected vector of shape ({geo_dim},); got {v.shape}")
            values[int(cell)] = v

        return set_


@dataclass(frozen=True)
class DistributionFunction:
    """
    First-order SHE solution of one carrier type on an energy grid.

    values[i, k] is the dimensionless coefficient f(x_i, H_k); `active`
    marks levels with positive kinetic energy in a carrier cell, and
    `weights` the normalized density-of-states weights, so that
        density[i] = n_ref * sum_k weights[i, k] * values[i, k].
    """
    carrier: str
    energies: np.ndarray      # (n_levels,) total energies H_k [J]
    band_edge: np.ndarray     # (n_cells,) U(x_i) [J]
    values: np.ndarray        # (n_cells, n_levels)
    active: np.ndarray        # (n_cells, n_levels) bool
    weights: np.ndarray       # (n_cells, n_levels)
    density: np.ndarray       # (n_cells,) [m^-3]
    n_ref: float
    expansion_order: int = 1

    def __post_init__(self) -> None:
        for name in ("energies", "band_edge", "values", "weights", "density"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))
        active = np.array(self.active, dtype=bool, copy=True)
        active.setflags(write=False)
        object.__setattr__(self, "active", active)

        n_cells, n_levels = self.values.shape
        if self.energies.shape != (n_levels,) or self.band_edge.shape != (n_cells,):
            raise ValueError("distribution function arrays have inconsistent shapes")
        if self.active.shape != self.values.shape or self.weights.shape != self.values.shape:
            raise ValueError("distribution function arrays have inconsistent shapes")

    @property
    def n_cells(self) -> int:
        return int(self.values.shape[0])

    @property
    def n_levels(self) -> int:
        return int(self.values.shape[1])

    def kinetic_energies(self) -> np.ndarray:
        """eps[i, k] = H_k - U_i [J]."""
        return self.energies[None, :] - self.band_edge[:, None]
