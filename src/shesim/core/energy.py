# core/energy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class EnergyGrid:
    """
    Uniform total-energy grid  H_k = h_min + k * spacing,  k = 0..n_levels-1  [J].

    Kinetic energy at a point with band-edge energy U is  eps_k = H_k - U.
    """
    h_min: float
    spacing: float
    n_levels: int

    def __post_init__(self) -> None:
        if not self.spacing > 0.0:
            raise ValueError("spacing must be positive.")
        if int(self.n_levels) < 1:
            raise ValueError("n_levels must be >= 1.")

    @property
    def energies(self) -> np.ndarray:
        return self.h_min + self.spacing * np.arange(int(self.n_levels), dtype=np.float64)

    @property
    def h_max(self) -> float:
        return float(self.h_min + self.spacing * (int(self.n_levels) - 1))

    def kinetic(self, band_edge: np.ndarray) -> np.ndarray:
        """eps[i, k] = H_k - U_i, shape (len(band_edge), n_levels)."""
        U = np.asarray(band_edge, dtype=np.float64)
        return self.energies[None, :] - U[:, None]

    def level_shift(self, energy: float) -> int:
        """Number of levels spanned by an energy quantum (e.g. an optical phonon), m = round(E / dH)."""
        return int(round(float(energy) / self.spacing))

    @classmethod
    def from_band_edge(
        cls,
        *,
        band_edge: np.ndarray,
        spacing: float,
        kT: float,
        n_kT: float = 12.0,
    ) -> "EnergyGrid":
        """
        Grid covering  [min U + spacing/2,  max U + n_kT * kT]  with the given spacing.

        The lowest level sits half a spacing above the lowest band edge so no
        level coincides with it. Every point then has at least one level with
        positive kinetic energy.
        """
        U = np.asarray(band_edge, dtype=np.float64)
        spacing = float(spacing)
        kT = float(kT)
        n_kT = float(n_kT)

        if U.size == 0:
            raise ValueError("band_edge must not be empty.")
        if not np.all(np.isfinite(U)):
            raise ValueError("band_edge must be finite.")
        if spacing <= 0.0:
            raise ValueError("spacing must be > 0.")
        if kT <= 0.0:
            raise ValueError("kT must be > 0.")
        if n_kT <= 0.0:
            raise ValueError("n_kT must be > 0.")

        u_min = float(np.min(U))
        u_max = float(np.max(U))

        h_min = u_min + 0.5 * spacing
        h_top = max(u_max + n_kT * kT, h_min + spacing)
        n_levels = int(np.ceil((h_top - h_min) / spacing)) + 1

        return cls(h_min=h_min, spacing=spacing, n_levels=n_levels)


def dos_weights(kinetic: np.ndarray, kT: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Normalized density-of-states weights on an energy grid.

        w_k = Z(eps_k) / sum_j Z(eps_j) exp(-eps_j / kT),   Z(eps) = sqrt(eps / kT)

    for eps_k > 0 and 0 otherwise, row by row. With these weights the
    Maxwellian f_k = exp(-eps_k / kT) has  sum_k w_k f_k = 1  exactly.

    Returns (weights, active) with the shape of `kinetic`. Rows without any
    positive kinetic energy get zero weights.
    """
    eps = np.asarray(kinetic, dtype=np.float64)
    kT = float(kT)
    active = eps > 0.0

    Z = np.zeros_like(eps)
    Z[active] = np.sqrt(eps[active] / kT)

    boltz = np.zeros_like(eps)
    boltz[active] = np.exp(-eps[active] / kT)

    norm = np.sum(Z * boltz, axis=-1, keepdims=True)
    w = np.divide(Z, norm, out=np.zeros_like(Z), where=norm > 0.0)
    return w, active


def maxwellian(kinetic: np.ndarray, kT: float) -> np.ndarray:
    """exp(-eps / kT) where eps > 0, else 0."""
    eps = np.asarray(kinetic, dtype=np.float64)
    out = np.zeros_like(eps)
    pos = eps > 0.0
    out[pos] = np.exp(-eps[pos] / float(kT))
    return out
