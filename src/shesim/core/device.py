from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .constants import EPS0, thermal_voltage
from .materials import Material, si
from .mesh import Mesh, Segment

logger = logging.getLogger(__name__)


class Device:
    """
    A mesh plus everything the equations need per cell: material, doping and
    contact potentials.

    Setters apply to the whole device, or to one segment when given. Contacts
    are the cells that carry a contact potential; they are Dirichlet cells for
    the potential and for the carrier densities.
    """

    def __init__(self, mesh: Mesh, material: Optional[Material] = None) -> None:
        self._mesh = mesh
        self._segments: Dict[int, Segment] = {}

        n = mesh.n_cells
        self._materials: List[Material] = [si() if material is None else material]
        self._material_index = np.zeros(n, dtype=np.int64)
        self._doping_n = np.zeros(n, dtype=np.float64)
        self._doping_p = np.zeros(n, dtype=np.float64)
        self._contact_potential = np.full(n, np.nan, dtype=np.float64)

    @property
    def mesh(self) -> Mesh:
        return self._mesh

    @property
    def n_cells(self) -> int:
        return self._mesh.n_cells

    # ----------------------------
    # Segments
    # ----------------------------

    def add_segment(self, segment_id: int, name: str, cells: Sequence[int]) -> Segment:
        if segment_id in self._segments:
            raise ValueError(f"segment {segment_id} already exists")
        seg = Segment(name=name, cells=tuple(cells))
        if len(seg) and (min(seg.cells) < 0 or max(seg.cells) >= self.n_cells):
            raise ValueError(f"segment {name!r} refers to a cell out of range")
        self._segments[segment_id] = seg
        return seg

    def segment(self, segment_id: int) -> Segment:
        try:
            return self._segments[segment_id]
        except KeyError:
            raise KeyError(f"no segment with id {segment_id}") from None

    @property
    def segments(self) -> Dict[int, Segment]:
        return dict(self._segments)

    def _cells_of(self, segment: Optional[Segment]) -> np.ndarray | slice:
        return slice(None) if segment is None else segment.cell_array

    # ----------------------------
    # Setters
    # ----------------------------

    def set_material(self, material: Material, segment: Optional[Segment] = None) -> None:
        try:
            idx = self._materials.index(material)
        except ValueError:
            self._materials.append(material)
            idx = len(self._materials) - 1
        self._material_index[self._cells_of(segment)] = idx

    def set_doping_n(self, value: float, segment: Optional[Segment] = None) -> None:
        if value < 0.0:
            raise ValueError("donor doping must be >= 0")
        self._doping_n[self._cells_of(segment)] = float(value)

    def set_doping_p(self, value: float, segment: Optional[Segment] = None) -> None:
        if value < 0.0:
            raise ValueError("acceptor doping must be >= 0")
        self._doping_p[self._cells_of(segment)] = float(value)

    def set_contact_potential(self, value: float, segment: Segment) -> None:
        self._contact_potential[segment.cell_array] = float(value)
        logger.debug("contact %r: %d cells at %.4g V", segment.name, len(segment), value)

    # ----------------------------
    # Per-cell views (read-only copies)
    # ----------------------------

    def material(self, cell: int) -> Material:
        return self._materials[int(self._material_index[cell])]

    def _per_cell(self, attr: str) -> np.ndarray:
        values = np.array([getattr(m, attr) for m in self._materials], dtype=np.float64)
        return values[self._material_index]

    @property
    def doping_n(self) -> np.ndarray:
        return self._doping_n.copy()

    @property
    def doping_p(self) -> np.ndarray:
        return self._doping_p.copy()

    @property
    def net_doping(self) -> np.ndarray:
        """C = N_D - N_A [m^-3]."""
        return self._doping_n - self._doping_p

    @property
    def permittivity(self) -> np.ndarray:
        return EPS0 * self._per_cell("eps_rel")

    @property
    def is_semiconductor(self) -> np.ndarray:
        flags = np.array([m.is_semiconductor for m in self._materials], dtype=bool)
        return flags[self._material_index]

    @property
    def is_contact(self) -> np.ndarray:
        return np.isfinite(self._contact_potential)

    @property
    def contact_potential(self) -> np.ndarray:
        return self._contact_potential.copy()

    def mobility(self, carrier: str) -> np.ndarray:
        return self._per_cell("mu_n" if carrier == "n" else "mu_p")

    def lifetime(self, carrier: str) -> np.ndarray:
        return self._per_cell("tau_n" if carrier == "n" else "tau_p")

    def reference_ni(self) -> float:
        """Intrinsic density of the first semiconductor material in the device."""
        for idx, m in enumerate(self._materials):
            if m.is_semiconductor and np.any(self._material_index == idx):
                return float(m.ni)
        raise ValueError("device contains no semiconductor cells")

    @property
    def intrinsic_density(self) -> np.ndarray:
        """
        n_i per cell. Contact cells that are not semiconductors (metal contacts)
        use the device reference n_i, so their equilibrium densities are those
        of the adjacent semiconductor with the same doping. Other cells get 0.
        """
        ni = self._per_cell("ni")
        semi = self.is_semiconductor
        out = np.where(semi, ni, 0.0)
        foreign_contacts = self.is_contact & ~semi
        if np.any(foreign_contacts):
            out[foreign_contacts] = self.reference_ni()
        return out

    # ----------------------------
    # Equilibrium estimates
    # ----------------------------

    def equilibrium_densities(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Charge-neutral equilibrium densities:
            n = C/2 + sqrt((C/2)^2 + n_i^2),  p = n_i^2 / n
        evaluated in the numerically safe branch for each sign of C.
        Zero where the cell carries no carriers.
        """
        C = self.net_doping
        ni = self.intrinsic_density
        half = 0.5 * C
        root = np.sqrt(half * half + ni * ni)
        n = np.zeros_like(C)
        p = np.zeros_like(C)
        has = ni > 0.0
        pos = has & (C >= 0.0)
        neg = has & (C < 0.0)
        n[pos] = half[pos] + root[pos]
        p[pos] = ni[pos] ** 2 / n[pos]
        p[neg] = -half[neg] + root[neg]
        n[neg] = ni[neg] ** 2 / p[neg]
        return n, p

    def builtin_potential(self, T: float) -> np.ndarray:
        """psi_bi = V_T asinh(C / (2 n_i)); 0 where there is no n_i."""
        V_T = thermal_voltage(T)
        ni = self.intrinsic_density
        out = np.zeros(self.n_cells, dtype=np.float64)
        has = ni > 0.0
        out[has] = V_T * np.arcsinh(self.net_doping[has] / (2.0 * ni[has]))
        return out

    def dirichlet_potential(self, T: float) -> np.ndarray:
        """Contact potential plus built-in potential on contact cells; NaN elsewhere."""
        return self._contact_potential + self.builtin_potential(T)
