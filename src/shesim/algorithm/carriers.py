# algorithm/carriers.py
"""
Per-carrier transport equations as tagged variants.

Each variant answers the same three questions for the Gummel loop:
  - solve(psi, own, other): candidate density at a fixed potential
  - measure(...): contribution to the convergence residual
  - facet_flux(psi, own): particle flux density per facet
and carries `kind` (an EquationKind) plus `linearize`, which tells the
Poisson step whether the density follows the potential.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np

from ..core.config import EquationKind, LinearSolverConfig, SimulatorConfig
from ..core.constants import NEGATIVE_DENSITY_RTOL, TINY, thermal_voltage
from ..core.device import Device
from ..core.quantity import DistributionFunction
from ..errors import NonlinearDivergedError
from ..operators.assemble import (
    DualBoxGeometry,
    assemble_continuity,
    carrier_facet_flux,
    continuity_residual,
    slotboom_scale,
)
from ..operators.she import SHEEquationSource
from ..operators.solve import solve_linear_system


@dataclass
class FrozenCarrier:
    """Carrier without a transport equation: its density stays at the initial guess."""
    carrier: str
    n_facets: int
    kind: EquationKind = EquationKind.NONE
    linearize: bool = False

    def solve(self, psi: np.ndarray, own: np.ndarray, other: np.ndarray) -> np.ndarray:
        return np.array(own, dtype=np.float64, copy=True)

    def measure(self, **_: np.ndarray) -> float:
        return 0.0

    def facet_flux(self, psi: np.ndarray, own: np.ndarray) -> np.ndarray:
        return np.zeros(self.n_facets)


@dataclass
class ContinuityCarrier:
    """Drift-diffusion (Scharfetter-Gummel) continuity equation."""
    carrier: str
    geometry: DualBoxGeometry
    device: Device
    V_T: float
    srh: bool
    linear_solver: LinearSolverConfig
    kind: EquationKind = EquationKind.CONTINUITY
    linearize: bool = True

    def solve(self, psi: np.ndarray, own: np.ndarray, other: np.ndarray) -> np.ndarray:
        A, b = assemble_continuity(
            self.geometry, self.device, self.carrier, psi, own, other, V_T=self.V_T, srh=self.srh
        )
        scale = slotboom_scale(self.carrier, psi, self.V_T)
        x = solve_linear_system(A, b, self.linear_solver, col_scale=scale)

        y = x / scale
        floor = -NEGATIVE_DENSITY_RTOL * float(np.max(np.abs(y), initial=0.0))
        if np.any(y < floor):
            raise NonlinearDivergedError(
                f"{self.carrier} continuity solve gave negative densities (min {float(np.min(x)):.3e} m^-3)"
            )
        return np.where(y < 0.0, 0.0, x)

    def measure(
        self,
        *,
        psi: np.ndarray,
        density: np.ndarray,
        other: np.ndarray,
        **_: np.ndarray,
    ) -> float:
        return continuity_residual(
            self.geometry, self.device, self.carrier, psi, density, other, V_T=self.V_T, srh=self.srh
        )

    def facet_flux(self, psi: np.ndarray, own: np.ndarray) -> np.ndarray:
        return carrier_facet_flux(self.geometry, self.device, self.carrier, psi, own, V_T=self.V_T)


@dataclass
class SHECarrier:
    """First-order SHE; the density is the zeroth moment of the distribution function."""
    carrier: str
    source: SHEEquationSource
    linear_solver: LinearSolverConfig
    kind: EquationKind = EquationKind.SHE
    linearize: bool = True
    distribution: Optional[DistributionFunction] = field(default=None)

    def solve(self, psi: np.ndarray, own: np.ndarray, other: np.ndarray) -> np.ndarray:
        self.distribution = self.source.solve(psi, self.linear_solver)
        return np.array(self.distribution.density, dtype=np.float64, copy=True)

    def measure(
        self,
        *,
        previous: np.ndarray,
        candidate: np.ndarray,
        **_: np.ndarray,
    ) -> float:
        """Relative density change  max|n* - n| / max|n|."""
        den = float(np.max(np.abs(previous), initial=0.0))
        return float(np.max(np.abs(candidate - previous), initial=0.0)) / (den + TINY)

    def facet_flux(self, psi: np.ndarray, own: np.ndarray) -> np.ndarray:
        if self.distribution is None:
            raise RuntimeError(f"no {self.carrier} distribution function yet; run the simulator first")
        return self.source.facet_flux(self.distribution)


CarrierEquation = Union[FrozenCarrier, ContinuityCarrier, SHECarrier]


def build_carrier(
    carrier: str,
    geometry: DualBoxGeometry,
    device: Device,
    config: SimulatorConfig,
) -> CarrierEquation:
    """Variant for the effective equation kind of `carrier` ("n" or "p")."""
    kind = config.equation_for(carrier)

    if kind is EquationKind.NONE:
        return FrozenCarrier(carrier=carrier, n_facets=geometry.n_facets)

    if kind is EquationKind.CONTINUITY:
        return ContinuityCarrier(
            carrier=carrier,
            geometry=geometry,
            device=device,
            V_T=thermal_voltage(config.temperature),
            srh=bool(config.srh_recombination),
            linear_solver=config.linear_solver,
        )

    if kind is EquationKind.SHE:
        return SHECarrier(
            carrier=carrier,
            source=SHEEquationSource(geometry, device, carrier, config),
            linear_solver=config.linear_solver,
        )

    raise ValueError(f"Unhandled equation kind: {kind}")
