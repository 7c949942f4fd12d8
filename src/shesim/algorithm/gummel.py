# algorithm/gummel.py
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from ..core.config import SimulatorConfig
from ..core.constants import thermal_voltage
from ..core.device import Device
from ..core.quantity import (
    DENSITY_NAMES,
    DISTRIBUTION_NAMES,
    ELECTRON_DENSITY,
    HOLE_DENSITY,
    POTENTIAL,
    CellQuantity,
    DistributionFunction,
)
from ..errors import LinearSolverError, NonlinearDivergedError, NonlinearNotConvergedError
from ..operators.assemble import DualBoxGeometry, assemble_poisson, poisson_residual
from ..operators.solve import solve_linear_system
from .carriers import CarrierEquation, SHECarrier, build_carrier
from .fixed_point import damped_fixed_point

logger = logging.getLogger(__name__)

_UNITS = {POTENTIAL: "V", ELECTRON_DENSITY: "m^-3", HOLE_DENSITY: "m^-3"}


class SimulatorState(Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    RUNNING = "running"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    FAILED = "failed"


@dataclass(frozen=True)
class SimulationResult:
    state: SimulatorState
    iterations: int
    residual_history: Tuple[float, ...]

    @property
    def converged(self) -> bool:
        return self.state is SimulatorState.CONVERGED

    @property
    def residual(self) -> float:
        return self.residual_history[-1] if self.residual_history else float("nan")

    def raise_if_not_converged(self) -> None:
        if self.state is SimulatorState.MAX_ITERATIONS_REACHED:
            raise NonlinearNotConvergedError(self.iterations, self.residual)


class Simulator:
    """
    Damped Gummel iteration between Poisson and the per-carrier transport equations.

    The simulator works on private copies of the device and the configuration.
    It starts from equilibrium estimates (built-in potential plus contact
    voltage, neutral densities) unless initial guesses are supplied, for
    example from an earlier run:

        dd = Simulator(device, dd_config); dd.run()
        she = Simulator(device, she_config)
        she.set_initial_guess(POTENTIAL, dd.potential())
        she.set_initial_guess(ELECTRON_DENSITY, dd.electron_density())
        she.run()

    run() may be called once. The solved fields are exposed as read-only copies.
    """

    def __init__(self, device: Device, config: Optional[SimulatorConfig] = None) -> None:
        self._state = SimulatorState.UNINITIALIZED

        cfg = copy.deepcopy(SimulatorConfig() if config is None else config)
        cfg.validate()
        self._config = cfg
        self._device = copy.deepcopy(device)
        self._geometry = DualBoxGeometry.from_mesh(self._device.mesh)

        T = cfg.temperature
        self._V_T = thermal_voltage(T)
        self._psi_dirichlet = self._device.dirichlet_potential(T)

        self._carriers: Dict[str, CarrierEquation] = {
            c: build_carrier(c, self._geometry, self._device, cfg) for c in ("n", "p")
        }

        contact_v = np.nan_to_num(self._device.contact_potential, nan=0.0)
        self._psi = self._device.builtin_potential(T) + contact_v
        self._n, self._p = self._device.equilibrium_densities()

        self._history: List[float] = []
        self._result: Optional[SimulationResult] = None
        self._state = SimulatorState.CONFIGURED

        logger.info(
            "configured: %d cells, electrons=%s, holes=%s",
            self._device.n_cells,
            self._carriers["n"].kind.value,
            self._carriers["p"].kind.value,
        )

    # ----------------------------
    # Properties
    # ----------------------------

    @property
    def state(self) -> SimulatorState:
        return self._state

    @property
    def config(self) -> SimulatorConfig:
        return copy.deepcopy(self._config)

    @property
    def device(self) -> Device:
        return self._device

    @property
    def geometry(self) -> DualBoxGeometry:
        return self._geometry

    @property
    def result(self) -> Optional[SimulationResult]:
        return self._result

    def carrier_equation(self, carrier: str) -> CarrierEquation:
        return self._carriers[carrier]

    # ----------------------------
    # Initial guesses
    # ----------------------------

    def set_initial_guess(self, name: str, values: Union[CellQuantity, np.ndarray]) -> None:
        """Copy `values` into the starting field `name` (potential, electron_density or hole_density)."""
        if self._state is not SimulatorState.CONFIGURED:
            raise RuntimeError(f"initial guesses can only be set before run(); state is {self._state.value}")

        arr = np.array(values.values if isinstance(values, CellQuantity) else values,
                       dtype=np.float64, copy=True)
        N = self._device.n_cells
        if arr.shape != (N,):
            raise ValueError(f"{name}: expected shape ({N},); got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise ValueError(f"{name}: initial guess must be finite")

        if name == POTENTIAL:
            self._psi = arr
        elif name == ELECTRON_DENSITY:
            self._n = arr
        elif name == HOLE_DENSITY:
            self._p = arr
        else:
            raise KeyError(f"Unknown quantity for an initial guess: {name}")
        logger.debug("initial guess set for %s", name)

    # ----------------------------
    # Gummel loop
    # ----------------------------

    def _poisson_step(self, psi: np.ndarray, n: np.ndarray, p: np.ndarray) -> np.ndarray:
        J, rhs = assemble_poisson(
            self._geometry, self._device, psi, n, p,
            psi_dirichlet=self._psi_dirichlet,
            V_T=self._V_T,
            linearize_n=self._carriers["n"].linearize,
            linearize_p=self._carriers["p"].linearize,
        )
        return psi + solve_linear_system(J, rhs, self._config.linear_solver)

    def _residual(
        self,
        psi: np.ndarray,
        dens: Dict[str, np.ndarray],
        prev: Dict[str, np.ndarray],
        cand: Dict[str, np.ndarray],
    ) -> float:
        parts = [
            poisson_residual(
                self._geometry, self._device, psi, dens["n"], dens["p"],
                psi_dirichlet=self._psi_dirichlet,
            )
        ]
        for c, other in (("n", "p"), ("p", "n")):
            parts.append(
                self._carriers[c].measure(
                    psi=psi, density=dens[c], other=dens[other], previous=prev[c], candidate=cand[c]
                )
            )
        return float(max(parts))

    def _pack(self) -> np.ndarray:
        return np.concatenate([self._psi, self._n, self._p])

    def _unpack(self, x: np.ndarray) -> None:
        self._psi, self._n, self._p = (np.array(v, copy=True) for v in np.split(x, 3))

    def _gummel_update(self, x: np.ndarray) -> np.ndarray:
        """One Gummel sweep: Poisson, then electrons, then holes against the new electrons."""
        psi, n, p = np.split(x, 3)
        psi_c = self._poisson_step(psi, n, p)
        n_c = self._carriers["n"].solve(psi_c, n, p)
        p_c = self._carriers["p"].solve(psi_c, p, n_c)
        return np.concatenate([psi_c, n_c, p_c])

    def _gummel_residual(self, x_old: np.ndarray, x_cand: np.ndarray, x_new: np.ndarray) -> float:
        _, n_old, p_old = np.split(x_old, 3)
        _, n_c, p_c = np.split(x_cand, 3)
        psi, n, p = np.split(x_new, 3)
        return self._residual(
            psi,
            dens={"n": n, "p": p},
            prev={"n": n_old, "p": p_old},
            cand={"n": n_c, "p": p_c},
        )

    def _record(self, it: int, x: np.ndarray, res: float) -> None:
        self._unpack(x)
        self._history.append(res)
        logger.info("Gummel iteration %3d: residual = %.3e", it, res)

    def run(self) -> SimulationResult:
        if self._state is not SimulatorState.CONFIGURED:
            raise RuntimeError(f"run() requires a configured simulator; state is {self._state.value}")

        self._state = SimulatorState.RUNNING
        nl = self._config.nonlinear_solver

        try:
            fp = damped_fixed_point(
                self._gummel_update,
                self._pack(),
                damping=float(nl.damping),
                threshold=float(nl.threshold),
                max_iters=int(nl.max_iters),
                residual=self._gummel_residual,
                callback=self._record,
            )
        except (LinearSolverError, NonlinearDivergedError):
            self._state = SimulatorState.FAILED
            self._result = SimulationResult(self._state, len(self._history), tuple(self._history))
            logger.error("Gummel iteration failed after %d iterations", len(self._history))
            raise

        state = SimulatorState.CONVERGED if fp.converged else SimulatorState.MAX_ITERATIONS_REACHED
        self._state = state
        self._result = SimulationResult(state, len(self._history), tuple(self._history))

        if state is SimulatorState.CONVERGED:
            logger.info("converged in %d iterations", self._result.iterations)
        else:
            logger.warning(
                "stopped after %d iterations without convergence (residual = %.3e)",
                self._result.iterations, self._result.residual,
            )
        return self._result

    # ----------------------------
    # Read-only results
    # ----------------------------

    def potential(self) -> CellQuantity:
        return CellQuantity(POTENTIAL, _UNITS[POTENTIAL], self._psi)

    def electron_density(self) -> CellQuantity:
        return CellQuantity(ELECTRON_DENSITY, _UNITS[ELECTRON_DENSITY], self._n)

    def hole_density(self) -> CellQuantity:
        return CellQuantity(HOLE_DENSITY, _UNITS[HOLE_DENSITY], self._p)

    def density(self, carrier: str) -> CellQuantity:
        if carrier == "n":
            return self.electron_density()
        if carrier == "p":
            return self.hole_density()
        raise ValueError(f"Unknown carrier: {carrier}")

    def distribution_function(self, carrier: str) -> Optional[DistributionFunction]:
        """Last SHE solution of `carrier`, or None when it does not use SHE (or before run())."""
        eq = self._carriers[carrier]
        return eq.distribution if isinstance(eq, SHECarrier) else None

    def electron_distribution_function(self) -> Optional[DistributionFunction]:
        return self.distribution_function("n")

    def hole_distribution_function(self) -> Optional[DistributionFunction]:
        return self.distribution_function("p")

    def quantities(self) -> Dict[str, Union[CellQuantity, DistributionFunction]]:
        out: Dict[str, Union[CellQuantity, DistributionFunction]] = {
            POTENTIAL: self.potential(),
            DENSITY_NAMES["n"]: self.electron_density(),
            DENSITY_NAMES["p"]: self.hole_density(),
        }
        for c in ("n", "p"):
            dist = self.distribution_function(c)
            if dist is not None:
                out[DISTRIBUTION_NAMES[c]] = dist
        return out
