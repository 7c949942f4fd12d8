from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

from .constants import Q, T_DEFAULT
from ..errors import InvalidConfigurationError


class EquationKind(Enum):
    """Transport equation solved for one carrier type."""
    NONE = "none"
    CONTINUITY = "continuity"
    SHE = "she"


LINEAR_SOLVERS = ("direct", "gmres", "bicgstab", "cg")


@dataclass
class ScatteringConfig:
    """
    Scattering mechanisms seen by the SHE equations.

    Strengths are relative to acoustic phonon scattering at k_B T.
    """
    acoustic_phonon: bool = True
    optical_phonon: bool = True
    ionized_impurity: bool = False
    optical_phonon_energy: float = 0.063 * Q   # [J]
    optical_phonon_strength: float = 1.0
    ionized_impurity_strength: float = 1.0     # at N_I = 1e24 m^-3

    def any_enabled(self) -> bool:
        return self.acoustic_phonon or self.optical_phonon or self.ionized_impurity


@dataclass
class NonlinearSolverConfig:
    max_iters: int = 100
    threshold: float = 1e-8     # on the relative residual
    damping: float = 1.0        # in (0, 1]


@dataclass
class LinearSolverConfig:
    solver: str = "direct"      # "direct" | "gmres" | "bicgstab" | "cg"
    max_iters: int = 1000
    tol: float = 1e-10
    argv: Tuple[str, ...] = ()  # solver-specific "-key value" passthrough


@dataclass
class SimulatorConfig:
    """
    Everything a simulator run needs besides the device.

    The object is meant to be edited freely by the caller; a simulator takes
    a deep copy when it is constructed, so later edits do not reach it.
    SHE parameters (max_expansion_order, energy_spacing, scattering) are only
    checked and used for carriers whose equation is EquationKind.SHE.
    """
    with_electrons: bool = True
    with_holes: bool = True
    electron_equation: EquationKind = EquationKind.CONTINUITY
    hole_equation: EquationKind = EquationKind.CONTINUITY

    max_expansion_order: int = 1
    energy_spacing: float = 0.031 * Q          # [J]

    temperature: float = T_DEFAULT             # [K]
    srh_recombination: bool = True

    scattering: ScatteringConfig = field(default_factory=ScatteringConfig)
    nonlinear_solver: NonlinearSolverConfig = field(default_factory=NonlinearSolverConfig)
    linear_solver: LinearSolverConfig = field(default_factory=LinearSolverConfig)

    def equation_for(self, carrier: str) -> EquationKind:
        """Effective equation kind for carrier "n" or "p" (NONE when the carrier is disabled)."""
        if carrier == "n":
            return self.electron_equation if self.with_electrons else EquationKind.NONE
        if carrier == "p":
            return self.hole_equation if self.with_holes else EquationKind.NONE
        raise ValueError(f"Unknown carrier: {carrier}")

    def uses_she(self) -> bool:
        return EquationKind.SHE in (self.equation_for("n"), self.equation_for("p"))

    def validate(self) -> None:
        """Raise InvalidConfigurationError on the first inconsistency found."""
        for name in ("electron_equation", "hole_equation"):
            if not isinstance(getattr(self, name), EquationKind):
                raise InvalidConfigurationError(f"{name} must be an EquationKind")

        if not self.temperature > 0.0:
            raise InvalidConfigurationError("temperature must be positive")

        nl = self.nonlinear_solver
        if not (0.0 < nl.damping <= 1.0):
            raise InvalidConfigurationError(f"damping must be in (0, 1]; got {nl.damping}")
        if int(nl.max_iters) < 0:
            raise InvalidConfigurationError("nonlinear max_iters must be >= 0")
        if not nl.threshold >= 0.0:
            raise InvalidConfigurationError("nonlinear threshold must be >= 0")

        ls = self.linear_solver
        if ls.solver not in LINEAR_SOLVERS:
            raise InvalidConfigurationError(
                f"Unknown linear solver: {ls.solver} (expected one of {LINEAR_SOLVERS})"
            )
        if int(ls.max_iters) < 1:
            raise InvalidConfigurationError("linear solver max_iters must be >= 1")
        if not ls.tol > 0.0:
            raise InvalidConfigurationError("linear solver tol must be positive")

        if self.uses_she():
            if int(self.max_expansion_order) < 1:
                raise InvalidConfigurationError(
                    f"SHE requires max_expansion_order >= 1; got {self.max_expansion_order}"
                )
            if not self.energy_spacing > 0.0:
                raise InvalidConfigurationError("SHE requires a positive energy_spacing")
            if not self.scattering.any_enabled():
                raise InvalidConfigurationError("SHE requires at least one scattering mechanism")
