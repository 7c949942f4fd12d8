from __future__ import annotations

from dataclasses import dataclass

SEMICONDUCTOR = "semiconductor"
INSULATOR = "insulator"
METAL = "metal"

_KINDS = (SEMICONDUCTOR, INSULATOR, METAL)


@dataclass(frozen=True)
class Material:
    """
    Bulk material parameters (SI units).

    Carrier parameters are only used where kind == "semiconductor".
    """
    name: str
    kind: str
    eps_rel: float
    ni: float = 0.0         # intrinsic density [m^-3]
    mu_n: float = 0.0       # electron mobility [m^2/(V s)]
    mu_p: float = 0.0       # hole mobility [m^2/(V s)]
    tau_n: float = 1e-7     # SRH electron lifetime [s]
    tau_p: float = 1e-7     # SRH hole lifetime [s]

    def __post_init__(self) -> None:
        if self.kind not in _KINDS:
            raise ValueError(f"Unknown material kind: {self.kind}")
        if self.eps_rel <= 0.0:
            raise ValueError("eps_rel must be positive.")
        if self.kind == SEMICONDUCTOR:
            if self.ni <= 0.0:
                raise ValueError("semiconductors need ni > 0.")
            if self.mu_n <= 0.0 or self.mu_p <= 0.0:
                raise ValueError("semiconductors need positive mobilities.")
            if self.tau_n <= 0.0 or self.tau_p <= 0.0:
                raise ValueError("semiconductors need positive SRH lifetimes.")

    @property
    def is_semiconductor(self) -> bool:
        return self.kind == SEMICONDUCTOR


def si() -> Material:
    """Silicon at 300 K."""
    return Material(name="Si", kind=SEMICONDUCTOR, eps_rel=11.7, ni=1.0e16,
                    mu_n=0.1430, mu_p=0.0460, tau_n=1e-7, tau_p=1e-7)


def metal() -> Material:
    return Material(name="metal", kind=METAL, eps_rel=1.0)


def sio2() -> Material:
    return Material(name="SiO2", kind=INSULATOR, eps_rel=3.9)


def hfo2() -> Material:
    return Material(name="HfO2", kind=INSULATOR, eps_rel=22.0)
