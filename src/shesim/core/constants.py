"""
Physical constants and numerical tolerances (SI units).

Module-level values only; nothing here is mutable.
"""
from __future__ import annotations

Q = 1.602176634e-19        # elementary charge [C]
K_B = 1.380649e-23         # Boltzmann constant [J/K]
EPS0 = 8.8541878128e-12    # vacuum permittivity [F/m]
M_E = 9.1093837015e-31     # electron rest mass [kg]

T_DEFAULT = 300.0          # lattice temperature [K]

# Relative pivot threshold for the per-cell dense solves
LOCAL_SOLVE_RTOL = 1e-12

# Negative scaled densities beyond this fraction of the largest one are a failed solve,
# smaller ones are roundoff and read as 0
NEGATIVE_DENSITY_RTOL = 1e-10

# Guards denominators in relative residuals
TINY = 1e-300


def thermal_voltage(T: float) -> float:
    """V_T = k_B T / q [V]."""
    return float(K_B * float(T) / Q)


def thermal_energy(T: float) -> float:
    """k_B T [J]."""
    return float(K_B * float(T))
