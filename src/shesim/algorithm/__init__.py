"""
Algorithms: Gummel self-consistency loop, carrier equation variants, damping, currents.
"""

from .fixed_point import (
    FixedPointResult,
    apply_damping,
    damped_fixed_point,
)

from .carriers import (
    ContinuityCarrier,
    FrozenCarrier,
    SHECarrier,
    build_carrier,
)

from .gummel import (
    SimulationResult,
    Simulator,
    SimulatorState,
)

from .currents import (
    cell_current_vectors,
    cell_electric_field,
    facet_current_density,
    terminal_current,
)

__all__ = [
    # fixed_point.py
    "FixedPointResult",
    "apply_damping",
    "damped_fixed_point",
    # carriers.py
    "FrozenCarrier",
    "ContinuityCarrier",
    "SHECarrier",
    "build_carrier",
    # gummel.py
    "Simulator",
    "SimulatorState",
    "SimulationResult",
    # currents.py
    "facet_current_density",
    "terminal_current",
    "cell_current_vectors",
    "cell_electric_field",
]
