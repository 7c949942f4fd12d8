"""
shesim: semiconductor device simulation on simplex meshes.

We keep three sibling subpackages:
- core: mesh, device, materials, configs, quantities
- operators: dual-box assembly, flux reconstruction, SHE source, linear solves
- algorithm: Gummel iteration, carrier equations, currents
"""

from .core import (
    Device,
    EquationKind,
    Mesh,
    Segment,
    SimulatorConfig,
)
from .algorithm import Simulator, SimulatorState, SimulationResult

__version__ = "0.1.0"

__all__ = [
    "core",
    "operators",
    "algorithm",
    "Device",
    "EquationKind",
    "Mesh",
    "Segment",
    "SimulatorConfig",
    "Simulator",
    "SimulatorState",
    "SimulationResult",
]
