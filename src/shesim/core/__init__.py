"""
Core: problem definition (mesh, materials, device, configs, quantities, energy grid).
"""

from .config import (
    EquationKind,
    LinearSolverConfig,
    NonlinearSolverConfig,
    ScatteringConfig,
    SimulatorConfig,
)
from .device import Device
from .energy import EnergyGrid
from .materials import Material, hfo2, metal, si, sio2
from .mesh import Mesh, Segment
from .quantity import (
    POTENTIAL,
    ELECTRON_DENSITY,
    HOLE_DENSITY,
    ELECTRON_DISTRIBUTION_FUNCTION,
    HOLE_DISTRIBUTION_FUNCTION,
    CellQuantity,
    CellVectorField,
    DistributionFunction,
    FacetQuantity,
)

__all__ = [
    # config.py
    "EquationKind",
    "LinearSolverConfig",
    "NonlinearSolverConfig",
    "ScatteringConfig",
    "SimulatorConfig",
    # mesh / device
    "Mesh",
    "Segment",
    "Device",
    "Material",
    "si",
    "metal",
    "sio2",
    "hfo2",
    # quantities
    "POTENTIAL",
    "ELECTRON_DENSITY",
    "HOLE_DENSITY",
    "ELECTRON_DISTRIBUTION_FUNCTION",
    "HOLE_DISTRIBUTION_FUNCTION",
    "CellQuantity",
    "CellVectorField",
    "DistributionFunction",
    "FacetQuantity",
    "EnergyGrid",
]
