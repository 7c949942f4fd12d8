"""
Operators: dual-box assembly, flux reconstruction, SHE source + linear solves.

Public API:
- DualBoxGeometry, assemble_poisson, assemble_continuity, bernoulli
- reconstruct_cell_vector, dual_box_flux_to_cell(s), outer_cell_normal_at_facet
- solve_dense (local), solve_linear_system (global sparse)
- SHEEquationSource
"""

# Assembly
from .assemble import (
    DualBoxGeometry,
    assemble_continuity,
    assemble_poisson,
    bernoulli,
    carrier_facet_flux,
    continuity_residual,
    electric_field_facet_flux,
    poisson_residual,
    slotboom_scale,
)

# Flux reconstruction
from .flux import (
    dual_box_flux_to_cell,
    dual_box_flux_to_cells,
    is_primary_cell_for_facet,
    outer_cell_normal_at_facet,
    reconstruct_cell_vector,
)

# Solves
from .linalg import solve_dense
from .solve import compute_residual, parse_solver_argv, solve_linear_system

# SHE (imports assemble + solve, so keep it last)
from .she import SHEEquationSource

__all__ = [
    # Assembly
    "DualBoxGeometry",
    "assemble_poisson",
    "poisson_residual",
    "assemble_continuity",
    "continuity_residual",
    "bernoulli",
    "carrier_facet_flux",
    "electric_field_facet_flux",
    "slotboom_scale",

    # Flux reconstruction
    "outer_cell_normal_at_facet",
    "is_primary_cell_for_facet",
    "reconstruct_cell_vector",
    "dual_box_flux_to_cell",
    "dual_box_flux_to_cells",

    # Solves
    "solve_dense",
    "solve_linear_system",
    "parse_solver_argv",
    "compute_residual",

    # SHE
    "SHEEquationSource",
]
