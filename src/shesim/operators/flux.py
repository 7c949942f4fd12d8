# operators/flux.py
"""
Reconstruction of cell-centred vectors from facet-normal flux samples.

Every facet carries one scalar flux sample, signed with respect to the
facet's intrinsic orientation (from its first coboundary cell to the second).
For a cell with boundary facets f and outward unit normals n_f, the cell
vector v minimizes

    sum_f (n_f . v - s_f flux_f)^2

where s_f = +1 if the cell is the primary (first) cell of f and -1 otherwise.
The normal equations  (sum_f n_f n_f^T) v = sum_f s_f flux_f n_f  are solved
with the dense local solver.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Union

import numpy as np

from ..core.mesh import Mesh, Segment
from ..errors import SingularLocalSystemError, UnsupportedDimensionalityError
from .linalg import solve_dense

logger = logging.getLogger(__name__)

FacetFluxAccessor = Callable[[int], float]
CellVectorSetter = Callable[[int, np.ndarray], None]
PrimaryPredicate = Callable[[Mesh, int, int], bool]
FacetPredicate = Callable[[int], bool]


# ============================
# Facet orientation
# ============================

def _check_supported(mesh: Mesh, operation: str) -> None:
    if mesh.cell_dim != 1:
        raise UnsupportedDimensionalityError(operation, mesh.cell_dim, mesh.geo_dim)


def outer_cell_normal_at_facet(mesh: Mesh, cell: int, facet: int) -> np.ndarray:
    """
    Outward unit normal of `cell` at its boundary facet `facet` (geo_dim vector).

    Only line cells are supported: the normal is +e_0 if the facet lies ahead
    of the cell centroid along the first coordinate and -e_0 otherwise.
    """
    _check_supported(mesh, "outer_cell_normal_at_facet")

    x_cell = mesh.centroid(mesh.cell_dim, cell)
    x_facet = mesh.centroid(mesh.facet_dim, facet)

    n = np.zeros(mesh.geo_dim, dtype=np.float64)
    n[0] = 1.0 if x_facet[0] > x_cell[0] else -1.0
    return n


def is_primary_cell_for_facet(mesh: Mesh, cell: int, facet: int) -> bool:
    """True if `cell` is the first coboundary cell of `facet` (the facet's orientation origin)."""
    cob = mesh.coboundary_elements(mesh.facet_dim, facet, mesh.cell_dim)
    return cob.size > 0 and int(cob[0]) == int(cell)


# ============================
# Per-cell reconstruction
# ============================

def reconstruct_cell_vector(
    mesh: Mesh,
    cell: int,
    facet_flux: FacetFluxAccessor,
    *,
    primary: PrimaryPredicate = is_primary_cell_for_facet,
    sampled: Optional[FacetPredicate] = None,
) -> np.ndarray:
    """
    Least-squares cell vector reproducing the facet-normal flux samples of `cell`.

    Only the cell's own boundary facets are used, restricted to those for
    which `sampled(facet)` is true when a predicate is given. A singular
    normal-equation matrix (fewer than geo_dim independent sampled normals)
    raises SingularLocalSystemError naming the cell and its facets.
    """
    _check_supported(mesh, "reconstruct_cell_vector")

    facets = mesh.boundary_elements(cell, mesh.facet_dim)
    gd = mesh.geo_dim
    M = np.zeros((gd, gd), dtype=np.float64)
    b = np.zeros(gd, dtype=np.float64)

    for f in facets:
        f = int(f)
        if sampled is not None and not sampled(f):
            continue
        normal = outer_cell_normal_at_facet(mesh, cell, f)
        value = float(facet_flux(f))
        if not primary(mesh, cell, f):
            value = -value
        M += np.outer(normal, normal)
        b += normal * value

    try:
        return solve_dense(M, b)
    except SingularLocalSystemError as exc:
        raise SingularLocalSystemError(
            f"flux reconstruction failed: {exc}", cell=int(cell), facets=facets.tolist()
        ) from exc


def dual_box_flux_to_cell(
    mesh: Mesh,
    cell: int,
    cell_setter: CellVectorSetter,
    facet_flux: FacetFluxAccessor,
    *,
    primary: PrimaryPredicate = is_primary_cell_for_facet,
    sampled: Optional[FacetPredicate] = None,
) -> np.ndarray:
    """Reconstruct one cell vector and write it through `cell_setter`."""
    v = reconstruct_cell_vector(mesh, cell, facet_flux, primary=primary, sampled=sampled)
    cell_setter(int(cell), v)
    return v


def dual_box_flux_to_cells(
    mesh: Mesh,
    cell_setter: CellVectorSetter,
    facet_flux: FacetFluxAccessor,
    *,
    cells: Optional[Union[Segment, Iterable[int]]] = None,
    primary: PrimaryPredicate = is_primary_cell_for_facet,
    sampled: Optional[FacetPredicate] = None,
) -> int:
    """
    Batch reconstruction over the whole mesh, a Segment, or an explicit cell list.

    The dimensionality is checked before any cell is written, so an
    unsupported mesh leaves the target field untouched. Returns the number of
    cells written.
    """
    _check_supported(mesh, "dual_box_flux_to_cells")

    if cells is None:
        ids = mesh.cells()
    elif isinstance(cells, Segment):
        ids = cells.cells
    else:
        ids = [int(c) for c in cells]

    count = 0
    for c in ids:
        dual_box_flux_to_cell(mesh, c, cell_setter, facet_flux, primary=primary, sampled=sampled)
        count += 1

    logger.debug("reconstructed %d cell vectors", count)
    return count
