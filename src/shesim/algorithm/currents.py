# algorithm/currents.py
from __future__ import annotations

import numpy as np

from ..core.constants import Q
from ..core.device import Device
from ..core.mesh import Segment
from ..core.quantity import CellVectorField, FacetQuantity
from ..operators.assemble import electric_field_facet_flux
from ..operators.flux import dual_box_flux_to_cells
from .gummel import Simulator


def facet_current_density(simulator: Simulator, carrier: str) -> FacetQuantity:
    """
    Electric current density per facet [A/m^2], oriented from the facet's
    first coboundary cell to the second.

    J_n = -q Gamma_n and J_p = +q Gamma_p, with the particle flux Gamma from
    the carrier's own transport model (SG or SHE). Frozen carriers carry no current.
    """
    eq = simulator.carrier_equation(carrier)
    psi = simulator.potential().values
    own = simulator.density(carrier).values
    gamma = eq.facet_flux(psi, own)
    sign = -Q if carrier == "n" else Q
    name = "electron_current_density" if carrier == "n" else "hole_current_density"
    return FacetQuantity(name, "A/m^2", sign * gamma)


def terminal_current(
    device: Device,
    facet_current: FacetQuantity,
    inner_segment: Segment,
    contact_segment: Segment,
) -> float:
    """
    Current through the facets shared by `inner_segment` and `contact_segment` [A]
    (per unit depth in 2D, per unit area in 1D), positive from the inner
    segment into the contact.
    """
    mesh = device.mesh
    fd, cd = mesh.facet_dim, mesh.cell_dim
    inner = set(inner_segment.cells)
    contact = set(contact_segment.cells)
    J = facet_current.values

    total = 0.0
    seen = set()
    for cell in inner_segment.cells:
        for f in mesh.boundary_elements(cell, fd):
            f = int(f)
            if f in seen:
                continue
            cob = mesh.coboundary_elements(fd, f, cd)
            if cob.size != 2:
                continue
            a, b = int(cob[0]), int(cob[1])
            if a in inner and b in contact:
                total += J[f] * mesh.measure(fd, f)
            elif a in contact and b in inner:
                total -= J[f] * mesh.measure(fd, f)
            seen.add(f)
    return float(total)


def _sampled_facets(simulator: Simulator):
    """
    Facets that carry a flux sample for reconstruction.

    The outer (domain-boundary) facet of a contact cell leads into the external
    circuit; the assembled fluxes hold no value there, so it is left out
    instead of being read as a zero flux.
    """
    facet_cells = simulator.geometry.facet_cells
    contact = simulator.device.is_contact

    def sampled(f: int) -> bool:
        a, b = facet_cells[f]
        return b >= 0 or not contact[a]

    return sampled


def cell_current_vectors(simulator: Simulator, carrier: str) -> CellVectorField:
    """
    Cell-centred current density vectors reconstructed from the facet currents.

    Contact cells are reconstructed from their interior facets only.
    """
    mesh = simulator.device.mesh
    facet_current = facet_current_density(simulator, carrier)
    field = CellVectorField(facet_current.name, mesh.n_cells, mesh.geo_dim, unit="A/m^2")
    dual_box_flux_to_cells(
        mesh, field.setter(), facet_current.accessor(), sampled=_sampled_facets(simulator)
    )
    return field


def cell_electric_field(simulator: Simulator) -> CellVectorField:
    """Cell-centred electric field [V/m] reconstructed from the facet-normal field (contact cells as above)."""
    mesh = simulator.device.mesh
    E = FacetQuantity(
        "electric_field", "V/m",
        electric_field_facet_flux(simulator.geometry, simulator.potential().values),
    )
    field = CellVectorField(E.name, mesh.n_cells, mesh.geo_dim, unit=E.unit)
    dual_box_flux_to_cells(mesh, field.setter(), E.accessor(), sampled=_sampled_facets(simulator))
    return field
