# operators/assemble.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import scipy.sparse as sp

from ..core.constants import Q, TINY
from ..core.device import Device
from ..core.mesh import Mesh


# ============================
# Dual-box geometry
# ============================

@dataclass(frozen=True)
class DualBoxGeometry:
    """
    Finite-volume data of a mesh: one control volume per cell, fluxes on facets.

    facet_cells[f] = (a, b) lists the coboundary cells of facet f in
    registration order (b = -1 on the domain boundary). Facet quantities are
    oriented a -> b. The two-point flux between a and b uses the distance of
    the two cell centroids.
    """
    n_cells: int
    facet_cells: np.ndarray     # (n_facets, 2) int
    facet_area: np.ndarray      # (n_facets,)
    facet_distance: np.ndarray  # (n_facets,), nan on boundary facets
    cell_volume: np.ndarray     # (n_cells,)
    interior: np.ndarray        # ids of facets with two cells

    @classmethod
    def from_mesh(cls, mesh: Mesh) -> "DualBoxGeometry":
        fd, cd = mesh.facet_dim, mesh.cell_dim
        nf = mesh.n_facets

        facet_cells = np.full((nf, 2), -1, dtype=np.int64)
        facet_area = np.empty(nf, dtype=np.float64)
        facet_distance = np.full(nf, np.nan, dtype=np.float64)
        centroids = mesh.cell_centroids()

        for f in range(nf):
            cob = mesh.coboundary_elements(fd, f, cd)
            if cob.size > 2:
                raise ValueError(f"facet {f} is shared by {cob.size} cells (non-manifold mesh)")
            facet_cells[f, : cob.size] = cob
            facet_area[f] = mesh.measure(fd, f)
            if cob.size == 2:
                facet_distance[f] = float(np.linalg.norm(centroids[cob[1]] - centroids[cob[0]]))

        cell_volume = np.array([mesh.measure(cd, c) for c in range(mesh.n_cells)], dtype=np.float64)
        interior = np.flatnonzero(facet_cells[:, 1] >= 0)

        for arr in (facet_cells, facet_area, facet_distance, cell_volume, interior):
            arr.setflags(write=False)

        return cls(
            n_cells=mesh.n_cells,
            facet_cells=facet_cells,
            facet_area=facet_area,
            facet_distance=facet_distance,
            cell_volume=cell_volume,
            interior=interior,
        )

    @property
    def n_facets(self) -> int:
        return int(self.facet_cells.shape[0])

    def interior_pairs(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(a, b, A_f/d_f) for every interior facet."""
        f = self.interior
        a = self.facet_cells[f, 0]
        b = self.facet_cells[f, 1]
        return a, b, self.facet_area[f] / self.facet_distance[f]


def _harmonic_mean(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    s = x + y
    out = np.zeros_like(s)
    nz = s > 0.0
    out[nz] = 2.0 * x[nz] * y[nz] / s[nz]
    return out


def _pair_matrix(
    n: int,
    a: np.ndarray,
    b: np.ndarray,
    aa: np.ndarray,
    ab: np.ndarray,
    ba: np.ndarray,
    bb: np.ndarray,
    fixed: np.ndarray,
    diag: np.ndarray | None = None,
) -> sp.csr_matrix:
    """
    Scatter 2x2 facet blocks [[aa, ab], [ba, bb]] into an n x n matrix.

    Rows flagged in `fixed` are replaced by identity rows.
    """
    rows = np.concatenate([a, a, b, b])
    cols = np.concatenate([a, b, a, b])
    data = np.concatenate([aa, ab, ba, bb])

    if diag is not None:
        rows = np.concatenate([rows, np.arange(n)])
        cols = np.concatenate([cols, np.arange(n)])
        data = np.concatenate([data, diag])

    keep = ~fixed[rows]
    rows, cols, data = rows[keep], cols[keep], data[keep]

    fixed_ids = np.flatnonzero(fixed)
    rows = np.concatenate([rows, fixed_ids])
    cols = np.concatenate([cols, fixed_ids])
    data = np.concatenate([data, np.ones(fixed_ids.size)])

    return sp.coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()


def _relative_residual(r: np.ndarray, scale: np.ndarray, free: np.ndarray) -> float:
    """max |r| / max scale over the free rows."""
    if not np.any(free):
        return 0.0
    num = float(np.max(np.abs(r[free])))
    den = float(np.max(np.abs(scale[free])))
    return num / (den + TINY)


def _cellwise_relative_residual(r: np.ndarray, scale: np.ndarray, free: np.ndarray) -> float:
    """max_i |r_i| / scale_i over the free rows; every cell counts, however small its values."""
    if not np.any(free):
        return 0.0
    return float(np.max(np.abs(r[free]) / (np.abs(scale[free]) + TINY)))


# ============================
# Poisson
# ============================

def _space_charge(device: Device, n: np.ndarray, p: np.ndarray) -> np.ndarray:
    """rho / q = p - n + C on semiconductor cells, 0 elsewhere [m^-3]."""
    semi = device.is_semiconductor
    return np.where(semi, p - n + device.net_doping, 0.0)


def _poisson_terms(
    geometry: DualBoxGeometry,
    device: Device,
    psi: np.ndarray,
    n: np.ndarray,
    p: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Flux part  sum_f eps_f A_f/d_f (psi_i - psi_j)  and charge part  vol_i q rho_i/q."""
    a, b, c = geometry.interior_pairs()
    eps = device.permittivity
    w = c * _harmonic_mean(eps[a], eps[b])

    flux = np.zeros(geometry.n_cells)
    dpsi = psi[a] - psi[b]
    np.add.at(flux, a, w * dpsi)
    np.add.at(flux, b, -w * dpsi)

    charge = geometry.cell_volume * Q * _space_charge(device, n, p)
    return flux, charge


def assemble_poisson(
    geometry: DualBoxGeometry,
    device: Device,
    psi: np.ndarray,
    n: np.ndarray,
    p: np.ndarray,
    *,
    psi_dirichlet: np.ndarray,
    V_T: float,
    linearize_n: bool = True,
    linearize_p: bool = True,
) -> Tuple[sp.csr_matrix, np.ndarray]:
    """
    Linear system  J d = rhs  for one Gummel/Newton update of the potential.

    Residual on free cells:
        F_i = sum_f eps_f A_f/d_f (psi_i - psi_j) - vol_i q (p_i - n_i + C_i)
    Carriers with an active transport equation are linearized as
        n(psi + d) ~ n (1 + d/V_T),  p(psi + d) ~ p (1 - d/V_T)
    which adds vol_i q (n_i + p_i)/V_T to the diagonal. Frozen carriers
    contribute a fixed charge only.

    Contact cells (finite psi_dirichlet) get identity rows with
    rhs = psi_dirichlet - psi.
    """
    N = geometry.n_cells
    if psi.shape != (N,) or n.shape != (N,) or p.shape != (N,):
        raise ValueError(f"psi, n, p must have shape ({N},)")

    fixed = np.isfinite(psi_dirichlet)

    a, b, c = geometry.interior_pairs()
    eps = device.permittivity
    w = c * _harmonic_mean(eps[a], eps[b])

    semi = device.is_semiconductor
    dens = np.zeros(N)
    if linearize_n:
        dens += n
    if linearize_p:
        dens += p
    diag = np.where(semi, geometry.cell_volume * Q * dens / float(V_T), 0.0)

    J = _pair_matrix(N, a, b, w, -w, -w, w, fixed, diag=diag)

    flux, charge = _poisson_terms(geometry, device, psi, n, p)
    rhs = -(flux - charge)
    rhs[fixed] = psi_dirichlet[fixed] - psi[fixed]
    return J, rhs


def poisson_residual(
    geometry: DualBoxGeometry,
    device: Device,
    psi: np.ndarray,
    n: np.ndarray,
    p: np.ndarray,
    *,
    psi_dirichlet: np.ndarray,
) -> float:
    """
    Relative Poisson residual over free cells:
        max|F_i| / max(sum_f w_f (|psi_i| + |psi_j|) + vol_i q (|p_i| + |n_i| + |C_i|))
    The scale uses absolute values of every term, so round-off in a nearly
    neutral, field-free region does not show up as an O(1) residual.
    """
    flux, charge = _poisson_terms(geometry, device, psi, n, p)
    free = ~np.isfinite(psi_dirichlet)

    a, b, c = geometry.interior_pairs()
    eps = device.permittivity
    w = c * _harmonic_mean(eps[a], eps[b])
    mag = w * (np.abs(psi[a]) + np.abs(psi[b]))
    scale = np.zeros(geometry.n_cells)
    np.add.at(scale, a, mag)
    np.add.at(scale, b, mag)

    semi = device.is_semiconductor
    dens = np.abs(p) + np.abs(n) + np.abs(device.net_doping)
    scale += np.where(semi, geometry.cell_volume * Q * dens, 0.0)

    return _relative_residual(flux - charge, scale, free)


# ============================
# Scharfetter-Gummel continuity
# ============================

def bernoulli(x: np.ndarray | float) -> np.ndarray | float:
    """
    Numerically stable Bernoulli function:
        B(x) = x / (exp(x) - 1)
    with a series expansion for small |x|.
    """
    x_arr = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x_arr)

    small = np.abs(x_arr) < 1.0e-4
    xs = x_arr[small]
    out[small] = 1.0 - xs / 2.0 + xs * xs / 12.0 - (xs ** 4) / 720.0

    big = ~small
    xb = x_arr[big]
    out[big] = xb / np.expm1(xb)

    return out if isinstance(x, np.ndarray) else float(out)


def _carrier_sign(carrier: str) -> float:
    if carrier == "n":
        return 1.0
    if carrier == "p":
        return -1.0
    raise ValueError(f"Unknown carrier: {carrier}")


def carrier_cells(device: Device) -> np.ndarray:
    """Cells that hold carriers: semiconductors and contacts."""
    return device.is_semiconductor | device.is_contact


def _sg_coefficients(
    geometry: DualBoxGeometry,
    device: Device,
    carrier: str,
    psi: np.ndarray,
    V_T: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Per interior facet a -> b, the SG particle flux is
        Gamma_ab = g_a u_a - g_b u_b
    with, for electrons (s = +1) and holes (s = -1),
        g_a = D_f A_f/d_f B(-s Delta),  g_b = D_f A_f/d_f B(s Delta),
        Delta = (psi_b - psi_a) / V_T.
    Facets touching a cell without carriers get zero coefficients.
    Returns (facet ids, a, b, g_a, g_b).
    """
    s = _carrier_sign(carrier)
    f = geometry.interior
    a, b, c = geometry.interior_pairs()

    mu = device.mobility(carrier)
    D = float(V_T) * _harmonic_mean(mu[a], mu[b])

    has = carrier_cells(device)
    coupled = has[a] & has[b]

    delta = s * (psi[b] - psi[a]) / float(V_T)
    k = np.where(coupled, D * c, 0.0)
    return f, a, b, k * bernoulli(-delta), k * bernoulli(delta)


def _srh_terms(
    geometry: DualBoxGeometry,
    device: Device,
    carrier: str,
    u: np.ndarray,
    v: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    SRH recombination R = (u v - ni^2) / (tau_p (n + ni) + tau_n (p + ni)),
    linearized in the unknown carrier u with v and the denominator frozen.
    Returns (diagonal coefficient, rhs) per cell, both scaled by the cell volume.
    """
    ni = device.intrinsic_density
    tau_n = device.lifetime("n")
    tau_p = device.lifetime("p")
    n, p = (u, v) if carrier == "n" else (v, u)
    den = tau_p * (n + ni) + tau_n * (p + ni)

    semi = device.is_semiconductor & (den > 0.0)
    diag = np.zeros(geometry.n_cells)
    rhs = np.zeros(geometry.n_cells)
    vol = geometry.cell_volume
    diag[semi] = vol[semi] * v[semi] / den[semi]
    rhs[semi] = vol[semi] * ni[semi] ** 2 / den[semi]
    return diag, rhs


def slotboom_scale(carrier: str, psi: np.ndarray, V_T: float) -> np.ndarray:
    """
    Column scale exp(s psi / V_T) (s = +1 for electrons, -1 for holes), normalized to max 1.

    Substituting u = scale * y turns the SG unknowns into Slotboom variables,
    which are O(1) in equilibrium wherever the density itself is.
    """
    s = _carrier_sign(carrier)
    e = s * np.asarray(psi, dtype=np.float64) / float(V_T)
    return np.exp(np.maximum(e - np.max(e), -700.0))


def continuity_dirichlet(device: Device, carrier: str) -> np.ndarray:
    """Fixed carrier densities: equilibrium on contacts, 0 where carriers do not exist, NaN elsewhere."""
    n_eq, p_eq = device.equilibrium_densities()
    u_eq = n_eq if carrier == "n" else p_eq
    out = np.full(device.n_cells, np.nan)
    contact = device.is_contact
    out[contact] = u_eq[contact]
    out[~carrier_cells(device)] = 0.0
    return out


def assemble_continuity(
    geometry: DualBoxGeometry,
    device: Device,
    carrier: str,
    psi: np.ndarray,
    u: np.ndarray,
    v: np.ndarray,
    *,
    V_T: float,
    srh: bool = True,
) -> Tuple[sp.csr_matrix, np.ndarray]:
    """
    Steady-state continuity for carrier u ("n" or "p") at fixed potential:
        sum_f Gamma_f + vol R = 0
    with SG fluxes and (optionally) SRH recombination linearized about the
    current densities u (own carrier) and v (other carrier).
    """
    N = geometry.n_cells
    fixed_values = continuity_dirichlet(device, carrier)
    fixed = np.isfinite(fixed_values)

    _, a, b, ga, gb = _sg_coefficients(geometry, device, carrier, psi, V_T)

    if srh:
        diag, rhs = _srh_terms(geometry, device, carrier, u, v)
    else:
        diag, rhs = np.zeros(N), np.zeros(N)

    A = _pair_matrix(N, a, b, ga, -gb, -ga, gb, fixed, diag=diag)
    rhs = rhs.copy()
    rhs[fixed] = fixed_values[fixed]
    return A, rhs


def continuity_residual(
    geometry: DualBoxGeometry,
    device: Device,
    carrier: str,
    psi: np.ndarray,
    u: np.ndarray,
    v: np.ndarray,
    *,
    V_T: float,
    srh: bool = True,
) -> float:
    """
    Cell-wise relative residual  max_i |A u - b|_i / (|A| |u| + |b|)_i  over free cells.

    Densities span many decades across a device, so each cell is measured
    against its own flux and recombination terms.
    """
    A, rhs = assemble_continuity(geometry, device, carrier, psi, u, v, V_T=V_T, srh=srh)
    r = A @ u - rhs
    scale = abs(A) @ np.abs(u) + np.abs(rhs)
    free = ~np.isfinite(continuity_dirichlet(device, carrier))
    return _cellwise_relative_residual(r, scale, free)


# ============================
# Facet flux samples
# ============================

def carrier_facet_flux(
    geometry: DualBoxGeometry,
    device: Device,
    carrier: str,
    psi: np.ndarray,
    u: np.ndarray,
    *,
    V_T: float,
) -> np.ndarray:
    """SG particle flux density per facet [m^-2 s^-1], oriented a -> b; 0 on boundary facets."""
    f, a, b, ga, gb = _sg_coefficients(geometry, device, carrier, psi, V_T)
    out = np.zeros(geometry.n_facets)
    out[f] = (ga * u[a] - gb * u[b]) / geometry.facet_area[f]
    return out


def electric_field_facet_flux(geometry: DualBoxGeometry, psi: np.ndarray) -> np.ndarray:
    """Normal electric field per facet  E_f = -(psi_b - psi_a)/d_f  [V/m]; 0 on boundary facets."""
    f = geometry.interior
    a, b, _ = geometry.interior_pairs()
    out = np.zeros(geometry.n_facets)
    out[f] = -(psi[b] - psi[a]) / geometry.facet_distance[f]
    return out
