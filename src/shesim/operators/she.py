# operators/she.py
"""
First-order spherical-harmonics-expansion (SHE) equation source.

Unknowns are the isotropic coefficients f(x_i, H_k) on a total-energy grid
H_k (the "H-transform": along a fixed H, moving in space trades potential
for kinetic energy, so the electric field enters only through the band edge
U(x) = -s q psi(x), s = +1 for electrons and -1 for holes).

Per carrier cell i and active level k the balance reads

    sum_f G_fk (f_ik - f_jk) + vol_i S_ik = 0

with the energy-resolved facet coupling

    G_fk = A_f/d_f * D_f * n_ref * w_fk * g(eps_fk) / <g>_f,
    g(eps) = (eps/kT)^(3/2) / rate(eps)

and S the inelastic optical-phonon balance between levels k and k +- m.
The normalization by the Maxwellian average <g>_f makes the low-field
diffusivity equal to the drift-diffusion one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.sparse as sp

from ..core.config import LinearSolverConfig, SimulatorConfig
from ..core.constants import M_E, Q, TINY, thermal_energy, thermal_voltage
from ..core.device import Device
from ..core.energy import EnergyGrid, dos_weights, maxwellian
from ..core.quantity import DistributionFunction
from ..errors import InvalidConfigurationError
from .assemble import DualBoxGeometry, _harmonic_mean, carrier_cells
from .solve import solve_linear_system

logger = logging.getLogger(__name__)

# conductivity effective mass used to turn mobilities into a reference scattering rate
M_CONDUCTIVITY = 0.26 * M_E

# reference ionized impurity density for ScatteringConfig.ionized_impurity_strength [m^-3]
N_IMPURITY_REF = 1.0e24

# lower bound on the dimensionless momentum relaxation rate
RATE_FLOOR = 1.0e-3


@dataclass(frozen=True)
class SHESystem:
    """Assembled SHE system on one energy grid."""
    A: sp.csr_matrix
    rhs: np.ndarray
    grid: EnergyGrid
    band_edge: np.ndarray   # (n_cells,)
    weights: np.ndarray     # (n_cells, n_levels)
    active: np.ndarray      # (n_cells, n_levels)


class SHEEquationSource:
    """
    Assembles and solves the first-order SHE for one carrier type at a given potential.

    Only max_expansion_order == 1 is available; higher orders raise
    InvalidConfigurationError on construction.
    """

    def __init__(
        self,
        geometry: DualBoxGeometry,
        device: Device,
        carrier: str,
        config: SimulatorConfig,
    ) -> None:
        if carrier not in ("n", "p"):
            raise ValueError(f"Unknown carrier: {carrier}")
        if int(config.max_expansion_order) != 1:
            raise InvalidConfigurationError(
                f"the built-in SHE source only supports max_expansion_order=1; "
                f"got {config.max_expansion_order}"
            )
        if not config.scattering.any_enabled():
            raise InvalidConfigurationError("SHE requires at least one scattering mechanism")

        self.geometry = geometry
        self.device = device
        self.carrier = carrier
        self.sign = 1.0 if carrier == "n" else -1.0
        self.expansion_order = int(config.max_expansion_order)

        self.kT = thermal_energy(config.temperature)
        self.V_T = thermal_voltage(config.temperature)
        self.spacing = float(config.energy_spacing)
        self.scattering = config.scattering
        self.linear_solver: LinearSolverConfig = config.linear_solver

        self.has_carriers = carrier_cells(device)
        self.contact = device.is_contact
        self.n_ref = device.reference_ni()

        mu = device.mobility(carrier)
        self.diffusivity = self.V_T * mu
        self.impurity = device.doping_n + device.doping_p

        n_eq, p_eq = device.equilibrium_densities()
        self.contact_density = n_eq if carrier == "n" else p_eq

        # optical phonon rate per cell, scaled from the mobility
        nu = np.zeros(device.n_cells)
        has_mu = mu > 0.0
        nu[has_mu] = Q / (M_CONDUCTIVITY * mu[has_mu])
        self.optical_rate = float(self.scattering.optical_phonon_strength) * nu

    # ----------------------------
    # Energy-space ingredients
    # ----------------------------

    def band_edge(self, psi: np.ndarray) -> np.ndarray:
        """U(x) = -s q psi(x) [J]."""
        return -self.sign * Q * np.asarray(psi, dtype=np.float64)

    def energy_grid(self, psi: np.ndarray) -> EnergyGrid:
        U = self.band_edge(psi)
        return EnergyGrid.from_band_edge(
            band_edge=U[self.has_carriers], spacing=self.spacing, kT=self.kT
        )

    def _momentum_rate(self, eps: np.ndarray, impurity: np.ndarray) -> np.ndarray:
        """Matthiessen sum of the enabled mechanisms, in units of the acoustic rate at kT."""
        sc = self.scattering
        x = np.maximum(eps, 0.0) / self.kT
        rate = np.zeros_like(x)
        if sc.acoustic_phonon:
            rate += np.sqrt(x)
        if sc.optical_phonon:
            xo = x - float(sc.optical_phonon_energy) / self.kT
            rate += float(sc.optical_phonon_strength) * np.sqrt(np.maximum(xo, 0.0))
        if sc.ionized_impurity:
            pos = x > 0.0
            ii = np.zeros_like(x)
            ii[pos] = x[pos] ** -1.5
            rate += float(sc.ionized_impurity_strength) * (impurity[:, None] / N_IMPURITY_REF) * ii
        return np.maximum(rate, RATE_FLOOR)

    def _facet_coefficients(
        self,
        U: np.ndarray,
        energies: np.ndarray,
        active: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Energy-resolved couplings G[f, k] of the interior facets between carrier cells.

        Returns (facet ids, a, b, G) with G of shape (n_coupled, n_levels).
        """
        g = self.geometry
        f = g.interior
        a, b, c = g.interior_pairs()
        coupled = self.has_carriers[a] & self.has_carriers[b]
        f, a, b, c = f[coupled], a[coupled], b[coupled], c[coupled]

        U_f = 0.5 * (U[a] + U[b])
        eps_f = energies[None, :] - U_f[:, None]
        w_f, _ = dos_weights(eps_f, self.kT)

        N_I = 0.5 * (self.impurity[a] + self.impurity[b])
        x = np.maximum(eps_f, 0.0) / self.kT
        gfun = x ** 1.5 / self._momentum_rate(eps_f, N_I)
        gbar = np.sum(w_f * maxwellian(eps_f, self.kT) * gfun, axis=1)

        D_f = _harmonic_mean(self.diffusivity[a], self.diffusivity[b])
        scale = np.divide(c * D_f * self.n_ref, gbar, out=np.zeros_like(gbar), where=gbar > TINY)

        G = scale[:, None] * w_f * gfun
        G *= active[a] & active[b]
        return f, a, b, G

    # ----------------------------
    # Assembly
    # ----------------------------

    def assemble(self, psi: np.ndarray) -> SHESystem:
        geom = self.geometry
        n_cells = geom.n_cells
        if psi.shape != (n_cells,):
            raise ValueError(f"psi must have shape ({n_cells},); got {psi.shape}")

        U = self.band_edge(psi)
        grid = self.energy_grid(psi)
        L = grid.n_levels
        H = grid.energies
        eps = grid.kinetic(U)

        w, active = dos_weights(eps, self.kT)
        active &= self.has_carriers[:, None]
        w[~active] = 0.0

        def idx(cell: np.ndarray, level: np.ndarray) -> np.ndarray:
            return cell * L + level

        rows, cols, data = [], [], []

        # spatial coupling at fixed total energy
        _, a, b, G = self._facet_coefficients(U, H, active)
        if G.size:
            ka = np.broadcast_to(np.arange(L), G.shape)
            ia = idx(a[:, None], ka).ravel()
            ib = idx(b[:, None], ka).ravel()
            Gv = G.ravel()
            rows += [ia, ia, ib, ib]
            cols += [ia, ib, ia, ib]
            data += [Gv, -Gv, -Gv, Gv]

        # inelastic optical phonon coupling between k and k + m
        sc = self.scattering
        if sc.optical_phonon:
            m = grid.level_shift(sc.optical_phonon_energy)
            if m == 0:
                logger.warning(
                    "optical phonon energy %.4g eV is below half the energy spacing %.4g eV; "
                    "inelastic coupling skipped",
                    sc.optical_phonon_energy / Q, self.spacing / Q,
                )
            elif m < L:
                e_eff = m * grid.spacing / self.kT
                N_bose = 1.0 / np.expm1(e_eff)

                cells = np.flatnonzero(self.has_carriers & ~self.contact)
                lo = np.arange(L - m)
                pair = active[cells][:, lo] & active[cells][:, lo + m]
                coef = (
                    geom.cell_volume[cells, None] * self.optical_rate[cells, None] * self.n_ref
                    * w[cells][:, lo] * w[cells][:, lo + m]
                )
                coef = np.where(pair, coef, 0.0)

                i_lo = idx(cells[:, None], lo[None, :]).ravel()
                i_hi = idx(cells[:, None], lo[None, :] + m).ravel()
                cv = coef.ravel()
                rows += [i_lo, i_lo, i_hi, i_hi]
                cols += [i_lo, i_hi, i_hi, i_lo]
                data += [N_bose * cv, -(N_bose + 1.0) * cv, (N_bose + 1.0) * cv, -N_bose * cv]

        N = n_cells * L
        if rows:
            r = np.concatenate(rows)
            c = np.concatenate(cols)
            d = np.concatenate(data)
        else:
            r = c = np.zeros(0, dtype=np.int64)
            d = np.zeros(0)
        A = sp.coo_matrix((d, (r, c)), shape=(N, N)).tocsr()

        # Dirichlet rows: contacts (scaled Maxwellian) and inactive levels (zero)
        fixed = ~active.ravel()
        contact_rows = np.repeat(self.contact, L)
        fixed |= contact_rows

        # active levels that nothing couples to are dropped as well
        diag = A.diagonal()
        isolated = ~fixed & (diag <= 0.0)
        if np.any(isolated):
            logger.debug("%s: %d isolated energy levels fixed to zero", self.carrier, int(isolated.sum()))
            iso = isolated.reshape(active.shape)
            active[iso] = False
            w[iso] = 0.0
            fixed |= isolated

        rhs = np.zeros(N)
        contacts = np.flatnonzero(self.contact)
        if contacts.size:
            fc = (self.contact_density[contacts, None] / self.n_ref) * maxwellian(eps[contacts], self.kT)
            fc = np.where(active[contacts], fc, 0.0)
            rhs[idx(contacts[:, None], np.arange(L)[None, :]).ravel()] = fc.ravel()

        keep = ~fixed
        D_keep = sp.diags(keep.astype(np.float64))
        D_fix = sp.diags(fixed.astype(np.float64))
        A = (D_keep @ A + D_fix).tocsr()

        return SHESystem(A=A, rhs=rhs, grid=grid, band_edge=U, weights=w, active=active)

    # ----------------------------
    # Solve and moments
    # ----------------------------

    def density(self, weights: np.ndarray, values: np.ndarray) -> np.ndarray:
        return self.n_ref * np.sum(weights * values, axis=1)

    def _level_scale(self, grid: EnergyGrid, n_cells: int) -> np.ndarray:
        """
        Column scale exp(-(H_k - h_min)/kT) for every (cell, level) unknown.

        Near equilibrium f follows exp(-H/kT), which spans many decades over the
        grid, so the solve works on f / scale instead.
        """
        e = -(grid.energies - grid.h_min) / self.kT
        return np.tile(np.exp(np.maximum(e, -700.0)), n_cells)

    def solve(
        self,
        psi: np.ndarray,
        linear_solver: Optional[LinearSolverConfig] = None,
    ) -> DistributionFunction:
        """Assemble at `psi`, solve through the linear-solver backend and return the coefficients."""
        system = self.assemble(np.asarray(psi, dtype=np.float64))
        cfg = self.linear_solver if linear_solver is None else linear_solver
        L = system.grid.n_levels
        scale = self._level_scale(system.grid, self.geometry.n_cells)
        x = solve_linear_system(system.A, system.rhs, cfg, col_scale=scale)

        values = x.reshape(self.geometry.n_cells, L)
        values = np.where(system.active, values, 0.0)

        logger.debug(
            "SHE %s: %d levels, %d unknowns (%d active)",
            self.carrier, L, values.size, int(system.active.sum()),
        )
        return DistributionFunction(
            carrier=self.carrier,
            energies=system.grid.energies,
            band_edge=system.band_edge,
            values=values,
            active=system.active,
            weights=system.weights,
            density=self.density(system.weights, values),
            n_ref=self.n_ref,
            expansion_order=self.expansion_order,
        )

    def equilibrium(self, psi: np.ndarray) -> DistributionFunction:
        """Maxwellian f = exp(-H/kT) on the grid for `psi` (no solve)."""
        psi = np.asarray(psi, dtype=np.float64)
        U = self.band_edge(psi)
        grid = self.energy_grid(psi)
        eps = grid.kinetic(U)
        w, active = dos_weights(eps, self.kT)
        active &= self.has_carriers[:, None]
        w[~active] = 0.0
        values = np.where(active, np.exp(-grid.energies / self.kT)[None, :], 0.0)
        return DistributionFunction(
            carrier=self.carrier,
            energies=grid.energies,
            band_edge=U,
            values=values,
            active=active,
            weights=w,
            density=self.density(w, values),
            n_ref=self.n_ref,
            expansion_order=self.expansion_order,
        )

    def facet_flux(self, dist: DistributionFunction) -> np.ndarray:
        """Energy-summed particle flux density per facet [m^-2 s^-1], oriented a -> b."""
        f, a, b, G = self._facet_coefficients(dist.band_edge, dist.energies, dist.active)
        out = np.zeros(self.geometry.n_facets)
        if f.size:
            net = np.sum(G * (dist.values[a] - dist.values[b]), axis=1)
            out[f] = net / self.geometry.facet_area[f]
        return out
