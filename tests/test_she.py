import logging

import numpy as np
import pytest

from shesim.algorithm import Simulator, SimulatorState, facet_current_density, terminal_current
from shesim.core import (
    ELECTRON_DENSITY,
    ELECTRON_DISTRIBUTION_FUNCTION,
    HOLE_DENSITY,
    POTENTIAL,
    EnergyGrid,
    EquationKind,
    SimulatorConfig,
    si,
)
from shesim.core.constants import Q, thermal_energy, thermal_voltage
from shesim.core.energy import dos_weights, maxwellian
from shesim.operators import DualBoxGeometry, SHEEquationSource

from conftest import chain_device

T = 300.0
kT = thermal_energy(T)
V_T = thermal_voltage(T)


def she_config(**nonlinear) -> SimulatorConfig:
    cfg = SimulatorConfig()
    cfg.with_holes = False
    cfg.electron_equation = EquationKind.SHE
    cfg.max_expansion_order = 1
    cfg.energy_spacing = 0.031 * Q
    for k, v in nonlinear.items():
        setattr(cfg.nonlinear_solver, k, v)
    return cfg


# ----------------------------
# Energy grid
# ----------------------------

def test_energy_grid_covers_band_edges():
    U = np.array([-0.3, 0.0, 0.2]) * Q
    g = EnergyGrid.from_band_edge(band_edge=U, spacing=0.031 * Q, kT=kT, n_kT=10.0)
    assert g.h_min == pytest.approx(U.min() + 0.5 * 0.031 * Q)
    assert g.h_max >= U.max() + 10.0 * kT
    eps = g.kinetic(U)
    assert eps.shape == (3, g.n_levels)
    assert np.all((eps > 0).any(axis=1))
    assert g.level_shift(0.063 * Q) == 2


def test_energy_grid_validation():
    with pytest.raises(ValueError):
        EnergyGrid.from_band_edge(band_edge=np.zeros(0), spacing=1.0, kT=1.0)
    with pytest.raises(ValueError):
        EnergyGrid.from_band_edge(band_edge=np.zeros(3), spacing=0.0, kT=1.0)


def test_dos_weights_normalize_the_maxwellian():
    U = np.array([0.0, 0.1, -0.05]) * Q
    g = EnergyGrid.from_band_edge(band_edge=U, spacing=0.01 * Q, kT=kT)
    eps = g.kinetic(U)
    w, active = dos_weights(eps, kT)
    np.testing.assert_allclose(np.sum(w * maxwellian(eps, kT), axis=1), 1.0, rtol=1e-12)
    assert np.all(w[~active] == 0.0)
    assert np.array_equal(active, eps > 0)


# ----------------------------
# Equation source
# ----------------------------

def _source(device, carrier="n", cfg=None):
    cfg = she_config() if cfg is None else cfg
    return SHEEquationSource(DualBoxGeometry.from_mesh(device.mesh), device, carrier, cfg)


def test_equilibrium_moments_match_boltzmann(pn_device):
    psi = pn_device.builtin_potential(T)
    ni = si().ni
    n_eq = _source(pn_device, "n").equilibrium(psi).density
    p_eq = _source(pn_device, "p").equilibrium(psi).density
    np.testing.assert_allclose(n_eq, ni * np.exp(psi / V_T), rtol=1e-10)
    np.testing.assert_allclose(p_eq, ni * np.exp(-psi / V_T), rtol=1e-10)


def test_maxwellian_solves_the_equilibrium_system(nnn_device):
    src = _source(nnn_device)
    psi = nnn_device.builtin_potential(T)

    dist = src.solve(psi)
    ref = src.equilibrium(psi)
    assert dist.values.shape == ref.values.shape
    np.testing.assert_allclose(dist.values, ref.values, rtol=1e-8, atol=1e-10 * ref.values.max())
    np.testing.assert_allclose(dist.density, nnn_device.equilibrium_densities()[0], rtol=1e-6)

    flux = src.facet_flux(dist)
    d = 200e-9 / 40
    scale = V_T * si().mu_n / d * dist.density.max()
    assert np.max(np.abs(flux)) <= 1e-8 * scale


def test_maxwellian_is_resolved_across_a_junction(pn_device):
    # electron levels on the p side sit ~14 decades below those on the n side
    src = _source(pn_device)
    psi = pn_device.builtin_potential(T)

    dist = src.solve(psi)
    ref = src.equilibrium(psi)
    assert np.array_equal(dist.active, ref.active)
    np.testing.assert_allclose(dist.values[ref.active], ref.values[ref.active], rtol=1e-8)
    assert np.all(dist.values >= 0.0)

    ni = si().ni
    np.testing.assert_allclose(dist.density, ni * np.exp(psi / V_T), rtol=1e-8)
    assert dist.density.min() < 1e-12 * dist.density.max()


def test_distribution_function_is_read_only(nnn_device):
    dist = _source(nnn_device).solve(nnn_device.builtin_potential(T))
    with pytest.raises(ValueError):
        dist.values[0, 0] = 1.0
    assert dist.expansion_order == 1
    assert np.all(dist.values[~dist.active] == 0.0)


def test_phonon_shift_below_spacing_warns(nnn_device, caplog):
    cfg = she_config()
    cfg.energy_spacing = 0.2 * Q
    src = _source(nnn_device, cfg=cfg)
    with caplog.at_level(logging.WARNING, logger="shesim"):
        src.assemble(nnn_device.builtin_potential(T))
    assert "inelastic coupling skipped" in caplog.text


# ----------------------------
# Driver with SHE carriers
# ----------------------------

def test_she_reproduces_drift_diffusion_at_zero_bias(nnn_device):
    dd_cfg = SimulatorConfig()
    dd_cfg.with_holes = False
    dd = Simulator(nnn_device, dd_cfg)
    assert dd.run().converged

    she = Simulator(nnn_device, she_config(max_iters=20, threshold=1e-6))
    she.set_initial_guess(POTENTIAL, dd.potential())
    she.set_initial_guess(ELECTRON_DENSITY, dd.electron_density())
    she.set_initial_guess(HOLE_DENSITY, dd.hole_density())
    result = she.run()

    assert result.state is SimulatorState.CONVERGED
    np.testing.assert_allclose(she.electron_density().values, dd.electron_density().values, rtol=1e-4)
    np.testing.assert_allclose(she.potential().values, dd.potential().values, atol=1e-6)

    dist = she.electron_distribution_function()
    assert dist is not None
    assert ELECTRON_DISTRIBUTION_FUNCTION in she.quantities()
    assert she.hole_distribution_function() is None


def test_she_low_field_current_is_close_to_drift_diffusion():
    device = chain_device(lambda x: 1e23, lambda x: 0.0, bias=0.05)

    dd_cfg = SimulatorConfig()
    dd_cfg.with_holes = False
    dd_cfg.srh_recombination = False
    dd = Simulator(device, dd_cfg)
    assert dd.run().converged

    cfg = she_config(max_iters=50, threshold=1e-6)
    she = Simulator(device, cfg)
    she.set_initial_guess(POTENTIAL, dd.potential())
    she.set_initial_guess(ELECTRON_DENSITY, dd.electron_density())
    assert she.run().converged

    inner, left, right = device.segment(2), device.segment(1), device.segment(3)
    J_dd = facet_current_density(dd, "n")
    J_she = facet_current_density(she, "n")
    I_dd = terminal_current(device, J_dd, inner, right)
    I_she = terminal_current(device, J_she, inner, right)

    # particles are conserved over energies: what enters on one side leaves on the other
    assert terminal_current(device, J_she, inner, left) == pytest.approx(-I_she, rel=1e-6)
    assert I_she * I_dd > 0
    assert I_she == pytest.approx(I_dd, rel=0.3)


def test_facet_current_before_run_raises(nnn_device):
    sim = Simulator(nnn_device, she_config())
    with pytest.raises(RuntimeError):
        facet_current_density(sim, "n")
