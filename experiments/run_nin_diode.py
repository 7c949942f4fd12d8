from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from shesim.algorithm import (
    Simulator,
    cell_current_vectors,
    facet_current_density,
    terminal_current,
)
from shesim.core.constants import Q
from shesim.core import (
    ELECTRON_DENSITY,
    HOLE_DENSITY,
    POTENTIAL,
    Device,
    EquationKind,
    Mesh,
    SimulatorConfig,
    metal,
    si,
)
from shesim.diagnostics import plot_distribution, plot_profile, save_quantities
from shesim.logging_config import setup_logging

logger = logging.getLogger("shesim.experiments.nin")


def build_nin_diode(
    *,
    l_contact: float = 5e-9,
    l_nplus: float = 50e-9,
    l_center: float = 100e-9,
    h: float = 2.5e-9,
    bias: float = 0.5,
) -> Device:
    """
    1D n+ / n / n+ diode between two metal contacts.

      | contact | n+ | n (lightly doped) | n+ | contact |
          1       2          3             4       5       (segment ids)
    """
    lengths = [l_contact, l_nplus, l_center, l_nplus, l_contact]
    edges = np.concatenate([[0.0], np.cumsum(lengths)])

    x = [0.0]
    bounds = []
    for i, L in enumerate(lengths):
        n = max(1, int(round(L / h)))
        x.extend(np.linspace(edges[i], edges[i + 1], n + 1)[1:].tolist())
        bounds.append(len(x) - 1)
    mesh = Mesh.interval(x)

    device = Device(mesh, si())
    start = 0
    names = ["contact_left", "n_left", "i_center", "n_right", "contact_right"]
    for seg_id, (name, stop) in enumerate(zip(names, bounds), start=1):
        device.add_segment(seg_id, name, range(start, stop))
        start = stop

    contact_left = device.segment(1)
    i_center = device.segment(3)
    contact_right = device.segment(5)

    device.set_doping_n(1e24)
    device.set_doping_p(1e8)
    device.set_doping_n(1e21, i_center)
    device.set_doping_p(1e11, i_center)

    device.set_material(metal(), contact_left)
    device.set_material(metal(), contact_right)

    device.set_contact_potential(0.0, contact_left)
    device.set_contact_potential(bias, contact_right)
    return device


def main() -> None:
    setup_logging(logging.INFO)
    outdir = Path("outputs") / "nin_diode"

    device = build_nin_diode()

    # 1) drift-diffusion run for the initial guess
    dd_cfg = SimulatorConfig()
    dd_cfg.with_holes = False
    dd_cfg.electron_equation = EquationKind.CONTINUITY
    dd_cfg.nonlinear_solver.max_iters = 40
    dd_cfg.nonlinear_solver.damping = 0.9

    dd = Simulator(device, dd_cfg)
    dd_result = dd.run()
    dd_result.raise_if_not_converged()

    # 2) SHE run for electrons, starting from the DD solution
    she_cfg = SimulatorConfig()
    she_cfg.with_holes = False
    she_cfg.electron_equation = EquationKind.SHE
    she_cfg.nonlinear_solver.max_iters = 20
    she_cfg.nonlinear_solver.damping = 0.5
    she_cfg.nonlinear_solver.threshold = 1e-4
    she_cfg.max_expansion_order = 1
    she_cfg.energy_spacing = 0.031 * Q

    she = Simulator(device, she_cfg)
    she.set_initial_guess(POTENTIAL, dd.potential())
    she.set_initial_guess(ELECTRON_DENSITY, dd.electron_density())
    she.set_initial_guess(HOLE_DENSITY, dd.hole_density())
    she_result = she.run()

    # 3) terminal currents
    for name, sim in (("DD", dd), ("SHE", she)):
        J = facet_current_density(sim, "n")
        I = terminal_current(sim.device, J, sim.device.segment(4), sim.device.segment(5))
        logger.info("%s electron current into the right contact: %.4e A/m^2", name, I)
    J_cells = cell_current_vectors(she, "n").values
    logger.info("SHE max |J_n| in cells: %.4e A/m^2", float(np.max(np.abs(J_cells))))

    # 4) output
    save_quantities(dd, outdir / "dd.npz")
    save_quantities(she, outdir / "she.npz")

    plot_profile(
        device.mesh, [dd.potential(), she.potential()], labels=["DD", "SHE"],
        title="potential", ylabel="psi [V]", path=outdir / "potential.png", show=False,
    )
    plot_profile(
        device.mesh, [dd.electron_density(), she.electron_density()], labels=["DD", "SHE"],
        title="electron density", ylabel="n [m^-3]", logy=True,
        path=outdir / "electron_density.png", show=False,
    )
    dist = she.electron_distribution_function()
    if dist is not None:
        mid = int(np.mean(device.segment(3).cells))
        plot_distribution(dist, mid, path=outdir / "edf_center.png", show=False)

    logger.info("DD: %s after %d iterations", dd_result.state.value, dd_result.iterations)
    logger.info("SHE: %s after %d iterations", she_result.state.value, she_result.iterations)


if __name__ == "__main__":
    main()
