from __future__ import annotations

import numpy as np
import pytest

from shesim.core import Device, EquationKind, Mesh, SimulatorConfig, si


def chain_device(
    doping_n,
    doping_p,
    *,
    length: float = 200e-9,
    n_cells: int = 40,
    bias: float = 0.0,
) -> Device:
    """
    1D silicon device; doping_n/doping_p are callables of the cell-centre x.
    Segment 1 = left contact cell, 2 = interior cells, 3 = right contact cell.
    """
    mesh = Mesh.interval(np.linspace(0.0, length, n_cells + 1))
    dev = Device(mesh, si())
    xc = mesh.cell_centroids()[:, 0]

    left = dev.add_segment(1, "contact_left", [0])
    dev.add_segment(2, "inner", range(1, n_cells - 1))
    right = dev.add_segment(3, "contact_right", [n_cells - 1])

    for c in mesh.cells():
        seg = dev.add_segment(100 + c, f"cell{c}", [c])
        dev.set_doping_n(doping_n(xc[c]), seg)
        dev.set_doping_p(doping_p(xc[c]), seg)

    dev.set_contact_potential(0.0, left)
    dev.set_contact_potential(bias, right)
    return dev


@pytest.fixture
def interval_mesh() -> Mesh:
    return Mesh.interval(np.linspace(0.0, 1.0, 11))


@pytest.fixture
def resistor_device() -> Device:
    """Uniform n-type resistor, both contacts at 0 V."""
    return chain_device(lambda x: 1e23, lambda x: 0.0)


@pytest.fixture
def pn_device() -> Device:
    """Abrupt p-n junction at mid-length, both contacts at 0 V."""
    L = 400e-9
    return chain_device(
        lambda x: 1e23 if x > 0.5 * L else 0.0,
        lambda x: 1e23 if x <= 0.5 * L else 0.0,
        length=L,
        n_cells=80,
    )


@pytest.fixture
def nnn_device() -> Device:
    """n+ / n / n+ structure, both contacts at 0 V."""
    L = 200e-9
    return chain_device(
        lambda x: 1e21 if 0.3 * L < x < 0.7 * L else 1e23,
        lambda x: 0.0,
        length=L,
        n_cells=40,
    )


@pytest.fixture
def dd_config() -> SimulatorConfig:
    cfg = SimulatorConfig()
    cfg.electron_equation = EquationKind.CONTINUITY
    cfg.hole_equation = EquationKind.CONTINUITY
    cfg.nonlinear_solver.max_iters = 100
    cfg.nonlinear_solver.threshold = 1e-8
    return cfg
