import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from shesim.algorithm import Simulator
from shesim.core import ELECTRON_DENSITY, POTENTIAL
from shesim.diagnostics import plot_profile, save_npz, save_quantities


def test_save_npz_creates_parent_dirs(tmp_path):
    path = tmp_path / "a" / "b" / "x.npz"
    save_npz(path, x=np.arange(3.0))
    with np.load(path) as data:
        np.testing.assert_array_equal(data["x"], [0.0, 1.0, 2.0])


def test_save_quantities(resistor_device, dd_config, tmp_path):
    sim = Simulator(resistor_device, dd_config)
    sim.run()
    arrays = save_quantities(sim, tmp_path / "out.npz")
    assert {POTENTIAL, ELECTRON_DENSITY, "cell_centroids"} <= set(arrays)
    with np.load(tmp_path / "out.npz") as data:
        np.testing.assert_allclose(data[POTENTIAL], sim.potential().values)


def test_plot_profile_writes_file(resistor_device, tmp_path):
    sim = Simulator(resistor_device)
    path = tmp_path / "psi.png"
    plot_profile(resistor_device.mesh, sim.potential(), path=path, show=False)
    assert path.exists()


def test_plot_profile_rejects_wrong_shape(resistor_device):
    with pytest.raises(ValueError):
        plot_profile(resistor_device.mesh, np.zeros(3), show=False)
