# diagnostics.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt

from .core.mesh import Mesh
from .core.quantity import CellQuantity, DistributionFunction
from .core.constants import Q


# -----------------------------
# I/O helpers
# -----------------------------

def save_npz(path: Path, **arrays: np.ndarray) -> None:
    """Save compressed .npz (creates parent dirs)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, **arrays)


def save_quantities(simulator, path: Path) -> Dict[str, np.ndarray]:
    """
    Write all cell quantities (and SHE distribution functions) of a simulator run.

    Distribution functions are flattened into <name>_values, <name>_energies,
    <name>_active and <name>_density entries. Returns the saved arrays.
    """
    arrays: Dict[str, np.ndarray] = {
        "cell_centroids": simulator.device.mesh.cell_centroids(),
    }
    for name, q in simulator.quantities().items():
        if isinstance(q, DistributionFunction):
            arrays[f"{name}_values"] = np.asarray(q.values)
            arrays[f"{name}_energies"] = np.asarray(q.energies)
            arrays[f"{name}_active"] = np.asarray(q.active)
            arrays[f"{name}_density"] = np.asarray(q.density)
        else:
            arrays[name] = np.asarray(q.values)
    save_npz(Path(path), **arrays)
    return arrays


# -----------------------------
# Plotting
# -----------------------------

def _finish(fig, path: Optional[Path], show: bool, close: bool) -> None:
    fig.tight_layout()

    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=200)

    if show:
        plt.show()

    if close:
        plt.close(fig)


def plot_profile(
    mesh: Mesh,
    values: np.ndarray | CellQuantity | Sequence[np.ndarray | CellQuantity],
    *,
    labels: Optional[Sequence[str]] = None,
    title: str = "",
    ylabel: str = "",
    logy: bool = False,
    x_scale: float = 1e9,
    path: Optional[Path] = None,
    show: bool = True,
    close: bool = True,
) -> None:
    """
    Line plot of one or more cell quantities over the first cell-centroid coordinate.

    Parameters
    ----------
    x_scale:
        Factor applied to x before plotting (default: metres -> nm).
    logy:
        Use a log y axis (for densities).
    """
    series = list(values) if isinstance(values, (list, tuple)) else [values]
    x = mesh.cell_centroids()[:, 0] * float(x_scale)
    order = np.argsort(x)

    fig, ax = plt.subplots()
    for i, v in enumerate(series):
        y = np.asarray(v.values if isinstance(v, CellQuantity) else v, dtype=float)
        if y.shape != x.shape:
            raise ValueError(f"series {i} has shape {y.shape}, expected {x.shape}")
        label = labels[i] if labels is not None else (v.name if isinstance(v, CellQuantity) else None)
        ax.plot(x[order], y[order], marker=".", label=label)

    if logy:
        ax.set_yscale("log")
    ax.set_title(title)
    ax.set_xlabel("x [nm]" if x_scale == 1e9 else "x")
    ax.set_ylabel(ylabel)
    if labels is not None or any(isinstance(v, CellQuantity) for v in series):
        ax.legend()

    _finish(fig, path, show, close)


def plot_distribution(
    dist: DistributionFunction,
    cell: int,
    *,
    title: str = "",
    path: Optional[Path] = None,
    show: bool = True,
    close: bool = True,
) -> None:
    """
    Energy distribution f(eps) in one cell on a log scale, over kinetic energy in eV.

    Only active levels are drawn.
    """
    cell = int(cell)
    if not (0 <= cell < dist.n_cells):
        raise IndexError(f"cell {cell} out of range (n_cells={dist.n_cells})")

    act = dist.active[cell]
    eps = dist.kinetic_energies()[cell][act] / Q
    f = dist.values[cell][act]

    fig, ax = plt.subplots()
    ax.semilogy(eps, np.maximum(f, 1e-300), marker=".")
    ax.set_title(title or f"{dist.carrier} distribution, cell {cell}")
    ax.set_xlabel("kinetic energy [eV]")
    ax.set_ylabel("f")

    _finish(fig, path, show, close)
