# errors.py
"""
Error hierarchy.

Each error also derives from the builtin (or numpy) exception a caller would
naturally catch, so `except ValueError` still works for bad configurations.
"""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np


class ShesimError(Exception):
    """Base class for all errors raised by shesim."""


class UnsupportedDimensionalityError(ShesimError, NotImplementedError):
    """Raised when an operation has no implementation for the mesh dimensionality."""

    def __init__(self, operation: str, cell_dim: int, geo_dim: int) -> None:
        self.operation = operation
        self.cell_dim = int(cell_dim)
        self.geo_dim = int(geo_dim)
        super().__init__(
            f"{operation}: unimplemented for cell_dim={self.cell_dim}, geo_dim={self.geo_dim}"
        )


class SingularLocalSystemError(ShesimError, np.linalg.LinAlgError):
    """Raised when a small dense system (e.g. a per-cell least-squares matrix) is singular."""

    def __init__(
        self,
        message: str,
        *,
        cell: Optional[int] = None,
        facets: Optional[Sequence[int]] = None,
    ) -> None:
        self.cell = cell
        self.facets = None if facets is None else tuple(int(f) for f in facets)
        if cell is not None:
            message = f"{message} (cell={cell}, facets={self.facets})"
        super().__init__(message)


class LinearSolverError(ShesimError, RuntimeError):
    """The sparse linear solve failed or did not converge."""

    def __init__(self, message: str, info: int | None = None) -> None:
        self.info = info
        super().__init__(message if info is None else f"{message} (info={info})")


class NonlinearNotConvergedError(ShesimError, RuntimeError):
    """The nonlinear iteration ran out of iterations."""

    def __init__(self, iterations: int, residual: float) -> None:
        self.iterations = int(iterations)
        self.residual = float(residual)
        super().__init__(
            f"nonlinear iteration did not converge after {self.iterations} iterations "
            f"(residual={self.residual:.3e})"
        )


class NonlinearDivergedError(ShesimError, RuntimeError):
    """The nonlinear iteration produced non-finite or unphysical (negative density) values."""


class InvalidConfigurationError(ShesimError, ValueError):
    """The simulator configuration is inconsistent."""
