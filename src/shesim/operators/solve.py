# operators/solve.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from ..core.config import LinearSolverConfig
from ..errors import LinearSolverError

logger = logging.getLogger(__name__)


# ============================
# Solver options from argv-style tokens
# ============================

@dataclass(frozen=True)
class SolverOptions:
    rtol: Optional[float] = None
    atol: float = 0.0
    max_it: Optional[int] = None
    restart: int = 50
    preconditioner: str = "none"   # "none" | "ilu"


_FLOAT_KEYS = {"-ksp_rtol": "rtol", "-ksp_atol": "atol"}
_INT_KEYS = {"-ksp_max_it": "max_it", "-ksp_gmres_restart": "restart"}
_PC_TYPES = ("none", "ilu")


def parse_solver_argv(argv: Sequence[str]) -> SolverOptions:
    """
    Map "-key value" tokens onto SolverOptions.

    Known keys: -ksp_rtol, -ksp_atol, -ksp_max_it, -ksp_gmres_restart, -pc_type.
    Unknown keys (and their value, if any) are logged and ignored.
    """
    tokens = [str(t) for t in argv]
    opts: Dict[str, object] = {}

    i = 0
    while i < len(tokens):
        key = tokens[i]
        has_value = i + 1 < len(tokens) and not tokens[i + 1].startswith("-")
        value = tokens[i + 1] if has_value else None
        i += 2 if has_value else 1

        if key in _FLOAT_KEYS or key in _INT_KEYS or key == "-pc_type":
            if value is None:
                raise ValueError(f"solver option {key} needs a value")
            if key in _FLOAT_KEYS:
                opts[_FLOAT_KEYS[key]] = float(value)
            elif key in _INT_KEYS:
                opts[_INT_KEYS[key]] = int(value)
            else:
                if value not in _PC_TYPES:
                    raise ValueError(f"Unknown -pc_type {value!r} (expected one of {_PC_TYPES})")
                opts["preconditioner"] = value
        else:
            logger.warning("ignoring unknown solver option %s", key)

    return SolverOptions(**opts)


# ============================
# Low-level linear algebra
# ============================

def compute_residual(A: sp.spmatrix, u: np.ndarray, f: np.ndarray) -> np.ndarray:
    """
    r = f - A u
    """
    return f - A @ u


def _equilibrate_rows(A: sp.csr_matrix, b: np.ndarray):
    """Scale each row by 1/max|a_ij|."""
    row_max = abs(A).max(axis=1).toarray().ravel()
    row_max[row_max == 0.0] = 1.0
    D = sp.diags(1.0 / row_max)
    return (D @ A).tocsr(), b / row_max, np.ones_like(row_max)


def _equilibrate_symmetric(A: sp.csr_matrix, b: np.ndarray):
    """Jacobi scaling D^-1/2 A D^-1/2, which keeps a symmetric matrix symmetric (needed by cg)."""
    d = np.sqrt(np.abs(A.diagonal()))
    d[d == 0.0] = 1.0
    D = sp.diags(1.0 / d)
    return (D @ A @ D).tocsr(), b / d, 1.0 / d


def _iterative(name: str):
    return {"gmres": spla.gmres, "bicgstab": spla.bicgstab, "cg": spla.cg}[name]


def solve_linear_system(
    A: sp.spmatrix,
    b: np.ndarray,
    cfg: Optional[LinearSolverConfig] = None,
    *,
    col_scale: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Solve A x = b with the configured backend.

    Every backend works on an equilibrated system: rows are scaled by their
    largest entry ("cg" uses the symmetric Jacobi scaling instead). When
    `col_scale` is given, the unknowns are substituted as x = col_scale * y
    first, so that solutions spanning many decades (carrier densities,
    distribution functions) are resolved to relative rather than absolute
    precision.

    "direct" uses spsolve; "gmres", "bicgstab" and "cg" use scipy's Krylov
    solvers, optionally ILU-preconditioned. Non-convergence or a non-finite
    solution raises LinearSolverError; no partial result is returned.
    """
    cfg = LinearSolverConfig() if cfg is None else cfg
    A = sp.csr_matrix(A)
    b = np.asarray(b, dtype=np.float64)

    if A.shape[0] != A.shape[1] or A.shape[0] != b.shape[0]:
        raise ValueError(f"incompatible system: A {A.shape}, b {b.shape}")
    if cfg.solver not in ("direct", "gmres", "bicgstab", "cg"):
        raise LinearSolverError(f"Unknown linear solver: {cfg.solver}")

    if col_scale is not None:
        col_scale = np.asarray(col_scale, dtype=np.float64)
        if col_scale.shape != b.shape or not np.all(np.isfinite(col_scale)) or np.any(col_scale <= 0.0):
            raise ValueError("col_scale must be positive and finite, one entry per unknown")
        A = (A @ sp.diags(col_scale)).tocsr()

    if cfg.solver == "cg":
        As, bs, post = _equilibrate_symmetric(A, b)
    else:
        As, bs, post = _equilibrate_rows(A, b)

    if cfg.solver == "direct":
        try:
            y = spla.spsolve(As.tocsc(), bs)
        except RuntimeError as exc:
            # SuperLU reports an exactly singular factor this way
            raise LinearSolverError(f"direct solve failed: {exc}") from exc
        y = np.asarray(y, dtype=np.float64).reshape(-1)
        if not np.all(np.isfinite(y)):
            raise LinearSolverError("direct solve produced non-finite values (singular matrix?)")
    else:
        opts = parse_solver_argv(cfg.argv)
        rtol = float(cfg.tol if opts.rtol is None else opts.rtol)
        maxiter = int(cfg.max_iters if opts.max_it is None else opts.max_it)

        M = None
        if opts.preconditioner == "ilu":
            try:
                ilu = spla.spilu(As.tocsc())
            except RuntimeError as exc:
                raise LinearSolverError(f"ILU factorization failed: {exc}") from exc
            M = spla.LinearOperator(As.shape, ilu.solve)

        kwargs = dict(rtol=rtol, atol=opts.atol, maxiter=maxiter, M=M)
        if cfg.solver == "gmres":
            kwargs["restart"] = opts.restart

        y, info = _iterative(cfg.solver)(As, bs, **kwargs)

        if info != 0:
            raise LinearSolverError(f"{cfg.solver} did not converge in {maxiter} iterations", info=info)
        if not np.all(np.isfinite(y)):
            raise LinearSolverError(f"{cfg.solver} produced non-finite values")

    logger.debug(
        "%s: n=%d, ||r||/||b||=%.3e",
        cfg.solver, b.size,
        float(np.linalg.norm(compute_residual(As, y, bs)) / (np.linalg.norm(bs) or 1.0)),
    )
    x = post * np.asarray(y, dtype=np.float64)
    return x if col_scale is None else col_scale * x
