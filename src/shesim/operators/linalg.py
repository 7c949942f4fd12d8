# operators/linalg.py
from __future__ import annotations

import numpy as np

from ..core.constants import LOCAL_SOLVE_RTOL
from ..errors import SingularLocalSystemError


def solve_dense(M: np.ndarray, b: np.ndarray, *, rtol: float = LOCAL_SOLVE_RTOL) -> np.ndarray:
    """
    Solve a small dense system M v = b with numpy.

    Meant for the geo_dim x geo_dim normal-equation matrices of the per-cell
    flux reconstruction (at most 3 x 3). A matrix whose numerical rank,
    counted with singular values above rtol * max|M|, is below its size is
    rejected before LAPACK sees it.

    Raises
    ------
    ValueError
        if M is not square or b does not match.
    SingularLocalSystemError
        if M is zero, has non-finite entries, or is rank deficient at rtol.
    """
    A = np.asarray(M, dtype=np.float64)
    x = np.asarray(b, dtype=np.float64)

    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"M must be square; got shape {A.shape}")
    n = A.shape[0]
    if x.shape != (n,):
        raise ValueError(f"b must have shape ({n},); got {x.shape}")
    if n == 0:
        return x.copy()

    scale = float(np.max(np.abs(A)))
    if not np.isfinite(scale):
        raise SingularLocalSystemError("local matrix has non-finite entries")
    if scale == 0.0:
        raise SingularLocalSystemError("local matrix is zero")

    rank = int(np.linalg.matrix_rank(A, tol=float(rtol) * scale))
    if rank < n:
        raise SingularLocalSystemError(f"local matrix is singular (rank {rank} < {n} at rtol={rtol:g})")

    try:
        return np.linalg.solve(A, x)
    except np.linalg.LinAlgError as exc:
        raise SingularLocalSystemError(f"local matrix is singular: {exc}") from exc
