# algorithm/fixed_point.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from ..errors import NonlinearDivergedError


def apply_damping(x_old: np.ndarray, x_candidate: np.ndarray, damping: float) -> np.ndarray:
    """
    x_new = x_old + damping * (x_candidate - x_old)
    """
    damping = float(damping)
    if not (0.0 < damping <= 1.0):
        raise ValueError(f"damping must be in (0, 1]; got {damping}")
    x_old = np.asarray(x_old, dtype=np.float64)
    return x_old + damping * (np.asarray(x_candidate, dtype=np.float64) - x_old)


def max_abs_change(x_old: np.ndarray, x_candidate: np.ndarray, x_new: np.ndarray) -> float:
    return float(np.max(np.abs(np.asarray(x_candidate) - np.asarray(x_old)), initial=0.0))


@dataclass
class FixedPointResult:
    x: np.ndarray
    converged: bool
    iterations: int
    residual_history: List[float] = field(default_factory=list)


def damped_fixed_point(
    update: Callable[[np.ndarray], np.ndarray],
    x0: np.ndarray,
    *,
    damping: float,
    threshold: float,
    max_iters: int,
    residual: Optional[Callable[[np.ndarray, np.ndarray, np.ndarray], float]] = None,
    callback: Optional[Callable[[int, np.ndarray, float], None]] = None,
) -> FixedPointResult:
    """
    Damped fixed-point iteration for x = update(x):

      x*      = update(x^k)
      x^{k+1} = x^k + damping (x* - x^k)
      r^k     = residual(x^k, x*, x^{k+1})     (default: max |x* - x^k|)

    `callback(k, x^{k+1}, r^k)` runs after every iteration, before the
    convergence test, so a caller keeps its state even when a later update
    raises. A non-finite residual or iterate raises NonlinearDivergedError.
    Stops after the first iteration with r^k <= threshold.
    """
    residual = max_abs_change if residual is None else residual
    x = np.array(x0, dtype=np.float64, copy=True)
    history: List[float] = []

    for it in range(1, int(max_iters) + 1):
        cand = update(x)
        x_new = apply_damping(x, cand, damping)
        r = float(residual(x, cand, x_new))
        x = x_new
        history.append(r)

        if callback is not None:
            callback(it, x, r)

        if not np.isfinite(r) or not np.all(np.isfinite(x)):
            raise NonlinearDivergedError(f"non-finite values in fixed-point iteration {it}")

        if r <= threshold:
            return FixedPointResult(x=x, converged=True, iterations=it, residual_history=history)

    return FixedPointResult(x=x, converged=False, iterations=len(history), residual_history=history)
