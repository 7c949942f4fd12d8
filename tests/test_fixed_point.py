import numpy as np
import pytest

from shesim.algorithm import apply_damping, damped_fixed_point
from shesim.errors import NonlinearDivergedError


def test_apply_damping():
    x = apply_damping(np.array([0.0, 2.0]), np.array([1.0, 0.0]), 0.25)
    np.testing.assert_allclose(x, [0.25, 1.5])
    np.testing.assert_allclose(apply_damping([1.0], [3.0], 1.0), [3.0])
    with pytest.raises(ValueError):
        apply_damping([1.0], [3.0], 0.0)


def contraction(x):
    return 0.5 * x + np.array([1.0, -2.0])  # fixed point (2, -4)


def test_converges_to_fixed_point():
    res = damped_fixed_point(contraction, np.zeros(2), damping=1.0, threshold=1e-12, max_iters=200)
    assert res.converged
    np.testing.assert_allclose(res.x, [2.0, -4.0], atol=1e-11)
    assert res.iterations == len(res.residual_history)


def test_damping_monotonicity():
    counts = []
    for damping in (1.0, 0.8, 0.6, 0.4, 0.2, 0.1):
        res = damped_fixed_point(contraction, np.zeros(2), damping=damping, threshold=1e-8, max_iters=10_000)
        assert res.converged
        counts.append(res.iterations)
    assert all(a <= b for a, b in zip(counts, counts[1:]))
    assert counts[-1] > counts[0]


def test_zero_iterations_and_unreachable_threshold():
    res = damped_fixed_point(contraction, np.zeros(2), damping=1.0, threshold=1.0, max_iters=0)
    assert not res.converged and res.iterations == 0

    res = damped_fixed_point(contraction, np.zeros(2), damping=1.0, threshold=-1.0, max_iters=5)
    assert not res.converged and res.iterations == 5


def test_custom_residual():
    res = damped_fixed_point(
        contraction,
        np.zeros(2),
        damping=1.0,
        threshold=1e-6,
        max_iters=100,
        residual=lambda old, cand, new: float(np.linalg.norm(cand - old)),
    )
    assert res.converged
    assert res.residual_history[-1] <= 1e-6


def test_callback_sees_every_damped_iterate():
    seen = []
    res = damped_fixed_point(
        contraction,
        np.zeros(2),
        damping=0.5,
        threshold=1e-6,
        max_iters=100,
        callback=lambda it, x, r: seen.append((it, x.copy(), r)),
    )
    assert [s[0] for s in seen] == list(range(1, res.iterations + 1))
    assert [s[2] for s in seen] == res.residual_history
    np.testing.assert_allclose(seen[0][1], apply_damping(np.zeros(2), contraction(np.zeros(2)), 0.5))
    np.testing.assert_array_equal(seen[-1][1], res.x)


def test_non_finite_iterate_raises_after_callback():
    seen = []
    with pytest.raises(NonlinearDivergedError):
        damped_fixed_point(
            lambda x: x * np.inf,
            np.ones(2),
            damping=1.0,
            threshold=1e-6,
            max_iters=10,
            callback=lambda it, x, r: seen.append(it),
        )
    assert seen == [1]
