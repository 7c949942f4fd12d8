import numpy as np
import pytest

from shesim.errors import SingularLocalSystemError
from shesim.operators import solve_dense


def test_matches_numpy_on_spd_systems():
    rng = np.random.default_rng(0)
    for n in (1, 2, 3):
        B = rng.normal(size=(n, n))
        M = B @ B.T + n * np.eye(n)
        b = rng.normal(size=n)
        np.testing.assert_allclose(solve_dense(M, b), np.linalg.solve(M, b), rtol=1e-12, atol=1e-14)


def test_needs_pivoting():
    M = np.array([[0.0, 1.0], [1.0, 0.0]])
    np.testing.assert_allclose(solve_dense(M, np.array([2.0, 3.0])), [3.0, 2.0])


def test_does_not_modify_inputs():
    M = np.array([[4.0, 1.0], [1.0, 3.0]])
    b = np.array([1.0, 2.0])
    M0, b0 = M.copy(), b.copy()
    solve_dense(M, b)
    assert np.array_equal(M, M0) and np.array_equal(b, b0)


def test_perturbation_bounded_by_inverse_norm():
    M = np.array([[2.0, 0.5], [0.5, 1.0]])
    b = np.array([1.0, -1.0])
    x0 = solve_dense(M, b)
    bound = np.linalg.norm(np.linalg.inv(M), 2)
    for eps in (1e-2, 1e-5, 1e-8):
        x = solve_dense(M, b + np.array([eps, 0.0]))
        assert np.linalg.norm(x - x0) <= bound * eps * (1 + 1e-9)


@pytest.mark.parametrize(
    "M",
    [
        np.zeros((2, 2)),
        np.array([[1.0, 2.0], [2.0, 4.0]]),
        np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1e-15]]),
    ],
)
def test_singular_matrices_raise(M):
    with pytest.raises(SingularLocalSystemError):
        solve_dense(M, np.ones(M.shape[0]))


def test_shape_errors():
    with pytest.raises(ValueError):
        solve_dense(np.ones((2, 3)), np.ones(2))
    with pytest.raises(ValueError):
        solve_dense(np.eye(2), np.ones(3))


def test_rank_tolerance_is_relative():
    M = np.diag([1.0, 1e-9])
    np.testing.assert_allclose(solve_dense(M, np.array([1.0, 1e-9])), [1.0, 1.0], rtol=1e-12)
    with pytest.raises(SingularLocalSystemError):
        solve_dense(M, np.array([1.0, 1e-9]), rtol=1e-6)
    # scaling the whole matrix does not change the verdict
    np.testing.assert_allclose(solve_dense(1e20 * M, np.array([1e20, 1e11])), [1.0, 1.0], rtol=1e-12)


def test_non_finite_matrix_raises():
    with pytest.raises(SingularLocalSystemError):
        solve_dense(np.array([[1.0, np.nan], [0.0, 1.0]]), np.ones(2))
