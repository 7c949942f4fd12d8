import numpy as np
import pytest

from shesim.core import CellVectorField, FacetQuantity, Mesh, Segment
from shesim.errors import SingularLocalSystemError, UnsupportedDimensionalityError
from shesim.operators import (
    dual_box_flux_to_cell,
    dual_box_flux_to_cells,
    is_primary_cell_for_facet,
    outer_cell_normal_at_facet,
    reconstruct_cell_vector,
)


def uniform_field_samples(mesh: Mesh, v: float) -> np.ndarray:
    """Facet samples of a uniform field v e_x in each facet's intrinsic orientation."""
    x_cells = mesh.cell_centroids()[:, 0]
    out = np.empty(mesh.n_facets)
    for f in mesh.facets():
        cob = mesh.coboundary_elements(0, f, 1)
        x_f = mesh.centroid(0, f)[0]
        # orientation points away from the first coboundary cell
        direction = 1.0 if x_f > x_cells[cob[0]] else -1.0
        out[f] = direction * v
    return out


def test_single_cell_uniform_field_is_exact():
    mesh = Mesh.interval([0.0, 1.0])
    samples = {0: -3.0, 1: 3.0}  # equal magnitude, opposite sign
    v = reconstruct_cell_vector(mesh, 0, lambda f: samples[f])
    assert v.shape == (1,)
    assert v[0] == 3.0


def test_outer_normals_1d(interval_mesh):
    assert outer_cell_normal_at_facet(interval_mesh, 3, 3).tolist() == [-1.0]
    assert outer_cell_normal_at_facet(interval_mesh, 3, 4).tolist() == [1.0]
    assert is_primary_cell_for_facet(interval_mesh, 3, 4)
    assert not is_primary_cell_for_facet(interval_mesh, 3, 3)


def test_chain_uniform_field(interval_mesh):
    q = FacetQuantity("flux", "", uniform_field_samples(interval_mesh, 2.5))
    field = CellVectorField("v", interval_mesh.n_cells, interval_mesh.geo_dim)
    n = dual_box_flux_to_cells(interval_mesh, field.setter(), q.accessor())
    assert n == interval_mesh.n_cells
    np.testing.assert_allclose(field.values[:, 0], 2.5, rtol=0, atol=1e-14)


def test_perturbation_is_continuous_and_bounded(interval_mesh):
    base = uniform_field_samples(interval_mesh, 1.0)
    v0 = reconstruct_cell_vector(interval_mesh, 4, lambda f: base[f])
    for eps in (1e-3, 1e-6, 1e-9):
        pert = base.copy()
        pert[5] += eps
        v = reconstruct_cell_vector(interval_mesh, 4, lambda f: pert[f])
        # two facets with unit normals: M = 2, so one sample moves v by eps / 2
        assert abs(v[0] - v0[0]) == pytest.approx(eps / 2, rel=1e-6)


def test_sign_law_flipped_primary_and_flux(interval_mesh):
    samples = np.linspace(-1.0, 2.0, interval_mesh.n_facets)

    def flipped_primary(mesh, cell, facet):
        return not is_primary_cell_for_facet(mesh, cell, facet)

    for c in interval_mesh.cells():
        v = reconstruct_cell_vector(interval_mesh, c, lambda f: samples[f])
        w = reconstruct_cell_vector(interval_mesh, c, lambda f: -samples[f], primary=flipped_primary)
        np.testing.assert_allclose(v, w)


def test_sign_law_reversed_cell_registration():
    x = np.linspace(0.0, 1.0, 8)
    forward = Mesh.interval(x)
    n = forward.n_cells
    backward = Mesh(x[:, None], [(i, i + 1) for i in reversed(range(n))])

    vf = uniform_field_samples(forward, -0.7)
    vb = uniform_field_samples(backward, -0.7)
    # interior facets now point the other way
    assert np.all(vb[1:-1] == -vf[1:-1])

    for c in range(n):
        a = reconstruct_cell_vector(forward, c, lambda f: vf[f])
        b = reconstruct_cell_vector(backward, n - 1 - c, lambda f: vb[f])
        np.testing.assert_allclose(a, b)
        np.testing.assert_allclose(a, [-0.7])


def test_unsupported_dimensionality_fails_loudly():
    mesh = Mesh.rectangle(3, 3, 1.0, 1.0)
    written = []

    with pytest.raises(UnsupportedDimensionalityError) as exc:
        dual_box_flux_to_cells(mesh, lambda c, v: written.append(c), lambda f: 1.0)
    assert written == []
    assert exc.value.cell_dim == 2 and exc.value.geo_dim == 2
    assert isinstance(exc.value, NotImplementedError)

    with pytest.raises(UnsupportedDimensionalityError):
        reconstruct_cell_vector(mesh, 0, lambda f: 1.0)
    with pytest.raises(UnsupportedDimensionalityError):
        outer_cell_normal_at_facet(mesh, 0, int(mesh.boundary_elements(0, 1)[0]))


def test_collinear_normals_are_singular():
    # line cells embedded in 2D: only +-e_x normals, nothing along e_y
    mesh = Mesh(np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]]), [(0, 1), (1, 2)])
    with pytest.raises(SingularLocalSystemError) as exc:
        reconstruct_cell_vector(mesh, 1, lambda f: 1.0)
    assert exc.value.cell == 1
    assert exc.value.facets == (1, 2)
    assert isinstance(exc.value, np.linalg.LinAlgError)


def test_batch_over_segment_and_single_cell(interval_mesh):
    samples = uniform_field_samples(interval_mesh, 4.0)
    field = CellVectorField("v", interval_mesh.n_cells, 1)
    seg = Segment("middle", (3, 4, 5))

    dual_box_flux_to_cells(interval_mesh, field.setter(), lambda f: samples[f], cells=seg)
    vals = field.values[:, 0]
    np.testing.assert_allclose(vals[[3, 4, 5]], 4.0)
    assert np.all(vals[[0, 1, 2, 6, 7, 8, 9]] == 0.0)  # untouched cells stay zero

    v = dual_box_flux_to_cell(interval_mesh, 0, field.setter(), lambda f: samples[f])
    assert field[0][0] == pytest.approx(4.0) and v[0] == pytest.approx(4.0)


def test_setter_checks_shape():
    field = CellVectorField("v", 3, 2)
    with pytest.raises(ValueError):
        field.setter()(0, np.zeros(3))


def test_unsampled_facets_are_left_out(interval_mesh):
    samples = uniform_field_samples(interval_mesh, 2.0)
    samples[0] = 0.0  # boundary facet without a value

    v = reconstruct_cell_vector(interval_mesh, 0, lambda f: samples[f])
    assert v[0] == pytest.approx(1.0)  # zero sample pulls the average down

    v = reconstruct_cell_vector(interval_mesh, 0, lambda f: samples[f], sampled=lambda f: f != 0)
    assert v[0] == pytest.approx(2.0)

    field = CellVectorField("v", interval_mesh.n_cells, 1)
    dual_box_flux_to_cells(
        interval_mesh, field.setter(), lambda f: samples[f], sampled=lambda f: 0 < f < 10
    )
    np.testing.assert_allclose(field.values[:, 0], 2.0)


def test_cell_without_sampled_facets_is_singular(interval_mesh):
    with pytest.raises(SingularLocalSystemError):
        reconstruct_cell_vector(interval_mesh, 0, lambda f: 1.0, sampled=lambda f: False)
