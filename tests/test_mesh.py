import numpy as np
import pytest

from shesim.core import Mesh, Segment


def test_interval_counts_and_topology(interval_mesh):
    m = interval_mesh
    assert m.cell_dim == 1 and m.geo_dim == 1 and m.facet_dim == 0
    assert m.n_cells == 10
    assert m.n_facets == 11  # facets of line cells are the vertices

    assert m.boundary_elements(3, 0).tolist() == [3, 4]
    assert m.coboundary_elements(0, 4, 1).tolist() == [3, 4]
    assert m.coboundary_elements(0, 0, 1).tolist() == [0]
    assert m.coboundary_elements(0, 10, 1).tolist() == [9]


def test_interval_geometry(interval_mesh):
    m = interval_mesh
    assert m.centroid(1, 0)[0] == pytest.approx(0.05)
    assert m.centroid(0, 2)[0] == pytest.approx(0.2)
    assert m.measure(1, 5) == pytest.approx(0.1)
    assert m.measure(0, 5) == 1.0


def test_rectangle_counts():
    m = Mesh.rectangle(3, 3, 2.0, 1.0)
    assert m.cell_dim == 2 and m.geo_dim == 2
    assert m.n_cells == 8
    # 6 horizontal + 6 vertical + 4 diagonal edges
    assert m.n_facets == 16
    for c in m.cells():
        assert len(m.boundary_elements(c, 1)) == 3
        assert m.measure(2, c) == pytest.approx(0.5 * 1.0 * 0.5)

    n_cob = [m.coboundary_elements(1, f, 2).size for f in m.facets()]
    assert sorted(set(n_cob)) == [1, 2]
    assert n_cob.count(1) == 8  # boundary edges


def test_coboundary_is_in_registration_order():
    m = Mesh.rectangle(4, 3, 1.0, 1.0)
    for f in m.facets():
        cob = m.coboundary_elements(1, f, 2)
        assert np.all(np.diff(cob) > 0)


def test_mesh_is_read_only(interval_mesh):
    with pytest.raises(ValueError):
        interval_mesh.vertices[0, 0] = 3.0
    with pytest.raises(ValueError):
        interval_mesh.boundary_elements(0, 0)[0] = 7


def test_mesh_rejects_bad_input():
    with pytest.raises(ValueError):
        Mesh.interval([0.0, 1.0, 1.0])
    with pytest.raises(ValueError):
        Mesh(np.zeros((3, 1)), [(0, 1, 2)])  # triangles in 1D
    with pytest.raises(ValueError):
        Mesh(np.zeros((3, 1)), [(0, 5)])
    with pytest.raises(IndexError):
        Mesh.interval([0.0, 1.0]).centroid(1, 3)


def test_segment():
    s = Segment("contact", (3, 1, 2))
    assert 2 in s and 5 not in s
    assert len(s) == 3
    assert s.cell_array.tolist() == [3, 1, 2]
    with pytest.raises(ValueError):
        Segment("twice", (1, 1))
