import numpy as np
import pytest

from fitmesh.core.errors import SetupError
from fitmesh.core.fe import P2_EDGES
from fitmesh.core.geometry import boundary_facets
from fitmesh.core.mesh import Mesh, box_mesh, elevate_order, mesh_from_source, uniform_refinement


def test_square_box_counts_and_attributes():
    m = box_mesh(2, 3)
    assert m.n_nodes == 16
    assert m.n_elements == 18
    assert m.n_boundary == 12
    assert np.all(m.element_volumes() > 0)
    assert m.element_volumes().sum() == pytest.approx(1.0)
    # attribute 2 sits on the y = const sides
    y = m.nodes[m.boundary][:, :, 1]
    on_y_side = np.isclose(y[:, 0], y[:, 1])
    assert np.all(m.boundary_attributes[on_y_side] == 2)
    assert np.all(m.boundary_attributes[~on_y_side] == 1)


def test_cube_box_is_valid_and_closed():
    m = box_mesh(3, 2)
    assert m.n_elements == 6 * 8
    assert np.all(m.element_volumes() > 0)
    assert m.element_volumes().sum() == pytest.approx(1.0)
    # 6 faces x 4 squares x 2 triangles
    assert m.n_boundary == 48
    assert set(m.boundary_attributes.tolist()) == {1, 2}


def test_coordinates_is_live_view():
    m = box_mesh(2, 1)
    x = m.coordinates()
    x[0] = 0.25
    assert m.nodes[0, 0] == 0.25


@pytest.mark.parametrize('dim', [2, 3])
def test_uniform_refinement_preserves_measure_and_boundary(dim):
    m = box_mesh(dim, 1 if dim == 3 else 2)
    r = uniform_refinement(m)
    assert r.n_elements == m.n_elements * 2 ** dim
    assert r.n_boundary == m.n_boundary * 2 ** (dim - 1)
    vols = r.element_volumes()
    assert np.all(vols > 0)
    assert vols.sum() == pytest.approx(1.0)
    assert np.bincount(r.boundary_attributes).tolist()[1:] == \
        (np.bincount(m.boundary_attributes) * 2 ** (dim - 1)).tolist()[1:]
    # the refined boundary facets are exactly the topological boundary
    derived = {tuple(sorted(f)) for f in boundary_facets(r.elements, dim).tolist()}
    stored = {tuple(sorted(f)) for f in r.boundary.tolist()}
    assert derived == stored


def test_refined_triangle_children_are_similar():
    m = box_mesh(2, 1)
    r = uniform_refinement(m)
    assert np.allclose(np.sort(r.element_volumes()), 0.125)


def test_elevate_order_adds_edge_midpoints():
    m = box_mesh(2, 1)
    q = elevate_order(m, 2)
    assert q.order == 2
    assert q.elements.shape == (2, 6)
    assert q.boundary.shape == (4, 3)
    assert q.n_nodes == 4 + 5  # four vertices, five edges
    e = q.elements[0]
    assert np.allclose(q.nodes[e[3]], 0.5 * (q.nodes[e[0]] + q.nodes[e[1]]))
    b = q.boundary[0]
    assert np.allclose(q.nodes[b[2]], 0.5 * (q.nodes[b[0]] + q.nodes[b[1]]))
    assert elevate_order(q, 2) is q


def test_elevate_tet_mesh_shares_edge_nodes_with_boundary():
    m = box_mesh(3, 1)
    q = elevate_order(m, 2)
    assert q.elements.shape == (6, 10)
    assert q.boundary.shape == (12, 6)
    assert q.boundary_nodes_per_facet == 6
    # 12 cube edges, 6 face diagonals, 1 body diagonal
    assert q.n_nodes == 8 + 19
    assert q.n_vertices == 8
    assert 'vertices=8' in q.summary()
    for row in q.elements:
        for k, (i, j) in enumerate(P2_EDGES[3]):
            assert np.allclose(q.nodes[row[4 + k]], 0.5 * (q.nodes[row[i]] + q.nodes[row[j]]))
    for row in q.boundary:
        for k, (i, j) in enumerate(((0, 1), (1, 2), (2, 0))):
            assert np.allclose(q.nodes[row[3 + k]], 0.5 * (q.nodes[row[i]] + q.nodes[row[j]]))
    # edge nodes of facets are the ones the elements use
    assert set(q.boundary[:, 3:].ravel()) <= set(q.elements[:, 4:].ravel())
    assert np.all(q.element_volumes() > 0.0)


def test_unsupported_operations_raise_setup_error():
    with pytest.raises(SetupError):
        elevate_order(box_mesh(3, 1), 3)
    with pytest.raises(SetupError):
        uniform_refinement(elevate_order(box_mesh(2, 1), 2))
    with pytest.raises(SetupError):
        mesh_from_source('disk:3')
    with pytest.raises(SetupError):
        Mesh(np.zeros((3, 2)), np.array([[0, 1, 5]]), np.zeros((0, 2)), np.zeros(0))


def test_copy_is_independent():
    m = box_mesh(2, 2)
    c = m.copy()
    c.nodes[0] += 1.0
    assert not np.allclose(c.nodes, m.nodes)
