import numpy as np

from fitmesh.core.mesh import box_mesh, elevate_order
from fitmesh.core.selection import (boundary_nodes, fit_marker_field, node_boundary_attributes,
                                    select_fit_nodes)


def test_selects_nodes_on_fit_attribute_only():
    m = box_mesh(2, 4)
    mask = select_fit_nodes(m, 2)
    y = m.nodes[:, 1]
    expected = np.isclose(y, 0.0) | np.isclose(y, 1.0)
    assert np.array_equal(mask, expected)


def test_selection_is_idempotent_and_read_only():
    m = box_mesh(2, 3)
    a = select_fit_nodes(m, 2)
    b = select_fit_nodes(m, 2)
    assert np.array_equal(a, b)
    assert not a.flags.writeable


def test_missing_attribute_gives_empty_mask():
    m = box_mesh(2, 3)
    mask = select_fit_nodes(m, 99)
    assert mask.shape == (m.n_nodes,)
    assert not mask.any()


def test_multiple_attributes_and_all_boundary_agree():
    m = box_mesh(2, 3)
    both = select_fit_nodes(m, [1, 2])
    assert np.array_equal(both, boundary_nodes(m))
    assert int(both.sum()) == 12


def test_quadratic_boundary_edge_nodes_are_selected():
    m = elevate_order(box_mesh(2, 2), 2)
    mask = select_fit_nodes(m, 2)
    # 2 sides x (3 vertices + 2 edge nodes)
    assert int(mask.sum()) == 10


def test_fit_marker_field():
    mask = np.array([True, False, True])
    assert fit_marker_field(mask).tolist() == [1.0, 0.0, 1.0]


def test_node_boundary_attributes_prefers_fit_attribute():
    m = box_mesh(2, 2)
    attrs = node_boundary_attributes(m, prefer=2)
    x, y = m.nodes[:, 0], m.nodes[:, 1]
    corners = (np.isclose(x, 0) | np.isclose(x, 1)) & (np.isclose(y, 0) | np.isclose(y, 1))
    assert np.all(attrs[corners] == 2)
    interior = (x > 0) & (x < 1) & (y > 0) & (y < 1)
    assert np.all(attrs[interior] == 0)
    sides = (np.isclose(x, 0) | np.isclose(x, 1)) & ~corners
    assert np.all(attrs[sides] == 1)
    # without a preference the smallest touching attribute wins
    assert np.all(node_boundary_attributes(m)[corners] == 1)
