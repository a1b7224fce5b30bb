import numpy as np
import pytest

from fitmesh.core.errors import SetupError
from fitmesh.core.mesh import Mesh, box_mesh, elevate_order
from fitmesh.core.metrics import make_metric
from fitmesh.core.quality_energy import QualityTerm


def _perturbed(mesh, scale=0.04, seed=0):
    rng = np.random.default_rng(seed)
    return mesh.coordinates() + scale * rng.uniform(-1.0, 1.0, mesh.coordinates().shape)


def _term(mesh, **kw):
    return QualityTerm(mesh, make_metric('shape', mesh.dim), quad_order=kw.pop('quad_order', 4), **kw)


MESHES = {
    'p1-tri': lambda: box_mesh(2, 2),
    'p2-tri': lambda: elevate_order(box_mesh(2, 2), 2),
    'p1-tet': lambda: box_mesh(3, 1),
    'p2-tet': lambda: elevate_order(box_mesh(3, 1), 2),
}


@pytest.mark.parametrize('name', sorted(MESHES))
def test_gradient_matches_finite_differences(name):
    mesh = MESHES[name]()
    q = _term(mesh)
    x = _perturbed(mesh)
    g = q.gradient(x)
    h = 1e-6
    fd = np.zeros_like(x)
    for k in range(x.size):
        e = np.zeros_like(x); e[k] = h
        fd[k] = (q.energy(x + e) - q.energy(x - e)) / (2.0 * h)
    assert np.allclose(g, fd, atol=1e-6, rtol=1e-5)


@pytest.mark.parametrize('name', sorted(MESHES))
def test_hessian_matches_finite_differences(name):
    mesh = MESHES[name]()
    q = _term(mesh)
    x = _perturbed(mesh, seed=1)
    H = q.hessian(x).toarray()
    assert np.allclose(H, H.T, atol=1e-8)
    h = 1e-6
    for k in range(0, x.size, 3):
        e = np.zeros_like(x); e[k] = h
        col = (q.gradient(x + e) - q.gradient(x - e)) / (2.0 * h)
        assert np.allclose(H[:, k], col, atol=1e-5, rtol=1e-4)


def test_ideal_target_energy_zero_for_regular_triangles():
    # two equilateral triangles sharing an edge
    s = np.sqrt(3.0) / 2.0
    nodes = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, s], [1.5, s]])
    mesh = Mesh(nodes, np.array([[0, 1, 2], [1, 3, 2]]), np.array([[0, 1], [1, 3], [3, 2], [2, 0]]),
                np.ones(4))
    q = _term(mesh)
    x = mesh.coordinates()
    assert q.energy(x) == pytest.approx(0.0, abs=1e-12)
    assert np.allclose(q.gradient(x), 0.0, atol=1e-12)


@pytest.mark.parametrize('name', sorted(MESHES))
def test_initial_target_makes_start_optimal(name):
    mesh = MESHES[name]()
    q = _term(mesh, target='initial')
    x = mesh.coordinates().copy()
    assert q.energy(x) == pytest.approx(0.0, abs=1e-10)
    assert np.allclose(q.gradient(x), 0.0, atol=1e-10)
    assert q.energy(_perturbed(mesh)) > 0.0


def test_partitioned_assembly_matches_serial():
    mesh = box_mesh(2, 4)
    x = _perturbed(mesh, seed=2)
    serial = _term(mesh)
    parallel = _term(mesh, n_partitions=4, max_workers=2)
    assert parallel.reducer.n_partitions > 1
    assert parallel.energy(x) == pytest.approx(serial.energy(x))
    assert np.allclose(parallel.gradient(x), serial.gradient(x))
    assert abs(parallel.hessian(x) - serial.hessian(x)).max() < 1e-10
    assert np.allclose(parallel.element_energies(x), serial.element_energies(x))


def test_invalid_configuration_has_infinite_energy():
    mesh = box_mesh(2, 2)
    q = _term(mesh)
    x = mesh.coordinates().copy()
    assert q.is_valid(x)
    centre = int(np.argmin(np.linalg.norm(mesh.nodes - 0.5, axis=1)))
    x[2 * centre] += 0.9  # push the centre node past its neighbours
    assert not q.is_valid(x)
    assert q.min_det_jacobian(x) <= 0.0
    assert np.isinf(q.energy(x))


def test_inverted_initial_mesh_is_a_setup_error():
    mesh = box_mesh(2, 1)
    mesh.elements[0] = mesh.elements[0][[0, 2, 1]]
    with pytest.raises(SetupError):
        _term(mesh)


def test_element_energies_sum_to_energy():
    mesh = box_mesh(3, 1)
    q = _term(mesh)
    x = _perturbed(mesh, scale=0.02)
    assert q.element_energies(x).sum() == pytest.approx(q.energy(x))
