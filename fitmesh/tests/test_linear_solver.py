import numpy as np
import pytest
from scipy import sparse

from fitmesh.core.errors import SetupError
from fitmesh.core.linear_solver import LinearSolver, jacobi_preconditioner


def _laplacian(n):
    main = 2.0 * np.ones(n)
    off = -np.ones(n - 1)
    return sparse.diags([off, main, off], [-1, 0, 1], format='csr')


@pytest.mark.parametrize('method', ['minres', 'cg', 'gmres'])
def test_solves_spd_system(method):
    A = _laplacian(30)
    x_true = np.linspace(0.0, 1.0, 30)
    b = A @ x_true
    res = LinearSolver(method, max_iter=200, rel_tol=1e-10).solve(A, b)
    assert res.converged
    assert res.iterations > 0
    assert np.allclose(res.x, x_true, atol=1e-6)


def test_minres_handles_indefinite_system():
    A = sparse.diags([3.0, -1.0, 2.0, -4.0], format='csr')
    b = np.array([3.0, 1.0, 2.0, -8.0])
    res = LinearSolver('minres', max_iter=50, rel_tol=1e-10).solve(A, b)
    assert np.allclose(res.x, [1.0, -1.0, 1.0, 2.0])


def test_non_convergence_is_reported_not_raised():
    A = _laplacian(200)
    b = np.ones(200)
    res = LinearSolver('cg', max_iter=2, rel_tol=1e-14, preconditioner='none').solve(A, b)
    assert not res.converged
    assert res.info != 0
    assert np.all(np.isfinite(res.x))


def test_absolute_tolerance_is_folded_in():
    A = sparse.diags(np.linspace(1.0, 100.0, 100), format='csr')
    b = np.ones(100)
    tight = LinearSolver('cg', max_iter=500, rel_tol=1e-13, preconditioner='none').solve(A, b)
    loose = LinearSolver('cg', max_iter=500, rel_tol=1e-13, abs_tol=1.0,
                         preconditioner='none').solve(A, b)
    assert loose.converged
    assert loose.iterations < tight.iterations


def test_zero_rhs_short_circuits():
    res = LinearSolver().solve(_laplacian(5), np.zeros(5))
    assert res.converged and res.iterations == 0
    assert np.all(res.x == 0.0)


def test_jacobi_preconditioner_uses_absolute_diagonal():
    A = sparse.diags([4.0, -2.0, 0.0], format='csr')
    M = jacobi_preconditioner(A)
    assert np.allclose(M.matvec(np.ones(3)), [0.25, 0.5, 1.0])


def test_bad_method_rejected():
    with pytest.raises(SetupError):
        LinearSolver('lu')
