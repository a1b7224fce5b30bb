"""Preconditioned Krylov solve for the Newton correction system."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import LinearOperator, cg, gmres, minres

from .constants import DEFAULT_LINEAR_RTOL, EPS_TINY
from .errors import SetupError
from .logging_utils import get_logger

logger = get_logger('fitmesh.linear_solver')

_METHODS = {'minres': minres, 'cg': cg, 'gmres': gmres}


@dataclass
class LinearSolveResult:
    x: np.ndarray
    converged: bool
    iterations: int
    info: int
    residual_norm: float = float('nan')


def jacobi_preconditioner(A) -> Optional[LinearOperator]:
    """SPD diagonal preconditioner ``1 / |diag(A)|``; None when A has no diagonal."""
    if not sparse.issparse(A) and not isinstance(A, np.ndarray):
        return None
    d = np.abs(np.asarray(A.diagonal(), dtype=np.float64))
    inv = np.where(d > EPS_TINY * max(float(d.max(initial=0.0)), 1.0), 1.0 / np.maximum(d, EPS_TINY), 1.0)
    return LinearOperator(A.shape, matvec=lambda v: inv * v, dtype=np.float64)


class LinearSolver:
    """Iterative solver wrapper over scipy.sparse.linalg.

    The absolute tolerance is folded into an effective relative tolerance
    ``max(rel_tol, abs_tol / |b|)`` so every method stops on the same test.
    Non-convergence is reported in the result, never raised.
    """

    def __init__(self, method: str = 'minres', max_iter: int = 100, rel_tol: float = DEFAULT_LINEAR_RTOL,
                 abs_tol: float = 0.0, preconditioner: str = 'jacobi'):
        if method not in _METHODS:
            raise SetupError(f'unknown linear solver {method!r}; choose from {sorted(_METHODS)}')
        if preconditioner not in ('jacobi', 'none'):
            raise SetupError(f'unknown preconditioner {preconditioner!r}')
        self.method = method
        self.max_iter = max_iter
        self.rel_tol = rel_tol
        self.abs_tol = abs_tol
        self.preconditioner = preconditioner

    @classmethod
    def from_config(cls, cfg) -> 'LinearSolver':
        return cls(cfg.method, cfg.max_iter, cfg.rel_tol, cfg.abs_tol, cfg.preconditioner)

    def solve(self, A, b, x0=None) -> LinearSolveResult:
        b = np.asarray(b, dtype=np.float64)
        bnorm = float(np.linalg.norm(b))
        if bnorm == 0.0:
            return LinearSolveResult(np.zeros_like(b), True, 0, 0, 0.0)
        rtol = max(self.rel_tol, self.abs_tol / bnorm)
        M = jacobi_preconditioner(A) if self.preconditioner == 'jacobi' else None

        count = [0]

        def callback(_):
            count[0] += 1

        kwargs = dict(x0=x0, rtol=rtol, maxiter=self.max_iter, M=M, callback=callback)
        if self.method == 'gmres':
            kwargs['callback_type'] = 'pr_norm'
        x, info = _METHODS[self.method](A, b, **kwargs)
        res = float(np.linalg.norm(b - A @ x))
        converged = info == 0
        if not converged:
            logger.debug('%s did not converge: info=%d, iterations=%d, |r|/|b|=%.3e',
                         self.method, info, count[0], res / bnorm)
        return LinearSolveResult(x, converged, count[0], int(info), res)

    def __repr__(self):
        return (f'LinearSolver(method={self.method!r}, max_iter={self.max_iter}, '
                f'rel_tol={self.rel_tol:g}, abs_tol={self.abs_tol:g})')


__all__ = ['LinearSolver', 'LinearSolveResult', 'jacobi_preconditioner']
