"""Element integrator for the shape-quality energy.

For element ``e`` and quadrature point ``q`` the physical Jacobian is
``A = X_e^T dN_q`` and the normalised Jacobian is ``T = A W^-1`` where ``W``
is the target Jacobian. The energy is::

    E_q(x) = sum_e sum_q w_q det(W_eq) mu(T_eq)

With ``G_eq = dN_q W_eq^-1`` (shape ``(nloc, dim)``) the element gradient is
``P(T) G^T`` and the element Hessian contracts the metric's 4-index second
derivative with ``G`` twice. Element blocks are scattered into a global CSR
matrix over node-major dofs (``node * dim + component``).
"""
from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from scipy import sparse

from .constants import EPS_DET
from .errors import SetupError
from .fe import quadrature_rule, regular_simplex_jacobian, shape_gradients
from .logging_utils import get_logger
from .mesh import Mesh
from .metrics import QualityMetric
from .partition import PartitionedReducer, partition_elements

logger = get_logger('fitmesh.quality_energy')

TARGET_TYPES = ('ideal_shape_unit_size', 'initial')


def physical_jacobians(Xe: np.ndarray, dN: np.ndarray) -> np.ndarray:
    """``A[e, q] = X_e^T dN_q`` for element coordinates ``(E, nloc, dim)``."""
    return np.einsum('eki,qkj->eqij', Xe, dN, optimize=True)


def target_jacobians(mesh: Mesh, target: str, dN: np.ndarray) -> np.ndarray:
    """Target Jacobians ``W`` with shape ``(E, Q, dim, dim)``."""
    E, Q = mesh.n_elements, dN.shape[0]
    if target == 'ideal_shape_unit_size':
        W = regular_simplex_jacobian(mesh.dim)
        return np.broadcast_to(W, (E, Q, mesh.dim, mesh.dim)).copy()
    if target == 'initial':
        return physical_jacobians(mesh.nodes[mesh.elements], dN)
    raise SetupError(f'unknown target type {target!r}; choose from {TARGET_TYPES}')


class QualityTerm:
    """Shape-quality energy over the whole mesh with analytic derivatives.

    Parameters
    ----------
    mesh : Mesh
        Provides connectivity and the initial geometry. The term never
        mutates the mesh; it evaluates the coordinate vector it is given.
    metric : QualityMetric
        Batched shape metric on ``T``.
    target : str
        ``ideal_shape_unit_size`` or ``initial``.
    quad_order : int
        Quadrature degree used for every element.
    n_partitions, max_workers : int
        Spatial partitions and thread-pool size for evaluation.

    Raises
    ------
    SetupError
        If the initial mesh has an inverted or degenerate element.
    """

    def __init__(self, mesh: Mesh, metric: QualityMetric, target: str = 'ideal_shape_unit_size',
                 quad_order: int = 5, n_partitions: int = 1, max_workers: Optional[int] = None):
        if metric.dim != mesh.dim:
            raise SetupError(f'metric dimension {metric.dim} does not match mesh dimension {mesh.dim}')
        self.mesh = mesh
        self.metric = metric
        self.target = target
        self.dim = mesh.dim
        self.n_dofs = mesh.n_nodes * mesh.dim
        self.elements = mesh.elements
        self.points, self.weights = quadrature_rule(mesh.dim, quad_order)
        self.dN = shape_gradients(mesh.dim, mesh.order, self.points)

        A0 = physical_jacobians(mesh.nodes[self.elements], self.dN)
        det0 = np.linalg.det(A0)
        if det0.size and det0.min() <= EPS_DET * np.abs(det0).max():
            bad = int(np.sum(np.any(det0 <= 0.0, axis=1)))
            raise SetupError(f'initial mesh is inverted or degenerate ({bad} elements with '
                             f'non-positive Jacobian, min det {det0.min():.3e})')

        W = target_jacobians(mesh, target, self.dN)
        Winv = np.linalg.inv(W)
        self.qweights = self.weights[None, :] * np.linalg.det(W)
        self.G = np.einsum('qkm,eqmj->eqkj', self.dN, Winv, optimize=True)

        nloc = self.elements.shape[1]
        d = self.dim
        self._local_dofs = (self.elements[:, :, None] * d + np.arange(d)).reshape(-1, nloc * d)

        parts = partition_elements(mesh.element_centroids(), n_partitions)
        self.reducer = PartitionedReducer(parts, max_workers)
        logger.debug('QualityTerm: %d elements, %d quadrature points, target=%s, %d partitions',
                     mesh.n_elements, self.points.shape[0], target, self.reducer.n_partitions)

    # -- per-partition kernels --------------------------------------------------
    def _T(self, X: np.ndarray, ids: np.ndarray) -> np.ndarray:
        Xe = X[self.elements[ids]]
        return np.einsum('eki,eqkj->eqij', Xe, self.G[ids], optimize=True)

    def _X(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if x.shape[0] != self.n_dofs:
            raise ValueError(f'expected {self.n_dofs} dofs, got {x.shape[0]}')
        return x.reshape(-1, self.dim)

    def _element_energy_kernel(self, X, ids):
        mu = self.metric.evaluate(self._T(X, ids))
        return np.sum(self.qweights[ids] * mu, axis=1)

    def _gradient_kernel(self, X, ids):
        P = self.metric.first_derivative(self._T(X, ids))
        local = np.einsum('eq,eqij,eqkj->eki', self.qweights[ids], P, self.G[ids], optimize=True)
        return np.bincount(self._local_dofs[ids].reshape(-1), weights=local.reshape(-1),
                           minlength=self.n_dofs)

    def _hessian_kernel(self, X, ids) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        H = self.metric.second_derivative(self._T(X, ids))
        G = self.G[ids]
        local = np.einsum('eq,eqijln,eqkj,eqmn->ekiml', self.qweights[ids], H, G, G, optimize=True)
        ndl = self._local_dofs.shape[1]
        local = local.reshape(-1, ndl, ndl)
        dofs = self._local_dofs[ids]
        rows = np.repeat(dofs, ndl, axis=1).reshape(-1)
        cols = np.tile(dofs, (1, ndl)).reshape(-1)
        return rows, cols, local.reshape(-1)

    # -- public interface -------------------------------------------------------
    def jacobian_determinants(self, x) -> np.ndarray:
        """``det(A)`` at every element and quadrature point, shape ``(E, Q)``."""
        X = self._X(x)
        return np.linalg.det(physical_jacobians(X[self.elements], self.dN))

    def min_det_jacobian(self, x) -> float:
        dets = self.jacobian_determinants(x)
        return float(dets.min()) if dets.size else np.inf

    def is_valid(self, x) -> bool:
        return self.min_det_jacobian(x) > 0.0

    def element_energies(self, x) -> np.ndarray:
        X = self._X(x)
        out = np.empty(self.mesh.n_elements)
        for ids, part in zip(self.reducer.partitions,
                             self.reducer.map(lambda ids: self._element_energy_kernel(X, ids))):
            out[ids] = part
        return out

    def energy(self, x) -> float:
        X = self._X(x)
        if not self.is_valid(x):
            return np.inf
        return float(self.reducer.reduce(lambda ids: float(np.sum(self._element_energy_kernel(X, ids)))))

    def gradient(self, x) -> np.ndarray:
        X = self._X(x)
        return self.reducer.reduce(lambda ids: self._gradient_kernel(X, ids))

    def hessian(self, x) -> sparse.csr_matrix:
        X = self._X(x)

        def combine(parts):
            rows = np.concatenate([p[0] for p in parts])
            cols = np.concatenate([p[1] for p in parts])
            vals = np.concatenate([p[2] for p in parts])
            return sparse.coo_matrix((vals, (rows, cols)), shape=(self.n_dofs, self.n_dofs)).tocsr()

        return self.reducer.reduce(lambda ids: self._hessian_kernel(X, ids), combine)


__all__ = ['QualityTerm', 'TARGET_TYPES', 'physical_jacobians', 'target_jacobians']
