"""Reference-element tables: shape-function gradients and quadrature rules.

Reference simplices are the unit right triangle ``(0,0),(1,0),(0,1)`` and the
unit right tetrahedron. Quadrature weights sum to the reference measure
(1/2 and 1/6). P2 nodes are the vertices followed by one node per edge:
edges 01, 12, 20 on triangles and 01, 12, 20, 03, 13, 23 on tetrahedra.
"""
from __future__ import annotations

import math
from typing import Dict, Tuple

import numpy as np

from .errors import SetupError
from .logging_utils import get_logger

logger = get_logger('fitmesh.fe')

_SQ15 = math.sqrt(15.0)

# local vertex pairs carrying the P2 edge nodes, in node order
P2_EDGES = {
    2: ((0, 1), (1, 2), (2, 0)),
    3: ((0, 1), (1, 2), (2, 0), (0, 3), (1, 3), (2, 3)),
}


def _sym3(a: float, w: float):
    """Three points with barycentric coordinates (a, a, 1 - 2a) permuted."""
    b = 1.0 - 2.0 * a
    return [(a, a, w), (b, a, w), (a, b, w)]


def _triangle_rules() -> Dict[int, Tuple[np.ndarray, np.ndarray]]:
    rows = {
        1: [(1.0 / 3.0, 1.0 / 3.0, 0.5)],
        2: _sym3(1.0 / 6.0, 1.0 / 6.0),
        # Dunavant degree 4
        4: _sym3(0.445948490915965, 0.5 * 0.223381589678011)
        + _sym3(0.091576213509771, 0.5 * 0.109951743655322),
        # Radon 7-point, degree 5
        5: [(1.0 / 3.0, 1.0 / 3.0, 9.0 / 80.0)]
        + _sym3((6.0 - _SQ15) / 21.0, (155.0 - _SQ15) / 2400.0)
        + _sym3((6.0 + _SQ15) / 21.0, (155.0 + _SQ15) / 2400.0),
    }
    out = {}
    for degree, pts in rows.items():
        arr = np.asarray(pts, dtype=np.float64)
        out[degree] = (arr[:, :2].copy(), arr[:, 2].copy())
    return out


def _tetrahedron_rules() -> Dict[int, Tuple[np.ndarray, np.ndarray]]:
    a, b = 0.1381966011250105, 0.5854101966249685
    return {
        1: (np.full((1, 3), 0.25), np.array([1.0 / 6.0])),
        2: (np.array([[a, a, a], [b, a, a], [a, b, a], [a, a, b]]), np.full(4, 1.0 / 24.0)),
    }


_RULES = {2: _triangle_rules(), 3: _tetrahedron_rules()}


def _gauss01(n: int) -> Tuple[np.ndarray, np.ndarray]:
    x, w = np.polynomial.legendre.leggauss(n)
    return 0.5 * (x + 1.0), 0.5 * w


def collapsed_rule(dim: int, order: int) -> Tuple[np.ndarray, np.ndarray]:
    """Conical-product Gauss rule on the reference simplex, exact to ``order``.

    The unit square/cube is collapsed onto the simplex (Duffy map), so the
    Gauss-Legendre degree per direction must also absorb the map's Jacobian
    ``(1-u)`` in 2D and ``(1-u)^2 (1-v)`` in 3D.
    """
    n = int(math.ceil((order + dim) / 2.0))
    t, w = _gauss01(n)
    if dim == 2:
        u, v = np.meshgrid(t, t, indexing='ij')
        wu, wv = np.meshgrid(w, w, indexing='ij')
        u, v, wu, wv = u.ravel(), v.ravel(), wu.ravel(), wv.ravel()
        pts = np.column_stack([u, (1.0 - u) * v])
        return pts, wu * wv * (1.0 - u)
    if dim == 3:
        u, v, s = np.meshgrid(t, t, t, indexing='ij')
        wu, wv, ws = np.meshgrid(w, w, w, indexing='ij')
        u, v, s = u.ravel(), v.ravel(), s.ravel()
        pts = np.column_stack([u, (1.0 - u) * v, (1.0 - u) * (1.0 - v) * s])
        wts = (wu * wv * ws).ravel() * (1.0 - u) ** 2 * (1.0 - v)
        return pts, wts
    raise SetupError(f'no quadrature rules for dimension {dim}')


def quadrature_rule(dim: int, order: int) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(points (Q, dim), weights (Q,))`` exact for polynomials of degree ``order``.

    The lowest tabulated rule of sufficient degree is used; orders above the
    tables get a collapsed Gauss rule of the requested degree.
    """
    if dim not in _RULES:
        raise SetupError(f'no quadrature rules for dimension {dim}')
    if order < 1:
        raise SetupError(f'quadrature order must be >= 1, got {order}')
    rules = _RULES[dim]
    for degree in sorted(rules):
        if degree >= order:
            pts, wts = rules[degree]
            return pts.copy(), wts.copy()
    pts, wts = collapsed_rule(dim, order)
    logger.debug('quadrature order %d on dim=%d: collapsed Gauss rule with %d points',
                 order, dim, pts.shape[0])
    return pts, wts


def nodes_per_element(dim: int, order: int) -> int:
    if dim in (2, 3) and order == 1:
        return dim + 1
    if dim in (2, 3) and order == 2:
        return dim + 1 + len(P2_EDGES[dim])
    raise SetupError(f'unsupported element: dim={dim} order={order}')


def _barycentrics(dim: int, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    xi = np.atleast_2d(np.asarray(points, dtype=np.float64))
    lam = np.column_stack([1.0 - xi.sum(axis=1), xi])
    dlam = np.vstack([-np.ones(dim), np.eye(dim)])
    return lam, dlam


def shape_gradients(dim: int, order: int, points: np.ndarray) -> np.ndarray:
    """Reference shape-function gradients at ``points``; shape (Q, nloc, dim)."""
    nloc = nodes_per_element(dim, order)
    lam, dlam = _barycentrics(dim, points)
    Q = lam.shape[0]
    if order == 1:
        return np.broadcast_to(dlam, (Q, nloc, dim)).copy()

    nv = dim + 1
    out = np.empty((Q, nloc, dim))
    for i in range(nv):
        out[:, i, :] = (4.0 * lam[:, i] - 1.0)[:, None] * dlam[i]
    for k, (i, j) in enumerate(P2_EDGES[dim]):
        out[:, nv + k, :] = 4.0 * (lam[:, i, None] * dlam[j] + lam[:, j, None] * dlam[i])
    return out


def shape_values(dim: int, order: int, points: np.ndarray) -> np.ndarray:
    """Reference shape-function values at ``points``; shape (Q, nloc)."""
    nodes_per_element(dim, order)
    lam, _ = _barycentrics(dim, points)
    if order == 1:
        return lam
    vertex = lam * (2.0 * lam - 1.0)
    edge = np.column_stack([4.0 * lam[:, i] * lam[:, j] for i, j in P2_EDGES[dim]])
    return np.hstack([vertex, edge])


def regular_simplex_jacobian(dim: int) -> np.ndarray:
    """Jacobian mapping the reference simplex onto the regular simplex of unit edge."""
    if dim == 2:
        return np.array([[1.0, 0.5], [0.0, math.sqrt(3.0) / 2.0]])
    if dim == 3:
        return np.array([
            [1.0, 0.5, 0.5],
            [0.0, math.sqrt(3.0) / 2.0, math.sqrt(3.0) / 6.0],
            [0.0, 0.0, math.sqrt(2.0 / 3.0)],
        ])
    raise SetupError(f'no regular simplex for dimension {dim}')


__all__ = [
    'quadrature_rule', 'collapsed_rule', 'nodes_per_element', 'shape_gradients', 'shape_values',
    'regular_simplex_jacobian', 'P2_EDGES',
]
