"""Simplex geometry primitives.

Vectorized helpers working on ``points (N, dim)`` and linear simplex
connectivity ``(M, dim + 1)``. Higher-order connectivity is accepted where
noted; only the leading ``dim + 1`` vertex columns are used.
"""
from __future__ import annotations

import math
from typing import Dict, Tuple

import numpy as np

from .constants import EPS_DIVISION

__all__ = [
    'simplex_signed_volumes', 'ensure_positive_orientation',
    'boundary_facets', 'triangles_min_angles', 'simplex_centroids',
]

# Local vertex tuples of each facet, ordered so the facet is opposite vertex i
_FACETS = {
    2: ((1, 2), (2, 0), (0, 1)),
    3: ((1, 2, 3), (0, 3, 2), (0, 1, 3), (0, 2, 1)),
}


def simplex_signed_volumes(points, simplices):
    """Signed measure (area in 2D, volume in 3D) of each simplex.

    Positive for counter-clockwise triangles and right-handed tetrahedra.
    """
    pts = np.asarray(points, dtype=np.float64)
    S = np.asarray(simplices, dtype=np.int64)
    if S.size == 0:
        return np.empty((0,), dtype=np.float64)
    dim = pts.shape[1]
    p0 = pts[S[:, 0]]
    edges = np.stack([pts[S[:, k]] - p0 for k in range(1, dim + 1)], axis=-1)
    return np.linalg.det(edges) / math.factorial(dim)


def ensure_positive_orientation(points, simplices):
    """Return a copy of linear ``simplices`` with every row positively oriented.

    Rows with non-positive signed volume get their last two vertices swapped.
    """
    S = np.asarray(simplices, dtype=np.int64).copy()
    if S.size == 0:
        return S
    vols = simplex_signed_volumes(points, S)
    flip = vols <= 0.0
    if np.any(flip):
        S[flip, -2], S[flip, -1] = S[flip, -1].copy(), S[flip, -2].copy()
    return S


def simplex_facets(simplices, dim: int) -> np.ndarray:
    """All facets of the linear simplices, shape (M, dim + 1, dim)."""
    S = np.asarray(simplices, dtype=np.int64)[:, :dim + 1]
    return np.stack([S[:, list(f)] for f in _FACETS[dim]], axis=1)


def boundary_facets(simplices, dim: int) -> np.ndarray:
    """Facets that belong to exactly one simplex, in element orientation."""
    facets = simplex_facets(simplices, dim).reshape(-1, dim)
    keys = np.sort(facets, axis=1)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = np.asarray(inverse).reshape(-1)
    return facets[counts[inverse] == 1]


def simplex_centroids(points, simplices, dim: int) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64)
    S = np.asarray(simplices, dtype=np.int64)[:, :dim + 1]
    return pts[S].mean(axis=1)


def triangles_min_angles(points, tris):
    """Vectorized per-triangle minimum internal angle (degrees).

    points: (N,2) float array
    tris:   (M,3+) int array; only the three vertex columns are used
    Returns: (M,) float64 array of min angles.
    """
    pts = np.asarray(points, dtype=np.float64)
    T = np.asarray(tris, dtype=np.int64)
    if T.size == 0:
        return np.empty((0,), dtype=float)
    p0 = pts[T[:, 0]]
    p1 = pts[T[:, 1]]
    p2 = pts[T[:, 2]]
    # side lengths opposite to vertices: a=|p1-p2|, b=|p0-p2|, c=|p0-p1|
    a = np.linalg.norm(p1 - p2, axis=1)
    b = np.linalg.norm(p0 - p2, axis=1)
    c = np.linalg.norm(p0 - p1, axis=1)

    def angle_opposite(A, B, C):
        cosang = (B * B + C * C - A * A) / (2.0 * B * C + EPS_DIVISION)
        return np.degrees(np.arccos(np.clip(cosang, -1.0, 1.0)))
    return np.minimum(angle_opposite(a, b, c),
                      np.minimum(angle_opposite(b, c, a), angle_opposite(c, a, b)))


def edge_key(a: int, b: int) -> Tuple[int, int]:
    return (a, b) if a < b else (b, a)


def midpoint_table(simplices, dim: int) -> Dict[Tuple[int, int], int]:
    """Enumerate the unique edges of linear simplices: sorted edge -> edge id."""
    S = np.asarray(simplices, dtype=np.int64)[:, :dim + 1]
    table: Dict[Tuple[int, int], int] = {}
    n = dim + 1
    for row in S:
        for i in range(n):
            for j in range(i + 1, n):
                key = edge_key(int(row[i]), int(row[j]))
                if key not in table:
                    table[key] = len(table)
    return table


__all__ += ['edge_key', 'midpoint_table']
