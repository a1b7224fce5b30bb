"""Mesh quality diagnostics.

This module provides:
- mesh_min_angle: global minimum internal angle across triangles (2D)
- quality_summary: a small dict of size/shape statistics for logs and reports
- format_quality: one-line rendering of a quality summary
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from .geometry import simplex_signed_volumes, triangles_min_angles
from .mesh import Mesh


def mesh_min_angle(points, triangles) -> float:
    """Return the global minimum internal angle (degrees), or NaN for an empty mesh."""
    tris = np.asarray(triangles, dtype=int)
    if tris.size == 0:
        return float('nan')
    mins = triangles_min_angles(points, tris[:, :3])
    # guard against NaNs from degenerate geometry
    mins = mins[np.isfinite(mins)]
    return float(mins.min()) if mins.size else float('nan')


def quality_summary(mesh: Mesh, quality_term=None, x: Optional[np.ndarray] = None) -> Dict[str, Any]:
    """Size and shape statistics of ``mesh`` (at coordinates ``x`` when given).

    With a ``quality_term`` the summary also carries the minimum Jacobian
    determinant over quadrature points and the total shape energy.
    """
    pts = mesh.nodes if x is None else np.asarray(x, dtype=np.float64).reshape(-1, mesh.dim)
    vols = simplex_signed_volumes(pts, mesh.vertex_elements())
    out: Dict[str, Any] = {
        'n_elements': mesh.n_elements,
        'min_volume': float(vols.min()) if vols.size else float('nan'),
        'max_volume': float(vols.max()) if vols.size else float('nan'),
        'n_inverted': int(np.sum(vols <= 0.0)),
    }
    if mesh.dim == 2:
        out['min_angle_deg'] = mesh_min_angle(pts, mesh.elements)
    if quality_term is not None:
        flat = pts.reshape(-1)
        out['min_det_jacobian'] = quality_term.min_det_jacobian(flat)
        out['quality_energy'] = quality_term.energy(flat)
    return out


def format_quality(summary: Dict[str, Any]) -> str:
    parts = []
    for key, val in summary.items():
        parts.append(f'{key}={val:.4g}' if isinstance(val, float) else f'{key}={val}')
    return ' '.join(parts)


__all__ = ['mesh_min_angle', 'quality_summary', 'format_quality']
