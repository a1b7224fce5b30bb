"""Visualization helpers for the fitting driver.

Only 2D meshes are drawn; 3D meshes are skipped with a warning (export them
with ``io.write_vtk`` instead). Quadratic triangles are drawn through their
four linear sub-triangles.
"""
from __future__ import annotations

import os as _os
import matplotlib as _mpl
# Ensure a non-interactive backend in headless environments before importing pyplot
if not _os.environ.get('MPLBACKEND'):
    _mpl.use('Agg')
import numpy as np
import matplotlib.pyplot as plt

from .logging_utils import get_logger
from .mesh import Mesh

logger = get_logger('fitmesh.viz')


def _plot_triangles(mesh: Mesh) -> np.ndarray:
    E = mesh.elements
    if mesh.order == 1:
        return E
    v0, v1, v2, m01, m12, m20 = (E[:, k] for k in range(6))
    sub = [np.column_stack(c) for c in ((v0, m01, m20), (m01, v1, m12), (m20, m12, v2), (m01, m12, m20))]
    return np.vstack(sub)


def _can_plot(mesh: Mesh, outname: str) -> bool:
    if mesh.dim != 2:
        logger.warning('skipping %s: only 2D meshes can be plotted', outname)
        return False
    return True


def plot_mesh(mesh: Mesh, outname: str = "mesh.png", x=None, mask=None, title=None):
    """Plot the mesh wireframe, optionally at coordinates ``x`` with marked nodes.

    Args:
        mesh: Mesh providing connectivity (and coordinates when ``x`` is None)
        outname: output image path
        x: flat node-major coordinate vector to draw instead of ``mesh.nodes``
        mask: boolean fit mask; marked nodes are drawn as the fit-marker field
        title: figure title, defaults to ``outname``
    """
    if not _can_plot(mesh, outname):
        return
    pts = mesh.nodes if x is None else np.asarray(x, dtype=np.float64).reshape(-1, 2)
    tris = _plot_triangles(mesh)
    plt.figure(figsize=(6, 6))
    plt.triplot(pts[:, 0], pts[:, 1], tris, lw=0.6)
    # scale markers by vertex count
    npts = max(1, pts.shape[0])
    s = max(0.6, min(8.0, 200.0 / float(npts)))
    if mask is not None:
        marker = np.asarray(mask, dtype=bool)
        plt.scatter(pts[~marker, 0], pts[~marker, 1], s=s, color=(0.4, 0.4, 0.4))
        plt.scatter(pts[marker, 0], pts[marker, 1], s=4 * s, color=(0.85, 0.2, 0.2), label='fit nodes')
        plt.legend(loc='upper right', fontsize=8, frameon=True)
    else:
        plt.scatter(pts[:, 0], pts[:, 1], s=s)
    plt.gca().set_aspect('equal')
    plt.title(title or outname)
    plt.savefig(outname, dpi=150)
    plt.close()


def plot_fit_targets(mesh: Mesh, mask, targets, outname: str = "targets.png", x=None):
    """Plot the mesh with arrows from each marked node to its target position."""
    if not _can_plot(mesh, outname):
        return
    pts = mesh.nodes if x is None else np.asarray(x, dtype=np.float64).reshape(-1, 2)
    marker = np.asarray(mask, dtype=bool)
    tgt = np.asarray(targets, dtype=np.float64)
    plt.figure(figsize=(6, 6))
    plt.triplot(pts[:, 0], pts[:, 1], _plot_triangles(mesh), lw=0.5, color=(0.6, 0.6, 0.6))
    if np.any(marker):
        src = pts[marker]
        dst = tgt[marker]
        plt.quiver(src[:, 0], src[:, 1], dst[:, 0] - src[:, 0], dst[:, 1] - src[:, 1],
                   angles='xy', scale_units='xy', scale=1.0, width=0.003, color=(0.2, 0.4, 0.8))
        plt.scatter(dst[:, 0], dst[:, 1], s=10, marker='x', color=(0.85, 0.2, 0.2), label='targets')
        plt.legend(loc='upper right', fontsize=8, frameon=True)
    plt.gca().set_aspect('equal')
    plt.title(outname)
    plt.savefig(outname, dpi=150)
    plt.close()


__all__ = ['plot_mesh', 'plot_fit_targets']
