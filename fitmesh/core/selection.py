"""Node selection: which nodes participate in surface fitting."""
from __future__ import annotations

from typing import Iterable, Optional, Union

import numpy as np

from .logging_utils import get_logger
from .mesh import Mesh

logger = get_logger('fitmesh.selection')


def _attribute_set(fit_attribute: Union[int, Iterable[int]]) -> np.ndarray:
    if isinstance(fit_attribute, (int, np.integer)):
        return np.array([int(fit_attribute)], dtype=np.int64)
    return np.asarray(list(fit_attribute), dtype=np.int64)


def select_fit_nodes(mesh: Mesh, fit_attribute: Union[int, Iterable[int]] = 2,
                     n_nodes: Optional[int] = None) -> np.ndarray:
    """Mark every node of every boundary facet carrying ``fit_attribute``.

    ``fit_attribute`` may be a single attribute or an iterable of them. A node
    shared by several facets is marked once; recomputing gives the same mask.
    The returned array is read-only.
    """
    size = mesh.n_nodes if n_nodes is None else int(n_nodes)
    mask = np.zeros(size, dtype=bool)
    hit = np.isin(mesh.boundary_attributes, _attribute_set(fit_attribute))
    if np.any(hit):
        mask[mesh.boundary[hit].reshape(-1)] = True
    mask.setflags(write=False)
    logger.debug('selected %d of %d nodes on attribute(s) %s', int(mask.sum()), size, fit_attribute)
    return mask


def boundary_nodes(mesh: Mesh) -> np.ndarray:
    """Mark every node that lies on some boundary facet."""
    mask = np.zeros(mesh.n_nodes, dtype=bool)
    mask[mesh.boundary.reshape(-1)] = True
    mask.setflags(write=False)
    return mask


def fit_marker_field(mask: np.ndarray) -> np.ndarray:
    """Visualisation scalar: 1.0 at marked nodes and 0.0 elsewhere."""
    return np.asarray(mask, dtype=bool).astype(np.float64)


def node_boundary_attributes(mesh: Mesh, prefer: Optional[int] = None) -> np.ndarray:
    """Per-node boundary attribute, 0 for interior nodes.

    A node touching the ``prefer`` attribute gets it; otherwise the smallest
    attribute among the facets touching the node.
    """
    attrs = np.zeros(mesh.n_nodes, dtype=np.int64)
    if mesh.n_boundary == 0:
        return attrs
    nb = mesh.boundary.shape[1]
    node_ids = mesh.boundary.reshape(-1)
    facet_attrs = np.repeat(mesh.boundary_attributes, nb)
    big = np.iinfo(np.int64).max
    smallest = np.full(mesh.n_nodes, big, dtype=np.int64)
    np.minimum.at(smallest, node_ids, facet_attrs)
    touched = smallest != big
    attrs[touched] = smallest[touched]
    if prefer is not None:
        attrs[node_ids[facet_attrs == prefer]] = prefer
    return attrs


__all__ = ['select_fit_nodes', 'boundary_nodes', 'fit_marker_field', 'node_boundary_attributes']
