"""Simplicial mesh container and the topology operations the fitter needs.

``Mesh`` stores node coordinates, element and boundary-facet connectivity and
integer attributes. Nodes are kept as a C-contiguous ``(N, dim)`` array, so
``Mesh.coordinates()`` is a flat, node-major *view* that solvers can update in
place.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from .errors import SetupError
from .fe import P2_EDGES, nodes_per_element
from .geometry import (boundary_facets, edge_key, ensure_positive_orientation,
                       midpoint_table, simplex_centroids, simplex_signed_volumes)
from .logging_utils import get_logger

logger = get_logger('fitmesh.mesh')

# local vertex pairs of a boundary facet carrying its P2 edge nodes
FACET_EDGES = {2: ((0, 1),), 3: P2_EDGES[2]}


@dataclass
class Mesh:
    nodes: np.ndarray
    elements: np.ndarray
    boundary: np.ndarray
    boundary_attributes: np.ndarray
    element_attributes: Optional[np.ndarray] = None
    order: int = 1
    n_vertices: int = field(default=-1)

    def __post_init__(self):
        self.nodes = np.ascontiguousarray(self.nodes, dtype=np.float64)
        if self.nodes.ndim != 2 or self.nodes.shape[1] not in (2, 3):
            raise SetupError(f'nodes must be (N, 2) or (N, 3), got shape {self.nodes.shape}')
        dim = self.nodes.shape[1]
        self.elements = np.ascontiguousarray(self.elements, dtype=np.int64)
        nloc = nodes_per_element(dim, self.order)
        if self.elements.ndim != 2 or self.elements.shape[1] != nloc:
            raise SetupError(f'elements must be (M, {nloc}) for dim={dim} order={self.order}, '
                             f'got shape {self.elements.shape}')
        self.boundary = np.asarray(self.boundary, dtype=np.int64).reshape(-1, self.boundary_nodes_per_facet)
        self.boundary_attributes = np.asarray(self.boundary_attributes, dtype=np.int64).reshape(-1)
        if self.boundary_attributes.shape[0] != self.boundary.shape[0]:
            raise SetupError('boundary_attributes must have one entry per boundary facet')
        if self.element_attributes is None:
            self.element_attributes = np.ones(self.elements.shape[0], dtype=np.int64)
        else:
            self.element_attributes = np.asarray(self.element_attributes, dtype=np.int64).reshape(-1)
        if self.n_vertices < 0:
            self.n_vertices = self.nodes.shape[0]
        for name, arr in (('elements', self.elements), ('boundary', self.boundary)):
            if arr.size and (arr.min() < 0 or arr.max() >= self.nodes.shape[0]):
                raise SetupError(f'{name} reference nodes outside [0, {self.nodes.shape[0]})')

    @property
    def dim(self) -> int:
        return int(self.nodes.shape[1])

    @property
    def n_nodes(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def n_elements(self) -> int:
        return int(self.elements.shape[0])

    @property
    def n_boundary(self) -> int:
        return int(self.boundary.shape[0])

    @property
    def geometry(self) -> str:
        return 'triangle' if self.dim == 2 else 'tetrahedron'

    @property
    def boundary_nodes_per_facet(self) -> int:
        # segments (2 or 3 nodes) in 2D, triangles (3 or 6 nodes) in 3D
        if self.order == 1:
            return self.dim
        return self.dim + len(FACET_EDGES[self.dim])

    def vertex_elements(self) -> np.ndarray:
        return self.elements[:, :self.dim + 1]

    def coordinates(self) -> np.ndarray:
        """Flat node-major coordinate vector; a view into ``nodes``."""
        return self.nodes.reshape(-1)

    def element_volumes(self) -> np.ndarray:
        return simplex_signed_volumes(self.nodes, self.vertex_elements())

    def element_centroids(self) -> np.ndarray:
        return simplex_centroids(self.nodes, self.elements, self.dim)

    def copy(self) -> 'Mesh':
        return Mesh(self.nodes.copy(), self.elements.copy(), self.boundary.copy(),
                    self.boundary_attributes.copy(), self.element_attributes.copy(),
                    order=self.order, n_vertices=self.n_vertices)

    def summary(self) -> str:
        return (f'{self.geometry} mesh: dim={self.dim} order={self.order} nodes={self.n_nodes} '
                f'(vertices={self.n_vertices}) '
                f'elements={self.n_elements} boundary={self.n_boundary} '
                f'attributes={sorted(set(self.boundary_attributes.tolist()))}')


def box_mesh(dim: int = 2, n: int = 4, axis_attributes: Optional[Sequence[int]] = None) -> Mesh:
    """Structured unit square (triangles) or unit cube (Kuhn tetrahedra).

    Boundary facets normal to axis ``a`` get attribute ``axis_attributes[a]``.
    The default tags the sides x=const with 1 and the sides y=const (and z=const
    in 3D) with 2 and 1, so attribute 2 selects the bottom and top sides.
    """
    if dim not in (2, 3):
        raise SetupError(f'box_mesh supports dim 2 or 3, got {dim}')
    if n < 1:
        raise SetupError(f'box_mesh needs n >= 1, got {n}')
    if axis_attributes is None:
        axis_attributes = (1, 2) if dim == 2 else (1, 2, 1)
    if len(axis_attributes) != dim:
        raise SetupError('axis_attributes needs one entry per axis')

    ticks = np.linspace(0.0, 1.0, n + 1)
    grids = np.meshgrid(*([ticks] * dim), indexing='ij')
    nodes = np.column_stack([g.reshape(-1) for g in grids])
    strides = np.array([(n + 1) ** (dim - 1 - a) for a in range(dim)], dtype=np.int64)

    cells = np.array(list(itertools.product(range(n), repeat=dim)), dtype=np.int64)
    base = cells @ strides
    simplices = []
    # Kuhn decomposition: one simplex per axis permutation, conforming across cells
    for perm in itertools.permutations(range(dim)):
        verts = [base]
        cur = base
        for axis in perm:
            cur = cur + strides[axis]
            verts.append(cur)
        simplices.append(np.column_stack(verts))
    elements = ensure_positive_orientation(nodes, np.vstack(simplices))

    facets = boundary_facets(elements, dim)
    fc = nodes[facets]
    attrs = np.zeros(facets.shape[0], dtype=np.int64)
    for axis in range(dim):
        on_side = np.all(np.isclose(fc[:, :, axis], fc[:, :1, axis]), axis=1)
        attrs[on_side & (attrs == 0)] = axis_attributes[axis]
    return Mesh(nodes, elements, facets, attrs)


def _midpoint_nodes(mesh: Mesh):
    """Edge table of the linear mesh and the coordinates of the edge midpoints."""
    table = midpoint_table(mesh.vertex_elements(), mesh.dim)
    edges = np.array(sorted(table, key=table.get), dtype=np.int64).reshape(-1, 2)
    mids = 0.5 * (mesh.nodes[edges[:, 0]] + mesh.nodes[edges[:, 1]])
    return table, mids


def uniform_refinement(mesh: Mesh) -> Mesh:
    """Split every simplex into 2**dim children through its edge midpoints.

    Boundary facets are split accordingly and keep their attribute.
    """
    if mesh.order != 1:
        raise SetupError('uniform refinement is only supported on linear meshes')
    table, mids = _midpoint_nodes(mesh)
    nv = mesh.n_nodes
    nodes = np.vstack([mesh.nodes, mids])

    def m(a, b):
        return nv + np.array([table[edge_key(int(x), int(y))] for x, y in zip(a, b)], dtype=np.int64)

    E = mesh.elements
    if mesh.dim == 2:
        v0, v1, v2 = E[:, 0], E[:, 1], E[:, 2]
        m01, m12, m20 = m(v0, v1), m(v1, v2), m(v2, v0)
        children = [
            np.column_stack([v0, m01, m20]),
            np.column_stack([m01, v1, m12]),
            np.column_stack([m20, m12, v2]),
            np.column_stack([m01, m12, m20]),
        ]
        b0, b1 = mesh.boundary[:, 0], mesh.boundary[:, 1]
        bm = m(b0, b1)
        bchildren = [np.column_stack([b0, bm]), np.column_stack([bm, b1])]
    else:
        v0, v1, v2, v3 = (E[:, k] for k in range(4))
        m01, m02, m03 = m(v0, v1), m(v0, v2), m(v0, v3)
        m12, m13, m23 = m(v1, v2), m(v1, v3), m(v2, v3)
        children = [
            np.column_stack([v0, m01, m02, m03]),
            np.column_stack([m01, v1, m12, m13]),
            np.column_stack([m02, m12, v2, m23]),
            np.column_stack([m03, m13, m23, v3]),
            # inner octahedron split along the m02-m13 diagonal
            np.column_stack([m01, m02, m03, m13]),
            np.column_stack([m01, m02, m12, m13]),
            np.column_stack([m02, m03, m13, m23]),
            np.column_stack([m02, m12, m13, m23]),
        ]
        a, b, c = (mesh.boundary[:, k] for k in range(3))
        mab, mbc, mca = m(a, b), m(b, c), m(c, a)
        bchildren = [
            np.column_stack([a, mab, mca]),
            np.column_stack([mab, b, mbc]),
            np.column_stack([mca, mbc, c]),
            np.column_stack([mab, mbc, mca]),
        ]
    n_child = len(children)
    elements = np.stack(children, axis=1).reshape(-1, mesh.dim + 1)
    elements = ensure_positive_orientation(nodes, elements)
    boundary = np.stack(bchildren, axis=1).reshape(-1, mesh.dim)
    battr = np.repeat(mesh.boundary_attributes, len(bchildren))
    eattr = np.repeat(mesh.element_attributes, n_child)
    logger.debug('refined %d -> %d elements, %d -> %d nodes', mesh.n_elements, elements.shape[0],
                 mesh.n_nodes, nodes.shape[0])
    return Mesh(nodes, elements, boundary, battr, eattr)


def elevate_order(mesh: Mesh, order: int) -> Mesh:
    """Return the mesh with a nodal space of the given polynomial order.

    Order 2 adds one straight-sided node per edge, shared between the
    elements and the boundary facets that contain the edge.
    """
    if order == mesh.order:
        return mesh
    if mesh.order != 1 or order != 2:
        raise SetupError(f'cannot change mesh order {mesh.order} -> {order}')
    table, mids = _midpoint_nodes(mesh)
    nv = mesh.n_nodes
    nodes = np.vstack([mesh.nodes, mids])

    def m(a, b):
        return nv + np.array([table[edge_key(int(x), int(y))] for x, y in zip(a, b)], dtype=np.int64)

    E = mesh.elements
    elements = np.column_stack([E] + [m(E[:, i], E[:, j]) for i, j in P2_EDGES[mesh.dim]])
    B = mesh.boundary
    boundary = np.column_stack([B] + [m(B[:, i], B[:, j]) for i, j in FACET_EDGES[mesh.dim]])
    logger.debug('elevated to order 2: %d edge nodes added', mids.shape[0])
    return Mesh(nodes, elements, boundary, mesh.boundary_attributes.copy(),
                mesh.element_attributes.copy(), order=2, n_vertices=nv)


def mesh_from_source(source: str) -> Mesh:
    """Build a mesh from a built-in identifier: ``square[:n]`` or ``cube[:n]``."""
    name, _, arg = source.partition(':')
    try:
        n = int(arg) if arg else 1
    except ValueError:
        raise SetupError(f'bad mesh size in {source!r}') from None
    if name == 'square':
        return box_mesh(2, n)
    if name == 'cube':
        return box_mesh(3, n)
    raise SetupError(f'unknown built-in mesh {source!r}')


def is_builtin_source(source: str) -> bool:
    return source.partition(':')[0] in ('square', 'cube')


__all__ = [
    'Mesh', 'box_mesh', 'uniform_refinement', 'elevate_order', 'mesh_from_source',
    'is_builtin_source',
]
