"""Lightweight mesh file I/O for fitmesh.

Provides readers/writers for the mesh formats the fitter consumes without heavy
dependencies:
- read_msh: Import Gmsh .msh format (ASCII, version 2.2 and 4.1)
- read_mfem_mesh: Import MFEM ``MFEM mesh v1.0`` ASCII meshes
- load_mesh: Dispatch on a built-in identifier or a file suffix
- write_vtk: Export legacy VTK format for ParaView/VisIt visualization

Every reader returns a :class:`~fitmesh.core.mesh.Mesh` with boundary facets and
their integer attributes. Meshes without boundary elements get their boundary
derived from the connectivity, tagged with attribute 1.
"""
from __future__ import annotations

import os
from typing import Dict, List, Optional, Tuple

import numpy as np

from .errors import SetupError
from .fe import P2_EDGES
from .geometry import boundary_facets, edge_key, ensure_positive_orientation
from .logging_utils import get_logger
from .mesh import FACET_EDGES, Mesh, is_builtin_source, mesh_from_source

logger = get_logger('fitmesh.io')

# Gmsh element type -> (kind, order, nodes)
_GMSH_TYPES = {
    1: ('line', 1, 2),
    2: ('triangle', 1, 3),
    4: ('tetrahedron', 1, 4),
    8: ('line', 2, 3),
    9: ('triangle', 2, 6),
    11: ('tetrahedron', 2, 10),
}
# Gmsh numbers the last two tet10 edges 32, 31; ours are 13, 23
_GMSH_PERMUTATION = {11: [0, 1, 2, 3, 4, 5, 6, 7, 9, 8]}
# Gmsh types accepted but not usable by the fitter
_GMSH_UNSUPPORTED = {3: 'quadrangle', 5: 'hexahedron'}


def _section(lines: List[str], name: str) -> Tuple[int, int]:
    start = end = None
    for i, line in enumerate(lines):
        if line == f'${name}':
            start = i
        elif line == f'$End{name}':
            end = i
            break
    if start is None or end is None:
        raise SetupError(f"Missing ${name} section in .msh file")
    return start, end


def read_msh(filepath: str) -> Mesh:
    """Read a triangular or tetrahedral mesh from a Gmsh .msh file (ASCII).

    Supports Gmsh format versions 2.2 and 4.1 (ASCII mode only).

    Parameters
    ----------
    filepath : str
        Path to .msh file

    Returns
    -------
    Mesh
        Elements are the highest-dimensional simplices present (linear or
        quadratic triangles and tetrahedra). Boundary facets are the
        lower-dimensional elements; their attribute is the physical tag in
        v2.2 files and the entity tag in v4.1 files.

    Raises
    ------
    SetupError
        If the file format is unsupported or the mesh holds no usable simplices.
    FileNotFoundError
        If the file doesn't exist.
    """
    with open(filepath, 'r') as f:
        lines = [line.strip() for line in f]
    if not lines:
        raise SetupError(f"Empty file: {filepath}")

    version = None
    for i, line in enumerate(lines):
        if line.startswith('$MeshFormat'):
            version = float(lines[i + 1].split()[0])
            logger.debug('Detected Gmsh format version %s', version)
            break
    if version is None:
        raise SetupError("Could not detect Gmsh format version (no $MeshFormat section)")

    if 2.0 <= version < 3.0:
        coords, blocks = _read_msh_v2(lines)
    elif 4.0 <= version < 5.0:
        coords, blocks = _read_msh_v4(lines)
    else:
        raise SetupError(f"Unsupported Gmsh format version: {version}")
    return _assemble_gmsh(coords, blocks, filepath)


def _read_msh_v2(lines) -> Tuple[Dict[int, Tuple[float, ...]], List[Tuple[int, int, List[int]]]]:
    """Parse Gmsh format 2.2 (legacy ASCII format)."""
    node_start, node_end = _section(lines, 'Nodes')
    coords = {}
    for i in range(node_start + 2, node_end):
        parts = lines[i].split()
        coords[int(parts[0])] = tuple(float(v) for v in parts[1:4])

    elem_start, elem_end = _section(lines, 'Elements')
    blocks = []
    for i in range(elem_start + 2, elem_end):
        parts = [int(p) for p in lines[i].split()]
        elem_type, num_tags = parts[1], parts[2]
        attr = parts[3] if num_tags > 0 else 1
        blocks.append((elem_type, attr, parts[3 + num_tags:]))
    return coords, blocks


def _read_msh_v4(lines) -> Tuple[Dict[int, Tuple[float, ...]], List[Tuple[int, int, List[int]]]]:
    """Parse Gmsh format 4.1 (modern ASCII format)."""
    node_start, node_end = _section(lines, 'Nodes')
    coords = {}
    i = node_start + 2
    while i < node_end:
        # entityDim entityTag parametric numNodesInBlock
        n_block = int(lines[i].split()[3])
        i += 1
        tags = [int(lines[i + j]) for j in range(n_block)]
        i += n_block
        for j in range(n_block):
            coords[tags[j]] = tuple(float(v) for v in lines[i + j].split()[:3])
        i += n_block

    elem_start, elem_end = _section(lines, 'Elements')
    blocks = []
    i = elem_start + 2
    while i < elem_end:
        # entityDim entityTag elementType numElementsInBlock
        _, entity_tag, elem_type, n_block = (int(v) for v in lines[i].split())
        i += 1
        for j in range(n_block):
            parts = [int(p) for p in lines[i + j].split()]
            blocks.append((elem_type, entity_tag, parts[1:]))
        i += n_block
    return coords, blocks


def _assemble_gmsh(coords, blocks, filepath) -> Mesh:
    by_kind: Dict[str, List[Tuple[int, int, List[int]]]] = {}
    for elem_type, attr, conn in blocks:
        if elem_type in _GMSH_UNSUPPORTED:
            raise SetupError(f"{filepath}: unsupported element type {_GMSH_UNSUPPORTED[elem_type]}")
        info = _GMSH_TYPES.get(elem_type)
        if info is None:
            continue
        kind, order, nn = info
        conn = conn[:nn]
        if elem_type in _GMSH_PERMUTATION:
            conn = [conn[k] for k in _GMSH_PERMUTATION[elem_type]]
        by_kind.setdefault(kind, []).append((order, attr, conn))

    if 'tetrahedron' in by_kind:
        dim, cell_kind, facet_kind = 3, 'tetrahedron', 'triangle'
    elif 'triangle' in by_kind:
        dim, cell_kind, facet_kind = 2, 'triangle', 'line'
    else:
        raise SetupError(f"No triangular or tetrahedral elements found in {filepath}")

    cells = by_kind[cell_kind]
    orders = {c[0] for c in cells}
    if len(orders) != 1:
        raise SetupError(f"{filepath}: mixed element orders are not supported")
    order = orders.pop()

    node_ids = sorted(coords)
    id_to_idx = {nid: idx for idx, nid in enumerate(node_ids)}
    nodes = np.array([coords[nid] for nid in node_ids], dtype=np.float64)[:, :dim]
    elements = np.array([[id_to_idx[v] for v in c[2]] for c in cells], dtype=np.int64)
    element_attrs = np.array([c[1] for c in cells], dtype=np.int64)
    facets = [f for f in by_kind.get(facet_kind, []) if f[0] == order]
    boundary = np.array([[id_to_idx[v] for v in f[2]] for f in facets], dtype=np.int64)
    battrs = np.array([f[1] for f in facets], dtype=np.int64)
    logger.debug('Read %d nodes, %d elements, %d boundary facets from %s',
                 len(nodes), len(elements), len(boundary), filepath)
    return _finish_mesh(nodes, elements, element_attrs, boundary, battrs, order)


def read_mfem_mesh(filepath: str) -> Mesh:
    """Read an MFEM ``MFEM mesh v1.0`` ASCII mesh with vertex coordinates.

    Triangles and tetrahedra are read as-is; squares are split into two
    triangles along the 0-2 diagonal. Cubes are rejected.
    """
    with open(filepath, 'r') as f:
        tokens = []
        for raw in f:
            line = raw.split('#', 1)[0].strip()
            if line:
                tokens.append(line)
    if not tokens or not tokens[0].startswith('MFEM mesh v1'):
        raise SetupError(f"{filepath}: not an MFEM v1.x mesh")

    def find(key):
        try:
            return tokens.index(key)
        except ValueError:
            raise SetupError(f"{filepath}: missing '{key}' section") from None

    dim = int(tokens[find('dimension') + 1])
    if dim not in (2, 3):
        raise SetupError(f"{filepath}: unsupported dimension {dim}")

    def read_block(key):
        start = find(key)
        count = int(tokens[start + 1])
        return [[int(v) for v in tokens[start + 2 + k].split()] for k in range(count)]

    elements, element_attrs = [], []
    for row in read_block('elements'):
        attr, geom, verts = row[0], row[1], row[2:]
        if geom in (2, 4):
            elements.append(verts)
            element_attrs.append(attr)
        elif geom == 3:
            a, b, c, d = verts
            elements.extend([[a, b, c], [a, c, d]])
            element_attrs.extend([attr, attr])
        else:
            raise SetupError(f"{filepath}: unsupported element geometry {geom}")

    boundary, battrs = [], []
    if 'boundary' in tokens:
        for row in read_block('boundary'):
            attr, geom, verts = row[0], row[1], row[2:]
            if geom == 3:
                a, b, c, d = verts
                boundary.extend([[a, b, c], [a, c, d]])
                battrs.extend([attr, attr])
            elif geom in (1, 2):
                boundary.append(verts)
                battrs.append(attr)
            else:
                raise SetupError(f"{filepath}: unsupported boundary geometry {geom}")

    start = find('vertices')
    n_vert = int(tokens[start + 1])
    if start + 2 >= len(tokens) or len(tokens[start + 2].split()) != 1:
        raise SetupError(f"{filepath}: curved (nodes-based) MFEM meshes are not supported")
    vdim = int(tokens[start + 2])
    nodes = np.array([[float(v) for v in tokens[start + 3 + k].split()[:vdim]]
                      for k in range(n_vert)], dtype=np.float64)[:, :dim]
    return _finish_mesh(nodes, np.array(elements, dtype=np.int64), np.array(element_attrs),
                        np.array(boundary, dtype=np.int64), np.array(battrs, dtype=np.int64), 1)


def _finish_mesh(nodes, elements, element_attrs, boundary, battrs, order) -> Mesh:
    dim = nodes.shape[1]
    if order == 1:
        elements = ensure_positive_orientation(nodes, elements)
    if boundary.size == 0:
        logger.info('mesh has no boundary elements; deriving them with attribute 1')
        boundary = boundary_facets(elements, dim)
        if order == 2:
            edge_mid = {}
            for row in elements:
                for k, (i, j) in enumerate(P2_EDGES[dim]):
                    edge_mid[edge_key(int(row[i]), int(row[j]))] = int(row[dim + 1 + k])
            facet_edges = FACET_EDGES[dim]
            mids = [[edge_mid[edge_key(int(f[i]), int(f[j]))] for i, j in facet_edges] for f in boundary]
            boundary = np.hstack([boundary, np.asarray(mids, dtype=np.int64).reshape(-1, len(facet_edges))])
        battrs = np.ones(boundary.shape[0], dtype=np.int64)
    return Mesh(nodes, elements, boundary, battrs, element_attrs, order=order)


def load_mesh(source: str) -> Mesh:
    """Load a mesh from ``square:n`` / ``cube:n`` or a ``.msh`` / ``.mesh`` file."""
    if is_builtin_source(source):
        return mesh_from_source(source)
    if not os.path.exists(source):
        raise SetupError(f"mesh file not found: {source}")
    suffix = os.path.splitext(source)[1].lower()
    if suffix == '.msh':
        return read_msh(source)
    if suffix == '.mesh':
        return read_mfem_mesh(source)
    raise SetupError(f"unknown mesh format for {source!r}")


# VTK cell type per (dim, order)
_VTK_CELL_TYPES = {(2, 1): 5, (2, 2): 22, (3, 1): 10, (3, 2): 24}


def _write_field(f, name: str, data, where: str) -> None:
    data = np.asarray(data)
    if data.ndim == 1:
        f.write(f"SCALARS {name} double 1\n")
        f.write("LOOKUP_TABLE default\n")
        for val in data:
            f.write(f"{float(val):.16e}\n")
    elif data.ndim == 2 and data.shape[1] in (2, 3):
        if data.shape[1] == 2:
            data = np.column_stack([data, np.zeros(len(data))])
        f.write(f"VECTORS {name} double\n")
        for vec in data:
            f.write(f"{vec[0]:.16e} {vec[1]:.16e} {vec[2]:.16e}\n")
    else:
        logger.warning("Skipping %s['%s'] with unsupported shape %s", where, name, data.shape)


def write_vtk(filepath: str,
              mesh: Mesh,
              point_data: Optional[Dict[str, np.ndarray]] = None,
              cell_data: Optional[Dict[str, np.ndarray]] = None,
              title: str = "fitmesh mesh") -> None:
    """Write a mesh to legacy VTK format (ASCII).

    Parameters
    ----------
    filepath : str
        Output .vtk file path
    mesh : Mesh
        Linear or quadratic triangles and tetrahedra. 2D points get z=0.
    point_data : dict, optional
        Scalars (N,) or vectors (N, 2|3) at nodes, e.g. the fit marker field.
    cell_data : dict, optional
        Scalars (M,) or vectors (M, 2|3) per element, e.g. quality energy.
    title : str, default="fitmesh mesh"
        Dataset title/description
    """
    cell_type = _VTK_CELL_TYPES.get((mesh.dim, mesh.order))
    if cell_type is None:
        raise SetupError(f"cannot export dim={mesh.dim} order={mesh.order} meshes to VTK")
    points = mesh.nodes
    if mesh.dim == 2:
        points = np.column_stack([points, np.zeros(len(points))])
    cells = mesh.elements
    nloc = cells.shape[1]

    with open(filepath, 'w') as f:
        f.write("# vtk DataFile Version 2.0\n")
        f.write(f"{title}\n")
        f.write("ASCII\n")
        f.write("DATASET UNSTRUCTURED_GRID\n")

        f.write(f"POINTS {len(points)} double\n")
        for pt in points:
            f.write(f"{pt[0]:.16e} {pt[1]:.16e} {pt[2]:.16e}\n")

        f.write(f"\nCELLS {len(cells)} {len(cells) * (nloc + 1)}\n")
        for row in cells:
            f.write(f"{nloc} " + " ".join(str(int(v)) for v in row) + "\n")

        f.write(f"\nCELL_TYPES {len(cells)}\n")
        for _ in range(len(cells)):
            f.write(f"{cell_type}\n")

        if point_data:
            f.write(f"\nPOINT_DATA {len(points)}\n")
            for name, data in point_data.items():
                _write_field(f, name, data, 'point_data')

        if cell_data:
            f.write(f"\nCELL_DATA {len(cells)}\n")
            for name, data in cell_data.items():
                _write_field(f, name, data, 'cell_data')


__all__ = ['read_msh', 'read_mfem_mesh', 'load_mesh', 'write_vtk']
