# core/mesh.py
from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations
from math import factorial
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np


class Mesh:
    """
    Unstructured simplex mesh with integer element identifiers.

    Elements are addressed as (dim, id):
      - dim 0: vertices, id = vertex index
      - dim cell_dim: cells, id = cell index
      - 0 < dim < cell_dim: sub-simplices, ids assigned in order of first
        appearance while enumerating cells (and, within a cell, in
        itertools.combinations order of its vertices)

    Coboundary lists are in registration order, i.e. the first cell in
    coboundary_elements(facet_dim, f, cell_dim) is the lowest cell id that
    touches f. This order defines the intrinsic orientation of a facet
    (first coboundary cell -> second).

    The mesh is immutable: coordinate and connectivity arrays are read-only.
    """

    def __init__(self, vertices: np.ndarray, cells: Sequence[Sequence[int]]) -> None:
        V = np.array(vertices, dtype=np.float64)
        if V.ndim == 1:
            V = V[:, None]
        if V.ndim != 2 or V.shape[0] == 0:
            raise ValueError("vertices must have shape (n_vertices, geo_dim)")

        C = np.array(cells, dtype=np.int64)
        if C.ndim != 2 or C.shape[0] == 0:
            raise ValueError("cells must have shape (n_cells, cell_dim + 1)")

        cell_dim = C.shape[1] - 1
        geo_dim = V.shape[1]
        if cell_dim < 1:
            raise ValueError("cells need at least two vertices")
        if cell_dim > geo_dim:
            raise ValueError(f"cell_dim={cell_dim} exceeds geo_dim={geo_dim}")
        if C.min() < 0 or C.max() >= V.shape[0]:
            raise ValueError("cell refers to a vertex id out of range")
        for c, verts in enumerate(C):
            if len(set(verts.tolist())) != len(verts):
                raise ValueError(f"cell {c} has repeated vertices")

        V.setflags(write=False)
        C.setflags(write=False)
        self._vertices = V
        self._cells = C
        self._cell_dim = int(cell_dim)
        self._geo_dim = int(geo_dim)

        # dim -> (n_elements, dim + 1) vertex ids; dim -> {sorted key: id}
        self._elements: Dict[int, np.ndarray] = {}
        self._keys: Dict[int, Dict[Tuple[int, ...], int]] = {}
        # dim -> (n_cells, n_local) ids of the sub-elements of each cell
        self._cell_boundary: Dict[int, np.ndarray] = {}

        self._elements[0] = np.arange(V.shape[0], dtype=np.int64)[:, None]
        self._keys[0] = {(v,): v for v in range(V.shape[0])}
        self._cell_boundary[0] = C

        for k in range(1, cell_dim):
            keys: Dict[Tuple[int, ...], int] = {}
            elems: List[Tuple[int, ...]] = []
            local = np.empty((C.shape[0], len(list(combinations(range(cell_dim + 1), k + 1)))), dtype=np.int64)
            for c, verts in enumerate(C.tolist()):
                for j, sub in enumerate(combinations(verts, k + 1)):
                    key = tuple(sorted(sub))
                    eid = keys.get(key)
                    if eid is None:
                        eid = len(elems)
                        keys[key] = eid
                        elems.append(key)
                    local[c, j] = eid
            arr = np.array(elems, dtype=np.int64).reshape(-1, k + 1)
            arr.setflags(write=False)
            local.setflags(write=False)
            self._elements[k] = arr
            self._keys[k] = keys
            self._cell_boundary[k] = local

        cell_keys: Dict[Tuple[int, ...], int] = {}
        for c, verts in enumerate(C.tolist()):
            key = tuple(sorted(verts))
            if key in cell_keys:
                raise ValueError(f"cell {c} duplicates cell {cell_keys[key]}")
            cell_keys[key] = c
        self._elements[cell_dim] = C
        self._keys[cell_dim] = cell_keys

        self._coboundary: Dict[Tuple[int, int], List[np.ndarray]] = {}

    # ----------------------------
    # Builders
    # ----------------------------

    @classmethod
    def interval(cls, x: Iterable[float]) -> "Mesh":
        """1D chain of line cells from strictly increasing node coordinates."""
        x = np.asarray(list(x), dtype=np.float64)
        if x.ndim != 1 or x.size < 2:
            raise ValueError("interval needs at least two node coordinates")
        if np.any(np.diff(x) <= 0.0):
            raise ValueError("interval node coordinates must be strictly increasing")
        cells = [(i, i + 1) for i in range(x.size - 1)]
        return cls(x[:, None], cells)

    @classmethod
    def rectangle(cls, nx: int, ny: int, lx: float, ly: float) -> "Mesh":
        """
        Structured triangulation of [0, lx] x [0, ly] with nx * ny nodes.

        Every grid square (i, j) is split along its diagonal into two triangles.
        """
        nx, ny = int(nx), int(ny)
        if nx < 2 or ny < 2:
            raise ValueError("rectangle requires nx, ny >= 2.")
        if float(lx) <= 0.0 or float(ly) <= 0.0:
            raise ValueError("rectangle requires lx, ly > 0.")

        x = np.linspace(0.0, float(lx), nx)
        y = np.linspace(0.0, float(ly), ny)
        X, Y = np.meshgrid(x, y, indexing="ij")
        vertices = np.column_stack([X.reshape(-1), Y.reshape(-1)])

        def vid(i: int, j: int) -> int:
            return i * ny + j

        cells = []
        for i in range(nx - 1):
            for j in range(ny - 1):
                a, b, c, d = vid(i, j), vid(i + 1, j), vid(i + 1, j + 1), vid(i, j + 1)
                cells.append((a, b, c))
                cells.append((a, c, d))
        return cls(vertices, cells)

    # ----------------------------
    # Dimensions and sizes
    # ----------------------------

    @property
    def cell_dim(self) -> int:
        return self._cell_dim

    @property
    def geo_dim(self) -> int:
        return self._geo_dim

    @property
    def facet_dim(self) -> int:
        return self._cell_dim - 1

    @property
    def vertices(self) -> np.ndarray:
        return self._vertices

    @property
    def n_vertices(self) -> int:
        return int(self._vertices.shape[0])

    @property
    def n_cells(self) -> int:
        return int(self._cells.shape[0])

    @property
    def n_facets(self) -> int:
        return self.n_elements(self.facet_dim)

    def n_elements(self, dim: int) -> int:
        self._check_dim(dim)
        return int(self._elements[dim].shape[0])

    def cells(self) -> range:
        return range(self.n_cells)

    def facets(self) -> range:
        return range(self.n_facets)

    # ----------------------------
    # Topology queries
    # ----------------------------

    def element_vertices(self, dim: int, element: int) -> np.ndarray:
        self._check_element(dim, element)
        return self._elements[dim][element]

    def boundary_elements(self, cell: int, target_dim: int) -> np.ndarray:
        """Ids of the target_dim sub-elements of a cell, in local enumeration order."""
        self._check_element(self._cell_dim, cell)
        if not (0 <= target_dim < self._cell_dim):
            raise ValueError(f"target_dim must be in [0, {self._cell_dim}); got {target_dim}")
        return self._cell_boundary[target_dim][cell]

    def coboundary_elements(self, dim: int, element: int, target_dim: int) -> np.ndarray:
        """Ids of the target_dim elements containing the given element, in registration order."""
        self._check_element(dim, element)
        if not (dim < target_dim <= self._cell_dim):
            raise ValueError(f"target_dim must be in ({dim}, {self._cell_dim}]; got {target_dim}")
        table = self._coboundary.get((dim, target_dim))
        if table is None:
            table = self._build_coboundary(dim, target_dim)
            self._coboundary[(dim, target_dim)] = table
        return table[element]

    def _build_coboundary(self, dim: int, target_dim: int) -> List[np.ndarray]:
        buckets: List[List[int]] = [[] for _ in range(self.n_elements(dim))]
        keys = self._keys[dim]
        for tid, verts in enumerate(self._elements[target_dim].tolist()):
            for sub in combinations(verts, dim + 1):
                buckets[keys[tuple(sorted(sub))]].append(tid)
        out = []
        for b in buckets:
            arr = np.array(b, dtype=np.int64)
            arr.setflags(write=False)
            out.append(arr)
        return out

    # ----------------------------
    # Geometry queries
    # ----------------------------

    def centroid(self, dim: int, element: int) -> np.ndarray:
        """Arithmetic mean of the element's vertex coordinates (geo_dim vector)."""
        verts = self.element_vertices(dim, element)
        return self._vertices[verts].mean(axis=0)

    def cell_centroids(self) -> np.ndarray:
        return self._vertices[self._cells].mean(axis=1)

    def measure(self, dim: int, element: int) -> float:
        """
        k-dimensional measure of a k-simplex via the Gram determinant:
            |S| = sqrt(det(E E^T)) / k!
        where the rows of E are the edge vectors from the first vertex.
        Points have measure 1.
        """
        verts = self.element_vertices(dim, element)
        if dim == 0:
            return 1.0
        P = self._vertices[verts]
        E = P[1:] - P[0]
        gram = E @ E.T
        return float(np.sqrt(max(np.linalg.det(gram), 0.0)) / factorial(dim))

    # ----------------------------
    # Checks
    # ----------------------------

    def _check_dim(self, dim: int) -> None:
        if not (0 <= int(dim) <= self._cell_dim):
            raise ValueError(f"dim must be in [0, {self._cell_dim}]; got {dim}")

    def _check_element(self, dim: int, element: int) -> None:
        self._check_dim(dim)
        n = self._elements[dim].shape[0]
        if not (0 <= int(element) < n):
            raise IndexError(f"element id {element} out of range for dim {dim} (n={n})")

    def __repr__(self) -> str:
        return (
            f"Mesh(cell_dim={self._cell_dim}, geo_dim={self._geo_dim}, "
            f"n_vertices={self.n_vertices}, n_cells={self.n_cells}, n_facets={self.n_facets})"
        )


@dataclass(frozen=True)
class Segment:
    """Named set of cells (a material region or a contact)."""
    name: str
    cells: Tuple[int, ...]

    def __post_init__(self) -> None:
        cells = tuple(int(c) for c in self.cells)
        if len(set(cells)) != len(cells):
            raise ValueError(f"segment {self.name!r} lists a cell twice")
        object.__setattr__(self, "cells", cells)

    @property
    def cell_array(self) -> np.ndarray:
        return np.asarray(self.cells, dtype=np.int64)

    def __contains__(self, cell: object) -> bool:
        return cell in self.cells

    def __len__(self) -> int:
        return len(self.cells)
