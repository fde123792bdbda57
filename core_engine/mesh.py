"""Facet shape model of a rigid body.

A :class:`ShapeMesh` is an ordered set of planar triangular facets forming a
closed surface, stored as contiguous NumPy arrays (struct-of-arrays) so the
Numba kernels can stream over them. :class:`Facet` is a thin view onto one
row of those arrays.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Per-facet state:

    geometry    tri_verts (F,3,3), centers (F,3), normals (F,3), areas (F,)
    temperature temps (F,N_z) and scratch temps_next (F,N_z); index 0 = surface
    flux        flux_sun, flux_scat, flux_rad (F,)  [W/m²]
    force       facet_forces (F,3)  [N]

The visibility list is a static sparse graph in CSR form::

    neighbors[offsets[i]:offsets[i+1]]     facet ids visible from facet i
    view_factors[offsets[i]:offsets[i+1]]  matching view factors

Normals follow right-handed winding A→B→C and must point outward.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Sequence

import numpy as np

from core_engine.errors import InvalidMeshError

logger = logging.getLogger(__name__)

_MIN_FACET_AREA: float = 1e-20


# ---------------------------------------------------------------------------
# Visibility graph
# ---------------------------------------------------------------------------


class VisibilityGraph:
    """Compact CSR adjacency of (neighbor facet, view factor) pairs.

    Parameters
    ----------
    offsets : np.ndarray
        Row pointer. Shape: (num_faces + 1,), int64.
    neighbors : np.ndarray
        Neighbor facet indices. Shape: (nnz,), int64.
    view_factors : np.ndarray
        View factors, non-negative. Shape: (nnz,), float64.
    """

    def __init__(
        self,
        offsets: np.ndarray,
        neighbors: np.ndarray,
        view_factors: np.ndarray,
    ) -> None:
        self.offsets = np.ascontiguousarray(offsets, dtype=np.int64)
        self.neighbors = np.ascontiguousarray(neighbors, dtype=np.int64)
        self.view_factors = np.ascontiguousarray(view_factors, dtype=np.float64)

    @classmethod
    def empty(cls, num_faces: int) -> VisibilityGraph:
        """No facet sees any other (convex body)."""
        return cls(
            np.zeros(num_faces + 1, dtype=np.int64),
            np.zeros(0, dtype=np.int64),
            np.zeros(0, dtype=np.float64),
        )

    @classmethod
    def from_lists(
        cls,
        visible: Sequence[Iterable[tuple[int, float]]],
    ) -> VisibilityGraph:
        """Build from per-facet lists of ``(neighbor_id, view_factor)``."""
        offsets = np.zeros(len(visible) + 1, dtype=np.int64)
        neighbors: list[int] = []
        factors: list[float] = []
        for i, entries in enumerate(visible):
            for j, f in entries:
                neighbors.append(int(j))
                factors.append(float(f))
            offsets[i + 1] = len(neighbors)
        return cls(
            offsets,
            np.array(neighbors, dtype=np.int64),
            np.array(factors, dtype=np.float64),
        )

    @property
    def num_faces(self) -> int:
        return self.offsets.shape[0] - 1

    @property
    def nnz(self) -> int:
        return self.neighbors.shape[0]

    def row(self, i: int) -> list[tuple[int, float]]:
        """Visibility list of facet ``i``."""
        lo, hi = self.offsets[i], self.offsets[i + 1]
        return [
            (int(j), float(f))
            for j, f in zip(self.neighbors[lo:hi], self.view_factors[lo:hi])
        ]

    def row_sums(self) -> np.ndarray:
        """Σ view factors per facet. Shape: (num_faces,)."""
        sums = np.zeros(self.num_faces, dtype=np.float64)
        rows = np.repeat(np.arange(self.num_faces), np.diff(self.offsets))
        np.add.at(sums, rows, self.view_factors)
        return sums

    def validate(self, num_faces: int) -> None:
        """Check the structural invariants.

        Raises
        ------
        InvalidMeshError
            Wrong size, non-monotone offsets, out-of-range or self-referencing
            neighbors, negative or non-finite view factors.
        """
        if self.num_faces != num_faces:
            raise InvalidMeshError(
                f"Visibility graph has {self.num_faces} rows, mesh has {num_faces} facets"
            )
        if self.offsets[0] != 0 or np.any(np.diff(self.offsets) < 0):
            raise InvalidMeshError("Visibility offsets must start at 0 and be non-decreasing")
        if self.offsets[-1] != self.nnz or self.view_factors.shape[0] != self.nnz:
            raise InvalidMeshError("Visibility offsets do not match neighbor/factor arrays")
        if self.nnz == 0:
            return
        if self.neighbors.min() < 0 or self.neighbors.max() >= num_faces:
            raise InvalidMeshError("Visibility list references a facet outside the mesh")
        rows = np.repeat(np.arange(num_faces), np.diff(self.offsets))
        self_refs = np.flatnonzero(rows == self.neighbors)
        if self_refs.size > 0:
            raise InvalidMeshError(
                f"Facet {int(rows[self_refs[0]])} lists itself as visible"
            )
        if not np.all(np.isfinite(self.view_factors)) or self.view_factors.min() < 0.0:
            raise InvalidMeshError("View factors must be finite and non-negative")

        sums = self.row_sums()
        over = int(np.sum(sums > 1.0 + 1e-9))
        if over > 0:
            logger.warning(
                "%d facets have view factors summing to more than 1 (max %.4f)",
                over, float(sums.max()),
            )


# ---------------------------------------------------------------------------
# Facet view
# ---------------------------------------------------------------------------


class Facet:
    """View onto facet ``index`` of a :class:`ShapeMesh`.

    Reads and writes go straight to the mesh arrays; a Facet holds no state
    of its own.
    """

    __slots__ = ("_mesh", "index")

    def __init__(self, mesh: ShapeMesh, index: int) -> None:
        self._mesh = mesh
        self.index = index

    @property
    def A(self) -> np.ndarray:
        return self._mesh.tri_verts[self.index, 0]

    @property
    def B(self) -> np.ndarray:
        return self._mesh.tri_verts[self.index, 1]

    @property
    def C(self) -> np.ndarray:
        return self._mesh.tri_verts[self.index, 2]

    @property
    def center(self) -> np.ndarray:
        return self._mesh.centers[self.index]

    @property
    def normal(self) -> np.ndarray:
        return self._mesh.normals[self.index]

    @property
    def area(self) -> float:
        return float(self._mesh.areas[self.index])

    @property
    def visible_facets(self) -> list[tuple[int, float]]:
        return self._mesh.visibility.row(self.index)

    @property
    def temps(self) -> np.ndarray:
        """Depth temperature profile (a writable view)."""
        return self._mesh.temps[self.index]

    @property
    def surface_temperature(self) -> float:
        return float(self._mesh.temps[self.index, 0])

    @property
    def flux_sun(self) -> float:
        return float(self._mesh.flux_sun[self.index])

    @flux_sun.setter
    def flux_sun(self, value: float) -> None:
        self._mesh.flux_sun[self.index] = value

    @property
    def flux_scat(self) -> float:
        return float(self._mesh.flux_scat[self.index])

    @flux_scat.setter
    def flux_scat(self, value: float) -> None:
        self._mesh.flux_scat[self.index] = value

    @property
    def flux_rad(self) -> float:
        return float(self._mesh.flux_rad[self.index])

    @flux_rad.setter
    def flux_rad(self, value: float) -> None:
        self._mesh.flux_rad[self.index] = value

    @property
    def force(self) -> np.ndarray:
        return self._mesh.facet_forces[self.index]

    def __repr__(self) -> str:
        return (
            f"Facet({self.index}, center={self.center.tolist()}, "
            f"normal={self.normal.tolist()}, area={self.area:.4g})"
        )


class _FacetSequence(Sequence):
    """Ordered, fixed-size sequence of Facet views."""

    def __init__(self, mesh: ShapeMesh) -> None:
        self._mesh = mesh

    def __len__(self) -> int:
        return self._mesh.num_face

    def __getitem__(self, i):  # type: ignore[override]
        if isinstance(i, slice):
            return [Facet(self._mesh, j) for j in range(*i.indices(len(self)))]
        n = len(self)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError(f"facet index {i} out of range for {n} facets")
        return Facet(self._mesh, i)

    def __iter__(self) -> Iterator[Facet]:
        for i in range(len(self)):
            yield Facet(self._mesh, i)


# ---------------------------------------------------------------------------
# Shape mesh
# ---------------------------------------------------------------------------


class ShapeMesh:
    """Closed facet mesh with per-facet thermal state and body aggregates.

    Construct with :meth:`from_arrays`. Never resized after construction.

    Attributes
    ----------
    vertices : np.ndarray
        Vertex positions in the body-fixed frame [m]. Shape: (num_vertices, 3).
    faces : np.ndarray
        Triangle vertex indices. Shape: (num_face, 3).
    tri_verts : np.ndarray
        Per-facet vertex positions (A, B, C). Shape: (num_face, 3, 3).
    centers, normals : np.ndarray
        Facet centroids and unit outward normals. Shape: (num_face, 3).
    areas : np.ndarray
        Facet areas [m²]. Shape: (num_face,).
    visibility : VisibilityGraph
        Precomputed (neighbor, view factor) lists.
    radius_max : float
        Largest vertex distance from the body origin [m].
    temps, temps_next : np.ndarray
        Current and scratch depth profiles [K]. Shape: (num_face, N_z).
    flux_sun, flux_scat, flux_rad : np.ndarray
        Incident flux [W/m²]. Shape: (num_face,).
    facet_forces : np.ndarray
        Photon-recoil force per facet, body frame [N]. Shape: (num_face, 3).
    force, torque : np.ndarray
        Net force [N] and torque [N·m] in the body frame. Shape: (3,).
    """

    def __init__(
        self,
        vertices: np.ndarray,
        faces: np.ndarray,
        tri_verts: np.ndarray,
        normals: np.ndarray,
        areas: np.ndarray,
        centers: np.ndarray,
        visibility: VisibilityGraph,
        name: str = "body",
    ) -> None:
        self.name = name
        self.vertices = vertices
        self.faces = faces
        self.tri_verts = tri_verts
        self.normals = normals
        self.areas = areas
        self.centers = centers
        self.visibility = visibility

        self.num_face = faces.shape[0]
        self.radius_max = float(np.max(np.linalg.norm(vertices, axis=1)))

        self.temps = np.zeros((self.num_face, 0), dtype=np.float64)
        self.temps_next = np.zeros((self.num_face, 0), dtype=np.float64)
        self.flux_sun = np.zeros(self.num_face, dtype=np.float64)
        self.flux_scat = np.zeros(self.num_face, dtype=np.float64)
        self.flux_rad = np.zeros(self.num_face, dtype=np.float64)
        self.facet_forces = np.zeros((self.num_face, 3), dtype=np.float64)
        self.force = np.zeros(3, dtype=np.float64)
        self.torque = np.zeros(3, dtype=np.float64)

        self._bvh: tuple[np.ndarray, np.ndarray, np.ndarray] | None = None
        self.facets = _FacetSequence(self)

    # --- construction ---

    @classmethod
    def from_arrays(
        cls,
        vertices: np.ndarray,
        faces: np.ndarray,
        visibility: VisibilityGraph | Sequence[Iterable[tuple[int, float]]] | None = None,
        name: str = "body",
    ) -> ShapeMesh:
        """Build a shape model from vertices, faces and visibility lists.

        Parameters
        ----------
        vertices : np.ndarray
            Vertex positions [m]. Shape: (num_vertices, 3).
        faces : np.ndarray
            Triangle vertex indices (0-based, counter-clockwise seen from
            outside). Shape: (num_faces, 3).
        visibility : VisibilityGraph or list of lists, optional
            Precomputed visible-facet lists. ``None`` means no facet sees any
            other.
        name : str
            Label used in log messages.

        Raises
        ------
        InvalidMeshError
            Degenerate facets, bad indices, non-finite vertices, or a
            malformed visibility list.
        """
        vertices = np.array(vertices, dtype=np.float64)
        faces = np.array(faces, dtype=np.int64)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise InvalidMeshError(f"Vertices must have shape (N, 3), got {vertices.shape}")
        if faces.ndim != 2 or faces.shape[1] != 3 or faces.shape[0] == 0:
            raise InvalidMeshError(f"Faces must have shape (F, 3), got {faces.shape}")
        if not np.all(np.isfinite(vertices)):
            raise InvalidMeshError("Vertices contain non-finite coordinates")
        if faces.min() < 0 or faces.max() >= vertices.shape[0]:
            raise InvalidMeshError("Face indices reference a vertex outside the vertex array")

        tri_verts = np.ascontiguousarray(vertices[faces])  # (F, 3, 3)
        normals, areas, centers = _compute_face_properties(tri_verts)

        degenerate = np.flatnonzero(areas < _MIN_FACET_AREA)
        if degenerate.size > 0:
            raise InvalidMeshError(
                f"{degenerate.size} degenerate facets (area < {_MIN_FACET_AREA:g} m²), "
                f"first is facet {int(degenerate[0])}"
            )

        num_faces = faces.shape[0]
        if visibility is None:
            graph = VisibilityGraph.empty(num_faces)
        elif isinstance(visibility, VisibilityGraph):
            graph = visibility
        else:
            graph = VisibilityGraph.from_lists(visibility)
        graph.validate(num_faces)

        mesh = cls(vertices, faces, tri_verts, normals, areas, centers, graph, name=name)
        logger.info(
            "Shape model '%s': %d vertices, %d facets, %d visible pairs, "
            "area=%.4g m², R_max=%.4g m",
            name, vertices.shape[0], num_faces, graph.nnz,
            float(areas.sum()), mesh.radius_max,
        )
        return mesh

    # --- state ---

    def init_temps(self, num_depth_nodes: int, temperature: float = 0.0) -> None:
        """(Re)allocate both depth buffers, filled with ``temperature``."""
        if num_depth_nodes < 3:
            raise ValueError(f"Need at least 3 depth nodes, got {num_depth_nodes}")
        if temperature < 0.0:
            raise ValueError("Temperature cannot be negative")
        self.temps = np.full((self.num_face, num_depth_nodes), temperature, dtype=np.float64)
        self.temps_next = self.temps.copy()

    def reset_flux(self) -> None:
        self.flux_sun[:] = 0.0
        self.flux_scat[:] = 0.0
        self.flux_rad[:] = 0.0

    def swap_temperature_buffers(self) -> None:
        """Make the scratch profile current."""
        self.temps, self.temps_next = self.temps_next, self.temps

    @property
    def num_depth_nodes(self) -> int:
        return self.temps.shape[1]

    def surface_temperature(self) -> np.ndarray:
        """Surface temperature of every facet [K]. Shape: (num_face,)."""
        return self.temps[:, 0].copy()

    @property
    def total_area(self) -> float:
        return float(self.areas.sum())

    @property
    def bvh(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """BVH over this mesh's own triangles, built on first use."""
        if self._bvh is None:
            from core_engine.raytracer import build_bvh

            self._bvh = build_bvh(self)
        return self._bvh

    def set_bvh(self, bvh_data: tuple[np.ndarray, np.ndarray, np.ndarray]) -> None:
        self._bvh = bvh_data

    def __repr__(self) -> str:
        return f"ShapeMesh('{self.name}', num_face={self.num_face})"


def _compute_face_properties(
    tri_verts: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Compute face normals, areas, and centroids for all triangles.

    Parameters
    ----------
    tri_verts : np.ndarray
        Triangle vertex positions, shape (num_triangles, 3, 3).

    Returns
    -------
    normals : np.ndarray
        Unit normals from right-handed winding, shape (num_triangles, 3).
    areas : np.ndarray
        Triangle areas [m²], shape (num_triangles,).
    centroids : np.ndarray
        Triangle centroids [m], shape (num_triangles, 3).
    """
    v0 = tri_verts[:, 0]
    v1 = tri_verts[:, 1]
    v2 = tri_verts[:, 2]

    # Cross product gives normal direction with magnitude = 2 * area
    cross = np.cross(v1 - v0, v2 - v0)
    norms = np.linalg.norm(cross, axis=1, keepdims=True)

    # Degenerate triangles are rejected by the caller
    safe_norms = np.where(norms > 1e-30, norms, 1.0)
    normals = cross / safe_norms

    areas = 0.5 * norms.ravel()
    centroids = (v0 + v1 + v2) / 3.0

    return normals, areas, centroids
