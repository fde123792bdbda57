"""Synthetic closed shape models for validation runs.

Generates icospheres and triaxial ellipsoids so the thermophysical engine
can be exercised without an external shape-model file.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
The icosphere starts from the regular icosahedron (12 vertices, 20 faces)
and splits every triangle into four per subdivision level, projecting the
new edge midpoints onto the unit sphere:

    num_faces = 20 · 4^s

An ellipsoid with semi-axes (a, b, c) is the unit icosphere scaled along
x, y, z. Both are convex, so no facet sees any other and the visibility
list is empty.
"""

from __future__ import annotations

import logging

import numpy as np

from core_engine.constants import SyntheticShapeConfig
from core_engine.mesh import ShapeMesh

logger = logging.getLogger(__name__)

_PHI: float = (1.0 + np.sqrt(5.0)) / 2.0

_ICOSAHEDRON_VERTICES = np.array(
    [
        [-1.0, _PHI, 0.0], [1.0, _PHI, 0.0], [-1.0, -_PHI, 0.0], [1.0, -_PHI, 0.0],
        [0.0, -1.0, _PHI], [0.0, 1.0, _PHI], [0.0, -1.0, -_PHI], [0.0, 1.0, -_PHI],
        [_PHI, 0.0, -1.0], [_PHI, 0.0, 1.0], [-_PHI, 0.0, -1.0], [-_PHI, 0.0, 1.0],
    ],
    dtype=np.float64,
)

_ICOSAHEDRON_FACES = np.array(
    [
        [0, 11, 5], [0, 5, 1], [0, 1, 7], [0, 7, 10], [0, 10, 11],
        [1, 5, 9], [5, 11, 4], [11, 10, 2], [10, 7, 6], [7, 1, 8],
        [3, 9, 4], [3, 4, 2], [3, 2, 6], [3, 6, 8], [3, 8, 9],
        [4, 9, 5], [2, 4, 11], [6, 2, 10], [8, 6, 7], [9, 8, 1],
    ],
    dtype=np.int64,
)


def icosphere(
    radius: float = 1.0,
    subdivisions: int = 2,
) -> tuple[np.ndarray, np.ndarray]:
    """Vertices and outward-wound faces of a subdivided icosahedron.

    Parameters
    ----------
    radius : float
        Sphere radius [m].
    subdivisions : int
        Number of 1→4 subdivision passes (0 = icosahedron).

    Returns
    -------
    vertices : np.ndarray
        Shape: (num_vertices, 3).
    faces : np.ndarray
        Shape: (20 · 4^subdivisions, 3).
    """
    if radius <= 0.0:
        raise ValueError(f"Radius must be positive, got {radius}")
    if subdivisions < 0:
        raise ValueError(f"Subdivisions must be non-negative, got {subdivisions}")

    vertices = [v / np.linalg.norm(v) for v in _ICOSAHEDRON_VERTICES]
    faces = [tuple(f) for f in _ICOSAHEDRON_FACES]

    for _ in range(subdivisions):
        midpoint_cache: dict[tuple[int, int], int] = {}

        def _midpoint(i: int, j: int) -> int:
            key = (i, j) if i < j else (j, i)
            if key not in midpoint_cache:
                mid = 0.5 * (vertices[i] + vertices[j])
                vertices.append(mid / np.linalg.norm(mid))
                midpoint_cache[key] = len(vertices) - 1
            return midpoint_cache[key]

        new_faces = []
        for a, b, c in faces:
            ab = _midpoint(a, b)
            bc = _midpoint(b, c)
            ca = _midpoint(c, a)
            new_faces.extend([(a, ab, ca), (b, bc, ab), (c, ca, bc), (ab, bc, ca)])
        faces = new_faces

    verts = np.array(vertices, dtype=np.float64) * radius
    return verts, orient_outward(verts, np.array(faces, dtype=np.int64))


def ellipsoid(
    radii: tuple[float, float, float],
    subdivisions: int = 2,
) -> tuple[np.ndarray, np.ndarray]:
    """Triaxial ellipsoid with semi-axes ``radii`` = (a, b, c) [m]."""
    radii_arr = np.asarray(radii, dtype=np.float64)
    if radii_arr.shape != (3,) or np.any(radii_arr <= 0.0):
        raise ValueError(f"Ellipsoid needs three positive semi-axes, got {radii}")
    verts, faces = icosphere(1.0, subdivisions)
    return verts * radii_arr, faces


def orient_outward(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Flip faces whose normal points toward the origin (star-shaped bodies)."""
    tri = vertices[faces]
    normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
    inward = np.einsum("ij,ij->i", normals, tri.mean(axis=1)) < 0.0
    faces = faces.copy()
    faces[inward] = faces[inward][:, [0, 2, 1]]
    return faces


def generate_shape(config: SyntheticShapeConfig, name: str = "body") -> ShapeMesh:
    """Build a synthetic shape model from configuration.

    Parameters
    ----------
    config : SyntheticShapeConfig
        ``shape_type`` is ``"icosphere"`` (uses ``radii_m[0]``) or ``"ellipsoid"``.
    name : str
        Label of the resulting mesh.

    Returns
    -------
    ShapeMesh
        Closed convex mesh with an empty visibility list.
    """
    generators = {
        "icosphere": lambda: icosphere(config.radii_m[0], config.subdivisions),
        "ellipsoid": lambda: ellipsoid(config.radii_m, config.subdivisions),
    }
    if config.shape_type not in generators:
        raise ValueError(
            f"Unknown shape type '{config.shape_type}'. "
            f"Available: {list(generators.keys())}"
        )

    vertices, faces = generators[config.shape_type]()
    logger.info(
        "Generated synthetic %s: radii=%s m, subdivisions=%d, %d facets",
        config.shape_type, tuple(config.radii_m), config.subdivisions, faces.shape[0],
    )
    return ShapeMesh.from_arrays(vertices, faces, name=name)
