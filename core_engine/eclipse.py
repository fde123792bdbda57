"""Mutual eclipses between the two members of a binary system.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Frames: every vector argument is in the primary's (A's) body frame. A point
``x_B`` of the secondary maps to A's frame as ``x_A = sec_from_a + R · x_B``
with ``R = rotation_b_to_a``.

Pre-filter: both bodies fit inside spheres of radius ``R_a`` and ``R_b``.
Sunlight can only be blocked when the Sun–A–B angle θ satisfies
``θ ≤ θ_crit`` (B in front of A) or ``θ ≥ π − θ_crit`` (B behind A), where
``θ_crit = asin((R_a + R_b) / |sec_from_a|)``.

Raycasting: the sun is treated as infinitely far, so every ray of both
bodies points along the same unit vector r̂☉. An A facet is eclipsed when
the ray from its centroid along r̂☉ hits a B triangle; a B facet is
eclipsed when its ray hits an A triangle. Only facets lit on entry cast rays and only triangles lit on
entry can occlude. Rays are moved into the target body's frame so each body
reuses its own cached BVH.
"""

from __future__ import annotations

import logging

import numpy as np

from core_engine.mesh import ShapeMesh
from core_engine.raytracer import rays_occluded

logger = logging.getLogger(__name__)


def critical_angle(radius_a: float, radius_b: float, separation: float) -> float:
    """asin((R_a + R_b) / d) [rad]; π/2 when the bounding spheres touch."""
    ratio = (radius_a + radius_b) / separation if separation > 0.0 else np.inf
    if ratio >= 1.0:
        return 0.5 * np.pi
    return float(np.arcsin(ratio))


def eclipse_possible(
    mesh_a: ShapeMesh,
    mesh_b: ShapeMesh,
    sun_from_a: np.ndarray,
    sec_from_a: np.ndarray,
) -> bool:
    """Whether either body can shadow the other this step.

    Parameters
    ----------
    mesh_a, mesh_b : ShapeMesh
        Primary and secondary.
    sun_from_a : np.ndarray
        Sun position or direction seen from A, A frame. Only the direction
        is used. Shape: (3,).
    sec_from_a : np.ndarray
        Position of B's origin relative to A, A frame [m]. Shape: (3,).

    Returns
    -------
    bool
        False when the Sun–A–B angle lies strictly between θ_crit and
        π − θ_crit, i.e. no eclipse is geometrically possible.
    """
    sun_from_a = np.asarray(sun_from_a, dtype=np.float64)
    sec_from_a = np.asarray(sec_from_a, dtype=np.float64)
    separation = float(np.linalg.norm(sec_from_a))
    theta_crit = critical_angle(mesh_a.radius_max, mesh_b.radius_max, separation)
    if theta_crit >= 0.5 * np.pi:
        return True

    cos_angle = float(
        np.dot(sun_from_a, sec_from_a) / (np.linalg.norm(sun_from_a) * separation)
    )
    angle = float(np.arccos(np.clip(cos_angle, -1.0, 1.0)))
    return not (theta_crit < angle < np.pi - theta_crit)


def resolve_eclipse(
    mesh_a: ShapeMesh,
    mesh_b: ShapeMesh,
    sun_from_a: np.ndarray,
    sec_from_a: np.ndarray,
    rotation_b_to_a: np.ndarray,
    prefilter: bool = True,
    epsilon: float = 1e-10,
) -> tuple[int, int]:
    """Zero the direct solar flux of mutually eclipsed facets.

    Must run after both bodies were illuminated and before scattering.
    Lit/dark flips are one-way, so calling this twice in the same step
    changes nothing the second time.

    Parameters
    ----------
    mesh_a, mesh_b : ShapeMesh
        Primary and secondary, ``flux_sun`` updated in place.
    sun_from_a : np.ndarray
        Sun position or direction seen from A, A frame. Only the direction
        is used. Shape: (3,).
    sec_from_a : np.ndarray
        Position of B relative to A, A frame [m]. Shape: (3,).
    rotation_b_to_a : np.ndarray
        Rotation matrix from B's body frame to A's. Shape: (3, 3).
    prefilter : bool
        Skip raycasting when :func:`eclipse_possible` rules it out.
    epsilon : float
        Ray-triangle zero tolerance.

    Returns
    -------
    n_dark_a, n_dark_b : int
        Number of facets newly darkened on each body.
    """
    sun_from_a = np.asarray(sun_from_a, dtype=np.float64)
    sec_from_a = np.asarray(sec_from_a, dtype=np.float64)
    rot = np.asarray(rotation_b_to_a, dtype=np.float64)
    if rot.shape != (3, 3):
        raise ValueError(f"rotation_b_to_a must be 3x3, got {rot.shape}")

    if prefilter and not eclipse_possible(mesh_a, mesh_b, sun_from_a, sec_from_a):
        return 0, 0

    # Snapshot of the lit state on entry; both passes read only this.
    lit_a = mesh_a.flux_sun > 0.0
    lit_b = mesh_b.flux_sun > 0.0
    if not lit_a.any() or not lit_b.any():
        return 0, 0

    norm = float(np.linalg.norm(sun_from_a))
    if norm == 0.0 or not np.isfinite(norm):
        raise ValueError(f"Sun vector must be finite and non-zero, got {sun_from_a}")
    sun_dir = sun_from_a / norm

    # A facets against B triangles, in B's frame (R^T·v == v @ R).
    origins = np.ascontiguousarray((mesh_a.centers - sec_from_a) @ rot)
    directions = np.ascontiguousarray(np.tile(sun_dir @ rot, (mesh_a.num_face, 1)))
    nodes_b, tris_b, order_b = mesh_b.bvh
    dark_a = rays_occluded(
        origins, directions, lit_a, nodes_b, tris_b, order_b, lit_b, epsilon
    )

    # B facets against A triangles, in A's frame.
    origins = np.ascontiguousarray(sec_from_a + mesh_b.centers @ rot.T)
    directions = np.ascontiguousarray(np.tile(sun_dir, (mesh_b.num_face, 1)))
    nodes_a, tris_a, order_a = mesh_a.bvh
    dark_b = rays_occluded(
        origins, directions, lit_b, nodes_a, tris_a, order_a, lit_a, epsilon
    )

    mesh_a.flux_sun[dark_a] = 0.0
    mesh_b.flux_sun[dark_b] = 0.0

    n_dark_a = int(dark_a.sum())
    n_dark_b = int(dark_b.sum())
    if n_dark_a or n_dark_b:
        logger.debug(
            "Eclipse: %d facets of '%s' and %d facets of '%s' in shadow",
            n_dark_a, mesh_a.name, n_dark_b, mesh_b.name,
        )
    return n_dark_a, n_dark_b
