"""Tests for the BVH raytracer module.

Validates Möller-Trumbore intersection accuracy, BVH consistency, and
self-shadowing of convex and non-convex shape models.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import numpy as np
import pytest

from core_engine.mesh import ShapeMesh
from core_engine.raytracer import (
    build_bvh,
    build_bvh_from_triangles,
    compute_sunlit_mask,
    moller_trumbore,
    ray_aabb_intersect,
    rays_occluded,
    sunlit_mask,
)
from data_ingestion.synthetic_shape import icosphere

EPS = 1e-10


# ===================================================================
# FIXTURES
# ===================================================================


@pytest.fixture
def contact_binary() -> ShapeMesh:
    """Two touching-close unit icospheres merged into one non-convex mesh.

    Lobe centres sit at x = ±1.2, so each lobe shadows part of the other
    when the sun is near the x axis.
    """
    v, f = icosphere(1.0, 1)
    vertices = np.vstack([v + [-1.2, 0.0, 0.0], v + [1.2, 0.0, 0.0]])
    faces = np.vstack([f, f + v.shape[0]])
    return ShapeMesh.from_arrays(vertices, faces, name="contact_binary")


def _brute_force_lit(mesh: ShapeMesh, sun_dir: np.ndarray, epsilon: float) -> np.ndarray:
    """Reference sunlit mask: test every facet against every other triangle."""
    lit = np.zeros(mesh.num_face, dtype=bool)
    offset = 100.0 * epsilon
    for i in range(mesh.num_face):
        if mesh.normals[i] @ sun_dir <= 0.0:
            continue
        origin = mesh.centers[i] + mesh.normals[i] * offset
        blocked = False
        for j in range(mesh.num_face):
            if j == i:
                continue
            tri = mesh.tri_verts[j]
            if moller_trumbore(origin, sun_dir, tri[0], tri[1], tri[2], epsilon) > epsilon:
                blocked = True
                break
        lit[i] = not blocked
    return lit


# ===================================================================
# RAY PRIMITIVES
# ===================================================================

UNIT_TRI = (
    np.array([0.0, 0.0, 0.0]),
    np.array([1.0, 0.0, 0.0]),
    np.array([0.0, 1.0, 0.0]),
)
DOWN = np.array([0.0, 0.0, -1.0])
UP = np.array([0.0, 0.0, 1.0])


class TestMollerTrumbore:
    @pytest.mark.parametrize(
        "origin, direction, expected",
        [
            ([0.25, 0.25, 1.0], DOWN, 1.0),
            ([0.25, 0.25, -2.0], UP, 2.0),            # back faces occlude too
            ([0.1, 0.6, 3.0], 2.0 * DOWN, 1.5),       # t scales with |dir|
        ],
    )
    def test_hit_distance(self, origin: list[float], direction: np.ndarray, expected: float) -> None:
        t = moller_trumbore(np.array(origin), direction, *UNIT_TRI, EPS)
        assert t == pytest.approx(expected, abs=1e-12)

    @pytest.mark.parametrize(
        "origin, direction",
        [
            ([2.0, 2.0, 1.0], DOWN),                  # outside the triangle
            ([0.25, 0.25, 1.0], np.array([1.0, 0.0, 0.0])),  # parallel to its plane
            ([0.25, 0.25, -1.0], DOWN),               # triangle behind the origin
            ([0.6, 0.6, 1.0], DOWN),                  # beyond the hypotenuse
        ],
    )
    def test_miss(self, origin: list[float], direction: np.ndarray) -> None:
        assert moller_trumbore(np.array(origin), direction, *UNIT_TRI, EPS) == -1.0

    def test_collinear_triangle_never_hit(self) -> None:
        sliver = (np.array([0.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]), np.array([0.5, 0.0, 0.0]))
        assert moller_trumbore(np.array([0.25, 0.0, 1.0]), DOWN, *sliver, EPS) == -1.0

    def test_shared_edge_does_not_leak(self) -> None:
        a, b = np.array([0.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0])
        upper = moller_trumbore(np.array([0.5, 0.0, 1.0]), DOWN, a, b, np.array([0.5, 1.0, 0.0]), EPS)
        lower = moller_trumbore(np.array([0.5, 0.0, 1.0]), DOWN, a, b, np.array([0.5, -1.0, 0.0]), EPS)
        assert max(upper, lower) > 0.0

    def test_shallow_ray(self) -> None:
        origin = np.array([0.25, 0.25, 0.001])
        t = moller_trumbore(origin, np.array([0.01, 0.0, -0.001]), *UNIT_TRI, EPS)
        assert t == pytest.approx(1.0)


class TestRayAABB:
    BOX = (np.zeros(3), np.ones(3))

    @staticmethod
    def _inv(direction: list[float]) -> np.ndarray:
        d = np.array(direction, dtype=np.float64)
        safe = np.where(d == 0.0, 1.0, d)
        return np.where(d == 0.0, 1e30, 1.0 / safe)

    @pytest.mark.parametrize(
        "origin, direction, expected",
        [
            ([0.5, 0.5, 2.0], [0.0, 0.0, -1.0], True),
            ([5.0, 5.0, 2.0], [0.0, 0.0, -1.0], False),
            ([0.5, 0.5, 2.0], [0.0, 0.0, 1.0], False),   # box behind the ray
            ([0.5, 0.5, 0.5], [0.3, -0.2, 0.9], True),   # origin inside
            ([-1.0, -1.0, 0.5], [1.0, 1.0, 0.0], True),  # diagonal entry
            ([-1.0, 0.5, 0.5], [1.0, 3.0, 0.0], False),  # leaves through y first
        ],
    )
    def test_slab(self, origin: list[float], direction: list[float], expected: bool) -> None:
        hit = ray_aabb_intersect(np.array(origin), self._inv(direction), *self.BOX, 1e30)
        assert hit == expected

    def test_distance_limit(self) -> None:
        origin = np.array([0.5, 0.5, 3.0])
        inv = self._inv([0.0, 0.0, -1.0])
        assert not ray_aabb_intersect(origin, inv, *self.BOX, 1.5)
        assert ray_aabb_intersect(origin, inv, *self.BOX, 2.5)


# ===================================================================
# BVH + SUNLIT MASK TESTS
# ===================================================================


class TestBVH:
    """BVH construction invariants."""

    def test_bvh_builds_without_error(self, sphere_mesh: ShapeMesh) -> None:
        bvh_nodes, tri_verts, ordered_indices = build_bvh(sphere_mesh, max_leaf_triangles=4)

        assert bvh_nodes.shape[0] > 0, "BVH should have nodes"
        assert bvh_nodes.shape[0] % 8 == 0
        assert tri_verts.shape == sphere_mesh.tri_verts.shape
        assert ordered_indices.shape[0] == sphere_mesh.num_face

    def test_ordered_indices_are_permutation(self, sphere_mesh: ShapeMesh) -> None:
        _, _, ordered_indices = build_bvh(sphere_mesh)
        np.testing.assert_array_equal(
            np.sort(ordered_indices), np.arange(sphere_mesh.num_face)
        )

    def test_leaves_cover_every_triangle_once(self, sphere_mesh: ShapeMesh) -> None:
        bvh_nodes, _, ordered_indices = build_bvh(sphere_mesh, max_leaf_triangles=2)
        nodes = bvh_nodes.reshape(-1, 8)
        covered = np.zeros(sphere_mesh.num_face, dtype=np.int64)
        for node in nodes:
            if node[7] < 0:
                start, count = int(node[6]), int(-node[7])
                covered[ordered_indices[start:start + count]] += 1
        np.testing.assert_array_equal(covered, 1)

    def test_root_box_encloses_mesh(self, sphere_mesh: ShapeMesh) -> None:
        bvh_nodes, _, _ = build_bvh(sphere_mesh)
        root = bvh_nodes[:8]
        assert np.all(root[:3] <= sphere_mesh.vertices.min(axis=0))
        assert np.all(root[3:6] >= sphere_mesh.vertices.max(axis=0))

    def test_single_triangle(self) -> None:
        tri = np.array([[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]])
        bvh_nodes, _, ordered_indices = build_bvh_from_triangles(tri)
        assert bvh_nodes.shape[0] == 8
        assert bvh_nodes[7] == -1.0
        np.testing.assert_array_equal(ordered_indices, [0])


class TestSunlitMask:
    """Self-shadowing of a body's own facets."""

    @pytest.mark.parametrize(
        "sun_dir",
        [
            [0.0, 0.0, 1.0],
            [0.3, -0.5, 0.81],
            [-0.9, 0.1, -0.2],
        ],
    )
    def test_convex_body_lit_iff_facing_sun(
        self, sphere_mesh: ShapeMesh, sun_dir: list[float]
    ) -> None:
        """A convex body never shadows itself."""
        s = np.array(sun_dir) / np.linalg.norm(sun_dir)
        lit = sunlit_mask(sphere_mesh, s)
        np.testing.assert_array_equal(lit, sphere_mesh.normals @ s > 0.0)

    def test_upper_facet_shadows_lower(self, stacked_facets: ShapeMesh) -> None:
        lit = sunlit_mask(stacked_facets, np.array([0.0, 0.0, 1.0]))
        np.testing.assert_array_equal(lit, [True, False])

    def test_low_sun_clears_upper_facet(self, stacked_facets: ShapeMesh) -> None:
        alpha = np.radians(80.0)
        s = np.array([np.sin(alpha), 0.0, np.cos(alpha)])
        lit = sunlit_mask(stacked_facets, s)
        np.testing.assert_array_equal(lit, [True, True])

    def test_facets_facing_away_are_dark(self, stacked_facets: ShapeMesh) -> None:
        lit = sunlit_mask(stacked_facets, np.array([0.0, 0.0, -1.0]))
        assert not lit.any()

    @pytest.mark.parametrize(
        "sun_dir",
        [
            [0.98, 0.05, -0.19],
            [0.95, 0.2, 0.24],
            [-0.7, -0.7, 0.14],
        ],
    )
    def test_bvh_matches_brute_force(
        self, contact_binary: ShapeMesh, sun_dir: list[float]
    ) -> None:
        s = np.array(sun_dir) / np.linalg.norm(sun_dir)
        bvh_nodes, tri_verts, ordered = build_bvh(contact_binary)

        lit = compute_sunlit_mask(
            contact_binary.centers, contact_binary.normals, s,
            bvh_nodes, tri_verts, ordered, EPS,
        )

        np.testing.assert_array_equal(lit, _brute_force_lit(contact_binary, s, EPS))

    def test_lobes_shadow_each_other(self, contact_binary: ShapeMesh) -> None:
        s = np.array([1.0, 0.0, 0.0])
        lit = sunlit_mask(contact_binary, s)
        facing = contact_binary.normals @ s > 0.0
        assert np.sum(facing & ~lit) > 0, "Far lobe should be partly shadowed"
        # The near lobe is never shadowed
        near = contact_binary.centers[:, 0] > 0.0
        np.testing.assert_array_equal(lit[near], facing[near])


class TestRaysOccluded:
    """External rays against a masked BVH."""

    def test_masked_triangles_never_occlude(self, stacked_facets: ShapeMesh) -> None:
        bvh_nodes, tri_verts, ordered = build_bvh(stacked_facets)
        origins = np.array([[0.0, -0.2, -1.0], [0.3, -0.2, -1.0]])
        directions = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 1.0]])
        active = np.array([True, True])

        hit_all = rays_occluded(
            origins, directions, active, bvh_nodes, tri_verts, ordered,
            np.array([True, True]), 1e-10,
        )
        hit_none = rays_occluded(
            origins, directions, active, bvh_nodes, tri_verts, ordered,
            np.array([False, False]), 1e-10,
        )

        np.testing.assert_array_equal(hit_all, [True, True])
        np.testing.assert_array_equal(hit_none, [False, False])

    def test_inactive_rays_report_no_hit(self, stacked_facets: ShapeMesh) -> None:
        bvh_nodes, tri_verts, ordered = build_bvh(stacked_facets)
        origins = np.array([[0.0, -0.2, -1.0]])
        directions = np.array([[0.0, 0.0, 1.0]])

        hit = rays_occluded(
            origins, directions, np.array([False]), bvh_nodes, tri_verts, ordered,
            np.array([True, True]), 1e-10,
        )

        assert not hit[0]
