"""Tests for direct, scattered and reradiated facet flux.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import numpy as np
import pytest

from core_engine.constants import DEFAULT_CONSTANTS, ThermoParams
from core_engine.flux import (
    facet_values,
    illuminate,
    reradiate_single,
    scatter_single,
    sun_flux_from_position,
    update_flux,
)
from core_engine.mesh import ShapeMesh

SIGMA = DEFAULT_CONSTANTS.stefan_boltzmann


@pytest.fixture
def v_groove() -> ShapeMesh:
    """Two facets facing each other across a groove along y, view factor 0.3."""
    vertices = np.array(
        [
            [0.0, 0.0, 0.0], [1.0, 0.0, 1.0], [0.0, 1.0, 0.0],
            [-1.0, 0.0, 1.0],
        ]
    )
    faces = [[0, 1, 2], [0, 2, 3]]
    return ShapeMesh.from_arrays(
        vertices, faces, visibility=[[(1, 0.3)], [(0, 0.3)]], name="groove"
    )


class TestSunFlux:
    def test_one_au(self) -> None:
        au = DEFAULT_CONSTANTS.astronomical_unit
        flux, direction = sun_flux_from_position(np.array([0.0, au, 0.0]))
        assert flux == pytest.approx(DEFAULT_CONSTANTS.solar_constant)
        np.testing.assert_allclose(direction, [0.0, 1.0, 0.0])

    def test_inverse_square(self) -> None:
        au = DEFAULT_CONSTANTS.astronomical_unit
        flux, direction = sun_flux_from_position(np.array([-2.0 * au, 0.0, 0.0]))
        assert flux == pytest.approx(DEFAULT_CONSTANTS.solar_constant / 4.0)
        np.testing.assert_allclose(direction, [-1.0, 0.0, 0.0])

    def test_zero_vector_rejected(self) -> None:
        with pytest.raises(ValueError):
            sun_flux_from_position(np.zeros(3))


class TestIlluminate:
    def test_normal_incidence(self, flat_facet: ShapeMesh) -> None:
        lit = illuminate(flat_facet, 1000.0, np.array([0.0, 0.0, 1.0]))
        assert lit[0]
        assert flat_facet.flux_sun[0] == pytest.approx(1000.0)

    def test_cosine_law(self, flat_facet: ShapeMesh) -> None:
        alpha = np.radians(60.0)
        illuminate(flat_facet, 1000.0, np.array([np.sin(alpha), 0.0, np.cos(alpha)]))
        assert flat_facet.flux_sun[0] == pytest.approx(500.0)

    @pytest.mark.parametrize("sun_dir", [[0.0, 0.0, -1.0], [1.0, 0.0, 0.0]])
    def test_zero_when_not_facing_sun(self, flat_facet: ShapeMesh, sun_dir: list[float]) -> None:
        flat_facet.flux_sun[:] = 123.0
        illuminate(flat_facet, 1000.0, np.array(sun_dir))
        assert flat_facet.flux_sun[0] == 0.0

    def test_sphere_flux_is_exact_zero_on_night_side(self, sphere_mesh: ShapeMesh) -> None:
        s = np.array([0.2, 0.7, -0.3])
        s /= np.linalg.norm(s)
        illuminate(sphere_mesh, 800.0, s)

        cos_theta = sphere_mesh.normals @ s
        night = cos_theta <= 0.0
        assert np.all(sphere_mesh.flux_sun[night] == 0.0)
        np.testing.assert_allclose(sphere_mesh.flux_sun[~night], 800.0 * cos_theta[~night])

    def test_direction_is_normalised(self, sphere_mesh: ShapeMesh) -> None:
        s = np.array([0.0, 0.6, 0.8])
        illuminate(sphere_mesh, 500.0, s)
        expected = sphere_mesh.flux_sun.copy()

        illuminate(sphere_mesh, 500.0, 250.0 * s)

        np.testing.assert_allclose(sphere_mesh.flux_sun, expected)

    def test_shadowed_facet_gets_zero(self, stacked_facets: ShapeMesh) -> None:
        illuminate(stacked_facets, 1361.0, np.array([0.0, 0.0, 1.0]))
        assert stacked_facets.flux_sun[0] == pytest.approx(1361.0)
        assert stacked_facets.flux_sun[1] == 0.0

    def test_no_flux_no_light(self, flat_facet: ShapeMesh) -> None:
        illuminate(flat_facet, 0.0, np.array([0.0, 0.0, 1.0]))
        assert flat_facet.flux_sun[0] == 0.0

    def test_invalid_input(self, flat_facet: ShapeMesh) -> None:
        with pytest.raises(ValueError):
            illuminate(flat_facet, -1.0, np.array([0.0, 0.0, 1.0]))
        with pytest.raises(ValueError):
            illuminate(flat_facet, 1.0, np.zeros(3))


class TestScatter:
    def test_single_scatter(self, v_groove: ShapeMesh) -> None:
        v_groove.flux_sun[:] = [1000.0, 0.0]
        scatter_single(v_groove, 0.1)
        np.testing.assert_allclose(v_groove.flux_scat, [0.0, 0.3 * 0.1 * 1000.0])

    def test_per_facet_albedo_uses_source_facet(self, v_groove: ShapeMesh) -> None:
        v_groove.flux_sun[:] = [1000.0, 200.0]
        scatter_single(v_groove, [0.1, 0.5])
        np.testing.assert_allclose(
            v_groove.flux_scat, [0.3 * 0.5 * 200.0, 0.3 * 0.1 * 1000.0]
        )

    def test_empty_visibility(self, sphere_mesh: ShapeMesh) -> None:
        sphere_mesh.flux_sun[:] = 100.0
        sphere_mesh.flux_scat[:] = 7.0
        scatter_single(sphere_mesh, 0.3)
        assert np.all(sphere_mesh.flux_scat == 0.0)


class TestReradiate:
    def test_single_reradiation(self, v_groove: ShapeMesh) -> None:
        v_groove.init_temps(3)
        v_groove.temps[:, 0] = [300.0, 200.0]
        reradiate_single(v_groove, 0.9, SIGMA)
        np.testing.assert_allclose(
            v_groove.flux_rad,
            [0.3 * 0.9 * SIGMA * 200.0**4, 0.3 * 0.9 * SIGMA * 300.0**4],
        )

    def test_uses_surface_node_only(self, v_groove: ShapeMesh) -> None:
        v_groove.init_temps(5, temperature=250.0)
        v_groove.temps[:, 1:] = 1000.0
        reradiate_single(v_groove, 1.0, SIGMA)
        np.testing.assert_allclose(v_groove.flux_rad, 0.3 * SIGMA * 250.0**4)


class TestUpdateFlux:
    def test_direct_then_indirect(self, v_groove: ShapeMesh) -> None:
        params = ThermoParams.create(bond_albedo=0.2, emissivity=0.9, num_depth_nodes=3)
        v_groove.init_temps(3, temperature=100.0)
        s = np.array([1.0, 0.0, 1.0]) / np.sqrt(2.0)

        update_flux(v_groove, 1000.0, s, params)

        # Facet 1 faces +x+z; facet 0 faces -x+z and sees the sun edge-on
        assert v_groove.flux_sun[0] == 0.0
        assert v_groove.flux_sun[1] == pytest.approx(1000.0)
        np.testing.assert_allclose(v_groove.flux_scat, [0.3 * 0.2 * 1000.0, 0.0])
        np.testing.assert_allclose(v_groove.flux_rad, 0.3 * 0.9 * SIGMA * 100.0**4)


def test_facet_values_is_writable_copy() -> None:
    params = ThermoParams.create(bond_albedo=[0.1, 0.2], num_depth_nodes=3)
    values = facet_values(params.bond_albedo, 2)
    values[0] = 0.9
    assert params.bond_albedo.at(0) == 0.1
