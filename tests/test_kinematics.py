"""Tests for the kinematics adapters.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import numpy as np
import pytest

from core_engine.constants import DEFAULT_CONSTANTS, KinematicsConfig
from simulation.kinematics import (
    CircularBinaryKinematics,
    StaticSun,
    TabulatedEphemeris,
    UniformRotationKinematics,
    rotation_z,
)

AU = DEFAULT_CONSTANTS.astronomical_unit
S0 = DEFAULT_CONSTANTS.solar_constant


class TestUniformRotation:
    def test_sun_circles_the_equator(self) -> None:
        kin = UniformRotationKinematics(rotation_period_s=3600.0, heliocentric_distance_au=2.0)

        e0 = kin.epoch(0.0)
        e_quarter = kin.epoch(900.0)

        np.testing.assert_allclose(e0.sun_direction, [-1.0, 0.0, 0.0], atol=1e-12)
        # Body turns +90° about z, so the sun appears to move by −90°
        np.testing.assert_allclose(e_quarter.sun_direction, [0.0, 1.0, 0.0], atol=1e-12)
        assert e_quarter.spin_phase == pytest.approx(np.pi / 2.0)
        assert e0.sun_flux == pytest.approx(S0 / 4.0)

    def test_spin_phase_wraps(self) -> None:
        kin = UniformRotationKinematics(rotation_period_s=100.0)
        assert kin.epoch(125.0).spin_phase == pytest.approx(np.pi / 2.0)

    def test_obliquity_tilts_sun_out_of_equator(self) -> None:
        kin = UniformRotationKinematics(
            rotation_period_s=3600.0, orbital_period_s=4.0 * 86400.0,
            obliquity_rad=np.radians(90.0),
        )
        # A quarter orbit later the sun lies along the orbital y axis, i.e. the pole
        e = kin.epoch(86400.0)
        assert abs(e.sun_direction[2]) == pytest.approx(1.0)
        assert e.true_anomaly == pytest.approx(np.pi / 2.0)

    def test_body_to_orbit_round_trip(self) -> None:
        kin = UniformRotationKinematics(
            rotation_period_s=3600.0, orbital_period_s=1e6, obliquity_rad=0.4
        )
        e = kin.epoch(1234.5)
        sun_orbit = e.body_to_orbit @ e.sun_direction
        nu = e.true_anomaly
        np.testing.assert_allclose(sun_orbit, [-np.cos(nu), -np.sin(nu), 0.0], atol=1e-12)
        np.testing.assert_allclose(e.body_to_orbit @ e.body_to_orbit.T, np.eye(3), atol=1e-12)

    def test_from_config(self) -> None:
        cfg = KinematicsConfig(heliocentric_distance_au=1.19, orbital_period_days=474.0,
                               obliquity_deg=171.64)
        kin = UniformRotationKinematics.from_config(cfg, rotation_period_s=27468.0)
        assert kin.orbital_period_s == pytest.approx(474.0 * 86400.0)
        assert kin.obliquity_rad == pytest.approx(np.radians(171.64))
        assert kin.epoch(0.0).sun_flux == pytest.approx(S0 / 1.19**2)

    def test_rejects_bad_period(self) -> None:
        with pytest.raises(ValueError):
            UniformRotationKinematics(rotation_period_s=0.0)


class TestStaticAndTabulated:
    def test_static_sun_normalises(self) -> None:
        e = StaticSun(np.array([0.0, 0.0, 5.0]), 1000.0).epoch(42.0)
        np.testing.assert_allclose(e.sun_direction, [0.0, 0.0, 1.0])
        assert e.sun_flux == 1000.0

    def test_tabulated_interpolation(self) -> None:
        eph = TabulatedEphemeris(
            np.array([0.0, 10.0]),
            np.array([[AU, 0.0, 0.0], [3.0 * AU, 0.0, 0.0]]),
        )
        e = eph.epoch(5.0)
        np.testing.assert_allclose(e.sun_direction, [1.0, 0.0, 0.0])
        assert e.sun_flux == pytest.approx(S0 / 4.0)

    def test_tabulated_out_of_range(self) -> None:
        eph = TabulatedEphemeris(np.array([0.0, 10.0]), np.ones((2, 3)) * AU)
        with pytest.raises(ValueError, match="outside"):
            eph.epoch(11.0)

    def test_tabulated_validates_shapes(self) -> None:
        with pytest.raises(ValueError):
            TabulatedEphemeris(np.array([0.0, 10.0]), np.ones((3, 3)))
        with pytest.raises(ValueError, match="increasing"):
            TabulatedEphemeris(np.array([0.0, 0.0]), np.ones((2, 3)))


class TestCircularBinary:
    def test_geometry_is_consistent(self) -> None:
        kin = CircularBinaryKinematics(
            separation_m=1000.0, mutual_period_s=40000.0, primary_period_s=9000.0
        )
        e = kin.epoch(12345.0)
        rot = e.rotation_sec_to_pri

        np.testing.assert_allclose(rot @ rot.T, np.eye(3), atol=1e-12)
        assert np.linalg.norm(e.sec_from_pri) == pytest.approx(1000.0)
        # Sun seen from B, mapped into A's frame, equals sun_a − sec
        np.testing.assert_allclose(rot @ e.sun_b, e.sun_a - e.sec_from_pri, rtol=1e-12)

    def test_secondary_transits_at_phase_zero(self) -> None:
        kin = CircularBinaryKinematics(
            separation_m=1000.0, mutual_period_s=40000.0, primary_period_s=9000.0
        )
        e = kin.epoch(0.0)
        np.testing.assert_allclose(e.sec_from_pri, [1000.0, 0.0, 0.0])
        np.testing.assert_allclose(e.rotation_sec_to_pri, np.eye(3))

    def test_tidally_locked_secondary(self) -> None:
        kin = CircularBinaryKinematics(
            separation_m=1000.0, mutual_period_s=40000.0, primary_period_s=9000.0
        )
        # The primary always sits at −x in the secondary's frame
        for t in (0.0, 5000.0, 17000.0):
            e = kin.epoch(t)
            pri_in_b = e.rotation_sec_to_pri.T @ (-e.sec_from_pri)
            np.testing.assert_allclose(pri_in_b, [-1000.0, 0.0, 0.0], atol=1e-9)

    def test_tabulate(self) -> None:
        kin = CircularBinaryKinematics(
            separation_m=1000.0, mutual_period_s=40000.0, primary_period_s=9000.0
        )
        times = np.linspace(0.0, 40000.0, 9)
        eph = kin.tabulate(times)

        assert len(eph) == 9
        e = eph.epoch(3)
        direct = kin.epoch(times[3])
        np.testing.assert_allclose(e.sun_a, direct.sun_a)
        np.testing.assert_allclose(e.rotation_sec_to_pri, direct.rotation_sec_to_pri)
        assert e.time == times[3]

    def test_rejects_bad_input(self) -> None:
        with pytest.raises(ValueError):
            CircularBinaryKinematics(separation_m=0.0, mutual_period_s=1.0, primary_period_s=1.0)


def test_rotation_z_quarter_turn() -> None:
    np.testing.assert_allclose(rotation_z(np.pi / 2.0) @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-15)
