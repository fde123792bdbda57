"""Kinematics adapters: where the sun is, seen from the body, at time t.

The thermophysical engine only needs, per epoch, the sun direction and
solar flux in the body-fixed frame (single body), or per-body sun vectors,
the secondary's position and the secondary→primary rotation (binary).
These classes provide that from simple analytic models or from tables
computed elsewhere (e.g. with SPICE).

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Frames
------
Orbital-plane frame: x toward perihelion, z along the orbit normal.
Body frame: fixed to the shape model, z along the spin pole.

    v_orbit = body_to_orbit · v_body
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from core_engine.constants import DEFAULT_CONSTANTS, FundamentalConstants, KinematicsConfig
from core_engine.flux import sun_flux_from_position

logger = logging.getLogger(__name__)


def rotation_x(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def rotation_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


# ---------------------------------------------------------------------------
# Single body
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SingleBodyEpoch:
    """Kinematic state of one body at one epoch.

    Attributes
    ----------
    sun_direction : np.ndarray
        Unit vector toward the sun, body frame. Shape: (3,).
    sun_flux : float
        Solar flux at the body [W/m²].
    body_to_orbit : np.ndarray
        Rotation body frame → orbital-plane frame. Shape: (3, 3).
    anomaly, true_anomaly : float
        Orbital (eccentric) and true anomaly [rad].
    spin_phase : float
        Rotation phase [rad].
    """

    sun_direction: np.ndarray
    sun_flux: float
    body_to_orbit: np.ndarray
    anomaly: float = 0.0
    true_anomaly: float = 0.0
    spin_phase: float = 0.0


class Kinematics(Protocol):
    def epoch(self, t: float) -> SingleBodyEpoch: ...


class StaticSun:
    """Sun fixed in the body frame (non-rotating body, constant flux)."""

    def __init__(self, sun_direction: np.ndarray, sun_flux: float) -> None:
        d = np.asarray(sun_direction, dtype=np.float64)
        self._epoch = SingleBodyEpoch(
            sun_direction=d / np.linalg.norm(d),
            sun_flux=float(sun_flux),
            body_to_orbit=np.eye(3),
        )

    def epoch(self, t: float) -> SingleBodyEpoch:
        return self._epoch


class UniformRotationKinematics:
    """Body spinning uniformly on a circular heliocentric orbit.

    The spin pole is tilted from the orbit normal by the obliquity about
    the orbital-plane x axis. ``orbital_period_s = 0`` freezes the orbit.

    Parameters
    ----------
    rotation_period_s : float
        Sidereal rotation period [s].
    heliocentric_distance_au : float
        Orbit radius [au].
    orbital_period_s : float
        Orbital period [s]; 0 for a fixed orbital position.
    obliquity_rad : float
        Angle between spin pole and orbit normal [rad].
    constants : FundamentalConstants
        Solar constant and astronomical unit.
    initial_spin_phase : float
        Spin phase at t = 0 [rad].
    """

    def __init__(
        self,
        rotation_period_s: float,
        heliocentric_distance_au: float = 1.0,
        orbital_period_s: float = 0.0,
        obliquity_rad: float = 0.0,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
        initial_spin_phase: float = 0.0,
    ) -> None:
        if rotation_period_s <= 0.0:
            raise ValueError("Rotation period must be positive.")
        if heliocentric_distance_au <= 0.0:
            raise ValueError("Heliocentric distance must be positive.")
        self.rotation_period_s = rotation_period_s
        self.distance_au = heliocentric_distance_au
        self.orbital_period_s = orbital_period_s
        self.obliquity_rad = obliquity_rad
        self.initial_spin_phase = initial_spin_phase
        self.sun_flux = constants.solar_constant / heliocentric_distance_au**2
        self._tilt = rotation_x(obliquity_rad)

    @classmethod
    def from_config(
        cls,
        config: KinematicsConfig,
        rotation_period_s: float,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
    ) -> UniformRotationKinematics:
        return cls(
            rotation_period_s=rotation_period_s,
            heliocentric_distance_au=config.heliocentric_distance_au,
            orbital_period_s=config.orbital_period_days * 86400.0,
            obliquity_rad=np.radians(config.obliquity_deg),
            constants=constants,
        )

    def epoch(self, t: float) -> SingleBodyEpoch:
        if self.orbital_period_s > 0.0:
            nu = (2.0 * np.pi * t / self.orbital_period_s) % (2.0 * np.pi)
        else:
            nu = 0.0
        phi = (self.initial_spin_phase + 2.0 * np.pi * t / self.rotation_period_s) % (2.0 * np.pi)

        body_to_orbit = self._tilt @ rotation_z(phi)
        sun_orbit = -np.array([np.cos(nu), np.sin(nu), 0.0])
        return SingleBodyEpoch(
            sun_direction=body_to_orbit.T @ sun_orbit,
            sun_flux=self.sun_flux,
            body_to_orbit=body_to_orbit,
            anomaly=nu,  # circular: eccentric anomaly == true anomaly
            true_anomaly=nu,
            spin_phase=phi,
        )


class TabulatedEphemeris:
    """Sun positions in the body frame at tabulated times.

    Positions are linearly interpolated per component; the flux follows the
    inverse-square law from the interpolated distance. Force and torque are
    reported in the body frame (``body_to_orbit`` is the identity).

    Parameters
    ----------
    times : np.ndarray
        Strictly increasing epochs [s]. Shape: (N,).
    sun_positions : np.ndarray
        Sun position relative to the body, body frame, not normalised [m].
        Shape: (N, 3).
    """

    def __init__(
        self,
        times: np.ndarray,
        sun_positions: np.ndarray,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
    ) -> None:
        self.times = np.asarray(times, dtype=np.float64)
        self.sun_positions = np.asarray(sun_positions, dtype=np.float64)
        if self.sun_positions.shape != (self.times.shape[0], 3):
            raise ValueError(
                f"sun_positions must have shape ({self.times.shape[0]}, 3), "
                f"got {self.sun_positions.shape}"
            )
        if np.any(np.diff(self.times) <= 0.0):
            raise ValueError("Ephemeris times must be strictly increasing")
        self._constants = constants

    def epoch(self, t: float) -> SingleBodyEpoch:
        if not self.times[0] <= t <= self.times[-1]:
            raise ValueError(
                f"t={t} outside ephemeris range [{self.times[0]}, {self.times[-1]}]"
            )
        r_sun = np.array([np.interp(t, self.times, self.sun_positions[:, k]) for k in range(3)])
        flux, direction = sun_flux_from_position(
            r_sun, self._constants.solar_constant, self._constants.astronomical_unit
        )
        return SingleBodyEpoch(sun_direction=direction, sun_flux=flux, body_to_orbit=np.eye(3))


# ---------------------------------------------------------------------------
# Binary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BinaryEpoch:
    """Kinematic state of a binary pair at one epoch.

    Attributes
    ----------
    sun_a : np.ndarray
        Sun position seen from the primary, primary frame [m].
    sun_b : np.ndarray
        Sun position seen from the secondary, secondary frame [m].
    sec_from_pri : np.ndarray
        Secondary position relative to the primary, primary frame [m].
    rotation_sec_to_pri : np.ndarray
        Rotation secondary frame → primary frame. Shape: (3, 3).
    time : float
        Elapsed time [s].
    """

    sun_a: np.ndarray
    sun_b: np.ndarray
    sec_from_pri: np.ndarray
    rotation_sec_to_pri: np.ndarray
    time: float


class TabulatedBinaryEphemeris:
    """Per-epoch geometry of a binary system, indexed by step."""

    def __init__(
        self,
        times: np.ndarray,
        sun_a: np.ndarray,
        sun_b: np.ndarray,
        sec_from_pri: np.ndarray,
        rotation_sec_to_pri: np.ndarray,
    ) -> None:
        self.times = np.asarray(times, dtype=np.float64)
        n = self.times.shape[0]
        self.sun_a = np.asarray(sun_a, dtype=np.float64)
        self.sun_b = np.asarray(sun_b, dtype=np.float64)
        self.sec_from_pri = np.asarray(sec_from_pri, dtype=np.float64)
        self.rotation_sec_to_pri = np.asarray(rotation_sec_to_pri, dtype=np.float64)
        for name, arr, shape in (
            ("sun_a", self.sun_a, (n, 3)),
            ("sun_b", self.sun_b, (n, 3)),
            ("sec_from_pri", self.sec_from_pri, (n, 3)),
            ("rotation_sec_to_pri", self.rotation_sec_to_pri, (n, 3, 3)),
        ):
            if arr.shape != shape:
                raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")

    def __len__(self) -> int:
        return self.times.shape[0]

    def epoch(self, i: int) -> BinaryEpoch:
        return BinaryEpoch(
            sun_a=self.sun_a[i],
            sun_b=self.sun_b[i],
            sec_from_pri=self.sec_from_pri[i],
            rotation_sec_to_pri=self.rotation_sec_to_pri[i],
            time=float(self.times[i]),
        )


class CircularBinaryKinematics:
    """Synthetic binary: circular mutual orbit in the plane of the sun.

    The sun lies on the inertial +x axis at ``heliocentric_distance_au``.
    The primary spins about z with ``primary_period_s``; the secondary is
    tidally locked (rotates once per mutual orbit). Both spin poles are
    normal to the mutual orbit, so mutual eclipses happen twice per orbit.
    """

    def __init__(
        self,
        separation_m: float,
        mutual_period_s: float,
        primary_period_s: float,
        heliocentric_distance_au: float = 1.0,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
        initial_phase: float = 0.0,
    ) -> None:
        if separation_m <= 0.0 or mutual_period_s <= 0.0 or primary_period_s <= 0.0:
            raise ValueError("Separation and periods must be positive.")
        self.separation_m = separation_m
        self.mutual_period_s = mutual_period_s
        self.primary_period_s = primary_period_s
        self.initial_phase = initial_phase
        self._sun = np.array(
            [heliocentric_distance_au * constants.astronomical_unit, 0.0, 0.0]
        )

    def epoch(self, t: float) -> BinaryEpoch:
        theta = self.initial_phase + 2.0 * np.pi * t / self.mutual_period_s
        phi = 2.0 * np.pi * t / self.primary_period_s

        rot_a = rotation_z(phi)     # primary body → inertial
        rot_b = rotation_z(theta)   # secondary body → inertial
        sec = self.separation_m * np.array([np.cos(theta), np.sin(theta), 0.0])

        return BinaryEpoch(
            sun_a=rot_a.T @ self._sun,
            sun_b=rot_b.T @ (self._sun - sec),
            sec_from_pri=rot_a.T @ sec,
            rotation_sec_to_pri=rot_a.T @ rot_b,
            time=float(t),
        )

    def tabulate(self, times: np.ndarray) -> TabulatedBinaryEphemeris:
        """Evaluate every epoch in ``times`` [s]."""
        epochs = [self.epoch(t) for t in np.asarray(times, dtype=np.float64)]
        logger.info(
            "Tabulated circular binary: %d epochs, a=%.1f m, P_mut=%.2f h",
            len(epochs), self.separation_m, self.mutual_period_s / 3600.0,
        )
        return TabulatedBinaryEphemeris(
            times=np.array([e.time for e in epochs]),
            sun_a=np.array([e.sun_a for e in epochs]),
            sun_b=np.array([e.sun_b for e in epochs]),
            sec_from_pri=np.array([e.sec_from_pri for e in epochs]),
            rotation_sec_to_pri=np.array([e.rotation_sec_to_pri for e in epochs]),
        )
