"""Photon-recoil force and torque on a shape model (Yarkovsky/YORP).

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Each facet reflects and emits as a Lambertian surface. The outgoing
exitance of facet i is

    E_i = A_B,i · (F_sun,i + F_scat,i) + A_TH,i · F_rad,i + ε_i σ T_0,i⁴

and the recoil force of a Lambertian emitter is

    df_i = −(2/3) · E_i · a_i / c · n̂_i

The net force Σ df_i and torque Σ r_i × df_i are accumulated in the body
frame. Momentum of the incident sunlight is not included.
"""

from __future__ import annotations

import logging

import numpy as np

from core_engine.constants import DEFAULT_CONSTANTS, FundamentalConstants, ThermoParams
from core_engine.flux import facet_values
from core_engine.mesh import ShapeMesh

logger = logging.getLogger(__name__)

_LAMBERT_FACTOR: float = 2.0 / 3.0


def outgoing_exitance(
    mesh: ShapeMesh,
    params: ThermoParams,
    stefan_boltzmann: float = DEFAULT_CONSTANTS.stefan_boltzmann,
) -> np.ndarray:
    """Reflected plus emitted flux leaving each facet [W/m²]."""
    n = mesh.num_face
    a_b = facet_values(params.bond_albedo, n)
    a_th = facet_values(params.thermal_albedo, n)
    eps = facet_values(params.emissivity, n)
    t_surf = mesh.temps[:, 0]
    return (
        a_b * (mesh.flux_sun + mesh.flux_scat)
        + a_th * mesh.flux_rad
        + eps * stefan_boltzmann * t_surf**4
    )


def update_facet_forces(
    mesh: ShapeMesh,
    params: ThermoParams,
    constants: FundamentalConstants = DEFAULT_CONSTANTS,
) -> np.ndarray:
    """Compute the recoil force on every facet into ``mesh.facet_forces``."""
    exitance = outgoing_exitance(mesh, params, constants.stefan_boltzmann)
    scale = -_LAMBERT_FACTOR * exitance * mesh.areas / constants.speed_of_light
    mesh.facet_forces[:] = scale[:, None] * mesh.normals
    return mesh.facet_forces


def accumulate_force_torque(
    mesh: ShapeMesh,
    params: ThermoParams,
    constants: FundamentalConstants = DEFAULT_CONSTANTS,
) -> tuple[np.ndarray, np.ndarray]:
    """Reset and re-accumulate the net force [N] and torque [N·m].

    Returns
    -------
    force, torque : np.ndarray
        Views of ``mesh.force`` and ``mesh.torque``. Shape: (3,) each.
    """
    mesh.force[:] = 0.0
    mesh.torque[:] = 0.0

    df = update_facet_forces(mesh, params, constants)
    mesh.force[:] = df.sum(axis=0)
    mesh.torque[:] = np.cross(mesh.centers, df).sum(axis=0)
    return mesh.force, mesh.torque
