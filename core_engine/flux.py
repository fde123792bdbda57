"""Radiative flux incident on each facet.

Three contributions are tracked per facet:

    flux_sun   direct sunlight, with self-shadowing
    flux_scat  sunlight scattered once by visible facets
    flux_rad   thermal radiation emitted once by visible facets

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Direct flux uses the sun direction r̂ in the body frame:

    F_sun,i = F☉ · (n̂_i · r̂)    if n̂_i · r̂ > 0 and the centroid→sun ray is clear
            = 0                  otherwise (exactly zero, never an epsilon)

Indirect flux sums over the visibility list of facet i:

    F_scat,i = Σ_j f_ij · A_B,j · F_sun,j
    F_rad,i  = Σ_j f_ij · ε_j · σ · T_j⁴

Scatter and reradiation read the direct flux of the neighbours, so
illumination (and the eclipse correction, for binaries) must come first.
Reradiation uses the surface temperatures of the previous step.
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit, prange

from core_engine.constants import DEFAULT_CONSTANTS, FundamentalConstants, ThermoParams
from core_engine.mesh import ShapeMesh
from core_engine.parameters import ParameterLike, as_parameter
from core_engine.raytracer import sunlit_mask

logger = logging.getLogger(__name__)


def facet_values(value: ParameterLike, num_facets: int) -> np.ndarray:
    """Dense, writable float64 copy of a scalar-or-per-facet parameter."""
    return np.array(as_parameter(value).as_array(num_facets), dtype=np.float64)


def sun_flux_from_position(
    r_sun: np.ndarray,
    solar_constant: float = DEFAULT_CONSTANTS.solar_constant,
    au: float = DEFAULT_CONSTANTS.astronomical_unit,
) -> tuple[float, np.ndarray]:
    """Solar flux and unit sun direction from a sun position vector.

    Parameters
    ----------
    r_sun : np.ndarray
        Sun position relative to the body [m], any frame. Shape: (3,).
    solar_constant : float
        Flux at 1 au [W/m²].
    au : float
        Astronomical unit [m].

    Returns
    -------
    flux : float
        F☉ = S₀ / (|r|/au)² [W/m²].
    direction : np.ndarray
        r / |r|. Shape: (3,).
    """
    r_sun = np.asarray(r_sun, dtype=np.float64)
    dist = float(np.linalg.norm(r_sun))
    if dist <= 0.0 or not np.isfinite(dist):
        raise ValueError(f"Sun position must be a finite non-zero vector, got {r_sun}")
    return solar_constant / (dist / au) ** 2, r_sun / dist


def _unit(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64)
    n = float(np.linalg.norm(v))
    if n == 0.0 or not np.isfinite(n):
        raise ValueError(f"Sun direction must be a finite non-zero vector, got {v}")
    return v / n


def illuminate(
    mesh: ShapeMesh,
    sun_flux: float,
    sun_direction: np.ndarray,
    epsilon: float = 1e-10,
) -> np.ndarray:
    """Set ``flux_sun`` of every facet, with self-shadowing.

    Parameters
    ----------
    mesh : ShapeMesh
        Shape model, updated in place.
    sun_flux : float
        Solar flux at the body [W/m²], ≥ 0.
    sun_direction : np.ndarray
        Direction toward the sun in the body frame. Normalised here.
    epsilon : float
        Ray-triangle zero tolerance.

    Returns
    -------
    lit : np.ndarray
        Boolean sunlit mask. Shape: (num_face,).
    """
    if sun_flux < 0.0:
        raise ValueError(f"Solar flux cannot be negative, got {sun_flux}")
    r_hat = _unit(sun_direction)

    lit = sunlit_mask(mesh, r_hat, epsilon)
    cos_theta = mesh.normals @ r_hat
    mesh.flux_sun[:] = np.where(lit & (cos_theta > 0.0), sun_flux * cos_theta, 0.0)
    return lit


@njit(cache=True, parallel=True)
def _scatter_kernel(
    offsets: np.ndarray,
    neighbors: np.ndarray,
    view_factors: np.ndarray,
    albedo: np.ndarray,
    flux_sun: np.ndarray,
    out: np.ndarray,
) -> None:
    for i in prange(out.shape[0]):
        total = 0.0
        for k in range(offsets[i], offsets[i + 1]):
            j = neighbors[k]
            total += view_factors[k] * albedo[j] * flux_sun[j]
        out[i] = total


@njit(cache=True, parallel=True)
def _reradiate_kernel(
    offsets: np.ndarray,
    neighbors: np.ndarray,
    view_factors: np.ndarray,
    emissivity: np.ndarray,
    surface_temps: np.ndarray,
    stefan_boltzmann: float,
    out: np.ndarray,
) -> None:
    for i in prange(out.shape[0]):
        total = 0.0
        for k in range(offsets[i], offsets[i + 1]):
            j = neighbors[k]
            t = surface_temps[j]
            total += view_factors[k] * emissivity[j] * stefan_boltzmann * t * t * t * t
        out[i] = total


def scatter_single(mesh: ShapeMesh, bond_albedo: ParameterLike) -> None:
    """Single scattering of direct sunlight among visible facets."""
    graph = mesh.visibility
    if graph.nnz == 0:
        mesh.flux_scat[:] = 0.0
        return
    _scatter_kernel(
        graph.offsets,
        graph.neighbors,
        graph.view_factors,
        facet_values(bond_albedo, mesh.num_face),
        mesh.flux_sun,
        mesh.flux_scat,
    )


def reradiate_single(
    mesh: ShapeMesh,
    emissivity: ParameterLike,
    stefan_boltzmann: float = DEFAULT_CONSTANTS.stefan_boltzmann,
) -> None:
    """Single re-absorption of thermal radiation from visible facets."""
    graph = mesh.visibility
    if graph.nnz == 0 or mesh.num_depth_nodes == 0:
        mesh.flux_rad[:] = 0.0
        return
    _reradiate_kernel(
        graph.offsets,
        graph.neighbors,
        graph.view_factors,
        facet_values(emissivity, mesh.num_face),
        np.ascontiguousarray(mesh.temps[:, 0]),
        stefan_boltzmann,
        mesh.flux_rad,
    )


def update_indirect_flux(
    mesh: ShapeMesh,
    params: ThermoParams,
    constants: FundamentalConstants = DEFAULT_CONSTANTS,
) -> None:
    """Scatter and reradiation, to be called after illumination and eclipses."""
    scatter_single(mesh, params.bond_albedo)
    reradiate_single(mesh, params.emissivity, constants.stefan_boltzmann)


def update_flux(
    mesh: ShapeMesh,
    sun_flux: float,
    sun_direction: np.ndarray,
    params: ThermoParams,
    constants: FundamentalConstants = DEFAULT_CONSTANTS,
    epsilon: float = 1e-10,
) -> None:
    """Full flux update of a single body: direct, scattered, reradiated."""
    illuminate(mesh, sun_flux, sun_direction, epsilon)
    update_indirect_flux(mesh, params, constants)
