"""Derived thermophysical quantities for the conduction column.

The conduction integrator works in non-dimensional units: time in units of
the rotation period P and depth in units of the thermal skin depth l.
This module converts material properties into those units.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Definitions
-----------
    l = sqrt(4π · P · k / (ρ · C_p))     thermal skin depth [m]
    Γ = sqrt(k · ρ · C_p)                thermal inertia [J/m²/K/s^0.5]
    Δz̃ = z_max / l / (N_z − 1)           non-dimensional depth step [-]
    λ = Δt̃ / (4π · Δz̃²)                 explicit-scheme stability number [-]

With these units the 1D heat equation reads ∂T/∂t̃ = (1/4π) ∂²T/∂z̃² and the
explicit forward-Euler scheme is stable for λ ≤ 0.5.

References
----------
- Spencer, J.R., Lebofsky, L.A. & Sykes, M.V. (1989). Icarus, 78, 337-354.
- Rozitis, B. & Green, S.F. (2011). MNRAS, 415, 2042-2062.
"""

from __future__ import annotations

import logging

import numpy as np

logger = logging.getLogger(__name__)

STABILITY_LIMIT: float = 0.5


def thermal_skin_depth(
    period_s: float,
    conductivity: np.ndarray | float,
    density: np.ndarray | float,
    heat_capacity: np.ndarray | float,
) -> np.ndarray:
    """Thermal skin depth l = sqrt(4πPk/(ρC_p)) [m]."""
    k = np.asarray(conductivity, dtype=np.float64)
    rho = np.asarray(density, dtype=np.float64)
    cp = np.asarray(heat_capacity, dtype=np.float64)
    return np.sqrt(4.0 * np.pi * period_s * k / (rho * cp))


def thermal_inertia(
    conductivity: np.ndarray | float,
    density: np.ndarray | float,
    heat_capacity: np.ndarray | float,
) -> np.ndarray:
    """Thermal inertia Γ = sqrt(kρC_p) [tiu]."""
    k = np.asarray(conductivity, dtype=np.float64)
    rho = np.asarray(density, dtype=np.float64)
    cp = np.asarray(heat_capacity, dtype=np.float64)
    return np.sqrt(k * rho * cp)


def nondimensional_depth_step(
    z_max_m: float,
    skin_depth_m: np.ndarray | float,
    num_depth_nodes: int,
) -> np.ndarray:
    """Depth step in units of the skin depth."""
    if num_depth_nodes < 3:
        raise ValueError(f"Need at least 3 depth nodes, got {num_depth_nodes}")
    return np.asarray(z_max_m / np.asarray(skin_depth_m) / (num_depth_nodes - 1))


def stability_number(dt_fraction: float, dz_nondim: np.ndarray | float) -> np.ndarray:
    """λ = Δt̃ / (4π Δz̃²) for the explicit scheme."""
    dz = np.asarray(dz_nondim, dtype=np.float64)
    return dt_fraction / (4.0 * np.pi * dz * dz)


def surface_conduction_coefficient(
    thermal_inertia_: np.ndarray | float,
    period_s: float,
) -> np.ndarray:
    """Γ/√(4πP): converts a non-dimensional gradient into W/m²/K."""
    return np.asarray(thermal_inertia_, dtype=np.float64) / np.sqrt(4.0 * np.pi * period_s)


def radiative_equilibrium_temperature(
    absorbed_flux: float,
    emissivity: float,
    stefan_boltzmann: float,
) -> float:
    """Temperature at which ε·σ·T⁴ balances the absorbed flux [K]."""
    if absorbed_flux <= 0.0:
        return 0.0
    return float((absorbed_flux / (emissivity * stefan_boltzmann)) ** 0.25)
