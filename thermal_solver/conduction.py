"""Explicit 1D heat conduction below every facet.

Each facet carries a column of N_z temperature nodes from the surface
(index 0) down to z_max. All columns are advanced together by one forward
Euler step per call.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Derivation
----------
With time in units of the rotation period P and depth in units of the
thermal skin depth l, the heat equation reads

    ∂T/∂t̃ = (1/4π) ∂²T/∂z̃²

Interior nodes (j = 1 … N−2), λ = Δt̃ / (4π Δz̃²):

    T'_j = (1 − 2λ) T_j + λ (T_{j+1} + T_{j−1})

Surface (j = 0), energy balance solved for T'_0 by Newton's method:

    F_abs + Γ/√(4πP) · (T'_1 − T'_0)/Δz̃ − ε σ T'_0⁴ = 0
    F_abs = (1 − A_B)(F_sun + F_scat) + (1 − A_TH) F_rad

The left-hand side is concave and decreasing in T'_0 with a root ≥ 0.
Both terms give an upper bound on the root,

    T'_0 ≤ min(q/g, (q/εσ)^¼),   q = F_abs + g·T'_1,  g = Γ/√(4πP)/Δz̃

and Newton started at or above the root decreases monotonically onto it.
The previous surface temperature is used instead when it is closer and
still above the root. Facets that do not converge within the iteration
limit are logged.

Bottom (j = N−1), insulating:

    T'_{N−1} = T'_{N−2}

The new profile is written to the scratch buffer and then swapped in, so
no node reads a partially updated neighbour. The scheme is stable for
λ ≤ 0.5; the integrator never adapts the step.

References
----------
- Rozitis, B. & Green, S.F. (2011). MNRAS, 415, 2042-2062.
- Spencer, J.R., Lebofsky, L.A. & Sykes, M.V. (1989). Icarus, 78, 337-354.
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit, prange

from core_engine.constants import DEFAULT_CONSTANTS, FundamentalConstants, ThermoParams
from core_engine.errors import NumericalDivergenceError
from core_engine.flux import facet_values
from core_engine.mesh import ShapeMesh
from thermal_solver.thermal_properties import surface_conduction_coefficient

logger = logging.getLogger(__name__)

NEWTON_MAX_ITER: int = 50
NEWTON_REL_TOL: float = 1e-10


@njit(cache=True, parallel=True)
def _explicit_step(
    temps: np.ndarray,
    temps_next: np.ndarray,
    lam: np.ndarray,
    gradient_coef: np.ndarray,
    absorbed: np.ndarray,
    emit_coef: np.ndarray,
    newton_max_iter: int,
    newton_rel_tol: float,
    converged: np.ndarray,
) -> None:
    """One explicit step of every column.

    Parameters
    ----------
    temps : np.ndarray
        Current profiles [K]. Shape: (F, N_z).
    temps_next : np.ndarray
        Output profiles [K]. Shape: (F, N_z).
    lam : np.ndarray
        Stability number λ per facet.
    gradient_coef : np.ndarray
        Γ/√(4πP)/Δz̃ per facet [W/m²/K].
    absorbed : np.ndarray
        Absorbed flux F_abs per facet [W/m²].
    emit_coef : np.ndarray
        ε·σ per facet [W/m²/K⁴].
    converged : np.ndarray
        Output flag per facet, False where Newton hit the iteration limit.
    """
    num_faces, n_z = temps.shape
    for i in prange(num_faces):
        lam_i = lam[i]
        for j in range(1, n_z - 1):
            temps_next[i, j] = (1.0 - 2.0 * lam_i) * temps[i, j] + lam_i * (
                temps[i, j + 1] + temps[i, j - 1]
            )

        g = gradient_coef[i]
        es = emit_coef[i]
        f_abs = absorbed[i]
        t1 = temps_next[i, 1]

        # Start at or above the root so the iterates decrease monotonically.
        q = f_abs + g * t1
        t0 = q / g
        if es > 0.0:
            t0 = min(t0, (q / es) ** 0.25)
        t_prev = temps[i, 0]
        if t_prev < t0 and f_abs + g * (t1 - t_prev) - es * t_prev**4 <= 0.0:
            t0 = t_prev

        converged[i] = False
        for _ in range(newton_max_iter):
            t3 = t0 * t0 * t0
            f = f_abs + g * (t1 - t0) - es * t3 * t0
            df = -g - 4.0 * es * t3
            delta = -f / df
            t0 += delta
            if abs(delta) <= newton_rel_tol * abs(t0):
                converged[i] = True
                break
        temps_next[i, 0] = t0

        temps_next[i, n_z - 1] = temps_next[i, n_z - 2]


class ExplicitConductionSolver:
    """Forward-Euler conduction for all facets of one shape model.

    Per-facet coefficients (λ, Γ/√(4πP)/Δz̃, εσ, albedos) are computed once
    from the run parameters.

    Parameters
    ----------
    num_faces : int
        Number of facets of the mesh this solver will advance.
    params : ThermoParams
        Run parameters (uniform or per-facet material properties).
    constants : FundamentalConstants
        Physical constants.
    """

    def __init__(
        self,
        num_faces: int,
        params: ThermoParams,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
    ) -> None:
        self.num_faces = num_faces
        self.num_depth_nodes = params.num_depth_nodes
        self.stable = params.check_stability(num_faces)

        dz = np.array(params.depth_step(num_faces), dtype=np.float64)
        self.lam = np.array(params.stability_number(num_faces), dtype=np.float64)
        self.gradient_coef = np.array(
            surface_conduction_coefficient(
                params.thermal_inertia(num_faces), params.rotation_period_s
            )
            / dz,
            dtype=np.float64,
        )
        self.emit_coef = facet_values(params.emissivity, num_faces) * constants.stefan_boltzmann
        self.bond_albedo = facet_values(params.bond_albedo, num_faces)
        self.thermal_albedo = facet_values(params.thermal_albedo, num_faces)
        self.unconverged = 0

        logger.debug(
            "ExplicitConductionSolver: %d facets, N_z=%d, λ in [%.4f, %.4f], Δz̃ in [%.4f, %.4f]",
            num_faces, self.num_depth_nodes,
            float(self.lam.min()), float(self.lam.max()),
            float(dz.min()), float(dz.max()),
        )

    def absorbed_flux(self, mesh: ShapeMesh) -> np.ndarray:
        """F_abs per facet [W/m²]."""
        return (1.0 - self.bond_albedo) * (mesh.flux_sun + mesh.flux_scat) + (
            1.0 - self.thermal_albedo
        ) * mesh.flux_rad

    def step(self, mesh: ShapeMesh) -> None:
        """Advance ``mesh.temps`` by one time step in place.

        ``unconverged`` is set to the number of facets whose surface Newton
        solve hit the iteration limit on this step.
        """
        if mesh.num_face != self.num_faces:
            raise ValueError(
                f"Solver built for {self.num_faces} facets, mesh has {mesh.num_face}"
            )
        if mesh.num_depth_nodes != self.num_depth_nodes:
            raise ValueError(
                f"Mesh temperature profiles have {mesh.num_depth_nodes} nodes, "
                f"expected {self.num_depth_nodes}; call mesh.init_temps first"
            )

        converged = np.ones(self.num_faces, dtype=np.bool_)
        _explicit_step(
            mesh.temps,
            mesh.temps_next,
            self.lam,
            self.gradient_coef,
            self.absorbed_flux(mesh),
            self.emit_coef,
            NEWTON_MAX_ITER,
            NEWTON_REL_TOL,
            converged,
        )
        mesh.swap_temperature_buffers()

        self.unconverged = int(self.num_faces - np.count_nonzero(converged))
        if self.unconverged:
            logger.warning(
                "Surface temperature of %d facets of '%s' not converged after %d "
                "Newton iterations (first: facet %d)",
                self.unconverged, mesh.name, NEWTON_MAX_ITER,
                int(np.argmin(converged)),
            )


def advance_temperatures(
    mesh: ShapeMesh,
    params: ThermoParams,
    constants: FundamentalConstants = DEFAULT_CONSTANTS,
) -> None:
    """Advance every facet's depth profile by one explicit step.

    Builds a fresh :class:`ExplicitConductionSolver`; time loops should keep
    one solver and call :meth:`ExplicitConductionSolver.step` instead.
    """
    ExplicitConductionSolver(mesh.num_face, params, constants).step(mesh)


def check_finite(mesh: ShapeMesh, step: int) -> None:
    """Raise :class:`NumericalDivergenceError` on the first non-finite value.

    Temperatures are checked first, then the three flux fields.
    """
    bad_rows = ~np.all(np.isfinite(mesh.temps), axis=1)
    if bad_rows.any():
        raise NumericalDivergenceError(int(np.argmax(bad_rows)), step, "temperature")

    for name in ("flux_sun", "flux_scat", "flux_rad"):
        bad = ~np.isfinite(getattr(mesh, name))
        if bad.any():
            raise NumericalDivergenceError(int(np.argmax(bad)), step, name)
