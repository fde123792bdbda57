"""Energy balance of a shape model and the conservation diagnostic.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
    E_in   = Σ (1 − A_B) (F_sun + F_scat) a
    E_out  = Σ (ε σ T_0⁴ − (1 − A_TH) F_rad) a
    E_cons = E_out / E_in

E_cons ≈ 1 averaged over a rotation means the body is in thermal
equilibrium. When the body receives (almost) no energy the ratio is
undefined: E_cons is NaN and an :class:`UndefinedConservationRatio` warning
is issued. Its text names only the body, so a long stretch in shadow shows
up once; the step and energies go to the debug log.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np

from core_engine.constants import DEFAULT_CONSTANTS, ThermoParams
from core_engine.errors import UndefinedConservationRatio
from core_engine.flux import facet_values
from core_engine.mesh import ShapeMesh

logger = logging.getLogger(__name__)

_E_IN_FLOOR: float = 1e-30
_E_IN_RELATIVE: float = 1e-12


@dataclass(frozen=True)
class EnergyBalance:
    """Input and output power of one body at one epoch [W]."""

    e_in: float
    e_out: float
    e_cons: float

    @property
    def is_defined(self) -> bool:
        return bool(np.isfinite(self.e_cons))

    def __iter__(self):
        return iter((self.e_in, self.e_out, self.e_cons))


def energy_io(
    mesh: ShapeMesh,
    params: ThermoParams,
    stefan_boltzmann: float = DEFAULT_CONSTANTS.stefan_boltzmann,
    step: int | None = None,
) -> EnergyBalance:
    """Compute E_in, E_out and E_cons of a mesh.

    Parameters
    ----------
    mesh : ShapeMesh
        Shape model with current flux and temperatures.
    params : ThermoParams
        Albedos and emissivity (uniform or per facet).
    stefan_boltzmann : float
        σ [W/m²/K⁴].
    step : int, optional
        Step number, only used in the debug log.

    Returns
    -------
    EnergyBalance
        ``e_cons`` is NaN when E_in ≤ max(1e-30, 1e-12·|E_out|).
    """
    n = mesh.num_face
    a_b = facet_values(params.bond_albedo, n)
    a_th = facet_values(params.thermal_albedo, n)
    eps = facet_values(params.emissivity, n)
    t_surf = mesh.temps[:, 0]

    e_in = float(np.sum((1.0 - a_b) * (mesh.flux_sun + mesh.flux_scat) * mesh.areas))
    e_out = float(
        np.sum(
            (eps * stefan_boltzmann * t_surf**4 - (1.0 - a_th) * mesh.flux_rad)
            * mesh.areas
        )
    )

    if e_in <= max(_E_IN_FLOOR, _E_IN_RELATIVE * abs(e_out)):
        logger.debug(
            "E_cons undefined for '%s' at step %s: E_in=%.3e W, E_out=%.3e W",
            mesh.name, step, e_in, e_out,
        )
        # Text depends on the body only; step details are in the debug log.
        warnings.warn(
            f"Energy conservation ratio undefined for '{mesh.name}' (E_in ~ 0)",
            UndefinedConservationRatio,
            stacklevel=2,
        )
        return EnergyBalance(e_in, e_out, float("nan"))

    return EnergyBalance(e_in, e_out, e_out / e_in)


def rotation_mean(
    times: np.ndarray,
    values: np.ndarray,
    period: float,
) -> float:
    """Mean of ``values`` over the trailing rotation ending at ``times[-1]``.

    Undefined (NaN) entries are ignored. Returns NaN if less than one full
    rotation of history is available or every entry in the window is NaN.
    """
    times = np.asarray(times, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    if times.size == 0 or times[-1] - times[0] < period * (1.0 - 1e-9):
        return float("nan")

    window = times >= times[-1] - period * (1.0 + 1e-9)
    selected = values[window]
    selected = selected[np.isfinite(selected)]
    if selected.size == 0:
        return float("nan")
    return float(selected.mean())
