"""Physical constants, thermophysical parameters, and configuration loader.

Run parameters are loaded from YAML configuration files into frozen
dataclasses. Material scalars (albedos, emissivity, conductivity, density,
heat capacity) may be given as a single number or as a list with one value
per facet; both are wrapped in :class:`~core_engine.parameters.FacetParameter`.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

References
----------
- CODATA 2018 for fundamental constants
- Kopp, G. & Lean, J.L. (2011) for the total solar irradiance
- Shimaki, Y., et al. (2020). Icarus, 348, 113835 (Ryugu thermal inertia)
"""

from __future__ import annotations

import hashlib
import logging
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numba
import numpy as np
import yaml

from core_engine.parameters import FacetParameter, ParameterLike, as_parameter
from thermal_solver.thermal_properties import (
    STABILITY_LIMIT,
    nondimensional_depth_step,
    stability_number,
    thermal_inertia,
    thermal_skin_depth,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FundamentalConstants:
    """Fundamental physical constants (CODATA 2018 / IAU 2012).

    Attributes
    ----------
    stefan_boltzmann : float
        Stefan-Boltzmann constant [W/m²/K⁴].
    solar_constant : float
        Total Solar Irradiance at 1 AU [W/m²].
    astronomical_unit : float
        1 Astronomical Unit [m].
    speed_of_light : float
        Speed of light in vacuum [m/s].
    """

    stefan_boltzmann: float = 5.670374419e-8
    solar_constant: float = 1361.0
    astronomical_unit: float = 1.495978707e11
    speed_of_light: float = 299_792_458.0


DEFAULT_CONSTANTS = FundamentalConstants()


@dataclass(frozen=True)
class ThermoParams:
    """Thermophysical parameters of one run. Immutable.

    Attributes
    ----------
    bond_albedo : FacetParameter
        Bond albedo A_B [-].
    thermal_albedo : FacetParameter
        Albedo at thermal-infrared wavelengths A_TH [-].
    emissivity : FacetParameter
        Broadband thermal emissivity ε [-].
    conductivity : FacetParameter
        Thermal conductivity k [W/m/K].
    density : FacetParameter
        Bulk density ρ [kg/m³].
    heat_capacity : FacetParameter
        Specific heat capacity C_p [J/kg/K].
    rotation_period_s : float
        Rotation period P [s].
    dt_fraction : float
        Time step as a fraction of P.
    t_begin, t_end : float
        Start / end time in units of P (inclusive range).
    z_max_m : float
        Depth of the bottom of the conduction column [m].
    num_depth_nodes : int
        Number of depth nodes N_z (surface included).
    initial_temperature_K : float
        Uniform initial temperature [K].
    """

    bond_albedo: FacetParameter
    thermal_albedo: FacetParameter
    emissivity: FacetParameter
    conductivity: FacetParameter
    density: FacetParameter
    heat_capacity: FacetParameter
    rotation_period_s: float
    dt_fraction: float
    t_begin: float
    t_end: float
    z_max_m: float
    num_depth_nodes: int
    initial_temperature_K: float = 0.0

    def __post_init__(self) -> None:
        for name in (
            "bond_albedo", "thermal_albedo", "emissivity",
            "conductivity", "density", "heat_capacity",
        ):
            object.__setattr__(self, name, as_parameter(getattr(self, name)))

    @classmethod
    def create(
        cls,
        *,
        bond_albedo: ParameterLike = 0.0,
        thermal_albedo: ParameterLike = 0.0,
        emissivity: ParameterLike = 1.0,
        conductivity: ParameterLike = 0.1,
        density: ParameterLike = 1270.0,
        heat_capacity: ParameterLike = 600.0,
        rotation_period_s: float = 3600.0,
        dt_fraction: float = 0.01,
        t_begin: float = 0.0,
        t_end: float = 1.0,
        z_max_m: float = 0.5,
        num_depth_nodes: int = 41,
        initial_temperature_K: float = 0.0,
    ) -> ThermoParams:
        """Keyword constructor with defaults, validated."""
        params = cls(
            bond_albedo=bond_albedo,
            thermal_albedo=thermal_albedo,
            emissivity=emissivity,
            conductivity=conductivity,
            density=density,
            heat_capacity=heat_capacity,
            rotation_period_s=float(rotation_period_s),
            dt_fraction=float(dt_fraction),
            t_begin=float(t_begin),
            t_end=float(t_end),
            z_max_m=float(z_max_m),
            num_depth_nodes=int(num_depth_nodes),
            initial_temperature_K=float(initial_temperature_K),
        )
        validate_thermo_params(params)
        return params

    # --- time grid ---

    @property
    def dt_s(self) -> float:
        """Time step [s]."""
        return self.dt_fraction * self.rotation_period_s

    @property
    def num_steps(self) -> int:
        """Number of epochs in the inclusive range t_begin:Δt:t_end."""
        return int(np.floor((self.t_end - self.t_begin) / self.dt_fraction + 1e-9)) + 1

    def elapsed_times(self) -> np.ndarray:
        """Elapsed time of every epoch [s]. Shape: (num_steps,)."""
        steps = np.arange(self.num_steps, dtype=np.float64)
        return (self.t_begin + steps * self.dt_fraction) * self.rotation_period_s

    # --- derived per-facet quantities ---

    def skin_depth(self, num_facets: int) -> np.ndarray:
        """Thermal skin depth per facet [m]."""
        return thermal_skin_depth(
            self.rotation_period_s,
            self.conductivity.as_array(num_facets),
            self.density.as_array(num_facets),
            self.heat_capacity.as_array(num_facets),
        )

    def thermal_inertia(self, num_facets: int) -> np.ndarray:
        """Thermal inertia per facet [J/m²/K/s^0.5]."""
        return thermal_inertia(
            self.conductivity.as_array(num_facets),
            self.density.as_array(num_facets),
            self.heat_capacity.as_array(num_facets),
        )

    def depth_step(self, num_facets: int) -> np.ndarray:
        """Non-dimensional depth step per facet."""
        return nondimensional_depth_step(
            self.z_max_m, self.skin_depth(num_facets), self.num_depth_nodes
        )

    def stability_number(self, num_facets: int) -> np.ndarray:
        """Explicit-scheme stability number λ per facet."""
        return stability_number(self.dt_fraction, self.depth_step(num_facets))

    def check_stability(self, num_facets: int) -> bool:
        """Log a warning if λ exceeds the explicit-scheme limit.

        The integrator never adapts its step; choosing a stable Δt and Δz is
        the caller's responsibility.
        """
        lam_max = float(np.max(self.stability_number(num_facets)))
        if lam_max > STABILITY_LIMIT:
            logger.warning(
                "Explicit conduction scheme is unstable: λ_max=%.3f > %.1f "
                "(reduce dt_fraction or num_depth_nodes)",
                lam_max, STABILITY_LIMIT,
            )
            return False
        logger.debug("Conduction stability number λ_max=%.3f", lam_max)
        return True


@dataclass(frozen=True)
class RaytracerConfig:
    """BVH raytracer configuration.

    Attributes
    ----------
    max_leaf_triangles : int
        Maximum triangles per BVH leaf node.
    sah_num_bins : int
        Number of bins for SAH cost sweep.
    epsilon : float
        Zero-test epsilon for Möller-Trumbore algorithm.
    """

    max_leaf_triangles: int = 4
    sah_num_bins: int = 16
    epsilon: float = 1e-10


@dataclass(frozen=True)
class KinematicsConfig:
    """Uniform-rotation kinematics for the CLI driver.

    Attributes
    ----------
    heliocentric_distance_au : float
        Radius of the circular heliocentric orbit [au].
    orbital_period_days : float
        Orbital period [day]. ``0`` keeps the sun fixed in the orbital frame.
    obliquity_deg : float
        Angle between the spin pole and the orbit normal [deg].
    """

    heliocentric_distance_au: float = 1.0
    orbital_period_days: float = 0.0
    obliquity_deg: float = 0.0


@dataclass(frozen=True)
class SyntheticShapeConfig:
    """Synthetic shape model parameters.

    Attributes
    ----------
    shape_type : str
        'icosphere' or 'ellipsoid'.
    radii_m : tuple[float, float, float]
        Semi-axes [m]. For an icosphere only the first value is used.
    subdivisions : int
        Icosahedron subdivision level (20·4^n facets).
    """

    shape_type: str = "ellipsoid"
    radii_m: tuple[float, float, float] = (500.0, 450.0, 400.0)
    subdivisions: int = 2


@dataclass(frozen=True)
class BinaryConfig:
    """Circular mutual orbit of a synthetic secondary.

    Attributes
    ----------
    separation_m : float
        Distance between the centres of mass [m].
    mutual_period_h : float
        Mutual orbital period [h]; the secondary is tidally locked.
    secondary_shape : SyntheticShapeConfig
        Shape of the secondary.
    """

    separation_m: float
    mutual_period_h: float
    secondary_shape: SyntheticShapeConfig


@dataclass
class SimulationConfig:
    """Top-level simulation configuration loaded from YAML.

    Attributes
    ----------
    constants : FundamentalConstants
        Fundamental physical constants.
    thermo : ThermoParams
        Thermophysical and time-grid parameters.
    raytracer : RaytracerConfig
        Raytracer configuration.
    kinematics : KinematicsConfig
        Sun / spin geometry for the single-body driver.
    synthetic_shape : SyntheticShapeConfig
        Shape of the (primary) body.
    binary : BinaryConfig, optional
        Present when a secondary is configured.
    """

    constants: FundamentalConstants
    thermo: ThermoParams
    raytracer: RaytracerConfig = field(default_factory=RaytracerConfig)
    kinematics: KinematicsConfig = field(default_factory=KinematicsConfig)
    synthetic_shape: SyntheticShapeConfig = field(default_factory=SyntheticShapeConfig)
    binary: BinaryConfig | None = None


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path) -> SimulationConfig:
    """Load and validate a simulation configuration from a YAML file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    SimulationConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If required configuration keys are missing or values are invalid.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f)

    logger.info("Loading configuration from: %s", config_path)
    try:
        config = parse_config(raw)
    except KeyError as exc:
        raise ValueError(f"Missing configuration key: {exc}") from exc

    _validate_config(config)
    logger.info("Configuration loaded successfully.")
    return config


def parse_config(raw: dict[str, Any]) -> SimulationConfig:
    """Build a :class:`SimulationConfig` from an already-parsed mapping."""
    # --- Parse fundamental constants ---
    c = raw.get("constants", {})
    constants = FundamentalConstants(
        stefan_boltzmann=float(c.get("stefan_boltzmann", DEFAULT_CONSTANTS.stefan_boltzmann)),
        solar_constant=float(c.get("solar_constant", DEFAULT_CONSTANTS.solar_constant)),
        astronomical_unit=float(c.get("astronomical_unit", DEFAULT_CONSTANTS.astronomical_unit)),
        speed_of_light=float(c.get("speed_of_light", DEFAULT_CONSTANTS.speed_of_light)),
    )

    # --- Parse thermophysical parameters ---
    th = raw["thermophysics"]
    depth = th["depth"]
    tm = raw["time"]
    thermo = ThermoParams(
        bond_albedo=_parse_parameter(th["bond_albedo"]),
        thermal_albedo=_parse_parameter(th.get("thermal_albedo", 0.0)),
        emissivity=_parse_parameter(th["emissivity"]),
        conductivity=_parse_parameter(th["conductivity"]),
        density=_parse_parameter(th["density"]),
        heat_capacity=_parse_parameter(th["heat_capacity"]),
        rotation_period_s=float(tm["rotation_period_h"]) * 3600.0,
        dt_fraction=float(tm["dt_fraction"]),
        t_begin=float(tm.get("t_begin", 0.0)),
        t_end=float(tm["t_end"]),
        z_max_m=float(depth["z_max_m"]),
        num_depth_nodes=int(depth["num_nodes"]),
        initial_temperature_K=float(th.get("initial_temperature_K", 0.0)),
    )

    # --- Parse raytracer config ---
    rt = raw.get("raytracer", {})
    bvh_cfg = rt.get("bvh", {})
    raytracer = RaytracerConfig(
        max_leaf_triangles=int(bvh_cfg.get("max_leaf_triangles", 4)),
        sah_num_bins=int(bvh_cfg.get("sah_num_bins", 16)),
        epsilon=float(rt.get("epsilon", 1e-10)),
    )

    # --- Parse kinematics ---
    kin = raw.get("kinematics", {})
    kinematics = KinematicsConfig(
        heliocentric_distance_au=float(kin.get("heliocentric_distance_au", 1.0)),
        orbital_period_days=float(kin.get("orbital_period_days", 0.0)),
        obliquity_deg=float(kin.get("obliquity_deg", 0.0)),
    )

    synthetic_shape = _parse_shape(raw.get("synthetic_shape", {}))

    binary = None
    if raw.get("binary"):
        b = raw["binary"]
        binary = BinaryConfig(
            separation_m=float(b["separation_m"]),
            mutual_period_h=float(b["mutual_period_h"]),
            secondary_shape=_parse_shape(b["secondary_shape"]),
        )

    return SimulationConfig(
        constants=constants,
        thermo=thermo,
        raytracer=raytracer,
        kinematics=kinematics,
        synthetic_shape=synthetic_shape,
        binary=binary,
    )


def _parse_parameter(value: Any) -> FacetParameter:
    """A YAML scalar or list → FacetParameter."""
    if isinstance(value, (list, tuple)):
        return as_parameter([float(v) for v in value])
    return as_parameter(float(value))


def _parse_shape(raw: dict[str, Any]) -> SyntheticShapeConfig:
    radii = raw.get("radii_m", SyntheticShapeConfig.radii_m)
    if np.ndim(radii) == 0:
        radii = (float(radii),) * 3
    return SyntheticShapeConfig(
        shape_type=str(raw.get("type", "ellipsoid")),
        radii_m=tuple(float(r) for r in radii),
        subdivisions=int(raw.get("subdivisions", 2)),
    )


def validate_thermo_params(params: ThermoParams) -> None:
    """Validate physical constraints on thermophysical parameters.

    Raises
    ------
    ValueError
        If any value is physically invalid.
    """
    for name in ("bond_albedo", "thermal_albedo"):
        p: FacetParameter = getattr(params, name)
        if not (0.0 <= p.min() and p.max() <= 1.0):
            raise ValueError(f"{name} must be in [0, 1], got [{p.min()}, {p.max()}]")
    if not (0.0 < params.emissivity.min() and params.emissivity.max() <= 1.0):
        raise ValueError(
            f"Emissivity must be in (0, 1], got [{params.emissivity.min()}, "
            f"{params.emissivity.max()}]"
        )
    for name in ("conductivity", "density", "heat_capacity"):
        if getattr(params, name).min() <= 0.0:
            raise ValueError(f"{name} must be positive.")
    if params.rotation_period_s <= 0:
        raise ValueError("Rotation period must be positive.")
    if params.dt_fraction <= 0:
        raise ValueError("Time step must be positive.")
    if params.t_end < params.t_begin:
        raise ValueError(
            f"t_end ({params.t_end}) must not precede t_begin ({params.t_begin})"
        )
    if params.z_max_m <= 0:
        raise ValueError("Column depth z_max must be positive.")
    if params.num_depth_nodes < 3:
        raise ValueError("Need at least 3 depth nodes.")
    if params.initial_temperature_K < 0:
        raise ValueError("Initial temperature cannot be negative.")


def _validate_config(config: SimulationConfig) -> None:
    """Validate physical constraints on configuration values.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to validate.

    Raises
    ------
    ValueError
        If any value is physically invalid.
    """
    validate_thermo_params(config.thermo)
    if config.constants.stefan_boltzmann <= 0:
        raise ValueError("Stefan-Boltzmann constant must be positive.")
    if config.constants.solar_constant <= 0:
        raise ValueError("Solar constant must be positive.")
    if config.constants.speed_of_light <= 0:
        raise ValueError("Speed of light must be positive.")
    if config.raytracer.epsilon <= 0:
        raise ValueError("Raytracer epsilon must be positive.")
    if config.kinematics.heliocentric_distance_au <= 0:
        raise ValueError("Heliocentric distance must be positive.")
    shapes = [config.synthetic_shape]
    if config.binary is not None:
        shapes.append(config.binary.secondary_shape)
    for shape in shapes:
        if shape.shape_type not in ("icosphere", "ellipsoid"):
            raise ValueError(f"Unknown shape type '{shape.shape_type}'")
        if min(shape.radii_m) <= 0 or shape.subdivisions < 0:
            raise ValueError("Shape radii must be positive and subdivisions non-negative.")
    if config.binary is not None and config.binary.separation_m <= 0:
        raise ValueError("Binary separation must be positive.")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION (for reproducibility)")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  Processor: %s", platform.processor())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s (threads=%d)", numba.__version__, numba.get_num_threads())
    logger.info("  Float64 eps: %e", np.finfo(np.float64).eps)
    logger.info("=" * 70)


def hash_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of a NumPy array for reproducibility verification.

    Parameters
    ----------
    arr : np.ndarray
        Array to hash.

    Returns
    -------
    str
        Hex digest of the SHA-256 hash.
    """
    return hashlib.sha256(np.ascontiguousarray(arr).tobytes()).hexdigest()
