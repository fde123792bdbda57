"""Simulation Runner — time-stepping loop of the thermophysical model.

Orchestrates one run:
1. Initialise temperatures, BVH and conduction coefficients
2. Time loop: kinematics → illumination → (eclipse) → scatter/reradiation
   → force/torque + energy → record → temperatures
3. Return the timestamp tables and optionally persist them

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Notes
-----
Run states::

    INITIALIZING → STEPPING → FINISHED
                            ↘ ABORTED   (user abort between steps, or a
                                         non-finite value, which re-raises)

Within a step the phases run in a fixed order, each one finishing before
the next starts. Flux reads the temperatures settled by the previous step;
temperatures are advanced last. There are no retries: a non-finite value
raises :class:`~core_engine.errors.NumericalDivergenceError`.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

import numpy as np

from core_engine.constants import (
    DEFAULT_CONSTANTS,
    FundamentalConstants,
    RaytracerConfig,
    ThermoParams,
)
from core_engine.eclipse import resolve_eclipse
from core_engine.energy import EnergyBalance, energy_io
from core_engine.errors import NumericalDivergenceError
from core_engine.flux import illuminate, sun_flux_from_position, update_indirect_flux
from core_engine.force import accumulate_force_torque
from core_engine.mesh import ShapeMesh
from core_engine.raytracer import build_bvh
from simulation.kinematics import Kinematics, TabulatedBinaryEphemeris
from simulation.timestamp import SurfaceHistory, TimestampTable
from thermal_solver.conduction import ExplicitConductionSolver, check_finite

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    INITIALIZING = "initializing"
    STEPPING = "stepping"
    FINISHED = "finished"
    ABORTED = "aborted"


class StepPhase(enum.Enum):
    UPDATE_ILLUMINATION = "update_illumination"
    UPDATE_ECLIPSE = "update_eclipse"
    UPDATE_SCATTER_RADIATION = "update_scatter_radiation"
    UPDATE_FORCES_ENERGY = "update_forces_energy"
    UPDATE_TEMPERATURES = "update_temperatures"


PhaseObserver = Callable[[int, StepPhase], None]


# ---------------------------------------------------------------------------
# Result Container
# ---------------------------------------------------------------------------


@dataclass
class SimulationResults:
    """Container for simulation output data.

    Attributes
    ----------
    state : RunState
        FINISHED, or ABORTED if the run was stopped early.
    timestamps : dict[str, TimestampTable]
        Per-body timestamp table, keyed by body name.
    final_surface_temps : dict[str, np.ndarray]
        Surface temperature of every facet after the last step [K].
    surface_history : dict[str, SurfaceHistory]
        Per-step surface temperatures, force and torque (body frame) over
        the requested steps; empty unless the runner was given
        ``history_steps``.
    metadata : dict
        Run metadata (timing, step counts).
    saved_files : list[Path]
        Files written by the persistence layer, if any.
    """

    state: RunState
    timestamps: dict[str, TimestampTable] = field(default_factory=dict)
    final_surface_temps: dict[str, np.ndarray] = field(default_factory=dict)
    surface_history: dict[str, SurfaceHistory] = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    saved_files: list[Path] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Runners
# ---------------------------------------------------------------------------


class _BaseRunner:
    """State machine, abort flag, phase bookkeeping and run finalisation."""

    def __init__(
        self,
        meshes: Sequence[ShapeMesh],
        params: ThermoParams,
        constants: FundamentalConstants,
        raytracer: RaytracerConfig,
        observer: PhaseObserver | None,
        history_steps: range | None,
    ) -> None:
        self.meshes = tuple(meshes)
        self.history_steps = history_steps
        self.params = params
        self.constants = constants
        self.raytracer = raytracer
        self.observer = observer
        self.state = RunState.INITIALIZING
        self.phase: StepPhase | None = None
        self._abort_requested = False
        self.histories: dict[str, SurfaceHistory] = {}
        self.undefined_steps: dict[str, int] = {}

        names = [m.name for m in self.meshes]
        if len(set(names)) != len(names):
            names = [f"{n}_{k}" for k, n in enumerate(names)]
        self.body_names = names

    def abort(self) -> None:
        """Request a stop; honoured before the next step begins."""
        logger.info("Abort requested")
        self._abort_requested = True

    def _enter_phase(self, step: int, phase: StepPhase) -> None:
        self.phase = phase
        if self.observer is not None:
            self.observer(step, phase)

    def _initialize(self, num_steps: int) -> tuple[list[ExplicitConductionSolver], dict[str, TimestampTable]]:
        self.state = RunState.INITIALIZING
        self._abort_requested = False
        if self.history_steps is not None and self.history_steps.stop > num_steps:
            raise ValueError(
                f"History steps {self.history_steps} run past the last step ({num_steps - 1})"
            )
        solvers = []
        tables = {}
        self.histories = {}
        self.undefined_steps = {}
        for name, mesh in zip(self.body_names, self.meshes):
            mesh.init_temps(self.params.num_depth_nodes, self.params.initial_temperature_K)
            mesh.reset_flux()
            mesh.set_bvh(
                build_bvh(
                    mesh,
                    max_leaf_triangles=self.raytracer.max_leaf_triangles,
                    sah_num_bins=self.raytracer.sah_num_bins,
                )
            )
            solvers.append(ExplicitConductionSolver(mesh.num_face, self.params, self.constants))
            tables[name] = TimestampTable(num_steps, self.params.rotation_period_s)
            if self.history_steps is not None:
                self.histories[name] = SurfaceHistory(mesh.num_face, self.history_steps)
        return solvers, tables

    def _forces_and_energy(self, name: str, mesh: ShapeMesh, step: int, t: float) -> EnergyBalance:
        accumulate_force_torque(mesh, self.params, self.constants)
        if name in self.histories:
            self.histories[name].record(step, t, mesh.temps[:, 0], mesh.force, mesh.torque)
        energy = energy_io(mesh, self.params, self.constants.stefan_boltzmann, step=step)
        if not energy.is_defined:
            self.undefined_steps[name] = self.undefined_steps.get(name, 0) + 1
        return energy

    def _advance_temperatures(self, solvers: list[ExplicitConductionSolver], step: int) -> None:
        for solver, mesh in zip(solvers, self.meshes):
            solver.step(mesh)
            try:
                check_finite(mesh, step)
            except NumericalDivergenceError:
                self.state = RunState.ABORTED
                logger.error("Run aborted: non-finite values on '%s' at step %d", mesh.name, step)
                raise

    def _log_progress(self, step: int, num_steps: int, t: float, tables: dict[str, TimestampTable]) -> None:
        if step % max(1, num_steps // 10) != 0 and step != num_steps - 1:
            return
        for name, mesh in zip(self.body_names, self.meshes):
            t_surf = mesh.temps[:, 0]
            logger.info(
                "  Step %d/%d (t=%.2f P) [%s]: T_min=%.1f K, T_max=%.1f K, "
                "T_mean=%.1f K, E_cons=%.4f",
                step, num_steps, t / self.params.rotation_period_s, name,
                t_surf.min(), t_surf.max(), t_surf.mean(), tables[name]["E_cons"][-1],
            )

    def _finish(
        self,
        tables: dict[str, TimestampTable],
        steps_done: int,
        wall_start: float,
        output_dir: Path | str | None,
        extra_metadata: dict,
    ) -> SimulationResults:
        if self.state != RunState.ABORTED:
            self.state = RunState.FINISHED
        self.phase = None
        for name, count in self.undefined_steps.items():
            logger.warning(
                "E_cons undefined (no absorbed energy) on %d of %d steps for '%s'",
                count, steps_done, name,
            )

        wall_elapsed = time.perf_counter() - wall_start
        results = SimulationResults(
            state=self.state,
            timestamps=tables,
            final_surface_temps={
                name: mesh.surface_temperature()
                for name, mesh in zip(self.body_names, self.meshes)
            },
            surface_history=dict(self.histories),
            metadata={
                "state": self.state.value,
                "steps_completed": steps_done,
                "wall_time_s": wall_elapsed,
                "steps_per_second": steps_done / wall_elapsed if wall_elapsed > 0 else 0.0,
                "undefined_conservation_steps": dict(self.undefined_steps),
                "history_steps": (
                    None if self.history_steps is None
                    else [self.history_steps.start, self.history_steps.stop, self.history_steps.step]
                ),
                **extra_metadata,
            },
        )
        logger.info(
            "Simulation %s: %d steps, %.1f seconds wall time",
            self.state.value, steps_done, wall_elapsed,
        )

        if output_dir is not None:
            from simulation.io_manager import save_results

            results.saved_files = save_results(
                output_dir=output_dir,
                meshes=dict(zip(self.body_names, self.meshes)),
                timestamps=tables,
                params=self.params,
                metadata=results.metadata,
                histories=results.surface_history,
            )
        return results


class SimulationRunner(_BaseRunner):
    """Thermophysical run of a single body.

    Parameters
    ----------
    mesh : ShapeMesh
        Shape model, mutated in place.
    kinematics : Kinematics
        Provides ``epoch(t) -> SingleBodyEpoch``.
    params : ThermoParams
        Thermophysical and time-grid parameters.
    constants : FundamentalConstants
        Physical constants.
    raytracer : RaytracerConfig
        BVH and intersection settings.
    observer : callable, optional
        Called as ``observer(step, phase)`` on entering each phase.
    history_steps : range, optional
        Steps at which surface temperatures, force and torque are kept in
        ``SimulationResults.surface_history``.
    """

    def __init__(
        self,
        mesh: ShapeMesh,
        kinematics: Kinematics,
        params: ThermoParams,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
        raytracer: RaytracerConfig = RaytracerConfig(),
        observer: PhaseObserver | None = None,
        history_steps: range | None = None,
    ) -> None:
        super().__init__((mesh,), params, constants, raytracer, observer, history_steps)
        self.mesh = mesh
        self.kinematics = kinematics
        logger.info(
            "SimulationRunner initialized: %d facets, P=%.2f h, dt=%.4f P, t=[%.2f, %.2f] P",
            mesh.num_face, params.rotation_period_s / 3600.0,
            params.dt_fraction, params.t_begin, params.t_end,
        )

    def run(self, output_dir: Path | str | None = None) -> SimulationResults:
        """Execute the time loop.

        Parameters
        ----------
        output_dir : Path or str, optional
            If given, results are saved there when the loop ends.

        Returns
        -------
        SimulationResults
            Timestamp table of the body and final state.

        Raises
        ------
        NumericalDivergenceError
            A temperature or flux became non-finite.
        """
        times = self.params.elapsed_times()
        num_steps = times.shape[0]
        wall_start = time.perf_counter()

        logger.info("Initializing: %d steps", num_steps)
        solvers, tables = self._initialize(num_steps)
        table = tables[self.body_names[0]]
        mesh = self.mesh
        eps = self.raytracer.epsilon

        self.state = RunState.STEPPING
        steps_done = 0
        for i, t in enumerate(times):
            if self._abort_requested:
                self.state = RunState.ABORTED
                break

            ep = self.kinematics.epoch(t)

            self._enter_phase(i, StepPhase.UPDATE_ILLUMINATION)
            illuminate(mesh, ep.sun_flux, ep.sun_direction, eps)

            self._enter_phase(i, StepPhase.UPDATE_SCATTER_RADIATION)
            update_indirect_flux(mesh, self.params, self.constants)

            self._enter_phase(i, StepPhase.UPDATE_FORCES_ENERGY)
            energy = self._forces_and_energy(self.body_names[0], mesh, i, t)
            table.record(
                i, t, ep.anomaly, ep.true_anomaly, ep.spin_phase,
                ep.body_to_orbit @ mesh.force,
                ep.body_to_orbit @ mesh.torque,
                energy,
            )

            self._enter_phase(i, StepPhase.UPDATE_TEMPERATURES)
            self._advance_temperatures(solvers, i)

            steps_done += 1
            self._log_progress(i, num_steps, t, tables)

        return self._finish(tables, steps_done, wall_start, output_dir, {"num_steps": num_steps})


class BinarySimulationRunner(_BaseRunner):
    """Thermophysical run of a binary pair with mutual eclipses.

    Mutual heating (thermal radiation exchanged between the bodies) is not
    modelled.

    Parameters
    ----------
    meshes : tuple of ShapeMesh
        (primary, secondary).
    ephemeris : TabulatedBinaryEphemeris
        One epoch per step.
    params : ThermoParams
        Thermophysical parameters, shared by both bodies.
    constants : FundamentalConstants
        Physical constants.
    raytracer : RaytracerConfig
        BVH and intersection settings.
    observer : callable, optional
        Called as ``observer(step, phase)`` on entering each phase.
    history_steps : range, optional
        Steps at which surface temperatures, force and torque are kept in
        ``SimulationResults.surface_history``.
    """

    def __init__(
        self,
        meshes: tuple[ShapeMesh, ShapeMesh],
        ephemeris: TabulatedBinaryEphemeris,
        params: ThermoParams,
        constants: FundamentalConstants = DEFAULT_CONSTANTS,
        raytracer: RaytracerConfig = RaytracerConfig(),
        observer: PhaseObserver | None = None,
        history_steps: range | None = None,
    ) -> None:
        if len(meshes) != 2:
            raise ValueError(f"A binary run needs exactly two meshes, got {len(meshes)}")
        super().__init__(meshes, params, constants, raytracer, observer, history_steps)
        self.ephemeris = ephemeris

        if len(ephemeris) > 1:
            steps = np.diff(ephemeris.times)
            if not np.allclose(steps, params.dt_s, rtol=1e-6):
                logger.warning(
                    "Ephemeris spacing (%.1f–%.1f s) differs from the conduction "
                    "time step %.1f s",
                    steps.min(), steps.max(), params.dt_s,
                )
        logger.info(
            "BinarySimulationRunner initialized: %d + %d facets, %d epochs",
            meshes[0].num_face, meshes[1].num_face, len(ephemeris),
        )

    def run(self, output_dir: Path | str | None = None) -> SimulationResults:
        """Execute the time loop over every ephemeris epoch.

        Raises
        ------
        NumericalDivergenceError
            A temperature or flux became non-finite.
        """
        num_steps = len(self.ephemeris)
        wall_start = time.perf_counter()

        logger.info("Initializing: %d steps", num_steps)
        solvers, tables = self._initialize(num_steps)
        mesh_a, mesh_b = self.meshes
        eps = self.raytracer.epsilon
        eclipsed_steps = 0

        self.state = RunState.STEPPING
        steps_done = 0
        for i in range(num_steps):
            if self._abort_requested:
                self.state = RunState.ABORTED
                break

            ep = self.ephemeris.epoch(i)

            self._enter_phase(i, StepPhase.UPDATE_ILLUMINATION)
            for mesh, r_sun in ((mesh_a, ep.sun_a), (mesh_b, ep.sun_b)):
                flux, direction = sun_flux_from_position(
                    r_sun, self.constants.solar_constant, self.constants.astronomical_unit
                )
                illuminate(mesh, flux, direction, eps)

            self._enter_phase(i, StepPhase.UPDATE_ECLIPSE)
            n_dark_a, n_dark_b = resolve_eclipse(
                mesh_a, mesh_b, ep.sun_a, ep.sec_from_pri, ep.rotation_sec_to_pri,
                epsilon=eps,
            )
            if n_dark_a or n_dark_b:
                eclipsed_steps += 1

            self._enter_phase(i, StepPhase.UPDATE_SCATTER_RADIATION)
            for mesh in self.meshes:
                update_indirect_flux(mesh, self.params, self.constants)

            self._enter_phase(i, StepPhase.UPDATE_FORCES_ENERGY)
            for name, mesh in zip(self.body_names, self.meshes):
                energy = self._forces_and_energy(name, mesh, i, ep.time)
                # Body-fixed frame; no orbital elements for a tabulated pair.
                tables[name].record(
                    i, ep.time, np.nan, np.nan, np.nan, mesh.force, mesh.torque, energy
                )

            self._enter_phase(i, StepPhase.UPDATE_TEMPERATURES)
            self._advance_temperatures(solvers, i)

            steps_done += 1
            self._log_progress(i, num_steps, ep.time, tables)

        return self._finish(
            tables, steps_done, wall_start, output_dir,
            {"num_steps": num_steps, "eclipsed_steps": eclipsed_steps},
        )
