"""Per-step record of the observable quantities of a run.

One row is written per step, in step order, and never rewritten. The only
column filled later than its own step's data is ``E_cons_mean``: it stays
NaN until one full rotation of history exists, then each new row gets the
mean of ``E_cons`` over the trailing rotation.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)

Columns
-------
    t                     elapsed time [s]
    u, nu                 orbital (eccentric) and true anomaly [rad]
    phi                   spin phase [rad]
    f_x, f_y, f_z         net force, orbital-plane frame [N]
    tau_x, tau_y, tau_z   net torque, orbital-plane frame [N·m]
    E_in, E_out           absorbed / emitted power [W]
    E_cons                E_out / E_in (NaN when undefined)
    E_cons_mean           trailing-rotation mean of E_cons

:class:`SurfaceHistory` keeps the per-facet surface temperature and the
body-frame force and torque at a chosen range of steps.
"""

from __future__ import annotations

import logging
from typing import Iterator

import numpy as np

from core_engine.energy import EnergyBalance, rotation_mean

logger = logging.getLogger(__name__)

COLUMNS: tuple[str, ...] = (
    "t", "u", "nu", "phi",
    "f_x", "f_y", "f_z",
    "tau_x", "tau_y", "tau_z",
    "E_in", "E_out", "E_cons", "E_cons_mean",
)


class TimestampTable:
    """Preallocated, append-only table of per-step results.

    Parameters
    ----------
    num_steps : int
        Number of rows.
    rotation_period_s : float
        Window length of the ``E_cons_mean`` column [s].
    """

    def __init__(self, num_steps: int, rotation_period_s: float) -> None:
        if num_steps < 0:
            raise ValueError(f"num_steps must be non-negative, got {num_steps}")
        self.rotation_period_s = rotation_period_s
        self._data = {name: np.full(num_steps, np.nan, dtype=np.float64) for name in COLUMNS}
        self._num_rows = 0

    def __len__(self) -> int:
        return self._num_rows

    @property
    def capacity(self) -> int:
        return self._data["t"].shape[0]

    def __getitem__(self, name: str) -> np.ndarray:
        """Written part of column ``name``."""
        return self._data[name][: self._num_rows]

    def __iter__(self) -> Iterator[str]:
        return iter(COLUMNS)

    def record(
        self,
        i: int,
        t: float,
        u: float,
        nu: float,
        phi: float,
        force: np.ndarray,
        torque: np.ndarray,
        energy: EnergyBalance,
    ) -> None:
        """Write row ``i``; rows must be written in order, each exactly once."""
        if i != self._num_rows:
            raise ValueError(
                f"Timestamp rows are append-only: expected row {self._num_rows}, got {i}"
            )
        if i >= self.capacity:
            raise IndexError(f"Timestamp table is full ({self.capacity} rows)")

        d = self._data
        d["t"][i] = t
        d["u"][i] = u
        d["nu"][i] = nu
        d["phi"][i] = phi
        d["f_x"][i], d["f_y"][i], d["f_z"][i] = force
        d["tau_x"][i], d["tau_y"][i], d["tau_z"][i] = torque
        d["E_in"][i] = energy.e_in
        d["E_out"][i] = energy.e_out
        d["E_cons"][i] = energy.e_cons
        self._num_rows += 1

        d["E_cons_mean"][i] = rotation_mean(
            d["t"][: i + 1], d["E_cons"][: i + 1], self.rotation_period_s
        )

    @property
    def latest_mean_conservation(self) -> float:
        """E_cons_mean of the last written row (NaN if none)."""
        if self._num_rows == 0:
            return float("nan")
        return float(self._data["E_cons_mean"][self._num_rows - 1])

    def to_dict(self) -> dict[str, np.ndarray]:
        """Copy of every column, truncated to the written rows."""
        return {name: self[name].copy() for name in COLUMNS}

    @classmethod
    def from_dict(cls, data: dict[str, np.ndarray], rotation_period_s: float) -> TimestampTable:
        """Rebuild a table from :meth:`to_dict` output."""
        num_rows = len(data["t"])
        table = cls(num_rows, rotation_period_s)
        for name in COLUMNS:
            table._data[name][:] = np.asarray(data[name], dtype=np.float64)
        table._num_rows = num_rows
        return table


class SurfaceHistory:
    """Surface temperature, force and torque of one body at selected steps.

    Parameters
    ----------
    num_faces : int
        Facets of the recorded mesh.
    steps : range
        Step indices to record, in increasing order.
    """

    def __init__(self, num_faces: int, steps: range) -> None:
        if steps.step <= 0 or steps.start < 0:
            raise ValueError(f"History steps must be an increasing, non-negative range, got {steps}")
        self.steps = steps
        n = len(steps)
        self.times = np.full(n, np.nan, dtype=np.float64)
        self.surface_temps = np.full((num_faces, n), np.nan, dtype=np.float64)
        self.forces = np.full((n, 3), np.nan, dtype=np.float64)
        self.torques = np.full((n, 3), np.nan, dtype=np.float64)
        self._num_rows = 0

    def __len__(self) -> int:
        return self._num_rows

    def record(self, i: int, t: float, surface_temps: np.ndarray, force: np.ndarray, torque: np.ndarray) -> bool:
        """Store step ``i`` if it is in :attr:`steps`. Returns whether it was."""
        if i not in self.steps:
            return False
        k = self.steps.index(i)
        self.times[k] = t
        self.surface_temps[:, k] = surface_temps
        self.forces[k] = force
        self.torques[k] = torque
        self._num_rows = k + 1
        return True

    def to_dict(self) -> dict[str, np.ndarray]:
        """Recorded columns, truncated to the steps reached so far."""
        n = self._num_rows
        return {
            "steps": np.arange(self.steps.start, self.steps.stop, self.steps.step)[:n],
            "t": self.times[:n].copy(),
            "surface_temps": self.surface_temps[:, :n].copy(),
            "forces": self.forces[:n].copy(),
            "torques": self.torques[:n].copy(),
        }
