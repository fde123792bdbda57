"""Data I/O manager — persist simulation results as NumPy arrays.

Saves and loads the final mesh state, the timestamp history and the run
parameters so results can be analysed without re-running the time loop.

File layout under output_dir/:
    <body>_state.npz       — Final per-facet state (geometry, temps, flux, forces)
    <body>_timestamps.npz  — Timestamp table, one array per column
    <body>_history.npz     — Surface temperature / force / torque history (optional)
    metadata.json          — Run parameters, mesh hashes and run metadata

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import numpy as np

from core_engine.constants import ThermoParams, hash_array
from core_engine.mesh import ShapeMesh
from core_engine.parameters import FacetParameter
from simulation.timestamp import SurfaceHistory, TimestampTable

logger = logging.getLogger(__name__)

_STATE_FIELDS: tuple[str, ...] = (
    "vertices", "faces", "centers", "normals", "areas",
    "temps", "flux_sun", "flux_scat", "flux_rad",
    "facet_forces", "force", "torque",
)


def save_results(
    output_dir: Path | str,
    meshes: dict[str, ShapeMesh],
    timestamps: dict[str, TimestampTable],
    params: ThermoParams,
    metadata: dict,
    histories: dict[str, SurfaceHistory] | None = None,
) -> list[Path]:
    """Save all simulation results to disk as NumPy arrays + JSON.

    Parameters
    ----------
    output_dir : Path or str
        Output directory (created if needed).
    meshes : dict[str, ShapeMesh]
        Final mesh state per body name.
    timestamps : dict[str, TimestampTable]
        Timestamp history per body name.
    params : ThermoParams
        Run parameters.
    metadata : dict
        Simulation metadata.
    histories : dict[str, SurfaceHistory], optional
        Per-step surface history per body name.

    Returns
    -------
    list[Path]
        Paths to all saved files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []

    for name, mesh in meshes.items():
        state_path = output_dir / f"{name}_state.npz"
        np.savez_compressed(state_path, **{k: getattr(mesh, k) for k in _STATE_FIELDS})
        saved.append(state_path)
        logger.debug("Saved %s: %d facets, N_z=%d", state_path.name, mesh.num_face, mesh.num_depth_nodes)

    for name, table in timestamps.items():
        ts_path = output_dir / f"{name}_timestamps.npz"
        np.savez_compressed(ts_path, **table.to_dict())
        saved.append(ts_path)
        logger.debug("Saved %s: %d rows", ts_path.name, len(table))

    for name, history in (histories or {}).items():
        hist_path = output_dir / f"{name}_history.npz"
        np.savez_compressed(hist_path, **history.to_dict())
        saved.append(hist_path)
        logger.debug("Saved %s: %d recorded steps", hist_path.name, len(history))

    meta = {
        "bodies": list(meshes.keys()),
        "mesh_sha256": {name: hash_array(mesh.tri_verts) for name, mesh in meshes.items()},
        "params": params_to_dict(params),
        "run": metadata,
    }
    meta_path = output_dir / "metadata.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(meta, f, indent=2, ensure_ascii=False, default=_json_default)
    saved.append(meta_path)

    logger.info("Saved %d files to %s (bodies: %s)", len(saved), output_dir, ", ".join(meshes))

    return saved


def load_results(
    output_dir: Path | str,
) -> dict[str, dict]:
    """Load previously saved simulation results.

    Parameters
    ----------
    output_dir : Path or str
        Directory containing saved results.

    Returns
    -------
    dict
        Keys: ``'metadata'``, ``'states'`` (body → field → array),
        ``'timestamps'`` (body → column → array) and ``'history'``
        (body → column → array, only for bodies saved with a history).
    """
    output_dir = Path(output_dir)

    if not output_dir.exists():
        raise FileNotFoundError(f"Output directory not found: {output_dir}")

    meta_path = output_dir / "metadata.json"
    if not meta_path.exists():
        raise FileNotFoundError(f"Missing metadata file: {meta_path}")
    with open(meta_path, "r", encoding="utf-8") as f:
        metadata = json.load(f)

    data: dict[str, dict] = {"metadata": metadata, "states": {}, "timestamps": {}, "history": {}}

    for name in metadata.get("bodies", []):
        for key, suffix in (("states", "state"), ("timestamps", "timestamps")):
            path = output_dir / f"{name}_{suffix}.npz"
            if path.exists():
                with np.load(path) as npz:
                    data[key][name] = {k: npz[k] for k in npz.files}
            else:
                logger.warning("Missing file: %s", path)

        hist_path = output_dir / f"{name}_history.npz"
        if hist_path.exists():
            with np.load(hist_path) as npz:
                data["history"][name] = {k: npz[k] for k in npz.files}

    logger.info("Loaded results from %s (%d bodies)", output_dir, len(data["states"]))

    return data


def params_to_dict(params: ThermoParams) -> dict:
    """JSON-ready view of the run parameters (per-facet values as lists)."""
    out: dict = {}
    for name, value in vars(params).items():
        if isinstance(value, FacetParameter):
            out[name] = value.value if value.is_uniform else value.values.tolist()
        else:
            out[name] = value
    return out


def _json_default(obj: object) -> object:
    """``json.dump`` fallback for NumPy scalars, arrays and paths."""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
