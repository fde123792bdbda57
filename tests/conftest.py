"""Pytest configuration and shared fixtures for AsteroidThermalModel tests.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core_engine.constants import ThermoParams  # noqa: E402
from core_engine.mesh import ShapeMesh  # noqa: E402
from data_ingestion.synthetic_shape import icosphere  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


@pytest.fixture
def default_config_path() -> Path:
    return PROJECT_ROOT / "config" / "default_config.yaml"


@pytest.fixture
def flat_facet() -> ShapeMesh:
    """One 1 m² triangle in the z=0 plane, normal +z, no visibility."""
    side = np.sqrt(2.0)
    vertices = np.array([[0.0, 0.0, 0.0], [side, 0.0, 0.0], [0.0, side, 0.0]])
    return ShapeMesh.from_arrays(vertices, [[0, 1, 2]], name="facet")


@pytest.fixture
def stacked_facets() -> ShapeMesh:
    """Facet 0 at z=1 directly above the smaller facet 1 at z=0; both face +z."""
    vertices = np.array(
        [
            [-2.0, -2.0, 1.0], [2.0, -2.0, 1.0], [0.0, 2.0, 1.0],
            [-0.5, -0.5, 0.0], [0.5, -0.5, 0.0], [0.0, 0.5, 0.0],
        ]
    )
    return ShapeMesh.from_arrays(vertices, [[0, 1, 2], [3, 4, 5]], name="stack")


@pytest.fixture
def sphere_mesh() -> ShapeMesh:
    """Icosphere, radius 100 m, 320 facets."""
    vertices, faces = icosphere(100.0, 2)
    return ShapeMesh.from_arrays(vertices, faces, name="sphere")


@pytest.fixture
def fast_params() -> ThermoParams:
    """Short, stable run: P = 1 h, 20 steps per rotation, one skin depth (0.077 m) column."""
    return ThermoParams.create(
        rotation_period_s=3600.0,
        dt_fraction=0.05,
        t_end=1.0,
        num_depth_nodes=11,
        z_max_m=0.077,
    )
