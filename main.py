"""AsteroidThermalModel — CLI entry point.

Runs the asteroid thermophysical model on a synthetic shape, for a single
body or a binary pair with mutual eclipses.

Usage
-----
    python main.py --duration-rotations 20
    python main.py --config config/default_config.yaml --binary
    python main.py --no-save --log-level DEBUG

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="asteroid-tpm",
        description="AsteroidThermalModel — asteroid thermophysical model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --duration-rotations 20\n"
            "  python main.py --binary --duration-rotations 5\n"
            "  python main.py --history-every 10 --duration-rotations 5\n"
            "  python main.py --no-save --log-level DEBUG\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/default_config.yaml",
        help="Path to simulation config YAML (default: config/default_config.yaml)",
    )
    parser.add_argument(
        "--duration-rotations",
        type=float,
        default=None,
        help="Run length in rotation periods from t_begin (default: from config)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default="output",
        help="Output directory for saved data (default: output/)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--binary",
        action="store_true",
        default=False,
        help="Run the binary configuration (requires a 'binary' config section)",
    )
    parser.add_argument(
        "--history-every",
        type=int,
        default=0,
        metavar="N",
        help="Keep surface temperatures, force and torque every N steps (default: off)",
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        default=False,
        help="Do not write results to disk",
    )

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main simulation entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    logger = logging.getLogger("asteroid_tpm")
    logger.info("=" * 60)
    logger.info("  AsteroidThermalModel — Thermophysical Simulation")
    logger.info("=" * 60)

    from core_engine.constants import load_config, log_platform_info
    from core_engine.errors import NumericalDivergenceError
    from data_ingestion.synthetic_shape import generate_shape
    from simulation.kinematics import CircularBinaryKinematics, UniformRotationKinematics
    from simulation.runner import BinarySimulationRunner, SimulationRunner

    log_platform_info()

    config_path = Path(args.config)
    logger.info("Loading config: %s", config_path)
    config = load_config(config_path)

    params = config.thermo
    if args.duration_rotations is not None:
        if args.duration_rotations < 0:
            logger.error("--duration-rotations must be non-negative")
            return 2
        params = dataclasses.replace(params, t_end=params.t_begin + args.duration_rotations)

    output_dir = None if args.no_save else Path(args.output)
    if args.history_every < 0:
        logger.error("--history-every must be non-negative")
        return 2
    history_steps = range(0, params.num_steps, args.history_every) if args.history_every else None

    if args.binary:
        if config.binary is None:
            logger.error("--binary given but the config has no 'binary' section")
            return 2
        primary = generate_shape(config.synthetic_shape, name="primary")
        secondary = generate_shape(config.binary.secondary_shape, name="secondary")
        ephemeris = CircularBinaryKinematics(
            separation_m=config.binary.separation_m,
            mutual_period_s=config.binary.mutual_period_h * 3600.0,
            primary_period_s=params.rotation_period_s,
            heliocentric_distance_au=config.kinematics.heliocentric_distance_au,
            constants=config.constants,
        ).tabulate(params.elapsed_times())
        runner = BinarySimulationRunner(
            (primary, secondary), ephemeris, params, config.constants, config.raytracer,
            history_steps=history_steps,
        )
    else:
        mesh = generate_shape(config.synthetic_shape, name="body")
        kinematics = UniformRotationKinematics.from_config(
            config.kinematics, params.rotation_period_s, config.constants
        )
        runner = SimulationRunner(
            mesh, kinematics, params, config.constants, config.raytracer,
            history_steps=history_steps,
        )

    try:
        results = runner.run(output_dir=output_dir)
    except NumericalDivergenceError as exc:
        logger.error("%s", exc)
        return 1

    # Summary
    logger.info("=" * 60)
    logger.info("  SIMULATION %s", results.state.value.upper())
    logger.info("=" * 60)
    logger.info("  Steps: %d", results.metadata["steps_completed"])
    logger.info("  Wall time: %.1f s", results.metadata.get("wall_time_s", 0))
    for name, table in results.timestamps.items():
        t_surf = results.final_surface_temps[name]
        logger.info(
            "  [%s] Final T: min=%.1f K, max=%.1f K, mean=%.1f K; E_cons (rotation mean)=%.4f",
            name, t_surf.min(), t_surf.max(), t_surf.mean(), table.latest_mean_conservation,
        )
    if results.saved_files:
        logger.info("  Output files (%d):", len(results.saved_files))
        for p in results.saved_files:
            logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
