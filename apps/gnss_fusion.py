"""
GNSS / IMU / Odometry Factor Graph Fusion

Runs the incremental factor-graph estimator over a sensor file and writes the
estimated states and per-timestep solve statistics.

Modalities are enabled either in a JSON configuration file (--config) or on
the command line; command-line options override the file.

Usage:
    # GNSS only, Cauchy error model
    python -m apps.gnss_fusion --input data/run.txt --output results/run --gnss cauchy

    # GNSS + odometry from a configuration file, with a trajectory plot
    python -m apps.gnss_fusion --config configs/gnss_odom.json --plot figs/run.svg

    # IMU down-sampled to 50 Hz before estimation
    python -m apps.gnss_fusion --input data/run.txt --output results/run --gnss huber --imu --imu-rate 50

Output file lines:
    <state> <t> <values...>     position, orientation, velocity, imu_bias
    summary <t> <timings...>    one line per timestep
"""

import argparse
import dataclasses
import sys
from pathlib import Path
from typing import List, Optional

import matplotlib.pyplot as plt
import numpy as np

from rsfusion.coords import ecef_to_enu, ecef_to_llh
from rsfusion.fusion.config import GNSS_TYPES, FactorGraphConfig, load_config
from rsfusion.fusion.estimation import create_graph_and_solve
from rsfusion.fusion.resampling import sample_measurements_down
from rsfusion.fusion.results import StateDataSet
from rsfusion.fusion.states import EXPORTED_STATES, POSITION_STATE
from rsfusion.io import read_sensor_file, write_states, write_summaries
from rsfusion.sensors import SensorDataSet, SensorType
from rsfusion.sensors.odometry import ODOMETRY_TYPES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Incremental factor graph fusion of GNSS, IMU and odometry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Usage:")[1],
    )

    files = parser.add_argument_group("Files")
    files.add_argument("--config", type=str, default=None,
                       help="JSON configuration file")
    files.add_argument("--input", type=str, default=None,
                       help="Sensor data file (overrides input_file)")
    files.add_argument("--output", type=str, default=None,
                       help="Result file (overrides output_file)")

    sensors = parser.add_argument_group("Modalities")
    sensors.add_argument("--gnss", type=str, choices=GNSS_TYPES, default=None,
                         help="Use GNSS fixes with this error model")
    sensors.add_argument("--imu", action="store_true",
                         help="Use the IMU")
    sensors.add_argument("--odom", type=str, choices=ODOMETRY_TYPES, default=None,
                         help="Use odometry of this type")
    sensors.add_argument("--prior", type=float, nargs=6, default=None,
                         metavar=("X", "Y", "Z", "SX", "SY", "SZ"),
                         help="Position prior (point and standard deviations)")

    estimation = parser.add_argument_group("Estimation")
    estimation.add_argument("--window", type=float, default=None,
                            help="Free window length in seconds")
    estimation.add_argument("--imu-rate", type=float, default=None,
                            help="Down-sample the IMU to this rate in Hz")

    parser.add_argument("--plot", type=str, default=None,
                        help="Save a trajectory / solve-time figure to this path")
    parser.add_argument("--quiet", action="store_true",
                        help="No narration and no progress bar")
    return parser


def build_config(args: argparse.Namespace) -> FactorGraphConfig:
    """Configuration from --config, overridden by the command-line options."""
    config = load_config(args.config) if args.config else FactorGraphConfig()

    if args.input is not None:
        config = dataclasses.replace(config, input_file=args.input)
    if args.output is not None:
        config = dataclasses.replace(config, output_file=args.output)
    if args.gnss is not None:
        config = dataclasses.replace(config, gnss=dataclasses.replace(config.gnss, active=True, type=args.gnss))
    if args.imu:
        config = dataclasses.replace(config, imu=dataclasses.replace(config.imu, active=True))
    if args.odom is not None:
        config = dataclasses.replace(config, odom=dataclasses.replace(config.odom, active=True, type=args.odom))
    if args.prior is not None:
        config = dataclasses.replace(
            config, prior=dataclasses.replace(config.prior, active=True, parameter=tuple(args.prior))
        )
    if args.window is not None:
        config = dataclasses.replace(config, window_length=args.window)
    return config


def downsample_imu(measurements: SensorDataSet, rate: float) -> SensorDataSet:
    """Replace the IMU stream by its averages over periods of 1/rate."""
    if rate <= 0:
        raise ValueError(f"IMU rate must be positive, got {rate}")

    resampled = SensorDataSet()
    for sensor_type in measurements.types():
        stream = measurements.get_stream(sensor_type)
        if sensor_type is SensorType.IMU:
            stream = sample_measurements_down(stream, 1.0 / rate).measurements
        resampled.add_many(stream)
    return resampled


def export_result(result: StateDataSet, path: str) -> int:
    """Write all exported states and the summaries to one file."""
    written = 0
    append = False
    for name in EXPORTED_STATES:
        if result.has(name):
            written += write_states(path, name, result, append=append)
            append = True
    written += write_summaries(path, result, append=append)
    return written


def plot_results(result: StateDataSet, is_global: bool, save_path: Optional[str] = None) -> None:
    """
    Plot the estimated trajectory and the solve time per timestep.

    Global (ECEF) positions are shown in a tangent plane at the first one.
    """
    positions = result.means(POSITION_STATE)
    if is_global and len(positions) > 0:
        lat, lon, h = ecef_to_llh(*positions[0])
        positions = np.array([ecef_to_enu(p, lat, lon, h) for p in positions])

    fig, axes = plt.subplots(1, 2, figsize=(14, 6))

    ax = axes[0]
    if len(positions) > 0:
        ax.plot(positions[:, 0], positions[:, 1], "b.-", label="Estimate", markersize=3)
        ax.scatter(positions[0, 0], positions[0, 1], s=80, c="g", marker="o", label="Start", zorder=5)
    ax.set_xlabel("East [m]" if is_global else "X [m]")
    ax.set_ylabel("North [m]" if is_global else "Y [m]")
    ax.set_title("Estimated Trajectory")
    ax.legend()
    ax.grid(True)
    ax.axis("equal")

    ax = axes[1]
    if result.summaries:
        t = np.array([s.timestamp for s in result.summaries])
        solve = np.array([s.solve_duration for s in result.summaries]) * 1e3
        forced = np.array([s.forced for s in result.summaries])
        ax.plot(t, solve, "b-", label="Solve time")
        if np.any(forced):
            ax.plot(t[forced], solve[forced], "rx", label="Thorough solve")
    ax.set_xlabel("Time [s]")
    ax.set_ylabel("Solve Time [ms]")
    ax.set_title("Solve Time per Timestep")
    ax.legend()
    ax.grid(True)

    plt.tight_layout()

    if save_path:
        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Figure saved to: {save_path}")
    plt.close(fig)


def run(argv: Optional[List[str]] = None) -> int:
    """Run the application; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    verbose = not args.quiet

    try:
        config = build_config(args)
    except (OSError, ValueError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 2
    if not config.input_file:
        print("Error: no input file (use --input or input_file)", file=sys.stderr)
        return 2

    try:
        measurements = read_sensor_file(config.input_file)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.imu_rate is not None:
        measurements = downsample_imu(measurements, args.imu_rate)

    result = StateDataSet()
    code = create_graph_and_solve(config, result, measurements, verbose=verbose, show_progress=verbose)
    if code != 0:
        return code

    if config.output_file:
        written = export_result(result, config.output_file)
        if verbose:
            print(f"\nWrote {written} lines to {config.output_file}")

    if verbose:
        print("\n" + "=" * 70)
        print("Result")
        print("=" * 70)
        print(f"  Timesteps   : {len(result.summaries)}")
        print(f"  Positions   : {result.count(POSITION_STATE)}")
        if result.summaries:
            total = sum(s.total_duration for s in result.summaries)
            forced = sum(1 for s in result.summaries if s.forced)
            print(f"  Thorough    : {forced}")
            print(f"  Total time  : {total:.3f} s")

    if args.plot:
        is_global = config.gnss.active and measurements.has(SensorType.GNSS_POSITION)
        plot_results(result, is_global=is_global, save_path=args.plot)

    return 0


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
