"""Generate a synthetic GNSS / IMU / odometry sensor file for the fusion app.

Creates a vehicle scenario with:
    - Planar circular trajectory in a local ENU frame at a fixed LLH origin
    - GNSS position fixes in ECEF (1 Hz) with optional multipath outliers
    - IMU specific force and angular rate (100 Hz) with constant biases
    - Odometry body velocity and yaw rate (10 Hz)
    - Ground truth: ENU position and heading

Saves to: data/sim/gnss_fusion/<preset>/
    sensors.txt   sensor file (gnss, imu, odom3 lines)
    truth.txt     t east north up yaw
    config.json   matching FactorGraphConfig
"""

import argparse
import sys
from pathlib import Path
from typing import List, Tuple

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from rsfusion.coords import enu_to_ecef
from rsfusion.fusion.config import FactorGraphConfig, GnssConfig, ImuConfig, OdomConfig, save_config
from rsfusion.io import write_sensor_file
from rsfusion.sensors import SensorMeasurement, SensorType
from rsfusion.sensors.imu_models import GRAVITY


# ============================================================================
# PRESET CONFIGURATIONS
# ============================================================================

PRESETS = {
    'baseline': {
        'description': 'Nominal GNSS, IMU and odometry',
        'gnss_std': 1.0,
        'outlier_rate': 0.0,
        'outlier_bias': 0.0,
        'accel_noise_std': 0.05,
        'gyro_noise_std': 0.005,
        'odom_speed_std': 0.05,
        'odom_rate_std': 0.01,
    },
    'multipath': {
        'description': 'GNSS multipath outliers to test robust error models',
        'gnss_std': 1.0,
        'outlier_rate': 0.15,
        'outlier_bias': 25.0,
        'accel_noise_std': 0.05,
        'gyro_noise_std': 0.005,
        'odom_speed_std': 0.05,
        'odom_rate_std': 0.01,
    },
    'degraded_imu': {
        'description': 'MEMS-grade IMU noise',
        'gnss_std': 1.0,
        'outlier_rate': 0.0,
        'outlier_bias': 0.0,
        'accel_noise_std': 0.3,
        'gyro_noise_std': 0.03,
        'odom_speed_std': 0.05,
        'odom_rate_std': 0.01,
    },
}

# Chemnitz, Germany
ORIGIN_LLH = (np.deg2rad(50.8136), np.deg2rad(12.9290), 300.0)


def generate_circular_trajectory(
    radius: float = 50.0,
    speed: float = 5.0,
    dt: float = 0.01,
    duration: float = 60.0,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Planar counter-clockwise circle starting at the ENU origin heading east.

    Returns:
        Tuple of (t, p_enu, yaw):
            t: timestamps (N,)
            p_enu: positions (N, 3) in meters
            yaw: heading angles (N,) in radians
    """
    t = np.arange(0.0, duration + 0.5 * dt, dt)
    omega = speed / radius
    yaw = omega * t
    p_enu = np.column_stack([
        radius * np.sin(yaw),
        radius * (1.0 - np.cos(yaw)),
        np.zeros_like(t),
    ])
    return t, p_enu, yaw


def generate_gnss(
    t: np.ndarray,
    p_enu: np.ndarray,
    rate: float,
    gnss_std: float,
    outlier_rate: float,
    outlier_bias: float,
    rng: np.random.Generator,
) -> List[SensorMeasurement]:
    """ECEF fixes at the given rate; outliers get a horizontal bias."""
    step = max(int(round(1.0 / (rate * (t[1] - t[0])))), 1)
    # Isotropic noise keeps the same covariance in ENU and ECEF
    covariance = np.eye(3) * gnss_std ** 2

    fixes = []
    for i in range(0, len(t), step):
        p = p_enu[i] + rng.normal(0.0, gnss_std, 3)
        if rng.random() < outlier_rate:
            direction = rng.uniform(0.0, 2.0 * np.pi)
            p[:2] += outlier_bias * np.array([np.cos(direction), np.sin(direction)])
        fixes.append(SensorMeasurement(
            SensorType.GNSS_POSITION, float(t[i]), enu_to_ecef(p, *ORIGIN_LLH), covariance,
        ))
    return fixes


def generate_imu(
    t: np.ndarray,
    speed: float,
    omega: float,
    accel_noise_std: float,
    gyro_noise_std: float,
    rng: np.random.Generator,
    accel_bias: np.ndarray = None,
    gyro_bias: np.ndarray = None,
) -> List[SensorMeasurement]:
    """Body-frame specific force and angular rate of the circular motion."""
    if accel_bias is None:
        accel_bias = np.array([0.05, -0.03, 0.02])
    if gyro_bias is None:
        gyro_bias = np.array([0.0, 0.0, 0.002])

    f_true = np.array([0.0, speed * omega, GRAVITY])
    w_true = np.array([0.0, 0.0, omega])
    covariance = np.diag([accel_noise_std ** 2] * 3 + [gyro_noise_std ** 2] * 3)

    samples = []
    for ti in t[1:]:
        f = f_true + accel_bias + rng.normal(0.0, accel_noise_std, 3)
        w = w_true + gyro_bias + rng.normal(0.0, gyro_noise_std, 3)
        samples.append(SensorMeasurement(SensorType.IMU, float(ti), np.concatenate([f, w]), covariance))
    return samples


def generate_odometry(
    t: np.ndarray,
    rate: float,
    speed: float,
    omega: float,
    speed_std: float,
    rate_std: float,
    rng: np.random.Generator,
) -> List[SensorMeasurement]:
    step = max(int(round(1.0 / (rate * (t[1] - t[0])))), 1)
    std = np.array([speed_std, speed_std, speed_std, rate_std, rate_std, rate_std])
    covariance = np.diag(std ** 2)

    samples = []
    for i in range(step, len(t), step):
        mean = np.array([speed, 0.0, 0.0, 0.0, 0.0, omega]) + rng.normal(0.0, std)
        samples.append(SensorMeasurement(SensorType.ODOM3, float(t[i]), mean, covariance))
    return samples


def save_dataset(
    output_dir: Path,
    measurements: List[SensorMeasurement],
    t: np.ndarray,
    p_enu: np.ndarray,
    yaw: np.ndarray,
    config: FactorGraphConfig,
) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    measurements = sorted(measurements, key=lambda m: m.t)
    write_sensor_file(output_dir / "sensors.txt", measurements)
    np.savetxt(output_dir / "truth.txt", np.column_stack([t, p_enu, yaw]),
               header="t east north up yaw", fmt="%.6f")
    save_config(config, output_dir / "config.json")


def main():
    parser = argparse.ArgumentParser(
        description="Generate a synthetic GNSS / IMU / odometry dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Presets:\n" + "\n".join(
            f"  {name:14s} {p['description']}" for name, p in PRESETS.items()
        ),
    )
    parser.add_argument("--preset", type=str, default="baseline", choices=list(PRESETS),
                        help="Noise preset (default: baseline)")
    parser.add_argument("--output", type=str, default=None,
                        help="Output directory (default: data/sim/gnss_fusion/<preset>)")

    traj = parser.add_argument_group("Trajectory")
    traj.add_argument("--radius", type=float, default=50.0, help="Circle radius in meters")
    traj.add_argument("--speed", type=float, default=5.0, help="Speed in m/s")
    traj.add_argument("--duration", type=float, default=60.0, help="Duration in seconds")

    rates = parser.add_argument_group("Rates")
    rates.add_argument("--imu-rate", type=float, default=100.0, help="IMU rate in Hz")
    rates.add_argument("--gnss-rate", type=float, default=1.0, help="GNSS rate in Hz")
    rates.add_argument("--odom-rate", type=float, default=10.0, help="Odometry rate in Hz")

    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()

    preset = PRESETS[args.preset]
    rng = np.random.default_rng(args.seed)
    output_dir = Path(args.output) if args.output else Path("data/sim/gnss_fusion") / args.preset

    print("=" * 70)
    print(f"Generating GNSS fusion dataset: {args.preset}")
    print("=" * 70)
    print(f"  {preset['description']}")

    t, p_enu, yaw = generate_circular_trajectory(
        args.radius, args.speed, 1.0 / args.imu_rate, args.duration,
    )
    omega = args.speed / args.radius

    gnss = generate_gnss(t, p_enu, args.gnss_rate, preset['gnss_std'],
                         preset['outlier_rate'], preset['outlier_bias'], rng)
    imu = generate_imu(t, args.speed, omega, preset['accel_noise_std'],
                       preset['gyro_noise_std'], rng)
    odom = generate_odometry(t, args.odom_rate, args.speed, omega,
                             preset['odom_speed_std'], preset['odom_rate_std'], rng)

    config = FactorGraphConfig(
        gnss=GnssConfig(active=True, type="cauchy" if preset['outlier_rate'] > 0 else "gaussian"),
        imu=ImuConfig(active=False,
                      accel_noise_density=preset['accel_noise_std'] / np.sqrt(args.imu_rate),
                      gyro_noise_density=preset['gyro_noise_std'] / np.sqrt(args.imu_rate)),
        odom=OdomConfig(active=True),
        input_file=str(output_dir / "sensors.txt"),
        output_file=str(output_dir / "result.txt"),
    )

    save_dataset(output_dir, gnss + imu + odom, t, p_enu, yaw, config)

    print(f"  GNSS fixes   : {len(gnss)}")
    print(f"  IMU samples  : {len(imu)}")
    print(f"  Odometry     : {len(odom)}")
    print(f"\nSaved to: {output_dir}")


if __name__ == "__main__":
    main()
