"""
IMU correction and preintegration for a level, heading-only platform.

The graph tracks attitude as a single yaw angle, so inertial samples are
integrated in the plane: the body is assumed level, the gyro z-axis drives
the heading and the accelerometer is rotated about Up only.

Error model (per axis, body frame B):
    f̃ = f + b_a + n_a       (accelerometer, specific force)
    ω̃ = ω + b_g + n_g       (gyroscope, angular rate)

Bias vectors are stacked as [b_a (3), b_g (3)], matching the IMU_BIAS state.
"""

from typing import Optional, Tuple

import numpy as np

from rsfusion.coords.rotations import yaw_rotation_matrix
from rsfusion.utils.angles import wrap_angle

GRAVITY = 9.81


def correct_gyro(
    gyro_meas: np.ndarray,
    b_g: np.ndarray,
    n_g: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Correct gyroscope measurement by removing bias and noise.

        ω = ω̃ - b_g - n_g

    Args:
        gyro_meas: Raw angular rate, shape (3,) or (N, 3). Units: rad/s.
        b_g: Gyro bias, broadcastable to gyro_meas. Units: rad/s.
        n_g: Optional noise sample, broadcastable to gyro_meas.

    Returns:
        Corrected angular rate with the shape of gyro_meas.
    """
    omega_corrected = gyro_meas - b_g

    if n_g is not None:
        omega_corrected = omega_corrected - n_g

    return omega_corrected


def correct_accel(
    accel_meas: np.ndarray,
    b_a: np.ndarray,
    n_a: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Correct accelerometer measurement by removing bias and noise.

        f = f̃ - b_a - n_a

    Gravity is NOT removed here; preintegrate_imu subtracts it after the
    rotation into the map frame.
    """
    f_corrected = accel_meas - b_a

    if n_a is not None:
        f_corrected = f_corrected - n_a

    return f_corrected


def estimate_imu_bias(
    specific_force: np.ndarray,
    angular_rate: np.ndarray,
    gravity: float = GRAVITY,
) -> Optional[np.ndarray]:
    """
    Static bias estimate from samples recorded while the platform is at rest.

    A level, static IMU measures the gravity reaction [0, 0, g] and zero
    rotation, so the biases are the sample means minus those references.

    Args:
        specific_force: Accelerometer samples (N, 3). Units: m/s².
        angular_rate: Gyro samples (N, 3). Units: rad/s.
        gravity: Gravity magnitude. Units: m/s².

    Returns:
        Bias vector [b_a, b_g] (6,), or None if no samples were given.

    Example:
        >>> f = np.tile([0.1, 0.0, 9.91], (100, 1))
        >>> w = np.tile([0.0, 0.0, 0.01], (100, 1))
        >>> estimate_imu_bias(f, w)
        array([0.1 , 0.  , 0.1 , 0.  , 0.  , 0.01])
    """
    specific_force = np.asarray(specific_force, dtype=float).reshape(-1, 3)
    angular_rate = np.asarray(angular_rate, dtype=float).reshape(-1, 3)

    if len(specific_force) == 0 or len(angular_rate) == 0:
        return None

    b_a = specific_force.mean(axis=0) - np.array([0.0, 0.0, gravity])
    b_g = angular_rate.mean(axis=0)
    return np.concatenate([b_a, b_g])


def sample_intervals(sample_times: np.ndarray, t_start: float, t_end: float) -> np.ndarray:
    """
    Integration step assigned to each sample in (t_start, t_end].

    Sample k covers the span since the previous sample (or t_start), and the
    last sample also covers the remainder up to t_end, so the steps always
    sum to t_end - t_start.
    """
    sample_times = np.asarray(sample_times, dtype=float)
    if len(sample_times) == 0:
        return np.zeros(0)

    dt = np.diff(np.concatenate([[t_start], sample_times]))
    dt[-1] += t_end - sample_times[-1]
    return dt


def preintegrate_imu(
    dt: np.ndarray,
    specific_force: np.ndarray,
    angular_rate: np.ndarray,
    bias: np.ndarray,
    gravity: float = GRAVITY,
) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Integrate IMU samples relative to the starting heading.

    The increments are expressed in the frame of the heading at the start of
    the interval and do not include the initial-velocity term, so the end
    state follows as:

        p1 = p0 + v0·T + C(ψ0) Δp
        v1 = v0 + C(ψ0) Δv
        ψ1 = ψ0 + Δψ

    Args:
        dt: Integration step per sample (N,), see sample_intervals.
        specific_force: Raw accelerometer samples (N, 3).
        angular_rate: Raw gyro samples (N, 3).
        bias: IMU bias [b_a, b_g] (6,).
        gravity: Gravity magnitude. Units: m/s².

    Returns:
        Tuple (Δp (3,), Δv (3,), Δψ).
    """
    dt = np.asarray(dt, dtype=float)
    if len(dt) == 0:
        return np.zeros(3), np.zeros(3), 0.0

    bias = np.asarray(bias, dtype=float)
    f = correct_accel(np.asarray(specific_force, dtype=float), bias[:3])
    w = correct_gyro(np.asarray(angular_rate, dtype=float), bias[3:])[:, 2]

    heading_end = np.cumsum(w * dt)
    heading_mid = heading_end - 0.5 * w * dt

    c = np.cos(heading_mid)
    s = np.sin(heading_mid)
    accel = np.column_stack([
        c * f[:, 0] - s * f[:, 1],
        s * f[:, 0] + c * f[:, 1],
        f[:, 2] - gravity,
    ])

    dv_steps = accel * dt[:, None]
    v_before = np.cumsum(dv_steps, axis=0) - dv_steps
    delta_p = np.sum(v_before * dt[:, None] + 0.5 * accel * (dt ** 2)[:, None], axis=0)
    delta_v = np.sum(dv_steps, axis=0)

    return delta_p, delta_v, float(heading_end[-1])


def propagate_imu_state(
    position: np.ndarray,
    velocity: np.ndarray,
    yaw: float,
    duration: float,
    delta_p: np.ndarray,
    delta_v: np.ndarray,
    delta_yaw: float,
) -> Tuple[np.ndarray, np.ndarray, float]:
    """Apply preintegrated increments to a start state (see preintegrate_imu)."""
    C = yaw_rotation_matrix(yaw)
    position_next = position + velocity * duration + C @ delta_p
    velocity_next = velocity + C @ delta_v
    return position_next, velocity_next, wrap_angle(yaw + delta_yaw)


def imu_increment_std(
    duration: float,
    accel_noise_density: float,
    gyro_noise_density: float,
    bias_random_walk: float,
    min_std: float = 1e-3,
) -> np.ndarray:
    """
    Standard deviations of an IMU increment over duration T.

    White noise integrated over T gives σ_v = σ_a √T, σ_p = σ_a T^1.5/√3 and
    σ_ψ = σ_g √T. The bias random walk grows as σ_b √T.

    Returns:
        Std vector (13,) laid out as [p (3), v (3), ψ (1), b (6)], floored
        at min_std so a zero-length interval still has finite information.
    """
    T = max(float(duration), 0.0)
    sigma_p = accel_noise_density * T ** 1.5 / np.sqrt(3.0)
    sigma_v = accel_noise_density * np.sqrt(T)
    sigma_yaw = gyro_noise_density * np.sqrt(T)
    sigma_b = bias_random_walk * np.sqrt(T)

    std = np.concatenate([
        np.full(3, sigma_p),
        np.full(3, sigma_v),
        [sigma_yaw],
        np.full(6, sigma_b),
    ])
    return np.maximum(std, min_std)
