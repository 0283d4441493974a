"""
Odometry dead reckoning in the plane.

Odometry measurements carry the body-frame velocity and angular rate
[v_x, v_y, v_z, ω_x, ω_y, ω_z]. Two odometry types are supported:
    - 'odom3': the full body velocity is used.
    - 'odom2': only the forward speed v_x is trusted (non-holonomic vehicle);
      lateral and vertical velocity are taken as zero.

Increments are expressed in the body frame at the start of the interval:
    p1 = p0 + C(ψ0) Δp
    ψ1 = ψ0 + Δψ
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

ODOMETRY_TYPES = ("odom3", "odom2")


@dataclass
class OdometryIncrement:
    """
    Relative motion between two epochs.

    Attributes:
        delta_position: Translation in the start body frame (3,). Units: m.
        delta_yaw: Heading change. Units: rad.
        covariance: Covariance of [Δp, Δψ] (4, 4).
        num_samples: Number of odometry samples integrated.
    """

    delta_position: np.ndarray
    delta_yaw: float
    covariance: np.ndarray
    num_samples: int

    def std_devs(self) -> np.ndarray:
        return np.sqrt(np.diag(self.covariance))


def body_velocity(mean: np.ndarray, odom_type: str = "odom3") -> np.ndarray:
    """
    Body-frame velocity used for dead reckoning.

    Args:
        mean: Odometry measurement [v (3), ω (3)].
        odom_type: 'odom3' or 'odom2'.

    Returns:
        Velocity (3,) in the body frame.
    """
    if odom_type not in ODOMETRY_TYPES:
        raise ValueError(f"Unknown odometry type '{odom_type}', expected one of {ODOMETRY_TYPES}")

    mean = np.asarray(mean, dtype=float)
    if odom_type == "odom2":
        return np.array([mean[0], 0.0, 0.0])
    return mean[:3].copy()


def integrate_odometry(
    dt: np.ndarray,
    velocity: np.ndarray,
    angular_rate: np.ndarray,
    covariances: Optional[np.ndarray] = None,
    min_std: float = 1e-3,
) -> OdometryIncrement:
    """
    Dead-reckon odometry samples into a relative increment.

    Each sample is held over its step dt_k; its velocity is rotated by the
    heading reached at the middle of the step.

    Args:
        dt: Step per sample (N,).
        velocity: Body velocities (N, 3).
        angular_rate: Body angular rates (N, 3); only ω_z is used.
        covariances: Optional per-sample 6x6 covariances (N, 6, 6). The
            velocity and ω_z blocks are propagated to the increment.
        min_std: Floor on the increment standard deviations.

    Returns:
        OdometryIncrement in the start body frame.

    Example:
        >>> inc = integrate_odometry(np.array([0.5, 0.5]),
        ...                          np.array([[2.0, 0, 0], [2.0, 0, 0]]),
        ...                          np.zeros((2, 3)))
        >>> inc.delta_position
        array([2., 0., 0.])
    """
    dt = np.asarray(dt, dtype=float)
    n = len(dt)
    if n == 0:
        return OdometryIncrement(
            delta_position=np.zeros(3),
            delta_yaw=0.0,
            covariance=np.diag(np.full(4, min_std ** 2)),
            num_samples=0,
        )

    velocity = np.asarray(velocity, dtype=float).reshape(n, 3)
    w = np.asarray(angular_rate, dtype=float).reshape(n, 3)[:, 2]

    heading_end = np.cumsum(w * dt)
    heading_mid = heading_end - 0.5 * w * dt
    c = np.cos(heading_mid)
    s = np.sin(heading_mid)

    steps = np.column_stack([
        (c * velocity[:, 0] - s * velocity[:, 1]) * dt,
        (s * velocity[:, 0] + c * velocity[:, 1]) * dt,
        velocity[:, 2] * dt,
    ])
    delta_position = steps.sum(axis=0)

    cov = np.zeros((4, 4))
    if covariances is not None:
        covariances = np.asarray(covariances, dtype=float).reshape(n, 6, 6)
        for k in range(n):
            C = np.array([
                [c[k], -s[k], 0.0],
                [s[k], c[k], 0.0],
                [0.0, 0.0, 1.0],
            ])
            cov[:3, :3] += dt[k] ** 2 * C @ covariances[k, :3, :3] @ C.T
            cov[3, 3] += dt[k] ** 2 * covariances[k, 5, 5]

    cov[np.diag_indices(4)] = np.maximum(np.diag(cov), min_std ** 2)

    return OdometryIncrement(
        delta_position=delta_position,
        delta_yaw=float(heading_end[-1]),
        covariance=cov,
        num_samples=n,
    )
