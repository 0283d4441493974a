"""
Factor kinds of the estimation graph.

The set of factor kinds is closed: each FactorKind has a fixed arity, a
measurement payload type and one residual function, all resolved once when
the factor is constructed. Residuals take the list of connected state means
(in the order of the factor's keys) and the payload, and return the raw,
unwhitened residual vector.

Kinds and key layouts:
    PRIOR         [x]                           r = x - x̄ (angles wrapped)
    POSITION_FIX  [p]                           r = p - z
    ODOMETRY      [p0, ψ0, p1, ψ1]              r = [C(ψ0)ᵀ(p1 - p0) - Δp,
                                                     wrap(ψ1 - ψ0 - Δψ)]
    IMU           [p0, v0, ψ0, b0, p1, v1, ψ1, b1]
                                                r = [p1 - p̂1, v1 - v̂1,
                                                     wrap(ψ1 - ψ̂1), b1 - b0]
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from rsfusion.coords.rotations import map_to_body
from rsfusion.sensors.imu_models import GRAVITY, preintegrate_imu, propagate_imu_state
from rsfusion.utils.angles import angle_diff, wrap_angle


class FactorKind(Enum):
    PRIOR = "prior"
    POSITION_FIX = "position_fix"
    ODOMETRY = "odometry"
    IMU = "imu"


@dataclass(frozen=True)
class PriorMeasurement:
    """Absolute value of a single state; angular priors wrap the residual."""

    mean: np.ndarray
    angular: bool = False


@dataclass(frozen=True)
class PositionFixMeasurement:
    """Absolute position in the local frame."""

    position: np.ndarray


@dataclass(frozen=True)
class OdometryMeasurement:
    """Relative motion in the start body frame."""

    delta_position: np.ndarray
    delta_yaw: float


@dataclass(frozen=True)
class ImuMeasurement:
    """
    Raw IMU samples between two epochs.

    The samples are kept rather than a fixed preintegrated increment so the
    residual re-integrates with the current bias estimate.

    Attributes:
        duration: Epoch spacing T. Units: s.
        dt: Integration step per sample (N,). Sums to T when N > 0.
        specific_force: Accelerometer samples (N, 3).
        angular_rate: Gyro samples (N, 3).
        gravity: Gravity magnitude used for compensation.
    """

    duration: float
    dt: np.ndarray
    specific_force: np.ndarray
    angular_rate: np.ndarray
    gravity: float = GRAVITY

    @property
    def num_samples(self) -> int:
        return len(self.dt)


def prior_residual(means: Sequence[np.ndarray], measurement: PriorMeasurement) -> np.ndarray:
    r = means[0] - measurement.mean
    if measurement.angular:
        r = np.array([wrap_angle(v) for v in r])
    return r


def position_fix_residual(
    means: Sequence[np.ndarray], measurement: PositionFixMeasurement
) -> np.ndarray:
    return means[0] - measurement.position


def odometry_residual(
    means: Sequence[np.ndarray], measurement: OdometryMeasurement
) -> np.ndarray:
    p0, yaw0, p1, yaw1 = means
    translation = map_to_body(p1 - p0, yaw0[0]) - measurement.delta_position
    rotation = wrap_angle(yaw1[0] - yaw0[0] - measurement.delta_yaw)
    return np.concatenate([translation, [rotation]])


def imu_residual(means: Sequence[np.ndarray], measurement: ImuMeasurement) -> np.ndarray:
    p0, v0, yaw0, b0, p1, v1, yaw1, b1 = means

    delta_p, delta_v, delta_yaw = preintegrate_imu(
        measurement.dt,
        measurement.specific_force,
        measurement.angular_rate,
        b0,
        measurement.gravity,
    )
    p_pred, v_pred, yaw_pred = propagate_imu_state(
        p0, v0, yaw0[0], measurement.duration, delta_p, delta_v, delta_yaw
    )

    return np.concatenate([
        p1 - p_pred,
        v1 - v_pred,
        [wrap_angle(yaw1[0] - yaw_pred)],
        b1 - b0,
    ])


ResidualFunction = Callable[[Sequence[np.ndarray], object], np.ndarray]

_RESIDUALS: Dict[FactorKind, ResidualFunction] = {
    FactorKind.PRIOR: prior_residual,
    FactorKind.POSITION_FIX: position_fix_residual,
    FactorKind.ODOMETRY: odometry_residual,
    FactorKind.IMU: imu_residual,
}

_MEASUREMENT_TYPES = {
    FactorKind.PRIOR: PriorMeasurement,
    FactorKind.POSITION_FIX: PositionFixMeasurement,
    FactorKind.ODOMETRY: OdometryMeasurement,
    FactorKind.IMU: ImuMeasurement,
}

# Number of states each kind connects
FACTOR_ARITY = {
    FactorKind.PRIOR: 1,
    FactorKind.POSITION_FIX: 1,
    FactorKind.ODOMETRY: 4,
    FactorKind.IMU: 8,
}

# Residual rows holding wrapped angles (PRIOR depends on its payload)
_ANGULAR_ROWS = {
    FactorKind.POSITION_FIX: (),
    FactorKind.ODOMETRY: (3,),
    FactorKind.IMU: (6,),
}


def residual_function(kind: FactorKind) -> ResidualFunction:
    """Residual function registered for a factor kind."""
    return _RESIDUALS[kind]


def angular_rows(kind: FactorKind, measurement) -> Tuple[int, ...]:
    """Rows of the residual of a factor that are wrapped angles."""
    if kind is FactorKind.PRIOR:
        return tuple(range(len(measurement.mean))) if measurement.angular else ()
    return _ANGULAR_ROWS[kind]


def validate_measurement(kind: FactorKind, num_keys: int, measurement) -> None:
    """
    Check arity and payload type for a factor kind.

    Raises:
        TypeError: If kind is not a FactorKind or the payload has the wrong type.
        ValueError: If the number of keys does not match the kind's arity.
    """
    if not isinstance(kind, FactorKind):
        raise TypeError(f"Factor kind must be a FactorKind, got {kind!r}")
    if num_keys != FACTOR_ARITY[kind]:
        raise ValueError(
            f"{kind.name} factor connects {FACTOR_ARITY[kind]} states, got {num_keys}"
        )
    expected = _MEASUREMENT_TYPES[kind]
    if not isinstance(measurement, expected):
        raise TypeError(
            f"{kind.name} factor expects {expected.__name__}, got {type(measurement).__name__}"
        )


def numerical_jacobians(
    residual_func: ResidualFunction,
    means: List[np.ndarray],
    measurement,
    active: Optional[Sequence[bool]] = None,
    angular: Sequence[int] = (),
    epsilon: float = 1e-7,
) -> Tuple[np.ndarray, List[Optional[np.ndarray]]]:
    """
    Forward-difference Jacobians of a residual with respect to each state.

    Args:
        residual_func: Residual function of the factor kind.
        means: Current state means, one per key.
        measurement: Factor payload.
        active: Optional mask; Jacobians are only computed where True and the
            other entries are None (frozen states need none).
        angular: Residual rows that are wrapped angles. Their differences are
            wrapped again so a residual near ±π does not jump by 2π.
        epsilon: Perturbation size.

    Returns:
        Tuple (residual at means, list of Jacobians (m, n_i) or None
        aligned with means).
    """
    r_base = residual_func(means, measurement)
    angular = list(angular)
    jacobians: List[Optional[np.ndarray]] = []

    for idx, mean in enumerate(means):
        if active is not None and not active[idx]:
            jacobians.append(None)
            continue

        J = np.zeros((len(r_base), len(mean)))
        for i in range(len(mean)):
            perturbed = list(means)
            mean_plus = mean.copy()
            mean_plus[i] += epsilon
            perturbed[idx] = mean_plus
            r_plus = residual_func(perturbed, measurement)
            diff = r_plus - r_base
            if angular:
                diff[angular] = angle_diff(r_plus[angular], r_base[angular])
            J[:, i] = diff / epsilon
        jacobians.append(J)

    return r_base, jacobians
