"""Predict and measure drivers of the estimation loop.

Per timestep (time_old, time_now] the drivers turn the active modalities'
measurements into graph mutations:

    predict: motion factors (IMU, odometry) linking the states at time_old to
             new states at time_now, seeded by integrating the measurements.
    measure: absolute factors (GNSS fixes) on the states at time_now, plus
             the optional one-time height prior.

Both only add states and factors; neither ever solves. A modality that is
inactive in the configuration contributes nothing.
"""

import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np

from rsfusion.coords.rotations import yaw_rotation_matrix
from rsfusion.coords.tangent_plane import TangentPlaneConverter
from rsfusion.estimators.factor_graph import FactorGraph, StateKey
from rsfusion.estimators.factors import (
    FactorKind,
    ImuMeasurement,
    OdometryMeasurement,
    PositionFixMeasurement,
    PriorMeasurement,
)
from rsfusion.estimators.noise_models import NoiseModel
from rsfusion.fusion.config import FactorGraphConfig
from rsfusion.fusion.states import (
    IMU_BIAS_STATE,
    ORIENTATION_STATE,
    POSITION_STATE,
    STATE_TYPES,
    VELOCITY_STATE,
)
from rsfusion.sensors.imu_models import (
    imu_increment_std,
    preintegrate_imu,
    propagate_imu_state,
    sample_intervals,
)
from rsfusion.sensors.odometry import body_velocity, integrate_odometry
from rsfusion.sensors.types import SensorDataSet, SensorType, stack_means, stack_times
from rsfusion.utils.angles import wrap_angle

# Odometry gap: zero increment whose std grows with the gap length
ODOM_GAP_POSITION_STD = 10.0
ODOM_GAP_YAW_STD = 1.0


@dataclass
class MeasureOutcome:
    """What measure added at one timestep."""

    num_fixes: int = 0
    prior_added: bool = False


def _ensure_state(graph: FactorGraph, name: str, timestamp: float, mean: np.ndarray) -> StateKey:
    """Key of a state, creating it with the given seed if it does not exist."""
    if graph.has_state(name, timestamp):
        return StateKey(name, float(timestamp), 0)
    return graph.add_state(name, STATE_TYPES[name], timestamp, mean=mean)


def predict(
    graph: FactorGraph,
    config: FactorGraphConfig,
    measurements: SensorDataSet,
    time_old: float,
    time_now: float,
) -> None:
    """Add the motion factors of all active motion modalities."""
    if config.imu.active:
        add_imu(graph, config, measurements, time_old, time_now)

    if config.odom.active:
        add_odometry(graph, config, measurements, time_old, time_now)


def add_imu(
    graph: FactorGraph,
    config: FactorGraphConfig,
    measurements: SensorDataSet,
    time_old: float,
    time_now: float,
) -> int:
    """
    Add an IMU factor between time_old and time_now.

    Position, velocity, heading and bias at time_now are created if absent,
    seeded by integrating the samples in (time_old, time_now] from the
    current estimates at time_old. Without samples the factor reduces to a
    constant-velocity, constant-bias constraint.

    Returns:
        Index of the new factor.
    """
    samples = measurements.get_between(SensorType.IMU, time_old, time_now)
    if not samples:
        warnings.warn(
            f"No IMU samples in ({time_old}, {time_now}]; adding a zero-motion constraint",
            UserWarning,
        )
        data = np.zeros((0, 6))
    else:
        data = stack_means(samples)

    duration = time_now - time_old
    payload = ImuMeasurement(
        duration=duration,
        dt=sample_intervals(stack_times(samples), time_old, time_now),
        specific_force=data[:, :3],
        angular_rate=data[:, 3:],
        gravity=config.imu.gravity,
    )

    p0 = graph.get_mean(POSITION_STATE, time_old)
    v0 = graph.get_mean(VELOCITY_STATE, time_old)
    yaw0 = graph.get_mean(ORIENTATION_STATE, time_old)[0]
    b0 = graph.get_mean(IMU_BIAS_STATE, time_old)

    delta_p, delta_v, delta_yaw = preintegrate_imu(
        payload.dt, payload.specific_force, payload.angular_rate, b0, payload.gravity
    )
    p1, v1, yaw1 = propagate_imu_state(p0, v0, yaw0, duration, delta_p, delta_v, delta_yaw)

    keys = [
        StateKey(POSITION_STATE, float(time_old), 0),
        StateKey(VELOCITY_STATE, float(time_old), 0),
        StateKey(ORIENTATION_STATE, float(time_old), 0),
        StateKey(IMU_BIAS_STATE, float(time_old), 0),
        _ensure_state(graph, POSITION_STATE, time_now, p1),
        _ensure_state(graph, VELOCITY_STATE, time_now, v1),
        _ensure_state(graph, ORIENTATION_STATE, time_now, np.array([yaw1])),
        _ensure_state(graph, IMU_BIAS_STATE, time_now, b0),
    ]

    std = imu_increment_std(
        duration,
        config.imu.accel_noise_density,
        config.imu.gyro_noise_density,
        config.imu.bias_random_walk,
    )
    return graph.add_factor(FactorKind.IMU, keys, payload, NoiseModel.from_std_devs(std))


def add_odometry(
    graph: FactorGraph,
    config: FactorGraphConfig,
    measurements: SensorDataSet,
    time_old: float,
    time_now: float,
) -> Optional[int]:
    """
    Add an odometry factor between time_old and time_now.

    Position and heading at time_now are created if absent, seeded by dead
    reckoning. If the interval has no odometry samples the factor is skipped
    with a warning, unless another modality has not already created the new
    epoch; then a zero increment with inflated noise keeps the chain
    connected.

    Returns:
        Index of the new factor, or None if it was skipped.
    """
    samples = measurements.get_between(SensorType.ODOM3, time_old, time_now)
    duration = time_now - time_old

    if samples:
        data = stack_means(samples)
        velocity = np.vstack([body_velocity(m, config.odom.type) for m in data])
        increment = integrate_odometry(
            sample_intervals(stack_times(samples), time_old, time_now),
            velocity,
            data[:, 3:],
            np.array([m.covariance for m in samples]),
        )
        delta_position = increment.delta_position
        delta_yaw = increment.delta_yaw
        noise = NoiseModel.from_covariance(increment.covariance)
    else:
        if graph.has_state(POSITION_STATE, time_now) and graph.has_state(ORIENTATION_STATE, time_now):
            warnings.warn(f"No odometry in ({time_old}, {time_now}]; skipping", UserWarning)
            return None
        warnings.warn(
            f"No odometry in ({time_old}, {time_now}]; adding a weak zero increment",
            UserWarning,
        )
        delta_position = np.zeros(3)
        delta_yaw = 0.0
        scale = max(duration, 1.0)
        noise = NoiseModel.from_std_devs(
            [ODOM_GAP_POSITION_STD * scale] * 3 + [ODOM_GAP_YAW_STD * scale]
        )

    p0 = graph.get_mean(POSITION_STATE, time_old)
    yaw0 = graph.get_mean(ORIENTATION_STATE, time_old)[0]
    p1 = p0 + yaw_rotation_matrix(yaw0) @ delta_position
    yaw1 = wrap_angle(yaw0 + delta_yaw)

    keys = [
        StateKey(POSITION_STATE, float(time_old), 0),
        StateKey(ORIENTATION_STATE, float(time_old), 0),
        _ensure_state(graph, POSITION_STATE, time_now, p1),
        _ensure_state(graph, ORIENTATION_STATE, time_now, np.array([yaw1])),
    ]
    return graph.add_factor(
        FactorKind.ODOMETRY,
        keys,
        OdometryMeasurement(delta_position, delta_yaw),
        noise,
    )


def measure(
    graph: FactorGraph,
    config: FactorGraphConfig,
    measurements: SensorDataSet,
    time_old: float,
    time_now: float,
    converter: TangentPlaneConverter,
    apply_prior: bool = True,
) -> MeasureOutcome:
    """
    Add the absolute factors of all active absolute modalities at time_now.

    Args:
        graph: FactorGraph of the run.
        config: Run configuration.
        measurements: Sensor data of the run.
        time_old: Previous timestamp (unused by the absolute factors).
        time_now: Current timestamp.
        converter: Initialized tangent-plane converter for GNSS fixes.
        apply_prior: Whether the one-time height prior is still pending.

    Returns:
        MeasureOutcome with the number of fixes and whether the prior was added.

    Raises:
        FrameNotInitializedError: If a GNSS fix arrives before the converter
            was placed.
    """
    outcome = MeasureOutcome()

    if config.gnss.active:
        outcome.num_fixes = add_gnss(graph, config, measurements, time_now, converter)

    if apply_prior and config.prior.active and config.prior.type == "prior3":
        outcome.prior_added = add_height_prior(graph, config, time_now)

    return outcome


def add_gnss(
    graph: FactorGraph,
    config: FactorGraphConfig,
    measurements: SensorDataSet,
    time_now: float,
    converter: TangentPlaneConverter,
) -> int:
    """Add one robust position-fix factor per GNSS fix at time_now."""
    fixes = measurements.get_at(SensorType.GNSS_POSITION, time_now)
    loss = config.gnss.robust_loss()

    for fix in fixes:
        local = converter.to_local(fix.mean)
        covariance = converter.covariance_to_local(fix.covariance)
        key = _ensure_state(graph, POSITION_STATE, time_now, local)
        graph.add_factor(
            FactorKind.POSITION_FIX,
            [key],
            PositionFixMeasurement(local),
            NoiseModel.from_covariance(covariance, loss),
        )
    return len(fixes)


def add_height_prior(graph: FactorGraph, config: FactorGraphConfig, time_now: float) -> bool:
    """
    Prior on the current position with its height replaced by the configured one.

    Returns:
        True if the prior was added, False if there is no position at time_now yet.
    """
    if not graph.has_state(POSITION_STATE, time_now):
        return False

    point = graph.get_mean(POSITION_STATE, time_now)
    point[2] = config.prior.parameter[2]
    graph.add_factor(
        FactorKind.PRIOR,
        [StateKey(POSITION_STATE, float(time_now), 0)],
        PriorMeasurement(point),
        NoiseModel.from_std_devs(config.prior.std_devs),
    )
    return True
