"""
Sensor data and motion models.

Modules:
    types: SensorType, SensorMeasurement and the per-modality SensorDataSet
    imu_models: IMU bias correction, static bias estimation and planar
        preintegration
    odometry: Planar dead reckoning of body velocity and yaw rate
"""

from rsfusion.sensors.imu_models import (
    GRAVITY,
    correct_accel,
    correct_gyro,
    estimate_imu_bias,
    imu_increment_std,
    preintegrate_imu,
    propagate_imu_state,
    sample_intervals,
)
from rsfusion.sensors.odometry import (
    ODOMETRY_TYPES,
    OdometryIncrement,
    body_velocity,
    integrate_odometry,
)
from rsfusion.sensors.types import (
    SensorDataSet,
    SensorMeasurement,
    SensorType,
    stack_means,
    stack_times,
)

__all__ = [
    # Data
    "SensorType",
    "SensorMeasurement",
    "SensorDataSet",
    "stack_means",
    "stack_times",
    # IMU
    "GRAVITY",
    "correct_gyro",
    "correct_accel",
    "estimate_imu_bias",
    "sample_intervals",
    "preintegrate_imu",
    "propagate_imu_state",
    "imu_increment_std",
    # Odometry
    "ODOMETRY_TYPES",
    "OdometryIncrement",
    "body_velocity",
    "integrate_odometry",
]
