"""Incremental factor-graph estimation for GNSS, IMU and odometry fusion.

This package contains the components of the estimator:
- coords: ECEF/LLH/ENU transforms and the one-shot tangent-plane converter
- estimators: Noise models, factor kinds and the factor graph engine
- sensors: Sensor data containers, IMU and odometry models
- fusion: Configuration, initialization, drivers, scheduling and the loop
- io: Sensor file reader, result writer and progress reporting
"""

__version__ = "0.1.0"
