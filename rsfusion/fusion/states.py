"""Names and types of the states estimated by the loop."""

from rsfusion.estimators.factor_graph import StateType

POSITION_STATE = "position"
VELOCITY_STATE = "velocity"
ORIENTATION_STATE = "orientation"
IMU_BIAS_STATE = "imu_bias"

STATE_TYPES = {
    POSITION_STATE: StateType.POINT3,
    VELOCITY_STATE: StateType.VELOCITY3,
    ORIENTATION_STATE: StateType.ANGLE,
    IMU_BIAS_STATE: StateType.IMU_BIAS,
}

# Export order of the result series
EXPORTED_STATES = (POSITION_STATE, ORIENTATION_STATE, VELOCITY_STATE, IMU_BIAS_STATE)
