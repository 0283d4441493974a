"""Incremental GNSS/IMU/odometry fusion on top of the factor graph.

Modules:
    config: Frozen run configuration (JSON / command line)
    states: Names and types of the estimated states
    initialization: One-shot initialization state machine
    drivers: Predict (IMU, odometry) and measure (GNSS, prior) drivers
    scheduler: Incremental vs thorough solve scheduling
    results: StateDataSet result container
    resampling: Fixed-interval measurement down-sampling
    estimation: The estimation loop (import from rsfusion.fusion.estimation)
"""

from rsfusion.fusion.config import (
    FactorGraphConfig,
    GnssConfig,
    ImuConfig,
    OdomConfig,
    PriorConfig,
    SolverConfig,
    load_config,
    save_config,
)
from rsfusion.fusion.drivers import MeasureOutcome, measure, predict
from rsfusion.fusion.initialization import (
    GNSS_INIT_STD,
    IMU_INIT_DURATION,
    InitBranch,
    Initializer,
    InitState,
)
from rsfusion.fusion.resampling import (
    ResampleResult,
    ResampleStatus,
    average_measurement,
    sample_measurements_down,
)
from rsfusion.fusion.results import StateDataSet, StateRecord
from rsfusion.fusion.scheduler import SolveScheduler, force_solve
from rsfusion.fusion.states import (
    IMU_BIAS_STATE,
    ORIENTATION_STATE,
    POSITION_STATE,
    VELOCITY_STATE,
)

__all__ = [
    # Configuration
    "FactorGraphConfig",
    "GnssConfig",
    "ImuConfig",
    "OdomConfig",
    "PriorConfig",
    "SolverConfig",
    "load_config",
    "save_config",
    # States
    "POSITION_STATE",
    "VELOCITY_STATE",
    "ORIENTATION_STATE",
    "IMU_BIAS_STATE",
    # Initialization
    "Initializer",
    "InitState",
    "InitBranch",
    "GNSS_INIT_STD",
    "IMU_INIT_DURATION",
    # Drivers
    "predict",
    "measure",
    "MeasureOutcome",
    # Scheduling
    "SolveScheduler",
    "force_solve",
    # Results
    "StateDataSet",
    "StateRecord",
    # Resampling
    "ResampleResult",
    "ResampleStatus",
    "average_measurement",
    "sample_measurements_down",
]
