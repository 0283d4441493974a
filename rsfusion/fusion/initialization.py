"""Initialization state machine of the estimation graph.

InitGraph runs once, at the first timestamp, and decides how the first
states and the local frame are seeded:

1. GNSS active: the first fix places the tangent plane and seeds the first
   position with a tight prior (GNSS_INIT_STD).
2. Otherwise: the first position sits at the local origin under a broad
   prior and is frozen immediately, so the only anchor of the run cannot
   drift.

On top of either branch:
    - IMU active: a static bias estimate over the first IMU_INIT_DURATION
      seconds seeds the bias, velocity and heading states.
    - Else Odom active: a generic heading prior is added.
"""

import warnings
from enum import Enum
from typing import Optional

import numpy as np

from rsfusion.coords.tangent_plane import TangentPlaneConverter
from rsfusion.estimators.factor_graph import FactorGraph
from rsfusion.estimators.factors import FactorKind, PriorMeasurement
from rsfusion.estimators.noise_models import NoiseModel
from rsfusion.fusion.config import FactorGraphConfig
from rsfusion.fusion.states import (
    IMU_BIAS_STATE,
    ORIENTATION_STATE,
    POSITION_STATE,
    STATE_TYPES,
    VELOCITY_STATE,
)
from rsfusion.sensors.imu_models import estimate_imu_bias
from rsfusion.sensors.types import SensorDataSet, SensorType, stack_means

GNSS_INIT_STD = 0.1
FALLBACK_PRIOR_STD = 1.0
IMU_INIT_DURATION = 2.0
VELOCITY_INIT_STD = 1.0
IMU_INIT_YAW_STD = np.pi
ODOM_INIT_YAW_STD = 1.0


class InitState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"


class InitBranch(Enum):
    GNSS = "gnss"
    FALLBACK = "fallback"


class Initializer:
    """
    One-shot initializer of the graph and the local frame.

    Attributes:
        config: Run configuration.
        state: InitState of the machine.
        branch: InitBranch taken, None before init_graph.
        imu_bias: Initial IMU bias estimate (6,), None if the IMU is inactive.
    """

    def __init__(self, config: FactorGraphConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.state = InitState.UNINITIALIZED
        self.branch: Optional[InitBranch] = None
        self.imu_bias: Optional[np.ndarray] = None

    @property
    def is_initialized(self) -> bool:
        return self.state is InitState.INITIALIZED

    def init_graph(
        self,
        graph: FactorGraph,
        measurements: SensorDataSet,
        converter: TangentPlaneConverter,
        time_initial: float,
    ) -> None:
        """
        Seed the graph at the first timestamp.

        Args:
            graph: Empty FactorGraph of the run.
            measurements: Sensor data of the run.
            converter: Tangent-plane converter, placed by the GNSS branch.
            time_initial: First timestamp of the run.

        Raises:
            RuntimeError: If called more than once.
        """
        if self.state is not InitState.UNINITIALIZED:
            raise RuntimeError(f"init_graph can only run once (state: {self.state.value})")
        self.state = InitState.INITIALIZING

        if self.config.gnss.active and self._init_with_gnss(graph, measurements, converter, time_initial):
            self.branch = InitBranch.GNSS
        else:
            self._init_fallback(graph, time_initial)
            self.branch = InitBranch.FALLBACK

        if self.config.imu.active:
            self._init_imu(graph, measurements, time_initial)
        elif self.config.odom.active:
            self._init_odom(graph, time_initial)

        self.state = InitState.INITIALIZED
        if self.verbose:
            print(f"  Initialized at t = {time_initial:.3f} s ({self.branch.value} branch)")

    def _init_with_gnss(
        self,
        graph: FactorGraph,
        measurements: SensorDataSet,
        converter: TangentPlaneConverter,
        time_initial: float,
    ) -> bool:
        fixes = measurements.get_at(SensorType.GNSS_POSITION, time_initial)
        if not fixes:
            t_next = measurements.next_timestamp(SensorType.GNSS_POSITION, time_initial)
            if t_next is None:
                warnings.warn(
                    f"GNSS is active but there is no fix at or after t = {time_initial}; "
                    "falling back to the origin prior",
                    UserWarning,
                )
                return False
            fixes = measurements.get_at(SensorType.GNSS_POSITION, t_next)

        fix = fixes[0]
        converter.initialize(fix.mean)

        key = graph.add_state(
            POSITION_STATE,
            STATE_TYPES[POSITION_STATE],
            time_initial,
            mean=converter.to_local(fix.mean),
        )
        graph.add_factor(
            FactorKind.PRIOR,
            [key],
            PriorMeasurement(graph.get_mean(*key)),
            NoiseModel.from_shared_std_dev(GNSS_INIT_STD, 3),
        )
        return True

    def _init_fallback(self, graph: FactorGraph, time_initial: float) -> None:
        key = graph.add_state(POSITION_STATE, STATE_TYPES[POSITION_STATE], time_initial)

        if self.config.prior.active:
            noise = NoiseModel.from_std_devs(self.config.prior.std_devs)
        else:
            noise = NoiseModel.from_shared_std_dev(FALLBACK_PRIOR_STD, 3)
        graph.add_factor(FactorKind.PRIOR, [key], PriorMeasurement(np.zeros(3)), noise)

        # Zero-length window ending just after t0: freezes exactly the anchor
        graph.set_all_constant_outside_window(0.0, np.nextafter(time_initial, np.inf))

    def _init_imu(self, graph: FactorGraph, measurements: SensorDataSet, time_initial: float) -> None:
        samples = [
            m for m in measurements.get_stream(SensorType.IMU)
            if time_initial <= m.t <= time_initial + IMU_INIT_DURATION
        ]
        bias = None
        if samples:
            data = stack_means(samples)
            bias = estimate_imu_bias(data[:, :3], data[:, 3:], self.config.imu.gravity)
        if bias is None:
            warnings.warn(
                f"No IMU samples in [{time_initial}, {time_initial + IMU_INIT_DURATION}]; "
                "starting with zero biases",
                UserWarning,
            )
            bias = np.zeros(6)
        self.imu_bias = bias

        velocity = graph.add_state(VELOCITY_STATE, STATE_TYPES[VELOCITY_STATE], time_initial)
        graph.add_factor(
            FactorKind.PRIOR,
            [velocity],
            PriorMeasurement(np.zeros(3)),
            NoiseModel.from_shared_std_dev(VELOCITY_INIT_STD, 3),
        )

        self._add_heading(graph, time_initial, IMU_INIT_YAW_STD)

        bias_key = graph.add_state(IMU_BIAS_STATE, STATE_TYPES[IMU_BIAS_STATE], time_initial, mean=bias)
        graph.add_factor(
            FactorKind.PRIOR,
            [bias_key],
            PriorMeasurement(bias.copy()),
            NoiseModel.from_shared_std_dev(self.config.imu.bias_prior_std, 6),
        )

        if self.verbose:
            print(f"  IMU bias from {len(samples)} samples: {np.round(bias, 4)}")

    def _init_odom(self, graph: FactorGraph, time_initial: float) -> None:
        self._add_heading(graph, time_initial, ODOM_INIT_YAW_STD)

    def _add_heading(self, graph: FactorGraph, time_initial: float, std: float) -> None:
        key = graph.add_state(ORIENTATION_STATE, STATE_TYPES[ORIENTATION_STATE], time_initial)
        graph.add_factor(
            FactorKind.PRIOR,
            [key],
            PriorMeasurement(np.zeros(1), angular=True),
            NoiseModel.from_std_devs([std]),
        )
