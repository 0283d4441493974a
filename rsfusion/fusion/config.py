"""Run configuration of the estimation loop.

The configuration is read once at startup (JSON file and/or command line),
validated on construction and then passed explicitly to every component.
All sections are frozen dataclasses.

Example JSON:
    {
        "gnss": {"active": true, "type": "cauchy"},
        "imu": {"active": false},
        "odom": {"active": true, "type": "odom3"},
        "prior": {"active": false},
        "window_length": 10.0,
        "solver": {"max_iterations": 10, "tolerance": 1e-6},
        "input_file": "data/gnss_run.txt",
        "output_file": "results/gnss_run"
    }
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from rsfusion.estimators.factor_graph import SolveSettings
from rsfusion.estimators.noise_models import RobustLoss
from rsfusion.sensors.imu_models import GRAVITY
from rsfusion.sensors.odometry import ODOMETRY_TYPES

GNSS_TYPES = ("gaussian", "huber", "cauchy")
PRIOR_TYPES = ("prior3",)


@dataclass(frozen=True)
class GnssConfig:
    """
    Absolute position fixes.

    Attributes:
        active: Use GNSS fixes.
        type: Error model of the fixes: 'gaussian', 'huber' or 'cauchy'.
        loss_scale: Robust loss scale in standard deviations (None for the
            loss default).
    """

    active: bool = False
    type: str = "cauchy"
    loss_scale: Optional[float] = None

    def __post_init__(self) -> None:
        if self.type not in GNSS_TYPES:
            raise ValueError(f"Unknown GNSS type '{self.type}', expected one of {GNSS_TYPES}")
        if self.loss_scale is not None and self.loss_scale <= 0:
            raise ValueError(f"GNSS loss_scale must be positive, got {self.loss_scale}")

    def robust_loss(self) -> Optional[RobustLoss]:
        return RobustLoss.create(None if self.type == "gaussian" else self.type, self.loss_scale)


@dataclass(frozen=True)
class ImuConfig:
    """
    Inertial measurements.

    Attributes:
        active: Use the IMU.
        accel_noise_density: Accelerometer white noise σ_a. Units: m/s²/√Hz.
        gyro_noise_density: Gyro white noise σ_g. Units: rad/s/√Hz.
        bias_random_walk: Bias random walk σ_b. Units: per √s.
        bias_prior_std: Std of the prior on the initial bias estimate.
        gravity: Gravity magnitude. Units: m/s².
    """

    active: bool = False
    accel_noise_density: float = 0.05
    gyro_noise_density: float = 0.005
    bias_random_walk: float = 1e-3
    bias_prior_std: float = 0.1
    gravity: float = GRAVITY

    def __post_init__(self) -> None:
        for name in ("accel_noise_density", "gyro_noise_density", "bias_random_walk",
                     "bias_prior_std", "gravity"):
            if getattr(self, name) <= 0:
                raise ValueError(f"IMU {name} must be positive, got {getattr(self, name)}")


@dataclass(frozen=True)
class OdomConfig:
    """
    Odometry.

    Attributes:
        active: Use odometry.
        type: 'odom3' (full body velocity) or 'odom2' (forward speed only).
    """

    active: bool = False
    type: str = "odom3"

    def __post_init__(self) -> None:
        if self.type not in ODOMETRY_TYPES:
            raise ValueError(f"Unknown odometry type '{self.type}', expected one of {ODOMETRY_TYPES}")


@dataclass(frozen=True)
class PriorConfig:
    """
    Position prior.

    Attributes:
        active: Use the prior.
        type: 'prior3'.
        parameter: [x, y, z, σx, σy, σz]; z is the prior height and the σ
            vector its standard deviation.
    """

    active: bool = False
    type: str = "prior3"
    parameter: Tuple[float, ...] = (0.0, 0.0, 0.0, 1.0, 1.0, 1.0)

    def __post_init__(self) -> None:
        if self.type not in PRIOR_TYPES:
            raise ValueError(f"Unknown prior type '{self.type}', expected one of {PRIOR_TYPES}")
        object.__setattr__(self, "parameter", tuple(float(v) for v in self.parameter))
        if len(self.parameter) != 6:
            raise ValueError(f"Prior parameter needs 6 values, got {len(self.parameter)}")
        if any(v <= 0 for v in self.parameter[3:]):
            raise ValueError(f"Prior standard deviations must be positive, got {self.parameter[3:]}")

    @property
    def point(self) -> np.ndarray:
        return np.array(self.parameter[:3])

    @property
    def std_devs(self) -> np.ndarray:
        return np.array(self.parameter[3:])


@dataclass(frozen=True)
class SolverConfig:
    """
    Solver limits for thorough (forced) and incremental solves.

    Attributes:
        max_iterations: Iterations of a thorough solve.
        tolerance: Convergence tolerance of a thorough solve.
        incremental_iterations: Iterations of an incremental solve.
        incremental_tolerance: Convergence tolerance of an incremental solve.
        initial_mu: Initial Levenberg-Marquardt damping.
        confidence: Quantile of the chi-square consistency check.
    """

    max_iterations: int = 20
    tolerance: float = 1e-6
    incremental_iterations: int = 5
    incremental_tolerance: float = 1e-4
    initial_mu: float = 1e-3
    confidence: float = 0.95

    def __post_init__(self) -> None:
        # Building both settings validates all limits
        self.thorough_settings()
        self.incremental_settings()

    def thorough_settings(self) -> SolveSettings:
        return SolveSettings(
            max_iterations=self.max_iterations,
            tolerance=self.tolerance,
            initial_mu=self.initial_mu,
            confidence=self.confidence,
        )

    def incremental_settings(self) -> SolveSettings:
        return SolveSettings(
            max_iterations=self.incremental_iterations,
            tolerance=self.incremental_tolerance,
            initial_mu=self.initial_mu,
            confidence=self.confidence,
        )


_SECTIONS = {
    "gnss": GnssConfig,
    "imu": ImuConfig,
    "odom": OdomConfig,
    "prior": PriorConfig,
    "solver": SolverConfig,
}


@dataclass(frozen=True)
class FactorGraphConfig:
    """
    Complete configuration of one estimation run.

    Attributes:
        gnss, imu, odom, prior: Per-modality sections.
        window_length: Length of the free window; older states are frozen.
            Units: s.
        solver: SolverConfig.
        input_file: Sensor data file.
        output_file: Result file prefix.
    """

    gnss: GnssConfig = field(default_factory=GnssConfig)
    imu: ImuConfig = field(default_factory=ImuConfig)
    odom: OdomConfig = field(default_factory=OdomConfig)
    prior: PriorConfig = field(default_factory=PriorConfig)
    window_length: float = 10.0
    solver: SolverConfig = field(default_factory=SolverConfig)
    input_file: str = ""
    output_file: str = ""

    def __post_init__(self) -> None:
        if not self.window_length >= 0:
            raise ValueError(f"window_length must be non-negative, got {self.window_length}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FactorGraphConfig":
        """
        Build a configuration from a (JSON-style) dictionary.

        Missing sections and keys take their defaults.

        Raises:
            ValueError: For unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, value in data.items():
            section = _SECTIONS.get(name)
            if section is None:
                kwargs[name] = value
                continue
            if not isinstance(value, dict):
                raise ValueError(f"Configuration section '{name}' must be an object")
            section_keys = {f.name for f in fields(section)}
            unknown = set(value) - section_keys
            if unknown:
                raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")
            kwargs[name] = section(**value)

        if "window_length" in kwargs:
            kwargs["window_length"] = float(kwargs["window_length"])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["prior"]["parameter"] = list(self.prior.parameter)
        return data

    @property
    def any_active(self) -> bool:
        return self.gnss.active or self.imu.active or self.odom.active


def load_config(path: Union[str, Path]) -> FactorGraphConfig:
    """Load a FactorGraphConfig from a JSON file."""
    with open(path, "r") as f:
        data = json.load(f)
    return FactorGraphConfig.from_dict(data)


def save_config(config: FactorGraphConfig, path: Union[str, Path]) -> None:
    with open(path, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
