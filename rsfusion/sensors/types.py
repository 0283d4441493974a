"""
Sensor measurement containers for the estimation loop.

Every measurement is a time-stamped mean vector with its covariance, tagged
with the modality that produced it. Measurements are grouped per modality in
a SensorDataSet, each stream sorted by time.

Measurement layouts:
    GNSS_POSITION: ECEF position [x, y, z] (m)
    IMU:           [f_x, f_y, f_z, ω_x, ω_y, ω_z] specific force (m/s²) and
                   angular rate (rad/s) in the body frame
    ODOM3:         [v_x, v_y, v_z, ω_x, ω_y, ω_z] body velocity (m/s) and
                   angular rate (rad/s)

Time Base Convention:
    All timestamps are float seconds, non-decreasing within a stream.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

import numpy as np

# Two timestamps closer than this are treated as the same epoch
TIME_TOLERANCE = 1e-9


class SensorType(Enum):
    """Sensor modalities with their measurement dimension."""

    GNSS_POSITION = ("gnss", 3)
    IMU = ("imu", 6)
    ODOM3 = ("odom3", 6)

    def __init__(self, label: str, dim: int):
        self.label = label
        self.dim = dim

    @classmethod
    def from_label(cls, label: str) -> "SensorType":
        """Look up a modality by its file label ('gnss', 'imu', 'odom3')."""
        for sensor_type in cls:
            if sensor_type.label == label:
                return sensor_type
        raise ValueError(f"Unknown sensor type '{label}'")


@dataclass(frozen=True)
class SensorMeasurement:
    """
    A time-stamped sensor measurement.

    Attributes:
        sensor_type: SensorType of the producing modality.
        t: Timestamp in seconds.
        mean: Measurement vector (m,).
        covariance: Measurement covariance (m, m).

    Example:
        >>> fix = SensorMeasurement(
        ...     sensor_type=SensorType.GNSS_POSITION,
        ...     t=12.0,
        ...     mean=np.array([3907007.0, 896953.0, 4919472.0]),
        ...     covariance=np.diag([4.0, 4.0, 9.0]),
        ... )
    """

    sensor_type: SensorType
    t: float
    mean: np.ndarray
    covariance: np.ndarray

    def __post_init__(self) -> None:
        """Validate the measurement structure."""
        if not isinstance(self.sensor_type, SensorType):
            raise TypeError(f"sensor_type must be a SensorType, got {self.sensor_type!r}")

        if not np.isfinite(self.t):
            raise ValueError(f"Timestamp must be finite, got {self.t}")

        if self.mean.ndim != 1:
            raise ValueError(f"Measurement mean must be 1D, got shape {self.mean.shape}")

        m = len(self.mean)
        if m != self.sensor_type.dim:
            raise ValueError(
                f"{self.sensor_type.name} measurement needs {self.sensor_type.dim} values, got {m}"
            )

        if self.covariance.shape != (m, m):
            raise ValueError(
                f"Covariance shape {self.covariance.shape} incompatible with "
                f"measurement dimension {m}"
            )

        if not np.allclose(self.covariance, self.covariance.T):
            raise ValueError("Measurement covariance must be symmetric")

    @property
    def information(self) -> np.ndarray:
        return np.linalg.inv(self.covariance)

    def std_devs(self) -> np.ndarray:
        return np.sqrt(np.diag(self.covariance))


def stack_means(measurements: Iterable[SensorMeasurement]) -> np.ndarray:
    """Stack measurement means into an (N, m) array."""
    means = [m.mean for m in measurements]
    if not means:
        return np.zeros((0, 0))
    return np.vstack(means)


def stack_times(measurements: Iterable[SensorMeasurement]) -> np.ndarray:
    return np.array([m.t for m in measurements], dtype=float)


class SensorDataSet:
    """
    Measurements grouped by modality and sorted by time.

    Streams are sorted lazily on the first query after new data is added.
    Sorting is stable, so measurements sharing a timestamp keep their input
    order.
    """

    def __init__(self, measurements: Optional[Iterable[SensorMeasurement]] = None):
        self._streams: Dict[SensorType, List[SensorMeasurement]] = {}
        self._times: Dict[SensorType, np.ndarray] = {}
        self._dirty = set()
        if measurements is not None:
            self.add_many(measurements)

    def add(self, measurement: SensorMeasurement) -> None:
        self._streams.setdefault(measurement.sensor_type, []).append(measurement)
        self._dirty.add(measurement.sensor_type)

    def add_many(self, measurements: Iterable[SensorMeasurement]) -> None:
        for measurement in measurements:
            self.add(measurement)

    def _stream(self, sensor_type: SensorType) -> List[SensorMeasurement]:
        if sensor_type in self._dirty:
            self._streams[sensor_type].sort(key=lambda m: m.t)
            self._times[sensor_type] = stack_times(self._streams[sensor_type])
            self._dirty.discard(sensor_type)
        return self._streams.get(sensor_type, [])

    def _stream_times(self, sensor_type: SensorType) -> np.ndarray:
        self._stream(sensor_type)
        return self._times.get(sensor_type, np.zeros(0))

    def types(self) -> List[SensorType]:
        return [t for t in SensorType if self.count(t) > 0]

    def count(self, sensor_type: SensorType) -> int:
        return len(self._streams.get(sensor_type, []))

    def has(self, sensor_type: SensorType) -> bool:
        return self.count(sensor_type) > 0

    def get_stream(self, sensor_type: SensorType) -> List[SensorMeasurement]:
        """All measurements of a modality, sorted by time."""
        return list(self._stream(sensor_type))

    def get_at(self, sensor_type: SensorType, t: float) -> List[SensorMeasurement]:
        """Measurements of a modality stamped at t."""
        stream = self._stream(sensor_type)
        times = self._stream_times(sensor_type)
        lo = np.searchsorted(times, t - TIME_TOLERANCE, side="left")
        hi = np.searchsorted(times, t + TIME_TOLERANCE, side="right")
        return stream[lo:hi]

    def get_between(self, sensor_type: SensorType, t_start: float, t_end: float) -> List[SensorMeasurement]:
        """Measurements of a modality with t_start < t <= t_end."""
        stream = self._stream(sensor_type)
        times = self._stream_times(sensor_type)
        lo = np.searchsorted(times, t_start + TIME_TOLERANCE, side="left")
        hi = np.searchsorted(times, t_end + TIME_TOLERANCE, side="right")
        return stream[lo:hi]

    def timestamps(self, sensor_type: SensorType) -> np.ndarray:
        """Distinct timestamps of a modality, sorted."""
        return np.unique(self._stream_times(sensor_type))

    def first_timestamp(self, sensor_type: SensorType) -> Optional[float]:
        times = self._stream_times(sensor_type)
        return float(times[0]) if len(times) else None

    def last_timestamp(self, sensor_type: SensorType) -> Optional[float]:
        times = self._stream_times(sensor_type)
        return float(times[-1]) if len(times) else None

    def next_timestamp(self, sensor_type: SensorType, t: float) -> Optional[float]:
        """First timestamp of a modality strictly after t, or None."""
        times = self._stream_times(sensor_type)
        idx = np.searchsorted(times, t + TIME_TOLERANCE, side="right")
        return float(times[idx]) if idx < len(times) else None

    def __len__(self) -> int:
        return sum(len(stream) for stream in self._streams.values())

    def __repr__(self) -> str:
        counts = ", ".join(f"{t.label}={self.count(t)}" for t in self.types())
        return f"SensorDataSet({counts})"
