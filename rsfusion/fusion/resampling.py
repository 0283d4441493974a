"""Fixed-interval down-sampling of measurement streams.

High-rate streams (IMU) can be thinned before estimation by grouping the
measurements into periods of a fixed sample time and replacing each group by
its average. Averaging combines the group as independent observations of the
same quantity: the mean and timestamp are averaged and the information
matrices are summed.

Empty input is a degenerate case, not an error: it issues a UserWarning and
returns a result classified EMPTY so the caller can decide how to proceed.
"""

import warnings
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from rsfusion.sensors.types import SensorMeasurement


class ResampleStatus(Enum):
    OK = "ok"
    EMPTY = "empty"


@dataclass
class ResampleResult:
    """
    Outcome of a down-sampling or averaging call.

    Attributes:
        status: OK, or EMPTY when there was no input.
        measurements: Output measurements (empty for EMPTY).
    """

    status: ResampleStatus
    measurements: List[SensorMeasurement] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is ResampleStatus.OK

    @property
    def measurement(self) -> Optional[SensorMeasurement]:
        """Single output of average_measurement (None for EMPTY)."""
        return self.measurements[0] if self.measurements else None


def _empty_result() -> ResampleResult:
    warnings.warn("There is no measurement to resample", UserWarning)
    return ResampleResult(ResampleStatus.EMPTY)


def average_measurement(measurements: Sequence[SensorMeasurement]) -> ResampleResult:
    """
    Average a group of measurements of one modality.

    The result takes the mean of the means and of the timestamps; its
    covariance is the inverse of the summed information matrices. A single
    measurement is returned unchanged.

    Args:
        measurements: Measurements of one SensorType.

    Returns:
        ResampleResult with one measurement, or EMPTY.
    """
    if len(measurements) == 0:
        return _empty_result()

    if len(measurements) == 1:
        return ResampleResult(ResampleStatus.OK, [measurements[0]])

    sensor_types = {m.sensor_type for m in measurements}
    if len(sensor_types) != 1:
        raise ValueError(f"Cannot average measurements of different types: {sensor_types}")

    t = float(np.mean([m.t for m in measurements]))
    mean = np.mean([m.mean for m in measurements], axis=0)
    information = np.sum([np.linalg.inv(m.covariance) for m in measurements], axis=0)
    covariance = np.linalg.inv(information)
    covariance = 0.5 * (covariance + covariance.T)

    averaged = replace(measurements[-1], t=t, mean=mean, covariance=covariance)
    return ResampleResult(ResampleStatus.OK, [averaged])


def sample_measurements_down(
    measurements: Sequence[SensorMeasurement],
    sample_time: float,
) -> ResampleResult:
    """
    Group a time-sorted stream into periods of sample_time and average each.

    A group closes at the first measurement at or after the period end (or at
    the last measurement). The period end then advances by one sample_time.
    Each output carries the timestamp of the last measurement of its group.

    Args:
        measurements: Time-sorted measurements of one SensorType.
        sample_time: Period length. Units: s.

    Returns:
        ResampleResult with the averaged stream, or EMPTY.

    Raises:
        ValueError: If sample_time is not positive.
    """
    if sample_time <= 0:
        raise ValueError(f"sample_time must be positive, got {sample_time}")

    if len(measurements) == 0:
        return _empty_result()

    time_next = measurements[0].t + sample_time
    time_max = measurements[-1].t

    output: List[SensorMeasurement] = []
    window: List[SensorMeasurement] = []
    for measurement in measurements:
        window.append(measurement)

        if measurement.t >= time_next or measurement.t == time_max:
            averaged = average_measurement(window).measurement
            output.append(replace(averaged, t=window[-1].t))
            window = []
            time_next += sample_time

    return ResampleResult(ResampleStatus.OK, output)
