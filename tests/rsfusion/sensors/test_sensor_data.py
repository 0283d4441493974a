"""Unit tests for sensor measurements and the per-modality SensorDataSet."""

import numpy as np
import pytest

from rsfusion.sensors import SensorDataSet, SensorMeasurement, SensorType
from rsfusion.sensors.types import stack_means, stack_times


def gnss(t, x=0.0):
    return SensorMeasurement(SensorType.GNSS_POSITION, t, np.array([x, 0.0, 0.0]), np.eye(3))


def imu(t):
    return SensorMeasurement(SensorType.IMU, t, np.zeros(6), np.eye(6))


class TestSensorType:

    def test_labels(self):
        assert SensorType.from_label("gnss") is SensorType.GNSS_POSITION
        assert SensorType.from_label("odom3") is SensorType.ODOM3
        assert SensorType.IMU.dim == 6

    def test_unknown_label(self):
        with pytest.raises(ValueError):
            SensorType.from_label("uwb")


class TestSensorMeasurement:

    def test_valid(self):
        m = gnss(1.0)
        np.testing.assert_allclose(m.std_devs(), np.ones(3))
        np.testing.assert_allclose(m.information, np.eye(3))

    def test_wrong_dimension(self):
        with pytest.raises(ValueError, match="needs 3 values"):
            SensorMeasurement(SensorType.GNSS_POSITION, 0.0, np.zeros(2), np.eye(2))

    def test_wrong_covariance(self):
        with pytest.raises(ValueError):
            SensorMeasurement(SensorType.GNSS_POSITION, 0.0, np.zeros(3), np.eye(2))
        with pytest.raises(ValueError, match="symmetric"):
            SensorMeasurement(SensorType.GNSS_POSITION, 0.0, np.zeros(3), np.triu(np.ones((3, 3))))

    def test_non_finite_time(self):
        with pytest.raises(ValueError):
            gnss(np.nan)

    def test_wrong_type(self):
        with pytest.raises(TypeError):
            SensorMeasurement("gnss", 0.0, np.zeros(3), np.eye(3))

    def test_stacking(self):
        ms = [gnss(0.0, 1.0), gnss(1.0, 2.0)]
        assert stack_means(ms).shape == (2, 3)
        np.testing.assert_allclose(stack_times(ms), [0.0, 1.0])
        assert stack_means([]).shape == (0, 0)


class TestSensorDataSet:

    def setup_method(self):
        self.data = SensorDataSet([gnss(2.0, 2.0), gnss(0.0, 0.0), gnss(1.0, 1.0), gnss(1.0, 1.5)])
        self.data.add_many(imu(t) for t in np.arange(0.01, 2.005, 0.01))

    def test_sorted_streams(self):
        stream = self.data.get_stream(SensorType.GNSS_POSITION)
        assert [m.t for m in stream] == [0.0, 1.0, 1.0, 2.0]
        # Stable for equal timestamps
        assert [m.mean[0] for m in stream] == [0.0, 1.0, 1.5, 2.0]

    def test_counts_and_types(self):
        assert self.data.count(SensorType.GNSS_POSITION) == 4
        assert self.data.has(SensorType.IMU)
        assert not self.data.has(SensorType.ODOM3)
        assert self.data.types() == [SensorType.GNSS_POSITION, SensorType.IMU]
        assert len(self.data) == 4 + 200

    def test_get_at(self):
        assert len(self.data.get_at(SensorType.GNSS_POSITION, 1.0)) == 2
        assert self.data.get_at(SensorType.GNSS_POSITION, 1.5) == []
        assert self.data.get_at(SensorType.ODOM3, 1.0) == []

    def test_get_between_is_half_open(self):
        samples = self.data.get_between(SensorType.IMU, 0.5, 1.0)
        assert len(samples) == 50
        assert samples[0].t > 0.5
        assert samples[-1].t == pytest.approx(1.0)

    def test_timestamps(self):
        np.testing.assert_allclose(self.data.timestamps(SensorType.GNSS_POSITION), [0.0, 1.0, 2.0])
        assert self.data.first_timestamp(SensorType.GNSS_POSITION) == 0.0
        assert self.data.last_timestamp(SensorType.GNSS_POSITION) == 2.0
        assert self.data.first_timestamp(SensorType.ODOM3) is None

    def test_next_timestamp_strictly_after(self):
        assert self.data.next_timestamp(SensorType.GNSS_POSITION, 0.0) == 1.0
        assert self.data.next_timestamp(SensorType.GNSS_POSITION, 1.0) == 2.0
        assert self.data.next_timestamp(SensorType.GNSS_POSITION, 2.0) is None

    def test_adding_after_query_resorts(self):
        self.data.get_stream(SensorType.GNSS_POSITION)
        self.data.add(gnss(0.5))
        assert self.data.next_timestamp(SensorType.GNSS_POSITION, 0.0) == 0.5
