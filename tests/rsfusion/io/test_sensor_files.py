"""Unit tests for the sensor file reader and the result writers."""

import numpy as np
import pytest

from rsfusion.estimators import IterationSummary
from rsfusion.fusion.results import StateDataSet
from rsfusion.io import (
    ProgressReporter,
    parse_measurement_line,
    read_sensor_file,
    read_states,
    write_sensor_file,
    write_states,
    write_summaries,
)
from rsfusion.sensors import SensorMeasurement, SensorType


class TestParseLine:

    def test_gnss_line(self):
        m = parse_measurement_line("gnss 12.5 4000000 900000 4900000 2 2 3")
        assert m.sensor_type is SensorType.GNSS_POSITION
        assert m.t == 12.5
        np.testing.assert_allclose(m.mean, [4e6, 9e5, 4.9e6])
        np.testing.assert_allclose(np.diag(m.covariance), [4.0, 4.0, 9.0])

    def test_mixed_whitespace(self):
        m = parse_measurement_line("gnss\t12.5  4000000 900000\t4900000   2 2 3\n")
        assert m.sensor_type is SensorType.GNSS_POSITION
        np.testing.assert_allclose(m.mean, [4e6, 9e5, 4.9e6])

    def test_unknown_label(self):
        with pytest.raises(KeyError):
            parse_measurement_line("uwb 0.0 1 2 3 1 1 1")

    def test_wrong_field_count(self):
        with pytest.raises(ValueError, match="Line 7"):
            parse_measurement_line("gnss 0.0 1 2 3 1 1", line_number=7)

    def test_not_a_number(self):
        with pytest.raises(ValueError, match="Line 3"):
            parse_measurement_line("gnss 0.0 1 2 x 1 1 1", line_number=3)

    def test_non_positive_std(self):
        with pytest.raises(ValueError, match="positive"):
            parse_measurement_line("gnss 0.0 1 2 3 1 0 1")


class TestReadSensorFile:

    def test_round_trip(self, tmp_path):
        path = tmp_path / "sensors.txt"
        measurements = [
            SensorMeasurement(SensorType.GNSS_POSITION, 0.0, np.array([1.0, 2.0, 3.0]), np.diag([1.0, 4.0, 9.0])),
            SensorMeasurement(SensorType.IMU, 0.01, np.array([0.1, 0.0, 9.8, 0.0, 0.0, 0.01]), 1e-4 * np.eye(6)),
            SensorMeasurement(SensorType.ODOM3, 0.1, np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.2]), 0.01 * np.eye(6)),
        ]
        write_sensor_file(path, measurements)

        data = read_sensor_file(path)

        assert len(data) == 3
        assert data.types() == [SensorType.GNSS_POSITION, SensorType.IMU, SensorType.ODOM3]
        odom = data.get_stream(SensorType.ODOM3)[0]
        np.testing.assert_allclose(odom.mean, measurements[2].mean)
        np.testing.assert_allclose(odom.covariance, measurements[2].covariance)

    def test_comments_and_unknown_types(self, tmp_path):
        path = tmp_path / "sensors.txt"
        path.write_text(
            "# header\n"
            "\n"
            "gnss 0.0 1 2 3 1 1 1\n"
            "uwb 0.5 1 2 3 1 1 1\n"
            "uwb 0.6 1 2 3 1 1 1\n"
        )
        with pytest.warns(UserWarning, match="2 lines of unknown sensor type 'uwb'"):
            data = read_sensor_file(path)
        assert len(data) == 1

    def test_malformed_line_names_line(self, tmp_path):
        path = tmp_path / "sensors.txt"
        path.write_text("gnss 0.0 1 2 3 1 1 1\nimu 0.1 1 2 3\n")
        with pytest.raises(ValueError, match="Line 2"):
            read_sensor_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_sensor_file(tmp_path / "missing.txt")


class TestResultFiles:

    def test_states_and_summaries(self, tmp_path):
        result = StateDataSet()
        result.add("position", 0.0, np.array([1.0, 2.0, 3.0]))
        result.add("position", 1.0, np.array([1.5, 2.5, 3.5]))
        result.add("orientation", 1.0, np.array([0.25]))
        result.add_summary(IterationSummary(timestamp=0.0, iterations=7, final_cost=0.5,
                                            converged=True, forced=True))
        result.add_summary(IterationSummary(timestamp=1.0, iterations=2))

        path = tmp_path / "out" / "result.txt"
        assert write_states(path, "position", result) == 2
        assert write_states(path, "orientation", result, append=True) == 1
        assert write_states(path, "velocity", result, append=True) == 0
        assert write_summaries(path, result, append=True) == 2

        loaded = read_states(path)

        np.testing.assert_allclose(loaded.means("position"), result.means("position"))
        np.testing.assert_allclose(loaded.means("orientation"), [[0.25]])
        assert not loaded.has("velocity")
        first = loaded.summaries[0]
        assert first.iterations == 7
        assert first.converged and first.forced
        assert not loaded.summaries[1].forced

    def test_overwrite(self, tmp_path):
        result = StateDataSet()
        result.add("position", 0.0, np.zeros(3))
        path = tmp_path / "result.txt"
        write_states(path, "position", result)
        write_states(path, "position", result)
        assert read_states(path).count("position") == 1

    def test_bad_summary(self, tmp_path):
        path = tmp_path / "result.txt"
        path.write_text("summary 0.0 1 2 3\n")
        with pytest.raises(ValueError, match="10 values"):
            read_states(path)


class TestProgressReporter:

    def test_only_moves_forward(self):
        with ProgressReporter(enabled=False) as progress:
            progress.update(40.0)
            progress.update(20.0)
            assert progress.percent == 40.0
            progress.update(250.0)
            assert progress.percent == 100.0
