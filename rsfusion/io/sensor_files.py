"""
Reading sensor files and writing estimation results.

Sensor file format (whitespace separated, one measurement per line):

    <type> <t> <mean_1> ... <mean_m> <std_1> ... <std_m>

with type one of 'gnss' (m = 3, ECEF meters), 'imu' (m = 6) or 'odom3'
(m = 6). Blank lines and lines starting with '#' are ignored. Lines with an
unknown type are skipped with a warning; malformed lines raise ValueError
naming the line number.

Result file format:

    <state name> <t> <mean_1> ... <mean_n>
    summary <t> <predict> <measure> <solve> <total> <iterations> <initial cost>
            <final cost> <converged> <forced>
"""

import warnings
from pathlib import Path
from typing import Iterable, List, Union

import numpy as np

from rsfusion.estimators.factor_graph import IterationSummary
from rsfusion.fusion.results import StateDataSet
from rsfusion.sensors.types import SensorDataSet, SensorMeasurement, SensorType

SUMMARY_TAG = "summary"


def parse_measurement_line(line: str, line_number: int = 0) -> SensorMeasurement:
    """
    Parse one line of a sensor file.

    Raises:
        KeyError: If the type label is unknown.
        ValueError: If the line is malformed.
    """
    # A text label leads the numeric fields, so lines are split here rather
    # than read with np.loadtxt
    tokens = line.split()
    label = tokens[0]
    try:
        sensor_type = SensorType.from_label(label)
    except ValueError:
        raise KeyError(label) from None

    m = sensor_type.dim
    if len(tokens) != 2 + 2 * m:
        raise ValueError(
            f"Line {line_number}: '{label}' needs {2 + 2 * m} fields, got {len(tokens)}"
        )

    try:
        values = np.array([float(v) for v in tokens[1:]])
    except ValueError as e:
        raise ValueError(f"Line {line_number}: {e}") from None

    std = values[1 + m:]
    if np.any(std <= 0):
        raise ValueError(f"Line {line_number}: standard deviations must be positive, got {std}")

    try:
        return SensorMeasurement(
            sensor_type=sensor_type,
            t=float(values[0]),
            mean=values[1:1 + m],
            covariance=np.diag(std ** 2),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Line {line_number}: {e}") from None


def read_sensor_file(path: Union[str, Path]) -> SensorDataSet:
    """
    Load a sensor file into a SensorDataSet.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: On the first malformed line.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sensor file not found: {path}")

    dataset = SensorDataSet()
    unknown = {}
    with open(path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                dataset.add(parse_measurement_line(line, line_number))
            except KeyError as e:
                label = e.args[0]
                unknown[label] = unknown.get(label, 0) + 1

    for label, count in unknown.items():
        warnings.warn(f"Skipped {count} lines of unknown sensor type '{label}' in {path}", UserWarning)

    return dataset


def write_sensor_file(path: Union[str, Path], measurements: Iterable[SensorMeasurement]) -> None:
    """Write measurements in the sensor file format (diagonal covariances only)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for m in measurements:
            values = np.concatenate([[m.t], m.mean, m.std_devs()])
            f.write(m.sensor_type.label + " " + " ".join(f"{v:.12g}" for v in values) + "\n")


def write_states(
    path: Union[str, Path],
    state_name: str,
    result: StateDataSet,
    append: bool = False,
) -> int:
    """
    Write one state series of a result.

    Args:
        path: Output file.
        state_name: Name of the series, e.g. 'position'.
        result: StateDataSet holding the series.
        append: Append to an existing file instead of overwriting it.

    Returns:
        Number of records written (0 if the series does not exist).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    records = result.get_series(state_name)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        for record in records:
            values = np.concatenate([[record.t], np.atleast_1d(record.mean)])
            f.write(state_name + " " + " ".join(f"{v:.12g}" for v in values) + "\n")
    return len(records)


def write_summaries(path: Union[str, Path], result: StateDataSet, append: bool = False) -> int:
    """Write the iteration summaries of a result (solve-time export)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        for s in result.summaries:
            values = [
                s.timestamp, s.predict_duration, s.measure_duration, s.solve_duration,
                s.total_duration, s.iterations, s.initial_cost, s.final_cost,
                int(s.converged), int(s.forced),
            ]
            f.write(SUMMARY_TAG + " " + " ".join(f"{v:.12g}" for v in values) + "\n")
    return len(result.summaries)


def read_states(path: Union[str, Path]) -> StateDataSet:
    """Load a result file written by write_states / write_summaries."""
    result = StateDataSet()
    with open(path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            tokens = line.split()
            if not tokens:
                continue
            try:
                values = [float(v) for v in tokens[1:]]
            except ValueError as e:
                raise ValueError(f"Line {line_number}: {e}") from None
            if len(values) < 2:
                raise ValueError(f"Line {line_number}: expected a timestamp and values")

            if tokens[0] == SUMMARY_TAG:
                result.add_summary(_summary_from_values(values, line_number))
            else:
                result.add(tokens[0], values[0], np.array(values[1:]))
    return result


def _summary_from_values(values: List[float], line_number: int) -> IterationSummary:
    if len(values) != 10:
        raise ValueError(f"Line {line_number}: summary needs 10 values, got {len(values)}")
    return IterationSummary(
        timestamp=values[0],
        predict_duration=values[1],
        measure_duration=values[2],
        solve_duration=values[3],
        total_duration=values[4],
        iterations=int(values[5]),
        initial_cost=values[6],
        final_cost=values[7],
        converged=bool(values[8]),
        forced=bool(values[9]),
    )
