"""
Input/output collaborators of the estimation loop.

Modules:
    sensor_files: Sensor file reader and result writer
    progress: tqdm progress reporter
"""

from rsfusion.io.progress import ProgressReporter
from rsfusion.io.sensor_files import (
    parse_measurement_line,
    read_sensor_file,
    read_states,
    write_sensor_file,
    write_states,
    write_summaries,
)

__all__ = [
    "ProgressReporter",
    "parse_measurement_line",
    "read_sensor_file",
    "write_sensor_file",
    "write_states",
    "write_summaries",
    "read_states",
]
