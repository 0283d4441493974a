"""Estimation loop: incremental factor-graph fusion over a sensor timeline.

The loop walks the timestamps of the clock modality from the first to the
last one. Per timestep:

    1. predict (skipped at the first timestep)
    2. measure
    3. scheduled solve, then freeze every state older than the window
    4. record the iteration summary and the current estimates

The first timestep gets one extra thorough solve before the scheduled one.
After the last timestep a final thorough solve produces the reported result,
which is then converted back to ECEF when GNSS placed the local frame.
"""

import sys
import time
from typing import Optional

from rsfusion.coords.tangent_plane import TangentPlaneConverter
from rsfusion.estimators.factor_graph import FactorGraph, IterationSummary
from rsfusion.fusion.config import FactorGraphConfig
from rsfusion.fusion.drivers import measure, predict
from rsfusion.fusion.initialization import Initializer
from rsfusion.fusion.results import StateDataSet
from rsfusion.fusion.scheduler import SolveScheduler
from rsfusion.fusion.states import EXPORTED_STATES, POSITION_STATE
from rsfusion.io.progress import ProgressReporter
from rsfusion.io.sensor_files import read_sensor_file, write_states
from rsfusion.sensors.types import SensorDataSet, SensorType

# Modalities that can drive the timeline, by preference
_CLOCK_ORDER = (
    ("gnss", SensorType.GNSS_POSITION),
    ("odom", SensorType.ODOM3),
    ("imu", SensorType.IMU),
)


def clock_sensor(config: FactorGraphConfig, measurements: SensorDataSet) -> Optional[SensorType]:
    """
    Modality whose timestamps define the timesteps.

    The first active modality with data in the order GNSS, Odom, IMU. With no
    active modality the first one present in the data is used, so a
    prior-only run still has a timeline.
    """
    for section, sensor_type in _CLOCK_ORDER:
        if getattr(config, section).active and measurements.has(sensor_type):
            return sensor_type
    if not config.any_active:
        for _, sensor_type in _CLOCK_ORDER:
            if measurements.has(sensor_type):
                return sensor_type
    return None


def get_first_timestamp(config: FactorGraphConfig, measurements: SensorDataSet) -> Optional[float]:
    sensor_type = clock_sensor(config, measurements)
    return None if sensor_type is None else measurements.first_timestamp(sensor_type)


def get_last_timestamp(config: FactorGraphConfig, measurements: SensorDataSet) -> Optional[float]:
    sensor_type = clock_sensor(config, measurements)
    return None if sensor_type is None else measurements.last_timestamp(sensor_type)


def increment_time(
    config: FactorGraphConfig,
    measurements: SensorDataSet,
    time_now: float,
    time_last: float,
) -> Optional[float]:
    """Next timestep after time_now, or None once time_last has been processed."""
    sensor_type = clock_sensor(config, measurements)
    if sensor_type is None:
        return None
    time_next = measurements.next_timestamp(sensor_type, time_now)
    if time_next is None or time_next > time_last:
        return None
    return time_next


def solve_step(
    graph: FactorGraph,
    config: FactorGraphConfig,
    scheduler: SolveScheduler,
    summary: IterationSummary,
    force: bool,
) -> IterationSummary:
    """
    Solve with the scheduled intensity, then retire states outside the window.

    The solver statistics are copied into summary, which is returned.
    """
    stats = graph.solve(scheduler.settings(force))
    graph.set_all_constant_outside_window(config.window_length, summary.timestamp)

    summary.forced = force
    summary.solve_duration = stats.solve_duration
    summary.iterations = stats.iterations
    summary.initial_cost = stats.initial_cost
    summary.final_cost = stats.final_cost
    summary.converged = stats.converged
    summary.num_free_states = stats.num_free_states
    summary.num_active_factors = stats.num_active_factors
    summary.num_factors = stats.num_factors
    summary.dof = stats.dof
    summary.chi2_threshold = stats.chi2_threshold
    summary.consistent = stats.consistent
    return summary


def save_step(graph: FactorGraph, summary: IterationSummary, result: StateDataSet, time_now: float) -> None:
    """
    Append the current estimates at time_now and the summary to the result.

    Saving the same timestamp again (the final solve) replaces the records.
    """
    for name in EXPORTED_STATES:
        if graph.has_state(name, time_now):
            result.add(name, time_now, graph.get_mean(name, time_now))
    result.add_summary(summary)


class EstimationRun:
    """
    One estimation run over a sensor data set.

    Owns the graph, the local frame converter, the scheduler and the
    initializer for the lifetime of the run.

    Attributes:
        config: Run configuration.
        measurements: Sensor data.
        result: StateDataSet filled by run().
        graph: FactorGraph of the run.
        converter: TangentPlaneConverter of the run.
        scheduler: SolveScheduler of the run.
        initializer: Initializer of the run.
    """

    def __init__(
        self,
        config: FactorGraphConfig,
        measurements: SensorDataSet,
        result: Optional[StateDataSet] = None,
        verbose: bool = False,
        show_progress: bool = False,
    ):
        self.config = config
        self.measurements = measurements
        self.result = result if result is not None else StateDataSet()
        self.verbose = verbose
        self.show_progress = show_progress

        self.graph = FactorGraph()
        self.converter = TangentPlaneConverter()
        self.scheduler = SolveScheduler(config.solver)
        self.initializer = Initializer(config, verbose=verbose)

    def run(self) -> int:
        """
        Process the whole timeline.

        Returns:
            0 on success, 1 if the first or last timestamp cannot be found.
        """
        config = self.config
        graph = self.graph

        time_first = get_first_timestamp(config, self.measurements)
        if time_first is None:
            print("Error: could not find the first timestamp", file=sys.stderr)
            return 1
        time_last = get_last_timestamp(config, self.measurements)
        if time_last is None:
            print("Error: could not find the last timestamp", file=sys.stderr)
            return 1

        if self.verbose:
            print("=" * 70)
            print("Factor graph estimation")
            print("=" * 70)
            print(f"  Data: {self.measurements}")
            print(f"  Time span: {time_first:.3f} s -> {time_last:.3f} s")

        self.initializer.init_graph(graph, self.measurements, self.converter, time_first)

        time_old = time_first - 1.0
        time_now = time_first
        prior_pending = True
        span = time_last - time_first

        with ProgressReporter(enabled=self.show_progress) as progress:
            while True:
                summary = IterationSummary(timestamp=time_now)
                start = time.perf_counter()
                is_first = time_now == time_first

                if not is_first:
                    t0 = time.perf_counter()
                    predict(graph, config, self.measurements, time_old, time_now)
                    summary.predict_duration = time.perf_counter() - t0

                t0 = time.perf_counter()
                outcome = measure(
                    graph, config, self.measurements, time_old, time_now,
                    self.converter, apply_prior=prior_pending,
                )
                summary.measure_duration = time.perf_counter() - t0
                if outcome.prior_added:
                    prior_pending = False

                if is_first:
                    # Settle the robust error models before the window retires states
                    graph.solve(config.solver.thorough_settings())

                force = self.scheduler.should_force(time_now, time_old, is_first, is_last=False)
                solve_step(graph, config, self.scheduler, summary, force)
                summary.total_duration = time.perf_counter() - start
                save_step(graph, summary, self.result, time_now)

                progress.update(100.0 if span <= 0 else (time_now - time_first) / span * 100.0)

                time_next = increment_time(config, self.measurements, time_now, time_last)
                if time_next is None:
                    break
                time_old, time_now = time_now, time_next

            summary = IterationSummary(timestamp=time_now)
            start = time.perf_counter()
            force = self.scheduler.should_force(time_now, time_old, is_first=False, is_last=True)
            solve_step(graph, config, self.scheduler, summary, force)
            summary.total_duration = time.perf_counter() - start
            save_step(graph, summary, self.result, time_now)
            progress.update(100.0)

        if config.gnss.active and self.converter.is_initialized():
            if config.output_file:
                write_states(config.output_file + "_local", POSITION_STATE, self.result)
            self.converter.convert_all_states_to_global(self.result, POSITION_STATE)

        if self.verbose:
            graph.print_report()

        return 0


def create_graph_and_solve(
    config: FactorGraphConfig,
    result: StateDataSet,
    measurements: Optional[SensorDataSet] = None,
    verbose: bool = False,
    show_progress: bool = True,
) -> int:
    """
    Read the input (unless measurements are given) and run the estimation.

    Args:
        config: Run configuration.
        result: StateDataSet receiving the estimates and summaries.
        measurements: Sensor data; read from config.input_file if None.
        verbose: Print run narration and the final graph report.
        show_progress: Show a progress bar.

    Returns:
        Exit code: 0 on success, 1 on a fatal start condition.
    """
    if measurements is None:
        measurements = read_sensor_file(config.input_file)

    run = EstimationRun(config, measurements, result, verbose=verbose, show_progress=show_progress)
    return run.run()
