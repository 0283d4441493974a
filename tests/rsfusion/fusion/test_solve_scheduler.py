"""Unit tests for solve scheduling."""

import pytest

from rsfusion.fusion.config import SolverConfig
from rsfusion.fusion.scheduler import SolveScheduler, force_solve


class TestForceSolve:

    @pytest.mark.parametrize("time_now,dt,expected", [
        (60.0, 1.0, True),        # exactly on the period
        (120.5, 1.0, True),       # 0.5 < 1.1
        (61.0, 1.0, True),        # 1.0 < 1.1
        (61.2, 1.0, False),       # 1.2 >= 1.1
        (125.0, 1.0, False),
        (30.0, 1.0, False),
        (60.05, 0.1, True),       # 0.05 < 0.11
        (60.2, 0.1, False),
    ])
    def test_formula(self, time_now, dt, expected):
        assert force_solve(time_now, dt) is expected

    def test_about_once_per_period(self):
        """With 1 s steps the rule fires twice around each boundary (T mod 60 in {0, 1})."""
        fired = [t for t in range(1, 301) if force_solve(float(t), 1.0)]
        assert fired == [1, 60, 61, 120, 121, 180, 181, 240, 241, 300]


class TestSolveScheduler:

    def setup_method(self):
        self.solver = SolverConfig(max_iterations=25, incremental_iterations=4)
        self.scheduler = SolveScheduler(self.solver)

    def test_first_and_last_forced(self):
        assert self.scheduler.should_force(10.0, 9.0, is_first=True, is_last=False)
        assert self.scheduler.should_force(10.0, 9.0, is_first=False, is_last=True)

    def test_periodic(self):
        assert not self.scheduler.should_force(10.0, 9.0, is_first=False, is_last=False)
        assert self.scheduler.should_force(120.0, 119.0, is_first=False, is_last=False)

    def test_settings_and_counters(self):
        thorough = self.scheduler.settings(True)
        incremental = self.scheduler.settings(False)
        self.scheduler.settings(False)
        assert thorough.max_iterations == 25
        assert incremental.max_iterations == 4
        assert self.scheduler.num_forced == 1
        assert self.scheduler.num_incremental == 2
