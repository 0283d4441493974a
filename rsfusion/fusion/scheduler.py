"""Solve scheduling of the estimation loop.

Most timesteps get a cheap incremental solve. A thorough solve is forced

    - at the first timestep (before the window starts retiring states),
    - roughly once per FORCE_PERIOD of data time:
          force_solve(T, dt) := (T mod FORCE_PERIOD) < FORCE_MARGIN · dt
      where the margin tolerates uneven step sizes around the boundary,
    - at the last timestep, to produce the reported final result.
"""

from rsfusion.estimators.factor_graph import SolveSettings
from rsfusion.fusion.config import SolverConfig

FORCE_PERIOD = 60.0
FORCE_MARGIN = 1.1


def force_solve(time_now: float, dt: float) -> bool:
    """
    Periodic force rule.

    Args:
        time_now: Current timestamp T. Units: s.
        dt: Step to the previous timestamp. Units: s.

    Returns:
        True iff (T mod 60) < 1.1 · dt.

    Example:
        >>> force_solve(120.5, 1.0)
        True
        >>> force_solve(125.0, 1.0)
        False
    """
    return (time_now % FORCE_PERIOD) < FORCE_MARGIN * dt


class SolveScheduler:
    """Decides per timestep between an incremental and a thorough solve."""

    def __init__(self, solver_config: SolverConfig):
        self.solver_config = solver_config
        self.num_forced = 0
        self.num_incremental = 0

    def should_force(self, time_now: float, time_old: float, is_first: bool, is_last: bool) -> bool:
        if is_first or is_last:
            return True
        return force_solve(time_now, time_now - time_old)

    def settings(self, force: bool) -> SolveSettings:
        """SolveSettings for a thorough (force=True) or incremental solve."""
        if force:
            self.num_forced += 1
            return self.solver_config.thorough_settings()
        self.num_incremental += 1
        return self.solver_config.incremental_settings()
