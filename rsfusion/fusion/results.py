"""Result container of an estimation run."""

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from rsfusion.estimators.factor_graph import IterationSummary


@dataclass
class StateRecord:
    """Estimate of one state at one timestamp."""

    t: float
    mean: np.ndarray


class StateDataSet:
    """
    Time-ordered state estimates per state name, plus the iteration summaries.

    Records are appended by the estimation loop in time order. A record for a
    timestamp that matches the last one of its series replaces it, so the
    final solve can overwrite the last saved epoch.

    Attributes:
        summaries: IterationSummary per processed timestep.
    """

    def __init__(self):
        self._series: Dict[str, List[StateRecord]] = {}
        self.summaries: List[IterationSummary] = []

    def add(self, name: str, t: float, mean: np.ndarray) -> None:
        series = self._series.setdefault(name, [])
        record = StateRecord(float(t), np.array(mean, dtype=float))
        if series and series[-1].t == record.t:
            series[-1] = record
        elif series and series[-1].t > record.t:
            raise ValueError(
                f"Records of '{name}' must be added in time order: {record.t} after {series[-1].t}"
            )
        else:
            series.append(record)

    def add_summary(self, summary: IterationSummary) -> None:
        if self.summaries and self.summaries[-1].timestamp == summary.timestamp:
            self.summaries[-1] = summary
        else:
            self.summaries.append(summary)

    def has(self, name: str) -> bool:
        return bool(self._series.get(name))

    def names(self) -> List[str]:
        return [name for name, series in self._series.items() if series]

    def get_series(self, name: str) -> List[StateRecord]:
        """Live list of records for a state name (empty if unknown)."""
        return self._series.get(name, [])

    def count(self, name: str) -> int:
        return len(self.get_series(name))

    def times(self, name: str) -> np.ndarray:
        return np.array([r.t for r in self.get_series(name)], dtype=float)

    def means(self, name: str) -> np.ndarray:
        """Stacked means (N, d); empty (0, 0) array for an unknown name."""
        series = self.get_series(name)
        if not series:
            return np.zeros((0, 0))
        return np.vstack([r.mean for r in series])

    def __repr__(self) -> str:
        counts = ", ".join(f"{name}={len(s)}" for name, s in self._series.items())
        return f"StateDataSet({counts}, summaries={len(self.summaries)})"
