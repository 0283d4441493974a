"""Unit tests for the StateDataSet result container."""

import numpy as np
import pytest

from rsfusion.estimators import IterationSummary
from rsfusion.fusion.results import StateDataSet


class TestStateDataSet:

    def test_add_and_query(self):
        result = StateDataSet()
        result.add("position", 0.0, [0.0, 0.0, 0.0])
        result.add("position", 1.0, [1.0, 0.0, 0.0])
        assert result.has("position")
        assert not result.has("velocity")
        assert result.names() == ["position"]
        assert result.count("position") == 2
        np.testing.assert_allclose(result.times("position"), [0.0, 1.0])
        assert result.means("position").shape == (2, 3)
        assert result.means("velocity").shape == (0, 0)

    def test_same_timestamp_replaces(self):
        result = StateDataSet()
        result.add("position", 0.0, [0.0, 0.0, 0.0])
        result.add("position", 1.0, [1.0, 0.0, 0.0])
        result.add("position", 1.0, [2.0, 0.0, 0.0])
        assert result.count("position") == 2
        np.testing.assert_allclose(result.means("position")[-1], [2.0, 0.0, 0.0])

    def test_out_of_order_rejected(self):
        result = StateDataSet()
        result.add("position", 1.0, np.zeros(3))
        with pytest.raises(ValueError, match="time order"):
            result.add("position", 0.5, np.zeros(3))

    def test_stored_copy(self):
        mean = np.zeros(3)
        result = StateDataSet()
        result.add("position", 0.0, mean)
        mean[0] = 5.0
        assert result.get_series("position")[0].mean[0] == 0.0

    def test_summaries_replace_same_timestamp(self):
        result = StateDataSet()
        result.add_summary(IterationSummary(timestamp=0.0))
        result.add_summary(IterationSummary(timestamp=1.0, forced=False))
        result.add_summary(IterationSummary(timestamp=1.0, forced=True))
        assert len(result.summaries) == 2
        assert result.summaries[-1].forced
        assert "summaries=2" in repr(result)
