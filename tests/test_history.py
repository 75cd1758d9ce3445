"""
History Buffer Tests
====================
"""

import pytest

from mcp_bridge.bridge import HistoryBuffer
from mcp_bridge.models import Direction, HistoryRecord


def _record(i: int) -> HistoryRecord:
    return HistoryRecord(direction=Direction.SOURCE_TO_SINK, data={"seq": i})


class TestHistoryBuffer:
    """Ring-buffer semantics."""

    def test_default_capacity_is_100(self):
        assert HistoryBuffer().capacity == 100

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            HistoryBuffer(capacity=0)

    def test_append_within_capacity(self):
        history = HistoryBuffer(capacity=3)
        assert history.append(_record(1)) is True
        assert history.append(_record(2)) is True
        assert len(history) == 2
        assert history.evicted_count == 0

    def test_101st_record_evicts_exactly_the_oldest(self):
        history = HistoryBuffer()
        for i in range(100):
            history.append(_record(i))

        assert history.append(_record(100)) is False
        assert len(history) == 100
        assert history.evicted_count == 1

        seqs = [r.data["seq"] for r in history.recent()]
        assert seqs == list(range(1, 101))

    def test_length_never_exceeds_capacity(self):
        history = HistoryBuffer(capacity=5)
        for i in range(37):
            history.append(_record(i))
            assert len(history) <= 5
        assert history.total_appended == 37
        assert [r.data["seq"] for r in history.recent()] == [32, 33, 34, 35, 36]

    def test_recent_returns_newest_oldest_first(self):
        history = HistoryBuffer(capacity=10)
        for i in range(8):
            history.append(_record(i))

        assert [r.data["seq"] for r in history.recent(3)] == [5, 6, 7]
        assert len(history.recent(50)) == 8

    def test_recent_rejects_non_positive_limit(self):
        history = HistoryBuffer()
        with pytest.raises(ValueError):
            history.recent(0)

    def test_clear(self):
        history = HistoryBuffer(capacity=4)
        for i in range(6):
            history.append(_record(i))

        assert history.clear() == 4
        assert len(history) == 0
        assert history.recent() == []

        metrics = history.metrics()
        assert metrics["size"] == 0
        assert metrics["total_appended"] == 6
        assert metrics["evicted_count"] == 2
