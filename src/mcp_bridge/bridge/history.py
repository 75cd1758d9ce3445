"""
History Buffer
==============

Fixed-capacity ring of recent traffic records for one session.

Design Rules:
    - Fixed maximum size (evicts oldest on overflow, strict FIFO)
    - Insertion order is time order
    - Exposes minimal metrics for observability
    - Does NOT modify records
"""

import logging
from collections import deque
from typing import Deque, List, Optional

from mcp_bridge.models.history import HistoryRecord


logger = logging.getLogger(__name__)


DEFAULT_CAPACITY = 100


class HistoryBuffer:
    """
    Bounded FIFO of HistoryRecord objects.

    Attributes:
        capacity: Maximum number of records held
        evicted_count: Records evicted due to overflow
        total_appended: Records ever appended

    Example:
        history = HistoryBuffer(capacity=100)
        history.append(record)
        latest = history.recent(50)
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """
        Initialize history buffer.

        Args:
            capacity: Maximum records to hold. Must be >= 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._records: Deque[HistoryRecord] = deque(maxlen=capacity)
        self._evicted_count: int = 0
        self._total_appended: int = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted_count(self) -> int:
        return self._evicted_count

    @property
    def total_appended(self) -> int:
        return self._total_appended

    def __len__(self) -> int:
        return len(self._records)

    def append(self, record: HistoryRecord) -> bool:
        """
        Add a record, evicting the oldest if full.

        Args:
            record: Record to add

        Returns:
            True if added without eviction, False if the oldest was evicted.
        """
        self._total_appended += 1
        evicting = len(self._records) == self._capacity
        if evicting:
            self._evicted_count += 1
            logger.debug(
                f"History full, evicted oldest record. "
                f"Total evicted: {self._evicted_count}"
            )
        # deque(maxlen=...) drops from the left
        self._records.append(record)
        return not evicting

    def recent(self, limit: Optional[int] = None) -> List[HistoryRecord]:
        """
        Most recent records, oldest first.

        Args:
            limit: Maximum records to return. None = all.

        Returns:
            Up to `limit` newest records in insertion order.
        """
        if limit is None:
            return list(self._records)
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if limit >= len(self._records):
            return list(self._records)
        return list(self._records)[-limit:]

    def clear(self) -> int:
        """
        Remove all records.

        Returns:
            Number of records cleared.
        """
        cleared = len(self._records)
        self._records.clear()
        return cleared

    def metrics(self) -> dict:
        return {
            "size": len(self._records),
            "capacity": self._capacity,
            "evicted_count": self._evicted_count,
            "total_appended": self._total_appended,
        }
