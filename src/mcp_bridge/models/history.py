"""
History Record Models
=====================

One HistoryRecord is a logged unit of traffic or error for a session.

Record Contract:
    {
        "timestamp": "2025-01-01T12:00:00.000000Z",
        "direction": "source_to_sink",
        "data": {...},          # enriched record, raw frame text, or failed payload
        "error": null           # human-readable cause for "error" records
    }
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    """
    Direction tag of a history record.

    Attributes:
        SOURCE_TO_SINK: Source event enriched and forwarded to the sink
        SINK_TO_BRIDGE: Inbound frame received from the sink (recorded only)
        ERROR: Forwarding or transport failure
    """

    SOURCE_TO_SINK = "source_to_sink"
    SINK_TO_BRIDGE = "sink_to_bridge"
    ERROR = "error"


class HistoryRecord(BaseModel):
    """A single entry of a session's history ring."""

    timestamp: datetime = Field(default_factory=utc_now)
    direction: Direction
    data: Any = None
    error: Optional[str] = Field(
        default=None,
        description="Cause of the failure (error records only)",
    )

    class Config:
        """Pydantic model configuration."""

        frozen = True
