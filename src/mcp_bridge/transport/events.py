"""
Transport Events
================

Internal message format between transport clients and their session.

Transport clients never call into a session. They put TransportEvent objects
on the session's inbox queue, and the session drains the queue one event at a
time in arrival order.

Design Rules:
    - Events are immutable
    - Every event carries the connect generation of the transport that
      produced it; the session drops events from older generations
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Leg(str, Enum):
    """Which side of the bridge produced the event."""

    SOURCE = "source"
    SINK = "sink"


class EventKind(str, Enum):
    """
    Kind of transport event.

    Attributes:
        MESSAGE: Decoded source event (event_type + data)
        FRAME: Raw inbound sink frame (data)
        ERROR: Transport failed after its handshake (error)
        CLOSED: Transport ended after its handshake (error may hold the reason)
    """

    MESSAGE = "message"
    FRAME = "frame"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class TransportEvent:
    """
    One event delivered to a session inbox.

    Attributes:
        leg: Producing transport
        kind: Event kind
        generation: Connect generation of the producing transport
        event_type: Source event category (MESSAGE only)
        data: Payload text (MESSAGE and FRAME)
        error: Failure description (ERROR and CLOSED)
    """

    leg: Leg
    kind: EventKind
    generation: int
    event_type: Optional[str] = None
    data: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.kind in (EventKind.ERROR, EventKind.CLOSED)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full payload."""
        size = len(self.data) if self.data is not None else 0
        return (
            f"TransportEvent(leg={self.leg.value}, kind={self.kind.value}, "
            f"generation={self.generation}, event_type={self.event_type}, "
            f"bytes={size})"
        )
