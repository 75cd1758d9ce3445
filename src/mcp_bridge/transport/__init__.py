"""
Transport Module
================

Source (SSE) and sink (WebSocket) clients for one bridge session.

This module provides:
    - TransportEvent: Immutable event delivered to a session inbox
    - SSEDecoder: Incremental text/event-stream decoder
    - SourceClient: httpx-based SSE subscription
    - SinkClient: websockets-based persistent connection

Example:
    inbox = asyncio.Queue()
    sink = SinkClient("wss://sink.example/ws", inbox, generation=1)
    source = SourceClient("https://mcp.example/sse", inbox, generation=1)

    await sink.open()
    await source.open()

    while True:
        event = await inbox.get()
        ...
"""

from mcp_bridge.transport.events import EventKind, Leg, TransportEvent
from mcp_bridge.transport.sse import (
    KNOWN_EVENT_TYPES,
    SSEDecoder,
    SSEEvent,
    normalize_event_type,
)
from mcp_bridge.transport.source import SourceClient
from mcp_bridge.transport.sink import SinkClient


__all__ = [
    "EventKind",
    "Leg",
    "TransportEvent",
    "KNOWN_EVENT_TYPES",
    "SSEDecoder",
    "SSEEvent",
    "normalize_event_type",
    "SourceClient",
    "SinkClient",
]
