"""
Test Configuration
==================

Pytest fixtures and in-memory transports for the bridge test suite.

FakeSource / FakeSink stand in for SourceClient / SinkClient. They are built
through the same factory signatures, put the same TransportEvent objects on
the session inbox, and let tests drive traffic and failures directly.
"""

import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from mcp_bridge.bridge import BridgeSession, SessionRegistry
from mcp_bridge.errors import BridgeConnectionError, TransportError
from mcp_bridge.models import BridgeConfig
from mcp_bridge.transport import EventKind, Leg, TransportEvent


class FakeSink:
    """In-memory WebSocket sink."""

    def __init__(self, transports: "FakeTransports", url: str, inbox, generation: int) -> None:
        self.transports = transports
        self.url = url
        self.inbox = inbox
        self.generation = generation
        self.sent: List[str] = []
        self.opened = False
        self.closed = False
        # when set, send() and close() wait on it (a peer that stopped reading)
        self.hold: Optional[asyncio.Event] = None

    async def open(self) -> None:
        self.transports.calls.append(("sink", self.url))
        if self.transports.fail_sink:
            raise BridgeConnectionError("Failed to connect to Xiaozhi WebSocket: refused")
        self.opened = True

    async def send(self, text: str) -> None:
        if not self.opened:
            raise TransportError("Xiaozhi WebSocket is not connected")
        if self.hold is not None:
            await self.hold.wait()
        self.sent.append(text)

    async def close(self) -> None:
        self.opened = False
        if self.hold is not None:
            await self.hold.wait()
        self.closed = True

    def receive(self, text: str) -> None:
        """Simulate an inbound frame from the far end."""
        self.inbox.put_nowait(TransportEvent(
            leg=Leg.SINK, kind=EventKind.FRAME, generation=self.generation, data=text,
        ))

    def drop(self, reason: str = "Code: 1006, Reason: ") -> None:
        """Simulate the far end closing the socket."""
        self.opened = False
        self.inbox.put_nowait(TransportEvent(
            leg=Leg.SINK, kind=EventKind.CLOSED, generation=self.generation, error=reason,
        ))


class FakeSource:
    """In-memory SSE source."""

    def __init__(
        self,
        transports: "FakeTransports",
        url: str,
        inbox,
        generation: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.transports = transports
        self.url = url
        self.inbox = inbox
        self.generation = generation
        self.headers = headers or {}
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.transports.calls.append(("source", self.url))
        if self.transports.drop_sink_during_source_open:
            self.transports.sinks[-1].drop("Code: 1011, Reason: going away")
        if self.transports.fail_source:
            raise BridgeConnectionError("Failed to establish MCP connection: HTTP 503")
        self.opened = True

    async def close(self) -> None:
        self.opened = False
        self.closed = True

    def emit(self, data: str, event_type: str = "message") -> None:
        """Simulate one server-sent event."""
        self.inbox.put_nowait(TransportEvent(
            leg=Leg.SOURCE, kind=EventKind.MESSAGE, generation=self.generation,
            event_type=event_type, data=data,
        ))

    def fail(self, error: str = "MCP stream error") -> None:
        self.opened = False
        self.inbox.put_nowait(TransportEvent(
            leg=Leg.SOURCE, kind=EventKind.ERROR, generation=self.generation, error=error,
        ))


class FakeTransports:
    """Factory pair handed to sessions; records every transport it builds."""

    def __init__(self) -> None:
        self.sinks: List[FakeSink] = []
        self.sources: List[FakeSource] = []
        self.calls: List[tuple] = []
        self.fail_sink = False
        self.fail_source = False
        self.drop_sink_during_source_open = False

    def sink(self, url: str, inbox, generation: int) -> FakeSink:
        sink = FakeSink(self, url, inbox, generation)
        self.sinks.append(sink)
        return sink

    def source(self, url: str, inbox, generation: int, headers=None) -> FakeSource:
        source = FakeSource(self, url, inbox, generation, headers=headers)
        self.sources.append(source)
        return source

    def live(self) -> int:
        """Number of transports currently open."""
        return sum(1 for t in [*self.sinks, *self.sources] if t.opened)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def transports():
    return FakeTransports()


@pytest.fixture
def valid_payload():
    return {
        "mcpServerUrl": "https://mcp.example.com/sse",
        "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=abc",
    }


@pytest.fixture
def make_session(transports):
    """Build a BridgeSession wired to the fake transports."""

    def _make(
        session_id: str = "bridge-test",
        max_reconnect_attempts: int = 3,
        reconnect_delay_ms: int = 0,
        history_capacity: int = 100,
    ) -> BridgeSession:
        config = BridgeConfig(
            source_url="https://mcp.example.com/sse",
            sink_url="wss://sink.example.com/ws",
            headers={"Authorization": "Bearer t"},
            max_reconnect_attempts=max_reconnect_attempts,
            reconnect_delay_ms=reconnect_delay_ms,
        )
        return BridgeSession(
            session_id,
            config,
            history_capacity=history_capacity,
            source_factory=transports.source,
            sink_factory=transports.sink,
        )

    return _make


@pytest.fixture
def make_registry(transports):
    def _make(**kwargs) -> SessionRegistry:
        kwargs.setdefault("max_reconnect_attempts", 3)
        kwargs.setdefault("reconnect_delay_ms", 0)
        return SessionRegistry(
            source_factory=transports.source,
            sink_factory=transports.sink,
            **kwargs,
        )

    return _make
