"""
Bridge Session
==============

One bridge pairing an MCP SSE subscription (source) with a Xiaozhi WebSocket
connection (sink).

State Machine:
    INITIALIZING -> CONNECTING_SINK -> CONNECTING_SOURCE -> CONNECTED
        connect(): sink first, then source, strictly sequential.
        Either leg failing releases both legs and ends in TERMINATED.

    CONNECTED -> RECONNECTING
        A transport reports closure or failure after the handshake.
        Both legs are released and a retry task re-runs the full
        sink-then-source sequence after `reconnect_delay`.

    RECONNECTING -> CONNECTING_SINK -> ... -> CONNECTED
        Retry succeeded; the attempt counter resets to zero.

    RECONNECTING -> TERMINATED
        The attempt counter would exceed `max_reconnect_attempts`.
        No further retry is scheduled. The session stays queryable.

    any -> TERMINATED
        disconnect(). Idempotent.

Event Delivery:
    Transports put TransportEvent objects on the session inbox. A single pump
    task drains the inbox in arrival order, so no two transport callbacks of
    one session ever run concurrently. Each connect attempt (and each release)
    bumps the session generation; events stamped with an older generation
    come from torn-down transports and are dropped.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from mcp_bridge.bridge.history import DEFAULT_CAPACITY, HistoryBuffer
from mcp_bridge.errors import BridgeConnectionError, ForwardError, TransportError
from mcp_bridge.models.history import Direction, HistoryRecord, utc_now
from mcp_bridge.models.request import BridgeConfig
from mcp_bridge.models.status import SessionState, SessionStatus
from mcp_bridge.transport.events import EventKind, Leg, TransportEvent
from mcp_bridge.transport.sink import SinkClient
from mcp_bridge.transport.source import SourceClient


logger = logging.getLogger(__name__)


# Origin tag stamped on every forwarded source event
SOURCE_TAG = "mcp"

DEFAULT_HISTORY_LIMIT = 50

SourceFactory = Callable[..., SourceClient]
SinkFactory = Callable[..., SinkClient]


def _cancel(task: Optional[asyncio.Task]) -> Optional[asyncio.Task]:
    """Cancel a task unless it is the one currently running."""
    if task is None or task.done() or task is asyncio.current_task():
        return None
    task.cancel()
    return task


class BridgeSession:
    """
    Per-session bridge engine.

    Owns exactly one SourceClient and one SinkClient at a time (replaced on
    each connect attempt) plus one HistoryBuffer.

    Attributes:
        session_id: Unique, immutable session id
        config: Immutable session configuration
        created_at: Creation time (UTC)
        state: Current SessionState
        history: Recent traffic records

    Example:
        session = BridgeSession("bridge-1", config)
        await session.connect()
        await session.send_manual({"type": "ping"})
        print(session.get_status())
        await session.disconnect()
    """

    def __init__(
        self,
        session_id: str,
        config: BridgeConfig,
        history_capacity: int = DEFAULT_CAPACITY,
        source_factory: SourceFactory = SourceClient,
        sink_factory: SinkFactory = SinkClient,
    ) -> None:
        """
        Initialize bridge session.

        Args:
            session_id: Unique session id
            config: Validated session configuration
            history_capacity: Size of the history ring
            source_factory: Builds SourceClient(url, inbox, generation, headers=...)
            sink_factory: Builds SinkClient(url, inbox, generation)
        """
        self.session_id = session_id
        self.config = config
        self.created_at = utc_now()

        self._source_factory = source_factory
        self._sink_factory = sink_factory

        self._state = SessionState.INITIALIZING
        self._source_connected: bool = False
        self._sink_connected: bool = False
        self._reconnect_attempts: int = 0

        self._history = HistoryBuffer(capacity=history_capacity)
        self._inbox: "asyncio.Queue[TransportEvent]" = asyncio.Queue()
        self._generation: int = 0

        self._source: Optional[SourceClient] = None
        self._sink: Optional[SinkClient] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return (
            f"BridgeSession(id={self.session_id}, state={self._state.value}, "
            f"attempts={self._reconnect_attempts})"
        )

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def source_connected(self) -> bool:
        return self._source_connected

    @property
    def sink_connected(self) -> bool:
        return self._sink_connected

    @property
    def is_fully_connected(self) -> bool:
        return self._source_connected and self._sink_connected

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_pending(self) -> bool:
        """Whether a retry task is scheduled or running."""
        return self._retry_task is not None and not self._retry_task.done()

    @property
    def history(self) -> HistoryBuffer:
        return self._history

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """
        Establish the sink connection, then the source subscription.

        Raises:
            BridgeConnectionError: Either leg failed. Both legs are released
                and the session is TERMINATED.
        """
        if self._state is SessionState.TERMINATED:
            raise BridgeConnectionError("Session has been terminated", self.session_id)

        logger.info(f"[{self.session_id}] Starting bridge connection...")
        try:
            await self._open_legs()
        except BridgeConnectionError as e:
            logger.error(f"[{self.session_id}] Failed to establish bridge: {e.message}")
            e.session_id = self.session_id
            await self.disconnect()
            raise
        except BaseException:
            await self.disconnect()
            raise

        logger.info(f"[{self.session_id}] Bridge fully connected")

    async def disconnect(self) -> None:
        """
        Tear the session down. Idempotent.

        Cancels a pending reconnect first, so a retry can never act on the
        torn-down session, then closes both transports.
        """
        retry = _cancel(self._retry_task)
        self._retry_task = None
        pump = _cancel(self._pump_task)
        self._pump_task = None

        already_terminated = self._state is SessionState.TERMINATED
        self._set_state(SessionState.TERMINATED)

        await self._release_transports()

        for task in (retry, pump):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

        if not already_terminated:
            logger.info(f"[{self.session_id}] Bridge disconnected")

    async def handle_reconnect(self) -> None:
        """
        Apply the bounded retry policy after a transport failure.

        Gives up (TERMINATED, no timer) once the attempt counter would exceed
        `max_reconnect_attempts`; otherwise releases both legs and schedules a
        full reconnect after the configured delay.
        """
        if self._state is SessionState.TERMINATED:
            return
        if self.reconnect_pending and self._retry_task is not asyncio.current_task():
            return

        attempt = self._reconnect_attempts + 1
        if attempt > self.config.max_reconnect_attempts:
            logger.error(
                f"[{self.session_id}] Max reconnect attempts "
                f"({self.config.max_reconnect_attempts}) reached. Giving up."
            )
            self._record_error("Max reconnect attempts reached, bridge terminated")
            await self.disconnect()
            return

        self._reconnect_attempts = attempt
        self._set_state(SessionState.RECONNECTING)
        await self._release_transports()

        logger.info(
            f"[{self.session_id}] Reconnect {attempt}/{self.config.max_reconnect_attempts} "
            f"in {self.config.reconnect_delay:.1f}s"
        )
        self._retry_task = asyncio.create_task(
            self._retry_after_delay(),
            name=f"reconnect-{self.session_id}-{attempt}",
        )

    # =========================================================================
    # Forwarding
    # =========================================================================

    async def handle_source_event(self, event_type: str, payload: str) -> Dict[str, Any]:
        """
        Enrich one source event and forward it to the sink.

        The enriched record is appended to history whether or not forwarding
        succeeds; a forwarding failure adds an "error" record and does not
        stop the session.

        Args:
            event_type: Normalized source event category
            payload: Raw event data

        Returns:
            The enriched record
        """
        received_at = utc_now().isoformat()
        try:
            parsed = json.loads(payload)
            is_json = True
        except (TypeError, ValueError):
            parsed = None
            is_json = False

        if isinstance(parsed, dict):
            data = parsed
        else:
            data = {
                "type": event_type,
                "content": parsed if is_json else payload,
                "timestamp": received_at,
            }

        enriched = {
            **data,
            "eventType": event_type,
            "connectionId": self.session_id,
            "receivedAt": received_at,
            "source": SOURCE_TAG,
        }
        logger.debug(f"[{self.session_id}] Received from MCP ({event_type})")

        self._history.append(HistoryRecord(
            direction=Direction.SOURCE_TO_SINK,
            data=enriched,
        ))

        try:
            await self.forward_to_sink(enriched)
        except ForwardError as e:
            logger.warning(f"[{self.session_id}] Error forwarding to Xiaozhi: {e.message}")
            self._record_error(e.message, data=enriched)

        return enriched

    async def forward_to_sink(self, record: Dict[str, Any]) -> None:
        """
        Serialize and transmit one record to the sink.

        Raises:
            ForwardError: Sink is not connected or the send failed
        """
        if not self._sink_connected or self._sink is None:
            raise ForwardError("Xiaozhi WebSocket is not connected", self.session_id)

        message = json.dumps(record, default=str)
        try:
            await self._sink.send(message)
        except TransportError as e:
            raise ForwardError(e.message, self.session_id) from e

        logger.debug(f"[{self.session_id}] Message sent to Xiaozhi ({len(message)} bytes)")

    async def send_manual(self, payload: Any) -> Dict[str, Any]:
        """
        Push a caller-supplied payload straight to the sink.

        Args:
            payload: Arbitrary JSON value; non-objects are wrapped as {"content": ...}

        Returns:
            The message as sent

        Raises:
            ForwardError: Sink is down (recorded as one "error" history record)
        """
        data = payload if isinstance(payload, dict) else {"content": payload}
        message = {
            **data,
            "sentVia": "manual",
            "connectionId": self.session_id,
            "timestamp": utc_now().isoformat(),
        }
        try:
            await self.forward_to_sink(message)
        except ForwardError as e:
            self._record_error(e.message, data=message)
            raise
        return message

    # =========================================================================
    # Status and history
    # =========================================================================

    def get_status(self) -> SessionStatus:
        uptime = (utc_now() - self.created_at).total_seconds()
        return SessionStatus(
            connection_id=self.session_id,
            mcp_server_url=self.config.source_url,
            xiaozhi_wss_url=self.config.sink_url,
            state=self._state,
            is_mcp_connected=self._source_connected,
            is_xiaozhi_connected=self._sink_connected,
            is_fully_connected=self.is_fully_connected,
            reconnect_attempts=self._reconnect_attempts,
            max_reconnect_attempts=self.config.max_reconnect_attempts,
            message_count=len(self._history),
            created_at=self.created_at,
            uptime_seconds=max(0, int(uptime)),
        )

    def get_history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryRecord]:
        return self._history.recent(limit)

    def clear_history(self) -> int:
        return self._history.clear()

    # =========================================================================
    # Internals
    # =========================================================================

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(f"[{self.session_id}] {self._state.value} -> {state.value}")
            self._state = state

    def _record_error(self, error: str, data: Any = None) -> None:
        self._history.append(HistoryRecord(
            direction=Direction.ERROR,
            data=data,
            error=error,
        ))

    async def _open_legs(self) -> None:
        """Run one full sink-then-source connect sequence."""
        self._generation += 1
        generation = self._generation

        try:
            self._set_state(SessionState.CONNECTING_SINK)
            logger.info(f"[{self.session_id}] Connecting to Xiaozhi: {self.config.sink_url}")
            self._sink = self._sink_factory(self.config.sink_url, self._inbox, generation)
            await self._sink.open()
            self._sink_connected = True

            self._set_state(SessionState.CONNECTING_SOURCE)
            logger.info(f"[{self.session_id}] Connecting to MCP server: {self.config.source_url}")
            self._source = self._source_factory(
                self.config.source_url,
                self._inbox,
                generation,
                headers=self.config.headers,
            )
            await self._source.open()
            self._source_connected = True

            if not self._sink_connected or not self._sink.opened:
                raise BridgeConnectionError(
                    "Xiaozhi WebSocket closed during handshake", self.session_id
                )
        except BaseException:
            await self._release_transports()
            raise

        self._reconnect_attempts = 0
        self._set_state(SessionState.CONNECTED)

        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(
                self._pump(),
                name=f"pump-{self.session_id}",
            )

    async def _release_transports(self) -> None:
        """Close both legs and invalidate their pending events."""
        self._generation += 1
        source, self._source = self._source, None
        sink, self._sink = self._sink, None
        self._source_connected = False
        self._sink_connected = False

        for client in (source, sink):
            if client is None:
                continue
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"[{self.session_id}] Error closing transport: {e!r}")

    async def _retry_after_delay(self) -> None:
        await asyncio.sleep(self.config.reconnect_delay)
        if self._state is not SessionState.RECONNECTING:
            return

        logger.info(
            f"[{self.session_id}] Attempting reconnect "
            f"{self._reconnect_attempts}/{self.config.max_reconnect_attempts}..."
        )
        try:
            await self._open_legs()
        except BridgeConnectionError as e:
            logger.warning(f"[{self.session_id}] Reconnect failed: {e.message}")
            self._record_error(f"Reconnect failed: {e.message}")
            self._set_state(SessionState.RECONNECTING)
            await self.handle_reconnect()
            return

        logger.info(f"[{self.session_id}] Bridge reconnected")

    async def _pump(self) -> None:
        """Process inbox events one at a time, in arrival order."""
        while self._state is not SessionState.TERMINATED:
            event = await self._inbox.get()
            if event.generation != self._generation:
                logger.debug(f"[{self.session_id}] Dropping stale {event!r}")
                continue
            try:
                await self._dispatch(event)
            except Exception as e:
                logger.error(f"[{self.session_id}] Error handling {event!r}: {e!r}")

    async def _dispatch(self, event: TransportEvent) -> None:
        if event.kind is EventKind.MESSAGE:
            await self.handle_source_event(event.event_type or "message", event.data or "")
        elif event.kind is EventKind.FRAME:
            logger.debug(f"[{self.session_id}] Received from Xiaozhi")
            self._history.append(HistoryRecord(
                direction=Direction.SINK_TO_BRIDGE,
                data=event.data,
            ))
        elif event.is_failure:
            await self._on_transport_lost(event)

    async def _on_transport_lost(self, event: TransportEvent) -> None:
        if event.leg is Leg.SINK:
            self._sink_connected = False
        else:
            self._source_connected = False

        self._record_error(
            event.error or f"{event.leg.value} transport lost",
            data={"leg": event.leg.value},
        )

        if self._state is not SessionState.CONNECTED:
            return

        logger.warning(f"[{self.session_id}] {event.leg.value} transport lost: {event.error}")
        await self.handle_reconnect()
