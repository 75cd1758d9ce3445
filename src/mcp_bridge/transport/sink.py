"""
Sink Client
===========

Persistent WebSocket connection to the downstream sink (Xiaozhi endpoint).

This client:
    - Connects with websockets and signals success by returning from open()
    - Hands every inbound frame to the session inbox for history recording
    - Reports closure as a single CLOSED event carrying code and reason
    - Sends outbound text frames on behalf of the session

Keepalive:
    websockets answers every ping from the peer with a pong automatically,
    and sends its own pings every `ping_interval` seconds. A peer that stops
    answering for `ping_timeout` seconds closes the connection, which reaches
    the session as a CLOSED event.

Design Rules:
    - Inbound frames are NOT processed or forwarded upstream
    - open() failures raise BridgeConnectionError
    - send() on a closed socket raises TransportError
"""

import asyncio
import logging
from typing import Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from mcp_bridge.errors import BridgeConnectionError, TransportError
from mcp_bridge.transport.events import EventKind, Leg, TransportEvent


logger = logging.getLogger(__name__)


class SinkClient:
    """
    One WebSocket connection owned by a BridgeSession.

    Attributes:
        url: WebSocket endpoint (ws/wss)
        generation: Connect generation stamped on every event
        opened: Whether the socket is currently open

    Example:
        client = SinkClient("wss://api.xiaozhi.me/mcp/?token=T", inbox, generation=1)
        await client.open()
        await client.send('{"type": "notification"}')
        await client.close()
    """

    def __init__(
        self,
        url: str,
        inbox: "asyncio.Queue[TransportEvent]",
        generation: int,
        open_timeout: float = 10.0,
        ping_interval: Optional[float] = 20.0,
        ping_timeout: Optional[float] = 20.0,
    ) -> None:
        """
        Initialize sink client.

        Args:
            url: WebSocket endpoint
            inbox: Session inbox receiving TransportEvents
            generation: Connect generation of the owning session
            open_timeout: Seconds allowed for the opening handshake
            ping_interval: Seconds between keepalive pings (None disables)
            ping_timeout: Seconds to wait for a pong (None disables)
        """
        self.url = url
        self.generation = generation
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self._inbox = inbox
        self._websocket: Optional[ClientConnection] = None
        self._reader: Optional[asyncio.Task] = None
        self._opened: bool = False
        self._closing: bool = False

    @property
    def opened(self) -> bool:
        return self._opened

    async def open(self) -> None:
        """
        Open the WebSocket connection.

        Raises:
            BridgeConnectionError: Handshake failed or timed out
        """
        try:
            self._websocket = await connect(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                close_timeout=5,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise BridgeConnectionError(
                f"Failed to connect to Xiaozhi WebSocket: {e!r}"
            ) from e

        self._opened = True
        self._reader = asyncio.create_task(
            self._read_frames(self._websocket),
            name=f"ws-reader-{self.generation}",
        )
        logger.info(f"Connected to Xiaozhi WebSocket: {self.url}")

    async def send(self, text: str) -> None:
        """
        Transmit one text frame.

        Raises:
            TransportError: Socket is not open
        """
        if self._websocket is None or not self._opened:
            raise TransportError("Xiaozhi WebSocket is not connected")
        try:
            await self._websocket.send(text)
        except ConnectionClosed as e:
            self._opened = False
            raise TransportError(f"Xiaozhi WebSocket closed during send: {e}") from e

    async def close(self) -> None:
        """Stop reading and close the socket. Safe to call twice."""
        self._closing = True
        self._opened = False

        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None

        if self._websocket is not None:
            await self._websocket.close()
            self._websocket = None

    async def _read_frames(self, websocket: ClientConnection) -> None:
        """Record inbound frames until the socket closes."""
        error: Optional[str] = None
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                await self._inbox.put(TransportEvent(
                    leg=Leg.SINK,
                    kind=EventKind.FRAME,
                    generation=self.generation,
                    data=message,
                ))
        except ConnectionClosed as e:
            error = f"connection closed with error: {e}"

        self._opened = False
        if self._closing:
            return

        reason = error or (
            f"Xiaozhi WebSocket closed. Code: {websocket.close_code}, "
            f"Reason: {websocket.close_reason}"
        )
        logger.warning(reason)
        await self._inbox.put(TransportEvent(
            leg=Leg.SINK,
            kind=EventKind.CLOSED,
            generation=self.generation,
            error=reason,
        ))
