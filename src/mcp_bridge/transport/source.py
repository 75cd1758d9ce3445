"""
Source Client
=============

Server-Sent Events subscription to the upstream MCP server.

This client:
    - Opens a streaming GET with `Accept: text/event-stream`
    - Signals success by returning from open() exactly once
    - Decodes events with SSEDecoder and puts them on the session inbox
    - Reports stream end or failure as a single CLOSED / ERROR event

Design Rules:
    - open() failures raise BridgeConnectionError (never reach the inbox)
    - Post-open failures go to the inbox only (never raised)
    - Unrecognized event categories are delivered as "message"
    - Does NOT parse or modify event payloads
"""

import asyncio
import logging
from typing import Dict, Optional

import httpx

from mcp_bridge.errors import BridgeConnectionError
from mcp_bridge.transport.events import EventKind, Leg, TransportEvent
from mcp_bridge.transport.sse import SSEDecoder, normalize_event_type


logger = logging.getLogger(__name__)


class SourceClient:
    """
    One SSE subscription owned by a BridgeSession.

    Attributes:
        url: SSE endpoint
        headers: Extra request headers
        generation: Connect generation stamped on every event
        opened: Whether the subscription has been established

    Example:
        inbox: asyncio.Queue[TransportEvent] = asyncio.Queue()
        client = SourceClient("https://mcp.example.com/sse", inbox, generation=1)
        await client.open()
        ...
        await client.close()
    """

    def __init__(
        self,
        url: str,
        inbox: "asyncio.Queue[TransportEvent]",
        generation: int,
        headers: Optional[Dict[str, str]] = None,
        connect_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize source client.

        Args:
            url: SSE endpoint (http/https)
            inbox: Session inbox receiving TransportEvents
            generation: Connect generation of the owning session
            headers: Extra request headers
            connect_timeout: Seconds allowed for the handshake
            transport: httpx transport override (tests use httpx.MockTransport)
        """
        self.url = url
        self.headers = dict(headers or {})
        self.generation = generation
        self.connect_timeout = connect_timeout
        self.transport = transport

        self._inbox = inbox
        self._client: Optional[httpx.AsyncClient] = None
        self._response: Optional[httpx.Response] = None
        self._reader: Optional[asyncio.Task] = None
        self._opened: bool = False
        self._closing: bool = False

    @property
    def opened(self) -> bool:
        return self._opened

    async def open(self) -> None:
        """
        Establish the subscription.

        Raises:
            BridgeConnectionError: Request failed or server refused the stream
        """
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            **self.headers,
        }
        # Read timeout disabled: SSE streams may stay idle for long periods
        timeout = httpx.Timeout(self.connect_timeout, read=None)
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=self.transport,
        )

        try:
            request = self._client.build_request("GET", self.url, headers=headers)
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            await self._release()
            raise BridgeConnectionError(
                f"Failed to establish MCP connection: {e!r}"
            ) from e

        if response.status_code != 200:
            await response.aclose()
            await self._release()
            raise BridgeConnectionError(
                f"Failed to establish MCP connection: HTTP {response.status_code}"
            )

        self._response = response
        self._opened = True
        self._reader = asyncio.create_task(
            self._read_events(response),
            name=f"sse-reader-{self.generation}",
        )
        logger.info(f"Connected to MCP server: {self.url}")

    async def close(self) -> None:
        """Stop reading and release the HTTP connection. Safe to call twice."""
        self._closing = True

        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None

        if self._response is not None:
            await self._response.aclose()
            self._response = None

        await self._release()
        self._opened = False

    async def _release(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _read_events(self, response: httpx.Response) -> None:
        """Decode the event stream until it ends or fails."""
        decoder = SSEDecoder()
        try:
            async for line in response.aiter_lines():
                event = decoder.decode(line)
                if event is None:
                    continue
                await self._inbox.put(TransportEvent(
                    leg=Leg.SOURCE,
                    kind=EventKind.MESSAGE,
                    generation=self.generation,
                    event_type=normalize_event_type(event.event),
                    data=event.data,
                ))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closing:
                return
            logger.warning(f"MCP stream error: {e!r}")
            await self._inbox.put(TransportEvent(
                leg=Leg.SOURCE,
                kind=EventKind.ERROR,
                generation=self.generation,
                error=f"MCP stream error: {e!r}",
            ))
            return

        if not self._closing:
            logger.warning(f"MCP stream ended: {self.url}")
            await self._inbox.put(TransportEvent(
                leg=Leg.SOURCE,
                kind=EventKind.CLOSED,
                generation=self.generation,
                error="MCP stream closed by server",
            ))
