"""
Session Registry
================

Process-wide map from session id to BridgeSession.

The registry is constructed explicitly (empty) at application startup and
handed to the control surface; `shutdown()` disconnects every session when
the application exits.

Atomicity:
    - A session is inserted only after both legs connected
    - The registry lock guards the id map only and is never held across
      network I/O, so a stalled peer in one session cannot block another
    - delete() removes the id under the lock, then tears the session down;
      a second delete of the same id raises SessionNotFoundError
    - create() connects outside the lock so independent creations proceed
      concurrently

Design Rules:
    - Unknown ids raise SessionNotFoundError
    - Once shutdown begins, create() raises RegistryClosedError
    - Sessions that exhaust their retry budget stay registered until deleted
"""

import asyncio
import logging
import uuid
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from mcp_bridge.bridge.history import DEFAULT_CAPACITY
from mcp_bridge.bridge.session import (
    DEFAULT_HISTORY_LIMIT,
    BridgeSession,
    SinkFactory,
    SourceFactory,
)
from mcp_bridge.errors import (
    ConfigValidationError,
    RegistryClosedError,
    SessionNotFoundError,
)
from mcp_bridge.models.history import HistoryRecord
from mcp_bridge.models.request import build_bridge_config
from mcp_bridge.models.status import HealthSummary, SessionStatus
from mcp_bridge.transport.sink import SinkClient
from mcp_bridge.transport.source import SourceClient


logger = logging.getLogger(__name__)


DEFAULT_TOKEN_URL_TEMPLATE = "wss://api.xiaozhi.me/mcp/?token={token}"


def generate_session_id() -> str:
    """High-entropy session id (122 random bits)."""
    return f"bridge-{uuid.uuid4().hex}"


class SessionRegistry:
    """
    Registry of active bridge sessions.

    Attributes:
        max_reconnect_attempts: Default retry budget for new sessions
        reconnect_delay_ms: Default retry delay for new sessions
        history_capacity: History ring size for new sessions
        token_url_template: Sink URL template used with a sink token
        closed: Whether shutdown has begun

    Example:
        registry = SessionRegistry()
        session = await registry.create({
            "mcpServerUrl": "https://mcp.example.com/sse",
            "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=T",
        })
        await registry.send_manual(session.session_id, {"type": "ping"})
        await registry.shutdown()
    """

    def __init__(
        self,
        max_reconnect_attempts: int = 5,
        reconnect_delay_ms: int = 3000,
        history_capacity: int = DEFAULT_CAPACITY,
        token_url_template: str = DEFAULT_TOKEN_URL_TEMPLATE,
        source_factory: SourceFactory = SourceClient,
        sink_factory: SinkFactory = SinkClient,
    ) -> None:
        """
        Initialize an empty registry.

        Args:
            max_reconnect_attempts: Default retry budget
            reconnect_delay_ms: Default retry delay (milliseconds)
            history_capacity: History ring size per session
            token_url_template: Template deriving the sink URL from a token
            source_factory: SourceClient constructor handed to sessions
            sink_factory: SinkClient constructor handed to sessions
        """
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay_ms = reconnect_delay_ms
        self.history_capacity = history_capacity
        self.token_url_template = token_url_template

        self._source_factory = source_factory
        self._sink_factory = sink_factory

        self._sessions: Dict[str, BridgeSession] = {}
        self._lock = asyncio.Lock()
        self._closed: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "SessionRegistry":
        """Build a registry whose transports use the configured timeouts."""
        return cls(
            max_reconnect_attempts=settings.bridge.max_reconnect_attempts,
            reconnect_delay_ms=settings.bridge.reconnect_delay_ms,
            history_capacity=settings.history.capacity,
            token_url_template=settings.sink.token_url_template,
            source_factory=partial(
                SourceClient,
                connect_timeout=settings.source.connect_timeout_seconds,
            ),
            sink_factory=partial(
                SinkClient,
                open_timeout=settings.sink.open_timeout_seconds,
                ping_interval=settings.sink.ping_interval_seconds,
                ping_timeout=settings.sink.ping_timeout_seconds,
            ),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._sessions)

    # =========================================================================
    # Create / delete
    # =========================================================================

    async def create(self, payload: Any) -> BridgeSession:
        """
        Validate, connect and register a new session.

        Args:
            payload: Create-session body (see CreateSessionRequest)

        Returns:
            The connected, registered session

        Raises:
            ConfigValidationError: Invalid payload (nothing is opened)
            RegistryClosedError: Shutdown has begun
            BridgeConnectionError: Either leg failed (nothing is registered)
        """
        config = build_bridge_config(
            payload,
            default_max_reconnect_attempts=self.max_reconnect_attempts,
            default_reconnect_delay_ms=self.reconnect_delay_ms,
            token_url_template=self.token_url_template,
        )
        if self._closed:
            raise RegistryClosedError("Bridge is shutting down, not accepting new connections")

        session_id = generate_session_id()
        while session_id in self._sessions:
            session_id = generate_session_id()

        session = BridgeSession(
            session_id,
            config,
            history_capacity=self.history_capacity,
            source_factory=self._source_factory,
            sink_factory=self._sink_factory,
        )
        await session.connect()

        async with self._lock:
            inserted = not self._closed
            if inserted:
                self._sessions[session_id] = session

        if not inserted:
            await session.disconnect()
            raise RegistryClosedError(
                "Bridge is shutting down, not accepting new connections",
                session_id,
            )

        logger.info(f"[{session_id}] Bridge created successfully")
        return session

    async def delete(self, session_id: str) -> int:
        """
        Remove one session and disconnect it.

        Returns:
            Number of sessions remaining

        Raises:
            SessionNotFoundError: Unknown id
        """
        async with self._lock:
            session = self._require(session_id)
            del self._sessions[session_id]
            remaining = len(self._sessions)

        await session.disconnect()
        logger.info(f"[{session_id}] Bridge disconnected and removed")
        return remaining

    async def delete_all(self) -> int:
        """
        Disconnect and remove every session.

        Returns:
            Number of sessions removed
        """
        count = await self._drain()
        logger.info(f"Disconnected {count} bridge(s)")
        return count

    async def shutdown(self) -> int:
        """
        Refuse new sessions and disconnect every registered one.

        Returns:
            Number of sessions disconnected
        """
        self._closed = True
        logger.info(f"Disconnecting {len(self._sessions)} active bridge(s)...")
        count = await self._drain()
        logger.info("All connections closed")
        return count

    # =========================================================================
    # Queries
    # =========================================================================

    async def list(self) -> List[SessionStatus]:
        async with self._lock:
            return [session.get_status() for session in self._sessions.values()]

    async def get(self, session_id: str) -> SessionStatus:
        async with self._lock:
            return self._require(session_id).get_status()

    async def get_history(
        self,
        session_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[HistoryRecord]:
        records, _ = await self.get_messages(session_id, limit)
        return records

    async def get_messages(
        self,
        session_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> Tuple[List[HistoryRecord], int]:
        """
        Recent history of one session together with its total record count.

        Args:
            session_id: Session id
            limit: Maximum records to return (>= 1)

        Returns:
            (records oldest first, records currently held)

        Raises:
            ConfigValidationError: limit < 1
            SessionNotFoundError: Unknown id
        """
        if limit < 1:
            raise ConfigValidationError(f"limit must be >= 1, got {limit}", session_id=session_id)
        async with self._lock:
            session = self._require(session_id)
            return session.get_history(limit), len(session.history)

    async def clear_history(self, session_id: str) -> int:
        async with self._lock:
            return self._require(session_id).clear_history()

    async def send_manual(self, session_id: str, payload: Any) -> Dict[str, Any]:
        """
        Push a payload to one session's sink.

        Raises:
            SessionNotFoundError: Unknown id
            ForwardError: Sink is down
        """
        async with self._lock:
            session = self._require(session_id)
        return await session.send_manual(payload)

    async def health(self) -> HealthSummary:
        async with self._lock:
            total = len(self._sessions)
            fully = sum(1 for s in self._sessions.values() if s.is_fully_connected)
        return HealthSummary(
            total=total,
            fully_connected=fully,
            partially_connected=total - fully,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _require(self, session_id: str) -> BridgeSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError("Connection not found", session_id)
        return session

    async def _drain(self) -> int:
        """Remove all sessions under the lock, then disconnect them concurrently."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        results = await asyncio.gather(
            *(session.disconnect() for session in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.error(f"[{session.session_id}] Error during disconnect: {result!r}")
        return len(sessions)
