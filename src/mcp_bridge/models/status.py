"""
Session Status Models
=====================

Read-only snapshots returned by the control surface.

Core Concepts:
    - SessionState: Explicit lifecycle state of a BridgeSession
    - SessionStatus: Point-in-time snapshot of one session
    - HealthSummary: Aggregate counts across the registry

State Machine:
    INITIALIZING -> CONNECTING_SINK -> CONNECTING_SOURCE -> CONNECTED
    CONNECTED -> RECONNECTING -> CONNECTING_SINK -> ... -> CONNECTED
    any -> TERMINATED (explicit disconnect, failed initial connect,
                       or exhausted reconnect budget)
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """
    Lifecycle states of a bridge session.

    TERMINATED is final: a terminated session never reconnects.
    """

    INITIALIZING = "initializing"
    CONNECTING_SINK = "connecting_sink"
    CONNECTING_SOURCE = "connecting_source"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class SessionStatus(BaseModel):
    """
    Snapshot of one bridge session.

    Attributes:
        connection_id: Session id
        mcp_server_url: Source (SSE) endpoint
        xiaozhi_wss_url: Sink (WebSocket) endpoint
        state: Current lifecycle state
        is_mcp_connected: Source leg established
        is_xiaozhi_connected: Sink leg established
        is_fully_connected: Both legs established
        reconnect_attempts: Attempts since the last full connect
        max_reconnect_attempts: Configured retry budget
        message_count: Records currently held in history
        created_at: Creation time (UTC)
        uptime_seconds: Whole seconds since creation
    """

    connection_id: str
    mcp_server_url: str
    xiaozhi_wss_url: str
    state: SessionState
    is_mcp_connected: bool
    is_xiaozhi_connected: bool
    is_fully_connected: bool
    reconnect_attempts: int = Field(ge=0)
    max_reconnect_attempts: int = Field(ge=0)
    message_count: int = Field(ge=0)
    created_at: datetime
    uptime_seconds: int = Field(ge=0)


class HealthSummary(BaseModel):
    """Session counts across the registry."""

    total: int = Field(default=0, ge=0)
    fully_connected: int = Field(default=0, ge=0)
    partially_connected: int = Field(default=0, ge=0)
