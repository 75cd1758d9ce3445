"""
Data Models
===========

Pydantic models for the MCP WebSocket bridge.

Models:
    Request:
        - CreateSessionRequest: Raw create-session body
        - SessionOptions: Retry-policy overrides
        - BridgeConfig: Validated, immutable session configuration

    History:
        - Direction: Record direction tag
        - HistoryRecord: One logged unit of traffic or error

    Status:
        - SessionState: Session lifecycle states
        - SessionStatus: Session snapshot
        - HealthSummary: Registry-wide counts
"""

from mcp_bridge.models.request import (
    BridgeConfig,
    CreateSessionRequest,
    SessionOptions,
    build_bridge_config,
)
from mcp_bridge.models.history import Direction, HistoryRecord, utc_now
from mcp_bridge.models.status import HealthSummary, SessionState, SessionStatus

__all__ = [
    # Request
    "CreateSessionRequest",
    "SessionOptions",
    "BridgeConfig",
    "build_bridge_config",
    # History
    "Direction",
    "HistoryRecord",
    "utc_now",
    # Status
    "SessionState",
    "SessionStatus",
    "HealthSummary",
]
