"""
Bridge Module
=============

The per-session bridge engine and the process-wide session registry.

This module provides:
    - HistoryBuffer: Fixed-capacity FIFO of history records
    - BridgeSession: Connect / forward / reconnect state machine
    - SessionRegistry: Id -> session map with atomic lifecycle operations

Example:
    from mcp_bridge.bridge import SessionRegistry

    registry = SessionRegistry()
    session = await registry.create({
        "mcpServerUrl": "https://mcp.example.com/sse",
        "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=T",
    })
    print(session.get_status())
"""

from mcp_bridge.bridge.history import DEFAULT_CAPACITY, HistoryBuffer
from mcp_bridge.bridge.session import BridgeSession
from mcp_bridge.bridge.registry import SessionRegistry, generate_session_id


__all__ = [
    "DEFAULT_CAPACITY",
    "HistoryBuffer",
    "BridgeSession",
    "SessionRegistry",
    "generate_session_id",
]
