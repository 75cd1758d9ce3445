"""
MCP WebSocket Bridge
====================

Relays events from MCP servers (Server-Sent Events) to Xiaozhi endpoints
(WebSocket), multiplexing many independent bridge sessions in one process.

Components:
    - transport: SSE source client and WebSocket sink client
    - bridge: History ring, per-session state machine, session registry
    - models: Request, history and status schemas
    - main: FastAPI control surface

Example:
    from mcp_bridge.bridge import SessionRegistry

    registry = SessionRegistry()
    session = await registry.create({
        "mcpServerUrl": "https://your-mcp-server.com/sse",
        "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=YOUR_TOKEN",
    })

    # The HTTP service is started with:
    #   python -m mcp_bridge.main
"""

__version__ = "2.0.0"

__all__ = [
    "__version__",
]
