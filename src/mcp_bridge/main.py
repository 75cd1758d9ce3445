"""
MCP Bridge Main Application
===========================

FastAPI entry point for the MCP (SSE) to Xiaozhi (WebSocket) bridge.

Endpoints:
    GET    /                            - Service information and endpoint docs
    GET    /health                      - Liveness + session counts
    GET    /connections                 - List all sessions
    DELETE /connections                 - Disconnect all sessions
    POST   /connect                     - Create a bridge session
    GET    /connection/{id}             - Session status
    GET    /connection/{id}/messages    - Session message history
    DELETE /connection/{id}/messages    - Clear session message history
    POST   /send/{id}                   - Send a payload to the sink
    DELETE /disconnect/{id}             - Disconnect and remove a session

Lifecycle:
    The SessionRegistry is created empty on startup and stored on
    `app.state.registry`. On shutdown (uvicorn handles SIGINT/SIGTERM and
    exits the lifespan) the registry refuses new sessions and disconnects
    every registered one.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mcp_bridge.bridge import SessionRegistry
from mcp_bridge.config import Settings, settings as default_settings
from mcp_bridge.errors import BridgeError
from mcp_bridge.models.history import utc_now


logger = logging.getLogger(__name__)


# =============================================================================
# Dependencies
# =============================================================================

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def _dump(model) -> dict:
    return model.model_dump(mode="json")


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[SessionRegistry] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Service settings (defaults to the global settings)
        registry: Pre-built registry (tests inject one with fake transports)

    Returns:
        Configured FastAPI app
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager with graceful shutdown."""
        app.state.started_at = time.time()
        app.state.registry = (
            registry if registry is not None else SessionRegistry.from_settings(settings)
        )

        logger.info(f"Starting {settings.service.name} {settings.service.version}")
        logger.info(f"Server port: {settings.server.port}")

        yield

        logger.info("Shutting down gracefully...")
        await app.state.registry.shutdown()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.service.name,
        description="Cloud middleware bridging MCP servers (SSE) with Xiaozhi (WebSocket)",
        version=settings.service.version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/")
    async def root(registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
        """Service information and endpoint documentation."""
        return JSONResponse({
            "name": settings.service.name,
            "version": settings.service.version,
            "description": "Cloud middleware to bridge MCP servers (SSE) with Xiaozhi (WebSocket)",
            "endpoints": {
                "GET /": "API documentation",
                "GET /health": "Health check",
                "GET /connections": "List all active connections",
                "GET /connection/{id}": "Get specific connection details",
                "GET /connection/{id}/messages": "Get message history for a connection",
                "DELETE /connection/{id}/messages": "Clear message history for a connection",
                "POST /connect": "Create new bridge connection",
                "POST /send/{id}": "Send message to Xiaozhi through bridge",
                "DELETE /disconnect/{id}": "Disconnect bridge",
                "DELETE /connections": "Disconnect all bridges",
            },
            "example": {
                "connect": {
                    "mcpServerUrl": "https://your-mcp-server.com/sse",
                    "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=YOUR_TOKEN",
                },
            },
            "active_connections": len(registry),
        })

    @app.get("/health")
    async def health(
        request: Request,
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        """
        Liveness probe with session counts.

        Always returns 200 while the process is running.
        """
        summary = await registry.health()
        return JSONResponse({
            "status": "ok",
            "uptime_seconds": round(time.time() - request.app.state.started_at, 1),
            "timestamp": utc_now().isoformat(),
            "version": settings.service.version,
            "connections": _dump(summary),
        })

    @app.get("/connections")
    async def list_connections(registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
        statuses = await registry.list()
        return JSONResponse({
            "count": len(statuses),
            "connections": [_dump(status) for status in statuses],
        })

    @app.delete("/connections")
    async def delete_connections(registry: SessionRegistry = Depends(get_registry)) -> JSONResponse:
        count = await registry.delete_all()
        return JSONResponse({
            "success": True,
            "message": "All bridge connections disconnected",
            "disconnected_count": count,
        })

    @app.post("/connect")
    async def connect(
        payload: Any = Body(default=None),
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        """
        Create a bridge session.

        Body: see CreateSessionRequest. Validation happens in the registry so
        that every failure maps to the same error contract.
        """
        session = await registry.create(payload if payload is not None else {})
        session_id = session.session_id
        return JSONResponse({
            "success": True,
            "connection_id": session_id,
            "message": "Bridge connection established between MCP and Xiaozhi",
            "status": _dump(session.get_status()),
            "instructions": {
                "send": f"POST /send/{session_id}",
                "status": f"GET /connection/{session_id}",
                "messages": f"GET /connection/{session_id}/messages",
                "disconnect": f"DELETE /disconnect/{session_id}",
            },
        })

    @app.get("/connection/{connection_id}")
    async def get_connection(
        connection_id: str,
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        status = await registry.get(connection_id)
        return JSONResponse({"success": True, "connection": _dump(status)})

    @app.get("/connection/{connection_id}/messages")
    async def get_messages(
        connection_id: str,
        limit: int = Query(
            default=settings.history.default_limit,
            ge=1,
            le=settings.history.capacity,
        ),
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        records, message_count = await registry.get_messages(connection_id, limit)
        return JSONResponse({
            "success": True,
            "connection_id": connection_id,
            "message_count": message_count,
            "messages": [_dump(record) for record in records],
        })

    @app.delete("/connection/{connection_id}/messages")
    async def clear_messages(
        connection_id: str,
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        cleared = await registry.clear_history(connection_id)
        return JSONResponse({
            "success": True,
            "message": "Message history cleared",
            "connection_id": connection_id,
            "cleared": cleared,
        })

    @app.post("/send/{connection_id}")
    async def send(
        connection_id: str,
        payload: Any = Body(default=None),
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        """Send an arbitrary JSON payload to the session's sink."""
        await registry.send_manual(connection_id, payload)
        return JSONResponse({
            "success": True,
            "connection_id": connection_id,
            "message": "Message sent to Xiaozhi",
            "timestamp": utc_now().isoformat(),
        })

    @app.delete("/disconnect/{connection_id}")
    async def disconnect(
        connection_id: str,
        registry: SessionRegistry = Depends(get_registry),
    ) -> JSONResponse:
        remaining = await registry.delete(connection_id)
        return JSONResponse({
            "success": True,
            "message": "Bridge connection disconnected",
            "connection_id": connection_id,
            "remaining_connections": remaining,
        })

    return app


# =============================================================================
# FastAPI Application
# =============================================================================

app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    import uvicorn

    uvicorn.run(
        "mcp_bridge.main:app",
        host=default_settings.server.host,
        port=default_settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
