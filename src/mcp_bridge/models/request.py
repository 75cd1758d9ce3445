"""
Create-Session Request Schema
=============================

This module validates the body of a create-session request and resolves it
into the immutable BridgeConfig a BridgeSession is built from.

Input Contract (control surface):
    {
        "mcpServerUrl": "https://your-mcp-server.com/sse",
        "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=YOUR_TOKEN",
        "xiaozhiToken": "YOUR_TOKEN",            # alternative to xiaozhiWssUrl
        "headers": {"Authorization": "Bearer x"},  # optional, sent to the source
        "options": {
            "maxReconnectAttempts": 5,           # optional
            "reconnectDelay": 3000               # optional, milliseconds
        }
    }

snake_case names (source_url, sink_url, sink_token, max_reconnect_attempts,
reconnect_delay_ms) are accepted as well.

Design Rules:
    - Validation never opens a connection
    - Every failure surfaces as ConfigValidationError
    - The resulting BridgeConfig is frozen
"""

from typing import Any, Dict, Optional
from urllib.parse import quote, urlsplit

from pydantic import BaseModel, Field, ValidationError

from mcp_bridge.errors import ConfigValidationError


SOURCE_SCHEMES = ("http", "https")
SINK_SCHEMES = ("ws", "wss")


class SessionOptions(BaseModel):
    """Optional retry-policy overrides for one session."""

    max_reconnect_attempts: Optional[int] = Field(
        default=None,
        ge=0,
        alias="maxReconnectAttempts",
        description="Reconnect attempts before the session gives up",
    )
    reconnect_delay_ms: Optional[int] = Field(
        default=None,
        ge=0,
        alias="reconnectDelay",
        description="Delay before each reconnect attempt (milliseconds)",
    )

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True


class CreateSessionRequest(BaseModel):
    """
    Raw create-session body as sent by control-plane callers.

    Attributes:
        source_url: SSE endpoint of the MCP server (http/https)
        sink_url: WebSocket endpoint of the sink (ws/wss)
        sink_token: Token used to derive sink_url when it is absent
        headers: Extra request headers for the source subscription
        options: Retry-policy overrides
    """

    source_url: Optional[str] = Field(default=None, alias="mcpServerUrl")
    sink_url: Optional[str] = Field(default=None, alias="xiaozhiWssUrl")
    sink_token: Optional[str] = Field(default=None, alias="xiaozhiToken")
    headers: Dict[str, str] = Field(default_factory=dict)
    options: SessionOptions = Field(default_factory=SessionOptions)

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True
        json_schema_extra = {
            "example": {
                "mcpServerUrl": "https://your-mcp-server.com/sse",
                "xiaozhiWssUrl": "wss://api.xiaozhi.me/mcp/?token=YOUR_TOKEN",
            }
        }


class BridgeConfig(BaseModel):
    """
    Immutable configuration of one bridge session.

    Attributes:
        source_url: Validated SSE endpoint
        sink_url: Validated WebSocket endpoint
        headers: Headers sent with the source subscription
        max_reconnect_attempts: Retry budget after a post-handshake failure
        reconnect_delay_ms: Delay before each retry
    """

    source_url: str
    sink_url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay_ms: int = Field(default=3000, ge=0)

    class Config:
        """Pydantic model configuration."""

        frozen = True

    @property
    def reconnect_delay(self) -> float:
        """Reconnect delay in seconds."""
        return self.reconnect_delay_ms / 1000.0


def _check_url(url: str, schemes: tuple, label: str) -> None:
    parts = urlsplit(url)
    if parts.scheme.lower() not in schemes or not parts.netloc:
        allowed = " or ".join(f"{s}://" for s in schemes)
        raise ConfigValidationError(
            f"Invalid URL format: {label} must be an absolute {allowed} URL, got {url!r}"
        )


def build_bridge_config(
    payload: Any,
    default_max_reconnect_attempts: int = 5,
    default_reconnect_delay_ms: int = 3000,
    token_url_template: str = "wss://api.xiaozhi.me/mcp/?token={token}",
) -> BridgeConfig:
    """
    Validate a create-session body and resolve it into a BridgeConfig.

    Args:
        payload: Decoded request body (mapping or CreateSessionRequest)
        default_max_reconnect_attempts: Used when options omit it
        default_reconnect_delay_ms: Used when options omit it
        token_url_template: Template deriving the sink URL from a token

    Returns:
        Frozen BridgeConfig

    Raises:
        ConfigValidationError: Missing or malformed fields, wrong schemes
    """
    if isinstance(payload, CreateSessionRequest):
        request = payload
    else:
        try:
            request = CreateSessionRequest.model_validate(payload)
        except ValidationError as e:
            raise ConfigValidationError(
                "Invalid request body",
                errors=e.errors(include_url=False, include_context=False),
            ) from e

    sink_url = request.sink_url
    if not sink_url and request.sink_token:
        sink_url = token_url_template.format(token=quote(request.sink_token, safe=""))

    if not request.source_url or not sink_url:
        raise ConfigValidationError(
            "Missing required fields: mcpServerUrl and (xiaozhiWssUrl or xiaozhiToken)"
        )

    _check_url(request.source_url, SOURCE_SCHEMES, "mcpServerUrl")
    _check_url(sink_url, SINK_SCHEMES, "xiaozhiWssUrl")

    options = request.options
    return BridgeConfig(
        source_url=request.source_url,
        sink_url=sink_url,
        headers=dict(request.headers),
        max_reconnect_attempts=(
            options.max_reconnect_attempts
            if options.max_reconnect_attempts is not None
            else default_max_reconnect_attempts
        ),
        reconnect_delay_ms=(
            options.reconnect_delay_ms
            if options.reconnect_delay_ms is not None
            else default_reconnect_delay_ms
        ),
    )
