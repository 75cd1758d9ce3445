"""
MCP Bridge Configuration
========================

This module handles configuration loading for the bridge service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    BRIDGE_MAX_RECONNECT_ATTEMPTS -> bridge.max_reconnect_attempts
    BRIDGE_RECONNECT_DELAY_MS     -> bridge.reconnect_delay_ms
    BRIDGE_HISTORY_CAPACITY       -> history.capacity
    BRIDGE_SINK_TOKEN_URL         -> sink.token_url_template
    BRIDGE_HOST                   -> server.host
    BRIDGE_PORT                   -> server.port
    PORT                          -> server.port (wins over BRIDGE_PORT)
    BRIDGE_LOG_LEVEL              -> logging.level
    BRIDGE_LOG_FORMAT             -> logging.format

Example:
    from mcp_bridge.config import settings

    print(settings.server.port)
    print(settings.bridge.max_reconnect_attempts)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification."""

    name: str = Field(default="MCP-Xiaozhi Bridge", description="Service name")
    version: str = Field(default="2.0.0", description="Service version")


class BridgeDefaultsConfig(BaseModel):
    """Default retry policy for new sessions."""

    max_reconnect_attempts: int = Field(
        default=5,
        ge=0,
        description="Reconnect attempts before a session gives up",
    )
    reconnect_delay_ms: int = Field(
        default=3000,
        ge=0,
        description="Delay before each reconnect attempt (milliseconds)",
    )


class HistoryConfig(BaseModel):
    """Per-session message history."""

    capacity: int = Field(default=100, ge=1, description="Records kept per session")
    default_limit: int = Field(default=50, ge=1, description="Records returned by default")


class SourceConfig(BaseModel):
    """Upstream SSE subscription."""

    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for establishing the SSE stream",
    )


class SinkConfig(BaseModel):
    """Downstream WebSocket connection."""

    open_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for the WebSocket opening handshake",
    )
    ping_interval_seconds: Optional[float] = Field(
        default=20.0,
        gt=0,
        description="Keepalive ping interval (null disables)",
    )
    ping_timeout_seconds: Optional[float] = Field(
        default=20.0,
        gt=0,
        description="Keepalive pong timeout (null disables)",
    )
    token_url_template: str = Field(
        default="wss://api.xiaozhi.me/mcp/?token={token}",
        description="Sink URL built from a token when no URL is given",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the bridge service.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    bridge: BridgeDefaultsConfig = Field(default_factory=BridgeDefaultsConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Retry policy
    if env_attempts := os.environ.get("BRIDGE_MAX_RECONNECT_ATTEMPTS"):
        config_data.setdefault("bridge", {})["max_reconnect_attempts"] = int(env_attempts)
    if env_delay := os.environ.get("BRIDGE_RECONNECT_DELAY_MS"):
        config_data.setdefault("bridge", {})["reconnect_delay_ms"] = int(env_delay)

    # History
    if env_capacity := os.environ.get("BRIDGE_HISTORY_CAPACITY"):
        config_data.setdefault("history", {})["capacity"] = int(env_capacity)

    # Sink
    if env_template := os.environ.get("BRIDGE_SINK_TOKEN_URL"):
        config_data.setdefault("sink", {})["token_url_template"] = env_template

    # Server settings (PORT is what most PaaS platforms inject)
    if env_host := os.environ.get("BRIDGE_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("BRIDGE_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("BRIDGE_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log
    if env_format := os.environ.get("BRIDGE_LOG_FORMAT"):
        config_data.setdefault("logging", {})["format"] = env_format


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
