"""Configuration schema for the signaling relay.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(default=100, ge=1, description="Maximum concurrent connections")
    max_message_size: int = Field(
        default=65536,
        ge=1024,
        description="Maximum inbound frame size in bytes (offers carry full SDP)",
    )


class TransportConfig(BaseModel):
    """Transport layer configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)


class HealthConfig(BaseModel):
    """Health check and metrics HTTP server configuration."""

    enabled: bool = Field(default=True, description="Serve /health and /metrics")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int = Field(default=8081, ge=1024, le=65535, description="Bind port")


class RelayBehaviorConfig(BaseModel):
    """Signaling router behaviour."""

    notify_undeliverable: bool = Field(
        default=False,
        description="Reply with a TARGET_NOT_FOUND error when an offer/answer target "
        "is not connected (default: drop silently)",
    )


class RelayConfig(BaseModel):
    """Root relay configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    relay: RelayBehaviorConfig = Field(default_factory=RelayBehaviorConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Log line format",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def _section(parent: dict[str, Any], key: str) -> dict[str, Any]:
    """Return a nested mapping, treating an empty YAML section as ``{}``.

    Raises:
        ValueError: If the section is present but not a mapping
    """
    value = parent.get(key)
    if value is None:
        value = parent[key] = {}
    elif not isinstance(value, dict):
        raise ValueError(f"Configuration section '{key}' must be a mapping")
    return value


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides to raw configuration data.

    Args:
        data: Parsed YAML mapping (modified in place)

    Returns:
        The same mapping, for chaining

    Raises:
        ValueError: If a section is not a mapping or an override is not a number
    """
    websocket = _section(_section(data, "transport"), "websocket")
    health = _section(data, "health")
    relay = _section(data, "relay")

    if host := os.getenv("RELAY_HOST"):
        websocket["host"] = host

    if port := os.getenv("RELAY_PORT"):
        websocket["port"] = int(port)

    if max_connections := os.getenv("RELAY_MAX_CONNECTIONS"):
        websocket["max_connections"] = int(max_connections)

    if health_port := os.getenv("HEALTH_PORT"):
        health["port"] = int(health_port)

    if notify := os.getenv("RELAY_NOTIFY_UNDELIVERABLE"):
        relay["notify_undeliverable"] = notify.lower() in ("true", "1", "yes")

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    if log_format := os.getenv("LOG_FORMAT"):
        data["log_format"] = log_format.lower()

    return data
