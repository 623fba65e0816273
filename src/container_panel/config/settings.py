"""Settings and configuration management for Container Panel."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PANEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data directory configuration
    data_root: str = Field(
        default="/opt/js-data",
        description="Host directory under which container data directories live",
    )

    scaffold_root: str | None = Field(
        default=None,
        description="Directory holding helper files copied into new data directories "
        "(defaults to the scaffold bundled with the package)",
    )

    # Container configuration
    default_image: str = Field(
        default="node:20",
        description="Image used for newly created containers",
    )

    panel_kind: str = Field(
        default="js-panel",
        description="Value of the panel.kind label stamped on managed containers",
    )

    container_home: str = Field(
        default="/home/container",
        description="Mount point of the data directory inside the container",
    )

    restart_policy: str | None = Field(
        default="unless-stopped",
        description="Docker restart policy for new containers (empty to disable)",
    )

    stop_timeout_s: int = Field(
        default=10,
        description="Seconds to wait for a graceful stop before Docker kills the container",
    )

    # Log streaming configuration
    log_tail_lines: int = Field(
        default=200,
        description="Number of recent log lines replayed when a viewer subscribes",
    )

    # Archive tool configuration
    tool_timeout_s: int = Field(
        default=300,
        description="Timeout in seconds for external archive tools",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon host URL (defaults to Docker's standard detection)",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to",
    )

    port: int = Field(
        default=8080,
        description="Server port to bind to",
    )

    transport_mode: Literal["stdio", "sse", "streamable-http"] = Field(
        default="streamable-http",
        description="Transport protocol for the panel server (stdio, sse, or streamable-http)",
    )

    path: str = Field(
        default="/mcp",
        description="Path for HTTP-based transports (sse or streamable-http)",
    )

    # Authentication configuration
    auth_mode: Literal["none", "bearer"] = Field(
        default="none",
        description="Authentication mode (none or bearer)",
    )

    bearer_token: str | None = Field(
        default=None,
        description="Bearer token for bearer authentication mode",
    )

    @property
    def restart_policy_config(self) -> dict | None:
        """Docker SDK restart policy mapping, or None when disabled."""
        if not self.restart_policy:
            return None
        return {"Name": self.restart_policy}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
