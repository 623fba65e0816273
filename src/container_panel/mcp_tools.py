"""MCP tool input/output models for the container panel."""

import base64
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from container_panel.models.containers import ContainerAction

ContentEncoding = Literal["utf-8", "base64"]


def decode_content(content: str, encoding: ContentEncoding) -> bytes:
    """Turn tool-supplied file content into bytes."""
    if encoding == "base64":
        return base64.b64decode(content, validate=True)
    return content.encode("utf-8")


def encode_content(data: bytes) -> tuple[str, ContentEncoding]:
    """Render file bytes as text when they are valid UTF-8, base64 otherwise."""
    try:
        return data.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        return base64.b64encode(data).decode("ascii"), "base64"


# Container lifecycle tools


class ContainerRefInput(BaseModel):
    """Input model for tools addressing a single container."""

    container: str = Field(..., description="Container name or Docker ID")


class ContainerListInput(BaseModel):
    """Input model for list_containers tool."""

    panel_only: bool = Field(
        default=False, description="Only list containers carrying the panel.kind label"
    )


class ContainerInfo(BaseModel):
    """A container as seen by the panel."""

    docker_id: str = Field(..., description="Docker container ID")
    name: str = Field(..., description="Container name")
    image: str = Field(..., description="Image reference")
    state: str = Field(..., description="Runtime state (running, exited, ...)")
    container_id: Optional[str] = Field(None, description="Logical panel container ID")
    data_dir: Optional[str] = Field(None, description="Labelled host data directory")
    managed: bool = Field(..., description="Whether the container carries panel.data-dir")


class ContainerListOutput(BaseModel):
    """Output model for list_containers tool."""

    containers: List[ContainerInfo] = Field(..., description="Containers known to Docker")


class CreateContainerInput(BaseModel):
    """Input model for create_container tool."""

    name: str = Field(..., description="Container name, also used as the data directory name")
    startup_cmd: Optional[str] = Field(
        None, description="Command run by the boot script (defaults to 'node run.js')"
    )
    tunnel_enabled: bool = Field(default=False, description="Start a Cloudflare tunnel at boot")
    tunnel_token: Optional[str] = Field(None, description="Cloudflare tunnel token")


class ContainerOutput(BaseModel):
    """Output model for create_container and update_settings tools."""

    container_id: str = Field(..., description="Logical panel container ID")
    name: str = Field(..., description="Container name")
    data_dir: str = Field(..., description="Host data directory")
    docker_id: str = Field(..., description="Docker container ID")


class ContainerActionInput(BaseModel):
    """Input model for container_action tool."""

    container: str = Field(..., description="Container name or Docker ID")
    action: ContainerAction = Field(..., description="start, stop, restart or delete")


class ContainerActionOutput(BaseModel):
    """Output model for container_action tool."""

    container: str = Field(..., description="Container the action was applied to")
    action: ContainerAction = Field(..., description="Applied action")
    status: str = Field(default="ok", description="Outcome of the action")


class InspectOutput(BaseModel):
    """Output model for inspect_container tool."""

    attrs: Dict[str, Any] = Field(..., description="Raw Docker inspect document")


class EnvOutput(BaseModel):
    """Output model for get_env tool."""

    env: Dict[str, str] = Field(..., description="Container environment variables")


class UpdateSettingsInput(BaseModel):
    """Input model for update_settings tool."""

    container: str = Field(..., description="Container name or Docker ID")
    startup_cmd: Optional[str] = Field(
        None, description="Command run by the boot script (defaults to 'node run.js')"
    )
    tunnel_enabled: bool = Field(default=False, description="Start a Cloudflare tunnel at boot")
    tunnel_token: Optional[str] = Field(None, description="Cloudflare tunnel token")


class MigrateOutput(BaseModel):
    """Output model for migrate_container tool."""

    name: str = Field(..., description="Container name")
    container_id: str = Field(..., description="Logical panel container ID")
    data_dir: str = Field(..., description="Host data directory")
    already_migrated: bool = Field(..., description="True if nothing had to change")
    docker_id: Optional[str] = Field(None, description="Docker ID after migration")


class LogsInput(BaseModel):
    """Input model for container_logs tool."""

    container: str = Field(..., description="Container name or Docker ID")
    tail: Optional[int] = Field(None, ge=0, description="Number of recent lines to return")


class LogsOutput(BaseModel):
    """Output model for container_logs tool."""

    container: str = Field(..., description="Container name or Docker ID")
    logs: str = Field(..., description="Recent combined stdout/stderr output")


# File tools


class FileEntry(BaseModel):
    """A file or directory inside a container's data directory."""

    name: str = Field(..., description="Entry name")
    path: str = Field(..., description="Path relative to the data directory")
    size: int = Field(..., description="Size in bytes (0 for directories)")
    is_dir: bool = Field(..., description="Whether the entry is a directory")
    mtime: datetime = Field(..., description="Last modification time")
    mime_type: Optional[str] = Field(None, description="MIME type if file")


class FileListInput(BaseModel):
    """Input model for fs_list tool."""

    container: str = Field(..., description="Container name or Docker ID")
    path: str = Field(default="", description="Directory relative to the data directory")


class FileListOutput(BaseModel):
    """Output model for fs_list tool."""

    path: str = Field(..., description="Directory path")
    entries: List[FileEntry] = Field(..., description="Directory entries, folders first")


class FilePathInput(BaseModel):
    """Input model for tools addressing a single path."""

    container: str = Field(..., description="Container name or Docker ID")
    path: str = Field(..., description="Path relative to the data directory")


class FileReadOutput(BaseModel):
    """Output model for fs_read tool."""

    path: str = Field(..., description="Path that was read")
    content: str = Field(..., description="File content")
    encoding: ContentEncoding = Field(..., description="utf-8 for text, base64 for binary")
    size: int = Field(..., description="File size in bytes")
    mime_type: Optional[str] = Field(None, description="MIME type of the file")


class FileWriteInput(BaseModel):
    """Input model for fs_write and fs_create_file tools."""

    container: str = Field(..., description="Container name or Docker ID")
    path: str = Field(..., description="Path relative to the data directory")
    content: str = Field(default="", description="File content")
    encoding: ContentEncoding = Field(default="utf-8", description="Encoding of content")


class FileDeleteOutput(BaseModel):
    """Output model for fs_delete tool."""

    status: str = Field(..., description="Deletion status")
    path: str = Field(..., description="Path that was deleted")


class ExtractInput(BaseModel):
    """Input model for fs_extract tool."""

    container: str = Field(..., description="Container name or Docker ID")
    path: str = Field(..., description="Archive path relative to the data directory")
    dest: Optional[str] = Field(
        None, description="Destination directory (defaults to the archive's directory)"
    )


class ExtractOutput(BaseModel):
    """Output model for fs_extract tool."""

    path: str = Field(..., description="Archive that was extracted")
    dest: str = Field(..., description="Directory the archive was extracted into")


class CompressInput(BaseModel):
    """Input model for fs_compress tool."""

    container: str = Field(..., description="Container name or Docker ID")
    paths: List[str] = Field(..., min_length=1, description="Entries to include, relative to cwd")
    archive_name: str = Field(..., description="Archive name (.zip, .tar, .tar.gz, .tgz or .gz)")
    cwd: str = Field(default="", description="Directory entries and archive are relative to")


# Admin and monitoring tools


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str
    docker_connected: bool
    data_root_writable: bool
    active_log_subscriptions: int = 0
    version: str = "0.1.0"


class MetricsOutput(BaseModel):
    """Output model for metrics tool."""

    metrics: str = Field(..., description="Prometheus metrics in text format")
