"""Container Panel server implementation using FastMCP 2."""

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_access_token
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse

from container_panel.auth import TokenValidator, create_auth_provider
from container_panel.config import get_settings
from container_panel.managers.container_manager import ContainerManager
from container_panel.managers.filesystem_manager import FileInfo, FilesystemManager
from container_panel.managers.log_streamer import get_log_streamer
from container_panel.mcp_tools import (
    CompressInput,
    ContainerActionInput,
    ContainerActionOutput,
    ContainerInfo,
    ContainerListInput,
    ContainerListOutput,
    ContainerOutput,
    ContainerRefInput,
    CreateContainerInput,
    EnvOutput,
    ExtractInput,
    ExtractOutput,
    FileDeleteOutput,
    FileEntry,
    FileListInput,
    FileListOutput,
    FilePathInput,
    FileReadOutput,
    FileWriteInput,
    HealthCheckResponse,
    InspectOutput,
    LogsInput,
    LogsOutput,
    MetricsOutput,
    MigrateOutput,
    UpdateSettingsInput,
    decode_content,
    encode_content,
)
from container_panel.models.containers import ContainerAction
from container_panel.utils import get_logger, setup_logging
from container_panel.utils.audit_logger import AuditEventType, get_audit_logger
from container_panel.utils.docker_client import (
    close_docker_client,
    docker_reachable,
    get_docker_client,
)
from container_panel.utils.exceptions import (
    ContainerNotFoundError,
    DockerAPIError,
    InvalidPathError,
)
from container_panel.utils.metrics_collector import get_metrics_collector

VERSION = "0.1.0"

ACTION_EVENTS = {
    ContainerAction.START: AuditEventType.CONTAINER_START,
    ContainerAction.STOP: AuditEventType.CONTAINER_STOP,
    ContainerAction.RESTART: AuditEventType.CONTAINER_RESTART,
    ContainerAction.DELETE: AuditEventType.CONTAINER_DELETE,
}

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Lifespan context manager for startup and shutdown tasks."""
    settings = get_settings()

    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    logger.info("Starting Container Panel server", extra={"version": VERSION})

    try:
        Path(settings.data_root).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(
            "Failed to create data root",
            extra={"data_root": settings.data_root, "error": str(e)},
        )
        raise

    try:
        get_docker_client()
        logger.info("Docker client initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize Docker client", extra={"error": str(e)})
        raise

    get_audit_logger().log_event(
        AuditEventType.SYSTEM_STARTUP,
        details={"data_root": settings.data_root, "version": VERSION},
    )

    yield

    logger.info("Shutting down Container Panel server")
    get_audit_logger().log_event(AuditEventType.SYSTEM_SHUTDOWN)
    close_docker_client()
    logger.info("Container Panel server stopped")


# Auth provider is set in main() after settings are loaded
mcp = FastMCP("Container Panel", lifespan=lifespan)


def _current_principal() -> Optional[str]:
    token = get_access_token()
    return token.client_id if token is not None else None


def _to_file_entry(info: FileInfo) -> FileEntry:
    return FileEntry(
        name=info.name,
        path=info.path,
        size=info.size,
        is_dir=info.is_dir,
        mtime=info.mtime,
        mime_type=info.mime_type,
    )


def _audit_path_rejected(container: str, path: str, error: InvalidPathError) -> None:
    get_audit_logger().log_event(
        AuditEventType.SECURITY_PATH_REJECTED,
        container_id=container,
        principal=_current_principal(),
        path=path,
        details={"reason": error.reason},
    )


@mcp.tool()
async def health() -> HealthCheckResponse:
    """
    Health check endpoint to verify Docker connectivity and the data root.

    Returns:
        HealthCheckResponse with status, Docker connection and data root info
    """
    settings = get_settings()

    docker_connected = await docker_reachable()

    data_root_writable = os.access(settings.data_root, os.W_OK)

    return HealthCheckResponse(
        status="healthy" if docker_connected and data_root_writable else "degraded",
        docker_connected=docker_connected,
        data_root_writable=data_root_writable,
        active_log_subscriptions=get_log_streamer().active_count,
        version=VERSION,
    )


@mcp.tool()
async def metrics() -> MetricsOutput:
    """
    Get Prometheus metrics for the panel.

    Returns:
        MetricsOutput with metrics in Prometheus text format
    """
    metrics_data = get_metrics_collector().get_metrics()
    return MetricsOutput(metrics=metrics_data.decode("utf-8"))


# ========== Container lifecycle ==========


@mcp.tool()
async def list_containers(input_data: ContainerListInput) -> ContainerListOutput:
    """
    List all containers, including stopped ones.

    Args:
        input_data: Whether to restrict the list to panel-labelled containers

    Returns:
        ContainerListOutput with one entry per container
    """
    logger.debug("Container list requested")

    try:
        summaries = await ContainerManager().list_containers(panel_only=input_data.panel_only)
    except Exception as e:
        logger.error("Failed to list containers", extra={"error": str(e)})
        raise

    return ContainerListOutput(
        containers=[
            ContainerInfo(
                docker_id=s.docker_id,
                name=s.name,
                image=s.image,
                state=s.state,
                container_id=s.logical_id,
                data_dir=s.data_dir,
                managed=s.managed,
            )
            for s in summaries
        ]
    )


@mcp.tool()
async def create_container(input_data: CreateContainerInput) -> ContainerOutput:
    """
    Create and start a new container with its own data directory.

    Args:
        input_data: Name, startup command and tunnel settings

    Returns:
        ContainerOutput with the logical ID, data directory and Docker ID
    """
    logger.info("Creating container", extra={"container": input_data.name})

    metrics_collector = get_metrics_collector()

    try:
        result = await ContainerManager().create(
            input_data.name,
            startup_cmd=input_data.startup_cmd,
            tunnel_enabled=input_data.tunnel_enabled,
            tunnel_token=input_data.tunnel_token,
        )
    except Exception as e:
        metrics_collector.record_container_operation("create", "failure")
        logger.error(
            "Failed to create container",
            extra={"container": input_data.name, "error": str(e)},
        )
        raise

    metrics_collector.record_container_operation("create", "success")
    get_audit_logger().log_event(
        AuditEventType.CONTAINER_CREATE,
        container_id=result.container_id,
        principal=_current_principal(),
        details={
            "name": result.name,
            "data_dir": str(result.data_dir),
            "startup_cmd": input_data.startup_cmd,
            "tunnel_enabled": input_data.tunnel_enabled,
            "tunnel_token": input_data.tunnel_token,
        },
    )

    return ContainerOutput(
        container_id=result.container_id,
        name=result.name,
        data_dir=str(result.data_dir),
        docker_id=result.docker_id,
    )


@mcp.tool()
async def container_action(input_data: ContainerActionInput) -> ContainerActionOutput:
    """
    Start, stop, restart or delete a container.

    Deleting a container never removes its data directory.

    Args:
        input_data: Container identity and action

    Returns:
        ContainerActionOutput confirming the action
    """
    action = ContainerAction(input_data.action)
    logger.info(
        "Applying container action",
        extra={"container": input_data.container, "action": action.value},
    )

    metrics_collector = get_metrics_collector()

    try:
        await ContainerManager().transition(input_data.container, action)
    except Exception as e:
        metrics_collector.record_container_operation(action.value, "failure")
        logger.error(
            "Container action failed",
            extra={"container": input_data.container, "action": action.value, "error": str(e)},
        )
        raise

    metrics_collector.record_container_operation(action.value, "success")
    get_audit_logger().log_event(
        ACTION_EVENTS[action],
        container_id=input_data.container,
        principal=_current_principal(),
    )

    return ContainerActionOutput(container=input_data.container, action=action)


@mcp.tool()
async def inspect_container(input_data: ContainerRefInput) -> InspectOutput:
    """
    Return the raw Docker inspect document for a container.

    Args:
        input_data: Container identity

    Returns:
        InspectOutput with the inspect attributes
    """
    attrs = await ContainerManager().inspect(input_data.container)
    return InspectOutput(attrs=attrs)


@mcp.tool()
async def get_env(input_data: ContainerRefInput) -> EnvOutput:
    """
    Return a container's environment variables.

    Args:
        input_data: Container identity

    Returns:
        EnvOutput mapping variable names to values
    """
    env = await ContainerManager().get_env(input_data.container)
    return EnvOutput(env=env)


@mcp.tool()
async def update_settings(input_data: UpdateSettingsInput) -> ContainerOutput:
    """
    Apply new startup and tunnel settings by recreating the container.

    The data directory is kept. A legacy container is upgraded to the
    data-dir label scheme as part of the recreate.

    Args:
        input_data: Container identity and new settings

    Returns:
        ContainerOutput describing the replacement container
    """
    logger.info("Updating container settings", extra={"container": input_data.container})

    metrics_collector = get_metrics_collector()

    try:
        result = await ContainerManager().update_settings(
            input_data.container,
            startup_cmd=input_data.startup_cmd,
            tunnel_enabled=input_data.tunnel_enabled,
            tunnel_token=input_data.tunnel_token,
        )
    except Exception as e:
        metrics_collector.record_container_operation("update_settings", "failure")
        logger.error(
            "Failed to update container settings",
            extra={"container": input_data.container, "error": str(e)},
        )
        raise

    metrics_collector.record_container_operation("update_settings", "success")
    get_audit_logger().log_event(
        AuditEventType.CONTAINER_SETTINGS_UPDATE,
        container_id=result.container_id,
        principal=_current_principal(),
        details={
            "name": result.name,
            "startup_cmd": input_data.startup_cmd,
            "tunnel_enabled": input_data.tunnel_enabled,
            "tunnel_token": input_data.tunnel_token,
        },
    )

    return ContainerOutput(
        container_id=result.container_id,
        name=result.name,
        data_dir=str(result.data_dir),
        docker_id=result.docker_id,
    )


@mcp.tool()
async def migrate_container(input_data: ContainerRefInput) -> MigrateOutput:
    """
    Upgrade a legacy container to the data-dir label scheme.

    Args:
        input_data: Container identity

    Returns:
        MigrateOutput; already_migrated is true when nothing changed
    """
    logger.info("Migrating container", extra={"container": input_data.container})

    metrics_collector = get_metrics_collector()

    try:
        result = await ContainerManager().migrate(input_data.container)
    except Exception as e:
        metrics_collector.record_container_operation("migrate", "failure")
        logger.error(
            "Failed to migrate container",
            extra={"container": input_data.container, "error": str(e)},
        )
        raise

    metrics_collector.record_container_operation("migrate", "success")
    if not result.already_migrated:
        get_audit_logger().log_event(
            AuditEventType.CONTAINER_MIGRATE,
            container_id=result.container_id,
            principal=_current_principal(),
            details={"name": result.name, "data_dir": str(result.data_dir)},
        )

    return MigrateOutput(
        name=result.name,
        container_id=result.container_id,
        data_dir=str(result.data_dir),
        already_migrated=result.already_migrated,
        docker_id=result.docker_id,
    )


@mcp.tool()
async def container_logs(input_data: LogsInput) -> LogsOutput:
    """
    Return the most recent log output of a container.

    Use the HTTP route ``GET /logs/{container}`` to follow output live.

    Args:
        input_data: Container identity and number of lines

    Returns:
        LogsOutput with the combined stdout/stderr tail
    """
    data = await get_log_streamer().snapshot(input_data.container, tail=input_data.tail)
    return LogsOutput(
        container=input_data.container,
        logs=data.decode("utf-8", errors="replace"),
    )


# ========== Live log streaming ==========


@mcp.custom_route("/logs/{identity}", methods=["GET"])
async def stream_logs(request: Request) -> Response:
    """Stream a container's combined output until the client disconnects."""
    identity = request.path_params["identity"]
    audit_logger = get_audit_logger()

    principal = TokenValidator().validate_header(request.headers.get("authorization"))
    if principal is None:
        audit_logger.log_event(
            AuditEventType.SECURITY_AUTH_REJECTED,
            container_id=identity,
            details={"route": "logs"},
        )
        return JSONResponse({"error": "unauthorized"}, status_code=401)

    tail: Optional[int] = None
    if "tail" in request.query_params:
        try:
            tail = int(request.query_params["tail"])
        except ValueError:
            return JSONResponse({"error": "tail must be an integer"}, status_code=400)
        if tail < 0:
            return JSONResponse({"error": "tail must not be negative"}, status_code=400)

    try:
        subscription = await get_log_streamer().subscribe(identity, tail=tail)
    except ContainerNotFoundError as e:
        return JSONResponse({"error": str(e)}, status_code=404)
    except DockerAPIError as e:
        logger.error("Failed to open log stream", extra={"container": identity, "error": str(e)})
        return JSONResponse({"error": str(e)}, status_code=502)

    audit_logger.log_event(
        AuditEventType.LOGS_SUBSCRIBE, container_id=identity, principal=principal
    )

    async def body():
        try:
            async for chunk in subscription:
                yield chunk
        finally:
            await subscription.aclose()
            audit_logger.log_event(
                AuditEventType.LOGS_UNSUBSCRIBE, container_id=identity, principal=principal
            )

    return StreamingResponse(
        body(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ========== File operations ==========


@mcp.tool()
async def fs_list(input_data: FileListInput) -> FileListOutput:
    """
    List a directory inside a container's data directory.

    Args:
        input_data: Container identity and directory path

    Returns:
        FileListOutput with entries, directories first
    """
    try:
        entries = await FilesystemManager().list(input_data.container, input_data.path)
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, input_data.path, e)
        raise

    return FileListOutput(
        path=input_data.path,
        entries=[_to_file_entry(info) for info in entries],
    )


@mcp.tool()
async def fs_read(input_data: FilePathInput) -> FileReadOutput:
    """
    Read a file from a container's data directory.

    Text files are returned as UTF-8, anything else as base64.

    Args:
        input_data: Container identity and file path

    Returns:
        FileReadOutput with content, encoding and size
    """
    try:
        data, info = await FilesystemManager().read(input_data.container, input_data.path)
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, input_data.path, e)
        raise

    content, encoding = encode_content(data)
    return FileReadOutput(
        path=info.path,
        content=content,
        encoding=encoding,
        size=info.size,
        mime_type=info.mime_type,
    )


@mcp.tool()
async def fs_write(input_data: FileWriteInput) -> FileEntry:
    """
    Write or upload a file, creating parent directories as needed.

    Args:
        input_data: Container identity, path, content and its encoding

    Returns:
        FileEntry for the written file
    """
    content = decode_content(input_data.content, input_data.encoding)

    try:
        info = await FilesystemManager().write(input_data.container, input_data.path, content)
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, input_data.path, e)
        raise

    get_audit_logger().log_event(
        AuditEventType.FS_WRITE,
        container_id=input_data.container,
        principal=_current_principal(),
        path=info.path,
        details={"size": info.size},
    )
    return _to_file_entry(info)


@mcp.tool()
async def fs_delete(input_data: FilePathInput) -> FileDeleteOutput:
    """
    Delete a file or directory tree. The data directory root cannot be deleted.

    Args:
        input_data: Container identity and path

    Returns:
        FileDeleteOutput confirming the deletion
    """
    try:
        await FilesystemManager().delete(input_data.container, input_data.path)
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, input_data.path, e)
        raise

    get_audit_logger().log_event(
        AuditEventType.FS_DELETE,
        container_id=input_data.container,
        principal=_current_principal(),
        path=input_data.path,
    )
    return FileDeleteOutput(status="deleted", path=input_data.path)


@mcp.tool()
async def fs_create_file(input_data: FileWriteInput) -> FileEntry:
    """
    Create a new file; fails if the path already exists.

    Args:
        input_data: Container identity, path and optional initial content

    Returns:
        FileEntry for the created file
    """
    content = decode_content(input_data.content, input_data.encoding)

    try:
        info = await FilesystemManager().create_file(
            input_data.container, input_data.path, content
        )
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, input_data.path, e)
        raise

    get_audit_logger().log_event(
        AuditEventType.FS_CREATE_FILE,
        container_id=input_data.container,
        principal=_current_principal(),
        path=info.path,
    )
    return _to_file_entry(info)


@mcp.tool()
async def fs_create_folder(input_data: FilePathInput) -> FileEntry:
    """
    Create a new folder; fails if the path already exists.

    Args:
        input_data: Container identity and folder path

    Returns:
        FileEntry for the created folder
    """
    try:
        info = await FilesystemManager().create_folder(input_data.container, input_data.path)
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, input_data.path, e)
        raise

    get_audit_logger().log_event(
        AuditEventType.FS_CREATE_FOLDER,
        container_id=input_data.container,
        principal=_current_principal(),
        path=info.path,
    )
    return _to_file_entry(info)


@mcp.tool()
async def fs_extract(input_data: ExtractInput) -> ExtractOutput:
    """
    Extract a zip, tar, tar.gz, gz or rar archive.

    Args:
        input_data: Container identity, archive path and optional destination

    Returns:
        ExtractOutput with the destination directory
    """
    try:
        dest = await FilesystemManager().extract_archive(
            input_data.container, input_data.path, input_data.dest
        )
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, e.path, e)
        raise

    get_audit_logger().log_event(
        AuditEventType.FS_EXTRACT,
        container_id=input_data.container,
        principal=_current_principal(),
        path=input_data.path,
        details={"dest": dest},
    )
    return ExtractOutput(path=input_data.path, dest=dest)


@mcp.tool()
async def fs_compress(input_data: CompressInput) -> FileEntry:
    """
    Compress files and folders into a zip, tar, tar.gz or gz archive.

    Args:
        input_data: Container identity, entries, archive name and working directory

    Returns:
        FileEntry for the created archive
    """
    try:
        info = await FilesystemManager().compress(
            input_data.container,
            input_data.paths,
            input_data.archive_name,
            cwd=input_data.cwd,
        )
    except InvalidPathError as e:
        _audit_path_rejected(input_data.container, e.path, e)
        raise

    get_audit_logger().log_event(
        AuditEventType.FS_COMPRESS,
        container_id=input_data.container,
        principal=_current_principal(),
        path=info.path,
        details={"entries": list(input_data.paths)},
    )
    return _to_file_entry(info)


def main() -> None:
    """Main entry point for the Container Panel server."""
    settings = get_settings()

    # Setup logging first so auth initialization can be properly logged
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    mcp.auth = create_auth_provider(settings)

    logger.info(
        "Starting server",
        extra={
            "transport": settings.transport_mode,
            "auth_mode": settings.auth_mode,
            "host": settings.host if settings.transport_mode != "stdio" else "N/A",
            "port": settings.port if settings.transport_mode != "stdio" else "N/A",
            "data_root": settings.data_root,
        },
    )

    try:
        # FastMCP expects "streamable-http" spelled as "http"
        transport_map = {
            "stdio": "stdio",
            "sse": "sse",
            "streamable-http": "http",
        }

        run_kwargs = {"transport": transport_map[settings.transport_mode]}

        if settings.transport_mode in ("sse", "streamable-http"):
            run_kwargs["host"] = settings.host
            run_kwargs["port"] = settings.port
            run_kwargs["path"] = settings.path

        mcp.run(**run_kwargs)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
