"""Shared Docker client for the panel process."""

import asyncio
from typing import Optional

import docker
from docker import DockerClient
from docker.errors import DockerException

from container_panel.config import Settings, get_settings
from container_panel.utils import get_logger
from container_panel.utils.exceptions import DockerAPIError

logger = get_logger(__name__)


def connect(settings: Optional[Settings] = None) -> DockerClient:
    """
    Open a client for the configured daemon and verify it answers.

    Args:
        settings: Settings providing ``docker_host`` (Docker's own environment
            detection is used when it is unset)

    Returns:
        Connected DockerClient

    Raises:
        DockerAPIError: If the daemon cannot be reached
    """
    settings = settings or get_settings()
    try:
        if settings.docker_host:
            client = docker.DockerClient(base_url=settings.docker_host)
        else:
            client = docker.from_env()
        client.ping()
    except DockerException as e:
        logger.error(
            "Failed to connect to Docker daemon",
            extra={"docker_host": settings.docker_host, "error": str(e)},
        )
        raise DockerAPIError(f"Cannot reach Docker daemon: {e}", e)

    logger.info(
        "Connected to Docker daemon",
        extra={"docker_version": client.version().get("Version")},
    )
    return client


_client: Optional[DockerClient] = None


def get_docker_client() -> DockerClient:
    """Get the process-wide Docker client, connecting on first use."""
    global _client
    if _client is None:
        _client = connect()
    return _client


def close_docker_client() -> None:
    """Close the process-wide Docker client if one is open."""
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("Docker client connection closed")


async def docker_reachable() -> bool:
    """Ping the daemon off the event loop; False on any connection failure."""
    try:
        client = get_docker_client()
        await asyncio.to_thread(client.ping)
    except (DockerAPIError, DockerException) as e:
        logger.warning("Docker health check failed", extra={"error": str(e)})
        return False
    return True
