"""Make sure container images are present locally before use."""

import asyncio
from typing import Optional, Tuple

from docker import DockerClient
from docker.errors import APIError, ImageNotFound

from container_panel.utils import get_logger
from container_panel.utils.docker_client import get_docker_client
from container_panel.utils.exceptions import DockerAPIError, ImagePullError
from container_panel.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


def split_image_ref(image_ref: str) -> Tuple[str, Optional[str]]:
    """
    Split an image reference into repository and tag.

    A colon only denotes a tag when it appears after the last slash, so
    registry ports (``registry:5000/app``) are left in the repository.
    Digest references are returned whole with no tag.
    """
    if "@" in image_ref:
        return image_ref, None

    repo, sep, tag = image_ref.rpartition(":")
    if not sep or "/" in tag:
        return image_ref, None
    return repo, tag


class ImageManager:
    """Checks for images locally and pulls the ones that are missing."""

    def __init__(self, docker_client: Optional[DockerClient] = None) -> None:
        self.docker_client = docker_client or get_docker_client()
        self.metrics = get_metrics_collector()

    async def ensure_image(self, image_ref: str) -> bool:
        """
        Ensure an image is present locally, pulling it if needed.

        The pull is awaited to completion; callers create containers only
        after this returns.

        Args:
            image_ref: Image reference (e.g. ``node:20``)

        Returns:
            True if the image had to be pulled, False if it was already present

        Raises:
            ImagePullError: If the image is missing and cannot be pulled
            DockerAPIError: If the local image lookup itself fails
        """
        try:
            await asyncio.to_thread(self.docker_client.images.get, image_ref)
            logger.debug("Image already present locally", extra={"image": image_ref})
            return False
        except ImageNotFound:
            logger.info("Pulling image", extra={"image": image_ref})
        except APIError as e:
            raise DockerAPIError(f"Failed to inspect image {image_ref}: {e}", e)

        repository, tag = split_image_ref(image_ref)
        try:
            await asyncio.to_thread(self.docker_client.images.pull, repository, tag=tag)
        except APIError as e:
            logger.error("Failed to pull image", extra={"image": image_ref, "error": str(e)})
            self.metrics.record_image_pull(image_ref, "failure")
            raise ImagePullError(image_ref, e)

        self.metrics.record_image_pull(image_ref, "success")
        logger.info("Image pulled successfully", extra={"image": image_ref})
        return True
