"""Unit tests for ImageManager."""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, ImageNotFound

from container_panel.managers.image_manager import ImageManager, split_image_ref
from container_panel.utils.exceptions import DockerAPIError, ImagePullError


@pytest.mark.parametrize(
    "ref,expected",
    [
        ("node:20", ("node", "20")),
        ("node", ("node", None)),
        ("ghcr.io/org/app:1.2", ("ghcr.io/org/app", "1.2")),
        ("registry:5000/app", ("registry:5000/app", None)),
        ("registry:5000/app:edge", ("registry:5000/app", "edge")),
        ("node@sha256:abcd", ("node@sha256:abcd", None)),
    ],
)
def test_split_image_ref(ref, expected):
    assert split_image_ref(ref) == expected


@pytest.mark.asyncio
class TestEnsureImage:
    """Tests for pull-if-missing."""

    async def test_present_image_is_not_pulled(self):
        client = MagicMock()
        manager = ImageManager(client)

        pulled = await manager.ensure_image("node:20")

        assert pulled is False
        client.images.pull.assert_not_called()

    async def test_missing_image_is_pulled(self):
        client = MagicMock()
        client.images.get.side_effect = ImageNotFound("missing")
        manager = ImageManager(client)

        pulled = await manager.ensure_image("node:20")

        assert pulled is True
        client.images.pull.assert_called_once_with("node", tag="20")

    async def test_pull_failure(self):
        client = MagicMock()
        client.images.get.side_effect = ImageNotFound("missing")
        client.images.pull.side_effect = APIError("registry unreachable")
        manager = ImageManager(client)

        with pytest.raises(ImagePullError) as exc_info:
            await manager.ensure_image("node:20")

        assert exc_info.value.image == "node:20"

    async def test_lookup_failure(self):
        client = MagicMock()
        client.images.get.side_effect = APIError("daemon error")
        manager = ImageManager(client)

        with pytest.raises(DockerAPIError):
            await manager.ensure_image("node:20")

        client.images.pull.assert_not_called()
