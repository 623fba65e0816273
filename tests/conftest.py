"""Test configuration and fixtures."""

from pathlib import Path
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest
from docker.errors import NotFound

from container_panel.config.settings import Settings
from container_panel.managers.data_dir_resolver import DataDirectoryResolver
from container_panel.managers.scaffold_provisioner import ScaffoldProvisioner
from container_panel.utils.docker_client import get_docker_client


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    """Host directory standing in for /opt/js-data."""
    root = tmp_path / "data"
    root.mkdir()
    return root


@pytest.fixture
def settings(data_root: Path) -> Settings:
    """Settings pointing at a temporary data root."""
    return Settings(data_root=str(data_root), log_format="text", tool_timeout_s=30)


@pytest.fixture
def mock_docker_client():
    """Create mock Docker client with no containers."""
    client = MagicMock()
    client.containers.get.side_effect = NotFound("No such container")
    return client


@pytest.fixture
def provisioner(settings: Settings) -> ScaffoldProvisioner:
    return ScaffoldProvisioner(settings)


@pytest.fixture
def resolver(mock_docker_client, settings, provisioner) -> DataDirectoryResolver:
    return DataDirectoryResolver(mock_docker_client, settings, provisioner)


def make_attrs(
    name: str,
    labels: Optional[Dict[str, str]] = None,
    env: Optional[list] = None,
    binds: Optional[list] = None,
    docker_id: str = "abc123def456",
    image: str = "node:20",
    status: str = "running",
    cmd: Optional[list] = None,
) -> Dict[str, Any]:
    """Build a minimal Docker inspect document."""
    return {
        "Id": docker_id,
        "Name": f"/{name}",
        "State": {"Status": status},
        "Config": {
            "Image": image,
            "Labels": labels or {},
            "Env": env or [],
            "Cmd": cmd,
            "WorkingDir": "/home/container",
            "Tty": True,
        },
        "HostConfig": {
            "Binds": binds or [],
            "RestartPolicy": {"Name": "unless-stopped", "MaximumRetryCount": 0},
        },
    }


def make_container(attrs: Dict[str, Any]) -> MagicMock:
    """Create a mock docker-py Container from an inspect document."""
    container = MagicMock()
    container.id = attrs["Id"]
    container.name = attrs["Name"].lstrip("/")
    container.attrs = attrs
    return container


@pytest.fixture(scope="session")
def docker_available():
    """Check if Docker daemon is available."""
    try:
        client = get_docker_client()
        client.ping()
        return True
    except Exception:
        return False


@pytest.fixture
def require_docker(docker_available):
    """Skip test if Docker is not available."""
    if not docker_available:
        pytest.skip("Docker daemon not available - skipping integration test")


@pytest.fixture
def attrs_factory():
    """Factory for Docker inspect documents."""
    return make_attrs


@pytest.fixture
def container_factory():
    """Factory for mock Docker containers built from inspect documents."""
    return make_container
