"""Resolve which host directory backs a container's /home/container."""

import asyncio
import re
from pathlib import Path
from typing import Optional

from docker import DockerClient
from docker.errors import APIError, NotFound

from container_panel.config import Settings, get_settings
from container_panel.managers.scaffold_provisioner import ScaffoldProvisioner
from container_panel.models.containers import (
    LABEL_CONTAINER_ID,
    LABEL_DATA_DIR,
    ContainerRecord,
    LegacyContainer,
    ManagedContainer,
    ResolvedContainer,
)
from container_panel.utils import get_logger
from container_panel.utils.docker_client import get_docker_client
from container_panel.utils.exceptions import (
    DockerAPIError,
    InvalidPathError,
    ScaffoldError,
    StorageError,
)

logger = get_logger(__name__)


class DataDirectoryResolver:
    """
    Maps a container identity to its data directory.

    Containers created by the current scheme carry a ``panel.data-dir`` label
    that is returned as-is. Everything else (legacy containers, stale labels,
    names with no container yet) falls back to ``<data_root>/<display name>``,
    which is created and scaffolded on first use.
    """

    # Docker's own container name grammar; also keeps names inside data_root
    NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")

    def __init__(
        self,
        docker_client: Optional[DockerClient] = None,
        settings: Optional[Settings] = None,
        provisioner: Optional[ScaffoldProvisioner] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.docker_client = docker_client or get_docker_client()
        self.provisioner = provisioner or ScaffoldProvisioner(self.settings)

    @property
    def data_root(self) -> Path:
        return Path(self.settings.data_root)

    def legacy_path(self, display_name: str) -> Path:
        """
        Compute the legacy data directory for a display name.

        Raises:
            InvalidPathError: If the name is not a valid container name
        """
        if not self.NAME_PATTERN.match(display_name or ""):
            raise InvalidPathError(display_name, "not a valid container name")
        return self.data_root / display_name

    async def resolve(self, identity: str) -> Path:
        """Return the data directory for a container identity."""
        resolved = await self.resolve_container(identity)
        return resolved.data_dir

    async def resolve_container(
        self, identity: str, record: Optional[ContainerRecord] = None
    ) -> ResolvedContainer:
        """
        Resolve a container identity to a tagged variant and its data directory.

        Args:
            identity: Container name or Docker ID
            record: Already-inspected record, to avoid a second inspect call

        Returns:
            ResolvedContainer describing the variant and directory

        Raises:
            InvalidPathError: If the legacy fallback name is unusable
            StorageError: If the fallback directory cannot be created
            DockerAPIError: If Docker fails for reasons other than a missing container
        """
        if record is None:
            record = await self._fetch_record(identity)

        if record is not None:
            label_dir = record.labels.get(LABEL_DATA_DIR)
            if label_dir and Path(label_dir).is_dir():
                data_dir = Path(label_dir)
                return ResolvedContainer(
                    variant=ManagedContainer(
                        logical_id=record.labels.get(LABEL_CONTAINER_ID, record.name),
                        data_dir=data_dir,
                    ),
                    data_dir=data_dir,
                    display_name=record.name,
                    docker_id=record.docker_id,
                )
            if label_dir:
                logger.warning(
                    "Labelled data directory missing, using legacy path",
                    extra={"container": record.name, "label_data_dir": label_dir},
                )
            display_name = record.name
            docker_id = record.docker_id
        else:
            display_name = identity
            docker_id = None

        data_dir = await asyncio.to_thread(self._ensure_legacy_dir, display_name)
        return ResolvedContainer(
            variant=LegacyContainer(display_name=display_name),
            data_dir=data_dir,
            display_name=display_name,
            docker_id=docker_id,
        )

    async def resolve_unclaimed(self, display_name: str) -> ResolvedContainer:
        """
        Resolve the directory for a name that no container owns yet.

        Used by create, where looking the name up in Docker could match an
        unrelated container by ID prefix. The directory is left unscaffolded
        because create provisions it itself.
        """
        data_dir = await asyncio.to_thread(self._ensure_legacy_dir, display_name, False)
        return ResolvedContainer(
            variant=LegacyContainer(display_name=display_name),
            data_dir=data_dir,
            display_name=display_name,
        )

    async def _fetch_record(self, identity: str) -> Optional[ContainerRecord]:
        try:
            container = await asyncio.to_thread(self.docker_client.containers.get, identity)
        except NotFound:
            return None
        except APIError as e:
            raise DockerAPIError(f"Failed to inspect container {identity}: {e}", e)
        return ContainerRecord.from_attrs(container.attrs)

    def _ensure_legacy_dir(self, display_name: str, scaffold: bool = True) -> Path:
        data_dir = self.legacy_path(display_name)

        created = False
        if not data_dir.is_dir():
            try:
                data_dir.mkdir(parents=True)
                created = True
            except FileExistsError as e:
                # Created concurrently by another request, or a file is in the way
                if not data_dir.is_dir():
                    raise StorageError("create data directory", str(data_dir), e)
            except OSError as e:
                raise StorageError("create data directory", str(data_dir), e)

        if not scaffold:
            return data_dir

        try:
            if created:
                logger.info("Created legacy data directory", extra={"data_dir": str(data_dir)})
                self.provisioner.provision(data_dir)
            else:
                self.provisioner.refresh_helpers(data_dir)
        except ScaffoldError as e:
            # Creation paths provision explicitly and abort there
            logger.warning(
                "Scaffold incomplete for legacy data directory",
                extra={"data_dir": str(data_dir), "error": str(e)},
            )

        return data_dir
