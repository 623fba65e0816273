"""Container lifecycle manager: create, transitions, settings recreate and migration."""

import asyncio
import secrets
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from docker import DockerClient
from docker.errors import APIError, NotFound
from docker.models.containers import Container as DockerContainer

from container_panel.config import Settings, get_settings
from container_panel.managers.data_dir_resolver import DataDirectoryResolver
from container_panel.managers.image_manager import ImageManager
from container_panel.managers.scaffold_provisioner import BOOT_SCRIPT, ScaffoldProvisioner
from container_panel.models.containers import (
    LABEL_CONTAINER_ID,
    LABEL_DATA_DIR,
    LABEL_KIND,
    RECOGNIZED_ENV,
    ContainerAction,
    ContainerRecord,
    ContainerSummary,
    CreateResult,
    MigrationResult,
    ResolvedContainer,
    SettingsUpdate,
    parse_env,
)
from container_panel.utils import get_logger
from container_panel.utils.docker_client import get_docker_client
from container_panel.utils.exceptions import (
    ContainerAlreadyExistsError,
    ContainerNotFoundError,
    DockerAPIError,
    RecreateFailedError,
)
from container_panel.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


def generate_container_id(name: str) -> str:
    """
    Generate a logical container id.

    Millisecond timestamp plus a random suffix; collisions are not checked.
    """
    return f"{name}-{int(time.time() * 1000):x}-{secrets.token_hex(3)}"


class ContainerManager:
    """Manager for Docker container lifecycle operations."""

    def __init__(
        self,
        docker_client: Optional[DockerClient] = None,
        settings: Optional[Settings] = None,
        resolver: Optional[DataDirectoryResolver] = None,
        provisioner: Optional[ScaffoldProvisioner] = None,
        images: Optional[ImageManager] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.docker_client: DockerClient = docker_client or get_docker_client()
        self.provisioner = provisioner or ScaffoldProvisioner(self.settings)
        self.resolver = resolver or DataDirectoryResolver(
            self.docker_client, self.settings, self.provisioner
        )
        self.images = images or ImageManager(self.docker_client)
        self.metrics = get_metrics_collector()

    @property
    def boot_command(self) -> List[str]:
        return ["bash", f"{self.settings.container_home}/{BOOT_SCRIPT}"]

    async def list_containers(self, panel_only: bool = False) -> List[ContainerSummary]:
        """
        List containers known to Docker, including stopped ones.

        Args:
            panel_only: Only return containers carrying the panel.kind label

        Returns:
            List of container summaries
        """
        try:
            containers = await asyncio.to_thread(self.docker_client.containers.list, all=True)
        except APIError as e:
            raise DockerAPIError(f"Failed to list containers: {e}", e)

        summaries = []
        for container in containers:
            record = ContainerRecord.from_attrs(container.attrs)
            if panel_only and LABEL_KIND not in record.labels:
                continue
            summaries.append(
                ContainerSummary(
                    docker_id=record.docker_id,
                    name=record.name,
                    image=record.image,
                    state=record.state,
                    logical_id=record.labels.get(LABEL_CONTAINER_ID),
                    data_dir=record.labels.get(LABEL_DATA_DIR),
                    managed=not record.is_legacy,
                    labels=record.labels,
                )
            )
        return summaries

    async def create(
        self,
        display_name: str,
        startup_cmd: Optional[str] = None,
        tunnel_enabled: bool = False,
        tunnel_token: Optional[str] = None,
    ) -> CreateResult:
        """
        Create and start a new container with its own data directory.

        The directory is left in place if any later step fails, so the call can
        simply be retried.

        Args:
            display_name: Container name, also the data directory name
            startup_cmd: Command run by the boot script (defaults to ``node run.js``)
            tunnel_enabled: Start a Cloudflare tunnel at boot
            tunnel_token: Tunnel token passed as CF_TOKEN

        Returns:
            CreateResult with the logical id, data directory and Docker id

        Raises:
            ContainerAlreadyExistsError: If the name is already used by a container
            InvalidPathError: If the name is not a valid container name
            ScaffoldError: If the boot script cannot be provisioned
            ImagePullError: If the image is missing and cannot be pulled
            DockerAPIError: If Docker operations fail
        """
        self.resolver.legacy_path(display_name)

        if await self._name_in_use(display_name):
            raise ContainerAlreadyExistsError(display_name)

        container_id = generate_container_id(display_name)

        resolved = await self.resolver.resolve_unclaimed(display_name)
        data_dir = resolved.data_dir
        await asyncio.to_thread(self.provisioner.provision, data_dir)

        image = self.settings.default_image
        await self.images.ensure_image(image)

        env_values = SettingsUpdate(startup_cmd, tunnel_enabled, tunnel_token).env_values(
            container_id
        )
        labels = {
            LABEL_KIND: self.settings.panel_kind,
            LABEL_CONTAINER_ID: container_id,
            LABEL_DATA_DIR: str(data_dir),
        }

        try:
            docker_container = await self._create_runtime(
                name=display_name,
                image=image,
                env=[f"{key}={value}" for key, value in env_values.items()],
                labels=labels,
                binds=[f"{data_dir}:{self.settings.container_home}"],
                cmd=self.boot_command,
                working_dir=self.settings.container_home,
                tty=True,
                restart_policy=self.settings.restart_policy_config,
            )
        except APIError as e:
            if e.status_code == 409:
                raise ContainerAlreadyExistsError(display_name)
            logger.error(
                "Docker API error creating container",
                extra={"container": display_name, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to create container {display_name}: {e}", e)

        try:
            await asyncio.to_thread(docker_container.start)
        except APIError as e:
            logger.error(
                "Docker API error starting new container",
                extra={"container": display_name, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to start container {display_name}: {e}", e)

        logger.info(
            "Container created",
            extra={
                "container": display_name,
                "container_id": container_id,
                "docker_id": docker_container.id,
                "data_dir": str(data_dir),
                "image": image,
            },
        )

        return CreateResult(
            container_id=container_id,
            name=display_name,
            data_dir=data_dir,
            docker_id=docker_container.id,
        )

    async def transition(self, identity: str, action: ContainerAction | str) -> None:
        """
        Apply a runtime transition to a container.

        Docker decides whether the transition is legal from the current state;
        its error is passed through unchanged. ``delete`` always forces removal
        and never touches the data directory.

        Args:
            identity: Container name or Docker ID
            action: start, stop, restart or delete

        Raises:
            ValueError: If the action is unknown
            ContainerNotFoundError: If the container does not exist
            DockerAPIError: If Docker rejects the transition
        """
        action = ContainerAction(action)
        container = await self._get(identity)

        try:
            if action == ContainerAction.START:
                await asyncio.to_thread(container.start)
            elif action == ContainerAction.STOP:
                await asyncio.to_thread(container.stop, timeout=self.settings.stop_timeout_s)
            elif action == ContainerAction.RESTART:
                await asyncio.to_thread(container.restart, timeout=self.settings.stop_timeout_s)
            elif action == ContainerAction.DELETE:
                await asyncio.to_thread(container.remove, force=True)
        except NotFound:
            raise ContainerNotFoundError(identity)
        except APIError as e:
            logger.error(
                "Docker API error applying transition",
                extra={"container": identity, "action": action.value, "error": str(e)},
            )
            raise DockerAPIError(f"Failed to {action.value} container {identity}: {e}", e)

        logger.info(
            "Container transition applied",
            extra={"container": identity, "action": action.value},
        )

    async def inspect(self, identity: str) -> Dict[str, Any]:
        """Return the raw Docker inspect document for a container."""
        container = await self._get(identity)
        return container.attrs

    async def get_env(self, identity: str) -> Dict[str, str]:
        """Return the container environment as a mapping."""
        container = await self._get(identity)
        return parse_env((container.attrs.get("Config") or {}).get("Env"))

    async def update_settings(
        self,
        identity: str,
        startup_cmd: Optional[str] = None,
        tunnel_enabled: bool = False,
        tunnel_token: Optional[str] = None,
    ) -> CreateResult:
        """
        Apply new settings by recreating the container.

        Docker cannot change the environment of an existing container, so the
        container is stopped, removed and created again with the same binds,
        image and command. Legacy containers are upgraded to the label scheme
        on the way through.

        Args:
            identity: Container name or Docker ID
            startup_cmd: New startup command (defaults to ``node run.js``)
            tunnel_enabled: Start a Cloudflare tunnel at boot
            tunnel_token: Tunnel token passed as CF_TOKEN

        Returns:
            CreateResult describing the replacement container

        Raises:
            ContainerNotFoundError: If the container does not exist
            ImagePullError: If the image is missing and cannot be pulled
            DockerAPIError: If stopping or removing fails in a non-recoverable way
            RecreateFailedError: If the old container is gone and the new one failed
        """
        container = await self._get(identity)
        record = ContainerRecord.from_attrs(container.attrs)
        image = record.image or self.settings.default_image

        await self.images.ensure_image(image)
        resolved = await self.resolver.resolve_container(identity, record=record)

        labels = self._replacement_labels(record, resolved)
        container_id = labels[LABEL_CONTAINER_ID]
        env_values = SettingsUpdate(startup_cmd, tunnel_enabled, tunnel_token).env_values(
            container_id
        )
        env = [entry for entry in record.env if entry.partition("=")[0] not in RECOGNIZED_ENV]
        env.extend(f"{key}={value}" for key, value in env_values.items())

        new_container = await self._recreate(container, record, resolved, image, labels, env)

        logger.info(
            "Container settings updated",
            extra={
                "container": record.name,
                "container_id": container_id,
                "migrated": resolved.is_legacy,
                "docker_id": new_container.id,
            },
        )

        return CreateResult(
            container_id=container_id,
            name=record.name,
            data_dir=resolved.data_dir,
            docker_id=new_container.id,
        )

    async def migrate(self, identity: str) -> MigrationResult:
        """
        Upgrade a legacy container to the label scheme.

        Recreates the container with synthesized panel.data-dir and
        panel.container-id labels, keeping its environment and command as they
        are. Containers that already carry panel.data-dir are left alone.

        Raises:
            ContainerNotFoundError: If the container does not exist
            DockerAPIError: If Docker operations fail
            RecreateFailedError: If the old container is gone and the new one failed
        """
        container = await self._get(identity)
        record = ContainerRecord.from_attrs(container.attrs)

        if not record.is_legacy:
            logger.info("Container already migrated", extra={"container": record.name})
            return MigrationResult(
                name=record.name,
                container_id=record.labels.get(LABEL_CONTAINER_ID, record.name),
                data_dir=Path(record.labels[LABEL_DATA_DIR]),
                already_migrated=True,
                docker_id=record.docker_id,
            )

        image = record.image or self.settings.default_image
        await self.images.ensure_image(image)
        resolved = await self.resolver.resolve_container(identity, record=record)
        labels = self._replacement_labels(record, resolved)

        new_container = await self._recreate(
            container, record, resolved, image, labels, list(record.env)
        )

        logger.info(
            "Legacy container migrated",
            extra={
                "container": record.name,
                "data_dir": str(resolved.data_dir),
                "docker_id": new_container.id,
            },
        )

        return MigrationResult(
            name=record.name,
            container_id=labels[LABEL_CONTAINER_ID],
            data_dir=resolved.data_dir,
            already_migrated=False,
            docker_id=new_container.id,
        )

    def _replacement_labels(
        self, record: ContainerRecord, resolved: ResolvedContainer
    ) -> Dict[str, str]:
        labels = dict(record.labels)
        labels.setdefault(LABEL_KIND, self.settings.panel_kind)
        if resolved.is_legacy:
            labels[LABEL_DATA_DIR] = str(resolved.data_dir)
        labels.setdefault(LABEL_CONTAINER_ID, resolved.display_name)
        return labels

    def _replacement_binds(
        self, record: ContainerRecord, resolved: ResolvedContainer
    ) -> List[str]:
        home = self.settings.container_home
        # A stale data-dir label is restamped, so the home bind has to follow it
        relocate = resolved.is_legacy and not record.is_legacy
        binds = []
        has_home = False
        for bind in record.binds:
            parts = bind.split(":")
            if parts[1:2] == [home]:
                has_home = True
                if relocate:
                    parts[0] = str(resolved.data_dir)
            binds.append(":".join(parts))
        if not has_home:
            binds.append(f"{resolved.data_dir}:{home}")
        return binds

    async def _recreate(
        self,
        container: DockerContainer,
        record: ContainerRecord,
        resolved: ResolvedContainer,
        image: str,
        labels: Dict[str, str],
        env: List[str],
    ) -> DockerContainer:
        """Stop, remove, create and start. The data directory is never touched."""
        started = time.monotonic()

        try:
            await asyncio.to_thread(container.stop, timeout=self.settings.stop_timeout_s)
        except (APIError, NotFound) as e:
            # Already stopped or already gone
            logger.debug(
                "Ignoring stop failure during recreate",
                extra={"container": record.name, "error": str(e)},
            )

        try:
            await asyncio.to_thread(container.remove, force=True)
        except NotFound:
            pass
        except APIError as e:
            raise DockerAPIError(f"Failed to remove container {record.name}: {e}", e)

        try:
            new_container = await self._create_runtime(
                name=record.name,
                image=image,
                env=env,
                labels=labels,
                binds=self._replacement_binds(record, resolved),
                cmd=record.cmd or self.boot_command,
                working_dir=record.working_dir or self.settings.container_home,
                tty=record.tty,
                restart_policy=record.restart_policy,
            )
            await asyncio.to_thread(new_container.start)
        except APIError as e:
            logger.error(
                "Container removed but recreate failed",
                extra={
                    "container": record.name,
                    "data_dir": str(resolved.data_dir),
                    "error": str(e),
                },
            )
            raise RecreateFailedError(record.name, str(resolved.data_dir), e)

        self.metrics.record_recreate_duration(time.monotonic() - started)
        return new_container

    async def _create_runtime(
        self,
        name: str,
        image: str,
        env: List[str],
        labels: Dict[str, str],
        binds: List[str],
        cmd: List[str],
        working_dir: str,
        tty: bool,
        restart_policy: Optional[Dict[str, Any]],
    ) -> DockerContainer:
        kwargs: Dict[str, Any] = {
            "image": image,
            "name": name,
            "command": cmd,
            "environment": env,
            "labels": labels,
            "volumes": binds,
            "working_dir": working_dir,
            "tty": tty,
            "detach": True,
        }
        if restart_policy:
            kwargs["restart_policy"] = restart_policy

        return await asyncio.to_thread(self.docker_client.containers.create, **kwargs)

    async def _get(self, identity: str) -> DockerContainer:
        try:
            return await asyncio.to_thread(self.docker_client.containers.get, identity)
        except NotFound:
            raise ContainerNotFoundError(identity)
        except APIError as e:
            raise DockerAPIError(f"Failed to inspect container {identity}: {e}", e)

    async def _name_in_use(self, name: str) -> bool:
        try:
            container = await asyncio.to_thread(self.docker_client.containers.get, name)
        except NotFound:
            return False
        except APIError as e:
            raise DockerAPIError(f"Failed to look up container {name}: {e}", e)
        # containers.get also matches ID prefixes; only an exact name is a conflict
        return (container.attrs.get("Name") or "").lstrip("/") == name
