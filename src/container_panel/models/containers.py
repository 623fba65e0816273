"""Container models built from Docker inspect data."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

# Label keys used as the panel's only persistent metadata store
LABEL_KIND = "panel.kind"
LABEL_CONTAINER_ID = "panel.container-id"
LABEL_DATA_DIR = "panel.data-dir"

# Recognized environment variables
ENV_STARTUP_CMD = "STARTUP_CMD"
ENV_TUNNEL_ENABLE = "CF_TUNNEL_ENABLE"
ENV_TUNNEL_TOKEN = "CF_TOKEN"
ENV_CONTAINER_ID = "CONTAINER_ID"

RECOGNIZED_ENV = (ENV_STARTUP_CMD, ENV_TUNNEL_ENABLE, ENV_TUNNEL_TOKEN, ENV_CONTAINER_ID)

DEFAULT_STARTUP_CMD = "node run.js"


class ContainerAction(str, Enum):
    """Runtime transitions an operator can request."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    DELETE = "delete"


@dataclass(frozen=True)
class LegacyContainer:
    """Container created before the data-dir label scheme."""

    display_name: str


@dataclass(frozen=True)
class ManagedContainer:
    """Container carrying panel.container-id and panel.data-dir labels."""

    logical_id: str
    data_dir: Path


ContainerVariant = Union[LegacyContainer, ManagedContainer]


@dataclass(frozen=True)
class ResolvedContainer:
    """Outcome of a single data-directory resolution."""

    variant: ContainerVariant
    data_dir: Path
    display_name: str
    docker_id: Optional[str] = None

    @property
    def is_legacy(self) -> bool:
        return isinstance(self.variant, LegacyContainer)


def parse_env(entries: Optional[List[str]]) -> Dict[str, str]:
    """Split KEY=VALUE entries on the first '='; entries without '=' map to ''."""
    env: Dict[str, str] = {}
    for entry in entries or []:
        key, _, value = entry.partition("=")
        env[key] = value
    return env


@dataclass
class ContainerRecord:
    """The subset of a Docker inspect document this panel reads and writes back."""

    docker_id: str
    name: str
    image: str
    state: str
    labels: Dict[str, str] = field(default_factory=dict)
    env: List[str] = field(default_factory=list)
    binds: List[str] = field(default_factory=list)
    cmd: Optional[List[str]] = None
    working_dir: Optional[str] = None
    tty: bool = True
    restart_policy: Optional[Dict[str, Any]] = None

    @classmethod
    def from_attrs(cls, attrs: Dict[str, Any]) -> "ContainerRecord":
        """Build a record from the ``attrs`` of a docker-py Container."""
        config = attrs.get("Config") or {}
        host_config = attrs.get("HostConfig") or {}
        state = attrs.get("State") or {}
        restart_policy = host_config.get("RestartPolicy") or None
        if restart_policy and not restart_policy.get("Name"):
            restart_policy = None

        return cls(
            docker_id=attrs.get("Id", ""),
            name=(attrs.get("Name") or "").lstrip("/"),
            image=config.get("Image", ""),
            state=state.get("Status", "unknown") if isinstance(state, dict) else str(state),
            labels=dict(config.get("Labels") or {}),
            env=list(config.get("Env") or []),
            binds=list(host_config.get("Binds") or []),
            cmd=config.get("Cmd"),
            working_dir=config.get("WorkingDir") or None,
            tty=bool(config.get("Tty", True)),
            restart_policy=restart_policy,
        )

    @property
    def env_map(self) -> Dict[str, str]:
        return parse_env(self.env)

    @property
    def is_legacy(self) -> bool:
        return LABEL_DATA_DIR not in self.labels


@dataclass
class ContainerSummary:
    """Row returned by list_containers."""

    docker_id: str
    name: str
    image: str
    state: str
    logical_id: Optional[str]
    data_dir: Optional[str]
    managed: bool
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class CreateResult:
    """Result of a successful create."""

    container_id: str
    name: str
    data_dir: Path
    docker_id: str


@dataclass
class SettingsUpdate:
    """Operator-editable container settings."""

    startup_cmd: Optional[str] = None
    tunnel_enabled: bool = False
    tunnel_token: Optional[str] = None

    def env_values(self, container_id: str) -> Dict[str, str]:
        """Recognized environment variables for these settings."""
        return {
            ENV_STARTUP_CMD: self.startup_cmd or DEFAULT_STARTUP_CMD,
            ENV_TUNNEL_ENABLE: "1" if self.tunnel_enabled else "0",
            ENV_TUNNEL_TOKEN: self.tunnel_token or "",
            ENV_CONTAINER_ID: container_id,
        }


@dataclass
class MigrationResult:
    """Result of an explicit migrate call."""

    name: str
    container_id: str
    data_dir: Path
    already_migrated: bool
    docker_id: Optional[str] = None
