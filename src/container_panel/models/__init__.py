"""Data models for Container Panel."""

from .containers import (
    ContainerAction,
    ContainerRecord,
    ContainerSummary,
    ContainerVariant,
    CreateResult,
    LegacyContainer,
    ManagedContainer,
    MigrationResult,
    ResolvedContainer,
    SettingsUpdate,
)

__all__ = [
    "ContainerAction",
    "ContainerRecord",
    "ContainerSummary",
    "ContainerVariant",
    "CreateResult",
    "LegacyContainer",
    "ManagedContainer",
    "MigrationResult",
    "ResolvedContainer",
    "SettingsUpdate",
]
