"""Manager modules for business logic."""

from .container_manager import ContainerManager, generate_container_id
from .data_dir_resolver import DataDirectoryResolver
from .filesystem_manager import FileInfo, FilesystemManager, archive_kind
from .image_manager import ImageManager, split_image_ref
from .log_streamer import LogStreamer, LogSubscription, get_log_streamer
from .scaffold_provisioner import ProvisionReport, ScaffoldProvisioner

__all__ = [
    "ContainerManager",
    "DataDirectoryResolver",
    "FileInfo",
    "FilesystemManager",
    "ImageManager",
    "LogStreamer",
    "LogSubscription",
    "ProvisionReport",
    "ScaffoldProvisioner",
    "archive_kind",
    "generate_container_id",
    "get_log_streamer",
    "split_image_ref",
]
