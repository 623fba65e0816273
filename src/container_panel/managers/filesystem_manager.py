"""Filesystem operations confined to a container's data directory."""

import asyncio
import mimetypes
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from container_panel.config import Settings, get_settings
from container_panel.managers.data_dir_resolver import DataDirectoryResolver
from container_panel.utils import get_logger
from container_panel.utils.exceptions import (
    ExternalToolError,
    InvalidPathError,
    PathAlreadyExistsError,
    PathNotFoundError,
    StorageError,
    UnsupportedArchiveError,
)
from container_panel.utils.metrics_collector import get_metrics_collector
from container_panel.utils.process_runner import ToolRunner

logger = get_logger(__name__)

# Paths that denote the data directory root itself
ROOT_PATHS = frozenset({"", ".", "/"})


@dataclass
class FileInfo:
    """Information about a file or directory inside a data directory."""

    name: str
    path: str  # relative to the data directory, '/'-separated
    size: int
    is_dir: bool
    mtime: datetime
    mime_type: Optional[str] = None


def archive_kind(path: str) -> Optional[str]:
    """Classify an archive by file extension: zip, tar, tar.gz, gz, rar or None."""
    lower = path.lower()
    if lower.endswith(".zip"):
        return "zip"
    if lower.endswith(".tar.gz") or lower.endswith(".tgz"):
        return "tar.gz"
    if lower.endswith(".tar"):
        return "tar"
    if lower.endswith(".gz"):
        return "gz"
    if lower.endswith(".rar"):
        return "rar"
    return None


class FilesystemManager:
    """
    File manager for container data directories on the host.

    Every path is taken relative to the directory resolved for the container
    and is rejected if, after normalization, it no longer lies inside it.
    """

    def __init__(
        self,
        resolver: Optional[DataDirectoryResolver] = None,
        runner: Optional[ToolRunner] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.resolver = resolver or DataDirectoryResolver(settings=self.settings)
        self.runner = runner or ToolRunner(timeout_s=self.settings.tool_timeout_s)
        self.metrics = get_metrics_collector()

    @staticmethod
    def contain(root: Path, path: str) -> Path:
        """
        Join a caller-supplied path onto a root and check containment.

        The check is lexical: ``..`` segments are collapsed and caught when the
        result leaves the root. Absolute paths are refused even when they name
        a location inside the root; a bare "/" denotes the root itself.
        Symlinks are not followed.

        Args:
            root: Resolved data directory
            path: Path relative to the root

        Returns:
            Normalized absolute path inside the root

        Raises:
            InvalidPathError: If the path escapes the root
        """
        if "\x00" in path:
            raise InvalidPathError(path, "path contains a NUL byte")

        root_norm = os.path.normpath(os.path.abspath(root))
        if path in ROOT_PATHS:
            return Path(root_norm)

        if os.path.isabs(path):
            raise InvalidPathError(path, "absolute paths are not allowed")

        candidate = os.path.normpath(os.path.join(root_norm, path))

        if candidate != root_norm and os.path.commonpath([root_norm, candidate]) != root_norm:
            raise InvalidPathError(path, "path escapes the container data directory")

        return Path(candidate)

    async def _resolve(self, container_id: str, path: str) -> tuple[Path, Path]:
        root = await self.resolver.resolve(container_id)
        return root, self.contain(root, path)

    @staticmethod
    def _relative(root: Path, target: Path) -> str:
        rel = os.path.relpath(target, os.path.normpath(os.path.abspath(root)))
        return "" if rel == "." else rel.replace(os.sep, "/")

    @staticmethod
    def _guess_mime_type(name: str) -> str:
        return mimetypes.guess_type(name)[0] or "application/octet-stream"

    def _file_info(self, root: Path, target: Path) -> FileInfo:
        st = target.lstat()
        is_dir = target.is_dir()
        return FileInfo(
            name=target.name,
            path=self._relative(root, target),
            size=0 if is_dir else st.st_size,
            is_dir=is_dir,
            mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            mime_type=None if is_dir else self._guess_mime_type(target.name),
        )

    async def list(self, container_id: str, path: str = "") -> List[FileInfo]:
        """
        List a directory, directories first then by name.

        Raises:
            InvalidPathError: If the path escapes the data directory
            PathNotFoundError: If the directory does not exist
            StorageError: If the directory cannot be read
        """
        root, target = await self._resolve(container_id, path)
        self.metrics.record_fs_operation("list")

        def _list() -> List[FileInfo]:
            if not target.is_dir():
                raise PathNotFoundError(path)
            try:
                entries = [self._file_info(root, entry) for entry in target.iterdir()]
            except OSError as e:
                raise StorageError("list", path, e)
            entries.sort(key=lambda info: (not info.is_dir, info.name.lower()))
            return entries

        files = await asyncio.to_thread(_list)
        logger.debug(
            "Listed directory",
            extra={"container": container_id, "path": path, "count": len(files)},
        )
        return files

    async def read(self, container_id: str, path: str) -> tuple[bytes, FileInfo]:
        """
        Read a file.

        Returns:
            Tuple of (file content, file info)

        Raises:
            InvalidPathError: If the path escapes the data directory
            PathNotFoundError: If the file does not exist or is a directory
            StorageError: If the file cannot be read
        """
        root, target = await self._resolve(container_id, path)
        self.metrics.record_fs_operation("read")

        def _read() -> tuple[bytes, FileInfo]:
            if not target.is_file():
                raise PathNotFoundError(path)
            try:
                return target.read_bytes(), self._file_info(root, target)
            except OSError as e:
                raise StorageError("read", path, e)

        return await asyncio.to_thread(_read)

    async def download(self, container_id: str, path: str) -> Path:
        """Return the host path of a file so the caller can stream it."""
        _, target = await self._resolve(container_id, path)
        if not target.is_file():
            raise PathNotFoundError(path)
        self.metrics.record_fs_operation("download")
        return target

    async def write(self, container_id: str, path: str, content: bytes) -> FileInfo:
        """
        Write a file, creating parent directories as needed.

        Raises:
            InvalidPathError: If the path escapes or names the data directory itself
            StorageError: If the file cannot be written
        """
        root, target = await self._resolve(container_id, path)
        if target == Path(os.path.normpath(os.path.abspath(root))):
            raise InvalidPathError(path, "cannot write to the data directory root")
        self.metrics.record_fs_operation("write")

        def _write() -> FileInfo:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
            except OSError as e:
                raise StorageError("write", path, e)
            return self._file_info(root, target)

        info = await asyncio.to_thread(_write)
        logger.info(
            "Wrote file",
            extra={"container": container_id, "path": info.path, "size": len(content)},
        )
        return info

    async def delete(self, container_id: str, path: str) -> None:
        """
        Delete a file or a directory tree.

        Raises:
            InvalidPathError: For root-denoting or escaping paths; nothing is removed
            PathNotFoundError: If the target does not exist
            StorageError: If removal fails
        """
        if path.strip() in ROOT_PATHS:
            raise InvalidPathError(path, "refusing to delete the data directory root")

        root, target = await self._resolve(container_id, path)
        if target == Path(os.path.normpath(os.path.abspath(root))):
            raise InvalidPathError(path, "refusing to delete the data directory root")
        self.metrics.record_fs_operation("delete")

        def _delete() -> None:
            if not target.exists() and not target.is_symlink():
                raise PathNotFoundError(path)
            try:
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                else:
                    target.unlink()
            except OSError as e:
                raise StorageError("delete", path, e)

        await asyncio.to_thread(_delete)
        logger.info("Deleted path", extra={"container": container_id, "path": path})

    async def create_file(self, container_id: str, path: str, content: bytes = b"") -> FileInfo:
        """
        Create a new file; fails if something already exists at the path.

        Raises:
            PathAlreadyExistsError: If the path exists
        """
        root, target = await self._resolve(container_id, path)
        self.metrics.record_fs_operation("create_file")

        def _create() -> FileInfo:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, "xb") as f:
                    f.write(content)
            except FileExistsError:
                raise PathAlreadyExistsError(path)
            except OSError as e:
                raise StorageError("create file", path, e)
            return self._file_info(root, target)

        return await asyncio.to_thread(_create)

    async def create_folder(self, container_id: str, path: str) -> FileInfo:
        """
        Create a directory (and missing parents).

        Raises:
            PathAlreadyExistsError: If the path exists
        """
        root, target = await self._resolve(container_id, path)
        self.metrics.record_fs_operation("create_folder")

        def _mkdir() -> FileInfo:
            try:
                target.mkdir(parents=True)
            except FileExistsError:
                raise PathAlreadyExistsError(path)
            except OSError as e:
                raise StorageError("create folder", path, e)
            return self._file_info(root, target)

        return await asyncio.to_thread(_mkdir)

    async def extract_archive(
        self, container_id: str, path: str, dest: Optional[str] = None
    ) -> str:
        """
        Extract an archive with the tool matching its extension.

        Args:
            container_id: Container identity
            path: Archive path relative to the data directory
            dest: Destination directory (defaults to the archive's directory)

        Returns:
            Destination directory relative to the data directory

        Raises:
            InvalidPathError: If the archive or destination escapes the data directory
            PathNotFoundError: If the archive does not exist
            UnsupportedArchiveError: If no tool handles the extension
            ExternalToolError: If the tool fails
        """
        root, archive = await self._resolve(container_id, path)
        if dest is None:
            dest_dir = archive.parent
        else:
            dest_dir = self.contain(root, dest)

        if not archive.is_file():
            raise PathNotFoundError(path)

        kind = archive_kind(archive.name)
        if kind == "zip":
            cmd, args = "unzip", ["-o", str(archive), "-d", str(dest_dir)]
        elif kind == "tar.gz":
            cmd, args = "tar", ["-xzf", str(archive), "-C", str(dest_dir)]
        elif kind == "tar":
            cmd, args = "tar", ["-xf", str(archive), "-C", str(dest_dir)]
        elif kind == "gz":
            # gunzip writes next to the archive; moved afterwards if dest differs
            cmd, args = "gunzip", ["-f", "-k", str(archive)]
        elif kind == "rar":
            cmd, args = "unrar", ["x", "-o+", str(archive), str(dest_dir) + os.sep]
        else:
            raise UnsupportedArchiveError(path, "extract")

        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("create folder", dest or "", e)

        await self._run(cmd, args, cwd=archive.parent)

        if kind == "gz" and dest_dir != archive.parent:
            output = archive.with_suffix("")
            try:
                shutil.move(str(output), str(dest_dir / output.name))
            except OSError as e:
                raise StorageError("move extracted file", self._relative(root, output), e)

        self.metrics.record_fs_operation("extract")
        logger.info(
            "Extracted archive",
            extra={"container": container_id, "path": path, "tool": cmd},
        )
        return self._relative(root, dest_dir)

    async def compress(
        self,
        container_id: str,
        paths: Sequence[str],
        archive_name: str,
        cwd: str = "",
    ) -> FileInfo:
        """
        Compress files and folders into an archive inside the data directory.

        Args:
            container_id: Container identity
            paths: Entries to include, relative to ``cwd``
            archive_name: Archive file name, relative to ``cwd``
            cwd: Directory the entries and archive are relative to

        Returns:
            FileInfo for the created archive

        Raises:
            InvalidPathError: If any entry or the archive escapes the data directory
            UnsupportedArchiveError: If the archive extension cannot be written
            ExternalToolError: If the tool fails
        """
        if not paths:
            raise InvalidPathError("", "nothing selected to compress")

        root, base = await self._resolve(container_id, cwd)
        archive = self.contain(root, os.path.join(self._relative(root, base), archive_name))
        if not base.is_dir():
            raise PathNotFoundError(cwd)

        members = []
        for entry in paths:
            member = self.contain(root, os.path.join(self._relative(root, base), entry))
            if not member.exists():
                raise PathNotFoundError(entry)
            # Tools run inside base; a leading "./" keeps names like "-x" from reading as flags
            rel = os.path.relpath(member, base)
            members.append("./" + rel if rel.startswith("-") else rel)

        archive_arg = os.path.relpath(archive, base)
        kind = archive_kind(archive.name)
        if kind == "zip":
            cmd, args = "zip", ["-r", archive_arg, *members]
        elif kind == "tar.gz":
            cmd, args = "tar", ["-czf", archive_arg, *members]
        elif kind == "tar":
            cmd, args = "tar", ["-cf", archive_arg, *members]
        elif kind == "gz":
            if len(members) != 1 or not (base / members[0]).is_file():
                raise UnsupportedArchiveError(archive_name, "compress (gzip takes a single file)")
            cmd, args = "gzip", ["-k", "-f", members[0]]
        else:
            raise UnsupportedArchiveError(archive_name, "compress")

        await self._run(cmd, args, cwd=base)

        if kind == "gz":
            produced = base / (members[0] + ".gz")
            if produced != archive:
                try:
                    shutil.move(str(produced), str(archive))
                except OSError as e:
                    raise StorageError("move archive", archive_name, e)

        self.metrics.record_fs_operation("compress")
        logger.info(
            "Created archive",
            extra={"container": container_id, "archive": archive_name, "entries": len(members)},
        )
        try:
            return await asyncio.to_thread(self._file_info, root, archive)
        except OSError as e:
            raise StorageError("stat archive", archive_name, e)

    async def _run(self, cmd: str, args: List[str], cwd: Path) -> None:
        try:
            result = await self.runner.run_tool(cmd, args, str(cwd))
        except ExternalToolError:
            self.metrics.record_archive_tool_run(cmd, "failure")
            raise

        if result.exit_code != 0:
            self.metrics.record_archive_tool_run(cmd, "failure")
            message = (
                result.stderr.strip() or result.stdout.strip() or f"exit status {result.exit_code}"
            )
            logger.warning(
                "Archive tool failed",
                extra={"tool": cmd, "exit_code": result.exit_code, "stderr": result.stderr},
            )
            raise ExternalToolError(cmd, message, exit_code=result.exit_code, stderr=result.stderr)

        self.metrics.record_archive_tool_run(cmd, "success")
