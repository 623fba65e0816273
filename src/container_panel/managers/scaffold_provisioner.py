"""Populate container data directories with the files needed to boot."""

import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from container_panel.config import Settings, get_settings
from container_panel.utils import get_logger
from container_panel.utils.exceptions import ScaffoldError

logger = get_logger(__name__)

# Scaffold shipped with the package, used when no installation root is configured
BUNDLED_SCAFFOLD_ROOT = Path(__file__).resolve().parent.parent / "scaffold"

BOOT_SCRIPT = "entrypoint.sh"
APP_ENTRY = "run.js"
APP_MANIFEST = "package.json"

HELPER_FILES = (BOOT_SCRIPT, "tunnel-on.sh", "tunnel-off.sh", APP_ENTRY)

# Overwritten on every copy so containers always boot the current script
ALWAYS_REFRESH = frozenset({BOOT_SCRIPT})

HEARTBEAT_INTERVAL_MS = 30000

DEFAULT_ENTRY_SCRIPT = """\
// Default application generated by the panel. Replace this file with your app.
const name = process.env.CONTAINER_ID || 'container';
const started = new Date();

console.log(`[${started.toISOString()}] ${name} started (node ${process.version})`);

const timer = setInterval(() => {
  const uptime = Math.round((Date.now() - started.getTime()) / 1000);
  console.log(`[${new Date().toISOString()}] heartbeat uptime=${uptime}s`);
}, %(interval)d);

function shutdown(signal) {
  console.log(`[${new Date().toISOString()}] received ${signal}, exiting`);
  clearInterval(timer);
  process.exit(0);
}

process.on('SIGINT', () => shutdown('SIGINT'));
process.on('SIGTERM', () => shutdown('SIGTERM'));
"""


@dataclass
class ProvisionReport:
    """What a provisioning pass did to a directory."""

    copied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    synthesized_payload: bool = False

    @property
    def copied_count(self) -> int:
        return len(self.copied)


class ScaffoldProvisioner:
    """Copies helper files into data directories and synthesizes a default payload."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.source_root = Path(self.settings.scaffold_root or BUNDLED_SCAFFOLD_ROOT)

    def provision(self, directory: Path) -> int:
        """
        Make a data directory bootable.

        Copies the helper files, then writes a default application payload if
        no application entry file was supplied.

        Args:
            directory: Data directory to populate

        Returns:
            Number of helper files copied

        Raises:
            ScaffoldError: If the boot script cannot be made present
        """
        report = self.provision_report(directory)
        return report.copied_count

    def provision_report(self, directory: Path) -> ProvisionReport:
        """Like provision(), but return the full ProvisionReport."""
        report = self._copy_helpers(directory)

        if not (directory / APP_ENTRY).exists():
            self._write_default_payload(directory)
            report.synthesized_payload = True

        logger.info(
            "Provisioned data directory",
            extra={
                "data_dir": str(directory),
                "copied": report.copied,
                "skipped": report.skipped,
                "failed": report.failed,
                "synthesized_payload": report.synthesized_payload,
            },
        )
        return report

    def refresh_helpers(self, directory: Path) -> int:
        """
        Re-copy helper files into an existing directory.

        Only missing files are copied, except the boot script which is always
        replaced with the current version.

        Returns:
            Number of helper files copied
        """
        return self._copy_helpers(directory).copied_count

    def _copy_helpers(self, directory: Path) -> ProvisionReport:
        report = ProvisionReport()

        for name in HELPER_FILES:
            src = self.source_root / name
            dest = directory / name

            if not src.is_file():
                logger.debug(
                    "Scaffold source missing, skipping",
                    extra={"file": name, "source_root": str(self.source_root)},
                )
                report.skipped.append(name)
                continue

            if dest.exists() and name not in ALWAYS_REFRESH:
                report.skipped.append(name)
                continue

            try:
                shutil.copyfile(src, dest)
                report.copied.append(name)
            except OSError as e:
                logger.warning(
                    "Failed to copy scaffold file",
                    extra={"file": name, "data_dir": str(directory), "error": str(e)},
                )
                report.failed.append(name)

        boot_script = directory / BOOT_SCRIPT
        if not boot_script.is_file():
            raise ScaffoldError(
                "provision boot script",
                str(boot_script),
                OSError(f"{BOOT_SCRIPT} not found in {self.source_root}"),
            )

        try:
            os.chmod(boot_script, 0o755)
        except OSError as e:
            logger.warning(
                "Failed to mark boot script executable",
                extra={"path": str(boot_script), "error": str(e)},
            )

        return report

    def _write_default_payload(self, directory: Path) -> None:
        manifest = {
            "name": directory.name.lower() or "app",
            "version": "1.0.0",
            "private": True,
            "main": APP_ENTRY,
            "scripts": {"start": f"node {APP_ENTRY}"},
        }
        try:
            if not (directory / APP_MANIFEST).exists():
                (directory / APP_MANIFEST).write_text(json.dumps(manifest, indent=2) + "\n")
            (directory / APP_ENTRY).write_text(
                DEFAULT_ENTRY_SCRIPT % {"interval": HEARTBEAT_INTERVAL_MS}
            )
        except OSError as e:
            # The boot script is in place; a missing payload only fails at app start
            logger.warning(
                "Failed to write default payload",
                extra={"data_dir": str(directory), "error": str(e)},
            )
            return

        logger.info("Synthesized default payload", extra={"data_dir": str(directory)})
