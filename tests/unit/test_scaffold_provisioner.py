"""Unit tests for ScaffoldProvisioner."""

import json
import os
import stat

import pytest

from container_panel.managers.scaffold_provisioner import (
    BUNDLED_SCAFFOLD_ROOT,
    HEARTBEAT_INTERVAL_MS,
    ScaffoldProvisioner,
)
from container_panel.utils.exceptions import ScaffoldError


@pytest.fixture
def target(tmp_path):
    directory = tmp_path / "app"
    directory.mkdir()
    return directory


@pytest.fixture
def custom_scaffold(tmp_path):
    """Installation root with every helper, including an app entry."""
    root = tmp_path / "install"
    root.mkdir()
    (root / "entrypoint.sh").write_text("#!/bin/bash\necho custom\n")
    (root / "tunnel-on.sh").write_text("on")
    (root / "tunnel-off.sh").write_text("off")
    (root / "run.js").write_text("console.log('shipped')")
    return root


def test_bundled_scaffold_has_boot_script():
    """The package ships the boot and tunnel scripts."""
    for name in ("entrypoint.sh", "tunnel-on.sh", "tunnel-off.sh"):
        assert (BUNDLED_SCAFFOLD_ROOT / name).is_file()


class TestProvision:
    """Tests for a first provisioning pass."""

    def test_copies_helpers_and_synthesizes_payload(self, provisioner, target):
        copied = provisioner.provision(target)

        assert copied == 3
        assert (target / "entrypoint.sh").is_file()
        assert (target / "tunnel-on.sh").is_file()
        assert (target / "tunnel-off.sh").is_file()

        run_js = (target / "run.js").read_text()
        assert str(HEARTBEAT_INTERVAL_MS) in run_js
        assert "SIGTERM" in run_js

        manifest = json.loads((target / "package.json").read_text())
        assert manifest["main"] == "run.js"
        assert manifest["scripts"]["start"] == "node run.js"

    def test_boot_script_is_executable(self, provisioner, target):
        provisioner.provision(target)

        mode = os.stat(target / "entrypoint.sh").st_mode
        assert mode & stat.S_IXUSR

    def test_shipped_app_entry_is_not_replaced(self, settings, target, custom_scaffold):
        provisioner = ScaffoldProvisioner(
            settings.model_copy(update={"scaffold_root": str(custom_scaffold)})
        )

        report = provisioner.provision_report(target)

        assert "run.js" in report.copied
        assert not report.synthesized_payload
        assert (target / "run.js").read_text() == "console.log('shipped')"
        assert not (target / "package.json").exists()

    def test_existing_manifest_is_kept(self, provisioner, target):
        (target / "package.json").write_text('{"name": "mine"}')

        provisioner.provision(target)

        assert json.loads((target / "package.json").read_text()) == {"name": "mine"}

    def test_missing_optional_helpers_are_skipped(self, settings, target, tmp_path):
        root = tmp_path / "minimal"
        root.mkdir()
        (root / "entrypoint.sh").write_text("#!/bin/bash\n")
        provisioner = ScaffoldProvisioner(settings.model_copy(update={"scaffold_root": str(root)}))

        report = provisioner.provision_report(target)

        assert report.copied == ["entrypoint.sh"]
        assert "tunnel-on.sh" in report.skipped
        assert report.synthesized_payload

    def test_missing_boot_script_raises(self, settings, target, tmp_path):
        root = tmp_path / "empty"
        root.mkdir()
        provisioner = ScaffoldProvisioner(settings.model_copy(update={"scaffold_root": str(root)}))

        with pytest.raises(ScaffoldError):
            provisioner.provision(target)


class TestRefreshHelpers:
    """Tests for re-copying helpers into an existing directory."""

    def test_only_missing_files_and_boot_script(self, provisioner, target):
        provisioner.provision(target)
        (target / "entrypoint.sh").write_text("old")
        (target / "tunnel-off.sh").write_text("edited")
        (target / "tunnel-on.sh").unlink()

        copied = provisioner.refresh_helpers(target)

        assert copied == 2
        assert (target / "entrypoint.sh").read_text() != "old"
        assert (target / "tunnel-off.sh").read_text() == "edited"
        assert (target / "tunnel-on.sh").is_file()

    def test_refresh_does_not_write_payload(self, provisioner, target):
        provisioner.refresh_helpers(target)

        assert not (target / "run.js").exists()
        assert not (target / "package.json").exists()
