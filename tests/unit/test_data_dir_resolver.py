"""Unit tests for DataDirectoryResolver."""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError

from container_panel.models.containers import LegacyContainer, ManagedContainer
from container_panel.utils.exceptions import DockerAPIError, InvalidPathError, StorageError


@pytest.mark.asyncio
class TestResolveManaged:
    """Containers carrying a panel.data-dir label."""

    async def test_label_path_returned_verbatim(
        self, resolver, mock_docker_client, tmp_path, attrs_factory, container_factory
    ):
        labelled = tmp_path / "elsewhere" / "app-dir"
        labelled.mkdir(parents=True)
        attrs = attrs_factory(
            "app",
            labels={"panel.data-dir": str(labelled), "panel.container-id": "app-18c-abc123"},
        )
        mock_docker_client.containers.get.side_effect = None
        mock_docker_client.containers.get.return_value = container_factory(attrs)

        resolved = await resolver.resolve_container("app")

        assert resolved.data_dir == labelled
        assert isinstance(resolved.variant, ManagedContainer)
        assert resolved.variant.logical_id == "app-18c-abc123"
        assert not resolved.is_legacy
        # Labelled directories are not scaffolded by resolution
        assert not (labelled / "entrypoint.sh").exists()

    async def test_resolve_returns_path(
        self, resolver, mock_docker_client, tmp_path, attrs_factory, container_factory
    ):
        labelled = tmp_path / "app-dir"
        labelled.mkdir()
        mock_docker_client.containers.get.side_effect = None
        mock_docker_client.containers.get.return_value = container_factory(
            attrs_factory("app", labels={"panel.data-dir": str(labelled)})
        )

        assert await resolver.resolve("app") == labelled

    async def test_stale_label_falls_back_to_legacy_path(
        self, resolver, mock_docker_client, data_root, tmp_path, attrs_factory, container_factory
    ):
        missing = tmp_path / "was-deleted"
        mock_docker_client.containers.get.side_effect = None
        mock_docker_client.containers.get.return_value = container_factory(
            attrs_factory("app", labels={"panel.data-dir": str(missing)})
        )

        resolved = await resolver.resolve_container("app")

        assert resolved.data_dir == data_root / "app"
        assert resolved.is_legacy
        assert resolved.data_dir.is_dir()


@pytest.mark.asyncio
class TestResolveLegacy:
    """Fallback to <data_root>/<name>."""

    async def test_legacy_container_uses_name(
        self, resolver, mock_docker_client, data_root, attrs_factory, container_factory
    ):
        mock_docker_client.containers.get.side_effect = None
        mock_docker_client.containers.get.return_value = container_factory(
            attrs_factory("old-app", docker_id="f00d")
        )

        resolved = await resolver.resolve_container("f00d")

        assert resolved.data_dir == data_root / "old-app"
        assert resolved.variant == LegacyContainer(display_name="old-app")
        assert resolved.docker_id == "f00d"

    async def test_unknown_identity_creates_and_scaffolds(self, resolver, data_root):
        resolved = await resolver.resolve_container("fresh")

        data_dir = data_root / "fresh"
        assert resolved.data_dir == data_dir
        assert resolved.docker_id is None
        assert (data_dir / "entrypoint.sh").is_file()
        assert (data_dir / "tunnel-on.sh").is_file()
        assert (data_dir / "run.js").is_file()
        assert (data_dir / "package.json").is_file()

    async def test_existing_directory_refreshes_boot_script_only(self, resolver, data_root):
        await resolver.resolve("app")
        data_dir = data_root / "app"
        (data_dir / "entrypoint.sh").write_text("stale")
        (data_dir / "tunnel-on.sh").write_text("custom")
        (data_dir / "run.js").write_text("console.log('mine')")

        await resolver.resolve("app")

        assert (data_dir / "entrypoint.sh").read_text() != "stale"
        assert (data_dir / "tunnel-on.sh").read_text() == "custom"
        assert (data_dir / "run.js").read_text() == "console.log('mine')"

    async def test_repeated_resolution_is_stable(self, resolver):
        first = await resolver.resolve("app")
        second = await resolver.resolve("app")
        assert first == second

    async def test_file_in_the_way_is_storage_error(self, resolver, data_root):
        (data_root / "blocked").write_text("not a directory")

        with pytest.raises(StorageError):
            await resolver.resolve("blocked")

    @pytest.mark.parametrize("name", ["../etc", "a/b", ".hidden", ""])
    async def test_invalid_names_rejected(self, resolver, name):
        with pytest.raises(InvalidPathError):
            await resolver.resolve(name)

    async def test_docker_failure_is_not_masked(self, resolver, mock_docker_client):
        mock_docker_client.containers.get.side_effect = APIError("daemon unavailable")

        with pytest.raises(DockerAPIError):
            await resolver.resolve("app")

    async def test_missing_scaffold_does_not_fail_resolution(
        self, mock_docker_client, settings, data_root, tmp_path
    ):
        from container_panel.managers.data_dir_resolver import DataDirectoryResolver
        from container_panel.managers.scaffold_provisioner import ScaffoldProvisioner

        empty = tmp_path / "no-scaffold"
        empty.mkdir()
        broken = settings.model_copy(update={"scaffold_root": str(empty)})
        resolver = DataDirectoryResolver(mock_docker_client, broken, ScaffoldProvisioner(broken))

        assert await resolver.resolve("app") == data_root / "app"


@pytest.mark.asyncio
async def test_resolve_unclaimed_skips_docker_lookup(resolver, mock_docker_client, data_root):
    """resolve_unclaimed never asks Docker, so ID-prefix matches cannot leak in."""
    mock_docker_client.containers.get = MagicMock()

    resolved = await resolver.resolve_unclaimed("new-app")

    assert resolved.data_dir == data_root / "new-app"
    assert resolved.is_legacy
    mock_docker_client.containers.get.assert_not_called()


@pytest.mark.asyncio
async def test_resolve_unclaimed_leaves_scaffolding_to_create(resolver, provisioner, monkeypatch):
    """Create provisions the directory itself, so it is not scaffolded twice."""
    provision = MagicMock()
    monkeypatch.setattr(provisioner, "provision", provision)

    resolved = await resolver.resolve_unclaimed("new-app")

    assert resolved.data_dir.is_dir()
    assert not (resolved.data_dir / "entrypoint.sh").exists()
    provision.assert_not_called()
