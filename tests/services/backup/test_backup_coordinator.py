"""
Tests for BackupCoordinator: coordinate, restore and list_snapshots.
"""

from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from storage_engine.core.events import RestoreCompletedEvent, SnapshotCreatedEvent
from storage_engine.core.exceptions import (
    RepositoryAuthError,
    RepositoryError,
    RestoreFailedError,
    SnapshotError,
    UnknownServiceError,
    UnregisteredPathError,
)
from storage_engine.models import MANAGED_TAG, BackupSnapshot, Severity, TagSet, VolumeClass
from storage_engine.services.backup import BackupCoordinator
from storage_engine.services.service_supervisor import ServiceSupervisor
from storage_engine.services.storage_checker import StorageChecker
from storage_engine.services.volume_registry import VolumeRegistry
from storage_engine.services.volumes import VolumeLifecycleManager, build_sync_strategies


@pytest.fixture
def homebridge(make_volume):
    volume = make_volume("homebridge", VolumeClass.PERSISTENT, backup_eligible=True)
    Path(volume.path).mkdir(parents=True)
    (Path(volume.path) / "config.json").write_text('{"bridge": "old"}')
    return volume


@pytest.fixture
def nixarr_state(tmp_path):
    path = tmp_path / "state" / "nixarr"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def settings(make_settings, homebridge, nixarr_state, tmp_path):
    settings = make_settings(
        volumes=[homebridge],
        service_state_dirs={"nixarr": str(nixarr_state), "unpackerr": str(tmp_path / "state" / "unpackerr")},
        restore_targets={"homebridge": homebridge.path, "rogue": str(tmp_path / "not-a-volume")},
    )
    Path(settings.repository_token_file).write_text("s3cr3t\n")
    return settings


@pytest.fixture
def repository():
    mock_repository = Mock()
    mock_repository.connect = AsyncMock()
    mock_repository.disconnect = AsyncMock()
    mock_repository.list = AsyncMock(return_value=[])
    mock_repository.restore = AsyncMock()

    async def snapshot(path, tags):
        return BackupSnapshot(id=f"snap-{Path(path).name}", source_path=path, tags=tags)

    mock_repository.snapshot = AsyncMock(side_effect=snapshot)
    return mock_repository


@pytest.fixture
def services():
    mock_services = Mock(spec=ServiceSupervisor)
    mock_services.pause = AsyncMock(side_effect=lambda names: list(names))
    mock_services.resume = AsyncMock(side_effect=lambda names: list(names))
    return mock_services


@pytest.fixture
def coordinator(settings, repository, services, event_bus, locks, runner):
    registry = VolumeRegistry(settings.volumes)
    lifecycle = VolumeLifecycleManager(
        settings, registry, StorageChecker(), locks, runner, build_sync_strategies(runner)
    )
    return BackupCoordinator(settings, repository, registry, lifecycle, services, event_bus, locks)


class TestCoordinate:
    @pytest.mark.asyncio
    async def test_missing_token_fails_before_connect(self, coordinator, settings, repository):
        Path(settings.repository_token_file).unlink()

        with pytest.raises(RepositoryAuthError):
            await coordinator.coordinate()

        repository.connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_token_fails_before_connect(self, coordinator, settings, repository):
        Path(settings.repository_token_file).write_text("  \n")

        with pytest.raises(RepositoryAuthError):
            await coordinator.coordinate()

        repository.connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_token_is_not_retried(self, coordinator, repository):
        repository.connect.side_effect = RepositoryAuthError("invalid token")

        with pytest.raises(RepositoryAuthError):
            await coordinator.coordinate()

        assert repository.connect.await_count == 1
        repository.snapshot.assert_not_called()
        repository.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_snapshots_volumes_and_service_state(self, coordinator, repository, homebridge, nixarr_state, event_bus):
        published = []

        async def record(event):
            published.append(event)

        await event_bus.subscribe(SnapshotCreatedEvent, record)

        result = await coordinator.coordinate()

        repository.connect.assert_awaited_once_with("s3cr3t")
        tags_by_path = {c.args[0]: c.args[1] for c in repository.snapshot.await_args_list}
        assert tags_by_path[homebridge.path] == TagSet(
            ["service:homebridge", "type:persistent", "automated:true", MANAGED_TAG]
        )
        assert tags_by_path[str(nixarr_state)] == TagSet(
            ["service:nixarr", "type:application", "automated:true", MANAGED_TAG]
        )
        assert len(result.details["snapshots"]) == 2
        assert len(published) == 2
        repository.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_source_is_skipped_with_cause(self, coordinator):
        result = await coordinator.coordinate()

        assert result.severity == Severity.WARNING
        assert any("unpackerr" in cause for cause in result.causes)

    @pytest.mark.asyncio
    async def test_snapshot_failure_aborts_and_disconnects(self, coordinator, repository):
        repository.snapshot.side_effect = SnapshotError("/var/lib/homebridge", "repository full")

        with pytest.raises(SnapshotError):
            await coordinator.coordinate()

        repository.disconnect.assert_awaited_once()


class TestRestore:
    @pytest.mark.asyncio
    async def test_unknown_service(self, coordinator, repository):
        with pytest.raises(UnknownServiceError):
            await coordinator.restore("jellyfin", "snap-1")

        repository.connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_target_outside_registered_volumes(self, coordinator, repository):
        with pytest.raises(UnregisteredPathError):
            await coordinator.restore("rogue", "snap-1")

        repository.connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_restore_keeps_previous_data_aside(self, coordinator, repository, services, homebridge, event_bus):
        completed = []

        async def record(event):
            completed.append(event)

        await event_bus.subscribe(RestoreCompletedEvent, record)

        async def restore(snapshot_id, destination):
            (Path(destination) / "config.json").write_text('{"bridge": "restored"}')

        repository.restore.side_effect = restore

        result = await coordinator.restore("homebridge", "snap-42")

        target = Path(homebridge.path)
        aside = Path(result.details["aside_path"])
        assert (target / "config.json").read_text() == '{"bridge": "restored"}'
        assert (aside / "config.json").read_text() == '{"bridge": "old"}'
        assert aside.name.startswith("homebridge.pre-restore-")
        assert result.details["safety_snapshot_id"] == "snap-homebridge"
        services.pause.assert_awaited_once_with(["homebridge"])
        services.resume.assert_awaited_once_with(["homebridge"])
        assert completed[0].snapshot_id == "snap-42"

    @pytest.mark.asyncio
    async def test_failure_after_rename_preserves_aside_and_keeps_services_paused(
        self, coordinator, repository, services, homebridge
    ):
        repository.restore.side_effect = RepositoryError("snapshot snap-42 not found")

        with pytest.raises(RestoreFailedError) as exc_info:
            await coordinator.restore("homebridge", "snap-42")

        aside = exc_info.value.aside_path
        assert aside is not None
        assert (aside / "config.json").read_text() == '{"bridge": "old"}'
        assert Path(homebridge.path).is_dir()
        services.resume.assert_not_called()
        repository.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_rename_aside_resumes_services(self, coordinator, repository, services, homebridge):
        with patch("pathlib.Path.rename", side_effect=OSError(16, "Device or resource busy")):
            with pytest.raises(RestoreFailedError, match="Device or resource busy") as exc_info:
                await coordinator.restore("homebridge", "snap-42")

        assert exc_info.value.aside_path is None
        assert (Path(homebridge.path) / "config.json").read_text() == '{"bridge": "old"}'
        services.resume.assert_awaited_once_with(["homebridge"])
        repository.restore.assert_not_called()
        repository.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_safety_snapshot_is_warning(self, coordinator, repository):
        repository.snapshot.side_effect = SnapshotError("/var/lib/homebridge", "repository busy")

        result = await coordinator.restore("homebridge", "snap-42")

        assert result.severity == Severity.WARNING
        repository.restore.assert_awaited_once()


class TestListSnapshots:
    @pytest.mark.asyncio
    async def test_managed_only_by_default(self, coordinator, repository, settings):
        await coordinator.list_snapshots(tags=["service:pihole"])

        kwargs = repository.list.await_args.kwargs
        assert kwargs["tag_filter"] == TagSet(["service:pihole", MANAGED_TAG])
        assert kwargs["max_results"] == settings.default_snapshot_list_limit

    @pytest.mark.asyncio
    async def test_unmanaged_listing_with_limit(self, coordinator, repository):
        await coordinator.list_snapshots(managed_only=False, limit=5)

        kwargs = repository.list.await_args.kwargs
        assert kwargs["tag_filter"] == TagSet()
        assert kwargs["max_results"] == 5
        repository.disconnect.assert_awaited_once()
