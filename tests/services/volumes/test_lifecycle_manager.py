"""
Tests for VolumeLifecycleManager: ensure, verify, cleanup, migrate and sync.
"""

import os
import shutil
import stat
import time
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from storage_engine.core.exceptions import (
    MigrationCopyError,
    MigrationVerificationError,
    MissingVolumeError,
    MountUnavailableError,
    PathConflictError,
    UnregisteredPathError,
    VolumePermissionError,
)
from storage_engine.models import AlertCode, Severity, Volume, VolumeClass
from storage_engine.services.network_mount import NetworkMountSupervisor
from storage_engine.services.storage_checker import StorageChecker
from storage_engine.services.volume_registry import VolumeRegistry
from storage_engine.services.volumes import VolumeLifecycleManager, build_sync_strategies
from tests.helpers import failed_result

DAY = 86400


def _age(path: Path, days: float) -> None:
    then = time.time() - days * DAY
    os.utime(path, (then, then))


def _write(path: Path, content: str = "x", age_days: float = 0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    if age_days:
        _age(path, age_days)
    return path


@pytest.fixture
def volumes(make_volume):
    return {
        "homebridge": make_volume("homebridge", VolumeClass.PERSISTENT, backup_eligible=True),
        "cache": make_volume("cache", VolumeClass.CACHE),
        "secrets": make_volume("secrets", VolumeClass.RUNTIME, mode=0o700),
        "media": make_volume("media", VolumeClass.MEDIA),
        "target": make_volume("target", VolumeClass.PERSISTENT),
    }


@pytest.fixture
def settings(make_settings, volumes):
    return make_settings(volumes=list(volumes.values()), relabel_command="restorecon-not-installed")


@pytest.fixture
def registry(settings):
    return VolumeRegistry(settings.volumes)


@pytest.fixture
def make_manager(settings, registry, locks, runner):
    def _make(mount_supervisor=None):
        return VolumeLifecycleManager(
            settings,
            registry,
            StorageChecker(),
            locks,
            runner,
            build_sync_strategies(runner),
            mount_supervisor=mount_supervisor,
        )

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


class TestEnsure:
    @pytest.mark.asyncio
    async def test_creates_directory_with_mode(self, manager, volumes):
        volume = volumes["secrets"]

        result = await manager.ensure(volume)

        assert result.ok
        assert result.details["created"] is True
        assert stat.S_IMODE(os.stat(volume.path).st_mode) == 0o700

    @pytest.mark.asyncio
    async def test_is_idempotent(self, manager, volumes):
        volume = volumes["homebridge"]

        await manager.ensure(volume)
        first = os.stat(volume.path)
        result = await manager.ensure(volume)
        second = os.stat(volume.path)

        assert result.details["created"] is False
        assert (first.st_mode, first.st_uid, first.st_gid) == (second.st_mode, second.st_uid, second.st_gid)

    @pytest.mark.asyncio
    async def test_restores_drifted_mode(self, manager, volumes):
        volume = volumes["homebridge"]
        await manager.ensure(volume)
        os.chmod(volume.path, 0o777)

        await manager.ensure(volume)

        assert stat.S_IMODE(os.stat(volume.path).st_mode) == 0o750

    @pytest.mark.asyncio
    async def test_file_at_path_is_conflict(self, manager, volumes):
        volume = volumes["cache"]
        _write(Path(volume.path))

        with pytest.raises(PathConflictError):
            await manager.ensure(volume)

    @pytest.mark.asyncio
    async def test_unknown_owner_is_permission_error(self, manager, tmp_path):
        volume = Volume(name="ghost", path=str(tmp_path / "ghost"), owner="no-such-user-xyz:no-such-group-xyz")

        with pytest.raises(PermissionError) as exc_info:
            await manager.ensure(volume)

        assert isinstance(exc_info.value, VolumePermissionError)

    @pytest.mark.asyncio
    async def test_chown_failure_is_permission_error(self, manager, volumes):
        with patch(
            "storage_engine.services.volumes.lifecycle_manager.os.chown",
            side_effect=PermissionError("Operation not permitted"),
        ):
            with pytest.raises(VolumePermissionError, match="Operation not permitted"):
                await manager.ensure(volumes["homebridge"])

    @pytest.mark.asyncio
    async def test_relabel_failure_is_warning(self, manager, volumes, runner):
        runner.run.side_effect = None
        runner.run.return_value = failed_result("restorecon", stderr="SELinux is disabled")

        with patch(
            "storage_engine.services.volumes.lifecycle_manager.shutil.which", return_value="/usr/sbin/restorecon"
        ):
            result = await manager.ensure(volumes["homebridge"])

        assert result.severity == Severity.WARNING
        runner.run.assert_awaited_once_with(["/usr/sbin/restorecon", "-R", volumes["homebridge"].path])

    @pytest.mark.asyncio
    async def test_unavailable_mount_does_nothing(self, make_manager, volumes):
        supervisor = Mock(spec=NetworkMountSupervisor)
        supervisor.covers = Mock(return_value=True)
        supervisor.ensure_available = AsyncMock(side_effect=MountUnavailableError("/mnt/docker-data", "host down"))
        manager = make_manager(mount_supervisor=supervisor)
        volume = volumes["homebridge"]

        with pytest.raises(MountUnavailableError):
            await manager.ensure(volume)

        assert not os.path.exists(volume.path)


class TestVerify:
    @pytest.mark.asyncio
    async def test_missing_volume_is_fatal(self, manager, volumes):
        with pytest.raises(MissingVolumeError):
            await manager.verify(volumes["homebridge"])

    @pytest.mark.asyncio
    async def test_clean_volume_reports_capacity(self, manager, volumes):
        volume = volumes["homebridge"]
        await manager.ensure(volume)

        result = await manager.verify(volume)

        assert result.ok
        assert result.details["total_bytes"] > 0
        assert 0 <= result.details["used_percent"] <= 100

    @pytest.mark.asyncio
    async def test_mode_drift_is_warning(self, manager, volumes):
        volume = volumes["homebridge"]
        await manager.ensure(volume)
        os.chmod(volume.path, 0o777)

        result = await manager.verify(volume)

        assert result.severity == Severity.WARNING
        assert [a.code for a in result.alerts] == [AlertCode.MODE_DRIFT]

    @pytest.mark.asyncio
    async def test_owner_drift_is_warning(self, manager, tmp_path):
        path = tmp_path / "drifted"
        path.mkdir(mode=0o755)
        os.chmod(path, 0o755)
        volume = Volume(name="drifted", path=str(path), mode=0o755, owner=f"{os.getuid() + 1}:{os.getgid()}")

        result = await manager.verify(volume)

        assert [a.code for a in result.alerts] == [AlertCode.OWNER_DRIFT]
        assert result.severity == Severity.WARNING


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cache_files_older_than_seven_days(self, manager, volumes):
        root = Path(volumes["cache"].path)
        old = _write(root / "layers" / "old.tar", age_days=8)
        fresh = _write(root / "layers" / "fresh.tar", age_days=2)

        result = await manager.cleanup(volumes["cache"])

        assert not old.exists()
        assert fresh.exists()
        assert result.details["deleted_count"] == 1
        assert result.details["retention_days"] == 7

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, manager, volumes):
        root = Path(volumes["cache"].path)
        old = _write(root / "old.tar", content="12345", age_days=30)

        result = await manager.cleanup(volumes["cache"], dry_run=True)

        assert old.exists()
        assert result.details["deleted_files"] == [str(old)]
        assert result.details["freed_bytes"] == 5

    @pytest.mark.asyncio
    async def test_persistent_volume_only_loses_old_logs(self, manager, volumes):
        root = Path(volumes["homebridge"].path)
        old_log = _write(root / "homebridge.log", age_days=31)
        old_nested_log = _write(root / "logs" / "2024-01-01.txt", age_days=40)
        fresh_log = _write(root / "today.log", age_days=1)
        old_state = _write(root / "config.json", age_days=400)

        await manager.cleanup(volumes["homebridge"])

        assert not old_log.exists()
        assert not old_nested_log.exists()
        assert fresh_log.exists()
        assert old_state.exists()

    @pytest.mark.asyncio
    async def test_refuses_unregistered_path(self, manager, tmp_path):
        outsider = Volume(name="outsider", path=str(tmp_path / "elsewhere"), volume_class=VolumeClass.CACHE)

        with pytest.raises(UnregisteredPathError):
            await manager.cleanup(outsider)

    @pytest.mark.asyncio
    async def test_prefix_sibling_is_not_registered(self, manager, volumes):
        sibling = Volume(name="cache-old", path=volumes["cache"].path + "-old", volume_class=VolumeClass.CACHE)
        victim = _write(Path(sibling.path) / "precious.bin", age_days=100)

        with pytest.raises(UnregisteredPathError):
            await manager.cleanup(sibling)

        assert victim.exists()

    @pytest.mark.asyncio
    async def test_symlinks_are_not_followed(self, manager, volumes, tmp_path):
        outside = _write(tmp_path / "outside" / "keep.bin", age_days=100)
        root = Path(volumes["cache"].path)
        root.mkdir(parents=True)
        (root / "link-dir").symlink_to(outside.parent, target_is_directory=True)
        (root / "link-file").symlink_to(outside)

        await manager.cleanup(volumes["cache"])

        assert outside.exists()

    @pytest.mark.asyncio
    async def test_runtime_volume_has_no_retention(self, manager, volumes):
        _write(Path(volumes["secrets"].path) / "token", age_days=100)

        result = await manager.cleanup(volumes["secrets"])

        assert result.ok
        assert "No retention policy" in result.causes[0]
        assert (Path(volumes["secrets"].path) / "token").exists()


class TestMigrate:
    @pytest.mark.asyncio
    async def test_copies_and_verifies(self, manager, volumes, tmp_path):
        source = tmp_path / "legacy"
        _write(source / "data" / "db.sqlite", content="a" * 100)
        (source / "current").symlink_to("data/db.sqlite")
        destination = Path(volumes["target"].path) / "migrated"

        result = await manager.migrate(str(source), str(destination))

        assert result.details["bytes"] == 100
        assert (destination / "data" / "db.sqlite").read_text() == "a" * 100
        assert (destination / "current").is_symlink()
        assert os.readlink(destination / "current") == "data/db.sqlite"
        assert (source / "data" / "db.sqlite").exists()

    @pytest.mark.asyncio
    async def test_size_mismatch_keeps_source(self, manager, volumes, tmp_path):
        source = tmp_path / "legacy"
        _write(source / "file.bin", content="abc")
        destination = Path(volumes["target"].path) / "migrated"

        with patch(
            "storage_engine.services.volumes.lifecycle_manager.total_tree_size", side_effect=[3, 2]
        ):
            with pytest.raises(MigrationVerificationError) as exc_info:
                await manager.migrate(str(source), str(destination))

        assert exc_info.value.source_size == 3
        assert (source / "file.bin").exists()

    @pytest.mark.asyncio
    async def test_copy_failure_reports_partial_destination(self, manager, volumes, tmp_path):
        source = tmp_path / "legacy"
        _write(source / "a.bin", content="aaa")
        _write(source / "b.bin", content="bbb")
        destination = Path(volumes["target"].path) / "migrated"
        real_copy2 = shutil.copy2

        def failing_copy(src, dst, **kwargs):
            if os.fspath(src).endswith("b.bin"):
                raise OSError(5, "Input/output error")
            return real_copy2(src, dst, **kwargs)

        with patch("storage_engine.services.volumes.lifecycle_manager.shutil.copy2", side_effect=failing_copy):
            with pytest.raises(MigrationCopyError) as exc_info:
                await manager.migrate(str(source), str(destination))

        assert exc_info.value.destination == str(destination)
        assert "Partial copy left at" in str(exc_info.value)
        assert (destination / "a.bin").read_text() == "aaa"
        assert (source / "b.bin").read_text() == "bbb"

    @pytest.mark.asyncio
    async def test_existing_destination_is_conflict(self, manager, volumes, tmp_path):
        source = tmp_path / "legacy"
        source.mkdir()
        destination = Path(volumes["target"].path)
        destination.mkdir(parents=True)

        with pytest.raises(PathConflictError):
            await manager.migrate(str(source), str(destination))

    @pytest.mark.asyncio
    async def test_unregistered_destination_refused(self, manager, tmp_path):
        source = tmp_path / "legacy"
        source.mkdir()

        with pytest.raises(UnregisteredPathError):
            await manager.migrate(str(source), str(tmp_path / "nowhere"))


class TestSync:
    @pytest.mark.asyncio
    async def test_strategy_per_volume_class(self, manager, volumes, runner):
        result = await manager.sync(
            "backup-host",
            [volumes["homebridge"], volumes["cache"], volumes["secrets"], volumes["media"]],
        )

        assert result.details["volumes"] == {
            "homebridge": "synced",
            "cache": "skipped",
            "secrets": "skipped",
            "media": "not_implemented",
        }
        assert result.severity == Severity.WARNING
        path = volumes["homebridge"].path
        runner.run.assert_awaited_once_with(
            ["rsync", "-a", "--partial", f"{path}/", f"backup-host:{path}/"], timeout_seconds=3600.0
        )

    @pytest.mark.asyncio
    async def test_rsync_failure_is_critical(self, manager, volumes, runner):
        runner.run.side_effect = None
        runner.run.return_value = failed_result("rsync", stderr="connection refused")

        result = await manager.sync("backup-host", [volumes["homebridge"]])

        assert result.severity == Severity.CRITICAL
        assert result.details["volumes"]["homebridge"] == "failed"
