"""
Volume Lifecycle Manager - the only component that changes volume directories on disk.

ensure/verify/cleanup/migrate/sync for registered volumes. Volumes living on
the network mount are gated on NetworkMountSupervisor.ensure_available(); when
the mount is unavailable the operation raises MountUnavailableError and does
nothing.
"""

import asyncio
import grp
import logging
import os
import pwd
import shutil
import stat
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .sync_strategies import VolumeSyncStrategy
from ..network_mount.mount_service import NetworkMountSupervisor
from ..storage_checker import StorageAccessError, StorageChecker
from ..volume_registry import VolumeRegistry
from ...config import Settings
from ...core.commands import CommandRunner
from ...core.exceptions import (
    MigrationCopyError,
    MigrationVerificationError,
    MissingVolumeError,
    MountUnavailableError,
    PathConflictError,
    UnregisteredPathError,
    VolumeNotFound,
    VolumePermissionError,
)
from ...core.locks import ResourceLocks
from ...models import Alert, AlertCode, OperationResult, Severity, Volume, VolumeClass
from ...utils.file_operations import format_mode, is_within, iter_tree_files, total_tree_size

SECONDS_PER_DAY = 86400


class VolumeLifecycleManager:
    def __init__(
        self,
        settings: Settings,
        registry: VolumeRegistry,
        storage_checker: StorageChecker,
        locks: ResourceLocks,
        runner: CommandRunner,
        sync_strategies: Dict[VolumeClass, VolumeSyncStrategy],
        mount_supervisor: Optional[NetworkMountSupervisor] = None,
    ):
        self._settings = settings
        self._registry = registry
        self._checker = storage_checker
        self._locks = locks
        self._runner = runner
        self._sync_strategies = sync_strategies
        self._mount_supervisor = mount_supervisor

    # ------------------------------------------------------------------
    # ensure
    # ------------------------------------------------------------------

    async def ensure(self, volume: Volume) -> OperationResult:
        """
        Create the volume directory if needed and apply owner and mode.

        Idempotent: running it twice leaves the same state as running it once.

        Raises:
            PathConflictError: a non-directory occupies the path.
            VolumePermissionError: ownership cannot be set.
            MountUnavailableError: volume is on the network mount and it is down.
        """
        await self._require_mount_for(volume.path)

        async with self._locks.hold(_volume_resource(volume), "ensure"):
            result = OperationResult(operation="volume.ensure")
            path = Path(volume.path)

            if path.exists() and not path.is_dir():
                raise PathConflictError(volume.path)

            created = not path.exists()
            if created:
                await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
                logging.info(f"Created volume directory {volume.path}")

            await self.apply_ownership(volume, path)

            relabel_error = await self._relabel(path)
            if relabel_error:
                result.add_cause(Severity.WARNING, relabel_error)

            result.details.update(volume=volume.name, path=volume.path, created=created)
            return result

    async def apply_ownership(self, volume: Volume, path: Path) -> None:
        """chown + chmod path to the volume's owner and mode."""
        uid, gid = resolve_owner(volume)
        try:
            await asyncio.to_thread(os.chown, path, uid, gid)
        except OSError as e:
            raise VolumePermissionError(str(path), str(e)) from e
        await asyncio.to_thread(os.chmod, path, volume.mode)

    async def _relabel(self, path: Path) -> Optional[str]:
        binary = shutil.which(self._settings.relabel_command)
        if not binary:
            return None
        result = await self._runner.run([binary, "-R", str(path)])
        if result.ok:
            return None
        logging.warning(f"Relabel of {path} failed: {result.error_message}")
        return f"SELinux relabel of {path} failed: {result.error_message}"

    # ------------------------------------------------------------------
    # verify
    # ------------------------------------------------------------------

    async def verify(self, volume: Volume) -> OperationResult:
        """
        Check existence, owner/mode drift and capacity.

        Raises:
            MissingVolumeError: the volume directory does not exist.
        """
        await self._require_mount_for(volume.path)

        path = Path(volume.path)
        if not await self._checker.path_exists(volume.path):
            raise MissingVolumeError(volume.name, volume.path)

        st = await asyncio.to_thread(path.stat)
        alerts: List[Alert] = []

        owner_alert = _owner_drift(volume, st)
        if owner_alert:
            alerts.append(owner_alert)

        actual_mode = stat.S_IMODE(st.st_mode)
        if actual_mode != volume.mode:
            alerts.append(
                Alert(
                    code=AlertCode.MODE_DRIFT,
                    severity=Severity.WARNING,
                    subject=volume.name,
                    message=f"{volume.path} has mode {format_mode(actual_mode)}, expected {format_mode(volume.mode)}",
                )
            )

        details = {"volume": volume.name, "path": volume.path}
        try:
            sample = await self._checker.sample_capacity(volume.path)
            details.update(
                total_bytes=sample.total_bytes,
                used_bytes=sample.used_bytes,
                free_bytes=sample.free_bytes,
                used_percent=round(sample.used_percent, 1),
            )
        except (StorageAccessError, VolumeNotFound) as e:
            logging.warning(f"Capacity unavailable for {volume.path}: {e}")

        return OperationResult.from_alerts("volume.verify", alerts, **details)

    # ------------------------------------------------------------------
    # cleanup
    # ------------------------------------------------------------------

    async def cleanup(self, volume: Volume, dry_run: bool = False) -> OperationResult:
        """
        Delete files older than the retention window of the volume's class.

        Cache volumes age out completely; persistent volumes only lose log
        files (*.log or anything below a `logs` directory).

        Raises:
            UnregisteredPathError: volume path is not inside a registered volume.
        """
        if not self._registry.owns_path(volume.path):
            raise UnregisteredPathError(volume.path)

        result = OperationResult(operation="volume.cleanup")
        result.details.update(volume=volume.name, dry_run=dry_run)

        retention_days = self._settings.retention_days.get(volume.volume_class)
        if retention_days is None:
            result.causes.append(f"No retention policy for {volume.volume_class.value} volume {volume.name}")
            return result

        await self._require_mount_for(volume.path)

        async with self._locks.hold(_volume_resource(volume), "cleanup"):
            root = Path(volume.path)
            if not root.is_dir():
                result.add_cause(Severity.WARNING, f"Volume {volume.name} does not exist at {volume.path}")
                return result

            cutoff = time.time() - retention_days * SECONDS_PER_DAY
            only_logs = volume.volume_class == VolumeClass.PERSISTENT
            expired = await asyncio.to_thread(_expired_files, root, cutoff, only_logs)

            deleted: List[str] = []
            freed_bytes = 0
            for candidate, size in expired:
                # iter_tree_files never follows links, re-checked here before unlink
                if not is_within(candidate, root):
                    raise UnregisteredPathError(str(candidate))
                if not dry_run:
                    try:
                        candidate.unlink()
                    except OSError as e:
                        result.add_cause(Severity.WARNING, f"Could not delete {candidate}: {e}")
                        continue
                deleted.append(str(candidate))
                freed_bytes += size

            verb = "Would delete" if dry_run else "Deleted"
            logging.info(
                f"{verb} {len(deleted)} files ({freed_bytes} bytes) older than "
                f"{retention_days} days from {volume.name}"
            )
            result.details.update(
                retention_days=retention_days,
                deleted_files=deleted,
                deleted_count=len(deleted),
                freed_bytes=freed_bytes,
            )
            return result

    # ------------------------------------------------------------------
    # migrate
    # ------------------------------------------------------------------

    async def migrate(self, source: str, destination: str) -> OperationResult:
        """
        Copy source to destination and verify the total size; source is never deleted.

        Raises:
            VolumeNotFound: source does not exist.
            PathConflictError: destination already exists.
            UnregisteredPathError: destination is not inside a registered volume.
            MigrationCopyError: the copy failed partway; the partial destination is kept.
            MigrationVerificationError: sizes differ after the copy.
        """
        source_path = Path(source)
        dest_path = Path(destination)

        if not source_path.is_dir():
            raise VolumeNotFound(source)
        if dest_path.exists():
            raise PathConflictError(destination)
        if not self._registry.owns_path(destination):
            raise UnregisteredPathError(destination)

        await self._require_mount_for(source)
        await self._require_mount_for(destination)

        owner = self._registry.volume_for_path(destination)
        async with self._locks.hold(_volume_resource(owner), "migrate"):
            logging.info(f"Migrating {source} to {destination}")
            try:
                await asyncio.to_thread(
                    shutil.copytree, source_path, dest_path, symlinks=True, copy_function=shutil.copy2
                )
            except OSError as e:
                logging.error(f"Migration copy of {source} to {destination} failed: {e}")
                raise MigrationCopyError(source, destination, str(e)) from e

            source_size = await asyncio.to_thread(total_tree_size, source_path)
            dest_size = await asyncio.to_thread(total_tree_size, dest_path)
            if source_size != dest_size:
                logging.error(f"Migration verification failed: {source_size} != {dest_size} bytes")
                raise MigrationVerificationError(source, destination, source_size, dest_size)

        logging.info(f"Migrated {source_size} bytes from {source} to {destination}")
        result = OperationResult(operation="volume.migrate")
        result.details.update(source=source, destination=destination, bytes=source_size)
        return result

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    async def sync(self, remote_host: str, volumes: Optional[Iterable[Volume]] = None) -> OperationResult:
        """Replicate volumes to remote_host using the strategy of each volume class."""
        result = OperationResult(operation="volume.sync")
        status: Dict[str, str] = {}

        for volume in volumes if volumes is not None else self._registry.all():
            strategy = self._sync_strategies.get(volume.volume_class)
            if strategy is None:
                status[volume.name] = "skipped"
                continue

            try:
                await self._require_mount_for(volume.path)
                async with self._locks.hold(_volume_resource(volume), "sync"):
                    outcome = await strategy.sync(volume, remote_host)
            except NotImplementedError as e:
                status[volume.name] = "not_implemented"
                result.add_cause(Severity.WARNING, str(e))
                continue
            except MountUnavailableError as e:
                status[volume.name] = "failed"
                result.add_cause(Severity.CRITICAL, f"{volume.name}: {e}")
                continue

            if outcome.skipped:
                status[volume.name] = "skipped"
            elif outcome.synced:
                status[volume.name] = "synced"
            else:
                status[volume.name] = "failed"
                result.add_cause(Severity.CRITICAL, f"Sync of {volume.name} failed: {outcome.error}")

        result.details.update(remote_host=remote_host, volumes=status)
        return result

    async def _require_mount_for(self, path: str) -> None:
        if self._mount_supervisor and self._mount_supervisor.covers(path):
            await self._mount_supervisor.ensure_available()


def _volume_resource(volume: Volume) -> str:
    return f"volume:{volume.name}"


def resolve_owner(volume: Volume) -> Tuple[int, int]:
    """
    uid/gid for the volume owner; names are looked up, digits taken as ids.

    Raises:
        VolumePermissionError: user or group does not exist on this host.
    """
    try:
        uid = int(volume.user) if volume.user.isdigit() else pwd.getpwnam(volume.user).pw_uid
        gid = int(volume.group) if volume.group.isdigit() else grp.getgrnam(volume.group).gr_gid
    except KeyError as e:
        raise VolumePermissionError(volume.path, f"unknown owner {volume.owner}") from e
    return uid, gid


def _owner_drift(volume: Volume, st: os.stat_result) -> Optional[Alert]:
    try:
        uid, gid = resolve_owner(volume)
    except VolumePermissionError as e:
        return Alert(code=AlertCode.OWNER_DRIFT, severity=Severity.WARNING, subject=volume.name, message=str(e))

    if (st.st_uid, st.st_gid) == (uid, gid):
        return None
    return Alert(
        code=AlertCode.OWNER_DRIFT,
        severity=Severity.WARNING,
        subject=volume.name,
        message=f"{volume.path} is owned by {st.st_uid}:{st.st_gid}, expected {volume.owner} ({uid}:{gid})",
    )


def _is_log_file(path: Path, root: Path) -> bool:
    return path.suffix == ".log" or "logs" in path.relative_to(root).parts[:-1]


def _expired_files(root: Path, cutoff: float, only_logs: bool) -> List[Tuple[Path, int]]:
    expired = []
    for candidate in iter_tree_files(root):
        if only_logs and not _is_log_file(candidate, root):
            continue
        st = candidate.stat()
        if st.st_mtime < cutoff:
            expired.append((candidate, st.st_size))
    return expired
