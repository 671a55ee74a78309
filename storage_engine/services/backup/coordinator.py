"""
Backup Coordinator - snapshot creation and restoration.

BackupCoordinator er ansvarlig for:
- Token handling og repository session per kald
- Snapshots af backup-eligible volumes og service state directories
- Restore med rename-aside, så eksisterende data aldrig overskrives
- Audit listing af snapshots filtreret på tags
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import aiofiles

from .repository import BackupRepository, repository_session
from ..network_mount.mount_service import NetworkMountSupervisor
from ..service_supervisor import ServiceSupervisor
from ..volume_registry import VolumeRegistry
from ..volumes.lifecycle_manager import VolumeLifecycleManager
from ...config import Settings
from ...core.events.event_bus import DomainEventBus
from ...core.events.storage_events import RestoreCompletedEvent, SnapshotCreatedEvent
from ...core.exceptions import (
    MountUnavailableError,
    RepositoryAuthError,
    RepositoryError,
    RestoreFailedError,
    UnknownServiceError,
    UnregisteredPathError,
    VolumePermissionError,
)
from ...core.locks import ResourceLocks
from ...models import MANAGED_TAG, BackupSnapshot, OperationResult, Severity, TagSet
from ...utils.file_operations import build_rename_aside_path

REPOSITORY_RESOURCE = "repository"


class BackupCoordinator:
    def __init__(
        self,
        settings: Settings,
        repository: BackupRepository,
        registry: VolumeRegistry,
        lifecycle_manager: VolumeLifecycleManager,
        service_supervisor: ServiceSupervisor,
        event_bus: DomainEventBus,
        locks: ResourceLocks,
        mount_supervisor: Optional[NetworkMountSupervisor] = None,
    ):
        self._settings = settings
        self._repository = repository
        self._registry = registry
        self._lifecycle = lifecycle_manager
        self._services = service_supervisor
        self._event_bus = event_bus
        self._locks = locks
        self._mount_supervisor = mount_supervisor

    async def read_token(self) -> str:
        """
        Raises:
            RepositoryAuthError: token file missing, unreadable or empty.
        """
        token_file = self._settings.repository_token_file
        try:
            async with aiofiles.open(token_file, "r") as f:
                token = (await f.read()).strip()
        except OSError as e:
            raise RepositoryAuthError(f"Repository token not readable at {token_file}: {e}") from e

        if not token:
            raise RepositoryAuthError(f"Repository token file {token_file} is empty")
        return token

    # ------------------------------------------------------------------
    # coordinate
    # ------------------------------------------------------------------

    async def coordinate(self) -> OperationResult:
        """
        Snapshot every backup-eligible volume and every service state directory.

        Raises:
            RepositoryAuthError: token missing/empty or rejected by the repository.
            SnapshotError: the repository failed to snapshot a source.
        """
        token = await self.read_token()
        result = OperationResult(operation="backup.coordinate")
        created: List[BackupSnapshot] = []

        async with self._locks.hold(REPOSITORY_RESOURCE, "coordinate"):
            async with repository_session(self._repository, token) as repository:
                for service, path, source_type in self._backup_sources():
                    if not await self._source_available(path, result):
                        continue

                    tags = TagSet.from_pairs(service=service, type=source_type, automated=True).with_tags(MANAGED_TAG)
                    snapshot = await repository.snapshot(path, tags)
                    created.append(snapshot)
                    await self._event_bus.publish(SnapshotCreatedEvent(snapshot=snapshot))

        logging.info(f"Backup coordination finished: {len(created)} snapshots")
        result.details["snapshots"] = [s.to_dict() for s in created]
        return result

    def _backup_sources(self) -> List[Tuple[str, str, str]]:
        sources = [(v.name, v.path, "persistent") for v in self._registry.backup_eligible()]
        sources.extend((service, path, "application") for service, path in self._settings.service_state_dirs.items())
        return sources

    async def _source_available(self, path: str, result: OperationResult) -> bool:
        if self._mount_supervisor and self._mount_supervisor.covers(path):
            try:
                await self._mount_supervisor.ensure_available()
            except MountUnavailableError as e:
                logging.warning(f"Skipping backup of {path}: {e}")
                result.add_cause(Severity.WARNING, f"Skipped {path}: {e}")
                return False

        if not await asyncio.to_thread(Path(path).is_dir):
            logging.warning(f"Skipping backup of {path}: source does not exist")
            result.add_cause(Severity.WARNING, f"Skipped {path}: source does not exist")
            return False
        return True

    # ------------------------------------------------------------------
    # restore
    # ------------------------------------------------------------------

    async def restore(self, service: str, snapshot_id: str) -> OperationResult:
        """
        Restore snapshot_id over the service's data directory.

        The existing directory is renamed aside first and never deleted.

        Raises:
            UnknownServiceError: service has no restore target.
            UnregisteredPathError: restore target is outside every registered volume.
            MountUnavailableError: target is on the network mount and it is down.
            RepositoryAuthError: token missing or rejected.
            RestoreFailedError: rename-aside failed (services resumed, data untouched)
                or a later step failed (services stay paused, aside_path kept).
        """
        target = self._settings.restore_targets.get(service)
        if target is None:
            raise UnknownServiceError(service)

        volume = self._registry.volume_for_path(target)
        if volume is None:
            raise UnregisteredPathError(target)

        if self._mount_supervisor and self._mount_supervisor.covers(target):
            await self._mount_supervisor.ensure_available()

        token = await self.read_token()
        result = OperationResult(operation="backup.restore")
        target_path = Path(target)

        async with self._locks.hold(REPOSITORY_RESOURCE, "restore"):
            async with repository_session(self._repository, token) as repository:
                paused = await self._services.pause([service])
                if not paused:
                    result.add_cause(Severity.WARNING, f"Service {service} could not be stopped before restore")

                aside_path = None
                if target_path.exists():
                    await self._safety_snapshot(repository, service, target, result)
                    aside_path = build_rename_aside_path(target_path)
                    try:
                        await asyncio.to_thread(target_path.rename, aside_path)
                    except OSError as e:
                        logging.error(f"Could not move {target} aside: {e}")
                        # Target is still in place and untouched
                        await self._services.resume(paused)
                        raise RestoreFailedError(
                            service, snapshot_id, f"could not move {target} aside: {e}"
                        ) from e
                    logging.info(f"Moved {target} aside to {aside_path}")

                try:
                    await asyncio.to_thread(target_path.mkdir, parents=True, exist_ok=False)
                    await repository.restore(snapshot_id, target)
                    await self._lifecycle.apply_ownership(volume, target_path)
                except (RepositoryError, VolumePermissionError, OSError) as e:
                    logging.error(f"Restore of {snapshot_id} for {service} failed: {e}")
                    raise RestoreFailedError(service, snapshot_id, str(e), aside_path) from e

                resumed = await self._services.resume(paused)
                if len(resumed) < len(paused):
                    result.add_cause(Severity.WARNING, f"Service {service} did not start after restore")

        await self._event_bus.publish(
            RestoreCompletedEvent(
                service=service,
                snapshot_id=snapshot_id,
                target_path=target,
                aside_path=str(aside_path) if aside_path else None,
            )
        )
        result.details.update(
            service=service,
            snapshot_id=snapshot_id,
            target_path=target,
            aside_path=str(aside_path) if aside_path else None,
        )
        return result

    async def _safety_snapshot(
        self, repository: BackupRepository, service: str, target: str, result: OperationResult
    ) -> None:
        tags = TagSet.from_pairs(service=service, type="persistent", automated=True, reason="pre-restore").with_tags(
            MANAGED_TAG
        )
        try:
            snapshot = await repository.snapshot(target, tags)
        except RepositoryError as e:
            logging.warning(f"Pre-restore safety snapshot of {target} failed: {e}")
            result.add_cause(Severity.WARNING, f"Pre-restore safety snapshot failed: {e}")
            return
        result.details["safety_snapshot_id"] = snapshot.id

    # ------------------------------------------------------------------
    # list_snapshots
    # ------------------------------------------------------------------

    async def list_snapshots(
        self,
        managed_only: bool = True,
        limit: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> List[BackupSnapshot]:
        required = TagSet(tags)
        if managed_only:
            required = required.with_tags(MANAGED_TAG)

        token = await self.read_token()
        async with repository_session(self._repository, token) as repository:
            return await repository.list(
                tag_filter=required,
                max_results=limit if limit is not None else self._settings.default_snapshot_list_limit,
            )

    def restore_targets(self) -> Dict[str, str]:
        return dict(self._settings.restore_targets)
