import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from ...core.commands import CommandRunner
from ...models import Volume, VolumeClass


@dataclass(frozen=True)
class SyncOutcome:
    volume: str
    synced: bool
    skipped: bool = False
    error: Optional[str] = None


class VolumeSyncStrategy(ABC):
    @abstractmethod
    async def sync(self, volume: Volume, remote_host: str) -> SyncOutcome:
        pass


class RsyncStrategy(VolumeSyncStrategy):
    """Incremental replication of persistent state; partial transfers resume."""

    def __init__(self, runner: CommandRunner, rsync_binary: str = "rsync", timeout_seconds: float = 3600.0):
        self._runner = runner
        self._rsync = rsync_binary
        self._timeout_seconds = timeout_seconds

    async def sync(self, volume: Volume, remote_host: str) -> SyncOutcome:
        # Trailing slashes copy the directory contents, not the directory itself
        argv = [self._rsync, "-a", "--partial", f"{volume.path}/", f"{remote_host}:{volume.path}/"]
        result = await self._runner.run(argv, timeout_seconds=self._timeout_seconds)
        if not result.ok:
            logging.error(f"rsync of {volume.name} to {remote_host} failed: {result.error_message}")
            return SyncOutcome(volume=volume.name, synced=False, error=result.error_message)

        logging.info(f"Synced {volume.name} to {remote_host} in {result.duration_seconds:.1f}s")
        return SyncOutcome(volume=volume.name, synced=True)


class SkipStrategy(VolumeSyncStrategy):
    """Cache is rebuildable and runtime data is host-local."""

    async def sync(self, volume: Volume, remote_host: str) -> SyncOutcome:
        logging.debug(f"Skipping sync of {volume.volume_class.value} volume {volume.name}")
        return SyncOutcome(volume=volume.name, synced=False, skipped=True)


class MediaSyncStrategy(VolumeSyncStrategy):
    async def sync(self, volume: Volume, remote_host: str) -> SyncOutcome:
        # TODO: choose a bulk transfer tool for multi-terabyte media volumes
        raise NotImplementedError(f"Media sync is not implemented (volume {volume.name})")


def build_sync_strategies(
    runner: CommandRunner, rsync_binary: str = "rsync", timeout_seconds: float = 3600.0
) -> Dict[VolumeClass, VolumeSyncStrategy]:
    skip = SkipStrategy()
    return {
        VolumeClass.PERSISTENT: RsyncStrategy(runner, rsync_binary, timeout_seconds),
        VolumeClass.CACHE: skip,
        VolumeClass.RUNTIME: skip,
        VolumeClass.MEDIA: MediaSyncStrategy(),
    }
