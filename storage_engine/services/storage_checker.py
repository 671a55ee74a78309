import asyncio
import logging
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from uuid import uuid4

import aiofiles
import aiofiles.os

from ..core.exceptions import VolumeNotFound
from ..models import CapacitySample


class StorageAccessError(Exception):
    pass


@dataclass(frozen=True)
class WriteProbeResult:
    ok: bool
    latency_seconds: float
    error: Optional[str] = None


class StorageChecker:
    """Filesystem probes shared by the mount supervisor, lifecycle manager and monitor."""

    def __init__(
        self,
        probe_timeout_seconds: float = 10.0,
        disk_usage_timeout_seconds: float = 10.0,
        access_timeout_seconds: float = 5.0,
    ):
        self._probe_timeout_seconds = probe_timeout_seconds
        self._disk_usage_timeout_seconds = disk_usage_timeout_seconds
        self._access_timeout_seconds = access_timeout_seconds

    async def path_exists(self, path: str) -> bool:
        """Bounded existence check; a hung network path counts as missing."""
        try:
            return await asyncio.wait_for(
                aiofiles.os.path.exists(path), timeout=self._access_timeout_seconds
            )
        except asyncio.TimeoutError:
            logging.warning(f"Existence check timed out for {path}")
            return False

    async def sample_capacity(self, path: str) -> CapacitySample:
        """
        Disk usage of the filesystem holding path.

        Raises:
            VolumeNotFound: path does not exist.
            StorageAccessError: statvfs failed or timed out.
        """
        if not await self.path_exists(path):
            raise VolumeNotFound(path)

        try:
            total_bytes, used_bytes, free_bytes = await asyncio.wait_for(
                asyncio.to_thread(shutil.disk_usage, path),
                timeout=self._disk_usage_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logging.error(f"Disk usage check timed out for {path}")
            raise StorageAccessError(f"Disk usage check timed out for {path}")
        except FileNotFoundError:
            raise VolumeNotFound(path)
        except OSError as e:
            logging.error(f"Cannot get disk usage for {path}: {e}")
            raise StorageAccessError(f"Disk usage check failed: {e}")

        sample = CapacitySample(
            path=path, total_bytes=total_bytes, used_bytes=used_bytes, free_bytes=free_bytes
        )
        logging.debug(f"Disk usage for {path}: {sample.used_percent:.1f}% used")
        return sample

    async def probe_write(self, directory: str, marker_name: str) -> WriteProbeResult:
        """Create and delete a marker file in directory within the probe timeout."""
        marker_path = os.path.join(directory, f"{marker_name}-{uuid4().hex}")
        started = time.monotonic()
        try:
            await asyncio.wait_for(
                self._write_and_remove(marker_path), timeout=self._probe_timeout_seconds
            )
        except asyncio.TimeoutError:
            latency = time.monotonic() - started
            logging.warning(f"Write probe timed out after {latency:.1f}s in {directory}")
            await self._cleanup_marker(marker_path)
            return WriteProbeResult(
                ok=False,
                latency_seconds=latency,
                error=f"write probe timed out after {self._probe_timeout_seconds}s",
            )
        except OSError as e:
            logging.debug(f"Write probe failed in {directory}: {e}")
            await self._cleanup_marker(marker_path)
            return WriteProbeResult(ok=False, latency_seconds=time.monotonic() - started, error=str(e))

        latency = time.monotonic() - started
        logging.debug(f"Write probe in {directory} took {latency:.3f}s")
        return WriteProbeResult(ok=True, latency_seconds=latency)

    async def _write_and_remove(self, marker_path: str) -> None:
        async with aiofiles.open(marker_path, "w") as f:
            await f.write("storage_engine_write_probe")
        await aiofiles.os.remove(marker_path)

    async def _cleanup_marker(self, marker_path: str) -> None:
        try:
            if await aiofiles.os.path.exists(marker_path):
                await aiofiles.os.remove(marker_path)
        except OSError as e:
            logging.warning(f"Could not clean up probe marker {marker_path}: {e}")

    async def cleanup_stale_markers(self, directory: str, marker_name: str) -> int:
        """
        Remove probe markers left behind by a crashed or timed-out probe.

        Returns:
            Number of markers removed.
        """
        cleaned_count = 0
        if not await aiofiles.os.path.isdir(directory):
            return 0

        for entry in Path(directory).iterdir():
            if entry.is_file() and entry.name.startswith(marker_name):
                try:
                    await aiofiles.os.remove(entry)
                    cleaned_count += 1
                except OSError as e:
                    logging.warning(f"Could not clean up stale marker {entry}: {e}")

        if cleaned_count > 0:
            logging.info(f"Cleaned up {cleaned_count} stale probe markers from {directory}")
        return cleaned_count
