"""Linux mounter - mount/umount/ping via CommandRunner."""

import asyncio
import logging
import math
import os

from .base_mounter import BaseMounter
from ...core.commands import CommandResult, CommandRunner


class LinuxMounter(BaseMounter):
    def __init__(
        self,
        runner: CommandRunner,
        mount_timeout_seconds: float = 30.0,
        ping_timeout_seconds: float = 5.0,
        mount_table_timeout_seconds: float = 5.0,
    ):
        self._runner = runner
        self._mount_timeout_seconds = mount_timeout_seconds
        self._ping_timeout_seconds = ping_timeout_seconds
        self._mount_table_timeout_seconds = mount_table_timeout_seconds

    async def is_mounted(self, mount_point: str) -> bool:
        # A stale NFS handle can hang stat(); treat a hang as not mounted
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(os.path.ismount, mount_point),
                timeout=self._mount_table_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logging.warning(f"Mount table check timed out for {mount_point}")
            return False

    async def mount(self, mount_point: str) -> CommandResult:
        logging.info(f"Mounting {mount_point}")
        result = await self._runner.run(["mount", mount_point], timeout_seconds=self._mount_timeout_seconds)
        if result.ok:
            logging.info(f"Successfully mounted {mount_point}")
        else:
            logging.error(f"Mount failed for {mount_point}: {result.error_message}")
        return result

    async def unmount(self, mount_point: str, force: bool = False, lazy: bool = False) -> CommandResult:
        argv = ["umount"]
        if force:
            argv.append("-f")
        if lazy:
            argv.append("-l")
        argv.append(mount_point)
        return await self._runner.run(argv, timeout_seconds=self._mount_timeout_seconds)

    async def ping(self, host: str) -> bool:
        wait_seconds = max(1, math.ceil(self._ping_timeout_seconds))
        result = await self._runner.run(
            ["ping", "-c", "1", "-W", str(wait_seconds), host],
            timeout_seconds=self._ping_timeout_seconds + 1.0,
        )
        if not result.ok:
            logging.debug(f"Host {host} not reachable: {result.error_message}")
        return result.ok

    def get_platform_name(self) -> str:
        return "Linux"
