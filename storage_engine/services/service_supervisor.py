"""
Service Supervisor - stop, start and restart the systemd units that use a volume.

Every call is best-effort: a failing systemctl is logged and reported as False,
never raised, so a half-stopped service never blocks the storage operation.
"""

import logging
from typing import Iterable, List

from ..core.commands import CommandRunner


class ServiceSupervisor:
    def __init__(
        self,
        runner: CommandRunner,
        systemctl_binary: str = "systemctl",
        unit_pattern: str = "dagger-*{service}*.service",
        timeout_seconds: float = 30.0,
    ):
        self._runner = runner
        self._systemctl = systemctl_binary
        self._unit_pattern = unit_pattern
        self._timeout_seconds = timeout_seconds

    def unit_for(self, service: str) -> str:
        """systemd unit (glob) for a logical service name."""
        return self._unit_pattern.format(service=service)

    async def stop(self, service: str) -> bool:
        return await self._systemctl_call("stop", self.unit_for(service))

    async def start(self, service: str) -> bool:
        return await self._systemctl_call("start", self.unit_for(service))

    async def is_active(self, unit: str) -> bool:
        result = await self._runner.run(
            [self._systemctl, "is-active", "--quiet", unit], timeout_seconds=self._timeout_seconds
        )
        return result.ok

    async def restart_active(self, units: Iterable[str]) -> List[str]:
        """
        Restart the units that are currently active.

        Returns:
            Units that were restarted successfully.
        """
        restarted = []
        for unit in units:
            if not await self.is_active(unit):
                logging.debug(f"Skipping restart of inactive unit {unit}")
                continue
            if await self._systemctl_call("restart", unit):
                restarted.append(unit)
        return restarted

    async def pause(self, services: Iterable[str]) -> List[str]:
        """Stop services before their data is replaced. Returns those that stopped."""
        paused = []
        for service in services:
            if await self.stop(service):
                paused.append(service)
        return paused

    async def resume(self, services: Iterable[str]) -> List[str]:
        resumed = []
        for service in services:
            if await self.start(service):
                resumed.append(service)
        return resumed

    async def _systemctl_call(self, action: str, unit: str) -> bool:
        result = await self._runner.run([self._systemctl, action, unit], timeout_seconds=self._timeout_seconds)
        if result.ok:
            logging.info(f"systemctl {action} {unit}")
            return True
        logging.warning(f"systemctl {action} {unit} failed: {result.error_message}")
        return False
