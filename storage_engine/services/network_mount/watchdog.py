"""
Mount Watchdog - turns repeated monitor failures into a bounded number of recoveries.

One tick = one monitor() call. After max_failures consecutive Critical ticks
the watchdog runs recover(), at most max_recovery_attempts times until the
mount is healthy again. A healthy tick resets both counters.
"""

import logging
from typing import List, Optional

from .mount_service import NetworkMountSupervisor
from ..service_supervisor import ServiceSupervisor
from ...core.exceptions import OperationInProgressError
from ...models import Alert, OperationResult, Severity


class MountWatchdog:
    def __init__(
        self,
        supervisor: NetworkMountSupervisor,
        service_supervisor: Optional[ServiceSupervisor] = None,
        max_failures: int = 3,
        max_recovery_attempts: int = 3,
        dependent_units: Optional[List[str]] = None,
    ):
        self._supervisor = supervisor
        self._service_supervisor = service_supervisor
        self._max_failures = max_failures
        self._max_recovery_attempts = max_recovery_attempts
        self._dependent_units = list(dependent_units or [])

        self.failure_count = 0
        self.recovery_attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.recovery_attempts >= self._max_recovery_attempts

    async def tick(self) -> OperationResult:
        alerts: List[Alert] = await self._supervisor.monitor()
        result = OperationResult.from_alerts(
            "mount.watchdog",
            alerts,
            state=self._supervisor.state.value,
        )

        if result.severity != Severity.CRITICAL:
            if self.failure_count or self.recovery_attempts:
                logging.info(f"Network mount {self._supervisor.mount_point} healthy again, resetting watchdog")
            self.failure_count = 0
            self.recovery_attempts = 0
            result.details.update(failure_count=0, recovery_attempts=0)
            return result

        self.failure_count += 1
        logging.warning(
            f"Network mount health check failed ({self.failure_count}/{self._max_failures}): "
            f"{'; '.join(result.causes)}"
        )

        if self.failure_count >= self._max_failures:
            await self._attempt_recovery(result)

        result.details.update(failure_count=self.failure_count, recovery_attempts=self.recovery_attempts)
        return result

    async def _attempt_recovery(self, result: OperationResult) -> None:
        if self.exhausted:
            logging.error(
                f"Max recovery attempts ({self._max_recovery_attempts}) reached for "
                f"{self._supervisor.mount_point}, manual intervention required"
            )
            result.causes.append("Max recovery attempts reached, manual intervention required")
            return

        self.recovery_attempts += 1
        logging.warning(
            f"Attempting recovery {self.recovery_attempts}/{self._max_recovery_attempts} "
            f"of {self._supervisor.mount_point}"
        )
        try:
            recovery = await self._supervisor.recover()
        except OperationInProgressError as e:
            logging.info(f"Recovery skipped: {e}")
            return

        result.causes.extend(recovery.causes)
        result.details["recovery"] = recovery.severity.value
        if not recovery.ok:
            return

        self.failure_count = 0
        if self._service_supervisor and self._dependent_units:
            restarted = await self._service_supervisor.restart_active(self._dependent_units)
            result.details["restarted_units"] = restarted
