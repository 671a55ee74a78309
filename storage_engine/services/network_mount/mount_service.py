"""Network Mount Supervisor - validates, monitors and recovers the shared network mount."""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .base_mounter import BaseMounter
from .mount_state import MountStateMachine
from ..storage_checker import StorageAccessError, StorageChecker
from ...config import Settings
from ...core.events.event_bus import DomainEventBus
from ...core.exceptions import (
    MountUnavailableError,
    MountValidationError,
    OperationInProgressError,
    StorageEngineError,
    VolumeNotFound,
)
from ...core.locks import ResourceLocks
from ...core.retry import retry_fixed
from ...models import Alert, AlertCode, MountState, NetworkMount, OperationResult, Severity
from ...utils.file_operations import is_within


class NetworkMountSupervisor:
    """
    Owns the state of one externally provisioned network mount.

    The mount is optional infrastructure: when its mount point directory does
    not exist the deployment has no network mount and every check succeeds.
    """

    def __init__(
        self,
        settings: Settings,
        mounter: BaseMounter,
        storage_checker: StorageChecker,
        event_bus: DomainEventBus,
        locks: ResourceLocks,
    ):
        self._settings = settings
        self._mounter = mounter
        self._checker = storage_checker
        self._locks = locks
        self._mount = NetworkMount(mount_point=settings.mount_point, remote_host=settings.remote_host)
        self._state_machine = MountStateMachine(self._mount, event_bus)
        self._resource = f"mount:{settings.mount_point}"

    @property
    def mount_point(self) -> str:
        return self._mount.mount_point

    @property
    def remote_host(self) -> str:
        return self._mount.remote_host

    @property
    def state(self) -> MountState:
        return self._mount.state

    def get_mount(self) -> NetworkMount:
        return self._mount.model_copy()

    def is_configured(self) -> bool:
        return Path(self.mount_point).exists()

    def covers(self, path: str) -> bool:
        """True when path lives on the network mount."""
        return is_within(Path(path), Path(self.mount_point))

    async def probe_mount_table(self) -> MountState:
        """Seed the state from the OS mount table at process start."""
        if self.is_configured() and await self._mounter.is_mounted(self.mount_point):
            await self._state_machine.transition(MountState.MOUNTED, "mounted at startup")
        logging.info(f"Network mount {self.mount_point} initial state: {self.state.value}")
        return self.state

    # ------------------------------------------------------------------
    # validate
    # ------------------------------------------------------------------

    async def validate(self) -> OperationResult:
        """
        Make sure the mount is active and writable.

        Raises:
            MountValidationError: host unreachable, mount failed or write probe failed.
            OperationInProgressError: another mount operation holds the lock.
        """
        async with self._locks.hold(self._resource, "validate"):
            return await self._validate_unlocked()

    async def _validate_unlocked(self) -> OperationResult:
        result = OperationResult(operation="mount.validate")

        if not self.is_configured():
            logging.info(f"Network mount directory {self.mount_point} not found, skipping validation")
            result.causes.append(f"Network mount {self.mount_point} not configured")
            result.details["configured"] = False
            return result

        result.details["configured"] = True
        if not self._has_fstab_entry():
            logging.warning(f"Network mount {self.mount_point} not found in {self._settings.fstab_path}")
            result.add_cause(
                Severity.WARNING, f"{self.mount_point} has no entry in {self._settings.fstab_path}"
            )

        if not await self._mounter.is_mounted(self.mount_point):
            logging.info(f"Network mount {self.mount_point} not active, attempting to mount")

            if not await self._mounter.ping(self.remote_host):
                reason = f"host {self.remote_host} unreachable"
                await self._state_machine.transition_via_degraded(MountState.UNREACHABLE, reason)
                raise MountValidationError(self.mount_point, reason)

            mount_result = await self._mounter.mount(self.mount_point)
            if not mount_result.ok:
                reason = f"mount failed: {mount_result.error_message}"
                await self._state_machine.transition_via_degraded(MountState.UNREACHABLE, reason)
                raise MountValidationError(self.mount_point, reason)

        probe = await self._checker.probe_write(self.mount_point, self._settings.write_probe_marker)
        if not probe.ok:
            reason = f"write probe failed: {probe.error}"
            await self._state_machine.transition_via_mounted(MountState.DEGRADED, reason)
            raise MountValidationError(self.mount_point, reason)

        await self._state_machine.transition(MountState.MOUNTED)
        result.details["write_latency_seconds"] = round(probe.latency_seconds, 3)
        logging.info(f"Network mount {self.mount_point} validated ({probe.latency_seconds:.2f}s write probe)")
        return result

    def _has_fstab_entry(self) -> bool:
        try:
            with open(self._settings.fstab_path, encoding="utf-8") as fstab:
                for line in fstab:
                    fields = line.split()
                    if len(fields) >= 2 and not fields[0].startswith("#") and fields[1] == self.mount_point:
                        return True
        except OSError:
            return False
        return False

    # ------------------------------------------------------------------
    # ensure_available
    # ------------------------------------------------------------------

    async def ensure_available(self) -> None:
        """
        Gate for mount-dependent volume operations.

        Raises:
            MountUnavailableError: mount is not configured, cannot be validated
                or is held by another operation for longer than the lock timeout.
        """
        if await self._is_usable():
            return

        if not self.is_configured():
            raise MountUnavailableError(self.mount_point, "mount point not configured")

        try:
            # Dependent volume operations wait for an in-flight validate/recover
            async with self._locks.hold(self._resource, "ensure_available", mode="block"):
                await self._validate_unlocked()
        except MountValidationError as e:
            raise MountUnavailableError(self.mount_point, e.reason) from e
        except OperationInProgressError as e:
            raise MountUnavailableError(self.mount_point, str(e)) from e

    async def _is_usable(self) -> bool:
        """Mounted in our state, in the OS mount table, and writable right now."""
        if self.state != MountState.MOUNTED or not await self._mounter.is_mounted(self.mount_point):
            return False
        probe = await self._checker.probe_write(self.mount_point, self._settings.write_probe_marker)
        return probe.ok

    # ------------------------------------------------------------------
    # monitor
    # ------------------------------------------------------------------

    async def monitor(self) -> List[Alert]:
        """
        Non-fatal health check; callers decide what to do with the alerts.

        Covers mount status, host reachability, write probe and its latency,
        and capacity of the mounted filesystem.
        """
        if not self.is_configured():
            return []

        async with self._locks.hold(f"{self._resource}:monitor", "monitor"):
            alerts: List[Alert] = []
            mp = self.mount_point

            mounted = await self._mounter.is_mounted(mp)
            if not mounted:
                alerts.append(self._alert(AlertCode.NOT_MOUNTED, Severity.CRITICAL, f"Network mount {mp} is not mounted"))

            if not await self._mounter.ping(self.remote_host):
                alerts.append(
                    self._alert(
                        AlertCode.HOST_UNREACHABLE,
                        Severity.CRITICAL,
                        f"Network mount server {self.remote_host} is not reachable",
                    )
                )

            write_failed = False
            if mounted:
                write_alert, write_failed = await self._check_write()
                if write_alert:
                    alerts.append(write_alert)
                capacity_alert = await self._check_capacity()
                if capacity_alert:
                    alerts.append(capacity_alert)

            await self._degrade_if_broken(mounted, write_failed)
            return alerts

    async def _check_write(self) -> Tuple[Optional[Alert], bool]:
        probe = await self._checker.probe_write(self.mount_point, self._settings.write_probe_marker)
        if not probe.ok:
            return (
                self._alert(
                    AlertCode.WRITE_FAILED,
                    Severity.CRITICAL,
                    f"Cannot write to network mount {self.mount_point}: {probe.error}",
                ),
                True,
            )
        if probe.latency_seconds > self._settings.write_latency_threshold_seconds:
            return (
                self._alert(
                    AlertCode.WRITE_LATENCY,
                    Severity.WARNING,
                    f"Write latency on {self.mount_point} is {probe.latency_seconds:.1f}s "
                    f"(threshold {self._settings.write_latency_threshold_seconds:.1f}s)",
                    value=probe.latency_seconds,
                ),
                False,
            )
        return None, False

    async def _check_capacity(self) -> Optional[Alert]:
        try:
            sample = await self._checker.sample_capacity(self.mount_point)
        except (StorageAccessError, VolumeNotFound) as e:
            logging.warning(f"Capacity check failed for {self.mount_point}: {e}")
            return None

        severity = self._settings.mount_capacity_threshold.classify(sample.used_percent)
        if severity == Severity.OK:
            return None
        return self._alert(
            AlertCode.CAPACITY,
            severity,
            f"Network mount {self.mount_point} is {sample.used_percent:.1f}% full",
            value=sample.used_percent,
        )

    async def _degrade_if_broken(self, mounted: bool, write_failed: bool) -> None:
        if self.state != MountState.MOUNTED or (mounted and not write_failed):
            return
        if self._locks.is_locked(self._resource):
            return  # validate/recover in flight owns the state
        reason = "not mounted" if not mounted else "write test failed"
        await self._state_machine.transition(MountState.DEGRADED, reason)

    def _alert(self, code: AlertCode, severity: Severity, message: str, value: Optional[float] = None) -> Alert:
        return Alert(code=code, severity=severity, subject=self.mount_point, message=message, value=value)

    # ------------------------------------------------------------------
    # recover
    # ------------------------------------------------------------------

    async def recover(self) -> OperationResult:
        """
        Unmount, wait for the host, remount and re-probe.

        Host polling is the only retried step: recover_max_attempts attempts
        recover_retry_delay_seconds apart. Any failing step leaves the mount
        Unreachable and returns a Critical result.
        """
        async with self._locks.hold(self._resource, "recover"):
            result = OperationResult(operation="mount.recover")

            if not self.is_configured():
                result.add_cause(Severity.WARNING, f"Network mount {self.mount_point} not configured, nothing to recover")
                return result

            logging.info(f"Attempting recovery of network mount {self.mount_point}")
            await self._state_machine.transition(MountState.RECOVERING, "recovery started")

            try:
                failure = await self._run_recovery(result)
            except StorageEngineError as e:
                failure = str(e)
            except OSError as e:
                failure = f"unexpected OS error: {e}"

            if failure:
                logging.error(f"Recovery of {self.mount_point} failed: {failure}")
                await self._state_machine.transition(MountState.UNREACHABLE, failure)
                result.add_cause(Severity.CRITICAL, f"Recovery of {self.mount_point} failed: {failure}")
                return result

            await self._state_machine.transition(MountState.MOUNTED, "recovered")
            logging.info(f"Network mount {self.mount_point} recovered and writable")
            result.causes.append(f"Network mount {self.mount_point} recovered")
            return result

    async def _run_recovery(self, result: OperationResult) -> Optional[str]:
        mp = self.mount_point

        if await self._mounter.is_mounted(mp) and not await self._unmount_stale():
            return "could not unmount stale mount"

        outcome = await retry_fixed(
            lambda: self._mounter.ping(self.remote_host),
            max_attempts=self._settings.recover_max_attempts,
            delay_seconds=self._settings.recover_retry_delay_seconds,
            description=f"Waiting for {self.remote_host}",
        )
        result.details["reachability_attempts"] = outcome.attempts
        if not outcome.succeeded:
            return f"host {self.remote_host} unreachable after {outcome.attempts} attempts"

        mount_result = await self._mounter.mount(mp)
        if not mount_result.ok:
            return f"mount failed: {mount_result.error_message}"

        probe = await self._checker.probe_write(mp, self._settings.write_probe_marker)
        if not probe.ok:
            return f"mount recovered but not writable: {probe.error}"

        await self._checker.cleanup_stale_markers(mp, self._settings.write_probe_marker)
        result.details["write_latency_seconds"] = round(probe.latency_seconds, 3)
        return None

    async def _unmount_stale(self) -> bool:
        """Graceful unmount, falling back to forced and then lazy unmount."""
        for force, lazy in ((False, False), (True, False), (False, True)):
            unmount_result = await self._mounter.unmount(self.mount_point, force=force, lazy=lazy)
            if unmount_result.ok:
                logging.info(f"Unmounted {self.mount_point} (force={force}, lazy={lazy})")
                return True
            logging.warning(f"Unmount of {self.mount_point} failed (force={force}, lazy={lazy}): {unmount_result.error_message}")
        return False
