import logging
from typing import List, Optional

from ..container_runtime import ContainerRuntime
from ..network_mount.mount_service import NetworkMountSupervisor
from ..storage_checker import StorageAccessError, StorageChecker
from ..volume_registry import VolumeRegistry
from ..volumes.lifecycle_manager import VolumeLifecycleManager
from ...config import Settings
from ...core.events.event_bus import DomainEventBus
from ...core.events.storage_events import StorageAlertsRaisedEvent
from ...core.exceptions import StorageEngineError, VolumeNotFound
from ...models import Alert, AlertCode, OperationResult, Severity, Volume


class StorageMonitor:
    """
    Capacity and health sweep across every registered volume plus the network mount.

    Critical and Warning are separate outcomes: the overall severity is the
    worst alert, never a collapsed pass/fail.
    """

    def __init__(
        self,
        settings: Settings,
        registry: VolumeRegistry,
        storage_checker: StorageChecker,
        lifecycle_manager: VolumeLifecycleManager,
        event_bus: DomainEventBus,
        mount_supervisor: Optional[NetworkMountSupervisor] = None,
        container_runtime: Optional[ContainerRuntime] = None,
    ):
        self._settings = settings
        self._registry = registry
        self._checker = storage_checker
        self._lifecycle = lifecycle_manager
        self._event_bus = event_bus
        self._mount_supervisor = mount_supervisor
        self._container_runtime = container_runtime
        self._last_result: Optional[OperationResult] = None

    @property
    def last_result(self) -> Optional[OperationResult]:
        return self._last_result

    async def monitor(self) -> OperationResult:
        alerts: List[Alert] = []
        samples = {}

        for volume in self._registry.all():
            alert, used_percent = await self._check_volume(volume)
            if alert:
                alerts.append(alert)
            if used_percent is not None:
                samples[volume.name] = round(used_percent, 1)

        if self._mount_supervisor:
            alerts.extend(await self._mount_supervisor.monitor())

        result = OperationResult.from_alerts("storage.monitor", alerts, used_percent=samples)
        if self._mount_supervisor:
            result.details["mount_state"] = self._mount_supervisor.state.value

        if alerts:
            await self._event_bus.publish(StorageAlertsRaisedEvent(source="storage_monitor", alerts=alerts))

        logging.info(f"Storage check finished: {result.severity.value} ({len(alerts)} alerts)")
        self._last_result = result
        return result

    async def _check_volume(self, volume: Volume):
        try:
            sample = await self._checker.sample_capacity(volume.path)
        except VolumeNotFound:
            logging.warning(f"Volume {volume.name} not found at {volume.path}")
            return (
                Alert(
                    code=AlertCode.VOLUME_NOT_FOUND,
                    severity=Severity.CRITICAL,
                    subject=volume.name,
                    message=f"Volume {volume.name} not found at {volume.path}",
                ),
                None,
            )
        except StorageAccessError as e:
            logging.warning(f"Capacity check failed for {volume.name}: {e}")
            return (
                Alert(
                    code=AlertCode.CAPACITY,
                    severity=Severity.WARNING,
                    subject=volume.name,
                    message=f"Capacity of {volume.name} could not be sampled: {e}",
                ),
                None,
            )

        used = sample.used_percent
        severity = self._settings.volume_capacity_threshold.classify(used)
        if severity == Severity.OK:
            return None, used

        return (
            Alert(
                code=AlertCode.CAPACITY,
                severity=severity,
                subject=volume.name,
                message=f"Volume {volume.name} is {used:.1f}% full ({volume.path})",
                value=used,
            ),
            used,
        )

    async def cleanup(self, dry_run: bool = False) -> OperationResult:
        """Retention cleanup on every volume with a retention window, then build-cache prune."""
        result = OperationResult(operation="storage.cleanup")
        per_volume = {}

        for volume in self._registry.all():
            if volume.volume_class not in self._settings.retention_days:
                continue
            try:
                volume_result = await self._lifecycle.cleanup(volume, dry_run=dry_run)
            except StorageEngineError as e:
                logging.error(f"Cleanup of {volume.name} failed: {e}")
                result.add_cause(Severity.CRITICAL, f"Cleanup of {volume.name} failed: {e}")
                continue

            per_volume[volume.name] = volume_result.details.get("deleted_count", 0)
            for cause in volume_result.causes:
                result.add_cause(volume_result.severity, cause)

        if self._container_runtime and not dry_run:
            prune = await self._container_runtime.prune_build_cache()
            result.details["build_cache_pruned"] = prune.ok

        result.details.update(dry_run=dry_run, deleted=per_volume)
        return result
