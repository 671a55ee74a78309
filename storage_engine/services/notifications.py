import logging

from ..core.events.event_bus import DomainEventBus
from ..core.events.storage_events import (
    MountStateChangedEvent,
    RestoreCompletedEvent,
    SnapshotCreatedEvent,
    StorageAlertsRaisedEvent,
)
from ..models import MountState, Severity

_LOG_LEVEL = {
    Severity.OK: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}


class AlertNotifier:
    """Turns engine events into log lines at a level matching their severity."""

    def __init__(self, event_bus: DomainEventBus):
        self._event_bus = event_bus

    async def start(self) -> None:
        await self._event_bus.subscribe(MountStateChangedEvent, self.on_mount_state_changed)
        await self._event_bus.subscribe(StorageAlertsRaisedEvent, self.on_alerts_raised)
        await self._event_bus.subscribe(SnapshotCreatedEvent, self.on_snapshot_created)
        await self._event_bus.subscribe(RestoreCompletedEvent, self.on_restore_completed)

    async def stop(self) -> None:
        await self._event_bus.unsubscribe(MountStateChangedEvent, self.on_mount_state_changed)
        await self._event_bus.unsubscribe(StorageAlertsRaisedEvent, self.on_alerts_raised)
        await self._event_bus.unsubscribe(SnapshotCreatedEvent, self.on_snapshot_created)
        await self._event_bus.unsubscribe(RestoreCompletedEvent, self.on_restore_completed)

    async def on_mount_state_changed(self, event: MountStateChangedEvent) -> None:
        level = logging.INFO if event.new_state == MountState.MOUNTED else logging.WARNING
        if event.new_state == MountState.UNREACHABLE:
            level = logging.ERROR
        suffix = f": {event.reason}" if event.reason else ""
        logging.log(
            level,
            f"Network mount {event.mount_point} {event.old_state.value} -> {event.new_state.value}{suffix}",
        )

    async def on_alerts_raised(self, event: StorageAlertsRaisedEvent) -> None:
        for alert in event.alerts:
            logging.log(_LOG_LEVEL[alert.severity], f"[{alert.code.value}] {alert.message}")

    async def on_snapshot_created(self, event: SnapshotCreatedEvent) -> None:
        snapshot = event.snapshot
        logging.info(f"Snapshot {snapshot.id} of {snapshot.source_path} ({snapshot.service or 'unknown service'})")

    async def on_restore_completed(self, event: RestoreCompletedEvent) -> None:
        message = f"Restored {event.service} from snapshot {event.snapshot_id} into {event.target_path}"
        if event.aside_path:
            message += f", previous data kept at {event.aside_path}"
        logging.warning(message)
