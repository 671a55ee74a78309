from .domain_event import DomainEvent
from .event_bus import DomainEventBus
from .storage_events import (
    MountStateChangedEvent,
    RestoreCompletedEvent,
    SnapshotCreatedEvent,
    StorageAlertsRaisedEvent,
)

__all__ = [
    "DomainEvent",
    "DomainEventBus",
    "MountStateChangedEvent",
    "RestoreCompletedEvent",
    "SnapshotCreatedEvent",
    "StorageAlertsRaisedEvent",
]
