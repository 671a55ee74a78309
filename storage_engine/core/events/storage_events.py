from dataclasses import dataclass, field
from typing import List, Optional

from storage_engine.core.events.domain_event import DomainEvent
from storage_engine.models import Alert, BackupSnapshot, MountState


@dataclass(frozen=True, kw_only=True)
class MountStateChangedEvent(DomainEvent):
    """Event published on every network mount state transition."""
    mount_point: str
    old_state: MountState
    new_state: MountState
    reason: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class StorageAlertsRaisedEvent(DomainEvent):
    """Event published when a monitoring pass produced at least one alert."""
    source: str
    alerts: List[Alert] = field(default_factory=list)


@dataclass(frozen=True, kw_only=True)
class SnapshotCreatedEvent(DomainEvent):
    """Event published after the repository accepted a snapshot."""
    snapshot: BackupSnapshot


@dataclass(frozen=True, kw_only=True)
class RestoreCompletedEvent(DomainEvent):
    """Event published after a snapshot was restored onto its target."""
    service: str
    snapshot_id: str
    target_path: str
    aside_path: Optional[str] = None
