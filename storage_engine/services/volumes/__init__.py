from .lifecycle_manager import VolumeLifecycleManager, resolve_owner
from .sync_strategies import (
    MediaSyncStrategy,
    RsyncStrategy,
    SkipStrategy,
    SyncOutcome,
    VolumeSyncStrategy,
    build_sync_strategies,
)

__all__ = [
    "VolumeLifecycleManager",
    "resolve_owner",
    "VolumeSyncStrategy",
    "RsyncStrategy",
    "SkipStrategy",
    "MediaSyncStrategy",
    "SyncOutcome",
    "build_sync_strategies",
]
