"""
Network Mount Module

Supervision of the shared network mount the container data lives on.

Components:
- NetworkMountSupervisor: validate, monitor, recover and ensure_available
- MountStateMachine: the only place the mount state changes
- MountWatchdog: consecutive-failure counter that triggers recovery
- BaseMounter / LinuxMounter: platform mount, unmount and reachability calls
- PlatformFactory: platform detection and mounter construction
"""

from .base_mounter import BaseMounter
from .linux_mounter import LinuxMounter
from .mount_service import NetworkMountSupervisor
from .mount_state import MountStateMachine
from .platform_factory import PlatformFactory, UnsupportedPlatformError
from .watchdog import MountWatchdog

__all__ = [
    "NetworkMountSupervisor",
    "MountStateMachine",
    "MountWatchdog",
    "BaseMounter",
    "LinuxMounter",
    "PlatformFactory",
    "UnsupportedPlatformError",
]
