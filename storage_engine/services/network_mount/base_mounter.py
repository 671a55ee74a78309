"""Abstract mounter - the OS operations the supervisor needs."""

from abc import ABC, abstractmethod

from ...core.commands import CommandResult


class BaseMounter(ABC):
    """Platform-specific mount operations for one fstab-defined mount point."""

    @abstractmethod
    async def is_mounted(self, mount_point: str) -> bool:
        """True when mount_point is an active mount in the OS mount table."""

    @abstractmethod
    async def mount(self, mount_point: str) -> CommandResult:
        """Mount mount_point using its fstab entry."""

    @abstractmethod
    async def unmount(self, mount_point: str, force: bool = False, lazy: bool = False) -> CommandResult:
        """Unmount mount_point; force and lazy map to umount -f / -l."""

    @abstractmethod
    async def ping(self, host: str) -> bool:
        """Bounded reachability probe of the remote host."""

    @abstractmethod
    def get_platform_name(self) -> str:
        """Get platform name for logging."""
