"""Platform detection and mounter creation."""

import logging
import platform

from .base_mounter import BaseMounter
from ...core.commands import CommandRunner


class UnsupportedPlatformError(Exception):
    """Raised when platform is not supported for network mount supervision."""
    pass


class PlatformFactory:
    def detect_platform(self) -> str:
        """Detect current platform. Returns: linux, macos or windows."""
        system = platform.system().lower()
        if system == "linux":
            return "linux"
        if system == "darwin":
            return "macos"
        if system == "windows":
            return "windows"
        raise UnsupportedPlatformError(f"Platform {system} not supported for network mounting")

    def create_mounter(
        self,
        runner: CommandRunner,
        mount_timeout_seconds: float = 30.0,
        ping_timeout_seconds: float = 5.0,
    ) -> BaseMounter:
        platform_name = self.detect_platform()
        if platform_name != "linux":
            # fstab-driven NFS supervision only exists on the Linux hosts
            raise UnsupportedPlatformError(f"No mounter implementation for platform: {platform_name}")

        from .linux_mounter import LinuxMounter

        mounter = LinuxMounter(
            runner,
            mount_timeout_seconds=mount_timeout_seconds,
            ping_timeout_seconds=ping_timeout_seconds,
        )
        logging.info(f"Detected platform: {platform_name}, using {mounter.get_platform_name()} mounter")
        return mounter
