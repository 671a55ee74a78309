"""
Composition root.

build_engine() wires every service from one Settings object. The FastAPI app
keeps the resulting StorageEngine on app.state; the get_* functions below are
the route dependencies that hand its parts to the endpoints.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .config import Settings
from .core.commands import CommandRunner
from .core.events.event_bus import DomainEventBus
from .core.locks import ResourceLocks
from .services.backup import BackupCoordinator, BackupRepository, KopiaRepository
from .services.container_runtime import ContainerRuntime
from .services.network_mount import BaseMounter, MountWatchdog, NetworkMountSupervisor, PlatformFactory
from .services.notifications import AlertNotifier
from .services.scheduler import EngineScheduler
from .services.service_supervisor import ServiceSupervisor
from .services.storage_checker import StorageChecker
from .services.storage_monitor import StorageMonitor
from .services.volume_registry import VolumeRegistry
from .services.volumes import VolumeLifecycleManager, build_sync_strategies


@dataclass
class StorageEngine:
    settings: Settings
    event_bus: DomainEventBus
    locks: ResourceLocks
    registry: VolumeRegistry
    mount_supervisor: NetworkMountSupervisor
    watchdog: MountWatchdog
    lifecycle: VolumeLifecycleManager
    backup: BackupCoordinator
    monitor: StorageMonitor
    services: ServiceSupervisor
    container_runtime: ContainerRuntime
    notifier: AlertNotifier

    def build_scheduler(self) -> EngineScheduler:
        settings = self.settings
        scheduler = EngineScheduler(startup=self.startup)
        scheduler.add("mount-watchdog", self.watchdog.tick, settings.watchdog_interval_seconds)
        scheduler.add("storage-monitor", self.monitor.monitor, settings.storage_check_interval_seconds)
        scheduler.add("backup", self.backup.coordinate, settings.backup_interval_seconds, run_immediately=False)
        scheduler.add("cleanup", self.monitor.cleanup, settings.cleanup_interval_seconds, run_immediately=False)
        return scheduler

    async def startup(self) -> None:
        await self.notifier.start()
        await self.mount_supervisor.probe_mount_table()
        await self.mount_supervisor.validate()


def build_engine(
    settings: Settings,
    runner: Optional[CommandRunner] = None,
    mounter: Optional[BaseMounter] = None,
    repository: Optional[BackupRepository] = None,
) -> StorageEngine:
    """Wire the engine; runner, mounter and repository can be swapped for fakes."""
    runner = runner or CommandRunner(default_timeout_seconds=settings.mount_command_timeout_seconds)
    event_bus = DomainEventBus()
    locks = ResourceLocks(mode=settings.lock_mode, timeout_seconds=settings.lock_timeout_seconds)
    checker = StorageChecker(
        probe_timeout_seconds=settings.write_probe_timeout_seconds,
        disk_usage_timeout_seconds=settings.disk_usage_timeout_seconds,
        access_timeout_seconds=settings.ping_timeout_seconds,
    )
    registry = VolumeRegistry(settings.volumes)

    mounter = mounter or PlatformFactory().create_mounter(
        runner,
        mount_timeout_seconds=settings.mount_command_timeout_seconds,
        ping_timeout_seconds=settings.ping_timeout_seconds,
    )
    mount_supervisor = NetworkMountSupervisor(settings, mounter, checker, event_bus, locks)

    services = ServiceSupervisor(
        runner,
        systemctl_binary=settings.systemctl_binary,
        unit_pattern=settings.service_unit_pattern,
        timeout_seconds=settings.service_command_timeout_seconds,
    )
    watchdog = MountWatchdog(
        mount_supervisor,
        service_supervisor=services if settings.restart_services_after_recovery else None,
        max_failures=settings.watchdog_max_failures,
        max_recovery_attempts=settings.watchdog_max_recovery_attempts,
        dependent_units=settings.nfs_dependent_services,
    )

    lifecycle = VolumeLifecycleManager(
        settings,
        registry,
        checker,
        locks,
        runner,
        build_sync_strategies(runner, settings.rsync_binary, settings.sync_timeout_seconds),
        mount_supervisor=mount_supervisor,
    )

    repository = repository or KopiaRepository(
        runner,
        binary=settings.kopia_binary,
        connect_timeout_seconds=settings.repository_connect_timeout_seconds,
        snapshot_timeout_seconds=settings.snapshot_timeout_seconds,
        restore_timeout_seconds=settings.restore_timeout_seconds,
        list_timeout_seconds=settings.list_timeout_seconds,
    )
    backup = BackupCoordinator(
        settings, repository, registry, lifecycle, services, event_bus, locks, mount_supervisor=mount_supervisor
    )

    container_runtime = ContainerRuntime(
        runner,
        binary=settings.container_runtime_binary,
        timeout_seconds=settings.container_command_timeout_seconds,
    )
    monitor = StorageMonitor(
        settings,
        registry,
        checker,
        lifecycle,
        event_bus,
        mount_supervisor=mount_supervisor,
        container_runtime=container_runtime,
    )

    return StorageEngine(
        settings=settings,
        event_bus=event_bus,
        locks=locks,
        registry=registry,
        mount_supervisor=mount_supervisor,
        watchdog=watchdog,
        lifecycle=lifecycle,
        backup=backup,
        monitor=monitor,
        services=services,
        container_runtime=container_runtime,
        notifier=AlertNotifier(event_bus),
    )


def get_engine(request: Request) -> StorageEngine:
    return request.app.state.engine


def get_storage_monitor(request: Request) -> StorageMonitor:
    return get_engine(request).monitor


def get_mount_supervisor(request: Request) -> NetworkMountSupervisor:
    return get_engine(request).mount_supervisor


def get_backup_coordinator(request: Request) -> BackupCoordinator:
    return get_engine(request).backup
