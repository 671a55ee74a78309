from pathlib import Path
from typing import Dict, List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AlertThreshold, Volume, VolumeClass
from .utils.host_config import get_hostname_settings_file


def _default_volumes() -> List[Volume]:
    return [
        Volume(
            name="homebridge",
            path="/var/lib/homebridge",
            mode=0o750,
            owner="root:root",
            volume_class=VolumeClass.PERSISTENT,
            backup_eligible=True,
        ),
        Volume(
            name="pihole",
            path="/var/lib/pihole",
            mode=0o755,
            owner="root:root",
            volume_class=VolumeClass.PERSISTENT,
            backup_eligible=True,
        ),
        Volume(
            name="portainer",
            path="/var/lib/portainer",
            mode=0o750,
            owner="root:root",
            volume_class=VolumeClass.PERSISTENT,
            backup_eligible=True,
        ),
        Volume(
            name="docker-data",
            path="/mnt/docker-data/containers",
            mode=0o755,
            owner="root:root",
            volume_class=VolumeClass.PERSISTENT,
            backup_eligible=True,
        ),
        Volume(
            name="dagger-cache",
            path="/var/lib/dagger/cache",
            mode=0o755,
            owner="root:root",
            volume_class=VolumeClass.CACHE,
            backup_eligible=False,
        ),
        Volume(
            name="dagger-secrets",
            path="/run/dagger/secrets",
            mode=0o700,
            owner="root:root",
            volume_class=VolumeClass.RUNTIME,
            backup_eligible=False,
        ),
        Volume(
            name="media",
            path="/fun/media",
            mode=0o775,
            owner="root:root",
            volume_class=VolumeClass.MEDIA,
            backup_eligible=False,
        ),
    ]


class Settings(BaseSettings):
    # Volumes
    volumes: List[Volume] = Field(default_factory=_default_volumes)
    relabel_command: str = "restorecon"  # SELinux relabel, skipped if not installed

    # Network mount
    mount_point: str = "/mnt/docker-data"
    remote_host: str = "10.4.0.50"
    fstab_path: str = "/etc/fstab"
    mount_command_timeout_seconds: float = 30.0
    ping_timeout_seconds: float = 5.0  # Bounded reachability probe
    write_probe_timeout_seconds: float = 10.0
    write_probe_marker: str = ".storage-engine-health-check"
    recover_max_attempts: int = 10
    recover_retry_delay_seconds: float = 5.0  # Fixed delay, not exponential

    # Mount watchdog
    watchdog_max_failures: int = 3
    watchdog_max_recovery_attempts: int = 3
    restart_services_after_recovery: bool = True
    nfs_dependent_services: List[str] = Field(
        default_factory=lambda: [
            "dagger-coordinator.service",
            "dagger-automation-homebridge.service",
            "dagger-nixarr-orchestrator.service",
        ]
    )

    # Thresholds
    capacity_warning_percent: float = 85.0
    capacity_critical_percent: float = 95.0
    mount_capacity_warning_percent: float = 80.0
    mount_capacity_critical_percent: float = 90.0
    write_latency_threshold_seconds: float = 5.0
    disk_usage_timeout_seconds: float = 10.0

    # Retention (days) per volume class
    cache_retention_days: int = 7
    persistent_log_retention_days: int = 30

    # Backup repository (Kopia)
    kopia_binary: str = "kopia"
    repository_token_file: str = "/run/secrets/kopia-repository-token"
    repository_connect_timeout_seconds: float = 10.0
    snapshot_timeout_seconds: float = 3600.0
    restore_timeout_seconds: float = 3600.0
    list_timeout_seconds: float = 60.0
    default_snapshot_list_limit: int = 50
    service_state_dirs: Dict[str, str] = Field(
        default_factory=lambda: {
            "nixarr": "/var/lib/nixarr",
            "unpackerr": "/var/lib/unpackerr",
        }
    )
    restore_targets: Dict[str, str] = Field(
        default_factory=lambda: {
            "homebridge": "/var/lib/homebridge",
            "pihole": "/var/lib/pihole",
            "portainer": "/var/lib/portainer",
        }
    )

    # Collaborators
    systemctl_binary: str = "systemctl"
    service_unit_pattern: str = "dagger-*{service}*.service"
    service_command_timeout_seconds: float = 30.0
    container_runtime_binary: str = "podman"
    container_command_timeout_seconds: float = 120.0
    rsync_binary: str = "rsync"
    sync_timeout_seconds: float = 3600.0

    # Concurrency
    lock_mode: Literal["block", "fail_fast"] = "fail_fast"
    lock_timeout_seconds: float = 60.0

    # Periodic schedule
    watchdog_interval_seconds: int = 30
    storage_check_interval_seconds: int = 300
    backup_interval_seconds: int = 86400
    cleanup_interval_seconds: int = 86400

    # Logging konfiguration
    log_level: str = "INFO"
    log_file_path: str = "logs/storage_engine.log"
    log_retention_days: int = 7

    # HTTP status surface
    http_host: str = "127.0.0.1"
    http_port: int = 8780

    model_config = SettingsConfigDict(
        env_file=get_hostname_settings_file(),
        env_prefix="STORAGE_ENGINE_",
        frozen=True,
    )

    @property
    def log_directory(self) -> Path:
        """Returnerer log directory som Path objekt"""
        return Path(self.log_file_path).parent

    @property
    def volume_capacity_threshold(self) -> AlertThreshold:
        return AlertThreshold(
            metric="capacity_percent",
            warn_at=self.capacity_warning_percent,
            critical_at=self.capacity_critical_percent,
        )

    @property
    def mount_capacity_threshold(self) -> AlertThreshold:
        return AlertThreshold(
            metric="capacity_percent",
            warn_at=self.mount_capacity_warning_percent,
            critical_at=self.mount_capacity_critical_percent,
        )

    @property
    def retention_days(self) -> Dict[VolumeClass, int]:
        """Retention window per volume class; classes without an entry are never cleaned."""
        return {
            VolumeClass.CACHE: self.cache_retention_days,
            VolumeClass.PERSISTENT: self.persistent_log_retention_days,
        }

    @property
    def config_file_info(self) -> dict:
        """Return information about which configuration file is being used."""
        from .utils.host_config import get_hostname, list_all_settings_files

        return {
            "hostname": get_hostname(),
            "active_config_file": get_hostname_settings_file(),
            "all_available_configs": list_all_settings_files(),
        }
