from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROTECTED_ROOTS = frozenset(
    {
        "/",
        "/bin",
        "/boot",
        "/dev",
        "/etc",
        "/home",
        "/lib",
        "/lib64",
        "/mnt",
        "/nix",
        "/opt",
        "/proc",
        "/root",
        "/run",
        "/sbin",
        "/srv",
        "/sys",
        "/tmp",
        "/usr",
        "/var",
        "/var/lib",
    }
)


class VolumeClass(str, Enum):
    """Durability class of a volume; drives retention, sync and backup policy."""

    PERSISTENT = "persistent"  # Service state, backed up and replicated
    CACHE = "cache"  # Rebuildable, aged out after 7 days
    RUNTIME = "runtime"  # Secrets and sockets, lives in tmpfs
    MEDIA = "media"  # Bulk media on the network mount


class Severity(str, Enum):
    """Severity tier of an alert or operation result, ordered Ok < Warning < Critical < Fatal."""

    OK = "Ok"
    WARNING = "Warning"
    CRITICAL = "Critical"
    FATAL = "Fatal"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def worst(cls, severities: Iterable["Severity"]) -> "Severity":
        return max(severities, key=lambda s: s.rank, default=cls.OK)


_SEVERITY_RANK = {
    Severity.OK: 0,
    Severity.WARNING: 1,
    Severity.CRITICAL: 2,
    Severity.FATAL: 3,
}


class MountState(str, Enum):
    """
    Tilstand for det delte netværksmount.

    Unmounted -> Mounted | Unreachable
    Mounted -> Degraded (write test fejler)
    Degraded -> Mounted | Unreachable
    Unreachable -> Mounted (efter recover)
    Enhver -> Recovering -> Mounted | Unreachable
    """

    UNMOUNTED = "Unmounted"
    MOUNTED = "Mounted"
    DEGRADED = "Degraded"
    RECOVERING = "Recovering"
    UNREACHABLE = "Unreachable"


class AlertCode(str, Enum):
    CAPACITY = "Capacity"
    VOLUME_NOT_FOUND = "VolumeNotFound"
    NOT_MOUNTED = "NotMounted"
    HOST_UNREACHABLE = "HostUnreachable"
    WRITE_LATENCY = "WriteLatency"
    WRITE_FAILED = "WriteFailed"
    OWNER_DRIFT = "OwnerDrift"
    MODE_DRIFT = "ModeDrift"


class Volume(BaseModel):
    """
    Immutable definition of a service volume.

    Created on first ensure, changed only through VolumeLifecycleManager and
    removed only by explicit cleanup.
    """

    name: str = Field(..., min_length=1, description="Unique volume name")
    path: str = Field(..., description="Absolute directory path")
    mode: int = Field(default=0o755, ge=0, le=0o7777, description="Permission bits")
    owner: str = Field(default="root:root", description="user:group, names or numeric ids")
    volume_class: VolumeClass = Field(default=VolumeClass.PERSISTENT)
    backup_eligible: bool = Field(default=False)
    size_limit: Optional[int] = Field(default=None, ge=0, description="Size limit in bytes")

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "name": "homebridge",
                "path": "/var/lib/homebridge",
                "mode": 0o750,
                "owner": "root:root",
                "volume_class": "persistent",
                "backup_eligible": True,
            }
        },
    )

    @field_validator("path")
    @classmethod
    def _path_is_safe(cls, value: str) -> str:
        path = PurePosixPath(value)
        if not path.is_absolute():
            raise ValueError(f"Volume path must be absolute: {value}")
        if ".." in path.parts:
            raise ValueError(f"Volume path must not contain '..': {value}")
        normalized = str(path)
        if normalized in PROTECTED_ROOTS:
            raise ValueError(f"Volume path resolves to protected system root: {value}")
        return normalized

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        # "0750" from env files is octal, plain ints are taken as-is
        if isinstance(value, str):
            return int(value, 8)
        return value

    @field_validator("owner")
    @classmethod
    def _owner_has_group(cls, value: str) -> str:
        user, sep, group = value.partition(":")
        if not user or not sep or not group:
            raise ValueError(f"Owner must be 'user:group', got: {value}")
        return value

    @property
    def user(self) -> str:
        return self.owner.split(":", 1)[0]

    @property
    def group(self) -> str:
        return self.owner.split(":", 1)[1]


class AlertThreshold(BaseModel):
    metric: str
    warn_at: float
    critical_at: float

    model_config = ConfigDict(frozen=True)

    def classify(self, value: float) -> Severity:
        if value > self.critical_at:
            return Severity.CRITICAL
        if value > self.warn_at:
            return Severity.WARNING
        return Severity.OK


class Alert(BaseModel):
    code: AlertCode
    severity: Severity
    subject: str = Field(..., description="Volume name or mount point")
    message: str
    value: Optional[float] = None

    model_config = ConfigDict(frozen=True)


class CapacitySample(BaseModel):
    path: str
    total_bytes: int = Field(..., ge=0)
    used_bytes: int = Field(..., ge=0)
    free_bytes: int = Field(..., ge=0)

    @property
    def used_percent(self) -> float:
        if self.total_bytes == 0:
            return 0.0
        return self.used_bytes / self.total_bytes * 100.0


class OperationResult(BaseModel):
    """
    Structured outcome of an engine operation, suitable for direct display.

    `causes` is the human readable list; `alerts` keeps the structured form.
    """

    operation: str
    severity: Severity = Severity.OK
    causes: List[str] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)
    finished_at: datetime = Field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.severity == Severity.OK

    @classmethod
    def from_alerts(
        cls, operation: str, alerts: List[Alert], **details: Any
    ) -> "OperationResult":
        ordered = sorted(alerts, key=lambda a: a.severity.rank, reverse=True)
        return cls(
            operation=operation,
            severity=Severity.worst(a.severity for a in ordered),
            causes=[a.message for a in ordered],
            alerts=ordered,
            details=details,
        )

    @classmethod
    def from_error(cls, operation: str, error: Exception) -> "OperationResult":
        return cls(
            operation=operation,
            severity=Severity.FATAL,
            causes=[f"{type(error).__name__}: {error}"],
        )

    def add_cause(self, severity: Severity, message: str) -> None:
        self.causes.append(message)
        if severity.rank > self.severity.rank:
            self.severity = severity


class NetworkMount(BaseModel):
    mount_point: str
    remote_host: str
    state: MountState = MountState.UNMOUNTED
    last_transition_at: Optional[datetime] = None
    last_error: Optional[str] = None


class TagSet(frozenset):
    """
    Immutable set of `key:value` snapshot tags.

    Membership and filtering are set operations, never substring matches.
    """

    def __new__(cls, tags: Iterable[str] = ()):
        normalized = []
        for tag in tags:
            key, sep, value = str(tag).partition(":")
            if not key or not sep:
                raise ValueError(f"Tag must be 'key:value', got: {tag!r}")
            normalized.append(f"{key}:{value}")
        return super().__new__(cls, normalized)

    @classmethod
    def from_pairs(cls, **pairs: Any) -> "TagSet":
        return cls(f"{k}:{_tag_value(v)}" for k, v in pairs.items())

    def value(self, key: str) -> Optional[str]:
        prefix = f"{key}:"
        for tag in self:
            if tag.startswith(prefix):
                return tag[len(prefix):]
        return None

    def matches(self, required: Iterable[str]) -> bool:
        return TagSet(required) <= self

    def with_tags(self, *tags: str) -> "TagSet":
        return TagSet(set(self) | set(tags))

    def as_kopia_args(self) -> List[str]:
        return [f"--tags={tag}" for tag in sorted(self)]


def _tag_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


MANAGED_TAG = "managed:engine"


@dataclass(frozen=True)
class BackupSnapshot:
    """Immutable point-in-time copy of a path in the backup repository."""

    id: str
    source_path: str
    tags: TagSet = field(default_factory=TagSet)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def service(self) -> Optional[str]:
        return self.tags.value("service")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_path": self.source_path,
            "tags": sorted(self.tags),
            "created_at": self.created_at.isoformat(),
        }
