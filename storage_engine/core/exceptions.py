# storage_engine/core/exceptions.py
from pathlib import Path
from typing import Optional


class StorageEngineError(Exception):
    """Base exception for all storage engine failures."""
    pass


class VolumePermissionError(StorageEngineError, PermissionError):
    """Raised when ownership or mode of a volume cannot be set."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot set ownership on {path}: {reason}")


class PathConflictError(StorageEngineError):
    """Raised when something other than a directory occupies a volume path."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path {path} exists but is not a directory")


class MissingVolumeError(StorageEngineError):
    """Raised by verify when a volume directory does not exist."""
    def __init__(self, name: str, path: str):
        self.name = name
        self.path = path
        super().__init__(f"Volume '{name}' is missing: {path} does not exist")


class VolumeNotFound(StorageEngineError):
    """Raised when a volume path is missing during capacity sampling."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Volume path not found: {path}")


class UnregisteredPathError(StorageEngineError):
    """Raised when a destructive operation targets a path outside the registered volume set."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Refusing to operate on {path}: not inside a registered volume")


class MigrationVerificationError(StorageEngineError):
    """Raised when a migrated tree does not match its source in total size."""
    def __init__(self, source: str, destination: str, source_size: int, dest_size: int):
        self.source = source
        self.destination = destination
        self.source_size = source_size
        self.dest_size = dest_size
        super().__init__(
            f"Migration of {source} to {destination} failed verification: "
            f"source={source_size} bytes, destination={dest_size} bytes. Source left intact."
        )


class MigrationCopyError(StorageEngineError):
    """Raised when copying a tree fails partway; the partial destination is left for inspection."""
    def __init__(self, source: str, destination: str, reason: str):
        self.source = source
        self.destination = destination
        self.reason = reason
        super().__init__(
            f"Migration of {source} to {destination} failed during copy: {reason}. "
            f"Partial copy left at {destination}, source left intact."
        )


class MountUnavailableError(StorageEngineError):
    """Raised when a mount-dependent operation finds the network mount unavailable."""
    def __init__(self, mount_point: str, reason: str):
        self.mount_point = mount_point
        self.reason = reason
        super().__init__(f"Network mount {mount_point} unavailable: {reason}")


class MountValidationError(StorageEngineError):
    """Raised when validate() cannot bring the network mount into a usable state."""
    def __init__(self, mount_point: str, reason: str):
        self.mount_point = mount_point
        self.reason = reason
        super().__init__(f"Validation of {mount_point} failed: {reason}")


class InvalidTransitionError(StorageEngineError):
    """Raised when a mount state transition is not allowed."""
    def __init__(self, mount_point: str, from_state: str, to_state: str):
        self.mount_point = mount_point
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition for {mount_point}: "
            f"Cannot move from '{from_state}' to '{to_state}'."
        )


class RepositoryError(StorageEngineError):
    """Base exception for backup repository failures."""
    pass


class RepositoryAuthError(RepositoryError):
    """Raised when the repository token is absent or rejected. Never retried."""
    pass


class SnapshotError(RepositoryError):
    """Raised when the repository fails to create a snapshot."""
    def __init__(self, source_path: str, reason: str):
        self.source_path = source_path
        self.reason = reason
        super().__init__(f"Snapshot of {source_path} failed: {reason}")


class RestoreFailedError(RepositoryError):
    """
    Raised when restore fails after the existing target was renamed aside.

    The renamed-aside copy is left untouched for the operator.
    """
    def __init__(self, service: str, snapshot_id: str, reason: str, aside_path: Optional[Path] = None):
        self.service = service
        self.snapshot_id = snapshot_id
        self.reason = reason
        self.aside_path = aside_path
        message = f"Restore of snapshot {snapshot_id} for '{service}' failed: {reason}"
        if aside_path is not None:
            message += f" (previous data preserved at {aside_path})"
        super().__init__(message)


class UnknownServiceError(StorageEngineError):
    """Raised when a service has no configured restore target."""
    def __init__(self, service: str):
        self.service = service
        super().__init__(f"No restore target configured for service '{service}'")


class OperationInProgressError(StorageEngineError):
    """Raised when another operation already holds the resource lock."""
    def __init__(self, resource: str, operation: str, holder: Optional[str] = None):
        self.resource = resource
        self.operation = operation
        self.holder = holder
        held_by = f" by '{holder}'" if holder else ""
        super().__init__(f"Cannot run '{operation}': {resource} is locked{held_by}")
