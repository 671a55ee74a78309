from .coordinator import BackupCoordinator
from .repository import BackupRepository, KopiaRepository, parse_manifest, repository_session

__all__ = [
    "BackupCoordinator",
    "BackupRepository",
    "KopiaRepository",
    "parse_manifest",
    "repository_session",
]
