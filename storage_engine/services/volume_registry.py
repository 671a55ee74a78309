import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import StorageEngineError
from ..models import Volume, VolumeClass
from ..utils.file_operations import is_within


class DuplicateVolumeError(StorageEngineError):
    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Duplicate volume {field}: {value}")


class VolumeRegistry:
    """
    The authoritative set of volumes the engine may touch.

    Destructive operations check `owns_path` first; anything outside a
    registered volume is off limits.
    """

    def __init__(self, volumes: Iterable[Volume]):
        self._volumes: Dict[str, Volume] = {}
        paths = set()
        for volume in volumes:
            if volume.name in self._volumes:
                raise DuplicateVolumeError("name", volume.name)
            if volume.path in paths:
                raise DuplicateVolumeError("path", volume.path)
            self._volumes[volume.name] = volume
            paths.add(volume.path)

        logging.info(f"VolumeRegistry loaded {len(self._volumes)} volumes")

    def __len__(self) -> int:
        return len(self._volumes)

    def __contains__(self, name: str) -> bool:
        return name in self._volumes

    def get(self, name: str) -> Optional[Volume]:
        return self._volumes.get(name)

    def all(self) -> List[Volume]:
        return list(self._volumes.values())

    def by_class(self, volume_class: VolumeClass) -> List[Volume]:
        return [v for v in self._volumes.values() if v.volume_class == volume_class]

    def backup_eligible(self) -> List[Volume]:
        return [v for v in self._volumes.values() if v.backup_eligible]

    def volume_for_path(self, path: str) -> Optional[Volume]:
        """Innermost registered volume that contains path, compared per path component."""
        candidate = Path(path)
        owners = [v for v in self._volumes.values() if is_within(candidate, Path(v.path))]
        if not owners:
            return None
        return max(owners, key=lambda v: len(Path(v.path).parts))

    def owns_path(self, path: str) -> bool:
        return self.volume_for_path(path) is not None
