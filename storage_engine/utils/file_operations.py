import os
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional


def generate_conflict_free_path(dest_path: Path) -> Path:
    if not dest_path.exists():
        return dest_path

    counter = 1
    while True:
        new_path = dest_path.with_name(f"{dest_path.name}_{counter}")
        if not new_path.exists():
            return new_path

        counter += 1

        # Safety check - avoid infinite loop
        if counter > 9999:
            raise RuntimeError(
                f"Could not resolve name conflict after 9999 attempts: {dest_path}"
            )


def build_rename_aside_path(path: Path, now: Optional[datetime] = None) -> Path:
    """Timestamped sibling path used to move existing data out of the way."""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return generate_conflict_free_path(path.with_name(f"{path.name}.pre-restore-{stamp}"))


def is_within(path: Path, base: Path) -> bool:
    """Component-wise containment: /srv/cache-old is not within /srv/cache."""
    try:
        path.relative_to(base)
        return True
    except ValueError:
        return False


def iter_tree_files(root: Path) -> Iterator[Path]:
    """Every regular file below root; symlinks are never followed."""
    for dirpath, _dirnames, filenames in os.walk(root, followlinks=False):
        for filename in filenames:
            candidate = Path(dirpath) / filename
            if candidate.is_file() and not candidate.is_symlink():
                yield candidate


def total_tree_size(root: Path) -> int:
    """Sum of regular file sizes below root, symlinks excluded."""
    return sum(f.stat().st_size for f in iter_tree_files(root))


def format_mode(mode: int) -> str:
    return oct(mode & 0o7777)
