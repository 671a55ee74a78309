"""
Utilities package for the storage engine.

Pure path helpers and host configuration lookup used across services.
"""

from .file_operations import (
    build_rename_aside_path,
    format_mode,
    generate_conflict_free_path,
    is_within,
    iter_tree_files,
    total_tree_size,
)

__all__ = [
    "build_rename_aside_path",
    "format_mode",
    "generate_conflict_free_path",
    "is_within",
    "iter_tree_files",
    "total_tree_size",
]
