"""
Storage Monitor Module

Components:
- StorageMonitor: capacity sweep over registered volumes, merged with the
  network mount health check, plus retention cleanup
"""

from .storage_monitor import StorageMonitor

__all__ = ["StorageMonitor"]
