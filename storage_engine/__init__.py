"""
Storage health and backup orchestration engine.

Keeps a fixed set of service volumes healthy, supervises the shared network
mount, coordinates tagged Kopia snapshots and raises capacity alerts.
"""

__version__ = "0.1.0"
