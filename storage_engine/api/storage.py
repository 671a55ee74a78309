from fastapi import APIRouter, Depends

from ..dependencies import get_storage_monitor
from ..models import OperationResult
from ..services.storage_monitor import StorageMonitor

router = APIRouter(prefix="/api/storage", tags=["storage"])


@router.get("/health", response_model=OperationResult)
async def get_storage_health(
    storage_monitor: StorageMonitor = Depends(get_storage_monitor),
) -> OperationResult:
    """
    Run a capacity and health sweep over all volumes and the network mount.

    The response severity is the worst alert: Ok, Warning or Critical.
    """
    return await storage_monitor.monitor()


@router.post("/cleanup", response_model=OperationResult)
async def run_cleanup(
    dry_run: bool = False,
    storage_monitor: StorageMonitor = Depends(get_storage_monitor),
) -> OperationResult:
    """Apply retention cleanup; with dry_run=true only report what would be deleted."""
    return await storage_monitor.cleanup(dry_run=dry_run)
