from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..dependencies import get_backup_coordinator
from ..models import OperationResult
from ..services.backup import BackupCoordinator

router = APIRouter(prefix="/api/backup", tags=["backup"])


@router.post("/coordinate", response_model=OperationResult)
async def coordinate_backup(
    coordinator: BackupCoordinator = Depends(get_backup_coordinator),
) -> OperationResult:
    return await coordinator.coordinate()


@router.get("/snapshots")
async def list_snapshots(
    managed_only: bool = True,
    limit: Optional[int] = Query(default=None, ge=1),
    tag: Optional[List[str]] = Query(default=None),
    coordinator: BackupCoordinator = Depends(get_backup_coordinator),
) -> List[Dict[str, Any]]:
    """Snapshots filtered by `key:value` tags, newest first."""
    try:
        snapshots = await coordinator.list_snapshots(managed_only=managed_only, limit=limit, tags=tag or ())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return [snapshot.to_dict() for snapshot in snapshots]


@router.post("/restore/{service}/{snapshot_id}", response_model=OperationResult)
async def restore_snapshot(
    service: str,
    snapshot_id: str,
    coordinator: BackupCoordinator = Depends(get_backup_coordinator),
) -> OperationResult:
    return await coordinator.restore(service, snapshot_id)
