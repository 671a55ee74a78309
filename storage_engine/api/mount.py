from fastapi import APIRouter, Depends

from ..dependencies import get_mount_supervisor
from ..models import NetworkMount, OperationResult
from ..services.network_mount import NetworkMountSupervisor

router = APIRouter(prefix="/api/mount", tags=["mount"])


@router.get("", response_model=NetworkMount)
async def get_mount(
    supervisor: NetworkMountSupervisor = Depends(get_mount_supervisor),
) -> NetworkMount:
    return supervisor.get_mount()


@router.post("/validate", response_model=OperationResult)
async def validate_mount(
    supervisor: NetworkMountSupervisor = Depends(get_mount_supervisor),
) -> OperationResult:
    return await supervisor.validate()


@router.post("/recover", response_model=OperationResult)
async def recover_mount(
    supervisor: NetworkMountSupervisor = Depends(get_mount_supervisor),
) -> OperationResult:
    """Unmount, wait for the host, remount and re-probe. Failure is a Critical result, not an error."""
    return await supervisor.recover()
