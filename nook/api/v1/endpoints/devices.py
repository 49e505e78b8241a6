from fastapi import APIRouter, Depends, HTTPException

from nook.api.v1.deps import get_sync_coordinator, load_owned_family, to_http_exception
from nook.core.exceptions import NookError
from nook.core.logging import logger
from nook.core.security import Principal, require_parent
from nook.schemas.device import Device, DeviceEnroll, DeviceLock, DeviceReassign
from nook.schemas.sync import OperationResult
from nook.services.sync_coordinator import SyncCoordinator

router = APIRouter()

async def _load_owned_device(coordinator: SyncCoordinator, device_id: int, current_user: Principal) -> Device:
    device = await coordinator.ledger.get_device(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Device {device_id} not found")
    await load_owned_family(coordinator, device.family_id, current_user)
    return device

@router.get("/{device_id}", response_model=Device)
async def get_device(
    device_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    return await _load_owned_device(coordinator, device_id, current_user)

@router.put("/{device_id}/profile", response_model=Device)
async def reassign_device(
    device_id: int,
    reassign_data: DeviceReassign,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Point a device at another profile of its family, or at none.
    """
    await _load_owned_device(coordinator, device_id, current_user)
    try:
        return await coordinator.request_reassign_device(device_id, reassign_data.profile_id)
    except NookError as e:
        logger.error(f"Error reassigning device {device_id}: {e.message}")
        raise to_http_exception(e)

@router.post("/{device_id}/enroll", response_model=Device)
async def enroll_device(
    device_id: int,
    enroll_data: DeviceEnroll,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await _load_owned_device(coordinator, device_id, current_user)
    try:
        return await coordinator.enroll_device(
            device_id, enroll_data.simplemdm_device_id, enrollment_code=enroll_data.enrollment_code
        )
    except NookError as e:
        logger.error(f"Error enrolling device {device_id}: {e.message}")
        raise to_http_exception(e)

@router.delete("/{device_id}", response_model=OperationResult)
async def remove_device(
    device_id: int,
    unenroll: bool = False,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await _load_owned_device(coordinator, device_id, current_user)
    try:
        return await coordinator.remove_device(device_id, unenroll=unenroll)
    except NookError as e:
        raise to_http_exception(e)

@router.post("/{device_id}/lock", response_model=OperationResult)
async def lock_device(
    device_id: int,
    lock_data: DeviceLock,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await _load_owned_device(coordinator, device_id, current_user)
    logger.info(f"User {current_user.user_id} locking device {device_id}")
    try:
        return await coordinator.lock_device(device_id, lock_data.message)
    except NookError as e:
        logger.error(f"Error locking device {device_id}: {e.message}")
        raise to_http_exception(e)
