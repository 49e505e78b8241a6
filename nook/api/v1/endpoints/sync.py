"""
Consistency endpoints: per-family verify and repair for parents, bulk sync and
master profile administration for administrators.
"""
from fastapi import APIRouter, Depends
from typing import List

from nook.api.v1.deps import get_sync_coordinator, load_owned_family, to_http_exception
from nook.core.exceptions import NookError
from nook.core.logging import logger
from nook.core.security import Principal, require_admin, require_parent
from nook.schemas.profile import MasterProfile
from nook.schemas.sync import BootstrapEntry, BulkReport, OperationResult, RepairReport, SyncReport
from nook.services.master_profile_bootstrap import MasterProfileBootstrap
from nook.services.sync_coordinator import SyncCoordinator

router = APIRouter()

def get_master_profile_bootstrap(
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
) -> MasterProfileBootstrap:
    return MasterProfileBootstrap(coordinator.ledger, coordinator.mdm, render=coordinator.render)

@router.get("/verify/{family_id}", response_model=SyncReport)
async def verify_family(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    try:
        return await coordinator.request_verify(family_id)
    except NookError as e:
        logger.error(f"Error verifying family {family_id}: {e.message}")
        raise to_http_exception(e)

@router.post("/repair/{family_id}", response_model=RepairReport)
async def repair_family(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    logger.info(f"User {current_user.user_id} repairing family {family_id}")
    try:
        return await coordinator.request_repair(family_id)
    except NookError as e:
        logger.error(f"Error repairing family {family_id}: {e.message}")
        raise to_http_exception(e)

@router.post("/bulk", response_model=BulkReport)
async def bulk_sync(
    current_user: Principal = Depends(require_admin),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    logger.info(f"Administrator {current_user.user_id} started a bulk sync")
    try:
        return await coordinator.request_bulk_sync()
    except NookError as e:
        logger.error(f"Bulk sync aborted: {e.message}")
        raise to_http_exception(e)

@router.get("/master-profiles", response_model=List[MasterProfile])
async def list_master_profiles(
    current_user: Principal = Depends(require_admin),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    return await coordinator.ledger.list_master_profiles()

@router.post("/master-profiles/bootstrap", response_model=List[BootstrapEntry])
async def bootstrap_master_profiles(
    current_user: Principal = Depends(require_admin),
    bootstrap: MasterProfileBootstrap = Depends(get_master_profile_bootstrap),
):
    return await bootstrap.bootstrap()

@router.delete("/master-profiles/{profile_type}", response_model=OperationResult)
async def delete_master_profile(
    profile_type: str,
    current_user: Principal = Depends(require_admin),
    bootstrap: MasterProfileBootstrap = Depends(get_master_profile_bootstrap),
):
    """
    Remove a master profile. Refused with 409 while any family still uses it.
    """
    logger.warning(f"Administrator {current_user.user_id} deleting master profile '{profile_type}'")
    try:
        return await bootstrap.delete_master_profile(profile_type)
    except NookError as e:
        raise to_http_exception(e)
