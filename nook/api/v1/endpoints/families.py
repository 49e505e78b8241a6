from fastapi import APIRouter, Depends
from typing import List

from nook.api.v1.deps import get_sync_coordinator, load_owned_family, to_http_exception
from nook.core.exceptions import NookError
from nook.core.logging import logger
from nook.core.security import ROLE_ADMIN, Principal, require_parent
from nook.schemas.device import Device, DeviceCreate
from nook.schemas.enrollment import EnrollmentCode, EnrollmentValidation
from nook.schemas.family import Family, FamilyCreate, FamilyUpdate
from nook.schemas.profile import FamilyProfile, ProfileAssignRequest
from nook.schemas.sync import OperationResult
from nook.services.sync_coordinator import SyncCoordinator

router = APIRouter()

@router.get("", response_model=List[Family])
async def list_families(
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Families owned by the current parent. Administrators see every family.
    """
    if current_user.role == ROLE_ADMIN:
        return await coordinator.ledger.list_families()
    return await coordinator.ledger.list_families_for_parent(current_user.user_id)

@router.post("", response_model=Family, status_code=201)
async def create_family(
    family_data: FamilyCreate,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Create a family together with its SimpleMDM device group.
    """
    logger.info(f"User {current_user.user_id} creating family '{family_data.name}'")
    try:
        return await coordinator.create_family(family_data.name, current_user.user_id)
    except NookError as e:
        logger.error(f"Error creating family '{family_data.name}': {e.message}")
        raise to_http_exception(e)

@router.get("/{family_id}", response_model=Family)
async def get_family(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    return await load_owned_family(coordinator, family_id, current_user)

@router.put("/{family_id}", response_model=Family)
async def rename_family(
    family_id: int,
    family_data: FamilyUpdate,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    try:
        return await coordinator.rename_family(family_id, family_data.name)
    except NookError as e:
        logger.error(f"Error renaming family {family_id}: {e.message}")
        raise to_http_exception(e)

@router.delete("/{family_id}", response_model=OperationResult)
async def delete_family(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Delete a family, its profiles and its devices. SimpleMDM cleanup failures
    are reported as warnings; the family is removed regardless.
    """
    await load_owned_family(coordinator, family_id, current_user)
    try:
        return await coordinator.delete_family(family_id)
    except NookError as e:
        raise to_http_exception(e)

@router.get("/{family_id}/profiles", response_model=List[FamilyProfile])
async def list_family_profiles(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    return await coordinator.ledger.list_family_profiles(family_id)

@router.post("/{family_id}/profiles", response_model=FamilyProfile, status_code=201)
async def assign_profile(
    family_id: int,
    profile_data: ProfileAssignRequest,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Assign a predefined or custom profile to the family's device group.
    """
    await load_owned_family(coordinator, family_id, current_user)
    logger.info(f"User {current_user.user_id} assigning '{profile_data.type}' to family {family_id}")
    try:
        return await coordinator.request_assign_profile(
            family_id,
            profile_data.type,
            name=profile_data.name,
            config=profile_data.config,
            description=profile_data.description,
        )
    except NookError as e:
        logger.error(f"Error assigning '{profile_data.type}' to family {family_id}: {e.message}")
        raise to_http_exception(e)

@router.get("/{family_id}/devices", response_model=List[Device])
async def list_devices(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    return await coordinator.ledger.list_devices(family_id)

@router.post("/{family_id}/devices", response_model=Device, status_code=201)
async def register_device(
    family_id: int,
    device_data: DeviceCreate,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    try:
        return await coordinator.register_device(family_id, device_data.name, device_data.simplemdm_device_id)
    except NookError as e:
        raise to_http_exception(e)

@router.post("/{family_id}/enroll", response_model=EnrollmentCode, status_code=201)
async def request_enrollment(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Issue a six digit enrollment code. A child's device redeems it for the
    SimpleMDM enrollment url of the family's device group.
    """
    await load_owned_family(coordinator, family_id, current_user)
    logger.info(f"User {current_user.user_id} requesting enrollment code for family {family_id}")
    try:
        return await coordinator.request_enrollment(family_id)
    except NookError as e:
        logger.error(f"Error issuing enrollment code for family {family_id}: {e.message}")
        raise to_http_exception(e)

@router.get("/{family_id}/enroll", response_model=List[EnrollmentCode])
async def list_enrollment_codes(
    family_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    await load_owned_family(coordinator, family_id, current_user)
    return await coordinator.ledger.list_enrollment_codes(family_id)

@router.get("/enroll/validate/{code}", response_model=EnrollmentValidation)
async def validate_enrollment_code(
    code: str,
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Unauthenticated: the device being enrolled has no parent session.
    """
    try:
        return await coordinator.validate_enrollment_code(code)
    except NookError as e:
        raise to_http_exception(e)
