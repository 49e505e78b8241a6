from fastapi import APIRouter, Depends, HTTPException

from nook.api.v1.deps import get_sync_coordinator, load_owned_family, to_http_exception
from nook.core.exceptions import NookError
from nook.core.logging import logger
from nook.core.security import Principal, require_parent
from nook.schemas.profile import FamilyProfile, ProfileType, ProfileUpdateRequest
from nook.schemas.sync import OperationResult
from nook.services.profile_generators import default_profile_description, default_profile_name
from nook.services.sync_coordinator import SyncCoordinator

router = APIRouter()

@router.get("/templates/available")
async def available_templates(
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Profile types a parent can assign. Predefined types are only available
    once their master profile has been set up.
    """
    bootstrapped = {m.type for m in await coordinator.ledger.list_master_profiles()}
    return [
        {
            "type": profile_type.value,
            "name": default_profile_name(profile_type),
            "description": default_profile_description(profile_type),
            "available": profile_type is ProfileType.CUSTOM or profile_type in bootstrapped,
        }
        for profile_type in ProfileType
    ]

async def _load_owned_profile(coordinator: SyncCoordinator, profile_id: int, current_user: Principal) -> FamilyProfile:
    profile = await coordinator.ledger.get_family_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile {profile_id} not found")
    await load_owned_family(coordinator, profile.family_id, current_user)
    return profile

@router.get("/{profile_id}", response_model=FamilyProfile)
async def get_profile(
    profile_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    return await _load_owned_profile(coordinator, profile_id, current_user)

@router.put("/{profile_id}", response_model=FamilyProfile)
async def update_profile(
    profile_id: int,
    profile_data: ProfileUpdateRequest,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Rename a profile, or change a custom profile's restrictions.
    """
    await _load_owned_profile(coordinator, profile_id, current_user)
    try:
        return await coordinator.request_update_profile(
            profile_id,
            name=profile_data.name,
            config=profile_data.config,
            description=profile_data.description,
        )
    except NookError as e:
        logger.error(f"Error updating profile {profile_id}: {e.message}")
        raise to_http_exception(e)

@router.delete("/{profile_id}", response_model=OperationResult)
async def unassign_profile(
    profile_id: int,
    current_user: Principal = Depends(require_parent),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Remove a profile from its family. Always succeeds locally; check
    `external_cleanup_pending` for SimpleMDM leftovers.
    """
    await _load_owned_profile(coordinator, profile_id, current_user)
    try:
        return await coordinator.request_unassign_profile(profile_id)
    except NookError as e:
        raise to_http_exception(e)
