"""
Shared route helpers: the coordinator dependency, family access checks and
the mapping from core errors to HTTP responses.
"""
from fastapi import HTTPException

from nook.core.exceptions import (
    ExternalServiceError,
    MasterProfileInUse,
    NookError,
    NotBootstrapped,
    NotFoundError,
    OrphanCleanupFailed,
    ProfileCreationFailed,
    SyncLockTimeout,
    ValidationError,
)
from nook.core.logging import logger
from nook.core.security import ROLE_ADMIN, Principal
from nook.schemas.family import Family
from nook.services.sync_coordinator import SyncCoordinator, sync_coordinator

SYNC_LOCK_RETRY_AFTER_SECONDS = 5

def get_sync_coordinator() -> SyncCoordinator:
    return sync_coordinator

def _external_status(error: ExternalServiceError) -> HTTPException:
    if error.retryable:
        headers = None
        if error.retry_after is not None:
            headers = {"Retry-After": str(int(error.retry_after))}
        return HTTPException(
            status_code=503,
            detail={"message": f"SimpleMDM is temporarily unavailable, try again: {error.message}", "code": error.code, "retryable": True},
            headers=headers,
        )
    return HTTPException(
        status_code=502,
        detail={"message": error.message, "code": error.code, "retryable": False},
    )

def to_http_exception(error: NookError) -> HTTPException:
    """Translate a core error into the response the client sees."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, (NotBootstrapped, MasterProfileInUse)):
        return HTTPException(status_code=409, detail=error.message)
    if isinstance(error, ExternalServiceError):
        return _external_status(error)
    if isinstance(error, ProfileCreationFailed):
        http_error = _external_status(error.cause)
        http_error.detail["message"] = error.message
        return http_error
    if isinstance(error, OrphanCleanupFailed):
        return HTTPException(
            status_code=502,
            detail={
                "message": error.original.message,
                "code": error.original.code,
                "retryable": error.retryable,
                "warning": f"Profile {error.profile_ref} may remain in SimpleMDM: {error.cleanup_error.message}",
            },
        )
    if isinstance(error, SyncLockTimeout):
        return HTTPException(
            status_code=503,
            detail={"message": error.message, "code": "lock_timeout", "retryable": True},
            headers={"Retry-After": str(SYNC_LOCK_RETRY_AFTER_SECONDS)},
        )
    logger.error(f"Unmapped core error {type(error).__name__}: {error.message}")
    return HTTPException(status_code=500, detail=error.message)

def ensure_family_access(family: Family, current_user: Principal) -> None:
    if current_user.role == ROLE_ADMIN or family.parent_id == current_user.user_id:
        return
    logger.warning(f"User {current_user.user_id} denied access to family {family.id}")
    raise HTTPException(status_code=403, detail="Not a member of this family")

async def load_owned_family(coordinator: SyncCoordinator, family_id: int, current_user: Principal) -> Family:
    family = await coordinator.ledger.get_family(family_id)
    if family is None:
        raise HTTPException(status_code=404, detail=f"Family {family_id} not found")
    ensure_family_access(family, current_user)
    return family
