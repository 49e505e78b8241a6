from typing import Dict, List

from nook.core.exceptions import ExternalServiceError, MasterProfileInUse, NotFoundError
from nook.core.logging import logger
from nook.schemas.profile import PREDEFINED_PROFILE_TYPES, ProfileType, parse_profile_type
from nook.schemas.sync import BootstrapEntry, OperationResult
from nook.services.assignment_ledger import AssignmentLedger
from nook.services.profile_generators import render_profile
from nook.services.simplemdm_service import SimpleMDMService

# Master profiles are rendered once for every family to share
MASTER_FAMILY_NAME = "Global"

MASTER_PROFILE_DEFINITIONS: Dict[ProfileType, Dict[str, str]] = {
    ProfileType.FIRST_PHONE: {
        "name": "First Phone (Global)",
        "description": "Basic phone for young kids getting their first phone - Phone and Messages only",
    },
    ProfileType.EXPLORER: {
        "name": "Explorer (Global)",
        "description": "Enhanced features for kids ready for more but still supervised - Camera, YouTube Kids, Maps included",
    },
    ProfileType.GUARDIAN: {
        "name": "Guardian (Global)",
        "description": "Full access with social media protection - All apps except dangerous social platforms",
    },
    ProfileType.TIME_OUT: {
        "name": "Time Out (Global)",
        "description": "Disciplinary mode - Phone only when rules are broken",
    },
}

class MasterProfileBootstrap:
    """
    Creates the shared master profiles, one per predefined type.

    Safe to run repeatedly and from several workers at once: existing types are
    skipped, and a worker that loses the insert race deletes the SimpleMDM
    profile it just created.
    """

    def __init__(self, ledger: AssignmentLedger, mdm: SimpleMDMService, render=render_profile):
        self.ledger = ledger
        self.mdm = mdm
        self.render = render

    async def bootstrap(self) -> List[BootstrapEntry]:
        entries = []
        for profile_type in PREDEFINED_PROFILE_TYPES:
            entries.append(await self._ensure(profile_type))
        created = sum(1 for e in entries if e.created)
        failed = sum(1 for e in entries if e.error)
        logger.info(f"Master profile bootstrap: {created} created, {failed} failed, {len(entries) - created - failed} present")
        return entries

    async def _ensure(self, profile_type: ProfileType) -> BootstrapEntry:
        existing = await self.ledger.get_master_profile_by_type(profile_type)
        if existing is not None:
            return BootstrapEntry(type=profile_type, created=False, simplemdm_profile_id=existing.simplemdm_profile_id)

        definition = MASTER_PROFILE_DEFINITIONS[profile_type]
        content = self.render(profile_type, MASTER_FAMILY_NAME)
        try:
            profile_ref = await self.mdm.create_profile(definition["name"], content)
        except ExternalServiceError as e:
            logger.error(f"Creating master profile '{profile_type.value}' failed: {e.message}")
            return BootstrapEntry(type=profile_type, created=False, error=e.message)

        try:
            master = await self.ledger.create_master_profile(
                profile_type, definition["name"], definition["description"], profile_ref
            )
        except Exception as e:
            winner = await self.ledger.get_master_profile_by_type(profile_type)
            await self._delete_quietly(profile_ref)
            if winner is None:
                raise
            logger.warning(f"Master profile '{profile_type.value}' was created concurrently ({e}); kept {winner.simplemdm_profile_id}")
            return BootstrapEntry(type=profile_type, created=False, simplemdm_profile_id=winner.simplemdm_profile_id)

        logger.info(f"Master profile '{profile_type.value}' created as {profile_ref}")
        return BootstrapEntry(type=profile_type, created=True, simplemdm_profile_id=master.simplemdm_profile_id)

    async def _delete_quietly(self, profile_ref: str) -> None:
        try:
            await self.mdm.delete_profile(profile_ref)
        except ExternalServiceError as e:
            logger.warning(f"Duplicate master profile {profile_ref} could not be deleted: {e.message}")

    async def delete_master_profile(self, profile_type) -> OperationResult:
        """Guarded removal; refuses while any family profile still uses the master."""
        profile_type = parse_profile_type(profile_type)
        master = await self.ledger.get_master_profile_by_type(profile_type)
        if master is None:
            raise NotFoundError(f"Master profile '{profile_type.value}' not found")

        references = await self.ledger.count_master_profile_references(master.id)
        if references:
            raise MasterProfileInUse(profile_type.value, references)

        warnings = []
        try:
            await self.mdm.delete_profile(master.simplemdm_profile_id)
        except ExternalServiceError as e:
            logger.warning(f"Deleting master profile {master.simplemdm_profile_id} from SimpleMDM failed: {e.message}")
            warnings.append(f"Could not delete profile {master.simplemdm_profile_id} from SimpleMDM: {e.message}")

        await self.ledger.delete_master_profile(master.id)
        message = f"Master profile '{profile_type.value}' deleted"
        if warnings:
            message += ". External cleanup may require manual removal in SimpleMDM."
        return OperationResult(external_cleanup_pending=bool(warnings), warnings=warnings, message=message)
