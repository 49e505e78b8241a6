"""
Keeps the assignment ledger and SimpleMDM in agreement.

Creation is external-first: a family profile row is written only after its
SimpleMDM link exists. Deletion is also external-first but never blocked by
SimpleMDM: cleanup failures are collected as warnings and the local delete
always happens. Shared master profiles are never deleted or compensated on
behalf of a single family, since other families link to them too.

Operations that change a family's external state hold the family's sync lock
and read the rows they act on only once the lock is held.
"""
import secrets
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from nook.core.config import settings
from nook.core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    OrphanCleanupFailed,
    ProfileCreationFailed,
    NotBootstrapped,
    SyncLockTimeout,
    ValidationError,
)
from nook.core.logging import logger
from nook.schemas.device import Device
from nook.schemas.enrollment import EnrollmentCode, EnrollmentValidation
from nook.schemas.family import Family
from nook.schemas.profile import CustomProfileConfig, FamilyProfile, ProfileType, parse_profile_type
from nook.schemas.sync import (
    BulkReport,
    BulkSyncFailure,
    OperationResult,
    RepairReport,
    RepairResult,
    SyncDiscrepancy,
    SyncReport,
)
from nook.services.assignment_ledger import AssignmentLedger, assignment_ledger
from nook.services.profile_generators import default_profile_description, default_profile_name, render_profile
from nook.services.simplemdm_service import SimpleMDMService, simplemdm_service
from nook.services.sync_lock_service import FamilySyncLocks, family_sync_locks

CLEANUP_PENDING_NOTE = "External cleanup may require a manual sync repair."
DEFAULT_LOCK_MESSAGE = "Device locked by Nook"

def _operation_result(message: str, warnings: List[str]) -> OperationResult:
    if warnings:
        message = f"{message}. {CLEANUP_PENDING_NOTE}"
    return OperationResult(
        success=True,
        external_cleanup_pending=bool(warnings),
        warnings=warnings,
        message=message,
    )

def _new_enrollment_code() -> str:
    return str(secrets.randbelow(900000) + 100000)

class SyncCoordinator:
    def __init__(
        self,
        ledger: AssignmentLedger,
        mdm: SimpleMDMService,
        locks: FamilySyncLocks,
        render: Callable[..., bytes] = render_profile,
    ):
        self.ledger = ledger
        self.mdm = mdm
        self.locks = locks
        self.render = render

    async def _family_id_of_device(self, device_id: int) -> int:
        # A device never changes family, so this read is safe outside the lock
        return (await self.ledger.require_device(device_id)).family_id

    # Profile assignment

    async def request_assign_profile(
        self,
        family_id: int,
        profile_type,
        name: Optional[str] = None,
        config: Optional[CustomProfileConfig] = None,
        description: Optional[str] = None,
    ) -> FamilyProfile:
        """
        Assign a profile to a family's device group.

        Predefined types link the shared master profile; assigning one the
        family already has re-asserts the link and returns the existing row.
        Custom types create an individual SimpleMDM profile first.
        """
        profile_type = parse_profile_type(profile_type)
        if profile_type is ProfileType.CUSTOM and config is None:
            raise ValidationError("Config is required for custom profiles")
        await self.ledger.require_family(family_id)

        name = name or default_profile_name(profile_type)
        description = description or default_profile_description(profile_type)
        logger.info(f"Assigning {profile_type.value} profile to family {family_id}")

        async with self.locks.hold(family_id):
            family = await self.ledger.require_family(family_id)
            if not family.simplemdm_group_id:
                raise ValidationError(f"Family {family_id} has no SimpleMDM device group")
            if profile_type.is_predefined:
                return await self._assign_shared(family, profile_type, name, description)
            return await self._assign_individual(family, name, config, description)

    async def _assign_shared(
        self, family: Family, profile_type: ProfileType, name: str, description: Optional[str]
    ) -> FamilyProfile:
        master = await self.ledger.get_master_profile_by_type(profile_type)
        if master is None:
            raise NotBootstrapped(profile_type.value)

        existing = await self.ledger.find_family_profile_by_type(family.id, profile_type)

        # No compensation on failure: the master link is not owned by this family
        await self.mdm.link_profile_to_group(master.simplemdm_profile_id, family.simplemdm_group_id)
        logger.info(
            f"Linked master profile {master.simplemdm_profile_id} to group {family.simplemdm_group_id}"
        )

        if existing is not None:
            logger.info(f"Family {family.id} already has {profile_type.value} profile {existing.id}")
            return existing
        return await self.ledger.create_family_profile(
            family.id, profile_type, name, description=description
        )

    async def _assign_individual(
        self, family: Family, name: str, config: CustomProfileConfig, description: Optional[str]
    ) -> FamilyProfile:
        content = self.render(ProfileType.CUSTOM, family.name, config)
        try:
            profile_ref = await self.mdm.create_profile(name, content)
        except ExternalServiceError as e:
            logger.error(f"Custom profile creation failed for family {family.id}: {e.message}")
            raise ProfileCreationFailed(e) from e

        try:
            await self.mdm.link_profile_to_group(profile_ref, family.simplemdm_group_id)
        except ExternalServiceError as link_error:
            logger.error(f"Linking profile {profile_ref} to group {family.simplemdm_group_id} failed: {link_error.message}")
            try:
                await self.mdm.delete_profile(profile_ref)
            except ExternalServiceError as cleanup_error:
                logger.warning(f"Orphaned SimpleMDM profile {profile_ref} could not be deleted: {cleanup_error.message}")
                raise OrphanCleanupFailed(link_error, cleanup_error, profile_ref) from link_error
            logger.warning(f"Deleted orphaned SimpleMDM profile {profile_ref} after failed link")
            raise

        try:
            return await self.ledger.create_family_profile(
                family.id,
                ProfileType.CUSTOM,
                name,
                config=config,
                description=description,
                simplemdm_profile_id=profile_ref,
            )
        except Exception as e:
            logger.error(f"Recording custom profile {profile_ref} for family {family.id} failed: {e}")
            await self._discard_individual_profile(profile_ref, family.simplemdm_group_id)
            raise

    async def _discard_individual_profile(self, profile_ref: str, group_ref: Optional[str]) -> List[str]:
        """Unlink and delete a family-owned SimpleMDM profile; failures come back as warnings."""
        warnings = []
        if group_ref:
            try:
                await self.mdm.unlink_profile_from_group(profile_ref, group_ref)
            except ExternalServiceError as e:
                logger.warning(f"Unlinking profile {profile_ref} from group {group_ref} failed: {e.message}")
                warnings.append(f"Could not unlink profile {profile_ref} from device group {group_ref}: {e.message}")
        try:
            await self.mdm.delete_profile(profile_ref)
        except ExternalServiceError as e:
            logger.warning(f"Deleting SimpleMDM profile {profile_ref} failed: {e.message}")
            warnings.append(f"Could not delete profile {profile_ref} from SimpleMDM: {e.message}")
        return warnings

    async def request_update_profile(
        self,
        family_profile_id: int,
        name: Optional[str] = None,
        config: Optional[CustomProfileConfig] = None,
        description: Optional[str] = None,
    ) -> FamilyProfile:
        """Custom profiles are re-rendered in SimpleMDM first; shared content is never touched."""
        family_id = (await self.ledger.require_family_profile(family_profile_id)).family_id

        async with self.locks.hold(family_id):
            profile = await self.ledger.require_family_profile(family_profile_id)
            if config is not None and profile.type is not ProfileType.CUSTOM:
                raise ValidationError("Only custom profiles can change their restrictions")
            family = await self.ledger.require_family(family_id)
            if profile.type is ProfileType.CUSTOM and (name is not None or config is not None):
                content = self.render(ProfileType.CUSTOM, family.name, config or profile.config)
                await self.mdm.update_profile(profile.simplemdm_profile_id, name or profile.name, content)
                logger.info(f"Updated SimpleMDM profile {profile.simplemdm_profile_id}")
            return await self.ledger.update_family_profile(
                family_profile_id, name=name, description=description, config=config
            )

    async def request_unassign_profile(self, family_profile_id: int) -> OperationResult:
        family_id = (await self.ledger.require_family_profile(family_profile_id)).family_id

        async with self.locks.hold(family_id):
            profile = await self.ledger.require_family_profile(family_profile_id)
            family = await self.ledger.require_family(family_id)
            warnings = []
            profile_ref = await self.ledger.resolve_external_profile_ref(profile)

            for device in await self.ledger.list_devices_for_profile(profile.id):
                if not device.simplemdm_device_id:
                    continue
                try:
                    await self.mdm.unlink_profile_from_device(profile_ref, device.simplemdm_device_id)
                except ExternalServiceError as e:
                    logger.warning(f"Unlinking profile {profile_ref} from device {device.simplemdm_device_id} failed: {e.message}")
                    warnings.append(f"Could not unlink profile from device {device.name}: {e.message}")

            if profile.is_shared:
                if family.simplemdm_group_id:
                    try:
                        await self.mdm.unlink_profile_from_group(profile_ref, family.simplemdm_group_id)
                    except ExternalServiceError as e:
                        logger.warning(f"Unlinking master profile {profile_ref} failed: {e.message}")
                        warnings.append(f"Could not unlink shared profile from device group: {e.message}")
            else:
                warnings.extend(await self._discard_individual_profile(profile_ref, family.simplemdm_group_id))

            await self.ledger.delete_family_profile(profile.id)

        logger.info(f"Unassigned profile {profile.id} from family {family.id} ({len(warnings)} warnings)")
        return _operation_result(f"Profile '{profile.name}' removed", warnings)

    # Devices

    async def request_reassign_device(self, device_id: int, family_profile_id: Optional[int]) -> Device:
        """
        Point a device at another family profile, or at none.

        The new profile is linked before the old one is unlinked. A failed
        unlink is logged and does not fail the reassignment; `request_verify`
        does not see device links, so the stale link stays until the old
        profile is unassigned.
        """
        family_id = await self._family_id_of_device(device_id)

        async with self.locks.hold(family_id):
            device = await self.ledger.require_device(device_id)
            new_profile = None
            if family_profile_id is not None:
                new_profile = await self.ledger.require_family_profile(family_profile_id)
                if new_profile.family_id != device.family_id:
                    raise ValidationError(
                        f"Profile {family_profile_id} does not belong to the family of device {device_id}"
                    )
            if device.profile_id == family_profile_id:
                return device

            if device.simplemdm_device_id:
                if new_profile is not None:
                    new_ref = await self.ledger.resolve_external_profile_ref(new_profile)
                    await self.mdm.link_profile_to_device(new_ref, device.simplemdm_device_id)
                if device.profile_id is not None:
                    warning = await self._unlink_device_profile(device, device.profile_id)
                    if warning:
                        logger.warning(
                            f"Device {device.id} moved to profile {family_profile_id} but kept a stale link: {warning}"
                        )
            updated = await self.ledger.reassign_device(device.id, family_profile_id)

        logger.info(f"Device {device.id} now uses profile {family_profile_id}")
        return updated

    async def _unlink_device_profile(self, device: Device, family_profile_id: int) -> Optional[str]:
        """Best-effort removal of a profile from an enrolled device; returns a warning on failure."""
        old_profile = await self.ledger.get_family_profile(family_profile_id)
        if old_profile is None:
            return None
        old_ref = await self.ledger.resolve_external_profile_ref(old_profile)
        try:
            await self.mdm.unlink_profile_from_device(old_ref, device.simplemdm_device_id)
        except ExternalServiceError as e:
            logger.warning(f"Unlinking profile {old_ref} from device {device.simplemdm_device_id} failed: {e.message}")
            return f"Could not unlink previous profile from device {device.name}: {e.message}"
        return None

    async def register_device(self, family_id: int, name: str, simplemdm_device_id: Optional[str] = None) -> Device:
        """A device registered with its SimpleMDM id joins the family's device group first."""
        async with self.locks.hold(family_id):
            family = await self.ledger.require_family(family_id)
            if simplemdm_device_id and family.simplemdm_group_id:
                await self.mdm.assign_device_to_group(simplemdm_device_id, family.simplemdm_group_id)
            return await self.ledger.create_device(family_id, name, simplemdm_device_id)

    async def enroll_device(
        self, device_id: int, simplemdm_device_id: str, enrollment_code: Optional[str] = None
    ) -> Device:
        """
        Record the SimpleMDM device, add it to the family's device group and
        push its assigned profile, if any. An enrollment code, when given, must
        belong to the device's family and is spent once the device is recorded.
        """
        family_id = await self._family_id_of_device(device_id)

        async with self.locks.hold(family_id):
            device = await self.ledger.require_device(device_id)
            family = await self.ledger.require_family(family_id)
            redeemed = None
            if enrollment_code is not None:
                redeemed = await self._redeemable_enrollment(enrollment_code)
                if redeemed.family_id != family_id:
                    raise ValidationError(f"Enrollment code does not belong to the family of device {device_id}")

            group_ref = family.simplemdm_group_id
            if group_ref:
                await self.mdm.assign_device_to_group(simplemdm_device_id, group_ref)
            try:
                if device.profile_id is not None:
                    profile = await self.ledger.require_family_profile(device.profile_id)
                    profile_ref = await self.ledger.resolve_external_profile_ref(profile)
                    await self.mdm.link_profile_to_device(profile_ref, simplemdm_device_id)
            except ExternalServiceError as e:
                logger.error(f"Pushing profile to device {simplemdm_device_id} failed: {e.message}")
                if group_ref:
                    await self._leave_group(simplemdm_device_id, group_ref)
                raise

            enrolled = await self.ledger.set_device_external_ref(device.id, simplemdm_device_id)
            if redeemed is not None:
                await self.ledger.mark_enrollment_code_used(redeemed.id)
        logger.info(f"Device {device.id} enrolled as SimpleMDM device {simplemdm_device_id}")
        return enrolled

    async def _leave_group(self, device_ref: str, group_ref: str) -> Optional[str]:
        """Best-effort removal of a device from a device group; returns a warning on failure."""
        try:
            await self.mdm.remove_device_from_group(device_ref, group_ref)
        except ExternalServiceError as e:
            logger.warning(f"Removing device {device_ref} from group {group_ref} failed: {e.message}")
            return f"Could not remove device {device_ref} from device group {group_ref}: {e.message}"
        return None

    async def remove_device(self, device_id: int, unenroll: bool = False) -> OperationResult:
        """
        Delete a device. With `unenroll` the device is also deleted from
        SimpleMDM, which drops its group membership and profiles; otherwise it
        only leaves the family's device group and loses its profile link.
        """
        family_id = await self._family_id_of_device(device_id)

        async with self.locks.hold(family_id):
            device = await self.ledger.require_device(device_id)
            family = await self.ledger.require_family(family_id)
            warnings = []
            if device.simplemdm_device_id:
                if unenroll:
                    try:
                        await self.mdm.delete_device(device.simplemdm_device_id)
                    except ExternalServiceError as e:
                        logger.warning(f"Unenrolling device {device.simplemdm_device_id} failed: {e.message}")
                        warnings.append(f"Could not unenroll device from SimpleMDM: {e.message}")
                else:
                    if family.simplemdm_group_id:
                        warning = await self._leave_group(device.simplemdm_device_id, family.simplemdm_group_id)
                        if warning:
                            warnings.append(warning)
                    if device.profile_id is not None:
                        warning = await self._unlink_device_profile(device, device.profile_id)
                        if warning:
                            warnings.append(warning)
            await self.ledger.delete_device(device.id)
        return _operation_result(f"Device '{device.name}' removed", warnings)

    async def lock_device(self, device_id: int, message: Optional[str] = None) -> OperationResult:
        device = await self.ledger.require_device(device_id)
        if not device.simplemdm_device_id:
            raise ValidationError(f"Device {device_id} is not enrolled in SimpleMDM")
        await self.mdm.lock_device(device.simplemdm_device_id, message or DEFAULT_LOCK_MESSAGE)
        return _operation_result(f"Lock command sent to '{device.name}'", [])

    # Enrollment

    async def request_enrollment(self, family_id: int) -> EnrollmentCode:
        """Create a SimpleMDM enrollment for the family's group and hand out a six digit code for it."""
        async with self.locks.hold(family_id):
            family = await self.ledger.require_family(family_id)
            if not family.simplemdm_group_id:
                raise ValidationError(f"Family {family_id} has no SimpleMDM device group")

            enrollment = await self.mdm.create_enrollment(family.simplemdm_group_id)
            expires_at = datetime.now() + timedelta(hours=settings.ENROLLMENT_CODE_TTL_HOURS)
            try:
                code = await self.ledger.create_enrollment_code(
                    family_id, _new_enrollment_code(), enrollment.enrollment_ref, enrollment.url, expires_at
                )
            except Exception as e:
                logger.error(f"Recording enrollment {enrollment.enrollment_ref} for family {family_id} failed: {e}")
                try:
                    await self.mdm.delete_enrollment(enrollment.enrollment_ref)
                except ExternalServiceError as cleanup_error:
                    logger.warning(
                        f"Orphaned enrollment {enrollment.enrollment_ref} could not be deleted: {cleanup_error.message}"
                    )
                raise
        logger.info(f"Issued enrollment code {code.id} for family {family_id}, expires {expires_at:%Y-%m-%d %H:%M}")
        return code

    async def _redeemable_enrollment(self, code: str) -> EnrollmentCode:
        enrollment = await self.ledger.find_enrollment_code(code)
        if enrollment is None:
            raise NotFoundError("Enrollment code not found")
        if enrollment.used:
            raise ValidationError("Enrollment code has already been used")
        if enrollment.expires_at < datetime.now():
            raise ValidationError("Enrollment code has expired")
        return enrollment

    async def validate_enrollment_code(self, code: str) -> EnrollmentValidation:
        enrollment = await self._redeemable_enrollment(code)
        family = await self.ledger.require_family(enrollment.family_id)
        return EnrollmentValidation(
            valid=True,
            family_id=family.id,
            family_name=family.name,
            url=enrollment.url,
            expires_at=enrollment.expires_at,
        )

    # Families

    async def create_family(self, name: str, parent_id: int) -> Family:
        group_ref = await self.mdm.create_group(name)
        try:
            return await self.ledger.create_family(name, parent_id, simplemdm_group_id=group_ref)
        except Exception as e:
            logger.error(f"Recording family '{name}' failed, removing device group {group_ref}: {e}")
            try:
                await self.mdm.delete_group(group_ref)
            except ExternalServiceError as cleanup_error:
                logger.warning(f"Orphaned device group {group_ref} could not be deleted: {cleanup_error.message}")
            raise

    async def rename_family(self, family_id: int, name: str) -> Family:
        await self.ledger.require_family(family_id)
        async with self.locks.hold(family_id):
            family = await self.ledger.require_family(family_id)
            if family.simplemdm_group_id:
                await self.mdm.rename_group(family.simplemdm_group_id, name)
            return await self.ledger.rename_family(family_id, name)

    async def delete_family(self, family_id: int) -> OperationResult:
        """
        Remove a family everywhere. Custom profiles are deleted from SimpleMDM,
        shared master profiles are only unlinked, then the family's enrollments
        and finally the device group go.
        """
        await self.ledger.require_family(family_id)

        async with self.locks.hold(family_id):
            family = await self.ledger.require_family(family_id)
            group_ref = family.simplemdm_group_id
            warnings = []
            profiles = {p.id: p for p in await self.ledger.list_family_profiles(family_id)}

            for device in await self.ledger.list_devices(family_id):
                profile = profiles.get(device.profile_id)
                if device.simplemdm_device_id and profile is not None and profile.is_shared:
                    warning = await self._unlink_device_profile(device, profile.id)
                    if warning:
                        warnings.append(warning)

            for profile in profiles.values():
                if profile.is_shared:
                    if not group_ref:
                        continue
                    master_ref = await self.ledger.resolve_external_profile_ref(profile)
                    try:
                        await self.mdm.unlink_profile_from_group(master_ref, group_ref)
                    except ExternalServiceError as e:
                        logger.warning(f"Unlinking master profile {master_ref} from group {group_ref} failed: {e.message}")
                        warnings.append(f"Could not unlink shared profile '{profile.name}': {e.message}")
                else:
                    warnings.extend(await self._discard_individual_profile(profile.simplemdm_profile_id, group_ref))

            for enrollment in await self.ledger.list_enrollment_codes(family_id):
                try:
                    await self.mdm.delete_enrollment(enrollment.simplemdm_enrollment_id)
                except ExternalServiceError as e:
                    logger.warning(f"Deleting enrollment {enrollment.simplemdm_enrollment_id} failed: {e.message}")
                    warnings.append(f"Could not delete enrollment {enrollment.simplemdm_enrollment_id}: {e.message}")

            if group_ref:
                try:
                    await self.mdm.delete_group(group_ref)
                except ExternalServiceError as e:
                    logger.warning(f"Deleting device group {group_ref} failed: {e.message}")
                    warnings.append(f"Could not delete device group {group_ref}: {e.message}")

            await self.ledger.delete_family(family_id)

        logger.info(f"Deleted family {family_id} ({len(warnings)} warnings)")
        return _operation_result(f"Family '{family.name}' deleted", warnings)

    # Consistency

    async def request_verify(self, family_id: int) -> SyncReport:
        family = await self.ledger.require_family(family_id)
        return await self._verify(family)

    async def _verify(self, family: Family) -> SyncReport:
        profiles = await self.ledger.list_family_profiles(family.id)
        linked = set()
        if profiles and family.simplemdm_group_id:
            links = await self.mdm.list_group_links(family.simplemdm_group_id)
            linked = {link.profile_ref for link in links}

        discrepancies = []
        for profile in profiles:
            profile_ref = await self.ledger.resolve_external_profile_ref(profile)
            if profile_ref not in linked:
                discrepancies.append(
                    SyncDiscrepancy(
                        family_profile_id=profile.id,
                        profile_type=profile.type,
                        external_profile_ref=profile_ref,
                    )
                )

        if discrepancies:
            logger.info(f"Family {family.id} out of sync: {len(discrepancies)} of {len(profiles)} profiles missing")
        return SyncReport(
            family_id=family.id,
            in_sync=not discrepancies,
            checked=len(profiles),
            discrepancies=discrepancies,
        )

    async def request_repair(self, family_id: int) -> RepairReport:
        """Re-link every profile a fresh verification reports missing. Rows are never re-created."""
        await self.ledger.require_family(family_id)
        async with self.locks.hold(family_id):
            family = await self.ledger.require_family(family_id)
            report = await self._verify(family)
            results = []
            for discrepancy in report.discrepancies:
                if not family.simplemdm_group_id:
                    results.append(
                        RepairResult(
                            family_profile_id=discrepancy.family_profile_id,
                            success=False,
                            error="Family has no SimpleMDM device group",
                            retryable=False,
                        )
                    )
                    continue
                try:
                    await self.mdm.link_profile_to_group(discrepancy.external_profile_ref, family.simplemdm_group_id)
                    results.append(RepairResult(family_profile_id=discrepancy.family_profile_id, success=True))
                except ExternalServiceError as e:
                    logger.error(f"Repair of profile {discrepancy.family_profile_id} failed: {e.message}")
                    results.append(
                        RepairResult(
                            family_profile_id=discrepancy.family_profile_id,
                            success=False,
                            error=e.message,
                            retryable=e.retryable,
                        )
                    )

        in_sync = all(result.success for result in results)
        logger.info(f"Repair of family {family_id}: {len(results)} attempted, in_sync={in_sync}")
        return RepairReport(family_id=family_id, in_sync=in_sync, results=results)

    async def request_bulk_sync(self) -> BulkReport:
        """Re-assert every expected group link across all families."""
        report = BulkReport()
        for family in await self.ledger.list_families():
            report.families += 1
            profiles = await self.ledger.list_family_profiles(family.id)
            if not profiles:
                continue
            if not family.simplemdm_group_id:
                report.failures.append(
                    BulkSyncFailure(family_id=family.id, error="Family has no SimpleMDM device group", retryable=False)
                )
                continue
            try:
                async with self.locks.hold(family.id):
                    await self._assert_family_links(family, profiles, report)
            except SyncLockTimeout as e:
                logger.error(f"Bulk sync skipped family {family.id}: {e}")
                report.failures.append(BulkSyncFailure(family_id=family.id, error=str(e), retryable=True))
        logger.info(
            f"Bulk sync: {report.families} families, {report.links_asserted} links, {len(report.failures)} failures"
        )
        return report

    async def _assert_family_links(self, family: Family, profiles: List[FamilyProfile], report: BulkReport) -> None:
        for profile in profiles:
            try:
                profile_ref = await self.ledger.resolve_external_profile_ref(profile)
                await self.mdm.link_profile_to_group(profile_ref, family.simplemdm_group_id)
                report.links_asserted += 1
            except ExternalServiceError as e:
                logger.error(f"Bulk sync of profile {profile.id} in family {family.id} failed: {e.message}")
                report.failures.append(
                    BulkSyncFailure(
                        family_id=family.id,
                        family_profile_id=profile.id,
                        error=e.message,
                        retryable=e.retryable,
                    )
                )

sync_coordinator = SyncCoordinator(assignment_ledger, simplemdm_service, family_sync_locks)
