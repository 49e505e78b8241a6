"""
Sync coordinator behaviour over the fake SimpleMDM and a SQLite ledger.
"""
import asyncio
import logging
from datetime import datetime, timedelta

import pytest

from nook.core.exceptions import (
    ExternalServiceError,
    MasterProfileInUse,
    NotBootstrapped,
    NotFoundError,
    OrphanCleanupFailed,
    ProfileCreationFailed,
    ValidationError,
)
from nook.schemas.profile import CustomProfileConfig, ProfileType
from nook.schemas.sync import DiscrepancyKind
from nook.services.master_profile_bootstrap import MasterProfileBootstrap
from nook.services.sync_coordinator import SyncCoordinator
from nook.tests.fakes import BusySyncLocks, permanent_error, transient_error

CONFIG = CustomProfileConfig(allowed_apps=["com.apple.mobilephone"], restrictions={"allow_camera": False})

class TestAssignProfile:
    @pytest.mark.asyncio
    async def test_second_family_links_existing_master(self, coordinator, mdm, bootstrapped):
        master = bootstrapped[ProfileType.FIRST_PHONE]
        f1 = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(f1.id, "first_phone")
        f2 = await coordinator.create_family("Jones", parent_id=2)
        creates_before = len(mdm.calls_to("create_profile"))

        profile = await coordinator.request_assign_profile(f2.id, "first_phone")

        assert len(mdm.calls_to("create_profile")) == creates_before
        assert (master.simplemdm_profile_id, f2.simplemdm_group_id) in mdm.calls_to("link_profile_to_group")
        assert profile.family_id == f2.id
        assert profile.master_profile_id == master.id
        assert profile.simplemdm_profile_id is None

    @pytest.mark.asyncio
    async def test_custom_profile_creates_and_links_one_profile(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)

        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)

        assert len(mdm.calls_to("create_profile")) == 1
        assert profile.simplemdm_profile_id in mdm.profiles
        assert profile.master_profile_id is None
        assert mdm.calls_to("link_profile_to_group") == [(profile.simplemdm_profile_id, family.simplemdm_group_id)]
        assert [p.id for p in await ledger.list_family_profiles(family.id)] == [profile.id]

    @pytest.mark.asyncio
    async def test_assign_then_verify_is_in_sync(self, coordinator, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "explorer")
        await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)

        report = await coordinator.request_verify(family.id)

        assert report.in_sync is True
        assert report.checked == 2
        assert report.discrepancies == []

    @pytest.mark.asyncio
    async def test_repeated_predefined_assign_is_idempotent(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)

        first = await coordinator.request_assign_profile(family.id, "guardian")
        second = await coordinator.request_assign_profile(family.id, "guardian")

        assert first.id == second.id
        assert len(await ledger.list_family_profiles(family.id)) == 1
        links = await mdm.list_group_links(family.simplemdm_group_id)
        master_ref = bootstrapped[ProfileType.GUARDIAN].simplemdm_profile_id
        assert [link.profile_ref for link in links].count(master_ref) == 1

    @pytest.mark.asyncio
    async def test_unknown_type_rejected_before_any_call(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        calls_before = len(mdm.calls)

        with pytest.raises(ValidationError):
            await coordinator.request_assign_profile(family.id, "teenager")
        assert len(mdm.calls) == calls_before

    @pytest.mark.asyncio
    async def test_custom_without_config_rejected(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)

        with pytest.raises(ValidationError):
            await coordinator.request_assign_profile(family.id, "custom")
        assert mdm.calls_to("create_profile") == []

    @pytest.mark.asyncio
    async def test_missing_family_is_not_found(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.request_assign_profile(999, "explorer")

    @pytest.mark.asyncio
    async def test_family_without_group_is_rejected(self, coordinator, mdm, ledger, bootstrapped):
        family = await ledger.create_family("Groupless", parent_id=1)
        calls_before = len(mdm.calls)

        with pytest.raises(ValidationError):
            await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        with pytest.raises(ValidationError):
            await coordinator.request_assign_profile(family.id, "explorer")
        assert len(mdm.calls) == calls_before

    @pytest.mark.asyncio
    async def test_predefined_before_bootstrap(self, coordinator, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)

        with pytest.raises(NotBootstrapped):
            await coordinator.request_assign_profile(family.id, "time_out")
        assert await ledger.list_family_profiles(family.id) == []

    @pytest.mark.asyncio
    async def test_custom_creation_failure_persists_nothing(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        mdm.fail_next["create_profile"] = transient_error()

        with pytest.raises(ProfileCreationFailed) as exc_info:
            await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)

        assert exc_info.value.retryable is True
        assert await ledger.list_family_profiles(family.id) == []
        assert mdm.calls_to("link_profile_to_group") == []

    @pytest.mark.asyncio
    async def test_shared_link_failure_surfaces_without_compensation(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        mdm.fail_next["link_profile_to_group"] = transient_error()

        with pytest.raises(ExternalServiceError) as exc_info:
            await coordinator.request_assign_profile(family.id, "explorer")

        assert exc_info.value.retryable is True
        assert mdm.calls_to("delete_profile") == []
        assert await ledger.list_family_profiles(family.id) == []
        assert len(await ledger.list_master_profiles()) == 4

    @pytest.mark.asyncio
    async def test_custom_link_failure_deletes_orphan(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        mdm.fail_next["link_profile_to_group"] = permanent_error()

        with pytest.raises(ExternalServiceError) as exc_info:
            await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)

        assert exc_info.value.retryable is False
        assert len(mdm.calls_to("create_profile")) == 1
        assert len(mdm.calls_to("delete_profile")) == 1
        assert mdm.profiles == {}
        assert await ledger.list_family_profiles(family.id) == []

    @pytest.mark.asyncio
    async def test_failed_orphan_cleanup_is_reported(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        mdm.fail_next["link_profile_to_group"] = transient_error("link failed")
        mdm.fail_next["delete_profile"] = transient_error("delete failed")

        with pytest.raises(OrphanCleanupFailed) as exc_info:
            await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)

        assert exc_info.value.original.message == "link failed"
        assert exc_info.value.cleanup_error.message == "delete failed"
        assert exc_info.value.profile_ref in mdm.profiles
        assert await ledger.list_family_profiles(family.id) == []

class TestUpdateProfile:
    @pytest.mark.asyncio
    async def test_custom_update_rerenders_externally(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        new_config = CustomProfileConfig(allowed_apps=["com.apple.mobilephone", "com.apple.Maps"], restrictions={})

        updated = await coordinator.request_update_profile(profile.id, name="Weekend", config=new_config)

        assert mdm.calls_to("update_profile") == [(profile.simplemdm_profile_id, "Weekend")]
        assert updated.name == "Weekend"
        assert updated.config.allowed_apps == ["com.apple.mobilephone", "com.apple.Maps"]

    @pytest.mark.asyncio
    async def test_predefined_rename_stays_local(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "explorer")

        updated = await coordinator.request_update_profile(profile.id, name="Emma's rules")

        assert updated.name == "Emma's rules"
        assert mdm.calls_to("update_profile") == []

    @pytest.mark.asyncio
    async def test_predefined_config_change_rejected(self, coordinator, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "explorer")

        with pytest.raises(ValidationError):
            await coordinator.request_update_profile(profile.id, config=CONFIG)

    @pytest.mark.asyncio
    async def test_external_update_failure_leaves_ledger_unchanged(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        mdm.fail_next["update_profile"] = transient_error()

        with pytest.raises(ExternalServiceError):
            await coordinator.request_update_profile(profile.id, name="Weekend")
        assert (await ledger.get_family_profile(profile.id)).name == profile.name

class TestUnassignProfile:
    @pytest.mark.asyncio
    async def test_shared_unassign_unlinks_but_keeps_master(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "first_phone")
        master_ref = bootstrapped[ProfileType.FIRST_PHONE].simplemdm_profile_id

        result = await coordinator.request_unassign_profile(profile.id)

        assert result.success is True
        assert result.external_cleanup_pending is False
        assert (master_ref, family.simplemdm_group_id) in mdm.calls_to("unlink_profile_from_group")
        assert mdm.calls_to("delete_profile") == []
        assert master_ref in mdm.profiles
        assert await ledger.get_family_profile(profile.id) is None

    @pytest.mark.asyncio
    async def test_custom_unassign_deletes_external_profile(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)

        result = await coordinator.request_unassign_profile(profile.id)

        assert result.external_cleanup_pending is False
        assert profile.simplemdm_profile_id not in mdm.profiles
        assert await ledger.get_family_profile(profile.id) is None

    @pytest.mark.asyncio
    async def test_external_failure_still_deletes_locally(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        mdm.fail_always["unlink_profile_from_group"] = transient_error()
        mdm.fail_always["delete_profile"] = transient_error()

        result = await coordinator.request_unassign_profile(profile.id)

        assert result.success is True
        assert result.external_cleanup_pending is True
        assert len(result.warnings) == 2
        assert "sync repair" in result.message
        assert await ledger.get_family_profile(profile.id) is None

    @pytest.mark.asyncio
    async def test_enrolled_devices_are_unlinked(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "explorer")
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        await coordinator.request_reassign_device(device.id, profile.id)

        await coordinator.request_unassign_profile(profile.id)

        master_ref = bootstrapped[ProfileType.EXPLORER].simplemdm_profile_id
        assert (master_ref, "dev-1") in mdm.calls_to("unlink_profile_from_device")
        assert (await ledger.get_device(device.id)).profile_id is None

class TestReassignDevice:
    @pytest.mark.asyncio
    async def test_cross_family_profile_rejected(self, coordinator, mdm, ledger):
        smith = await coordinator.create_family("Smith", parent_id=1)
        jones = await coordinator.create_family("Jones", parent_id=2)
        jones_profile = await coordinator.request_assign_profile(jones.id, "custom", config=CONFIG)
        device = await coordinator.register_device(smith.id, "Emma's iPhone", simplemdm_device_id="dev-1")

        with pytest.raises(ValidationError):
            await coordinator.request_reassign_device(device.id, jones_profile.id)
        assert mdm.calls_to("link_profile_to_device") == []
        assert (await ledger.get_device(device.id)).profile_id is None

    @pytest.mark.asyncio
    async def test_enrolled_device_links_new_then_unlinks_old(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        explorer = await coordinator.request_assign_profile(family.id, "explorer")
        time_out = await coordinator.request_assign_profile(family.id, "time_out")
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        await coordinator.request_reassign_device(device.id, explorer.id)

        updated = await coordinator.request_reassign_device(device.id, time_out.id)

        assert updated.profile_id == time_out.id
        assert mdm.device_links["dev-1"] == {bootstrapped[ProfileType.TIME_OUT].simplemdm_profile_id}

    @pytest.mark.asyncio
    async def test_link_failure_leaves_device_unchanged(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        explorer = await coordinator.request_assign_profile(family.id, "explorer")
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        mdm.fail_next["link_profile_to_device"] = transient_error()

        with pytest.raises(ExternalServiceError):
            await coordinator.request_reassign_device(device.id, explorer.id)
        assert (await ledger.get_device(device.id)).profile_id is None

    @pytest.mark.asyncio
    async def test_unlink_failure_of_old_profile_does_not_abort(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        explorer = await coordinator.request_assign_profile(family.id, "explorer")
        guardian = await coordinator.request_assign_profile(family.id, "guardian")
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        await coordinator.request_reassign_device(device.id, explorer.id)
        mdm.fail_next["unlink_profile_from_device"] = transient_error()

        updated = await coordinator.request_reassign_device(device.id, guardian.id)

        assert updated.profile_id == guardian.id

    @pytest.mark.asyncio
    async def test_stale_link_after_reassign_is_logged(self, coordinator, mdm, bootstrapped, caplog):
        family = await coordinator.create_family("Smith", parent_id=1)
        explorer = await coordinator.request_assign_profile(family.id, "explorer")
        guardian = await coordinator.request_assign_profile(family.id, "guardian")
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        await coordinator.request_reassign_device(device.id, explorer.id)
        mdm.fail_next["unlink_profile_from_device"] = transient_error()

        with caplog.at_level(logging.WARNING, logger="nook"):
            await coordinator.request_reassign_device(device.id, guardian.id)

        stale = [r.getMessage() for r in caplog.records if "kept a stale link" in r.getMessage()]
        assert len(stale) == 1
        assert f"Device {device.id} moved to profile {guardian.id}" in stale[0]
        assert "Emma's iPhone" in stale[0]

    @pytest.mark.asyncio
    async def test_unenrolled_device_changes_locally_only(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        explorer = await coordinator.request_assign_profile(family.id, "explorer")
        device = await coordinator.register_device(family.id, "Emma's iPhone")

        updated = await coordinator.request_reassign_device(device.id, explorer.id)
        cleared = await coordinator.request_reassign_device(device.id, None)

        assert updated.profile_id == explorer.id
        assert cleared.profile_id is None
        assert mdm.calls_to("link_profile_to_device") == []

    @pytest.mark.asyncio
    async def test_unchanged_assignment_is_a_no_op(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        explorer = await coordinator.request_assign_profile(family.id, "explorer")
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        await coordinator.request_reassign_device(device.id, explorer.id)
        links_before = len(mdm.calls_to("link_profile_to_device"))

        await coordinator.request_reassign_device(device.id, explorer.id)

        assert len(mdm.calls_to("link_profile_to_device")) == links_before

    @pytest.mark.asyncio
    async def test_enroll_pushes_assigned_profile(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        device = await coordinator.register_device(family.id, "Emma's iPhone")
        await coordinator.request_reassign_device(device.id, profile.id)

        enrolled = await coordinator.enroll_device(device.id, "dev-7")

        assert enrolled.simplemdm_device_id == "dev-7"
        assert mdm.device_links["dev-7"] == {profile.simplemdm_profile_id}

    @pytest.mark.asyncio
    async def test_remove_device_with_unenroll(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")

        result = await coordinator.remove_device(device.id, unenroll=True)

        assert result.external_cleanup_pending is False
        assert mdm.deleted_devices == ["dev-1"]
        assert await ledger.get_device(device.id) is None

class TestDeviceGroupMembership:
    @pytest.mark.asyncio
    async def test_enroll_adds_device_to_family_group(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone")

        await coordinator.enroll_device(device.id, "dev-7")

        assert mdm.calls_to("assign_device_to_group") == [("dev-7", family.simplemdm_group_id)]
        assert mdm.group_devices[family.simplemdm_group_id] == {"dev-7"}

    @pytest.mark.asyncio
    async def test_register_with_device_id_joins_group(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)

        await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")

        assert mdm.group_devices[family.simplemdm_group_id] == {"dev-1"}

    @pytest.mark.asyncio
    async def test_group_failure_leaves_device_unenrolled(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone")
        mdm.fail_next["assign_device_to_group"] = transient_error()

        with pytest.raises(ExternalServiceError):
            await coordinator.enroll_device(device.id, "dev-7")
        assert (await ledger.get_device(device.id)).simplemdm_device_id is None

    @pytest.mark.asyncio
    async def test_profile_push_failure_takes_device_back_out_of_group(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        device = await coordinator.register_device(family.id, "Emma's iPhone")
        await coordinator.request_reassign_device(device.id, profile.id)
        mdm.fail_next["link_profile_to_device"] = transient_error()

        with pytest.raises(ExternalServiceError):
            await coordinator.enroll_device(device.id, "dev-7")

        assert mdm.calls_to("remove_device_from_group") == [("dev-7", family.simplemdm_group_id)]
        assert mdm.group_devices[family.simplemdm_group_id] == set()
        assert (await ledger.get_device(device.id)).simplemdm_device_id is None

    @pytest.mark.asyncio
    async def test_remove_device_leaves_group(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")

        result = await coordinator.remove_device(device.id)

        assert result.external_cleanup_pending is False
        assert mdm.calls_to("remove_device_from_group") == [("dev-1", family.simplemdm_group_id)]
        assert mdm.group_devices[family.simplemdm_group_id] == set()
        assert mdm.deleted_devices == []

    @pytest.mark.asyncio
    async def test_group_removal_failure_is_a_warning(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
        mdm.fail_always["remove_device_from_group"] = transient_error()

        result = await coordinator.remove_device(device.id)

        assert result.success is True
        assert result.external_cleanup_pending is True
        assert len(result.warnings) == 1
        assert "dev-1" in result.warnings[0]
        assert await ledger.get_device(device.id) is None

    @pytest.mark.asyncio
    async def test_lock_sends_command_to_enrolled_device(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")

        result = await coordinator.lock_device(device.id, "Dinner time")
        await coordinator.lock_device(device.id)

        assert result.success is True
        assert mdm.locked_devices[0] == ("dev-1", "Dinner time")
        assert mdm.locked_devices[1][1]

    @pytest.mark.asyncio
    async def test_lock_rejects_unenrolled_device(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)
        device = await coordinator.register_device(family.id, "Emma's iPhone")

        with pytest.raises(ValidationError):
            await coordinator.lock_device(device.id)
        assert mdm.calls_to("lock_device") == []

class TestEnrollmentCodes:
    @pytest.mark.asyncio
    async def test_request_issues_six_digit_code_for_family_group(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)

        code = await coordinator.request_enrollment(family.id)

        assert len(code.code) == 6 and code.code.isdigit()
        assert code.family_id == family.id
        assert code.used is False
        assert code.expires_at > datetime.now()
        assert mdm.enrollments[code.simplemdm_enrollment_id] == family.simplemdm_group_id
        assert code.url.endswith(code.simplemdm_enrollment_id)

    @pytest.mark.asyncio
    async def test_family_without_group_cannot_enroll(self, coordinator, mdm, ledger):
        family = await ledger.create_family("Groupless", parent_id=1)

        with pytest.raises(ValidationError):
            await coordinator.request_enrollment(family.id)
        assert mdm.calls_to("create_enrollment") == []

    @pytest.mark.asyncio
    async def test_failed_record_deletes_fresh_enrollment(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)

        async def broken_insert(*args, **kwargs):
            raise RuntimeError("database went away")

        ledger.create_enrollment_code = broken_insert

        with pytest.raises(RuntimeError):
            await coordinator.request_enrollment(family.id)
        assert len(mdm.calls_to("delete_enrollment")) == 1
        assert mdm.enrollments == {}

    @pytest.mark.asyncio
    async def test_validate_returns_family_and_url(self, coordinator):
        family = await coordinator.create_family("Smith", parent_id=1)
        code = await coordinator.request_enrollment(family.id)

        validation = await coordinator.validate_enrollment_code(code.code)

        assert validation.valid is True
        assert validation.family_id == family.id
        assert validation.family_name == "Smith"
        assert validation.url == code.url

    @pytest.mark.asyncio
    async def test_unknown_code_is_not_found(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.validate_enrollment_code("000000")

    @pytest.mark.asyncio
    async def test_expired_code_is_rejected(self, coordinator, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        await ledger.create_enrollment_code(
            family.id, "123456", "enr-old", "https://a.simplemdm.com/enroll/?c=old", datetime.now() - timedelta(hours=1)
        )

        with pytest.raises(ValidationError, match="expired"):
            await coordinator.validate_enrollment_code("123456")

    @pytest.mark.asyncio
    async def test_enroll_spends_code(self, coordinator, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        code = await coordinator.request_enrollment(family.id)
        device = await coordinator.register_device(family.id, "Emma's iPhone")

        await coordinator.enroll_device(device.id, "dev-7", enrollment_code=code.code)

        assert (await ledger.get_enrollment_code(code.id)).used is True
        with pytest.raises(ValidationError, match="already been used"):
            await coordinator.validate_enrollment_code(code.code)

    @pytest.mark.asyncio
    async def test_code_of_another_family_is_rejected(self, coordinator, mdm, ledger):
        smith = await coordinator.create_family("Smith", parent_id=1)
        jones = await coordinator.create_family("Jones", parent_id=2)
        code = await coordinator.request_enrollment(jones.id)
        device = await coordinator.register_device(smith.id, "Emma's iPhone")

        with pytest.raises(ValidationError):
            await coordinator.enroll_device(device.id, "dev-7", enrollment_code=code.code)
        assert mdm.calls_to("assign_device_to_group") == []
        assert (await ledger.get_enrollment_code(code.id)).used is False

    @pytest.mark.asyncio
    async def test_delete_family_removes_enrollments(self, coordinator, mdm, ledger):
        family = await coordinator.create_family("Smith", parent_id=1)
        code = await coordinator.request_enrollment(family.id)

        result = await coordinator.delete_family(family.id)

        assert result.external_cleanup_pending is False
        assert mdm.calls_to("delete_enrollment") == [(code.simplemdm_enrollment_id,)]
        assert await ledger.get_enrollment_code(code.id) is None

class TestVerifyAndRepair:
    @pytest.mark.asyncio
    async def test_out_of_band_unlink_is_detected_and_repaired(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        profile = await coordinator.request_assign_profile(family.id, "explorer")
        master_ref = bootstrapped[ProfileType.EXPLORER].simplemdm_profile_id
        mdm.groups[family.simplemdm_group_id]["profiles"].discard(master_ref)

        report = await coordinator.request_verify(family.id)
        assert report.in_sync is False
        assert len(report.discrepancies) == 1
        discrepancy = report.discrepancies[0]
        assert discrepancy.family_profile_id == profile.id
        assert discrepancy.kind == DiscrepancyKind.MISSING_EXTERNALLY
        assert discrepancy.external_profile_ref == master_ref

        repair = await coordinator.request_repair(family.id)
        assert repair.in_sync is True
        assert [r.success for r in repair.results] == [True]

        assert (await coordinator.request_verify(family.id)).in_sync is True
        assert len(await ledger.list_family_profiles(family.id)) == 1
        assert len(await ledger.list_master_profiles()) == 4

    @pytest.mark.asyncio
    async def test_verify_is_read_only(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "explorer")
        mdm.groups[family.simplemdm_group_id]["profiles"].clear()
        calls_before = len(mdm.calls)

        await coordinator.request_verify(family.id)

        assert [call[0] for call in mdm.calls[calls_before:]] == ["list_group_links"]

    @pytest.mark.asyncio
    async def test_repair_attempts_are_independent(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        first = await coordinator.request_assign_profile(family.id, "explorer")
        second = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        mdm.groups[family.simplemdm_group_id]["profiles"].clear()
        mdm.fail_next["link_profile_to_group"] = transient_error()

        repair = await coordinator.request_repair(family.id)

        by_id = {r.family_profile_id: r for r in repair.results}
        assert by_id[first.id].success is False
        assert by_id[first.id].retryable is True
        assert by_id[second.id].success is True
        assert repair.in_sync is False

    @pytest.mark.asyncio
    async def test_family_without_group_reports_everything_missing(self, coordinator, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "explorer")
        await ledger.set_family_group(family.id, None)

        report = await coordinator.request_verify(family.id)

        assert report.in_sync is False
        assert report.checked == 1
        assert len(report.discrepancies) == 1

    @pytest.mark.asyncio
    async def test_bulk_sync_reasserts_every_link(self, coordinator, mdm, bootstrapped):
        smith = await coordinator.create_family("Smith", parent_id=1)
        jones = await coordinator.create_family("Jones", parent_id=2)
        await coordinator.request_assign_profile(smith.id, "explorer")
        await coordinator.request_assign_profile(jones.id, "explorer")
        await coordinator.request_assign_profile(jones.id, "custom", config=CONFIG)
        for group in mdm.groups.values():
            group["profiles"].clear()

        report = await coordinator.request_bulk_sync()

        assert report.families == 2
        assert report.links_asserted == 3
        assert report.failures == []
        assert (await coordinator.request_verify(smith.id)).in_sync is True
        assert (await coordinator.request_verify(jones.id)).in_sync is True

    @pytest.mark.asyncio
    async def test_bulk_sync_collects_failures(self, coordinator, mdm, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "explorer")
        mdm.fail_always["link_profile_to_group"] = permanent_error()

        report = await coordinator.request_bulk_sync()

        assert report.links_asserted == 0
        assert len(report.failures) == 1
        assert report.failures[0].retryable is False

class TestFamilyLifecycle:
    @pytest.mark.asyncio
    async def test_create_family_creates_group_first(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)

        assert family.simplemdm_group_id in mdm.groups
        assert mdm.groups[family.simplemdm_group_id]["name"] == "Smith"

    @pytest.mark.asyncio
    async def test_group_failure_persists_nothing(self, coordinator, mdm, ledger):
        mdm.fail_next["create_group"] = transient_error()

        with pytest.raises(ExternalServiceError):
            await coordinator.create_family("Smith", parent_id=1)
        assert await ledger.list_families() == []

    @pytest.mark.asyncio
    async def test_rename_family_renames_group(self, coordinator, mdm):
        family = await coordinator.create_family("Smith", parent_id=1)

        renamed = await coordinator.rename_family(family.id, "Smith-Jones")

        assert renamed.name == "Smith-Jones"
        assert mdm.groups[family.simplemdm_group_id]["name"] == "Smith-Jones"

    @pytest.mark.asyncio
    async def test_delete_family_with_shared_and_custom_profiles(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "first_phone")
        custom = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        await coordinator.register_device(family.id, "Emma's iPhone")
        master_ref = bootstrapped[ProfileType.FIRST_PHONE].simplemdm_profile_id

        result = await coordinator.delete_family(family.id)

        assert result.external_cleanup_pending is False
        assert custom.simplemdm_profile_id in [call[0] for call in mdm.calls_to("delete_profile")]
        assert (master_ref, family.simplemdm_group_id) in mdm.calls_to("unlink_profile_from_group")
        assert master_ref not in [call[0] for call in mdm.calls_to("delete_profile")]
        assert master_ref in mdm.profiles
        assert family.simplemdm_group_id not in mdm.groups
        assert await ledger.get_family(family.id) is None
        assert await ledger.list_family_profiles(family.id) == []
        assert await ledger.list_devices(family.id) == []
        assert len(await ledger.list_master_profiles()) == 4

    @pytest.mark.asyncio
    async def test_delete_family_survives_external_outage(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "first_phone")
        await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
        for operation in ("unlink_profile_from_group", "delete_profile", "delete_group"):
            mdm.fail_always[operation] = transient_error()

        result = await coordinator.delete_family(family.id)

        assert result.success is True
        assert result.external_cleanup_pending is True
        assert len(result.warnings) == 4
        assert await ledger.get_family(family.id) is None

class TestMasterProfileBootstrap:
    @pytest.mark.asyncio
    async def test_bootstrap_is_idempotent(self, ledger, mdm):
        bootstrap = MasterProfileBootstrap(ledger, mdm)

        first = await bootstrap.bootstrap()
        second = await bootstrap.bootstrap()

        assert [e.created for e in first] == [True] * 4
        assert [e.created for e in second] == [False] * 4
        assert len(mdm.calls_to("create_profile")) == 4
        assert len(await ledger.list_master_profiles()) == 4
        assert {e.type for e in first} == {
            ProfileType.FIRST_PHONE, ProfileType.EXPLORER, ProfileType.GUARDIAN, ProfileType.TIME_OUT
        }

    @pytest.mark.asyncio
    async def test_bootstrap_reports_external_failures(self, ledger, mdm):
        mdm.fail_next["create_profile"] = transient_error()

        entries = await MasterProfileBootstrap(ledger, mdm).bootstrap()

        assert entries[0].error is not None
        assert [e.created for e in entries[1:]] == [True] * 3
        assert len(await ledger.list_master_profiles()) == 3

    @pytest.mark.asyncio
    async def test_lost_insert_race_deletes_duplicate(self, ledger, mdm):
        bootstrap = MasterProfileBootstrap(ledger, mdm)
        original_create = ledger.create_master_profile

        async def create_after_competitor(profile_type, name, description, simplemdm_profile_id):
            await original_create(profile_type, name, description, "winner-ref")
            return await original_create(profile_type, name, description, simplemdm_profile_id)

        ledger.create_master_profile = create_after_competitor
        entry = await bootstrap._ensure(ProfileType.FIRST_PHONE)

        assert entry.created is False
        assert entry.simplemdm_profile_id == "winner-ref"
        assert len(mdm.calls_to("delete_profile")) == 1
        assert mdm.profiles == {}

    @pytest.mark.asyncio
    async def test_master_delete_refused_while_in_use(self, coordinator, mdm, ledger, bootstrapped):
        family = await coordinator.create_family("Smith", parent_id=1)
        await coordinator.request_assign_profile(family.id, "explorer")
        bootstrap = MasterProfileBootstrap(ledger, mdm)

        with pytest.raises(MasterProfileInUse) as exc_info:
            await bootstrap.delete_master_profile("explorer")
        assert exc_info.value.reference_count == 1
        assert mdm.calls_to("delete_profile") == []

        result = await bootstrap.delete_master_profile("guardian")
        assert result.external_cleanup_pending is False
        assert await ledger.get_master_profile_by_type(ProfileType.GUARDIAN) is None

@pytest.mark.asyncio
async def test_local_write_failure_removes_fresh_custom_profile(coordinator, mdm, ledger):
    family = await coordinator.create_family("Smith", parent_id=1)

    async def broken_insert(*args, **kwargs):
        raise RuntimeError("database went away")

    ledger.create_family_profile = broken_insert

    with pytest.raises(RuntimeError):
        await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
    assert mdm.profiles == {}
    assert len(mdm.calls_to("unlink_profile_from_group")) == 1

@pytest.mark.asyncio
async def test_concurrent_assigns_in_one_family_are_serialized(coordinator, ledger, bootstrapped):
    family = await coordinator.create_family("Smith", parent_id=1)

    first, second = await asyncio.gather(
        coordinator.request_assign_profile(family.id, "explorer"),
        coordinator.request_assign_profile(family.id, "explorer"),
    )

    assert first.id == second.id
    assert len(await ledger.list_family_profiles(family.id)) == 1

@pytest.mark.asyncio
async def test_concurrent_reassigns_leave_device_linked_to_final_profile(coordinator, mdm, ledger):
    family = await coordinator.create_family("Smith", parent_id=1)
    first = await coordinator.request_assign_profile(family.id, "custom", name="School", config=CONFIG)
    second = await coordinator.request_assign_profile(family.id, "custom", name="Weekend", config=CONFIG)
    third = await coordinator.request_assign_profile(family.id, "custom", name="Bedtime", config=CONFIG)
    device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")
    await coordinator.request_reassign_device(device.id, first.id)

    await asyncio.gather(
        coordinator.request_reassign_device(device.id, second.id),
        coordinator.request_reassign_device(device.id, third.id),
    )

    final = await ledger.require_family_profile((await ledger.get_device(device.id)).profile_id)
    assert final.id in (second.id, third.id)
    assert mdm.device_links["dev-1"] == {final.simplemdm_profile_id}

@pytest.mark.asyncio
async def test_unassign_racing_reassign_leaves_no_link_to_removed_profile(coordinator, mdm, ledger):
    family = await coordinator.create_family("Smith", parent_id=1)
    profile = await coordinator.request_assign_profile(family.id, "custom", config=CONFIG)
    device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")

    await asyncio.gather(
        coordinator.request_reassign_device(device.id, profile.id),
        coordinator.request_unassign_profile(profile.id),
        return_exceptions=True,
    )

    assert profile.simplemdm_profile_id not in mdm.device_links.get("dev-1", set())
    assert (await ledger.get_device(device.id)).profile_id is None

@pytest.mark.asyncio
async def test_concurrent_removes_delete_device_once(coordinator, mdm, ledger):
    family = await coordinator.create_family("Smith", parent_id=1)
    device = await coordinator.register_device(family.id, "Emma's iPhone", simplemdm_device_id="dev-1")

    results = await asyncio.gather(
        coordinator.remove_device(device.id, unenroll=True),
        coordinator.remove_device(device.id, unenroll=True),
        return_exceptions=True,
    )

    assert len([r for r in results if isinstance(r, NotFoundError)]) == 1
    assert mdm.deleted_devices == ["dev-1"]

@pytest.mark.asyncio
async def test_bulk_sync_reports_busy_family_as_retryable(coordinator, mdm, ledger, bootstrapped):
    family = await coordinator.create_family("Smith", parent_id=1)
    await coordinator.request_assign_profile(family.id, "explorer")
    links_before = len(mdm.calls_to("link_profile_to_group"))

    report = await SyncCoordinator(ledger, mdm, BusySyncLocks()).request_bulk_sync()

    assert report.links_asserted == 0
    assert len(report.failures) == 1
    assert report.failures[0].family_id == family.id
    assert report.failures[0].retryable is True
    assert len(mdm.calls_to("link_profile_to_group")) == links_before
