"""
Local source of truth for families, master profiles, family profiles and devices.

The ledger performs no network calls. It enforces the reference rules of a
family profile: a predefined type points at exactly one master profile and owns
no SimpleMDM profile, a custom profile owns exactly one and points at no master.
"""
import json
from datetime import datetime
from typing import List, Optional

import databases

from nook.core.database import database
from nook.core.exceptions import MasterProfileInUse, NotBootstrapped, NotFoundError, ValidationError
from nook.core.logging import logger
from nook.db.models import devices, enrollment_codes, families, family_profiles, master_profiles
from nook.schemas.device import Device
from nook.schemas.enrollment import EnrollmentCode
from nook.schemas.family import Family
from nook.schemas.profile import CustomProfileConfig, FamilyProfile, MasterProfile, ProfileType, parse_profile_type

def _family_from_record(record) -> Family:
    return Family(
        id=record['id'],
        name=record['name'],
        parent_id=record['parent_id'],
        simplemdm_group_id=record['simplemdm_group_id'],
        created_at=record['created_at'],
        updated_at=record['updated_at'],
    )

def _master_from_record(record) -> MasterProfile:
    return MasterProfile(
        id=record['id'],
        name=record['name'],
        type=ProfileType(record['type']),
        description=record['description'],
        simplemdm_profile_id=record['simplemdm_profile_id'],
        created_at=record['created_at'],
    )

def _family_profile_from_record(record) -> FamilyProfile:
    config = None
    if record['config']:
        config = CustomProfileConfig.model_validate(json.loads(record['config']))
    return FamilyProfile(
        id=record['id'],
        family_id=record['family_id'],
        name=record['name'],
        type=ProfileType(record['type']),
        description=record['description'],
        config=config,
        master_profile_id=record['master_profile_id'],
        simplemdm_profile_id=record['simplemdm_profile_id'],
        created_at=record['created_at'],
        updated_at=record['updated_at'],
    )

def _device_from_record(record) -> Device:
    return Device(
        id=record['id'],
        family_id=record['family_id'],
        name=record['name'],
        profile_id=record['profile_id'],
        simplemdm_device_id=record['simplemdm_device_id'],
        created_at=record['created_at'],
        updated_at=record['updated_at'],
    )

def _enrollment_code_from_record(record) -> EnrollmentCode:
    return EnrollmentCode(
        id=record['id'],
        family_id=record['family_id'],
        code=record['code'],
        url=record['simplemdm_enrollment_url'],
        simplemdm_enrollment_id=record['simplemdm_enrollment_id'],
        expires_at=record['expires_at'],
        used=bool(record['used']),
        created_at=record['created_at'],
    )

def _dump_config(config: Optional[CustomProfileConfig]) -> Optional[str]:
    if config is None:
        return None
    return json.dumps(config.model_dump(), sort_keys=True)

class AssignmentLedger:
    def __init__(self, db: databases.Database):
        self.database = db

    # Families

    async def create_family(self, name: str, parent_id: int, simplemdm_group_id: Optional[str] = None) -> Family:
        now = datetime.now()
        family_id = await self.database.execute(
            families.insert().values(
                name=name,
                parent_id=parent_id,
                simplemdm_group_id=simplemdm_group_id,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Ledger: created family {family_id} '{name}' for parent {parent_id}")
        return await self.require_family(family_id)

    async def get_family(self, family_id: int) -> Optional[Family]:
        record = await self.database.fetch_one(families.select().where(families.c.id == family_id))
        return _family_from_record(record) if record else None

    async def require_family(self, family_id: int) -> Family:
        family = await self.get_family(family_id)
        if family is None:
            raise NotFoundError(f"Family {family_id} not found")
        return family

    async def list_families(self) -> List[Family]:
        records = await self.database.fetch_all(families.select().order_by(families.c.id))
        return [_family_from_record(r) for r in records]

    async def list_families_for_parent(self, parent_id: int) -> List[Family]:
        query = families.select().where(families.c.parent_id == parent_id).order_by(families.c.id)
        records = await self.database.fetch_all(query)
        return [_family_from_record(r) for r in records]

    async def rename_family(self, family_id: int, name: str) -> Family:
        await self.require_family(family_id)
        await self.database.execute(
            families.update().where(families.c.id == family_id).values(name=name, updated_at=datetime.now())
        )
        return await self.require_family(family_id)

    async def set_family_group(self, family_id: int, simplemdm_group_id: Optional[str]) -> Family:
        await self.require_family(family_id)
        await self.database.execute(
            families.update()
            .where(families.c.id == family_id)
            .values(simplemdm_group_id=simplemdm_group_id, updated_at=datetime.now())
        )
        return await self.require_family(family_id)

    async def delete_family(self, family_id: int) -> None:
        """Remove the family with its devices and family profiles in one transaction."""
        await self.require_family(family_id)
        async with self.database.transaction():
            await self.database.execute(enrollment_codes.delete().where(enrollment_codes.c.family_id == family_id))
            await self.database.execute(devices.delete().where(devices.c.family_id == family_id))
            await self.database.execute(family_profiles.delete().where(family_profiles.c.family_id == family_id))
            await self.database.execute(families.delete().where(families.c.id == family_id))
        logger.info(f"Ledger: deleted family {family_id}")

    # Master profiles

    async def get_master_profile(self, master_profile_id: int) -> Optional[MasterProfile]:
        record = await self.database.fetch_one(
            master_profiles.select().where(master_profiles.c.id == master_profile_id)
        )
        return _master_from_record(record) if record else None

    async def get_master_profile_by_type(self, profile_type: ProfileType) -> Optional[MasterProfile]:
        record = await self.database.fetch_one(
            master_profiles.select().where(master_profiles.c.type == ProfileType(profile_type).value)
        )
        return _master_from_record(record) if record else None

    async def list_master_profiles(self) -> List[MasterProfile]:
        records = await self.database.fetch_all(master_profiles.select().order_by(master_profiles.c.id))
        return [_master_from_record(r) for r in records]

    async def create_master_profile(
        self, profile_type: ProfileType, name: str, description: Optional[str], simplemdm_profile_id: str
    ) -> MasterProfile:
        profile_type = parse_profile_type(profile_type)
        if not profile_type.is_predefined:
            raise ValidationError("Custom profiles have no master profile")
        if not simplemdm_profile_id:
            raise ValidationError("A master profile needs a SimpleMDM profile reference")
        if await self.get_master_profile_by_type(profile_type):
            raise ValidationError(f"Master profile '{profile_type.value}' already exists")
        master_id = await self.database.execute(
            master_profiles.insert().values(
                name=name,
                type=profile_type.value,
                description=description,
                simplemdm_profile_id=simplemdm_profile_id,
                created_at=datetime.now(),
            )
        )
        logger.info(f"Ledger: recorded master profile '{profile_type.value}' -> {simplemdm_profile_id}")
        return await self.get_master_profile(master_id)

    async def count_master_profile_references(self, master_profile_id: int) -> int:
        records = await self.database.fetch_all(
            family_profiles.select().where(family_profiles.c.master_profile_id == master_profile_id)
        )
        return len(records)

    async def delete_master_profile(self, master_profile_id: int) -> None:
        master = await self.get_master_profile(master_profile_id)
        if master is None:
            raise NotFoundError(f"Master profile {master_profile_id} not found")
        references = await self.count_master_profile_references(master_profile_id)
        if references:
            raise MasterProfileInUse(master.type.value, references)
        await self.database.execute(master_profiles.delete().where(master_profiles.c.id == master_profile_id))
        logger.info(f"Ledger: deleted master profile '{master.type.value}'")

    # Family profiles

    async def create_family_profile(
        self,
        family_id: int,
        profile_type: ProfileType,
        name: str,
        config: Optional[CustomProfileConfig] = None,
        description: Optional[str] = None,
        simplemdm_profile_id: Optional[str] = None,
    ) -> FamilyProfile:
        profile_type = parse_profile_type(profile_type)
        await self.require_family(family_id)

        master_profile_id = None
        if profile_type.is_predefined:
            if simplemdm_profile_id is not None:
                raise ValidationError("Predefined profiles use the shared master profile, not their own")
            master = await self.get_master_profile_by_type(profile_type)
            if master is None:
                raise NotBootstrapped(profile_type.value)
            if await self.find_family_profile_by_type(family_id, profile_type):
                raise ValidationError(f"Family {family_id} already has a '{profile_type.value}' profile")
            master_profile_id = master.id
            config = None
        elif not simplemdm_profile_id:
            raise ValidationError("Custom profiles require their own SimpleMDM profile reference")

        now = datetime.now()
        profile_id = await self.database.execute(
            family_profiles.insert().values(
                family_id=family_id,
                name=name,
                type=profile_type.value,
                description=description,
                config=_dump_config(config),
                master_profile_id=master_profile_id,
                simplemdm_profile_id=simplemdm_profile_id,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Ledger: created {profile_type.value} profile {profile_id} for family {family_id}")
        return await self.require_family_profile(profile_id)

    async def get_family_profile(self, family_profile_id: int) -> Optional[FamilyProfile]:
        record = await self.database.fetch_one(
            family_profiles.select().where(family_profiles.c.id == family_profile_id)
        )
        return _family_profile_from_record(record) if record else None

    async def require_family_profile(self, family_profile_id: int) -> FamilyProfile:
        profile = await self.get_family_profile(family_profile_id)
        if profile is None:
            raise NotFoundError(f"Profile {family_profile_id} not found")
        return profile

    async def list_family_profiles(self, family_id: int) -> List[FamilyProfile]:
        query = family_profiles.select().where(family_profiles.c.family_id == family_id).order_by(family_profiles.c.id)
        records = await self.database.fetch_all(query)
        return [_family_profile_from_record(r) for r in records]

    async def list_all_family_profiles(self) -> List[FamilyProfile]:
        records = await self.database.fetch_all(family_profiles.select().order_by(family_profiles.c.id))
        return [_family_profile_from_record(r) for r in records]

    async def find_family_profile_by_type(self, family_id: int, profile_type: ProfileType) -> Optional[FamilyProfile]:
        query = family_profiles.select().where(
            (family_profiles.c.family_id == family_id) & (family_profiles.c.type == ProfileType(profile_type).value)
        )
        record = await self.database.fetch_one(query)
        return _family_profile_from_record(record) if record else None

    async def update_family_profile(
        self,
        family_profile_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        config: Optional[CustomProfileConfig] = None,
    ) -> FamilyProfile:
        profile = await self.require_family_profile(family_profile_id)
        values = {"updated_at": datetime.now()}
        if name is not None:
            values["name"] = name
        if description is not None:
            values["description"] = description
        if config is not None:
            if profile.type is not ProfileType.CUSTOM:
                raise ValidationError("Only custom profiles carry a configuration")
            values["config"] = _dump_config(config)
        await self.database.execute(
            family_profiles.update().where(family_profiles.c.id == family_profile_id).values(**values)
        )
        return await self.require_family_profile(family_profile_id)

    async def delete_family_profile(self, family_profile_id: int) -> None:
        await self.require_family_profile(family_profile_id)
        async with self.database.transaction():
            await self.database.execute(
                devices.update()
                .where(devices.c.profile_id == family_profile_id)
                .values(profile_id=None, updated_at=datetime.now())
            )
            await self.database.execute(family_profiles.delete().where(family_profiles.c.id == family_profile_id))
        logger.info(f"Ledger: deleted profile {family_profile_id}")

    async def resolve_external_profile_ref(self, profile: FamilyProfile) -> str:
        """The SimpleMDM profile a family profile stands for."""
        if profile.is_shared:
            master = await self.get_master_profile(profile.master_profile_id)
            if master is None:
                raise NotFoundError(f"Master profile {profile.master_profile_id} not found")
            return master.simplemdm_profile_id
        return profile.simplemdm_profile_id

    # Devices

    async def create_device(self, family_id: int, name: str, simplemdm_device_id: Optional[str] = None) -> Device:
        await self.require_family(family_id)
        now = datetime.now()
        device_id = await self.database.execute(
            devices.insert().values(
                family_id=family_id,
                name=name,
                simplemdm_device_id=simplemdm_device_id,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(f"Ledger: registered device {device_id} in family {family_id}")
        return await self.require_device(device_id)

    async def get_device(self, device_id: int) -> Optional[Device]:
        record = await self.database.fetch_one(devices.select().where(devices.c.id == device_id))
        return _device_from_record(record) if record else None

    async def require_device(self, device_id: int) -> Device:
        device = await self.get_device(device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        return device

    async def list_devices(self, family_id: int) -> List[Device]:
        records = await self.database.fetch_all(
            devices.select().where(devices.c.family_id == family_id).order_by(devices.c.id)
        )
        return [_device_from_record(r) for r in records]

    async def list_devices_for_profile(self, family_profile_id: int) -> List[Device]:
        records = await self.database.fetch_all(
            devices.select().where(devices.c.profile_id == family_profile_id).order_by(devices.c.id)
        )
        return [_device_from_record(r) for r in records]

    async def reassign_device(self, device_id: int, family_profile_id: Optional[int]) -> Device:
        device = await self.require_device(device_id)
        if family_profile_id is not None:
            profile = await self.require_family_profile(family_profile_id)
            if profile.family_id != device.family_id:
                raise ValidationError(
                    f"Profile {family_profile_id} does not belong to the family of device {device_id}"
                )
        await self.database.execute(
            devices.update()
            .where(devices.c.id == device_id)
            .values(profile_id=family_profile_id, updated_at=datetime.now())
        )
        return await self.require_device(device_id)

    async def set_device_external_ref(self, device_id: int, simplemdm_device_id: Optional[str]) -> Device:
        await self.require_device(device_id)
        await self.database.execute(
            devices.update()
            .where(devices.c.id == device_id)
            .values(simplemdm_device_id=simplemdm_device_id, updated_at=datetime.now())
        )
        return await self.require_device(device_id)

    async def delete_device(self, device_id: int) -> None:
        await self.require_device(device_id)
        await self.database.execute(devices.delete().where(devices.c.id == device_id))
        logger.info(f"Ledger: deleted device {device_id}")

    # Enrollment codes

    async def create_enrollment_code(
        self, family_id: int, code: str, enrollment_ref: str, url: str, expires_at: datetime
    ) -> EnrollmentCode:
        await self.require_family(family_id)
        code_id = await self.database.execute(
            enrollment_codes.insert().values(
                family_id=family_id,
                code=code,
                simplemdm_enrollment_id=enrollment_ref,
                simplemdm_enrollment_url=url,
                expires_at=expires_at,
                used=False,
                created_at=datetime.now(),
            )
        )
        logger.info(f"Ledger: enrollment code {code_id} issued for family {family_id}")
        return await self.get_enrollment_code(code_id)

    async def get_enrollment_code(self, enrollment_code_id: int) -> Optional[EnrollmentCode]:
        record = await self.database.fetch_one(
            enrollment_codes.select().where(enrollment_codes.c.id == enrollment_code_id)
        )
        return _enrollment_code_from_record(record) if record else None

    async def find_enrollment_code(self, code: str) -> Optional[EnrollmentCode]:
        """Most recent enrollment with this code; codes are short and may repeat over time."""
        record = await self.database.fetch_one(
            enrollment_codes.select()
            .where(enrollment_codes.c.code == code)
            .order_by(enrollment_codes.c.id.desc())
        )
        return _enrollment_code_from_record(record) if record else None

    async def list_enrollment_codes(self, family_id: int) -> List[EnrollmentCode]:
        records = await self.database.fetch_all(
            enrollment_codes.select()
            .where(enrollment_codes.c.family_id == family_id)
            .order_by(enrollment_codes.c.id.desc())
        )
        return [_enrollment_code_from_record(r) for r in records]

    async def mark_enrollment_code_used(self, enrollment_code_id: int) -> EnrollmentCode:
        if await self.get_enrollment_code(enrollment_code_id) is None:
            raise NotFoundError(f"Enrollment code {enrollment_code_id} not found")
        await self.database.execute(
            enrollment_codes.update().where(enrollment_codes.c.id == enrollment_code_id).values(used=True)
        )
        return await self.get_enrollment_code(enrollment_code_id)

assignment_ledger = AssignmentLedger(database)
