from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union
from pydantic import Field

from nook.core.exceptions import ValidationError
from nook.schemas.base import BaseSchema

class ProfileType(str, Enum):
    """Closed set of profile types. Every predefined member needs a master profile and a generator."""
    FIRST_PHONE = "first_phone"
    EXPLORER = "explorer"
    GUARDIAN = "guardian"
    TIME_OUT = "time_out"
    CUSTOM = "custom"

    @property
    def is_predefined(self) -> bool:
        return self is not ProfileType.CUSTOM

PREDEFINED_PROFILE_TYPES = tuple(t for t in ProfileType if t.is_predefined)

def parse_profile_type(value: Union[str, ProfileType]) -> ProfileType:
    """Whitelist check for incoming type strings."""
    try:
        return ProfileType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in ProfileType)
        raise ValidationError(f"Invalid profile type '{value}'. Must be one of: {allowed}")

class CustomProfileConfig(BaseSchema):
    """Parent-specified restrictions for a custom profile."""
    allowed_apps: List[str] = Field(default_factory=list, alias="allowedApps")
    restrictions: Dict[str, Union[bool, int, str]] = Field(default_factory=dict)

class MasterProfile(BaseSchema):
    id: int
    name: str
    type: ProfileType
    description: Optional[str] = None
    simplemdm_profile_id: str
    created_at: Optional[datetime] = None

class FamilyProfile(BaseSchema):
    """A profile in use by a family: shared through a master profile, or individual when custom."""
    id: int
    family_id: int
    name: str
    type: ProfileType
    description: Optional[str] = None
    config: Optional[CustomProfileConfig] = None
    master_profile_id: Optional[int] = None
    simplemdm_profile_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_shared(self) -> bool:
        return self.master_profile_id is not None

class ProfileAssignRequest(BaseSchema):
    """Schema for adding a profile to a family."""
    type: str
    name: Optional[str] = None
    description: Optional[str] = None
    config: Optional[CustomProfileConfig] = None

class ProfileUpdateRequest(BaseSchema):
    """Schema for renaming a profile or changing a custom profile's restrictions."""
    name: Optional[str] = None
    description: Optional[str] = None
    config: Optional[CustomProfileConfig] = None
