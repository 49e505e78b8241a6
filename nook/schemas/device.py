from datetime import datetime
from typing import Optional
from pydantic import Field

from nook.schemas.base import BaseSchema

class DeviceCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=100)
    simplemdm_device_id: Optional[str] = None

class DeviceEnroll(BaseSchema):
    simplemdm_device_id: str = Field(min_length=1)
    enrollment_code: Optional[str] = Field(default=None, min_length=6, max_length=6)

class DeviceLock(BaseSchema):
    message: Optional[str] = Field(default=None, max_length=200)

class DeviceReassign(BaseSchema):
    """A null profile id clears the device's restrictions."""
    profile_id: Optional[int] = None

class Device(BaseSchema):
    id: int
    family_id: int
    name: str
    profile_id: Optional[int] = None
    simplemdm_device_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
