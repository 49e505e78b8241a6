from datetime import datetime
from typing import Optional
from pydantic import Field

from nook.schemas.base import BaseSchema

class FamilyBase(BaseSchema):
    """Base schema for family data."""
    name: str = Field(min_length=1, max_length=100)

class FamilyCreate(FamilyBase):
    """Schema for creating a new family."""
    pass

class FamilyUpdate(FamilyBase):
    """Schema for renaming a family."""
    pass

class Family(FamilyBase):
    """Schema for family response data."""
    id: int
    parent_id: int
    simplemdm_group_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
