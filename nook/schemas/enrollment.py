from datetime import datetime
from typing import Optional

from nook.schemas.base import BaseSchema

class EnrollmentCode(BaseSchema):
    """A short code a child's device redeems for the family's SimpleMDM enrollment url."""
    id: int
    family_id: int
    code: str
    url: str
    simplemdm_enrollment_id: str
    expires_at: datetime
    used: bool = False
    created_at: Optional[datetime] = None

class EnrollmentValidation(BaseSchema):
    valid: bool
    family_id: int
    family_name: str
    url: str
    expires_at: datetime
