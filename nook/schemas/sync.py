from enum import Enum
from typing import List, Optional
from pydantic import Field

from nook.schemas.base import BaseSchema
from nook.schemas.profile import ProfileType

class DiscrepancyKind(str, Enum):
    MISSING_EXTERNALLY = "MissingExternally"

class SyncDiscrepancy(BaseSchema):
    """Drift between the ledger and SimpleMDM for one family profile."""
    family_profile_id: int
    profile_type: ProfileType
    external_profile_ref: Optional[str] = None
    kind: DiscrepancyKind = DiscrepancyKind.MISSING_EXTERNALLY

class SyncReport(BaseSchema):
    family_id: int
    in_sync: bool
    checked: int = 0
    discrepancies: List[SyncDiscrepancy] = Field(default_factory=list)

class RepairResult(BaseSchema):
    family_profile_id: int
    success: bool
    error: Optional[str] = None
    retryable: Optional[bool] = None

class RepairReport(BaseSchema):
    family_id: int
    in_sync: bool
    results: List[RepairResult] = Field(default_factory=list)

class BulkSyncFailure(BaseSchema):
    family_id: int
    family_profile_id: Optional[int] = None
    error: str
    retryable: Optional[bool] = None

class BulkReport(BaseSchema):
    families: int = 0
    links_asserted: int = 0
    failures: List[BulkSyncFailure] = Field(default_factory=list)

class OperationResult(BaseSchema):
    """
    Outcome of a delete-style operation. The local change always happened;
    `external_cleanup_pending` means SimpleMDM may still hold stale state and a
    repair or manual cleanup is needed.
    """
    success: bool = True
    external_cleanup_pending: bool = False
    warnings: List[str] = Field(default_factory=list)
    message: str = ""

class BootstrapEntry(BaseSchema):
    type: ProfileType
    created: bool
    simplemdm_profile_id: Optional[str] = None
    error: Optional[str] = None
