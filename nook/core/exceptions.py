"""
Error taxonomy for the profile synchronization core.

The coordinator raises these; the route layer maps them to HTTP responses.
Store errors (constraint violations, lost connections) are never wrapped.
"""
from typing import Optional


class NookError(Exception):
    """Base class for every error the core raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NookError):
    """Bad type, missing field or cross-family reference. Rejected before any state change."""


class NotFoundError(NookError):
    """A referenced family, profile or device does not exist."""


class NotBootstrapped(NookError):
    """A predefined profile type was requested before its master profile exists."""

    def __init__(self, profile_type: str):
        super().__init__(
            f"Master profile '{profile_type}' has not been bootstrapped; run the master profile setup first"
        )
        self.profile_type = profile_type


class MasterProfileInUse(NookError):
    """A master profile cannot be deleted while family profiles reference it."""

    def __init__(self, profile_type: str, reference_count: int):
        super().__init__(
            f"Master profile '{profile_type}' is still used by {reference_count} family profile(s)"
        )
        self.profile_type = profile_type
        self.reference_count = reference_count


class ExternalServiceError(NookError):
    """
    A SimpleMDM call failed.

    `retryable` is True for timeouts, transport failures, rate limiting and 5xx
    responses; False for 4xx validation failures and malformed responses.
    """

    def __init__(
        self,
        message: str,
        code: str,
        retryable: bool,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after = retry_after

    def __repr__(self):
        return (
            f"ExternalServiceError(code={self.code!r}, retryable={self.retryable}, "
            f"status_code={self.status_code})"
        )


class ProfileCreationFailed(NookError):
    """Creating an individual profile in SimpleMDM failed; nothing was persisted."""

    def __init__(self, cause: ExternalServiceError):
        super().__init__(f"Could not create profile in SimpleMDM: {cause.message}")
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.cause.retryable


class OrphanCleanupFailed(NookError):
    """
    Linking a freshly created individual profile failed and so did the
    compensating delete. The ledger never recorded the profile.
    """

    def __init__(self, original: ExternalServiceError, cleanup_error: ExternalServiceError, profile_ref: str):
        super().__init__(
            f"{original.message} (cleanup of orphaned profile {profile_ref} also failed: {cleanup_error.message})"
        )
        self.original = original
        self.cleanup_error = cleanup_error
        self.profile_ref = profile_ref

    @property
    def retryable(self) -> bool:
        return self.original.retryable


class SyncLockTimeout(NookError):
    """Another request held the family's sync lock for the whole wait. Safe to retry."""

    retryable = True

    def __init__(self, family_id: int, waited: float):
        super().__init__(f"Family {family_id} is busy with another sync operation; try again shortly")
        self.family_id = family_id
        self.waited = waited
