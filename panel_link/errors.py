"""Error taxonomy shared by the store, vault and services."""

from enum import Enum


class ErrorCode(str, Enum):
    """Closed set of failure kinds reported to callers."""
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    NO_ACTIVE_CHALLENGE = "no_active_challenge"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    PROOF_MISMATCH = "proof_mismatch"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    CORRUPT_CREDENTIAL = "corrupt_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    STORAGE_FAILURE = "storage_failure"


class PanelLinkError(Exception):
    """Base exception. ``message`` is safe to show to the end user."""

    code: ErrorCode = ErrorCode.STORAGE_FAILURE
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code.value}


class PermissionDenied(PanelLinkError):
    code = ErrorCode.PERMISSION_DENIED
    status_code = 403


class NotFound(PanelLinkError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class NoActiveChallenge(NotFound):
    code = ErrorCode.NO_ACTIVE_CHALLENGE


class ChallengeExpired(PanelLinkError):
    code = ErrorCode.EXPIRED
    status_code = 410


class AlreadyUsed(PanelLinkError):
    code = ErrorCode.ALREADY_USED
    status_code = 409


class ProofMismatch(PanelLinkError):
    code = ErrorCode.PROOF_MISMATCH
    status_code = 400


class UpstreamUnavailable(PanelLinkError):
    """Panel API call failed. Always safe to retry."""
    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = 502


class CorruptCredential(PanelLinkError):
    """Stored credential can't be decrypted; the user must enter it again."""
    code = ErrorCode.CORRUPT_CREDENTIAL
    status_code = 409


class InvalidCredential(PanelLinkError):
    code = ErrorCode.INVALID_CREDENTIAL
    status_code = 400


class RateLimited(PanelLinkError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429


class StorageFailure(PanelLinkError):
    code = ErrorCode.STORAGE_FAILURE
    status_code = 500
