"""
Error taxonomy for the record sharing platform.

Every failure raised by the core carries a stable `code` and a `category`.
The ledger converts them into a `Result` at its boundary, so callers of a
ledger entry point receive typed failures instead of exceptions.
"""

from dataclasses import dataclass
from typing import Any, Optional

AUTHORIZATION = "authorization"
STATE_CONFLICT = "state_conflict"
CRYPTOGRAPHIC = "cryptographic"
NOT_FOUND = "not_found"
VALIDATION = "validation"
UNAVAILABLE = "unavailable"


class MedShareError(Exception):
    """Base class for all typed failures."""

    code = "MedShareError"
    category = VALIDATION

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {"code": self.code, "category": self.category, "message": self.message}


# Authorization
class NotOwner(MedShareError):
    code = "NotOwner"
    category = AUTHORIZATION


class RequesterNotVerified(MedShareError):
    code = "RequesterNotVerified"
    category = AUTHORIZATION


class OwnerNotVerified(MedShareError):
    code = "OwnerNotVerified"
    category = AUTHORIZATION


class UploaderNotVerified(MedShareError):
    code = "UploaderNotVerified"
    category = AUTHORIZATION


class UploaderNotAuthorized(MedShareError):
    code = "UploaderNotAuthorized"
    category = AUTHORIZATION


class ResponderNotAuthorized(MedShareError):
    code = "ResponderNotAuthorized"
    category = AUTHORIZATION


class NotRegistryAuthority(MedShareError):
    code = "NotRegistryAuthority"
    category = AUTHORIZATION


class RoleNotPermitted(MedShareError):
    code = "RoleNotPermitted"
    category = AUTHORIZATION


class AccessDenied(MedShareError):
    code = "AccessDenied"
    category = AUTHORIZATION


# State conflict
class AlreadyRegistered(MedShareError):
    code = "AlreadyRegistered"
    category = STATE_CONFLICT


class KeyAlreadySet(MedShareError):
    code = "KeyAlreadySet"
    category = STATE_CONFLICT


class NotPending(MedShareError):
    code = "NotPending"
    category = STATE_CONFLICT


class RequestExpired(MedShareError):
    code = "RequestExpired"
    category = STATE_CONFLICT


class NotExpired(MedShareError):
    code = "NotExpired"
    category = STATE_CONFLICT


class RecordExists(MedShareError):
    code = "RecordExists"
    category = STATE_CONFLICT


class RecordInvalid(MedShareError):
    code = "RecordInvalid"
    category = STATE_CONFLICT


class InvalidStatusTransition(MedShareError):
    code = "InvalidStatusTransition"
    category = STATE_CONFLICT


class RequestKindMismatch(MedShareError):
    code = "RequestKindMismatch"
    category = STATE_CONFLICT


class EmergencyEscrowUnavailable(MedShareError):
    code = "EmergencyEscrowUnavailable"
    category = STATE_CONFLICT


# Cryptographic
class DecryptionFailed(MedShareError):
    code = "DecryptionFailed"
    category = CRYPTOGRAPHIC


class UnwrapFailed(MedShareError):
    code = "UnwrapFailed"
    category = CRYPTOGRAPHIC


class InvalidEscrowWrap(MedShareError):
    code = "InvalidEscrowWrap"
    category = CRYPTOGRAPHIC


# Not found
class NotFound(MedShareError):
    code = "NotFound"
    category = NOT_FOUND


class NoKeyOnFile(MedShareError):
    code = "NoKeyOnFile"
    category = NOT_FOUND


# Validation
class InvalidAddress(MedShareError):
    code = "InvalidAddress"
    category = VALIDATION


class InvalidPatientAddress(MedShareError):
    code = "InvalidPatientAddress"
    category = VALIDATION


class InvalidRole(MedShareError):
    code = "InvalidRole"
    category = VALIDATION


class InvalidDataType(MedShareError):
    code = "InvalidDataType"
    category = VALIDATION


class InvalidPermissionKind(MedShareError):
    code = "InvalidPermissionKind"
    category = VALIDATION


class InvalidRecordStatus(MedShareError):
    code = "InvalidRecordStatus"
    category = VALIDATION


class EscrowWrapRequired(MedShareError):
    code = "EscrowWrapRequired"
    category = VALIDATION


class NotAPatient(MedShareError):
    code = "NotAPatient"
    category = VALIDATION


class InvalidPublicKey(MedShareError):
    code = "InvalidPublicKey"
    category = VALIDATION


class InvalidKey(MedShareError):
    code = "InvalidKey"
    category = VALIDATION


class IncentiveMismatch(MedShareError):
    code = "IncentiveMismatch"
    category = VALIDATION


class SelfRequest(MedShareError):
    code = "SelfRequest"
    category = VALIDATION


class RecordOwnerMismatch(MedShareError):
    code = "RecordOwnerMismatch"
    category = VALIDATION


# Blob store
class BlobIntegrityError(MedShareError):
    code = "BlobIntegrityError"
    category = CRYPTOGRAPHIC


class BlobStoreUnavailable(MedShareError):
    code = "BlobStoreUnavailable"
    category = UNAVAILABLE


@dataclass
class Result:
    """Outcome of a ledger entry point: either a value or a typed error."""

    ok: bool
    value: Any = None
    error: Optional[MedShareError] = None

    @classmethod
    def success(cls, value=None):
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: MedShareError):
        return cls(ok=False, error=error)

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def unwrap(self):
        """Return the value or raise the carried error."""
        if not self.ok:
            raise self.error
        return self.value
