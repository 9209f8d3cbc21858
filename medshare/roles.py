"""
Role and status types for the record sharing platform.

Roles are a closed set. Access-control decisions that depend on a role are
made only by the predicates in this module, each of which matches every
role explicitly.
"""

from enum import Enum


class Role(str, Enum):
    NONE = "none"
    PATIENT = "patient"
    PROVIDER = "provider"
    RESEARCHER = "researcher"
    HOSPITAL = "hospital"
    INSURER = "insurer"
    AMBULANCE = "ambulance"
    PHARMACY = "pharmacy"
    LAB = "lab"


class DataType(str, Enum):
    EHR = "EHR"
    PHR = "PHR"
    LAB_RESULT = "LAB_RESULT"
    PRESCRIPTION = "PRESCRIPTION"
    IMAGING = "IMAGING"
    INSURANCE_CLAIM = "INSURANCE_CLAIM"
    EMERGENCY_RECORD = "EMERGENCY_RECORD"


class PermissionKind(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    EMERGENCY = "emergency"
    INSURANCE_PROCESSING = "insurance_processing"
    LAB_PROCESSING = "lab_processing"
    PRESCRIPTION_PROCESSING = "prescription_processing"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RecordStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    VALID = "valid"
    INVALID = "invalid"


def parse_enum(enum_type, value, error_type):
    """Coerce `value` to `enum_type`, raising `error_type` for values outside the set"""
    try:
        return enum_type(value)
    except ValueError:
        raise error_type(f"Unknown {enum_type.__name__}: {value!r}")


# Forward order of record statuses; INVALID is reachable only by invalidation
RECORD_STATUS_ORDER = [RecordStatus.PENDING, RecordStatus.COMPLETED, RecordStatus.VALID]


def can_request_access(role: Role) -> bool:
    """Whether a user holding `role` may ask a patient for access to records."""
    if role is Role.PROVIDER or role is Role.RESEARCHER or role is Role.HOSPITAL:
        return True
    if role is Role.INSURER or role is Role.AMBULANCE or role is Role.PHARMACY or role is Role.LAB:
        return True
    if role is Role.PATIENT or role is Role.NONE:
        return False
    raise ValueError(f"Unknown role: {role}")


def can_upload_for_patient(role: Role) -> bool:
    """Whether a user holding `role` may upload a record owned by someone else."""
    if role is Role.PROVIDER or role is Role.HOSPITAL or role is Role.LAB:
        return True
    if role is Role.PHARMACY or role is Role.AMBULANCE:
        return True
    if role is Role.PATIENT or role is Role.RESEARCHER or role is Role.INSURER or role is Role.NONE:
        return False
    raise ValueError(f"Unknown role: {role}")


def is_emergency_responder(role: Role, emergency_capable: bool) -> bool:
    """Ambulances always qualify; providers only once designated by the registry authority."""
    if role is Role.AMBULANCE:
        return True
    if role is Role.PROVIDER:
        return emergency_capable
    if role is Role.PATIENT or role is Role.RESEARCHER or role is Role.HOSPITAL:
        return False
    if role is Role.INSURER or role is Role.PHARMACY or role is Role.LAB or role is Role.NONE:
        return False
    raise ValueError(f"Unknown role: {role}")
