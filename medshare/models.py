from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Any

from medshare.roles import Role, DataType, PermissionKind, RequestStatus, RecordStatus


class User(BaseModel):
    """Registered identity; role is fixed once set"""
    address: str
    role: Role = Role.NONE
    verified: bool = False
    active: bool = True
    public_key: str = ""  # base64 SPKI DER, empty when no key on file
    emergency_capable: bool = False
    registered_at: int = 0


class Record(BaseModel):
    """Catalog entry for an encrypted blob"""
    id: str  # content reference in the blob store
    owner: str
    uploader: str
    data_type: DataType
    owner_wrapped_key: str  # base64, record key wrapped for the owner
    escrow_wrapped_key: Optional[str] = None  # base64, wrapped for the emergency escrow
    created_at: int
    status: RecordStatus = RecordStatus.PENDING


class PermissionRequest(BaseModel):
    """Request by a grantee for one record, or for all records when record_ref is empty"""
    id: str
    requester: str
    owner: str
    record_ref: str = ""
    kind: PermissionKind = PermissionKind.VIEW
    incentive_based: bool = False
    incentive_amount: int = 0
    status: RequestStatus = RequestStatus.PENDING
    requested_at: int
    expires_at: int
    decided_at: Optional[int] = None
    granted_records: List[str] = Field(default_factory=list)

    @property
    def is_batch(self) -> bool:
        return self.record_ref == ""


class GrantedAccess(BaseModel):
    """Record key wrapped for one grantee"""
    owner: str
    grantee: str
    record_ref: str
    data_type: DataType
    grantee_wrapped_key: str  # base64
    granted_at: int
    expires_at: int
    request_id: Optional[str] = None
    emergency: bool = False


class EmergencyGrant(BaseModel):
    """Standing emergency override of one responder over one patient"""
    responder: str
    patient: str
    active: bool = True
    granted_at: int
    expires_at: int
    record_refs: List[str] = Field(default_factory=list)
    skipped_records: List[str] = Field(default_factory=list)


class EmergencyLogEntry(BaseModel):
    """Append-only audit line for an emergency grant"""
    responder: str
    patient: str
    timestamp: int
    record_refs: List[str] = Field(default_factory=list)
    prev_hash: str
    entry_hash: str


class LedgerEvent(BaseModel):
    """Hash-chained record of one committed transition"""
    seq: int
    timestamp: int
    caller: str
    command: str
    details: Dict[str, Any] = Field(default_factory=dict)
    prev_hash: str
    hash: str


class LedgerState(BaseModel):
    """Authoritative state held by the ledger store"""
    users: Dict[str, User] = Field(default_factory=dict)
    records: Dict[str, Record] = Field(default_factory=dict)
    owner_records: Dict[str, List[str]] = Field(default_factory=dict)
    uploader_records: Dict[str, List[str]] = Field(default_factory=dict)
    requests: Dict[str, PermissionRequest] = Field(default_factory=dict)
    grants: Dict[str, GrantedAccess] = Field(default_factory=dict)
    emergency_access: Dict[str, GrantedAccess] = Field(default_factory=dict)
    emergency_grants: Dict[str, EmergencyGrant] = Field(default_factory=dict)
    emergency_log: List[EmergencyLogEntry] = Field(default_factory=list)
    escrow: Dict[str, int] = Field(default_factory=dict)
    balances: Dict[str, int] = Field(default_factory=dict)
    events: List[LedgerEvent] = Field(default_factory=list)
    next_request_id: int = 1


class UploadEnvelope(BaseModel):
    """Metadata persisted next to the ciphertext in the blob store"""
    fileName: str
    fileType: str
    dataType: DataType
    encryptedContent: str  # base64 of nonce || ciphertext || tag
    timestamp: int


# API request bodies

class RegisterRequest(BaseModel):
    wallet_address: str
    role: Role
    public_key: str = ""


class AuthorityRequest(BaseModel):
    wallet_address: str
    address: str


class PublicKeyRequest(BaseModel):
    wallet_address: str
    public_key: str


class RecordPutRequest(BaseModel):
    wallet_address: str
    owner: str
    data_type: DataType
    content_ref: str
    owner_wrapped_key: str
    escrow_wrapped_key: Optional[str] = None


class RecordStatusRequest(BaseModel):
    wallet_address: str
    status: RecordStatus


class PermissionRequestBody(BaseModel):
    wallet_address: str
    owner: str
    record_ref: str
    kind: PermissionKind = PermissionKind.VIEW
    incentive_amount: int = 0
    value: int = 0


class BatchRequestBody(BaseModel):
    wallet_address: str
    owner: str
    kind: PermissionKind = PermissionKind.VIEW
    incentive_amount: int = 0
    value: int = 0


class ApproveRequest(BaseModel):
    wallet_address: str
    owner_private_key: str  # PEM or base64 PKCS8 DER; used for this call only


class CallerRequest(BaseModel):
    wallet_address: str


class RevokeRequest(BaseModel):
    wallet_address: str
    grantee: str
    record_ref: str


class EmergencyRequest(BaseModel):
    wallet_address: str
    patient: str


class EndEmergencyRequest(BaseModel):
    wallet_address: str
    responder: str
    patient: str
