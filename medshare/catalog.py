"""
Record catalog mapping content references to record metadata and to the
record key wrapped for the owner.
"""

from typing import Iterator, Optional

from medshare.crypto.key_manager import EmergencyKeyEscrow
from medshare.errors import (
    EscrowWrapRequired, InvalidDataType, InvalidRecordStatus, InvalidStatusTransition, NotAPatient,
    NotFound, NotOwner, OwnerNotVerified, RecordExists, UploaderNotAuthorized, UploaderNotVerified,
)
from medshare.identity import IdentityRegistry
from medshare.models import LedgerState, Record
from medshare.roles import DataType, RecordStatus, Role, RECORD_STATUS_ORDER, can_upload_for_patient, parse_enum


class RecordCatalog:
    def __init__(self, state: LedgerState, registry: IdentityRegistry,
                 escrow_key: Optional[EmergencyKeyEscrow] = None):
        self.state = state
        self.registry = registry
        # With an escrow authority configured every record must be recoverable in an emergency
        self.escrow_key = escrow_key

    def put(self, owner: str, uploader: str, data_type: DataType, content_ref: str,
            owner_wrapped_key: str, escrow_wrapped_key: Optional[str] = None, now: int = 0) -> str:
        """
        Register a record in the catalog

        Args:
            owner: The patient owning the record
            uploader: The address submitting the record (owner or a care provider)
            data_type: Kind of health data
            content_ref: Blob store reference of the encrypted envelope
            owner_wrapped_key: base64 record key wrapped for the owner
            escrow_wrapped_key: base64 record key wrapped for the emergency escrow,
                required and checked when an escrow authority is configured
            now: Creation timestamp

        Returns:
            The record id (the content reference)
        """
        data_type = parse_enum(DataType, data_type, InvalidDataType)
        if not self.registry.is_verified(owner):
            raise OwnerNotVerified(f"Owner {owner} is not verified")
        if not self.registry.is_verified(uploader):
            raise UploaderNotVerified(f"Uploader {uploader} is not verified")

        owner_user = self.registry.get_user(owner)
        if owner_user.role is not Role.PATIENT:
            raise NotAPatient(f"Records are owned by patients, {owner} is {owner_user.role.value}")
        if uploader != owner and not can_upload_for_patient(self.registry.get_user(uploader).role):
            raise UploaderNotAuthorized(f"{uploader} may not upload records for {owner}")

        if content_ref in self.state.records:
            raise RecordExists(f"Record {content_ref} already exists")

        if self.escrow_key is not None:
            if not escrow_wrapped_key:
                raise EscrowWrapRequired(f"Record {content_ref} has no emergency escrow wrap")
            self.escrow_key.check_wrap(escrow_wrapped_key)

        self.state.records[content_ref] = Record(
            id=content_ref,
            owner=owner,
            uploader=uploader,
            data_type=data_type,
            owner_wrapped_key=owner_wrapped_key,
            escrow_wrapped_key=escrow_wrapped_key,
            created_at=now,
        )
        self.state.owner_records.setdefault(owner, []).append(content_ref)
        if uploader != owner:
            self.state.uploader_records.setdefault(uploader, []).append(content_ref)
        return content_ref

    def get(self, record_id: str) -> Record:
        record = self.state.records.get(record_id)
        if record is None:
            raise NotFound(f"Record {record_id} not found")
        return record

    def exists(self, record_id: str) -> bool:
        return record_id in self.state.records

    def list_by_owner(self, owner: str) -> Iterator[Record]:
        """Records owned by `owner`, in upload order"""
        for record_id in self.state.owner_records.get(owner, []):
            yield self.state.records[record_id]

    def list_by_uploader(self, uploader: str) -> Iterator[Record]:
        """Records a care provider uploaded on behalf of patients"""
        for record_id in self.state.uploader_records.get(uploader, []):
            yield self.state.records[record_id]

    def _require_custodian(self, record: Record, caller: str):
        if caller != record.owner and caller != record.uploader:
            raise NotOwner(f"{caller} is neither owner nor uploader of {record.id}")

    def advance_status(self, caller: str, record_id: str, status: RecordStatus) -> Record:
        record = self.get(record_id)
        self._require_custodian(record, caller)
        status = parse_enum(RecordStatus, status, InvalidRecordStatus)
        if record.status is RecordStatus.INVALID or status is RecordStatus.INVALID:
            raise InvalidStatusTransition(f"Cannot move {record.id} from {record.status.value} to {status.value}")
        if RECORD_STATUS_ORDER.index(status) <= RECORD_STATUS_ORDER.index(record.status):
            raise InvalidStatusTransition(f"Record status only moves forward, {record.status.value} -> {status.value}")
        record.status = status
        return record

    def invalidate(self, caller: str, record_id: str) -> Record:
        record = self.get(record_id)
        self._require_custodian(record, caller)
        if record.status is RecordStatus.INVALID:
            raise InvalidStatusTransition(f"Record {record.id} is already invalid")
        record.status = RecordStatus.INVALID
        return record
