import base64
import logging
import time
from typing import Optional, Tuple

from pydantic import ValidationError

from medshare.crypto import aes
from medshare.crypto.key_manager import unwrap_b64, wrap_b64
from medshare.errors import DecryptionFailed
from medshare.ipfs_helper import BlobStore
from medshare.ledger import Ledger
from medshare.models import UploadEnvelope
from medshare.roles import DataType

logger = logging.getLogger(__name__)


def seal_record(content, file_name: str, file_type: str, data_type: DataType, owner_public_key,
                escrow_public_key=None, now: Optional[int] = None) -> Tuple[bytes, str, Optional[str]]:
    """
    Encrypt a record under a fresh key and build its upload envelope

    Args:
        content: Plaintext bytes (or str)
        file_name: Original file name
        file_type: MIME type of the content
        data_type: Kind of health data
        owner_public_key: The owner's RSA public key
        escrow_public_key: Emergency escrow public key, None to leave the record out of emergency access
        now: Envelope timestamp

    Returns:
        tuple: (envelope bytes, owner wrapped key, escrow wrapped key or None)
    """
    ciphertext, key = aes.encrypt(content)
    envelope = UploadEnvelope(
        fileName=file_name,
        fileType=file_type,
        dataType=DataType(data_type),
        encryptedContent=base64.b64encode(ciphertext).decode('ascii'),
        timestamp=int(time.time()) if now is None else now,
    )
    owner_wrapped = wrap_b64(key, owner_public_key)
    escrow_wrapped = wrap_b64(key, escrow_public_key) if escrow_public_key is not None else None
    return envelope.model_dump_json().encode(), owner_wrapped, escrow_wrapped


def parse_envelope(envelope_bytes: bytes) -> UploadEnvelope:
    try:
        return UploadEnvelope.model_validate_json(envelope_bytes)
    except ValidationError as e:
        raise DecryptionFailed(f"Malformed upload envelope: {e.error_count()} error(s)")


def open_envelope(envelope_bytes: bytes, wrapped_key: str, private_key) -> Tuple[UploadEnvelope, bytes]:
    """Unwrap the record key with `private_key` and decrypt the envelope content"""
    envelope = parse_envelope(envelope_bytes)
    key = unwrap_b64(wrapped_key, private_key)
    try:
        ciphertext = base64.b64decode(envelope.encryptedContent, validate=True)
    except ValueError:
        raise DecryptionFailed("Envelope content is not valid base64")
    return envelope, aes.decrypt(ciphertext, key)


class RecordClient:
    """Client-side upload and download workflow over a ledger and a blob store"""

    def __init__(self, ledger: Ledger, blob_store: BlobStore, escrow_public_key=None):
        self.ledger = ledger
        self.blob_store = blob_store
        self.escrow_public_key = escrow_public_key
        if escrow_public_key is None and ledger.emergency_escrow is not None:
            self.escrow_public_key = ledger.emergency_escrow.public_key

    def upload_record(self, uploader: str, owner: str, content, file_name: str, file_type: str,
                      data_type: DataType = DataType.EHR) -> str:
        """
        Encrypt content for `owner`, store the envelope and register it in the catalog

        Returns:
            str: The record id

        Raises:
            MedShareError: any typed failure from the ledger or the blob store
        """
        owner_public_key = self.ledger.get_public_key(owner).unwrap()
        envelope, owner_wrapped, escrow_wrapped = seal_record(
            content, file_name, file_type, data_type, owner_public_key,
            escrow_public_key=self.escrow_public_key,
        )
        content_ref = self.blob_store.put(envelope)
        result = self.ledger.put_record(uploader, owner, data_type, content_ref, owner_wrapped, escrow_wrapped)
        if not result.ok:
            logger.warning(f"Blob {content_ref} stored but not catalogued: {result.code}")
        return result.unwrap()

    def download_record(self, caller: str, record_id: str, private_key) -> Tuple[UploadEnvelope, bytes]:
        wrapped_key = self.ledger.get_wrapped_key(caller, record_id).unwrap()
        envelope_bytes = self.blob_store.get(record_id)
        return open_envelope(envelope_bytes, wrapped_key, private_key)

