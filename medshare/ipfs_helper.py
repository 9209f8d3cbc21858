"""
Blob stores for encrypted record envelopes.

The ledger only keeps content references; the envelopes themselves live in
a blob store. IPFSBlobStore talks to an IPFS daemon over its HTTP API,
LocalBlobStore keeps content-addressed files on disk for development and
tests.
"""

import os
import hashlib
import logging
from abc import ABC, abstractmethod

import requests

from medshare.constants import IPFS_API_URL, IPFS_TIMEOUT, LOCAL_STORAGE_DIR
from medshare.errors import BlobIntegrityError, BlobStoreUnavailable, NotFound

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    @abstractmethod
    def put(self, data: bytes) -> str:
        """Store bytes and return their content reference"""

    @abstractmethod
    def get(self, content_ref: str) -> bytes:
        """Bytes stored under a content reference"""


class LocalBlobStore(BlobStore):
    """Files named by the sha256 of their content"""

    def __init__(self, storage_dir=LOCAL_STORAGE_DIR):
        self.blob_dir = os.path.join(storage_dir, "blobs")

    def put(self, data: bytes) -> str:
        content_ref = hashlib.sha256(data).hexdigest()
        os.makedirs(self.blob_dir, exist_ok=True)
        with open(os.path.join(self.blob_dir, content_ref), "wb") as f:
            f.write(data)
        logger.info(f"Stored {len(data)} bytes locally as {content_ref}")
        return content_ref

    def get(self, content_ref: str) -> bytes:
        path = os.path.join(self.blob_dir, os.path.basename(content_ref))
        if not os.path.exists(path):
            raise NotFound(f"Blob {content_ref} not found in local storage")
        with open(path, "rb") as f:
            data = f.read()
        if hashlib.sha256(data).hexdigest() != content_ref:
            raise BlobIntegrityError(f"Blob {content_ref} does not match its hash")
        return data


class IPFSBlobStore(BlobStore):
    """
    Blob store backed by the IPFS HTTP API.

    Connection failures raise BlobStoreUnavailable so the caller can retry;
    the ledger is never touched by this class.
    """

    def __init__(self, api_url=IPFS_API_URL, timeout=IPFS_TIMEOUT, pin=True):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.pin = pin

    def _post(self, endpoint, **kwargs):
        try:
            response = requests.post(f"{self.api_url}/{endpoint}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise BlobStoreUnavailable(f"IPFS API unreachable at {self.api_url}: {e}")
        if response.status_code != 200:
            raise BlobStoreUnavailable(f"IPFS {endpoint} failed: {response.status_code} - {response.text}")
        return response

    def put(self, data: bytes) -> str:
        response = self._post("add", files={"file": data})
        cid = response.json()["Hash"]
        logger.info(f"Stored {len(data)} bytes on IPFS with CID: {cid}")
        if self.pin:
            self.pin_cid(cid)
        return cid

    def pin_cid(self, cid: str):
        self._post("pin/add", params={"arg": cid})
        logger.debug(f"Pinned content with CID: {cid}")

    def get(self, content_ref: str) -> bytes:
        return self._post("cat", params={"arg": content_ref}).content

    def is_available(self) -> bool:
        try:
            self._post("id")
        except BlobStoreUnavailable:
            return False
        return True
