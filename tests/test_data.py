import json
import unittest
from unittest import mock

import pytest
import requests

from medshare.data import RecordClient, open_envelope, seal_record
from medshare.errors import (
    AccessDenied, BlobIntegrityError, BlobStoreUnavailable, DecryptionFailed, MedShareError, NotFound, UnwrapFailed,
)
from medshare.ipfs_helper import BlobStore, IPFSBlobStore, LocalBlobStore
from medshare.roles import DataType

from helpers import LedgerSetUpMixin, TEST_ACCOUNTS, escrow_authority, rsa_private_key, rsa_public_key_b64

TEST_RECORD = json.dumps({
    "patientID": "123",
    "date": "2025-04-18",
    "diagnosis": "Hypertension",
    "notes": "Patient advised to monitor blood pressure daily."
}).encode()


class TestEnvelope(unittest.TestCase):
    def test_seal_and_open(self):
        envelope, owner_wrapped, escrow_wrapped = seal_record(
            TEST_RECORD, "visit.json", "application/json", DataType.EHR,
            rsa_public_key_b64("patient"), escrow_public_key=escrow_authority().public_key, now=1700000000,
        )
        body = json.loads(envelope)
        self.assertEqual(body["fileName"], "visit.json")
        self.assertEqual(body["dataType"], "EHR")
        self.assertEqual(body["timestamp"], 1700000000)
        self.assertNotIn(b"Hypertension", envelope)
        self.assertIsNotNone(escrow_wrapped)

        meta, plaintext = open_envelope(envelope, owner_wrapped, rsa_private_key("patient"))
        self.assertEqual(plaintext, TEST_RECORD)
        self.assertEqual(meta.fileType, "application/json")

    def test_without_escrow(self):
        _, _, escrow_wrapped = seal_record(TEST_RECORD, "a.txt", "text/plain", DataType.PHR,
                                           rsa_public_key_b64("patient"))
        self.assertIsNone(escrow_wrapped)

    def test_wrong_recipient(self):
        envelope, owner_wrapped, _ = seal_record(TEST_RECORD, "a.txt", "text/plain", DataType.PHR,
                                                 rsa_public_key_b64("patient"))
        with self.assertRaises(UnwrapFailed):
            open_envelope(envelope, owner_wrapped, rsa_private_key("doctor"))

    def test_tampered_content(self):
        envelope, owner_wrapped, _ = seal_record(TEST_RECORD, "a.txt", "text/plain", DataType.PHR,
                                                 rsa_public_key_b64("patient"))
        body = json.loads(envelope)
        body["encryptedContent"] = body["encryptedContent"][:-8] + "AAAAAAA="
        with self.assertRaises(DecryptionFailed):
            open_envelope(json.dumps(body).encode(), owner_wrapped, rsa_private_key("patient"))

    def test_malformed_envelope(self):
        with self.assertRaises(DecryptionFailed):
            open_envelope(b'{"fileName": "x"}', "", rsa_private_key("patient"))


class TestRecordClient(LedgerSetUpMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.register_defaults()
        self.blobs = {}
        self.blob_store = mock.Mock()
        self.blob_store.put.side_effect = self._put
        self.blob_store.get.side_effect = lambda ref: self.blobs[ref]
        self.client = RecordClient(self.ledger, self.blob_store)

    def _put(self, data):
        ref = f"Qm{len(self.blobs)}"
        self.blobs[ref] = data
        return ref

    def test_upload_then_share(self):
        record_id = self.client.upload_record(TEST_ACCOUNTS["doctor"], TEST_ACCOUNTS["patient"], TEST_RECORD,
                                              "visit.json", "application/json", DataType.EHR)
        record = self.ledger.get_record(record_id).value
        self.assertEqual(record.uploader, self.addr("doctor"))
        self.assertIsNotNone(record.escrow_wrapped_key)

        _, plaintext = self.client.download_record(TEST_ACCOUNTS["patient"], record_id, rsa_private_key("patient"))
        self.assertEqual(plaintext, TEST_RECORD)

        with self.assertRaises(AccessDenied):
            self.client.download_record(TEST_ACCOUNTS["researcher"], record_id, rsa_private_key("researcher"))

        request = self.ledger.request_permission(TEST_ACCOUNTS["researcher"], TEST_ACCOUNTS["patient"], record_id).value
        self.ledger.approve(TEST_ACCOUNTS["patient"], request.id, rsa_private_key("patient"))
        _, plaintext = self.client.download_record(TEST_ACCOUNTS["researcher"], record_id, rsa_private_key("researcher"))
        self.assertEqual(plaintext, TEST_RECORD)

    def test_rejected_upload_raises(self):
        with self.assertRaises(MedShareError) as ctx:
            self.client.upload_record(TEST_ACCOUNTS["researcher"], TEST_ACCOUNTS["patient"], TEST_RECORD,
                                      "visit.json", "application/json")
        self.assertEqual(ctx.exception.code, "UploaderNotAuthorized")


class TestLocalBlobStore:
    def test_put_get(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        ref = store.put(b"ciphertext")
        assert len(ref) == 64
        assert store.get(ref) == b"ciphertext"

    def test_missing(self, tmp_path):
        with pytest.raises(NotFound):
            LocalBlobStore(str(tmp_path)).get("ab" * 32)

    def test_corrupted_blob(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        ref = store.put(b"ciphertext")
        (tmp_path / "blobs" / ref).write_bytes(b"something else")
        with pytest.raises(BlobIntegrityError):
            store.get(ref)


def test_blob_store_is_abstract():
    with pytest.raises(TypeError):
        BlobStore()

    class PutOnly(BlobStore):
        def put(self, data):
            return "ref"

    with pytest.raises(TypeError):
        PutOnly()


class TestIPFSBlobStore:
    def response(self, status_code=200, json_data=None, content=b""):
        response = mock.Mock(status_code=status_code, content=content, text="")
        response.json.return_value = json_data
        return response

    def test_put_adds_and_pins(self):
        store = IPFSBlobStore("http://ipfs:5001/api/v0/", timeout=5)
        with mock.patch("medshare.ipfs_helper.requests.post") as post:
            post.side_effect = [self.response(json_data={"Hash": "QmTest"}), self.response()]
            assert store.put(b"data") == "QmTest"

        add_call, pin_call = post.call_args_list
        assert add_call.args[0] == "http://ipfs:5001/api/v0/add"
        assert add_call.kwargs["timeout"] == 5
        assert pin_call.args[0] == "http://ipfs:5001/api/v0/pin/add"
        assert pin_call.kwargs["params"] == {"arg": "QmTest"}

    def test_get(self):
        store = IPFSBlobStore("http://ipfs:5001/api/v0")
        with mock.patch("medshare.ipfs_helper.requests.post", return_value=self.response(content=b"blob")) as post:
            assert store.get("QmTest") == b"blob"
        assert post.call_args.args[0] == "http://ipfs:5001/api/v0/cat"

    def test_unreachable(self):
        store = IPFSBlobStore("http://ipfs:5001/api/v0")
        with mock.patch("medshare.ipfs_helper.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(BlobStoreUnavailable):
                store.put(b"data")
            assert not store.is_available()

    def test_error_status(self):
        store = IPFSBlobStore("http://ipfs:5001/api/v0")
        with mock.patch("medshare.ipfs_helper.requests.post", return_value=self.response(status_code=500)):
            with pytest.raises(BlobStoreUnavailable):
                store.get("QmTest")
