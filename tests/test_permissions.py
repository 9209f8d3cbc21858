import unittest

from medshare.crypto import aes
from medshare.crypto.key_manager import unwrap_b64
from medshare.roles import PermissionKind, RequestStatus, Role

from helpers import DAY, LedgerSetUpMixin, TEST_ACCOUNTS, rsa_private_key


class PermissionMixin(LedgerSetUpMixin):
    def setUp(self):
        super().setUp()
        self.register_defaults()
        self.record_id = self.put_record()
        self.patient = TEST_ACCOUNTS["patient"]
        self.doctor = TEST_ACCOUNTS["doctor"]
        self.researcher = TEST_ACCOUNTS["researcher"]

    def request(self, requester="doctor", record_id=None, **kwargs):
        return self.ledger.request_permission(TEST_ACCOUNTS[requester], self.patient,
                                              record_id or self.record_id, **kwargs)

    def approve(self, request_id, owner="patient"):
        return self.ledger.approve(TEST_ACCOUNTS[owner], request_id, rsa_private_key(owner))


class TestPermissionRequests(PermissionMixin, unittest.TestCase):
    def test_approve_grants_access(self):
        request = self.request().value
        self.assertIs(request.status, RequestStatus.PENDING)
        self.assertEqual(request.expires_at, request.requested_at + 30 * DAY)
        self.assertEqual(self.ledger.pending_requests_for_owner(self.patient).value, [request])

        approved = self.approve(request.id).value
        self.assertIs(approved.status, RequestStatus.APPROVED)
        self.assertEqual(approved.granted_records, [self.record_id])
        self.assertTrue(self.ledger.check_access(self.doctor, self.record_id).value)

        wrapped = self.ledger.get_wrapped_key(self.doctor, self.record_id).value
        key = unwrap_b64(wrapped, rsa_private_key("doctor"))
        self.assertEqual(key, self.record_keys[self.record_id])
        ciphertext = aes.encrypt_with_key(b"blood panel", self.record_keys[self.record_id])
        self.assertEqual(aes.decrypt(ciphertext, key), b"blood panel")
        self.assertEqual(self.ledger.pending_requests_for_owner(self.patient).value, [])

    def test_reject(self):
        request = self.request().value
        rejected = self.ledger.reject(self.patient, request.id).value
        self.assertIs(rejected.status, RequestStatus.REJECTED)
        self.assertFalse(self.ledger.check_access(self.doctor, self.record_id).value)
        self.assertEqual(self.ledger.get_wrapped_key(self.doctor, self.record_id).code, "AccessDenied")

    def test_terminal_states_are_final(self):
        approved = self.request().value
        self.approve(approved.id)
        self.assertEqual(self.approve(approved.id).code, "NotPending")
        self.assertEqual(self.ledger.reject(self.patient, approved.id).code, "NotPending")

        rejected = self.request().value
        self.ledger.reject(self.patient, rejected.id)
        self.assertEqual(self.approve(rejected.id).code, "NotPending")

    def test_only_owner_decides(self):
        request = self.request().value
        result = self.ledger.approve(self.doctor, request.id, rsa_private_key("doctor"))
        self.assertEqual(result.code, "NotOwner")
        self.assertEqual(self.ledger.reject(self.researcher, request.id).code, "NotOwner")

    def test_patient_cannot_request(self):
        self.register("patient2", Role.PATIENT)
        self.assertEqual(self.request("patient2").code, "RoleNotPermitted")

    def test_unverified_requester(self):
        self.register("lab", Role.LAB, verify=False)
        self.assertEqual(self.request("lab").code, "RequesterNotVerified")

    def test_requester_deactivated_before_approval(self):
        request = self.request().value
        self.ledger.deactivate(TEST_ACCOUNTS["authority"], self.doctor)
        self.assertEqual(self.approve(request.id).code, "RequesterNotVerified")

    def test_record_must_belong_to_owner(self):
        self.register("patient2", Role.PATIENT)
        other = self.put_record("patient2")
        self.assertEqual(self.request(record_id=other).code, "RecordOwnerMismatch")
        self.assertEqual(self.request(record_id="QmMissing").code, "NotFound")

    def test_requester_without_key(self):
        self.register("lab", Role.LAB, with_key=False)
        request = self.request("lab").value
        self.assertEqual(self.approve(request.id).code, "NoKeyOnFile")
        self.assertIs(self.ledger.get_permission_request(request.id).value.status, RequestStatus.PENDING)

    def test_wrong_owner_private_key(self):
        request = self.request().value
        result = self.ledger.approve(self.patient, request.id, rsa_private_key("doctor"))
        self.assertEqual(result.code, "UnwrapFailed")
        self.assertEqual(result.error.category, "cryptographic")
        self.assertFalse(self.ledger.check_access(self.doctor, self.record_id).value)

    def test_requests_by_requester(self):
        first = self.request().value
        second = self.request(kind=PermissionKind.EDIT).value
        self.assertEqual([r.id for r in self.ledger.requests_by_requester(self.doctor).value], [first.id, second.id])


class TestExpiry(PermissionMixin, unittest.TestCase):
    def test_expired_request_cannot_be_approved(self):
        request = self.request().value
        self.clock.advance(31 * DAY)
        self.assertEqual(self.approve(request.id).code, "RequestExpired")
        self.assertEqual(self.ledger.reject(self.patient, request.id).code, "RequestExpired")
        self.assertFalse(self.ledger.check_access(self.doctor, self.record_id).value)

    def test_expiry_is_applied_by_readers(self):
        request = self.request().value
        self.clock.advance(30 * DAY)
        self.assertIs(self.ledger.get_permission_request(request.id).value.status, RequestStatus.EXPIRED)
        self.assertEqual(self.ledger.pending_requests_for_owner(self.patient).value, [])

    def test_boundary(self):
        request = self.request().value
        self.clock.advance(30 * DAY - 1)
        self.assertTrue(self.approve(request.id).ok)

    def test_expire_refunds_incentive(self):
        request = self.request("researcher", incentive_amount=100, value=100).value
        self.assertEqual(self.ledger.expire(self.doctor, request.id).code, "NotExpired")

        self.clock.advance(31 * DAY)
        expired = self.ledger.expire(self.doctor, request.id).value
        self.assertIs(expired.status, RequestStatus.EXPIRED)
        self.assertEqual(self.ledger.balance_of(self.researcher).value, 100)
        self.assertEqual(self.ledger.expire(self.doctor, request.id).code, "NotPending")

    def test_access_grant_lapses(self):
        request = self.request().value
        self.approve(request.id)
        self.clock.advance(30 * DAY)
        self.assertFalse(self.ledger.check_access(self.doctor, self.record_id).value)
        self.assertEqual(self.ledger.get_wrapped_key(self.doctor, self.record_id).code, "AccessDenied")


class TestIncentives(PermissionMixin, unittest.TestCase):
    def test_value_must_match_incentive(self):
        self.assertEqual(self.request("researcher", incentive_amount=100, value=50).code, "IncentiveMismatch")
        self.assertEqual(self.request("researcher", incentive_amount=0, value=10).code, "IncentiveMismatch")
        self.assertEqual(self.request("researcher", incentive_amount=-5, value=-5).code, "IncentiveMismatch")

    def test_approve_releases_incentive(self):
        request = self.request("researcher", incentive_amount=100, value=100).value
        self.assertTrue(request.incentive_based)
        self.clock.advance(20 * DAY)
        self.assertTrue(self.approve(request.id).ok)
        self.assertEqual(self.ledger.balance_of(self.patient).value, 100)
        self.assertEqual(self.ledger.balance_of(self.researcher).value, 0)
        self.assertTrue(self.ledger.check_access(self.researcher, self.record_id).value)

    def test_reject_refunds_incentive(self):
        request = self.request("researcher", incentive_amount=40, value=40).value
        self.ledger.reject(self.patient, request.id)
        self.assertEqual(self.ledger.balance_of(self.researcher).value, 40)
        self.assertEqual(self.ledger.balance_of(self.patient).value, 0)


class TestRevocation(PermissionMixin, unittest.TestCase):
    def test_revoke(self):
        self.approve(self.request().value.id)
        self.assertEqual(self.ledger.revoke(self.doctor, self.doctor, self.record_id).code, "NotOwner")

        self.assertTrue(self.ledger.revoke(self.patient, self.doctor, self.record_id).ok)
        self.assertFalse(self.ledger.check_access(self.doctor, self.record_id).value)
        self.assertEqual(self.ledger.revoke(self.patient, self.doctor, self.record_id).code, "NotFound")

    def test_owner_always_reads_own_key(self):
        wrapped = self.ledger.get_wrapped_key(self.patient, self.record_id).value
        self.assertEqual(unwrap_b64(wrapped, rsa_private_key("patient")), self.record_keys[self.record_id])

    def test_invalidated_record_cannot_be_requested(self):
        request = self.request().value
        self.ledger.invalidate_record(self.patient, self.record_id)
        self.assertEqual(self.request().code, "RecordInvalid")
        self.assertEqual(self.approve(request.id).code, "RecordInvalid")
