import unittest

from medshare.roles import Role

from helpers import LedgerSetUpMixin, TEST_ACCOUNTS, rsa_public_key_b64


class TestIdentityRegistry(LedgerSetUpMixin, unittest.TestCase):
    def test_register_and_verify(self):
        user = self.register("patient", Role.PATIENT, verify=False)
        self.assertEqual(user.address, self.addr("patient"))
        self.assertFalse(user.verified)
        self.assertEqual(self.ledger.check_user(TEST_ACCOUNTS["patient"]).value, (False, Role.PATIENT))

        self.assertTrue(self.ledger.verify(TEST_ACCOUNTS["authority"], TEST_ACCOUNTS["patient"]).ok)
        self.assertEqual(self.ledger.check_user(TEST_ACCOUNTS["patient"]).value, (True, Role.PATIENT))

    def test_verify_is_idempotent(self):
        self.register("patient", Role.PATIENT)
        self.assertTrue(self.ledger.verify(TEST_ACCOUNTS["authority"], TEST_ACCOUNTS["patient"]).ok)

    def test_role_is_fixed(self):
        self.register("doctor", Role.PROVIDER)
        result = self.ledger.register(TEST_ACCOUNTS["doctor"], Role.PATIENT)
        self.assertEqual(result.code, "AlreadyRegistered")
        self.assertIs(self.ledger.get_user(TEST_ACCOUNTS["doctor"]).value.role, Role.PROVIDER)

    def test_cannot_register_role_none(self):
        self.assertEqual(self.ledger.register(TEST_ACCOUNTS["patient"], Role.NONE).code, "InvalidRole")
        self.assertEqual(self.ledger.register(TEST_ACCOUNTS["patient"], "surgeon").code, "InvalidRole")

    def test_malformed_address(self):
        self.assertEqual(self.ledger.register("0x1234", Role.PATIENT).code, "InvalidAddress")
        self.assertEqual(self.ledger.get_user("not-an-address").code, "InvalidAddress")

    def test_addresses_are_case_insensitive(self):
        self.register("patient", Role.PATIENT)
        self.assertTrue(self.ledger.get_user(TEST_ACCOUNTS["patient"].upper().replace("0X", "0x")).ok)

    def test_only_authority_verifies(self):
        self.register("patient", Role.PATIENT, verify=False)
        self.register("doctor", Role.PROVIDER)
        result = self.ledger.verify(TEST_ACCOUNTS["doctor"], TEST_ACCOUNTS["patient"])
        self.assertEqual(result.code, "NotRegistryAuthority")
        self.assertEqual(result.error.category, "authorization")

    def test_verify_unknown_user(self):
        result = self.ledger.verify(TEST_ACCOUNTS["authority"], TEST_ACCOUNTS["insurer"])
        self.assertEqual(result.code, "NotFound")

    def test_public_key_on_file(self):
        self.register("patient", Role.PATIENT)
        self.assertEqual(self.ledger.get_public_key(TEST_ACCOUNTS["patient"]).value, rsa_public_key_b64("patient"))

    def test_set_public_key_once(self):
        self.register("doctor", Role.PROVIDER, with_key=False)
        self.assertEqual(self.ledger.get_public_key(TEST_ACCOUNTS["doctor"]).code, "NoKeyOnFile")

        self.assertTrue(self.ledger.set_public_key(TEST_ACCOUNTS["doctor"], rsa_public_key_b64("doctor")).ok)
        self.assertEqual(self.ledger.get_public_key(TEST_ACCOUNTS["doctor"]).value, rsa_public_key_b64("doctor"))

        result = self.ledger.set_public_key(TEST_ACCOUNTS["doctor"], rsa_public_key_b64("lab"))
        self.assertEqual(result.code, "KeyAlreadySet")

    def test_invalid_public_key(self):
        result = self.ledger.register(TEST_ACCOUNTS["patient"], Role.PATIENT, "bm90IGEga2V5")
        self.assertEqual(result.code, "InvalidPublicKey")
        self.assertEqual(self.ledger.get_user(TEST_ACCOUNTS["patient"]).code, "NotFound")

    def test_deactivate(self):
        self.register("doctor", Role.PROVIDER)
        self.assertTrue(self.ledger.deactivate(TEST_ACCOUNTS["authority"], TEST_ACCOUNTS["doctor"]).ok)
        self.assertEqual(self.ledger.check_user(TEST_ACCOUNTS["doctor"]).value, (False, Role.PROVIDER))

    def test_unregistered_check_user(self):
        self.assertEqual(self.ledger.check_user(TEST_ACCOUNTS["lab"]).value, (False, Role.NONE))

    def test_designate_emergency_provider(self):
        self.register("doctor", Role.PROVIDER)
        self.register("researcher", Role.RESEARCHER)
        authority = TEST_ACCOUNTS["authority"]

        self.assertTrue(self.ledger.designate_emergency_provider(authority, TEST_ACCOUNTS["doctor"]).value.emergency_capable)
        result = self.ledger.designate_emergency_provider(authority, TEST_ACCOUNTS["researcher"])
        self.assertEqual(result.code, "InvalidRole")
