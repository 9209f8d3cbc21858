import os
import logging
from functools import lru_cache

from eth_account import Account
from eth_account.messages import encode_defunct

from medshare.crypto import aes
from medshare.crypto.key_manager import EmergencyKeyEscrow, export_public_key, generate_rsa_key_pair, wrap_b64
from medshare.ledger import Ledger
from medshare.roles import DataType, Role

logging.getLogger("medshare").setLevel(logging.CRITICAL)

# Local development chain keys; the addresses are derived from them
TEST_ACCOUNT_KEYS = {
    "authority": "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80",
    "patient": "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    "patient2": "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a",
    "doctor": "0x7c852118294e51e653712a81e05800f419141751be58f605c371e15141b007a6",
    "researcher": "0x47e179ec197488593b187f80a00eb0da91f1b9d0b13f8733639f19c30a34926a",
    "ambulance": "0x8b3a350cf5c34c9194ca85829a2df0ec3153be0318b5e2d3348e872092edffba",
    "hospital": "0x92db14e403b83dfe3df233f83dfa3a0d7096f21ca9b0d6d6b8d88b2b4ec1564e",
    "insurer": "0x4bbbf85ce3377467afe5d46f804f221813b2bb87f24d81f60f1fcdbf7cbf4356",
    "lab": "0xdbda1821b80551c9d65939329250298aa3472ba22feea921c0cf5d620ea67b97",
}

TEST_ACCOUNTS = {name: Account.from_key(key).address for name, key in TEST_ACCOUNT_KEYS.items()}

START_TIME = 1_700_000_000
DAY = 24 * 3600


def sign(challenge, name):
    """EIP-191 signature of an auth challenge by a test wallet"""
    signed = Account.sign_message(encode_defunct(text=challenge), private_key=TEST_ACCOUNT_KEYS[name])
    return "0x" + bytes(signed.signature).hex()


class FakeClock:
    def __init__(self, now=START_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@lru_cache(maxsize=None)
def rsa_private_key(name):
    """One RSA key pair per test identity, generated once per session"""
    private_key, _ = generate_rsa_key_pair()
    return private_key


def rsa_public_key_b64(name):
    return export_public_key(rsa_private_key(name).public_key())


@lru_cache(maxsize=None)
def escrow_authority():
    return EmergencyKeyEscrow(rsa_private_key("emergency-escrow"))


class LedgerSetUpMixin:
    """Fresh ledger with a fake clock and an emergency escrow authority"""

    use_escrow = True

    def setUp(self):
        self.clock = FakeClock()
        self.escrow = escrow_authority() if self.use_escrow else None
        self.ledger = Ledger(clock=self.clock, emergency_escrow=self.escrow,
                             authority=TEST_ACCOUNTS["authority"])
        self.record_keys = {}

    def addr(self, name):
        return TEST_ACCOUNTS[name].lower()

    def register(self, name, role, verify=True, with_key=True):
        result = self.ledger.register(TEST_ACCOUNTS[name], role, rsa_public_key_b64(name) if with_key else "")
        assert result.ok, result.error
        if verify:
            assert self.ledger.verify(TEST_ACCOUNTS["authority"], TEST_ACCOUNTS[name]).ok
        return result.value

    def register_defaults(self):
        self.register("patient", Role.PATIENT)
        self.register("doctor", Role.PROVIDER)
        self.register("researcher", Role.RESEARCHER)
        self.register("ambulance", Role.AMBULANCE)

    def put_record(self, owner="patient", uploader=None, data_type=DataType.EHR, escrow=True):
        """Catalog a record with a fresh key; returns the record id"""
        key = aes.generate_key()
        content_ref = os.urandom(32).hex()
        escrow_wrapped = wrap_b64(key, self.escrow.public_key) if escrow and self.escrow else None
        result = self.ledger.put_record(
            TEST_ACCOUNTS[uploader or owner], TEST_ACCOUNTS[owner], data_type, content_ref,
            wrap_b64(key, rsa_public_key_b64(owner)), escrow_wrapped,
        )
        assert result.ok, result.error
        self.record_keys[content_ref] = key
        return result.value
